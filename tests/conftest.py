"""
Root conftest.py for pytest configuration.

This ensures the agent_wallets package is discoverable and provides
in-memory collaborators shared by the test modules.
"""

import random
import sys
from pathlib import Path

import pytest

root_dir = Path(__file__).parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

from agent_wallets.agents.schemas import AgentSnapshot, PeerBalance
from agent_wallets.config import AgentConfig
from agent_wallets.wallet.simulated import InMemoryLedger, InMemoryWalletProvider, SimulatedProtocol


@pytest.fixture
def config(tmp_path):
    """Default limits; audit output goes to a temp dir."""
    return AgentConfig(log_dir=str(tmp_path / "logs"), decision_interval_seconds=0.05)


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def provider(ledger):
    return InMemoryWalletProvider(ledger, initial_balance=1.0)


@pytest.fixture
def protocol(ledger):
    return SimulatedProtocol(ledger)


@pytest.fixture
def rng():
    return random.Random(42)


def _make_snapshot(balance=1.0, cycle=1, peers=("agent-02", "agent-03"), agent_id="agent-01"):
    return AgentSnapshot(
        agent_id=agent_id,
        balance=balance,
        cycle_number=cycle,
        peers=[PeerBalance(peer_id=p, balance=1.0) for p in peers],
        max_trade_per_tx=0.01,
    )


@pytest.fixture
def make_snapshot():
    """Factory for AgentSnapshot with two peers by default."""
    return _make_snapshot


"""
AgentRuntime - process-wide registry of agents and shared collaborators.

Constructed once at startup and passed to whatever needs it. Holds the
config, wallet provider, protocol client, the shared event channel, the
multi-sig coordinator and one AgentOrchestrator per agent id.
"""
import asyncio
import logging
from typing import Callable, Dict, List, Optional

from .agents.decision import DecisionSource
from .agents.events import EventChannel
from .agents.observability import AuditTrail
from .agents.orchestrator import AgentOrchestrator
from .agents.schemas import AgentStats
from .config import AgentConfig
from .interfaces import ProtocolClient, WalletProvider
from .wallet.multisig import MultiSigCoordinator
from .wallet.simulated import InMemoryLedger, InMemoryWalletProvider, SimulatedProtocol

logger = logging.getLogger("agent_wallets.runtime")


def agent_id_for(index: int) -> str:
    return f"agent-{index:02d}"


class AgentRuntime:
    """Registry of orchestrators sharing one event channel and coordinator."""

    def __init__(
        self,
        config: AgentConfig,
        wallet_provider: Optional[WalletProvider] = None,
        protocol: Optional[ProtocolClient] = None,
        events: Optional[EventChannel] = None,
    ):
        self.config = config
        if wallet_provider is None:
            ledger = InMemoryLedger()
            wallet_provider = InMemoryWalletProvider(ledger, config.initial_balance)
            protocol = protocol or SimulatedProtocol(ledger)
        if protocol is None:
            raise ValueError("a protocol client is required with a custom wallet provider")

        self.wallet_provider = wallet_provider
        self.protocol = protocol
        self.events = events or EventChannel()
        self.multisig = MultiSigCoordinator(config)
        self.orchestrators: Dict[str, AgentOrchestrator] = {}

        self.audit: Optional[AuditTrail] = None
        if config.audit_enabled:
            self.audit = AuditTrail(config)
            self.audit.attach(self.events)

    async def spawn_agents(
        self,
        count: int,
        source_factory: Optional[Callable[[str], DecisionSource]] = None,
    ) -> List[AgentOrchestrator]:
        """
        Create and initialise `count` more agents named agent-01, agent-02, ...
        Wallets are resolved concurrently; peers are rewired afterwards.
        `source_factory(agent_id)` overrides the configured decision source.
        """
        start = len(self.orchestrators) + 1
        created = [
            AgentOrchestrator(
                agent_id_for(i),
                self.config,
                self.wallet_provider,
                self.protocol,
                decision_source=source_factory(agent_id_for(i)) if source_factory else None,
                events=self.events,
            )
            for i in range(start, start + count)
        ]
        await asyncio.gather(*(o.init() for o in created))
        for orchestrator in created:
            self.orchestrators[orchestrator.agent_id] = orchestrator
        self.wire_peers()
        logger.info(f"Runtime: {len(created)} agents initialised ({len(self.orchestrators)} total)")
        return created

    def get(self, agent_id: str) -> AgentOrchestrator:
        return self.orchestrators[agent_id]

    def wire_peers(self) -> None:
        """Every agent sees every other agent's wallet."""
        wallets = [o.wallet for o in self.orchestrators.values() if o.wallet is not None]
        for orchestrator in self.orchestrators.values():
            orchestrator.set_peers(wallets)

    async def start_all(self, interval_seconds: Optional[float] = None) -> None:
        await asyncio.gather(*(o.start(interval_seconds) for o in self.orchestrators.values()))

    async def stop_all(self) -> None:
        await asyncio.gather(*(o.stop() for o in self.orchestrators.values()))
        await self.events.drain()

    def stats(self) -> List[AgentStats]:
        return [o.get_stats() for o in self.orchestrators.values()]

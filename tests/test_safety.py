"""
Safety validator tests: spend cap, balance floor, action whitelist.
"""
import math
import random

import pytest

from agent_wallets.agents.decision import RuleDecisionSource
from agent_wallets.agents.safety import SafetyValidator
from agent_wallets.agents.schemas import AgentState, Decision
from agent_wallets.config import AgentConfig

PEERS = ["agent-02", "agent-03"]


@pytest.fixture
def validator():
    return SafetyValidator()


@pytest.fixture
def cfg():
    return AgentConfig()


class TestSpendCap:
    """TRADE amounts never exceed max_trade_per_tx."""

    def test_oversized_trade_is_clamped(self, validator, cfg):
        decision = Decision(action="TRADE", target="agent-02", amount=0.5, reason="big")
        result = validator.validate(decision, 0.872, cfg, PEERS)

        assert result.action == AgentState.TRADE
        assert result.decision.amount == cfg.max_trade_per_tx
        assert not result.vetoed
        assert any("Spend cap" in n for n in result.notes)

    def test_trade_within_cap_unchanged(self, validator, cfg):
        decision = Decision(action="TRADE", target="agent-03", amount=0.004)
        result = validator.validate(decision, 0.872, cfg, PEERS)

        assert result.decision.amount == 0.004
        assert result.notes == []

    def test_original_is_not_mutated(self, validator, cfg):
        decision = Decision(action="TRADE", target="agent-02", amount=0.5)
        result = validator.validate(decision, 0.872, cfg, PEERS)

        assert decision.amount == 0.5
        assert result.original is decision
        assert result.decision is not decision

    @pytest.mark.parametrize("amount", [None, 0.0, -0.01, math.nan, math.inf])
    def test_invalid_trade_amount_vetoed(self, validator, cfg, amount):
        decision = Decision(action="TRADE", target="agent-02", amount=amount)
        result = validator.validate(decision, 0.872, cfg, PEERS)

        assert result.action == AgentState.IDLE
        assert result.vetoed
        assert result.decision.reason == "invalid trade amount"


class TestBalanceFloor:
    """A validated TRADE never takes the balance below the floor."""

    def test_trade_breaching_floor_vetoed(self, validator, cfg):
        decision = Decision(action="TRADE", target="agent-02", amount=0.005)
        result = validator.validate(decision, 0.007, cfg, PEERS)

        assert result.action == AgentState.IDLE
        assert result.decision.reason == "would breach balance floor"
        assert result.decision.amount is None

    def test_trade_just_above_floor_allowed(self, validator, cfg):
        decision = Decision(action="TRADE", target="agent-02", amount=0.005)
        result = validator.validate(decision, 0.0081, cfg, PEERS)

        assert result.action == AgentState.TRADE

    def test_clamp_applies_before_floor_check(self, validator, cfg):
        # 0.5 alone would breach; clamped to 0.01 it does not
        decision = Decision(action="TRADE", target="agent-02", amount=0.5)
        result = validator.validate(decision, 0.02, cfg, PEERS)

        assert result.action == AgentState.TRADE
        assert result.decision.amount == 0.01

    @pytest.mark.parametrize("action", ["TRADE", "YIELD", "REBAL"])
    def test_balance_below_floor_idles_any_action(self, validator, cfg, action):
        decision = Decision(action=action, target="agent-02", amount=0.001, source="inference")
        result = validator.validate(decision, 0.002, cfg, PEERS)

        assert result.action == AgentState.IDLE
        assert result.decision.source == "inference"

    def test_random_trades_respect_invariants(self, validator, cfg):
        rng = random.Random(7)
        for _ in range(500):
            balance = rng.uniform(0, 2)
            amount = rng.uniform(-0.1, 1)
            decision = Decision(action="TRADE", target=rng.choice(PEERS), amount=amount)
            result = validator.validate(decision, balance, cfg, PEERS)
            if result.action == AgentState.TRADE:
                assert result.decision.amount <= cfg.max_trade_per_tx
                assert balance - result.decision.amount >= cfg.balance_floor


class TestActionWhitelist:
    """Unknown actions and targets become IDLE."""

    def test_unknown_action_vetoed(self, validator, cfg):
        decision = Decision(action="WITHDRAW_ALL", amount=1.0, source="inference")
        result = validator.validate(decision, 0.872, cfg, PEERS)

        assert result.action == AgentState.IDLE
        assert result.decision.reason == "invalid action"
        assert result.vetoed

    def test_action_is_normalised(self, validator, cfg):
        decision = Decision(action=" trade ", target="agent-02", amount=0.001)
        result = validator.validate(decision, 0.872, cfg, PEERS)

        assert result.action == AgentState.TRADE

    def test_unknown_target_vetoed(self, validator, cfg):
        decision = Decision(action="TRADE", target="attacker", amount=0.001)
        result = validator.validate(decision, 0.872, cfg, PEERS)

        assert result.action == AgentState.IDLE
        assert result.decision.reason == "unknown trade target"

    def test_missing_yield_amount_recomputed(self, validator, cfg):
        decision = Decision(action="YIELD")
        result = validator.validate(decision, 0.5, cfg, PEERS)

        assert result.action == AgentState.YIELD
        assert result.decision.amount == pytest.approx(0.5 * cfg.yield_rate)

    def test_oversized_yield_amount_replaced(self, validator, cfg):
        decision = Decision(action="YIELD", amount=1000.0, source="inference")
        result = validator.validate(decision, 1.0, cfg, PEERS)

        assert result.action == AgentState.YIELD
        assert result.decision.amount == pytest.approx(cfg.yield_rate)
        assert any("Yield amount set" in n for n in result.notes)

    def test_matching_yield_amount_has_no_note(self, validator, cfg):
        decision = Decision(action="YIELD", amount=1.0 * cfg.yield_rate)
        result = validator.validate(decision, 1.0, cfg, PEERS)

        assert result.decision.amount == pytest.approx(cfg.yield_rate)
        assert result.notes == []

    def test_rebalance_without_peers_vetoed(self, validator, cfg):
        result = validator.validate(Decision(action="REBAL"), 0.5, cfg, [])

        assert result.action == AgentState.IDLE
        assert result.decision.reason == "no peers to rebalance"

    def test_idle_passes_through(self, validator, cfg):
        result = validator.validate(Decision(action="IDLE", reason="nothing"), 0.001, cfg, PEERS)

        assert result.action == AgentState.IDLE
        assert not result.vetoed

    def test_veto_keeps_fallback_reason(self, validator, cfg):
        decision = Decision(action="TRADE", target="x", amount=0.001, fallback_reason="timeout")
        result = validator.validate(decision, 0.872, cfg, PEERS)

        assert result.decision.fallback_reason == "timeout"


class TestDeterminism:

    def test_same_input_same_output(self, validator, cfg):
        decision = Decision(action="TRADE", target="agent-02", amount=0.3)
        first = validator.validate(decision, 0.5, cfg, PEERS)
        second = validator.validate(decision, 0.5, cfg, PEERS)

        assert first.decision == second.decision
        assert first.notes == second.notes


class TestScenarios:

    @pytest.mark.asyncio
    async def test_rich_agent_trades_within_limits(self, validator, cfg, make_snapshot):
        rules = RuleDecisionSource(cfg, rng=random.Random(3))
        snapshot = make_snapshot(balance=0.872, cycle=13, peers=("B", "C"))

        decision = await rules.decide(snapshot)
        result = validator.validate(decision, snapshot.balance, cfg, snapshot.peer_ids)

        assert decision.action == AgentState.TRADE
        assert result.action == AgentState.TRADE
        assert result.decision.amount <= 0.01
        assert 0.872 - result.decision.amount >= cfg.balance_floor

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cycle", [1, 7, 12, 84])
    async def test_low_balance_always_idle(self, validator, cfg, make_snapshot, cycle):
        rules = RuleDecisionSource(cfg)
        snapshot = make_snapshot(balance=0.002, cycle=cycle)

        decision = await rules.decide(snapshot)
        result = validator.validate(decision, snapshot.balance, cfg, snapshot.peer_ids)

        assert result.action == AgentState.IDLE

    @pytest.mark.asyncio
    async def test_multiple_of_yield_period_yields_before_trading(self, validator, cfg, make_snapshot):
        # cycle 14 is a multiple of the 7-cycle yield period, so YIELD outranks TRADE
        rules = RuleDecisionSource(cfg)
        snapshot = make_snapshot(balance=0.872, cycle=14, peers=("B", "C"))

        result = validator.validate(await rules.decide(snapshot), snapshot.balance, cfg, snapshot.peer_ids)

        assert result.action == AgentState.YIELD
        assert result.decision.amount == pytest.approx(0.872 * cfg.yield_rate)

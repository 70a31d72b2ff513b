"""
Decision source tests: the rule ladder, response parsing, and the inference
source's fallback to rules.
"""
import asyncio
import random

import pytest
from unittest.mock import AsyncMock, MagicMock

from agent_wallets.agents.decision import (
    InferenceDecisionSource,
    RuleDecisionSource,
    parse_decision_response,
)
from agent_wallets.agents.schemas import AgentState
from agent_wallets.config import AgentConfig
from agent_wallets.errors import InferenceError
from agent_wallets.resilience import CircuitBreaker, CircuitState


@pytest.fixture
def cfg():
    return AgentConfig(inference_timeout_seconds=0.05)


class TestRuleLadder:
    """RuleDecisionSource priority order."""

    def test_below_floor_idles(self, cfg, make_snapshot):
        decision = RuleDecisionSource(cfg).evaluate(make_snapshot(balance=0.002, cycle=7))
        assert decision.action == AgentState.IDLE
        assert decision.reason == "Balance too low to act safely"

    def test_yield_every_seventh_cycle(self, cfg, make_snapshot):
        decision = RuleDecisionSource(cfg).evaluate(make_snapshot(balance=0.5, cycle=7))

        assert decision.action == AgentState.YIELD
        assert decision.amount == pytest.approx(0.5 * 0.001)
        assert decision.source == "rule"

    def test_yield_outranks_rebalance(self, cfg, make_snapshot):
        decision = RuleDecisionSource(cfg).evaluate(make_snapshot(balance=0.5, cycle=84))
        assert decision.action == AgentState.YIELD

    def test_rebalance_every_twelfth_cycle(self, cfg, make_snapshot):
        decision = RuleDecisionSource(cfg).evaluate(make_snapshot(balance=0.5, cycle=12))
        assert decision.action == AgentState.REBAL

    def test_rebalance_needs_peers(self, cfg, make_snapshot):
        decision = RuleDecisionSource(cfg).evaluate(make_snapshot(balance=0.5, cycle=12, peers=()))
        assert decision.action == AgentState.IDLE
        assert decision.reason == "No opportunity found"

    def test_trade_to_a_peer_within_cap(self, cfg, make_snapshot):
        rules = RuleDecisionSource(cfg, rng=random.Random(1))
        for cycle in (1, 2, 3, 4, 5, 6, 8, 9):
            decision = rules.evaluate(make_snapshot(balance=0.872, cycle=cycle))
            assert decision.action == AgentState.TRADE
            assert decision.target in ("agent-02", "agent-03")
            assert 0 <= decision.amount <= cfg.max_trade_per_tx
            # six decimal places
            assert decision.amount == round(decision.amount, 6)

    def test_trade_cap_uses_balance_fraction(self, cfg, make_snapshot):
        rules = RuleDecisionSource(cfg, rng=random.Random(5))
        for _ in range(50):
            decision = rules.evaluate(make_snapshot(balance=0.03, cycle=1))
            assert decision.amount <= 0.03 * cfg.trade_balance_fraction

    def test_at_threshold_does_not_trade(self, cfg, make_snapshot):
        decision = RuleDecisionSource(cfg).evaluate(make_snapshot(balance=0.02, cycle=1))
        assert decision.action == AgentState.IDLE

    @pytest.mark.asyncio
    async def test_decide_counts_decisions(self, cfg, make_snapshot):
        rules = RuleDecisionSource(cfg)
        await rules.decide(make_snapshot())
        await rules.decide(make_snapshot())
        assert rules.get_stats() == {"kind": "rule", "decisions": 2}


class TestParseDecisionResponse:
    """Parsing untrusted collaborator output."""

    def test_plain_json(self):
        decision = parse_decision_response('{"action": "TRADE", "target": "agent-02", "amount": 0.004, "reason": "x"}')

        assert decision.action == "TRADE"
        assert decision.target == "agent-02"
        assert decision.amount == 0.004
        assert decision.source == "inference"

    def test_code_fence_and_prose(self):
        content = 'Sure!\n```json\n{"action": "idle", "reason": null}\n```'
        decision = parse_decision_response(content)

        assert decision.action == "IDLE"
        assert decision.reason == ""

    def test_first_object_taken_when_prose_follows(self):
        content = '{"action": "YIELD"} then maybe {"action": "TRADE"} or a stray }'
        decision = parse_decision_response(content)

        assert decision.action == "YIELD"

    def test_camel_case_fields(self):
        decision = parse_decision_response('{"action": "TRADE", "tradeTarget": "agent-03", "tradeAmount": 0.002}')

        assert decision.target == "agent-03"
        assert decision.amount == 0.002

    def test_cannot_claim_rule_source(self):
        decision = parse_decision_response('{"action": "IDLE", "source": "rule", "fallback_reason": "x"}')

        assert decision.source == "inference"
        assert decision.fallback_reason is None

    def test_unknown_action_still_parses(self):
        decision = parse_decision_response('{"action": "DRAIN"}')
        assert not decision.is_known_action

    @pytest.mark.parametrize("content", [
        "",
        "   ",
        "no json here",
        "{not: valid json}",
        '{"reason": "missing action"}',
        '{"action": 5}',
    ])
    def test_malformed_raises_inference_error(self, content):
        with pytest.raises(InferenceError):
            parse_decision_response(content)


class TestInferenceDecisionSource:
    """Inference with transparent rule fallback."""

    @pytest.mark.asyncio
    async def test_uses_collaborator_response(self, cfg, make_snapshot):
        client = MagicMock()
        client.infer = AsyncMock(return_value='{"action": "TRADE", "target": "agent-02", "amount": 0.003}')
        source = InferenceDecisionSource(cfg, client)

        decision = await source.decide(make_snapshot(balance=0.5, cycle=7))

        assert decision.action == "TRADE"
        assert decision.source == "inference"
        assert decision.fallback_reason is None
        sent = client.infer.await_args.args[0]
        assert '"agentId": "agent-01"' in sent
        assert '"maxTradePerTx": 0.01' in sent

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_rules(self, cfg, make_snapshot):
        async def slow(_):
            await asyncio.sleep(1)
            return '{"action": "IDLE"}'

        client = MagicMock()
        client.infer = slow
        fallback_calls = []
        source = InferenceDecisionSource(
            cfg, client, on_fallback=lambda snap, err: fallback_calls.append((snap.cycle_number, err))
        )
        snapshot = make_snapshot(balance=0.5, cycle=7)

        decision = await source.decide(snapshot)
        expected = RuleDecisionSource(cfg).evaluate(snapshot)

        assert decision.source == "rule"
        assert decision.action == expected.action
        assert decision.amount == expected.amount
        assert "timed out" in decision.fallback_reason
        assert fallback_calls and fallback_calls[0][0] == 7
        assert source.get_stats()["failures"] == 1
        assert source.get_stats()["fallbacks"] == 1

    @pytest.mark.asyncio
    async def test_error_falls_back_to_rules(self, cfg, make_snapshot):
        client = MagicMock()
        client.infer = AsyncMock(side_effect=RuntimeError("backend down"))
        source = InferenceDecisionSource(cfg, client)

        decision = await source.decide(make_snapshot(balance=0.002, cycle=3))

        assert decision.action == AgentState.IDLE
        assert decision.source == "rule"
        assert "backend down" in decision.fallback_reason

    @pytest.mark.asyncio
    async def test_malformed_response_falls_back(self, cfg, make_snapshot):
        client = MagicMock()
        client.infer = AsyncMock(return_value="I think you should trade")
        source = InferenceDecisionSource(cfg, client)

        decision = await source.decide(make_snapshot(balance=0.5, cycle=12))

        assert decision.action == AgentState.REBAL
        assert decision.source == "rule"

    @pytest.mark.asyncio
    async def test_no_collaborator_always_falls_back(self, cfg, make_snapshot):
        source = InferenceDecisionSource(cfg, None)

        decision = await source.decide(make_snapshot(balance=0.5, cycle=7))

        assert decision.action == AgentState.YIELD
        assert decision.fallback_reason == "no inference collaborator configured"
        assert source.get_stats()["calls"] == 0

    @pytest.mark.asyncio
    async def test_hook_failure_does_not_break_decide(self, cfg, make_snapshot):
        def broken_hook(snapshot, error):
            raise RuntimeError("observer bug")

        source = InferenceDecisionSource(cfg, None, on_fallback=broken_hook)
        decision = await source.decide(make_snapshot(balance=0.5, cycle=1))

        assert decision.source == "rule"

    @pytest.mark.asyncio
    async def test_open_circuit_skips_collaborator(self, cfg, make_snapshot):
        client = MagicMock()
        client.infer = AsyncMock(side_effect=RuntimeError("boom"))
        breaker = CircuitBreaker(service="inference", fail_threshold=2, cooldown_sec=60)
        source = InferenceDecisionSource(cfg, client, breaker=breaker)

        await source.decide(make_snapshot(cycle=1))
        await source.decide(make_snapshot(cycle=2))
        assert breaker.state == CircuitState.OPEN

        decision = await source.decide(make_snapshot(cycle=3))

        assert client.infer.await_count == 2
        assert "Circuit breaker open" in decision.fallback_reason
        assert source.get_stats()["circuit"]["state"] == "open"

    @pytest.mark.asyncio
    async def test_success_is_recorded_on_breaker(self, cfg, make_snapshot):
        client = MagicMock()
        client.infer = AsyncMock(return_value='{"action": "IDLE"}')
        breaker = CircuitBreaker(service="inference", fail_threshold=3)
        breaker.failure_count = 2
        source = InferenceDecisionSource(cfg, client, breaker=breaker)

        await source.decide(make_snapshot())

        assert breaker.failure_count == 1
        assert source.get_stats()["last_decision"]["action"] == "IDLE"

"""
DecisionSource - pluggable per-cycle decision making.

Two independent implementations of one capability:
- RuleDecisionSource: deterministic priority ladder, never suspends
- InferenceDecisionSource: asks an external reasoning collaborator, and falls
  back to a composed RuleDecisionSource on any failure

Neither has authority of its own: every Decision goes through the
SafetyValidator before anything is executed.
"""
import asyncio
import json
import logging
import math
import random
from typing import Any, Callable, Dict, Optional, Protocol

from pydantic import ValidationError

from .schemas import AgentSnapshot, AgentState, Decision
from ..config import AgentConfig
from ..errors import InferenceError
from ..interfaces import InferenceClient
from ..resilience import CircuitBreaker, CircuitBreakerOpen

logger = logging.getLogger("agent_wallets.agents.decision")

AMOUNT_PRECISION = 1_000_000

_DECODER = json.JSONDecoder()

FallbackHook = Callable[[AgentSnapshot, str], None]


class DecisionSource(Protocol):
    """Produces one Decision per cycle from a snapshot."""

    async def decide(self, snapshot: AgentSnapshot) -> Decision: ...

    def get_stats(self) -> Dict[str, Any]: ...


class RuleDecisionSource:
    """Deterministic rule ladder; the first matching rule wins."""

    def __init__(self, config: AgentConfig, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng or random.Random()
        self.decisions_made = 0

    async def decide(self, snapshot: AgentSnapshot) -> Decision:
        return self.evaluate(snapshot)

    def evaluate(self, snapshot: AgentSnapshot) -> Decision:
        """
        Rules (priority order):
          1. balance < floor -> IDLE (too low to act safely)
          2. every Nth cycle (default 7) -> YIELD on balance * yield_rate
          3. every Mth cycle (default 12) with peers -> REBAL
          4. peers and balance > trade threshold -> TRADE to a random peer
          5. otherwise -> IDLE
        """
        cfg = self.config
        balance = snapshot.balance
        self.decisions_made += 1

        if balance < cfg.balance_floor:
            return Decision(action=AgentState.IDLE, reason="Balance too low to act safely")

        if snapshot.cycle_number % cfg.yield_every_cycles == 0:
            return Decision(
                action=AgentState.YIELD,
                reason="Periodic yield cycle",
                amount=balance * cfg.yield_rate,
            )

        if snapshot.cycle_number % cfg.rebalance_every_cycles == 0 and snapshot.peers:
            return Decision(action=AgentState.REBAL, reason="Periodic pool rebalance")

        if snapshot.peers and balance > cfg.trade_threshold:
            peer = self.rng.choice(snapshot.peers)
            cap = min(cfg.max_trade_per_tx, balance * cfg.trade_balance_fraction)
            amount = math.floor(self.rng.random() * cap * AMOUNT_PRECISION) / AMOUNT_PRECISION
            return Decision(
                action=AgentState.TRADE,
                reason="Rule-based trade opportunity",
                target=peer.peer_id,
                amount=amount,
            )

        return Decision(action=AgentState.IDLE, reason="No opportunity found")

    def get_stats(self) -> Dict[str, Any]:
        return {"kind": "rule", "decisions": self.decisions_made}


def parse_decision_response(content: str) -> Decision:
    """
    Parse a collaborator response into an (unvalidated) inference Decision.

    Tolerates code fences and prose around the JSON object.

    Raises:
        InferenceError: no JSON object, invalid JSON, or wrong shape
    """
    if not content or not content.strip():
        raise InferenceError("Empty inference response")

    start = content.find("{")
    if start < 0:
        raise InferenceError("No JSON found in inference response")

    try:
        data, _ = _DECODER.raw_decode(content, start)
    except json.JSONDecodeError as e:
        raise InferenceError(f"Parse error: {e}") from e

    if not isinstance(data, dict):
        raise InferenceError("Inference response is not a JSON object")

    data.pop("source", None)
    data.pop("fallback_reason", None)
    try:
        return Decision.model_validate({**data, "source": "inference"})
    except ValidationError as e:
        raise InferenceError(f"Malformed decision: {e.error_count()} validation errors") from e


class InferenceDecisionSource:
    """
    Decision source backed by an external reasoning collaborator.

    Falls back transparently to the composed rule source on missing
    credentials, errors, timeouts, malformed responses or an open circuit.
    decide() never raises.
    """

    def __init__(
        self,
        config: AgentConfig,
        client: Optional[InferenceClient],
        fallback: Optional[RuleDecisionSource] = None,
        breaker: Optional[CircuitBreaker] = None,
        on_fallback: Optional[FallbackHook] = None,
        model_name: Optional[str] = None,
    ):
        self.config = config
        self.client = client
        self.fallback = fallback or RuleDecisionSource(config)
        self.breaker = breaker or CircuitBreaker(
            service="inference",
            fail_threshold=config.circuit_breaker_fail_threshold,
            cooldown_sec=config.circuit_breaker_cooldown_sec,
        )
        self.on_fallback = on_fallback
        self.model_name = model_name or config.inference_model
        self.timeout_seconds = config.inference_timeout_seconds

        self.call_count = 0
        self.fail_count = 0
        self.fallback_count = 0
        self.last_decision: Optional[Decision] = None

    async def decide(self, snapshot: AgentSnapshot) -> Decision:
        if self.client is None:
            decision = self._fall_back(snapshot, "no inference collaborator configured")
            self.last_decision = decision
            return decision

        try:
            await self.breaker.acquire()
        except CircuitBreakerOpen as e:
            decision = self._fall_back(snapshot, str(e))
            self.last_decision = decision
            return decision

        self.call_count += 1
        try:
            content = await asyncio.wait_for(
                self.client.infer(snapshot.to_request_json()),
                timeout=self.timeout_seconds,
            )
            decision = parse_decision_response(content)
        except asyncio.TimeoutError:
            self.fail_count += 1
            await self.breaker.record_failure(InferenceError("timeout"))
            decision = self._fall_back(snapshot, f"inference timed out after {self.timeout_seconds}s")
        except Exception as e:
            self.fail_count += 1
            await self.breaker.record_failure(e)
            decision = self._fall_back(snapshot, f"{type(e).__name__}: {e}")
        else:
            await self.breaker.record_success()
            logger.info(
                f"[{snapshot.agent_id}] inference decision: {decision.action} "
                f"| reason: \"{decision.reason}\""
            )

        self.last_decision = decision
        return decision

    def _fall_back(self, snapshot: AgentSnapshot, error: str) -> Decision:
        self.fallback_count += 1
        logger.warning(
            f"[{snapshot.agent_id}] inference unavailable ({error}) - using rule-based fallback"
        )
        decision = self.fallback.evaluate(snapshot).model_copy(update={"fallback_reason": error})
        if self.on_fallback is not None:
            try:
                self.on_fallback(snapshot, error)
            except Exception as e:
                logger.error(f"Fallback hook failed: {e}")
        return decision

    def get_stats(self) -> Dict[str, Any]:
        return {
            "kind": "inference",
            "model": self.model_name,
            "calls": self.call_count,
            "failures": self.fail_count,
            "fallbacks": self.fallback_count,
            "circuit": self.breaker.get_state_info(),
            "last_decision": self.last_decision.model_dump() if self.last_decision else None,
        }

"""
SafetyValidator - Deterministic gatekeeper.

Purpose: clamp or veto a proposed Decision before execution.
This is the "hard wall" between any decision source (rules or inference) and
the wallet. It is the single enforcement point; it does not care where the
decision came from.

Rules enforced, in order:
- unknown action -> IDLE
- balance already below balance_floor -> IDLE, whatever the action
- TRADE: invalid amount -> IDLE
- TRADE: amount > max_trade_per_tx -> clamp to the cap
- TRADE: balance - amount < balance_floor -> IDLE
- TRADE: target not among known peers -> IDLE
- YIELD: amount is always balance * yield_rate, whatever was proposed
- REBAL: no peers -> IDLE
"""
import logging
import math
from typing import Iterable, List, Optional

from .schemas import AgentState, Decision, ValidatedDecision
from ..config import AgentConfig

logger = logging.getLogger("agent_wallets.agents.safety")


def _is_valid_amount(amount: Optional[float]) -> bool:
    return amount is not None and math.isfinite(amount)


class SafetyValidator:
    """Pure validation; identical inputs always yield identical output."""

    def validate(
        self,
        decision: Decision,
        balance: float,
        config: AgentConfig,
        peer_ids: Iterable[str] = (),
    ) -> ValidatedDecision:
        """
        Validate a decision against the hard invariants.

        Args:
            decision: Raw decision from any DecisionSource
            balance: Agent balance the decision was made against
            config: Spend cap, floor and yield settings
            peer_ids: Identifiers of the peers a TRADE may target

        Returns:
            ValidatedDecision with a new (possibly clamped or vetoed) Decision
        """
        known_peers = list(peer_ids)
        notes: List[str] = []

        if not decision.is_known_action:
            return self._veto(decision, "invalid action", notes)

        action = AgentState(decision.action)

        if action != AgentState.IDLE and balance < config.balance_floor:
            return self._veto(decision, "balance below floor", notes)

        if action == AgentState.TRADE:
            amount = decision.amount
            if not _is_valid_amount(amount) or amount <= 0:
                return self._veto(decision, "invalid trade amount", notes)

            if amount > config.max_trade_per_tx:
                notes.append(f"Spend cap: {amount:.6f} to {config.max_trade_per_tx:.6f}")
                amount = config.max_trade_per_tx

            if balance - amount < config.balance_floor:
                return self._veto(decision, "would breach balance floor", notes)

            if not decision.target or decision.target not in known_peers:
                return self._veto(decision, "unknown trade target", notes)

            final = decision.model_copy(update={"amount": amount})
            return ValidatedDecision(original=decision, decision=final, notes=notes)

        if action == AgentState.YIELD:
            amount = balance * config.yield_rate
            if decision.amount is None or decision.amount != amount:
                notes.append(f"Yield amount set to {amount:.6f} ({config.yield_rate} of balance)")
            final = decision.model_copy(update={"amount": amount, "target": None})
            return ValidatedDecision(original=decision, decision=final, notes=notes)

        if action == AgentState.REBAL:
            if not known_peers:
                return self._veto(decision, "no peers to rebalance", notes)
            final = decision.model_copy(update={"amount": None, "target": None})
            return ValidatedDecision(original=decision, decision=final, notes=notes)

        final = decision.model_copy(update={"amount": None, "target": None})
        return ValidatedDecision(original=decision, decision=final, notes=notes)

    def _veto(self, decision: Decision, reason: str, notes: List[str]) -> ValidatedDecision:
        logger.warning(f"SAFETY VETO ({decision.source}): {decision.action} -> IDLE: {reason}")
        idle = Decision(
            action=AgentState.IDLE.value,
            reason=reason,
            source=decision.source,
            fallback_reason=decision.fallback_reason,
        )
        return ValidatedDecision(
            original=decision,
            decision=idle,
            notes=notes + [f"Vetoed: {reason}"],
            vetoed=True,
        )

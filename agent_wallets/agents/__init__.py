"""
Agent decision system - one autonomous agent per wallet.

Components (in cycle order):
1. DecisionSource - RuleDecisionSource (deterministic ladder) or
   InferenceDecisionSource (external model, falls back to rules)
2. SafetyValidator - Clamp or veto every decision against hard limits
3. ActionExecutor - Trade, yield or rebalance through the protocol client
4. EventChannel - Publish decision/action/error/fallback events
5. AuditTrail - Append every event to JSONL

The AgentOrchestrator drives the cycle on a fixed interval.
"""

from .schemas import (
    AgentState,
    AgentSnapshot,
    PeerBalance,
    Decision,
    ValidatedDecision,
    AgentRuntimeState,
    AgentStats,
    ActionOutcome,
    DecisionEvent,
    ActionEvent,
    ErrorEvent,
    FallbackEvent,
)

__all__ = [
    "AgentState",
    "AgentSnapshot",
    "PeerBalance",
    "Decision",
    "ValidatedDecision",
    "AgentRuntimeState",
    "AgentStats",
    "ActionOutcome",
    "DecisionEvent",
    "ActionEvent",
    "ErrorEvent",
    "FallbackEvent",
]

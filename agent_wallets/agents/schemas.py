"""
Pydantic schemas for the agent decision system.
"""
from enum import Enum
from typing import Optional, List, Literal, Any, Dict
from datetime import datetime
from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


class AgentState(str, Enum):
    """Agent FSM states; also the four decision actions."""
    IDLE = "IDLE"
    TRADE = "TRADE"
    YIELD = "YIELD"
    REBAL = "REBAL"


KNOWN_ACTIONS = frozenset(state.value for state in AgentState)

DecisionSourceTag = Literal["rule", "inference"]


class PeerBalance(BaseModel):
    """A peer as seen in one snapshot; balance is None when the read failed."""
    peer_id: str
    balance: Optional[float] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True


class AgentSnapshot(BaseModel):
    """Read-only state bundle a DecisionSource consumes for one cycle."""
    agent_id: str
    balance: float = Field(ge=0.0)
    cycle_number: int = Field(ge=1)
    trade_count: int = 0
    total_volume: float = 0.0
    peers: List[PeerBalance] = Field(default_factory=list)
    max_trade_per_tx: float

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True

    @property
    def peer_ids(self) -> List[str]:
        return [p.peer_id for p in self.peers]

    def to_request_json(self) -> str:
        """Serialize for an inference request (camelCase keys)."""
        return self.model_dump_json(by_alias=True, indent=2)


class Decision(BaseModel):
    """
    A proposed action for one cycle.

    `action` is deliberately a plain string: output from an external reasoning
    collaborator is untrusted and may name an unknown action. The SafetyValidator
    maps anything outside AgentState to IDLE.
    """
    action: str
    reason: str = ""
    source: DecisionSourceTag = "rule"
    target: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("target", "tradeTarget", "trade_target"),
    )
    amount: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("amount", "tradeAmount", "trade_amount"),
    )
    fallback_reason: Optional[str] = Field(
        default=None,
        description="Why an inference-configured source fell back to rules",
    )

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v: Any) -> str:
        if not isinstance(v, str):
            raise ValueError("action must be a string")
        return v.strip().upper()

    @field_validator("reason", mode="before")
    @classmethod
    def coerce_reason(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @property
    def is_known_action(self) -> bool:
        return self.action in KNOWN_ACTIONS


class ValidatedDecision(BaseModel):
    """Output from the SafetyValidator."""
    original: Decision
    decision: Decision = Field(description="Clamped or vetoed copy; never the original object")
    notes: List[str] = Field(default_factory=list)
    vetoed: bool = False

    @property
    def action(self) -> AgentState:
        return AgentState(self.decision.action)


class AgentRuntimeState(BaseModel):
    """Per-agent mutable counters, owned by exactly one AgentOrchestrator."""
    state: AgentState = AgentState.IDLE
    cycle_count: int = 0
    trade_count: int = 0
    total_volume: float = 0.0
    running: bool = False


class AgentStats(BaseModel):
    """Read-only stats view for harnesses and observers."""
    agent_id: str
    wallet_id: Optional[str] = None
    state: AgentState
    cycles: int
    trades: int
    volume: float
    running: bool
    decision_source: Dict[str, Any] = Field(default_factory=dict)


class ActionOutcome(BaseModel):
    """Result from the ActionExecutor."""
    action: AgentState
    amount: Optional[float] = None
    target: Optional[str] = None
    receipt: Optional[str] = None
    target_balance: Optional[float] = None
    source: DecisionSourceTag = "rule"
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def performed(self) -> bool:
        return self.action != AgentState.IDLE


class AgentEvent(BaseModel):
    """Base for events published on the EventChannel."""
    agent_id: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DecisionEvent(AgentEvent):
    type: Literal["decision"] = "decision"
    cycle: int
    balance: float
    prev_state: AgentState
    next_state: AgentState
    source: DecisionSourceTag
    reason: str = ""


class ActionEvent(AgentEvent):
    type: Literal["action"] = "action"
    action: AgentState
    amount: Optional[float] = None
    target: Optional[str] = None
    receipt: Optional[str] = None
    target_balance: Optional[float] = None
    source: DecisionSourceTag = "rule"
    reason: Optional[str] = None


class ErrorEvent(AgentEvent):
    type: Literal["error"] = "error"
    state: AgentState
    error: str


class FallbackEvent(AgentEvent):
    type: Literal["fallback"] = "fallback"
    cycle: int
    error: str

"""
Configuration management with safety latches for autonomous agents.
"""
import os
from dataclasses import dataclass
from enum import Enum


class DecisionSourceKind(str, Enum):
    RULE = "rule"
    INFERENCE = "inference"


class InferenceBackend(str, Enum):
    OPENAI = "openai"
    HTTP = "http"


@dataclass
class AgentConfig:
    max_trade_per_tx: float = 0.01
    balance_floor: float = 0.003
    trade_threshold: float = 0.02
    trade_balance_fraction: float = 0.1
    yield_rate: float = 0.001
    yield_every_cycles: int = 7
    rebalance_every_cycles: int = 12

    decision_interval_seconds: float = 15.0
    decision_source: DecisionSourceKind = DecisionSourceKind.RULE

    inference_backend: InferenceBackend = InferenceBackend.OPENAI
    inference_model: str = "gpt-4o-mini"
    inference_timeout_seconds: float = 15.0
    openai_api_key: str = ""
    inference_url: str = ""
    inference_api_key: str = ""

    circuit_breaker_fail_threshold: int = 5
    circuit_breaker_cooldown_sec: int = 60

    initial_balance: float = 1.0

    log_level: str = "INFO"
    log_dir: str = "agent_wallets/logs"
    audit_enabled: bool = True

    def __post_init__(self):
        self._validate_safety()

    def _validate_safety(self):
        """Ensure spend limits and schedules are sane before any agent starts."""
        if self.max_trade_per_tx <= 0:
            raise ValueError("CONFIG: max_trade_per_tx must be positive")
        if self.balance_floor < 0:
            raise ValueError("CONFIG: balance_floor cannot be negative")
        if self.trade_threshold < self.balance_floor:
            raise ValueError(
                "CONFIG: trade_threshold must not be below balance_floor "
                f"({self.trade_threshold} < {self.balance_floor})"
            )
        if not 0 < self.trade_balance_fraction <= 1:
            raise ValueError("CONFIG: trade_balance_fraction must be in (0, 1]")
        if self.yield_rate < 0:
            raise ValueError("CONFIG: yield_rate cannot be negative")
        if self.yield_every_cycles < 1 or self.rebalance_every_cycles < 1:
            raise ValueError("CONFIG: cycle periods must be at least 1")
        if self.decision_interval_seconds <= 0:
            raise ValueError("CONFIG: decision_interval_seconds must be positive")
        if self.inference_timeout_seconds <= 0:
            raise ValueError("CONFIG: inference_timeout_seconds must be positive")

    def uses_inference(self) -> bool:
        return self.decision_source == DecisionSourceKind.INFERENCE

    def get_limits_description(self) -> str:
        """Get human-readable description of the spend limits."""
        return (
            f"max {self.max_trade_per_tx} per tx, "
            f"floor {self.balance_floor}, "
            f"trade above {self.trade_threshold}"
        )


def _get_bool(key: str, default: str) -> bool:
    return os.getenv(key, default).lower() == "true"


def load_config() -> AgentConfig:
    """Load configuration from environment variables."""
    source_str = os.getenv("AGENT_DECISION_SOURCE", "rule").lower()
    try:
        decision_source = DecisionSourceKind(source_str)
    except ValueError:
        decision_source = DecisionSourceKind.RULE

    backend_str = os.getenv("INFERENCE_BACKEND", "openai").lower()
    try:
        inference_backend = InferenceBackend(backend_str)
    except ValueError:
        inference_backend = InferenceBackend.OPENAI

    interval_ms = float(os.getenv("AGENT_DECISION_INTERVAL_MS", "15000"))

    return AgentConfig(
        max_trade_per_tx=float(os.getenv("AGENT_MAX_TRADE_PER_TX", "0.01")),
        balance_floor=float(os.getenv("AGENT_BALANCE_FLOOR", "0.003")),
        trade_threshold=float(os.getenv("AGENT_TRADE_THRESHOLD", "0.02")),
        trade_balance_fraction=float(os.getenv("AGENT_TRADE_BALANCE_FRACTION", "0.1")),
        yield_rate=float(os.getenv("AGENT_YIELD_RATE", "0.001")),
        yield_every_cycles=int(os.getenv("AGENT_YIELD_EVERY", "7")),
        rebalance_every_cycles=int(os.getenv("AGENT_REBALANCE_EVERY", "12")),
        decision_interval_seconds=interval_ms / 1000.0,
        decision_source=decision_source,
        inference_backend=inference_backend,
        inference_model=os.getenv("INFERENCE_MODEL", "gpt-4o-mini"),
        inference_timeout_seconds=float(os.getenv("INFERENCE_TIMEOUT_SECONDS", "15")),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        inference_url=os.getenv("INFERENCE_URL", ""),
        inference_api_key=os.getenv("INFERENCE_API_KEY", ""),
        circuit_breaker_fail_threshold=int(os.getenv("CIRCUIT_BREAKER_FAIL_THRESHOLD", "5")),
        circuit_breaker_cooldown_sec=int(os.getenv("CIRCUIT_BREAKER_COOLDOWN_SEC", "60")),
        initial_balance=float(os.getenv("AGENT_INITIAL_BALANCE", "1.0")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR", "agent_wallets/logs"),
        audit_enabled=_get_bool("AUDIT_ENABLED", "true"),
    )

"""
AuditTrail - Logging and audit trail for agent events.

Purpose: record every decision, action, error and fallback as one JSON line,
so a run can be reviewed after the fact.
"""
import logging
import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .events import ALL_EVENTS, EventChannel, Subscription
from .schemas import AgentEvent
from ..config import AgentConfig

logger = logging.getLogger("agent_wallets.agents.observability")


class AuditTrail:
    """Appends all published events to daily JSONL files."""

    def __init__(self, config: AgentConfig):
        self.config = config
        self.log_dir = Path(config.log_dir)
        self._subscription: Optional[Subscription] = None
        self._ensure_log_dir()

    def _ensure_log_dir(self):
        """Ensure log directories exist."""
        (self.log_dir / "events").mkdir(parents=True, exist_ok=True)

    def _events_file(self, when: Optional[datetime] = None) -> Path:
        date_str = (when or datetime.utcnow()).strftime("%Y%m%d")
        return self.log_dir / "events" / f"events_{date_str}.jsonl"

    def attach(self, channel: EventChannel) -> Subscription:
        """Subscribe to every event type on a channel."""
        self._subscription = channel.subscribe(ALL_EVENTS, self.log_event)
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def log_event(self, event: AgentEvent) -> None:
        """Append one event record."""
        record = event.to_payload()
        try:
            with open(self._events_file(event.timestamp), "a") as f:
                f.write(json.dumps(record, default=str) + "\n")
        except Exception as e:
            logger.error(f"Failed to log event: {e}")

    def get_recent_events(self, limit: int = 50, event_type: Optional[str] = None) -> List[dict]:
        """Get the most recent events from today's file."""
        events_file = self._events_file()
        if not events_file.exists():
            return []

        events = []
        try:
            with open(events_file, "r") as f:
                for line in f:
                    if not line.strip():
                        continue
                    record = json.loads(line)
                    if event_type is None or record.get("type") == event_type:
                        events.append(record)
        except Exception as e:
            logger.error(f"Failed to read events: {e}")

        return events[-limit:]

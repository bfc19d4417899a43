from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class Event:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0

    def to_dict(self) -> dict:
        return {"name": self.name, "args": dict(self.args), "timestamp": self.timestamp}


class EventLog:
    """Append-only audit trail shared by the ledger and the engine."""

    _state_fields = ("_events",)

    def __init__(self, clock=None):
        self._clock = clock
        self._events: List[Event] = []

    def emit(self, name: str, **args) -> Event:
        ts = self._clock.now() if self._clock is not None else 0
        event = Event(name=name, args=args, timestamp=ts)
        self._events.append(event)
        logger.info("event_emitted", event_name=name, **args)
        return event

    def filter(self, name: Optional[str] = None) -> List[Event]:
        if name is None:
            return list(self._events)
        return [e for e in self._events if e.name == name]

    def last(self, name: Optional[str] = None) -> Optional[Event]:
        matches = self.filter(name)
        return matches[-1] if matches else None

    def __iter__(self) -> Iterator[Event]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)

    # ── Rollback support (see runtime.atomic) ──
    def _snapshot(self):
        return len(self._events)

    def _restore(self, snapshot) -> None:
        del self._events[snapshot:]

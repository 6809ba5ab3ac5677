"""Domain events emitted by the payroll run orchestrator.

The emitter provides:
- Handler registration with type filtering
- Error isolation (handler failures don't break other handlers)
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    run_id: str

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass(frozen=True)
class EmployeeProcessed(DomainEvent):
    """One per employee work unit, success or not."""

    employee_id: str
    success: bool
    error_kind: str | None = None
    error: str | None = None
    payslip_id: str | None = None
    occurred_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class PayrollRunStatusChanged(DomainEvent):
    from_status: str | None
    to_status: str
    occurred_at: datetime = field(default_factory=_utcnow)


E = TypeVar("E", bound=DomainEvent)
EventHandler = Callable[[DomainEvent], None]


@dataclass
class _Registration:
    handler: EventHandler
    event_types: set[str] | None  # None = all events


class EventEmitter:
    """Synchronous event emitter.

    Usage:
        emitter = EventEmitter()
        emitter.on(EmployeeProcessed, notify_employee)
        emitter.emit(event)
    """

    def __init__(self) -> None:
        self._handlers: list[_Registration] = []

    def on(self, event_type: type[E] | list[type[E]], handler: EventHandler) -> None:
        """Register handler for specific event type(s)."""
        if isinstance(event_type, list):
            types = {t.__name__ for t in event_type}
        else:
            types = {event_type.__name__}
        self._handlers.append(_Registration(handler=handler, event_types=types))

    def on_all(self, handler: EventHandler) -> None:
        """Register handler for all events."""
        self._handlers.append(_Registration(handler=handler, event_types=None))

    def off(self, handler: EventHandler) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    def emit(self, event: DomainEvent) -> list[Exception]:
        """Emit an event to all matching handlers.

        Returns list of any exceptions raised by handlers.
        """
        errors: list[Exception] = []
        for reg in self._handlers:
            if reg.event_types and event.event_type not in reg.event_types:
                continue
            try:
                reg.handler(event)
            except Exception as e:
                logger.exception(
                    "Handler %s failed for event %s", reg.handler, event.event_type
                )
                errors.append(e)
        return errors

"""
Domain events emitted after successful mutations.

Services record events on the session (`record`); the desk publishes them only
once the transaction has committed, so subscribers never see a change that was
rolled back.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, List, Optional, Type

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_SESSION_KEY = "pending_events"


@dataclass(frozen=True)
class DomainEvent:
    pass


@dataclass(frozen=True)
class CustomerChanged(DomainEvent):
    customer_id: str


@dataclass(frozen=True)
class OrderChanged(DomainEvent):
    order_id: str
    run_id: Optional[str] = None
    deleted: bool = False


@dataclass(frozen=True)
class RunChanged(DomainEvent):
    run_id: str
    removed: bool = False


@dataclass(frozen=True)
class RunStatusChanged(DomainEvent):
    run_id: str
    old_status: str
    new_status: str


@dataclass(frozen=True)
class ManifestGenerated(DomainEvent):
    run_id: str
    manifest_id: str
    version: int
    superseded_id: Optional[str] = None


Handler = Callable[[DomainEvent], None]


class EventBus:
    """Synchronous publish/subscribe by event class (subclasses included)."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[DomainEvent], List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type[DomainEvent], handler: Handler) -> Callable[[], None]:
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[event_type]:
                self._handlers[event_type].remove(handler)

        return unsubscribe

    def publish(self, event: DomainEvent) -> None:
        for event_type, handlers in list(self._handlers.items()):
            if isinstance(event, event_type):
                for handler in list(handlers):
                    handler(event)

    def publish_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            logger.debug("Publishing %s", event)
            self.publish(event)


def record(session: Session, event: DomainEvent) -> None:
    session.info.setdefault(_SESSION_KEY, []).append(event)


def drain(session: Session) -> List[DomainEvent]:
    return session.info.pop(_SESSION_KEY, [])


__all__ = [
    "CustomerChanged",
    "DomainEvent",
    "EventBus",
    "ManifestGenerated",
    "OrderChanged",
    "RunChanged",
    "RunStatusChanged",
    "drain",
    "record",
]

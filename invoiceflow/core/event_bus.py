"""
Invoiceflow Event Bus

Domain events emitted after each successful mutation. Anything outside
the workflow core (realtime push, webhooks, analytics) subscribes here
instead of being called from the services directly.
"""

import logging
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import uuid

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Events published by the workflow services."""

    # Invoice lifecycle
    INVOICE_CREATED = "invoice.created"
    INVOICE_ROUTED = "invoice.routed"
    INVOICE_AUTO_APPROVED = "invoice.auto_approved"
    INVOICE_APPROVED = "invoice.approved"
    INVOICE_REJECTED = "invoice.rejected"
    INVOICE_UPDATED = "invoice.updated"
    INVOICE_DELETED = "invoice.deleted"

    # Policy
    APPROVAL_RULE_CREATED = "approval_rule.created"
    APPROVAL_RULE_UPDATED = "approval_rule.updated"
    APPROVAL_RULE_DELETED = "approval_rule.deleted"
    COMPANY_UPDATED = "company.updated"

    # Users
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DEACTIVATED = "user.deactivated"


@dataclass
class Event:
    """An event in the system."""
    type: EventType
    data: Dict[str, Any]
    company_id: str
    user_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "type": self.type.value,
            "data": self.data,
            "company_id": self.company_id,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
        }


class EventBus:
    """
    In-process pub/sub.

    Handlers run synchronously in publish order. A failing handler is
    logged and never affects the publisher or other handlers.
    """

    def __init__(self, max_history: int = 1000):
        self._subscribers: Dict[EventType, List[Callable[[Event], Any]]] = {}
        self._event_history: List[Event] = []
        self._max_history = max_history

    def subscribe(self, event_type: EventType, handler: Callable[[Event], Any]):
        """Subscribe to an event type."""
        self._subscribers.setdefault(event_type, []).append(handler)
        logger.debug("Subscribed %s to %s", getattr(handler, "__name__", handler), event_type.value)

    def unsubscribe(self, event_type: EventType, handler: Callable[[Event], Any]):
        """Unsubscribe from an event type."""
        if event_type in self._subscribers:
            self._subscribers[event_type] = [
                h for h in self._subscribers[event_type] if h != handler
            ]

    def publish(self, event: Event) -> None:
        logger.debug("Event: %s | company=%s", event.type.value, event.company_id)

        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

        for handler in list(self._subscribers.get(event.type, [])):
            try:
                handler(event)
            except Exception as exc:
                logger.error(
                    "Handler %s failed for %s: %s",
                    getattr(handler, "__name__", handler),
                    event.type.value,
                    exc,
                )

    def emit(
        self,
        event_type: EventType,
        company_id: str,
        data: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> Event:
        event = Event(type=event_type, data=data, company_id=company_id, user_id=user_id)
        self.publish(event)
        return event

    def get_history(
        self,
        company_id: Optional[str] = None,
        event_type: Optional[EventType] = None,
        limit: int = 100,
    ) -> List[Event]:
        """Get event history."""
        events = self._event_history

        if company_id:
            events = [e for e in events if e.company_id == company_id]

        if event_type:
            events = [e for e in events if e.type == event_type]

        return events[-limit:]

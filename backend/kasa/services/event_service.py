# Overview: Outbound event notifications for reporting/dashboard consumers.

"""
Event invariants

- Fire-and-forget: publishers never wait for or expect an acknowledgement.
- OutboxPublisher writes inside the caller's DB transaction; it never commits.
- Payload keys are camelCase; dashboard consumers read them by name.
"""

from __future__ import annotations

from typing import Protocol

from ..extensions import db
from ..models import OutboxEvent
from kasa.time_utils import utcnow

EVENT_REGISTER_OPENED = "cashRegisterOpened"
EVENT_REGISTER_CLOSED = "cashRegisterClosed"
EVENT_SALE_COMPLETED = "saleCompleted"
EVENT_SALE_CANCELLED = "saleCancelled"
EVENT_SALE_REFUNDED = "saleRefunded"


class EventPublisher(Protocol):
    def publish(self, name: str, payload: dict) -> None:
        ...


class OutboxPublisher:
    """Appends events to the outbox table within the current session."""

    def publish(self, name: str, payload: dict) -> None:
        event = OutboxEvent(name=name, payload=dict(payload), created_at=utcnow())
        db.session.add(event)
        db.session.flush()


def list_events(name: str | None = None, after_id: int | None = None, limit: int = 100) -> list[OutboxEvent]:
    """Read outbox events in publication order."""
    query = db.session.query(OutboxEvent)
    if name:
        query = query.filter(OutboxEvent.name == name)
    if after_id is not None:
        query = query.filter(OutboxEvent.id > after_id)
    return query.order_by(OutboxEvent.id).limit(limit).all()

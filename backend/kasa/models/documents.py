from __future__ import annotations

from ..extensions import db
from kasa.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-day document sequences.

    Receipt numbers restart every calendar day (F{YYYYMMDD}{seq}); one row
    per (document_type, day_key) holds the next number to hand out.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "day_key", name="uq_doc_sequences_type_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    day_key = db.Column(db.String(8), nullable=False)  # YYYYMMDD
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "day_key": self.day_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class OutboxEvent(db.Model):
    """
    Outbound notification for reporting/dashboard consumers.

    Written in the same DB transaction as the domain change it describes, so
    a rolled-back settlement never leaves a published event behind.
    Consumers read in id order; nothing acknowledges back.
    """
    __tablename__ = "outbox_events"
    __table_args__ = (
        db.Index("ix_outbox_events_name_created", "name", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, index=True)  # e.g. cashRegisterOpened
    payload = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
        }

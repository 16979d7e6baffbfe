from __future__ import annotations

from ..extensions import db
from kasa.time_utils import to_utc_z


CREDIT_DEBT = "debt"
CREDIT_PAYMENT = "payment"

CREDIT_STATUS_ACTIVE = "active"
CREDIT_STATUS_OVERDUE = "overdue"
CREDIT_STATUS_PAID = "paid"


class Customer(db.Model):
    """
    Customer with a store credit ("veresiye") account.

    INVARIANT: current_debt_cents + new debt <= credit_limit_cents before any
    debt is accepted; current_debt_cents never goes below zero.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=False, default="")
    address = db.Column(db.String(255), nullable=True)
    tax_number = db.Column(db.String(32), nullable=True)
    note = db.Column(db.Text, nullable=True)

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    current_debt_cents = db.Column(db.Integer, nullable=False, default=0)

    # Customers are never hard-deleted while credit history references them
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_credit_cents(self) -> int:
        return max(0, (self.credit_limit_cents or 0) - (self.current_debt_cents or 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "tax_number": self.tax_number,
            "note": self.note,
            "credit_limit_cents": self.credit_limit_cents,
            "current_debt_cents": self.current_debt_cents,
            "available_credit_cents": self.available_credit_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class CreditTransaction(db.Model):
    """
    Append-only customer credit movement.

    TRANSACTION TYPES:
    - debt: goods taken on credit (raises current debt)
    - payment: money collected against the account (lowers current debt)

    Status (active/overdue/paid) is not stored; it is derived when read so it
    can never drift from the calendar. See credit_service.derive_statuses.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.Index("ix_credit_txns_customer_date", "customer_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)  # debt, payment
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")

    date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    related_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    customer = db.relationship("Customer", backref=db.backref("credit_transactions", lazy=True))

    def to_dict(self, status: str | None = None) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "date": to_utc_z(self.date),
            "due_date": to_utc_z(self.due_date) if self.due_date else None,
            "related_sale_id": self.related_sale_id,
            "status": status,
        }

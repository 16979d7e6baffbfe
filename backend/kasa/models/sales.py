from __future__ import annotations

from ..extensions import db
from kasa.time_utils import to_utc_z


SALE_COMPLETED = "completed"
SALE_CANCELLED = "cancelled"
SALE_REFUNDED = "refunded"


class Sale(db.Model):
    """
    Completed sale document.

    Created only by the settlement coordinator once every allocation of the
    payment plan succeeded. Immutable afterwards except for the status and
    the cancel/refund audit fields.

    TOTALS (cents):
    - subtotal_cents + tax_cents == original_total_cents (pre discount)
    - total_cents is the discounted figure actually charged
    - cash/card/credit amounts attribute total_cents to tenders
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("receipt_no", name="uq_sales_receipt_no"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_no = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    original_total_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    # Discount descriptor
    discount_type = db.Column(db.String(16), nullable=True)  # percentage, amount
    discount_value = db.Column(db.Numeric(12, 2), nullable=True)

    # Payment descriptor
    payment_method = db.Column(db.String(16), nullable=False, index=True)  # cash, card, credit, cash_terminal, mixed
    split_type = db.Column(db.String(16), nullable=True)  # product, equal
    cash_received_cents = db.Column(db.Integer, nullable=True)
    change_cents = db.Column(db.Integer, nullable=False, default=0)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Tender attribution used by register compensation and reporting
    cash_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    card_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    register_session_id = db.Column(db.Integer, db.ForeignKey("cash_register_sessions.id"), nullable=True, index=True)

    # Cancel / refund audit trail
    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def discount(self) -> dict | None:
        if not self.discount_type:
            return None
        return {
            "type": self.discount_type,
            "value": float(self.discount_value) if self.discount_value is not None else 0,
            "discounted_total_cents": self.total_cents,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_no": self.receipt_no,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "original_total_cents": self.original_total_cents,
            "total_cents": self.total_cents,
            "discount": self.discount,
            "payment_method": self.payment_method,
            "split_type": self.split_type,
            "cash_received_cents": self.cash_received_cents,
            "change_cents": self.change_cents,
            "customer_id": self.customer_id,
            "cash_amount_cents": self.cash_amount_cents,
            "card_amount_cents": self.card_amount_cents,
            "credit_amount_cents": self.credit_amount_cents,
            "register_session_id": self.register_session_id,
            "cancel_reason": self.cancel_reason,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "refund_reason": self.refund_reason,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
            "allocations": [a.to_dict() for a in self.allocations],
            "version_id": self.version_id,
        }


class SaleLine(db.Model):
    """Line item snapshot (name and prices frozen at the time of sale)."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)  # tax exclusive
    unit_price_with_tax_cents = db.Column(db.Integer, nullable=False)
    tax_rate = db.Column(db.Integer, nullable=False, default=0)  # percent
    line_total_cents = db.Column(db.Integer, nullable=False)  # tax inclusive

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_price_with_tax_cents": self.unit_price_with_tax_cents,
            "tax_rate": self.tax_rate,
            "line_total_cents": self.line_total_cents,
        }


class SaleAllocation(db.Model):
    """
    One accepted payment allocation of a split sale.

    PRODUCT split rows carry product_id + quantity; EQUAL split rows carry the
    participant index. change_cents is per-allocation for product splits and
    always zero for equal splits (change is settled once on the pool).
    """
    __tablename__ = "sale_allocations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    split_type = db.Column(db.String(16), nullable=False)  # product, equal
    method = db.Column(db.String(16), nullable=False)
    product_id = db.Column(db.Integer, nullable=True)
    participant_index = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)  # portion of the total covered
    received_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    sale = db.relationship("Sale", backref=db.backref("allocations", lazy=True, order_by="SaleAllocation.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "split_type": self.split_type,
            "method": self.method,
            "product_id": self.product_id,
            "participant_index": self.participant_index,
            "quantity": self.quantity,
            "amount_cents": self.amount_cents,
            "received_cents": self.received_cents,
            "change_cents": self.change_cents,
            "customer_id": self.customer_id,
        }

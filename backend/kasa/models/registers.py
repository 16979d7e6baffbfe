from __future__ import annotations

from ..extensions import db
from kasa.time_utils import to_utc_z


SESSION_OPEN = "OPEN"
SESSION_CLOSED = "CLOSED"

CASH_DEPOSIT = "DEPOSIT"
CASH_WITHDRAWAL = "WITHDRAWAL"

# Credit collections are deposits carrying this description prefix
CREDIT_COLLECTION_TAG = "Veresiye collection"


class CashRegisterSession(db.Model):
    """
    One register's working day, from opening float to end-of-day close.

    LIFECYCLE:
    - OPEN: sales, deposits, withdrawals, collections and counting allowed
    - CLOSED: sealed history, every mutation is rejected

    Sales are aggregated into cash/card totals here; itemized detail lives on
    the sale documents. Card sales never touch the drawer and are excluded
    from the theoretical balance.
    """
    __tablename__ = "cash_register_sessions"
    __table_args__ = (
        db.Index("ix_register_sessions_register_status", "register_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    register_id = db.Column(db.String(32), nullable=False, default="MAIN")

    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)  # OPEN, CLOSED

    # Running totals (all amounts in cents)
    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_sales_total_cents = db.Column(db.Integer, nullable=False, default=0)
    card_sales_total_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_deposit_total_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_withdrawal_total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Set only when an end-of-day count is performed
    counting_amount_cents = db.Column(db.Integer, nullable=True)
    counting_difference_cents = db.Column(db.Integer, nullable=True)  # counted - theoretical

    opening_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closing_date = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_OPEN

    @property
    def theoretical_balance_cents(self) -> int:
        """Cash the drawer should hold: opening + cash sales + deposits - withdrawals."""
        return (self.opening_balance_cents or 0) + self.daily_net_change_cents

    @property
    def daily_net_change_cents(self) -> int:
        """Same movements as the theoretical balance, without the opening float."""
        return (
            (self.cash_sales_total_cents or 0)
            + (self.cash_deposit_total_cents or 0)
            - (self.cash_withdrawal_total_cents or 0)
        )

    @property
    def daily_total_sales_cents(self) -> int:
        """Total reported at close: cash + card sales adjusted by manual movements."""
        return (
            (self.cash_sales_total_cents or 0)
            + (self.card_sales_total_cents or 0)
            + (self.cash_deposit_total_cents or 0)
            - (self.cash_withdrawal_total_cents or 0)
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_id": self.register_id,
            "status": self.status,
            "opening_balance_cents": self.opening_balance_cents,
            "cash_sales_total_cents": self.cash_sales_total_cents,
            "card_sales_total_cents": self.card_sales_total_cents,
            "cash_deposit_total_cents": self.cash_deposit_total_cents,
            "cash_withdrawal_total_cents": self.cash_withdrawal_total_cents,
            "counting_amount_cents": self.counting_amount_cents,
            "counting_difference_cents": self.counting_difference_cents,
            "theoretical_balance_cents": self.theoretical_balance_cents,
            "daily_net_change_cents": self.daily_net_change_cents,
            "daily_total_sales_cents": self.daily_total_sales_cents,
            "opening_date": to_utc_z(self.opening_date),
            "closing_date": to_utc_z(self.closing_date) if self.closing_date else None,
            "version_id": self.version_id,
        }


class CashTransaction(db.Model):
    """
    Append-only manual cash movement within a register session.

    TYPES:
    - DEPOSIT: cash put into the drawer (float top-up, credit collection)
    - WITHDRAWAL: cash taken out (expenses, bank drop, sale reversal)

    IMMUTABLE: Rows are never updated or deleted. Amount is always positive;
    the type carries the sign.
    """
    __tablename__ = "cash_transactions"
    __table_args__ = (
        db.Index("ix_cash_transactions_session_created", "session_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_register_sessions.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)  # DEPOSIT, WITHDRAWAL
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    # Set when the movement compensates a cancelled/refunded sale
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    session = db.relationship(
        "CashRegisterSession",
        backref=db.backref("transactions", lazy=True, order_by="CashTransaction.id"),
    )

    @property
    def is_credit_collection(self) -> bool:
        return self.type == CASH_DEPOSIT and (self.description or "").startswith(CREDIT_COLLECTION_TAG)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "sale_id": self.sale_id,
            "is_credit_collection": self.is_credit_collection,
            "created_at": to_utc_z(self.created_at),
        }

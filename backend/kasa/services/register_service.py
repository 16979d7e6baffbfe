"""
Cash Register Session Service

WHY: Know at any moment how much cash the drawer should hold, and reconcile
it against a physical count at the end of the day.

DESIGN PRINCIPLES:
- One OPEN session per register at a time
- Sessions are immutable once closed (every mutation raises RegisterClosed)
- theoretical balance = opening + cash sales + deposits - withdrawals
- Card sales are tracked but never touch the drawer balance
- The session handle is always passed in by the caller; nothing in the
  settlement path looks up "the open register" on its own
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import CashRegisterSession, CashTransaction, Customer
from ..models.registers import (
    SESSION_OPEN,
    SESSION_CLOSED,
    CASH_DEPOSIT,
    CASH_WITHDRAWAL,
    CREDIT_COLLECTION_TAG,
)
from kasa.time_utils import utcnow
from .concurrency import lock_for_update
from .credit_service import PaymentPosting, post_payment
from .event_service import EventPublisher, OutboxPublisher, EVENT_REGISTER_OPENED, EVENT_REGISTER_CLOSED


class RegisterError(Exception):
    """Raised for register operation errors."""
    kind = "validation"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class AlreadyOpen(RegisterError):
    kind = "business"


class RegisterClosed(RegisterError):
    kind = "business"


class NoActiveSession(RegisterError):
    kind = "business"


class InsufficientCash(RegisterError):
    kind = "business"


class SessionNotFound(RegisterError):
    kind = "not_found"


VALID_CASH_TRANSACTION_TYPES = [CASH_DEPOSIT, CASH_WITHDRAWAL]


# =============================================================================
# LIFECYCLE
# =============================================================================

def get_active_session(register_id: str | None = None) -> CashRegisterSession | None:
    """
    The OPEN session of a register, if any.

    Only request handlers call this; they pass the result down explicitly.
    """
    register_id = register_id or current_app.config["DEFAULT_REGISTER_ID"]
    return db.session.query(CashRegisterSession).filter_by(
        register_id=register_id,
        status=SESSION_OPEN,
    ).first()


def open_register(
    opening_balance_cents: int,
    *,
    register_id: str | None = None,
    publisher: EventPublisher | None = None,
) -> CashRegisterSession:
    """
    Open a new session with a starting float.

    Raises:
        AlreadyOpen: if the register already has an OPEN session
        RegisterError: if the opening balance is negative
    """
    if opening_balance_cents < 0:
        raise RegisterError("Opening balance must be >= 0")

    register_id = register_id or current_app.config["DEFAULT_REGISTER_ID"]
    existing = get_active_session(register_id)
    if existing:
        raise AlreadyOpen(
            f"Register {register_id} already has an open session ({existing.id})",
            details={"session_id": existing.id},
        )

    session = CashRegisterSession(
        register_id=register_id,
        status=SESSION_OPEN,
        opening_balance_cents=opening_balance_cents,
        cash_sales_total_cents=0,
        card_sales_total_cents=0,
        cash_deposit_total_cents=0,
        cash_withdrawal_total_cents=0,
        opening_date=utcnow(),
    )
    db.session.add(session)
    db.session.flush()

    (publisher or OutboxPublisher()).publish(EVENT_REGISTER_OPENED, {
        "openingBalance": session.opening_balance_cents,
        "sessionId": session.id,
    })

    db.session.commit()
    return session


def close_register(
    session: CashRegisterSession,
    *,
    publisher: EventPublisher | None = None,
) -> dict:
    """
    Seal the session and publish the end-of-day report.

    Closing without a count is allowed; asking the operator to confirm that
    is the caller's job.

    Returns:
        The cashRegisterClosed payload.

    Raises:
        NoActiveSession: if the session is already CLOSED
    """
    session = _lock_session(session)
    if session.status != SESSION_OPEN:
        raise NoActiveSession(f"Session {session.id} is already closed")

    session.status = SESSION_CLOSED
    session.closing_date = utcnow()

    report = build_close_report(session)
    (publisher or OutboxPublisher()).publish(EVENT_REGISTER_CLOSED, report)

    db.session.commit()
    return report


def build_close_report(session: CashRegisterSession) -> dict:
    """
    End-of-day figures with high-sales / loss-making flags.

    Loss-making means a counted shortfall beyond the tolerance, or a slow day
    on which more cash left the drawer than came in.
    """
    config = current_app.config
    total_sales = session.daily_total_sales_cents
    counting_difference = session.counting_difference_cents or 0

    short_count = counting_difference < -config["LOSS_COUNT_TOLERANCE_CENTS"]
    slow_day = total_sales < config["LOW_SALES_THRESHOLD_CENTS"]
    cash_outflow = session.daily_net_change_cents < 0

    return {
        "sessionId": session.id,
        "totalSales": total_sales,
        "cashSales": session.cash_sales_total_cents,
        "cardSales": session.card_sales_total_cents,
        "countingDifference": counting_difference,
        "theoreticalBalance": session.theoretical_balance_cents,
        "isHighSales": total_sales > config["HIGH_SALES_THRESHOLD_CENTS"],
        "isLossMaking": short_count or (slow_day and cash_outflow),
    }


# =============================================================================
# MUTATIONS WHILE OPEN
# =============================================================================

def record_sale(
    session: CashRegisterSession,
    cash_cents: int,
    card_cents: int,
    *,
    commit: bool = True,
) -> CashRegisterSession:
    """
    Add a sale's cash and card portions to the running totals.

    No CashTransaction is written: the register keeps aggregates, sale
    documents keep the detail.
    """
    if cash_cents < 0 or card_cents < 0:
        raise RegisterError("Sale amounts must be >= 0")

    session = _lock_open_session(session)
    session.cash_sales_total_cents = (session.cash_sales_total_cents or 0) + cash_cents
    session.card_sales_total_cents = (session.card_sales_total_cents or 0) + card_cents

    _finish(commit)
    return session


def add_cash_transaction(
    session: CashRegisterSession,
    transaction_type: str,
    amount_cents: int,
    description: str | None = None,
    *,
    confirmed: bool = False,
    sale_id: int | None = None,
    commit: bool = True,
) -> CashTransaction:
    """
    Append a manual deposit or withdrawal.

    A withdrawal larger than the theoretical balance raises InsufficientCash
    and leaves the session untouched. When ALLOW_CONFIRMED_OVERDRAW is on, a
    caller passing confirmed=True may go below zero.
    """
    if transaction_type not in VALID_CASH_TRANSACTION_TYPES:
        raise RegisterError(
            f"Invalid cash transaction type: {transaction_type}. Must be one of {VALID_CASH_TRANSACTION_TYPES}"
        )
    if amount_cents <= 0:
        raise RegisterError("Cash transaction amount must be positive")

    session = _lock_open_session(session)

    if transaction_type == CASH_WITHDRAWAL and amount_cents > session.theoretical_balance_cents:
        overdraw_allowed = confirmed and current_app.config.get("ALLOW_CONFIRMED_OVERDRAW", False)
        if not overdraw_allowed:
            raise InsufficientCash(
                "Not enough cash in the register",
                details={
                    "requested_cents": amount_cents,
                    "theoretical_balance_cents": session.theoretical_balance_cents,
                },
            )

    txn = CashTransaction(
        session_id=session.id,
        type=transaction_type,
        amount_cents=amount_cents,
        description=description or ("Cash in" if transaction_type == CASH_DEPOSIT else "Cash out"),
        sale_id=sale_id,
        created_at=utcnow(),
    )

    if transaction_type == CASH_DEPOSIT:
        session.cash_deposit_total_cents = (session.cash_deposit_total_cents or 0) + amount_cents
    else:
        session.cash_withdrawal_total_cents = (session.cash_withdrawal_total_cents or 0) + amount_cents

    db.session.add(txn)
    _finish(commit)
    return txn


def save_counting(session: CashRegisterSession, counted_cents: int) -> CashRegisterSession:
    """
    Record a physical count. Calling again overwrites the previous count.

    counting difference = counted - theoretical balance (negative = short).
    """
    if counted_cents < 0:
        raise RegisterError("Counted amount must be >= 0")

    session = _lock_open_session(session)
    session.counting_amount_cents = counted_cents
    session.counting_difference_cents = counted_cents - session.theoretical_balance_cents

    db.session.commit()
    return session


def collect_credit(
    session: CashRegisterSession,
    customer: Customer,
    amount_cents: int,
    description: str | None = None,
) -> tuple[CashTransaction, PaymentPosting]:
    """
    Take a credit ("veresiye") repayment in cash at the till.

    Written as a tagged DEPOSIT plus a credit payment posting, committed
    together so the drawer and the customer account cannot disagree.
    """
    if amount_cents <= 0:
        raise RegisterError("Collection amount must be positive")

    try:
        txn = add_cash_transaction(
            session,
            CASH_DEPOSIT,
            amount_cents,
            f"{CREDIT_COLLECTION_TAG} - {customer.name}",
            commit=False,
        )
        posting = post_payment(
            customer,
            amount_cents,
            description or f"Register collection (session {session.id})",
            commit=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return txn, posting


# =============================================================================
# READS
# =============================================================================

def get_session(session_id: int) -> CashRegisterSession:
    session = db.session.get(CashRegisterSession, session_id)
    if not session:
        raise SessionNotFound(f"Session {session_id} not found")
    return session


def get_session_transactions(session_id: int) -> list[CashTransaction]:
    return db.session.query(CashTransaction).filter_by(
        session_id=session_id
    ).order_by(CashTransaction.created_at, CashTransaction.id).all()


def get_session_details(session: CashRegisterSession) -> dict:
    """Session figures plus its cash transaction log."""
    transactions = get_session_transactions(session.id)
    collections = [t for t in transactions if t.is_credit_collection]
    return {
        "session": session.to_dict(),
        "transactions": [t.to_dict() for t in transactions],
        "credit_collection_total_cents": sum(t.amount_cents for t in collections),
        "is_closed": session.status == SESSION_CLOSED,
    }


def list_sessions(register_id: str | None = None, limit: int = 30) -> list[CashRegisterSession]:
    query = db.session.query(CashRegisterSession)
    if register_id:
        query = query.filter_by(register_id=register_id)
    return query.order_by(CashRegisterSession.opening_date.desc(), CashRegisterSession.id.desc()).limit(limit).all()


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _lock_session(session: CashRegisterSession) -> CashRegisterSession:
    locked = lock_for_update(db.session.query(CashRegisterSession).filter_by(id=session.id)).first()
    if not locked:
        raise SessionNotFound(f"Session {session.id} not found")
    return locked


def _lock_open_session(session: CashRegisterSession | None) -> CashRegisterSession:
    if session is None:
        raise NoActiveSession("No open register session")
    locked = _lock_session(session)
    if locked.status != SESSION_OPEN:
        raise RegisterClosed(f"Register session {locked.id} is closed")
    return locked


def _finish(commit: bool) -> None:
    if commit:
        db.session.commit()
    else:
        db.session.flush()

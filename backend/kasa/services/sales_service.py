# Overview: Sales ledger; receipt numbering, sale persistence, queries and summaries.

"""
Sales Ledger Service

WHY: Completed sales are the audit trail of the till. Every other figure
(register totals, credit debts) must be traceable to a sale document.

DESIGN PRINCIPLES:
- Receipt numbers are F{YYYYMMDD}{seq}, the sequence restarting each day
- add_sale never commits; the settlement coordinator owns the transaction
- Only status and cancel/refund audit fields change after creation
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence, Sale, SaleLine, SaleAllocation
from ..models.sales import SALE_COMPLETED, SALE_CANCELLED, SALE_REFUNDED
from kasa.time_utils import business_day_key, day_bounds, utcnow


class SaleError(Exception):
    """Raised for sales ledger errors."""
    kind = "validation"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleNotFound(SaleError):
    kind = "not_found"


RECEIPT_DOCUMENT_TYPE = "RECEIPT"
RECEIPT_PREFIX = "F"

VALID_SALE_STATUSES = [SALE_COMPLETED, SALE_CANCELLED, SALE_REFUNDED]

# Fields that may change on an existing sale
MUTABLE_SALE_FIELDS = {
    "status",
    "cancel_reason",
    "cancelled_at",
    "refund_reason",
    "refunded_at",
}


# =============================================================================
# RECEIPT NUMBERS
# =============================================================================

def next_receipt_no(now: datetime | None = None) -> str:
    """
    Allocate the next receipt number for the day.

    Runs inside the caller's transaction. A lost insert race on the day's
    first number is resolved inside a savepoint so the settlement's pending
    rows survive.
    """
    now = now or utcnow()
    day_key = business_day_key(now)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == RECEIPT_DOCUMENT_TYPE,
            DocumentSequence.day_key == day_key,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        number = _current_number(day_key) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(
                    document_type=RECEIPT_DOCUMENT_TYPE,
                    day_key=day_key,
                    next_number=2,
                ))
            number = 1
        except IntegrityError:
            db.session.execute(stmt)
            number = _current_number(day_key) - 1

    return f"{RECEIPT_PREFIX}{day_key}{number:03d}"


def _current_number(day_key: str) -> int:
    db.session.flush()
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=RECEIPT_DOCUMENT_TYPE, day_key=day_key)
        .scalar()
    )


# =============================================================================
# WRITES
# =============================================================================

def add_sale(sale: Sale, lines: list[SaleLine], allocations: list[SaleAllocation] | None = None) -> Sale:
    """
    Persist a sale document with its lines and allocation rows (flush only).

    A receipt number is assigned when the sale has none.
    """
    if not lines:
        raise SaleError("A sale needs at least one line")
    if sale.status not in VALID_SALE_STATUSES:
        raise SaleError(f"Invalid sale status: {sale.status}")

    if not sale.receipt_no:
        sale.receipt_no = next_receipt_no(sale.created_at)
    if sale.created_at is None:
        sale.created_at = utcnow()

    db.session.add(sale)
    db.session.flush()

    for line in lines:
        line.sale_id = sale.id
        db.session.add(line)
    for allocation in allocations or []:
        allocation.sale_id = sale.id
        db.session.add(allocation)

    db.session.flush()
    return sale


def update_sale(sale_id: int, *, commit: bool = True, **fields) -> Sale:
    """
    Change the mutable fields of a sale.

    Raises:
        SaleError: if a field outside status/cancel/refund is given
    """
    illegal = sorted(set(fields) - MUTABLE_SALE_FIELDS)
    if illegal:
        raise SaleError(f"Sale fields cannot be changed: {', '.join(illegal)}")
    if "status" in fields and fields["status"] not in VALID_SALE_STATUSES:
        raise SaleError(f"Invalid sale status: {fields['status']}")

    sale = get_sale_by_id(sale_id)
    for key, value in fields.items():
        setattr(sale, key, value)

    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return sale


# =============================================================================
# READS
# =============================================================================

def get_sale_by_id(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found")
    return sale


def get_sale_by_receipt_no(receipt_no: str) -> Sale:
    sale = db.session.query(Sale).filter_by(receipt_no=receipt_no).first()
    if not sale:
        raise SaleNotFound(f"Sale {receipt_no} not found")
    return sale


def get_all_sales(
    *,
    status: str | None = None,
    payment_method: str | None = None,
    customer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[Sale]:
    """Sales newest first, optionally filtered."""
    query = db.session.query(Sale)
    if status:
        query = query.filter(Sale.status == status)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at < end)

    query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_daily_sales(day: date | None = None) -> list[Sale]:
    day = day or utcnow().date()
    start, end = day_bounds(day)
    return get_all_sales(start=start, end=end)


def get_sales_summary(start: datetime | None = None, end: datetime | None = None) -> dict:
    """
    Aggregate completed sales in a window.

    Cancelled and refunded sales are counted separately and excluded from
    the totals.
    """
    query = db.session.query(
        Sale.status,
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
        func.coalesce(func.sum(Sale.cash_amount_cents), 0),
        func.coalesce(func.sum(Sale.card_amount_cents), 0),
        func.coalesce(func.sum(Sale.credit_amount_cents), 0),
        func.coalesce(func.sum(Sale.original_total_cents - Sale.total_cents), 0),
    )
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at < end)

    rows = {row[0]: row for row in query.group_by(Sale.status).all()}
    completed = rows.get(SALE_COMPLETED)

    def _count(status: str) -> int:
        return int(rows[status][1]) if status in rows else 0

    return {
        "sale_count": _count(SALE_COMPLETED),
        "cancelled_count": _count(SALE_CANCELLED),
        "refunded_count": _count(SALE_REFUNDED),
        "total_cents": int(completed[2]) if completed else 0,
        "cash_cents": int(completed[3]) if completed else 0,
        "card_cents": int(completed[4]) if completed else 0,
        "credit_cents": int(completed[5]) if completed else 0,
        "discount_cents": int(completed[6]) if completed else 0,
    }

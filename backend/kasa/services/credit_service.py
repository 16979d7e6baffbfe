# Overview: Customer credit ("veresiye") ledger; limit enforcement and debt/payment postings.

"""
Credit Ledger Service

WHY: Regular customers may take goods on credit up to a per-customer limit
and settle later, at the till or in instalments.

DESIGN PRINCIPLES:
- current_debt + new debt <= credit_limit, checked before every debt posting
- Payments never need a limit check; over-payment is allowed but reported
- current_debt never goes below zero
- Transactions are append-only; status (active/overdue/paid) is derived on read
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Customer, CreditTransaction
from ..models.customers import (
    CREDIT_DEBT,
    CREDIT_PAYMENT,
    CREDIT_STATUS_ACTIVE,
    CREDIT_STATUS_OVERDUE,
    CREDIT_STATUS_PAID,
)
from kasa.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


class CreditError(Exception):
    """Raised for credit ledger errors."""
    kind = "validation"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class CustomerNotFound(CreditError):
    kind = "not_found"


class MissingCustomer(CreditError):
    """Credit was chosen as payment method without selecting a customer."""


class CreditLimitExceeded(CreditError):
    kind = "business"


class CustomerHasOpenDebt(CreditError):
    kind = "business"


@dataclass(frozen=True)
class PaymentPosting:
    transaction: CreditTransaction
    overpaid_cents: int

    @property
    def is_overpayment(self) -> bool:
        return self.overpaid_cents > 0


# =============================================================================
# LIMIT CHECKS
# =============================================================================

def can_extend_credit(customer: Customer, amount_cents: int) -> bool:
    """True when the customer can take amount_cents more debt without passing the limit."""
    return (customer.current_debt_cents or 0) + amount_cents <= (customer.credit_limit_cents or 0)


def ensure_credit_available(customer: Customer, amount_cents: int, *, pending_cents: int = 0) -> None:
    """
    Raise CreditLimitExceeded unless amount_cents fits.

    pending_cents counts debt already promised to the same customer within a
    payment plan that has not been posted yet.
    """
    if not can_extend_credit(customer, amount_cents + pending_cents):
        raise CreditLimitExceeded(
            f"Credit limit exceeded for customer {customer.name}",
            details={
                "customer_id": customer.id,
                "credit_limit_cents": customer.credit_limit_cents,
                "current_debt_cents": customer.current_debt_cents,
                "pending_cents": pending_cents,
                "requested_cents": amount_cents,
            },
        )


# =============================================================================
# POSTINGS
# =============================================================================

def post_debt(
    customer: Customer | int,
    amount_cents: int,
    description: str,
    *,
    due_date: datetime | None = None,
    sale_id: int | None = None,
    commit: bool = True,
) -> CreditTransaction:
    """
    Append a debt transaction and raise the customer's current debt.

    Raises:
        CreditLimitExceeded: if current debt + amount would pass the limit
        CreditError: if amount is not positive
    """
    if amount_cents <= 0:
        raise CreditError("Debt amount must be positive")

    customer = _lock_customer(customer)
    ensure_credit_available(customer, amount_cents)

    txn = CreditTransaction(
        customer_id=customer.id,
        type=CREDIT_DEBT,
        amount_cents=amount_cents,
        description=description or "",
        date=utcnow(),
        due_date=due_date,
        related_sale_id=sale_id,
    )
    customer.current_debt_cents = (customer.current_debt_cents or 0) + amount_cents

    db.session.add(txn)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return txn


def post_payment(
    customer: Customer | int,
    amount_cents: int,
    description: str,
    *,
    commit: bool = True,
) -> PaymentPosting:
    """
    Append a payment transaction and lower the customer's debt (floored at 0).

    Paying more than the current debt is not an error: the excess is reported
    back as overpaid_cents so the operator can hand it back as change.
    """
    if amount_cents <= 0:
        raise CreditError("Payment amount must be positive")

    customer = _lock_customer(customer)
    current = customer.current_debt_cents or 0
    overpaid = max(0, amount_cents - current)

    txn = CreditTransaction(
        customer_id=customer.id,
        type=CREDIT_PAYMENT,
        amount_cents=amount_cents,
        description=description or "",
        date=utcnow(),
    )
    customer.current_debt_cents = max(0, current - amount_cents)

    db.session.add(txn)
    if overpaid:
        current_app.logger.warning(
            "Credit over-payment for customer %s: paid %s cents against %s cents debt",
            customer.id, amount_cents, current,
        )
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return PaymentPosting(transaction=txn, overpaid_cents=overpaid)


def _lock_customer(customer: Customer | int) -> Customer:
    customer_id = customer.id if isinstance(customer, Customer) else customer
    locked = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not locked:
        raise CustomerNotFound(f"Customer {customer_id} not found")
    return locked


# =============================================================================
# STATUS DERIVATION
# =============================================================================

def derive_statuses(transactions: list[CreditTransaction], now: datetime | None = None) -> dict[int, dict]:
    """
    Derive status and unpaid remainder per transaction.

    Payments settle the oldest open debts first. A payment larger than what
    is open at that moment does not carry forward (mirrors the zero floor on
    current_debt). Returns {txn_id: {"status": ..., "outstanding_cents": ...}}.
    """
    now = now or utcnow()
    ordered = sorted(transactions, key=lambda t: (t.date or now, t.id or 0))

    outstanding: dict[int, int] = {}
    open_debts: list[CreditTransaction] = []
    for txn in ordered:
        if txn.type == CREDIT_DEBT:
            outstanding[txn.id] = txn.amount_cents
            open_debts.append(txn)
            continue

        remaining = txn.amount_cents
        while remaining > 0 and open_debts:
            debt = open_debts[0]
            applied = min(remaining, outstanding[debt.id])
            outstanding[debt.id] -= applied
            remaining -= applied
            if outstanding[debt.id] == 0:
                open_debts.pop(0)

    result: dict[int, dict] = {}
    for txn in ordered:
        if txn.type != CREDIT_DEBT:
            result[txn.id] = {"status": CREDIT_STATUS_PAID, "outstanding_cents": 0}
            continue
        left = outstanding[txn.id]
        if left == 0:
            status = CREDIT_STATUS_PAID
        elif txn.due_date is not None and txn.due_date < now:
            status = CREDIT_STATUS_OVERDUE
        else:
            status = CREDIT_STATUS_ACTIVE
        result[txn.id] = {"status": status, "outstanding_cents": left}
    return result


def get_transactions(customer_id: int) -> list[CreditTransaction]:
    """Credit transactions for a customer, newest first."""
    return db.session.query(CreditTransaction).filter_by(
        customer_id=customer_id
    ).order_by(CreditTransaction.date.desc(), CreditTransaction.id.desc()).all()


def get_transactions_with_status(customer_id: int, now: datetime | None = None) -> list[dict]:
    transactions = get_transactions(customer_id)
    statuses = derive_statuses(transactions, now)
    rows = []
    for txn in transactions:
        row = txn.to_dict(status=statuses[txn.id]["status"])
        row["outstanding_cents"] = statuses[txn.id]["outstanding_cents"]
        rows.append(row)
    return rows


def get_customer_summary(customer: Customer, now: datetime | None = None) -> dict:
    """
    Account overview for a customer.

    Returns:
        total_debt_cents, total_overdue_cents, last_transaction_date,
        active_transactions, overdue_transactions
    """
    transactions = get_transactions(customer.id)
    statuses = derive_statuses(transactions, now)

    open_rows = [statuses[t.id] for t in transactions if t.type == CREDIT_DEBT and statuses[t.id]["status"] != CREDIT_STATUS_PAID]
    overdue_rows = [row for row in open_rows if row["status"] == CREDIT_STATUS_OVERDUE]

    return {
        "customer_id": customer.id,
        "total_debt_cents": customer.current_debt_cents,
        "total_overdue_cents": sum(row["outstanding_cents"] for row in overdue_rows),
        "last_transaction_date": transactions[0].date if transactions else None,
        "active_transactions": len(open_rows),
        "overdue_transactions": len(overdue_rows),
    }


def list_overdue_transactions(now: datetime | None = None) -> list[dict]:
    """Every overdue debt across active customers, oldest due date first."""
    now = now or utcnow()
    rows = []
    for customer in get_all_customers():
        transactions = get_transactions(customer.id)
        statuses = derive_statuses(transactions, now)
        for txn in transactions:
            if statuses[txn.id]["status"] == CREDIT_STATUS_OVERDUE:
                row = txn.to_dict(status=CREDIT_STATUS_OVERDUE)
                row["outstanding_cents"] = statuses[txn.id]["outstanding_cents"]
                row["customer_name"] = customer.name
                rows.append(row)
    rows.sort(key=lambda r: r["due_date"] or "")
    return rows


# =============================================================================
# CUSTOMER MANAGEMENT
# =============================================================================

def add_customer(
    name: str,
    phone: str = "",
    credit_limit_cents: int = 0,
    address: str | None = None,
    tax_number: str | None = None,
    note: str | None = None,
) -> Customer:
    """Create a customer with zero debt."""
    if not name or not name.strip():
        raise CreditError("Customer name is required")
    if credit_limit_cents < 0:
        raise CreditError("Credit limit must be >= 0")

    customer = Customer(
        name=name.strip(),
        phone=(phone or "").strip(),
        credit_limit_cents=credit_limit_cents,
        current_debt_cents=0,
        address=address,
        tax_number=tax_number,
        note=note,
        is_active=True,
        created_at=utcnow(),
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(customer_id: int, patch: dict) -> Customer:
    """
    Apply a validated patch. current_debt_cents is never writable here; it
    moves only through postings.
    """
    def _op():
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if not customer or not customer.is_active:
            raise CustomerNotFound(f"Customer {customer_id} not found")
        for key, value in patch.items():
            if key == "current_debt_cents":
                raise CreditError("current_debt_cents cannot be edited directly")
            setattr(customer, key, value)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer or not customer.is_active:
        raise CustomerNotFound(f"Customer {customer_id} not found")
    return customer


def get_all_customers() -> list[Customer]:
    return db.session.query(Customer).filter_by(is_active=True).order_by(Customer.name).all()


def delete_customer(customer_id: int) -> Customer:
    """
    Deactivate a customer.

    Rejected while any debt remains open; credit history stays referenced by
    the (inactive) customer row.
    """
    customer = get_customer(customer_id)
    statuses = derive_statuses(get_transactions(customer_id))
    open_debts = [tid for tid, row in statuses.items() if row["status"] != CREDIT_STATUS_PAID]

    if open_debts or (customer.current_debt_cents or 0) > 0:
        raise CustomerHasOpenDebt(
            f"Customer {customer.name} has open credit transactions",
            details={"open_transaction_ids": open_debts, "current_debt_cents": customer.current_debt_cents},
        )

    customer.is_active = False
    db.session.commit()
    return customer

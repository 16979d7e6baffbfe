# Overview: Settlement coordinator; turns a validated payment plan into a sale, register totals and credit debts.

"""
Settlement Coordinator

WHY: A sale touches three ledgers (sales, register drawer, customer credit).
They must agree: either all of them record the sale or none of them do.

DESIGN PRINCIPLES:
- Validate everything (allocator) before writing anything
- One DB transaction per settlement: sale -> register -> credit, one commit
- The register session is handed in by the caller, never looked up here
- A sale without an open register still completes (logged warning)
- Terminal charges cannot be rolled back by the DB; if the commit fails after
  a charge, the charged amounts are logged for manual reversal
- Cancel/refund change the sale status first; the cash withdrawal that
  compensates the drawer is best-effort and reported back, never blocking
- Credit postings are not reversed on cancel/refund
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import CashRegisterSession, CashTransaction, Sale, SaleLine, SaleAllocation
from ..models.registers import CASH_WITHDRAWAL, SESSION_OPEN
from ..models.sales import SALE_COMPLETED, SALE_CANCELLED, SALE_REFUNDED
from kasa.time_utils import utcnow
from .cart_service import Cart
from .concurrency import RETRYABLE_ERRORS, run_with_retry
from .credit_service import post_debt
from .event_service import (
    EventPublisher,
    OutboxPublisher,
    EVENT_SALE_COMPLETED,
    EVENT_SALE_CANCELLED,
    EVENT_SALE_REFUNDED,
)
from .register_service import RegisterClosed, RegisterError, add_cash_transaction, record_sale
from .sales_service import add_sale, next_receipt_no, update_sale
from .split_payment_service import AllocationResult, SplitPaymentAllocator
from .terminal_service import TerminalGateway


class SettlementError(Exception):
    """Raised for settlement errors."""
    kind = "validation"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleNotReversible(SettlementError):
    kind = "business"


@dataclass
class ReversalResult:
    sale: Sale
    compensation: CashTransaction | None = None
    compensation_error: str | None = None

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "compensation": self.compensation.to_dict() if self.compensation else None,
            "compensation_error": self.compensation_error,
        }


class SettlementCoordinator:
    """
    Commits a fully allocated payment plan across the ledgers.

    Usage:
        coordinator = SettlementCoordinator(publisher, gateway, register_session=session)
        sale = coordinator.commit(cart, SinglePayment(METHOD_CASH, received_cents=10_000))
    """

    def __init__(
        self,
        publisher: EventPublisher | None = None,
        terminal: TerminalGateway | None = None,
        register_session: CashRegisterSession | None = None,
    ):
        self.publisher = publisher or OutboxPublisher()
        self.gateway = terminal or current_app.extensions["kasa.terminal"]
        self.allocator = SplitPaymentAllocator(self.gateway)
        self.register_session = register_session

    # -------------------------------------------------------------------------
    # Sale
    # -------------------------------------------------------------------------

    def commit(
        self,
        cart: Cart,
        plan,
        *,
        confirm_change: bool = False,
        credit_due_date: datetime | None = None,
    ) -> Sale:
        """
        Execute the plan and write the sale.

        Raises whatever the allocator raises (PaymentError, CreditError,
        TerminalError, PlanIncomplete) before anything is written; a
        RegisterClosed session is refused before any terminal charge.
        """
        session = self.register_session
        if session is not None and session.status != SESSION_OPEN:
            raise RegisterClosed(f"Register session {session.id} is closed")

        allocation = self.allocator.execute(cart, plan, confirm_change=confirm_change)

        def _op() -> Sale:
            sale = self._write_sale(cart, allocation, credit_due_date)
            db.session.commit()
            return sale

        try:
            sale = run_with_retry(_op)
        except Exception:
            db.session.rollback()
            if allocation.terminal_charges:
                current_app.logger.error(
                    "Settlement failed after terminal charges %s (total %s cents); reverse them on the terminal",
                    allocation.terminal_charges, sum(allocation.terminal_charges),
                )
            raise

        if session is None:
            current_app.logger.warning(
                "Sale %s completed without an open register session", sale.receipt_no,
            )
        return sale

    def _write_sale(self, cart: Cart, allocation: AllocationResult, credit_due_date: datetime | None) -> Sale:
        session = self.register_session
        now = utcnow()

        sale = Sale(
            receipt_no=next_receipt_no(now),
            status=SALE_COMPLETED,
            subtotal_cents=cart.subtotal_cents,
            tax_cents=cart.tax_cents,
            original_total_cents=cart.total_cents,
            total_cents=allocation.total_cents,
            discount_type=cart.discount.type if cart.discount else None,
            discount_value=cart.discount.value if cart.discount else None,
            payment_method=allocation.payment_method,
            split_type=allocation.split_type,
            cash_received_cents=allocation.cash_received_cents,
            change_cents=allocation.change_cents,
            customer_id=allocation.customer.id if allocation.customer else None,
            cash_amount_cents=allocation.cash_cents,
            card_amount_cents=allocation.card_cents,
            credit_amount_cents=allocation.credit_cents,
            register_session_id=session.id if session is not None else None,
            created_at=now,
        )
        lines = [
            SaleLine(
                product_id=line.product_id,
                name=line.name,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                unit_price_with_tax_cents=line.unit_price_with_tax_cents,
                tax_rate=line.tax_rate,
                line_total_cents=line.total_cents,
            )
            for line in cart.lines
        ]
        allocations = [
            SaleAllocation(
                split_type=record.split_type,
                method=record.method,
                product_id=record.product_id,
                participant_index=record.participant_index,
                quantity=record.quantity,
                amount_cents=record.amount_cents,
                received_cents=record.received_cents,
                change_cents=record.change_cents,
                customer_id=record.customer.id if record.customer else None,
            )
            for record in allocation.allocations
        ]
        add_sale(sale, lines, allocations)

        if session is not None:
            record_sale(session, allocation.cash_cents, allocation.card_cents, commit=False)

        for posting in allocation.credit_postings:
            description = f"Sale {sale.receipt_no}"
            if posting.reference:
                description = f"{description} ({posting.reference})"
            post_debt(
                posting.customer,
                posting.amount_cents,
                description,
                due_date=credit_due_date,
                sale_id=sale.id,
                commit=False,
            )

        self.publisher.publish(EVENT_SALE_COMPLETED, {
            "saleId": sale.id,
            "receiptNo": sale.receipt_no,
            "total": sale.total_cents,
            "paymentMethod": sale.payment_method,
            "cashAmount": sale.cash_amount_cents,
            "cardAmount": sale.card_amount_cents,
            "creditAmount": sale.credit_amount_cents,
            "sessionId": sale.register_session_id,
        })
        return sale

    # -------------------------------------------------------------------------
    # Reversals
    # -------------------------------------------------------------------------

    def cancel(self, sale: Sale, reason: str) -> ReversalResult:
        """Same-day void. completed -> cancelled."""
        return self._reverse(sale, reason, SALE_CANCELLED)

    def refund(self, sale: Sale, reason: str) -> ReversalResult:
        """Money handed back after the fact. completed -> refunded."""
        return self._reverse(sale, reason, SALE_REFUNDED)

    def _reverse(self, sale: Sale, reason: str, status: str) -> ReversalResult:
        if sale.status != SALE_COMPLETED:
            raise SaleNotReversible(
                f"Sale {sale.receipt_no} is {sale.status}; only completed sales can be {status}",
                details={"sale_id": sale.id, "status": sale.status},
            )
        reason = (reason or "").strip()
        if not reason:
            raise SettlementError("A reason is required")

        now = utcnow()
        if status == SALE_CANCELLED:
            fields = {"cancel_reason": reason, "cancelled_at": now}
            event_name, label = EVENT_SALE_CANCELLED, "Cancelled sale"
        else:
            fields = {"refund_reason": reason, "refunded_at": now}
            event_name, label = EVENT_SALE_REFUNDED, "Refunded sale"

        sale = update_sale(sale.id, commit=False, status=status, **fields)
        self.publisher.publish(event_name, {
            "saleId": sale.id,
            "receiptNo": sale.receipt_no,
            "reason": reason,
            "cashAmount": sale.cash_amount_cents,
        })
        db.session.commit()

        result = ReversalResult(sale=sale)
        cash = sale.cash_amount_cents or 0
        if cash <= 0:
            return result

        if self.register_session is None:
            result.compensation_error = "No open register session"
            current_app.logger.warning(
                "%s %s: %s cents not withdrawn, no open register session", label, sale.receipt_no, cash,
            )
            return result

        try:
            result.compensation = add_cash_transaction(
                self.register_session,
                CASH_WITHDRAWAL,
                cash,
                f"{label} {sale.receipt_no}",
                confirmed=True,
                sale_id=sale.id,
            )
        except (RegisterError, *RETRYABLE_ERRORS) as exc:
            db.session.rollback()
            result.compensation_error = str(exc)
            current_app.logger.warning(
                "%s %s: cash compensation of %s cents failed: %s", label, sale.receipt_no, cash, exc,
            )
        return result

# Overview: Splits a cart's discounted total across payment methods and payers; validates and executes allocations.

"""
Split Payment Allocation Service

WHY: A basket can be paid with one tender, per product by different people
at the counter, or pooled equally by a group. Every path must prove the
money covers the total before anything is written.

DESIGN PRINCIPLES:
- Nothing here touches the register or the credit ledger; allocations only
  validate and charge the terminal. The settlement coordinator commits.
- Product split: change is handed back per allocation, immediately, because
  each product group may be paid by a different person in sequence.
- Equal split: money is pooled. The per-person share is informational only,
  change is computed once on the pool and must be confirmed.
  The two change rules are deliberately different.
- Non-cash tender cannot exceed what it covers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..models import Customer
from ..validation import ValidationError, coerce_int
from .cart_service import Cart
from .credit_service import MissingCustomer, ensure_credit_available
from .terminal_service import TerminalGateway


class PaymentError(Exception):
    """Raised for payment validation errors."""
    kind = "validation"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientPayment(PaymentError):
    pass


class InvalidQuantity(PaymentError):
    pass


class ChangeConfirmationRequired(PaymentError):
    """Pooled over-payment must be acknowledged before the change is paid out."""


class PlanIncomplete(RuntimeError):
    """A plan reached commit while not finalizable. Caller bug, not operator input."""


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_CREDIT = "credit"
METHOD_CASH_TERMINAL = "cash_terminal"  # cash rung up through the terminal
METHOD_MIXED = "mixed"

VALID_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_CREDIT,
    METHOD_CASH_TERMINAL,
]

CASH_LIKE_METHODS = {METHOD_CASH, METHOD_CASH_TERMINAL}
TERMINAL_METHODS = {METHOD_CARD, METHOD_CASH_TERMINAL}

SPLIT_PRODUCT = "product"
SPLIT_EQUAL = "equal"


def _validate_method(method: str) -> None:
    if method not in VALID_METHODS:
        raise PaymentError(f"Invalid payment method: {method}. Must be one of {VALID_METHODS}")


def _require_customer(method: str, customer: Customer | None, label: str = "") -> None:
    if method == METHOD_CREDIT and customer is None:
        raise MissingCustomer(f"{label}Credit payment requires a customer".strip())


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class CreditPosting:
    customer: Customer
    amount_cents: int
    reference: str = ""


@dataclass
class AllocationRecord:
    split_type: str
    method: str
    amount_cents: int
    received_cents: int
    change_cents: int = 0
    product_id: int | None = None
    participant_index: int | None = None
    quantity: int | None = None
    customer: Customer | None = None

    def to_dict(self) -> dict:
        return {
            "split_type": self.split_type,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "received_cents": self.received_cents,
            "change_cents": self.change_cents,
            "product_id": self.product_id,
            "participant_index": self.participant_index,
            "quantity": self.quantity,
            "customer_id": self.customer.id if self.customer else None,
        }


@dataclass
class AllocationResult:
    """
    Outcome of a fully validated and executed plan.

    cash_cents + card_cents + credit_cents == total_cents: change has already
    been netted out of the tenders it came back from.
    """
    payment_method: str
    total_cents: int
    cash_cents: int = 0
    card_cents: int = 0
    credit_cents: int = 0
    change_cents: int = 0
    cash_received_cents: int | None = None
    split_type: str | None = None
    customer: Customer | None = None
    credit_postings: list[CreditPosting] = field(default_factory=list)
    allocations: list[AllocationRecord] = field(default_factory=list)
    terminal_charges: list[int] = field(default_factory=list)


# =============================================================================
# PLAN SHAPES
# =============================================================================

@dataclass
class SinglePayment:
    """One method for the whole discounted total."""
    method: str
    received_cents: int | None = None
    customer: Customer | None = None


@dataclass
class RemainingLine:
    product_id: int
    name: str
    quantity: int
    amount_cents: int

    @property
    def unit_price_cents(self) -> Decimal:
        return Decimal(self.amount_cents) / Decimal(self.quantity) if self.quantity else Decimal(0)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "amount_cents": self.amount_cents,
        }


class ProductSplitPlan:
    """
    Per-line partial payments, accepted one at a time.

    Each accepted allocation decrements the line's remaining quantity and
    amount; a line that reaches zero leaves the working set. The plan is
    finalizable only when the working set is empty.
    """

    def __init__(self, cart: Cart, gateway: TerminalGateway):
        self.cart = cart
        self.gateway = gateway
        self.total_cents = cart.discounted_total_cents
        amounts = cart.split_line_amounts()
        self.remaining: dict[int, RemainingLine] = {
            line.product_id: RemainingLine(
                product_id=line.product_id,
                name=line.name,
                quantity=line.quantity,
                amount_cents=amounts[line.product_id],
            )
            for line in cart.lines
        }
        self.allocations: list[AllocationRecord] = []
        self.terminal_charges: list[int] = []
        self._pending_credit: dict[int, int] = {}

    @property
    def is_finalizable(self) -> bool:
        return not self.remaining

    @property
    def remaining_total_cents(self) -> int:
        return sum(line.amount_cents for line in self.remaining.values())

    @property
    def change_given_cents(self) -> int:
        return sum(a.change_cents for a in self.allocations)

    def quote(self, product_id: int, quantity: int) -> int:
        """Cost of paying `quantity` units of a remaining line."""
        line = self._remaining_line(product_id)
        self._check_quantity(line, quantity)
        if quantity == line.quantity:
            return line.amount_cents
        cost = (line.unit_price_cents * quantity).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        return int(cost)

    def allocate(
        self,
        product_id: int,
        method: str,
        quantity: int,
        received_cents: int | None = None,
        customer: Customer | None = None,
    ) -> AllocationRecord:
        """
        Accept one partial payment.

        Raises:
            InvalidQuantity: quantity <= 0 or more than remains on the line
            InsufficientPayment: received < cost of the selected quantity
            PaymentError: non-cash tender above the cost, unknown method/line
            MissingCustomer / CreditLimitExceeded: credit checks
            TerminalError: card / cash-terminal charge failed (nothing recorded)
        """
        _validate_method(method)
        line = self._remaining_line(product_id)
        cost = self.quote(product_id, quantity)

        if received_cents is None:
            if method in CASH_LIKE_METHODS:
                raise InsufficientPayment("Received amount is required for cash payments",
                                          details={"product_id": product_id, "required_cents": cost})
            received_cents = cost

        if received_cents < cost:
            raise InsufficientPayment(
                f"Insufficient payment: at least {cost} cents required",
                details={"product_id": product_id, "required_cents": cost, "received_cents": received_cents},
            )
        if method not in CASH_LIKE_METHODS and received_cents > cost:
            raise PaymentError(
                "Non-cash tender cannot exceed the allocation cost",
                details={"product_id": product_id, "required_cents": cost, "received_cents": received_cents},
            )

        _require_customer(method, customer)
        if method == METHOD_CREDIT:
            ensure_credit_available(customer, cost, pending_cents=self._pending_credit.get(customer.id, 0))

        if method in TERMINAL_METHODS and cost > 0:
            self.gateway.charge(cost)
            self.terminal_charges.append(cost)

        record = AllocationRecord(
            split_type=SPLIT_PRODUCT,
            method=method,
            amount_cents=cost,
            received_cents=received_cents,
            change_cents=received_cents - cost if method in CASH_LIKE_METHODS else 0,
            product_id=product_id,
            quantity=quantity,
            customer=customer if method == METHOD_CREDIT else None,
        )
        self.allocations.append(record)

        if method == METHOD_CREDIT:
            self._pending_credit[customer.id] = self._pending_credit.get(customer.id, 0) + cost

        line.quantity -= quantity
        line.amount_cents -= cost
        if line.quantity <= 0:
            del self.remaining[product_id]

        return record

    def to_dict(self) -> dict:
        return {
            "split_type": SPLIT_PRODUCT,
            "total_cents": self.total_cents,
            "remaining": [line.to_dict() for line in self.remaining.values()],
            "remaining_total_cents": self.remaining_total_cents,
            "allocations": [a.to_dict() for a in self.allocations],
            "change_given_cents": self.change_given_cents,
            "is_finalizable": self.is_finalizable,
        }

    def _remaining_line(self, product_id: int) -> RemainingLine:
        line = self.remaining.get(product_id)
        if line is None:
            raise InvalidQuantity(
                f"Product {product_id} has nothing left to pay",
                details={"product_id": product_id},
            )
        return line

    @staticmethod
    def _check_quantity(line: RemainingLine, quantity: int) -> None:
        if quantity <= 0:
            raise InvalidQuantity("Select at least one unit", details={"product_id": line.product_id})
        if quantity > line.quantity:
            raise InvalidQuantity(
                f"Only {line.quantity} unit(s) left to pay",
                details={"product_id": line.product_id, "remaining_quantity": line.quantity, "requested": quantity},
            )


@dataclass
class Contribution:
    method: str
    received_cents: int
    customer: Customer | None = None


class EqualSplitPlan:
    """
    N participants pooling money for one total.

    Nobody has to pay exactly the share; the plan only needs every
    participant declared, nothing negative, and the pool covering the total.
    """

    def __init__(self, total_cents: int, participants: int):
        if participants < 1:
            raise PaymentError("At least one participant is required")
        self.total_cents = total_cents
        self.participants = participants
        self.contributions: list[Contribution | None] = [None] * participants

    @property
    def share_cents(self) -> int:
        """Informational per-person share."""
        share = Decimal(self.total_cents) / Decimal(self.participants)
        return int(share.quantize(Decimal(1), rounding=ROUND_HALF_UP))

    @property
    def total_received_cents(self) -> int:
        return sum(c.received_cents for c in self.contributions if c is not None)

    @property
    def remaining_cents(self) -> int:
        return max(0, self.total_cents - self.total_received_cents)

    @property
    def change_due_cents(self) -> int:
        return max(0, self.total_received_cents - self.total_cents)

    @property
    def is_finalizable(self) -> bool:
        if any(c is None or c.received_cents < 0 for c in self.contributions):
            return False
        return self.total_received_cents >= self.total_cents

    def remaining_for(self, index: int) -> int:
        """What is still uncovered after everyone before `index` paid."""
        paid_before = sum(c.received_cents for c in self.contributions[:index] if c is not None)
        return max(0, self.total_cents - paid_before)

    def set_contribution(
        self,
        index: int,
        method: str,
        received_cents: int,
        customer: Customer | None = None,
    ) -> Contribution:
        if index < 0 or index >= self.participants:
            raise PaymentError(f"Participant {index + 1} does not exist", details={"participants": self.participants})
        _validate_method(method)
        if received_cents is None or received_cents < 0:
            raise PaymentError(f"Participant {index + 1}: received amount must be >= 0")
        contribution = Contribution(method=method, received_cents=received_cents, customer=customer)
        self.contributions[index] = contribution
        return contribution

    def to_dict(self) -> dict:
        return {
            "split_type": SPLIT_EQUAL,
            "total_cents": self.total_cents,
            "participants": self.participants,
            "share_cents": self.share_cents,
            "total_received_cents": self.total_received_cents,
            "remaining_cents": self.remaining_cents,
            "change_due_cents": self.change_due_cents,
            "is_finalizable": self.is_finalizable,
        }


# =============================================================================
# ALLOCATOR
# =============================================================================

class SplitPaymentAllocator:
    """Validates and executes payment plans against the terminal gateway."""

    def __init__(self, gateway: TerminalGateway):
        self.gateway = gateway

    def execute(self, cart: Cart, plan, *, confirm_change: bool = False) -> AllocationResult:
        if isinstance(plan, SinglePayment):
            return self.settle_single(cart, plan)
        if isinstance(plan, ProductSplitPlan):
            return self.finalize_product_split(plan)
        if isinstance(plan, EqualSplitPlan):
            return self.finalize_equal_split(plan, confirm_change=confirm_change)
        raise TypeError(f"Unsupported payment plan: {type(plan).__name__}")

    # -------------------------------------------------------------------------
    # Single method
    # -------------------------------------------------------------------------

    def settle_single(self, cart: Cart, payment: SinglePayment) -> AllocationResult:
        """
        Whole total with one method.

        Cash-like methods need received >= total and give change back. Card and
        cash-terminal go through the terminal for the total. Credit needs a
        customer within limit; the debt itself is posted at commit.
        """
        method = payment.method
        _validate_method(method)
        total = cart.discounted_total_cents

        result = AllocationResult(payment_method=method, total_cents=total)

        if method in CASH_LIKE_METHODS:
            received = payment.received_cents or 0
            if received < total:
                raise InsufficientPayment(
                    "Received amount is less than the total",
                    details={"required_cents": total, "received_cents": received},
                )
            result.cash_received_cents = received
            result.change_cents = received - total
            result.cash_cents = total

        if method == METHOD_CREDIT:
            _require_customer(method, payment.customer)
            ensure_credit_available(payment.customer, total)
            result.customer = payment.customer
            result.credit_cents = total
            if total > 0:
                result.credit_postings.append(CreditPosting(customer=payment.customer, amount_cents=total))

        if method in TERMINAL_METHODS and total > 0:
            self.gateway.charge(total)
            result.terminal_charges.append(total)
            if method == METHOD_CARD:
                result.card_cents = total

        return result

    # -------------------------------------------------------------------------
    # Product split
    # -------------------------------------------------------------------------

    def start_product_split(self, cart: Cart) -> ProductSplitPlan:
        return ProductSplitPlan(cart, self.gateway)

    def finalize_product_split(self, plan: ProductSplitPlan) -> AllocationResult:
        if not plan.is_finalizable:
            raise PlanIncomplete(
                f"Product split still has {len(plan.remaining)} unpaid line(s)"
            )

        result = AllocationResult(
            payment_method=METHOD_MIXED,
            split_type=SPLIT_PRODUCT,
            total_cents=plan.total_cents,
            allocations=list(plan.allocations),
            terminal_charges=list(plan.terminal_charges),
            change_cents=plan.change_given_cents,
        )

        cash_received = 0
        for record in plan.allocations:
            if record.method in CASH_LIKE_METHODS:
                result.cash_cents += record.amount_cents
                cash_received += record.received_cents
            elif record.method == METHOD_CARD:
                result.card_cents += record.amount_cents
            elif record.amount_cents > 0:
                result.credit_cents += record.amount_cents
                result.credit_postings.append(CreditPosting(
                    customer=record.customer,
                    amount_cents=record.amount_cents,
                    reference=f"product {record.product_id}",
                ))
        result.cash_received_cents = cash_received or None
        return result

    # -------------------------------------------------------------------------
    # Equal split
    # -------------------------------------------------------------------------

    def start_equal_split(self, cart: Cart, participants: int) -> EqualSplitPlan:
        return EqualSplitPlan(cart.discounted_total_cents, participants)

    def finalize_equal_split(self, plan: EqualSplitPlan, *, confirm_change: bool = False) -> AllocationResult:
        """
        Validate the pool, then charge terminal contributions.

        Raises:
            PaymentError: a participant has not declared
            InsufficientPayment: pool < total
            ChangeConfirmationRequired: pool > total and confirm_change is False
        """
        for index, contribution in enumerate(plan.contributions):
            if contribution is None:
                raise PaymentError(f"Participant {index + 1} has not declared a payment")
            if contribution.received_cents < 0:
                raise PaymentError(f"Participant {index + 1}: received amount must be >= 0")

        received = plan.total_received_cents
        if received < plan.total_cents:
            raise InsufficientPayment(
                "Participants together paid less than the total",
                details={"required_cents": plan.total_cents, "received_cents": received},
            )
        change = received - plan.total_cents
        if change > 0 and not confirm_change:
            raise ChangeConfirmationRequired(
                "Total change must be confirmed before finalizing",
                details={"change_cents": change},
            )

        pending: dict[int, int] = {}
        for index, contribution in enumerate(plan.contributions):
            if contribution.method != METHOD_CREDIT or contribution.received_cents == 0:
                continue
            _require_customer(contribution.method, contribution.customer, f"Participant {index + 1}: ")
            customer = contribution.customer
            ensure_credit_available(customer, contribution.received_cents, pending_cents=pending.get(customer.id, 0))
            pending[customer.id] = pending.get(customer.id, 0) + contribution.received_cents

        result = AllocationResult(
            payment_method=METHOD_MIXED,
            split_type=SPLIT_EQUAL,
            total_cents=plan.total_cents,
            change_cents=change,
        )

        try:
            for index, contribution in enumerate(plan.contributions):
                amount = contribution.received_cents
                if contribution.method in TERMINAL_METHODS and amount > 0:
                    self.gateway.charge(amount)
                    result.terminal_charges.append(amount)

                result.allocations.append(AllocationRecord(
                    split_type=SPLIT_EQUAL,
                    method=contribution.method,
                    amount_cents=amount,
                    received_cents=amount,
                    participant_index=index,
                    customer=contribution.customer if contribution.method == METHOD_CREDIT else None,
                ))
        except Exception:
            if result.terminal_charges:
                current_app.logger.error(
                    "Equal split aborted after terminal charges %s; reverse them on the terminal",
                    result.terminal_charges,
                )
            raise

        cash = sum(c.received_cents for c in plan.contributions if c.method in CASH_LIKE_METHODS)
        card = sum(c.received_cents for c in plan.contributions if c.method == METHOD_CARD)
        result.cash_received_cents = cash or None

        # Pooled change goes back out of the drawer first, then off the card
        # figure; whatever is left reduces the credit postings.
        from_cash = min(change, cash)
        from_card = min(change - from_cash, card)
        from_credit = change - from_cash - from_card

        result.cash_cents = cash - from_cash
        result.card_cents = card - from_card

        for index, contribution in enumerate(plan.contributions):
            if contribution.method != METHOD_CREDIT or contribution.received_cents == 0:
                continue
            result.credit_postings.append(CreditPosting(
                customer=contribution.customer,
                amount_cents=contribution.received_cents,
                reference=f"participant {index + 1}",
            ))
        for posting in reversed(result.credit_postings):
            if from_credit <= 0:
                break
            cut = min(from_credit, posting.amount_cents)
            posting.amount_cents -= cut
            from_credit -= cut
        result.credit_postings = [p for p in result.credit_postings if p.amount_cents > 0]
        result.credit_cents = sum(p.amount_cents for p in result.credit_postings)

        return result


# =============================================================================
# WIRE FORMAT
# =============================================================================

def build_plan(allocator: SplitPaymentAllocator, cart: Cart, data: dict, resolve_customer):
    """
    Turn a request payload into a payment plan.

    Shapes:
        {"type": "single", "method": "cash", "received_cents": 10000, "customer_id": null}
        {"type": "product", "allocations": [{"product_id", "method", "quantity", "received_cents", "customer_id"}]}
        {"type": "equal", "participants": 3, "contributions": [{"method", "received_cents", "customer_id"}]}

    Product allocations are accepted in order (terminal charges included);
    the first rejected one aborts with its error, as does a plan that leaves
    any line unpaid.
    """
    if not isinstance(data, dict):
        raise ValidationError("payment must be an object")

    def _customer(item: dict) -> Customer | None:
        customer_id = item.get("customer_id")
        if customer_id is None:
            return None
        return resolve_customer(coerce_int(customer_id, "customer_id"))

    def _received(item: dict) -> int | None:
        raw = item.get("received_cents")
        return None if raw is None else coerce_int(raw, "received_cents")

    plan_type = data.get("type", "single")

    if plan_type == "single":
        return SinglePayment(
            method=data.get("method"),
            received_cents=_received(data),
            customer=_customer(data),
        )

    if plan_type == SPLIT_PRODUCT:
        plan = allocator.start_product_split(cart)
        try:
            for item in data.get("allocations") or []:
                plan.allocate(
                    coerce_int(item.get("product_id"), "product_id"),
                    item.get("method"),
                    coerce_int(item.get("quantity"), "quantity"),
                    _received(item),
                    _customer(item),
                )
            if not plan.is_finalizable:
                raise PaymentError(
                    "Product split leaves lines unpaid",
                    details={"remaining": [line.to_dict() for line in plan.remaining.values()]},
                )
        except Exception:
            if plan.terminal_charges:
                current_app.logger.error(
                    "Product split aborted after terminal charges %s; reverse them on the terminal",
                    plan.terminal_charges,
                )
            raise
        return plan

    if plan_type == SPLIT_EQUAL:
        contributions = data.get("contributions") or []
        participants = coerce_int(data.get("participants", len(contributions)), "participants")
        plan = allocator.start_equal_split(cart, participants)
        for index, item in enumerate(contributions):
            received = _received(item)
            if received is None:
                continue
            plan.set_contribution(index, item.get("method"), received, _customer(item))
        return plan

    raise ValidationError(f"Invalid payment type: {plan_type}. Must be one of ['single', '{SPLIT_PRODUCT}', '{SPLIT_EQUAL}']")

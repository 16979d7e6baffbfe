import logging

import pytest

from conftest import FakeTerminal, make_cart
from kasa.models import Customer
from kasa.services.credit_service import CreditLimitExceeded, MissingCustomer
from kasa.services.split_payment_service import (
    METHOD_CARD,
    METHOD_CASH,
    METHOD_CASH_TERMINAL,
    METHOD_CREDIT,
    METHOD_MIXED,
    ChangeConfirmationRequired,
    EqualSplitPlan,
    InsufficientPayment,
    InvalidQuantity,
    PaymentError,
    PlanIncomplete,
    SinglePayment,
    SplitPaymentAllocator,
)
from kasa.services.terminal_service import ManualTerminal, TerminalBusy, TerminalError, TerminalGateway


def _customer(customer_id=1, limit=10_000, debt=0):
    return Customer(id=customer_id, name=f"Customer {customer_id}", credit_limit_cents=limit, current_debt_cents=debt)


@pytest.fixture
def allocator(gateway):
    return SplitPaymentAllocator(gateway)


# =============================================================================
# SINGLE METHOD
# =============================================================================

def test_single_cash_gives_change(allocator):
    result = allocator.settle_single(make_cart((1, 4_250, 1)), SinglePayment(METHOD_CASH, received_cents=5_000))

    assert result.payment_method == METHOD_CASH
    assert result.cash_cents == 4_250
    assert result.cash_received_cents == 5_000
    assert result.change_cents == 750
    assert result.terminal_charges == []


def test_single_cash_short_is_rejected(allocator):
    with pytest.raises(InsufficientPayment):
        allocator.settle_single(make_cart((1, 4_250, 1)), SinglePayment(METHOD_CASH, received_cents=4_000))


def test_single_card_charges_the_discounted_total(allocator, terminal):
    cart = make_cart((1, 10_000, 1), discount={"type": "percentage", "value": 10})

    result = allocator.settle_single(cart, SinglePayment(METHOD_CARD))

    assert terminal.charges == [9_000]
    assert terminal.connect_calls == 1
    assert terminal.disconnect_calls == 1
    assert result.card_cents == 9_000
    assert result.cash_cents == 0


def test_cash_through_terminal_counts_as_drawer_cash(allocator, terminal):
    result = allocator.settle_single(make_cart((1, 3_000, 1)), SinglePayment(METHOD_CASH_TERMINAL, received_cents=3_000))

    assert terminal.charges == [3_000]
    assert result.cash_cents == 3_000
    assert result.card_cents == 0


def test_declined_card_raises_terminal_error(allocator, terminal):
    terminal.approve = False

    with pytest.raises(TerminalError):
        allocator.settle_single(make_cart((1, 3_000, 1)), SinglePayment(METHOD_CARD))
    assert terminal.disconnect_calls == 1


def test_terminal_connect_failure(allocator, terminal):
    terminal.connects = False

    with pytest.raises(TerminalError) as exc:
        allocator.settle_single(make_cart((1, 3_000, 1)), SinglePayment(METHOD_CARD))
    assert exc.value.details["device_name"] == "Ingenico"
    assert terminal.charges == []


def test_manual_terminal_skips_the_device():
    allocator = SplitPaymentAllocator(TerminalGateway(ManualTerminal()))

    result = allocator.settle_single(make_cart((1, 3_000, 1)), SinglePayment(METHOD_CARD))

    assert result.card_cents == 3_000
    assert result.terminal_charges == [3_000]


def test_overlapping_terminal_session_is_refused(allocator, gateway, terminal):
    terminal.on_payment = lambda amount: gateway.charge(amount)

    with pytest.raises(TerminalBusy):
        allocator.settle_single(make_cart((1, 3_000, 1)), SinglePayment(METHOD_CARD))
    assert terminal.disconnect_calls == 1

    terminal.on_payment = None
    allocator.settle_single(make_cart((1, 3_000, 1)), SinglePayment(METHOD_CARD))
    assert terminal.charges == [3_000]


def test_single_credit_requires_customer(allocator):
    with pytest.raises(MissingCustomer):
        allocator.settle_single(make_cart((1, 3_000, 1)), SinglePayment(METHOD_CREDIT))


def test_single_credit_checks_the_limit(allocator):
    with pytest.raises(CreditLimitExceeded):
        allocator.settle_single(make_cart((1, 3_000, 1)), SinglePayment(METHOD_CREDIT, customer=_customer(limit=5_000, debt=2_500)))

    customer = _customer(limit=5_000, debt=2_000)
    result = allocator.settle_single(make_cart((1, 3_000, 1)), SinglePayment(METHOD_CREDIT, customer=customer))
    assert result.credit_cents == 3_000
    assert [(p.customer, p.amount_cents) for p in result.credit_postings] == [(customer, 3_000)]


def test_fully_discounted_credit_has_nothing_to_post(allocator):
    cart = make_cart((1, 1_000, 1), discount={"type": "percentage", "value": 100})

    result = allocator.settle_single(cart, SinglePayment(METHOD_CREDIT, customer=_customer()))

    assert result.credit_cents == 0
    assert result.credit_postings == []


def test_unknown_method_is_rejected(allocator):
    with pytest.raises(PaymentError):
        allocator.settle_single(make_cart((1, 3_000, 1)), SinglePayment("cheque"))


# =============================================================================
# PRODUCT SPLIT
# =============================================================================

def test_partial_quantity_reduces_the_line(allocator):
    plan = allocator.start_product_split(make_cart((1, 1_000, 3)))

    plan.allocate(1, METHOD_CASH, 2, 2_000)
    line = plan.remaining[1]
    assert (line.quantity, line.amount_cents) == (1, 1_000)

    with pytest.raises(InsufficientPayment):
        plan.allocate(1, METHOD_CASH, 1, 500)
    assert (line.quantity, line.amount_cents) == (1, 1_000)
    assert len(plan.allocations) == 1


def test_quantity_must_be_within_what_remains(allocator):
    plan = allocator.start_product_split(make_cart((1, 1_000, 3)))

    with pytest.raises(InvalidQuantity):
        plan.allocate(1, METHOD_CASH, 0, 1_000)
    with pytest.raises(InvalidQuantity):
        plan.allocate(1, METHOD_CASH, 4, 4_000)
    with pytest.raises(InvalidQuantity):
        plan.allocate(99, METHOD_CASH, 1, 1_000)


def test_fully_paid_line_leaves_the_working_set(allocator):
    plan = allocator.start_product_split(make_cart((1, 1_000, 1), (2, 2_000, 1)))

    plan.allocate(1, METHOD_CASH, 1, 1_000)
    assert set(plan.remaining) == {2}
    assert not plan.is_finalizable

    with pytest.raises(InvalidQuantity):
        plan.allocate(1, METHOD_CASH, 1, 1_000)

    plan.allocate(2, METHOD_CASH, 1, 2_000)
    assert plan.is_finalizable


def test_unfinished_plan_cannot_finalize(allocator):
    plan = allocator.start_product_split(make_cart((1, 1_000, 2)))
    plan.allocate(1, METHOD_CASH, 1, 1_000)

    with pytest.raises(PlanIncomplete):
        allocator.finalize_product_split(plan)


def test_cash_overpayment_gives_change_per_allocation(allocator):
    plan = allocator.start_product_split(make_cart((1, 2_000, 1), (2, 1_000, 1)))

    first = plan.allocate(1, METHOD_CASH, 1, 2_500)
    second = plan.allocate(2, METHOD_CASH, 1, 1_000)

    assert first.change_cents == 500
    assert second.change_cents == 0
    result = allocator.finalize_product_split(plan)
    assert result.change_cents == 500
    assert result.cash_cents == 3_000
    assert result.cash_received_cents == 3_500


def test_non_cash_tender_cannot_exceed_the_cost(allocator):
    plan = allocator.start_product_split(make_cart((1, 2_000, 1)))

    with pytest.raises(PaymentError):
        plan.allocate(1, METHOD_CARD, 1, 2_500)


def test_card_allocation_charges_when_accepted(allocator, terminal):
    plan = allocator.start_product_split(make_cart((1, 2_000, 1), (2, 1_000, 1)))

    plan.allocate(1, METHOD_CARD, 1)
    assert terminal.charges == [2_000]

    terminal.approve = False
    with pytest.raises(TerminalError):
        plan.allocate(2, METHOD_CARD, 1)
    assert 2 in plan.remaining
    assert len(plan.allocations) == 1


def test_credit_allocations_count_pending_debt(allocator):
    customer = _customer(limit=3_000)
    plan = allocator.start_product_split(make_cart((1, 2_000, 1), (2, 2_000, 1)))

    plan.allocate(1, METHOD_CREDIT, 1, customer=customer)
    with pytest.raises(CreditLimitExceeded):
        plan.allocate(2, METHOD_CREDIT, 1, customer=customer)


def test_free_line_on_credit_has_nothing_to_post(allocator):
    cart = make_cart((1, 1_000, 1), (2, 2_000, 1), discount={"type": "percentage", "value": 100})
    plan = allocator.start_product_split(cart)
    plan.allocate(1, METHOD_CREDIT, 1, customer=_customer())
    plan.allocate(2, METHOD_CASH, 1, 0)

    result = allocator.finalize_product_split(plan)

    assert result.credit_cents == 0
    assert result.credit_postings == []


def test_unit_by_unit_costs_add_up_to_the_line(allocator):
    plan = allocator.start_product_split(make_cart((1, 333, 3), (2, 1, 1)))
    plan.remaining[1].amount_cents = 1_000

    paid = [plan.allocate(1, METHOD_CASH, 1, 400).amount_cents for _ in range(3)]

    assert sum(paid) == 1_000
    assert 1 not in plan.remaining


def test_discount_is_spread_over_the_lines(allocator):
    plan = allocator.start_product_split(make_cart((1, 1_000, 1), (2, 3_000, 1), discount={"type": "percentage", "value": 10}))

    assert plan.remaining[1].amount_cents == 900
    assert plan.remaining[2].amount_cents == 2_700
    assert plan.total_cents == 3_600


def test_mixed_product_split_attribution(allocator):
    customer = _customer(limit=5_000)
    plan = allocator.start_product_split(make_cart((1, 1_000, 2), (2, 3_000, 1)))

    plan.allocate(1, METHOD_CASH, 1, 1_000)
    plan.allocate(1, METHOD_CARD, 1)
    plan.allocate(2, METHOD_CREDIT, 1, customer=customer)
    result = allocator.finalize_product_split(plan)

    assert result.payment_method == METHOD_MIXED
    assert (result.cash_cents, result.card_cents, result.credit_cents) == (1_000, 1_000, 3_000)
    assert [p.amount_cents for p in result.credit_postings] == [3_000]
    assert len(result.allocations) == 3


# =============================================================================
# EQUAL SPLIT
# =============================================================================

def test_share_is_informational():
    plan = EqualSplitPlan(10_000, 3)

    assert plan.share_cents == 3_333
    plan.set_contribution(0, METHOD_CASH, 5_000)
    plan.set_contribution(1, METHOD_CASH, 5_000)
    plan.set_contribution(2, METHOD_CASH, 0)
    assert plan.is_finalizable


def test_equal_split_needs_every_participant(allocator):
    plan = allocator.start_equal_split(make_cart((1, 10_000, 1)), 2)
    plan.set_contribution(0, METHOD_CASH, 10_000)

    assert not plan.is_finalizable
    with pytest.raises(PaymentError):
        allocator.finalize_equal_split(plan)


def test_equal_split_short_pool_is_rejected(allocator):
    plan = allocator.start_equal_split(make_cart((1, 10_000, 1)), 2)
    plan.set_contribution(0, METHOD_CASH, 5_000)
    plan.set_contribution(1, METHOD_CASH, 4_999)

    assert plan.remaining_cents == 1
    with pytest.raises(InsufficientPayment):
        allocator.finalize_equal_split(plan)


def test_negative_contribution_is_rejected():
    plan = EqualSplitPlan(10_000, 2)

    with pytest.raises(PaymentError):
        plan.set_contribution(0, METHOD_CASH, -1)
    with pytest.raises(PaymentError):
        plan.set_contribution(2, METHOD_CASH, 100)


def test_surplus_needs_confirmation(allocator, terminal):
    plan = allocator.start_equal_split(make_cart((1, 10_000, 1)), 2)
    plan.set_contribution(0, METHOD_CASH, 6_000)
    plan.set_contribution(1, METHOD_CARD, 5_000)

    with pytest.raises(ChangeConfirmationRequired) as exc:
        allocator.finalize_equal_split(plan)
    assert exc.value.details == {"change_cents": 1_000}
    assert terminal.charges == []

    result = allocator.finalize_equal_split(plan, confirm_change=True)

    assert terminal.charges == [5_000]
    assert result.change_cents == 1_000
    assert (result.cash_cents, result.card_cents) == (5_000, 5_000)
    assert result.cash_cents + result.card_cents + result.credit_cents == result.total_cents
    assert [a.participant_index for a in result.allocations] == [0, 1]


def test_declined_equal_split_charge_logs_the_earlier_ones(allocator, terminal, caplog):
    plan = allocator.start_equal_split(make_cart((1, 1_000, 1)), 2)
    plan.set_contribution(0, METHOD_CARD, 500)
    plan.set_contribution(1, METHOD_CARD, 500)

    def _decline_after_first(amount_cents):
        if terminal.charges:
            terminal.approve = False

    terminal.on_payment = _decline_after_first
    with caplog.at_level(logging.ERROR):
        with pytest.raises(TerminalError):
            allocator.finalize_equal_split(plan)

    assert terminal.charges == [500]
    assert "Equal split aborted after terminal charges [500]" in caplog.text


def test_equal_split_credit_participant(allocator):
    customer = _customer(limit=4_000)
    plan = allocator.start_equal_split(make_cart((1, 9_000, 1)), 3)
    plan.set_contribution(0, METHOD_CASH, 3_000)
    plan.set_contribution(1, METHOD_CREDIT, 3_000, customer)
    plan.set_contribution(2, METHOD_CREDIT, 3_000, customer)

    with pytest.raises(CreditLimitExceeded):
        allocator.finalize_equal_split(plan)

    plan.set_contribution(2, METHOD_CASH, 3_000)
    result = allocator.finalize_equal_split(plan)
    assert result.credit_cents == 3_000
    assert result.credit_postings[0].reference == "participant 2"


def test_equal_split_credit_without_customer(allocator):
    plan = allocator.start_equal_split(make_cart((1, 1_000, 1)), 1)
    plan.set_contribution(0, METHOD_CREDIT, 1_000)

    with pytest.raises(MissingCustomer):
        allocator.finalize_equal_split(plan)


def test_execute_dispatches_on_plan_type(allocator):
    cart = make_cart((1, 1_000, 1))
    plan = allocator.start_equal_split(cart, 1)
    plan.set_contribution(0, METHOD_CASH, 1_000)

    assert allocator.execute(cart, SinglePayment(METHOD_CASH, received_cents=1_000)).payment_method == METHOD_CASH
    assert allocator.execute(cart, plan).split_type == "equal"
    with pytest.raises(TypeError):
        allocator.execute(cart, object())

from datetime import datetime, timedelta

import pytest

from conftest import make_cart
from kasa.extensions import db
from kasa.models import DocumentSequence, Sale, SaleLine
from kasa.models.sales import SALE_CANCELLED
from kasa.services import sales_service
from kasa.services.sales_service import SaleError, SaleNotFound
from kasa.services.settlement_service import SettlementCoordinator
from kasa.services.split_payment_service import METHOD_CARD, METHOD_CASH, SinglePayment
from kasa.time_utils import utcnow


def _sale(created_at, total=1_000, method=METHOD_CASH, **extra):
    sale = Sale(
        status="completed",
        subtotal_cents=total,
        tax_cents=0,
        original_total_cents=total,
        total_cents=total,
        payment_method=method,
        cash_amount_cents=total if method == METHOD_CASH else 0,
        card_amount_cents=total if method == METHOD_CARD else 0,
        created_at=created_at,
        **extra,
    )
    line = SaleLine(
        product_id=1,
        name="Product 1",
        quantity=1,
        unit_price_cents=total,
        unit_price_with_tax_cents=total,
        tax_rate=0,
        line_total_cents=total,
    )
    sale = sales_service.add_sale(sale, [line])
    db.session.commit()
    return sale


def test_receipt_sequence_restarts_each_day(db_session):
    today = datetime(2026, 10, 19, 9, 30)
    tomorrow = today + timedelta(days=1)

    assert sales_service.next_receipt_no(today) == "F20261019001"
    assert sales_service.next_receipt_no(today) == "F20261019002"
    assert sales_service.next_receipt_no(tomorrow) == "F20261020001"
    assert sales_service.next_receipt_no(today) == "F20261019003"
    assert db_session.query(DocumentSequence).count() == 2


def test_add_sale_assigns_a_receipt_number(db_session):
    sale = _sale(datetime(2026, 10, 19, 12, 0))

    assert sale.receipt_no == "F20261019001"
    assert [line.sale_id for line in sale.lines] == [sale.id]


def test_add_sale_needs_lines(db_session):
    with pytest.raises(SaleError):
        sales_service.add_sale(Sale(status="completed"), [])


def test_lookup_by_receipt_number(db_session):
    sale = _sale(utcnow())

    assert sales_service.get_sale_by_receipt_no(sale.receipt_no).id == sale.id
    with pytest.raises(SaleNotFound):
        sales_service.get_sale_by_receipt_no("F19990101001")
    with pytest.raises(SaleNotFound):
        sales_service.get_sale_by_id(9_999)


def test_only_status_and_audit_fields_change(db_session):
    sale = _sale(utcnow())

    with pytest.raises(SaleError):
        sales_service.update_sale(sale.id, total_cents=1)
    with pytest.raises(SaleError):
        sales_service.update_sale(sale.id, status="lost")

    updated = sales_service.update_sale(sale.id, status=SALE_CANCELLED, cancel_reason="Mistake")
    assert updated.status == SALE_CANCELLED
    assert updated.total_cents == 1_000


def test_daily_sales_and_filters(db_session):
    day = datetime(2026, 10, 19, 10, 0)
    cash = _sale(day, 1_000)
    card = _sale(day + timedelta(hours=2), 2_000, METHOD_CARD)
    _sale(day - timedelta(days=1), 3_000)

    daily = sales_service.get_daily_sales(day.date())

    assert [s.id for s in daily] == [card.id, cash.id]
    assert [s.id for s in sales_service.get_all_sales(payment_method=METHOD_CARD)] == [card.id]
    assert len(sales_service.get_all_sales(limit=1)) == 1


def test_summary_excludes_reversed_sales(db_session, publisher, gateway):
    coordinator = SettlementCoordinator(publisher, gateway)
    kept = coordinator.commit(
        make_cart((1, 10_000, 1), discount={"type": "percentage", "value": 10}),
        SinglePayment(METHOD_CASH, received_cents=9_000),
    )
    coordinator.commit(make_cart((2, 2_000, 1)), SinglePayment(METHOD_CARD))
    cancelled = coordinator.commit(make_cart((3, 500, 1)), SinglePayment(METHOD_CASH, received_cents=500))
    coordinator.cancel(cancelled, "Mistake")

    summary = sales_service.get_sales_summary()

    assert summary["sale_count"] == 2
    assert summary["cancelled_count"] == 1
    assert summary["refunded_count"] == 0
    assert summary["total_cents"] == 11_000
    assert summary["cash_cents"] == kept.cash_amount_cents == 9_000
    assert summary["card_cents"] == 2_000
    assert summary["discount_cents"] == 1_000

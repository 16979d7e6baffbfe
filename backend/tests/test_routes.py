"""
HTTP-level tests: status codes and error mapping of the API blueprints.
"""

from conftest import cart_payload


def _open(client, balance=10_000, **extra):
    return client.post("/api/registers/open", json={"opening_balance_cents": balance, **extra})


def _create_customer(client, limit=10_000, name="Ayse Yilmaz"):
    response = client.post("/api/customers", json={"name": name, "phone": "05550000000", "credit_limit_cents": limit})
    assert response.status_code == 201
    return response.get_json()["customer"]


def _settle(client, cart, payment, **extra):
    return client.post("/api/sales", json={"cart": cart, "payment": payment, **extra})


# =============================================================================
# SYSTEM
# =============================================================================

def test_health_is_degraded_without_an_open_register(client, db_session):
    response = client.get("/api/system/health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "degraded"

    _open(client)
    body = client.get("/api/system/health").get_json()
    assert body["status"] == "healthy"
    assert body["checks"]["register"]["details"]["open"] is True


def test_event_feed_lists_published_events(client, db_session):
    _open(client)
    _settle(client, cart_payload((1, 1_000, 1)), {"method": "cash", "received_cents": 1_000})

    events = client.get("/api/system/events").get_json()["events"]
    assert [e["name"] for e in events] == ["cashRegisterOpened", "saleCompleted"]

    filtered = client.get("/api/system/events?name=saleCompleted").get_json()["events"]
    assert len(filtered) == 1
    assert filtered[0]["payload"]["total"] == 1_000


# =============================================================================
# REGISTERS
# =============================================================================

def test_open_register_twice_is_a_conflict(client, db_session):
    first = _open(client)
    assert first.status_code == 201
    assert first.get_json()["session"]["status"] == "OPEN"

    second = _open(client)
    assert second.status_code == 409
    assert second.get_json()["kind"] == "business"


def test_active_register_is_404_when_none_is_open(client, db_session):
    assert client.get("/api/registers/active").status_code == 404


def test_withdrawal_above_balance_is_a_conflict(client, db_session):
    session_id = _open(client, 1_000).get_json()["session"]["id"]

    response = client.post(
        f"/api/registers/sessions/{session_id}/transactions",
        json={"type": "WITHDRAWAL", "amount_cents": 1_500, "description": "Supplier"},
    )

    assert response.status_code == 409
    assert response.get_json()["details"]["theoretical_balance_cents"] == 1_000


def test_close_returns_the_day_report(client, db_session):
    session_id = _open(client).get_json()["session"]["id"]
    _settle(client, cart_payload((1, 2_000, 1)), {"method": "cash", "received_cents": 2_000})
    client.post(f"/api/registers/sessions/{session_id}/counting", json={"counted_cents": 12_000})

    response = client.post(f"/api/registers/sessions/{session_id}/close")

    assert response.status_code == 200
    body = response.get_json()
    assert body["report"]["cashSales"] == 2_000
    assert body["report"]["countingDifference"] == 0
    assert body["session"]["status"] == "CLOSED"

    again = client.post(f"/api/registers/sessions/{session_id}/transactions", json={"type": "DEPOSIT", "amount_cents": 100})
    assert again.status_code == 409


def test_unknown_session_is_404(client, db_session):
    assert client.get("/api/registers/sessions/999").status_code == 404


def test_credit_collection_at_the_till(client, db_session):
    session_id = _open(client).get_json()["session"]["id"]
    customer = _create_customer(client)
    client.post(f"/api/customers/{customer['id']}/debts", json={"amount_cents": 4_000, "description": "Order"})

    response = client.post(
        f"/api/registers/sessions/{session_id}/credit-collections",
        json={"customer_id": customer["id"], "amount_cents": 5_000},
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body["overpaid_cents"] == 1_000
    assert body["customer"]["current_debt_cents"] == 0
    assert body["transaction"]["is_credit_collection"] is True


# =============================================================================
# SALES
# =============================================================================

def test_cash_sale_is_created(client, db_session):
    _open(client)

    response = _settle(client, cart_payload((1, 4_250, 1)), {"type": "single", "method": "cash", "received_cents": 5_000})

    assert response.status_code == 201
    sale = response.get_json()["sale"]
    assert sale["change_cents"] == 750
    assert sale["receipt_no"].startswith("F")
    assert client.get(f"/api/sales/receipt/{sale['receipt_no']}").get_json()["sale"]["id"] == sale["id"]


def test_short_cash_is_a_validation_error(client, db_session):
    response = _settle(client, cart_payload((1, 4_250, 1)), {"method": "cash", "received_cents": 4_000})

    assert response.status_code == 400
    assert response.get_json()["details"]["required_cents"] == 4_250


def test_credit_over_limit_is_a_conflict(client, db_session):
    customer = _create_customer(client, limit=1_000)

    response = _settle(client, cart_payload((1, 2_000, 1)), {"method": "credit", "customer_id": customer["id"]})

    assert response.status_code == 409
    assert client.get("/api/sales").get_json()["sales"] == []


def test_declined_terminal_is_a_gateway_error(client, db_session, gateway, terminal):
    terminal.approve = False

    response = _settle(client, cart_payload((1, 2_000, 1)), {"method": "card"})

    assert response.status_code == 502
    assert response.get_json()["kind"] == "integration"
    assert client.get("/api/sales").get_json()["sales"] == []


def test_incomplete_product_split_is_rejected(client, db_session):
    payment = {
        "type": "product",
        "allocations": [{"product_id": 1, "method": "cash", "quantity": 1, "received_cents": 1_000}],
    }

    response = _settle(client, cart_payload((1, 1_000, 2)), payment)

    assert response.status_code == 400
    assert response.get_json()["details"]["remaining"][0]["quantity"] == 1


def test_product_split_sale(client, db_session):
    _open(client)
    payment = {
        "type": "product",
        "allocations": [
            {"product_id": 1, "method": "cash", "quantity": 2, "received_cents": 2_000},
            {"product_id": 1, "method": "card", "quantity": 1},
        ],
    }

    response = _settle(client, cart_payload((1, 1_000, 3)), payment)

    assert response.status_code == 201
    sale = response.get_json()["sale"]
    assert sale["payment_method"] == "mixed"
    assert (sale["cash_amount_cents"], sale["card_amount_cents"]) == (2_000, 1_000)
    assert len(sale["allocations"]) == 2


def test_equal_split_surplus_needs_confirmation(client, db_session):
    payment = {
        "type": "equal",
        "participants": 2,
        "contributions": [
            {"method": "cash", "received_cents": 6_000},
            {"method": "cash", "received_cents": 5_000},
        ],
    }

    response = _settle(client, cart_payload((1, 10_000, 1)), payment)
    assert response.status_code == 400
    assert response.get_json()["details"] == {"change_cents": 1_000}

    confirmed = _settle(client, cart_payload((1, 10_000, 1)), payment, confirm_change=True)
    assert confirmed.status_code == 201
    assert confirmed.get_json()["sale"]["change_cents"] == 1_000


def test_cancel_route_reports_the_compensation(client, db_session):
    _open(client)
    sale = _settle(client, cart_payload((1, 5_000, 1)), {"method": "cash", "received_cents": 5_000}).get_json()["sale"]

    response = client.post(f"/api/sales/{sale['id']}/cancel", json={"reason": "Wrong item"})

    assert response.status_code == 200
    body = response.get_json()
    assert body["sale"]["status"] == "cancelled"
    assert body["compensation"]["amount_cents"] == 5_000
    assert body["compensation_error"] is None
    assert client.get("/api/registers/active").get_json()["session"]["theoretical_balance_cents"] == 10_000

    assert client.post(f"/api/sales/{sale['id']}/cancel", json={"reason": "Again"}).status_code == 409


def test_summary_for_today(client, db_session):
    _settle(client, cart_payload((1, 1_000, 1)), {"method": "cash", "received_cents": 1_000})

    summary = client.get("/api/sales/summary").get_json()["summary"]

    assert summary["sale_count"] == 1
    assert summary["total_cents"] == 1_000
    assert client.get("/api/sales/summary?date=not-a-date").status_code == 400


# =============================================================================
# CUSTOMERS
# =============================================================================

def test_customer_debt_is_not_client_writable(client, db_session):
    customer = _create_customer(client)

    response = client.patch(f"/api/customers/{customer['id']}", json={"current_debt_cents": 0})
    assert response.status_code == 400

    response = client.patch(f"/api/customers/{customer['id']}", json={"credit_limit_cents": 50_000})
    assert response.status_code == 200
    assert response.get_json()["customer"]["available_credit_cents"] == 50_000


def test_customer_with_debt_cannot_be_deleted(client, db_session):
    customer = _create_customer(client)
    client.post(f"/api/customers/{customer['id']}/debts", json={"amount_cents": 2_500, "due_date": "2020-01-01"})

    assert client.delete(f"/api/customers/{customer['id']}").status_code == 409

    overdue = client.get("/api/customers/overdue").get_json()["transactions"]
    assert [row["amount_cents"] for row in overdue] == [2_500]

    client.post(f"/api/customers/{customer['id']}/payments", json={"amount_cents": 2_500})
    assert client.delete(f"/api/customers/{customer['id']}").status_code == 200
    assert client.get(f"/api/customers/{customer['id']}").status_code == 404


def test_customer_requires_a_name(client, db_session):
    assert client.post("/api/customers", json={"phone": "05550000000"}).status_code == 400


def test_customer_contact_fields_are_checked(client, db_session):
    customer = _create_customer(client)

    assert client.patch(f"/api/customers/{customer['id']}", json={"tax_number": "123"}).status_code == 400
    assert client.patch(f"/api/customers/{customer['id']}", json={"phone": "call me"}).status_code == 400
    assert client.patch(f"/api/customers/{customer['id']}", json={"credit_limit_cents": -1}).status_code == 400
    assert client.patch(f"/api/customers/{customer['id']}", json={"tax_number": "1234567890"}).status_code == 200

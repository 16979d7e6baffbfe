# backend/kasa/routes/customers.py
"""
Customer & Credit API Routes

WHY: Manage credit ("veresiye") customers and their accounts outside the
sale flow: limits, manual debts with due dates, payments, statements.

DESIGN:
- current_debt_cents is never client-writable; it moves only through postings
- Deleting a customer with open debt is a 409
- Cash collections at the till go through /api/registers instead, so the
  drawer records the deposit
"""

from flask import Blueprint, request, jsonify

from ..decorators import handle_service_errors
from ..models import Customer
from ..services import credit_service
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    coerce_cents,
    coerce_datetime,
    enforce_rules_customer,
    validate_payload,
)
from kasa.time_utils import to_utc_z


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "address", "tax_number", "note", "credit_limit_cents"},
    required_on_create={"name"},
)


def _json() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


# =============================================================================
# CUSTOMER CRUD
# =============================================================================

@customers_bp.get("/")
@customers_bp.get("")
@handle_service_errors("list customers")
def list_customers_route():
    customers = credit_service.get_all_customers()
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@customers_bp.post("/")
@customers_bp.post("")
@handle_service_errors("create customer")
def create_customer_route():
    """
    Request body:
    {
        "name": "Ayse Yilmaz",
        "phone": "05551234567",
        "credit_limit_cents": 100000,
        "address": "...", "tax_number": "...", "note": "..."  (optional)
    }
    """
    patch = validate_payload(model=Customer, payload=_json(), policy=CUSTOMER_POLICY, partial=False)
    enforce_rules_customer(patch)
    customer = credit_service.add_customer(
        name=patch["name"],
        phone=patch.get("phone") or "",
        credit_limit_cents=patch.get("credit_limit_cents") or 0,
        address=patch.get("address"),
        tax_number=patch.get("tax_number"),
        note=patch.get("note"),
    )
    return jsonify({"customer": customer.to_dict()}), 201


@customers_bp.get("/<int:customer_id>")
@handle_service_errors("get customer")
def get_customer_route(customer_id: int):
    customer = credit_service.get_customer(customer_id)
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.patch("/<int:customer_id>")
@customers_bp.put("/<int:customer_id>")
@handle_service_errors("update customer")
def update_customer_route(customer_id: int):
    patch = validate_payload(model=Customer, payload=_json(), policy=CUSTOMER_POLICY, partial=True)
    enforce_rules_customer(patch)
    customer = credit_service.update_customer(customer_id, patch)
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.delete("/<int:customer_id>")
@handle_service_errors("delete customer")
def delete_customer_route(customer_id: int):
    credit_service.delete_customer(customer_id)
    return jsonify({"deleted": True, "customer_id": customer_id}), 200


# =============================================================================
# CREDIT ACCOUNT
# =============================================================================

@customers_bp.get("/<int:customer_id>/transactions")
@handle_service_errors("list credit transactions")
def list_transactions_route(customer_id: int):
    credit_service.get_customer(customer_id)
    return jsonify({"transactions": credit_service.get_transactions_with_status(customer_id)}), 200


@customers_bp.get("/<int:customer_id>/summary")
@handle_service_errors("summarize customer")
def customer_summary_route(customer_id: int):
    customer = credit_service.get_customer(customer_id)
    summary = credit_service.get_customer_summary(customer)
    summary["last_transaction_date"] = to_utc_z(summary["last_transaction_date"])
    return jsonify({"summary": summary}), 200


@customers_bp.post("/<int:customer_id>/debts")
@handle_service_errors("post debt")
def post_debt_route(customer_id: int):
    """
    Manual debt entry (goods given on account outside a till sale).

    Request body:
    {
        "amount_cents": 25000,
        "description": "Wholesale order",
        "due_date": "2026-12-01"  (optional)
    }
    """
    data = _json()
    credit_service.get_customer(customer_id)
    txn = credit_service.post_debt(
        customer_id,
        coerce_cents(data.get("amount_cents"), "amount_cents", allow_zero=False),
        data.get("description") or "",
        due_date=coerce_datetime(data.get("due_date"), "due_date"),
    )
    return jsonify({"transaction": txn.to_dict(), "customer": txn.customer.to_dict()}), 201


@customers_bp.post("/<int:customer_id>/payments")
@handle_service_errors("post payment")
def post_payment_route(customer_id: int):
    """
    Payment against the account (bank transfer, etc.). Over-payment is
    accepted and reported back in overpaid_cents.
    """
    data = _json()
    credit_service.get_customer(customer_id)
    posting = credit_service.post_payment(
        customer_id,
        coerce_cents(data.get("amount_cents"), "amount_cents", allow_zero=False),
        data.get("description") or "",
    )
    return jsonify({
        "transaction": posting.transaction.to_dict(),
        "overpaid_cents": posting.overpaid_cents,
        "customer": posting.transaction.customer.to_dict(),
    }), 201


@customers_bp.get("/overdue")
@handle_service_errors("list overdue credit")
def overdue_route():
    return jsonify({"transactions": credit_service.list_overdue_transactions()}), 200

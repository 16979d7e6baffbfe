# backend/kasa/routes/registers.py
"""
Cash Register API Routes

WHY: Drive the daily register lifecycle from the till: open with a float,
move cash in and out, count, close with the end-of-day report.

DESIGN:
- Every mutation names its session in the URL; nothing guesses "the" register
- Closed sessions are read-only (409 on any mutation)
- Credit collections are taken here because the cash lands in the drawer
"""

from flask import Blueprint, request, jsonify

from ..decorators import handle_service_errors, error_response
from ..services import register_service, credit_service
from ..validation import ValidationError, coerce_cents, coerce_int


registers_bp = Blueprint("registers", __name__, url_prefix="/api/registers")


def _json() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


# =============================================================================
# LIFECYCLE
# =============================================================================

@registers_bp.post("/open")
@handle_service_errors("open register")
def open_register_route():
    """
    Open a register session.

    Request body:
    {
        "opening_balance_cents": 50000,
        "register_id": "MAIN"  (optional)
    }
    """
    data = _json()
    opening = coerce_cents(data.get("opening_balance_cents", 0), "opening_balance_cents")
    session = register_service.open_register(opening, register_id=data.get("register_id"))
    return jsonify({"session": session.to_dict()}), 201


@registers_bp.get("/active")
@handle_service_errors("get active register")
def active_session_route():
    session = register_service.get_active_session(request.args.get("register_id"))
    if session is None:
        return error_response("not_found", "No open register session")
    return jsonify({"session": session.to_dict()}), 200


@registers_bp.get("/sessions")
@handle_service_errors("list register sessions")
def list_sessions_route():
    limit = request.args.get("limit", default=30, type=int)
    sessions = register_service.list_sessions(request.args.get("register_id"), limit=limit)
    return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200


@registers_bp.get("/sessions/<int:session_id>")
@handle_service_errors("get register session")
def get_session_route(session_id: int):
    session = register_service.get_session(session_id)
    return jsonify(register_service.get_session_details(session)), 200


@registers_bp.post("/sessions/<int:session_id>/close")
@handle_service_errors("close register")
def close_session_route(session_id: int):
    """Close the session and return the end-of-day report."""
    session = register_service.get_session(session_id)
    report = register_service.close_register(session)
    return jsonify({"report": report, "session": session.to_dict()}), 200


# =============================================================================
# CASH MOVEMENTS
# =============================================================================

@registers_bp.post("/sessions/<int:session_id>/transactions")
@handle_service_errors("add cash transaction")
def add_transaction_route(session_id: int):
    """
    Manual deposit or withdrawal.

    Request body:
    {
        "type": "WITHDRAWAL",
        "amount_cents": 2000,
        "description": "Bank drop",  (optional)
        "confirmed": false  (optional; only honoured when overdraw is enabled)
    }
    """
    data = _json()
    session = register_service.get_session(session_id)
    txn = register_service.add_cash_transaction(
        session,
        data.get("type"),
        coerce_cents(data.get("amount_cents"), "amount_cents", allow_zero=False),
        data.get("description"),
        confirmed=bool(data.get("confirmed", False)),
    )
    return jsonify({"transaction": txn.to_dict(), "session": session.to_dict()}), 201


@registers_bp.post("/sessions/<int:session_id>/counting")
@handle_service_errors("save counting")
def save_counting_route(session_id: int):
    """Record the physical count; repeated calls overwrite."""
    data = _json()
    session = register_service.get_session(session_id)
    session = register_service.save_counting(
        session,
        coerce_cents(data.get("counted_cents"), "counted_cents"),
    )
    return jsonify({"session": session.to_dict()}), 200


@registers_bp.post("/sessions/<int:session_id>/credit-collections")
@handle_service_errors("collect credit")
def collect_credit_route(session_id: int):
    """
    Take a credit repayment in cash.

    Request body:
    {
        "customer_id": 7,
        "amount_cents": 15000,
        "description": "Partial payment"  (optional)
    }
    """
    data = _json()
    session = register_service.get_session(session_id)
    customer = credit_service.get_customer(coerce_int(data.get("customer_id"), "customer_id"))
    txn, posting = register_service.collect_credit(
        session,
        customer,
        coerce_cents(data.get("amount_cents"), "amount_cents", allow_zero=False),
        data.get("description"),
    )
    return jsonify({
        "transaction": txn.to_dict(),
        "credit_transaction": posting.transaction.to_dict(),
        "overpaid_cents": posting.overpaid_cents,
        "customer": customer.to_dict(),
    }), 201

# backend/kasa/routes/sales.py
"""
Sales API Routes

WHY: Settle a cart at the till and look sales up afterwards.

DESIGN:
- One request settles one cart: the payment plan arrives complete and is
  executed in order (product allocations may hit the terminal one by one)
- The open session of the register is resolved here and handed to the
  coordinator; a sale without one still completes
- Cancel/refund answer 200 even when the drawer compensation failed; the
  failure is reported in the body
"""

from datetime import date

from flask import Blueprint, request, jsonify

from ..decorators import handle_service_errors
from ..services import credit_service, register_service, sales_service
from ..services.cart_service import Cart
from ..services.settlement_service import SettlementCoordinator
from ..services.split_payment_service import build_plan
from ..validation import ValidationError, coerce_datetime
from kasa.time_utils import day_bounds, utcnow


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _json() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def _parse_day(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationError("date must be YYYY-MM-DD")


def _coordinator(register_id: str | None = None) -> SettlementCoordinator:
    return SettlementCoordinator(register_session=register_service.get_active_session(register_id))


# =============================================================================
# SETTLEMENT
# =============================================================================

@sales_bp.post("/quote")
@handle_service_errors("quote cart")
def quote_route():
    """
    Price a cart without settling it.

    Request body: {"cart": {"lines": [...], "discount": {"type": "percentage", "value": 10}}}
    """
    cart = Cart.from_dict(_json().get("cart"))
    return jsonify({"quote": cart.summary()}), 200


@sales_bp.post("/")
@sales_bp.post("")
@handle_service_errors("settle sale")
def settle_sale_route():
    """
    Settle a cart.

    Request body:
    {
        "cart": {
            "lines": [
                {"product_id": 1, "name": "Tea", "unit_price_cents": 1000, "tax_rate": 20, "quantity": 2}
            ],
            "discount": {"type": "amount", "value": 200}  (optional)
        },
        "payment": {"type": "single", "method": "cash", "received_cents": 5000},
        "confirm_change": false,  (equal split surplus)
        "credit_due_date": "2026-11-30",  (optional)
        "register_id": "MAIN"  (optional)
    }
    """
    data = _json()
    cart = Cart.from_dict(data.get("cart"))
    coordinator = _coordinator(data.get("register_id"))

    plan = build_plan(coordinator.allocator, cart, data.get("payment"), credit_service.get_customer)
    sale = coordinator.commit(
        cart,
        plan,
        confirm_change=bool(data.get("confirm_change", False)),
        credit_due_date=coerce_datetime(data.get("credit_due_date"), "credit_due_date"),
    )
    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.post("/<int:sale_id>/cancel")
@handle_service_errors("cancel sale")
def cancel_sale_route(sale_id: int):
    """Request body: {"reason": "Wrong item", "register_id": "MAIN" (optional)}"""
    data = _json()
    sale = sales_service.get_sale_by_id(sale_id)
    result = _coordinator(data.get("register_id")).cancel(sale, data.get("reason"))
    return jsonify(result.to_dict()), 200


@sales_bp.post("/<int:sale_id>/refund")
@handle_service_errors("refund sale")
def refund_sale_route(sale_id: int):
    """Request body: {"reason": "Damaged", "register_id": "MAIN" (optional)}"""
    data = _json()
    sale = sales_service.get_sale_by_id(sale_id)
    result = _coordinator(data.get("register_id")).refund(sale, data.get("reason"))
    return jsonify(result.to_dict()), 200


# =============================================================================
# QUERIES
# =============================================================================

@sales_bp.get("/")
@sales_bp.get("")
@handle_service_errors("list sales")
def list_sales_route():
    """
    List sales, newest first.

    Query params: status, payment_method, customer_id, date (YYYY-MM-DD), limit
    """
    start = end = None
    day = _parse_day(request.args.get("date"))
    if day:
        start, end = day_bounds(day)

    sales = sales_service.get_all_sales(
        status=request.args.get("status"),
        payment_method=request.args.get("payment_method"),
        customer_id=request.args.get("customer_id", type=int),
        start=start,
        end=end,
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"sales": [s.to_dict() for s in sales]}), 200


@sales_bp.get("/summary")
@handle_service_errors("summarize sales")
def sales_summary_route():
    """Query params: date (YYYY-MM-DD, default today), or all=1 for every sale."""
    if request.args.get("all"):
        return jsonify({"summary": sales_service.get_sales_summary()}), 200

    day = _parse_day(request.args.get("date"))
    if day is None:
        day = utcnow().date()
    start, end = day_bounds(day)
    summary = sales_service.get_sales_summary(start, end)
    summary["date"] = day.isoformat()
    return jsonify({"summary": summary}), 200


@sales_bp.get("/<int:sale_id>")
@handle_service_errors("get sale")
def get_sale_route(sale_id: int):
    return jsonify({"sale": sales_service.get_sale_by_id(sale_id).to_dict()}), 200


@sales_bp.get("/receipt/<receipt_no>")
@handle_service_errors("get sale by receipt")
def get_sale_by_receipt_route(receipt_no: str):
    return jsonify({"sale": sales_service.get_sale_by_receipt_no(receipt_no).to_dict()}), 200

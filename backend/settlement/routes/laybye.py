# Overview: Flask API routes for laybye orders; parses input and returns JSON responses.

# backend/settlement/routes/laybye.py
"""
Laybye API Routes

WHY: Reserve goods against a deposit and take instalments until the
order is paid off.

DESIGN:
- Policy checks (customer, deposit minimum, due date window) run before
  any deposit tender is allocated
- The deposit may be split across tenders; account legs are quoted
  exactly as at checkout
- Order, deposit payments and account debits commit together or not at all
"""

from functools import partial

from flask import Blueprint, request, jsonify, current_app

from ..services import laybye_service
from ..services.account_service import AccountError
from ..services.cashup_service import CashupError
from ..services.concurrency import ConcurrencyConflict, PersistenceFailure
from ..services.laybye_service import LaybyeError
from ..services.payment_service import PaymentAllocator, PaymentError
from ..services.sales_service import SaleDraft
from ..validation import ValidationError, coerce_cents, coerce_id
from ..decorators import error_response, require_json
from settlement.time_utils import parse_iso_date


laybye_bp = Blueprint("laybye", __name__, url_prefix="/api/laybye")

SERVICE_ERRORS = (
    LaybyeError,
    PaymentError,
    AccountError,
    CashupError,
    ValidationError,
    ConcurrencyConflict,
    PersistenceFailure,
)


def _parse_date(value, field: str):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")


def _order_request(data: dict):
    draft = SaleDraft.from_dict(data.get("draft") or {})
    deposit_cents = coerce_cents(data.get("deposit_cents"), "deposit_cents")
    due_date = _parse_date(data.get("due_date"), "due_date")
    if due_date is None:
        raise ValidationError("due_date is required")
    customer_id = coerce_id(data.get("customer_id", draft.customer_id), "customer_id")
    return draft, deposit_cents, due_date, customer_id


@laybye_bp.post("/validate")
@require_json
def validate_route(data: dict):
    """Run the laybye policy checks without writing anything."""
    try:
        draft, deposit_cents, due_date, customer_id = _order_request(data)
        minimum = laybye_service.validate_order(draft.total_due_cents, deposit_cents, due_date, customer_id)
        return jsonify({
            "valid": True,
            "total_cents": draft.total_due_cents,
            "minimum_deposit_cents": minimum,
            "remaining_balance_cents": draft.total_due_cents - deposit_cents,
        }), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate laybye")
        return jsonify({"error": "Internal server error"}), 500


@laybye_bp.post("/")
@laybye_bp.post("")
@require_json
def create_laybye_route(data: dict):
    """
    Create a laybye order.

    Request body:
    {
        "branch_id": 1,
        "customer_id": 7,
        "deposit_cents": 20000,
        "due_date": "2026-11-15",
        "draft": {"lines": [{"product_ref": "SKU-1", "quantity": 1, "unit_price_cents": 100000}]},
        "deposit_allocations": [{"method": "cash", "amount_cents": 20000}],  (optional, default cash)
        "cashup_session_id": 5,  (optional)
        "notes": "..."  (optional)
    }

    Returns:
        201: Laybye created
        400: Policy violation (MISSING_CUSTOMER, INVALID_DEPOSIT, DEPOSIT_BELOW_MINIMUM, DUE_DATE_*)
        404: Customer account / branch not found
        409: Account cannot cover its deposit leg, concurrent change
    """
    try:
        draft, deposit_cents, due_date, customer_id = _order_request(data)

        # Fail fast on policy before touching any tender
        laybye_service.validate_order(draft.total_due_cents, deposit_cents, due_date, customer_id)

        create = partial(
            laybye_service.create_order,
            draft,
            deposit_cents,
            due_date,
            customer_id,
            branch_id=data.get("branch_id"),
            cashup_session_id=data.get("cashup_session_id"),
            notes=data.get("notes"),
        )

        legs = data.get("deposit_allocations") or []
        if not legs:
            order = create()
            return jsonify({"laybye": order.to_dict()}), 201

        if not isinstance(legs, list):
            raise ValidationError("deposit_allocations must be a list")
        allocator = PaymentAllocator(deposit_cents)
        for leg in legs:
            if not isinstance(leg, dict):
                raise ValidationError("Each allocation must be an object")
            result = allocator.add_allocation(leg.get("method"), leg.get("amount_cents"), leg.get("customer_id"))
            if not result.is_valid:
                return jsonify({
                    "error": result.error_message,
                    "code": result.reason,
                    "quote": result.to_dict(),
                    "allocation": allocator.summary(),
                }), 409

        order = allocator.commit(create)
        return jsonify({"laybye": order.to_dict(), "allocation": allocator.summary()}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create laybye")
        return jsonify({"error": "Internal server error"}), 500


@laybye_bp.get("/")
@laybye_bp.get("")
def list_laybyes_route():
    try:
        orders = laybye_service.list_orders(
            branch_id=request.args.get("branch_id", type=int),
            customer_id=request.args.get("customer_id", type=int),
            status=request.args.get("status"),
            limit=request.args.get("limit", type=int),
        )
        return jsonify({"laybyes": [o.to_dict(include_children=False) for o in orders]}), 200
    except ValidationError as e:
        return error_response(e)


@laybye_bp.get("/stats")
def laybye_stats_route():
    try:
        as_of = _parse_date(request.args.get("as_of"), "as_of")
        stats = laybye_service.get_laybye_stats(request.args.get("branch_id", type=int), as_of)
        return jsonify({"stats": stats}), 200
    except ValidationError as e:
        return error_response(e)


@laybye_bp.get("/<int:laybye_id>")
def get_laybye_route(laybye_id: int):
    try:
        order = laybye_service.get_order(laybye_id)
        return jsonify({"laybye": order.to_dict()}), 200
    except LaybyeError as e:
        return error_response(e)


@laybye_bp.patch("/<int:laybye_id>")
@require_json
def update_laybye_route(laybye_id: int, data: dict):
    """
    Edit an open laybye's details.

    Request body (all optional, omitted fields unchanged):
    {
        "due_date": "2026-11-30",
        "notes": "Collecting after payday",  ("" clears)
        "customer_id": 7
    }

    Returns:
        200: Updated laybye
        400: Due date outside the policy window, invalid input
        404: Laybye or customer account not found
        409: Laybye is paid off, cancelled or expired
    """
    try:
        notes = data.get("notes")
        if notes is not None and not isinstance(notes, str):
            raise ValidationError("notes must be a string")

        order = laybye_service.update_order_details(
            laybye_id,
            due_date=_parse_date(data.get("due_date"), "due_date"),
            notes=notes,
            customer_id=coerce_id(data.get("customer_id"), "customer_id"),
        )
        return jsonify({"laybye": order.to_dict(include_children=False)}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update laybye")
        return jsonify({"error": "Internal server error"}), 500


@laybye_bp.post("/<int:laybye_id>/payments")
@require_json
def add_payment_route(laybye_id: int, data: dict):
    """
    Take an instalment.

    Request body:
    {
        "amount_cents": 10000,
        "method": "card",
        "customer_id": 7,  (optional, account method defaults to the order's customer)
        "cashup_session_id": 5,  (optional)
        "notes": "..."  (optional)
    }
    """
    try:
        payment = laybye_service.add_payment(
            laybye_id,
            data.get("amount_cents"),
            data.get("method"),
            data.get("customer_id"),
            cashup_session_id=data.get("cashup_session_id"),
            notes=data.get("notes"),
        )
        order = laybye_service.get_order(laybye_id)
        return jsonify({"payment": payment.to_dict(), "laybye": order.to_dict(include_children=False)}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add laybye payment")
        return jsonify({"error": "Internal server error"}), 500


@laybye_bp.post("/<int:laybye_id>/cancel")
@require_json
def cancel_laybye_route(laybye_id: int, data: dict):
    try:
        order = laybye_service.cancel_order(laybye_id, data.get("reason"))
        return jsonify({"laybye": order.to_dict(include_children=False)}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel laybye")
        return jsonify({"error": "Internal server error"}), 500


@laybye_bp.post("/expire-overdue")
def expire_overdue_route():
    """Expire overdue orders (normally run from the scheduler via the CLI)."""
    try:
        data = request.get_json(silent=True) or {}
        as_of = _parse_date(data.get("as_of"), "as_of")
        expired = laybye_service.expire_overdue(as_of)
        return jsonify({
            "expired": [o.to_dict(include_children=False) for o in expired],
            "count": len(expired),
        }), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to expire overdue laybyes")
        return jsonify({"error": "Internal server error"}), 500

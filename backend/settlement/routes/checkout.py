# Overview: Flask API routes for checkout; split-tender allocation and sale commit.

# backend/settlement/routes/checkout.py
"""
Checkout API Routes

WHY: A till sends the finalized cart plus its tender legs in one request;
the server allocates them against the total, quotes any account legs and
commits the sale only when the legs cover the total exactly.

DESIGN:
- Allocation happens server-side through PaymentAllocator, in request order
- A rejected account quote stops the request before anything is written
  and returns the quote (max the account can cover, remainder to tender
  another way)
- A sale whose account debit failed after writing is returned with
  needs_reconciliation=true (flagged, not an error)
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import sales_service
from ..services.account_service import (
    AccountError,
    REASON_ACCOUNT_NOT_FOUND,
    REASON_INVALID_AMOUNT,
)
from ..services.cashup_service import CashupError
from ..services.concurrency import ConcurrencyConflict, PersistenceFailure
from ..services.payment_service import PaymentAllocator, PaymentError
from ..services.sales_service import SaleDraft, SaleError
from ..validation import ValidationError
from ..decorators import error_response, require_json


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")

SERVICE_ERRORS = (
    PaymentError,
    SaleError,
    AccountError,
    CashupError,
    ValidationError,
    ConcurrencyConflict,
    PersistenceFailure,
)


def _allocate(data: dict):
    """
    Build the draft and feed every requested leg through an allocator.

    Returns (draft, allocator, rejection); rejection is the InvalidQuote
    of the first account leg the customer cannot cover, else None.
    """
    draft = SaleDraft.from_dict(data.get("draft") or {})
    legs = data.get("allocations") or []
    if not isinstance(legs, list):
        raise ValidationError("allocations must be a list")

    allocator = PaymentAllocator(draft.total_due_cents)
    for leg in legs:
        if not isinstance(leg, dict):
            raise ValidationError("Each allocation must be an object")
        result = allocator.add_allocation(leg.get("method"), leg.get("amount_cents"), leg.get("customer_id"))
        if not result.is_valid:
            return draft, allocator, result
    return draft, allocator, None


def _rejection_response(rejection, allocator: PaymentAllocator):
    if rejection.reason == REASON_ACCOUNT_NOT_FOUND:
        status = 404
    elif rejection.reason == REASON_INVALID_AMOUNT:
        status = 400
    else:
        status = 409
    return jsonify({
        "error": rejection.error_message,
        "code": rejection.reason,
        "quote": rejection.to_dict(),
        "allocation": allocator.summary(),
    }), status


@checkout_bp.post("/preview")
@require_json
def preview_route(data: dict):
    """
    Allocate without committing.

    Same body as POST /api/checkout; returns the allocator summary
    (remaining, change, checkout state). Nothing is written.
    """
    try:
        draft, allocator, rejection = _allocate(data)
        if rejection is not None:
            return _rejection_response(rejection, allocator)
        return jsonify({
            "total_due_cents": draft.total_due_cents,
            "allocation": allocator.summary(),
        }), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to preview checkout")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/")
@checkout_bp.post("")
@require_json
def checkout_route(data: dict):
    """
    Settle and commit a sale.

    Request body:
    {
        "branch_id": 1,
        "cashup_session_id": 5,  (optional, default: branch's active session)
        "cashier_name": "Sipho",  (optional)
        "draft": {
            "lines": [{"product_ref": "SKU-1", "quantity": 1, "unit_price_cents": 11500}],
            "discount_cents": 0,
            "tax_cents": 0,
            "customer_id": 7  (optional)
        },
        "allocations": [
            {"method": "account", "amount_cents": 8000, "customer_id": 7},
            {"method": "cash", "amount_cents": 4000}
        ]
    }

    Returns:
        201: Sale committed (check needs_reconciliation)
        400: Invalid input or allocations do not cover the total
        404: Branch, session or account not found
        409: Account cannot cover its leg, session conflict, concurrent change
        503: Store unavailable after retries
    """
    try:
        branch_id = data.get("branch_id")
        if not branch_id:
            return jsonify({"error": "branch_id required"}), 400

        draft, allocator, rejection = _allocate(data)
        if rejection is not None:
            return _rejection_response(rejection, allocator)

        result = sales_service.settle_sale(
            draft,
            allocator,
            branch_id=branch_id,
            cashup_session_id=data.get("cashup_session_id"),
            cashier_name=data.get("cashier_name"),
        )

        body = result.to_dict()
        body["allocation"] = allocator.summary()
        return jsonify(body), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to commit sale")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SALES
# =============================================================================

@checkout_bp.get("/sales/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({
            "sale": sale.to_dict(),
            "refunded_cents": sales_service.get_refunded_total(sale.id),
        }), 200
    except SaleError as e:
        return error_response(e)


@checkout_bp.get("/sales/needs-reconciliation")
def list_flagged_sales_route():
    branch_id = request.args.get("branch_id", type=int)
    sales = sales_service.list_sales_needing_reconciliation(branch_id)
    return jsonify({"sales": [s.to_dict() for s in sales], "count": len(sales)}), 200


@checkout_bp.post("/sales/<int:sale_id>/retry-debits")
def retry_debits_route(sale_id: int):
    """Re-attempt failed account debits for a flagged sale."""
    try:
        result = sales_service.retry_failed_debits(sale_id)
        return jsonify(result.to_dict()), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to retry account debits")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/sales/<int:sale_id>/refunds")
@require_json
def refund_route(sale_id: int, data: dict):
    """
    Refund (part of) a completed sale.

    Request body:
    {
        "amount_cents": 2500,
        "method": "cash",
        "reason": "Damaged item",
        "cashup_session_id": 5  (optional)
    }
    """
    try:
        movement = sales_service.refund_sale(
            sale_id,
            data.get("amount_cents"),
            data.get("method"),
            data.get("reason"),
            cashup_session_id=data.get("cashup_session_id"),
        )
        return jsonify({
            "refund": movement.to_dict(),
            "refunded_cents": sales_service.get_refunded_total(sale_id),
        }), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return jsonify({"error": "Internal server error"}), 500

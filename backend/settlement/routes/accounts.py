# Overview: Flask API routes for customer accounts; parses input and returns JSON responses.

# backend/settlement/routes/accounts.py
"""
Customer Account API Routes

WHY: Tills need to check what an account customer can spend before
taking an account tender, take payments into the account, and show
statements.

DESIGN:
- Quotes never write; a rejected quote is a normal 200 response with
  is_valid=false and the figures the cashier needs to split the tender
- Payments into an account go through the same compare-and-set as debits
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import account_service
from ..services.account_service import AccountError
from ..services.concurrency import ConcurrencyConflict, PersistenceFailure
from ..validation import ConflictError, ValidationError, coerce_cents
from ..decorators import error_response, require_json


accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/accounts")


@accounts_bp.post("/")
@accounts_bp.post("")
@require_json
def open_account_route(data: dict):
    """
    Open a customer account.

    Request body:
    {
        "first_name": "Thandi",
        "last_name": "Mokoena",
        "account_number": "ACC-0042",  (optional, generated when omitted)
        "credit_limit_cents": 50000,  (optional, default 0)
        "opening_balance_cents": 0,  (optional)
        "email": "...",  (optional)
        "phone": "..."  (optional)
    }
    """
    try:
        account = account_service.open_account(
            data.get("first_name"),
            data.get("last_name"),
            account_number=data.get("account_number"),
            credit_limit_cents=data.get("credit_limit_cents", 0),
            opening_balance_cents=data.get("opening_balance_cents", 0),
            email=data.get("email"),
            phone=data.get("phone"),
        )
        return jsonify({"account": account.to_dict()}), 201

    except (AccountError, ConflictError, ValidationError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open account")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/<int:customer_id>")
def get_account_route(customer_id: int):
    try:
        account = account_service.get_account(customer_id)
        return jsonify({"account": account.to_dict()}), 200
    except AccountError as e:
        return error_response(e)


@accounts_bp.patch("/<int:customer_id>")
@require_json
def update_account_route(customer_id: int, data: dict):
    """
    Change status and/or credit limit.

    Request body:
    {
        "status": "inactive",  (optional)
        "credit_limit_cents": 100000  (optional)
    }
    """
    try:
        if "status" not in data and "credit_limit_cents" not in data:
            return jsonify({"error": "status or credit_limit_cents required"}), 400

        account = account_service.get_account(customer_id)
        if "status" in data:
            account = account_service.set_account_status(customer_id, data["status"])
        if "credit_limit_cents" in data:
            account = account_service.set_credit_limit(customer_id, data["credit_limit_cents"])

        return jsonify({"account": account.to_dict()}), 200

    except (AccountError, ValidationError, ConcurrencyConflict, PersistenceFailure) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update account")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.post("/<int:customer_id>/quote")
@require_json
def quote_route(customer_id: int, data: dict):
    """
    Advisory affordability check for an account tender.

    Request body:
    {
        "amount_cents": 10000
    }

    Returns:
        200: quote (is_valid true/false); never writes
        400: amount_cents missing or not an integer
    """
    try:
        amount_cents = coerce_cents(data.get("amount_cents"), "amount_cents")
    except ValidationError as e:
        return error_response(e)

    result = account_service.quote(customer_id, amount_cents)
    return jsonify({"quote": result.to_dict()}), 200


@accounts_bp.post("/<int:customer_id>/payments")
@require_json
def account_payment_route(customer_id: int, data: dict):
    """
    Customer pays money into their account.

    Request body:
    {
        "amount_cents": 20000,
        "payment_method": "cash",
        "reference": "Till 2"  (optional)
    }
    """
    try:
        txn = account_service.credit(
            customer_id,
            data.get("amount_cents"),
            data.get("payment_method"),
            reference=data.get("reference"),
        )
        account = account_service.get_account(customer_id)
        return jsonify({"transaction": txn.to_dict(), "account": account.to_dict()}), 201

    except (AccountError, ValidationError, ConcurrencyConflict, PersistenceFailure) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record account payment")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/<int:customer_id>/statement")
def statement_route(customer_id: int):
    try:
        limit = request.args.get("limit", type=int)
        account = account_service.get_account(customer_id)
        rows = account_service.get_account_statement(customer_id, limit=limit)
        return jsonify({
            "account": account.to_dict(),
            "transactions": [row.to_dict() for row in rows],
        }), 200
    except AccountError as e:
        return error_response(e)

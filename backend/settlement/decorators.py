# Overview: Request decorators and error mapping for API routes.

from functools import wraps
from flask import request, jsonify

from .validation import ValidationError, ConflictError
from .services.concurrency import ConcurrencyConflict, PersistenceFailure
from .services.account_service import AccountNotFound, AccountInactive, InsufficientFunds
from .services.cashup_service import (
    BranchNotFound,
    SessionNotFound,
    SessionAlreadyActive,
    SessionAlreadyClosed,
    SessionNotActive,
    InvalidSessionTransition,
)
from .services.laybye_service import LaybyeNotFound, LaybyeNotPayable
from .services.sales_service import SaleNotFound
from .services.variance_service import VarianceNotFound


NOT_FOUND_ERRORS = (
    AccountNotFound,
    BranchNotFound,
    SessionNotFound,
    LaybyeNotFound,
    SaleNotFound,
    VarianceNotFound,
)

CONFLICT_ERRORS = (
    ConflictError,
    ConcurrencyConflict,
    AccountInactive,
    InsufficientFunds,
    SessionAlreadyActive,
    SessionAlreadyClosed,
    SessionNotActive,
    InvalidSessionTransition,
    LaybyeNotPayable,
)


def error_response(exc: Exception):
    """
    Map a service exception to a JSON error response.

    404 for missing records, 409 for state/concurrency conflicts,
    503 when the store stayed unavailable through every retry,
    400 for everything else the services raise on bad input.
    """
    body = {"error": str(exc), "code": getattr(exc, "code", "ERROR")}

    if isinstance(exc, InsufficientFunds):
        body["max_possible_payment_cents"] = exc.max_possible_payment_cents
        body["remaining_needs_other_payment_cents"] = exc.remaining_needs_other_payment_cents
    if getattr(exc, "minimum_deposit_cents", None) is not None:
        body["minimum_deposit_cents"] = exc.minimum_deposit_cents

    if isinstance(exc, NOT_FOUND_ERRORS):
        return jsonify(body), 404
    if isinstance(exc, CONFLICT_ERRORS):
        return jsonify(body), 409
    if isinstance(exc, PersistenceFailure):
        return jsonify(body), 503
    return jsonify(body), 400


def require_json(f):
    """
    Require a JSON object request body.

    The parsed body is passed to the view as the `data` keyword argument.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object", "code": ValidationError.code}), 400
        kwargs["data"] = data
        return f(*args, **kwargs)

    return decorated_function

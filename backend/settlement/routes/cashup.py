# Overview: Flask API routes for cash-up sessions and cash variances.

# backend/settlement/routes/cashup.py
"""
Cash-Up API Routes

WHY: Each branch counts its drawer at the end of a shift and compares the
count with what the recorded takings say should be there.

DESIGN:
- One active session per branch (409 when another is open)
- Expected amount is derived from recorded movements while active and
  frozen at close
- Closing is idempotent: resending the same close returns the same result
- Variance explanations live under /api/variances and are append-only
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import cashup_service, variance_service
from ..services.cashup_service import CashupError
from ..services.concurrency import ConcurrencyConflict, PersistenceFailure
from ..validation import ValidationError, coerce_cents
from ..decorators import error_response, require_json
from settlement.time_utils import parse_iso_datetime


cashup_bp = Blueprint("cashup", __name__, url_prefix="/api/cashup")
variances_bp = Blueprint("variances", __name__, url_prefix="/api/variances")

SERVICE_ERRORS = (CashupError, ValidationError, ConcurrencyConflict, PersistenceFailure)


def _parse_datetime_arg(name: str):
    value = request.args.get(name)
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


# =============================================================================
# SESSIONS
# =============================================================================

@cashup_bp.post("/sessions")
@require_json
def open_session_route(data: dict):
    """
    Open a cash-up session.

    Request body:
    {
        "branch_id": 1,
        "opening_cents": 50000,
        "cashier_name": "Sipho",
        "notes": "..."  (optional)
    }
    """
    try:
        branch_id = data.get("branch_id")
        if not branch_id:
            return jsonify({"error": "branch_id required"}), 400

        session = cashup_service.open_session(
            branch_id,
            data.get("opening_cents"),
            data.get("cashier_name"),
            notes=data.get("notes"),
        )
        return jsonify({"session": session.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open cash-up session")
        return jsonify({"error": "Internal server error"}), 500


@cashup_bp.get("/sessions")
def list_sessions_route():
    try:
        branch_id = request.args.get("branch_id", type=int)
        if not branch_id:
            return jsonify({"error": "branch_id required"}), 400

        sessions = cashup_service.list_sessions(
            branch_id,
            status=request.args.get("status"),
            start=_parse_datetime_arg("start"),
            end=_parse_datetime_arg("end"),
            limit=request.args.get("limit", type=int),
        )
        return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)


@cashup_bp.get("/branches/<int:branch_id>/current")
def current_session_route(branch_id: int):
    session = cashup_service.get_current_session(branch_id)
    if not session:
        return jsonify({"session": None}), 200
    return jsonify(cashup_service.get_session_summary(session.id)), 200


@cashup_bp.get("/sessions/<int:session_id>")
def get_session_route(session_id: int):
    try:
        return jsonify(cashup_service.get_session_summary(session_id)), 200
    except CashupError as e:
        return error_response(e)


@cashup_bp.post("/sessions/<int:session_id>/expenses")
@require_json
def record_expense_route(session_id: int, data: dict):
    """
    Record money paid out of the till.

    Request body:
    {
        "description": "Milk for staff room",
        "amount_cents": 2500,
        "method": "cash"  (optional)
    }
    """
    try:
        movement = cashup_service.record_expense(
            session_id,
            data.get("description"),
            data.get("amount_cents"),
            data.get("method") or cashup_service.METHOD_CASH,
        )
        return jsonify({"expense": movement.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record expense")
        return jsonify({"error": "Internal server error"}), 500


@cashup_bp.post("/sessions/<int:session_id>/close")
@require_json
def close_session_route(session_id: int, data: dict):
    """
    Close a session with the counted amount.

    Request body:
    {
        "actual_cents": 100400,
        "expenses": [{"description": "...", "amount_cents": 500}],  (optional)
        "notes": "..."  (optional)
    }

    Returns:
        200: Closed session with expected/variance and its classification
        409: Already closed with a different payload / already reconciled
    """
    try:
        expenses = data.get("expenses") or []
        if not isinstance(expenses, list):
            return jsonify({"error": "expenses must be a list"}), 400

        session = cashup_service.close_session(
            session_id,
            data.get("actual_cents"),
            expenses=expenses,
            notes=data.get("notes"),
        )
        return jsonify(cashup_service.get_session_summary(session.id)), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close cash-up session")
        return jsonify({"error": "Internal server error"}), 500


@cashup_bp.post("/sessions/<int:session_id>/reconcile")
def reconcile_session_route(session_id: int):
    try:
        data = request.get_json(silent=True) or {}
        session = cashup_service.reconcile_session(session_id, notes=data.get("notes"))
        return jsonify({"session": session.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile cash-up session")
        return jsonify({"error": "Internal server error"}), 500


@cashup_bp.get("/classify")
def classify_variance_route():
    try:
        variance_cents = coerce_cents(request.args.get("variance_cents"), "variance_cents")
        threshold = request.args.get("threshold_cents")
        threshold_cents = coerce_cents(threshold, "threshold_cents") if threshold is not None else None
        return jsonify(cashup_service.classify_variance(variance_cents, threshold_cents).to_dict()), 200
    except ValidationError as e:
        return error_response(e)


# =============================================================================
# VARIANCES
# =============================================================================

@variances_bp.post("/")
@variances_bp.post("")
@require_json
def record_variance_route(data: dict):
    """
    Record a variance explanation against a session.

    Request body:
    {
        "session_id": 5,
        "variance_type": "shortage",
        "amount_cents": 1000,
        "category": "wrong_change_given",
        "description": "...",  (optional)
        "reported_by": "Sipho"  (optional)
    }
    """
    try:
        if not data.get("session_id"):
            return jsonify({"error": "session_id required"}), 400

        record = variance_service.record_variance(
            data.get("session_id"),
            data.get("variance_type"),
            data.get("amount_cents"),
            data.get("category"),
            description=data.get("description"),
            reported_by=data.get("reported_by"),
        )
        return jsonify({"variance": record.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record variance")
        return jsonify({"error": "Internal server error"}), 500


@variances_bp.post("/sessions/<int:session_id>")
def record_session_variance_route(session_id: int):
    """Record a closed session's whole variance under one category."""
    try:
        data = request.get_json(silent=True) or {}
        record = variance_service.record_session_variance(
            session_id,
            data.get("category") or "unknown",
            description=data.get("description"),
            reported_by=data.get("reported_by"),
        )
        return jsonify({"variance": record.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record session variance")
        return jsonify({"error": "Internal server error"}), 500


@variances_bp.get("/sessions/<int:session_id>")
def list_session_variances_route(session_id: int):
    records = variance_service.get_session_variances(session_id)
    return jsonify({"variances": [
        dict(r.to_dict(), resolution_status=variance_service.current_resolution_status(r))
        for r in records
    ]}), 200


@variances_bp.get("/stats")
def variance_stats_route():
    try:
        branch_id = request.args.get("branch_id", type=int)
        if not branch_id:
            return jsonify({"error": "branch_id required"}), 400
        stats = variance_service.get_variance_stats(
            branch_id,
            start=_parse_datetime_arg("start"),
            end=_parse_datetime_arg("end"),
        )
        return jsonify({"stats": stats}), 200
    except ValidationError as e:
        return error_response(e)


@variances_bp.get("/<int:variance_id>")
def get_variance_route(variance_id: int):
    try:
        record = variance_service.get_variance(variance_id)
        return jsonify({
            "variance": record.to_dict(),
            "resolution_status": variance_service.current_resolution_status(record),
            "actions": [a.to_dict() for a in record.actions],
        }), 200
    except CashupError as e:
        return error_response(e)


@variances_bp.post("/<int:variance_id>/actions")
@require_json
def add_variance_action_route(variance_id: int, data: dict):
    """
    Append a follow-up action.

    Request body:
    {
        "action_type": "investigated",
        "action_by": "Manager Naidoo",
        "notes": "..."  (optional)
    }
    """
    try:
        action = variance_service.add_variance_action(
            variance_id,
            data.get("action_type"),
            data.get("action_by"),
            notes=data.get("notes"),
        )
        return jsonify({"action": action.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add variance action")
        return jsonify({"error": "Internal server error"}), 500

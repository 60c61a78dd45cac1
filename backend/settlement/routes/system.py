# backend/settlement/routes/system.py
"""
System health endpoint.

Checks the store is reachable and reports how many branches currently
have an active cash-up session.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Branch, CashupSession, Sale
from settlement.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        branch_count = db.session.query(Branch).count()
        active_sessions = db.session.query(CashupSession).filter_by(status="active").count()
        flagged_sales = db.session.query(Sale).filter_by(payment_status="needs_reconciliation").count()

        elapsed_ms = (time.time() - start_time) * 1000

        details = {
            "branches": branch_count,
            "active_cashup_sessions": active_sessions,
            "sales_needing_reconciliation": flagged_sales,
        }
        if flagged_sales:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{flagged_sales} sale(s) need account reconciliation",
                "details": details,
            }
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy (or degraded: flagged sales waiting for follow-up)
    - 503: store unreachable
    """
    database_health = check_database_health()

    if database_health["status"] == "unhealthy":
        http_status = 503
    else:
        http_status = 200

    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "currency": current_app.config.get("CURRENCY_CODE"),
        "checks": {
            "database": database_health,
        }
    }, http_status

# Overview: Service-layer operations for cash variances; recording and follow-up trail.

"""
Cash Variance Service

A variance record explains (part of) a session's overage or shortage.
Records are immutable; investigation, approval and resolution are
appended as actions, and a variance's resolution status is whatever its
latest action left it in.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import CashupSession, CashVariance, CashVarianceAction
from settlement.time_utils import utcnow
from settlement.validation import ValidationError, require_positive_cents, require_text
from .cashup_service import (
    STATUS_ACTIVE,
    STATUS_CLOSED,
    VARIANCE_OVERAGE,
    VARIANCE_SHORTAGE,
    CashupError,
    SessionNotFound,
)
from .concurrency import run_with_retry


class VarianceError(CashupError):
    """Raised for variance recording errors."""
    code = "VARIANCE_ERROR"


class VarianceNotFound(VarianceError):
    code = "VARIANCE_NOT_FOUND"


class VarianceNotAllowed(VarianceError):
    code = "VARIANCE_NOT_ALLOWED"


VARIANCE_TYPES = [VARIANCE_OVERAGE, VARIANCE_SHORTAGE]

CATEGORIES = [
    "counting_error",
    "unrecorded_sale",
    "wrong_change_given",
    "cash_theft",
    "register_malfunction",
    "unaccounted_expense",
    "foreign_currency",
    "damaged_bills",
    "customer_dispute",
    "unknown",
    "other",
]

# Resolution statuses
RESOLUTION_PENDING = "pending"
RESOLUTION_INVESTIGATING = "investigating"
RESOLUTION_RESOLVED = "resolved"
RESOLUTION_UNRESOLVED = "unresolved"
RESOLUTION_MANAGER_APPROVED = "manager_approved"

CLOSED_RESOLUTIONS = (RESOLUTION_RESOLVED, RESOLUTION_MANAGER_APPROVED)

# action_type -> resolution status after the action (None keeps the current one)
ACTION_RESOLUTIONS = {
    "created": RESOLUTION_PENDING,
    "investigated": RESOLUTION_INVESTIGATING,
    "escalated": RESOLUTION_INVESTIGATING,
    "manager_reviewed": None,
    "comment_added": None,
    "approved": RESOLUTION_MANAGER_APPROVED,
    "rejected": RESOLUTION_UNRESOLVED,
    "resolved": RESOLUTION_RESOLVED,
}


def record_variance(
    session_id: int,
    variance_type: str,
    amount_cents: int,
    category: str,
    description: str | None = None,
    reported_by: str | None = None,
) -> CashVariance:
    """
    Record a variance against an active or closed session.

    On a closed session the type must agree with the sign of the frozen
    session variance (no "overage" explanations for a short till).
    """
    if variance_type not in VARIANCE_TYPES:
        raise ValidationError(f"Invalid variance_type: {variance_type}. Must be one of {VARIANCE_TYPES}")
    if category not in CATEGORIES:
        raise ValidationError(f"Invalid category: {category}. Must be one of {CATEGORIES}")
    amount_cents = require_positive_cents(amount_cents, "amount_cents")

    def _op():
        session = db.session.get(CashupSession, session_id)
        if not session:
            raise SessionNotFound(f"Cash-up session {session_id} not found")
        if session.status not in (STATUS_ACTIVE, STATUS_CLOSED):
            raise VarianceNotAllowed(f"Cannot record variances on a {session.status} session")

        if session.status == STATUS_CLOSED:
            variance = session.variance_cents or 0
            if variance == 0:
                raise VarianceNotAllowed("Session closed with no variance")
            expected_type = VARIANCE_OVERAGE if variance > 0 else VARIANCE_SHORTAGE
            if variance_type != expected_type:
                raise VarianceNotAllowed(
                    f"Session variance is {variance} cents; expected a {expected_type} record"
                )

        record = CashVariance(
            cashup_session_id=session.id,
            branch_id=session.branch_id,
            variance_type=variance_type,
            amount_cents=amount_cents,
            category=category,
            description=description,
            reported_by=reported_by,
            created_at=utcnow(),
        )
        db.session.add(record)
        db.session.flush()

        db.session.add(CashVarianceAction(
            variance_id=record.id,
            action_type="created",
            resolution_status=RESOLUTION_PENDING,
            action_by=reported_by or "system",
            notes=description,
            created_at=record.created_at,
        ))
        db.session.commit()
        return record

    record = run_with_retry(_op)
    current_app.logger.info(
        "Variance recorded for session %s: %s %s cents (%s)",
        session_id, variance_type, amount_cents, category,
    )
    return record


def record_session_variance(
    session_id: int,
    category: str = "unknown",
    description: str | None = None,
    reported_by: str | None = None,
) -> CashVariance:
    """Record a closed session's whole variance under one category."""
    session = db.session.get(CashupSession, session_id)
    if not session:
        raise SessionNotFound(f"Cash-up session {session_id} not found")
    if session.status != STATUS_CLOSED:
        raise VarianceNotAllowed("Session must be closed to record its variance")
    variance = session.variance_cents or 0
    if variance == 0:
        raise VarianceNotAllowed("Session closed with no variance")

    return record_variance(
        session_id,
        VARIANCE_OVERAGE if variance > 0 else VARIANCE_SHORTAGE,
        abs(variance),
        category,
        description=description,
        reported_by=reported_by,
    )


def get_variance(variance_id: int) -> CashVariance:
    record = db.session.get(CashVariance, variance_id)
    if not record:
        raise VarianceNotFound(f"Variance {variance_id} not found")
    return record


def get_session_variances(session_id: int) -> list[CashVariance]:
    return db.session.query(CashVariance).filter_by(
        cashup_session_id=session_id
    ).order_by(CashVariance.id).all()


def add_variance_action(
    variance_id: int,
    action_type: str,
    action_by: str,
    notes: str | None = None,
) -> CashVarianceAction:
    if action_type not in ACTION_RESOLUTIONS or action_type == "created":
        allowed = [a for a in ACTION_RESOLUTIONS if a != "created"]
        raise ValidationError(f"Invalid action_type: {action_type}. Must be one of {allowed}")
    action_by = require_text(action_by, "action_by", max_length=128)

    def _op():
        record = get_variance(variance_id)
        status = ACTION_RESOLUTIONS[action_type] or current_resolution_status(record)
        action = CashVarianceAction(
            variance_id=record.id,
            action_type=action_type,
            resolution_status=status,
            action_by=action_by,
            notes=notes,
            created_at=utcnow(),
        )
        db.session.add(action)
        db.session.commit()
        return action

    return run_with_retry(_op)


def current_resolution_status(record: CashVariance) -> str:
    latest = db.session.query(CashVarianceAction).filter_by(
        variance_id=record.id
    ).order_by(CashVarianceAction.id.desc()).first()
    return latest.resolution_status if latest else RESOLUTION_PENDING


def get_variance_stats(
    branch_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    query = db.session.query(CashVariance).filter_by(branch_id=branch_id)
    if start:
        query = query.filter(CashVariance.created_at >= start)
    if end:
        query = query.filter(CashVariance.created_at <= end)
    records = query.all()

    stats = {
        "total_variances": len(records),
        "total_shortage_cents": 0,
        "total_overage_cents": 0,
        "net_variance_cents": 0,
        "unresolved_count": 0,
        "by_category": {},
        "by_status": {},
    }

    for record in records:
        if record.variance_type == VARIANCE_SHORTAGE:
            stats["total_shortage_cents"] += record.amount_cents
        else:
            stats["total_overage_cents"] += record.amount_cents

        status = current_resolution_status(record)
        if status not in CLOSED_RESOLUTIONS:
            stats["unresolved_count"] += 1
        stats["by_status"][status] = stats["by_status"].get(status, 0) + 1

        bucket = stats["by_category"].setdefault(record.category, {"count": 0, "amount_cents": 0})
        bucket["count"] += 1
        bucket["amount_cents"] += record.amount_cents

    stats["net_variance_cents"] = stats["total_overage_cents"] - stats["total_shortage_cents"]
    return stats

# Overview: Service-layer operations for cash-up sessions; running totals, close and reconciliation.

"""
Cash-Up Session Service

WHY: Track a cashier's drawer across a shift and reconcile counted cash
against what the session's movements say should be there.

DESIGN PRINCIPLES:
- One active session per branch at a time
- Status only moves active -> closed -> reconciled
- Expected amount is always derived from stored movements:
    expected = opening + sales_total - refunds_total - expenses_total
- Closing is idempotent: replaying the same close payload returns the
  same session, a different payload is rejected
- Variance = actual - expected
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Branch, CashupMovement, CashupSession
from settlement.time_utils import utcnow
from settlement.validation import (
    ValidationError,
    require_non_negative_cents,
    require_positive_cents,
    require_text,
)
from .concurrency import lock_for_update, run_with_retry
from .payment_service import METHOD_CASH, validate_method


class CashupError(Exception):
    """Raised for cash-up session errors."""
    code = "CASHUP_ERROR"


class BranchNotFound(CashupError):
    code = "BRANCH_NOT_FOUND"


class SessionAlreadyActive(CashupError):
    code = "SESSION_ALREADY_ACTIVE"


class SessionNotFound(CashupError):
    code = "SESSION_NOT_FOUND"


class SessionAlreadyClosed(CashupError):
    code = "SESSION_ALREADY_CLOSED"


class SessionNotActive(CashupError):
    code = "SESSION_NOT_ACTIVE"


class InvalidSessionTransition(CashupError):
    code = "INVALID_SESSION_TRANSITION"


# =============================================================================
# CONSTANTS
# =============================================================================

STATUS_ACTIVE = "active"
STATUS_CLOSED = "closed"
STATUS_RECONCILED = "reconciled"

MOVEMENT_SALE = "SALE"
MOVEMENT_REFUND = "REFUND"
MOVEMENT_EXPENSE = "EXPENSE"

VARIANCE_EXACT = "exact"
VARIANCE_MINOR = "minor"
VARIANCE_SIGNIFICANT = "significant"

VARIANCE_OVERAGE = "overage"
VARIANCE_SHORTAGE = "shortage"


@dataclass
class SessionTotals:
    """Per-method breakdown of a session's movements."""
    sales_by_method: dict = field(default_factory=dict)
    refunds_by_method: dict = field(default_factory=dict)
    expenses: list = field(default_factory=list)

    @property
    def sales_total_cents(self) -> int:
        return sum(self.sales_by_method.values())

    @property
    def refunds_total_cents(self) -> int:
        return sum(self.refunds_by_method.values())

    @property
    def expenses_total_cents(self) -> int:
        return sum(e["amount_cents"] for e in self.expenses)

    def to_dict(self) -> dict:
        return {
            "sales_by_method": dict(self.sales_by_method),
            "sales_total_cents": self.sales_total_cents,
            "refunds_by_method": dict(self.refunds_by_method),
            "refunds_total_cents": self.refunds_total_cents,
            "expenses": list(self.expenses),
            "expenses_total_cents": self.expenses_total_cents,
        }


@dataclass(frozen=True)
class VarianceClassification:
    variance_cents: int
    classification: str  # exact, minor, significant
    variance_type: str | None  # overage, shortage (None when exact)
    amount_cents: int  # |variance|

    def to_dict(self) -> dict:
        return {
            "variance_cents": self.variance_cents,
            "classification": self.classification,
            "variance_type": self.variance_type,
            "amount_cents": self.amount_cents,
        }


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def open_session(
    branch_id: int,
    opening_cents: int,
    cashier_name: str,
    notes: str | None = None,
) -> CashupSession:
    """
    Open a new cash-up session on a branch.

    Raises:
        ValidationError: bad opening amount / cashier name
        BranchNotFound: branch missing or inactive
        SessionAlreadyActive: branch already has an active session
    """
    opening_cents = require_non_negative_cents(opening_cents, "opening_cents")
    cashier_name = require_text(cashier_name, "cashier_name", max_length=128)

    branch = db.session.get(Branch, branch_id)
    if not branch or not branch.is_active:
        raise BranchNotFound(f"Branch {branch_id} not found or inactive")

    existing = get_current_session(branch_id)
    if existing:
        raise SessionAlreadyActive(
            f"Branch already has an active cash-up session ({existing.session_number})"
        )

    opened_at = utcnow()
    session = CashupSession(
        session_number=_session_number(branch, opened_at),
        branch_id=branch_id,
        cashier_name=cashier_name,
        status=STATUS_ACTIVE,
        opening_cents=opening_cents,
        notes=notes,
        opened_at=opened_at,
    )
    db.session.add(session)
    try:
        db.session.commit()
    except IntegrityError as exc:
        # Lost the race against another terminal opening the same branch
        db.session.rollback()
        raise SessionAlreadyActive("Branch already has an active cash-up session") from exc

    current_app.logger.info(
        "Cash-up session %s opened on branch %s by %s", session.session_number, branch_id, cashier_name
    )
    return session


def get_current_session(branch_id: int) -> CashupSession | None:
    """Active session for a branch, if any."""
    return db.session.query(CashupSession).filter_by(
        branch_id=branch_id,
        status=STATUS_ACTIVE
    ).first()


def get_session(session_id: int) -> CashupSession:
    session = db.session.get(CashupSession, session_id)
    if not session:
        raise SessionNotFound(f"Cash-up session {session_id} not found")
    return session


def close_session(
    session_id: int,
    actual_cents: int,
    expenses: list[dict] | None = None,
    notes: str | None = None,
) -> CashupSession:
    """
    Close a session: book close-time expenses, freeze expected, store the
    counted amount and compute variance.

    IDEMPOTENT: the same (actual, expenses, notes) against an already
    closed session returns it unchanged; anything else raises
    SessionAlreadyClosed.

    Args:
        session_id: Session to close
        actual_cents: Cash counted in the drawer
        expenses: [{"description", "amount_cents", "method"?}] paid out of the till
        notes: Optional closing notes
    """
    actual_cents = require_non_negative_cents(actual_cents, "actual_cents")
    normalized_expenses = [_normalize_expense(e) for e in (expenses or [])]
    fingerprint = _close_fingerprint(actual_cents, normalized_expenses, notes)

    def _op():
        session = lock_for_update(db.session.query(CashupSession).filter_by(id=session_id)).first()
        if not session:
            raise SessionNotFound(f"Cash-up session {session_id} not found")

        if session.status != STATUS_ACTIVE:
            if session.close_fingerprint == fingerprint:
                current_app.logger.info("Replayed close for cash-up session %s ignored", session.session_number)
                return session
            raise SessionAlreadyClosed(f"Cash-up session {session.session_number} is already {session.status}")

        now = utcnow()
        for expense in normalized_expenses:
            db.session.add(CashupMovement(
                cashup_session_id=session.id,
                kind=MOVEMENT_EXPENSE,
                method=expense["method"],
                amount_cents=expense["amount_cents"],
                description=expense["description"],
                recorded_at=now,
            ))
        db.session.flush()

        expected = calculate_expected(session)
        session.expected_cents = expected
        session.actual_cents = actual_cents
        session.variance_cents = actual_cents - expected
        session.status = STATUS_CLOSED
        session.closed_at = now
        session.close_fingerprint = fingerprint
        if notes is not None:
            session.notes = notes

        db.session.commit()

        classification = classify_variance(session.variance_cents)
        log = current_app.logger.warning if classification.classification == VARIANCE_SIGNIFICANT else current_app.logger.info
        log(
            "Cash-up session %s closed: expected=%s actual=%s variance=%s (%s)",
            session.session_number, expected, actual_cents, session.variance_cents,
            classification.classification,
        )
        return session

    return run_with_retry(_op)


def reconcile_session(session_id: int, notes: str | None = None) -> CashupSession:
    """
    Mark a closed session as reviewed.

    Terminal: nothing about a reconciled session can change afterwards.
    """
    def _op():
        session = lock_for_update(db.session.query(CashupSession).filter_by(id=session_id)).first()
        if not session:
            raise SessionNotFound(f"Cash-up session {session_id} not found")

        if session.status == STATUS_ACTIVE:
            raise InvalidSessionTransition("Session must be closed before it can be reconciled")
        if session.status == STATUS_RECONCILED:
            raise SessionAlreadyClosed(f"Cash-up session {session.session_number} is already reconciled")

        session.status = STATUS_RECONCILED
        session.reconciled_at = utcnow()
        session.reconcile_notes = notes
        db.session.commit()

        current_app.logger.info("Cash-up session %s reconciled", session.session_number)
        return session

    return run_with_retry(_op)


# =============================================================================
# RUNNING TOTALS
# =============================================================================

def record_sale(
    session_id: int,
    method: str,
    amount_cents: int,
    *,
    sale_id: int | None = None,
    laybye_payment_id: int | None = None,
    description: str | None = None,
    commit: bool = True,
) -> CashupMovement:
    """Book settled takings against an active session."""
    return _record_movement(
        session_id, MOVEMENT_SALE, method, amount_cents,
        sale_id=sale_id, laybye_payment_id=laybye_payment_id,
        description=description, commit=commit,
    )


def record_refund(
    session_id: int,
    method: str,
    amount_cents: int,
    *,
    sale_id: int | None = None,
    description: str | None = None,
    commit: bool = True,
) -> CashupMovement:
    """Book money returned to a customer against an active session."""
    return _record_movement(
        session_id, MOVEMENT_REFUND, method, amount_cents,
        sale_id=sale_id, description=description, commit=commit,
    )


def record_expense(
    session_id: int,
    description: str,
    amount_cents: int,
    method: str = METHOD_CASH,
    *,
    commit: bool = True,
) -> CashupMovement:
    """Book money paid out of the till during the shift."""
    description = require_text(description, "description")
    return _record_movement(
        session_id, MOVEMENT_EXPENSE, method, amount_cents,
        description=description, commit=commit,
    )


def get_session_totals(session_id: int) -> SessionTotals:
    movements = db.session.query(CashupMovement).filter_by(
        cashup_session_id=session_id
    ).order_by(CashupMovement.id).all()

    totals = SessionTotals()
    for m in movements:
        if m.kind == MOVEMENT_SALE:
            totals.sales_by_method[m.method] = totals.sales_by_method.get(m.method, 0) + m.amount_cents
        elif m.kind == MOVEMENT_REFUND:
            totals.refunds_by_method[m.method] = totals.refunds_by_method.get(m.method, 0) + m.amount_cents
        elif m.kind == MOVEMENT_EXPENSE:
            totals.expenses.append({
                "description": m.description,
                "amount_cents": m.amount_cents,
                "method": m.method,
            })
    return totals


def calculate_expected(session: CashupSession) -> int:
    """
    expected = opening + sales_total - refunds_total - expenses_total

    NOTE: Totals span every payment method, not just cash. This mirrors
    how stores have always been reconciled here (one ledger for all
    takings); whether card/mobile movements belong in the drawer figure
    is an open product question, see DESIGN.md.
    """
    if session.status != STATUS_ACTIVE and session.expected_cents is not None:
        return session.expected_cents

    totals = get_session_totals(session.id)
    return (
        session.opening_cents
        + totals.sales_total_cents
        - totals.refunds_total_cents
        - totals.expenses_total_cents
    )


def classify_variance(variance_cents: int, threshold_cents: int | None = None) -> VarianceClassification:
    """
    exact when 0, minor when 0 < |variance| <= threshold, else significant.

    Positive variance (more cash than expected) is an overage.
    """
    if threshold_cents is None:
        threshold_cents = current_app.config.get("VARIANCE_THRESHOLD_CENTS", 500)

    amount = abs(variance_cents)
    if amount == 0:
        classification = VARIANCE_EXACT
    elif amount <= threshold_cents:
        classification = VARIANCE_MINOR
    else:
        classification = VARIANCE_SIGNIFICANT

    if variance_cents > 0:
        variance_type = VARIANCE_OVERAGE
    elif variance_cents < 0:
        variance_type = VARIANCE_SHORTAGE
    else:
        variance_type = None

    return VarianceClassification(
        variance_cents=variance_cents,
        classification=classification,
        variance_type=variance_type,
        amount_cents=amount,
    )


# =============================================================================
# REPORTING
# =============================================================================

def list_sessions(
    branch_id: int,
    *,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[CashupSession]:
    """Sessions for a branch, newest first."""
    query = db.session.query(CashupSession).filter_by(branch_id=branch_id)
    if status:
        query = query.filter(CashupSession.status == status)
    if start:
        query = query.filter(CashupSession.opened_at >= start)
    if end:
        query = query.filter(CashupSession.opened_at <= end)
    query = query.order_by(CashupSession.opened_at.desc(), CashupSession.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_session_summary(session_id: int) -> dict:
    """
    Session with live (active) or frozen (closed) reconciliation figures.

    Returns:
        - session: session fields
        - totals: per-method sales/refunds and expenses
        - expected_cents: derived while active, frozen once closed
        - variance: classification when the session has been counted
    """
    session = get_session(session_id)
    totals = get_session_totals(session.id)
    expected = calculate_expected(session)

    summary = {
        "session": session.to_dict(),
        "totals": totals.to_dict(),
        "expected_cents": expected,
        "variance": None,
    }
    if session.variance_cents is not None:
        summary["variance"] = classify_variance(session.variance_cents).to_dict()
    return summary


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _record_movement(
    session_id: int,
    kind: str,
    method: str,
    amount_cents: int,
    *,
    sale_id: int | None = None,
    laybye_payment_id: int | None = None,
    description: str | None = None,
    commit: bool = True,
) -> CashupMovement:
    amount_cents = require_positive_cents(amount_cents, "amount_cents")
    validate_method(method)

    session = db.session.get(CashupSession, session_id)
    if not session:
        raise SessionNotFound(f"Cash-up session {session_id} not found")
    if session.status != STATUS_ACTIVE:
        raise SessionNotActive(f"Cash-up session {session.session_number} is {session.status}")

    movement = CashupMovement(
        cashup_session_id=session_id,
        kind=kind,
        method=method,
        amount_cents=amount_cents,
        sale_id=sale_id,
        laybye_payment_id=laybye_payment_id,
        description=description,
        recorded_at=utcnow(),
    )
    db.session.add(movement)

    if commit:
        db.session.commit()
    else:
        db.session.flush()

    return movement


def _normalize_expense(expense: dict) -> dict:
    if not isinstance(expense, dict):
        raise ValidationError("Each expense must be an object")
    method = expense.get("method") or METHOD_CASH
    validate_method(method)
    return {
        "description": require_text(expense.get("description"), "expense description"),
        "amount_cents": require_positive_cents(expense.get("amount_cents"), "expense amount_cents"),
        "method": method,
    }


def _close_fingerprint(actual_cents: int, expenses: list[dict], notes: str | None) -> str:
    payload = json.dumps(
        {"actual_cents": actual_cents, "expenses": expenses, "notes": notes},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _session_number(branch: Branch, opened_at: datetime) -> str:
    return f"CASHUP-{branch.code}-{opened_at:%Y%m%d%H%M%S%f}"

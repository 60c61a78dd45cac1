# Overview: Service-layer operations for laybye orders; deposits, instalments and lifecycle.

"""
Laybye Service

WHY: A customer reserves goods with a deposit and pays the balance off by
a due date. The order, its deposit payments and any account debits are
written in one transaction: either the whole laybye exists or nothing does.

LIFECYCLE:
    open -> partially_paid -> paid_off
    open | partially_paid -> cancelled (staff)
    open | partially_paid -> expired (past due with balance outstanding)

INVARIANT: remaining_balance_cents = total_cents - sum(payments), >= 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Branch, CustomerAccount, LaybyeItem, LaybyeOrder, LaybyePayment
from settlement.time_utils import utcnow, utctoday
from settlement.validation import ValidationError, coerce_cents, require_positive_cents, require_text
from . import account_service, cashup_service
from .concurrency import run_with_retry
from .payment_service import (
    METHOD_ACCOUNT,
    METHOD_CASH,
    AccountCustomerRequired,
    PaymentAllocation,
    allocated_total,
    validate_method,
)


class LaybyeError(Exception):
    """Raised for laybye operation errors."""
    code = "LAYBYE_ERROR"


class MissingCustomer(LaybyeError):
    code = "MISSING_CUSTOMER"


class InvalidDeposit(LaybyeError):
    code = "INVALID_DEPOSIT"


class DepositBelowMinimum(LaybyeError):
    code = "DEPOSIT_BELOW_MINIMUM"

    def __init__(self, message: str, *, minimum_deposit_cents: int = 0):
        super().__init__(message)
        self.minimum_deposit_cents = minimum_deposit_cents


class DueDateTooSoon(LaybyeError):
    code = "DUE_DATE_TOO_SOON"


class DueDateTooLate(LaybyeError):
    code = "DUE_DATE_TOO_LATE"


class LaybyeNotFound(LaybyeError):
    code = "LAYBYE_NOT_FOUND"


class LaybyeNotPayable(LaybyeError):
    code = "LAYBYE_NOT_PAYABLE"


class LaybyeOverpayment(LaybyeError):
    code = "LAYBYE_OVERPAYMENT"


class DepositAllocationMismatch(LaybyeError):
    code = "DEPOSIT_ALLOCATION_MISMATCH"


# =============================================================================
# STATUS (CONSTANTS)
# =============================================================================

STATUS_OPEN = "open"
STATUS_PARTIALLY_PAID = "partially_paid"
STATUS_PAID_OFF = "paid_off"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"

VALID_STATUSES = [STATUS_OPEN, STATUS_PARTIALLY_PAID, STATUS_PAID_OFF, STATUS_CANCELLED, STATUS_EXPIRED]
PAYABLE_STATUSES = (STATUS_OPEN, STATUS_PARTIALLY_PAID)

PAYMENT_DEPOSIT = "DEPOSIT"
PAYMENT_INSTALMENT = "INSTALMENT"


@dataclass(frozen=True)
class LaybyePolicy:
    require_customer: bool = True
    min_deposit_bps: int = 2000
    min_deposit_cents: int = 0
    min_lead_days: int = 7
    max_duration_days: Optional[int] = 30

    @classmethod
    def from_config(cls, config=None) -> "LaybyePolicy":
        config = config if config is not None else current_app.config
        return cls(
            require_customer=config.get("LAYBYE_REQUIRE_CUSTOMER", True),
            min_deposit_bps=config.get("LAYBYE_MIN_DEPOSIT_BPS", 2000) or 0,
            min_deposit_cents=config.get("LAYBYE_MIN_DEPOSIT_CENTS", 0) or 0,
            min_lead_days=config.get("LAYBYE_MIN_LEAD_DAYS", 7) or 0,
            max_duration_days=config.get("LAYBYE_MAX_DURATION_DAYS", 30),
        )

    def minimum_deposit(self, total_cents: int) -> int:
        # Integer ceil: the percentage minimum rounds up to the next cent
        by_percentage = -((-total_cents * self.min_deposit_bps) // 10000)
        return max(by_percentage, self.min_deposit_cents)


# =============================================================================
# VALIDATION
# =============================================================================

def validate_order(
    total_cents: int,
    deposit_cents: int,
    due_date: date,
    customer_id: int | None = None,
    *,
    policy: LaybyePolicy | None = None,
    today: date | None = None,
) -> int:
    """
    Check a laybye request without writing anything.

    Returns:
        The policy minimum deposit for this total (cents)

    Raises:
        MissingCustomer, InvalidDeposit, DepositBelowMinimum,
        DueDateTooSoon, DueDateTooLate
    """
    policy = policy or LaybyePolicy.from_config()
    today = today or utctoday()

    if policy.require_customer and customer_id is None:
        raise MissingCustomer("A laybye requires a customer")

    if isinstance(deposit_cents, bool) or not isinstance(deposit_cents, int):
        raise InvalidDeposit("Deposit must be an integer number of cents")
    if deposit_cents <= 0:
        raise InvalidDeposit("Deposit must be greater than zero")
    if deposit_cents >= total_cents:
        raise InvalidDeposit("Deposit must be less than the order total")

    minimum = policy.minimum_deposit(total_cents)
    if deposit_cents < minimum:
        raise DepositBelowMinimum(
            f"Deposit {deposit_cents} cents is below the minimum of {minimum} cents",
            minimum_deposit_cents=minimum,
        )

    _check_due_window(due_date, today, policy)
    return minimum


def _check_due_window(due_date: date, start: date, policy: LaybyePolicy) -> None:
    """Due date must fall between start + min_lead_days and start + max_duration_days."""
    if not isinstance(due_date, date):
        raise ValidationError("due_date must be a date")
    earliest = start + timedelta(days=policy.min_lead_days)
    if due_date < earliest:
        raise DueDateTooSoon(f"Due date must be on or after {earliest.isoformat()}")
    if policy.max_duration_days is not None:
        latest = start + timedelta(days=policy.max_duration_days)
        if due_date > latest:
            raise DueDateTooLate(f"Due date must be on or before {latest.isoformat()}")


# =============================================================================
# CREATE
# =============================================================================

def create_order(
    draft,
    deposit_cents: int,
    due_date: date,
    customer_id: int | None = None,
    allocations=(),
    *,
    branch_id: int | None = None,
    cashup_session_id: int | None = None,
    notes: str | None = None,
    policy: LaybyePolicy | None = None,
    today: date | None = None,
) -> LaybyeOrder:
    """
    Create a laybye order from a finalized cart.

    Args:
        draft: SaleDraft with the reserved lines
        deposit_cents: Deposit taken today
        due_date: Date the balance must be paid by
        customer_id: Customer account reserving the goods
        allocations: Deposit tender legs (sum must equal deposit_cents);
            empty means a single cash deposit
        branch_id: Branch taking the order
        cashup_session_id: Session to book the deposit to
            (default: the branch's active session, if any)

    Returns:
        The committed LaybyeOrder (status open)

    Raises:
        LaybyeError subclasses, AccountError subclasses,
        ConcurrencyConflict. Nothing is written on any failure.
    """
    draft.validate()
    total_cents = draft.total_due_cents
    customer_id = customer_id if customer_id is not None else draft.customer_id

    deposit_cents = coerce_cents(deposit_cents, "deposit_cents")
    validate_order(total_cents, deposit_cents, due_date, customer_id, policy=policy, today=today)

    allocations = tuple(allocations) or (
        PaymentAllocation(method=METHOD_CASH, amount_cents=deposit_cents, tendered_cents=deposit_cents),
    )
    _validate_deposit_allocations(allocations, deposit_cents)

    if customer_id is not None and not db.session.get(CustomerAccount, customer_id):
        raise account_service.AccountNotFound(f"Customer account {customer_id} not found")
    if branch_id is not None and not db.session.get(Branch, branch_id):
        raise cashup_service.BranchNotFound(f"Branch {branch_id} not found")

    session_id = _resolve_session_id(branch_id, cashup_session_id)
    currency = draft.currency or current_app.config.get("CURRENCY_CODE", "ZAR")

    def _op():
        now = utcnow()
        order = LaybyeOrder(
            branch_id=branch_id,
            customer_account_id=customer_id,
            currency=currency,
            subtotal_cents=draft.subtotal_cents,
            discount_cents=draft.discount_cents,
            tax_cents=draft.tax_cents,
            total_cents=total_cents,
            deposit_cents=deposit_cents,
            remaining_balance_cents=total_cents - deposit_cents,
            due_date=due_date,
            status=STATUS_OPEN,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)
        db.session.flush()
        order.order_number = f"LB-{order.id:06d}"

        for line in draft.lines:
            db.session.add(LaybyeItem(
                laybye_id=order.id,
                product_ref=line.product_ref,
                description=line.description,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
            ))

        for allocation in allocations:
            _apply_payment(
                order,
                PAYMENT_DEPOSIT,
                allocation.method,
                allocation.amount_cents,
                allocation.customer_id,
                session_id,
                paid_at=now,
            )

        db.session.commit()
        return order

    order = _atomic(_op)
    current_app.logger.info(
        "Laybye %s created: total=%s deposit=%s due=%s",
        order.order_number, total_cents, deposit_cents, due_date.isoformat(),
    )
    return order


# =============================================================================
# PAYMENTS & LIFECYCLE
# =============================================================================

def add_payment(
    laybye_id: int,
    amount_cents: int,
    method: str,
    customer_id: int | None = None,
    *,
    cashup_session_id: int | None = None,
    notes: str | None = None,
) -> LaybyePayment:
    """
    Apply an instalment to an open/partially paid laybye.

    Account instalments default to the order's own customer account.
    """
    amount_cents = require_positive_cents(amount_cents, "amount_cents")
    validate_method(method)

    order = get_order(laybye_id)
    if order.status not in PAYABLE_STATUSES:
        raise LaybyeNotPayable(f"Laybye {order.order_number} is {order.status}")
    if amount_cents > order.remaining_balance_cents:
        raise LaybyeOverpayment(
            f"Payment exceeds remaining balance ({order.remaining_balance_cents} cents)"
        )

    if method == METHOD_ACCOUNT:
        customer_id = customer_id if customer_id is not None else order.customer_account_id
        if customer_id is None:
            raise AccountCustomerRequired("Account payments require a customer")

    session_id = _resolve_session_id(order.branch_id, cashup_session_id)

    def _op():
        fresh = get_order(laybye_id)
        if fresh.status not in PAYABLE_STATUSES:
            raise LaybyeNotPayable(f"Laybye {fresh.order_number} is {fresh.status}")
        if amount_cents > fresh.remaining_balance_cents:
            raise LaybyeOverpayment(
                f"Payment exceeds remaining balance ({fresh.remaining_balance_cents} cents)"
            )

        payment = _apply_payment(
            fresh, PAYMENT_INSTALMENT, method, amount_cents, customer_id, session_id,
            paid_at=utcnow(), notes=notes,
        )
        fresh.status = STATUS_PAID_OFF if fresh.remaining_balance_cents == 0 else STATUS_PARTIALLY_PAID
        fresh.updated_at = utcnow()
        if fresh.status == STATUS_PAID_OFF:
            fresh.closed_at = fresh.updated_at

        db.session.commit()
        return payment

    payment = _atomic(_op)
    if order.status == STATUS_PAID_OFF:
        current_app.logger.info("Laybye %s paid off", order.order_number)
    return payment


def cancel_order(laybye_id: int, reason: str) -> LaybyeOrder:
    """Cancel an open/partially paid laybye. Refunding payments is a separate till action."""
    reason = require_text(reason, "reason")

    def _op():
        order = get_order(laybye_id)
        if order.status not in PAYABLE_STATUSES:
            raise LaybyeNotPayable(f"Cannot cancel laybye {order.order_number} with status {order.status}")
        order.status = STATUS_CANCELLED
        order.cancel_reason = reason
        order.updated_at = utcnow()
        order.closed_at = order.updated_at
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Laybye %s cancelled: %s", order.order_number, reason)
    return order


def update_order_details(
    laybye_id: int,
    *,
    due_date: date | None = None,
    notes: str | None = None,
    customer_id: int | None = None,
    policy: LaybyePolicy | None = None,
) -> LaybyeOrder:
    """
    Edit an open/partially paid laybye (e.g. give the customer more time).

    None leaves a field unchanged; notes="" clears the notes. A new due
    date must sit inside the policy window counted from the day the order
    was created, so extensions cannot stretch a laybye past its maximum
    duration.

    Raises:
        LaybyeNotFound, LaybyeNotPayable, DueDateTooSoon, DueDateTooLate,
        AccountNotFound, ValidationError
    """
    policy = policy or LaybyePolicy.from_config()
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string")
    if customer_id is not None and not db.session.get(CustomerAccount, customer_id):
        raise account_service.AccountNotFound(f"Customer account {customer_id} not found")

    def _op():
        order = get_order(laybye_id)
        if order.status not in PAYABLE_STATUSES:
            raise LaybyeNotPayable(f"Cannot update laybye {order.order_number} with status {order.status}")

        if due_date is not None:
            _check_due_window(due_date, order.created_at.date(), policy)
            order.due_date = due_date
        if notes is not None:
            order.notes = notes.strip() or None
        if customer_id is not None:
            order.customer_account_id = customer_id
        order.updated_at = utcnow()
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Laybye %s details updated (due %s)", order.order_number, order.due_date.isoformat())
    return order


def expire_overdue(as_of: date | None = None) -> list[LaybyeOrder]:
    """
    Expire every open/partially paid order whose due date has passed
    with a balance still outstanding. Run on a schedule (CLI).
    """
    as_of = as_of or utctoday()

    def _op():
        overdue = db.session.query(LaybyeOrder).filter(
            LaybyeOrder.status.in_(PAYABLE_STATUSES),
            LaybyeOrder.due_date < as_of,
            LaybyeOrder.remaining_balance_cents > 0,
        ).order_by(LaybyeOrder.id).all()

        now = utcnow()
        for order in overdue:
            order.status = STATUS_EXPIRED
            order.updated_at = now
            order.closed_at = now
        db.session.commit()
        return overdue

    expired = run_with_retry(_op)
    if expired:
        current_app.logger.info("Expired %s overdue laybye order(s) as of %s", len(expired), as_of.isoformat())
    return expired


# =============================================================================
# QUERIES
# =============================================================================

def get_order(laybye_id: int) -> LaybyeOrder:
    order = db.session.get(LaybyeOrder, laybye_id)
    if not order:
        raise LaybyeNotFound(f"Laybye {laybye_id} not found")
    return order


def list_orders(
    *,
    branch_id: int | None = None,
    customer_id: int | None = None,
    status: str | None = None,
    limit: int | None = None,
) -> list[LaybyeOrder]:
    query = db.session.query(LaybyeOrder)
    if branch_id:
        query = query.filter_by(branch_id=branch_id)
    if customer_id:
        query = query.filter_by(customer_account_id=customer_id)
    if status:
        if status not in VALID_STATUSES:
            raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_STATUSES}")
        query = query.filter_by(status=status)
    query = query.order_by(LaybyeOrder.created_at.desc(), LaybyeOrder.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_laybye_stats(branch_id: int | None = None, as_of: date | None = None) -> dict:
    as_of = as_of or utctoday()
    query = db.session.query(LaybyeOrder)
    if branch_id:
        query = query.filter_by(branch_id=branch_id)
    orders = query.all()

    active = [o for o in orders if o.status in PAYABLE_STATUSES]
    by_status = {status: 0 for status in VALID_STATUSES}
    for order in orders:
        by_status[order.status] = by_status.get(order.status, 0) + 1

    return {
        "total_orders": len(orders),
        "active_orders": len(active),
        "overdue_orders": sum(1 for o in active if o.due_date < as_of),
        "by_status": by_status,
        "total_value_cents": sum(o.total_cents for o in orders),
        "total_deposits_cents": sum(o.deposit_cents for o in orders),
        "outstanding_cents": sum(o.remaining_balance_cents for o in active),
        "collected_cents": sum(o.total_cents - o.remaining_balance_cents for o in orders),
    }


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _validate_deposit_allocations(allocations: tuple, deposit_cents: int) -> None:
    for allocation in allocations:
        if not isinstance(allocation, PaymentAllocation):
            raise ValidationError("Allocations must be PaymentAllocation values")
        validate_method(allocation.method)
        if allocation.method == METHOD_ACCOUNT and allocation.customer_id is None:
            raise AccountCustomerRequired("Account deposit leg without a customer")
    total = allocated_total(allocations)
    if total != deposit_cents:
        raise DepositAllocationMismatch(
            f"Deposit allocations total {total} cents but deposit is {deposit_cents} cents"
        )


def _resolve_session_id(branch_id: int | None, cashup_session_id: int | None) -> int | None:
    if cashup_session_id is not None:
        session = cashup_service.get_session(cashup_session_id)
        if session.status != cashup_service.STATUS_ACTIVE:
            raise cashup_service.SessionNotActive(f"Cash-up session {session.session_number} is {session.status}")
        return session.id
    if branch_id is None:
        return None
    current = cashup_service.get_current_session(branch_id)
    return current.id if current else None


def _apply_payment(
    order: LaybyeOrder,
    kind: str,
    method: str,
    amount_cents: int,
    customer_id: int | None,
    session_id: int | None,
    *,
    paid_at,
    notes: str | None = None,
) -> LaybyePayment:
    """Write one payment row (plus account debit and till movement) without committing."""
    if method == METHOD_ACCOUNT:
        account_service.debit(
            customer_id, amount_cents,
            laybye_id=order.id,
            reference=f"Laybye {order.order_number} {kind.lower()}",
            commit=False,
        )

    payment = LaybyePayment(
        laybye_id=order.id,
        kind=kind,
        method=method,
        amount_cents=amount_cents,
        customer_account_id=customer_id if method == METHOD_ACCOUNT else None,
        cashup_session_id=session_id,
        notes=notes,
        paid_at=paid_at,
    )
    db.session.add(payment)
    db.session.flush()

    if session_id is not None:
        cashup_service.record_sale(
            session_id, method, amount_cents,
            laybye_payment_id=payment.id,
            description=f"Laybye {order.order_number} {kind.lower()}",
            commit=False,
        )

    paid = db.session.query(
        db.func.coalesce(db.func.sum(LaybyePayment.amount_cents), 0)
    ).filter(LaybyePayment.laybye_id == order.id).scalar()
    order.remaining_balance_cents = order.total_cents - int(paid)
    if order.remaining_balance_cents < 0:
        raise LaybyeOverpayment("Payments exceed the order total")
    return payment


def _atomic(func):
    """run_with_retry, rolling back on business errors raised mid-transaction."""
    try:
        return run_with_retry(func)
    except Exception:
        db.session.rollback()
        raise

# Overview: Service-layer operations for sales; sale drafts and committing settled allocations.

"""
Sale Commit Service

WHY: Turn a finalized cart plus a complete set of payment allocations
into an immutable sale record, move account money, and feed the branch's
cash-up session.

COMMIT SEQUENCE:
1. Fail fast: draft shape, allocation sum == total due, branch/session,
   authoritative re-quote of every account leg. Nothing written yet.
2. Write sale + lines + allocation rows (account legs pending_debit).
3. Debit each account leg (compare-and-set per account).
4. All debits ok -> payment_status completed, takings booked to the
   session. Any debit failed -> needs_reconciliation, flagged for manual
   follow-up (never silently treated as paid).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Branch, CashupMovement, Sale, SaleLine, SalePayment
from settlement.time_utils import utcnow
from settlement.validation import (
    ValidationError,
    coerce_cents,
    coerce_id,
    require_non_negative_cents,
    require_positive_cents,
    require_text,
)
from . import account_service, cashup_service
from .account_service import AccountError
from .concurrency import ConcurrencyConflict, PersistenceFailure, run_with_retry
from .payment_service import (
    METHOD_ACCOUNT,
    METHOD_CASH,
    AccountCustomerRequired,
    IncompleteAllocation,
    PaymentAllocation,
    PaymentAllocator,
    allocated_total,
    validate_method,
)


class SaleError(Exception):
    """Raised for sale commit errors."""
    code = "SALE_ERROR"


class SaleNotFound(SaleError):
    code = "SALE_NOT_FOUND"


class RefundError(SaleError):
    code = "REFUND_ERROR"


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_NEEDS_RECONCILIATION = "needs_reconciliation"

LEG_SETTLED = "settled"
LEG_PENDING_DEBIT = "pending_debit"
LEG_FAILED = "failed"


# =============================================================================
# SALE DRAFT (request-scoped value)
# =============================================================================

@dataclass(frozen=True)
class SaleDraftLine:
    product_ref: str
    quantity: int
    unit_price_cents: int
    description: Optional[str] = None

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class SaleDraft:
    """
    Finalized cart awaiting payment.

    Passed explicitly into settlement; there is no ambient cart state.
    Tax is a pre-computed input.
    """
    lines: tuple
    discount_cents: int = 0
    tax_cents: int = 0
    customer_id: Optional[int] = None
    currency: Optional[str] = None

    @property
    def subtotal_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    @property
    def total_due_cents(self) -> int:
        return self.subtotal_cents - self.discount_cents + self.tax_cents

    def validate(self) -> "SaleDraft":
        if not self.lines:
            raise ValidationError("Sale draft has no lines")
        for line in self.lines:
            if not line.product_ref:
                raise ValidationError("Every line needs a product_ref")
            if line.quantity <= 0:
                raise ValidationError(f"Quantity for {line.product_ref} must be positive")
            if line.unit_price_cents < 0:
                raise ValidationError(f"Unit price for {line.product_ref} cannot be negative")
        if self.discount_cents < 0 or self.tax_cents < 0:
            raise ValidationError("Discount and tax cannot be negative")
        if self.discount_cents > self.subtotal_cents:
            raise ValidationError("Discount cannot exceed subtotal")
        if self.total_due_cents <= 0:
            raise ValidationError("Total due must be positive")
        return self

    @classmethod
    def from_dict(cls, data: dict) -> "SaleDraft":
        """
        Build from request JSON.

        A supplied line_total_cents must equal quantity * unit_price_cents.
        """
        if not isinstance(data, dict):
            raise ValidationError("Sale draft must be an object")
        raw_lines = data.get("lines") or data.get("items") or []
        if not isinstance(raw_lines, list):
            raise ValidationError("lines must be a list")

        lines = []
        for raw in raw_lines:
            if not isinstance(raw, dict):
                raise ValidationError("Each line must be an object")
            quantity = coerce_cents(raw.get("quantity"), "quantity")
            unit_price = coerce_cents(raw.get("unit_price_cents"), "unit_price_cents")
            line = SaleDraftLine(
                product_ref=str(raw.get("product_ref") or "").strip(),
                quantity=quantity,
                unit_price_cents=unit_price,
                description=raw.get("description"),
            )
            if raw.get("line_total_cents") is not None:
                given = coerce_cents(raw.get("line_total_cents"), "line_total_cents")
                if given != line.line_total_cents:
                    raise ValidationError(
                        f"line_total_cents for {line.product_ref} does not match quantity x unit price"
                    )
            lines.append(line)

        return cls(
            lines=tuple(lines),
            discount_cents=require_non_negative_cents(data.get("discount_cents") or 0, "discount_cents"),
            tax_cents=require_non_negative_cents(data.get("tax_cents") or 0, "tax_cents"),
            customer_id=coerce_id(data.get("customer_id"), "customer_id"),
            currency=data.get("currency"),
        ).validate()


@dataclass
class CommitResult:
    sale: Sale
    needs_reconciliation: bool = False
    failures: list = field(default_factory=list)

    @property
    def reference_id(self) -> int:
        return self.sale.id

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "needs_reconciliation": self.needs_reconciliation,
            "failures": list(self.failures),
        }


# =============================================================================
# COMMIT
# =============================================================================

def commit_sale(
    draft: SaleDraft,
    allocations,
    *,
    branch_id: int,
    cashup_session_id: int | None = None,
    cashier_name: str | None = None,
) -> CommitResult:
    """
    Persist a fully allocated sale, then debit its account legs.

    Args:
        draft: Finalized cart
        allocations: Complete PaymentAllocation set (sum == total due)
        branch_id: Branch taking the sale
        cashup_session_id: Session to book takings to (default: branch's active one)
        cashier_name: For the record

    Returns:
        CommitResult; needs_reconciliation=True when the sale was written
        but an account debit failed afterwards.

    Raises (nothing written in these cases):
        ValidationError, IncompleteAllocation, SaleError,
        AccountError subclasses, CashupError subclasses
    """
    draft.validate()
    allocations = tuple(allocations)
    _validate_allocations(draft, allocations)

    branch = db.session.get(Branch, branch_id)
    if not branch or not branch.is_active:
        raise SaleError(f"Branch {branch_id} not found or inactive")

    session_id = _resolve_session_id(branch_id, cashup_session_id)
    _requote_account_legs(allocations)

    currency = draft.currency or current_app.config.get("CURRENCY_CODE", "ZAR")
    has_account_legs = any(a.method == METHOD_ACCOUNT for a in allocations)

    def _write_sale():
        sale = Sale(
            branch_id=branch_id,
            cashup_session_id=session_id,
            customer_account_id=draft.customer_id or _single_account_customer(allocations),
            currency=currency,
            subtotal_cents=draft.subtotal_cents,
            discount_cents=draft.discount_cents,
            tax_cents=draft.tax_cents,
            total_cents=draft.total_due_cents,
            change_cents=sum(a.change_cents for a in allocations),
            payment_status=PAYMENT_STATUS_PENDING if has_account_legs else PAYMENT_STATUS_COMPLETED,
            cashier_name=cashier_name,
            created_at=utcnow(),
        )
        db.session.add(sale)
        db.session.flush()
        sale.document_number = f"S-{sale.id:06d}"

        for line in draft.lines:
            db.session.add(SaleLine(
                sale_id=sale.id,
                product_ref=line.product_ref,
                description=line.description,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
            ))

        for allocation in allocations:
            db.session.add(SalePayment(
                sale_id=sale.id,
                method=allocation.method,
                amount_cents=allocation.amount_cents,
                tendered_cents=allocation.tendered_cents,
                customer_account_id=allocation.customer_id,
                status=LEG_PENDING_DEBIT if allocation.method == METHOD_ACCOUNT else LEG_SETTLED,
                created_at=sale.created_at,
            ))
        db.session.flush()

        if not has_account_legs:
            _book_takings(sale)

        db.session.commit()
        return sale

    sale = run_with_retry(_write_sale)

    if not has_account_legs:
        current_app.logger.info("Sale %s committed (%s cents)", sale.document_number, sale.total_cents)
        return CommitResult(sale=sale)

    return _settle_account_legs(sale)


def settle_sale(
    draft: SaleDraft,
    allocator: PaymentAllocator,
    *,
    branch_id: int,
    cashup_session_id: int | None = None,
    cashier_name: str | None = None,
) -> CommitResult:
    """Commit through the allocator so its checkout state tracks the outcome."""
    return allocator.commit(partial(
        commit_sale,
        draft,
        branch_id=branch_id,
        cashup_session_id=cashup_session_id,
        cashier_name=cashier_name,
    ))


def retry_failed_debits(sale_id: int) -> CommitResult:
    """
    Manual follow-up for a needs_reconciliation sale: re-attempt the
    failed account legs against the accounts' current state.
    """
    sale = get_sale(sale_id)
    if sale.payment_status != PAYMENT_STATUS_NEEDS_RECONCILIATION:
        raise SaleError(f"Sale {sale.document_number} does not need reconciliation")
    return _settle_account_legs(sale)


# =============================================================================
# REFUNDS
# =============================================================================

def refund_sale(
    sale_id: int,
    amount_cents: int,
    method: str,
    reason: str,
    *,
    cashup_session_id: int | None = None,
) -> CashupMovement:
    """
    Return money for a completed sale.

    Account refunds are credited back to the sale's account. The refund is
    booked to the given (or the sale branch's active) cash-up session.
    """
    amount_cents = require_positive_cents(amount_cents, "amount_cents")
    validate_method(method)
    reason = require_text(reason, "reason")

    sale = get_sale(sale_id)
    if sale.payment_status != PAYMENT_STATUS_COMPLETED:
        raise RefundError(f"Cannot refund sale {sale.document_number} with status {sale.payment_status}")

    already = get_refunded_total(sale.id)
    if already + amount_cents > sale.total_cents:
        raise RefundError(
            f"Refund exceeds sale total ({sale.total_cents - already} cents refundable)"
        )

    if method == METHOD_ACCOUNT and not sale.customer_account_id:
        raise AccountCustomerRequired("Sale has no customer account to refund to")

    session_id = _resolve_session_id(sale.branch_id, cashup_session_id)
    if session_id is None:
        raise cashup_service.SessionNotActive("Refunds require an active cash-up session")

    def _op():
        if method == METHOD_ACCOUNT:
            account_service.credit(
                sale.customer_account_id, amount_cents, METHOD_ACCOUNT,
                reference=f"Refund {sale.document_number}: {reason}",
                sale_id=sale.id,
                commit=False,
            )
        movement = cashup_service.record_refund(
            session_id, method, amount_cents,
            sale_id=sale.id, description=reason, commit=False,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def get_refunded_total(sale_id: int) -> int:
    total = db.session.query(
        db.func.coalesce(db.func.sum(CashupMovement.amount_cents), 0)
    ).filter(
        CashupMovement.sale_id == sale_id,
        CashupMovement.kind == cashup_service.MOVEMENT_REFUND,
    ).scalar()
    return int(total or 0)


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found")
    return sale


def list_sales_needing_reconciliation(branch_id: int | None = None) -> list[Sale]:
    query = db.session.query(Sale).filter_by(payment_status=PAYMENT_STATUS_NEEDS_RECONCILIATION)
    if branch_id:
        query = query.filter_by(branch_id=branch_id)
    return query.order_by(Sale.created_at).all()


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _validate_allocations(draft: SaleDraft, allocations: tuple) -> None:
    if not allocations:
        raise IncompleteAllocation("Sale has no payment allocations")
    for allocation in allocations:
        if not isinstance(allocation, PaymentAllocation):
            raise ValidationError("Allocations must be PaymentAllocation values")
        validate_method(allocation.method)
        if allocation.amount_cents <= 0:
            raise ValidationError("Allocation amounts must be positive")
        if allocation.method != METHOD_CASH and allocation.change_cents:
            raise ValidationError("Only cash allocations can carry change")
        if allocation.method == METHOD_ACCOUNT and allocation.customer_id is None:
            raise AccountCustomerRequired("Account allocation without a customer")

    total = allocated_total(allocations)
    if total != draft.total_due_cents:
        raise IncompleteAllocation(
            f"Allocations total {total} cents but sale is {draft.total_due_cents} cents"
        )


def _resolve_session_id(branch_id: int, cashup_session_id: int | None) -> int | None:
    if cashup_session_id is None:
        current = cashup_service.get_current_session(branch_id)
        return current.id if current else None

    session = cashup_service.get_session(cashup_session_id)
    if session.branch_id != branch_id:
        raise SaleError("Cash-up session belongs to a different branch")
    if session.status != cashup_service.STATUS_ACTIVE:
        raise cashup_service.SessionNotActive(f"Cash-up session {session.session_number} is {session.status}")
    return session.id


def _requote_account_legs(allocations: tuple) -> None:
    """Authoritative affordability check per customer before anything is written."""
    per_customer: dict[int, int] = {}
    for allocation in allocations:
        if allocation.method == METHOD_ACCOUNT:
            per_customer[allocation.customer_id] = per_customer.get(allocation.customer_id, 0) + allocation.amount_cents

    for customer_id, amount in per_customer.items():
        result = account_service.quote(customer_id, amount)
        if not result.is_valid:
            account_service._raise_for_quote(result)


def _single_account_customer(allocations: tuple) -> int | None:
    customers = {a.customer_id for a in allocations if a.method == METHOD_ACCOUNT}
    return customers.pop() if len(customers) == 1 else None


def _settle_account_legs(sale: Sale) -> CommitResult:
    sale_id = sale.id
    document_number = sale.document_number
    # Snapshot: a failed debit rolls the session back and expires loaded rows
    pending = [
        (leg.id, leg.customer_account_id, leg.amount_cents)
        for leg in sale.payments
        if leg.method == METHOD_ACCOUNT and leg.status != LEG_SETTLED
    ]

    failures = []
    for payment_id, customer_id, amount_cents in pending:
        try:
            account_service.debit(
                customer_id,
                amount_cents,
                sale_id,
                reference=f"Sale {document_number}",
            )
        except (AccountError, ConcurrencyConflict, PersistenceFailure) as exc:
            failures.append({
                "payment_id": payment_id,
                "customer_id": customer_id,
                "amount_cents": amount_cents,
                "code": exc.code,
                "error": str(exc),
            })
            _mark_leg(payment_id, LEG_FAILED, exc.code)
        else:
            _mark_leg(payment_id, LEG_SETTLED, None)

    def _finalize():
        fresh = db.session.get(Sale, sale_id)
        if failures:
            fresh.payment_status = PAYMENT_STATUS_NEEDS_RECONCILIATION
            fresh.reconciliation_note = "; ".join(f"{f['code']}: {f['error']}" for f in failures)[:255]
        else:
            fresh.payment_status = PAYMENT_STATUS_COMPLETED
            fresh.reconciliation_note = None
            _book_takings(fresh)
        db.session.commit()
        return fresh

    sale = run_with_retry(_finalize)

    if failures:
        current_app.logger.warning(
            "Sale %s needs reconciliation: %s account debit(s) failed",
            sale.document_number, len(failures),
        )
    else:
        current_app.logger.info("Sale %s committed (%s cents)", sale.document_number, sale.total_cents)
    return CommitResult(sale=sale, needs_reconciliation=bool(failures), failures=failures)


def _mark_leg(payment_id: int, status: str, error_code: str | None) -> None:
    def _op():
        leg = db.session.get(SalePayment, payment_id)
        leg.status = status
        leg.error_code = error_code
        db.session.commit()
    run_with_retry(_op)


def _book_takings(sale: Sale) -> None:
    """Feed each settled allocation into the sale's cash-up session."""
    if not sale.cashup_session_id:
        return
    session = cashup_service.get_session(sale.cashup_session_id)
    if session.status != cashup_service.STATUS_ACTIVE:
        current_app.logger.warning(
            "Sale %s settled after session %s closed; takings not booked",
            sale.document_number, session.session_number,
        )
        return
    for leg in sale.payments:
        cashup_service.record_sale(
            sale.cashup_session_id,
            leg.method,
            leg.amount_cents,
            sale_id=sale.id,
            description=f"Sale {sale.document_number}",
            commit=False,
        )

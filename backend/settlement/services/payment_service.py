# Overview: Service-layer payment allocation; split tender against one sale total.

"""
Payment Allocation Service

WHY: One sale total can be settled with several payment methods (cash,
card, mobile money, store account). The allocator collects those legs in
memory until they cover the total exactly, then hands the whole set to a
committer in one call.

DESIGN PRINCIPLES:
- Nothing is persisted until commit; abandoning a draft is a no-op
- Only cash may over-tender (the excess becomes change)
- Account legs are quoted against the customer's balance/credit first
- A failed commit keeps the allocations so the cashier can retry/adjust
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Optional

from settlement.validation import coerce_cents
from . import account_service
from . import checkout_flow
from .account_service import InvalidQuote
from .checkout_flow import (
    AllocationRemoved,
    AmountAccepted,
    AmountRejected,
    CommitFailed,
    CommitStarted,
    CommitSucceeded,
    CustomerSelected,
    MethodChosen,
)


class PaymentError(Exception):
    """Raised for payment allocation errors."""
    code = "PAYMENT_ERROR"


class InvalidAmount(PaymentError):
    code = "INVALID_AMOUNT"


class InvalidMethod(PaymentError):
    code = "INVALID_METHOD"


class AlreadyComplete(PaymentError):
    code = "ALREADY_COMPLETE"


class OverAllocation(PaymentError):
    code = "OVER_ALLOCATION"


class IncompleteAllocation(PaymentError):
    code = "INCOMPLETE_ALLOCATION"


class AccountCustomerRequired(PaymentError):
    code = "MISSING_CUSTOMER"


class AllocationLocked(PaymentError):
    code = "ALLOCATION_LOCKED"


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_MOBILE_MONEY = "mobile_money"
METHOD_TRANSFER = "transfer"
METHOD_ACCOUNT = "account"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_MOBILE_MONEY,
    METHOD_TRANSFER,
    METHOD_ACCOUNT,
]


@dataclass(frozen=True)
class PaymentAllocation:
    """
    One tender leg.

    amount_cents is what is applied to the total; tendered_cents is what
    was handed over. They differ only for cash over-tender.
    """
    method: str
    amount_cents: int
    tendered_cents: int
    customer_id: Optional[int] = None

    @property
    def change_cents(self) -> int:
        return self.tendered_cents - self.amount_cents

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "amount_cents": self.amount_cents,
            "tendered_cents": self.tendered_cents,
            "change_cents": self.change_cents,
            "customer_id": self.customer_id,
        }


@dataclass(frozen=True)
class AllocationAccepted:
    allocation: PaymentAllocation
    remaining_cents: int

    is_valid = True

    def to_dict(self) -> dict:
        return {
            "is_valid": True,
            "allocation": self.allocation.to_dict(),
            "remaining_cents": self.remaining_cents,
        }


def validate_method(method: str) -> str:
    if method not in VALID_PAYMENT_METHODS:
        raise InvalidMethod(f"Invalid payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}")
    return method


def allocated_total(allocations) -> int:
    return sum(a.amount_cents for a in allocations)


class PaymentAllocator:
    """
    In-flight split-payment state for one sale draft (or laybye deposit).

    One instance per terminal settlement; not shared between threads.
    """

    def __init__(self, total_due_cents: int, *, quote_account: Callable | None = None):
        total_due_cents = coerce_cents(total_due_cents, "total_due_cents")
        if total_due_cents <= 0:
            raise InvalidAmount("Total due must be positive")
        self._total_due_cents = total_due_cents
        self._quote_account = quote_account or account_service.quote
        self._allocations: list[PaymentAllocation] = []
        self.state = checkout_flow.initial_state()
        self.result = None

    @property
    def total_due_cents(self) -> int:
        return self._total_due_cents

    @property
    def allocations(self) -> tuple[PaymentAllocation, ...]:
        return tuple(self._allocations)

    @property
    def change_cents(self) -> int:
        return sum(a.change_cents for a in self._allocations)

    @property
    def is_ready(self) -> bool:
        return self.remaining_to_pay() == 0

    @property
    def is_committed(self) -> bool:
        return self.state.step == checkout_flow.DONE

    def remaining_to_pay(self) -> int:
        return max(0, self._total_due_cents - allocated_total(self._allocations))

    # -------------------------------------------------------------------------

    def add_allocation(self, method: str, amount_cents: int, customer_id: int | None = None):
        """
        Add one tender leg.

        Returns AllocationAccepted, or the InvalidQuote from the account
        check (state unchanged in that case).

        Raises:
            AllocationLocked: already committing/committed
            AlreadyComplete: total already covered
            InvalidAmount: amount <= 0
            InvalidMethod: unknown method
            OverAllocation: non-cash amount above what is still owed
            AccountCustomerRequired: account leg without a customer
        """
        self._ensure_mutable()

        remaining = self.remaining_to_pay()
        if remaining == 0:
            raise AlreadyComplete("Sale is already fully allocated")

        try:
            amount_cents = coerce_cents(amount_cents, "amount_cents")
        except ValueError as exc:
            raise InvalidAmount(str(exc)) from exc
        if amount_cents <= 0:
            raise InvalidAmount("Payment amount must be positive")

        validate_method(method)

        if method != METHOD_CASH and amount_cents > remaining:
            raise OverAllocation(
                f"Non-cash payment cannot exceed remaining balance ({remaining} cents)"
            )

        if method == METHOD_ACCOUNT and customer_id is None:
            raise AccountCustomerRequired("Account payments require a customer")

        state = checkout_flow.transition(self.state, MethodChosen(method))

        if method == METHOD_ACCOUNT:
            state = checkout_flow.transition(state, CustomerSelected(customer_id))
            rejection = self._quote_account_leg(customer_id, amount_cents)
            if rejection is not None:
                self.state = checkout_flow.transition(state, AmountRejected(rejection.reason))
                return rejection

        applied = min(amount_cents, remaining)
        allocation = PaymentAllocation(
            method=method,
            amount_cents=applied,
            tendered_cents=amount_cents,
            customer_id=customer_id if method == METHOD_ACCOUNT else None,
        )
        self._allocations.append(allocation)

        remaining = self.remaining_to_pay()
        self.state = checkout_flow.transition(state, AmountAccepted(remaining))
        return AllocationAccepted(allocation=allocation, remaining_cents=remaining)

    def remove_allocation(self, index: int) -> PaymentAllocation:
        """Remove a leg for correction; only before commit."""
        self._ensure_mutable()
        try:
            removed = self._allocations.pop(index)
        except IndexError:
            raise PaymentError(f"No allocation at index {index}")
        self.state = checkout_flow.transition(self.state, AllocationRemoved(self.remaining_to_pay()))
        return removed

    def commit(self, committer: Callable):
        """
        Hand the final allocation set to `committer` in a single call.

        The committer receives a tuple of PaymentAllocation and returns
        its own result (e.g. sales_service.CommitResult). If it raises,
        the allocator moves to Failed, keeps every allocation and the
        exception propagates unchanged.
        """
        if self.is_committed:
            raise AllocationLocked("Allocations already committed")
        if not self.is_ready:
            raise IncompleteAllocation(
                f"Allocations do not cover total due ({self.remaining_to_pay()} cents remaining)"
            )

        self.state = checkout_flow.transition(self.state, CommitStarted())
        try:
            result = committer(self.allocations)
        except Exception as exc:
            reason = getattr(exc, "code", type(exc).__name__)
            self.state = checkout_flow.transition(self.state, CommitFailed(reason))
            raise

        self.result = result
        self.state = checkout_flow.transition(
            self.state, CommitSucceeded(getattr(result, "reference_id", None))
        )
        return result

    def abandon(self) -> None:
        """Discard in-memory allocations. Nothing durable exists yet."""
        self._ensure_mutable()
        self._allocations.clear()
        self.state = checkout_flow.initial_state()

    def summary(self) -> dict:
        return {
            "total_due_cents": self._total_due_cents,
            "allocated_cents": allocated_total(self._allocations),
            "remaining_cents": self.remaining_to_pay(),
            "change_cents": self.change_cents,
            "is_ready": self.is_ready,
            "allocations": [a.to_dict() for a in self._allocations],
            "state": self.state.to_dict(),
        }

    # -------------------------------------------------------------------------

    def _ensure_mutable(self) -> None:
        if self.state.step in (checkout_flow.COMMITTING, checkout_flow.DONE):
            raise AllocationLocked(f"Allocations cannot change while {self.state.step}")

    def _quote_account_leg(self, customer_id: int, amount_cents: int) -> InvalidQuote | None:
        """
        Quote the customer's cumulative account usage on this sale.

        Several account legs for one customer must be affordable together,
        so limits in a rejection are restated relative to this leg.
        """
        already = sum(
            a.amount_cents for a in self._allocations
            if a.method == METHOD_ACCOUNT and a.customer_id == customer_id
        )
        result = self._quote_account(customer_id, already + amount_cents)
        if result.is_valid:
            return None
        if already and result.max_possible_payment_cents is not None:
            max_possible = max(0, result.max_possible_payment_cents - already)
            result = replace(
                result,
                amount_cents=amount_cents,
                max_possible_payment_cents=max_possible,
                remaining_needs_other_payment_cents=amount_cents - max_possible,
            )
        return result

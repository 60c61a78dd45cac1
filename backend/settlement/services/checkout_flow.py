# Overview: Checkout flow state machine; pure transitions independent of any screen.

"""
Checkout Flow

The tender flow a cashier walks through (choose method -> select
customer -> enter amount -> confirm) as an explicit finite-state machine.

transition(state, event) is pure: it never touches the store and returns
a new CheckoutState (states are frozen). PaymentAllocator owns the current
state and feeds it events as allocations are accepted or rejected.

    CHOOSING_METHOD --MethodChosen(account)--> AWAITING_CUSTOMER
    CHOOSING_METHOD --MethodChosen(other)----> AWAITING_AMOUNT
    AWAITING_CUSTOMER --CustomerSelected-----> AWAITING_AMOUNT
    AWAITING_AMOUNT --AmountAccepted(0 left)-> ALLOCATED
    AWAITING_AMOUNT --AmountAccepted(>0)-----> CHOOSING_METHOD
    AWAITING_AMOUNT --AmountRejected---------> AWAITING_AMOUNT
    ALLOCATED --CommitStarted----------------> COMMITTING
    COMMITTING --CommitSucceeded-------------> DONE
    COMMITTING --CommitFailed----------------> FAILED
    FAILED --CommitStarted-------------------> COMMITTING
    (most) --AllocationRemoved---------------> CHOOSING_METHOD
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Union


CHOOSING_METHOD = "ChoosingMethod"
AWAITING_CUSTOMER = "AwaitingCustomer"
AWAITING_AMOUNT = "AwaitingAmount"
ALLOCATED = "Allocated"
COMMITTING = "Committing"
DONE = "Done"
FAILED = "Failed"

ALL_STEPS = [CHOOSING_METHOD, AWAITING_CUSTOMER, AWAITING_AMOUNT, ALLOCATED, COMMITTING, DONE, FAILED]

# Method that needs a customer before an amount can be entered
CUSTOMER_METHODS = {"account"}


class InvalidTransition(Exception):
    """Event not allowed in the current step."""
    code = "INVALID_TRANSITION"


@dataclass(frozen=True)
class CheckoutState:
    step: str = CHOOSING_METHOD
    method: Optional[str] = None
    customer_id: Optional[int] = None
    last_error: Optional[str] = None
    sale_ref: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.step == DONE

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "method": self.method,
            "customer_id": self.customer_id,
            "last_error": self.last_error,
            "sale_ref": self.sale_ref,
        }


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True)
class MethodChosen:
    method: str


@dataclass(frozen=True)
class CustomerSelected:
    customer_id: int


@dataclass(frozen=True)
class AmountAccepted:
    remaining_cents: int


@dataclass(frozen=True)
class AmountRejected:
    reason: str


@dataclass(frozen=True)
class AllocationRemoved:
    remaining_cents: int


@dataclass(frozen=True)
class CommitStarted:
    pass


@dataclass(frozen=True)
class CommitSucceeded:
    sale_ref: Optional[int] = None


@dataclass(frozen=True)
class CommitFailed:
    reason: str


CheckoutEvent = Union[
    MethodChosen, CustomerSelected, AmountAccepted, AmountRejected,
    AllocationRemoved, CommitStarted, CommitSucceeded, CommitFailed,
]


def initial_state() -> CheckoutState:
    return CheckoutState()


def transition(state: CheckoutState, event: CheckoutEvent) -> CheckoutState:
    """Return the state after `event`, or raise InvalidTransition."""
    step = state.step

    if isinstance(event, MethodChosen):
        _expect(step, event, CHOOSING_METHOD, AWAITING_CUSTOMER, AWAITING_AMOUNT)
        next_step = AWAITING_CUSTOMER if event.method in CUSTOMER_METHODS else AWAITING_AMOUNT
        return replace(state, step=next_step, method=event.method, customer_id=None, last_error=None)

    if isinstance(event, CustomerSelected):
        _expect(step, event, AWAITING_CUSTOMER)
        return replace(state, step=AWAITING_AMOUNT, customer_id=event.customer_id, last_error=None)

    if isinstance(event, AmountAccepted):
        _expect(step, event, AWAITING_AMOUNT)
        next_step = ALLOCATED if event.remaining_cents == 0 else CHOOSING_METHOD
        return replace(state, step=next_step, method=None, customer_id=None, last_error=None)

    if isinstance(event, AmountRejected):
        _expect(step, event, AWAITING_AMOUNT)
        return replace(state, last_error=event.reason)

    if isinstance(event, AllocationRemoved):
        _expect(step, event, CHOOSING_METHOD, AWAITING_CUSTOMER, AWAITING_AMOUNT, ALLOCATED, FAILED)
        next_step = ALLOCATED if event.remaining_cents == 0 else CHOOSING_METHOD
        return replace(state, step=next_step, method=None, customer_id=None, last_error=None)

    if isinstance(event, CommitStarted):
        _expect(step, event, ALLOCATED, FAILED)
        return replace(state, step=COMMITTING, last_error=None)

    if isinstance(event, CommitSucceeded):
        _expect(step, event, COMMITTING)
        return replace(state, step=DONE, sale_ref=event.sale_ref)

    if isinstance(event, CommitFailed):
        _expect(step, event, COMMITTING)
        return replace(state, step=FAILED, last_error=event.reason)

    raise InvalidTransition(f"Unknown event {event!r}")


def _expect(step: str, event: CheckoutEvent, *allowed: str) -> None:
    if step not in allowed:
        raise InvalidTransition(f"{type(event).__name__} not allowed while {step}")

# Overview: Pytest coverage for the checkout flow state machine.

import pytest
from settlement.services import checkout_flow
from settlement.services.checkout_flow import (
    ALLOCATED,
    AWAITING_AMOUNT,
    AWAITING_CUSTOMER,
    CHOOSING_METHOD,
    COMMITTING,
    DONE,
    FAILED,
    AllocationRemoved,
    AmountAccepted,
    AmountRejected,
    CommitFailed,
    CommitStarted,
    CommitSucceeded,
    CustomerSelected,
    InvalidTransition,
    MethodChosen,
    initial_state,
    transition,
)


def _run(*events):
    state = initial_state()
    for event in events:
        state = transition(state, event)
    return state


class TestTenderSteps:

    def test_initial_state_is_choosing_method(self):
        state = initial_state()
        assert state.step == CHOOSING_METHOD
        assert not state.is_terminal

    def test_cash_goes_straight_to_amount(self):
        state = _run(MethodChosen("cash"))
        assert state.step == AWAITING_AMOUNT
        assert state.method == "cash"

    def test_account_waits_for_customer(self):
        state = _run(MethodChosen("account"))
        assert state.step == AWAITING_CUSTOMER

        state = transition(state, CustomerSelected(7))
        assert state.step == AWAITING_AMOUNT
        assert state.customer_id == 7

    def test_partial_amount_returns_to_method_choice(self):
        state = _run(MethodChosen("card"), AmountAccepted(remaining_cents=3500))
        assert state.step == CHOOSING_METHOD
        assert state.method is None

    def test_full_amount_is_allocated(self):
        state = _run(MethodChosen("card"), AmountAccepted(remaining_cents=0))
        assert state.step == ALLOCATED

    def test_rejected_amount_stays_and_records_reason(self):
        state = _run(MethodChosen("account"), CustomerSelected(7), AmountRejected("ExceedsCreditLimit"))
        assert state.step == AWAITING_AMOUNT
        assert state.last_error == "ExceedsCreditLimit"

    def test_transition_does_not_mutate_input(self):
        before = initial_state()
        after = transition(before, MethodChosen("cash"))
        assert before.step == CHOOSING_METHOD
        assert after is not before


class TestCommitSteps:

    def test_commit_success(self):
        state = _run(MethodChosen("cash"), AmountAccepted(0), CommitStarted(), CommitSucceeded(42))
        assert state.step == DONE
        assert state.sale_ref == 42
        assert state.is_terminal

    def test_commit_failure_can_be_retried(self):
        state = _run(MethodChosen("cash"), AmountAccepted(0), CommitStarted(), CommitFailed("PERSISTENCE_FAILURE"))
        assert state.step == FAILED
        assert state.last_error == "PERSISTENCE_FAILURE"

        state = transition(state, CommitStarted())
        assert state.step == COMMITTING
        assert state.last_error is None

    def test_removing_allocation_after_failure_reopens_tender(self):
        state = _run(MethodChosen("cash"), AmountAccepted(0), CommitStarted(), CommitFailed("X"))
        state = transition(state, AllocationRemoved(remaining_cents=2000))
        assert state.step == CHOOSING_METHOD


class TestInvalidTransitions:

    @pytest.mark.parametrize("events, bad_event", [
        ((), CommitStarted()),
        ((), CustomerSelected(1)),
        ((), AmountAccepted(0)),
        ((MethodChosen("cash"),), CommitStarted()),
        ((MethodChosen("cash"), AmountAccepted(0)), MethodChosen("card")),
        ((MethodChosen("cash"), AmountAccepted(0), CommitStarted()), AllocationRemoved(0)),
    ])
    def test_rejected_events(self, events, bad_event):
        state = _run(*events)
        with pytest.raises(InvalidTransition):
            transition(state, bad_event)

    def test_done_is_terminal(self):
        state = _run(MethodChosen("cash"), AmountAccepted(0), CommitStarted(), CommitSucceeded(1))
        for event in (MethodChosen("cash"), CommitStarted(), AllocationRemoved(0), CommitFailed("x")):
            with pytest.raises(InvalidTransition):
                checkout_flow.transition(state, event)

# Overview: Pytest coverage for laybye policy, creation, instalments and lifecycle.

"""
Laybye Tests

Policy used by the test app: customer required, deposit >= 20% of the
total, due date 7 to 30 days out.
"""

from datetime import timedelta

import pytest
from settlement.models import CashupMovement, LaybyeOrder, LaybyePayment
from settlement.services import account_service, cashup_service, laybye_service
from settlement.services.account_service import AccountNotFound, ExceedsCreditLimit
from settlement.services.laybye_service import (
    PAYMENT_DEPOSIT,
    PAYMENT_INSTALMENT,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_OPEN,
    STATUS_PAID_OFF,
    STATUS_PARTIALLY_PAID,
    DepositAllocationMismatch,
    DepositBelowMinimum,
    DueDateTooLate,
    DueDateTooSoon,
    InvalidDeposit,
    LaybyeNotPayable,
    LaybyeOverpayment,
    LaybyePolicy,
    MissingCustomer,
)
from settlement.services.payment_service import PaymentAllocation
from settlement.time_utils import utctoday
from settlement.validation import ValidationError


@pytest.fixture
def create(db_session, branch, account, make_draft, due_in):
    """create(total, deposit, **kwargs) -> LaybyeOrder for the default customer."""
    def _create(total_cents=50000, deposit_cents=10000, due_days=14, allocations=(), **kwargs):
        kwargs.setdefault("branch_id", branch.id)
        return laybye_service.create_order(
            make_draft(total_cents),
            deposit_cents,
            due_in(due_days),
            account.id,
            allocations,
            **kwargs,
        )
    return _create


class TestPolicy:

    def test_minimum_deposit_rounds_up(self):
        policy = LaybyePolicy(min_deposit_bps=2000)
        assert policy.minimum_deposit(50000) == 10000
        assert policy.minimum_deposit(333) == 67

    def test_fixed_minimum_applies_when_larger(self):
        policy = LaybyePolicy(min_deposit_bps=1000, min_deposit_cents=10000)
        assert policy.minimum_deposit(20000) == 10000
        assert policy.minimum_deposit(500000) == 50000

    def test_from_config(self):
        policy = LaybyePolicy.from_config({
            "LAYBYE_REQUIRE_CUSTOMER": False,
            "LAYBYE_MIN_DEPOSIT_BPS": 1500,
            "LAYBYE_MIN_LEAD_DAYS": 0,
            "LAYBYE_MAX_DURATION_DAYS": None,
        })
        assert policy.require_customer is False
        assert policy.min_deposit_bps == 1500
        assert policy.min_lead_days == 0
        assert policy.max_duration_days is None


class TestValidateOrder:

    def test_valid_request_returns_minimum(self, app, due_in):
        assert laybye_service.validate_order(50000, 10000, due_in(14), 7) == 10000

    def test_customer_required(self, app, due_in):
        with pytest.raises(MissingCustomer):
            laybye_service.validate_order(50000, 10000, due_in(14), None)

    def test_customer_optional_when_policy_allows(self, app, due_in):
        policy = LaybyePolicy(require_customer=False)
        assert laybye_service.validate_order(50000, 10000, due_in(14), None, policy=policy) == 10000

    @pytest.mark.parametrize("deposit", [0, -100, 50000, 60000, 100.0, True])
    def test_invalid_deposit(self, app, due_in, deposit):
        with pytest.raises(InvalidDeposit):
            laybye_service.validate_order(50000, deposit, due_in(14), 7)

    def test_deposit_below_minimum(self, app, due_in):
        with pytest.raises(DepositBelowMinimum) as exc_info:
            laybye_service.validate_order(50000, 5000, due_in(14), 7)
        assert exc_info.value.minimum_deposit_cents == 10000

    def test_due_date_window(self, app, due_in):
        with pytest.raises(DueDateTooSoon):
            laybye_service.validate_order(50000, 10000, due_in(6), 7)
        with pytest.raises(DueDateTooLate):
            laybye_service.validate_order(50000, 10000, due_in(31), 7)

        laybye_service.validate_order(50000, 10000, due_in(7), 7)
        laybye_service.validate_order(50000, 10000, due_in(30), 7)

    def test_explicit_today(self, app):
        today = utctoday() - timedelta(days=100)
        laybye_service.validate_order(50000, 10000, today + timedelta(days=10), 7, today=today)


class TestCreateOrder:

    def test_cash_deposit_books_to_session(self, db_session, create, account, cash_session):
        order = create()

        assert order.status == STATUS_OPEN
        assert order.order_number == f"LB-{order.id:06d}"
        assert order.total_cents == 50000
        assert order.deposit_cents == 10000
        assert order.remaining_balance_cents == 40000
        assert order.customer_account_id == account.id
        assert len(order.items) == 1
        assert [(p.kind, p.method, p.amount_cents) for p in order.payments] == [(PAYMENT_DEPOSIT, "cash", 10000)]

        totals = cashup_service.get_session_totals(cash_session.id)
        assert totals.sales_by_method == {"cash": 10000}
        movement = db_session.query(CashupMovement).one()
        assert movement.laybye_payment_id == order.payments[0].id

    def test_split_deposit_with_account_leg(self, db_session, create, account, cash_session):
        allocations = (
            PaymentAllocation(method="account", amount_cents=6000, tendered_cents=6000, customer_id=account.id),
            PaymentAllocation(method="cash", amount_cents=4000, tendered_cents=4000),
        )
        order = create(allocations=allocations)

        assert order.remaining_balance_cents == 40000
        assert account_service.get_account(account.id).balance_cents == -1000
        statement = account_service.get_account_statement(account.id)
        assert statement[-1].laybye_id == order.id

    def test_failed_account_leg_rolls_back_everything(self, db_session, create, account, cash_session):
        allocations = (
            PaymentAllocation(method="account", amount_cents=9000, tendered_cents=9000, customer_id=account.id),
            PaymentAllocation(method="cash", amount_cents=1000, tendered_cents=1000),
        )
        with pytest.raises(ExceedsCreditLimit):
            create(allocations=allocations)

        assert db_session.query(LaybyeOrder).count() == 0
        assert db_session.query(LaybyePayment).count() == 0
        assert db_session.query(CashupMovement).count() == 0
        assert account_service.get_account(account.id).balance_cents == 5000

    def test_allocations_must_match_deposit(self, db_session, create):
        with pytest.raises(DepositAllocationMismatch):
            create(allocations=(PaymentAllocation(method="cash", amount_cents=9000, tendered_cents=9000),))
        assert db_session.query(LaybyeOrder).count() == 0

    def test_policy_checked_before_writing(self, db_session, create):
        with pytest.raises(DepositBelowMinimum):
            create(deposit_cents=5000)
        assert db_session.query(LaybyeOrder).count() == 0

    def test_unknown_customer(self, db_session, branch, make_draft, due_in):
        with pytest.raises(AccountNotFound):
            laybye_service.create_order(make_draft(50000), 10000, due_in(14), 99999, branch_id=branch.id)

    def test_without_session_nothing_booked(self, db_session, create):
        order = create()
        assert order.payments[0].cashup_session_id is None
        assert db_session.query(CashupMovement).count() == 0


class TestPayments:

    def test_instalments_until_paid_off(self, db_session, create, cash_session):
        order = create()

        laybye_service.add_payment(order.id, 15000, "card")
        order = laybye_service.get_order(order.id)
        assert order.status == STATUS_PARTIALLY_PAID
        assert order.remaining_balance_cents == 25000
        assert order.closed_at is None

        payment = laybye_service.add_payment(order.id, 25000, "cash")
        order = laybye_service.get_order(order.id)
        assert payment.kind == PAYMENT_INSTALMENT
        assert order.status == STATUS_PAID_OFF
        assert order.remaining_balance_cents == 0
        assert order.closed_at is not None

        totals = cashup_service.get_session_totals(cash_session.id)
        assert totals.sales_by_method == {"cash": 35000, "card": 15000}

    def test_overpayment_rejected(self, db_session, create):
        order = create()
        with pytest.raises(LaybyeOverpayment):
            laybye_service.add_payment(order.id, 40001, "cash")
        assert laybye_service.get_order(order.id).remaining_balance_cents == 40000

    def test_paid_off_order_not_payable(self, db_session, create):
        order = create()
        laybye_service.add_payment(order.id, 40000, "cash")
        with pytest.raises(LaybyeNotPayable):
            laybye_service.add_payment(order.id, 1, "cash")

    def test_account_instalment_defaults_to_order_customer(self, db_session, create, account):
        order = create()
        laybye_service.add_payment(order.id, 3000, "account")

        assert account_service.get_account(account.id).balance_cents == 2000
        assert laybye_service.get_order(order.id).payments[-1].customer_account_id == account.id

    def test_account_instalment_over_limit_writes_nothing(self, db_session, create, account):
        order = create()
        with pytest.raises(ExceedsCreditLimit):
            laybye_service.add_payment(order.id, 9000, "account")

        order = laybye_service.get_order(order.id)
        assert order.remaining_balance_cents == 40000
        assert len(order.payments) == 1


class TestLifecycle:

    def test_cancel(self, db_session, create):
        order = create()
        cancelled = laybye_service.cancel_order(order.id, "Customer changed mind")

        assert cancelled.status == STATUS_CANCELLED
        assert cancelled.cancel_reason == "Customer changed mind"
        with pytest.raises(LaybyeNotPayable):
            laybye_service.cancel_order(order.id, "again")
        with pytest.raises(LaybyeNotPayable):
            laybye_service.add_payment(order.id, 1000, "cash")

    def test_cancel_requires_reason(self, db_session, create):
        order = create()
        with pytest.raises(ValidationError):
            laybye_service.cancel_order(order.id, "  ")

    def test_expire_overdue(self, db_session, create):
        overdue = create(due_days=10)
        paid = create(due_days=10)
        laybye_service.add_payment(paid.id, 40000, "cash")
        later = create(due_days=20)

        due = utctoday() + timedelta(days=10)
        assert laybye_service.expire_overdue(as_of=due) == []

        expired = laybye_service.expire_overdue(as_of=due + timedelta(days=1))

        assert [o.id for o in expired] == [overdue.id]
        assert laybye_service.get_order(overdue.id).status == STATUS_EXPIRED
        assert laybye_service.get_order(paid.id).status == STATUS_PAID_OFF
        assert laybye_service.get_order(later.id).status == STATUS_OPEN

    def test_list_orders(self, db_session, create, account):
        first = create()
        second = create()
        laybye_service.cancel_order(first.id, "Stock damaged")

        assert [o.id for o in laybye_service.list_orders(customer_id=account.id)] == [second.id, first.id]
        assert [o.id for o in laybye_service.list_orders(status=STATUS_OPEN)] == [second.id]
        with pytest.raises(ValidationError):
            laybye_service.list_orders(status="lost")

    def test_stats(self, db_session, create, branch):
        first = create(total_cents=50000, deposit_cents=10000, due_days=10)
        second = create(total_cents=20000, deposit_cents=5000)
        laybye_service.add_payment(second.id, 15000, "cash")

        stats = laybye_service.get_laybye_stats(branch.id, as_of=utctoday() + timedelta(days=11))

        assert stats["total_orders"] == 2
        assert stats["active_orders"] == 1
        assert stats["overdue_orders"] == 1
        assert stats["by_status"][STATUS_OPEN] == 1
        assert stats["by_status"][STATUS_PAID_OFF] == 1
        assert stats["total_value_cents"] == 70000
        assert stats["total_deposits_cents"] == 15000
        assert stats["outstanding_cents"] == 40000
        assert stats["collected_cents"] == 30000
        assert first.id != second.id


class TestUpdateDetails:

    def test_extend_due_date_within_window(self, db_session, create, due_in):
        order = create(due_days=14)

        updated = laybye_service.update_order_details(order.id, due_date=due_in(30))

        assert updated.due_date == due_in(30)
        assert updated.status == STATUS_OPEN

    def test_due_date_window_enforced(self, db_session, create, due_in):
        order = create(due_days=14)

        with pytest.raises(DueDateTooLate):
            laybye_service.update_order_details(order.id, due_date=due_in(31))
        with pytest.raises(DueDateTooSoon):
            laybye_service.update_order_details(order.id, due_date=due_in(3))
        assert laybye_service.get_order(order.id).due_date == due_in(14)

    def test_window_counts_from_order_creation(self, db_session, create, due_in):
        order = create(due_days=14)
        order.created_at = order.created_at - timedelta(days=10)
        db_session.commit()

        with pytest.raises(DueDateTooLate):
            laybye_service.update_order_details(order.id, due_date=due_in(25))

        updated = laybye_service.update_order_details(order.id, due_date=due_in(20))
        assert updated.due_date == due_in(20)

    def test_notes_and_customer(self, db_session, create, make_account):
        order = create()
        other = make_account(balance_cents=0, last_name="Naidoo")

        updated = laybye_service.update_order_details(order.id, notes="  Collecting after payday ", customer_id=other.id)
        assert updated.notes == "Collecting after payday"
        assert updated.customer_account_id == other.id

        cleared = laybye_service.update_order_details(order.id, notes="")
        assert cleared.notes is None
        assert cleared.customer_account_id == other.id

    def test_unknown_customer(self, db_session, create, account):
        order = create()
        with pytest.raises(AccountNotFound):
            laybye_service.update_order_details(order.id, customer_id=99999)
        assert laybye_service.get_order(order.id).customer_account_id == account.id

    def test_closed_order_cannot_be_edited(self, db_session, create, due_in):
        order = create()
        laybye_service.cancel_order(order.id, "Customer changed mind")

        with pytest.raises(LaybyeNotPayable):
            laybye_service.update_order_details(order.id, due_date=due_in(20))

    def test_partially_paid_order_can_be_edited(self, db_session, create):
        order = create()
        laybye_service.add_payment(order.id, 5000, "cash")

        updated = laybye_service.update_order_details(order.id, notes="Second instalment due Friday")
        assert updated.status == STATUS_PARTIALLY_PAID
        assert updated.notes == "Second instalment due Friday"

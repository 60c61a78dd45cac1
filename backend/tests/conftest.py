"""
Pytest fixtures for settlement backend tests.

Provides test database setup, branch/account/session factories, and test client.
"""

from datetime import timedelta

import pytest
from settlement import create_app
from settlement.extensions import db
from settlement.models import Branch
from settlement.services import account_service, cashup_service
from settlement.services.sales_service import SaleDraft, SaleDraftLine
from settlement.time_utils import utctoday


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
        'CURRENCY_CODE': 'ZAR',
        'VARIANCE_THRESHOLD_CENTS': 500,
        'LAYBYE_REQUIRE_CUSTOMER': True,
        'LAYBYE_MIN_DEPOSIT_BPS': 2000,
        'LAYBYE_MIN_DEPOSIT_CENTS': 0,
        'LAYBYE_MIN_LEAD_DAYS': 7,
        'LAYBYE_MAX_DURATION_DAYS': 30,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def branch(db_session):
    """Create the main branch."""
    branch = Branch(code="JHB01", name="Johannesburg CBD", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(code="CPT01", name="Cape Town Waterfront", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def make_account(db_session):
    """Factory: make_account(balance_cents, credit_limit_cents, status='active')."""
    def _make(balance_cents=0, credit_limit_cents=0, status="active", last_name="Mokoena"):
        account = account_service.open_account(
            "Thandi",
            last_name,
            credit_limit_cents=credit_limit_cents,
            opening_balance_cents=max(0, balance_cents),
        )
        if balance_cents < 0:
            account.balance_cents = balance_cents
            db_session.commit()
        if status != "active":
            account_service.set_account_status(account.id, status)
        return account
    return _make


@pytest.fixture(scope='function')
def account(make_account):
    """Account with R50.00 balance and R30.00 credit line."""
    return make_account(balance_cents=5000, credit_limit_cents=3000)


@pytest.fixture(scope='function')
def cash_session(db_session, branch):
    """Active cash-up session with a R1000.00 float."""
    return cashup_service.open_session(branch.id, 100000, "Sipho")


@pytest.fixture(scope='function')
def make_draft():
    """Factory: make_draft(total_cents, customer_id=None) -> single-line SaleDraft."""
    def _make(total_cents, customer_id=None, discount_cents=0, tax_cents=0):
        line = SaleDraftLine(product_ref="SKU-001", quantity=1, unit_price_cents=total_cents, description="Test item")
        return SaleDraft(
            lines=(line,),
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            customer_id=customer_id,
        )
    return _make


@pytest.fixture(scope='function')
def due_in():
    """due_in(days) -> date that many days from today (UTC)."""
    return lambda days: utctoday() + timedelta(days=days)

# Overview: Service-layer operations for customer accounts; affordability quotes and authoritative debits.

"""
Account Credit Service

WHY: Customers can pay from a stored balance and, beyond it, from a
credit line. Cashier screens need an instant "can they afford it" answer,
but that answer is advisory only: the money moves in debit(), which
re-validates against the current stored row.

DESIGN PRINCIPLES:
- quote() never writes
- debit()/credit() are compare-and-set on CustomerAccount.version_id
- A version mismatch is a ConcurrencyConflict: re-quote, never blind retry
- Every balance movement is appended to customer_account_transactions
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CustomerAccount, CustomerAccountTransaction
from settlement.time_utils import utcnow
from settlement.validation import (
    ConflictError,
    ValidationError,
    require_non_negative_cents,
    require_positive_cents,
    require_text,
)
from .concurrency import ConcurrencyConflict, run_with_retry


class AccountError(Exception):
    """Raised for account operation errors."""
    code = "ACCOUNT_ERROR"


class AccountNotFound(AccountError):
    code = "ACCOUNT_NOT_FOUND"


class AccountInactive(AccountError):
    code = "ACCOUNT_INACTIVE"


class InsufficientFunds(AccountError):
    """The account cannot cover the requested amount."""
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, message: str, *, max_possible_payment_cents: int = 0,
                 remaining_needs_other_payment_cents: int = 0):
        super().__init__(message)
        self.max_possible_payment_cents = max_possible_payment_cents
        self.remaining_needs_other_payment_cents = remaining_needs_other_payment_cents


class ExceedsCreditLimit(InsufficientFunds):
    code = "EXCEEDS_CREDIT_LIMIT"


# =============================================================================
# CONSTANTS
# =============================================================================

ACCOUNT_STATUS_ACTIVE = "active"
ACCOUNT_STATUS_INACTIVE = "inactive"
VALID_ACCOUNT_STATUSES = [ACCOUNT_STATUS_ACTIVE, ACCOUNT_STATUS_INACTIVE]

TXN_DEBIT = "DEBIT"
TXN_CREDIT = "CREDIT"

# Quote rejection reasons
REASON_ACCOUNT_NOT_FOUND = "AccountNotFound"
REASON_ACCOUNT_INACTIVE = "AccountInactive"
REASON_INVALID_AMOUNT = "InvalidAmount"
REASON_EXCEEDS_CREDIT_LIMIT = "ExceedsCreditLimit"


# =============================================================================
# QUOTE RESULTS (tagged variant)
# =============================================================================

@dataclass(frozen=True)
class ValidQuote:
    """Account can cover the amount; shows how it splits between balance and credit."""
    customer_id: int
    amount_cents: int
    amount_from_balance_cents: int
    amount_from_credit_cents: int
    new_balance_cents: int
    account_version: int

    is_valid = True

    def to_dict(self) -> dict:
        return {
            "is_valid": True,
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "amount_from_balance_cents": self.amount_from_balance_cents,
            "amount_from_credit_cents": self.amount_from_credit_cents,
            "new_balance_after_payment_cents": self.new_balance_cents,
            "max_possible_payment_cents": None,
            "remaining_needs_other_payment_cents": None,
            "reason": None,
            "error_message": None,
            "account_version": self.account_version,
        }


@dataclass(frozen=True)
class InvalidQuote:
    """Account cannot cover the amount (or cannot be used at all)."""
    customer_id: Optional[int]
    amount_cents: int
    reason: str
    error_message: str
    max_possible_payment_cents: Optional[int] = None
    remaining_needs_other_payment_cents: Optional[int] = None

    is_valid = False

    def to_dict(self) -> dict:
        return {
            "is_valid": False,
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "amount_from_balance_cents": 0,
            "amount_from_credit_cents": 0,
            "new_balance_after_payment_cents": None,
            "max_possible_payment_cents": self.max_possible_payment_cents,
            "remaining_needs_other_payment_cents": self.remaining_needs_other_payment_cents,
            "reason": self.reason,
            "error_message": self.error_message,
        }


AccountQuote = Union[ValidQuote, InvalidQuote]


def evaluate_payment(account: CustomerAccount, amount_cents: int) -> AccountQuote:
    """
    Pure affordability check against an already-loaded account row.

    Shared by quote() and debit() so the advisory and authoritative
    answers can never disagree on the rules.
    """
    if account.status != ACCOUNT_STATUS_ACTIVE:
        return InvalidQuote(
            customer_id=account.id,
            amount_cents=amount_cents,
            reason=REASON_ACCOUNT_INACTIVE,
            error_message="Customer account is not active",
        )

    balance = account.balance_cents
    available = max(0, balance + account.credit_limit_cents)

    if amount_cents <= 0:
        return InvalidQuote(
            customer_id=account.id,
            amount_cents=amount_cents,
            reason=REASON_INVALID_AMOUNT,
            error_message="Payment amount must be positive",
        )

    if amount_cents <= balance:
        return ValidQuote(
            customer_id=account.id,
            amount_cents=amount_cents,
            amount_from_balance_cents=amount_cents,
            amount_from_credit_cents=0,
            new_balance_cents=balance - amount_cents,
            account_version=account.version_id,
        )

    if amount_cents <= available:
        from_balance = max(balance, 0)
        return ValidQuote(
            customer_id=account.id,
            amount_cents=amount_cents,
            amount_from_balance_cents=from_balance,
            amount_from_credit_cents=amount_cents - from_balance,
            new_balance_cents=balance - amount_cents,
            account_version=account.version_id,
        )

    return InvalidQuote(
        customer_id=account.id,
        amount_cents=amount_cents,
        reason=REASON_EXCEEDS_CREDIT_LIMIT,
        error_message=f"Amount exceeds available balance and credit ({available} cents available)",
        max_possible_payment_cents=available,
        remaining_needs_other_payment_cents=amount_cents - available,
    )


def quote(customer_id: int, amount_cents: int) -> AccountQuote:
    """
    Advisory affordability quote.

    Never writes. The returned ValidQuote carries the account_version it
    was computed against; pass it to debit(expected_version=...) to make
    the debit fail if anything changed in between.
    """
    account = _load_account(customer_id)
    if not account:
        return InvalidQuote(
            customer_id=customer_id,
            amount_cents=amount_cents,
            reason=REASON_ACCOUNT_NOT_FOUND,
            error_message=f"Customer account {customer_id} not found",
        )
    return evaluate_payment(account, amount_cents)


# =============================================================================
# AUTHORITATIVE BALANCE MOVEMENTS
# =============================================================================

def debit(
    customer_id: int,
    amount_cents: int,
    sale_id: int | None = None,
    *,
    laybye_id: int | None = None,
    expected_version: int | None = None,
    reference: str | None = None,
    commit: bool = True,
) -> CustomerAccountTransaction:
    """
    Authoritatively debit a customer account.

    Re-runs the quote rules against the current stored row, then writes
    the new balance with UPDATE ... WHERE version_id = <version read>.

    Args:
        customer_id: Account to charge
        amount_cents: Amount to charge (positive)
        sale_id: Sale being paid (optional)
        laybye_id: Laybye order being paid (optional)
        expected_version: Version from an earlier quote; mismatch conflicts
        commit: When False, flush only and leave the transaction to the caller

    Raises:
        ValidationError: amount not a positive integer
        AccountNotFound, AccountInactive, ExceedsCreditLimit
        ConcurrencyConflict: account changed since it was read/quoted
    """
    amount_cents = require_positive_cents(amount_cents, "amount_cents")

    def _op():
        account = _load_account(customer_id)
        if not account:
            raise AccountNotFound(f"Customer account {customer_id} not found")

        read_version = account.version_id
        if expected_version is not None and expected_version != read_version:
            raise ConcurrencyConflict(
                f"Account {customer_id} changed since it was quoted (version {expected_version} -> {read_version})"
            )

        result = evaluate_payment(account, amount_cents)
        if not result.is_valid:
            _raise_for_quote(result)

        txn = _apply_balance_change(
            account,
            read_version=read_version,
            new_balance_cents=result.new_balance_cents,
            transaction_type=TXN_DEBIT,
            amount_cents=amount_cents,
            sale_id=sale_id,
            laybye_id=laybye_id,
            reference=reference,
        )
        if commit:
            db.session.commit()
        return txn

    if not commit:
        return _op()
    return run_with_retry(_op)


def credit(
    customer_id: int,
    amount_cents: int,
    payment_method: str,
    *,
    reference: str | None = None,
    sale_id: int | None = None,
    commit: bool = True,
) -> CustomerAccountTransaction:
    """
    Customer pays money into their account (or a refund is credited back).

    WHY: Account customers settle their balance at the till. Inactive
    accounts can still be paid into so outstanding debt can be cleared.
    """
    amount_cents = require_positive_cents(amount_cents, "amount_cents")
    payment_method = require_text(payment_method, "payment_method", max_length=32)

    def _op():
        account = _load_account(customer_id)
        if not account:
            raise AccountNotFound(f"Customer account {customer_id} not found")

        txn = _apply_balance_change(
            account,
            read_version=account.version_id,
            new_balance_cents=account.balance_cents + amount_cents,
            transaction_type=TXN_CREDIT,
            amount_cents=amount_cents,
            sale_id=sale_id,
            payment_method=payment_method,
            reference=reference,
        )
        if commit:
            db.session.commit()
        return txn

    if not commit:
        return _op()
    return run_with_retry(_op)


# =============================================================================
# ACCOUNT ADMINISTRATION
# =============================================================================

def open_account(
    first_name: str,
    last_name: str,
    *,
    account_number: str | None = None,
    credit_limit_cents: int = 0,
    opening_balance_cents: int = 0,
    email: str | None = None,
    phone: str | None = None,
) -> CustomerAccount:
    """
    Create a customer account.

    An opening balance is booked as a CREDIT ledger row so the statement
    always explains the balance.
    """
    first_name = require_text(first_name, "first_name", max_length=128)
    last_name = require_text(last_name, "last_name", max_length=128)
    credit_limit_cents = require_non_negative_cents(credit_limit_cents, "credit_limit_cents")
    opening_balance_cents = require_non_negative_cents(opening_balance_cents, "opening_balance_cents")
    if account_number is not None:
        account_number = require_text(account_number, "account_number", max_length=32)
        if db.session.query(CustomerAccount).filter_by(account_number=account_number).first():
            raise ConflictError(f"Account number {account_number} is already in use")

    account = CustomerAccount(
        account_number=account_number or "PENDING",
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone=phone,
        balance_cents=opening_balance_cents,
        credit_limit_cents=credit_limit_cents,
        status=ACCOUNT_STATUS_ACTIVE,
    )
    db.session.add(account)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Another till claimed the same number between the check and the insert
        db.session.rollback()
        raise ConflictError(f"Account number {account_number} is already in use") from exc

    if not account_number:
        account.account_number = f"ACC-{account.id:06d}"

    if opening_balance_cents:
        db.session.add(CustomerAccountTransaction(
            account_id=account.id,
            transaction_type=TXN_CREDIT,
            amount_cents=opening_balance_cents,
            balance_after_cents=opening_balance_cents,
            reference="Opening balance",
            occurred_at=utcnow(),
        ))

    db.session.commit()
    return account


def get_account(customer_id: int) -> CustomerAccount:
    account = _load_account(customer_id)
    if not account:
        raise AccountNotFound(f"Customer account {customer_id} not found")
    return account


def set_account_status(customer_id: int, status: str) -> CustomerAccount:
    """Activate/deactivate an account. Inactive accounts cannot be debited."""
    if status not in VALID_ACCOUNT_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_ACCOUNT_STATUSES}")

    def _op():
        account = get_account(customer_id)
        account.status = status
        db.session.commit()
        return account

    return run_with_retry(_op)


def set_credit_limit(customer_id: int, credit_limit_cents: int) -> CustomerAccount:
    """
    Change an account's credit line.

    Lowering the limit below current usage is allowed; it only blocks
    further credit purchases until the balance recovers.
    """
    credit_limit_cents = require_non_negative_cents(credit_limit_cents, "credit_limit_cents")

    def _op():
        account = get_account(customer_id)
        account.credit_limit_cents = credit_limit_cents
        db.session.commit()
        return account

    return run_with_retry(_op)


def get_account_statement(customer_id: int, limit: int | None = None) -> list[CustomerAccountTransaction]:
    """Account ledger rows, oldest first."""
    get_account(customer_id)
    query = db.session.query(CustomerAccountTransaction).filter_by(
        account_id=customer_id
    ).order_by(CustomerAccountTransaction.id)
    if limit:
        query = query.limit(limit)
    return query.all()


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _load_account(customer_id: int) -> CustomerAccount | None:
    """Load the account, always refreshing from the store (never a stale identity-map copy)."""
    return db.session.query(CustomerAccount).populate_existing().filter_by(id=customer_id).first()


def _apply_balance_change(
    account: CustomerAccount,
    *,
    read_version: int,
    new_balance_cents: int,
    transaction_type: str,
    amount_cents: int,
    sale_id: int | None = None,
    laybye_id: int | None = None,
    payment_method: str | None = None,
    reference: str | None = None,
) -> CustomerAccountTransaction:
    """Compare-and-set the balance, then append the ledger row."""
    rows = db.session.query(CustomerAccount).filter(
        CustomerAccount.id == account.id,
        CustomerAccount.version_id == read_version,
    ).update(
        {
            CustomerAccount.balance_cents: new_balance_cents,
            CustomerAccount.version_id: read_version + 1,
            CustomerAccount.updated_at: utcnow(),
        },
        synchronize_session=False,
    )
    if rows != 1:
        current_app.logger.warning(
            "Account %s %s rejected: version %s no longer current", account.id, transaction_type, read_version
        )
        raise ConcurrencyConflict(f"Account {account.id} was modified concurrently; re-quote and try again")

    db.session.expire(account)

    txn = CustomerAccountTransaction(
        account_id=account.id,
        transaction_type=transaction_type,
        amount_cents=amount_cents,
        balance_after_cents=new_balance_cents,
        sale_id=sale_id,
        laybye_id=laybye_id,
        payment_method=payment_method,
        reference=reference,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def _raise_for_quote(result: InvalidQuote) -> None:
    if result.reason == REASON_ACCOUNT_INACTIVE:
        raise AccountInactive(result.error_message)
    if result.reason == REASON_EXCEEDS_CREDIT_LIMIT:
        raise ExceedsCreditLimit(
            result.error_message,
            max_possible_payment_cents=result.max_possible_payment_cents or 0,
            remaining_needs_other_payment_cents=result.remaining_needs_other_payment_cents or 0,
        )
    if result.reason == REASON_ACCOUNT_NOT_FOUND:
        raise AccountNotFound(result.error_message)
    raise ValidationError(result.error_message)

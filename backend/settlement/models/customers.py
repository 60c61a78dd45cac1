from __future__ import annotations

from ..extensions import db
from settlement.time_utils import to_utc_z


class CustomerAccount(db.Model):
    """
    Customer stored-value account with an extendable credit line.

    WHY: Customers may pay for purchases from a prepaid balance and,
    once that is used up, from a credit line. The balance may go negative
    down to -credit_limit_cents.

    CONCURRENCY: The same customer can transact at two branches at once.
    balance_cents is only ever changed by a compare-and-set on version_id
    (see account_service.debit / credit); quotes never write.
    """
    __tablename__ = "customer_accounts"
    __table_args__ = (
        db.UniqueConstraint("account_number", name="uq_customer_accounts_number"),
        db.Index("ix_customer_accounts_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_number = db.Column(db.String(32), nullable=False)

    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    # Money (all amounts in cents)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="active")  # active, inactive

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def available_cents(self) -> int:
        return max(0, self.balance_cents + self.credit_limit_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_number": self.account_number,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "balance_cents": self.balance_cents,
            "credit_limit_cents": self.credit_limit_cents,
            "available_cents": self.available_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerAccountTransaction(db.Model):
    """
    Append-only ledger of account balance movements.

    TRANSACTION TYPES:
    - DEBIT: Purchase or laybye payment charged to the account
    - CREDIT: Customer paid money into the account

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "customer_account_transactions"
    __table_args__ = (
        db.Index("ix_account_txns_account_occurred", "account_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("customer_accounts.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # DEBIT, CREDIT
    amount_cents = db.Column(db.Integer, nullable=False)  # Always positive; direction from transaction_type
    balance_after_cents = db.Column(db.Integer, nullable=False)

    # What caused the movement
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    laybye_id = db.Column(db.Integer, db.ForeignKey("laybye_orders.id"), nullable=True, index=True)
    payment_method = db.Column(db.String(32), nullable=True)  # for CREDIT: how the customer paid in
    reference = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    account = db.relationship("CustomerAccount", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "sale_id": self.sale_id,
            "laybye_id": self.laybye_id,
            "payment_method": self.payment_method,
            "reference": self.reference,
            "occurred_at": to_utc_z(self.occurred_at),
        }

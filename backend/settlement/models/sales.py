from __future__ import annotations

from ..extensions import db
from settlement.time_utils import to_utc_z


class Sale(db.Model):
    """
    Committed sale record.

    WHY: A sale only exists once its payment allocations sum exactly to the
    total due. Carts and in-progress allocations are never persisted.

    PAYMENT STATUS:
    - completed: every allocation settled
    - needs_reconciliation: sale recorded but an account debit failed
      afterwards; requires manual follow-up, not counted in cash-up totals
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_document_number", "document_number"),
        db.Index("ix_sales_branch_status_created", "branch_id", "payment_status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    cashup_session_id = db.Column(db.Integer, db.ForeignKey("cashup_sessions.id"), nullable=True, index=True)
    customer_account_id = db.Column(db.Integer, db.ForeignKey("customer_accounts.id"), nullable=True, index=True)

    # Human-readable document number (e.g., "S-001234"), set after insert
    document_number = db.Column(db.String(64), nullable=True)

    currency = db.Column(db.String(3), nullable=False)

    # Totals (all amounts in cents); tax is a pre-computed input
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_status = db.Column(db.String(32), nullable=False, default="completed", index=True)
    reconciliation_note = db.Column(db.String(255), nullable=True)

    cashier_name = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "cashup_session_id": self.cashup_session_id,
            "customer_account_id": self.customer_account_id,
            "document_number": self.document_number,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "change_cents": self.change_cents,
            "payment_status": self.payment_status,
            "reconciliation_note": self.reconciliation_note,
            "cashier_name": self.cashier_name,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
            "lines": [line.to_dict() for line in self.lines],
            "payments": [p.to_dict() for p in self.payments],
        }


class SaleLine(db.Model):
    """Individual line items on a committed sale."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    # Catalog is an external collaborator; only its reference is kept
    product_ref = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_ref": self.product_ref,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class SalePayment(db.Model):
    """
    One payment-method allocation of a committed sale.

    WHY: Split payments. The full allocation set is written with the sale;
    individual allocations are never persisted on their own.

    STATUS:
    - settled: money moved (cash/card/mobile money, or account debited)
    - pending_debit: account leg written, authoritative debit not yet done
    - failed: account debit rejected after the sale was recorded
    """
    __tablename__ = "sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    method = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)  # Amount applied to the sale (excludes change)
    tendered_cents = db.Column(db.Integer, nullable=False)  # Amount handed over (cash may exceed)
    customer_account_id = db.Column(db.Integer, db.ForeignKey("customer_accounts.id"), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="settled")
    error_code = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="SalePayment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "tendered_cents": self.tendered_cents,
            "customer_account_id": self.customer_account_id,
            "status": self.status,
            "error_code": self.error_code,
            "created_at": to_utc_z(self.created_at),
        }

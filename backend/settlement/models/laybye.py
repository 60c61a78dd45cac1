from __future__ import annotations

from ..extensions import db
from settlement.time_utils import to_utc_z


class LaybyeOrder(db.Model):
    """
    Deposit-secured deferred-payment order.

    LIFECYCLE:
    - open: deposit taken, nothing else paid
    - partially_paid: at least one payment after the deposit
    - paid_off: remaining balance reached zero
    - cancelled: cancelled by staff
    - expired: due date passed with a balance outstanding

    INVARIANT: remaining_balance_cents = total_cents - sum(payments), >= 0.
    The deposit is recorded as the first LaybyePayment.
    """
    __tablename__ = "laybye_orders"
    __table_args__ = (
        db.Index("ix_laybye_orders_status_due", "status", "due_date"),
        db.CheckConstraint("remaining_balance_cents >= 0", name="ck_laybye_remaining_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    customer_account_id = db.Column(db.Integer, db.ForeignKey("customer_accounts.id"), nullable=True, index=True)

    currency = db.Column(db.String(3), nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    deposit_cents = db.Column(db.Integer, nullable=False)
    remaining_balance_cents = db.Column(db.Integer, nullable=False)

    due_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="open", index=True)

    notes = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer_account = db.relationship("CustomerAccount", backref=db.backref("laybye_orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_children: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "branch_id": self.branch_id,
            "customer_account_id": self.customer_account_id,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "deposit_cents": self.deposit_cents,
            "remaining_balance_cents": self.remaining_balance_cents,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "status": self.status,
            "notes": self.notes,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }
        if include_children:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class LaybyeItem(db.Model):
    """Goods reserved by a laybye order."""
    __tablename__ = "laybye_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    laybye_id = db.Column(db.Integer, db.ForeignKey("laybye_orders.id"), nullable=False, index=True)

    product_ref = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    laybye = db.relationship("LaybyeOrder", backref=db.backref("items", lazy=True, order_by="LaybyeItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "laybye_id": self.laybye_id,
            "product_ref": self.product_ref,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class LaybyePayment(db.Model):
    """
    Payment applied to a laybye order.

    KINDS:
    - DEPOSIT: part of the initial deposit (one row per deposit allocation)
    - INSTALMENT: any later payment

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "laybye_payments"
    __table_args__ = (
        db.Index("ix_laybye_payments_laybye_paid", "laybye_id", "paid_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    laybye_id = db.Column(db.Integer, db.ForeignKey("laybye_orders.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False)  # DEPOSIT, INSTALMENT
    method = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    customer_account_id = db.Column(db.Integer, db.ForeignKey("customer_accounts.id"), nullable=True)
    cashup_session_id = db.Column(db.Integer, db.ForeignKey("cashup_sessions.id"), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    laybye = db.relationship("LaybyeOrder", backref=db.backref("payments", lazy=True, order_by="LaybyePayment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "laybye_id": self.laybye_id,
            "kind": self.kind,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "customer_account_id": self.customer_account_id,
            "cashup_session_id": self.cashup_session_id,
            "notes": self.notes,
            "paid_at": to_utc_z(self.paid_at),
        }

from __future__ import annotations

from ..extensions import db
from settlement.time_utils import to_utc_z


class CashupSession(db.Model):
    """
    Cashier cash-up session for one branch.

    WHY: Cashier accountability. Each session has an opening float, running
    sale/refund/expense movements, and a counted amount at close.

    LIFECYCLE (forward only):
    - active: accepting movements; expected amount derived on demand
    - closed: counted, expected frozen, variance calculated
    - reconciled: reviewed; terminal, no further mutation

    UNIQUENESS: At most one active session per branch (partial unique index).
    """
    __tablename__ = "cashup_sessions"
    __table_args__ = (
        db.Index(
            "uq_cashup_sessions_branch_active",
            "branch_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index("ix_cashup_sessions_branch_opened", "branch_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_number = db.Column(db.String(64), nullable=False, unique=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    cashier_name = db.Column(db.String(128), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    # Cash tracking (all amounts in cents)
    opening_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_cents = db.Column(db.Integer, nullable=True)  # Frozen at close
    actual_cents = db.Column(db.Integer, nullable=True)  # Counted at close
    variance_cents = db.Column(db.Integer, nullable=True)  # actual - expected

    # Fingerprint of the close payload, makes replays of the same close idempotent
    close_fingerprint = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    reconcile_notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("cashup_sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_number": self.session_number,
            "branch_id": self.branch_id,
            "cashier_name": self.cashier_name,
            "status": self.status,
            "opening_cents": self.opening_cents,
            "expected_cents": self.expected_cents,
            "actual_cents": self.actual_cents,
            "variance_cents": self.variance_cents,
            "notes": self.notes,
            "reconcile_notes": self.reconcile_notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "reconciled_at": to_utc_z(self.reconciled_at) if self.reconciled_at else None,
            "version_id": self.version_id,
        }


class CashupMovement(db.Model):
    """
    Money movement booked against a cash-up session.

    KINDS:
    - SALE: settled sale allocation (or laybye payment) by method
    - REFUND: money returned to a customer by method
    - EXPENSE: paid out of the till (recorded while active or at close)

    IMMUTABLE: Records are never updated or deleted. Session totals are
    always sums over these rows.
    """
    __tablename__ = "cashup_movements"
    __table_args__ = (
        db.Index("ix_cashup_movements_session_kind", "cashup_session_id", "kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashup_session_id = db.Column(db.Integer, db.ForeignKey("cashup_sessions.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False)  # SALE, REFUND, EXPENSE
    method = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)  # Always positive; direction from kind

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    laybye_payment_id = db.Column(db.Integer, db.ForeignKey("laybye_payments.id"), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("CashupSession", backref=db.backref("movements", lazy=True, order_by="CashupMovement.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashup_session_id": self.cashup_session_id,
            "kind": self.kind,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "sale_id": self.sale_id,
            "laybye_payment_id": self.laybye_payment_id,
            "description": self.description,
            "recorded_at": to_utc_z(self.recorded_at),
        }


class CashVariance(db.Model):
    """
    Recorded cash overage/shortage for a session.

    IMMUTABLE: Never updated once created. Follow-up (investigation,
    approval, resolution) is appended as CashVarianceAction rows.
    """
    __tablename__ = "cash_variances"
    __table_args__ = (
        db.Index("ix_cash_variances_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashup_session_id = db.Column(db.Integer, db.ForeignKey("cashup_sessions.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    variance_type = db.Column(db.String(16), nullable=False)  # overage, shortage
    amount_cents = db.Column(db.Integer, nullable=False)  # Always positive
    category = db.Column(db.String(32), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)
    reported_by = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("CashupSession", backref=db.backref("variances", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashup_session_id": self.cashup_session_id,
            "branch_id": self.branch_id,
            "variance_type": self.variance_type,
            "amount_cents": self.amount_cents,
            "category": self.category,
            "description": self.description,
            "reported_by": self.reported_by,
            "created_at": to_utc_z(self.created_at),
        }


class CashVarianceAction(db.Model):
    """Append-only follow-up trail for a recorded variance."""
    __tablename__ = "cash_variance_actions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    variance_id = db.Column(db.Integer, db.ForeignKey("cash_variances.id"), nullable=False, index=True)

    action_type = db.Column(db.String(32), nullable=False)
    resolution_status = db.Column(db.String(32), nullable=False)  # Status after this action
    action_by = db.Column(db.String(128), nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    variance = db.relationship("CashVariance", backref=db.backref("actions", lazy=True, order_by="CashVarianceAction.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variance_id": self.variance_id,
            "action_type": self.action_type,
            "resolution_status": self.resolution_status,
            "action_by": self.action_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }

"""Settlement core: branches, customer accounts, sales, laybye, cash-up

Revision ID: 20261019_settlement_core
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_settlement_core"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_branches_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("branches", schema=None) as batch_op:
        batch_op.create_index("ix_branches_is_active", ["is_active"], unique=False)

    op.create_table(
        "customer_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_number", sa.String(32), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("credit_limit_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_number", name="uq_customer_accounts_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customer_accounts", schema=None) as batch_op:
        batch_op.create_index("ix_customer_accounts_status", ["status"], unique=False)

    op.create_table(
        "cashup_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("session_number", sa.String(64), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("cashier_name", sa.String(128), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("opening_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expected_cents", sa.Integer(), nullable=True),
        sa.Column("actual_cents", sa.Integer(), nullable=True),
        sa.Column("variance_cents", sa.Integer(), nullable=True),
        sa.Column("close_fingerprint", sa.String(64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reconcile_notes", sa.Text(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_number", name="uq_cashup_sessions_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cashup_sessions", schema=None) as batch_op:
        batch_op.create_index("ix_cashup_sessions_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_cashup_sessions_status", ["status"], unique=False)
        batch_op.create_index("ix_cashup_sessions_opened_at", ["opened_at"], unique=False)
        batch_op.create_index("ix_cashup_sessions_branch_opened", ["branch_id", "opened_at"], unique=False)
        # At most one active session per branch
        batch_op.create_index(
            "uq_cashup_sessions_branch_active",
            ["branch_id"],
            unique=True,
            sqlite_where=sa.text("status = 'active'"),
            postgresql_where=sa.text("status = 'active'"),
        )

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("cashup_session_id", sa.Integer(), nullable=True),
        sa.Column("customer_account_id", sa.Integer(), nullable=True),
        sa.Column("document_number", sa.String(64), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("change_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_status", sa.String(32), nullable=False, server_default="completed"),
        sa.Column("reconciliation_note", sa.String(255), nullable=True),
        sa.Column("cashier_name", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["cashup_session_id"], ["cashup_sessions.id"]),
        sa.ForeignKeyConstraint(["customer_account_id"], ["customer_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.create_index("ix_sales_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_sales_cashup_session_id", ["cashup_session_id"], unique=False)
        batch_op.create_index("ix_sales_customer_account_id", ["customer_account_id"], unique=False)
        batch_op.create_index("ix_sales_payment_status", ["payment_status"], unique=False)
        batch_op.create_index("ix_sales_document_number", ["document_number"], unique=False)
        batch_op.create_index("ix_sales_branch_status_created", ["branch_id", "payment_status", "created_at"], unique=False)

    op.create_table(
        "sale_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("product_ref", sa.String(64), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_lines", schema=None) as batch_op:
        batch_op.create_index("ix_sale_lines_sale_id", ["sale_id"], unique=False)

    op.create_table(
        "sale_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("tendered_cents", sa.Integer(), nullable=False),
        sa.Column("customer_account_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="settled"),
        sa.Column("error_code", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["customer_account_id"], ["customer_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_payments", schema=None) as batch_op:
        batch_op.create_index("ix_sale_payments_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_sale_payments_method", ["method"], unique=False)

    op.create_table(
        "laybye_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(64), nullable=True),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("customer_account_id", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("deposit_cents", sa.Integer(), nullable=False),
        sa.Column("remaining_balance_cents", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        *_timestamps(),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["customer_account_id"], ["customer_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("remaining_balance_cents >= 0", name="ck_laybye_remaining_non_negative"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("laybye_orders", schema=None) as batch_op:
        batch_op.create_index("ix_laybye_orders_order_number", ["order_number"], unique=False)
        batch_op.create_index("ix_laybye_orders_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_laybye_orders_customer_account_id", ["customer_account_id"], unique=False)
        batch_op.create_index("ix_laybye_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_laybye_orders_status_due", ["status", "due_date"], unique=False)

    op.create_table(
        "laybye_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("laybye_id", sa.Integer(), nullable=False),
        sa.Column("product_ref", sa.String(64), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["laybye_id"], ["laybye_orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("laybye_items", schema=None) as batch_op:
        batch_op.create_index("ix_laybye_items_laybye_id", ["laybye_id"], unique=False)

    op.create_table(
        "laybye_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("laybye_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("customer_account_id", sa.Integer(), nullable=True),
        sa.Column("cashup_session_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["laybye_id"], ["laybye_orders.id"]),
        sa.ForeignKeyConstraint(["customer_account_id"], ["customer_accounts.id"]),
        sa.ForeignKeyConstraint(["cashup_session_id"], ["cashup_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("laybye_payments", schema=None) as batch_op:
        batch_op.create_index("ix_laybye_payments_laybye_id", ["laybye_id"], unique=False)
        batch_op.create_index("ix_laybye_payments_cashup_session_id", ["cashup_session_id"], unique=False)
        batch_op.create_index("ix_laybye_payments_laybye_paid", ["laybye_id", "paid_at"], unique=False)

    op.create_table(
        "cashup_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cashup_session_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=True),
        sa.Column("laybye_payment_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["cashup_session_id"], ["cashup_sessions.id"]),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["laybye_payment_id"], ["laybye_payments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cashup_movements", schema=None) as batch_op:
        batch_op.create_index("ix_cashup_movements_cashup_session_id", ["cashup_session_id"], unique=False)
        batch_op.create_index("ix_cashup_movements_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_cashup_movements_session_kind", ["cashup_session_id", "kind"], unique=False)

    op.create_table(
        "customer_account_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("balance_after_cents", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=True),
        sa.Column("laybye_id", sa.Integer(), nullable=True),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["customer_accounts.id"]),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["laybye_id"], ["laybye_orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customer_account_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_customer_account_transactions_account_id", ["account_id"], unique=False)
        batch_op.create_index("ix_customer_account_transactions_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index("ix_customer_account_transactions_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_customer_account_transactions_laybye_id", ["laybye_id"], unique=False)
        batch_op.create_index("ix_customer_account_transactions_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_account_txns_account_occurred", ["account_id", "occurred_at"], unique=False)

    op.create_table(
        "cash_variances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cashup_session_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("variance_type", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("reported_by", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["cashup_session_id"], ["cashup_sessions.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_variances", schema=None) as batch_op:
        batch_op.create_index("ix_cash_variances_cashup_session_id", ["cashup_session_id"], unique=False)
        batch_op.create_index("ix_cash_variances_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_cash_variances_category", ["category"], unique=False)
        batch_op.create_index("ix_cash_variances_branch_created", ["branch_id", "created_at"], unique=False)

    op.create_table(
        "cash_variance_actions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("variance_id", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.String(32), nullable=False),
        sa.Column("resolution_status", sa.String(32), nullable=False),
        sa.Column("action_by", sa.String(128), nullable=False),
        sa.Column("notes", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["variance_id"], ["cash_variances.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_variance_actions", schema=None) as batch_op:
        batch_op.create_index("ix_cash_variance_actions_variance_id", ["variance_id"], unique=False)


def downgrade():
    op.drop_table("cash_variance_actions")
    op.drop_table("cash_variances")
    op.drop_table("customer_account_transactions")
    op.drop_table("cashup_movements")
    op.drop_table("laybye_payments")
    op.drop_table("laybye_items")
    op.drop_table("laybye_orders")
    op.drop_table("sale_payments")
    op.drop_table("sale_lines")
    op.drop_table("sales")
    op.drop_table("cashup_sessions")
    op.drop_table("customer_accounts")
    op.drop_table("branches")

"""initial ledger schema

Revision ID: 20260301_initial_ledger
Revises:
Create Date: 2026-03-01

Creates the branch ledger schema from scratch:
- tenancy: companies, users, branches, payment_methods, branch_stock
- sequence_counters: gap-free folios per (kind, scope)
- ledger documents: orders (+ order_items), events, expenses, buys
- cash registers, their entry registry and closing logs
- payments (exactly one parent: order or event)
- discount_authorizations, branch_notifications, ledger_audit_events
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20260301_initial_ledger'
down_revision = None
branch_labels = None
depends_on = None


def _document_columns():
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("folio", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("paid_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("remaining_cents", sa.Integer(), nullable=False),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _document_indexes(table):
    op.create_index(f"ix_{table}_branch_id", table, ["branch_id"])
    op.create_index(f"ix_{table}_payment_status", table, ["payment_status"])
    op.create_index(f"ix_{table}_created_at", table, ["created_at"])


def upgrade():
    # ============================================================================
    # tenancy
    # ============================================================================
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=True),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("full_name", sa.String(160), nullable=True),
        sa.Column("role", sa.String(16), nullable=False, server_default="cashier"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_company_id", "users", ["company_id"])

    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("manager_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", "code", name="uq_branches_company_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_branches_company_id", "branches", ["company_id"])
    op.create_index("ix_branches_manager_id", "branches", ["manager_id"])

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("abbreviation", sa.String(16), nullable=True),
        sa.Column("is_cash", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "branch_stock",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("product_code", sa.String(64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "product_code", name="uq_branch_stock_branch_product"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_branch_stock_branch_id", "branch_stock", ["branch_id"])

    # ============================================================================
    # sequence_counters
    # ============================================================================
    op.create_table(
        "sequence_counters",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("scope", sa.String(64), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("kind", "scope", name="uq_sequence_counters_kind_scope"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sequence_counters_kind", "sequence_counters", ["kind"])

    # ============================================================================
    # cash registers (expenses reference them)
    # ============================================================================
    op.create_table(
        "cash_registers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("is_open", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("initial_balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_open", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cashier_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "name", name="uq_cash_registers_branch_name"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_registers_branch_id", "cash_registers", ["branch_id"])
    op.create_index("ix_cash_registers_is_active", "cash_registers", ["is_active"])
    op.create_index("ix_cash_registers_is_open", "cash_registers", ["is_open"])

    # ============================================================================
    # ledger documents
    # ============================================================================
    op.create_table(
        "orders",
        *_document_columns(),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("client_name", sa.String(160), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "folio", name="uq_orders_branch_folio"),
        sqlite_autoincrement=True,
    )
    _document_indexes("orders")
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("product_code", sa.String(64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "events",
        *_document_columns(),
        sa.Column("client_name", sa.String(160), nullable=True),
        sa.Column("event_date", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "folio", name="uq_events_branch_folio"),
        sqlite_autoincrement=True,
    )
    _document_indexes("events")

    op.create_table(
        "expenses",
        *_document_columns(),
        sa.Column("concept", sa.String(160), nullable=False),
        sa.Column("expense_type", sa.String(16), nullable=False),
        sa.Column("cash_register_id", sa.Integer(), sa.ForeignKey("cash_registers.id"), nullable=True),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "folio", name="uq_expenses_branch_folio"),
        sqlite_autoincrement=True,
    )
    _document_indexes("expenses")
    op.create_index("ix_expenses_cash_register_id", "expenses", ["cash_register_id"])

    op.create_table(
        "buys",
        *_document_columns(),
        sa.Column("provider_name", sa.String(160), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "folio", name="uq_buys_branch_folio"),
        sqlite_autoincrement=True,
    )
    _document_indexes("buys")

    # ============================================================================
    # register registry + closing logs
    # ============================================================================
    op.create_table(
        "cash_register_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cash_register_id", sa.Integer(), sa.ForeignKey("cash_registers.id"), nullable=False),
        sa.Column("document_kind", sa.String(16), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("sale_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "cash_register_id", "document_kind", "document_id",
            name="uq_cash_register_entries_register_document",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_register_entries_cash_register_id", "cash_register_entries", ["cash_register_id"])

    op.create_table(
        "cash_register_entry_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.Integer(), sa.ForeignKey("cash_register_entries.id"), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_id", "payment_id", name="uq_cash_register_entry_payments_entry_payment"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_register_entry_payments_entry_id", "cash_register_entry_payments", ["entry_id"])
    op.create_index("ix_cash_register_entry_payments_payment_id", "cash_register_entry_payments", ["payment_id"])

    op.create_table(
        "cash_register_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cash_register_id", sa.Integer(), sa.ForeignKey("cash_registers.id"), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("cashier_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("closed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("initial_balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cash_in_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expenses_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reversals_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("final_balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("entry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("totals_by_method", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_register_logs_cash_register_id", "cash_register_logs", ["cash_register_id"])
    op.create_index("ix_cash_register_logs_branch_id", "cash_register_logs", ["branch_id"])
    op.create_index("ix_cash_register_logs_register_closed", "cash_register_logs", ["cash_register_id", "closed_at"])

    # ============================================================================
    # payments
    # ============================================================================
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=True),
        sa.Column("payment_method_id", sa.Integer(), sa.ForeignKey("payment_methods.id"), nullable=False),
        sa.Column("cash_register_id", sa.Integer(), sa.ForeignKey("cash_registers.id"), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("registered_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("external_reference", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_reference"),
        sa.CheckConstraint("(order_id IS NULL) <> (event_id IS NULL)", name="ck_payments_single_parent"),
        sa.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payments_branch_id", "payments", ["branch_id"])
    op.create_index("ix_payments_order_id", "payments", ["order_id"])
    op.create_index("ix_payments_event_id", "payments", ["event_id"])
    op.create_index("ix_payments_cash_register_id", "payments", ["cash_register_id"])
    op.create_index("ix_payments_created_at", "payments", ["created_at"])

    # ============================================================================
    # discount authorizations + notifications
    # ============================================================================
    op.create_table(
        "discount_authorizations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("requester_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("manager_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("discount_value", sa.Integer(), nullable=False),
        sa.Column("discount_type", sa.String(16), nullable=False),
        sa.Column("is_auth", sa.Boolean(), nullable=True),
        sa.Column("auth_folio", sa.String(32), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_redeemed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("auth_folio"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_discount_authorizations_branch_id", "discount_authorizations", ["branch_id"])
    op.create_index("ix_discount_authorizations_manager_id", "discount_authorizations", ["manager_id"])
    op.create_index("ix_discount_authorizations_order_id", "discount_authorizations", ["order_id"])
    op.create_index("ix_discount_authorizations_is_auth", "discount_authorizations", ["is_auth"])

    op.create_table(
        "branch_notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("recipient_role", sa.String(16), nullable=False),
        sa.Column("recipient_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("kind", sa.String(48), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("discount_auth_id", sa.Integer(), sa.ForeignKey("discount_authorizations.id"), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_branch_notifications_branch_role", "branch_notifications", ["branch_id", "recipient_role"])
    op.create_index("ix_branch_notifications_recipient_user_id", "branch_notifications", ["recipient_user_id"])
    op.create_index("ix_branch_notifications_discount_auth_id", "branch_notifications", ["discount_auth_id"])

    # ============================================================================
    # ledger_audit_events: append-only audit trail
    # ============================================================================
    op.create_table(
        "ledger_audit_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("event_category", sa.String(32), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cash_register_id", sa.Integer(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_audit_events_branch_id", "ledger_audit_events", ["branch_id"])
    op.create_index("ix_ledger_audit_events_event_type", "ledger_audit_events", ["event_type"])
    op.create_index("ix_ledger_audit_events_occurred_at", "ledger_audit_events", ["occurred_at"])
    op.create_index("ix_ledger_audit_events_entity", "ledger_audit_events", ["entity_type", "entity_id"])


def downgrade():
    for table in (
        "ledger_audit_events",
        "branch_notifications",
        "discount_authorizations",
        "payments",
        "cash_register_logs",
        "cash_register_entry_payments",
        "cash_register_entries",
        "buys",
        "expenses",
        "events",
        "order_items",
        "orders",
        "cash_registers",
        "sequence_counters",
        "branch_stock",
        "payment_methods",
        "branches",
        "users",
        "companies",
    ):
        op.drop_table(table)

"""Initial caja schema: currencies, tills, balances, lots, movements, transactions

Revision ID: c4a1e0f2b7d9
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "c4a1e0f2b7d9"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "currencies",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=3), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("buy_rate", sa.Numeric(12, 4), nullable=False),
        sa.Column("sell_rate", sa.Numeric(12, 4), nullable=False),
        sa.Column("base_cost", sa.Numeric(12, 4), nullable=True),
        sa.Column("is_home", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rates_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("currencies", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_currencies_code"), ["code"], unique=True)
    op.create_index(
        "uq_currencies_single_home",
        "currencies",
        ["is_home"],
        unique=True,
        sqlite_where=sa.text("is_home = 1"),
        postgresql_where=sa.text("is_home"),
    )

    op.create_table(
        "tills",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("operator_id", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by", sa.Integer(), nullable=True),
        sa.Column("accumulated_profit", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("opening_note", sa.String(length=255), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("tills", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_tills_operator_id"), ["operator_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_tills_state"), ["state"], unique=False)
        batch_op.create_index(batch_op.f("ix_tills_opened_at"), ["opened_at"], unique=False)
    # One OPEN till per operator
    op.create_index(
        "uq_tills_operator_open",
        "tills",
        ["operator_id"],
        unique=True,
        sqlite_where=sa.text("state = 'OPEN'"),
        postgresql_where=sa.text("state = 'OPEN'"),
    )

    op.create_table(
        "till_balances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("till_id", sa.Integer(), nullable=False),
        sa.Column("currency_id", sa.Integer(), nullable=False),
        sa.Column("opening_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("current_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["till_id"], ["tills.id"]),
        sa.ForeignKeyConstraint(["currency_id"], ["currencies.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("till_id", "currency_id", name="uq_till_balances_till_currency"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("till_balances", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_till_balances_till_id"), ["till_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_till_balances_currency_id"), ["currency_id"], unique=False)

    op.create_table(
        "exchange_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("till_id", sa.Integer(), nullable=False),
        sa.Column("currency_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="COMPLETED"),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("rate", sa.Numeric(12, 4), nullable=False),
        sa.Column("home_total", sa.Numeric(18, 2), nullable=False),
        sa.Column("commission", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("unit_cost", sa.Numeric(18, 6), nullable=True),
        sa.Column("uncovered_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("realized_cost", sa.Numeric(18, 2), nullable=True),
        sa.Column("realized_profit", sa.Numeric(18, 2), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("operator_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["till_id"], ["tills.id"]),
        sa.ForeignKeyConstraint(["currency_id"], ["currencies.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("exchange_transactions", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_exchange_transactions_till_id"), ["till_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_exchange_transactions_currency_id"), ["currency_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_exchange_transactions_type"), ["type"], unique=False)
        batch_op.create_index(batch_op.f("ix_exchange_transactions_status"), ["status"], unique=False)
        batch_op.create_index(batch_op.f("ix_exchange_transactions_customer_id"), ["customer_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_exchange_transactions_operator_id"), ["operator_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_exchange_transactions_created_at"), ["created_at"], unique=False)
        batch_op.create_index("ix_exchange_tx_till_created", ["till_id", "created_at"], unique=False)

    op.create_table(
        "inventory_lots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("currency_id", sa.Integer(), nullable=False),
        sa.Column("till_id", sa.Integer(), nullable=False),
        sa.Column("original_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("unit_cost", sa.Numeric(18, 6), nullable=False),
        sa.Column("available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("acquired_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("source_transaction_id", sa.Integer(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["currency_id"], ["currencies.id"]),
        sa.ForeignKeyConstraint(["till_id"], ["tills.id"]),
        sa.ForeignKeyConstraint(["source_transaction_id"], ["exchange_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_lots", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_inventory_lots_currency_id"), ["currency_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_inventory_lots_till_id"), ["till_id"], unique=False)
        batch_op.create_index(
            "ix_lots_till_currency_available", ["till_id", "currency_id", "available", "acquired_at"], unique=False
        )

    op.create_table(
        "till_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("till_id", sa.Integer(), nullable=False),
        sa.Column("currency_id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("direction", sa.String(length=3), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("reason", sa.String(length=16), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("affects_balance", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["till_id"], ["tills.id"]),
        sa.ForeignKeyConstraint(["currency_id"], ["currencies.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["exchange_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("till_movements", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_till_movements_till_id"), ["till_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_till_movements_currency_id"), ["currency_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_till_movements_transaction_id"), ["transaction_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_till_movements_reason"), ["reason"], unique=False)
        batch_op.create_index(batch_op.f("ix_till_movements_occurred_at"), ["occurred_at"], unique=False)
        batch_op.create_index("ix_till_movements_till_occurred", ["till_id", "occurred_at"], unique=False)


def downgrade():
    op.drop_table("till_movements")
    op.drop_table("inventory_lots")
    op.drop_table("exchange_transactions")
    op.drop_table("till_balances")
    op.drop_index("uq_tills_operator_open", table_name="tills")
    op.drop_table("tills")
    op.drop_index("uq_currencies_single_home", table_name="currencies")
    op.drop_table("currencies")

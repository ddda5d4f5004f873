"""Loyalty ledger core tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


reward_system_kind = sa.Enum("POINTS", "STAMPS", name="reward_system_kind")
product_scope = sa.Enum("SPECIFIC", "GENERAL", "ANY", name="reward_system_product_scope")
transaction_type = sa.Enum("ADD", "SUBTRACT", "REDEEM", name="loyalty_transaction_type")
item_system_kind = sa.Enum("POINTS", "STAMPS", name="loyalty_transaction_item_system_kind")
reward_value_kind = sa.Enum("MONEY", "PRODUCT", "TEXT", name="loyalty_reward_value_kind")


def upgrade() -> None:
    op.create_table(
        "reward_systems",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("business_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", reward_system_kind, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("conversion_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("conversion_currency", sa.String(length=3), nullable=True),
        sa.Column("conversion_points", sa.Integer(), nullable=True),
        sa.Column("target_stamps", sa.Integer(), nullable=True),
        sa.Column("product_scope", product_scope, nullable=True),
        sa.Column("product_identifier", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_reward_systems_business_id", "reward_systems", ["business_id"])
    op.create_index("ix_reward_systems_business_active", "reward_systems", ["business_id", "is_active"])

    op.create_table(
        "ledger_accounts",
        sa.Column("user_id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "ledger_business_balances",
        sa.Column(
            "user_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("ledger_accounts.user_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("business_id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stamps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("points >= 0", name="ck_ledger_business_balances_points_non_negative"),
        sa.CheckConstraint("stamps >= 0", name="ck_ledger_business_balances_stamps_non_negative"),
    )
    op.create_index(
        "ix_ledger_business_balances_business_id", "ledger_business_balances", ["business_id"]
    )

    op.create_table(
        "ledger_system_balances",
        sa.Column("user_id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("business_id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("reward_system_id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stamps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["user_id", "business_id"],
            ["ledger_business_balances.user_id", "ledger_business_balances.business_id"],
            ondelete="CASCADE",
        ),
        sa.CheckConstraint("points >= 0", name="ck_ledger_system_balances_points_non_negative"),
        sa.CheckConstraint("stamps >= 0", name="ck_ledger_system_balances_stamps_non_negative"),
    )

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_name", sa.String(), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("purchase_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_points_delta", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_stamps_delta", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("branch_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("branch_name", sa.String(), nullable=True),
        sa.Column("shift_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("shift_name", sa.String(), nullable=True),
        sa.Column("reward_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reward_name", sa.String(), nullable=True),
        sa.Column("redemption_code", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_loyalty_transactions_user_business", "loyalty_transactions", ["user_id", "business_id"])
    op.create_index("ix_loyalty_transactions_user_created", "loyalty_transactions", ["user_id", "created_at"])
    op.create_index(
        "ix_loyalty_transactions_business_created", "loyalty_transactions", ["business_id", "created_at"]
    )
    op.create_index(
        "ix_loyalty_transactions_business_shift_created",
        "loyalty_transactions",
        ["business_id", "shift_id", "created_at"],
    )

    op.create_table(
        "loyalty_transaction_items",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("reward_system_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("reward_system_name", sa.String(), nullable=False),
        sa.Column("reward_system_kind", item_system_kind, nullable=False),
        sa.Column("points_delta", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stamps_delta", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index(
        "ix_loyalty_transaction_items_transaction_id", "loyalty_transaction_items", ["transaction_id"]
    )

    op.create_table(
        "redemption_codes",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("business_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_name", sa.String(), nullable=False),
        sa.Column("purchase_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("points_estimate", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stamp_grants", sa.JSON(), nullable=False),
        sa.Column("is_redeemed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("redeemed_by", sa.dialects.postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_redemption_codes_code", "redemption_codes", ["code"], unique=True)
    op.create_index("ix_redemption_codes_business_id", "redemption_codes", ["business_id"])
    op.create_index("ix_redemption_codes_expires_at", "redemption_codes", ["expires_at"])

    op.create_table(
        "loyalty_rewards",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("business_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "reward_system_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("reward_systems.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("value_kind", reward_value_kind, nullable=False),
        sa.Column("value_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("value_text", sa.String(), nullable=True),
        sa.Column("points_required", sa.Integer(), nullable=True),
        sa.Column("stamps_required", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_loyalty_rewards_business_id", "loyalty_rewards", ["business_id"])


def downgrade() -> None:
    op.drop_index("ix_loyalty_rewards_business_id", table_name="loyalty_rewards")
    op.drop_table("loyalty_rewards")
    op.drop_index("ix_redemption_codes_expires_at", table_name="redemption_codes")
    op.drop_index("ix_redemption_codes_business_id", table_name="redemption_codes")
    op.drop_index("ix_redemption_codes_code", table_name="redemption_codes")
    op.drop_table("redemption_codes")
    op.drop_index("ix_loyalty_transaction_items_transaction_id", table_name="loyalty_transaction_items")
    op.drop_table("loyalty_transaction_items")
    op.drop_index("ix_loyalty_transactions_business_shift_created", table_name="loyalty_transactions")
    op.drop_index("ix_loyalty_transactions_business_created", table_name="loyalty_transactions")
    op.drop_index("ix_loyalty_transactions_user_created", table_name="loyalty_transactions")
    op.drop_index("ix_loyalty_transactions_user_business", table_name="loyalty_transactions")
    op.drop_table("loyalty_transactions")
    op.drop_table("ledger_system_balances")
    op.drop_index("ix_ledger_business_balances_business_id", table_name="ledger_business_balances")
    op.drop_table("ledger_business_balances")
    op.drop_table("ledger_accounts")
    op.drop_index("ix_reward_systems_business_active", table_name="reward_systems")
    op.drop_index("ix_reward_systems_business_id", table_name="reward_systems")
    op.drop_table("reward_systems")

    bind = op.get_bind()
    for enum_type in (reward_value_kind, item_system_kind, transaction_type, product_scope, reward_system_kind):
        enum_type.drop(bind, checkfirst=True)

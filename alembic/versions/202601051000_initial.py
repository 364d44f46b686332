"""initial schema: taxonomy, months, month settings, ledgers

Revision ID: 202601051000
Revises:
Create Date: 2026-01-05 10:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601051000"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    op.create_table(
        "subcategories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "category_id", "name", name="uq_subcategory_user_category_name"
        ),
    )
    op.create_index(
        "ix_subcategories_user_category_order",
        "subcategories",
        ["user_id", "category_id", "display_order"],
    )

    op.create_table(
        "months",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(length=100)),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "year", "month", name="uq_month_user_year_month"
        ),
    )

    op.create_table(
        "month_budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "month_id",
            sa.Integer(),
            sa.ForeignKey("months.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "subcategory_id",
            sa.Integer(),
            sa.ForeignKey("subcategories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint(
            "month_id",
            "subcategory_id",
            "user_id",
            name="uq_month_budget_month_subcategory_user",
        ),
    )
    op.create_index(
        "ix_month_budgets_user_month", "month_budgets", ["user_id", "month_id"]
    )

    op.create_table(
        "month_subcategory_visibility",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "month_id",
            sa.Integer(),
            sa.ForeignKey("months.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "subcategory_id",
            sa.Integer(),
            sa.ForeignKey("subcategories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "is_visible", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "month_id",
            "subcategory_id",
            "user_id",
            name="uq_visibility_month_subcategory_user",
        ),
    )
    op.create_index(
        "ix_visibility_user_month",
        "month_subcategory_visibility",
        ["user_id", "month_id"],
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("local_id", sa.String(length=64)),
        sa.Column("occurred_at", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "subcategory_id",
            sa.Integer(),
            sa.ForeignKey("subcategories.id", ondelete="SET NULL"),
        ),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "local_id", name="uq_txn_user_local_id"),
    )
    op.create_index(
        "ix_transactions_user_occurred", "transactions", ["user_id", "occurred_at"]
    )
    op.create_index(
        "ix_transactions_user_subcategory_occurred",
        "transactions",
        ["user_id", "subcategory_id", "occurred_at"],
    )

    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "month_id", sa.Integer(), sa.ForeignKey("months.id"), nullable=False
        ),
        sa.Column(
            "subcategory_id",
            sa.Integer(),
            sa.ForeignKey("subcategories.id", ondelete="SET NULL"),
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "month_id",
            "subcategory_id",
            "user_id",
            name="uq_entry_month_subcategory_user",
        ),
    )
    op.create_index("ix_entries_user_month", "entries", ["user_id", "month_id"])


def downgrade():
    op.drop_index("ix_entries_user_month", table_name="entries")
    op.drop_table("entries")
    op.drop_index(
        "ix_transactions_user_subcategory_occurred", table_name="transactions"
    )
    op.drop_index("ix_transactions_user_occurred", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_visibility_user_month", table_name="month_subcategory_visibility")
    op.drop_table("month_subcategory_visibility")
    op.drop_index("ix_month_budgets_user_month", table_name="month_budgets")
    op.drop_table("month_budgets")
    op.drop_table("months")
    op.drop_index("ix_subcategories_user_category_order", table_name="subcategories")
    op.drop_table("subcategories")
    op.drop_table("categories")

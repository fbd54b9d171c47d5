"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = sa.Enum("income", "expense", name="transactiontype")


def _transaction_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "category_id",
            sa.String(length=36),
            sa.ForeignKey("categories.id"),
            nullable=False,
        ),
        sa.Column(
            "sub_category_id",
            sa.String(length=36),
            sa.ForeignKey("sub_categories.id", ondelete="SET NULL"),
        ),
        sa.Column("memo", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.UniqueConstraint("type", "name", name="uq_category_type_name"),
    )

    op.create_table(
        "sub_categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "category_id",
            sa.String(length=36),
            sa.ForeignKey("categories.id"),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "user_id", "category_id", "name", name="uq_sub_category_user_parent_name"
        ),
    )
    op.create_index("ix_sub_categories_user", "sub_categories", ["user_id"])

    op.create_table(
        "incomes",
        *_transaction_columns(),
        sa.CheckConstraint("amount >= 0", name="ck_incomes_amount_positive"),
    )
    op.create_index("ix_incomes_user_date", "incomes", ["user_id", "date"])

    op.create_table(
        "expenses",
        *_transaction_columns(),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.CheckConstraint("amount >= 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])

    op.create_table(
        "analysis_results",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("insights", sa.JSON(), nullable=False),
        sa.Column("analysis_date", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_analysis_results_user_date",
        "analysis_results",
        ["user_id", "analysis_date"],
    )


def downgrade():
    op.drop_index("ix_analysis_results_user_date", table_name="analysis_results")
    op.drop_table("analysis_results")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_incomes_user_date", table_name="incomes")
    op.drop_table("incomes")
    op.drop_index("ix_sub_categories_user", table_name="sub_categories")
    op.drop_table("sub_categories")
    op.drop_table("categories")
    TRANSACTION_TYPE.drop(op.get_bind(), checkfirst=True)

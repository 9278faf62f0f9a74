"""Create the subscriptions table."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "4b2e9c1d7a10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(length=255), nullable=True),
        sa.Column("external_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("external_customer_id", sa.String(length=255), nullable=True),
        sa.Column("raw_status", sa.String(length=32), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("account_id", name="uq_subscriptions_account_id"),
        sa.UniqueConstraint(
            "external_subscription_id", name="uq_subscriptions_external_subscription_id"
        ),
    )
    op.create_index(
        "ix_subscriptions_external_customer_id", "subscriptions", ["external_customer_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_subscriptions_external_customer_id", table_name="subscriptions")
    op.drop_table("subscriptions")

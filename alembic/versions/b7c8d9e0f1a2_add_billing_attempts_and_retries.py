"""add billing attempt marker, payment retry state and stripe event ids

Revision ID: b7c8d9e0f1a2
Revises: a1b2c3d4e5f6
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


revision = "b7c8d9e0f1a2"
down_revision = "a1b2c3d4e5f6"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("platform_billing", sa.Column("last_attempted_at", sa.DateTime(), nullable=True))
    op.add_column("platform_billing", sa.Column("first_payment_failure_date", sa.DateTime(), nullable=True))
    op.add_column("platform_billing", sa.Column("last_payment_retry_date", sa.DateTime(), nullable=True))
    op.add_column(
        "platform_billing",
        sa.Column("payment_retry_count", sa.Integer(), nullable=False, server_default="0"),
    )
    op.add_column(
        "platform_billing",
        sa.Column("warning_email_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.add_column("platform_payments", sa.Column("stripe_event_id", sa.String(255), nullable=True))
    op.create_unique_constraint(
        "uq_platform_payments_stripe_event_id", "platform_payments", ["stripe_event_id"]
    )


def downgrade() -> None:
    op.drop_constraint("uq_platform_payments_stripe_event_id", "platform_payments", type_="unique")
    op.drop_column("platform_payments", "stripe_event_id")

    op.drop_column("platform_billing", "warning_email_sent")
    op.drop_column("platform_billing", "payment_retry_count")
    op.drop_column("platform_billing", "last_payment_retry_date")
    op.drop_column("platform_billing", "first_payment_failure_date")
    op.drop_column("platform_billing", "last_attempted_at")

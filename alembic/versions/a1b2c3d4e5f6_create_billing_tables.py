"""create organisation, billing and fee tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "a1b2c3d4e5f6"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "org_status": ("ACTIVE", "PAUSED", "DEACTIVATED"),
    "member_role": ("OWNER", "ADMIN", "STAFF", "TEACHER"),
    "subscription_status": ("active", "trialing", "canceled", "past_due"),
    "platform_payment_status": ("SUCCEEDED", "FAILED"),
    "payment_status": ("PENDING", "PAID", "LATE", "OVERDUE"),
    "payment_method": ("CASH", "BANK_TRANSFER", "CARD", "DIRECT_DEBIT"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps():
    return [
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    for name, values in ENUMS.items():
        quoted = ", ".join(f"'{v}'" for v in values)
        op.execute(f"CREATE TYPE {name} AS ENUM ({quoted})")

    op.create_table(
        "organisations",
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("status", _enum("org_status"), nullable=False),
        sa.Column("payment_failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_payment_date", sa.DateTime(), nullable=True),
        sa.Column("auto_suspend_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("paused_at", sa.DateTime(), nullable=True),
        sa.Column("paused_reason", sa.Text(), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(), nullable=True),
        sa.Column("deactivated_reason", sa.Text(), nullable=True),
        sa.Column("billing_day", sa.Integer(), nullable=True),
        sa.Column("fee_due_day", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("payment_failure_count >= 0", name="ck_organisations_failure_count"),
        sa.CheckConstraint("billing_day BETWEEN 1 AND 28", name="ck_organisations_billing_day"),
        sa.CheckConstraint("fee_due_day BETWEEN 1 AND 28", name="ck_organisations_fee_due_day"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )
    op.create_index(op.f("ix_organisations_id"), "organisations", ["id"], unique=False)
    op.create_index(op.f("ix_organisations_status"), "organisations", ["status"], unique=False)

    op.create_table(
        "users",
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", _enum("member_role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("org_id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["org_id"], ["organisations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_id"), "users", ["id"], unique=False)
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=False)
    op.create_index(op.f("ix_users_role"), "users", ["role"], unique=False)
    op.create_index(op.f("ix_users_is_active"), "users", ["is_active"], unique=False)
    op.create_index(op.f("ix_users_org_id"), "users", ["org_id"], unique=False)

    op.create_table(
        "students",
        sa.Column("first_name", sa.String(255), nullable=False),
        sa.Column("last_name", sa.String(255), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("org_id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["org_id"], ["organisations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_students_id"), "students", ["id"], unique=False)
    op.create_index(op.f("ix_students_is_archived"), "students", ["is_archived"], unique=False)
    op.create_index(op.f("ix_students_org_id"), "students", ["org_id"], unique=False)

    op.create_table(
        "classes",
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("org_id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["org_id"], ["organisations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_classes_id"), "classes", ["id"], unique=False)
    op.create_index(op.f("ix_classes_org_id"), "classes", ["org_id"], unique=False)

    op.create_table(
        "platform_billing",
        sa.Column("org_id", sa.UUID(), nullable=False),
        sa.Column("billing_anniversary_date", sa.Integer(), nullable=True),
        sa.Column("subscription_status", _enum("subscription_status"), nullable=False),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=True),
        sa.Column("stripe_subscription_item_id", sa.String(255), nullable=True),
        sa.Column("default_payment_method_id", sa.String(255), nullable=True),
        sa.Column("trial_end_date", sa.DateTime(), nullable=True),
        sa.Column("last_billed_at", sa.DateTime(), nullable=True),
        sa.Column("last_billed_unit_count", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("billing_anniversary_date BETWEEN 1 AND 31", name="ck_platform_billing_anniversary"),
        sa.ForeignKeyConstraint(["org_id"], ["organisations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_customer_id"),
    )
    op.create_index(op.f("ix_platform_billing_id"), "platform_billing", ["id"], unique=False)
    op.create_index(op.f("ix_platform_billing_org_id"), "platform_billing", ["org_id"], unique=True)
    op.create_index(
        op.f("ix_platform_billing_billing_anniversary_date"),
        "platform_billing",
        ["billing_anniversary_date"],
        unique=False,
    )
    op.create_index(
        op.f("ix_platform_billing_subscription_status"),
        "platform_billing",
        ["subscription_status"],
        unique=False,
    )

    op.create_table(
        "platform_payments",
        sa.Column("amount_p", sa.Integer(), nullable=False),
        sa.Column("status", _enum("platform_payment_status"), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("stripe_invoice_id", sa.String(255), nullable=True),
        sa.Column("org_id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["org_id"], ["organisations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_platform_payments_id"), "platform_payments", ["id"], unique=False)
    op.create_index(op.f("ix_platform_payments_org_id"), "platform_payments", ["org_id"], unique=False)
    op.create_index(op.f("ix_platform_payments_status"), "platform_payments", ["status"], unique=False)
    op.create_index(
        op.f("ix_platform_payments_stripe_invoice_id"), "platform_payments", ["stripe_invoice_id"], unique=False
    )

    op.create_table(
        "monthly_payment_records",
        sa.Column("student_id", sa.UUID(), nullable=False),
        sa.Column("class_id", sa.UUID(), nullable=False),
        sa.Column("month", sa.String(7), nullable=False),
        sa.Column("amount_p", sa.Integer(), nullable=False),
        sa.Column("status", _enum("payment_status"), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("method", _enum("payment_method"), nullable=True),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("org_id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_p >= 0", name="ck_monthly_payment_amount"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["class_id"], ["classes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["org_id"], ["organisations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id", "class_id", "month", name="uq_monthly_payment_student_class_month"),
    )
    for column in ("id", "student_id", "class_id", "month", "status", "org_id"):
        op.create_index(
            op.f(f"ix_monthly_payment_records_{column}"), "monthly_payment_records", [column], unique=False
        )

    op.create_table(
        "audit_logs",
        sa.Column("org_id", sa.UUID(), nullable=True),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_logs_id"), "audit_logs", ["id"], unique=False)
    op.create_index(op.f("ix_audit_logs_org_id"), "audit_logs", ["org_id"], unique=False)
    op.create_index(op.f("ix_audit_logs_action"), "audit_logs", ["action"], unique=False)


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("monthly_payment_records")
    op.drop_table("platform_payments")
    op.drop_table("platform_billing")
    op.drop_table("classes")
    op.drop_table("students")
    op.drop_table("users")
    op.drop_table("organisations")
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")

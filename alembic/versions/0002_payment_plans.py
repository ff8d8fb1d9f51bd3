"""payment plans and installments

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19 15:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)


def upgrade():
    op.create_table(
        "payment_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "assessment_id", sa.Integer(), sa.ForeignKey("student_assessments.id"), nullable=False, unique=True
        ),
        sa.Column("plan_type", sa.String(20), nullable=False, server_default="monthly"),
        sa.Column("total_installments", sa.Integer(), nullable=False),
        sa.Column("scheduled_amount", MONEY, nullable=False),
        sa.Column("paid_at_start", MONEY, nullable=False, server_default="0"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("grace_period_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("late_fee_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("late_fee_type", sa.String(20), nullable=False, server_default="fixed"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "plan_type IN ('monthly', 'quarterly', 'semestral', 'custom')", name="check_payment_plan_type"
        ),
        sa.CheckConstraint("total_installments >= 1", name="check_payment_plan_installments"),
        sa.CheckConstraint("grace_period_days >= 0", name="check_payment_plan_grace"),
        sa.CheckConstraint("late_fee_amount >= 0", name="check_payment_plan_late_fee"),
        sa.CheckConstraint("late_fee_type IN ('fixed', 'percentage')", name="check_payment_plan_late_fee_type"),
    )
    op.create_index("ix_payment_plans_school_id", "payment_plans", ["school_id"])

    op.create_table(
        "payment_plan_installments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "plan_id", sa.Integer(), sa.ForeignKey("payment_plans.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("installment_number", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("plan_id", "installment_number", name="uq_payment_plan_installment_number"),
        sa.CheckConstraint("amount >= 0", name="check_payment_plan_installment_amount"),
    )
    op.create_index("ix_payment_plan_installments_plan_id", "payment_plan_installments", ["plan_id"])


def downgrade():
    op.drop_table("payment_plan_installments")
    op.drop_table("payment_plans")

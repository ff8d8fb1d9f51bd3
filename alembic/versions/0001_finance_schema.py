"""finance schema: academic years, fee templates, statements, discounts

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)
GRADE = sa.Numeric(5, 2)


def _timestamps(updated=True):
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()))
    return columns


def _grade_columns():
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("subject_id", sa.Integer(), sa.ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "academic_year_id", sa.Integer(), sa.ForeignKey("academic_years.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("quarter", sa.Integer(), nullable=False),
        sa.Column("written_work", GRADE),
        sa.Column("performance_task", GRADE),
        sa.Column("quarterly_assessment", GRADE),
        sa.Column("final_grade", GRADE),
        sa.Column("remarks", sa.Text()),
    ]


def upgrade():
    op.create_table(
        "schools",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(20), nullable=False, unique=True),
        sa.Column("address", sa.Text()),
        *_timestamps(),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id"), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        *_timestamps(),
    )
    op.create_table(
        "students",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("admission_number", sa.String(100), nullable=False, unique=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("grade_level", sa.String(50)),
        sa.Column("strand", sa.String(50)),
        *_timestamps(),
    )
    op.create_table(
        "subjects",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        *_timestamps(updated=False),
    )

    op.create_table(
        "academic_years",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
        sa.Column("archived_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        *_timestamps(),
    )
    op.create_index("ix_academic_years_school_id", "academic_years", ["school_id"])
    op.create_index(
        "uq_academic_years_current_per_school",
        "academic_years",
        ["school_id"],
        unique=True,
        postgresql_where=sa.text("is_current"),
        sqlite_where=sa.text("is_current"),
    )

    op.create_table("student_grades", *_grade_columns(), *_timestamps())
    op.create_index("ix_student_grades_academic_year_id", "student_grades", ["academic_year_id"])
    op.create_table(
        "grade_snapshots",
        *_grade_columns(),
        *_timestamps(updated=False),
        sa.UniqueConstraint(
            "student_id", "subject_id", "academic_year_id", "quarter", name="uq_grade_snapshot_natural_key"
        ),
    )

    op.create_table(
        "fee_catalog",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("category", sa.String(30), nullable=False, server_default="other"),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allow_installments", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="check_fee_catalog_amount"),
    )
    op.create_index("ix_fee_catalog_school_id", "fee_catalog", ["school_id"])

    op.create_table(
        "fee_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "academic_year_id", sa.Integer(), sa.ForeignKey("academic_years.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("grade_level", sa.String(50), nullable=False),
        sa.Column("strand", sa.String(50)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_fee_templates_school_id", "fee_templates", ["school_id"])
    op.create_table(
        "fee_template_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "template_id", sa.Integer(), sa.ForeignKey("fee_templates.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("fee_catalog_item_id", sa.Integer(), sa.ForeignKey("fee_catalog.id"), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("amount >= 0", name="check_fee_template_item_amount"),
    )
    op.create_index("ix_fee_template_items_template_id", "fee_template_items", ["template_id"])

    op.create_table(
        "student_assessments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("academic_year_id", sa.Integer(), sa.ForeignKey("academic_years.id"), nullable=False),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("fee_templates.id")),
        sa.Column("total_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("discount_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("net_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("total_paid", MONEY, nullable=False, server_default="0"),
        sa.Column("balance", MONEY, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("assessed_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("assessed_at", sa.DateTime(timezone=True)),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'partial', 'paid', 'overpaid', 'closed')", name="check_assessment_status"
        ),
    )
    op.create_index("ix_student_assessments_school_id", "student_assessments", ["school_id"])
    op.create_index("ix_student_assessments_academic_year_id", "student_assessments", ["academic_year_id"])
    op.create_index(
        "uq_student_assessments_open_per_year",
        "student_assessments",
        ["student_id", "academic_year_id"],
        unique=True,
        postgresql_where=sa.text("NOT is_closed"),
        sqlite_where=sa.text("NOT is_closed"),
    )

    op.create_table(
        "assessment_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "assessment_id", sa.Integer(), sa.ForeignKey("student_assessments.id"), nullable=False
        ),
        sa.Column("fee_catalog_item_id", sa.Integer(), sa.ForeignKey("fee_catalog.id")),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )
    op.create_index("ix_assessment_items_assessment_id", "assessment_items", ["assessment_id"])

    op.create_table(
        "discounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("value", MONEY, nullable=False),
        sa.Column("max_cap", MONEY),
        sa.Column("applies_to", sa.String(50), nullable=False, server_default="all"),
        sa.Column("stackable", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("type IN ('percentage', 'fixed', 'coverage')", name="check_discount_type"),
        sa.CheckConstraint("value >= 0", name="check_discount_value"),
    )
    op.create_index("ix_discounts_school_id", "discounts", ["school_id"])

    op.create_table(
        "student_discounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("discount_id", sa.Integer(), sa.ForeignKey("discounts.id"), nullable=False),
        sa.Column(
            "assessment_id", sa.Integer(), sa.ForeignKey("student_assessments.id"), nullable=False
        ),
        sa.Column("applied_amount", MONEY, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        *_timestamps(updated=False),
        sa.CheckConstraint("status IN ('pending', 'approved')", name="check_student_discount_status"),
    )
    op.create_index("ix_student_discounts_assessment_id", "student_discounts", ["assessment_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "assessment_id", sa.Integer(), sa.ForeignKey("student_assessments.id"), nullable=False
        ),
        sa.Column("academic_year_id", sa.Integer(), sa.ForeignKey("academic_years.id"), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=False),
        sa.Column("reference_number", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("received_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("payment_date", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("void_reason", sa.Text()),
        sa.Column("voided_at", sa.DateTime(timezone=True)),
        sa.Column("voided_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        *_timestamps(updated=False),
        sa.CheckConstraint("amount > 0", name="check_payment_amount"),
        sa.CheckConstraint("status IN ('completed', 'voided')", name="check_payment_status"),
    )
    op.create_index("ix_payments_assessment_id", "payments", ["assessment_id"])

    op.create_table(
        "balance_carry_forwards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("from_academic_year_id", sa.Integer(), sa.ForeignKey("academic_years.id"), nullable=False),
        sa.Column("to_academic_year_id", sa.Integer(), sa.ForeignKey("academic_years.id"), nullable=False),
        sa.Column(
            "from_assessment_id", sa.Integer(), sa.ForeignKey("student_assessments.id"), nullable=False
        ),
        sa.Column(
            "to_assessment_id", sa.Integer(), sa.ForeignKey("student_assessments.id"), nullable=False
        ),
        sa.Column("carried_amount", MONEY, nullable=False),
        sa.Column("carried_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("notes", sa.Text()),
        *_timestamps(updated=False),
    )

    op.create_table(
        "finance_audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("school_id", sa.Integer(), sa.ForeignKey("schools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("table_name", sa.String(50), nullable=False),
        sa.Column("record_id", sa.Integer()),
        sa.Column("new_values", sa.JSON()),
        *_timestamps(updated=False),
    )
    op.create_index("ix_finance_audit_logs_school_id", "finance_audit_logs", ["school_id"])


def downgrade():
    for table in (
        "finance_audit_logs",
        "balance_carry_forwards",
        "payments",
        "student_discounts",
        "discounts",
        "assessment_items",
        "student_assessments",
        "fee_template_items",
        "fee_templates",
        "fee_catalog",
        "grade_snapshots",
        "student_grades",
        "academic_years",
        "subjects",
        "students",
        "users",
        "roles",
        "schools",
    ):
        op.drop_table(table)

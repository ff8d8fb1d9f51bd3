from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Text, Numeric, Boolean, CheckConstraint, Index, JSON, UniqueConstraint, text
from sqlalchemy.sql import func
from app.database import Base

MONEY = Numeric(12, 2)

# Fee Catalog model
class FeeCatalogItem(Base):
    __tablename__ = "fee_catalog"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    category = Column(String(30), default="other", nullable=False)
    amount = Column(MONEY, nullable=False)
    is_mandatory = Column(Boolean, default=True, nullable=False)
    is_recurring = Column(Boolean, default=False, nullable=False)
    allow_installments = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_fee_catalog_amount"),
    )

# Fee Template model
class FeeTemplate(Base):
    __tablename__ = "fee_templates"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_year_id = Column(Integer, ForeignKey("academic_years.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(150), nullable=False)
    grade_level = Column(String(50), nullable=False)
    strand = Column(String(50))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

# Fee Template Item model
class FeeTemplateItem(Base):
    __tablename__ = "fee_template_items"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("fee_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_catalog_item_id = Column(Integer, ForeignKey("fee_catalog.id"), nullable=False)
    amount = Column(MONEY, nullable=False)
    is_mandatory = Column(Boolean, default=True, nullable=False)
    position = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_fee_template_item_amount"),
    )

# Student Assessment model (the bill)
class Assessment(Base):
    __tablename__ = "student_assessments"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_year_id = Column(Integer, ForeignKey("academic_years.id"), nullable=False, index=True)
    template_id = Column(Integer, ForeignKey("fee_templates.id"))
    total_amount = Column(MONEY, default=0, nullable=False)
    discount_amount = Column(MONEY, default=0, nullable=False)
    net_amount = Column(MONEY, default=0, nullable=False)
    total_paid = Column(MONEY, default=0, nullable=False)
    balance = Column(MONEY, default=0, nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    is_closed = Column(Boolean, default=False, nullable=False)
    assessed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    assessed_at = Column(DateTime(timezone=True))
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'partial', 'paid', 'overpaid', 'closed')", name="check_assessment_status"),
        # One open statement per student per academic year
        Index(
            "uq_student_assessments_open_per_year",
            "student_id",
            "academic_year_id",
            unique=True,
            postgresql_where=text("NOT is_closed"),
            sqlite_where=text("NOT is_closed"),
        ),
    )

    # Optimistic concurrency: every flush checks and bumps the version
    __mapper_args__ = {"version_id_col": version}

# Assessment Item model, a frozen copy of a template line
class AssessmentItem(Base):
    __tablename__ = "assessment_items"

    id = Column(Integer, primary_key=True, index=True)
    assessment_id = Column(Integer, ForeignKey("student_assessments.id"), nullable=False, index=True)
    fee_catalog_item_id = Column(Integer, ForeignKey("fee_catalog.id"))
    name = Column(String(150), nullable=False)
    amount = Column(MONEY, nullable=False)
    is_mandatory = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

# Discount / Scholarship model
class Discount(Base):
    __tablename__ = "discounts"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(20), nullable=False)
    value = Column(MONEY, nullable=False)
    max_cap = Column(MONEY)
    applies_to = Column(String(50), default="all", nullable=False)
    stackable = Column(Boolean, default=False, nullable=False)
    requires_approval = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("type IN ('percentage', 'fixed', 'coverage')", name="check_discount_type"),
        CheckConstraint("value >= 0", name="check_discount_value"),
    )

# Student Discount model, one discount applied to one assessment
class StudentDiscount(Base):
    __tablename__ = "student_discounts"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    discount_id = Column(Integer, ForeignKey("discounts.id"), nullable=False)
    assessment_id = Column(Integer, ForeignKey("student_assessments.id"), nullable=False, index=True)
    applied_amount = Column(MONEY, nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    approved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    approved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'approved')", name="check_student_discount_status"),
    )

# Payment model
class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    assessment_id = Column(Integer, ForeignKey("student_assessments.id"), nullable=False, index=True)
    academic_year_id = Column(Integer, ForeignKey("academic_years.id"), nullable=False)
    amount = Column(MONEY, nullable=False)
    payment_method = Column(String(50), nullable=False)
    reference_number = Column(String(255))
    status = Column(String(20), default="completed", nullable=False)
    received_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    payment_date = Column(DateTime(timezone=True), server_default=func.now())
    void_reason = Column(Text)
    voided_at = Column(DateTime(timezone=True))
    voided_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_payment_amount"),
        CheckConstraint("status IN ('completed', 'voided')", name="check_payment_status"),
    )

# Payment Plan model, an installment schedule over a statement balance
class PaymentPlan(Base):
    __tablename__ = "payment_plans"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    assessment_id = Column(Integer, ForeignKey("student_assessments.id"), nullable=False, unique=True)
    plan_type = Column(String(20), default="monthly", nullable=False)
    total_installments = Column(Integer, nullable=False)
    scheduled_amount = Column(MONEY, nullable=False)
    # Payments already on the statement when the plan was made do not count toward it
    paid_at_start = Column(MONEY, default=0, nullable=False)
    start_date = Column(Date, nullable=False)
    grace_period_days = Column(Integer, default=0, nullable=False)
    late_fee_amount = Column(MONEY, default=0, nullable=False)
    late_fee_type = Column(String(20), default="fixed", nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("plan_type IN ('monthly', 'quarterly', 'semestral', 'custom')", name="check_payment_plan_type"),
        CheckConstraint("total_installments >= 1", name="check_payment_plan_installments"),
        CheckConstraint("grace_period_days >= 0", name="check_payment_plan_grace"),
        CheckConstraint("late_fee_amount >= 0", name="check_payment_plan_late_fee"),
        CheckConstraint("late_fee_type IN ('fixed', 'percentage')", name="check_payment_plan_late_fee_type"),
    )

# Payment Plan Installment model
class PaymentPlanInstallment(Base):
    __tablename__ = "payment_plan_installments"

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("payment_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    amount = Column(MONEY, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("plan_id", "installment_number", name="uq_payment_plan_installment_number"),
        CheckConstraint("amount >= 0", name="check_payment_plan_installment_amount"),
    )

# Balance carry forward between academic years
class BalanceCarryForward(Base):
    __tablename__ = "balance_carry_forwards"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    from_academic_year_id = Column(Integer, ForeignKey("academic_years.id"), nullable=False)
    to_academic_year_id = Column(Integer, ForeignKey("academic_years.id"), nullable=False)
    from_assessment_id = Column(Integer, ForeignKey("student_assessments.id"), nullable=False)
    to_assessment_id = Column(Integer, ForeignKey("student_assessments.id"), nullable=False)
    carried_amount = Column(MONEY, nullable=False)
    carried_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

# Finance audit log
class FinanceAuditLog(Base):
    __tablename__ = "finance_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    action = Column(String(50), nullable=False)
    table_name = Column(String(50), nullable=False)
    record_id = Column(Integer)
    new_values = Column(JSON)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

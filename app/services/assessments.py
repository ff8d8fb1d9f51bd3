"""
Assessment engine: issues an itemized statement of account to a student for one
academic year and keeps its totals consistent through edits, payments and
closure.

Derived columns always satisfy:
    total_amount = sum of item amounts
    net_amount   = max(0, total_amount - discount_amount)
    balance      = net_amount - total_paid   (negative means overpaid)
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.database import atomic
from app.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from app.models.finance import Assessment, AssessmentItem, Payment
from app.models.users import Student
from app.repositories.assessments import AssessmentRepository, AssessmentStatement
from app.repositories.discounts import DiscountRepository
from app.repositories.fees import TemplateBundle
from app.schemas.finance import AssessmentCreate, PaymentCreate
from app.services.academic_years import get_year
from app.services.audit import log_finance_action
from app.services.calculations import (
    ZERO,
    compute_total,
    discount_amount_for,
    recalculate,
    to_money,
)
from app.services.fee_templates import compute_template_total, get_template

logger = logging.getLogger(__name__)

ACTIVE_STATEMENT_EXISTS = "Student already has an active statement this year"


@asynccontextmanager
async def bill_transaction(db: AsyncSession):
    """atomic() for writes to an assessment row, with lost updates surfaced as conflicts."""
    try:
        async with atomic(db):
            yield db
    except StaleDataError as exc:
        logger.warning(f"Stale assessment write rejected: {exc}")
        raise ConflictError("The statement was changed by another request; reload and retry") from exc


async def get_assessment(db: AsyncSession, assessment_id: int) -> Assessment:
    assessment = await AssessmentRepository(db).get(assessment_id)
    if not assessment:
        raise NotFoundError("Statement not found", {"assessment_id": assessment_id})
    return assessment


async def get_statement(db: AsyncSession, assessment_id: int) -> AssessmentStatement:
    statement = await AssessmentRepository(db).statement(assessment_id)
    if not statement:
        raise NotFoundError("Statement not found", {"assessment_id": assessment_id})
    return statement


async def list_assessments(
    db: AsyncSession,
    school_id: int,
    academic_year_id: Optional[int] = None,
    student_id: Optional[int] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[Assessment]:
    return await AssessmentRepository(db).list_for_school(
        school_id,
        academic_year_id=academic_year_id,
        student_id=student_id,
        status=status,
        skip=skip,
        limit=limit,
    )


async def ensure_mutable(db: AsyncSession, assessment: Assessment) -> None:
    """Closed statements and statements of archived years are frozen."""
    if assessment.is_closed:
        raise StateError("Statement is closed and can no longer be modified", {"assessment_id": assessment.id})
    year = await get_year(db, assessment.academic_year_id)
    if year.is_archived:
        raise StateError(
            f"Academic year {year.name} is archived; its statements can no longer be modified",
            {"assessment_id": assessment.id},
        )


def materialize_items(assessment_id: int, bundle: TemplateBundle) -> List[AssessmentItem]:
    """Copy template lines into bill lines (a snapshot, not a live reference)."""
    return [
        AssessmentItem(
            assessment_id=assessment_id,
            fee_catalog_item_id=line.fee_catalog_item_id,
            name=line.name,
            amount=to_money(line.amount),
            is_mandatory=line.is_mandatory,
        )
        for line in bundle.lines
    ]


async def _load_template_for(
    db: AsyncSession, template_id: int, school_id: int, academic_year_id: int
) -> TemplateBundle:
    bundle = await get_template(db, template_id)
    if bundle.template.school_id != school_id:
        raise ValidationError("Fee template belongs to a different school", {"template_id": template_id})
    if bundle.template.academic_year_id != academic_year_id:
        raise ValidationError("Fee template belongs to a different academic year", {"template_id": template_id})
    if not bundle.template.is_active:
        raise ValidationError("Fee template is inactive", {"template_id": template_id})
    if not bundle.lines:
        raise ValidationError("Fee template has no items", {"template_id": template_id})
    return bundle


async def create_assessment(
    db: AsyncSession, payload: AssessmentCreate, actor_id: Optional[int] = None
) -> Assessment:
    year = await get_year(db, payload.academic_year_id)
    if year.school_id != payload.school_id:
        raise ValidationError("Academic year belongs to a different school")
    if year.is_archived:
        raise StateError(f"Academic year {year.name} is archived")
    if not year.is_current:
        raise StateError("Statements can only be issued for the current academic year")

    student = await db.get(Student, payload.student_id)
    if not student:
        raise NotFoundError("Student not found", {"student_id": payload.student_id})
    if student.school_id != payload.school_id:
        raise ValidationError("Student belongs to a different school")

    bundle = await _load_template_for(db, payload.template_id, payload.school_id, payload.academic_year_id)

    repo = AssessmentRepository(db)
    if await repo.get_open(payload.student_id, payload.academic_year_id):
        logger.warning(f"Duplicate statement rejected for student {payload.student_id} in year {year.id}")
        raise ConflictError(ACTIVE_STATEMENT_EXISTS)

    total = compute_template_total(bundle)
    try:
        async with atomic(db):
            assessment = repo.add(
                Assessment(
                    student_id=payload.student_id,
                    school_id=payload.school_id,
                    academic_year_id=payload.academic_year_id,
                    template_id=bundle.template.id,
                    total_amount=total,
                    discount_amount=ZERO,
                    net_amount=total,
                    total_paid=ZERO,
                    balance=total,
                    status="pending",
                    is_closed=False,
                    assessed_by=actor_id,
                    assessed_at=datetime.now(timezone.utc),
                )
            )
            # The partial unique index rejects a concurrent duplicate here
            await db.flush()
            repo.add_items(materialize_items(assessment.id, bundle))
            await db.flush()
            log_finance_action(
                db, assessment.school_id, actor_id, "create", "student_assessments", assessment.id,
                {"student_id": assessment.student_id, "template_id": bundle.template.id, "total_amount": total},
            )
    except IntegrityError as exc:
        logger.warning(f"Duplicate statement blocked by constraint for student {payload.student_id}: {exc}")
        raise ConflictError(ACTIVE_STATEMENT_EXISTS) from exc

    logger.info(f"Statement {assessment.id} issued to student {assessment.student_id} for {total}")
    return assessment


async def rebase_discounts(db: AsyncSession, assessment: Assessment) -> None:
    """
    Re-price the discount applications of an assessment against its current
    total_amount. Percentage and coverage discounts follow the new total;
    fixed discounts keep their amount. discount_amount becomes the sum of the
    approved applications.
    """
    discounts_repo = DiscountRepository(db)
    applications = await discounts_repo.applications_for(assessment.id)
    rules = {d.id: d for d in await discounts_repo.get_many([a.discount_id for a in applications])}

    for application in applications:
        rule = rules.get(application.discount_id)
        if rule is not None and rule.type in ("percentage", "coverage"):
            application.applied_amount = to_money(
                discount_amount_for(rule.type, rule.value, assessment.total_amount, rule.max_cap)
            )

    assessment.discount_amount = compute_total(
        a.applied_amount for a in applications if a.status == "approved"
    )


async def edit_assessment(
    db: AsyncSession, assessment_id: int, new_template_id: int, actor_id: Optional[int] = None
) -> Assessment:
    """Swap the statement onto another template, re-copying its items."""
    repo = AssessmentRepository(db)
    assessment = await get_assessment(db, assessment_id)
    await ensure_mutable(db, assessment)
    if new_template_id == assessment.template_id:
        return assessment

    bundle = await _load_template_for(db, new_template_id, assessment.school_id, assessment.academic_year_id)
    previous_template_id = assessment.template_id

    async with bill_transaction(db):
        await repo.delete_items(assessment.id)
        repo.add_items(materialize_items(assessment.id, bundle))
        assessment.template_id = bundle.template.id
        assessment.total_amount = compute_template_total(bundle)
        await rebase_discounts(db, assessment)
        recalculate(assessment)
        await db.flush()
        log_finance_action(
            db, assessment.school_id, actor_id, "edit", "student_assessments", assessment.id,
            {
                "from_template_id": previous_template_id,
                "to_template_id": bundle.template.id,
                "total_amount": assessment.total_amount,
                "discount_amount": assessment.discount_amount,
                "balance": assessment.balance,
            },
        )

    logger.info(f"Statement {assessment.id} moved to template {bundle.template.id}")
    return assessment


async def close_assessment(db: AsyncSession, assessment_id: int, actor_id: Optional[int] = None) -> Assessment:
    """Finalize a statement at any balance; payment history is kept."""
    assessment = await get_assessment(db, assessment_id)
    if assessment.is_closed:
        raise StateError("Statement is already closed", {"assessment_id": assessment.id})
    await ensure_mutable(db, assessment)

    async with bill_transaction(db):
        assessment.is_closed = True
        assessment.status = "closed"
        await db.flush()
        log_finance_action(
            db, assessment.school_id, actor_id, "close", "student_assessments", assessment.id,
            {"balance": assessment.balance, "total_paid": assessment.total_paid},
        )

    logger.info(f"Statement {assessment.id} closed with balance {assessment.balance}")
    return assessment


async def delete_assessment(db: AsyncSession, assessment_id: int, actor_id: Optional[int] = None) -> None:
    """Erase a statement that never received money, with all of its child rows."""
    repo = AssessmentRepository(db)
    assessment = await get_assessment(db, assessment_id)
    if assessment.is_closed:
        raise StateError("Closed statements cannot be deleted", {"assessment_id": assessment.id})
    if assessment.total_paid > 0:
        raise StateError(
            "Cannot delete statement with recorded payments. Close it instead.",
            {"assessment_id": assessment.id},
        )
    await ensure_mutable(db, assessment)
    if await repo.has_carry_forward(assessment.id):
        raise StateError(
            "Statement carries a prior year balance and cannot be deleted",
            {"assessment_id": assessment.id},
        )

    async with bill_transaction(db):
        log_finance_action(
            db, assessment.school_id, actor_id, "delete", "student_assessments", assessment.id,
            {"student_id": assessment.student_id, "academic_year_id": assessment.academic_year_id},
        )
        await repo.delete_cascade(assessment)

    logger.info(f"Statement {assessment_id} deleted")


async def record_payment(
    db: AsyncSession, assessment_id: int, payload: PaymentCreate, actor_id: Optional[int] = None
) -> Payment:
    repo = AssessmentRepository(db)
    assessment = await get_assessment(db, assessment_id)
    await ensure_mutable(db, assessment)
    amount = to_money(payload.amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")

    async with bill_transaction(db):
        payment = repo.add_payment(
            Payment(
                school_id=assessment.school_id,
                student_id=assessment.student_id,
                assessment_id=assessment.id,
                academic_year_id=assessment.academic_year_id,
                amount=amount,
                payment_method=payload.payment_method.value,
                reference_number=payload.reference_number,
                status="completed",
                received_by=actor_id,
                payment_date=datetime.now(timezone.utc),
            )
        )
        assessment.total_paid = to_money(assessment.total_paid) + amount
        recalculate(assessment)
        await db.flush()
        log_finance_action(
            db, assessment.school_id, actor_id, "payment", "payments", payment.id,
            {"assessment_id": assessment.id, "amount": amount, "balance": assessment.balance},
        )

    logger.info(f"Payment of {amount} recorded on statement {assessment.id}; balance {assessment.balance}")
    return payment


async def void_payment(
    db: AsyncSession, payment_id: int, reason: str, actor_id: Optional[int] = None
) -> Payment:
    repo = AssessmentRepository(db)
    payment = await repo.get_payment(payment_id)
    if not payment:
        raise NotFoundError("Payment not found", {"payment_id": payment_id})
    if payment.status == "voided":
        raise StateError("Payment is already voided", {"payment_id": payment_id})
    if not reason or not reason.strip():
        raise ValidationError("A reason is required to void a payment")

    assessment = await get_assessment(db, payment.assessment_id)
    await ensure_mutable(db, assessment)

    async with bill_transaction(db):
        payment.status = "voided"
        payment.void_reason = reason.strip()
        payment.voided_at = datetime.now(timezone.utc)
        payment.voided_by = actor_id
        assessment.total_paid = to_money(assessment.total_paid) - to_money(payment.amount)
        recalculate(assessment)
        await db.flush()
        log_finance_action(
            db, assessment.school_id, actor_id, "void_payment", "payments", payment.id,
            {"assessment_id": assessment.id, "amount": payment.amount, "reason": payment.void_reason},
        )

    logger.info(f"Payment {payment.id} voided; statement {assessment.id} balance {assessment.balance}")
    return payment

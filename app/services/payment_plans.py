"""
Payment plans: split the outstanding balance of a statement into dated
installments.

A plan is a schedule, not a second ledger. Payments keep going to the
statement; installment progress is derived by allocating whatever the student
paid after the plan was made to the installments in due-date order.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from app.models.finance import Assessment, PaymentPlan, PaymentPlanInstallment
from app.repositories.assessments import AssessmentRepository
from app.repositories.fees import FeeCatalogRepository
from app.repositories.payment_plans import PaymentPlanRepository
from app.schemas.finance import PaymentPlanCreate
from app.services.assessments import ensure_mutable, get_assessment
from app.services.audit import log_finance_action
from app.services.calculations import ZERO, compute_total, to_money

logger = logging.getLogger(__name__)

MONTHS_BETWEEN_INSTALLMENTS = {"monthly": 1, "quarterly": 3, "semestral": 6, "custom": 1}

PLAN_EXISTS = "Statement already has a payment plan"


@dataclass
class InstallmentLine:
    installment_number: int
    due_date: date
    amount: Decimal
    paid_amount: Decimal
    status: str
    late_fee: Decimal


@dataclass
class PlanSchedule:
    plan: PaymentPlan
    installments: List[InstallmentLine] = field(default_factory=list)
    paid_toward_plan: Decimal = ZERO
    outstanding: Decimal = ZERO
    late_fees_due: Decimal = ZERO


def build_schedule(plan_type: str, total: Decimal, count: int, start_date: date) -> List[Tuple[int, date, Decimal]]:
    """
    Equal installments rounded down to the cent; the last one takes the
    remainder so the schedule sums to ``total`` exactly. Due dates step by whole
    months from ``start_date`` (clamped to the end of shorter months).
    """
    total = to_money(total)
    per_installment = (total / count).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    remainder = total - per_installment * count
    gap = MONTHS_BETWEEN_INSTALLMENTS[plan_type]

    schedule = []
    for index in range(count):
        amount = per_installment + remainder if index == count - 1 else per_installment
        schedule.append((index + 1, start_date + relativedelta(months=index * gap), to_money(amount)))
    return schedule


def late_fee_for(plan: PaymentPlan, amount: Decimal) -> Decimal:
    if plan.late_fee_type == "percentage":
        return to_money(to_money(amount) * to_money(plan.late_fee_amount) / Decimal("100"))
    return to_money(plan.late_fee_amount)


def allocate(
    plan: PaymentPlan,
    installments: List[PaymentPlanInstallment],
    paid_toward_plan: Decimal,
    as_of: date,
) -> List[InstallmentLine]:
    """Apply payments to installments oldest first and grade each one against ``as_of``."""
    remaining = to_money(paid_toward_plan)
    grace = timedelta(days=plan.grace_period_days or 0)
    lines = []
    for installment in installments:
        amount = to_money(installment.amount)
        paid = min(amount, remaining)
        remaining -= paid

        late_fee = ZERO
        if paid >= amount:
            status = "paid"
        elif as_of > installment.due_date + grace:
            status = "overdue"
            late_fee = late_fee_for(plan, amount)
        elif paid > 0:
            status = "partial"
        else:
            status = "pending"

        lines.append(
            InstallmentLine(
                installment_number=installment.installment_number,
                due_date=installment.due_date,
                amount=amount,
                paid_amount=paid,
                status=status,
                late_fee=late_fee,
            )
        )
    return lines


async def _schedule(
    db: AsyncSession, plan: PaymentPlan, assessment: Assessment, as_of: Optional[date] = None
) -> PlanSchedule:
    installments = await PaymentPlanRepository(db).installments(plan.id)
    paid_toward_plan = max(ZERO, to_money(assessment.total_paid) - to_money(plan.paid_at_start))
    lines = allocate(plan, installments, paid_toward_plan, as_of or date.today())
    return PlanSchedule(
        plan=plan,
        installments=lines,
        paid_toward_plan=min(paid_toward_plan, to_money(plan.scheduled_amount)),
        outstanding=max(ZERO, to_money(plan.scheduled_amount) - paid_toward_plan),
        late_fees_due=compute_total(line.late_fee for line in lines),
    )


async def _ensure_installable(db: AsyncSession, assessment: Assessment) -> None:
    items = await AssessmentRepository(db).items(assessment.id)
    catalog = await FeeCatalogRepository(db).get_many(
        i.fee_catalog_item_id for i in items if i.fee_catalog_item_id is not None
    )
    blocked = [
        item.name for item in items
        if item.fee_catalog_item_id in catalog and not catalog[item.fee_catalog_item_id].allow_installments
    ]
    if blocked:
        raise ValidationError(
            f"These fees must be paid in full and cannot go on a payment plan: {', '.join(blocked)}",
            {"items": blocked},
        )


async def get_plan(db: AsyncSession, plan_id: int, as_of: Optional[date] = None) -> PlanSchedule:
    plan = await PaymentPlanRepository(db).get(plan_id)
    if not plan:
        raise NotFoundError("Payment plan not found", {"plan_id": plan_id})
    assessment = await get_assessment(db, plan.assessment_id)
    return await _schedule(db, plan, assessment, as_of)


async def get_plan_for_assessment(db: AsyncSession, assessment_id: int, as_of: Optional[date] = None) -> PlanSchedule:
    assessment = await get_assessment(db, assessment_id)
    plan = await PaymentPlanRepository(db).get_for_assessment(assessment.id)
    if not plan:
        raise NotFoundError("Statement has no payment plan", {"assessment_id": assessment_id})
    return await _schedule(db, plan, assessment, as_of)


async def list_plans(db: AsyncSession, school_id: int, student_id: Optional[int] = None) -> List[PaymentPlan]:
    return await PaymentPlanRepository(db).list_for_school(school_id, student_id=student_id)


async def create_plan(
    db: AsyncSession, assessment_id: int, payload: PaymentPlanCreate, actor_id: Optional[int] = None
) -> PlanSchedule:
    repo = PaymentPlanRepository(db)
    assessment = await get_assessment(db, assessment_id)
    await ensure_mutable(db, assessment)

    balance = to_money(assessment.balance)
    if balance <= 0:
        raise StateError("Statement has no outstanding balance to schedule", {"assessment_id": assessment.id})
    if payload.late_fee_type.value == "percentage" and payload.late_fee_amount > 100:
        raise ValidationError("Percentage late fee cannot exceed 100")
    if await repo.get_for_assessment(assessment.id):
        raise ConflictError(PLAN_EXISTS, {"assessment_id": assessment.id})
    await _ensure_installable(db, assessment)

    start_date = payload.start_date or date.today()
    schedule = build_schedule(payload.plan_type.value, balance, payload.total_installments, start_date)

    try:
        async with atomic(db):
            plan = repo.add(
                PaymentPlan(
                    school_id=assessment.school_id,
                    student_id=assessment.student_id,
                    assessment_id=assessment.id,
                    plan_type=payload.plan_type.value,
                    total_installments=payload.total_installments,
                    scheduled_amount=balance,
                    paid_at_start=to_money(assessment.total_paid),
                    start_date=start_date,
                    grace_period_days=payload.grace_period_days,
                    late_fee_amount=to_money(payload.late_fee_amount),
                    late_fee_type=payload.late_fee_type.value,
                    created_by=actor_id,
                )
            )
            await db.flush()
            repo.add_installments([
                PaymentPlanInstallment(plan_id=plan.id, installment_number=number, due_date=due_date, amount=amount)
                for number, due_date, amount in schedule
            ])
            await db.flush()
            log_finance_action(
                db, plan.school_id, actor_id, "create", "payment_plans", plan.id,
                {
                    "assessment_id": assessment.id,
                    "plan_type": plan.plan_type,
                    "installments": plan.total_installments,
                    "scheduled_amount": balance,
                    "start_date": start_date,
                },
            )
    except IntegrityError as exc:
        logger.warning(f"Second payment plan blocked by constraint for statement {assessment.id}: {exc}")
        raise ConflictError(PLAN_EXISTS, {"assessment_id": assessment.id}) from exc

    logger.info(
        f"Payment plan {plan.id} created for statement {assessment.id}: "
        f"{plan.total_installments} {plan.plan_type} installments over {balance}"
    )
    return await _schedule(db, plan, assessment)


async def cancel_plan(db: AsyncSession, plan_id: int, actor_id: Optional[int] = None) -> None:
    """Drop a plan so the statement can be rescheduled; payments are untouched."""
    repo = PaymentPlanRepository(db)
    plan = await repo.get(plan_id)
    if not plan:
        raise NotFoundError("Payment plan not found", {"plan_id": plan_id})
    assessment = await get_assessment(db, plan.assessment_id)
    await ensure_mutable(db, assessment)

    async with atomic(db):
        log_finance_action(
            db, plan.school_id, actor_id, "cancel", "payment_plans", plan.id,
            {"assessment_id": plan.assessment_id},
        )
        await repo.delete(plan)

    logger.info(f"Payment plan {plan_id} cancelled")

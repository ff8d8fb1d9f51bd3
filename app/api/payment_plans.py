from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.middleware.authentication import (
    allow_admin,
    allow_finance_staff,
    validate_school_access,
)
from app.models.users import User
from app.schemas.finance import PaymentPlanCreate, PaymentPlanInDB, PaymentPlanSchedule
from app.services import assessments, payment_plans

router = APIRouter()


def schedule_out(schedule: payment_plans.PlanSchedule) -> PaymentPlanSchedule:
    return PaymentPlanSchedule.model_validate(schedule, from_attributes=True)


@router.post(
    "/assessments/{assessment_id}/payment-plan",
    response_model=PaymentPlanSchedule,
    status_code=status.HTTP_201_CREATED,
)
async def create_payment_plan(
    plan_data: PaymentPlanCreate,
    assessment_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    Split a statement's outstanding balance into dated installments.
    """
    assessment = await assessments.get_assessment(db, assessment_id)
    validate_school_access(current_user, assessment.school_id)
    schedule = await payment_plans.create_plan(db, assessment_id, plan_data, actor_id=current_user.id)
    return schedule_out(schedule)


@router.get("/assessments/{assessment_id}/payment-plan", response_model=PaymentPlanSchedule)
async def get_assessment_payment_plan(
    assessment_id: int = Path(..., gt=0),
    as_of: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    Installment schedule of a statement with what has been paid and what is overdue.
    """
    assessment = await assessments.get_assessment(db, assessment_id)
    validate_school_access(current_user, assessment.school_id)
    return schedule_out(await payment_plans.get_plan_for_assessment(db, assessment_id, as_of=as_of))


@router.get("/payment-plans", response_model=List[PaymentPlanInDB])
async def get_payment_plans(
    school_id: Optional[int] = Query(None),
    student_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    school_id = school_id or current_user.school_id
    validate_school_access(current_user, school_id)
    return await payment_plans.list_plans(db, school_id, student_id=student_id)


@router.get("/payment-plans/{plan_id}", response_model=PaymentPlanSchedule)
async def get_payment_plan(
    plan_id: int = Path(..., gt=0),
    as_of: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    schedule = await payment_plans.get_plan(db, plan_id, as_of=as_of)
    validate_school_access(current_user, schedule.plan.school_id)
    return schedule_out(schedule)


@router.delete("/payment-plans/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_payment_plan(
    plan_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    schedule = await payment_plans.get_plan(db, plan_id)
    validate_school_access(current_user, schedule.plan.school_id)
    await payment_plans.cancel_plan(db, plan_id, actor_id=current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

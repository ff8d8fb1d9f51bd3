from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.exceptions import NotFoundError
from app.middleware.authentication import (
    allow_admin,
    allow_finance_staff,
    validate_school_access,
)
from app.models.users import User
from app.repositories.discounts import DiscountRepository
from app.schemas.finance import (
    DiscountApply,
    DiscountCreate,
    DiscountInDB,
    DiscountPreview,
    DiscountUpdate,
    StudentDiscountInDB,
)
from app.services import assessments, discounts

router = APIRouter()


async def _load_discount(db: AsyncSession, discount_id: int, current_user: User):
    discount = await discounts.get_discount(db, discount_id)
    validate_school_access(current_user, discount.school_id)
    return discount


async def _load_application(db: AsyncSession, student_discount_id: int, current_user: User):
    application = await DiscountRepository(db).get_application(student_discount_id)
    if not application:
        raise NotFoundError("Discount application not found", {"student_discount_id": student_discount_id})
    validate_school_access(current_user, application.school_id)
    return application


# Discount rule endpoints
@router.post("/discounts", response_model=DiscountInDB, status_code=status.HTTP_201_CREATED)
async def create_discount(
    discount_data: DiscountCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Create a discount or scholarship rule.
    """
    validate_school_access(current_user, discount_data.school_id)
    return await discounts.create_discount(db, discount_data, actor_id=current_user.id)


@router.get("/discounts", response_model=List[DiscountInDB])
async def get_discounts(
    school_id: Optional[int] = Query(None),
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    school_id = school_id or current_user.school_id
    validate_school_access(current_user, school_id)
    return await discounts.list_discounts(db, school_id, active_only=active_only)


@router.get("/discounts/pending", response_model=List[StudentDiscountInDB])
async def get_pending_discounts(
    school_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Discount applications waiting for approval.
    """
    school_id = school_id or current_user.school_id
    validate_school_access(current_user, school_id)
    return await discounts.list_pending(db, school_id)


@router.put("/discounts/{discount_id}", response_model=DiscountInDB)
async def update_discount(
    discount_data: DiscountUpdate,
    discount_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Update a rule. Amounts already applied to statements do not change.
    """
    await _load_discount(db, discount_id, current_user)
    return await discounts.update_discount(db, discount_id, discount_data, actor_id=current_user.id)


@router.delete("/discounts/{discount_id}", response_model=DiscountInDB)
async def deactivate_discount(
    discount_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    await _load_discount(db, discount_id, current_user)
    return await discounts.deactivate_discount(db, discount_id, actor_id=current_user.id)


# Applying discounts to statements
@router.get("/assessments/{assessment_id}/discounts/preview", response_model=DiscountPreview)
async def preview_discount(
    assessment_id: int = Path(..., gt=0),
    discount_id: int = Query(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    How much a discount would take off a statement, without applying it.
    """
    await _load_discount(db, discount_id, current_user)
    assessment = await assessments.get_assessment(db, assessment_id)
    validate_school_access(current_user, assessment.school_id)
    amount = await discounts.preview_for(db, discount_id, assessment_id)
    return DiscountPreview(discount_id=discount_id, assessment_id=assessment_id, amount=amount)


@router.post(
    "/assessments/{assessment_id}/discounts",
    response_model=StudentDiscountInDB,
    status_code=status.HTTP_201_CREATED,
)
async def apply_discount(
    apply_data: DiscountApply,
    assessment_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    Apply a discount to a statement. Rules that require approval are queued
    as pending and do not reduce the balance until approved.
    """
    assessment = await assessments.get_assessment(db, assessment_id)
    validate_school_access(current_user, assessment.school_id)
    return await discounts.apply_discount(db, apply_data.discount_id, assessment_id, actor_id=current_user.id)


@router.post("/student-discounts/{student_discount_id}/approve", response_model=StudentDiscountInDB)
async def approve_discount(
    student_discount_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    await _load_application(db, student_discount_id, current_user)
    return await discounts.approve_discount(db, student_discount_id, actor_id=current_user.id)


@router.delete("/student-discounts/{student_discount_id}", status_code=status.HTTP_204_NO_CONTENT)
async def withdraw_discount(
    student_discount_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    Withdraw a pending discount application.
    """
    await _load_application(db, student_discount_id, current_user)
    await discounts.withdraw_discount(db, student_discount_id, actor_id=current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

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
from app.repositories.assessments import AssessmentRepository
from app.schemas.finance import (
    AssessmentCreate,
    AssessmentEdit,
    AssessmentInDB,
    AssessmentStatusEnum,
    CarryForwardRequest,
    CarryForwardResult,
    PaymentCreate,
    PaymentInDB,
    PaymentVoid,
    StatementDetail,
)
from app.services import assessments, carry_forward

router = APIRouter()


async def _load_assessment(db: AsyncSession, assessment_id: int, current_user: User):
    assessment = await assessments.get_assessment(db, assessment_id)
    validate_school_access(current_user, assessment.school_id)
    return assessment


@router.post("/assessments", response_model=AssessmentInDB, status_code=status.HTTP_201_CREATED)
async def create_assessment(
    assessment_data: AssessmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    Issue a statement of account to a student from a fee template.
    """
    validate_school_access(current_user, assessment_data.school_id)
    return await assessments.create_assessment(db, assessment_data, actor_id=current_user.id)


@router.get("/assessments", response_model=List[AssessmentInDB])
async def get_assessments(
    school_id: Optional[int] = Query(None),
    academic_year_id: Optional[int] = Query(None),
    student_id: Optional[int] = Query(None),
    status_filter: Optional[AssessmentStatusEnum] = Query(None, alias="status"),
    skip: int = 0,
    limit: int = Query(100, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    school_id = school_id or current_user.school_id
    validate_school_access(current_user, school_id)
    return await assessments.list_assessments(
        db,
        school_id,
        academic_year_id=academic_year_id,
        student_id=student_id,
        status=status_filter.value if status_filter else None,
        skip=skip,
        limit=limit,
    )


@router.get("/assessments/{assessment_id}", response_model=StatementDetail)
async def get_statement(
    assessment_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    Get a statement of account with its lines, discounts and payments.
    """
    statement = await assessments.get_statement(db, assessment_id)
    validate_school_access(current_user, statement.assessment.school_id)
    return StatementDetail.model_validate(statement, from_attributes=True)


@router.put("/assessments/{assessment_id}", response_model=AssessmentInDB)
async def edit_assessment(
    edit_data: AssessmentEdit,
    assessment_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    Move a statement to another fee template; lines are re-copied and
    discounts re-priced against the new total.
    """
    await _load_assessment(db, assessment_id, current_user)
    return await assessments.edit_assessment(db, assessment_id, edit_data.template_id, actor_id=current_user.id)


@router.post("/assessments/{assessment_id}/close", response_model=AssessmentInDB)
async def close_assessment(
    assessment_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    await _load_assessment(db, assessment_id, current_user)
    return await assessments.close_assessment(db, assessment_id, actor_id=current_user.id)


@router.delete("/assessments/{assessment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assessment(
    assessment_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Delete a statement that has no payments. Paid statements must be closed.
    """
    await _load_assessment(db, assessment_id, current_user)
    await assessments.delete_assessment(db, assessment_id, actor_id=current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Payment endpoints
@router.post(
    "/assessments/{assessment_id}/payments",
    response_model=PaymentInDB,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    payment_data: PaymentCreate,
    assessment_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    await _load_assessment(db, assessment_id, current_user)
    return await assessments.record_payment(db, assessment_id, payment_data, actor_id=current_user.id)


@router.post("/payments/{payment_id}/void", response_model=PaymentInDB)
async def void_payment(
    void_data: PaymentVoid,
    payment_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Void a payment; the amount is added back to the statement balance.
    """
    payment = await AssessmentRepository(db).get_payment(payment_id)
    if not payment:
        raise NotFoundError("Payment not found", {"payment_id": payment_id})
    validate_school_access(current_user, payment.school_id)
    return await assessments.void_payment(db, payment_id, void_data.reason, actor_id=current_user.id)


# Year-end close
@router.post("/assessments/carry-forward", response_model=CarryForwardResult)
async def carry_forward_balances(
    request_data: CarryForwardRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Close the selected statements and carry their balances to the target year.
    """
    validate_school_access(current_user, request_data.school_id)
    return await carry_forward.carry_forward(
        db,
        request_data.school_id,
        request_data.from_academic_year_id,
        request_data.to_academic_year_id,
        request_data.assessment_ids,
        actor_id=current_user.id,
    )

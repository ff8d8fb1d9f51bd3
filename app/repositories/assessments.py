"""
Assessment Repository

Loads student assessments (bills) together with their line items, discount
applications and payments. Children are fetched with separate queries and
merged into an AssessmentStatement here, so the services never build joins.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Set

from sqlalchemy import select, delete, exists
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.finance import (
    Assessment,
    AssessmentItem,
    StudentDiscount,
    Payment,
    BalanceCarryForward,
)
from app.repositories.payment_plans import PaymentPlanRepository


@dataclass
class AssessmentStatement:
    assessment: Assessment
    items: List[AssessmentItem] = field(default_factory=list)
    discounts: List[StudentDiscount] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)


class AssessmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, assessment_id: int, for_update: bool = False) -> Optional[Assessment]:
        query = select(Assessment).where(Assessment.id == assessment_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalars().first()

    async def get_many(self, assessment_ids: List[int]) -> List[Assessment]:
        if not assessment_ids:
            return []
        result = await self.session.execute(
            select(Assessment).where(Assessment.id.in_(assessment_ids)).order_by(Assessment.id)
        )
        return list(result.scalars().all())

    async def get_open(self, student_id: int, academic_year_id: int) -> Optional[Assessment]:
        result = await self.session.execute(
            select(Assessment).where(
                Assessment.student_id == student_id,
                Assessment.academic_year_id == academic_year_id,
                Assessment.is_closed.is_(False),
            )
        )
        return result.scalars().first()

    async def list_for_school(
        self,
        school_id: int,
        academic_year_id: Optional[int] = None,
        student_id: Optional[int] = None,
        status: Optional[str] = None,
        include_closed: bool = True,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Assessment]:
        query = select(Assessment).where(Assessment.school_id == school_id)
        if academic_year_id is not None:
            query = query.where(Assessment.academic_year_id == academic_year_id)
        if student_id is not None:
            query = query.where(Assessment.student_id == student_id)
        if status:
            query = query.where(Assessment.status == status)
        if not include_closed:
            query = query.where(Assessment.is_closed.is_(False))
        query = query.order_by(Assessment.id).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def items(self, assessment_id: int) -> List[AssessmentItem]:
        result = await self.session.execute(
            select(AssessmentItem)
            .where(AssessmentItem.assessment_id == assessment_id)
            .order_by(AssessmentItem.id)
        )
        return list(result.scalars().all())

    async def discounts(self, assessment_id: int) -> List[StudentDiscount]:
        result = await self.session.execute(
            select(StudentDiscount)
            .where(StudentDiscount.assessment_id == assessment_id)
            .order_by(StudentDiscount.id)
        )
        return list(result.scalars().all())

    async def payments(self, assessment_id: int) -> List[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.assessment_id == assessment_id)
            .order_by(Payment.id)
        )
        return list(result.scalars().all())

    async def statement(self, assessment_id: int) -> Optional[AssessmentStatement]:
        assessment = await self.get(assessment_id)
        if assessment is None:
            return None
        return AssessmentStatement(
            assessment=assessment,
            items=await self.items(assessment_id),
            discounts=await self.discounts(assessment_id),
            payments=await self.payments(assessment_id),
        )

    async def get_payment(self, payment_id: int) -> Optional[Payment]:
        result = await self.session.execute(select(Payment).where(Payment.id == payment_id))
        return result.scalars().first()

    async def has_carry_forward(self, assessment_id: int) -> bool:
        result = await self.session.execute(
            select(
                exists().where(
                    (BalanceCarryForward.from_assessment_id == assessment_id)
                    | (BalanceCarryForward.to_assessment_id == assessment_id)
                )
            )
        )
        return bool(result.scalar())

    async def carried_students(self, school_id: int, from_year_id: int, to_year_id: int) -> Set[int]:
        result = await self.session.execute(
            select(BalanceCarryForward.student_id).where(
                BalanceCarryForward.school_id == school_id,
                BalanceCarryForward.from_academic_year_id == from_year_id,
                BalanceCarryForward.to_academic_year_id == to_year_id,
            )
        )
        return set(result.scalars().all())

    def add(self, assessment: Assessment) -> Assessment:
        self.session.add(assessment)
        return assessment

    def add_items(self, items: List[AssessmentItem]) -> None:
        self.session.add_all(items)

    def add_payment(self, payment: Payment) -> Payment:
        self.session.add(payment)
        return payment

    def add_carry_forward(self, record: BalanceCarryForward) -> BalanceCarryForward:
        self.session.add(record)
        return record

    async def delete_items(self, assessment_id: int) -> None:
        await self.session.execute(
            delete(AssessmentItem).where(AssessmentItem.assessment_id == assessment_id)
        )

    async def delete_cascade(self, assessment: Assessment) -> None:
        """Remove an assessment and every child row; children go first."""
        await self.delete_items(assessment.id)
        await self.session.execute(
            delete(StudentDiscount).where(StudentDiscount.assessment_id == assessment.id)
        )
        await self.session.execute(
            delete(Payment).where(Payment.assessment_id == assessment.id)
        )
        await PaymentPlanRepository(self.session).delete_for_assessment(assessment.id)
        await self.session.delete(assessment)

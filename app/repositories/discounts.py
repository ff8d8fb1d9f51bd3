from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.finance import Discount, StudentDiscount


class DiscountRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, discount_id: int) -> Optional[Discount]:
        result = await self.session.execute(select(Discount).where(Discount.id == discount_id))
        return result.scalars().first()

    async def get_many(self, discount_ids: List[int]) -> List[Discount]:
        if not discount_ids:
            return []
        result = await self.session.execute(select(Discount).where(Discount.id.in_(set(discount_ids))))
        return list(result.scalars().all())

    async def list_for_school(self, school_id: int, active_only: bool = False) -> List[Discount]:
        query = select(Discount).where(Discount.school_id == school_id)
        if active_only:
            query = query.where(Discount.is_active.is_(True))
        result = await self.session.execute(query.order_by(Discount.name))
        return list(result.scalars().all())

    async def get_application(self, student_discount_id: int) -> Optional[StudentDiscount]:
        result = await self.session.execute(
            select(StudentDiscount).where(StudentDiscount.id == student_discount_id)
        )
        return result.scalars().first()

    async def applications_for(self, assessment_id: int, status: Optional[str] = None) -> List[StudentDiscount]:
        query = select(StudentDiscount).where(StudentDiscount.assessment_id == assessment_id)
        if status:
            query = query.where(StudentDiscount.status == status)
        result = await self.session.execute(query.order_by(StudentDiscount.id))
        return list(result.scalars().all())

    async def pending_for_school(self, school_id: int) -> List[StudentDiscount]:
        result = await self.session.execute(
            select(StudentDiscount)
            .where(StudentDiscount.school_id == school_id, StudentDiscount.status == "pending")
            .order_by(StudentDiscount.id)
        )
        return list(result.scalars().all())

    def add(self, discount: Discount) -> Discount:
        self.session.add(discount)
        return discount

    def add_application(self, application: StudentDiscount) -> StudentDiscount:
        self.session.add(application)
        return application

    async def delete_application(self, application: StudentDiscount) -> None:
        await self.session.delete(application)

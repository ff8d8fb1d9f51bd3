from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.finance import PaymentPlan, PaymentPlanInstallment


class PaymentPlanRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, plan_id: int) -> Optional[PaymentPlan]:
        result = await self.session.execute(select(PaymentPlan).where(PaymentPlan.id == plan_id))
        return result.scalars().first()

    async def get_for_assessment(self, assessment_id: int) -> Optional[PaymentPlan]:
        result = await self.session.execute(
            select(PaymentPlan).where(PaymentPlan.assessment_id == assessment_id)
        )
        return result.scalars().first()

    async def list_for_school(self, school_id: int, student_id: Optional[int] = None) -> List[PaymentPlan]:
        query = select(PaymentPlan).where(PaymentPlan.school_id == school_id)
        if student_id is not None:
            query = query.where(PaymentPlan.student_id == student_id)
        result = await self.session.execute(query.order_by(PaymentPlan.created_at.desc(), PaymentPlan.id.desc()))
        return list(result.scalars().all())

    async def installments(self, plan_id: int) -> List[PaymentPlanInstallment]:
        grouped = await self.installments_for([plan_id])
        return grouped.get(plan_id, [])

    async def installments_for(self, plan_ids: Iterable[int]) -> Dict[int, List[PaymentPlanInstallment]]:
        ids = set(plan_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(PaymentPlanInstallment)
            .where(PaymentPlanInstallment.plan_id.in_(ids))
            .order_by(PaymentPlanInstallment.plan_id, PaymentPlanInstallment.installment_number)
        )
        grouped: Dict[int, List[PaymentPlanInstallment]] = {plan_id: [] for plan_id in ids}
        for installment in result.scalars().all():
            grouped[installment.plan_id].append(installment)
        return grouped

    def add(self, plan: PaymentPlan) -> PaymentPlan:
        self.session.add(plan)
        return plan

    def add_installments(self, installments: List[PaymentPlanInstallment]) -> None:
        self.session.add_all(installments)

    async def delete(self, plan: PaymentPlan) -> None:
        await self.session.execute(
            delete(PaymentPlanInstallment).where(PaymentPlanInstallment.plan_id == plan.id)
        )
        await self.session.delete(plan)

    async def delete_for_assessment(self, assessment_id: int) -> None:
        plan_ids = select(PaymentPlan.id).where(PaymentPlan.assessment_id == assessment_id)
        await self.session.execute(
            delete(PaymentPlanInstallment).where(PaymentPlanInstallment.plan_id.in_(plan_ids))
        )
        await self.session.execute(
            delete(PaymentPlan).where(PaymentPlan.assessment_id == assessment_id)
        )

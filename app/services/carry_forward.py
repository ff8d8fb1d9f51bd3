"""
Year-end close: move outstanding balances of one academic year into the
students' statements for the next year.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import AssessmentEngineError, StateError, ValidationError
from app.models.finance import Assessment, AssessmentItem, BalanceCarryForward
from app.repositories.assessments import AssessmentRepository
from app.schemas.finance import CarryForwardResult
from app.services.academic_years import get_year
from app.services.assessments import bill_transaction
from app.services.audit import log_finance_action
from app.services.calculations import ZERO, recalculate, to_money

logger = logging.getLogger(__name__)


async def _target_assessment(
    db: AsyncSession, repo: AssessmentRepository, source: Assessment, to_year_id: int, actor_id: Optional[int]
) -> Assessment:
    target = await repo.get_open(source.student_id, to_year_id)
    if target:
        return target
    target = repo.add(
        Assessment(
            student_id=source.student_id,
            school_id=source.school_id,
            academic_year_id=to_year_id,
            template_id=None,
            total_amount=ZERO,
            discount_amount=ZERO,
            net_amount=ZERO,
            total_paid=ZERO,
            balance=ZERO,
            status="pending",
            is_closed=False,
            assessed_by=actor_id,
            assessed_at=datetime.now(timezone.utc),
        )
    )
    await db.flush()
    return target


async def _carry_one(
    db: AsyncSession,
    source: Assessment,
    from_year_name: str,
    to_year_name: str,
    to_year_id: int,
    actor_id: Optional[int],
) -> Decimal:
    repo = AssessmentRepository(db)
    amount = to_money(source.balance)

    async with bill_transaction(db):
        target = await _target_assessment(db, repo, source, to_year_id, actor_id)
        repo.add_items([
            AssessmentItem(
                assessment_id=target.id,
                fee_catalog_item_id=None,
                name=f"{settings.CARRY_FORWARD_ITEM_LABEL} ({from_year_name})",
                amount=amount,
                is_mandatory=True,
            )
        ])
        target.total_amount = to_money(target.total_amount) + amount
        recalculate(target)

        source.is_closed = True
        source.status = "closed"

        record = repo.add_carry_forward(
            BalanceCarryForward(
                school_id=source.school_id,
                student_id=source.student_id,
                from_academic_year_id=source.academic_year_id,
                to_academic_year_id=to_year_id,
                from_assessment_id=source.id,
                to_assessment_id=target.id,
                carried_amount=amount,
                carried_by=actor_id,
                notes=f"Carried {amount} from {from_year_name} to {to_year_name}",
            )
        )
        await db.flush()
        log_finance_action(
            db, source.school_id, actor_id, "carry_forward", "balance_carry_forwards", record.id,
            {
                "student_id": source.student_id,
                "from_assessment_id": source.id,
                "to_assessment_id": target.id,
                "from_year": from_year_name,
                "to_year": to_year_name,
                "amount": amount,
            },
        )
    return amount


async def carry_forward(
    db: AsyncSession,
    school_id: int,
    from_year_id: int,
    to_year_id: int,
    assessment_ids: List[int],
    actor_id: Optional[int] = None,
) -> CarryForwardResult:
    """
    Close each selected source-year statement and bill its outstanding balance
    as a "Prior Year Balance" line on the student's open statement in the
    target year, creating that statement when the student has none.

    Every student is committed separately: one failure does not undo the
    students already processed. Statements that are closed, settled, or whose
    student was already carried for this pair of years are skipped.
    """
    if from_year_id == to_year_id:
        raise ValidationError("Source and target academic years must be different")
    from_year = await get_year(db, from_year_id)
    to_year = await get_year(db, to_year_id)
    if from_year.school_id != school_id or to_year.school_id != school_id:
        raise ValidationError("Academic years belong to a different school")
    if from_year.is_archived:
        raise StateError(f"Academic year {from_year.name} is archived; its statements can no longer be closed")
    if to_year.is_archived:
        raise StateError(f"Academic year {to_year.name} is archived and cannot receive balances")

    # Plain values survive the rollback of a failed student
    from_year_name, to_year_name = from_year.name, to_year.name

    repo = AssessmentRepository(db)
    already_carried = await repo.carried_students(school_id, from_year_id, to_year_id)
    result = CarryForwardResult()

    for assessment_id in dict.fromkeys(assessment_ids):
        source = await repo.get(assessment_id)
        if not source or source.school_id != school_id or source.academic_year_id != from_year_id:
            logger.warning(f"Carry forward: statement {assessment_id} is not part of year {from_year_name}")
            result.failed.append(assessment_id)
            continue
        if source.is_closed or source.balance <= 0 or source.student_id in already_carried:
            result.skipped.append(assessment_id)
            continue

        student_id = source.student_id
        try:
            amount = await _carry_one(db, source, from_year_name, to_year_name, to_year_id, actor_id)
        except (AssessmentEngineError, SQLAlchemyError) as exc:
            logger.error(f"Failed to carry forward statement {assessment_id}: {exc}")
            result.failed.append(assessment_id)
            continue

        already_carried.add(student_id)
        result.carried.append(assessment_id)
        result.total_carried += amount

    logger.info(
        f"Carry forward {from_year_name} -> {to_year_name}: {len(result.carried)} carried, "
        f"{len(result.skipped)} skipped, {len(result.failed)} failed, total {result.total_carried}"
    )
    return result

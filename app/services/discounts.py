"""
Discount and scholarship engine.

A discount rule is previewed against a statement, then applied. Rules that do
not need approval take effect on the bill immediately; the others are queued
as pending applications until an administrator approves them.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from app.models.finance import Assessment, Discount, StudentDiscount
from app.repositories.discounts import DiscountRepository
from app.schemas.finance import DiscountCreate, DiscountUpdate
from app.services.assessments import bill_transaction, ensure_mutable, get_assessment
from app.services.audit import log_finance_action
from app.services.calculations import discount_amount_for, recalculate, to_money

logger = logging.getLogger(__name__)


def _validate_rule(name: Optional[str], discount_type: str, value: Decimal) -> None:
    if not name or not name.strip():
        raise ValidationError("Discount name is required")
    if value is None or value < 0:
        raise ValidationError("Discount value must not be negative")
    if discount_type == "percentage" and value > 100:
        raise ValidationError("Percentage discounts cannot exceed 100")


# Discount catalog
async def create_discount(db: AsyncSession, payload: DiscountCreate, actor_id: Optional[int] = None) -> Discount:
    _validate_rule(payload.name, payload.type.value, payload.value)
    repo = DiscountRepository(db)
    data = payload.model_dump()
    data.update(
        name=payload.name.strip(),
        type=payload.type.value,
        value=to_money(payload.value),
        max_cap=to_money(payload.max_cap) if payload.max_cap is not None else None,
    )
    async with atomic(db):
        discount = repo.add(Discount(**data, is_active=True))
        await db.flush()
        log_finance_action(
            db, discount.school_id, actor_id, "create", "discounts", discount.id,
            {"name": discount.name, "type": discount.type, "value": discount.value},
        )
    return discount


async def get_discount(db: AsyncSession, discount_id: int) -> Discount:
    discount = await DiscountRepository(db).get(discount_id)
    if not discount:
        raise NotFoundError("Discount not found", {"discount_id": discount_id})
    return discount


async def update_discount(
    db: AsyncSession, discount_id: int, payload: DiscountUpdate, actor_id: Optional[int] = None
) -> Discount:
    discount = await get_discount(db, discount_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("type") is not None:
        changes["type"] = changes["type"].value
    _validate_rule(
        changes.get("name", discount.name),
        changes.get("type", discount.type),
        changes.get("value", discount.value),
    )
    if "name" in changes:
        changes["name"] = changes["name"].strip()

    async with atomic(db):
        for key, value in changes.items():
            setattr(discount, key, value)
        log_finance_action(db, discount.school_id, actor_id, "update", "discounts", discount.id, changes)
    return discount


async def deactivate_discount(db: AsyncSession, discount_id: int, actor_id: Optional[int] = None) -> Discount:
    discount = await get_discount(db, discount_id)
    async with atomic(db):
        discount.is_active = False
        log_finance_action(db, discount.school_id, actor_id, "deactivate", "discounts", discount.id)
    return discount


async def list_discounts(db: AsyncSession, school_id: int, active_only: bool = False) -> List[Discount]:
    return await DiscountRepository(db).list_for_school(school_id, active_only=active_only)


async def list_pending(db: AsyncSession, school_id: int) -> List[StudentDiscount]:
    return await DiscountRepository(db).pending_for_school(school_id)


# Applying discounts
def preview(discount: Discount, assessment: Assessment) -> Decimal:
    """Amount the discount would take off this statement, rounded to the minor unit."""
    return to_money(
        discount_amount_for(discount.type, discount.value, assessment.total_amount, discount.max_cap)
    )


async def preview_for(db: AsyncSession, discount_id: int, assessment_id: int) -> Decimal:
    discount = await get_discount(db, discount_id)
    assessment = await get_assessment(db, assessment_id)
    return preview(discount, assessment)


async def _check_stacking(repo: DiscountRepository, discount: Discount, assessment: Assessment) -> None:
    applications = await repo.applications_for(assessment.id)
    if not applications:
        return
    if any(a.discount_id == discount.id for a in applications):
        raise ConflictError(f"{discount.name} is already applied to this statement")
    if not discount.stackable:
        raise ConflictError(f"{discount.name} cannot be combined with other discounts")
    existing = await repo.get_many([a.discount_id for a in applications])
    blocking = [d.name for d in existing if not d.stackable]
    if blocking:
        raise ConflictError(
            f"Statement already has a non-stackable discount ({', '.join(sorted(blocking))})"
        )


def _apply_to_bill(assessment: Assessment, applied_amount: Decimal) -> None:
    assessment.discount_amount = to_money(assessment.discount_amount) + applied_amount
    recalculate(assessment)


async def apply_discount(
    db: AsyncSession, discount_id: int, assessment_id: int, actor_id: Optional[int] = None
) -> StudentDiscount:
    repo = DiscountRepository(db)
    discount = await get_discount(db, discount_id)
    assessment = await get_assessment(db, assessment_id)
    await ensure_mutable(db, assessment)
    if not discount.is_active:
        raise ValidationError(f"{discount.name} is no longer active")
    if discount.school_id != assessment.school_id:
        raise ValidationError("Discount belongs to a different school")
    await _check_stacking(repo, discount, assessment)

    applied_amount = preview(discount, assessment)
    auto_approve = not discount.requires_approval
    now = datetime.now(timezone.utc)

    async with bill_transaction(db):
        application = repo.add_application(
            StudentDiscount(
                school_id=assessment.school_id,
                student_id=assessment.student_id,
                discount_id=discount.id,
                assessment_id=assessment.id,
                applied_amount=applied_amount,
                status="approved" if auto_approve else "pending",
                approved_by=actor_id if auto_approve else None,
                approved_at=now if auto_approve else None,
            )
        )
        if auto_approve:
            _apply_to_bill(assessment, applied_amount)
        await db.flush()
        log_finance_action(
            db, assessment.school_id, actor_id, "apply_discount", "student_discounts", application.id,
            {
                "assessment_id": assessment.id,
                "discount_id": discount.id,
                "applied_amount": applied_amount,
                "status": application.status,
            },
        )

    if auto_approve:
        logger.info(f"Discount {discount.name} applied to statement {assessment.id}: -{applied_amount}")
    else:
        logger.info(f"Discount {discount.name} for statement {assessment.id} submitted for approval")
    return application


async def _get_application(repo: DiscountRepository, student_discount_id: int) -> StudentDiscount:
    application = await repo.get_application(student_discount_id)
    if not application:
        raise NotFoundError("Discount application not found", {"student_discount_id": student_discount_id})
    return application


async def approve_discount(
    db: AsyncSession, student_discount_id: int, actor_id: Optional[int] = None
) -> StudentDiscount:
    """Move a pending application to approved and take it off the bill."""
    repo = DiscountRepository(db)
    application = await _get_application(repo, student_discount_id)
    if application.status != "pending":
        raise StateError("Discount application is already approved")
    assessment = await get_assessment(db, application.assessment_id)
    await ensure_mutable(db, assessment)

    async with bill_transaction(db):
        application.status = "approved"
        application.approved_by = actor_id
        application.approved_at = datetime.now(timezone.utc)
        _apply_to_bill(assessment, to_money(application.applied_amount))
        await db.flush()
        log_finance_action(
            db, assessment.school_id, actor_id, "approve_discount", "student_discounts", application.id,
            {"assessment_id": assessment.id, "applied_amount": application.applied_amount},
        )

    logger.info(f"Discount application {application.id} approved on statement {assessment.id}")
    return application


async def withdraw_discount(db: AsyncSession, student_discount_id: int, actor_id: Optional[int] = None) -> None:
    """Drop a pending application; approved ones already affect the bill and stay."""
    repo = DiscountRepository(db)
    application = await _get_application(repo, student_discount_id)
    if application.status != "pending":
        raise StateError("Only pending discount applications can be withdrawn")
    assessment = await get_assessment(db, application.assessment_id)
    await ensure_mutable(db, assessment)

    async with atomic(db):
        log_finance_action(
            db, application.school_id, actor_id, "withdraw_discount", "student_discounts", application.id,
            {"assessment_id": application.assessment_id},
        )
        await repo.delete_application(application)

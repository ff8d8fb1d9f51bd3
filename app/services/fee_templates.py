"""
Fee catalog maintenance and fee template composition.

A template is a recipe: a grade/strand-scoped list of catalog items with
per-template amounts. Bills copy the lines at issue time, so editing a
template never changes an existing bill.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import NotFoundError, StateError, ValidationError
from app.models.finance import FeeCatalogItem, FeeTemplate, FeeTemplateItem
from app.repositories.fees import FeeCatalogRepository, FeeTemplateRepository, TemplateBundle
from app.schemas.finance import (
    FeeCatalogItemCreate,
    FeeCatalogItemUpdate,
    FeeTemplateCreate,
    FeeTemplateUpdate,
    TemplateItemInput,
)
from app.services.academic_years import ensure_year_writable, get_year
from app.services.audit import log_finance_action
from app.services.calculations import compute_total, to_money

logger = logging.getLogger(__name__)


# Fee catalog
async def create_catalog_item(
    db: AsyncSession, payload: FeeCatalogItemCreate, actor_id: Optional[int] = None
) -> FeeCatalogItem:
    if not payload.name or not payload.name.strip():
        raise ValidationError("Fee name is required")
    repo = FeeCatalogRepository(db)
    name = payload.name.strip()
    if await repo.find_by_name(payload.school_id, name):
        raise ValidationError("A fee with this name already exists for this school")

    data = payload.model_dump()
    data.update(name=name, category=payload.category.value, amount=to_money(payload.amount))
    async with atomic(db):
        item = repo.add(FeeCatalogItem(**data, is_active=True))
        await db.flush()
        log_finance_action(
            db, item.school_id, actor_id, "create", "fee_catalog", item.id,
            {"name": item.name, "amount": item.amount},
        )
    return item


async def get_catalog_item(db: AsyncSession, item_id: int) -> FeeCatalogItem:
    item = await FeeCatalogRepository(db).get(item_id)
    if not item:
        raise NotFoundError("Fee catalog item not found", {"fee_catalog_item_id": item_id})
    return item


async def update_catalog_item(
    db: AsyncSession, item_id: int, payload: FeeCatalogItemUpdate, actor_id: Optional[int] = None
) -> FeeCatalogItem:
    item = await get_catalog_item(db, item_id)
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes:
        if not changes["name"] or not changes["name"].strip():
            raise ValidationError("Fee name is required")
        changes["name"] = changes["name"].strip()
    if changes.get("category") is not None:
        changes["category"] = changes["category"].value
    if changes.get("amount") is not None:
        changes["amount"] = to_money(changes["amount"])

    async with atomic(db):
        for key, value in changes.items():
            setattr(item, key, value)
        log_finance_action(db, item.school_id, actor_id, "update", "fee_catalog", item.id, changes)
    return item


async def deactivate_catalog_item(db: AsyncSession, item_id: int, actor_id: Optional[int] = None) -> FeeCatalogItem:
    """Templates and bills may still point at the row, so it is retired rather than deleted."""
    item = await get_catalog_item(db, item_id)
    async with atomic(db):
        item.is_active = False
        log_finance_action(db, item.school_id, actor_id, "deactivate", "fee_catalog", item.id)
    return item


async def list_catalog_items(db: AsyncSession, school_id: int, active_only: bool = True) -> List[FeeCatalogItem]:
    return await FeeCatalogRepository(db).list_for_school(school_id, active_only=active_only)


# Fee templates
async def _build_items(
    db: AsyncSession, school_id: int, items: List[TemplateItemInput]
) -> List[FeeTemplateItem]:
    if not items:
        raise ValidationError("Select at least one fee item")

    catalog = await FeeCatalogRepository(db).get_many(i.fee_catalog_item_id for i in items)
    built = []
    for position, entry in enumerate(items):
        catalog_item = catalog.get(entry.fee_catalog_item_id)
        if not catalog_item:
            raise NotFoundError(
                "Fee catalog item not found", {"fee_catalog_item_id": entry.fee_catalog_item_id}
            )
        if catalog_item.school_id != school_id:
            raise ValidationError(
                "Fee catalog item belongs to a different school",
                {"fee_catalog_item_id": entry.fee_catalog_item_id},
            )
        amount = entry.amount if entry.amount is not None else catalog_item.amount
        is_mandatory = entry.is_mandatory if entry.is_mandatory is not None else catalog_item.is_mandatory
        built.append(
            FeeTemplateItem(
                fee_catalog_item_id=catalog_item.id,
                amount=to_money(amount),
                is_mandatory=is_mandatory,
                position=position,
            )
        )
    return built


def compute_template_total(bundle: TemplateBundle) -> Decimal:
    return compute_total(line.amount for line in bundle.lines)


async def preview_total(db: AsyncSession, school_id: int, items: List[TemplateItemInput]) -> Decimal:
    """Total a set of selections without saving anything."""
    built = await _build_items(db, school_id, items)
    return compute_total(item.amount for item in built)


async def get_template(db: AsyncSession, template_id: int) -> TemplateBundle:
    bundle = await FeeTemplateRepository(db).bundle(template_id)
    if not bundle:
        raise NotFoundError("Fee template not found", {"template_id": template_id})
    return bundle


async def list_templates(
    db: AsyncSession,
    school_id: int,
    academic_year_id: Optional[int] = None,
    grade_level: Optional[str] = None,
    active_only: bool = False,
) -> List[TemplateBundle]:
    repo = FeeTemplateRepository(db)
    templates = await repo.list_for_school(school_id, academic_year_id, grade_level, active_only)
    return await repo.bundles(templates)


async def create_template(
    db: AsyncSession, payload: FeeTemplateCreate, actor_id: Optional[int] = None
) -> TemplateBundle:
    if not payload.name or not payload.name.strip() or not payload.grade_level or not payload.grade_level.strip():
        raise ValidationError("Name and grade level are required")

    year = await get_year(db, payload.academic_year_id)
    if year.school_id != payload.school_id:
        raise ValidationError("Academic year belongs to a different school")
    ensure_year_writable(year)

    items = await _build_items(db, payload.school_id, payload.items)
    repo = FeeTemplateRepository(db)

    async with atomic(db):
        template = repo.add(
            FeeTemplate(
                school_id=payload.school_id,
                academic_year_id=payload.academic_year_id,
                name=payload.name.strip(),
                grade_level=payload.grade_level.strip(),
                strand=(payload.strand or "").strip() or None,
                is_active=True,
            )
        )
        await db.flush()
        for item in items:
            item.template_id = template.id
        repo.add_items(items)
        await db.flush()
        log_finance_action(
            db, template.school_id, actor_id, "create", "fee_templates", template.id,
            {"name": template.name, "items": len(items), "total": compute_total(i.amount for i in items)},
        )

    logger.info(f"Fee template {template.name} created with {len(items)} items")
    return await get_template(db, template.id)


async def update_template(
    db: AsyncSession, template_id: int, payload: FeeTemplateUpdate, actor_id: Optional[int] = None
) -> TemplateBundle:
    """
    Update a template's attributes and, when items are given, replace its item
    set wholesale. Both happen in one transaction.
    """
    repo = FeeTemplateRepository(db)
    template = (await get_template(db, template_id)).template
    ensure_year_writable(await get_year(db, template.academic_year_id))

    changes = payload.model_dump(exclude_unset=True, exclude={"items"})
    for key in ("name", "grade_level"):
        if key in changes and (not changes[key] or not changes[key].strip()):
            raise ValidationError("Name and grade level are required")
    items = None
    if payload.items is not None:
        items = await _build_items(db, template.school_id, payload.items)

    audit = dict(changes)
    async with atomic(db):
        for key, value in changes.items():
            setattr(template, key, value.strip() if isinstance(value, str) else value)
        if items is not None:
            await repo.delete_items(template.id)
            for item in items:
                item.template_id = template.id
            repo.add_items(items)
            audit.update(items=len(items), total=compute_total(i.amount for i in items))
        await db.flush()
        log_finance_action(db, template.school_id, actor_id, "update", "fee_templates", template.id, audit)

    return await get_template(db, template.id)


async def clone_template(
    db: AsyncSession, template_id: int, new_name: Optional[str] = None, actor_id: Optional[int] = None
) -> TemplateBundle:
    """Deep copy a template and its lines; the copy has no link to the source."""
    source = await get_template(db, template_id)
    name = (new_name or "").strip() or f"{source.template.name} - Copy"
    repo = FeeTemplateRepository(db)

    async with atomic(db):
        clone = repo.add(
            FeeTemplate(
                school_id=source.template.school_id,
                academic_year_id=source.template.academic_year_id,
                name=name,
                grade_level=source.template.grade_level,
                strand=source.template.strand,
                is_active=True,
            )
        )
        await db.flush()
        repo.add_items([
            FeeTemplateItem(
                template_id=clone.id,
                fee_catalog_item_id=line.fee_catalog_item_id,
                amount=line.amount,
                is_mandatory=line.is_mandatory,
                position=line.position,
            )
            for line in source.lines
        ])
        await db.flush()
        log_finance_action(
            db, clone.school_id, actor_id, "clone", "fee_templates", clone.id,
            {"source_template_id": source.template.id, "name": name},
        )

    return await get_template(db, clone.id)


async def delete_template(db: AsyncSession, template_id: int, actor_id: Optional[int] = None) -> None:
    repo = FeeTemplateRepository(db)
    template = (await get_template(db, template_id)).template
    if await repo.is_billed(template.id):
        raise StateError("Fee template is referenced by student statements; deactivate it instead")

    async with atomic(db):
        log_finance_action(db, template.school_id, actor_id, "delete", "fee_templates", template.id, {"name": template.name})
        await repo.delete(template)

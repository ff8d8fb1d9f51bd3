"""
Fee Catalog and Fee Template repositories.

Template lines are stored without the catalog item name; the name is merged in
here with a second query so callers always receive complete lines.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, delete, exists
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.finance import FeeCatalogItem, FeeTemplate, FeeTemplateItem, Assessment


@dataclass
class TemplateLine:
    id: int
    fee_catalog_item_id: int
    name: str
    amount: Decimal
    is_mandatory: bool
    position: int


@dataclass
class TemplateBundle:
    template: FeeTemplate
    lines: List[TemplateLine] = field(default_factory=list)


class FeeCatalogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, item_id: int) -> Optional[FeeCatalogItem]:
        result = await self.session.execute(select(FeeCatalogItem).where(FeeCatalogItem.id == item_id))
        return result.scalars().first()

    async def get_many(self, item_ids: Iterable[int]) -> Dict[int, FeeCatalogItem]:
        ids = set(item_ids)
        if not ids:
            return {}
        result = await self.session.execute(select(FeeCatalogItem).where(FeeCatalogItem.id.in_(ids)))
        return {item.id: item for item in result.scalars().all()}

    async def list_for_school(self, school_id: int, active_only: bool = True) -> List[FeeCatalogItem]:
        query = select(FeeCatalogItem).where(FeeCatalogItem.school_id == school_id)
        if active_only:
            query = query.where(FeeCatalogItem.is_active.is_(True))
        result = await self.session.execute(query.order_by(FeeCatalogItem.category, FeeCatalogItem.name))
        return list(result.scalars().all())

    async def find_by_name(self, school_id: int, name: str) -> Optional[FeeCatalogItem]:
        result = await self.session.execute(
            select(FeeCatalogItem).where(
                FeeCatalogItem.school_id == school_id,
                FeeCatalogItem.name == name,
                FeeCatalogItem.is_active.is_(True),
            )
        )
        return result.scalars().first()

    def add(self, item: FeeCatalogItem) -> FeeCatalogItem:
        self.session.add(item)
        return item


class FeeTemplateRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, template_id: int) -> Optional[FeeTemplate]:
        result = await self.session.execute(select(FeeTemplate).where(FeeTemplate.id == template_id))
        return result.scalars().first()

    async def list_for_school(
        self,
        school_id: int,
        academic_year_id: Optional[int] = None,
        grade_level: Optional[str] = None,
        active_only: bool = False,
    ) -> List[FeeTemplate]:
        query = select(FeeTemplate).where(FeeTemplate.school_id == school_id)
        if academic_year_id is not None:
            query = query.where(FeeTemplate.academic_year_id == academic_year_id)
        if grade_level:
            query = query.where(FeeTemplate.grade_level == grade_level)
        if active_only:
            query = query.where(FeeTemplate.is_active.is_(True))
        result = await self.session.execute(query.order_by(FeeTemplate.grade_level, FeeTemplate.name))
        return list(result.scalars().all())

    async def lines(self, template_id: int) -> List[TemplateLine]:
        bundles = await self.lines_for([template_id])
        return bundles.get(template_id, [])

    async def lines_for(self, template_ids: Iterable[int]) -> Dict[int, List[TemplateLine]]:
        ids = set(template_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(FeeTemplateItem)
            .where(FeeTemplateItem.template_id.in_(ids))
            .order_by(FeeTemplateItem.template_id, FeeTemplateItem.position, FeeTemplateItem.id)
        )
        items = list(result.scalars().all())
        catalog = await FeeCatalogRepository(self.session).get_many(i.fee_catalog_item_id for i in items)

        grouped: Dict[int, List[TemplateLine]] = {template_id: [] for template_id in ids}
        for item in items:
            catalog_item = catalog.get(item.fee_catalog_item_id)
            grouped[item.template_id].append(
                TemplateLine(
                    id=item.id,
                    fee_catalog_item_id=item.fee_catalog_item_id,
                    name=catalog_item.name if catalog_item else "Fee Item",
                    amount=item.amount,
                    is_mandatory=item.is_mandatory,
                    position=item.position,
                )
            )
        return grouped

    async def bundle(self, template_id: int) -> Optional[TemplateBundle]:
        template = await self.get(template_id)
        if template is None:
            return None
        return TemplateBundle(template=template, lines=await self.lines(template_id))

    async def bundles(self, templates: List[FeeTemplate]) -> List[TemplateBundle]:
        lines = await self.lines_for(t.id for t in templates)
        return [TemplateBundle(template=t, lines=lines.get(t.id, [])) for t in templates]

    def add(self, template: FeeTemplate) -> FeeTemplate:
        self.session.add(template)
        return template

    def add_items(self, items: List[FeeTemplateItem]) -> None:
        self.session.add_all(items)

    async def delete_items(self, template_id: int) -> None:
        await self.session.execute(
            delete(FeeTemplateItem).where(FeeTemplateItem.template_id == template_id)
        )

    async def is_billed(self, template_id: int) -> bool:
        result = await self.session.execute(
            select(exists().where(Assessment.template_id == template_id))
        )
        return bool(result.scalar())

    async def delete(self, template: FeeTemplate) -> None:
        await self.delete_items(template.id)
        await self.session.delete(template)

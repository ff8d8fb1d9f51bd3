from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app.exceptions import NotFoundError, StateError, ValidationError
from app.models import School
from app.repositories.assessments import AssessmentRepository
from app.schemas.finance import (
    FeeCatalogItemCreate,
    FeeCatalogItemUpdate,
    FeeTemplateCreate,
    FeeTemplateUpdate,
    TemplateItemInput,
)
from app.services import fee_templates


def template_payload(seed, name="Grade 8 Regular", items=None):
    return FeeTemplateCreate(
        school_id=seed.school.id,
        academic_year_id=seed.year.id,
        name=name,
        grade_level="Grade 8",
        items=items if items is not None else [
            TemplateItemInput(fee_catalog_item_id=seed.tuition.id, amount=Decimal("5500.00")),
            TemplateItemInput(fee_catalog_item_id=seed.misc.id),
            TemplateItemInput(fee_catalog_item_id=seed.books.id),
        ],
    )


async def test_catalog_item_lifecycle(db, seed):
    item = await fee_templates.create_catalog_item(
        db,
        FeeCatalogItemCreate(school_id=seed.school.id, name="  Laboratory Fee ", category="lab", amount=Decimal("350")),
        actor_id=seed.admin.id,
    )
    assert item.name == "Laboratory Fee"
    assert item.amount == Decimal("350.00")

    item = await fee_templates.update_catalog_item(db, item.id, FeeCatalogItemUpdate(amount=Decimal("400")))
    assert item.amount == Decimal("400.00")

    await fee_templates.deactivate_catalog_item(db, item.id)
    active = await fee_templates.list_catalog_items(db, seed.school.id)
    assert item.id not in [i.id for i in active]


async def test_duplicate_catalog_name_rejected(db, seed):
    with pytest.raises(ValidationError):
        await fee_templates.create_catalog_item(
            db, FeeCatalogItemCreate(school_id=seed.school.id, name="Tuition Fee", amount=Decimal("1")),
        )


async def test_create_template_uses_catalog_defaults(db, seed):
    bundle = await fee_templates.create_template(db, template_payload(seed), actor_id=seed.admin.id)

    assert [line.name for line in bundle.lines] == ["Tuition Fee", "Miscellaneous Fee", "Books"]
    assert [line.amount for line in bundle.lines] == [Decimal("5500.00"), Decimal("1200.00"), Decimal("800.00")]
    assert bundle.lines[2].is_mandatory is False
    assert fee_templates.compute_template_total(bundle) == Decimal("7500.00")


async def test_create_template_requires_name_and_items(db, seed):
    with pytest.raises(ValidationError):
        await fee_templates.create_template(db, template_payload(seed, name="   "))
    with pytest.raises(ValidationError):
        await fee_templates.create_template(db, template_payload(seed, items=[]))


async def test_unknown_catalog_item(db, seed):
    with pytest.raises(NotFoundError):
        await fee_templates.create_template(
            db, template_payload(seed, items=[TemplateItemInput(fee_catalog_item_id=9999)])
        )


async def test_catalog_item_of_another_school(db, seed):
    other = School(name="Other School", code="OTH")
    db.add(other)
    await db.commit()
    foreign = await fee_templates.create_catalog_item(
        db, FeeCatalogItemCreate(school_id=other.id, name="Tuition Fee", amount=Decimal("100")),
    )
    with pytest.raises(ValidationError):
        await fee_templates.create_template(
            db, template_payload(seed, items=[TemplateItemInput(fee_catalog_item_id=foreign.id)])
        )


async def test_preview_total(db, seed):
    total = await fee_templates.preview_total(db, seed.school.id, [
        TemplateItemInput(fee_catalog_item_id=seed.tuition.id),
        TemplateItemInput(fee_catalog_item_id=seed.misc.id),
    ])
    assert total == Decimal("6200.00")


async def test_update_replaces_items(db, seed):
    bundle = await fee_templates.update_template(
        db,
        seed.template.id,
        FeeTemplateUpdate(
            name="Grade 7 Regular (revised)",
            items=[TemplateItemInput(fee_catalog_item_id=seed.tuition.id, amount=Decimal("5250"))],
        ),
    )
    assert bundle.template.name == "Grade 7 Regular (revised)"
    assert len(bundle.lines) == 1
    assert fee_templates.compute_template_total(bundle) == Decimal("5250.00")


async def test_clone_is_independent(db, seed):
    clone = await fee_templates.clone_template(db, seed.template.id)
    assert clone.template.name == "Grade 7 Regular - Copy"
    assert fee_templates.compute_template_total(clone) == Decimal("6200.00")

    await fee_templates.update_template(
        db, clone.template.id,
        FeeTemplateUpdate(items=[TemplateItemInput(fee_catalog_item_id=seed.books.id)]),
    )
    source = await fee_templates.get_template(db, seed.template.id)
    assert fee_templates.compute_template_total(source) == Decimal("6200.00")


async def test_clone_with_new_name(db, seed):
    clone = await fee_templates.clone_template(db, seed.template.id, new_name="Grade 7 Scholars")
    assert clone.template.name == "Grade 7 Scholars"


async def test_template_edit_does_not_touch_issued_bills(db, seed, new_statement):
    statement = await new_statement()
    await fee_templates.update_template(
        db, seed.template.id,
        FeeTemplateUpdate(items=[TemplateItemInput(fee_catalog_item_id=seed.tuition.id, amount=Decimal("9000"))]),
    )
    items = await AssessmentRepository(db).items(statement.id)
    assert sum(i.amount for i in items) == Decimal("6200.00")


async def test_billed_template_cannot_be_deleted(db, seed, new_statement):
    await new_statement()
    with pytest.raises(StateError):
        await fee_templates.delete_template(db, seed.template.id)


async def test_delete_unbilled_template(db, seed):
    bundle = await fee_templates.create_template(db, template_payload(seed))
    await fee_templates.delete_template(db, bundle.template.id)
    with pytest.raises(NotFoundError):
        await fee_templates.get_template(db, bundle.template.id)


async def test_update_without_items_keeps_lines(db, seed):
    bundle = await fee_templates.update_template(
        db, seed.template.id, FeeTemplateUpdate(name="Grade 7 Regular 2025", is_active=False),
    )
    assert bundle.template.name == "Grade 7 Regular 2025"
    assert bundle.template.is_active is False
    assert [line.name for line in bundle.lines] == ["Tuition Fee", "Miscellaneous Fee"]
    assert fee_templates.compute_template_total(bundle) == Decimal("6200.00")


async def test_update_with_empty_items_rejected(db, seed):
    with pytest.raises(ValidationError):
        await fee_templates.update_template(db, seed.template.id, FeeTemplateUpdate(items=[]))


async def test_failed_update_keeps_original_lines(db, seed):
    # Skips schema validation so the amount check constraint rejects the insert
    bad_line = TemplateItemInput.model_construct(fee_catalog_item_id=seed.books.id, amount=Decimal("-1"))
    with pytest.raises(IntegrityError):
        await fee_templates.update_template(
            db, seed.template.id,
            FeeTemplateUpdate(
                name="Half written",
                items=[TemplateItemInput(fee_catalog_item_id=seed.tuition.id), bad_line],
            ),
        )

    bundle = await fee_templates.get_template(db, seed.template.id)
    assert bundle.template.name == "Grade 7 Regular"
    assert [line.name for line in bundle.lines] == ["Tuition Fee", "Miscellaneous Fee"]
    assert fee_templates.compute_template_total(bundle) == Decimal("6200.00")

from decimal import Decimal

import pytest
from sqlalchemy import select

from app.exceptions import StateError, ValidationError
from app.models import BalanceCarryForward
from app.repositories.assessments import AssessmentRepository
from app.schemas.finance import AssessmentCreate, FeeTemplateCreate, PaymentCreate, TemplateItemInput
from app.services import academic_years, assessments, fee_templates
from app.services.carry_forward import carry_forward


async def test_carries_outstanding_balance(db, seed, new_statement):
    statement = await new_statement()
    await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("2000")))

    result = await carry_forward(
        db, seed.school.id, seed.year.id, seed.next_year.id, [statement.id], actor_id=seed.admin.id
    )

    assert result.carried == [statement.id]
    assert result.total_carried == Decimal("4200.00")

    repo = AssessmentRepository(db)
    source = await repo.get(statement.id)
    assert source.is_closed is True
    assert source.status == "closed"

    target = await repo.get_open(seed.student.id, seed.next_year.id)
    assert target.template_id is None
    assert target.total_amount == Decimal("4200.00")
    assert target.balance == Decimal("4200.00")
    items = await repo.items(target.id)
    assert [(i.name, i.amount) for i in items] == [("Prior Year Balance (2025-2026)", Decimal("4200.00"))]

    records = (await db.execute(select(BalanceCarryForward))).scalars().all()
    assert len(records) == 1
    assert records[0].from_assessment_id == statement.id
    assert records[0].to_assessment_id == target.id


async def test_adds_to_existing_target_statement(db, seed, new_statement):
    statement = await new_statement()
    await academic_years.activate(db, seed.next_year.id)
    next_year_template = await fee_templates.create_template(
        db,
        FeeTemplateCreate(
            school_id=seed.school.id,
            academic_year_id=seed.next_year.id,
            name="Grade 8 Regular",
            grade_level="Grade 8",
            items=[
                TemplateItemInput(fee_catalog_item_id=seed.tuition.id),
                TemplateItemInput(fee_catalog_item_id=seed.misc.id),
            ],
        ),
    )
    next_year_bill = await assessments.create_assessment(
        db,
        AssessmentCreate(
            student_id=seed.student.id,
            school_id=seed.school.id,
            academic_year_id=seed.next_year.id,
            template_id=next_year_template.template.id,
        ),
    )

    await carry_forward(db, seed.school.id, seed.year.id, seed.next_year.id, [statement.id])

    assert next_year_bill.total_amount == Decimal("12400.00")
    assert next_year_bill.balance == Decimal("12400.00")
    assert len(await AssessmentRepository(db).items(next_year_bill.id)) == 3


async def test_skips_settled_and_already_carried(db, seed, new_statement):
    owing = await new_statement()
    settled = await new_statement(student=seed.students[1])
    await assessments.record_payment(db, settled.id, PaymentCreate(amount=Decimal("6200")))

    first = await carry_forward(db, seed.school.id, seed.year.id, seed.next_year.id, [owing.id, settled.id])
    assert first.carried == [owing.id]
    assert first.skipped == [settled.id]

    again = await carry_forward(db, seed.school.id, seed.year.id, seed.next_year.id, [owing.id])
    assert again.carried == []
    assert again.skipped == [owing.id]
    assert again.total_carried == Decimal("0")


async def test_unknown_statement_is_reported_as_failed(db, seed, new_statement):
    statement = await new_statement()
    result = await carry_forward(db, seed.school.id, seed.year.id, seed.next_year.id, [statement.id, 9999])
    assert result.carried == [statement.id]
    assert result.failed == [9999]


async def test_same_year_rejected(db, seed, new_statement):
    statement = await new_statement()
    with pytest.raises(ValidationError):
        await carry_forward(db, seed.school.id, seed.year.id, seed.year.id, [statement.id])


async def test_archived_target_rejected(db, seed, new_statement):
    statement = await new_statement()
    await academic_years.archive(db, seed.next_year.id)
    with pytest.raises(StateError):
        await carry_forward(db, seed.school.id, seed.year.id, seed.next_year.id, [statement.id])


async def test_carried_statement_cannot_be_deleted(db, seed, new_statement):
    statement = await new_statement()
    await carry_forward(db, seed.school.id, seed.year.id, seed.next_year.id, [statement.id])
    target = await AssessmentRepository(db).get_open(seed.student.id, seed.next_year.id)

    with pytest.raises(StateError):
        await assessments.delete_assessment(db, target.id)


async def test_archived_source_year_rejected(db, seed, new_statement):
    statement = await new_statement()
    await academic_years.archive(db, seed.year.id)

    with pytest.raises(StateError):
        await carry_forward(db, seed.school.id, seed.year.id, seed.next_year.id, [statement.id])
    assert (await AssessmentRepository(db).get(statement.id)).is_closed is False

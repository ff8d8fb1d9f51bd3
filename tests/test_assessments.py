from decimal import Decimal

import pytest
from sqlalchemy import select

from app.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from app.models import Assessment, FinanceAuditLog
from app.repositories.assessments import AssessmentRepository
from app.repositories.discounts import DiscountRepository
from app.schemas.finance import (
    AssessmentCreate,
    DiscountCreate,
    FeeTemplateCreate,
    FeeTemplateUpdate,
    PaymentCreate,
    TemplateItemInput,
)
from app.services import academic_years, assessments, discounts, fee_templates


async def twenty_percent(db, seed, **overrides):
    data = dict(school_id=seed.school.id, name="Academic Scholar", type="percentage", value=Decimal("20"))
    data.update(overrides)
    return await discounts.create_discount(db, DiscountCreate(**data), actor_id=seed.admin.id)


async def test_create_statement_copies_template(db, seed, new_statement):
    statement = await new_statement()

    assert statement.total_amount == Decimal("6200.00")
    assert statement.net_amount == Decimal("6200.00")
    assert statement.balance == Decimal("6200.00")
    assert statement.status == "pending"
    assert statement.assessed_by == seed.admin.id

    items = await AssessmentRepository(db).items(statement.id)
    assert [(i.name, i.amount) for i in items] == [
        ("Tuition Fee", Decimal("5000.00")),
        ("Miscellaneous Fee", Decimal("1200.00")),
    ]


async def test_one_open_statement_per_student_per_year(db, seed, new_statement):
    await new_statement()
    with pytest.raises(ConflictError):
        await new_statement()


async def test_statement_only_for_current_year(db, seed):
    with pytest.raises(StateError):
        await assessments.create_assessment(
            db,
            AssessmentCreate(
                student_id=seed.student.id,
                school_id=seed.school.id,
                academic_year_id=seed.next_year.id,
                template_id=seed.template.id,
            ),
        )


async def test_unknown_student(db, seed):
    with pytest.raises(NotFoundError):
        await assessments.create_assessment(
            db,
            AssessmentCreate(
                student_id=9999, school_id=seed.school.id, academic_year_id=seed.year.id, template_id=seed.template.id,
            ),
        )


async def test_discount_then_payments(db, seed, new_statement):
    statement = await new_statement()
    scholar = await twenty_percent(db, seed)

    await discounts.apply_discount(db, scholar.id, statement.id, actor_id=seed.admin.id)
    assert statement.discount_amount == Decimal("1240.00")
    assert statement.net_amount == Decimal("4960.00")
    assert statement.balance == Decimal("4960.00")

    await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("4960")), actor_id=seed.cashier.id)
    assert statement.balance == Decimal("0.00")
    assert statement.status == "paid"


async def test_overpayment_leaves_negative_balance(db, seed, new_statement):
    statement = await new_statement()
    scholar = await twenty_percent(db, seed)
    await discounts.apply_discount(db, scholar.id, statement.id)

    await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("5200")))

    assert statement.balance == Decimal("-240.00")
    assert statement.status == "overpaid"


async def test_partial_payment_and_void(db, seed, new_statement):
    statement = await new_statement()
    payment = await assessments.record_payment(
        db, statement.id, PaymentCreate(amount=Decimal("2000"), payment_method="bank_transfer", reference_number="BT-0001"),
    )
    assert statement.status == "partial"
    assert statement.total_paid == Decimal("2000.00")

    voided = await assessments.void_payment(db, payment.id, "Bounced transfer", actor_id=seed.admin.id)
    assert voided.status == "voided"
    assert statement.total_paid == Decimal("0.00")
    assert statement.balance == Decimal("6200.00")
    assert statement.status == "pending"

    with pytest.raises(StateError):
        await assessments.void_payment(db, payment.id, "again")


async def test_void_requires_reason(db, seed, new_statement):
    statement = await new_statement()
    payment = await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("100")))
    with pytest.raises(ValidationError):
        await assessments.void_payment(db, payment.id, "   ")


async def test_edit_reprices_discounts(db, seed, new_statement):
    statement = await new_statement()
    scholar = await twenty_percent(db, seed)
    await discounts.apply_discount(db, scholar.id, statement.id)
    await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("1000")))

    with_books = await fee_templates.create_template(
        db,
        FeeTemplateCreate(
            school_id=seed.school.id,
            academic_year_id=seed.year.id,
            name="Grade 7 With Books",
            grade_level="Grade 7",
            items=[
                TemplateItemInput(fee_catalog_item_id=seed.tuition.id),
                TemplateItemInput(fee_catalog_item_id=seed.misc.id),
                TemplateItemInput(fee_catalog_item_id=seed.books.id),
            ],
        ),
    )
    edited = await assessments.edit_assessment(db, statement.id, with_books.template.id, actor_id=seed.admin.id)

    assert edited.template_id == with_books.template.id
    assert edited.total_amount == Decimal("7000.00")
    assert edited.discount_amount == Decimal("1400.00")
    assert edited.net_amount == Decimal("5600.00")
    assert edited.balance == Decimal("4600.00")
    assert edited.status == "partial"

    items = await AssessmentRepository(db).items(statement.id)
    assert len(items) == 3
    applications = await DiscountRepository(db).applications_for(statement.id)
    assert applications[0].applied_amount == Decimal("1400.00")


async def test_edit_keeps_fixed_discount(db, seed, new_statement):
    statement = await new_statement()
    sibling = await discounts.create_discount(
        db, DiscountCreate(school_id=seed.school.id, name="Sibling", type="fixed", value=Decimal("500")),
    )
    await discounts.apply_discount(db, sibling.id, statement.id)
    clone = await fee_templates.clone_template(db, seed.template.id)

    edited = await assessments.edit_assessment(db, statement.id, clone.template.id)
    assert edited.discount_amount == Decimal("500.00")
    assert edited.net_amount == Decimal("5700.00")


async def test_edit_to_same_template_is_noop(db, seed, new_statement):
    statement = await new_statement()
    edited = await assessments.edit_assessment(db, statement.id, seed.template.id)
    assert edited.total_amount == Decimal("6200.00")


async def test_closed_statement_is_frozen(db, seed, new_statement):
    statement = await new_statement()
    scholar = await twenty_percent(db, seed)
    clone = await fee_templates.clone_template(db, seed.template.id)

    closed = await assessments.close_assessment(db, statement.id, actor_id=seed.admin.id)
    assert closed.is_closed is True
    assert closed.status == "closed"

    with pytest.raises(StateError):
        await assessments.edit_assessment(db, statement.id, clone.template.id)
    with pytest.raises(StateError):
        await discounts.apply_discount(db, scholar.id, statement.id)
    with pytest.raises(StateError):
        await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("10")))
    with pytest.raises(StateError):
        await assessments.delete_assessment(db, statement.id)
    with pytest.raises(StateError):
        await assessments.close_assessment(db, statement.id)


async def test_closing_frees_the_year_for_a_new_statement(db, seed, new_statement):
    first = await new_statement()
    await assessments.close_assessment(db, first.id)
    second = await new_statement()
    assert second.id != first.id


async def test_paid_statement_cannot_be_deleted(db, seed, new_statement):
    statement = await new_statement()
    await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("500")))

    with pytest.raises(StateError) as excinfo:
        await assessments.delete_assessment(db, statement.id)
    assert "Close it instead" in str(excinfo.value)


async def test_delete_unpaid_statement_cascades(db, seed, new_statement):
    statement = await new_statement()
    scholar = await twenty_percent(db, seed)
    await discounts.apply_discount(db, scholar.id, statement.id)

    await assessments.delete_assessment(db, statement.id, actor_id=seed.admin.id)

    repo = AssessmentRepository(db)
    assert await repo.get(statement.id) is None
    assert await repo.items(statement.id) == []
    assert await DiscountRepository(db).applications_for(statement.id) == []


async def test_statement_detail(db, seed, new_statement):
    statement = await new_statement()
    await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("1500")))

    detail = await assessments.get_statement(db, statement.id)
    assert detail.assessment.id == statement.id
    assert len(detail.items) == 2
    assert [p.amount for p in detail.payments] == [Decimal("1500.00")]


async def test_mutations_are_audited(db, seed, new_statement):
    statement = await new_statement()
    await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("100")), actor_id=seed.cashier.id)

    result = await db.execute(
        select(FinanceAuditLog).where(FinanceAuditLog.school_id == seed.school.id).order_by(FinanceAuditLog.id)
    )
    actions = [(entry.action, entry.table_name) for entry in result.scalars().all()]
    assert ("create", "student_assessments") in actions
    assert ("payment", "payments") in actions


async def test_list_statements_by_status(db, seed, new_statement):
    first = await new_statement()
    await new_statement(student=seed.students[1])
    await assessments.record_payment(db, first.id, PaymentCreate(amount=Decimal("6200")))

    paid = await assessments.list_assessments(db, seed.school.id, status="paid")
    assert [a.id for a in paid] == [first.id]
    assert len(await assessments.list_assessments(db, seed.school.id, academic_year_id=seed.year.id)) == 2


async def test_statement_of_archived_year_cannot_be_closed(db, seed, new_statement):
    statement = await new_statement()
    await academic_years.archive(db, seed.year.id, actor_id=seed.admin.id)

    with pytest.raises(StateError):
        await assessments.close_assessment(db, statement.id)
    assert statement.is_closed is False
    assert statement.status == "pending"


async def test_concurrent_duplicate_blocked_by_index(db, seed, session_factory, monkeypatch):
    lookup = AssessmentRepository.get_open

    async def get_open_then_race(self, student_id, academic_year_id):
        found = await lookup(self, student_id, academic_year_id)
        # Another request issues a statement after the lookup came back empty
        async with session_factory() as other:
            other.add(Assessment(
                student_id=student_id, school_id=seed.school.id, academic_year_id=academic_year_id,
                status="pending", is_closed=False,
            ))
            await other.commit()
        return found

    monkeypatch.setattr(AssessmentRepository, "get_open", get_open_then_race)

    with pytest.raises(ConflictError):
        await assessments.create_assessment(
            db,
            AssessmentCreate(
                student_id=seed.student.id, school_id=seed.school.id,
                academic_year_id=seed.year.id, template_id=seed.template.id,
            ),
        )

    async with session_factory() as check:
        rows = (await check.execute(select(Assessment))).scalars().all()
        assert len(rows) == 1
        assert rows[0].template_id is None


async def test_stale_statement_write_conflicts(db, seed, session_factory, new_statement):
    statement = await new_statement()

    async with session_factory() as other:
        await assessments.record_payment(other, statement.id, PaymentCreate(amount=Decimal("1000")))

    # This session still holds the statement as it was before the other payment
    with pytest.raises(ConflictError):
        await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("500")))

    async with session_factory() as check:
        fresh = await AssessmentRepository(check).get(statement.id)
        assert fresh.total_paid == Decimal("1000.00")
        assert fresh.balance == Decimal("5200.00")
        assert len(await AssessmentRepository(check).payments(statement.id)) == 1


async def test_template_of_another_year_rejected(db, seed, new_statement):
    next_year_template = await fee_templates.create_template(
        db,
        FeeTemplateCreate(
            school_id=seed.school.id,
            academic_year_id=seed.next_year.id,
            name="Grade 7 Regular",
            grade_level="Grade 7",
            items=[TemplateItemInput(fee_catalog_item_id=seed.tuition.id)],
        ),
    )
    with pytest.raises(ValidationError):
        await new_statement(template=next_year_template.template)

    statement = await new_statement()
    with pytest.raises(ValidationError):
        await assessments.edit_assessment(db, statement.id, next_year_template.template.id)


async def test_inactive_template_rejected(db, seed, new_statement):
    await fee_templates.update_template(db, seed.template.id, FeeTemplateUpdate(is_active=False))
    with pytest.raises(ValidationError):
        await new_statement()

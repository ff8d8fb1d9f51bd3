from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from app.models import PaymentPlan, PaymentPlanInstallment
from app.schemas.finance import FeeCatalogItemUpdate, PaymentCreate, PaymentPlanCreate
from app.services import assessments, fee_templates, payment_plans
from app.services.payment_plans import build_schedule


def monthly_plan(**overrides):
    data = dict(plan_type="monthly", total_installments=4, start_date=date(2025, 7, 1), grace_period_days=7)
    data.update(overrides)
    return PaymentPlanCreate(**data)


def test_schedule_sums_to_total_and_clamps_month_ends():
    schedule = build_schedule("monthly", Decimal("6200"), 3, date(2025, 1, 31))
    assert schedule == [
        (1, date(2025, 1, 31), Decimal("2066.66")),
        (2, date(2025, 2, 28), Decimal("2066.66")),
        (3, date(2025, 3, 31), Decimal("2066.68")),
    ]
    assert sum(amount for _, _, amount in schedule) == Decimal("6200.00")


def test_quarterly_and_semestral_spacing():
    quarterly = build_schedule("quarterly", Decimal("1000"), 4, date(2025, 6, 15))
    assert [due for _, due, _ in quarterly] == [
        date(2025, 6, 15), date(2025, 9, 15), date(2025, 12, 15), date(2026, 3, 15),
    ]
    assert {amount for _, _, amount in quarterly} == {Decimal("250.00")}

    semestral = build_schedule("semestral", Decimal("1000"), 2, date(2025, 6, 15))
    assert [due for _, due, _ in semestral] == [date(2025, 6, 15), date(2025, 12, 15)]


async def test_plan_covers_outstanding_balance(db, seed, new_statement):
    statement = await new_statement()
    await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("200")))

    schedule = await payment_plans.create_plan(db, statement.id, monthly_plan(), actor_id=seed.cashier.id)

    assert schedule.plan.scheduled_amount == Decimal("6000.00")
    assert schedule.plan.created_by == seed.cashier.id
    assert [line.amount for line in schedule.installments] == [Decimal("1500.00")] * 4
    assert [line.due_date for line in schedule.installments] == [
        date(2025, 7, 1), date(2025, 8, 1), date(2025, 9, 1), date(2025, 10, 1),
    ]
    # The payment made before the plan does not count toward it
    assert schedule.paid_toward_plan == Decimal("0")
    assert schedule.outstanding == Decimal("6000.00")


async def test_payments_fill_installments_in_order(db, seed, new_statement):
    statement = await new_statement()
    plan = (await payment_plans.create_plan(db, statement.id, monthly_plan(late_fee_amount=Decimal("150")))).plan
    await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("2000")))

    schedule = await payment_plans.get_plan(db, plan.id, as_of=date(2025, 7, 5))
    assert [line.status for line in schedule.installments] == ["paid", "partial", "pending", "pending"]
    assert schedule.installments[1].paid_amount == Decimal("450.00")
    assert schedule.outstanding == Decimal("4200.00")
    assert schedule.late_fees_due == Decimal("0")

    # Second installment due 1 Aug, overdue once the 7 day grace period ends
    schedule = await payment_plans.get_plan(db, plan.id, as_of=date(2025, 8, 10))
    assert [line.status for line in schedule.installments] == ["paid", "overdue", "pending", "pending"]
    assert schedule.installments[1].late_fee == Decimal("150.00")
    assert schedule.late_fees_due == Decimal("150.00")


async def test_percentage_late_fee(db, seed, new_statement):
    statement = await new_statement()
    await payment_plans.create_plan(
        db, statement.id,
        monthly_plan(total_installments=2, grace_period_days=0, late_fee_type="percentage", late_fee_amount=Decimal("5")),
    )
    schedule = await payment_plans.get_plan_for_assessment(db, statement.id, as_of=date(2025, 7, 2))
    assert [line.status for line in schedule.installments] == ["overdue", "pending"]
    assert schedule.late_fees_due == Decimal("155.00")


async def test_voided_payment_reopens_installment(db, seed, new_statement):
    statement = await new_statement()
    await payment_plans.create_plan(db, statement.id, monthly_plan())
    payment = await assessments.record_payment(db, statement.id, PaymentCreate(amount=Decimal("1550")))
    await assessments.void_payment(db, payment.id, "Bounced check")

    schedule = await payment_plans.get_plan_for_assessment(db, statement.id, as_of=date(2025, 7, 1))
    assert schedule.installments[0].status == "pending"
    assert schedule.paid_toward_plan == Decimal("0")


async def test_only_one_plan_per_statement(db, seed, new_statement):
    statement = await new_statement()
    await payment_plans.create_plan(db, statement.id, monthly_plan())
    with pytest.raises(ConflictError):
        await payment_plans.create_plan(db, statement.id, monthly_plan(plan_type="quarterly"))


async def test_settled_or_closed_statement_rejected(db, seed, new_statement):
    settled = await new_statement()
    await assessments.record_payment(db, settled.id, PaymentCreate(amount=Decimal("6200")))
    with pytest.raises(StateError):
        await payment_plans.create_plan(db, settled.id, monthly_plan())

    closed = await new_statement(student=seed.students[1])
    await assessments.close_assessment(db, closed.id)
    with pytest.raises(StateError):
        await payment_plans.create_plan(db, closed.id, monthly_plan())


async def test_fees_without_installments_block_plan(db, seed, new_statement):
    statement = await new_statement()
    await fee_templates.update_catalog_item(db, seed.misc.id, FeeCatalogItemUpdate(allow_installments=False))

    with pytest.raises(ValidationError) as excinfo:
        await payment_plans.create_plan(db, statement.id, monthly_plan())
    assert excinfo.value.details == {"items": ["Miscellaneous Fee"]}


async def test_percentage_late_fee_over_100_rejected(db, seed, new_statement):
    statement = await new_statement()
    with pytest.raises(ValidationError):
        await payment_plans.create_plan(
            db, statement.id, monthly_plan(late_fee_type="percentage", late_fee_amount=Decimal("150")),
        )


async def test_cancel_then_reschedule(db, seed, new_statement):
    statement = await new_statement()
    plan = (await payment_plans.create_plan(db, statement.id, monthly_plan())).plan

    await payment_plans.cancel_plan(db, plan.id, actor_id=seed.admin.id)
    with pytest.raises(NotFoundError):
        await payment_plans.get_plan_for_assessment(db, statement.id)

    schedule = await payment_plans.create_plan(db, statement.id, monthly_plan(total_installments=2))
    assert len(schedule.installments) == 2


async def test_deleting_statement_removes_plan(db, seed, new_statement):
    statement = await new_statement()
    await payment_plans.create_plan(db, statement.id, monthly_plan())

    await assessments.delete_assessment(db, statement.id)

    assert (await db.execute(select(PaymentPlan))).scalars().all() == []
    assert (await db.execute(select(PaymentPlanInstallment))).scalars().all() == []

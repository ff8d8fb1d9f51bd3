from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, condecimal
from enum import Enum


PositiveMoney = condecimal(max_digits=12, decimal_places=2, gt=0)
NonNegativeMoney = condecimal(max_digits=12, decimal_places=2, ge=0)


class FeeCategoryEnum(str, Enum):
    tuition = "tuition"
    misc = "misc"
    books = "books"
    uniform = "uniform"
    lab = "lab"
    id = "id"
    other = "other"


class AssessmentStatusEnum(str, Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"
    overpaid = "overpaid"
    closed = "closed"


class DiscountTypeEnum(str, Enum):
    percentage = "percentage"
    fixed = "fixed"
    coverage = "coverage"


class StudentDiscountStatusEnum(str, Enum):
    pending = "pending"
    approved = "approved"


class PaymentMethodEnum(str, Enum):
    cash = "cash"
    bank_transfer = "bank_transfer"
    check = "check"
    online = "online"


class PlanTypeEnum(str, Enum):
    monthly = "monthly"
    quarterly = "quarterly"
    semestral = "semestral"
    custom = "custom"


class LateFeeTypeEnum(str, Enum):
    fixed = "fixed"
    percentage = "percentage"


class InstallmentStatusEnum(str, Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"


# Fee Catalog schemas
class FeeCatalogItemBase(BaseModel):
    name: str = Field(..., max_length=100)
    description: Optional[str] = None
    category: FeeCategoryEnum = FeeCategoryEnum.other
    amount: NonNegativeMoney
    is_mandatory: bool = True
    is_recurring: bool = False
    allow_installments: bool = True


class FeeCatalogItemCreate(FeeCatalogItemBase):
    school_id: int


class FeeCatalogItemUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    category: Optional[FeeCategoryEnum] = None
    amount: Optional[NonNegativeMoney] = None
    is_mandatory: Optional[bool] = None
    is_recurring: Optional[bool] = None
    allow_installments: Optional[bool] = None
    is_active: Optional[bool] = None


class FeeCatalogItemInDB(FeeCatalogItemBase):
    id: int
    school_id: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# Fee Template schemas
class TemplateItemInput(BaseModel):
    fee_catalog_item_id: int
    # Falls back to the catalog amount / flag when omitted
    amount: Optional[NonNegativeMoney] = None
    is_mandatory: Optional[bool] = None


class FeeTemplateCreate(BaseModel):
    school_id: int
    academic_year_id: int
    name: str = Field(..., max_length=150)
    grade_level: str = Field(..., max_length=50)
    strand: Optional[str] = Field(None, max_length=50)
    items: List[TemplateItemInput]


class FeeTemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=150)
    grade_level: Optional[str] = Field(None, max_length=50)
    strand: Optional[str] = Field(None, max_length=50)
    is_active: Optional[bool] = None
    # Lines are replaced only when given
    items: Optional[List[TemplateItemInput]] = None


class FeeTemplateClone(BaseModel):
    new_name: Optional[str] = Field(None, max_length=150)


class FeeTemplateItemInDB(BaseModel):
    id: int
    fee_catalog_item_id: int
    name: str
    amount: Decimal
    is_mandatory: bool
    position: int


class FeeTemplateInDB(BaseModel):
    id: int
    school_id: int
    academic_year_id: int
    name: str
    grade_level: str
    strand: Optional[str] = None
    is_active: bool
    items: List[FeeTemplateItemInDB] = []
    total_amount: Decimal


class TemplatePreviewRequest(BaseModel):
    items: List[TemplateItemInput]


class TemplatePreview(BaseModel):
    total_amount: Decimal


# Assessment schemas
class AssessmentCreate(BaseModel):
    student_id: int
    school_id: int
    academic_year_id: int
    template_id: int


class AssessmentEdit(BaseModel):
    template_id: int


class AssessmentItemInDB(BaseModel):
    id: int
    fee_catalog_item_id: Optional[int] = None
    name: str
    amount: Decimal
    is_mandatory: bool

    model_config = ConfigDict(from_attributes=True)


class AssessmentInDB(BaseModel):
    id: int
    student_id: int
    school_id: int
    academic_year_id: int
    template_id: Optional[int] = None
    total_amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    total_paid: Decimal
    balance: Decimal
    status: AssessmentStatusEnum
    is_closed: bool
    assessed_by: Optional[int] = None
    assessed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Discount schemas
class DiscountBase(BaseModel):
    name: str = Field(..., max_length=100)
    type: DiscountTypeEnum
    value: NonNegativeMoney
    max_cap: Optional[PositiveMoney] = None
    applies_to: str = "all"
    stackable: bool = False
    requires_approval: bool = False


class DiscountCreate(DiscountBase):
    school_id: int


class DiscountUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    type: Optional[DiscountTypeEnum] = None
    value: Optional[NonNegativeMoney] = None
    max_cap: Optional[PositiveMoney] = None
    applies_to: Optional[str] = None
    stackable: Optional[bool] = None
    requires_approval: Optional[bool] = None
    is_active: Optional[bool] = None


class DiscountInDB(DiscountBase):
    id: int
    school_id: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class DiscountApply(BaseModel):
    discount_id: int


class DiscountPreview(BaseModel):
    discount_id: int
    assessment_id: int
    amount: Decimal


class StudentDiscountInDB(BaseModel):
    id: int
    student_id: int
    discount_id: int
    assessment_id: int
    applied_amount: Decimal
    status: StudentDiscountStatusEnum
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Payment schemas
class PaymentCreate(BaseModel):
    amount: PositiveMoney
    payment_method: PaymentMethodEnum = PaymentMethodEnum.cash
    reference_number: Optional[str] = Field(None, max_length=255)


class PaymentVoid(BaseModel):
    reason: str


class PaymentInDB(BaseModel):
    id: int
    assessment_id: int
    student_id: int
    amount: Decimal
    payment_method: str
    reference_number: Optional[str] = None
    status: str
    received_by: Optional[int] = None
    payment_date: Optional[datetime] = None
    void_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# Payment plan schemas
class PaymentPlanCreate(BaseModel):
    plan_type: PlanTypeEnum = PlanTypeEnum.monthly
    total_installments: int = Field(4, ge=1, le=36)
    # Defaults to today
    start_date: Optional[date] = None
    grace_period_days: int = Field(7, ge=0, le=90)
    late_fee_amount: NonNegativeMoney = Decimal("0")
    late_fee_type: LateFeeTypeEnum = LateFeeTypeEnum.fixed


class PaymentPlanInDB(BaseModel):
    id: int
    school_id: int
    student_id: int
    assessment_id: int
    plan_type: PlanTypeEnum
    total_installments: int
    scheduled_amount: Decimal
    start_date: date
    grace_period_days: int
    late_fee_amount: Decimal
    late_fee_type: LateFeeTypeEnum
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class InstallmentOut(BaseModel):
    installment_number: int
    due_date: date
    amount: Decimal
    paid_amount: Decimal
    status: InstallmentStatusEnum
    late_fee: Decimal

    model_config = ConfigDict(from_attributes=True)


class PaymentPlanSchedule(BaseModel):
    plan: PaymentPlanInDB
    installments: List[InstallmentOut]
    paid_toward_plan: Decimal
    outstanding: Decimal
    late_fees_due: Decimal

    model_config = ConfigDict(from_attributes=True)


# Statement (assessment with its children)
class StatementDetail(BaseModel):
    assessment: AssessmentInDB
    items: List[AssessmentItemInDB]
    discounts: List[StudentDiscountInDB]
    payments: List[PaymentInDB]


# Year-end carry forward
class CarryForwardRequest(BaseModel):
    school_id: int
    from_academic_year_id: int
    to_academic_year_id: int
    assessment_ids: List[int] = Field(..., min_length=1)


class CarryForwardResult(BaseModel):
    carried: List[int] = []
    skipped: List[int] = []
    failed: List[int] = []
    total_carried: Decimal = Decimal("0")

# Import all models to ensure they're registered with SQLAlchemy
from app.database import Base
from app.models.users import User, Role, Student
from app.models.schools import School, Subject
from app.models.academics import AcademicYear, StudentGrade, GradeSnapshot
from app.models.finance import (
    FeeCatalogItem, FeeTemplate, FeeTemplateItem,
    Assessment, AssessmentItem, Discount, StudentDiscount,
    Payment, PaymentPlan, PaymentPlanInstallment, BalanceCarryForward, FinanceAuditLog,
)

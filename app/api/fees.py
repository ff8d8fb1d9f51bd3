from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.middleware.authentication import (
    allow_admin,
    allow_finance_staff,
    validate_school_access,
)
from app.models.users import User
from app.repositories.fees import TemplateBundle
from app.schemas.finance import (
    FeeCatalogItemCreate,
    FeeCatalogItemInDB,
    FeeCatalogItemUpdate,
    FeeTemplateClone,
    FeeTemplateCreate,
    FeeTemplateInDB,
    FeeTemplateItemInDB,
    FeeTemplateUpdate,
    TemplatePreview,
    TemplatePreviewRequest,
)
from app.services import fee_templates

router = APIRouter()


def template_out(bundle: TemplateBundle) -> FeeTemplateInDB:
    template = bundle.template
    return FeeTemplateInDB(
        id=template.id,
        school_id=template.school_id,
        academic_year_id=template.academic_year_id,
        name=template.name,
        grade_level=template.grade_level,
        strand=template.strand,
        is_active=template.is_active,
        items=[
            FeeTemplateItemInDB(
                id=line.id,
                fee_catalog_item_id=line.fee_catalog_item_id,
                name=line.name,
                amount=line.amount,
                is_mandatory=line.is_mandatory,
                position=line.position,
            )
            for line in bundle.lines
        ],
        total_amount=fee_templates.compute_template_total(bundle),
    )


# Fee catalog endpoints
@router.post("/fee-catalog", response_model=FeeCatalogItemInDB, status_code=status.HTTP_201_CREATED)
async def create_fee_catalog_item(
    item_data: FeeCatalogItemCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Add a fee to the school's catalog.
    """
    validate_school_access(current_user, item_data.school_id)
    return await fee_templates.create_catalog_item(db, item_data, actor_id=current_user.id)


@router.get("/fee-catalog", response_model=List[FeeCatalogItemInDB])
async def get_fee_catalog(
    school_id: Optional[int] = Query(None),
    active_only: bool = True,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    school_id = school_id or current_user.school_id
    validate_school_access(current_user, school_id)
    return await fee_templates.list_catalog_items(db, school_id, active_only=active_only)


@router.put("/fee-catalog/{item_id}", response_model=FeeCatalogItemInDB)
async def update_fee_catalog_item(
    item_data: FeeCatalogItemUpdate,
    item_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    item = await fee_templates.get_catalog_item(db, item_id)
    validate_school_access(current_user, item.school_id)
    return await fee_templates.update_catalog_item(db, item_id, item_data, actor_id=current_user.id)


@router.delete("/fee-catalog/{item_id}", response_model=FeeCatalogItemInDB)
async def deactivate_fee_catalog_item(
    item_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Retire a catalog fee. Existing templates and statements keep their lines.
    """
    item = await fee_templates.get_catalog_item(db, item_id)
    validate_school_access(current_user, item.school_id)
    return await fee_templates.deactivate_catalog_item(db, item_id, actor_id=current_user.id)


# Fee template endpoints
@router.post("/fee-templates/preview", response_model=TemplatePreview)
async def preview_fee_template(
    preview_data: TemplatePreviewRequest,
    school_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    """
    Total a selection of catalog fees without saving a template.
    """
    school_id = school_id or current_user.school_id
    validate_school_access(current_user, school_id)
    total = await fee_templates.preview_total(db, school_id, preview_data.items)
    return TemplatePreview(total_amount=total)


@router.post("/fee-templates", response_model=FeeTemplateInDB, status_code=status.HTTP_201_CREATED)
async def create_fee_template(
    template_data: FeeTemplateCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Create a fee template for a grade level (and strand) in an academic year.
    """
    validate_school_access(current_user, template_data.school_id)
    bundle = await fee_templates.create_template(db, template_data, actor_id=current_user.id)
    return template_out(bundle)


@router.get("/fee-templates", response_model=List[FeeTemplateInDB])
async def get_fee_templates(
    school_id: Optional[int] = Query(None),
    academic_year_id: Optional[int] = Query(None),
    grade_level: Optional[str] = Query(None),
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    school_id = school_id or current_user.school_id
    validate_school_access(current_user, school_id)
    bundles = await fee_templates.list_templates(
        db, school_id, academic_year_id=academic_year_id, grade_level=grade_level, active_only=active_only
    )
    return [template_out(bundle) for bundle in bundles]


@router.get("/fee-templates/{template_id}", response_model=FeeTemplateInDB)
async def get_fee_template(
    template_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_finance_staff)
):
    bundle = await fee_templates.get_template(db, template_id)
    validate_school_access(current_user, bundle.template.school_id)
    return template_out(bundle)


@router.put("/fee-templates/{template_id}", response_model=FeeTemplateInDB)
async def update_fee_template(
    template_data: FeeTemplateUpdate,
    template_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    """
    Update a template; fee lines are replaced when given. Statements already issued are unaffected.
    """
    bundle = await fee_templates.get_template(db, template_id)
    validate_school_access(current_user, bundle.template.school_id)
    bundle = await fee_templates.update_template(db, template_id, template_data, actor_id=current_user.id)
    return template_out(bundle)


@router.post(
    "/fee-templates/{template_id}/clone",
    response_model=FeeTemplateInDB,
    status_code=status.HTTP_201_CREATED,
)
async def clone_fee_template(
    clone_data: FeeTemplateClone,
    template_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    bundle = await fee_templates.get_template(db, template_id)
    validate_school_access(current_user, bundle.template.school_id)
    bundle = await fee_templates.clone_template(
        db, template_id, new_name=clone_data.new_name, actor_id=current_user.id
    )
    return template_out(bundle)


@router.delete("/fee-templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_fee_template(
    template_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(allow_admin)
):
    bundle = await fee_templates.get_template(db, template_id)
    validate_school_access(current_user, bundle.template.school_id)
    await fee_templates.delete_template(db, template_id, actor_id=current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database.connection import get_db
from app.dependencies.auth import require_admin
from app.schemas.category import (
    CategoryCreate,
    CategoryResponse,
    CategoryUpdate,
    SpecificationCreate,
    SpecificationResponse,
)
from app.services.catalog_service import (
    add_specification,
    create_category,
    delete_specification,
    get_category_by_slug,
    list_categories,
    update_category,
)

router = APIRouter(prefix="/categories", tags=["Categories & Specifications"])


# CREATE
@router.post("/", response_model=CategoryResponse, dependencies=[Depends(require_admin)])
def create(data: CategoryCreate, db: Session = Depends(get_db)):
    return create_category(db, data)


# LIST
@router.get("/", response_model=list[CategoryResponse])
def list_all(db: Session = Depends(get_db)):
    return list_categories(db)


# GET BY SLUG
@router.get("/{slug}", response_model=CategoryResponse)
def get(slug: str, db: Session = Depends(get_db)):
    category = get_category_by_slug(db, slug)
    if not category or not category.is_active:
        raise HTTPException(404, "Category not found")
    return category


# UPDATE
@router.put("/{category_id}", response_model=CategoryResponse, dependencies=[Depends(require_admin)])
def update(category_id: int, data: CategoryUpdate, db: Session = Depends(get_db)):
    category = update_category(db, category_id, data)
    if not category:
        raise HTTPException(404, "Category not found")
    return category


# SPECIFICATIONS
@router.post(
    "/{category_id}/specifications",
    response_model=SpecificationResponse,
    dependencies=[Depends(require_admin)],
)
def create_specification(category_id: int, data: SpecificationCreate, db: Session = Depends(get_db)):
    return add_specification(db, category_id, data)


@router.delete("/{category_id}/specifications/{specification_id}", dependencies=[Depends(require_admin)])
def remove_specification(category_id: int, specification_id: int, db: Session = Depends(get_db)):
    if not delete_specification(db, category_id, specification_id):
        raise HTTPException(404, "Specification not found")
    return {"message": "Specification deleted"}

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo import ASCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from slugify import slugify

from database import create_document, get_db, parse_object_id, serialize_doc, utcnow
from errors import ErrorKind, StoreError, not_found
from schemas import Category
from security import require_admin

router = APIRouter(prefix="/api/categories", tags=["categories"])

PARENT_FIELDS = {"name": 1, "slug": 1}


class CategoryPayload(BaseModel):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    parent: Optional[str] = None
    is_active: bool = True
    order: int = 0


class CategoryUpdatePayload(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    parent: Optional[str] = None
    is_active: Optional[bool] = None
    order: Optional[int] = None


def _with_parent(db: Database, category: dict) -> dict:
    if category.get("parent"):
        category["parent"] = db["category"].find_one({"_id": category["parent"]}, PARENT_FIELDS) or category["parent"]
    return category


def _ensure_unique(db: Database, name: Optional[str], slug: Optional[str], exclude=None):
    clauses = []
    if name:
        clauses.append({"name": name})
    if slug:
        clauses.append({"slug": slug})
    if not clauses:
        return
    query = {"$or": clauses}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    if db["category"].find_one(query):
        raise StoreError(ErrorKind.CONFLICT, "Category name or slug already exists")


def _parent_id(db: Database, parent: str):
    parent_id = parse_object_id(parent)
    if not db["category"].find_one({"_id": parent_id}):
        raise not_found("Parent category")
    return parent_id


@router.get("")
def list_categories(db: Database = Depends(get_db)):
    categories = [_with_parent(db, c) for c in db["category"].find({"is_active": True}).sort("order", ASCENDING)]
    return {"success": True, "categories": serialize_doc(categories)}


@router.get("/{slug}")
def get_category(slug: str, db: Database = Depends(get_db)):
    category = db["category"].find_one({"slug": slug.lower(), "is_active": True})
    if not category:
        raise not_found("Category")
    subcategories = db["category"].find({"parent": category["_id"], "is_active": True}).sort("order", ASCENDING)
    return {
        "success": True,
        "category": serialize_doc(_with_parent(db, category)),
        "subcategories": serialize_doc(list(subcategories)),
    }


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
def create_category(payload: CategoryPayload, db: Database = Depends(get_db)):
    slug = slugify(payload.slug or payload.name)
    _ensure_unique(db, payload.name, slug)
    category = Category(
        name=payload.name,
        slug=slug,
        description=payload.description,
        image=payload.image,
        parent=_parent_id(db, payload.parent) if payload.parent else None,
        is_active=payload.is_active,
        order=payload.order,
    )
    try:
        category_id = create_document(db, "category", category)
    except DuplicateKeyError:
        raise StoreError(ErrorKind.CONFLICT, "Category name or slug already exists")
    return {"success": True, "category": serialize_doc(db["category"].find_one({"_id": parse_object_id(category_id)}))}


@router.put("/{category_id}", dependencies=[Depends(require_admin)])
def update_category(category_id: str, payload: CategoryUpdatePayload, db: Database = Depends(get_db)):
    oid = parse_object_id(category_id)
    update = payload.model_dump(exclude_none=True)
    if "slug" in update:
        update["slug"] = slugify(update["slug"])
    if "parent" in update:
        if update["parent"] == category_id:
            raise StoreError(ErrorKind.BAD_REQUEST, "A category cannot be its own parent")
        update["parent"] = _parent_id(db, update["parent"])
    _ensure_unique(db, update.get("name"), update.get("slug"), exclude=oid)
    update["updated_at"] = utcnow()

    res = db["category"].update_one({"_id": oid}, {"$set": update})
    if res.matched_count == 0:
        raise not_found("Category")
    return {"success": True, "category": serialize_doc(db["category"].find_one({"_id": oid}))}


@router.delete("/{category_id}", dependencies=[Depends(require_admin)])
def delete_category(category_id: str, db: Database = Depends(get_db)):
    res = db["category"].delete_one({"_id": parse_object_id(category_id)})
    if res.deleted_count == 0:
        raise not_found("Category")
    return {"success": True, "message": "Category deleted"}

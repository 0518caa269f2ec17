import math
import re
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import create_document, get_db, get_documents, parse_object_id, serialize_doc, utcnow
from errors import ErrorKind, StoreError, not_found
from schemas import Material, Metal, Product, ProductImage
from security import get_optional_user, is_admin, require_admin

router = APIRouter(prefix="/api/products", tags=["products"])

SORTABLE_FIELDS = {"price", "created_at", "rating", "name", "sold_count", "stock"}
CATEGORY_FIELDS = {"name": 1, "slug": 1}


class ProductPayload(BaseModel):
    name: str = Field(..., min_length=1)
    description: str
    short_description: Optional[str] = None
    price: float = Field(..., ge=0)
    compare_at_price: Optional[float] = Field(None, ge=0)
    sku: Optional[str] = None
    category: str
    images: List[ProductImage] = []
    material: Optional[Material] = None
    metal: Optional[Metal] = None
    tags: List[str] = []
    stock: int = Field(0, ge=0)
    low_stock_threshold: int = Field(5, ge=0)
    is_featured: bool = False
    is_active: bool = True


class ProductUpdatePayload(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    compare_at_price: Optional[float] = Field(None, ge=0)
    sku: Optional[str] = None
    category: Optional[str] = None
    images: Optional[List[ProductImage]] = None
    material: Optional[Material] = None
    metal: Optional[Metal] = None
    tags: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None


def _to_float(value: Optional[str]) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _to_int(value: Optional[str], default: int, minimum: int = 1, maximum: int = 100) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(minimum, min(maximum, number))


def _sort_spec(sort: Optional[str]):
    field = (sort or "-created_at").strip()
    direction = DESCENDING if field.startswith("-") else ASCENDING
    field = field.lstrip("-+")
    if field not in SORTABLE_FIELDS:
        return [("created_at", DESCENDING)]
    return [(field, direction)]


def _category_id(db: Database, value: str) -> Optional[ObjectId]:
    if len(value) == 24 and ObjectId.is_valid(value):
        return ObjectId(value)
    category = db["category"].find_one({"slug": value.lower()})
    return category["_id"] if category else None


def _require_category(db: Database, value: str) -> ObjectId:
    category_id = _category_id(db, value)
    if category_id is None or not db["category"].find_one({"_id": category_id}):
        raise StoreError(ErrorKind.BAD_REQUEST, f"Category {value} does not exist")
    return category_id


def build_catalog_filter(db: Database, category=None, material=None, min_price=None, max_price=None,
                         search=None, include_inactive=False) -> dict:
    query = {} if include_inactive else {"is_active": True}
    if category:
        # unknown category matches nothing rather than everything
        query["category"] = _category_id(db, category) or ObjectId("0" * 24)
    if material:
        query["material"] = material
    low, high = _to_float(min_price), _to_float(max_price)
    if low is not None or high is not None:
        price = {}
        if low is not None:
            price["$gte"] = low
        if high is not None:
            price["$lte"] = high
        query["price"] = price
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}, {"tags": pattern}]
    return query


def populate_categories(db: Database, products: List[dict]) -> List[dict]:
    ids = {p["category"] for p in products if isinstance(p.get("category"), ObjectId)}
    if not ids:
        return products
    categories = {c["_id"]: c for c in db["category"].find({"_id": {"$in": list(ids)}}, CATEGORY_FIELDS)}
    for p in products:
        if p.get("category") in categories:
            p["category"] = categories[p["category"]]
    return products


def get_active_product(db: Database, product_id: str) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id)})
    if not product or not product.get("is_active", True):
        raise not_found("Product")
    return product


@router.get("")
def list_products(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    category: Optional[str] = None,
    material: Optional[str] = None,
    min_price: Optional[str] = None,
    max_price: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    include_inactive: Optional[str] = None,
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    page_no = _to_int(page, 1, maximum=10_000)
    page_size = _to_int(limit, 12)
    show_inactive = include_inactive == "true" and user is not None and is_admin(user)
    query = build_catalog_filter(db, category, material, min_price, max_price, search, show_inactive)

    cursor = (
        db["product"].find(query)
        .sort(_sort_spec(sort))
        .skip((page_no - 1) * page_size)
        .limit(page_size)
    )
    products = populate_categories(db, list(cursor))
    total = db["product"].count_documents(query)
    return {
        "success": True,
        "products": serialize_doc(products),
        "pagination": {
            "page": page_no,
            "limit": page_size,
            "total": total,
            "pages": math.ceil(total / page_size),
        },
    }


@router.get("/featured/list")
def featured_products(db: Database = Depends(get_db)):
    products = get_documents(db, "product", {"is_featured": True, "is_active": True}, limit=8)
    return {"success": True, "products": serialize_doc(products)}


@router.get("/search/suggestions")
def search_suggestions(q: Optional[str] = None, db: Database = Depends(get_db)):
    if not q:
        return {"success": True, "suggestions": []}
    cursor = db["product"].find(
        {"name": {"$regex": re.escape(q), "$options": "i"}, "is_active": True},
        {"name": 1, "images": 1, "category": 1, "price": 1},
    ).limit(5)
    return {"success": True, "suggestions": serialize_doc(list(cursor))}


@router.get("/admin/low-stock", dependencies=[Depends(require_admin)])
def low_stock(db: Database = Depends(get_db)):
    products = [
        p for p in db["product"].find({"is_active": True}).sort("stock", ASCENDING)
        if p.get("stock", 0) <= p.get("low_stock_threshold", 5)
    ]
    return {"success": True, "products": serialize_doc(products)}


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = get_active_product(db, product_id)
    if isinstance(product.get("category"), ObjectId):
        product["category"] = db["category"].find_one({"_id": product["category"]}) or product["category"]
    return {"success": True, "product": serialize_doc(product)}


@router.get("/{product_id}/related")
def related_products(product_id: str, db: Database = Depends(get_db)):
    product = db["product"].find_one({"_id": parse_object_id(product_id)})
    if not product:
        raise not_found("Product")
    related = db["product"].find({
        "category": product.get("category"),
        "_id": {"$ne": product["_id"]},
        "is_active": True,
    }).limit(4)
    return {"success": True, "products": serialize_doc(list(related))}


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
def create_product(payload: ProductPayload, db: Database = Depends(get_db)):
    data = payload.model_dump()
    data["category"] = _require_category(db, payload.category)
    product = Product(**data)
    product_id = create_document(db, "product", product)
    return {"success": True, "product": serialize_doc(db["product"].find_one({"_id": parse_object_id(product_id)}))}


@router.put("/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductUpdatePayload, db: Database = Depends(get_db)):
    oid = parse_object_id(product_id)
    update_doc = payload.model_dump(exclude_none=True)
    if "category" in update_doc:
        update_doc["category"] = _require_category(db, update_doc["category"])
    update_doc["updated_at"] = utcnow()
    res = db["product"].update_one({"_id": oid}, {"$set": update_doc})
    if res.matched_count == 0:
        raise not_found("Product")
    return {"success": True, "product": serialize_doc(db["product"].find_one({"_id": oid}))}


@router.delete("/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, db: Database = Depends(get_db)):
    res = db["product"].delete_one({"_id": parse_object_id(product_id)})
    if res.deleted_count == 0:
        raise not_found("Product")
    return {"success": True, "message": "Product deleted"}

from bson import ObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database

from database import get_db, parse_object_id, serialize_doc, utcnow
from errors import ErrorKind, StoreError, not_found
from schemas import CartLine
from security import get_current_user

router = APIRouter(prefix="/api/cart", tags=["cart"])

PRODUCT_FIELDS = {"name": 1, "price": 1, "images": 1, "stock": 1, "is_active": 1}


class AddToCartPayload(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartPayload(BaseModel):
    quantity: int = Field(..., ge=1)


def get_or_create_cart(db: Database, user_id) -> dict:
    now = utcnow()
    return db["cart"].find_one_and_update(
        {"user": user_id},
        {"$setOnInsert": {"items": [], "created_at": now, "updated_at": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def _save_items(db: Database, cart: dict, items: list) -> dict:
    db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": utcnow()}})
    cart["items"] = items
    return cart


def populate_cart(db: Database, cart: dict) -> dict:
    """Attach product fields to each line and hide lines whose product is gone or inactive."""
    ids = [item["product"] for item in cart.get("items", [])]
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}}, PRODUCT_FIELDS)}
    lines = []
    for item in cart.get("items", []):
        product = products.get(item["product"])
        if not product or not product.get("is_active", True):
            continue
        lines.append({**item, "product": product})
    return {**cart, "items": lines}


def _cart_response(db: Database, cart: dict) -> dict:
    return {"success": True, "cart": serialize_doc(populate_cart(db, cart))}


def _find_line(cart: dict, item_id: str) -> dict:
    oid = parse_object_id(item_id)
    for item in cart.get("items", []):
        if item.get("_id") == oid:
            return item
    raise not_found("Item")


@router.get("")
def get_cart(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return _cart_response(db, get_or_create_cart(db, user["_id"]))


@router.post("/add")
def add_to_cart(payload: AddToCartPayload, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    product = db["product"].find_one({"_id": parse_object_id(payload.product_id)})
    if not product or not product.get("is_active", True):
        raise not_found("Product")

    cart = get_or_create_cart(db, user["_id"])
    items = cart.get("items", [])
    existing = next((item for item in items if item["product"] == product["_id"]), None)
    if product.get("stock", 0) < payload.quantity:
        raise StoreError(ErrorKind.BAD_REQUEST, "Insufficient stock")

    if existing:
        existing["quantity"] += payload.quantity
        existing["price"] = product["price"]
    else:
        line = CartLine(product=product["_id"], quantity=payload.quantity, price=product["price"], added_at=utcnow())
        items.append({"_id": ObjectId(), **line.model_dump()})
    return _cart_response(db, _save_items(db, cart, items))


@router.put("/update/{item_id}")
def update_cart_item(item_id: str, payload: UpdateCartPayload, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = db["cart"].find_one({"user": user["_id"]})
    if not cart:
        raise not_found("Cart")
    item = _find_line(cart, item_id)

    product = db["product"].find_one({"_id": item["product"]})
    if not product or not product.get("is_active", True):
        raise not_found("Product")
    if product.get("stock", 0) < payload.quantity:
        raise StoreError(ErrorKind.BAD_REQUEST, "Insufficient stock")

    item["quantity"] = payload.quantity
    item["price"] = product["price"]
    return _cart_response(db, _save_items(db, cart, cart["items"]))


@router.delete("/remove/{item_id}")
def remove_cart_item(item_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = db["cart"].find_one({"user": user["_id"]})
    if not cart:
        raise not_found("Cart")
    line = _find_line(cart, item_id)
    items = [item for item in cart["items"] if item is not line]
    return _cart_response(db, _save_items(db, cart, items))


@router.delete("/clear")
def clear_cart(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    db["cart"].update_one({"user": user["_id"]}, {"$set": {"items": [], "updated_at": utcnow()}})
    return {"success": True, "message": "Cart cleared"}

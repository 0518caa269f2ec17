from fastapi import APIRouter, Depends
from pymongo.database import Database

from database import get_db, parse_object_id, serialize_doc
from errors import ErrorKind, StoreError, not_found
from security import get_current_user

router = APIRouter(prefix="/api/wishlist", tags=["wishlist"])

WISHLIST_FIELDS = {"name": 1, "price": 1, "images": 1, "rating": 1, "category": 1}


def _wishlist_response(db: Database, user_id) -> dict:
    user = db["user"].find_one({"_id": user_id}, {"wishlist": 1})
    ids = user.get("wishlist", []) if user else []
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}, "is_active": True}, WISHLIST_FIELDS)}
    ordered = [products[i] for i in ids if i in products]
    return {"success": True, "wishlist": serialize_doc(ordered)}


@router.get("")
def get_wishlist(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return _wishlist_response(db, user["_id"])


@router.post("/add/{product_id}")
def add_to_wishlist(product_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    oid = parse_object_id(product_id)
    if not db["product"].find_one({"_id": oid}):
        raise not_found("Product")
    if oid in user.get("wishlist", []):
        raise StoreError(ErrorKind.CONFLICT, "Product already in wishlist")
    db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"wishlist": oid}})
    return _wishlist_response(db, user["_id"])


@router.delete("/remove/{product_id}")
def remove_from_wishlist(product_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    db["user"].update_one({"_id": user["_id"]}, {"$pull": {"wishlist": parse_object_id(product_id)}})
    return _wishlist_response(db, user["_id"])

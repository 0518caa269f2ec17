from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, parse_object_id, serialize_doc, utcnow
from errors import ErrorKind, StoreError, not_found
from schemas import Review
from security import get_current_user, require_admin

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


class ReviewPayload(BaseModel):
    product: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: str = Field(..., min_length=1)
    images: List[str] = []


def refresh_product_rating(db: Database, product_id) -> dict:
    """Recompute rating and review_count from approved reviews only."""
    ratings = [r["rating"] for r in db["review"].find({"product": product_id, "is_approved": True}, {"rating": 1})]
    rating = sum(ratings) / len(ratings) if ratings else 0
    update = {"rating": rating, "review_count": len(ratings)}
    db["product"].update_one({"_id": product_id}, {"$set": update})
    return update


@router.get("")
def list_reviews(product: str, db: Database = Depends(get_db)):
    reviews = db["review"].find({"product": parse_object_id(product), "is_approved": True}).sort("created_at", DESCENDING)
    return {"success": True, "reviews": serialize_doc(list(reviews))}


@router.post("", status_code=201)
def create_review(payload: ReviewPayload, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    product_id = parse_object_id(payload.product)
    if not db["product"].find_one({"_id": product_id}):
        raise not_found("Product")
    if db["review"].find_one({"user": user["_id"], "product": product_id}):
        raise StoreError(ErrorKind.CONFLICT, "You have already reviewed this product")

    review = Review(
        user=user["_id"],
        product=product_id,
        rating=payload.rating,
        title=payload.title,
        comment=payload.comment,
        images=payload.images,
    )
    try:
        review_id = create_document(db, "review", review)
    except DuplicateKeyError:
        raise StoreError(ErrorKind.CONFLICT, "You have already reviewed this product")
    refresh_product_rating(db, product_id)
    return {"success": True, "review": serialize_doc(db["review"].find_one({"_id": parse_object_id(review_id)}))}


@router.put("/{review_id}/approve", dependencies=[Depends(require_admin)])
def approve_review(review_id: str, db: Database = Depends(get_db)):
    oid = parse_object_id(review_id)
    review = db["review"].find_one({"_id": oid})
    if not review:
        raise not_found("Review")
    db["review"].update_one({"_id": oid}, {"$set": {"is_approved": True, "updated_at": utcnow()}})
    aggregate = refresh_product_rating(db, review["product"])
    return {"success": True, "review": serialize_doc(db["review"].find_one({"_id": oid})), **aggregate}

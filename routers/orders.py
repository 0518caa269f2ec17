import math
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo import DESCENDING
from pymongo.database import Database

import checkout
from database import get_db, parse_object_id, serialize_doc
from errors import ErrorKind, StoreError, not_found
from schemas import Address, OrderStatus, PaymentMethod
from security import get_current_user, is_admin, require_admin

router = APIRouter(prefix="/api/orders", tags=["orders"])


class OrderLine(BaseModel):
    product: str
    quantity: int = Field(..., ge=1)


class CreateOrderPayload(BaseModel):
    items: List[OrderLine] = Field(..., min_length=1)
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: PaymentMethod


class StatusPayload(BaseModel):
    status: OrderStatus
    note: Optional[str] = None


def load_order(db: Database, order_id: str, user: dict) -> dict:
    """Fetch an order the caller may see: their own, or any order for admins."""
    order = db["order"].find_one({"_id": parse_object_id(order_id)})
    if not order:
        raise not_found("Order")
    if order["user"] != user["_id"] and not is_admin(user):
        raise StoreError(ErrorKind.FORBIDDEN, "Not authorized")
    return order


@router.post("", status_code=201)
def create_order(payload: CreateOrderPayload, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    order = checkout.create_order(
        db,
        user["_id"],
        [(line.product, line.quantity) for line in payload.items],
        payload.shipping_address,
        payload.payment_method,
        billing_address=payload.billing_address,
    )
    return {"success": True, "order": serialize_doc(order)}


@router.get("/my-orders")
def my_orders(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    orders = db["order"].find({"user": user["_id"]}).sort("created_at", DESCENDING)
    return {"success": True, "orders": serialize_doc(list(orders))}


@router.get("", dependencies=[Depends(require_admin)])
def list_orders(page: int = 1, limit: int = 20, status: Optional[OrderStatus] = None, db: Database = Depends(get_db)):
    page, limit = max(page, 1), max(min(limit, 100), 1)
    query = {"order_status": status.value} if status else {}
    cursor = db["order"].find(query).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    orders = list(cursor)

    user_ids = list({o["user"] for o in orders})
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": user_ids}}, {"first_name": 1, "last_name": 1, "email": 1})}
    for o in orders:
        o["user"] = users.get(o["user"], o["user"])

    total = db["order"].count_documents(query)
    return {
        "success": True,
        "orders": serialize_doc(orders),
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


@router.get("/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "order": serialize_doc(load_order(db, order_id, user))}


@router.put("/{order_id}/status", dependencies=[Depends(require_admin)])
def update_order_status(order_id: str, payload: StatusPayload, db: Database = Depends(get_db)):
    order = db["order"].find_one({"_id": parse_object_id(order_id)})
    if not order:
        raise not_found("Order")
    order = checkout.update_status(db, order, payload.status, payload.note)
    return {"success": True, "order": serialize_doc(order)}

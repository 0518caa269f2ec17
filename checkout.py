"""
Order placement and order state changes.

create_order validates every requested line against live stock, reserves stock
with conditional decrements (`stock >= qty`) and only then persists the order
and clears the buyer's cart. A failed reservation releases whatever was
already taken, so the request leaves no trace.
"""
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from bson import ObjectId
from pymongo.database import Database

from database import create_document, parse_object_id, utcnow
from errors import ErrorKind, StoreError
from schemas import Address, Order, OrderItem, OrderStatus, StatusEntry

logger = logging.getLogger(__name__)

TAX_RATE = 0.18  # GST
FREE_SHIPPING_OVER = 5000
SHIPPING_COST = 200

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


def compute_totals(subtotal: float, discount: float = 0) -> dict:
    subtotal = round(subtotal, 2)
    tax = round(subtotal * TAX_RATE, 2)
    shipping_cost = 0 if subtotal > FREE_SHIPPING_OVER else SHIPPING_COST
    total = round(subtotal + tax + shipping_cost - discount, 2)
    return {
        "subtotal": subtotal,
        "tax": tax,
        "shipping_cost": shipping_cost,
        "discount": discount,
        "total": total,
    }


def generate_order_number(db: Database) -> str:
    count = db["order"].count_documents({})
    stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"ORD{stamp}{count + 1:04d}"


def _merge_lines(lines: Iterable[Tuple[str, int]]) -> "OrderedDict[ObjectId, int]":
    merged: "OrderedDict[ObjectId, int]" = OrderedDict()
    for product_id, quantity in lines:
        oid = parse_object_id(product_id)
        merged[oid] = merged.get(oid, 0) + quantity
    return merged


def _release(db: Database, reserved: List[Tuple[ObjectId, int]]):
    for product_id, quantity in reserved:
        db["product"].update_one(
            {"_id": product_id},
            {"$inc": {"stock": quantity, "sold_count": -quantity}},
        )


def create_order(
    db: Database,
    user_id: ObjectId,
    lines: Iterable[Tuple[str, int]],
    shipping_address: Address,
    payment_method: str,
    billing_address: Optional[Address] = None,
) -> dict:
    requested = _merge_lines(lines)
    if not requested:
        raise StoreError(ErrorKind.BAD_REQUEST, "Order has no items")

    items: List[OrderItem] = []
    subtotal = 0.0
    for product_id, quantity in requested.items():
        product = db["product"].find_one({"_id": product_id})
        if not product or not product.get("is_active", True):
            raise StoreError(ErrorKind.BAD_REQUEST, f"Product {product_id} not available")
        if product.get("stock", 0) < quantity:
            raise StoreError(ErrorKind.BAD_REQUEST, f"Insufficient stock for {product['name']}")

        price = float(product.get("price", 0))
        subtotal += price * quantity
        images = product.get("images") or []
        items.append(OrderItem(
            product=product_id,
            name=product["name"],
            price=price,
            quantity=quantity,
            image=images[0]["url"] if images else None,
        ))

    reserved: List[Tuple[ObjectId, int]] = []
    for item in items:
        res = db["product"].update_one(
            {"_id": item.product, "is_active": True, "stock": {"$gte": item.quantity}},
            {"$inc": {"stock": -item.quantity, "sold_count": item.quantity}},
        )
        if res.modified_count == 0:
            logger.warning("Stock reservation lost for %s, releasing %d lines", item.product, len(reserved))
            _release(db, reserved)
            raise StoreError(ErrorKind.BAD_REQUEST, f"Insufficient stock for {item.name}")
        reserved.append((item.product, item.quantity))

    now = utcnow()
    try:
        order = Order(
            order_number=generate_order_number(db),
            user=user_id,
            items=items,
            shipping_address=shipping_address,
            billing_address=billing_address or shipping_address,
            payment_method=payment_method,
            status_history=[StatusEntry(status=OrderStatus.PENDING, note="Order placed", timestamp=now)],
            **compute_totals(subtotal),
        )
        order_id = create_document(db, "order", order)
    except Exception:
        logger.exception("Order insert failed, releasing reserved stock")
        _release(db, reserved)
        raise

    db["cart"].update_one({"user": user_id}, {"$set": {"items": [], "updated_at": now}})
    logger.info("Order %s placed by %s, total %.2f", order.order_number, user_id, order.total)
    return db["order"].find_one({"_id": parse_object_id(order_id)})


def update_status(db: Database, order: dict, status: OrderStatus, note: Optional[str] = None) -> dict:
    current = OrderStatus(order["order_status"])
    if status not in ALLOWED_TRANSITIONS[current]:
        raise StoreError(
            ErrorKind.BAD_REQUEST,
            f"Cannot change order status from {current.value} to {status.value}",
        )

    now = utcnow()
    update = {"order_status": status.value, "updated_at": now}
    if status is OrderStatus.DELIVERED:
        update["delivered_at"] = now
    if status is OrderStatus.CANCELLED:
        update["cancelled_at"] = now
        update["cancellation_reason"] = note

    entry = StatusEntry(status=status, note=note, timestamp=now).model_dump()
    db["order"].update_one({"_id": order["_id"]}, {"$set": update, "$push": {"status_history": entry}})
    return db["order"].find_one({"_id": order["_id"]})


def mark_order_paid(db: Database, order: dict, details: dict, note: str = "Payment received") -> dict:
    """Record a verified payment. Repeating it with the same details changes nothing."""
    now = utcnow()
    update = {"payment_status": "paid", "updated_at": now}
    for key, value in details.items():
        update[f"payment_details.{key}"] = value
    if not order.get("payment_details", {}).get("paid_at"):
        update["payment_details.paid_at"] = now

    change = {"$set": update}
    if order["order_status"] == OrderStatus.PENDING.value:
        update["order_status"] = OrderStatus.CONFIRMED.value
        change["$push"] = {
            "status_history": StatusEntry(status=OrderStatus.CONFIRMED, note=note, timestamp=now).model_dump()
        }
    db["order"].update_one({"_id": order["_id"]}, change)
    return db["order"].find_one({"_id": order["_id"]})

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from pymongo.database import Database

import checkout
from config import settings
from database import get_db, serialize_doc
from errors import ErrorKind, StoreError
from payments import ChainVerifier, PriceFeed, RazorpayClient, verify_payment_signature
from routers.orders import load_order
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["payment"])

ONLINE_METHODS = {"card", "upi", "netbanking"}


class CreateProviderOrderPayload(BaseModel):
    order_id: str


class VerifyPaymentPayload(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    order_id: str


class VerifyCryptoPayload(BaseModel):
    order_id: str
    tx_hash: str = Field(..., min_length=1)
    amount_paid: float = Field(..., gt=0)
    currency: str = Field(..., min_length=1)


def _require_online_order(order: dict):
    if order["payment_method"] not in ONLINE_METHODS:
        raise StoreError(ErrorKind.BAD_REQUEST, "Order not configured for online payment")


def _ensure_unused_transaction(db: Database, order: dict, transaction_id: str):
    # one provider payment or chain transfer settles at most one order
    other = db["order"].find_one({"payment_details.transaction_id": transaction_id, "_id": {"$ne": order["_id"]}})
    if other:
        raise StoreError(ErrorKind.BAD_REQUEST, "Transaction already used for another order")


def get_razorpay(request: Request) -> RazorpayClient:
    return request.app.state.razorpay


def get_chain_verifier(request: Request) -> ChainVerifier:
    return request.app.state.chain_verifier


def get_price_feed(request: Request) -> PriceFeed:
    return request.app.state.price_feed


@router.get("/exchange-rate")
async def exchange_rate(feed: PriceFeed = Depends(get_price_feed)):
    eth_price_in_inr = await feed.eth_price_in_inr()
    return {
        "success": True,
        "inr_to_eth_rate": 1 / eth_price_in_inr,
        "eth_price_in_inr": eth_price_in_inr,
    }


@router.post("/create-order")
async def create_provider_order(
    payload: CreateProviderOrderPayload,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    razorpay: RazorpayClient = Depends(get_razorpay),
):
    order = load_order(db, payload.order_id, user)
    _require_online_order(order)
    if order["payment_status"] == "paid":
        raise StoreError(ErrorKind.BAD_REQUEST, "Order is already paid")
    if not razorpay.configured:
        raise StoreError(ErrorKind.UPSTREAM_FAILURE, "Payment provider not configured", status_code=503)

    provider_order = await razorpay.create_order(int(round(order["total"] * 100)), receipt=order["order_number"])
    db["order"].update_one({"_id": order["_id"]}, {"$set": {"payment_details.provider_order_id": provider_order["id"]}})
    return {
        "success": True,
        "order_id": provider_order["id"],
        "amount": provider_order["amount"],
        "currency": provider_order["currency"],
        "key_id": razorpay.key_id,
    }


@router.post("/verify")
def verify_payment(payload: VerifyPaymentPayload, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    if not settings.RAZORPAY_KEY_SECRET:
        raise StoreError(ErrorKind.UPSTREAM_FAILURE, "Payment provider not configured", status_code=503)
    if not verify_payment_signature(
        payload.razorpay_order_id,
        payload.razorpay_payment_id,
        payload.razorpay_signature,
        settings.RAZORPAY_KEY_SECRET,
    ):
        logger.warning("Invalid payment signature for order %s", payload.order_id)
        raise StoreError(ErrorKind.BAD_REQUEST, "Invalid signature")

    order = load_order(db, payload.order_id, user)
    _require_online_order(order)
    if order.get("payment_details", {}).get("provider_order_id") != payload.razorpay_order_id:
        logger.warning("Provider order %s does not belong to order %s", payload.razorpay_order_id, payload.order_id)
        raise StoreError(ErrorKind.BAD_REQUEST, "Payment does not match this order")
    _ensure_unused_transaction(db, order, payload.razorpay_payment_id)

    order = checkout.mark_order_paid(db, order, {
        "transaction_id": payload.razorpay_payment_id,
        "provider_order_id": payload.razorpay_order_id,
    })
    logger.info("Payment %s verified for order %s", payload.razorpay_payment_id, order["order_number"])
    return {"success": True, "message": "Payment verified successfully", "order": serialize_doc(order)}


@router.post("/verify-crypto")
async def verify_crypto_payment(
    payload: VerifyCryptoPayload,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    verifier: ChainVerifier = Depends(get_chain_verifier),
):
    logger.info("Verifying crypto tx %s for order %s (%s %s)", payload.tx_hash, payload.order_id, payload.amount_paid, payload.currency)
    order = load_order(db, payload.order_id, user)
    if order["payment_method"] != "wallet":
        raise StoreError(ErrorKind.BAD_REQUEST, "Order not configured for crypto payment")
    tx_hash = payload.tx_hash.lower()
    _ensure_unused_transaction(db, order, tx_hash)

    result = await verifier.verify(tx_hash, settings.PAYMENT_WALLET_ADDRESS)
    if not result.verified:
        raise StoreError(ErrorKind.BAD_REQUEST, result.message, details=result.to_dict())

    order = checkout.mark_order_paid(db, order, {
        "transaction_id": tx_hash,
        "currency": payload.currency,
        "amount_paid": payload.amount_paid,
        "blockchain_verified": True,
        "verifier": verifier.name,
        "verification_details": {
            "block_number": result.block_number,
            "confirmations": result.confirmations,
            "from": result.from_address,
        },
    }, note="Crypto payment received")
    return {"success": True, "message": "Crypto payment verified and order confirmed", "order": serialize_doc(order)}

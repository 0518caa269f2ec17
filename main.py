import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException

import database
from config import settings
from errors import StoreError
from payments import PriceFeed, RazorpayClient, build_chain_verifier
from routers import auth, cart, categories, orders, payment, products, reviews, users, wishlist

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("jewelry_api")

STORE_COLLECTIONS = ("user", "category", "product", "cart", "order", "review")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.chain_verifier = build_chain_verifier(settings)
    app.state.razorpay = RazorpayClient(
        settings.RAZORPAY_KEY_ID,
        settings.RAZORPAY_KEY_SECRET,
        settings.RAZORPAY_API_URL,
        timeout=settings.HTTP_TIMEOUT,
    )
    app.state.price_feed = PriceFeed(settings.PRICE_FEED_URL, timeout=settings.HTTP_TIMEOUT)
    logger.info("Chain verifier: %s (%s)", app.state.chain_verifier.name, settings.ENVIRONMENT)

    if database.db is not None:
        try:
            database.ensure_indexes(database.db)
        except PyMongoError as e:
            logger.error(f"Could not ensure indexes: {e}")
    else:
        logger.warning("DATABASE_URL not set, database endpoints will answer 503")
    yield
    if database.client is not None:
        database.client.close()


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error envelope
@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    content = {"success": False, "message": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [{".".join(str(p) for p in err["loc"][1:]): err["msg"]} for err in exc.errors()]
    return JSONResponse(status_code=422, content={"success": False, "message": "Validation failed", "errors": errors})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=400, content={"success": False, "message": "Duplicate field value entered"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": str(exc) or "Server Error"})


app.include_router(auth.router)
app.include_router(users.router)
app.include_router(products.router)
app.include_router(categories.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(payment.router)
app.include_router(wishlist.router)
app.include_router(reviews.router)


# Health checks
@app.get("/")
def root():
    return {"message": "AG-Gems Jewelry API running"}


@app.get("/api/health")
def health():
    return {"success": True, "message": "API is running"}


@app.get("/test")
def diagnostics(request: Request):
    """Report which collaborators this instance runs with and what the store holds."""
    verifier = getattr(request.app.state, "chain_verifier", None)
    report = {
        "environment": settings.ENVIRONMENT,
        "database": "not configured",
        "collections": {},
        "chain_verifier": verifier.name if verifier else None,
        "card_payments": bool(settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET),
        "payment_wallet": bool(settings.PAYMENT_WALLET_ADDRESS),
    }
    if database.db is None:
        return report
    try:
        report["collections"] = {name: database.db[name].estimated_document_count() for name in STORE_COLLECTIONS}
        report["database"] = database.db.name
    except PyMongoError as e:
        logger.error(f"Diagnostics could not reach the database: {e}")
        report["database"] = "unreachable"
    return report


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

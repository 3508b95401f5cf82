import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import create_db_and_tables
from app.routes import (
    admin_purchases,
    dev,
    health,
    library,
    purchases,
)
from app.services.order_issuer import RazorpayOrderIssuer, build_razorpay_client
from app.services.signature_verifier import build_signature_verifier
from app.utils.errors import PurchaseError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run DB creation ONLY in local / development, deployed DBs use alembic
    if settings.ENV in ("local", "development"):
        create_db_and_tables()

    # one gateway client per process, injected through app.state
    app.state.order_issuer = RazorpayOrderIssuer(
        build_razorpay_client(settings),
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )
    app.state.signature_verifier = build_signature_verifier(settings)
    logger.info(f"Classroom API started (ENV={settings.ENV})")
    yield


app = FastAPI(title="Classroom Purchases API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8081",
        "http://localhost:19006",
        "http://127.0.0.1:8081",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PurchaseError)
async def purchase_error_handler(request: Request, exc: PurchaseError):
    if exc.http_status >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_api_dict())


app.include_router(purchases.router, prefix="/purchases", tags=["Purchases"])
app.include_router(library.router, prefix="/library", tags=["Library"])
app.include_router(admin_purchases.router, prefix="/admin/purchases", tags=["Admin Purchases"])
app.include_router(health.router, prefix="/health", tags=["Health"])

if settings.is_development:
    app.include_router(dev.router, prefix="/dev", tags=["Development"])


@app.get("/")
def root():
    return {
        "purchase_endpoints": [
            "/purchases", "/purchases/verify-payment",
            "/purchases/access/{item_id}", "/purchases/my-purchases",
            "/purchases/{purchase_id}", "/purchases/{purchase_id}/cancel",
            "/purchases/{purchase_id}/access-history", "/purchases/{purchase_id}/progress",
        ],
        "library_endpoints": [
            "/library/items/{item_id}/material",
        ],
        "admin_endpoints": [
            "/admin/purchases",
        ],
        "health": ["/health/check"],
    }

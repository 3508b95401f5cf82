import logging
from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, text
from datetime import datetime

from app.config import settings
from app.database import get_session

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/check")
def health_check(session: Session = Depends(get_session)):
    db_status = "ok"

    try:
        session.exec(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        db_status = "failed"

    return {
        "status": "ok",
        "database": db_status,
        "environment": settings.ENV,
        "payment_gateway": (
            "configured" if settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET
            else "missing"
        ),
        "mock_payments": settings.is_development,
        "timestamp": datetime.utcnow().isoformat()
    }

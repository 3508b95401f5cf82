import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from app.config import settings
from app.constants.purchase_state import PURCHASE_STATUS_TO_STATE
from app.database import get_session
from app.dependencies.purchases import (
    get_access_checker,
    get_purchase_service,
    get_purchase_store,
)
from app.models.purchase import PurchaseRecord
from app.models.user import User
from app.schemas.purchase_schemas import (
    PaymentVerify,
    ProgressUpdate,
    PurchaseCreate,
    RazorpayOrderOut,
)
from app.services.access_checker import AccessChecker
from app.services.purchase_service import PurchaseService
from app.services.purchase_store import PurchaseStore
from app.utils.pagination import paginate
from app.utils.token import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=201)
def create_purchase(
    payload: PurchaseCreate,
    service: PurchaseService = Depends(get_purchase_service),
    current_user: User = Depends(get_current_user),
):
    """Purchase notes or enroll in a course. Free items complete immediately."""
    outcome = service.purchase(
        student_id=current_user.id,
        item_id=payload.item_id,
        mode=payload.mode,
        schedule=payload.schedule,
    )

    if outcome.is_free:
        return {
            "success": True,
            "message": "Successfully enrolled in the free item",
            "purchase": outcome.record.to_public_dict(),
        }

    return {
        "success": True,
        "message": "Purchase created. Please complete payment to get access",
        "purchase": outcome.record.to_public_dict(),
        "razorpay_order": RazorpayOrderOut(**outcome.order.to_dict()).model_dump(),
        "razorpay_key": settings.RAZORPAY_KEY_ID,
    }


@router.post("/verify-payment")
def verify_payment(
    payload: PaymentVerify,
    service: PurchaseService = Depends(get_purchase_service),
    current_user: User = Depends(get_current_user),
):
    record = service.verify(
        student_id=current_user.id,
        payment_id=payload.razorpay_payment_id,
        signature=payload.razorpay_signature,
        record_id=payload.purchase_id,
        order_id=payload.razorpay_order_id,
    )
    return {
        "success": True,
        "message": "Payment verified and purchase completed successfully",
        "purchase": record.to_public_dict(),
    }


@router.get("/access/{item_id}")
def check_access(
    item_id: int,
    checker: AccessChecker = Depends(get_access_checker),
    current_user: User = Depends(get_current_user),
):
    return {"success": True, **checker.check(current_user.id, item_id).to_dict()}


@router.get("/my-purchases")
def my_purchases(
    status: str = "completed",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: Session = Depends(get_session),
    store: PurchaseStore = Depends(get_purchase_store),
    current_user: User = Depends(get_current_user),
):
    state = PURCHASE_STATUS_TO_STATE.get(status)
    if state is None:
        raise HTTPException(400, f"Unknown status '{status}'")

    query = store.list_for_student(current_user.id, state)
    return paginate(
        session=session,
        query=query,
        page=page,
        limit=limit,
        serialize=PurchaseRecord.to_public_dict,
    )


@router.get("/{purchase_id}")
def get_purchase(
    purchase_id: int,
    service: PurchaseService = Depends(get_purchase_service),
    current_user: User = Depends(get_current_user),
):
    record = service.get(current_user.id, purchase_id)
    return {"success": True, "purchase": record.to_public_dict()}


@router.delete("/{purchase_id}/cancel")
def cancel_purchase(
    purchase_id: int,
    service: PurchaseService = Depends(get_purchase_service),
    current_user: User = Depends(get_current_user),
):
    service.cancel(current_user.id, purchase_id)
    logger.info(f"Purchase {purchase_id} cancelled by student {current_user.id}")
    return {"success": True, "message": "Purchase cancelled successfully"}


@router.get("/{purchase_id}/access-history")
def access_history(
    purchase_id: int,
    service: PurchaseService = Depends(get_purchase_service),
    current_user: User = Depends(get_current_user),
):
    record, history = service.access_history(current_user.id, purchase_id)
    return {
        "success": True,
        "access_history": [
            {
                "accessed_at": entry.accessed_at,
                "ip_address": entry.ip_address,
                "user_agent": entry.user_agent,
            }
            for entry in history
        ],
        "access_details": record.to_public_dict()["access_details"],
    }


@router.put("/{purchase_id}/progress")
def update_progress(
    purchase_id: int,
    payload: ProgressUpdate,
    service: PurchaseService = Depends(get_purchase_service),
    current_user: User = Depends(get_current_user),
):
    progress = service.record_progress(
        current_user.id, purchase_id, payload.lesson_id, payload.watch_seconds
    )
    return {
        "success": True,
        "message": "Progress updated successfully",
        "progress": {
            "lesson_id": progress.lesson_id,
            "watch_seconds": progress.watch_seconds,
            "updated_at": progress.updated_at,
        },
    }

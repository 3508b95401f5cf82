"""
Development-only helpers. This router is mounted only when ENV=development.
"""
from fastapi import APIRouter, Depends

from app.dependencies.purchases import get_purchase_store
from app.models.user import User
from app.services.purchase_store import PurchaseStore
from app.services.signature_verifier import generate_mock_payment
from app.utils.errors import InvalidRequest, NotFound
from app.utils.token import get_current_user

router = APIRouter()


@router.post("/purchases/{purchase_id}/mock-payment")
def mock_payment(
    purchase_id: int,
    store: PurchaseStore = Depends(get_purchase_store),
    current_user: User = Depends(get_current_user),
):
    """Hand out a payment id + signature the mock verifier accepts."""
    record = store.find_for_student(current_user.id, purchase_id)
    if not record:
        raise NotFound(f"Purchase {purchase_id} not found", "Purchase not found")
    if not record.gateway_order_id:
        raise InvalidRequest("Purchase has no Razorpay order")

    payment_id, signature = generate_mock_payment(record.gateway_order_id)
    return {
        "purchase_id": record.id,
        "razorpay_order_id": record.gateway_order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature,
    }

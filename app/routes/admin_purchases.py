from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session
from typing import Optional

from app.constants.purchase_state import PURCHASE_STATUS_TO_STATE
from app.database import get_session
from app.dependencies.admin import require_admin
from app.dependencies.purchases import get_purchase_store
from app.models.purchase import PurchaseRecord
from app.models.user import User
from app.services.purchase_store import PurchaseStore
from app.utils.pagination import paginate

router = APIRouter()


def _admin_view(record: PurchaseRecord) -> dict:
    return {**record.to_public_dict(), "reconciliation_note": record.reconciliation_note}


# -------------------------------
# List all purchases / enrollments
# -------------------------------

@router.get("")
def list_purchases(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    student_id: Optional[int] = None,
    item_id: Optional[int] = None,
    session: Session = Depends(get_session),
    store: PurchaseStore = Depends(get_purchase_store),
    admin: User = Depends(require_admin),
):
    state = None
    if status:
        state = PURCHASE_STATUS_TO_STATE.get(status)
        if state is None:
            raise HTTPException(400, f"Unknown status '{status}'")

    query = store.list_all(status=state, student_id=student_id, item_id=item_id)
    return paginate(
        session=session,
        query=query,
        page=page,
        limit=limit,
        serialize=_admin_view,
    )

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from app.database import get_session
from app.dependencies.purchases import get_purchase_store, require_item_access
from app.models.catalog_item import CatalogItem
from app.services.access_checker import AccessResult
from app.services.purchase_store import PurchaseStore

router = APIRouter()


@router.get("/items/{item_id}/material")
def read_material(
    item_id: int,
    request: Request,
    access: AccessResult = Depends(require_item_access),
    session: Session = Depends(get_session),
    store: PurchaseStore = Depends(get_purchase_store),
):
    """
    Material descriptor for an item the student may open. The file itself is
    served by the storage service from `material_key`.
    """
    item = session.get(CatalogItem, item_id)

    if access.purchase is not None:
        store.record_access(
            access.purchase,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )

    return {
        "item_id": item.id,
        "title": item.title,
        "material_key": item.material_key,
        "is_free": access.is_free,
        "purchased_at": access.purchase.purchased_at if access.purchase else None,
        "access_expires_at": access.purchase.access_expires_at if access.purchase else None,
    }

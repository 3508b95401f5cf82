import logging
from dataclasses import dataclass
from typing import Optional

from sqlmodel import Session

from app.models.catalog_item import CatalogItem
from app.models.purchase import PurchaseRecord
from app.services.purchase_store import PurchaseStore
from app.utils.errors import NotFound

logger = logging.getLogger(__name__)


@dataclass
class AccessResult:
    has_access: bool
    is_free: bool
    purchase: Optional[PurchaseRecord] = None

    def to_dict(self) -> dict:
        return {
            "has_access": self.has_access,
            "is_free": self.is_free,
            "purchase": self.purchase.to_public_dict() if self.purchase else None,
            "message": (
                "Free item - access granted" if self.is_free
                else "Access granted" if self.has_access
                else "Purchase required"
            ),
        }


class AccessChecker:
    def __init__(self, session: Session):
        self.session = session
        self.store = PurchaseStore(session)

    def check(self, student_id: int, item_id: int) -> AccessResult:
        item = self.session.get(CatalogItem, item_id)
        if not item:
            raise NotFound(f"Item {item_id} not found", "Item not found")

        if item.is_free:
            return AccessResult(has_access=True, is_free=True)

        purchase = self.store.find_completed(student_id, item_id)
        has_access = purchase is not None and purchase.grants_access

        logger.info(
            f"Access check: student {student_id}, item {item_id}, "
            f"purchase {purchase.id if purchase else None}, granted={has_access}"
        )
        return AccessResult(
            has_access=has_access,
            is_free=False,
            purchase=purchase if has_access else None,
        )

    def has_access(self, student_id: int, item_id: int) -> bool:
        return self.check(student_id, item_id).has_access

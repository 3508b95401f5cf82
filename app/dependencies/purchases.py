from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from app.config import settings
from app.database import get_session
from app.models.user import User
from app.services.access_checker import AccessChecker, AccessResult
from app.services.catalog_service import CatalogService
from app.services.order_issuer import OrderIssuer
from app.services.purchase_service import PurchaseService
from app.services.purchase_store import PurchaseStore
from app.services.signature_verifier import SignatureVerifier
from app.utils.errors import ConfigurationError
from app.utils.token import get_current_user


# built once in the app lifespan, see app.main
def get_order_issuer(request: Request) -> OrderIssuer:
    issuer = getattr(request.app.state, "order_issuer", None)
    if issuer is None:
        raise ConfigurationError("Order issuer not initialised")
    return issuer


def get_signature_verifier(request: Request) -> SignatureVerifier:
    verifier = getattr(request.app.state, "signature_verifier", None)
    if verifier is None:
        raise ConfigurationError("Signature verifier not initialised")
    return verifier


def get_purchase_store(session: Session = Depends(get_session)) -> PurchaseStore:
    return PurchaseStore(session)


def get_purchase_service(
    session: Session = Depends(get_session),
    issuer: OrderIssuer = Depends(get_order_issuer),
    verifier: SignatureVerifier = Depends(get_signature_verifier),
) -> PurchaseService:
    return PurchaseService(
        store=PurchaseStore(session),
        catalog=CatalogService(session),
        issuer=issuer,
        verifier=verifier,
        settings=settings,
    )


def get_access_checker(session: Session = Depends(get_session)) -> AccessChecker:
    return AccessChecker(session)


def require_item_access(
    item_id: int,
    current_user: User = Depends(get_current_user),
    checker: AccessChecker = Depends(get_access_checker),
) -> AccessResult:
    """Gate for content routes: 403 unless the student may see the item."""
    result = checker.check(current_user.id, item_id)
    if not result.has_access:
        raise HTTPException(403, "You need to purchase this item to access it")
    return result

import hashlib
import hmac
import os

# settings are read at import time
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "development"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from app.config import settings
from app.database import build_engine, create_db_and_tables, get_session
from app.dependencies.purchases import get_order_issuer, get_signature_verifier
from app.main import app as fastapi_app
from app.models import CatalogItem, ItemKind, User
from app.services.catalog_service import CatalogService
from app.services.order_issuer import GatewayOrder, OrderIssuer, to_minor_units
from app.services.purchase_service import PurchaseService
from app.services.purchase_store import PurchaseStore
from app.services.signature_verifier import RazorpaySignatureVerifier
from app.utils.token import create_access_token


class FakeOrderIssuer(OrderIssuer):
    """Records every call; hands out queued order ids or `order_fake000001`..."""

    def __init__(self):
        self.calls = []
        self.next_ids = []
        self.error = None
        self._counter = 0

    def create_order(self, amount, currency, receipt, notes=None):
        self.calls.append(
            {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        )
        if self.error is not None:
            raise self.error
        self._counter += 1
        order_id = self.next_ids.pop(0) if self.next_ids else f"order_fake{self._counter:06d}"
        return GatewayOrder(
            id=order_id,
            amount=to_minor_units(amount),
            currency=currency,
            receipt=receipt,
        )


def razorpay_signature(order_id: str, payment_id: str, secret: str = "rzp_test_secret") -> str:
    return hmac.new(
        secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256
    ).hexdigest()


# ---------- database ----------

@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'classroom.db'}")
    create_db_and_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


def _add(session, obj):
    session.add(obj)
    session.commit()
    session.refresh(obj)
    return obj


@pytest.fixture
def student(session):
    return _add(session, User(first_name="Asha", email="asha@example.com"))


@pytest.fixture
def other_student(session):
    return _add(session, User(first_name="Ravi", email="ravi@example.com"))


@pytest.fixture
def admin_user(session):
    return _add(session, User(first_name="Admin", email="admin@example.com", role="admin"))


@pytest.fixture
def free_course(session):
    return _add(
        session,
        CatalogItem(kind=ItemKind.unpaid_course, title="Intro to Algebra", price=0),
    )


@pytest.fixture
def paid_course(session):
    return _add(
        session,
        CatalogItem(
            kind=ItemKind.paid_course,
            title="JEE Physics Crash Course",
            price=499,
            material_key="courses/jee-physics",
        ),
    )


@pytest.fixture
def paid_notes(session):
    return _add(
        session,
        CatalogItem(
            kind=ItemKind.paid_notes,
            title="Organic Chemistry Notes",
            price=199,
            access_days=30,
            material_key="notes/organic-chem.pdf",
        ),
    )


@pytest.fixture
def inactive_item(session):
    return _add(
        session,
        CatalogItem(kind=ItemKind.paid_notes, title="Old Notes", price=99, is_active=False),
    )


# ---------- services ----------

@pytest.fixture
def issuer():
    return FakeOrderIssuer()


@pytest.fixture
def verifier():
    return RazorpaySignatureVerifier(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)


@pytest.fixture
def sign():
    return razorpay_signature


@pytest.fixture
def store(session):
    return PurchaseStore(session)


@pytest.fixture
def service(session, issuer, verifier):
    return PurchaseService(
        store=PurchaseStore(session),
        catalog=CatalogService(session),
        issuer=issuer,
        verifier=verifier,
        settings=settings,
    )


# ---------- API ----------

@pytest.fixture
def client(engine, issuer, verifier):
    def _session_override():
        with Session(engine) as session:
            yield session

    fastapi_app.dependency_overrides[get_session] = _session_override
    fastapi_app.dependency_overrides[get_order_issuer] = lambda: issuer
    fastapi_app.dependency_overrides[get_signature_verifier] = lambda: verifier

    yield TestClient(fastapi_app)

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        token = create_access_token({"user_id": user.id})
        return {"Authorization": f"Bearer {token}"}
    return _headers

"""
Payment signature verification.

Razorpay signs `order_id|payment_id` with the account's key secret
(HMAC-SHA256, hex digest). The production verifier checks exactly that.

The mock verifier is a development affordance that lets the frontend run the
checkout without a real gateway. It can only be built when ENV=development,
and `build_signature_verifier` never returns it in any other environment.
"""
import logging
import re
import secrets
import string
from abc import ABC, abstractmethod
from typing import Optional

import razorpay
from razorpay.errors import SignatureVerificationError

from app.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)


MOCK_PAYMENT_ID_PATTERNS = [
    re.compile(r"^pay_mock_"),
    re.compile(r"^pay_test_"),
    re.compile(r"^pay_[a-zA-Z0-9]{8,15}$"),
]

MOCK_SIGNATURE_PREFIXES = ("mock_signature_", "test_signature_", "dev_signature_")


def _mask(value: Optional[str], keep: int = 12) -> str:
    if not value:
        return "<empty>"
    return f"{value[:keep]}..." if len(value) > keep else value


class SignatureVerifier(ABC):

    @abstractmethod
    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...


class RazorpaySignatureVerifier(SignatureVerifier):
    def __init__(self, key_id: Optional[str], key_secret: Optional[str]):
        self._key_secret = key_secret
        self._client = razorpay.Client(auth=(key_id or "", key_secret or ""))

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self._key_secret:
            logger.error("RAZORPAY_KEY_SECRET not configured, cannot verify payments")
            raise ConfigurationError("RAZORPAY_KEY_SECRET is not set")

        if not order_id or not payment_id or not signature or not signature.isascii():
            logger.warning(
                f"Rejected malformed signature payload for order {order_id}, "
                f"payment {payment_id}"
            )
            return False

        try:
            self._client.utility.verify_payment_signature({
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            })
        except SignatureVerificationError:
            logger.warning(
                f"Signature mismatch for order {order_id}, payment {payment_id}, "
                f"received {_mask(signature)}"
            )
            return False

        logger.info(f"Signature verified for order {order_id}, payment {payment_id}")
        return True


class MockSignatureVerifier(SignatureVerifier):
    """
    Accepts mock payments (mock payment id AND mock signature prefix),
    falls back to the real verifier for everything else.
    """

    def __init__(self, fallback: SignatureVerifier, environment: str):
        if environment != "development":
            raise ConfigurationError(
                f"Mock payments are development-only (ENV={environment})"
            )
        self._fallback = fallback

    @staticmethod
    def is_mock_payment(payment_id: str, signature: str) -> bool:
        if not payment_id or not signature:
            return False
        has_mock_id = any(p.match(payment_id) for p in MOCK_PAYMENT_ID_PATTERNS)
        has_mock_signature = signature.startswith(MOCK_SIGNATURE_PREFIXES)
        return has_mock_id and has_mock_signature

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        if self.is_mock_payment(payment_id, signature):
            logger.info(
                f"Mock payment accepted for order {order_id}, payment {payment_id}"
            )
            return True
        return self._fallback.verify(order_id, payment_id, signature)


def build_signature_verifier(settings) -> SignatureVerifier:
    verifier = RazorpaySignatureVerifier(
        settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET
    )
    if settings.ENV == "development":
        logger.warning("ENV=development: mock payment signatures are accepted")
        return MockSignatureVerifier(verifier, settings.ENV)
    return verifier


def generate_mock_payment(order_id: str) -> tuple[str, str]:
    """Payment id + signature pair accepted by MockSignatureVerifier."""
    alphabet = string.ascii_letters + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(10))
    payment_id = f"pay_mock_{suffix}"
    signature = f"mock_signature_{order_id}_{suffix}"
    return payment_id, signature

import logging
import random
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import razorpay
import razorpay.errors
import requests

from app.utils.errors import ConfigurationError, GatewayError

logger = logging.getLogger(__name__)

RECEIPT_MAX_LENGTH = 40
_BASE36 = string.digits + string.ascii_lowercase


@dataclass
class GatewayOrder:
    id: str
    amount: int          # minor units (paise)
    currency: str
    receipt: str
    status: str = "created"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "currency": self.currency,
            "receipt": self.receipt,
        }


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_receipt(prefix: str = "rcpt") -> str:
    """
    Short receipt for the gateway: `{prefix}_{ms timestamp}_{random}`.
    Razorpay rejects receipts longer than 40 characters, so no ids go in here.
    """
    timestamp = _base36(int(time.time() * 1000))
    suffix = "".join(random.choices(_BASE36, k=6))
    tail = f"_{timestamp}_{suffix}"
    return f"{prefix[:RECEIPT_MAX_LENGTH - len(tail)]}{tail}"


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class OrderIssuer(ABC):

    @abstractmethod
    def create_order(
        self,
        amount: float,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        ...


class RazorpayOrderIssuer(OrderIssuer):
    def __init__(self, client: Optional[razorpay.Client], timeout: float = 10.0):
        self._client = client
        self._timeout = timeout

    def create_order(
        self,
        amount: float,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        if self._client is None:
            logger.error("Razorpay credentials not configured")
            raise ConfigurationError("RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET not set")

        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": receipt,
            "notes": {k: str(v) for k, v in (notes or {}).items()},
        }
        logger.info(
            f"Creating Razorpay order: amount={payload['amount']} "
            f"currency={currency} receipt={receipt}"
        )

        try:
            response = self._client.order.create(payload, timeout=self._timeout)
        except requests.exceptions.Timeout as e:
            logger.error(f"Razorpay order creation timed out after {self._timeout}s")
            raise GatewayError(f"Gateway timeout: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Razorpay unreachable: {e}")
            raise GatewayError(f"Gateway connection error: {e}") from e
        except razorpay.errors.BadRequestError as e:
            # bad credentials surface here too
            logger.error(f"Razorpay rejected order request: {e}")
            raise GatewayError(f"Gateway rejected order: {e}") from e
        except (razorpay.errors.ServerError, razorpay.errors.GatewayError) as e:
            logger.error(f"Razorpay server error: {e}")
            raise GatewayError(f"Gateway server error: {e}") from e

        if not isinstance(response, dict) or not response.get("id"):
            logger.error(f"Malformed Razorpay order response: {response!r}")
            raise GatewayError("Gateway returned no order id")

        order = GatewayOrder(
            id=response["id"],
            amount=int(response.get("amount", payload["amount"])),
            currency=response.get("currency", currency),
            receipt=response.get("receipt", receipt),
            status=response.get("status", "created"),
        )
        logger.info(f"Razorpay order created: {order.id} ({order.status})")
        return order


def build_razorpay_client(settings) -> Optional[razorpay.Client]:
    if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
        logger.warning("Razorpay keys missing, paid purchases will fail")
        return None
    return razorpay.Client(
        auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
    )

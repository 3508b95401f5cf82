from typing import Any, Optional


class PurchaseError(Exception):
    """
    Base for every failure the purchase flow reports to clients.

    `message` is the internal reason that goes to the logs, `public_message`
    is what the client sees.
    """

    http_status: int = 500
    public_message: str = "Something went wrong"

    def __init__(self, message: str, public_message: Optional[str] = None):
        super().__init__(message)
        if public_message is not None:
            self.public_message = public_message

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": type(self).__name__,
            "detail": self.public_message,
        }


class InvalidRequest(PurchaseError):
    http_status = 400
    public_message = "Invalid request"

    def __init__(self, message: str, public_message: Optional[str] = None):
        # field errors are safe to show as-is
        super().__init__(message, public_message or message)


class AlreadyPurchased(PurchaseError):
    http_status = 400
    public_message = "You have already purchased this item"


class Unavailable(PurchaseError):
    http_status = 400
    public_message = "This item is not available for purchase"


class NotFound(PurchaseError):
    http_status = 404
    public_message = "Not found"

    def __init__(self, message: str, public_message: Optional[str] = None):
        super().__init__(message, public_message or message)


class VerificationFailed(PurchaseError):
    http_status = 400
    public_message = "Payment verification failed. Please try again."


class GatewayError(PurchaseError):
    http_status = 500
    public_message = "Failed to create payment order. Please try again."


class CompletionFailed(PurchaseError):
    http_status = 500
    public_message = (
        "Payment verification successful but purchase completion failed. "
        "Please contact support."
    )


class ConfigurationError(PurchaseError):
    http_status = 500
    public_message = "Payment gateway not configured"

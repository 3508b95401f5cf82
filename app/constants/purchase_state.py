from enum import Enum


class PurchaseState(str, Enum):
    awaiting_payment = "awaiting_payment"
    payment_failed = "payment_failed"
    completed = "completed"
    cancelled = "cancelled"


class InvalidTransition(Exception):
    def __init__(self, current: PurchaseState, target: PurchaseState):
        super().__init__(f"Illegal purchase transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


ALLOWED_TRANSITIONS = {
    PurchaseState.awaiting_payment: [
        PurchaseState.completed,
        PurchaseState.payment_failed,
        PurchaseState.cancelled,
        # abandoned checkout restarted with a fresh order
        PurchaseState.awaiting_payment,
    ],
    PurchaseState.payment_failed: [
        PurchaseState.completed,
        PurchaseState.awaiting_payment,
        PurchaseState.payment_failed,
        PurchaseState.cancelled,
    ],
    PurchaseState.cancelled: [
        PurchaseState.awaiting_payment,
        PurchaseState.completed,
    ],
    # a soft-deactivated completed row is reused for a fresh purchase
    PurchaseState.completed: [
        PurchaseState.awaiting_payment,
        PurchaseState.completed,
    ],
}

# states a verify call may still complete
PAYABLE_STATES = (PurchaseState.awaiting_payment, PurchaseState.payment_failed)

# (purchase_status, payment_status) exposed to clients
STATUS_VIEW = {
    PurchaseState.awaiting_payment: ("pending", "pending"),
    PurchaseState.payment_failed: ("failed", "failed"),
    PurchaseState.completed: ("completed", "completed"),
    PurchaseState.cancelled: ("cancelled", "pending"),
}

PURCHASE_STATUS_TO_STATE = {
    "pending": PurchaseState.awaiting_payment,
    "failed": PurchaseState.payment_failed,
    "completed": PurchaseState.completed,
    "cancelled": PurchaseState.cancelled,
}


def can_transition(current: PurchaseState, target: PurchaseState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, [])


def ensure_transition(current: PurchaseState, target: PurchaseState) -> PurchaseState:
    if not can_transition(current, target):
        raise InvalidTransition(current, target)
    return target


def purchase_status(state: PurchaseState) -> str:
    return STATUS_VIEW[state][0]


def payment_status(state: PurchaseState) -> str:
    return STATUS_VIEW[state][1]

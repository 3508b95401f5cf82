"""
Purchase / enrollment orchestration.

One flow serves free courses, paid courses and paid notes:

    purchase -> (free)  completed
             -> (paid)  awaiting_payment + gateway order
    verify   -> completed | payment_failed
    cancel   -> cancelled

An unsuccessful or expired attempt never blocks a new purchase; the same row is
reused so retries do not pile up duplicates.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.config import Settings
from app.constants.purchase_state import InvalidTransition, PurchaseState
from app.models.catalog_item import CatalogItem, ItemKind
from app.models.purchase import PurchaseRecord
from app.services.catalog_service import CatalogService
from app.services.order_issuer import (
    GatewayOrder,
    OrderIssuer,
    generate_receipt,
    to_minor_units,
)
from app.services.purchase_store import PaymentDetails, PurchaseStore
from app.services.signature_verifier import SignatureVerifier
from app.utils.errors import (
    AlreadyPurchased,
    CompletionFailed,
    GatewayError,
    InvalidRequest,
    NotFound,
    PurchaseError,
    Unavailable,
    VerificationFailed,
)

logger = logging.getLogger(__name__)

RECEIPT_PREFIX = {
    ItemKind.unpaid_course: "course",
    ItemKind.paid_course: "course",
    ItemKind.paid_notes: "notes",
}

ENROLLMENT_MODES = ("online", "offline", "hybrid")

COURSE_KINDS = (ItemKind.unpaid_course, ItemKind.paid_course)


@dataclass
class PurchaseOutcome:
    record: PurchaseRecord
    order: Optional[GatewayOrder] = None

    @property
    def is_free(self) -> bool:
        return self.order is None


class PurchaseService:
    def __init__(
        self,
        store: PurchaseStore,
        catalog: CatalogService,
        issuer: OrderIssuer,
        verifier: SignatureVerifier,
        settings: Settings,
    ):
        self.store = store
        self.catalog = catalog
        self.issuer = issuer
        self.verifier = verifier
        self.settings = settings

    # ---------- purchase / enroll ----------

    def purchase(
        self,
        student_id: int,
        item_id: int,
        mode: Optional[str] = None,
        schedule: Optional[str] = None,
    ) -> PurchaseOutcome:
        if mode is not None and mode not in ENROLLMENT_MODES:
            raise InvalidRequest(f"Invalid mode '{mode}'")

        owned = self.store.find_completed(student_id, item_id)
        if owned and owned.grants_access:
            raise AlreadyPurchased(
                f"Student {student_id} already owns item {item_id}"
            )

        item = self.catalog.get_item(item_id)
        if not item:
            raise NotFound(f"Item {item_id} not found", "Item not found")
        if not item.is_active:
            raise Unavailable(f"Item {item_id} is inactive")

        if owned:
            logger.info(
                f"Access to item {item_id} expired for student {student_id}, "
                f"purchase {owned.id} will be renewed"
            )

        logger.info(
            f"Processing purchase: student {student_id}, item {item.id} "
            f"({item.kind.value}), price {item.price}"
        )

        if item.is_free:
            return self._complete_free(student_id, item, mode, schedule)
        return self._start_paid(student_id, item, mode, schedule)

    def _stage(self, student_id, item: CatalogItem, mode, schedule) -> PurchaseRecord:
        try:
            return self.store.stage_attempt(student_id, item, mode, schedule)
        except IntegrityError as e:
            # two purchase requests for the same item raced on the unique row
            self.store.discard_staged()
            raise InvalidRequest(
                f"Concurrent purchase of item {item.id} by student {student_id}: {e}",
                "A purchase for this item is already in progress",
            ) from e
        except InvalidTransition as e:
            # completed by a parallel request after the AlreadyPurchased check
            self.store.discard_staged()
            raise AlreadyPurchased(
                f"Student {student_id} already owns item {item.id}: {e}"
            ) from e

    def _complete_free(self, student_id, item: CatalogItem, mode, schedule) -> PurchaseOutcome:
        record = self._stage(student_id, item, mode, schedule)
        try:
            record = self.store.complete_purchase(record, item.access_days)
        except SQLAlchemyError as e:
            self.store.discard_staged()
            logger.exception(f"Free purchase of item {item.id} failed for student {student_id}")
            raise CompletionFailed(f"Free purchase bookkeeping failed: {e}") from e

        # the record is committed as completed from here on
        record_id = record.id
        try:
            self._enroll(record)
        except SQLAlchemyError as e:
            logger.exception(
                f"Free purchase {record_id} completed but roster append failed"
            )
            self._flag(record_id, f"Roster append failed after free enrollment: {e}")
            raise CompletionFailed(
                f"Purchase {record_id} needs manual reconciliation: {e}"
            ) from e

        logger.info(f"Free item {item.id} granted to student {student_id}")
        return PurchaseOutcome(record=record)

    def _pending_order(self, student_id, item: CatalogItem) -> Optional[PurchaseOutcome]:
        """
        A recent unpaid checkout for the same price is handed back as-is, so a
        second tap does not orphan the order the student may be paying.
        """
        window = self.settings.PENDING_ORDER_REUSE_MINUTES
        if window <= 0:
            return None

        record = self.store.find_by_item(
            student_id,
            item.id,
            states=[PurchaseState.awaiting_payment],
            active_only=True,
        )
        if not record or not record.gateway_order_id:
            return None
        if record.amount != item.price or record.currency != item.currency:
            return None
        if record.updated_at < datetime.utcnow() - timedelta(minutes=window):
            return None

        order = GatewayOrder(
            id=record.gateway_order_id,
            amount=to_minor_units(record.amount),
            currency=record.currency,
            receipt=record.receipt or "",
        )
        return PurchaseOutcome(record=record, order=order)

    def _start_paid(self, student_id, item: CatalogItem, mode, schedule) -> PurchaseOutcome:
        pending = self._pending_order(student_id, item)
        if pending:
            logger.info(
                f"Purchase {pending.record.id} still awaiting payment, "
                f"returning order {pending.order.id}"
            )
            return pending

        # order first: no purchase row is written or locked during the gateway call
        try:
            order = self.issuer.create_order(
                amount=item.price,
                currency=item.currency or self.settings.DEFAULT_CURRENCY,
                receipt=generate_receipt(RECEIPT_PREFIX[item.kind]),
                notes={
                    "item_id": item.id,
                    "item_kind": item.kind.value,
                    "student_id": student_id,
                },
            )
        except PurchaseError:
            logger.error(
                f"Gateway order failed for student {student_id}, item {item.id}; "
                f"nothing staged"
            )
            raise
        except Exception as e:
            logger.exception(f"Unexpected gateway failure for item {item.id}")
            raise GatewayError(f"Unexpected gateway failure: {e}") from e

        try:
            record = self._stage(student_id, item, mode, schedule)
        except PurchaseError:
            logger.warning(f"Gateway order {order.id} left unused, purchase not staged")
            raise

        try:
            record = self.store.attach_order(record, order)
        except SQLAlchemyError as e:
            self.store.discard_staged()
            logger.exception(f"Could not persist gateway order {order.id}")
            raise GatewayError(f"Failed to persist gateway order {order.id}: {e}") from e

        logger.info(f"Purchase {record.id} awaiting payment on order {order.id}")
        return PurchaseOutcome(record=record, order=order)

    # ---------- verify & complete ----------

    def verify(
        self,
        student_id: int,
        payment_id: Optional[str],
        signature: Optional[str],
        record_id: Optional[int] = None,
        order_id: Optional[str] = None,
    ) -> PurchaseRecord:
        record = self._locate(student_id, record_id, order_id)

        if record.state == PurchaseState.completed:
            logger.info(f"Purchase {record.id} already completed, verify is a no-op")
            return record

        if record.state == PurchaseState.cancelled:
            raise NotFound(
                f"Purchase {record.id} is cancelled",
                "Purchase not found or payment already processed",
            )

        order_id = order_id or record.gateway_order_id
        if not payment_id or not order_id or not signature:
            raise InvalidRequest("All payment details are required")
        if record.gateway_order_id != order_id:
            raise InvalidRequest(
                f"Order id {order_id} does not match purchase {record.id}",
                "Order ID mismatch",
            )

        if not self.verifier.verify(order_id, payment_id, signature):
            self.store.mark_payment_failed(record.id, "Signature verification failed")
            raise VerificationFailed(
                f"Signature verification failed for purchase {record.id}"
            )

        return self._complete_verified(record, payment_id, signature)

    def _locate(self, student_id, record_id, order_id) -> PurchaseRecord:
        if record_id is None and not order_id:
            raise InvalidRequest("Purchase id or Razorpay order id is required")

        if record_id is not None:
            record = self.store.find_for_student(student_id, record_id)
        else:
            record = self.store.find_by_gateway_order(student_id, order_id)

        if not record:
            raise NotFound(
                f"No purchase for student {student_id} "
                f"(id={record_id}, order={order_id})",
                "Purchase not found or payment already processed",
            )
        return record

    def _complete_verified(self, record: PurchaseRecord, payment_id, signature) -> PurchaseRecord:
        record_id = record.id
        try:
            item = self.catalog.get_item(record.item_id)
            won = self.store.complete_payment(
                record_id,
                PaymentDetails(payment_id=payment_id, signature=signature),
                access_days=item.access_days if item else None,
            )
            record = self.store.get(record_id)

            if not won:
                if record is not None and record.state == PurchaseState.completed:
                    # a concurrent verify got there first
                    return record
                raise NotFound(
                    f"Purchase {record_id} stopped being payable during verify",
                    "Purchase not found or payment already processed",
                )

            self._enroll(record)
        except PurchaseError:
            raise
        except Exception as e:
            logger.exception(
                f"Payment {payment_id} verified but purchase {record_id} bookkeeping failed"
            )
            self._flag(record_id, f"Completion failed after payment {payment_id}: {e}")
            raise CompletionFailed(
                f"Purchase {record_id} needs manual reconciliation: {e}"
            ) from e

        logger.info(f"Purchase {record_id} verified and completed")
        return record

    def _enroll(self, record: PurchaseRecord) -> None:
        added = self.catalog.add_to_roster_if_absent(
            record.item_id, record.student_id, record.mode, record.schedule
        )
        if added:
            logger.info(f"Student {record.student_id} enrolled on item {record.item_id}")

    def _flag(self, record_id: int, note: str) -> None:
        try:
            self.store.flag_reconciliation(record_id, note)
        except SQLAlchemyError:
            logger.exception(f"Could not flag purchase {record_id} for reconciliation")

    # ---------- cancel / read ----------

    def cancel(self, student_id: int, record_id: int) -> None:
        record = self.store.find_for_student(student_id, record_id)
        if not record or record.state not in (
            PurchaseState.awaiting_payment,
            PurchaseState.payment_failed,
        ):
            raise NotFound(
                f"No pending purchase {record_id} for student {student_id}",
                "Pending purchase not found",
            )
        if not self.store.cancel(record_id):
            raise NotFound(
                f"Purchase {record_id} completed before it could be cancelled",
                "Pending purchase not found",
            )

    def get(self, student_id: int, record_id: int) -> PurchaseRecord:
        record = self.store.find_for_student(student_id, record_id, active_only=True)
        if not record:
            raise NotFound(f"Purchase {record_id} not found", "Purchase not found")
        return record

    # ---------- access history / progress ----------

    def access_history(self, student_id: int, record_id: int):
        record = self.store.find_for_student(student_id, record_id, active_only=True)
        if not record or record.state != PurchaseState.completed:
            raise NotFound(
                f"No completed purchase {record_id} for student {student_id}",
                "Purchase not found",
            )
        return record, self.store.access_history(record.id)

    def record_progress(
        self, student_id: int, record_id: int, lesson_id: str, watch_seconds: int
    ):
        record = self.store.find_for_student(student_id, record_id, active_only=True)
        if not record or not record.grants_access:
            raise NotFound(
                f"No valid enrollment {record_id} for student {student_id}",
                "Valid enrollment not found",
            )
        if record.item_kind not in COURSE_KINDS:
            raise InvalidRequest(
                f"Purchase {record_id} is for {record.item_kind.value}",
                "Progress is tracked for courses only",
            )
        if not lesson_id:
            raise InvalidRequest("Lesson id is required")

        progress = self.store.update_progress(record, lesson_id, watch_seconds)
        logger.info(
            f"Progress on purchase {record_id}, lesson {lesson_id}: "
            f"{progress.watch_seconds}s"
        )
        return progress

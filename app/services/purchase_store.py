import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from app.constants.purchase_state import (
    PAYABLE_STATES,
    InvalidTransition,
    PurchaseState,
    ensure_transition,
)
from app.models.access_log import AccessLog
from app.models.catalog_item import CatalogItem
from app.models.lesson_progress import LessonProgress
from app.models.purchase import PurchaseRecord
from app.services.order_issuer import GatewayOrder

logger = logging.getLogger(__name__)


@dataclass
class PaymentDetails:
    payment_id: str
    signature: str
    method: str = "razorpay"


def _access_expiry(granted_at: datetime, access_days: Optional[int]) -> Optional[datetime]:
    if not access_days:
        return None
    return granted_at + timedelta(days=access_days)


class PurchaseStore:
    """
    Persistence for purchase records.

    Every state change that can race (verify, fail, cancel) is a single
    conditional UPDATE keyed on the row's current state, so two requests for
    the same record can never both win.
    """

    def __init__(self, session: Session):
        self.session = session

    # ---------- finders ----------

    def get(self, record_id: int) -> Optional[PurchaseRecord]:
        return self.session.get(PurchaseRecord, record_id)

    def find_for_student(
        self,
        student_id: int,
        record_id: int,
        active_only: bool = False,
    ) -> Optional[PurchaseRecord]:
        query = (
            select(PurchaseRecord)
            .where(PurchaseRecord.id == record_id)
            .where(PurchaseRecord.student_id == student_id)
        )
        if active_only:
            query = query.where(PurchaseRecord.is_active == True)  # noqa: E712
        return self.session.exec(query).first()

    def find_by_item(
        self,
        student_id: int,
        item_id: int,
        states: Optional[Iterable[PurchaseState]] = None,
        active_only: bool = False,
    ) -> Optional[PurchaseRecord]:
        query = (
            select(PurchaseRecord)
            .where(PurchaseRecord.student_id == student_id)
            .where(PurchaseRecord.item_id == item_id)
        )
        if states is not None:
            query = query.where(PurchaseRecord.state.in_(list(states)))
        if active_only:
            query = query.where(PurchaseRecord.is_active == True)  # noqa: E712
        return self.session.exec(query).first()

    def find_completed(self, student_id: int, item_id: int) -> Optional[PurchaseRecord]:
        return self.find_by_item(
            student_id, item_id, states=[PurchaseState.completed], active_only=True
        )

    def find_by_gateway_order(
        self, student_id: int, gateway_order_id: str
    ) -> Optional[PurchaseRecord]:
        return self.session.exec(
            select(PurchaseRecord)
            .where(PurchaseRecord.student_id == student_id)
            .where(PurchaseRecord.gateway_order_id == gateway_order_id)
        ).first()

    def list_for_student(self, student_id: int, status: Optional[PurchaseState] = None):
        query = (
            select(PurchaseRecord)
            .where(PurchaseRecord.student_id == student_id)
            .where(PurchaseRecord.is_active == True)  # noqa: E712
        )
        if status is not None:
            query = query.where(PurchaseRecord.state == status)
        return query.order_by(PurchaseRecord.purchased_at.desc(), PurchaseRecord.id.desc())

    def list_all(
        self,
        status: Optional[PurchaseState] = None,
        student_id: Optional[int] = None,
        item_id: Optional[int] = None,
    ):
        query = select(PurchaseRecord)
        if status is not None:
            query = query.where(PurchaseRecord.state == status)
        if student_id is not None:
            query = query.where(PurchaseRecord.student_id == student_id)
        if item_id is not None:
            query = query.where(PurchaseRecord.item_id == item_id)
        return query.order_by(PurchaseRecord.created_at.desc())

    # ---------- purchase attempt ----------

    def stage_attempt(
        self,
        student_id: int,
        item: CatalogItem,
        mode: Optional[str] = None,
        schedule: Optional[str] = None,
    ) -> PurchaseRecord:
        """
        Create, or reuse, the single row for (student, item) in
        awaiting_payment. Flushed only; the caller commits through
        attach_order / complete_purchase or drops it with discard_staged.
        """
        now = datetime.utcnow()
        record = self.find_by_item(student_id, item.id)

        if record is None:
            record = PurchaseRecord(
                student_id=student_id,
                item_id=item.id,
                item_kind=item.kind,
                state=PurchaseState.awaiting_payment,
                amount=item.price or 0,
                currency=item.currency,
                mode=mode,
                schedule=schedule,
                created_at=now,
                updated_at=now,
            )
            logger.info(f"New purchase attempt: student {student_id}, item {item.id}")
        else:
            # completed rows are renewed only once access has lapsed
            if record.state == PurchaseState.completed and record.grants_access:
                raise InvalidTransition(record.state, PurchaseState.awaiting_payment)
            record.state = ensure_transition(record.state, PurchaseState.awaiting_payment)
            record.item_kind = item.kind
            record.amount = item.price or 0
            record.currency = item.currency
            record.receipt = None
            record.gateway_order_id = None
            record.gateway_payment_id = None
            record.gateway_signature = None
            record.payment_method = None
            record.paid_at = None
            record.access_granted_at = None
            record.access_expires_at = None
            record.purchased_at = None
            record.is_active = True
            record.mode = mode or record.mode
            record.schedule = schedule or record.schedule
            record.updated_at = now
            logger.info(
                f"Reusing purchase {record.id} for student {student_id}, item {item.id}"
            )

        self.session.add(record)
        self.session.flush()
        return record

    def attach_order(self, record: PurchaseRecord, order: GatewayOrder) -> PurchaseRecord:
        record.gateway_order_id = order.id
        record.receipt = order.receipt
        record.amount = order.amount / 100
        record.currency = order.currency
        record.updated_at = datetime.utcnow()

        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def discard_staged(self) -> None:
        self.session.rollback()

    def complete_purchase(
        self, record: PurchaseRecord, access_days: Optional[int] = None
    ) -> PurchaseRecord:
        """Free items: straight to completed, no payment leg."""
        now = datetime.utcnow()
        record.state = ensure_transition(record.state, PurchaseState.completed)
        record.amount = 0
        record.payment_method = "free"
        record.paid_at = now
        record.purchased_at = now
        record.access_granted_at = now
        record.access_expires_at = _access_expiry(now, access_days)
        record.is_active = True
        record.updated_at = now

        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    # ---------- conditional transitions ----------

    def _conditional_update(self, record_id: int, from_states, **values) -> bool:
        statement = (
            update(PurchaseRecord)
            .where(PurchaseRecord.id == record_id)
            .where(PurchaseRecord.state.in_(list(from_states)))
            .values(**values)
        )
        result = self.session.connection().execute(statement)
        self.session.commit()
        return result.rowcount == 1

    def complete_payment(
        self,
        record_id: int,
        details: PaymentDetails,
        access_days: Optional[int] = None,
    ) -> bool:
        """
        pending/failed -> completed in one UPDATE. Returns False when the row
        was no longer payable (someone else completed or cancelled it).
        """
        now = datetime.utcnow()
        won = self._conditional_update(
            record_id,
            PAYABLE_STATES,
            state=PurchaseState.completed,
            gateway_payment_id=details.payment_id,
            gateway_signature=details.signature,
            payment_method=details.method,
            paid_at=now,
            purchased_at=now,
            access_granted_at=now,
            access_expires_at=_access_expiry(now, access_days),
            is_active=True,
            updated_at=now,
        )
        if won:
            logger.info(f"Purchase {record_id} completed (payment {details.payment_id})")
        else:
            logger.info(f"Purchase {record_id} was not payable, completion skipped")
        return won

    def mark_payment_failed(self, record_id: int, reason: str) -> bool:
        now = datetime.utcnow()
        failed = self._conditional_update(
            record_id,
            PAYABLE_STATES,
            state=PurchaseState.payment_failed,
            failure_reason=reason,
            last_failure_at=now,
            updated_at=now,
        )
        if failed:
            logger.warning(f"Purchase {record_id} payment failed: {reason}")
        return failed

    def cancel(self, record_id: int) -> bool:
        cancelled = self._conditional_update(
            record_id,
            PAYABLE_STATES,
            state=PurchaseState.cancelled,
            is_active=False,
            updated_at=datetime.utcnow(),
        )
        if cancelled:
            logger.info(f"Purchase {record_id} cancelled")
        return cancelled

    def flag_reconciliation(self, record_id: int, note: str) -> None:
        self.session.rollback()
        self.session.connection().execute(
            update(PurchaseRecord)
            .where(PurchaseRecord.id == record_id)
            .values(reconciliation_note=note, updated_at=datetime.utcnow())
        )
        self.session.commit()

    def record_access(
        self,
        record: PurchaseRecord,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        now = datetime.utcnow()
        self.session.connection().execute(
            update(PurchaseRecord)
            .where(PurchaseRecord.id == record.id)
            .values(
                access_count=PurchaseRecord.access_count + 1,
                last_accessed_at=now,
            )
        )
        self.session.add(
            AccessLog(
                purchase_id=record.id,
                student_id=record.student_id,
                item_id=record.item_id,
                ip_address=ip_address,
                user_agent=user_agent,
                accessed_at=now,
            )
        )
        self.session.commit()

    def access_history(self, record_id: int) -> List[AccessLog]:
        return self.session.exec(
            select(AccessLog)
            .where(AccessLog.purchase_id == record_id)
            .order_by(AccessLog.accessed_at.desc(), AccessLog.id.desc())
        ).all()

    # ---------- course progress ----------

    def update_progress(
        self, record: PurchaseRecord, lesson_id: str, watch_seconds: int
    ) -> LessonProgress:
        """Upsert one lesson's progress. Watch time never goes backwards."""
        progress = self.session.exec(
            select(LessonProgress)
            .where(LessonProgress.purchase_id == record.id)
            .where(LessonProgress.lesson_id == lesson_id)
        ).first()

        if progress is None:
            progress = LessonProgress(
                purchase_id=record.id,
                lesson_id=lesson_id,
                watch_seconds=watch_seconds,
            )
        else:
            progress.watch_seconds = max(progress.watch_seconds, watch_seconds)
            progress.updated_at = datetime.utcnow()

        self.session.add(progress)
        self.session.commit()
        self.session.refresh(progress)
        return progress

    def progress_for(self, record_id: int) -> List[LessonProgress]:
        return self.session.exec(
            select(LessonProgress)
            .where(LessonProgress.purchase_id == record_id)
            .order_by(LessonProgress.lesson_id)
        ).all()

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from app.constants.purchase_state import PurchaseState
from app.models import PurchaseRecord, RosterEntry
from app.services.catalog_service import CatalogService
from app.services.purchase_store import PaymentDetails, PurchaseStore
from app.services.signature_verifier import SignatureVerifier
from app.utils.errors import (
    AlreadyPurchased,
    CompletionFailed,
    GatewayError,
    InvalidRequest,
    NotFound,
    Unavailable,
    VerificationFailed,
)


def _roster(session, item_id):
    return session.exec(select(RosterEntry).where(RosterEntry.item_id == item_id)).all()


def _all_purchases(session):
    return session.exec(select(PurchaseRecord)).all()


def _age(session, record_id, **fields):
    record = session.get(PurchaseRecord, record_id)
    for name, value in fields.items():
        setattr(record, name, value)
    session.add(record)
    session.commit()


# ---------- purchase ----------

class TestPurchase:
    def test_free_course_completes_immediately(self, service, session, issuer, student, free_course):
        outcome = service.purchase(student.id, free_course.id, mode="online", schedule="Mon/Wed")

        record = outcome.record
        assert outcome.is_free
        assert record.state == PurchaseState.completed
        assert record.payment_method == "free"
        assert record.amount == 0
        assert record.purchased_at is not None
        assert record.access_granted_at is not None
        assert issuer.calls == []

        roster = _roster(session, free_course.id)
        assert [(r.student_id, r.mode, r.schedule) for r in roster] == [
            (student.id, "online", "Mon/Wed")
        ]

    def test_paid_course_creates_pending_purchase(self, service, issuer, student, paid_course):
        issuer.next_ids.append("order_abc123")

        outcome = service.purchase(student.id, paid_course.id)

        assert not outcome.is_free
        assert outcome.order.id == "order_abc123"
        assert outcome.order.amount == 49900
        assert outcome.record.state == PurchaseState.awaiting_payment
        assert outcome.record.gateway_order_id == "order_abc123"
        assert outcome.record.amount == 499

        call = issuer.calls[0]
        assert call["amount"] == 499
        assert call["currency"] == "INR"
        assert call["receipt"].startswith("course_")
        assert call["notes"]["item_id"] == paid_course.id

    def test_notes_receipt_prefix(self, service, issuer, student, paid_notes):
        service.purchase(student.id, paid_notes.id)

        assert issuer.calls[0]["receipt"].startswith("notes_")

    def test_completed_purchase_blocks_new_one(self, service, student, free_course):
        service.purchase(student.id, free_course.id)

        with pytest.raises(AlreadyPurchased):
            service.purchase(student.id, free_course.id)

    def test_missing_item(self, service, student):
        with pytest.raises(NotFound):
            service.purchase(student.id, 9999)

    def test_inactive_item(self, service, student, inactive_item):
        with pytest.raises(Unavailable):
            service.purchase(student.id, inactive_item.id)

    def test_invalid_mode(self, service, student, paid_course):
        with pytest.raises(InvalidRequest):
            service.purchase(student.id, paid_course.id, mode="weekend")

    def test_second_tap_returns_pending_order(self, service, session, issuer, student, paid_course):
        first = service.purchase(student.id, paid_course.id)

        second = service.purchase(student.id, paid_course.id)

        assert second.record.id == first.record.id
        assert second.order.id == first.order.id
        assert second.order.amount == 49900
        assert second.order.receipt == first.order.receipt
        assert len(issuer.calls) == 1

    def test_stale_pending_checkout_is_restarted(self, service, session, issuer, student, paid_course):
        first = service.purchase(student.id, paid_course.id).record
        first_id, first_order = first.id, first.gateway_order_id
        _age(session, first_id, updated_at=datetime.utcnow() - timedelta(minutes=20))

        second = service.purchase(student.id, paid_course.id).record

        assert second.id == first_id
        assert second.gateway_order_id != first_order
        assert len(issuer.calls) == 2
        assert len(_all_purchases(session)) == 1

    def test_price_change_issues_new_order(self, service, session, issuer, student, paid_course):
        first_order = service.purchase(student.id, paid_course.id).order.id
        paid_course.price = 599
        session.add(paid_course)
        session.commit()

        second = service.purchase(student.id, paid_course.id)

        assert second.order.id != first_order
        assert second.order.amount == 59900
        assert second.record.amount == 599

    def test_expired_access_can_be_bought_again(self, service, session, issuer, sign, student, paid_notes):
        first = service.purchase(student.id, paid_notes.id)
        record_id, order_id = first.record.id, first.order.id
        service.verify(student.id, "pay_first001", sign(order_id, "pay_first001"), record_id=record_id)
        _age(session, record_id, access_expires_at=datetime.utcnow() - timedelta(days=1))
        assert not service.store.get(record_id).grants_access

        renewal = service.purchase(student.id, paid_notes.id)

        assert renewal.record.id == record_id
        assert renewal.record.state == PurchaseState.awaiting_payment
        assert renewal.order.id != order_id

        record = service.verify(
            student.id, "pay_renew001", sign(renewal.order.id, "pay_renew001"),
            record_id=record_id,
        )
        assert record.grants_access
        assert record.access_expires_at > datetime.utcnow() + timedelta(days=29)
        assert len(_all_purchases(session)) == 1

    def test_free_roster_failure_is_flagged(self, service, student, free_course, monkeypatch):
        def broken_roster(*args, **kwargs):
            raise OperationalError("INSERT INTO roster_entry", {}, Exception("database is locked"))

        monkeypatch.setattr(service.catalog, "add_to_roster_if_absent", broken_roster)

        with pytest.raises(CompletionFailed):
            service.purchase(student.id, free_course.id)

        record = service.store.find_by_item(student.id, free_course.id)
        assert record.state == PurchaseState.completed
        assert "Roster append failed" in record.reconciliation_note

    def test_nothing_is_written_during_gateway_call(self, engine, service, issuer, student, paid_course):
        seen = {}
        fake_create = issuer.create_order

        def create_order(*args, **kwargs):
            seen["pending_writes"] = bool(service.store.session.new or service.store.session.dirty)
            with Session(engine) as other:
                seen["rows"] = len(other.exec(select(PurchaseRecord)).all())
            return fake_create(*args, **kwargs)

        issuer.create_order = create_order

        service.purchase(student.id, paid_course.id)

        assert seen == {"pending_writes": False, "rows": 0}

    def test_gateway_failure_leaves_no_row(self, service, session, issuer, student, paid_course):
        issuer.error = GatewayError("Gateway timeout: read timed out")

        with pytest.raises(GatewayError):
            service.purchase(student.id, paid_course.id)

        assert _all_purchases(session) == []

    def test_unexpected_issuer_error_is_gateway_error(self, service, session, issuer, student, paid_course):
        issuer.error = RuntimeError("socket closed")

        with pytest.raises(GatewayError):
            service.purchase(student.id, paid_course.id)

        assert _all_purchases(session) == []


# ---------- verify ----------

class TestVerify:
    @pytest.fixture
    def pending(self, service, issuer, student, paid_course):
        issuer.next_ids.append("order_abc123")
        return service.purchase(student.id, paid_course.id).record

    def test_correct_signature_completes(self, service, session, sign, student, paid_course, pending):
        record = service.verify(
            student.id,
            payment_id="pay_29QQoUBi66xm2f",
            signature=sign("order_abc123", "pay_29QQoUBi66xm2f"),
            record_id=pending.id,
        )

        assert record.state == PurchaseState.completed
        assert record.paid_at is not None
        assert record.gateway_payment_id == "pay_29QQoUBi66xm2f"
        assert record.payment_method == "razorpay"
        assert [r.student_id for r in _roster(session, paid_course.id)] == [student.id]

    def test_locate_by_order_id(self, service, sign, student, pending):
        record = service.verify(
            student.id,
            payment_id="pay_29QQoUBi66xm2f",
            signature=sign("order_abc123", "pay_29QQoUBi66xm2f"),
            order_id="order_abc123",
        )

        assert record.id == pending.id
        assert record.state == PurchaseState.completed

    def test_notes_access_expiry(self, service, issuer, sign, student, paid_notes):
        issuer.next_ids.append("order_notes1")
        pending = service.purchase(student.id, paid_notes.id).record

        record = service.verify(
            student.id, "pay_notes0001", sign("order_notes1", "pay_notes0001"),
            record_id=pending.id,
        )

        assert record.access_expires_at - record.access_granted_at == timedelta(days=30)

    def test_verify_again_is_idempotent(self, service, session, sign, student, paid_course, pending):
        service.verify(
            student.id, "pay_first0001", sign("order_abc123", "pay_first0001"),
            record_id=pending.id,
        )

        record = service.verify(student.id, "pay_other0002", "garbage", record_id=pending.id)

        assert record.state == PurchaseState.completed
        assert record.gateway_payment_id == "pay_first0001"
        assert len(_roster(session, paid_course.id)) == 1

    def test_wrong_signature_fails_then_retry_is_allowed(self, service, sign, student, paid_course, pending):
        record_id = pending.id

        with pytest.raises(VerificationFailed):
            service.verify(student.id, "pay_bad00001", "0" * 64, record_id=record_id)

        failed = service.store.get(record_id)
        assert failed.state == PurchaseState.payment_failed
        assert failed.failure_reason == "Signature verification failed"
        assert failed.last_failure_at is not None

        retry = service.purchase(student.id, paid_course.id).record
        assert retry.id == record_id
        assert retry.state == PurchaseState.awaiting_payment
        new_order = retry.gateway_order_id
        assert new_order != "order_abc123"

        record = service.verify(
            student.id, "pay_good0001", sign(new_order, "pay_good0001"), record_id=record_id
        )
        assert record.state == PurchaseState.completed

    def test_gateway_failure_on_retry_keeps_failed_row(self, service, issuer, student, paid_course, pending):
        record_id = pending.id
        with pytest.raises(VerificationFailed):
            service.verify(student.id, "pay_bad00001", "0" * 64, record_id=record_id)
        issuer.error = GatewayError("Gateway server error")

        with pytest.raises(GatewayError):
            service.purchase(student.id, paid_course.id)

        record = service.store.get(record_id)
        assert record.state == PurchaseState.payment_failed
        assert record.gateway_order_id == "order_abc123"

    def test_failed_row_is_not_locked_during_gateway_call(self, engine, service, issuer, student, paid_course, pending):
        record_id = pending.id
        with pytest.raises(VerificationFailed):
            service.verify(student.id, "pay_bad00001", "0" * 64, record_id=record_id)
        fake_create = issuer.create_order

        def create_order(*args, **kwargs):
            assert not service.store.session.dirty
            # another request can still write the row while the order is created
            with Session(engine) as other:
                PurchaseStore(other).flag_reconciliation(record_id, "checked by support")
            return fake_create(*args, **kwargs)

        issuer.create_order = create_order

        outcome = service.purchase(student.id, paid_course.id)

        assert outcome.record.id == record_id
        assert outcome.record.state == PurchaseState.awaiting_payment
        assert outcome.record.reconciliation_note == "checked by support"

    def test_unknown_order(self, service, student, pending):
        with pytest.raises(NotFound):
            service.verify(student.id, "pay_1", "sig", order_id="order_unknown")

    def test_other_students_order(self, service, sign, other_student, pending):
        with pytest.raises(NotFound):
            service.verify(
                other_student.id, "pay_1", sign("order_abc123", "pay_1"),
                order_id="order_abc123",
            )

    def test_needs_purchase_or_order_id(self, service, student, pending):
        with pytest.raises(InvalidRequest):
            service.verify(student.id, "pay_1", "sig")

    def test_missing_signature(self, service, student, pending):
        with pytest.raises(InvalidRequest):
            service.verify(student.id, "pay_1", None, record_id=pending.id)

        assert service.store.get(pending.id).state == PurchaseState.awaiting_payment

    def test_order_mismatch(self, service, sign, student, pending):
        with pytest.raises(InvalidRequest) as exc:
            service.verify(
                student.id, "pay_1", sign("order_other", "pay_1"),
                record_id=pending.id, order_id="order_other",
            )

        assert exc.value.public_message == "Order ID mismatch"

    def test_cancelled_purchase_cannot_be_verified(self, service, sign, student, pending):
        service.cancel(student.id, pending.id)

        with pytest.raises(NotFound):
            service.verify(
                student.id, "pay_1", sign("order_abc123", "pay_1"), record_id=pending.id
            )

    def test_concurrent_verify_converges(self, engine, session, service, student, paid_course, pending):
        record_id, item_id, student_id = pending.id, paid_course.id, student.id

        class CompetingVerifier(SignatureVerifier):
            """Another request completes the same purchase mid-verify."""

            def verify(self, order_id, payment_id, signature):
                with Session(engine) as other:
                    PurchaseStore(other).complete_payment(
                        record_id, PaymentDetails("pay_winner01", "sig_winner")
                    )
                    CatalogService(other).add_to_roster_if_absent(item_id, student_id)
                return True

        service.verifier = CompetingVerifier()

        record = service.verify(student_id, "pay_loser001", "sig_loser", record_id=record_id)

        assert record.state == PurchaseState.completed
        assert record.gateway_payment_id == "pay_winner01"
        assert len(_roster(session, item_id)) == 1

    def test_bookkeeping_failure_is_flagged(self, service, sign, student, paid_course, pending, monkeypatch):
        record_id = pending.id

        def broken_roster(*args, **kwargs):
            raise OperationalError("INSERT INTO roster_entry", {}, Exception("database is locked"))

        monkeypatch.setattr(service.catalog, "add_to_roster_if_absent", broken_roster)

        with pytest.raises(CompletionFailed):
            service.verify(
                student.id, "pay_29QQoUBi66xm2f", sign("order_abc123", "pay_29QQoUBi66xm2f"),
                record_id=record_id,
            )

        record = service.store.get(record_id)
        assert record.state == PurchaseState.completed
        assert "pay_29QQoUBi66xm2f" in record.reconciliation_note


# ---------- cancel / get ----------

class TestCancel:
    def test_cancel_pending_then_buy_again(self, service, student, paid_course):
        pending = service.purchase(student.id, paid_course.id).record
        record_id = pending.id

        service.cancel(student.id, record_id)

        cancelled = service.store.get(record_id)
        assert cancelled.state == PurchaseState.cancelled
        assert not cancelled.is_active
        with pytest.raises(NotFound):
            service.get(student.id, record_id)

        again = service.purchase(student.id, paid_course.id).record
        assert again.id == record_id
        assert again.is_active
        assert again.state == PurchaseState.awaiting_payment

    def test_cannot_cancel_completed(self, service, student, free_course):
        record = service.purchase(student.id, free_course.id).record

        with pytest.raises(NotFound):
            service.cancel(student.id, record.id)

    def test_cannot_cancel_other_students_purchase(self, service, student, other_student, paid_course):
        record = service.purchase(student.id, paid_course.id).record

        with pytest.raises(NotFound):
            service.cancel(other_student.id, record.id)

    def test_get(self, service, student, other_student, paid_course):
        record = service.purchase(student.id, paid_course.id).record

        assert service.get(student.id, record.id).id == record.id
        with pytest.raises(NotFound):
            service.get(other_student.id, record.id)


# ---------- access history / progress ----------

class TestHistoryAndProgress:
    @pytest.fixture
    def owned_course(self, service, sign, student, paid_course):
        outcome = service.purchase(student.id, paid_course.id)
        return service.verify(
            student.id, "pay_29QQoUBi66xm2f",
            sign(outcome.order.id, "pay_29QQoUBi66xm2f"),
            record_id=outcome.record.id,
        )

    def test_access_history(self, service, student, owned_course):
        service.store.record_access(owned_course, ip_address="10.0.0.7")

        record, history = service.access_history(student.id, owned_course.id)

        assert record.id == owned_course.id
        assert [entry.ip_address for entry in history] == ["10.0.0.7"]

    def test_access_history_needs_completed_purchase(self, service, student, other_student, paid_course, owned_course):
        with pytest.raises(NotFound):
            service.access_history(other_student.id, owned_course.id)

        pending = service.purchase(other_student.id, paid_course.id).record
        with pytest.raises(NotFound):
            service.access_history(other_student.id, pending.id)

    def test_record_progress(self, service, student, owned_course):
        service.record_progress(student.id, owned_course.id, "lesson-3", 300)

        progress = service.record_progress(student.id, owned_course.id, "lesson-3", 120)

        assert progress.watch_seconds == 300

    def test_progress_on_free_course(self, service, student, free_course):
        record = service.purchase(student.id, free_course.id).record

        progress = service.record_progress(student.id, record.id, "lesson-1", 60)

        assert progress.purchase_id == record.id

    def test_progress_is_for_courses_only(self, service, sign, student, paid_notes):
        outcome = service.purchase(student.id, paid_notes.id)
        service.verify(
            student.id, "pay_notes001", sign(outcome.order.id, "pay_notes001"),
            record_id=outcome.record.id,
        )

        with pytest.raises(InvalidRequest) as exc:
            service.record_progress(student.id, outcome.record.id, "lesson-1", 60)

        assert exc.value.public_message == "Progress is tracked for courses only"

    def test_progress_needs_valid_enrollment(self, service, session, student, paid_course, owned_course):
        _age(session, owned_course.id, access_expires_at=datetime.utcnow() - timedelta(days=1))

        with pytest.raises(NotFound) as exc:
            service.record_progress(student.id, owned_course.id, "lesson-1", 60)

        assert exc.value.public_message == "Valid enrollment not found"

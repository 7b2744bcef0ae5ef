"""
Test suite for the redemption workflow

Covers the submit/approve/reject/cancel state machine, approval atomicity,
and concurrent approvals against one balance on a shared SQLite file.
"""

import tempfile
import threading
from pathlib import Path

import pytest

from points_economy.audit import AuditEventType
from points_economy.errors import (
    ConflictError, InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
)
from points_economy.ledger import TransactionKind
from points_economy.redemptions import RedemptionStatus
from points_economy.storage import InMemoryStorage, SQLiteStorage
from points_economy.system import PointsSystem


class RedemptionTestBase:
    """Shared fixture: one admin, two tutors, a funded student and a catalog item"""

    def setup_method(self):
        self.system = PointsSystem(InMemoryStorage())
        directory = self.system.directory

        self.admin = directory.register_admin("admin").to_principal()
        self.tutor = directory.register_tutor("tutor", "Tom", "Tutor").to_principal()
        self.other_tutor = directory.register_tutor("other_tutor").to_principal()
        student = directory.register_student("sam", self.tutor.id, "Sam", "Student")
        self.student = student.to_principal()
        self.other_student = directory.register_student("olive", self.tutor.id, "Olive").to_principal()

        self.system.ledger.award(self.tutor, self.student.id, 50, "participation")
        self.item = self.system.catalog.create_item(self.admin, "Pen", "A blue pen", 30, 5)

    def balance(self, principal=None):
        return self.system.ledger.get_balance((principal or self.student).id)

    def stock(self, item=None):
        return self.system.catalog.get_item((item or self.item).id).available_quantity

    def purchases(self):
        return [t for t in self.system.ledger.get_student_transactions(self.student.id)
                if t.kind == TransactionKind.PURCHASE]


class TestSubmit(RedemptionTestBase):
    """Test request submission"""

    def test_submit_creates_pending_request(self):
        """Submitting reserves nothing"""
        request = self.system.redemptions.submit(self.student, self.item.id, "for class")

        assert request.status == RedemptionStatus.PENDING
        assert request.points_spent == 30
        assert request.tutor_id == self.tutor.id
        assert request.note == "for class"
        assert self.balance() == 50
        assert self.stock() == 5

    def test_only_students_submit(self):
        with pytest.raises(UnauthorizedError):
            self.system.redemptions.submit(self.tutor, self.item.id)

    def test_student_without_tutor(self):
        loner = self.system.directory.register_student("loner").to_principal()
        with pytest.raises(ValidationError):
            self.system.redemptions.submit(loner, self.item.id)

    def test_unknown_item(self):
        with pytest.raises(NotFoundError):
            self.system.redemptions.submit(self.student, "missing")

    def test_out_of_stock(self):
        empty = self.system.catalog.create_item(self.admin, "Poster", "Signed", 10, 0)
        with pytest.raises(ConflictError):
            self.system.redemptions.submit(self.student, empty.id)

    def test_insufficient_balance(self):
        pricey = self.system.catalog.create_item(self.admin, "Hoodie", "Warm", 80, 3)
        with pytest.raises(ConflictError):
            self.system.redemptions.submit(self.student, pricey.id)
        assert self.system.redemptions.list_requests(self.admin).total == 0

    def test_duplicate_pending_request(self):
        self.system.redemptions.submit(self.student, self.item.id)
        with pytest.raises(ConflictError):
            self.system.redemptions.submit(self.student, self.item.id)

    def test_price_snapshot_survives_repricing(self):
        request = self.system.redemptions.submit(self.student, self.item.id)
        self.system.catalog.update_price(self.admin, self.item.id, 45)

        approved = self.system.redemptions.approve(self.tutor, request.id)
        assert approved.points_spent == 30
        assert self.balance() == 20


class TestApprove(RedemptionTestBase):
    """Test approval and its unit of work"""

    def test_approve(self):
        """Approval takes stock, debits the balance and records a purchase"""
        request = self.system.redemptions.submit(self.student, self.item.id)

        approved = self.system.redemptions.approve(self.tutor, request.id)

        assert approved.status == RedemptionStatus.APPROVED
        assert approved.processed_by == self.tutor.id
        assert approved.processed_at is not None
        assert self.stock() == 4
        assert self.balance() == 20

        purchases = self.purchases()
        assert len(purchases) == 1
        assert purchases[0].delta == -30
        assert purchases[0].reason == "purchase of Pen"
        assert purchases[0].request_id == request.id
        assert self.system.ledger.verify_balance(self.student.id)["consistent"]

        stored = self.system.redemptions.get_request(self.admin, request.id)
        assert stored.status == RedemptionStatus.APPROVED

    def test_approve_twice(self):
        request = self.system.redemptions.submit(self.student, self.item.id)
        self.system.redemptions.approve(self.tutor, request.id)

        with pytest.raises(InvalidStateError):
            self.system.redemptions.approve(self.tutor, request.id)
        with pytest.raises(InvalidStateError):
            self.system.redemptions.reject(self.tutor, request.id, "changed my mind")
        assert self.balance() == 20
        assert self.stock() == 4

    def test_unknown_request(self):
        with pytest.raises(NotFoundError):
            self.system.redemptions.approve(self.tutor, "missing")

    @pytest.mark.parametrize("actor_name", ["other_tutor", "admin", "student"])
    def test_only_owning_tutor_approves(self, actor_name):
        request = self.system.redemptions.submit(self.student, self.item.id)

        with pytest.raises(UnauthorizedError):
            self.system.redemptions.approve(getattr(self, actor_name), request.id)

        self.assert_untouched(request.id)

    def test_balance_spent_since_submission(self):
        pen = self.system.redemptions.submit(self.student, self.item.id)
        mug = self.system.catalog.create_item(self.admin, "Mug", "Ceramic", 40, 2)
        mug_request = self.system.redemptions.submit(self.student, mug.id)

        self.system.redemptions.approve(self.tutor, mug_request.id)
        assert self.balance() == 10

        with pytest.raises(ConflictError):
            self.system.redemptions.approve(self.tutor, pen.id)
        self.assert_untouched(pen.id, balance=10)

    def test_stock_gone_since_submission(self):
        scarce = self.system.catalog.create_item(self.admin, "Sticker", "Rare", 10, 1)
        mine = self.system.redemptions.submit(self.student, scarce.id)
        self.system.ledger.award(self.tutor, self.other_student.id, 20)
        theirs = self.system.redemptions.submit(self.other_student, scarce.id)

        self.system.redemptions.approve(self.tutor, theirs.id)

        with pytest.raises(ConflictError):
            self.system.redemptions.approve(self.tutor, mine.id)
        assert self.stock(scarce) == 0
        assert self.balance() == 50
        assert self.system.redemptions.get_request(self.admin, mine.id).is_pending

    def test_approve_rolls_back_when_ledger_write_fails(self, monkeypatch):
        request = self.system.redemptions.submit(self.student, self.item.id)

        def fail(*args, **kwargs):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(self.system.ledger, "record_purchase", fail)
        with pytest.raises(RuntimeError):
            self.system.redemptions.approve(self.tutor, request.id)

        self.assert_untouched(request.id)
        assert self.system.audit_trail.get_events_by_type(AuditEventType.REDEMPTION_APPROVED) == []

    def assert_untouched(self, request_id, balance=50):
        assert self.balance() == balance
        assert self.stock() == 5
        assert self.system.redemptions.get_request(self.admin, request_id).is_pending
        assert all(t.request_id != request_id for t in self.purchases())


class TestRejectAndCancel(RedemptionTestBase):
    """Test rejection and cancellation"""

    def test_reject(self):
        request = self.system.redemptions.submit(self.student, self.item.id)

        rejected = self.system.redemptions.reject(self.tutor, request.id, "  Out of budget ")

        assert rejected.status == RedemptionStatus.REJECTED
        assert rejected.rejection_reason == "Out of budget"
        assert self.balance() == 50
        assert self.stock() == 5
        with pytest.raises(InvalidStateError):
            self.system.redemptions.approve(self.tutor, request.id)

    def test_reject_requires_reason(self):
        """Empty rejection reason leaves the request pending"""
        request = self.system.redemptions.submit(self.student, self.item.id)

        with pytest.raises(ValidationError):
            self.system.redemptions.reject(self.tutor, request.id, "")
        with pytest.raises(ValidationError):
            self.system.redemptions.reject(self.tutor, request.id, "   ")

        assert self.system.redemptions.get_request(self.tutor, request.id).is_pending

    def test_reject_by_other_tutor(self):
        request = self.system.redemptions.submit(self.student, self.item.id)
        with pytest.raises(UnauthorizedError):
            self.system.redemptions.reject(self.other_tutor, request.id, "no")

    def test_cancel_pending(self):
        """Cancelling deletes the request and changes nothing else"""
        request = self.system.redemptions.submit(self.student, self.item.id)

        self.system.redemptions.cancel(self.student, request.id)

        with pytest.raises(NotFoundError):
            self.system.redemptions.get_request(self.admin, request.id)
        assert self.balance() == 50
        assert self.stock() == 5
        # A new request for the same item is allowed again
        self.system.redemptions.submit(self.student, self.item.id)

    def test_cancel_approved(self):
        request = self.system.redemptions.submit(self.student, self.item.id)
        self.system.redemptions.approve(self.tutor, request.id)

        with pytest.raises(InvalidStateError):
            self.system.redemptions.cancel(self.student, request.id)
        assert self.system.redemptions.get_request(self.student, request.id).status == RedemptionStatus.APPROVED

    def test_cancel_someone_elses_request(self):
        request = self.system.redemptions.submit(self.student, self.item.id)

        with pytest.raises(UnauthorizedError):
            self.system.redemptions.cancel(self.other_student, request.id)
        with pytest.raises(UnauthorizedError):
            self.system.redemptions.cancel(self.tutor, request.id)

    def test_state_machine_is_audited(self):
        approved = self.system.redemptions.submit(self.student, self.item.id)
        self.system.redemptions.approve(self.tutor, approved.id)
        self.system.ledger.award(self.tutor, self.student.id, 30)
        cancelled = self.system.redemptions.submit(self.student, self.item.id)
        self.system.redemptions.cancel(self.student, cancelled.id)

        events = self.system.audit_trail.get_events_for_entity("redemption_request", approved.id)
        assert [e.event_type for e in events] == [
            AuditEventType.REDEMPTION_SUBMITTED, AuditEventType.REDEMPTION_APPROVED
        ]
        cancellations = self.system.audit_trail.get_events_by_type(AuditEventType.REDEMPTION_CANCELLED)
        assert [e.entity_id for e in cancellations] == [cancelled.id]
        assert self.system.audit_trail.verify_integrity()["valid"]


class TestQueries(RedemptionTestBase):
    """Test request lookup and listing"""

    def setup_method(self):
        super().setup_method()
        self.mug = self.system.catalog.create_item(self.admin, "Mug", "Ceramic", 10, 5)
        self.system.ledger.award(self.tutor, self.other_student.id, 40)

        self.approved = self.system.redemptions.submit(self.student, self.mug.id)
        self.system.redemptions.approve(self.tutor, self.approved.id)
        self.pending = self.system.redemptions.submit(self.student, self.item.id)
        self.theirs = self.system.redemptions.submit(self.other_student, self.mug.id)

    def test_get_request_permissions(self):
        assert self.system.redemptions.get_request(self.admin, self.pending.id).id == self.pending.id
        assert self.system.redemptions.get_request(self.tutor, self.pending.id).id == self.pending.id
        assert self.system.redemptions.get_request(self.student, self.pending.id).id == self.pending.id

        with pytest.raises(UnauthorizedError):
            self.system.redemptions.get_request(self.other_tutor, self.pending.id)
        with pytest.raises(UnauthorizedError):
            self.system.redemptions.get_request(self.other_student, self.pending.id)

    def test_pending_first_then_newest(self):
        page = self.system.redemptions.list_requests(self.admin)
        assert [r.id for r in page.requests] == [self.theirs.id, self.pending.id, self.approved.id]
        assert page.total == 3
        assert page.pages == 1
        assert not page.has_more

    def test_role_scoping(self):
        assert self.system.redemptions.list_requests(self.tutor).total == 3
        assert self.system.redemptions.list_requests(self.other_tutor).total == 0
        assert self.system.redemptions.list_requests(self.student).total == 2
        assert self.system.redemptions.list_requests(self.other_student).total == 1

    def test_status_filter(self):
        page = self.system.redemptions.list_requests(self.tutor, status="approved")
        assert [r.id for r in page.requests] == [self.approved.id]

        page = self.system.redemptions.list_requests(self.tutor, status=RedemptionStatus.PENDING)
        assert page.total == 2

        with pytest.raises(ValidationError):
            self.system.redemptions.list_requests(self.tutor, status="lost")

    def test_search(self):
        by_item = self.system.redemptions.list_requests(self.admin, search="PEN")
        assert [r.id for r in by_item.requests] == [self.pending.id]

        by_student = self.system.redemptions.list_requests(self.admin, search="olive")
        assert [r.id for r in by_student.requests] == [self.theirs.id]

        by_last_name = self.system.redemptions.list_requests(self.admin, search="student")
        assert by_last_name.total == 2

    def test_pagination(self):
        page = self.system.redemptions.list_requests(self.admin, page=1, limit=2)
        assert len(page.requests) == 2
        assert page.pages == 2
        assert page.has_more

        page = self.system.redemptions.list_requests(self.admin, page=2, limit=2)
        assert [r.id for r in page.requests] == [self.approved.id]
        assert not page.has_more

    def test_limit_is_clamped(self):
        assert self.system.redemptions.list_requests(self.admin, limit=0).limit == 1
        assert self.system.redemptions.list_requests(self.admin, limit=500).limit == 50


class TestConcurrentApprovals:
    """Two tutors' approvals racing against one balance on a shared database file"""

    def test_only_one_approval_fits_the_balance(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "points.db"
            setup = PointsSystem(SQLiteStorage(db_path))

            admin = setup.directory.register_admin("admin").to_principal()
            tutor = setup.directory.register_tutor("tutor").to_principal()
            student = setup.directory.register_student("sam", tutor.id).to_principal()
            setup.ledger.award(admin, student.id, 50)

            request_ids = []
            for name in ("Pen", "Mug"):
                item = setup.catalog.create_item(admin, name, "Reward", 30, 5)
                request_ids.append(setup.redemptions.submit(student, item.id).id)
            setup.close()

            barrier = threading.Barrier(len(request_ids))
            outcomes = []

            def approve(request_id):
                # Each worker gets its own connection, as separate processes would
                system = PointsSystem(SQLiteStorage(db_path, busy_timeout=10.0))
                barrier.wait()
                try:
                    system.redemptions.approve(tutor, request_id)
                    outcomes.append("approved")
                except ConflictError:
                    outcomes.append("conflict")
                finally:
                    system.close()

            threads = [threading.Thread(target=approve, args=(rid,)) for rid in request_ids]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            assert sorted(outcomes) == ["approved", "conflict"]

            check = PointsSystem(SQLiteStorage(db_path))
            assert check.ledger.get_balance(student.id) == 20
            assert check.ledger.verify_balance(student.id)["consistent"]
            statuses = sorted(check.redemptions.list_requests(admin).requests, key=lambda r: r.status.value)
            assert [r.status for r in statuses] == [RedemptionStatus.APPROVED, RedemptionStatus.PENDING]
            assert check.audit_trail.verify_integrity()["valid"]
            check.close()

    def test_in_memory_store_serializes_approvals(self):
        system = PointsSystem(InMemoryStorage())
        admin = system.directory.register_admin("admin").to_principal()
        tutor = system.directory.register_tutor("tutor").to_principal()
        student = system.directory.register_student("sam", tutor.id).to_principal()
        system.ledger.award(admin, student.id, 100)

        item = system.catalog.create_item(admin, "Sticker", "Rare", 10, 3)
        request_ids = []
        for i in range(6):
            other = system.directory.register_student(f"s{i}", tutor.id).to_principal()
            system.ledger.award(admin, other.id, 10)
            request_ids.append(system.redemptions.submit(other, item.id).id)

        outcomes = []

        def approve(request_id):
            try:
                system.redemptions.approve(tutor, request_id)
                outcomes.append("approved")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=approve, args=(rid,)) for rid in request_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("approved") == 3
        assert outcomes.count("conflict") == 3
        assert system.catalog.get_item(item.id).available_quantity == 0

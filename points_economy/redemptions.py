"""
Redemption Workflow Module

Students ask to exchange points for a catalog item; the owning tutor approves
or rejects. A request is PENDING until processed, and APPROVED or REJECTED
requests are immutable history. A pending request may also be cancelled by
the student, which deletes it.

Submission only records the request with the item's current price; nothing
is reserved. Approval re-checks stock and balance and then, in one unit of
work, takes one unit of stock, debits the student through the ledger and
closes the request.
"""

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union

from .audit import AuditTrail, AuditEventType
from .authorization import Operation, Principal, Target, authorize, require_role
from .catalog import Catalog
from .directory import ParticipantDirectory
from .errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from .ledger import PointsLedger
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


class RedemptionStatus(Enum):
    """Lifecycle states of a redemption request"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


_ALLOWED_TRANSITIONS: Dict[RedemptionStatus, FrozenSet[RedemptionStatus]] = {
    RedemptionStatus.PENDING: frozenset({RedemptionStatus.APPROVED, RedemptionStatus.REJECTED}),
    RedemptionStatus.APPROVED: frozenset(),
    RedemptionStatus.REJECTED: frozenset(),
}


@dataclass
class RedemptionRequest(StorageRecord):
    """A student's request to redeem one unit of a catalog item"""
    student_id: str
    tutor_id: str
    item_id: str
    status: RedemptionStatus
    points_spent: int                       # Price snapshot taken at submission
    note: Optional[str] = None
    rejection_reason: Optional[str] = None  # Set iff REJECTED
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == RedemptionStatus.PENDING

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RedemptionRequest':
        data = dict(data)
        data['status'] = RedemptionStatus(data['status'])
        if isinstance(data.get('processed_at'), str):
            data['processed_at'] = datetime.fromisoformat(data['processed_at'])
        return super().from_dict(data)


@dataclass
class RequestPage:
    """One page of redemption requests"""
    requests: List[RedemptionRequest]
    total: int
    page: int
    limit: int
    pages: int
    has_more: bool


class RedemptionWorkflow:
    """Submit, approve, reject and cancel redemption requests"""

    def __init__(
        self,
        storage: StorageInterface,
        directory: ParticipantDirectory,
        ledger: PointsLedger,
        catalog: Catalog,
        audit_trail: AuditTrail,
        max_page_limit: int = 50
    ):
        self.storage = storage
        self.directory = directory
        self.ledger = ledger
        self.catalog = catalog
        self.audit_trail = audit_trail
        self.max_page_limit = max_page_limit
        self.table_name = "redemption_requests"
        self.logger = get_logger("points_economy.redemptions")

    def submit(self, actor: Principal, item_id: str, note: Optional[str] = None) -> RedemptionRequest:
        """
        Submit a redemption request for one unit of an item

        The balance and stock are checked but not reserved; the request
        records the item's current price.

        Raises:
            UnauthorizedError: If the actor is not a student
            ValidationError: If the student has no tutor
            NotFoundError: If the item does not exist
            ConflictError: If the item is out of stock, the balance is too
                low, or the student already has a pending request for it
        """
        require_role(actor, Operation.SUBMIT_REDEMPTION, "Only students can submit redemption requests")

        with self.storage.atomic():
            student = self.directory.get_student(actor.id)
            authorize(actor, Operation.SUBMIT_REDEMPTION, Target(student_id=student.id))
            if not student.tutor_id:
                raise ValidationError("Student has no assigned tutor to approve the request")

            item = self.catalog.require_item(item_id)
            if not item.in_stock:
                raise ConflictError(f"Item {item.name} is out of stock", details={"item_id": item.id})
            if student.points < item.points_required:
                raise ConflictError(
                    f"Insufficient points: balance {student.points}, required {item.points_required}",
                    details={"balance": student.points, "points_required": item.points_required}
                )
            if self.storage.find(self.table_name, {
                "student_id": student.id,
                "item_id": item.id,
                "status": RedemptionStatus.PENDING.value
            }):
                raise ConflictError("A pending request for this item already exists",
                                    details={"item_id": item.id})

            now = datetime.now(timezone.utc)
            request = RedemptionRequest(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                student_id=student.id,
                tutor_id=student.tutor_id,
                item_id=item.id,
                status=RedemptionStatus.PENDING,
                points_spent=item.points_required,
                note=(note or "").strip() or None
            )
            self.save(request)
            self.audit_trail.log_event(
                AuditEventType.REDEMPTION_SUBMITTED,
                "redemption_request",
                request.id,
                {"item_id": item.id, "points_spent": request.points_spent},
                actor.id
            )

        log_action(self.logger, "info", f"Redemption requested for {item.name}",
                   actor_id=actor.id, action="submit_redemption",
                   resource=f"redemption_request:{request.id}")
        return request

    def approve(self, actor: Principal, request_id: str) -> RedemptionRequest:
        """
        Approve a pending request

        Stock, balance, ledger and request change together or not at all.
        If stock or balance no longer cover the request it stays PENDING.

        Raises:
            NotFoundError: If the request does not exist
            UnauthorizedError: If the actor is not the owning tutor
            InvalidStateError: If the request was already processed
            ConflictError: If the item is out of stock or the balance is too low
        """
        require_role(actor, Operation.APPROVE_REDEMPTION, "Only the assigned tutor can approve requests")

        with self.storage.atomic():
            request = self._require_request(request_id)
            authorize(actor, Operation.APPROVE_REDEMPTION, self._target(request),
                      "Only the assigned tutor can approve this request")
            self._check_transition(request, RedemptionStatus.APPROVED)

            student = self.directory.get_student(request.student_id)
            item = self.catalog.require_item(request.item_id)
            if student.points < request.points_spent:
                raise ConflictError(
                    f"Insufficient points: balance {student.points}, required {request.points_spent}",
                    details={"balance": student.points, "points_spent": request.points_spent}
                )

            self.catalog.take_one(item)
            transaction = self.ledger.record_purchase(
                student,
                actor.id,
                request.points_spent,
                f"purchase of {item.name}",
                request_id=request.id
            )

            self._close(request, RedemptionStatus.APPROVED, actor)
            self.audit_trail.log_event(
                AuditEventType.REDEMPTION_APPROVED,
                "redemption_request",
                request.id,
                {"transaction_id": transaction.id, "points_spent": request.points_spent},
                actor.id
            )

        log_action(self.logger, "info", f"Redemption approved: {item.name}",
                   actor_id=actor.id, action="approve_redemption",
                   resource=f"redemption_request:{request.id}",
                   student_id=student.id, new_balance=student.points)
        return request

    def reject(self, actor: Principal, request_id: str, rejection_reason: str) -> RedemptionRequest:
        """
        Reject a pending request with a reason

        Raises:
            ValidationError: If the reason is empty
            NotFoundError: If the request does not exist
            UnauthorizedError: If the actor is not the owning tutor
            InvalidStateError: If the request was already processed
        """
        require_role(actor, Operation.REJECT_REDEMPTION, "Only the assigned tutor can reject requests")
        rejection_reason = (rejection_reason or "").strip()
        if not rejection_reason:
            raise ValidationError("Rejection reason is required")

        with self.storage.atomic():
            request = self._require_request(request_id)
            authorize(actor, Operation.REJECT_REDEMPTION, self._target(request),
                      "Only the assigned tutor can reject this request")
            self._check_transition(request, RedemptionStatus.REJECTED)

            request.rejection_reason = rejection_reason
            self._close(request, RedemptionStatus.REJECTED, actor)
            self.audit_trail.log_event(
                AuditEventType.REDEMPTION_REJECTED,
                "redemption_request",
                request.id,
                {"rejection_reason": rejection_reason},
                actor.id
            )

        log_action(self.logger, "info", "Redemption rejected",
                   actor_id=actor.id, action="reject_redemption",
                   resource=f"redemption_request:{request.id}")
        return request

    def cancel(self, actor: Principal, request_id: str) -> None:
        """
        Withdraw a pending request; the record is deleted

        Raises:
            NotFoundError: If the request does not exist
            UnauthorizedError: If the actor is not the requesting student
            InvalidStateError: If the request was already processed
        """
        require_role(actor, Operation.CANCEL_REDEMPTION, "Only students can cancel their requests")

        with self.storage.atomic():
            request = self._require_request(request_id)
            authorize(actor, Operation.CANCEL_REDEMPTION, self._target(request),
                      "Not authorized to cancel this request")
            if not request.is_pending:
                raise InvalidStateError("Cannot cancel a request that has already been processed",
                                        details={"status": request.status.value})

            self.storage.delete(self.table_name, request.id)
            self.audit_trail.log_event(
                AuditEventType.REDEMPTION_CANCELLED,
                "redemption_request",
                request.id,
                {"item_id": request.item_id},
                actor.id
            )

        log_action(self.logger, "info", "Redemption cancelled",
                   actor_id=actor.id, action="cancel_redemption",
                   resource=f"redemption_request:{request.id}")

    def get_request(self, actor: Principal, request_id: str) -> RedemptionRequest:
        """Load one request the actor is allowed to see"""
        require_role(actor, Operation.VIEW_REDEMPTION)
        request = self._require_request(request_id)
        authorize(actor, Operation.VIEW_REDEMPTION, self._target(request),
                  "Not authorized to view this request")
        return request

    def list_requests(
        self,
        actor: Principal,
        status: Optional[Union[RedemptionStatus, str]] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> RequestPage:
        """
        Requests visible to the actor, pending first then newest first

        Admins see all requests, tutors the requests addressed to them and
        students their own. ``search`` matches the student's username or
        names, or the item name, case-insensitively.
        """
        require_role(actor, Operation.VIEW_REDEMPTION)

        filters: Dict[str, Any] = {}
        if actor.is_tutor:
            filters["tutor_id"] = actor.id
        elif actor.is_student:
            filters["student_id"] = actor.id
        if status:
            try:
                filters["status"] = RedemptionStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown request status: {status}") from None

        rows = self.storage.find(self.table_name, filters) if filters else self.storage.load_all(self.table_name)
        requests = [RedemptionRequest.from_dict(data) for data in rows]

        term = (search or "").strip().lower()
        if term:
            requests = [r for r in requests if self._matches(r, term)]

        # Newest first, then a stable sort brings pending requests to the top
        requests.reverse()
        requests.sort(key=lambda r: r.created_at, reverse=True)
        requests.sort(key=lambda r: not r.is_pending)

        limit = min(max(int(limit), 1), self.max_page_limit)
        page = max(int(page), 1)
        total = len(requests)
        start = (page - 1) * limit

        return RequestPage(
            requests=requests[start:start + limit],
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit),
            has_more=start + limit < total
        )

    def save(self, request: RedemptionRequest) -> None:
        self.storage.save(self.table_name, request.id, request.to_dict())

    def _require_request(self, request_id: str) -> RedemptionRequest:
        data = self.storage.load(self.table_name, request_id)
        if not data:
            raise NotFoundError(f"Request {request_id} not found")
        return RedemptionRequest.from_dict(data)

    @staticmethod
    def _target(request: RedemptionRequest) -> Target:
        return Target(student_id=request.student_id, tutor_id=request.tutor_id)

    @staticmethod
    def _check_transition(request: RedemptionRequest, new_status: RedemptionStatus) -> None:
        if new_status not in _ALLOWED_TRANSITIONS[request.status]:
            raise InvalidStateError("Request has already been processed",
                                    details={"status": request.status.value})

    def _close(self, request: RedemptionRequest, status: RedemptionStatus, actor: Principal) -> None:
        now = datetime.now(timezone.utc)
        request.status = status
        request.processed_at = now
        request.processed_by = actor.id
        request.updated_at = now
        self.save(request)

    def _matches(self, request: RedemptionRequest, term: str) -> bool:
        student = self.directory.get_participant(request.student_id)
        item = self.catalog.get_item(request.item_id)
        haystack = [item.name if item else ""]
        if student:
            haystack.extend([student.username, student.first_name, student.last_name])
        return any(term in value.lower() for value in haystack if value)

"""
Points Ledger Module

Append-only record of point deltas per student, and the only writer of the
student balance projection. Every entry is inserted in the same unit of work
as the balance change it explains, so the sum of a student's deltas always
equals their balance and no balance is ever allowed below zero.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from .audit import AuditTrail, AuditEventType
from .authorization import Operation, Principal, Target, authorize, require_role
from .directory import Participant, ParticipantDirectory
from .errors import ConflictError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


class TransactionKind(Enum):
    """Why a balance changed"""
    REWARD = "reward"      # Points awarded by a tutor or admin
    PURCHASE = "purchase"  # Points spent on an approved redemption


@dataclass
class PointsTransaction(StorageRecord):
    """
    Immutable ledger entry

    ``delta`` is signed: positive for rewards, negative for purchases.
    """
    student_id: str
    actor_id: str
    delta: int
    kind: TransactionKind
    reason: str
    idempotency_key: Optional[str] = None
    request_id: Optional[str] = None  # Redemption that caused a PURCHASE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PointsTransaction':
        data = dict(data)
        data['kind'] = TransactionKind(data['kind'])
        return super().from_dict(data)


@dataclass
class AwardResult:
    """Outcome of an award"""
    transaction: PointsTransaction
    new_balance: int
    replayed: bool = False  # True when an idempotency key matched an earlier award


def _require_positive_int(value: Any, field_name: str) -> int:
    # bool is an int subclass; True is not a point count
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer")
    if value <= 0:
        raise ValidationError(f"{field_name} must be greater than 0")
    return value


class PointsLedger:
    """Ledger store plus balance projection"""

    def __init__(
        self,
        storage: StorageInterface,
        directory: ParticipantDirectory,
        audit_trail: AuditTrail,
        default_reason: str = "Points awarded"
    ):
        self.storage = storage
        self.directory = directory
        self.audit_trail = audit_trail
        self.default_reason = default_reason
        self.table_name = "points_transactions"
        self.logger = get_logger("points_economy.ledger")

    def award(
        self,
        actor: Principal,
        student_id: str,
        points: int,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> AwardResult:
        """
        Award points to a student

        Args:
            actor: Admin, or the student's owning tutor
            student_id: Student receiving the points
            points: Positive number of points
            reason: Free-text reason shown in the history
            idempotency_key: Optional caller key; a repeated key returns the
                original award instead of awarding twice

        Returns:
            AwardResult with the REWARD transaction and the new balance

        Raises:
            UnauthorizedError: If the actor may not award to this student
            ValidationError: If points is not a positive integer
            NotFoundError: If the student does not exist
            ConflictError: If the idempotency key belongs to a different award
        """
        require_role(actor, Operation.AWARD_POINTS,
                     "Only admin or tutor can award points")
        points = _require_positive_int(points, "Points")
        reason = (reason or "").strip() or self.default_reason

        with self.storage.atomic():
            student = self.directory.get_student(student_id)
            authorize(actor, Operation.AWARD_POINTS,
                      Target(student_id=student.id, tutor_id=student.tutor_id),
                      "Student not assigned to this tutor")

            if idempotency_key:
                existing = self._find_by_idempotency_key(idempotency_key)
                if existing:
                    if existing.student_id != student.id or existing.delta != points:
                        raise ConflictError(
                            "Idempotency key already used for a different award",
                            details={"idempotency_key": idempotency_key}
                        )
                    return AwardResult(existing, student.points, replayed=True)

            transaction = self._post(
                student=student,
                actor_id=actor.id,
                delta=points,
                kind=TransactionKind.REWARD,
                reason=reason,
                idempotency_key=idempotency_key
            )

        log_action(
            self.logger, "info", f"Awarded {points} points",
            actor_id=actor.id, action="award_points",
            resource=f"points_transaction:{transaction.id}",
            student_id=student.id, new_balance=student.points
        )
        return AwardResult(transaction, student.points)

    def record_purchase(
        self,
        student: Participant,
        actor_id: str,
        amount: int,
        reason: str,
        request_id: Optional[str] = None
    ) -> PointsTransaction:
        """
        Debit a student for an approved redemption

        Must run inside the caller's unit of work; ``student`` is updated in
        place with the new balance.

        Raises:
            ConflictError: If the balance does not cover the amount
        """
        amount = _require_positive_int(amount, "Amount")
        with self.storage.atomic():
            return self._post(
                student=student,
                actor_id=actor_id,
                delta=-amount,
                kind=TransactionKind.PURCHASE,
                reason=reason,
                request_id=request_id
            )

    def list_transactions(self, actor: Principal,
                          student_id: Optional[str] = None) -> List[PointsTransaction]:
        """
        Transaction history visible to the actor, newest first

        Admins see everything, tutors their own students, students
        themselves. A tutor asking for a student they do not own gets
        NotFoundError, as if the student did not exist.
        """
        require_role(actor, Operation.VIEW_TRANSACTIONS)

        if actor.is_student:
            student_ids = {actor.id}
            if student_id and student_id != actor.id:
                authorize(actor, Operation.VIEW_TRANSACTIONS, Target(student_id=student_id))
        elif actor.is_tutor:
            owned = {s.id for s in self.directory.list_students(tutor_id=actor.id)}
            if student_id:
                if student_id not in owned:
                    raise NotFoundError("Student not found or not assigned to this tutor")
                student_ids = {student_id}
            else:
                student_ids = owned
        else:
            student_ids = {student_id} if student_id else None

        transactions = self._load_all()
        if student_ids is not None:
            transactions = [t for t in transactions if t.student_id in student_ids]
        return self._newest_first(transactions)

    def get_student_transactions(self, student_id: str) -> List[PointsTransaction]:
        """All entries for one student, oldest first"""
        return [
            PointsTransaction.from_dict(data)
            for data in self.storage.find(self.table_name, {"student_id": student_id})
        ]

    def get_transaction(self, transaction_id: str) -> Optional[PointsTransaction]:
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return PointsTransaction.from_dict(data)
        return None

    def get_balance(self, student_id: str) -> int:
        return self.directory.get_student(student_id).points

    def verify_balance(self, student_id: str) -> Dict[str, Any]:
        """
        Recompute a student's balance from the ledger and compare it with the
        projection. Diagnostic only; nothing is corrected.
        """
        student = self.directory.get_student(student_id)
        ledger_total = sum(t.delta for t in self.get_student_transactions(student_id))
        return {
            "student_id": student_id,
            "projected_balance": student.points,
            "ledger_total": ledger_total,
            "consistent": ledger_total == student.points
        }

    def _post(
        self,
        student: Participant,
        actor_id: str,
        delta: int,
        kind: TransactionKind,
        reason: str,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> PointsTransaction:
        new_balance = student.points + delta
        if new_balance < 0:
            raise ConflictError(
                f"Insufficient points: balance {student.points}, required {-delta}",
                details={"student_id": student.id, "balance": student.points}
            )

        now = datetime.now(timezone.utc)
        transaction = PointsTransaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            student_id=student.id,
            actor_id=actor_id,
            delta=delta,
            kind=kind,
            reason=reason,
            idempotency_key=idempotency_key,
            request_id=request_id
        )
        self.storage.save(self.table_name, transaction.id, transaction.to_dict())

        student.points = new_balance
        student.updated_at = now
        self.directory.save(student)

        self.audit_trail.log_event(
            AuditEventType.POINTS_AWARDED if kind == TransactionKind.REWARD
            else AuditEventType.POINTS_SPENT,
            "student",
            student.id,
            {
                "transaction_id": transaction.id,
                "delta": delta,
                "reason": reason,
                "new_balance": new_balance
            },
            actor_id
        )
        return transaction

    def _find_by_idempotency_key(self, idempotency_key: str) -> Optional[PointsTransaction]:
        found = self.storage.find(self.table_name, {"idempotency_key": idempotency_key})
        if found:
            return PointsTransaction.from_dict(found[0])
        return None

    def _load_all(self) -> List[PointsTransaction]:
        return [PointsTransaction.from_dict(data) for data in self.storage.load_all(self.table_name)]

    @staticmethod
    def _newest_first(transactions: List[PointsTransaction]) -> List[PointsTransaction]:
        # Reverse first so entries sharing a timestamp keep newest-first order
        ordered = list(reversed(transactions))
        ordered.sort(key=lambda t: t.created_at, reverse=True)
        return ordered

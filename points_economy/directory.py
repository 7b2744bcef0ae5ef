"""
Participant Directory Module

Students, tutors and admins as the points economy sees them. Identity and
credentials live in the authentication subsystem; the directory only holds
what the economy needs: role, owning tutor, display names and the student's
balance projection. Balances start at zero and are only ever changed by the
ledger, inside the same unit of work as the transaction that explains them.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional
import uuid

from .audit import AuditTrail, AuditEventType
from .authorization import Principal, Role
from .errors import NotFoundError, ValidationError
from .storage import StorageInterface, StorageRecord


@dataclass
class Participant(StorageRecord):
    """Platform user known to the points economy"""
    username: str
    role: Role
    first_name: str = ""
    last_name: str = ""
    points: int = 0                 # Balance projection, students only
    tutor_id: Optional[str] = None  # Owning tutor, students only

    @property
    def is_student(self) -> bool:
        return self.role == Role.STUDENT

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.username

    def to_principal(self) -> Principal:
        return Principal(id=self.id, role=self.role, tutor_id=self.tutor_id)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Participant':
        data = dict(data)
        data['role'] = Role(data['role'])
        return super().from_dict(data)


class ParticipantDirectory:
    """Registry of participants and owner of the participants table"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "participants"

    def register(
        self,
        username: str,
        role: Role,
        first_name: str = "",
        last_name: str = "",
        tutor_id: Optional[str] = None
    ) -> Participant:
        """
        Register a participant with a zero balance

        Args:
            username: Unique login name
            role: Platform role
            first_name: Optional display first name
            last_name: Optional display last name
            tutor_id: Owning tutor (students only)

        Returns:
            Registered Participant

        Raises:
            ValidationError: If the username is empty or taken, or a
                non-student is given a tutor
            NotFoundError: If tutor_id does not name a tutor
        """
        username = (username or "").strip()
        if not username:
            raise ValidationError("Username is required")
        if tutor_id and role != Role.STUDENT:
            raise ValidationError("Only students can be assigned a tutor")

        with self.storage.atomic():
            if self.storage.find(self.table_name, {"username": username}):
                raise ValidationError(f"Username {username} is already taken")
            if tutor_id:
                self._require_tutor(tutor_id)

            now = datetime.now(timezone.utc)
            participant = Participant(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                username=username,
                role=role,
                first_name=first_name,
                last_name=last_name,
                tutor_id=tutor_id
            )
            self.save(participant)

            self.audit_trail.log_event(
                AuditEventType.PARTICIPANT_REGISTERED,
                "participant",
                participant.id,
                {"username": username, "role": role.value, "tutor_id": tutor_id}
            )

        return participant

    def register_student(self, username: str, tutor_id: Optional[str] = None,
                         first_name: str = "", last_name: str = "") -> Participant:
        return self.register(username, Role.STUDENT, first_name, last_name, tutor_id)

    def register_tutor(self, username: str, first_name: str = "", last_name: str = "") -> Participant:
        return self.register(username, Role.TUTOR, first_name, last_name)

    def register_admin(self, username: str) -> Participant:
        return self.register(username, Role.ADMIN)

    def assign_tutor(self, student_id: str, tutor_id: str) -> Participant:
        """Move a student under a tutor; pending requests keep their tutor"""
        with self.storage.atomic():
            student = self.get_student(student_id)
            self._require_tutor(tutor_id)
            previous = student.tutor_id
            student.tutor_id = tutor_id
            student.updated_at = datetime.now(timezone.utc)
            self.save(student)

            self.audit_trail.log_event(
                AuditEventType.TUTOR_ASSIGNED,
                "participant",
                student.id,
                {"previous_tutor_id": previous, "tutor_id": tutor_id}
            )
        return student

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        data = self.storage.load(self.table_name, participant_id)
        if data:
            return Participant.from_dict(data)
        return None

    def get_student(self, student_id: str) -> Participant:
        """Load a student or raise NotFoundError"""
        participant = self.get_participant(student_id)
        if not participant or not participant.is_student:
            raise NotFoundError(f"Student {student_id} not found")
        return participant

    def list_students(self, tutor_id: Optional[str] = None) -> List[Participant]:
        """All students, optionally only those owned by one tutor"""
        filters = {"role": Role.STUDENT.value}
        if tutor_id:
            filters["tutor_id"] = tutor_id
        return [Participant.from_dict(data) for data in self.storage.find(self.table_name, filters)]

    def principal_for(self, participant_id: str) -> Optional[Principal]:
        participant = self.get_participant(participant_id)
        return participant.to_principal() if participant else None

    def save(self, participant: Participant) -> None:
        """Persist a participant; balance changes must come through the ledger"""
        self.storage.save(self.table_name, participant.id, participant.to_dict())

    def _require_tutor(self, tutor_id: str) -> Participant:
        tutor = self.get_participant(tutor_id)
        if not tutor or tutor.role != Role.TUTOR:
            raise NotFoundError(f"Tutor {tutor_id} not found")
        return tutor

"""
Authorization Module

Principals arrive already authenticated; this module only answers "may this
principal perform this operation on this target". Each role carries a fixed
set of operations, and some operations additionally require the principal
to own the target (tutor owns their students, student owns their own rows).
The predicate is evaluated once at every operation entry point.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Set

from .errors import UnauthorizedError


class Role(Enum):
    """Platform roles"""
    ADMIN = "admin"
    TUTOR = "tutor"
    STUDENT = "student"


class Operation(Enum):
    """Operations guarded by the capability predicate"""
    AWARD_POINTS = "award_points"
    VIEW_TRANSACTIONS = "view_transactions"

    VIEW_CATALOG = "view_catalog"
    MANAGE_CATALOG = "manage_catalog"

    SUBMIT_REDEMPTION = "submit_redemption"
    APPROVE_REDEMPTION = "approve_redemption"
    REJECT_REDEMPTION = "reject_redemption"
    CANCEL_REDEMPTION = "cancel_redemption"
    VIEW_REDEMPTION = "view_redemption"

    VIEW_LEADERBOARD = "view_leaderboard"


class Ownership(Enum):
    """Relation a non-admin principal must have with the target"""
    ANY = "any"          # No ownership requirement
    TUTOR = "tutor"      # Principal is the target's owning tutor
    SELF = "self"        # Principal is the target student
    TUTOR_OR_SELF = "tutor_or_self"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller supplied by the authentication subsystem"""
    id: str
    role: Role
    tutor_id: Optional[str] = None  # Owning tutor, students only

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_tutor(self) -> bool:
        return self.role == Role.TUTOR

    @property
    def is_student(self) -> bool:
        return self.role == Role.STUDENT


@dataclass(frozen=True)
class Target:
    """Ownership facts about the record an operation touches"""
    student_id: Optional[str] = None
    tutor_id: Optional[str] = None


ROLE_OPERATIONS: Dict[Role, Set[Operation]] = {
    Role.ADMIN: {
        Operation.AWARD_POINTS, Operation.VIEW_TRANSACTIONS,
        Operation.VIEW_CATALOG, Operation.MANAGE_CATALOG,
        Operation.VIEW_REDEMPTION, Operation.VIEW_LEADERBOARD
    },
    Role.TUTOR: {
        Operation.AWARD_POINTS, Operation.VIEW_TRANSACTIONS,
        Operation.VIEW_CATALOG,
        Operation.APPROVE_REDEMPTION, Operation.REJECT_REDEMPTION,
        Operation.VIEW_REDEMPTION, Operation.VIEW_LEADERBOARD
    },
    Role.STUDENT: {
        Operation.VIEW_TRANSACTIONS, Operation.VIEW_CATALOG,
        Operation.SUBMIT_REDEMPTION, Operation.CANCEL_REDEMPTION,
        Operation.VIEW_REDEMPTION, Operation.VIEW_LEADERBOARD
    },
}

OPERATION_OWNERSHIP: Dict[Operation, Ownership] = {
    Operation.AWARD_POINTS: Ownership.TUTOR,
    Operation.VIEW_TRANSACTIONS: Ownership.TUTOR_OR_SELF,
    Operation.VIEW_CATALOG: Ownership.ANY,
    Operation.MANAGE_CATALOG: Ownership.ANY,
    Operation.SUBMIT_REDEMPTION: Ownership.SELF,
    Operation.APPROVE_REDEMPTION: Ownership.TUTOR,
    Operation.REJECT_REDEMPTION: Ownership.TUTOR,
    Operation.CANCEL_REDEMPTION: Ownership.SELF,
    Operation.VIEW_REDEMPTION: Ownership.TUTOR_OR_SELF,
    Operation.VIEW_LEADERBOARD: Ownership.ANY,
}


def _owns(principal: Principal, ownership: Ownership, target: Target) -> bool:
    owns_as_tutor = (principal.is_tutor and target.tutor_id is not None
                     and target.tutor_id == principal.id)
    owns_as_self = (principal.is_student and target.student_id is not None
                    and target.student_id == principal.id)

    if ownership == Ownership.ANY:
        return True
    if ownership == Ownership.TUTOR:
        return owns_as_tutor
    if ownership == Ownership.SELF:
        return owns_as_self
    return owns_as_tutor or owns_as_self


def has_role_for(principal: Optional[Principal], operation: Operation) -> bool:
    """Role-only half of the predicate, for checks made before the target is loaded"""
    return principal is not None and operation in ROLE_OPERATIONS.get(principal.role, set())


def is_allowed(principal: Optional[Principal], operation: Operation,
               target: Optional[Target] = None) -> bool:
    """
    Capability predicate

    Args:
        principal: Authenticated caller (None means anonymous)
        operation: Operation being attempted
        target: Ownership facts of the record; omitted for collection-level checks

    Returns:
        True when the role grants the operation and, for non-admins, the
        principal owns the target
    """
    if not has_role_for(principal, operation):
        return False
    if principal.is_admin:
        return True

    ownership = OPERATION_OWNERSHIP[operation]
    if target is None:
        return ownership == Ownership.ANY
    return _owns(principal, ownership, target)


def authorize(principal: Optional[Principal], operation: Operation,
              target: Optional[Target] = None, message: Optional[str] = None) -> Principal:
    """Raise UnauthorizedError unless ``is_allowed``; returns the principal"""
    if not is_allowed(principal, operation, target):
        role = principal.role.value if principal else "anonymous"
        raise UnauthorizedError(
            message or f"Role {role} may not perform {operation.value} on this target",
            details={"operation": operation.value}
        )
    return principal


def require_role(principal: Optional[Principal], operation: Operation,
                 message: Optional[str] = None) -> Principal:
    """Raise UnauthorizedError unless the principal's role grants the operation"""
    if not has_role_for(principal, operation):
        role = principal.role.value if principal else "anonymous"
        raise UnauthorizedError(
            message or f"Role {role} may not perform {operation.value}",
            details={"operation": operation.value}
        )
    return principal

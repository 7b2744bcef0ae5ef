"""
Points endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..authorization import Operation, Principal, Target, authorize
from ..system import PointsSystem
from .auth import get_current_principal, get_points_system
from .schemas import AwardPointsRequest, serialize_transaction


router = APIRouter()


@router.post("", status_code=201)
def award_points(
    request: AwardPointsRequest,
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Award points to a student"""
    result = system.ledger.award(
        principal,
        request.student_id,
        request.points,
        reason=request.reason,
        idempotency_key=request.idempotency_key
    )
    return {
        "transaction": serialize_transaction(result.transaction),
        "new_balance": result.new_balance,
        "replayed": result.replayed
    }


@router.get("/transactions")
def list_transactions(
    student_id: Optional[str] = Query(None, description="Only this student's history"),
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Transaction history visible to the caller, newest first"""
    transactions = system.ledger.list_transactions(principal, student_id=student_id)
    return {
        "transactions": [serialize_transaction(t) for t in transactions],
        "total": len(transactions)
    }


@router.get("/balance/{student_id}")
def get_balance(
    student_id: str,
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Current balance of one student"""
    student = system.directory.get_student(student_id)
    authorize(principal, Operation.VIEW_TRANSACTIONS,
              Target(student_id=student.id, tutor_id=student.tutor_id),
              "Not authorized to view this balance")
    return {"student_id": student.id, "points": system.ledger.get_balance(student.id)}

"""
Leaderboard endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..authorization import Operation, Principal, require_role
from ..system import PointsSystem
from .auth import get_current_principal, get_points_system
from .schemas import serialize_entry, serialize_rank


router = APIRouter()


@router.get("")
def get_leaderboard(
    limit: Optional[int] = Query(None, ge=1),
    tutor_id: Optional[str] = Query(None, description="Only this tutor's students"),
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Top students by points, plus the caller's rank for students"""
    board = system.ranking.leaderboard(
        principal,
        limit=limit or system.config.leaderboard_default_limit,
        tutor_id=tutor_id
    )
    return {
        "leaderboard": [serialize_entry(e) for e in board.entries],
        "user_rank": serialize_rank(board.user_rank) if board.user_rank else None,
        "total_students": board.total_students
    }


@router.get("/rank/{student_id}")
def get_rank(
    student_id: str,
    tutor_id: Optional[str] = Query(None, description="Rank within this tutor's students"),
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Competition rank of one student"""
    require_role(principal, Operation.VIEW_LEADERBOARD)
    result = system.ranking.rank(student_id, tutor_id=tutor_id)
    return {"student_id": student_id, **serialize_rank(result)}

"""
Redemption request endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..authorization import Principal
from ..system import PointsSystem
from .auth import get_current_principal, get_points_system
from .schemas import RejectRedemptionRequest, SubmitRedemptionRequest, serialize_request


router = APIRouter()


@router.get("")
def list_requests(
    status: Optional[str] = Query(None, description="pending, approved or rejected"),
    search: Optional[str] = Query(None, description="Student name or item name"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """List requests visible to the caller, pending first"""
    result = system.redemptions.list_requests(
        principal,
        status=status,
        search=search,
        page=page,
        limit=limit or system.config.requests_page_default_limit
    )
    return {
        "requests": [serialize_request(r) for r in result.requests],
        "pagination": {
            "total": result.total,
            "page": result.page,
            "limit": result.limit,
            "pages": result.pages,
            "has_more": result.has_more
        }
    }


@router.post("", status_code=201)
def submit_request(
    request: SubmitRedemptionRequest,
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Submit a redemption request (students only)"""
    redemption = system.redemptions.submit(principal, request.item_id, note=request.note)
    return serialize_request(redemption)


@router.get("/{request_id}")
def get_request(
    request_id: str,
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Get one redemption request"""
    return serialize_request(system.redemptions.get_request(principal, request_id))


@router.post("/{request_id}/approve")
def approve_request(
    request_id: str,
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Approve a pending request (owning tutor only)"""
    return serialize_request(system.redemptions.approve(principal, request_id))


@router.post("/{request_id}/reject")
def reject_request(
    request_id: str,
    request: RejectRedemptionRequest,
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Reject a pending request with a reason (owning tutor only)"""
    return serialize_request(system.redemptions.reject(principal, request_id, request.rejection_reason))


@router.delete("/{request_id}")
def cancel_request(
    request_id: str,
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Cancel a pending request (requesting student only)"""
    system.redemptions.cancel(principal, request_id)
    return {"message": "Request cancelled successfully"}

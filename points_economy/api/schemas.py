"""
Pydantic schemas for API requests, and serializers for responses
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, StrictInt

from ..catalog import CatalogItem
from ..ledger import PointsTransaction
from ..ranking import LeaderboardEntry, RankResult
from ..redemptions import RedemptionRequest


# Points schemas
class AwardPointsRequest(BaseModel):
    student_id: str
    points: StrictInt = Field(..., description="Positive number of points to award")
    reason: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, description="Repeat-safe key for retried awards")


# Catalog schemas
class CreateItemRequest(BaseModel):
    name: str
    description: str
    points_required: StrictInt
    available_quantity: StrictInt
    image_url: Optional[str] = None


class RestockRequest(BaseModel):
    quantity: StrictInt


class UpdatePriceRequest(BaseModel):
    points_required: StrictInt


# Redemption schemas
class SubmitRedemptionRequest(BaseModel):
    item_id: str
    note: Optional[str] = None


class RejectRedemptionRequest(BaseModel):
    rejection_reason: str


def serialize_transaction(transaction: PointsTransaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "student_id": transaction.student_id,
        "actor_id": transaction.actor_id,
        "delta": transaction.delta,
        "kind": transaction.kind.value,
        "reason": transaction.reason,
        "request_id": transaction.request_id,
        "created_at": transaction.created_at.isoformat()
    }


def serialize_item(item: CatalogItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "points_required": item.points_required,
        "available_quantity": item.available_quantity,
        "image_url": item.image_url,
        "in_stock": item.in_stock
    }


def serialize_request(request: RedemptionRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "student_id": request.student_id,
        "tutor_id": request.tutor_id,
        "item_id": request.item_id,
        "status": request.status.value,
        "points_spent": request.points_spent,
        "note": request.note,
        "rejection_reason": request.rejection_reason,
        "processed_by": request.processed_by,
        "processed_at": request.processed_at.isoformat() if request.processed_at else None,
        "created_at": request.created_at.isoformat()
    }


def serialize_entry(entry: LeaderboardEntry) -> Dict[str, Any]:
    return {
        "rank": entry.rank,
        "student_id": entry.student_id,
        "username": entry.username,
        "first_name": entry.first_name,
        "last_name": entry.last_name,
        "points": entry.points
    }


def serialize_rank(result: RankResult) -> Dict[str, Any]:
    return {
        "rank": result.rank,
        "total_students": result.total_students,
        "points": result.points
    }

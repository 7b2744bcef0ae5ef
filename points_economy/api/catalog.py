"""
Catalog endpoints
"""

from fastapi import APIRouter, Depends

from ..authorization import Operation, Principal, require_role
from ..system import PointsSystem
from .auth import get_current_principal, get_points_system
from .schemas import CreateItemRequest, RestockRequest, UpdatePriceRequest, serialize_item


router = APIRouter()


@router.get("")
def list_items(
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """List catalog items, cheapest first"""
    require_role(principal, Operation.VIEW_CATALOG)
    return {"items": [serialize_item(item) for item in system.catalog.list_items()]}


@router.post("", status_code=201)
def create_item(
    request: CreateItemRequest,
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Create a catalog item (admin only)"""
    item = system.catalog.create_item(
        principal,
        name=request.name,
        description=request.description,
        points_required=request.points_required,
        available_quantity=request.available_quantity,
        image_url=request.image_url
    )
    return serialize_item(item)


@router.get("/{item_id}")
def get_item(
    item_id: str,
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Get catalog item by ID"""
    require_role(principal, Operation.VIEW_CATALOG)
    return serialize_item(system.catalog.require_item(item_id))


@router.post("/{item_id}/restock")
def restock_item(
    item_id: str,
    request: RestockRequest,
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Add stock to an item (admin only)"""
    return serialize_item(system.catalog.restock_item(principal, item_id, request.quantity))


@router.put("/{item_id}/price")
def update_price(
    item_id: str,
    request: UpdatePriceRequest,
    principal: Principal = Depends(get_current_principal),
    system: PointsSystem = Depends(get_points_system)
):
    """Change an item's price; pending requests keep their original price"""
    return serialize_item(system.catalog.update_price(principal, item_id, request.points_required))

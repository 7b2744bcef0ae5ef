"""
Reward Catalog Module

Point-priced items with finite inventory. Stock only moves through units of
work: restocks add, approved redemptions take exactly one, and the available
quantity can never drop below zero.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional

from .audit import AuditTrail, AuditEventType
from .authorization import Operation, Principal, authorize
from .errors import ConflictError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
IMAGE_URL_PATTERN = re.compile(r'^(https?|ftp)://[^\s/$.?#].[^\s]*$', re.IGNORECASE)


@dataclass
class CatalogItem(StorageRecord):
    """Redeemable reward"""
    name: str
    description: str
    points_required: int
    available_quantity: int
    image_url: Optional[str] = None

    @property
    def in_stock(self) -> bool:
        return self.available_quantity > 0


def _validate_count(value: Any, field_name: str, allow_zero: bool) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer")
    if allow_zero and value < 0:
        raise ValidationError(f"{field_name} cannot be negative")
    if not allow_zero and value <= 0:
        raise ValidationError(f"{field_name} must be greater than 0")
    return value


class Catalog:
    """Catalog of reward items"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "catalog_items"
        self.logger = get_logger("points_economy.catalog")

    def create_item(
        self,
        actor: Principal,
        name: str,
        description: str,
        points_required: int,
        available_quantity: int,
        image_url: Optional[str] = None
    ) -> CatalogItem:
        """
        Add an item to the catalog (admin only)

        Raises:
            UnauthorizedError: If the actor is not an admin
            ValidationError: If any field breaks the catalog rules
        """
        authorize(actor, Operation.MANAGE_CATALOG,
                  message="Only admin can create catalog items")

        name = (name or "").strip()
        description = (description or "").strip()
        if not name or not description:
            raise ValidationError("Name and description are required")
        if len(name) > NAME_MAX_LENGTH:
            raise ValidationError(f"Name cannot be more than {NAME_MAX_LENGTH} characters")
        if len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError(f"Description cannot be more than {DESCRIPTION_MAX_LENGTH} characters")
        points_required = _validate_count(points_required, "Points required", allow_zero=False)
        available_quantity = _validate_count(available_quantity, "Available quantity", allow_zero=True)
        image_url = (image_url or "").strip() or None
        if image_url and not IMAGE_URL_PATTERN.match(image_url):
            raise ValidationError("Invalid URL format")

        now = datetime.now(timezone.utc)
        item = CatalogItem(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            description=description,
            points_required=points_required,
            available_quantity=available_quantity,
            image_url=image_url
        )

        with self.storage.atomic():
            self.save(item)
            self.audit_trail.log_event(
                AuditEventType.CATALOG_ITEM_CREATED,
                "catalog_item",
                item.id,
                {"name": name, "points_required": points_required,
                 "available_quantity": available_quantity},
                actor.id
            )

        log_action(self.logger, "info", f"Catalog item created: {name}",
                   actor_id=actor.id, action="create_item", resource=f"catalog_item:{item.id}")
        return item

    def restock_item(self, actor: Principal, item_id: str, quantity: int) -> CatalogItem:
        """Add ``quantity`` units to an item's stock (admin only)"""
        authorize(actor, Operation.MANAGE_CATALOG, message="Only admin can restock items")
        quantity = _validate_count(quantity, "Quantity", allow_zero=False)

        with self.storage.atomic():
            item = self.require_item(item_id)
            item.available_quantity += quantity
            item.updated_at = datetime.now(timezone.utc)
            self.save(item)
            self.audit_trail.log_event(
                AuditEventType.CATALOG_ITEM_RESTOCKED,
                "catalog_item",
                item.id,
                {"added": quantity, "available_quantity": item.available_quantity},
                actor.id
            )

        log_action(self.logger, "info", f"Restocked {item.name} by {quantity}",
                   actor_id=actor.id, action="restock_item", resource=f"catalog_item:{item.id}")
        return item

    def update_price(self, actor: Principal, item_id: str, points_required: int) -> CatalogItem:
        """
        Change an item's price (admin only)

        Pending redemption requests keep the price they were submitted at.
        """
        authorize(actor, Operation.MANAGE_CATALOG, message="Only admin can change prices")
        points_required = _validate_count(points_required, "Points required", allow_zero=False)

        with self.storage.atomic():
            item = self.require_item(item_id)
            previous = item.points_required
            item.points_required = points_required
            item.updated_at = datetime.now(timezone.utc)
            self.save(item)
            self.audit_trail.log_event(
                AuditEventType.CATALOG_ITEM_REPRICED,
                "catalog_item",
                item.id,
                {"previous_points_required": previous, "points_required": points_required},
                actor.id
            )

        return item

    def take_one(self, item: CatalogItem) -> CatalogItem:
        """
        Remove one unit of stock for an approved redemption

        Must run inside the caller's unit of work; ``item`` is updated in place.

        Raises:
            ConflictError: If the item is out of stock
        """
        if not item.in_stock:
            raise ConflictError(f"Item {item.name} is out of stock",
                                details={"item_id": item.id})
        with self.storage.atomic():
            item.available_quantity -= 1
            item.updated_at = datetime.now(timezone.utc)
            self.save(item)
        return item

    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        data = self.storage.load(self.table_name, item_id)
        if data:
            return CatalogItem.from_dict(data)
        return None

    def require_item(self, item_id: str) -> CatalogItem:
        item = self.get_item(item_id)
        if not item:
            raise NotFoundError(f"Item {item_id} not found")
        return item

    def list_items(self) -> List[CatalogItem]:
        """All items, cheapest first"""
        items = [CatalogItem.from_dict(data) for data in self.storage.load_all(self.table_name)]
        items.sort(key=lambda i: (i.points_required, i.name))
        return items

    def save(self, item: CatalogItem) -> None:
        self.storage.save(self.table_name, item.id, item.to_dict())


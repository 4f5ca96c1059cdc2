from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from ..domain import Actor, AvailablePart, OrderStatus, PartAction, SparePartOrder, utcnow
from ..errors import Conflict, NotFound, ValidationError
from ..repositories.base import Repository
from .inputs import optional_text, text
from .role_gate import AccessContext, Operation, require

logger = logging.getLogger(__name__)


def _parse_unit_cost(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        cost = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"Invalid unit cost: {value!r}", details={"field": "unit_cost"})
    if not cost.is_finite() or cost < 0:
        raise ValidationError("Unit cost cannot be negative.", details={"field": "unit_cost"})
    return cost


class PartsInventory:
    """Catalogue of spare parts on the shelf and of supplier orders.

    Quantities only enter here (new parts, received orders); every later
    movement goes through ``AllocationCoordinator``.
    """

    def create_part(
        self,
        repo: Repository,
        actor: Actor,
        *,
        part_name: str,
        quantity: int,
        location: str | None = None,
        part_number: str | None = None,
        category: str | None = None,
        manufacturer: str | None = None,
        unit_cost: Any = None,
    ) -> AvailablePart:
        require(actor, Operation.CREATE_PART)
        part_name = text(part_name, "part_name")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError("Part quantity must be >= 0.", details={"field": "quantity"})

        part = repo.insert_part(
            part_name=part_name,
            quantity=quantity,
            location=optional_text(location, "location"),
            added_by=actor.user_id,
            part_number=optional_text(part_number, "part_number"),
            category=optional_text(category, "category"),
            manufacturer=optional_text(manufacturer, "manufacturer"),
            unit_cost=_parse_unit_cost(unit_cost),
        )
        repo.append_activity_log(
            part_id=part.id,
            action=PartAction.RECEIVED,
            actor_id=actor.user_id,
            quantity_before=0,
            quantity_after=quantity,
            notes="initial stock",
        )
        logger.info("Part #%s (%s) created with %s unit(s)", part.id, part.part_name, quantity)
        return part

    def get_part(self, repo: Repository, actor: Actor, part_id: int) -> AvailablePart:
        require(actor, Operation.READ_INVENTORY)
        part = repo.get_part(part_id)
        if part is None:
            raise NotFound("AvailablePart", part_id)
        return part

    def list_parts(self, repo: Repository, actor: Actor) -> list[AvailablePart]:
        require(actor, Operation.READ_INVENTORY)
        return repo.list_parts()

    def search(
        self,
        repo: Repository,
        actor: Actor,
        *,
        name: str | None = None,
        category: str | None = None,
        manufacturer: str | None = None,
    ) -> list[AvailablePart]:
        require(actor, Operation.READ_INVENTORY)
        return repo.search_parts(
            name=optional_text(name, "name"),
            category=optional_text(category, "category"),
            manufacturer=optional_text(manufacturer, "manufacturer"),
        )

    # supplier orders

    def order_spare_part(
        self,
        repo: Repository,
        actor: Actor,
        *,
        part_name: str,
        quantity: int,
        service_id: int | None = None,
        part_number: str | None = None,
        category: str | None = None,
        manufacturer: str | None = None,
        supplier_name: str | None = None,
    ) -> SparePartOrder:
        context = None
        technician_id = None
        if service_id is not None:
            service = repo.get_service(service_id)
            if service is None:
                raise NotFound("Service", service_id)
            context = AccessContext.for_service(service)
            technician_id = service.technician_id
        require(actor, Operation.ORDER_SPARE_PART, context)

        part_name = text(part_name, "part_name")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Order quantity must be > 0.", details={"field": "quantity"})

        order = repo.insert_spare_part_order(
            part_name=part_name,
            quantity=quantity,
            ordered_by=actor.user_id,
            part_number=optional_text(part_number, "part_number"),
            category=optional_text(category, "category"),
            manufacturer=optional_text(manufacturer, "manufacturer"),
            service_id=service_id,
            technician_id=technician_id,
            supplier_name=optional_text(supplier_name, "supplier_name"),
        )
        logger.info("Spare part order #%s: %s x %s", order.id, quantity, order.part_name)
        return order

    def mark_order_received(
        self,
        repo: Repository,
        actor: Actor,
        order_id: int,
        *,
        location: str | None = None,
        unit_cost: Any = None,
    ) -> AvailablePart:
        require(actor, Operation.RECEIVE_SPARE_PART_ORDER)
        order = repo.get_spare_part_order(order_id)
        if order is None:
            raise NotFound("SparePartOrder", order_id)
        cost = _parse_unit_cost(unit_cost)

        received = repo.update_spare_part_order_status(
            order_id, expected=OrderStatus.PENDING, new=OrderStatus.RECEIVED, received_at=utcnow()
        )
        if received is None:
            current = repo.get_spare_part_order(order_id)
            status = current.status.value if current else "missing"
            raise Conflict(
                f"Spare part order {order_id} is {status}, only pending orders can be received",
                details={"order_id": order_id, "status": status},
            )

        part = repo.insert_part(
            part_name=received.part_name,
            quantity=received.quantity,
            location=optional_text(location, "location"),
            added_by=actor.user_id,
            part_number=received.part_number,
            category=received.category,
            manufacturer=received.manufacturer,
            unit_cost=cost,
            spare_part_order_id=received.id,
        )
        repo.append_activity_log(
            part_id=part.id,
            action=PartAction.RECEIVED,
            actor_id=actor.user_id,
            quantity_before=0,
            quantity_after=received.quantity,
            service_id=received.service_id,
            technician_id=received.technician_id,
            notes=f"spare part order #{received.id}",
        )
        logger.info("Spare part order #%s received as part #%s", order_id, part.id)
        return part

    def cancel_order(self, repo: Repository, actor: Actor, order_id: int) -> SparePartOrder:
        require(actor, Operation.CANCEL_SPARE_PART_ORDER)
        if repo.get_spare_part_order(order_id) is None:
            raise NotFound("SparePartOrder", order_id)

        canceled = repo.update_spare_part_order_status(order_id, expected=OrderStatus.PENDING, new=OrderStatus.CANCELED)
        if canceled is None:
            current = repo.get_spare_part_order(order_id)
            status = current.status.value if current else "missing"
            raise Conflict(
                f"Spare part order {order_id} is {status}, only pending orders can be canceled",
                details={"order_id": order_id, "status": status},
            )
        logger.info("Spare part order #%s canceled", order_id)
        return canceled

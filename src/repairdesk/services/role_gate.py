"""Capability checks for every core operation.

The table below is the only place that decides who may do what. Scoped
capabilities additionally require the actor to own the target: a technician
must be the one assigned to the service (or holding the allocation), a
business partner must be the one who created the service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Optional

from ..domain import Actor, PartAllocation, Role, Service
from ..errors import Forbidden

logger = logging.getLogger(__name__)


class Operation(StrEnum):
    CREATE_SERVICE = "create_service"
    READ_SERVICE = "read_service"
    ASSIGN_TECHNICIAN = "assign_technician"
    SCHEDULE = "schedule"
    START_WORK = "start_work"
    REQUEST_PARTS = "request_parts"
    MARK_PARTS_REMOVED = "mark_parts_removed"
    COMPLETE = "complete"
    CANCEL = "cancel"
    RECORD_REMOVED_PART = "record_removed_part"
    RETURN_REMOVED_PART = "return_removed_part"
    NOTIFY_CLIENT_NOT_AVAILABLE = "notify_client_not_available"
    READ_INVENTORY = "read_inventory"
    CREATE_PART = "create_part"
    DELETE_PART = "delete_part"
    ADJUST_QUANTITY = "adjust_quantity"
    ALLOCATE_PART = "allocate_part"
    RETURN_ALLOCATION = "return_allocation"
    READ_LEDGER = "read_ledger"
    ORDER_SPARE_PART = "order_spare_part"
    RECEIVE_SPARE_PART_ORDER = "receive_spare_part_order"
    CANCEL_SPARE_PART_ORDER = "cancel_spare_part_order"
    REGISTER_CLIENT = "register_client"
    REGISTER_TECHNICIAN = "register_technician"


class Scope(StrEnum):
    ANY = "any"
    ASSIGNED_TECHNICIAN = "assigned_technician"
    OWN_PARTNER = "own_partner"


@dataclass(frozen=True)
class AccessContext:
    technician_id: Optional[int] = None
    business_partner_id: Optional[int] = None

    @classmethod
    def for_service(cls, service: Service) -> AccessContext:
        return cls(technician_id=service.technician_id, business_partner_id=service.business_partner_id)

    @classmethod
    def for_allocation(cls, allocation: PartAllocation) -> AccessContext:
        return cls(technician_id=allocation.technician_id)


_TECHNICIAN_SCOPED = (
    Operation.READ_SERVICE,
    Operation.SCHEDULE,
    Operation.START_WORK,
    Operation.REQUEST_PARTS,
    Operation.MARK_PARTS_REMOVED,
    Operation.COMPLETE,
    Operation.RECORD_REMOVED_PART,
    Operation.RETURN_REMOVED_PART,
    Operation.NOTIFY_CLIENT_NOT_AVAILABLE,
    Operation.RETURN_ALLOCATION,
    Operation.ORDER_SPARE_PART,
)

CAPABILITIES: dict[Role, dict[Operation, Scope]] = {
    Role.ADMIN: {op: Scope.ANY for op in Operation},
    Role.TECHNICIAN: {
        **{op: Scope.ASSIGNED_TECHNICIAN for op in _TECHNICIAN_SCOPED},
        Operation.READ_INVENTORY: Scope.ANY,
    },
    Role.BUSINESS_PARTNER: {
        Operation.CREATE_SERVICE: Scope.ANY,
        Operation.READ_SERVICE: Scope.OWN_PARTNER,
    },
    # rate limited by ServiceLifecycle.create_service
    Role.CUSTOMER: {
        Operation.CREATE_SERVICE: Scope.ANY,
    },
}


def allowed(actor: Optional[Actor], operation: Operation, context: Optional[AccessContext] = None) -> bool:
    if actor is None:
        return False
    try:
        role = Role(actor.role)
    except ValueError:
        return False

    scope = CAPABILITIES.get(role, {}).get(operation)
    if scope is None:
        return False
    if scope is Scope.ANY:
        return True

    if context is None:
        return False
    if scope is Scope.ASSIGNED_TECHNICIAN:
        return actor.technician_id is not None and context.technician_id == actor.technician_id
    if scope is Scope.OWN_PARTNER:
        return context.business_partner_id is not None and context.business_partner_id == actor.user_id
    return False


def require(actor: Optional[Actor], operation: Operation, context: Optional[AccessContext] = None) -> Actor:
    if not allowed(actor, operation, context):
        who = f"{actor.role}#{actor.user_id}" if actor is not None else "anonymous"
        logger.warning("Denied %s for %s", operation.value, who)
        raise Forbidden(
            f"Actor {who} may not perform {operation.value}",
            details={"operation": operation.value},
        )
    return actor

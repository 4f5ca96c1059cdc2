"""Spare-part allocation ledger.

Stock only moves through the repository's conditional updates; each movement
is written to the activity log with the quantity before and after, which is
what ``audit_part`` reconciles against.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..domain import (
    ActivityLogEntry,
    Actor,
    AllocationResult,
    AllocationStatus,
    PartAction,
    PartAllocation,
    PartLedger,
    Role,
    utcnow,
)
from ..errors import AlreadyReturned, InsufficientStock, NotFound, PartInUse, ValidationError
from ..notifications import EventType, NotificationDispatcher, dispatch_after_commit
from ..repositories.base import Repository, sum_quantities
from .inputs import optional_text
from .role_gate import AccessContext, Operation, require

logger = logging.getLogger(__name__)


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer.", details={"field": field})
    return value


class AllocationCoordinator:
    def __init__(self, *, dispatcher: NotificationDispatcher | None = None) -> None:
        self.dispatcher = dispatcher

    def allocate(
        self,
        repo: Repository,
        actor: Actor,
        *,
        part_id: int,
        technician_id: int,
        quantity: int,
        service_id: int | None = None,
        notes: str | None = None,
    ) -> AllocationResult:
        require(actor, Operation.ALLOCATE_PART)
        quantity = _positive_int(quantity, "quantity")
        notes = optional_text(notes, "notes")

        part = repo.get_part(part_id)
        if part is None:
            raise NotFound("AvailablePart", part_id)
        technician = repo.get_technician(technician_id)
        if technician is None or not technician.is_active:
            raise NotFound("Technician", technician_id)
        if service_id is not None and repo.get_service(service_id) is None:
            raise NotFound("Service", service_id)

        remaining = repo.decrement_part_quantity(part_id, quantity)
        if remaining is None:
            current = repo.get_part(part_id)
            if current is None:
                raise NotFound("AvailablePart", part_id)
            logger.info(
                "Allocation of %s x part #%s rejected, only %s available", quantity, part_id, current.quantity
            )
            raise InsufficientStock(part_id, quantity, current.quantity)

        allocation = repo.insert_allocation(
            available_part_id=part_id,
            service_id=service_id,
            technician_id=technician_id,
            allocated_quantity=quantity,
            allocated_by=actor.user_id,
            allocation_notes=notes,
        )
        repo.append_activity_log(
            part_id=part_id,
            action=PartAction.ALLOCATED,
            actor_id=actor.user_id,
            quantity_before=remaining + quantity,
            quantity_after=remaining,
            allocation_id=allocation.id,
            service_id=service_id,
            technician_id=technician_id,
            notes=notes,
        )
        logger.info(
            "Allocated %s x %s (part #%s) to technician #%s, %s left",
            quantity,
            part.part_name,
            part_id,
            technician_id,
            remaining,
        )
        dispatch_after_commit(
            repo,
            self.dispatcher,
            EventType.PARTS_ALLOCATED,
            {
                "allocation_id": allocation.id,
                "part_id": part_id,
                "part_name": part.part_name,
                "quantity": quantity,
                "technician_id": technician_id,
                "technician_name": technician.full_name,
                "service_id": service_id,
                "remaining_quantity": remaining,
            },
        )
        return AllocationResult(allocation=allocation, remaining_quantity=remaining)

    def mark_returned(
        self, repo: Repository, actor: Actor, allocation_id: int, *, notes: str | None = None
    ) -> PartAllocation:
        allocation = repo.get_allocation(allocation_id)
        if allocation is None:
            raise NotFound("PartAllocation", allocation_id)
        require(actor, Operation.RETURN_ALLOCATION, AccessContext.for_allocation(allocation))
        notes = optional_text(notes, "notes")

        returned = repo.update_allocation_status(
            allocation_id,
            expected=AllocationStatus.ALLOCATED,
            new=AllocationStatus.RETURNED,
            returned_at=utcnow(),
            return_notes=notes,
        )
        if returned is None:
            raise AlreadyReturned(
                f"Allocation {allocation_id} was already returned",
                details={"allocation_id": allocation_id},
            )

        quantity = repo.increment_part_quantity(returned.available_part_id, returned.allocated_quantity)
        if quantity is None:
            # part deleted meanwhile; the allocation row still closes
            logger.warning(
                "Allocation #%s returned but part #%s no longer exists", allocation_id, returned.available_part_id
            )
            return returned

        repo.append_activity_log(
            part_id=returned.available_part_id,
            action=PartAction.RETURNED,
            actor_id=actor.user_id,
            quantity_before=quantity - returned.allocated_quantity,
            quantity_after=quantity,
            allocation_id=allocation_id,
            service_id=returned.service_id,
            technician_id=returned.technician_id,
            notes=notes,
        )
        logger.info(
            "Allocation #%s returned: %s unit(s) back on part #%s, now %s",
            allocation_id,
            returned.allocated_quantity,
            returned.available_part_id,
            quantity,
        )
        return returned

    def delete_part(self, repo: Repository, actor: Actor, part_id: int, *, notes: str | None = None) -> None:
        require(actor, Operation.DELETE_PART)
        notes = optional_text(notes, "notes")
        part = repo.get_part(part_id)
        if part is None:
            raise NotFound("AvailablePart", part_id)

        if not repo.delete_part_if_unallocated(part_id):
            outstanding = repo.count_outstanding_allocations(part_id)
            if outstanding == 0 and repo.get_part(part_id) is None:
                raise NotFound("AvailablePart", part_id)
            raise PartInUse(part_id, outstanding)

        repo.append_activity_log(
            part_id=part_id,
            action=PartAction.DELETED,
            actor_id=actor.user_id,
            quantity_before=part.quantity,
            quantity_after=0,
            notes=notes,
        )
        logger.info("Part #%s (%s) deleted with %s unit(s) on hand", part_id, part.part_name, part.quantity)

    def adjust_quantity(
        self, repo: Repository, actor: Actor, part_id: int, *, delta: int, notes: str | None = None
    ) -> int:
        """Correct the on-hand count by ``delta`` (stock-take, damaged units)."""
        require(actor, Operation.ADJUST_QUANTITY)
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ValidationError("delta must be a non-zero integer.", details={"field": "delta"})
        notes = optional_text(notes, "notes")
        if repo.get_part(part_id) is None:
            raise NotFound("AvailablePart", part_id)

        if delta > 0:
            after = repo.increment_part_quantity(part_id, delta)
        else:
            after = repo.decrement_part_quantity(part_id, -delta)
        if after is None:
            current = repo.get_part(part_id)
            if current is None:
                raise NotFound("AvailablePart", part_id)
            raise InsufficientStock(part_id, -delta, current.quantity)

        repo.append_activity_log(
            part_id=part_id,
            action=PartAction.ADJUSTED,
            actor_id=actor.user_id,
            quantity_before=after - delta,
            quantity_after=after,
            notes=notes,
        )
        logger.info("Part #%s adjusted by %+d, now %s", part_id, delta, after)
        return after

    def list_allocations(
        self,
        repo: Repository,
        actor: Actor,
        *,
        part_id: int | None = None,
        technician_id: int | None = None,
        service_id: int | None = None,
        status: str | AllocationStatus | None = None,
    ) -> list[PartAllocation]:
        wanted: Optional[AllocationStatus] = None
        if status is not None:
            try:
                wanted = AllocationStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown allocation status: {status}", details={"field": "status"})

        if actor is not None and actor.role == Role.TECHNICIAN:
            # technicians only ever see their own allocations
            require(actor, Operation.RETURN_ALLOCATION, AccessContext(technician_id=actor.technician_id))
            technician_id = actor.technician_id
        else:
            require(actor, Operation.READ_LEDGER)

        return repo.list_allocations(
            part_id=part_id, technician_id=technician_id, service_id=service_id, status=wanted
        )

    def activity_log(
        self, repo: Repository, actor: Actor, *, part_id: int | None = None, limit: int | None = 50
    ) -> list[ActivityLogEntry]:
        require(actor, Operation.READ_LEDGER)
        if limit is not None:
            limit = _positive_int(limit, "limit")
        return repo.list_activity_log(part_id=part_id, limit=limit)

    def audit_part(self, repo: Repository, actor: Actor, part_id: int) -> PartLedger:
        """Reconcile on-hand plus outstanding stock with everything ever received.

        ``total_received`` counts the deltas of ``received`` and ``adjusted``
        log entries; allocations and returns only move units between the shelf
        and technicians, so a consistent ledger is always ``balanced``.
        """
        require(actor, Operation.READ_LEDGER)
        part = repo.get_part(part_id)
        if part is None:
            raise NotFound("AvailablePart", part_id)

        outstanding = sum_quantities(repo.list_allocations(part_id=part_id, status=AllocationStatus.ALLOCATED))
        total_received = sum(
            e.delta
            for e in repo.list_activity_log(part_id=part_id, limit=None)
            if e.action in (PartAction.RECEIVED, PartAction.ADJUSTED)
        )
        ledger = PartLedger(
            part_id=part_id, quantity=part.quantity, outstanding=outstanding, total_received=total_received
        )
        if not ledger.balanced:
            logger.warning(
                "Part #%s ledger out of balance: %s on hand + %s outstanding != %s received",
                part_id,
                ledger.quantity,
                ledger.outstanding,
                ledger.total_received,
            )
        return ledger

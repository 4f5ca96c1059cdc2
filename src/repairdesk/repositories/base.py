"""Persistence contract shared by the PostgreSQL and in-memory repositories.

A ``Repository`` instance is bound to one unit of work (one database
transaction for PostgreSQL). Every method that changes a quantity or a status
is a conditional update evaluated by the store itself, so callers never do
read-then-write on contended rows.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Callable, ContextManager, Optional, Protocol, Sequence

from ..domain import (
    ActivityLogEntry,
    AllocationStatus,
    Appliance,
    AvailablePart,
    Client,
    OrderStatus,
    PartAction,
    PartAllocation,
    RemovedPart,
    Role,
    Service,
    ServiceStatus,
    SparePartOrder,
    StatusHistoryEntry,
    Technician,
    WarrantyStatus,
)


class Repository(Protocol):
    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once this unit of work commits; dropped on rollback."""
        ...

    # reference data
    def get_client(self, client_id: int) -> Optional[Client]: ...

    def get_appliance(self, appliance_id: int) -> Optional[Appliance]: ...

    def get_technician(self, technician_id: int) -> Optional[Technician]: ...

    # services
    def get_service(self, service_id: int) -> Optional[Service]: ...

    def insert_service(
        self,
        *,
        client_id: int,
        appliance_id: int,
        description: str,
        warranty_status: WarrantyStatus,
        business_partner_id: Optional[int],
        created_by: Optional[int],
    ) -> Service: ...

    def save_service(self, service: Service, *, expected_status: ServiceStatus) -> bool:
        """Persist ``service`` only if the stored status still equals ``expected_status``."""
        ...

    def list_services(
        self,
        *,
        technician_id: Optional[int] = None,
        business_partner_id: Optional[int] = None,
        status: Optional[ServiceStatus] = None,
    ) -> list[Service]: ...

    def append_status_history(
        self,
        *,
        service_id: int,
        old_status: ServiceStatus,
        new_status: ServiceStatus,
        operation: str,
        actor_id: int,
        actor_role: Role,
        notes: Optional[str],
    ) -> StatusHistoryEntry: ...

    def list_status_history(self, service_id: int) -> list[StatusHistoryEntry]: ...

    # removed parts
    def insert_removed_part(
        self,
        *,
        service_id: int,
        technician_id: Optional[int],
        part_name: str,
        removal_reason: str,
        notes: Optional[str],
    ) -> RemovedPart: ...

    def get_removed_part(self, removed_part_id: int) -> Optional[RemovedPart]: ...

    def list_removed_parts(self, service_id: int) -> list[RemovedPart]: ...

    def mark_removed_part_returned(
        self, removed_part_id: int, *, return_date: date, notes: Optional[str]
    ) -> Optional[RemovedPart]:
        """Set the return date if none is set yet; ``None`` when already returned."""
        ...

    # parts
    def insert_part(
        self,
        *,
        part_name: str,
        quantity: int,
        location: Optional[str],
        added_by: int,
        part_number: Optional[str] = None,
        category: Optional[str] = None,
        manufacturer: Optional[str] = None,
        unit_cost: Optional[Decimal] = None,
        spare_part_order_id: Optional[int] = None,
    ) -> AvailablePart: ...

    def get_part(self, part_id: int) -> Optional[AvailablePart]: ...

    def list_parts(self) -> list[AvailablePart]: ...

    def search_parts(
        self,
        *,
        name: Optional[str] = None,
        category: Optional[str] = None,
        manufacturer: Optional[str] = None,
    ) -> list[AvailablePart]: ...

    def decrement_part_quantity(self, part_id: int, amount: int) -> Optional[int]:
        """Atomic compare-and-decrement.

        Returns the remaining quantity, or ``None`` when the part holds fewer
        than ``amount`` units (or does not exist); nothing changes in that case.
        """
        ...

    def increment_part_quantity(self, part_id: int, amount: int) -> Optional[int]:
        """Atomic increment; returns the new quantity or ``None`` if the part is gone."""
        ...

    def delete_part_if_unallocated(self, part_id: int) -> bool:
        """Delete the part unless an ``allocated`` allocation references it."""
        ...

    # allocations
    def insert_allocation(
        self,
        *,
        available_part_id: int,
        service_id: Optional[int],
        technician_id: int,
        allocated_quantity: int,
        allocated_by: int,
        allocation_notes: Optional[str],
    ) -> PartAllocation: ...

    def get_allocation(self, allocation_id: int) -> Optional[PartAllocation]: ...

    def update_allocation_status(
        self,
        allocation_id: int,
        *,
        expected: AllocationStatus,
        new: AllocationStatus,
        returned_at: Optional[datetime] = None,
        return_notes: Optional[str] = None,
    ) -> Optional[PartAllocation]:
        """Conditional status change; ``None`` when the stored status is not ``expected``."""
        ...

    def list_allocations(
        self,
        *,
        part_id: Optional[int] = None,
        technician_id: Optional[int] = None,
        service_id: Optional[int] = None,
        status: Optional[AllocationStatus] = None,
    ) -> list[PartAllocation]: ...

    def count_outstanding_allocations(self, part_id: int) -> int: ...

    # activity log
    def append_activity_log(
        self,
        *,
        part_id: int,
        action: PartAction,
        actor_id: int,
        quantity_before: int,
        quantity_after: int,
        allocation_id: Optional[int] = None,
        service_id: Optional[int] = None,
        technician_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> ActivityLogEntry: ...

    def list_activity_log(
        self, *, part_id: Optional[int] = None, limit: Optional[int] = 50
    ) -> list[ActivityLogEntry]: ...

    # spare part orders
    def insert_spare_part_order(
        self,
        *,
        part_name: str,
        quantity: int,
        ordered_by: int,
        part_number: Optional[str] = None,
        category: Optional[str] = None,
        manufacturer: Optional[str] = None,
        service_id: Optional[int] = None,
        technician_id: Optional[int] = None,
        supplier_name: Optional[str] = None,
    ) -> SparePartOrder: ...

    def get_spare_part_order(self, order_id: int) -> Optional[SparePartOrder]: ...

    def update_spare_part_order_status(
        self,
        order_id: int,
        *,
        expected: OrderStatus,
        new: OrderStatus,
        received_at: Optional[datetime] = None,
    ) -> Optional[SparePartOrder]: ...

    # request tracking
    def request_window_lock(self, user_id: int) -> ContextManager[None]:
        """Serialise rate-limit check-then-insert for one user."""
        ...

    def count_requests_since(self, user_id: int, request_type: str, since: datetime) -> int: ...

    def add_request_tracking(self, *, user_id: int, request_type: str, requested_at: datetime) -> None: ...

    def oldest_request_since(
        self, user_id: int, request_type: str, since: datetime
    ) -> Optional[datetime]: ...


def sum_quantities(allocations: Sequence[PartAllocation]) -> int:
    return sum(a.allocated_quantity for a in allocations)

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterator

from psycopg import Connection

from ..db import Db
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
from .activity_repo import ActivityLogRepository
from .allocation_repo import AllocationRepository
from .part_repo import PartRepository
from .reference_repo import ReferenceRepository
from .removed_part_repo import RemovedPartRepository
from .request_repo import RequestTrackingRepository
from .service_repo import ServiceRepository
from .spare_part_order_repo import SparePartOrderRepository


class PostgresRepository:
    """``Repository`` over one open psycopg connection (one transaction)."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn
        self.reference_repo = ReferenceRepository()
        self.service_repo = ServiceRepository()
        self.part_repo = PartRepository()
        self.allocation_repo = AllocationRepository()
        self.activity_repo = ActivityLogRepository()
        self.removed_part_repo = RemovedPartRepository()
        self.order_repo = SparePartOrderRepository()
        self.request_repo = RequestTrackingRepository()
        self._on_commit: list[Callable[[], None]] = []

    def after_commit(self, callback: Callable[[], None]) -> None:
        self._on_commit.append(callback)

    def run_after_commit(self) -> None:
        callbacks, self._on_commit = self._on_commit, []
        for callback in callbacks:
            callback()

    # reference data
    def get_client(self, client_id: int) -> Client | None:
        return self.reference_repo.get_client(self.conn, client_id)

    def get_appliance(self, appliance_id: int) -> Appliance | None:
        return self.reference_repo.get_appliance(self.conn, appliance_id)

    def get_technician(self, technician_id: int) -> Technician | None:
        return self.reference_repo.get_technician(self.conn, technician_id)

    # services
    def get_service(self, service_id: int) -> Service | None:
        return self.service_repo.get(self.conn, service_id)

    def insert_service(
        self,
        *,
        client_id: int,
        appliance_id: int,
        description: str,
        warranty_status: WarrantyStatus,
        business_partner_id: int | None,
        created_by: int | None,
    ) -> Service:
        return self.service_repo.create(
            self.conn,
            client_id=client_id,
            appliance_id=appliance_id,
            description=description,
            warranty_status=warranty_status,
            business_partner_id=business_partner_id,
            created_by=created_by,
        )

    def save_service(self, service: Service, *, expected_status: ServiceStatus) -> bool:
        return self.service_repo.save(self.conn, service, expected_status=expected_status)

    def list_services(
        self,
        *,
        technician_id: int | None = None,
        business_partner_id: int | None = None,
        status: ServiceStatus | None = None,
    ) -> list[Service]:
        return self.service_repo.list(
            self.conn,
            technician_id=technician_id,
            business_partner_id=business_partner_id,
            status=status,
        )

    def append_status_history(
        self,
        *,
        service_id: int,
        old_status: ServiceStatus,
        new_status: ServiceStatus,
        operation: str,
        actor_id: int,
        actor_role: Role,
        notes: str | None,
    ) -> StatusHistoryEntry:
        return self.service_repo.append_history(
            self.conn,
            service_id=service_id,
            old_status=old_status,
            new_status=new_status,
            operation=operation,
            actor_id=actor_id,
            actor_role=actor_role,
            notes=notes,
        )

    def list_status_history(self, service_id: int) -> list[StatusHistoryEntry]:
        return self.service_repo.list_history(self.conn, service_id)

    # removed parts
    def insert_removed_part(
        self,
        *,
        service_id: int,
        technician_id: int | None,
        part_name: str,
        removal_reason: str,
        notes: str | None,
    ) -> RemovedPart:
        return self.removed_part_repo.create(
            self.conn,
            service_id=service_id,
            technician_id=technician_id,
            part_name=part_name,
            removal_reason=removal_reason,
            notes=notes,
        )

    def get_removed_part(self, removed_part_id: int) -> RemovedPart | None:
        return self.removed_part_repo.get(self.conn, removed_part_id)

    def list_removed_parts(self, service_id: int) -> list[RemovedPart]:
        return self.removed_part_repo.list_for_service(self.conn, service_id)

    def mark_removed_part_returned(
        self, removed_part_id: int, *, return_date: date, notes: str | None
    ) -> RemovedPart | None:
        return self.removed_part_repo.mark_returned(
            self.conn, removed_part_id=removed_part_id, return_date=return_date, notes=notes
        )

    # parts
    def insert_part(
        self,
        *,
        part_name: str,
        quantity: int,
        location: str | None,
        added_by: int,
        part_number: str | None = None,
        category: str | None = None,
        manufacturer: str | None = None,
        unit_cost: Decimal | None = None,
        spare_part_order_id: int | None = None,
    ) -> AvailablePart:
        return self.part_repo.create(
            self.conn,
            part_name=part_name,
            quantity=quantity,
            location=location,
            added_by=added_by,
            part_number=part_number,
            category=category,
            manufacturer=manufacturer,
            unit_cost=unit_cost,
            spare_part_order_id=spare_part_order_id,
        )

    def get_part(self, part_id: int) -> AvailablePart | None:
        return self.part_repo.get(self.conn, part_id)

    def list_parts(self) -> list[AvailablePart]:
        return self.part_repo.list(self.conn)

    def search_parts(
        self,
        *,
        name: str | None = None,
        category: str | None = None,
        manufacturer: str | None = None,
    ) -> list[AvailablePart]:
        return self.part_repo.search(self.conn, name=name, category=category, manufacturer=manufacturer)

    def decrement_part_quantity(self, part_id: int, amount: int) -> int | None:
        return self.part_repo.decrease_stock(self.conn, part_id=part_id, qty=amount)

    def increment_part_quantity(self, part_id: int, amount: int) -> int | None:
        return self.part_repo.increase_stock(self.conn, part_id=part_id, qty=amount)

    def delete_part_if_unallocated(self, part_id: int) -> bool:
        return self.part_repo.delete_if_unallocated(self.conn, part_id)

    # allocations
    def insert_allocation(
        self,
        *,
        available_part_id: int,
        service_id: int | None,
        technician_id: int,
        allocated_quantity: int,
        allocated_by: int,
        allocation_notes: str | None,
    ) -> PartAllocation:
        return self.allocation_repo.create(
            self.conn,
            available_part_id=available_part_id,
            service_id=service_id,
            technician_id=technician_id,
            allocated_quantity=allocated_quantity,
            allocated_by=allocated_by,
            allocation_notes=allocation_notes,
        )

    def get_allocation(self, allocation_id: int) -> PartAllocation | None:
        return self.allocation_repo.get(self.conn, allocation_id)

    def update_allocation_status(
        self,
        allocation_id: int,
        *,
        expected: AllocationStatus,
        new: AllocationStatus,
        returned_at: datetime | None = None,
        return_notes: str | None = None,
    ) -> PartAllocation | None:
        return self.allocation_repo.set_status(
            self.conn,
            allocation_id=allocation_id,
            expected=expected,
            new=new,
            returned_at=returned_at,
            return_notes=return_notes,
        )

    def list_allocations(
        self,
        *,
        part_id: int | None = None,
        technician_id: int | None = None,
        service_id: int | None = None,
        status: AllocationStatus | None = None,
    ) -> list[PartAllocation]:
        return self.allocation_repo.list(
            self.conn,
            part_id=part_id,
            technician_id=technician_id,
            service_id=service_id,
            status=status,
        )

    def count_outstanding_allocations(self, part_id: int) -> int:
        return self.allocation_repo.count_outstanding(self.conn, part_id)

    # activity log
    def append_activity_log(
        self,
        *,
        part_id: int,
        action: PartAction,
        actor_id: int,
        quantity_before: int,
        quantity_after: int,
        allocation_id: int | None = None,
        service_id: int | None = None,
        technician_id: int | None = None,
        notes: str | None = None,
    ) -> ActivityLogEntry:
        return self.activity_repo.append(
            self.conn,
            part_id=part_id,
            action=action,
            actor_id=actor_id,
            quantity_before=quantity_before,
            quantity_after=quantity_after,
            allocation_id=allocation_id,
            service_id=service_id,
            technician_id=technician_id,
            notes=notes,
        )

    def list_activity_log(self, *, part_id: int | None = None, limit: int | None = 50) -> list[ActivityLogEntry]:
        return self.activity_repo.list(self.conn, part_id=part_id, limit=limit)

    # spare part orders
    def insert_spare_part_order(
        self,
        *,
        part_name: str,
        quantity: int,
        ordered_by: int,
        part_number: str | None = None,
        category: str | None = None,
        manufacturer: str | None = None,
        service_id: int | None = None,
        technician_id: int | None = None,
        supplier_name: str | None = None,
    ) -> SparePartOrder:
        return self.order_repo.create(
            self.conn,
            part_name=part_name,
            quantity=quantity,
            ordered_by=ordered_by,
            part_number=part_number,
            category=category,
            manufacturer=manufacturer,
            service_id=service_id,
            technician_id=technician_id,
            supplier_name=supplier_name,
        )

    def get_spare_part_order(self, order_id: int) -> SparePartOrder | None:
        return self.order_repo.get(self.conn, order_id)

    def update_spare_part_order_status(
        self,
        order_id: int,
        *,
        expected: OrderStatus,
        new: OrderStatus,
        received_at: datetime | None = None,
    ) -> SparePartOrder | None:
        return self.order_repo.set_status(
            self.conn, order_id=order_id, expected=expected, new=new, received_at=received_at
        )

    # request tracking
    @contextmanager
    def request_window_lock(self, user_id: int) -> Iterator[None]:
        self.request_repo.lock_user(self.conn, user_id)
        yield

    def count_requests_since(self, user_id: int, request_type: str, since: datetime) -> int:
        return self.request_repo.count_since(self.conn, user_id=user_id, request_type=request_type, since=since)

    def add_request_tracking(self, *, user_id: int, request_type: str, requested_at: datetime) -> None:
        self.request_repo.create(self.conn, user_id=user_id, request_type=request_type, requested_at=requested_at)

    def oldest_request_since(self, user_id: int, request_type: str, since: datetime) -> datetime | None:
        return self.request_repo.oldest_since(self.conn, user_id=user_id, request_type=request_type, since=since)


@contextmanager
def postgres_unit(db: Db) -> Iterator[PostgresRepository]:
    """One transaction; ``after_commit`` callbacks run only once it has committed."""
    with db.transaction() as conn:
        repo = PostgresRepository(conn)
        yield repo
    repo.run_after_commit()


@contextmanager
def postgres_session(db: Db) -> Iterator[PostgresRepository]:
    """Read-only counterpart of ``postgres_unit``: nothing is committed and
    ``after_commit`` callbacks are dropped."""
    with db.session() as conn:
        yield PostgresRepository(conn)

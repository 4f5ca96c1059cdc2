from __future__ import annotations

import itertools
import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterator

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
    utcnow,
)


def _contains(value: str | None, needle: str | None) -> bool:
    if not needle:
        return True
    return value is not None and needle.lower() in value.lower()


class InMemoryRepository:
    """Thread-safe ``Repository`` kept in dictionaries.

    Every conditional update runs under one lock, which gives the same
    compare-and-set guarantees the PostgreSQL statements give.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ids: dict[str, Iterator[int]] = defaultdict(lambda: itertools.count(1))
        self._user_locks: dict[int, threading.Lock] = defaultdict(threading.Lock)
        self._local = threading.local()

        self.clients: dict[int, Client] = {}
        self.appliances: dict[int, Appliance] = {}
        self.technicians: dict[int, Technician] = {}
        self.services: dict[int, Service] = {}
        self.history: list[StatusHistoryEntry] = []
        self.removed_parts: dict[int, RemovedPart] = {}
        self.parts: dict[int, AvailablePart] = {}
        self.allocations: dict[int, PartAllocation] = {}
        self.activity: list[ActivityLogEntry] = []
        self.orders: dict[int, SparePartOrder] = {}
        self.requests: list[tuple[int, str, datetime]] = []

    def _next_id(self, table: str) -> int:
        return next(self._ids[table])

    @contextmanager
    def transaction(self) -> Iterator[InMemoryRepository]:
        """Unit of work for this thread: writes apply at once, ``after_commit``
        callbacks wait for a clean exit and are dropped if the block raises."""
        outer = getattr(self._local, "pending", None)
        pending: list[Callable[[], None]] = []
        self._local.pending = pending
        try:
            yield self
        finally:
            self._local.pending = outer
        if outer is not None:
            outer.extend(pending)
            return
        for callback in pending:
            callback()

    def after_commit(self, callback: Callable[[], None]) -> None:
        pending = getattr(self._local, "pending", None)
        if pending is None:
            callback()
        else:
            pending.append(callback)

    # seeding
    def add_client(self, full_name: str, phone: str | None = None, email: str | None = None) -> Client:
        with self._lock:
            client = Client(id=self._next_id("client"), full_name=full_name, phone=phone, email=email)
            self.clients[client.id] = client
            return client

    def add_appliance(self, client_id: int, model: str | None = None, serial_number: str | None = None) -> Appliance:
        with self._lock:
            appliance = Appliance(
                id=self._next_id("appliance"), client_id=client_id, model=model, serial_number=serial_number
            )
            self.appliances[appliance.id] = appliance
            return appliance

    def add_technician(self, full_name: str, phone: str | None = None, is_active: bool = True) -> Technician:
        with self._lock:
            technician = Technician(
                id=self._next_id("technician"), full_name=full_name, phone=phone, is_active=is_active
            )
            self.technicians[technician.id] = technician
            return technician

    # reference data
    def get_client(self, client_id: int) -> Client | None:
        return self.clients.get(client_id)

    def get_appliance(self, appliance_id: int) -> Appliance | None:
        return self.appliances.get(appliance_id)

    def get_technician(self, technician_id: int) -> Technician | None:
        return self.technicians.get(technician_id)

    # services
    def get_service(self, service_id: int) -> Service | None:
        return self.services.get(service_id)

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
        with self._lock:
            service = Service(
                id=self._next_id("service"),
                client_id=client_id,
                appliance_id=appliance_id,
                status=ServiceStatus.PENDING,
                warranty_status=warranty_status,
                description=description,
                created_at=utcnow(),
                business_partner_id=business_partner_id,
                created_by=created_by,
            )
            self.services[service.id] = service
            return service

    def save_service(self, service: Service, *, expected_status: ServiceStatus) -> bool:
        with self._lock:
            stored = self.services.get(service.id)
            if stored is None or stored.status != expected_status:
                return False
            self.services[service.id] = service
            return True

    def list_services(
        self,
        *,
        technician_id: int | None = None,
        business_partner_id: int | None = None,
        status: ServiceStatus | None = None,
    ) -> list[Service]:
        with self._lock:
            rows = [
                s
                for s in self.services.values()
                if (technician_id is None or s.technician_id == technician_id)
                and (business_partner_id is None or s.business_partner_id == business_partner_id)
                and (status is None or s.status == status)
            ]
        return sorted(rows, key=lambda s: s.id, reverse=True)

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
        with self._lock:
            entry = StatusHistoryEntry(
                id=self._next_id("history"),
                service_id=service_id,
                old_status=old_status,
                new_status=new_status,
                operation=operation,
                actor_id=actor_id,
                actor_role=actor_role,
                notes=notes,
                changed_at=utcnow(),
            )
            self.history.append(entry)
            return entry

    def list_status_history(self, service_id: int) -> list[StatusHistoryEntry]:
        with self._lock:
            return [e for e in self.history if e.service_id == service_id]

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
        with self._lock:
            removed = RemovedPart(
                id=self._next_id("removed_part"),
                service_id=service_id,
                technician_id=technician_id,
                part_name=part_name,
                removal_reason=removal_reason,
                removal_date=utcnow(),
                notes=notes,
            )
            self.removed_parts[removed.id] = removed
            return removed

    def get_removed_part(self, removed_part_id: int) -> RemovedPart | None:
        return self.removed_parts.get(removed_part_id)

    def list_removed_parts(self, service_id: int) -> list[RemovedPart]:
        with self._lock:
            rows = [r for r in self.removed_parts.values() if r.service_id == service_id]
        return sorted(rows, key=lambda r: r.id)

    def mark_removed_part_returned(
        self, removed_part_id: int, *, return_date: date, notes: str | None
    ) -> RemovedPart | None:
        with self._lock:
            stored = self.removed_parts.get(removed_part_id)
            if stored is None or stored.return_date is not None:
                return None
            updated = replace(stored, return_date=return_date, notes=notes if notes is not None else stored.notes)
            self.removed_parts[removed_part_id] = updated
            return updated

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
        with self._lock:
            part = AvailablePart(
                id=self._next_id("part"),
                part_name=part_name,
                quantity=quantity,
                location=location,
                added_by=added_by,
                created_at=utcnow(),
                part_number=part_number,
                category=category,
                manufacturer=manufacturer,
                unit_cost=unit_cost,
                spare_part_order_id=spare_part_order_id,
            )
            self.parts[part.id] = part
            return part

    def get_part(self, part_id: int) -> AvailablePart | None:
        return self.parts.get(part_id)

    def list_parts(self) -> list[AvailablePart]:
        with self._lock:
            rows = list(self.parts.values())
        return sorted(rows, key=lambda p: (p.part_name, p.id))

    def search_parts(
        self,
        *,
        name: str | None = None,
        category: str | None = None,
        manufacturer: str | None = None,
    ) -> list[AvailablePart]:
        return [
            p
            for p in self.list_parts()
            if _contains(p.part_name, name) and _contains(p.category, category) and _contains(p.manufacturer, manufacturer)
        ]

    def decrement_part_quantity(self, part_id: int, amount: int) -> int | None:
        with self._lock:
            part = self.parts.get(part_id)
            if part is None or part.quantity < amount:
                return None
            self.parts[part_id] = replace(part, quantity=part.quantity - amount)
            return part.quantity - amount

    def increment_part_quantity(self, part_id: int, amount: int) -> int | None:
        with self._lock:
            part = self.parts.get(part_id)
            if part is None:
                return None
            self.parts[part_id] = replace(part, quantity=part.quantity + amount)
            return part.quantity + amount

    def delete_part_if_unallocated(self, part_id: int) -> bool:
        with self._lock:
            if part_id not in self.parts or self.count_outstanding_allocations(part_id):
                return False
            del self.parts[part_id]
            return True

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
        with self._lock:
            allocation = PartAllocation(
                id=self._next_id("allocation"),
                available_part_id=available_part_id,
                technician_id=technician_id,
                allocated_quantity=allocated_quantity,
                allocated_by=allocated_by,
                status=AllocationStatus.ALLOCATED,
                created_at=utcnow(),
                service_id=service_id,
                allocation_notes=allocation_notes,
            )
            self.allocations[allocation.id] = allocation
            return allocation

    def get_allocation(self, allocation_id: int) -> PartAllocation | None:
        return self.allocations.get(allocation_id)

    def update_allocation_status(
        self,
        allocation_id: int,
        *,
        expected: AllocationStatus,
        new: AllocationStatus,
        returned_at: datetime | None = None,
        return_notes: str | None = None,
    ) -> PartAllocation | None:
        with self._lock:
            stored = self.allocations.get(allocation_id)
            if stored is None or stored.status != expected:
                return None
            updated = replace(stored, status=new, returned_at=returned_at, return_notes=return_notes)
            self.allocations[allocation_id] = updated
            return updated

    def list_allocations(
        self,
        *,
        part_id: int | None = None,
        technician_id: int | None = None,
        service_id: int | None = None,
        status: AllocationStatus | None = None,
    ) -> list[PartAllocation]:
        with self._lock:
            rows = [
                a
                for a in self.allocations.values()
                if (part_id is None or a.available_part_id == part_id)
                and (technician_id is None or a.technician_id == technician_id)
                and (service_id is None or a.service_id == service_id)
                and (status is None or a.status == status)
            ]
        return sorted(rows, key=lambda a: a.id, reverse=True)

    def count_outstanding_allocations(self, part_id: int) -> int:
        return len(self.list_allocations(part_id=part_id, status=AllocationStatus.ALLOCATED))

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
        with self._lock:
            entry = ActivityLogEntry(
                id=self._next_id("activity"),
                part_id=part_id,
                action=action,
                actor_id=actor_id,
                quantity_before=quantity_before,
                quantity_after=quantity_after,
                created_at=utcnow(),
                allocation_id=allocation_id,
                service_id=service_id,
                technician_id=technician_id,
                notes=notes,
            )
            self.activity.append(entry)
            return entry

    def list_activity_log(self, *, part_id: int | None = None, limit: int | None = 50) -> list[ActivityLogEntry]:
        with self._lock:
            rows = [e for e in reversed(self.activity) if part_id is None or e.part_id == part_id]
        return rows if limit is None else rows[:limit]

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
        with self._lock:
            order = SparePartOrder(
                id=self._next_id("order"),
                part_name=part_name,
                quantity=quantity,
                ordered_by=ordered_by,
                status=OrderStatus.PENDING,
                created_at=utcnow(),
                part_number=part_number,
                category=category,
                manufacturer=manufacturer,
                service_id=service_id,
                technician_id=technician_id,
                supplier_name=supplier_name,
            )
            self.orders[order.id] = order
            return order

    def get_spare_part_order(self, order_id: int) -> SparePartOrder | None:
        return self.orders.get(order_id)

    def update_spare_part_order_status(
        self,
        order_id: int,
        *,
        expected: OrderStatus,
        new: OrderStatus,
        received_at: datetime | None = None,
    ) -> SparePartOrder | None:
        with self._lock:
            stored = self.orders.get(order_id)
            if stored is None or stored.status != expected:
                return None
            updated = replace(stored, status=new, received_at=received_at or stored.received_at)
            self.orders[order_id] = updated
            return updated

    # request tracking
    @contextmanager
    def request_window_lock(self, user_id: int) -> Iterator[None]:
        with self._lock:
            user_lock = self._user_locks[user_id]
        with user_lock:
            yield

    def count_requests_since(self, user_id: int, request_type: str, since: datetime) -> int:
        with self._lock:
            return sum(1 for u, t, at in self.requests if u == user_id and t == request_type and at >= since)

    def add_request_tracking(self, *, user_id: int, request_type: str, requested_at: datetime) -> None:
        with self._lock:
            self.requests.append((user_id, request_type, requested_at))

    def oldest_request_since(self, user_id: int, request_type: str, since: datetime) -> datetime | None:
        with self._lock:
            times = [at for u, t, at in self.requests if u == user_id and t == request_type and at >= since]
        return min(times) if times else None

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceStatus(StrEnum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    WAITING_PARTS = "waiting_parts"
    DEVICE_PARTS_REMOVED = "device_parts_removed"
    COMPLETED = "completed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (ServiceStatus.COMPLETED, ServiceStatus.CANCELED)


class WarrantyStatus(StrEnum):
    IN_WARRANTY = "in_warranty"
    OUT_OF_WARRANTY = "out_of_warranty"


class AllocationStatus(StrEnum):
    ALLOCATED = "allocated"
    RETURNED = "returned"


class OrderStatus(StrEnum):
    PENDING = "pending"
    RECEIVED = "received"
    CANCELED = "canceled"


class PartAction(StrEnum):
    RECEIVED = "received"
    ALLOCATED = "allocated"
    RETURNED = "returned"
    ADJUSTED = "adjusted"
    DELETED = "deleted"


class Role(StrEnum):
    ADMIN = "admin"
    TECHNICIAN = "technician"
    BUSINESS_PARTNER = "business_partner"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: Role
    technician_id: Optional[int] = None


@dataclass(frozen=True)
class Client:
    id: int
    full_name: str
    phone: Optional[str]
    email: Optional[str]


@dataclass(frozen=True)
class Appliance:
    id: int
    client_id: int
    model: Optional[str]
    serial_number: Optional[str]


@dataclass(frozen=True)
class Technician:
    id: int
    full_name: str
    phone: Optional[str]
    is_active: bool


@dataclass(frozen=True)
class Service:
    id: int
    client_id: int
    appliance_id: int
    status: ServiceStatus
    warranty_status: WarrantyStatus
    description: str
    created_at: datetime
    technician_id: Optional[int] = None
    business_partner_id: Optional[int] = None
    created_by: Optional[int] = None
    technician_notes: Optional[str] = None
    used_parts: tuple[str, ...] = field(default_factory=tuple)
    cost: Optional[Decimal] = None
    is_completely_fixed: Optional[bool] = None
    scheduled_date: Optional[date] = None
    completed_date: Optional[datetime] = None


@dataclass(frozen=True)
class StatusHistoryEntry:
    id: int
    service_id: int
    old_status: ServiceStatus
    new_status: ServiceStatus
    operation: str
    actor_id: int
    actor_role: Role
    notes: Optional[str]
    changed_at: datetime


@dataclass(frozen=True)
class AvailablePart:
    id: int
    part_name: str
    quantity: int
    location: Optional[str]
    added_by: int
    created_at: datetime
    part_number: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    unit_cost: Optional[Decimal] = None
    spare_part_order_id: Optional[int] = None


@dataclass(frozen=True)
class PartAllocation:
    id: int
    available_part_id: int
    technician_id: int
    allocated_quantity: int
    allocated_by: int
    status: AllocationStatus
    created_at: datetime
    service_id: Optional[int] = None
    allocation_notes: Optional[str] = None
    returned_at: Optional[datetime] = None
    return_notes: Optional[str] = None


@dataclass(frozen=True)
class RemovedPart:
    id: int
    service_id: int
    technician_id: Optional[int]
    part_name: str
    removal_reason: str
    removal_date: datetime
    return_date: Optional[date] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ActivityLogEntry:
    id: int
    part_id: int
    action: PartAction
    actor_id: int
    quantity_before: int
    quantity_after: int
    created_at: datetime
    allocation_id: Optional[int] = None
    service_id: Optional[int] = None
    technician_id: Optional[int] = None
    notes: Optional[str] = None

    @property
    def delta(self) -> int:
        return self.quantity_after - self.quantity_before


@dataclass(frozen=True)
class SparePartOrder:
    id: int
    part_name: str
    quantity: int
    ordered_by: int
    status: OrderStatus
    created_at: datetime
    part_number: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    service_id: Optional[int] = None
    technician_id: Optional[int] = None
    supplier_name: Optional[str] = None
    received_at: Optional[datetime] = None


@dataclass(frozen=True)
class AllocationResult:
    allocation: PartAllocation
    remaining_quantity: int


@dataclass(frozen=True)
class PartLedger:
    part_id: int
    quantity: int
    outstanding: int
    total_received: int

    @property
    def balanced(self) -> bool:
        return self.quantity + self.outstanding == self.total_received

from dataclasses import dataclass
from typing import Any

import pytest

from repairdesk.config import BusinessConfig
from repairdesk.domain import Actor, Appliance, Client, Role, Technician
from repairdesk.repositories.memory import InMemoryRepository
from repairdesk.services.allocation import AllocationCoordinator
from repairdesk.services.inventory import PartsInventory
from repairdesk.services.lifecycle import ServiceLifecycle


class RecordingDispatcher:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def notify(self, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append((event_type, payload))

    def types(self) -> list[str]:
        return [e for e, _ in self.events]


@dataclass
class Seed:
    client: Client
    appliance: Appliance
    other_client: Client
    other_appliance: Appliance
    technician: Technician
    other_technician: Technician
    inactive_technician: Technician
    admin: Actor
    tech: Actor
    other_tech: Actor
    partner: Actor
    customer: Actor


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def seed(repo: InMemoryRepository) -> Seed:
    client = repo.add_client("Ana Kovac", phone="+385 91 000 0001")
    other_client = repo.add_client("Ivo Horvat")
    technician = repo.add_technician("Marko Tehnicar")
    other_technician = repo.add_technician("Luka Serviser")
    inactive = repo.add_technician("Retired Tech", is_active=False)
    return Seed(
        client=client,
        appliance=repo.add_appliance(client.id, model="WM-7000", serial_number="SN-1"),
        other_client=other_client,
        other_appliance=repo.add_appliance(other_client.id, model="DW-300"),
        technician=technician,
        other_technician=other_technician,
        inactive_technician=inactive,
        admin=Actor(user_id=1, role=Role.ADMIN),
        tech=Actor(user_id=10, role=Role.TECHNICIAN, technician_id=technician.id),
        other_tech=Actor(user_id=11, role=Role.TECHNICIAN, technician_id=other_technician.id),
        partner=Actor(user_id=20, role=Role.BUSINESS_PARTNER),
        customer=Actor(user_id=30, role=Role.CUSTOMER),
    )


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def lifecycle(dispatcher: RecordingDispatcher) -> ServiceLifecycle:
    return ServiceLifecycle(dispatcher=dispatcher, business=BusinessConfig())


@pytest.fixture
def allocations(dispatcher: RecordingDispatcher) -> AllocationCoordinator:
    return AllocationCoordinator(dispatcher=dispatcher)


@pytest.fixture
def inventory() -> PartsInventory:
    return PartsInventory()

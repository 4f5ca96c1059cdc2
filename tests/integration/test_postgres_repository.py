import threading
from collections.abc import Iterator

import pytest
from testcontainers.postgres import PostgresContainer

from repairdesk.config import DbConfig
from repairdesk.db import Db, init_schema
from repairdesk.domain import Actor, AllocationStatus, Role, ServiceStatus
from repairdesk.errors import AlreadyReturned, InsufficientStock, PartInUse, RateLimited
from repairdesk.repositories.postgres import postgres_unit
from repairdesk.repositories.reference_repo import ReferenceRepository
from repairdesk.services.allocation import AllocationCoordinator
from repairdesk.services.inventory import PartsInventory
from repairdesk.services.lifecycle import ServiceLifecycle, replay_history

pytestmark = pytest.mark.integration

ADMIN = Actor(user_id=1, role=Role.ADMIN)


@pytest.fixture(scope="session")
def db() -> Iterator[Db]:
    with PostgresContainer("postgres:16") as pg:
        cfg = DbConfig(
            host=pg.get_container_host_ip(),
            port=int(pg.get_exposed_port(5432)),
            name=pg.dbname,
            user=pg.username,
            password=pg.password,
        )
        database = Db(cfg)
        with database.transaction() as conn:
            init_schema(conn)
        yield database


@pytest.fixture
def refs(db: Db) -> dict:
    reference_repo = ReferenceRepository()
    with db.transaction() as conn:
        client = reference_repo.create_client(conn, full_name="Ana Kovac", phone=None, email=None)
        appliance = reference_repo.create_appliance(conn, client_id=client.id, model="WM-7000", serial_number=None)
        technician = reference_repo.create_technician(conn, full_name="Marko Tehnicar", phone=None)
    return {"client": client, "appliance": appliance, "technician": technician}


class TestPostgresLifecycle:
    def test_transitions_persist_with_history(self, db: Db, refs: dict) -> None:
        lifecycle = ServiceLifecycle()
        tech = Actor(user_id=10, role=Role.TECHNICIAN, technician_id=refs["technician"].id)

        with postgres_unit(db) as repo:
            service = lifecycle.create_service(
                repo,
                ADMIN,
                client_id=refs["client"].id,
                appliance_id=refs["appliance"].id,
                description="Drum does not spin",
            )
        with postgres_unit(db) as repo:
            lifecycle.assign_technician(repo, ADMIN, service.id, technician_id=refs["technician"].id)
        with postgres_unit(db) as repo:
            lifecycle.start_work(repo, tech, service.id)
        with postgres_unit(db) as repo:
            lifecycle.complete(repo, tech, service.id, cost="120.00", used_parts=["bearing"], is_completely_fixed=True)

        with postgres_unit(db) as repo:
            stored = repo.get_service(service.id)
            history = repo.list_status_history(service.id)

        assert stored.status == ServiceStatus.COMPLETED
        assert stored.used_parts == ("bearing",)
        assert replay_history(history) == ServiceStatus.COMPLETED

    def test_customer_rate_limit_across_connections(self, db: Db, refs: dict) -> None:
        lifecycle = ServiceLifecycle()
        customer = Actor(user_id=5000 + refs["client"].id, role=Role.CUSTOMER)
        results: list[str] = []
        lock = threading.Lock()
        barrier = threading.Barrier(4)

        def worker() -> None:
            barrier.wait()
            try:
                with postgres_unit(db) as repo:
                    lifecycle.create_service(
                        repo,
                        customer,
                        client_id=refs["client"].id,
                        appliance_id=refs["appliance"].id,
                        description="Fridge too warm",
                    )
                outcome = "ok"
            except RateLimited:
                outcome = "limited"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == ["limited", "limited", "limited", "ok"]


class TestPostgresLedger:
    def test_concurrent_allocation_never_oversubscribes(self, db: Db, refs: dict) -> None:
        inventory = PartsInventory()
        allocations = AllocationCoordinator()
        with postgres_unit(db) as repo:
            part = inventory.create_part(repo, ADMIN, part_name="Door seal", quantity=5)

        results: list[str] = []
        lock = threading.Lock()
        barrier = threading.Barrier(6)

        def worker() -> None:
            barrier.wait()
            try:
                with postgres_unit(db) as repo:
                    allocations.allocate(
                        repo, ADMIN, part_id=part.id, technician_id=refs["technician"].id, quantity=2
                    )
                outcome = "ok"
            except InsufficientStock:
                outcome = "short"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("ok") == 2
        with postgres_unit(db) as repo:
            ledger = allocations.audit_part(repo, ADMIN, part.id)
        assert ledger.quantity == 1
        assert ledger.outstanding == 4
        assert ledger.balanced

    def test_return_is_idempotent_and_delete_guarded(self, db: Db, refs: dict) -> None:
        inventory = PartsInventory()
        allocations = AllocationCoordinator()
        with postgres_unit(db) as repo:
            part = inventory.create_part(repo, ADMIN, part_name="Igniter", quantity=2)
            result = allocations.allocate(repo, ADMIN, part_id=part.id, technician_id=refs["technician"].id, quantity=1)

        with pytest.raises(PartInUse):
            with postgres_unit(db) as repo:
                allocations.delete_part(repo, ADMIN, part.id)

        with postgres_unit(db) as repo:
            returned = allocations.mark_returned(repo, ADMIN, result.allocation.id)
        assert returned.status == AllocationStatus.RETURNED

        with pytest.raises(AlreadyReturned):
            with postgres_unit(db) as repo:
                allocations.mark_returned(repo, ADMIN, result.allocation.id)

        with postgres_unit(db) as repo:
            assert repo.get_part(part.id).quantity == 2
            allocations.delete_part(repo, ADMIN, part.id)
        with postgres_unit(db) as repo:
            assert repo.get_part(part.id) is None

import threading

import pytest

from repairdesk.domain import AllocationStatus, PartAction
from repairdesk.errors import (
    AlreadyReturned,
    Forbidden,
    InsufficientStock,
    NotFound,
    PartInUse,
    ValidationError,
)


@pytest.fixture
def part(inventory, repo, seed):
    return inventory.create_part(repo, seed.admin, part_name="Drain pump", quantity=10, category="pumps")


class TestAllocate:
    def test_allocate_decrements_and_logs(self, allocations, repo, seed, part, dispatcher) -> None:
        result = allocations.allocate(
            repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=3
        )

        assert result.remaining_quantity == 7
        assert result.allocation.status == AllocationStatus.ALLOCATED
        assert result.allocation.allocated_quantity == 3
        assert repo.get_part(part.id).quantity == 7

        latest = repo.list_activity_log(part_id=part.id)[0]
        assert latest.action == PartAction.ALLOCATED
        assert (latest.quantity_before, latest.quantity_after) == (10, 7)
        assert latest.allocation_id == result.allocation.id

        event, payload = dispatcher.events[-1]
        assert event == "parts_allocated"
        assert payload["remaining_quantity"] == 7

    def test_insufficient_stock_changes_nothing(self, allocations, repo, seed, part) -> None:
        allocations.allocate(repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=8)

        with pytest.raises(InsufficientStock) as exc:
            allocations.allocate(repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=3)

        assert exc.value.details == {"part_id": part.id, "requested": 3, "available": 2}
        assert repo.get_part(part.id).quantity == 2
        assert len(repo.list_allocations(part_id=part.id)) == 1

    @pytest.mark.parametrize("quantity", [0, -1, 2.5, True, "3"])
    def test_quantity_must_be_positive_int(self, allocations, repo, seed, part, quantity) -> None:
        with pytest.raises(ValidationError):
            allocations.allocate(
                repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=quantity
            )
        assert repo.get_part(part.id).quantity == 10

    def test_unknown_references(self, allocations, repo, seed, part) -> None:
        with pytest.raises(NotFound):
            allocations.allocate(repo, seed.admin, part_id=999, technician_id=seed.technician.id, quantity=1)
        with pytest.raises(NotFound):
            allocations.allocate(
                repo, seed.admin, part_id=part.id, technician_id=seed.inactive_technician.id, quantity=1
            )
        with pytest.raises(NotFound):
            allocations.allocate(
                repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=1, service_id=77
            )
        assert repo.get_part(part.id).quantity == 10

    def test_only_admin_allocates(self, allocations, repo, seed, part) -> None:
        with pytest.raises(Forbidden):
            allocations.allocate(repo, seed.tech, part_id=part.id, technician_id=seed.technician.id, quantity=1)

    def test_concurrent_allocations_never_oversubscribe(self, allocations, repo, seed, inventory) -> None:
        part = inventory.create_part(repo, seed.admin, part_name="Door seal", quantity=5)
        outcomes: list[str] = []
        lock = threading.Lock()
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            try:
                allocations.allocate(
                    repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=2
                )
                outcome = "ok"
            except InsufficientStock:
                outcome = "short"
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 2
        assert outcomes.count("short") == 6
        assert repo.get_part(part.id).quantity == 1
        assert allocations.audit_part(repo, seed.admin, part.id).balanced


class TestReturn:
    def test_return_restores_stock_once(self, allocations, repo, seed, part) -> None:
        result = allocations.allocate(
            repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=4
        )

        returned = allocations.mark_returned(repo, seed.tech, result.allocation.id, notes="not needed")
        assert returned.status == AllocationStatus.RETURNED
        assert returned.returned_at is not None
        assert repo.get_part(part.id).quantity == 10

        with pytest.raises(AlreadyReturned):
            allocations.mark_returned(repo, seed.admin, result.allocation.id)
        assert repo.get_part(part.id).quantity == 10
        assert [e.action for e in repo.list_activity_log(part_id=part.id)] == [
            PartAction.RETURNED,
            PartAction.ALLOCATED,
            PartAction.RECEIVED,
        ]

    def test_concurrent_returns_restore_once(self, allocations, repo, seed, part) -> None:
        result = allocations.allocate(
            repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=4
        )
        errors: list[Exception] = []
        barrier = threading.Barrier(5)

        def worker() -> None:
            barrier.wait()
            try:
                allocations.mark_returned(repo, seed.admin, result.allocation.id)
            except AlreadyReturned as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(errors) == 4
        assert repo.get_part(part.id).quantity == 10

    def test_other_technician_cannot_return(self, allocations, repo, seed, part) -> None:
        result = allocations.allocate(
            repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=1
        )
        with pytest.raises(Forbidden):
            allocations.mark_returned(repo, seed.other_tech, result.allocation.id)
        assert repo.get_allocation(result.allocation.id).status == AllocationStatus.ALLOCATED

    def test_missing_allocation(self, allocations, repo, seed) -> None:
        with pytest.raises(NotFound):
            allocations.mark_returned(repo, seed.admin, 12345)


class TestDeleteAndAdjust:
    def test_part_in_use_cannot_be_deleted(self, allocations, repo, seed, part) -> None:
        result = allocations.allocate(
            repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=1
        )

        with pytest.raises(PartInUse) as exc:
            allocations.delete_part(repo, seed.admin, part.id)
        assert exc.value.details["outstanding"] == 1
        assert repo.get_part(part.id) is not None

        allocations.mark_returned(repo, seed.admin, result.allocation.id)
        allocations.delete_part(repo, seed.admin, part.id)
        assert repo.get_part(part.id) is None
        assert repo.list_activity_log(part_id=part.id)[0].action == PartAction.DELETED

    def test_adjust_up_and_down(self, allocations, repo, seed, part) -> None:
        assert allocations.adjust_quantity(repo, seed.admin, part.id, delta=5, notes="stock-take") == 15
        assert allocations.adjust_quantity(repo, seed.admin, part.id, delta=-12, notes="water damage") == 3

        with pytest.raises(InsufficientStock):
            allocations.adjust_quantity(repo, seed.admin, part.id, delta=-4)
        with pytest.raises(ValidationError):
            allocations.adjust_quantity(repo, seed.admin, part.id, delta=0)
        assert repo.get_part(part.id).quantity == 3

    def test_technician_cannot_adjust_or_delete(self, allocations, repo, seed, part) -> None:
        with pytest.raises(Forbidden):
            allocations.adjust_quantity(repo, seed.tech, part.id, delta=1)
        with pytest.raises(Forbidden):
            allocations.delete_part(repo, seed.tech, part.id)


class TestLedger:
    def test_conservation_over_mixed_operations(self, allocations, repo, seed, part) -> None:
        a = allocations.allocate(repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=3)
        allocations.allocate(repo, seed.admin, part_id=part.id, technician_id=seed.other_technician.id, quantity=2)
        allocations.adjust_quantity(repo, seed.admin, part.id, delta=4)
        allocations.mark_returned(repo, seed.admin, a.allocation.id)
        allocations.adjust_quantity(repo, seed.admin, part.id, delta=-1)

        ledger = allocations.audit_part(repo, seed.admin, part.id)

        assert ledger.quantity == 11
        assert ledger.outstanding == 2
        assert ledger.total_received == 13
        assert ledger.balanced

    def test_technician_lists_only_own_allocations(self, allocations, repo, seed, part) -> None:
        allocations.allocate(repo, seed.admin, part_id=part.id, technician_id=seed.technician.id, quantity=1)
        allocations.allocate(repo, seed.admin, part_id=part.id, technician_id=seed.other_technician.id, quantity=1)

        mine = allocations.list_allocations(repo, seed.tech, technician_id=seed.other_technician.id)
        assert {a.technician_id for a in mine} == {seed.technician.id}
        assert len(allocations.list_allocations(repo, seed.admin)) == 2
        assert len(allocations.list_allocations(repo, seed.admin, status="returned")) == 0

    def test_activity_log_is_admin_only(self, allocations, repo, seed, part) -> None:
        assert len(allocations.activity_log(repo, seed.admin, part_id=part.id)) == 1
        with pytest.raises(Forbidden):
            allocations.activity_log(repo, seed.tech, part_id=part.id)

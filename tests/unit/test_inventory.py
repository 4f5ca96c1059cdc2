from decimal import Decimal

import pytest

from repairdesk.domain import OrderStatus, PartAction
from repairdesk.errors import Conflict, Forbidden, NotFound, ValidationError


class TestParts:
    def test_create_part_logs_initial_stock(self, inventory, repo, seed) -> None:
        part = inventory.create_part(
            repo,
            seed.admin,
            part_name="  Heating element ",
            quantity=4,
            location="Shelf B2",
            manufacturer="Bosch",
            unit_cost="19.90",
        )

        assert part.part_name == "Heating element"
        assert part.unit_cost == Decimal("19.90")
        (entry,) = repo.list_activity_log(part_id=part.id)
        assert entry.action == PartAction.RECEIVED
        assert entry.delta == 4

    def test_zero_quantity_allowed_negative_rejected(self, inventory, repo, seed) -> None:
        assert inventory.create_part(repo, seed.admin, part_name="Fuse", quantity=0).quantity == 0
        with pytest.raises(ValidationError):
            inventory.create_part(repo, seed.admin, part_name="Fuse", quantity=-1)

    @pytest.mark.parametrize("part_name", [5, None, ["Fuse"], "   "])
    def test_part_name_must_be_text(self, inventory, repo, seed, part_name) -> None:
        with pytest.raises(ValidationError) as exc:
            inventory.create_part(repo, seed.admin, part_name=part_name, quantity=1)
        assert exc.value.details == {"field": "part_name"}
        assert repo.list_parts() == []

    def test_non_string_location_rejected(self, inventory, repo, seed) -> None:
        with pytest.raises(ValidationError):
            inventory.create_part(repo, seed.admin, part_name="Fuse", quantity=1, location=7)

    def test_technician_cannot_create(self, inventory, repo, seed) -> None:
        with pytest.raises(Forbidden):
            inventory.create_part(repo, seed.tech, part_name="Fuse", quantity=1)

    def test_search_matches_all_given_filters(self, inventory, repo, seed) -> None:
        inventory.create_part(repo, seed.admin, part_name="Drain pump", quantity=1, category="Pumps", manufacturer="Askoll")
        inventory.create_part(repo, seed.admin, part_name="Circulation pump", quantity=1, category="Pumps", manufacturer="Bosch")
        inventory.create_part(repo, seed.admin, part_name="Door lock", quantity=1, category="Locks", manufacturer="Bosch")

        assert {p.part_name for p in inventory.search(repo, seed.tech, name="PUMP")} == {
            "Drain pump",
            "Circulation pump",
        }
        assert [p.part_name for p in inventory.search(repo, seed.tech, name="pump", manufacturer="bosch")] == [
            "Circulation pump"
        ]
        assert inventory.search(repo, seed.tech, category="filters") == []
        assert len(inventory.search(repo, seed.tech)) == 3

    def test_customer_cannot_browse(self, inventory, repo, seed) -> None:
        with pytest.raises(Forbidden):
            inventory.list_parts(repo, seed.customer)

    def test_get_missing_part(self, inventory, repo, seed) -> None:
        with pytest.raises(NotFound):
            inventory.get_part(repo, seed.admin, 42)


class TestSparePartOrders:
    def test_assigned_technician_orders_for_service(self, inventory, lifecycle, repo, seed) -> None:
        service = lifecycle.create_service(
            repo, seed.admin, client_id=seed.client.id, appliance_id=seed.appliance.id, description="No heat"
        )
        lifecycle.assign_technician(repo, seed.admin, service.id, technician_id=seed.technician.id)

        order = inventory.order_spare_part(
            repo, seed.tech, part_name="Thermostat", quantity=1, service_id=service.id, supplier_name="PartsCo"
        )
        assert order.status == OrderStatus.PENDING
        assert order.technician_id == seed.technician.id

        with pytest.raises(Forbidden):
            inventory.order_spare_part(repo, seed.other_tech, part_name="Thermostat", quantity=1, service_id=service.id)
        with pytest.raises(Forbidden):
            inventory.order_spare_part(repo, seed.tech, part_name="Thermostat", quantity=1)

    def test_receiving_creates_part_once(self, inventory, repo, seed) -> None:
        order = inventory.order_spare_part(repo, seed.admin, part_name="Belt", quantity=6, category="belts")

        part = inventory.mark_order_received(repo, seed.admin, order.id, location="Shelf A1", unit_cost="4.20")

        assert part.quantity == 6
        assert part.spare_part_order_id == order.id
        assert part.category == "belts"
        assert repo.get_spare_part_order(order.id).status == OrderStatus.RECEIVED
        assert repo.list_activity_log(part_id=part.id)[0].action == PartAction.RECEIVED

        with pytest.raises(Conflict):
            inventory.mark_order_received(repo, seed.admin, order.id)
        assert len(repo.list_parts()) == 1

    def test_canceled_order_cannot_be_received(self, inventory, repo, seed) -> None:
        order = inventory.order_spare_part(repo, seed.admin, part_name="Belt", quantity=2)
        inventory.cancel_order(repo, seed.admin, order.id)

        with pytest.raises(Conflict):
            inventory.mark_order_received(repo, seed.admin, order.id)
        with pytest.raises(Conflict):
            inventory.cancel_order(repo, seed.admin, order.id)
        assert repo.list_parts() == []

    def test_order_quantity_must_be_positive(self, inventory, repo, seed) -> None:
        with pytest.raises(ValidationError):
            inventory.order_spare_part(repo, seed.admin, part_name="Belt", quantity=0)

    def test_order_part_name_must_be_text(self, inventory, repo, seed) -> None:
        with pytest.raises(ValidationError):
            inventory.order_spare_part(repo, seed.admin, part_name=12, quantity=1)

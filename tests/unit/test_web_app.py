import pytest

from repairdesk.web_app import create_app

ADMIN = {"X-User-Id": "1", "X-User-Role": "admin"}


@pytest.fixture
def client(repo, seed, lifecycle, allocations, inventory):
    app = create_app(repo.transaction, lifecycle=lifecycle, allocations=allocations, inventory=inventory)
    app.config["TESTING"] = True
    return app.test_client()


def _tech_headers(seed) -> dict:
    return {"X-User-Id": "10", "X-User-Role": "technician", "X-Technician-Id": str(seed.technician.id)}


def _create_service(client, seed, headers=ADMIN):
    return client.post(
        "/services",
        json={"client_id": seed.client.id, "appliance_id": seed.appliance.id, "description": "Oven will not heat"},
        headers=headers,
    )


class TestServicesApi:
    def test_create_and_walk_lifecycle(self, client, seed) -> None:
        created = _create_service(client, seed)
        assert created.status_code == 201
        service_id = created.get_json()["id"]
        assert created.get_json()["status"] == "pending"

        resp = client.post(
            f"/services/{service_id}/transitions",
            json={"operation": "assign_technician", "params": {"technician_id": seed.technician.id}},
            headers=ADMIN,
        )
        assert resp.status_code == 200
        assert resp.get_json()["technician_id"] == seed.technician.id

        resp = client.post(
            f"/services/{service_id}/transitions",
            json={"operation": "schedule", "params": {"scheduled_date": "2026-11-03"}},
            headers=_tech_headers(seed),
        )
        assert resp.get_json()["scheduled_date"] == "2026-11-03"

        history = client.get(f"/services/{service_id}/history", headers=ADMIN).get_json()
        assert [h["new_status"] for h in history] == ["assigned", "scheduled"]

    def test_invalid_transition_is_409(self, client, seed) -> None:
        service_id = _create_service(client, seed).get_json()["id"]

        resp = client.post(f"/services/{service_id}/transitions", json={"operation": "complete"}, headers=ADMIN)

        assert resp.status_code == 409
        assert resp.get_json()["error"] == "INVALID_TRANSITION"

    def test_unknown_operation_is_400(self, client, seed) -> None:
        service_id = _create_service(client, seed).get_json()["id"]
        resp = client.post(f"/services/{service_id}/transitions", json={"operation": "fly"}, headers=ADMIN)
        assert resp.status_code == 400

    def test_missing_service_is_404(self, client) -> None:
        assert client.get("/services/999", headers=ADMIN).status_code == 404

    def test_anonymous_and_unknown_role_are_403(self, client, seed) -> None:
        assert _create_service(client, seed, headers={}).status_code == 403
        assert _create_service(client, seed, headers={"X-User-Id": "5", "X-User-Role": "root"}).status_code == 403

    def test_bad_user_id_header_is_400(self, client, seed) -> None:
        resp = _create_service(client, seed, headers={"X-User-Id": "abc", "X-User-Role": "admin"})
        assert resp.status_code == 400

    def test_customer_rate_limit_is_429(self, client, seed) -> None:
        customer = {"X-User-Id": "30", "X-User-Role": "customer"}
        assert _create_service(client, seed, headers=customer).status_code == 201

        resp = _create_service(client, seed, headers=customer)

        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) > 0
        assert resp.get_json()["error"] == "RATE_LIMITED"


class TestPartsApi:
    def test_allocate_return_and_ledger(self, client, seed) -> None:
        part = client.post("/parts", json={"part_name": "Igniter", "quantity": 3}, headers=ADMIN).get_json()

        resp = client.post(
            "/allocations",
            json={"part_id": part["id"], "technician_id": seed.technician.id, "quantity": 2},
            headers=ADMIN,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["remaining_quantity"] == 1

        resp = client.post(
            "/allocations",
            json={"part_id": part["id"], "technician_id": seed.technician.id, "quantity": 2},
            headers=ADMIN,
        )
        assert resp.status_code == 409
        assert resp.get_json()["details"]["available"] == 1

        allocation_id = body["allocation"]["id"]
        assert client.post(f"/allocations/{allocation_id}/return", headers=_tech_headers(seed)).status_code == 200
        assert client.post(f"/allocations/{allocation_id}/return", headers=ADMIN).status_code == 409

        ledger = client.get(f"/parts/{part['id']}/ledger", headers=ADMIN).get_json()
        assert ledger == {"part_id": part["id"], "quantity": 3, "outstanding": 0, "total_received": 3, "balanced": True}

    def test_delete_part_in_use_is_409(self, client, seed) -> None:
        part = client.post("/parts", json={"part_name": "Hinge", "quantity": 1}, headers=ADMIN).get_json()
        client.post(
            "/allocations",
            json={"part_id": part["id"], "technician_id": seed.technician.id, "quantity": 1},
            headers=ADMIN,
        )

        resp = client.delete(f"/parts/{part['id']}", headers=ADMIN)

        assert resp.status_code == 409
        assert resp.get_json()["error"] == "PART_IN_USE"

    def test_technician_searches_parts(self, client, seed) -> None:
        client.post("/parts", json={"part_name": "Door gasket", "quantity": 2, "unit_cost": "12.5"}, headers=ADMIN)
        client.post("/parts", json={"part_name": "Timer", "quantity": 2}, headers=ADMIN)

        rows = client.get("/parts?name=gasket", headers=_tech_headers(seed)).get_json()

        assert [r["part_name"] for r in rows] == ["Door gasket"]
        assert rows[0]["unit_cost"] == "12.5"

    def test_order_receive_flow(self, client) -> None:
        order = client.post("/orders", json={"part_name": "Belt", "quantity": 4}, headers=ADMIN).get_json()
        assert order["status"] == "pending"

        resp = client.post(f"/orders/{order['id']}/receive", json={"location": "A1"}, headers=ADMIN)
        assert resp.status_code == 201
        assert resp.get_json()["quantity"] == 4
        assert client.post(f"/orders/{order['id']}/receive", headers=ADMIN).status_code == 409


class TestMalformedInput:
    def test_non_string_description_is_400(self, client, seed) -> None:
        resp = client.post(
            "/services",
            json={"client_id": seed.client.id, "appliance_id": seed.appliance.id, "description": 123},
            headers=ADMIN,
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "VALIDATION_ERROR"

    def test_non_string_part_name_is_400(self, client) -> None:
        resp = client.post("/parts", json={"part_name": 5, "quantity": 1}, headers=ADMIN)
        assert resp.status_code == 400
        assert resp.get_json()["details"] == {"field": "part_name"}

    def test_non_string_used_parts_is_400(self, client, seed) -> None:
        service_id = _create_service(client, seed).get_json()["id"]
        for operation, params, headers in (
            ("assign_technician", {"technician_id": seed.technician.id}, ADMIN),
            ("start_work", {}, _tech_headers(seed)),
        ):
            resp = client.post(
                f"/services/{service_id}/transitions",
                json={"operation": operation, "params": params},
                headers=headers,
            )
            assert resp.status_code == 200

        resp = client.post(
            f"/services/{service_id}/transitions",
            json={"operation": "complete", "params": {"used_parts": [1, 2]}},
            headers=_tech_headers(seed),
        )

        assert resp.status_code == 400
        assert client.get(f"/services/{service_id}", headers=ADMIN).get_json()["status"] == "in_progress"

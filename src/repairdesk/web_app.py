from __future__ import annotations

import dataclasses
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, ContextManager

from flask import Flask, jsonify, request

from .config import BusinessConfig, ConfigError, load_config
from .db import Db, DbError
from .domain import Actor, Role
from .errors import (
    AlreadyReturned,
    Conflict,
    Forbidden,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    RateLimited,
    ServiceDeskError,
    ValidationError,
)
from .notifications import NotificationDispatcher, build_dispatcher
from .repositories.base import Repository
from .repositories.postgres import postgres_unit
from .services.allocation import AllocationCoordinator
from .services.inventory import PartsInventory
from .services.lifecycle import ServiceLifecycle

logger = logging.getLogger(__name__)

UnitFactory = Callable[[], ContextManager[Repository]]

# most specific first
STATUS_CODES: list[tuple[type[ServiceDeskError], int]] = [
    (NotFound, 404),
    (Forbidden, 403),
    (ValidationError, 400),
    (RateLimited, 429),
    (InvalidTransition, 409),
    (InsufficientStock, 409),
    (AlreadyReturned, 409),
    (Conflict, 409),
]


def status_for(error: ServiceDeskError) -> int:
    for cls, code in STATUS_CODES:
        if isinstance(error, cls):
            return code
    return 500


def to_json(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_json(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def current_actor() -> Actor | None:
    user_id = request.headers.get("X-User-Id", "").strip()
    role = request.headers.get("X-User-Role", "").strip()
    if not user_id or not role:
        return None
    try:
        uid = int(user_id)
    except ValueError:
        raise ValidationError("X-User-Id must be an integer.")
    try:
        parsed_role = Role(role.lower())
    except ValueError:
        raise Forbidden(f"Unknown role: {role}")

    technician_id = None
    raw_tech = request.headers.get("X-Technician-Id", "").strip()
    if raw_tech:
        try:
            technician_id = int(raw_tech)
        except ValueError:
            raise ValidationError("X-Technician-Id must be an integer.")
    return Actor(user_id=uid, role=parsed_role, technician_id=technician_id)


def json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def query_int(name: str) -> int | None:
    raw = request.args.get(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Query parameter {name} must be an integer.", details={"field": name})


def create_app(
    unit: UnitFactory,
    *,
    lifecycle: ServiceLifecycle | None = None,
    allocations: AllocationCoordinator | None = None,
    inventory: PartsInventory | None = None,
) -> Flask:
    """Build the JSON API around a unit-of-work factory.

    ``unit()`` must return a context manager yielding a ``Repository``; every
    request runs in exactly one unit, so a failing operation leaves no trace.
    """
    lifecycle = lifecycle or ServiceLifecycle()
    allocations = allocations or AllocationCoordinator()
    inventory = inventory or PartsInventory()

    app = Flask(__name__)

    @app.errorhandler(ServiceDeskError)
    def handle_service_desk_error(e: ServiceDeskError):
        code = status_for(e)
        response = jsonify(e.to_dict())
        response.status_code = code
        if isinstance(e, RateLimited):
            response.headers["Retry-After"] = str(e.retry_after)
        return response

    @app.errorhandler(DbError)
    def handle_db_error(e: DbError):
        logger.error("DB error: %s", e)
        return jsonify({"error": "DB_ERROR", "message": str(e), "details": {}}), 503

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})

    # services

    @app.post("/services")
    def services_create():
        actor = current_actor()
        data = json_body()
        with unit() as repo:
            service = lifecycle.create_service(
                repo,
                actor,
                client_id=data.get("client_id"),
                appliance_id=data.get("appliance_id"),
                description=data.get("description", ""),
                warranty_status=data.get("warranty_status", "out_of_warranty"),
            )
        return jsonify(to_json(service)), 201

    @app.get("/services")
    def services_list():
        actor = current_actor()
        with unit() as repo:
            rows = lifecycle.list_services(repo, actor, status=request.args.get("status") or None)
        return jsonify(to_json(rows))

    @app.get("/services/<int:service_id>")
    def services_get(service_id: int):
        actor = current_actor()
        with unit() as repo:
            service = lifecycle.get_service(repo, actor, service_id)
        return jsonify(to_json(service))

    @app.get("/services/<int:service_id>/history")
    def services_history(service_id: int):
        actor = current_actor()
        with unit() as repo:
            entries = lifecycle.history(repo, actor, service_id)
        return jsonify(to_json(entries))

    @app.post("/services/<int:service_id>/transitions")
    def services_transition(service_id: int):
        actor = current_actor()
        data = json_body()
        params = data.get("params") or {}
        if not isinstance(params, dict):
            raise ValidationError("params must be a JSON object.", details={"field": "params"})
        with unit() as repo:
            service = lifecycle.transition_service(repo, actor, service_id, data.get("operation", ""), params)
        return jsonify(to_json(service))

    @app.post("/services/<int:service_id>/removed-parts")
    def removed_parts_create(service_id: int):
        actor = current_actor()
        data = json_body()
        with unit() as repo:
            removed = lifecycle.record_removed_part(
                repo,
                actor,
                service_id,
                part_name=data.get("part_name", ""),
                removal_reason=data.get("removal_reason", ""),
                notes=data.get("notes"),
            )
        return jsonify(to_json(removed)), 201

    @app.post("/removed-parts/<int:removed_part_id>/return")
    def removed_parts_return(removed_part_id: int):
        actor = current_actor()
        data = json_body()
        with unit() as repo:
            removed = lifecycle.mark_removed_part_returned(
                repo,
                actor,
                removed_part_id,
                return_date=data.get("return_date"),
                notes=data.get("notes"),
            )
        return jsonify(to_json(removed))

    @app.post("/services/<int:service_id>/client-not-available")
    def services_client_not_available(service_id: int):
        actor = current_actor()
        data = json_body()
        with unit() as repo:
            service = lifecycle.notify_client_not_available(repo, actor, service_id, notes=data.get("notes"))
        return jsonify(to_json(service)), 202

    # parts

    @app.get("/parts")
    def parts_list():
        actor = current_actor()
        name = request.args.get("name")
        category = request.args.get("category")
        manufacturer = request.args.get("manufacturer")
        with unit() as repo:
            if name or category or manufacturer:
                rows = inventory.search(repo, actor, name=name, category=category, manufacturer=manufacturer)
            else:
                rows = inventory.list_parts(repo, actor)
        return jsonify(to_json(rows))

    @app.post("/parts")
    def parts_create():
        actor = current_actor()
        data = json_body()
        with unit() as repo:
            part = inventory.create_part(
                repo,
                actor,
                part_name=data.get("part_name", ""),
                quantity=data.get("quantity", 0),
                location=data.get("location"),
                part_number=data.get("part_number"),
                category=data.get("category"),
                manufacturer=data.get("manufacturer"),
                unit_cost=data.get("unit_cost"),
            )
        return jsonify(to_json(part)), 201

    @app.get("/parts/<int:part_id>")
    def parts_get(part_id: int):
        actor = current_actor()
        with unit() as repo:
            part = inventory.get_part(repo, actor, part_id)
        return jsonify(to_json(part))

    @app.delete("/parts/<int:part_id>")
    def parts_delete(part_id: int):
        actor = current_actor()
        with unit() as repo:
            allocations.delete_part(repo, actor, part_id, notes=json_body().get("notes"))
        return "", 204

    @app.post("/parts/<int:part_id>/adjust")
    def parts_adjust(part_id: int):
        actor = current_actor()
        data = json_body()
        with unit() as repo:
            quantity = allocations.adjust_quantity(
                repo, actor, part_id, delta=data.get("delta"), notes=data.get("notes")
            )
        return jsonify({"part_id": part_id, "quantity": quantity})

    @app.get("/parts/<int:part_id>/ledger")
    def parts_ledger(part_id: int):
        actor = current_actor()
        with unit() as repo:
            ledger = allocations.audit_part(repo, actor, part_id)
        return jsonify({**to_json(ledger), "balanced": ledger.balanced})

    @app.get("/parts/<int:part_id>/activity")
    def parts_activity(part_id: int):
        actor = current_actor()
        limit = query_int("limit") or 50
        with unit() as repo:
            entries = allocations.activity_log(repo, actor, part_id=part_id, limit=limit)
        return jsonify(to_json(entries))

    # allocations

    @app.post("/allocations")
    def allocations_create():
        actor = current_actor()
        data = json_body()
        with unit() as repo:
            result = allocations.allocate(
                repo,
                actor,
                part_id=data.get("part_id"),
                technician_id=data.get("technician_id"),
                quantity=data.get("quantity"),
                service_id=data.get("service_id"),
                notes=data.get("notes"),
            )
        return jsonify(to_json(result)), 201

    @app.get("/allocations")
    def allocations_list():
        actor = current_actor()
        with unit() as repo:
            rows = allocations.list_allocations(
                repo,
                actor,
                part_id=query_int("part_id"),
                technician_id=query_int("technician_id"),
                service_id=query_int("service_id"),
                status=request.args.get("status") or None,
            )
        return jsonify(to_json(rows))

    @app.post("/allocations/<int:allocation_id>/return")
    def allocations_return(allocation_id: int):
        actor = current_actor()
        data = json_body()
        with unit() as repo:
            allocation = allocations.mark_returned(repo, actor, allocation_id, notes=data.get("notes"))
        return jsonify(to_json(allocation))

    # spare part orders

    @app.post("/orders")
    def orders_create():
        actor = current_actor()
        data = json_body()
        with unit() as repo:
            order = inventory.order_spare_part(
                repo,
                actor,
                part_name=data.get("part_name", ""),
                quantity=data.get("quantity"),
                service_id=data.get("service_id"),
                part_number=data.get("part_number"),
                category=data.get("category"),
                manufacturer=data.get("manufacturer"),
                supplier_name=data.get("supplier_name"),
            )
        return jsonify(to_json(order)), 201

    @app.post("/orders/<int:order_id>/receive")
    def orders_receive(order_id: int):
        actor = current_actor()
        data = json_body()
        with unit() as repo:
            part = inventory.mark_order_received(
                repo, actor, order_id, location=data.get("location"), unit_cost=data.get("unit_cost")
            )
        return jsonify(to_json(part)), 201

    @app.post("/orders/<int:order_id>/cancel")
    def orders_cancel(order_id: int):
        actor = current_actor()
        with unit() as repo:
            order = inventory.cancel_order(repo, actor, order_id)
        return jsonify(to_json(order))

    return app


def build_services(
    dispatcher: NotificationDispatcher, business: BusinessConfig
) -> tuple[ServiceLifecycle, AllocationCoordinator, PartsInventory]:
    return (
        ServiceLifecycle(dispatcher=dispatcher, business=business),
        AllocationCoordinator(dispatcher=dispatcher),
        PartsInventory(),
    )


def run(config_path: str = "config.toml", host: str = "127.0.0.1", port: int = 5000) -> int:
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        return 2

    logging.basicConfig(level=cfg.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    db = Db(cfg.db)
    dispatcher = build_dispatcher(cfg.notifications)
    lifecycle, allocations, inventory = build_services(dispatcher, cfg.business)
    app = create_app(lambda: postgres_unit(db), lifecycle=lifecycle, allocations=allocations, inventory=inventory)

    dispatcher.start()
    try:
        app.run(host=host, port=port)
    finally:
        dispatcher.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(run())

from __future__ import annotations

from .db import Db
from .domain import Actor
from .errors import ServiceDeskError, ValidationError
from .repositories.postgres import postgres_session, postgres_unit
from .repositories.reference_repo import ReferenceRepository
from .services.allocation import AllocationCoordinator
from .services.inventory import PartsInventory
from .services.lifecycle import ServiceLifecycle
from .services.role_gate import Operation, require


def _prompt(msg: str) -> str:
    return input(msg).strip()


def _optional_int(msg: str) -> int | None:
    raw = _prompt(msg)
    return int(raw) if raw else None


def run_cli(
    db: Db,
    actor: Actor,
    *,
    lifecycle: ServiceLifecycle,
    allocations: AllocationCoordinator,
    inventory: PartsInventory,
) -> None:
    """Interactive back-office menu; every choice runs in its own transaction."""
    reference_repo = ReferenceRepository()

    while True:
        print(f"\n=== RepairDesk CLI ({actor.role} #{actor.user_id}) ===")
        print("1) List services")
        print("2) Register client + appliance")
        print("3) Register technician")
        print("4) Create service")
        print("5) Service transition")
        print("6) Service history")
        print("7) List parts (stock)")
        print("8) Add part")
        print("9) Allocate part to technician")
        print("10) Return allocation")
        print("11) Part ledger audit")
        print("12) Order spare part")
        print("13) Receive spare part order")
        print("0) Exit")

        choice = _prompt("> ")
        try:
            if choice == "0":
                return

            elif choice == "1":
                status = _prompt("status filter (optional): ") or None
                with postgres_session(db) as repo:
                    rows = lifecycle.list_services(repo, actor, status=status)
                for s in rows:
                    print(
                        f"#{s.id} {s.status} client={s.client_id} appliance={s.appliance_id} "
                        f"technician={s.technician_id} {s.description[:40]}"
                    )

            elif choice == "2":
                require(actor, Operation.REGISTER_CLIENT)
                full_name = _prompt("client full_name: ")
                if not full_name:
                    raise ValidationError("Client name cannot be empty.")
                phone = _prompt("phone (optional): ") or None
                email = _prompt("email (optional): ") or None
                model = _prompt("appliance model (optional): ") or None
                serial = _prompt("serial number (optional): ") or None

                # client and appliance together or not at all
                with db.transaction() as conn:
                    client = reference_repo.create_client(conn, full_name=full_name, phone=phone, email=email)
                    appliance = reference_repo.create_appliance(
                        conn, client_id=client.id, model=model, serial_number=serial
                    )
                print(f"Created client_id={client.id} appliance_id={appliance.id}")

            elif choice == "3":
                require(actor, Operation.REGISTER_TECHNICIAN)
                full_name = _prompt("technician full_name: ")
                if not full_name:
                    raise ValidationError("Technician name cannot be empty.")
                phone = _prompt("phone (optional): ") or None
                with db.transaction() as conn:
                    technician = reference_repo.create_technician(conn, full_name=full_name, phone=phone)
                print(f"Created technician_id={technician.id}")

            elif choice == "4":
                client_id = int(_prompt("client_id: "))
                appliance_id = int(_prompt("appliance_id: "))
                description = _prompt("description: ")
                in_warranty = _prompt("in warranty? (y/n): ").lower() in {"y", "yes", "1", "true"}
                with postgres_unit(db) as repo:
                    service = lifecycle.create_service(
                        repo,
                        actor,
                        client_id=client_id,
                        appliance_id=appliance_id,
                        description=description,
                        warranty_status="in_warranty" if in_warranty else "out_of_warranty",
                    )
                print(f"Created service_id={service.id}")

            elif choice == "5":
                service_id = int(_prompt("service_id: "))
                operation = _prompt(
                    "operation (assign_technician/schedule/start_work/request_parts/"
                    "mark_parts_removed/complete/cancel): "
                )
                params: dict = {}
                if operation == "assign_technician":
                    params["technician_id"] = int(_prompt("technician_id: "))
                elif operation == "schedule":
                    params["scheduled_date"] = _prompt("date (YYYY-MM-DD): ")
                elif operation == "complete":
                    params["cost"] = _prompt("cost (optional): ") or None
                    fixed = _prompt("completely fixed? (y/n/blank): ").lower()
                    params["is_completely_fixed"] = {"y": True, "n": False}.get(fixed)
                    used = _prompt("used parts, comma separated (optional): ")
                    params["used_parts"] = [p for p in used.split(",") if p.strip()]

                note = _prompt("notes (optional): ") or None
                if note:
                    params["reason" if operation == "cancel" else "notes"] = note

                with postgres_unit(db) as repo:
                    service = lifecycle.transition_service(repo, actor, service_id, operation, params)
                print(f"Service #{service.id} is now {service.status}")

            elif choice == "6":
                service_id = int(_prompt("service_id: "))
                with postgres_session(db) as repo:
                    entries = lifecycle.history(repo, actor, service_id)
                for e in entries:
                    print(f"{e.changed_at:%Y-%m-%d %H:%M} {e.old_status} -> {e.new_status} ({e.operation}) by {e.actor_role}#{e.actor_id}")

            elif choice == "7":
                name = _prompt("name contains (optional): ") or None
                with postgres_session(db) as repo:
                    rows = inventory.search(repo, actor, name=name)
                for p in rows:
                    print(f"#{p.id} {p.part_name} qty={p.quantity} location={p.location} category={p.category}")

            elif choice == "8":
                part_name = _prompt("part name: ")
                quantity = int(_prompt("quantity: "))
                location = _prompt("location (optional): ") or None
                category = _prompt("category (optional): ") or None
                with postgres_unit(db) as repo:
                    part = inventory.create_part(
                        repo, actor, part_name=part_name, quantity=quantity, location=location, category=category
                    )
                print(f"Created part_id={part.id}")

            elif choice == "9":
                part_id = int(_prompt("part_id: "))
                technician_id = int(_prompt("technician_id: "))
                quantity = int(_prompt("quantity: "))
                service_id = _optional_int("service_id (optional): ")
                with postgres_unit(db) as repo:
                    result = allocations.allocate(
                        repo,
                        actor,
                        part_id=part_id,
                        technician_id=technician_id,
                        quantity=quantity,
                        service_id=service_id,
                    )
                print(f"allocation_id={result.allocation.id} remaining={result.remaining_quantity}")

            elif choice == "10":
                allocation_id = int(_prompt("allocation_id: "))
                notes = _prompt("notes (optional): ") or None
                with postgres_unit(db) as repo:
                    allocation = allocations.mark_returned(repo, actor, allocation_id, notes=notes)
                print(f"Allocation #{allocation.id} returned")

            elif choice == "11":
                part_id = int(_prompt("part_id: "))
                with postgres_session(db) as repo:
                    ledger = allocations.audit_part(repo, actor, part_id)
                print(
                    f"part#{ledger.part_id} on_hand={ledger.quantity} outstanding={ledger.outstanding} "
                    f"received={ledger.total_received} balanced={ledger.balanced}"
                )

            elif choice == "12":
                part_name = _prompt("part name: ")
                quantity = int(_prompt("quantity: "))
                service_id = _optional_int("service_id (optional): ")
                supplier = _prompt("supplier (optional): ") or None
                with postgres_unit(db) as repo:
                    order = inventory.order_spare_part(
                        repo,
                        actor,
                        part_name=part_name,
                        quantity=quantity,
                        service_id=service_id,
                        supplier_name=supplier,
                    )
                print(f"Created spare part order #{order.id} ({order.status})")

            elif choice == "13":
                order_id = int(_prompt("order_id: "))
                location = _prompt("location (optional): ") or None
                unit_cost = _prompt("unit cost (optional): ") or None
                with postgres_unit(db) as repo:
                    part = inventory.mark_order_received(repo, actor, order_id, location=location, unit_cost=unit_cost)
                print(f"Order received as part_id={part.id} qty={part.quantity}")

            else:
                print("Unknown choice.")

        except ServiceDeskError as e:
            print(f"[{e.code}] {e.message}")
        except ValueError as e:
            print(f"[VALUE ERROR] {e}")
        except Exception as e:
            print(f"[ERROR] {type(e).__name__}: {e}")

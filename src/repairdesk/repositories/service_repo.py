from __future__ import annotations

from psycopg import Connection

from ..domain import Role, Service, ServiceStatus, StatusHistoryEntry, WarrantyStatus
from .rows import fetch_all, fetch_one, where_clause

SERVICE_COLUMNS = """
    id, client_id, appliance_id, technician_id, business_partner_id, created_by,
    status, warranty_status, description, technician_notes, used_parts, cost,
    is_completely_fixed, scheduled_date, completed_date, created_at
"""

HISTORY_COLUMNS = "id, service_id, old_status, new_status, operation, actor_id, actor_role, notes, changed_at"


def _to_service(row: dict) -> Service:
    row["status"] = ServiceStatus(row["status"])
    row["warranty_status"] = WarrantyStatus(row["warranty_status"])
    row["used_parts"] = tuple(row["used_parts"] or ())
    return Service(**row)


def _to_history(row: dict) -> StatusHistoryEntry:
    row["old_status"] = ServiceStatus(row["old_status"])
    row["new_status"] = ServiceStatus(row["new_status"])
    row["actor_role"] = Role(row["actor_role"])
    return StatusHistoryEntry(**row)


class ServiceRepository:
    def create(
        self,
        conn: Connection,
        *,
        client_id: int,
        appliance_id: int,
        description: str,
        warranty_status: WarrantyStatus,
        business_partner_id: int | None,
        created_by: int | None,
    ) -> Service:
        cur = conn.execute(
            f"""
            INSERT INTO service(client_id, appliance_id, description, warranty_status,
                                business_partner_id, created_by, status)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING {SERVICE_COLUMNS};
            """,
            (
                client_id,
                appliance_id,
                description,
                warranty_status.value,
                business_partner_id,
                created_by,
                ServiceStatus.PENDING.value,
            ),
        )
        return _to_service(fetch_one(cur))

    def get(self, conn: Connection, service_id: int) -> Service | None:
        cur = conn.execute(f"SELECT {SERVICE_COLUMNS} FROM service WHERE id = %s;", (service_id,))
        row = fetch_one(cur)
        return _to_service(row) if row else None

    def save(self, conn: Connection, service: Service, *, expected_status: ServiceStatus) -> bool:
        cur = conn.execute(
            """
            UPDATE service
            SET technician_id = %s,
                status = %s,
                technician_notes = %s,
                used_parts = %s,
                cost = %s,
                is_completely_fixed = %s,
                scheduled_date = %s,
                completed_date = %s
            WHERE id = %s AND status = %s;
            """,
            (
                service.technician_id,
                service.status.value,
                service.technician_notes,
                list(service.used_parts),
                service.cost,
                service.is_completely_fixed,
                service.scheduled_date,
                service.completed_date,
                service.id,
                expected_status.value,
            ),
        )
        return cur.rowcount == 1

    def list(
        self,
        conn: Connection,
        *,
        technician_id: int | None = None,
        business_partner_id: int | None = None,
        status: ServiceStatus | None = None,
    ) -> list[Service]:
        where, params = where_clause(
            {
                "technician_id": technician_id,
                "business_partner_id": business_partner_id,
                "status": status.value if status else None,
            }
        )
        cur = conn.execute(f"SELECT {SERVICE_COLUMNS} FROM service{where} ORDER BY id DESC;", params)
        return [_to_service(r) for r in fetch_all(cur)]

    def append_history(
        self,
        conn: Connection,
        *,
        service_id: int,
        old_status: ServiceStatus,
        new_status: ServiceStatus,
        operation: str,
        actor_id: int,
        actor_role: Role,
        notes: str | None,
    ) -> StatusHistoryEntry:
        cur = conn.execute(
            f"""
            INSERT INTO service_status_history(service_id, old_status, new_status, operation,
                                               actor_id, actor_role, notes)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING {HISTORY_COLUMNS};
            """,
            (service_id, old_status.value, new_status.value, operation, actor_id, actor_role.value, notes),
        )
        return _to_history(fetch_one(cur))

    def list_history(self, conn: Connection, service_id: int) -> list[StatusHistoryEntry]:
        cur = conn.execute(
            f"SELECT {HISTORY_COLUMNS} FROM service_status_history WHERE service_id = %s ORDER BY id;",
            (service_id,),
        )
        return [_to_history(r) for r in fetch_all(cur)]

from __future__ import annotations

from datetime import date

from psycopg import Connection

from ..domain import RemovedPart
from .rows import fetch_all, fetch_one

REMOVED_PART_COLUMNS = "id, service_id, technician_id, part_name, removal_reason, removal_date, return_date, notes"


class RemovedPartRepository:
    def create(
        self,
        conn: Connection,
        *,
        service_id: int,
        technician_id: int | None,
        part_name: str,
        removal_reason: str,
        notes: str | None,
    ) -> RemovedPart:
        cur = conn.execute(
            f"""
            INSERT INTO removed_part(service_id, technician_id, part_name, removal_reason, notes)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {REMOVED_PART_COLUMNS};
            """,
            (service_id, technician_id, part_name, removal_reason, notes),
        )
        return RemovedPart(**fetch_one(cur))

    def get(self, conn: Connection, removed_part_id: int) -> RemovedPart | None:
        cur = conn.execute(
            f"SELECT {REMOVED_PART_COLUMNS} FROM removed_part WHERE id = %s;",
            (removed_part_id,),
        )
        row = fetch_one(cur)
        return RemovedPart(**row) if row else None

    def list_for_service(self, conn: Connection, service_id: int) -> list[RemovedPart]:
        cur = conn.execute(
            f"SELECT {REMOVED_PART_COLUMNS} FROM removed_part WHERE service_id = %s ORDER BY id;",
            (service_id,),
        )
        return [RemovedPart(**r) for r in fetch_all(cur)]

    def mark_returned(
        self, conn: Connection, *, removed_part_id: int, return_date: date, notes: str | None
    ) -> RemovedPart | None:
        cur = conn.execute(
            f"""
            UPDATE removed_part
            SET return_date = %s, notes = COALESCE(%s, notes)
            WHERE id = %s AND return_date IS NULL
            RETURNING {REMOVED_PART_COLUMNS};
            """,
            (return_date, notes, removed_part_id),
        )
        row = fetch_one(cur)
        return RemovedPart(**row) if row else None

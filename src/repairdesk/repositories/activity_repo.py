from __future__ import annotations

from psycopg import Connection

from ..domain import ActivityLogEntry, PartAction
from .rows import fetch_all, fetch_one

ACTIVITY_COLUMNS = """
    id, part_id, action, actor_id, quantity_before, quantity_after,
    allocation_id, service_id, technician_id, notes, created_at
"""


def _to_entry(row: dict) -> ActivityLogEntry:
    row["action"] = PartAction(row["action"])
    return ActivityLogEntry(**row)


class ActivityLogRepository:
    """Append-only: there is no update or delete here."""

    def append(
        self,
        conn: Connection,
        *,
        part_id: int,
        action: PartAction,
        actor_id: int,
        quantity_before: int,
        quantity_after: int,
        allocation_id: int | None = None,
        service_id: int | None = None,
        technician_id: int | None = None,
        notes: str | None = None,
    ) -> ActivityLogEntry:
        cur = conn.execute(
            f"""
            INSERT INTO part_activity_log(part_id, action, actor_id, quantity_before, quantity_after,
                                          allocation_id, service_id, technician_id, notes)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {ACTIVITY_COLUMNS};
            """,
            (
                part_id,
                action.value,
                actor_id,
                quantity_before,
                quantity_after,
                allocation_id,
                service_id,
                technician_id,
                notes,
            ),
        )
        return _to_entry(fetch_one(cur))

    def list(self, conn: Connection, *, part_id: int | None = None, limit: int | None = 50) -> list[ActivityLogEntry]:
        # newest first
        sql = f"SELECT {ACTIVITY_COLUMNS} FROM part_activity_log"
        params: list[int] = []
        if part_id is not None:
            sql += " WHERE part_id = %s"
            params.append(part_id)
        sql += " ORDER BY id DESC"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)
        cur = conn.execute(sql + ";", params)
        return [_to_entry(r) for r in fetch_all(cur)]

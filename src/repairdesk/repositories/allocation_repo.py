from __future__ import annotations

from datetime import datetime

from psycopg import Connection

from ..domain import AllocationStatus, PartAllocation
from .rows import fetch_all, fetch_one, where_clause

ALLOCATION_COLUMNS = """
    id, available_part_id, service_id, technician_id, allocated_quantity, allocated_by,
    status, allocation_notes, created_at, returned_at, return_notes
"""


def _to_allocation(row: dict) -> PartAllocation:
    row["status"] = AllocationStatus(row["status"])
    return PartAllocation(**row)


class AllocationRepository:
    def create(
        self,
        conn: Connection,
        *,
        available_part_id: int,
        service_id: int | None,
        technician_id: int,
        allocated_quantity: int,
        allocated_by: int,
        allocation_notes: str | None,
    ) -> PartAllocation:
        cur = conn.execute(
            f"""
            INSERT INTO part_allocation(available_part_id, service_id, technician_id,
                                        allocated_quantity, allocated_by, status, allocation_notes)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING {ALLOCATION_COLUMNS};
            """,
            (
                available_part_id,
                service_id,
                technician_id,
                allocated_quantity,
                allocated_by,
                AllocationStatus.ALLOCATED.value,
                allocation_notes,
            ),
        )
        return _to_allocation(fetch_one(cur))

    def get(self, conn: Connection, allocation_id: int) -> PartAllocation | None:
        cur = conn.execute(
            f"SELECT {ALLOCATION_COLUMNS} FROM part_allocation WHERE id = %s;",
            (allocation_id,),
        )
        row = fetch_one(cur)
        return _to_allocation(row) if row else None

    def set_status(
        self,
        conn: Connection,
        *,
        allocation_id: int,
        expected: AllocationStatus,
        new: AllocationStatus,
        returned_at: datetime | None,
        return_notes: str | None,
    ) -> PartAllocation | None:
        cur = conn.execute(
            f"""
            UPDATE part_allocation
            SET status = %s, returned_at = %s, return_notes = %s
            WHERE id = %s AND status = %s
            RETURNING {ALLOCATION_COLUMNS};
            """,
            (new.value, returned_at, return_notes, allocation_id, expected.value),
        )
        row = fetch_one(cur)
        return _to_allocation(row) if row else None

    def list(
        self,
        conn: Connection,
        *,
        part_id: int | None = None,
        technician_id: int | None = None,
        service_id: int | None = None,
        status: AllocationStatus | None = None,
    ) -> list[PartAllocation]:
        where, params = where_clause(
            {
                "available_part_id": part_id,
                "technician_id": technician_id,
                "service_id": service_id,
                "status": status.value if status else None,
            }
        )
        cur = conn.execute(f"SELECT {ALLOCATION_COLUMNS} FROM part_allocation{where} ORDER BY id DESC;", params)
        return [_to_allocation(r) for r in fetch_all(cur)]

    def count_outstanding(self, conn: Connection, part_id: int) -> int:
        cur = conn.execute(
            """
            SELECT COUNT(*) FROM part_allocation
            WHERE available_part_id = %s AND status = 'allocated';
            """,
            (part_id,),
        )
        return int(cur.fetchone()[0])

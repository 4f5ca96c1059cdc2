from __future__ import annotations

from decimal import Decimal

from psycopg import Connection

from ..domain import AvailablePart
from .rows import fetch_all, fetch_one

PART_COLUMNS = """
    id, part_name, part_number, category, manufacturer, quantity, location,
    unit_cost, added_by, spare_part_order_id, created_at
"""


class PartRepository:
    def create(
        self,
        conn: Connection,
        *,
        part_name: str,
        quantity: int,
        location: str | None,
        added_by: int,
        part_number: str | None = None,
        category: str | None = None,
        manufacturer: str | None = None,
        unit_cost: Decimal | None = None,
        spare_part_order_id: int | None = None,
    ) -> AvailablePart:
        cur = conn.execute(
            f"""
            INSERT INTO available_part(part_name, part_number, category, manufacturer, quantity,
                                       location, unit_cost, added_by, spare_part_order_id)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {PART_COLUMNS};
            """,
            (part_name, part_number, category, manufacturer, quantity, location, unit_cost, added_by, spare_part_order_id),
        )
        return AvailablePart(**fetch_one(cur))

    def get(self, conn: Connection, part_id: int) -> AvailablePart | None:
        cur = conn.execute(f"SELECT {PART_COLUMNS} FROM available_part WHERE id = %s;", (part_id,))
        row = fetch_one(cur)
        return AvailablePart(**row) if row else None

    def list(self, conn: Connection) -> list[AvailablePart]:
        cur = conn.execute(f"SELECT {PART_COLUMNS} FROM available_part ORDER BY part_name, id;")
        return [AvailablePart(**r) for r in fetch_all(cur)]

    def search(
        self,
        conn: Connection,
        *,
        name: str | None = None,
        category: str | None = None,
        manufacturer: str | None = None,
    ) -> list[AvailablePart]:
        clauses = []
        params: list[str] = []
        for column, value in (("part_name", name), ("category", category), ("manufacturer", manufacturer)):
            if value:
                clauses.append(f"{column} ILIKE %s")
                params.append(f"%{value}%")
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        cur = conn.execute(f"SELECT {PART_COLUMNS} FROM available_part{where} ORDER BY part_name, id;", params)
        return [AvailablePart(**r) for r in fetch_all(cur)]

    def decrease_stock(self, conn: Connection, *, part_id: int, qty: int) -> int | None:
        cur = conn.execute(
            """
            UPDATE available_part
            SET quantity = quantity - %s
            WHERE id = %s AND quantity >= %s
            RETURNING quantity;
            """,
            (qty, part_id, qty),
        )
        row = cur.fetchone()
        return int(row[0]) if row else None

    def increase_stock(self, conn: Connection, *, part_id: int, qty: int) -> int | None:
        cur = conn.execute(
            """
            UPDATE available_part
            SET quantity = quantity + %s
            WHERE id = %s
            RETURNING quantity;
            """,
            (qty, part_id),
        )
        row = cur.fetchone()
        return int(row[0]) if row else None

    def delete_if_unallocated(self, conn: Connection, part_id: int) -> bool:
        # wait for in-flight allocations on this row so the check below sees them
        conn.execute("SELECT id FROM available_part WHERE id = %s FOR UPDATE;", (part_id,))
        cur = conn.execute(
            """
            DELETE FROM available_part p
            WHERE p.id = %s
              AND NOT EXISTS (
                SELECT 1 FROM part_allocation a
                WHERE a.available_part_id = p.id AND a.status = 'allocated'
              );
            """,
            (part_id,),
        )
        return cur.rowcount == 1

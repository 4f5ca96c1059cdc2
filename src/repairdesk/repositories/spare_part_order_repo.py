from __future__ import annotations

from datetime import datetime

from psycopg import Connection

from ..domain import OrderStatus, SparePartOrder
from .rows import fetch_one

ORDER_COLUMNS = """
    id, part_name, part_number, category, manufacturer, quantity, service_id, technician_id,
    ordered_by, status, supplier_name, created_at, received_at
"""


def _to_order(row: dict) -> SparePartOrder:
    row["status"] = OrderStatus(row["status"])
    return SparePartOrder(**row)


class SparePartOrderRepository:
    def create(
        self,
        conn: Connection,
        *,
        part_name: str,
        quantity: int,
        ordered_by: int,
        part_number: str | None = None,
        category: str | None = None,
        manufacturer: str | None = None,
        service_id: int | None = None,
        technician_id: int | None = None,
        supplier_name: str | None = None,
    ) -> SparePartOrder:
        cur = conn.execute(
            f"""
            INSERT INTO spare_part_order(part_name, part_number, category, manufacturer, quantity,
                                         service_id, technician_id, ordered_by, status, supplier_name)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {ORDER_COLUMNS};
            """,
            (
                part_name,
                part_number,
                category,
                manufacturer,
                quantity,
                service_id,
                technician_id,
                ordered_by,
                OrderStatus.PENDING.value,
                supplier_name,
            ),
        )
        return _to_order(fetch_one(cur))

    def get(self, conn: Connection, order_id: int) -> SparePartOrder | None:
        cur = conn.execute(f"SELECT {ORDER_COLUMNS} FROM spare_part_order WHERE id = %s;", (order_id,))
        row = fetch_one(cur)
        return _to_order(row) if row else None

    def set_status(
        self,
        conn: Connection,
        *,
        order_id: int,
        expected: OrderStatus,
        new: OrderStatus,
        received_at: datetime | None,
    ) -> SparePartOrder | None:
        cur = conn.execute(
            f"""
            UPDATE spare_part_order
            SET status = %s, received_at = COALESCE(%s, received_at)
            WHERE id = %s AND status = %s
            RETURNING {ORDER_COLUMNS};
            """,
            (new.value, received_at, order_id, expected.value),
        )
        row = fetch_one(cur)
        return _to_order(row) if row else None

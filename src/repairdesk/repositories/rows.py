from __future__ import annotations

from psycopg import Cursor


def fetch_one(cur: Cursor) -> dict | None:
    row = cur.fetchone()
    if not row:
        return None
    cols = [d.name for d in cur.description]
    return dict(zip(cols, row))


def fetch_all(cur: Cursor) -> list[dict]:
    cols = [d.name for d in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]


def where_clause(filters: dict[str, object]) -> tuple[str, tuple]:
    """Build ``WHERE a = %s AND b = %s`` from the filters that are not None."""
    active = {k: v for k, v in filters.items() if v is not None}
    if not active:
        return "", ()
    sql = " WHERE " + " AND ".join(f"{col} = %s" for col in active)
    return sql, tuple(active.values())

from __future__ import annotations

from datetime import datetime

from psycopg import Connection

REQUEST_LOCK_CLASS = 1


class RequestTrackingRepository:
    def lock_user(self, conn: Connection, user_id: int) -> None:
        # released when the surrounding transaction ends
        conn.execute("SELECT pg_advisory_xact_lock(%s::int, %s::int);", (REQUEST_LOCK_CLASS, user_id))

    def create(self, conn: Connection, *, user_id: int, request_type: str, requested_at: datetime) -> None:
        conn.execute(
            """
            INSERT INTO request_tracking(user_id, request_type, requested_at)
            VALUES (%s, %s, %s);
            """,
            (user_id, request_type, requested_at),
        )

    def count_since(self, conn: Connection, *, user_id: int, request_type: str, since: datetime) -> int:
        cur = conn.execute(
            """
            SELECT COUNT(*) FROM request_tracking
            WHERE user_id = %s AND request_type = %s AND requested_at >= %s;
            """,
            (user_id, request_type, since),
        )
        return int(cur.fetchone()[0])

    def oldest_since(self, conn: Connection, *, user_id: int, request_type: str, since: datetime) -> datetime | None:
        cur = conn.execute(
            """
            SELECT MIN(requested_at) FROM request_tracking
            WHERE user_id = %s AND request_type = %s AND requested_at >= %s;
            """,
            (user_id, request_type, since),
        )
        return cur.fetchone()[0]

from __future__ import annotations

from psycopg import Connection

from ..domain import Appliance, Client, Technician
from .rows import fetch_one


class ReferenceRepository:
    """Clients, appliances and technicians: referenced by services, not managed here."""

    def create_client(self, conn: Connection, *, full_name: str, phone: str | None, email: str | None) -> Client:
        cur = conn.execute(
            """
            INSERT INTO client(full_name, phone, email)
            VALUES (%s, %s, %s)
            RETURNING id, full_name, phone, email;
            """,
            (full_name, phone, email),
        )
        return Client(**fetch_one(cur))

    def get_client(self, conn: Connection, client_id: int) -> Client | None:
        cur = conn.execute(
            "SELECT id, full_name, phone, email FROM client WHERE id = %s;",
            (client_id,),
        )
        row = fetch_one(cur)
        return Client(**row) if row else None

    def create_appliance(
        self,
        conn: Connection,
        *,
        client_id: int,
        model: str | None,
        serial_number: str | None,
    ) -> Appliance:
        cur = conn.execute(
            """
            INSERT INTO appliance(client_id, model, serial_number)
            VALUES (%s, %s, %s)
            RETURNING id, client_id, model, serial_number;
            """,
            (client_id, model, serial_number),
        )
        return Appliance(**fetch_one(cur))

    def get_appliance(self, conn: Connection, appliance_id: int) -> Appliance | None:
        cur = conn.execute(
            "SELECT id, client_id, model, serial_number FROM appliance WHERE id = %s;",
            (appliance_id,),
        )
        row = fetch_one(cur)
        return Appliance(**row) if row else None

    def create_technician(
        self, conn: Connection, *, full_name: str, phone: str | None, is_active: bool = True
    ) -> Technician:
        cur = conn.execute(
            """
            INSERT INTO technician(full_name, phone, is_active)
            VALUES (%s, %s, %s)
            RETURNING id, full_name, phone, is_active;
            """,
            (full_name, phone, is_active),
        )
        return Technician(**fetch_one(cur))

    def get_technician(self, conn: Connection, technician_id: int) -> Technician | None:
        cur = conn.execute(
            "SELECT id, full_name, phone, is_active FROM technician WHERE id = %s;",
            (technician_id,),
        )
        row = fetch_one(cur)
        return Technician(**row) if row else None

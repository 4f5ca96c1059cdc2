from __future__ import annotations

import argparse
import logging

from .cli import run_cli
from .config import ConfigError, load_config
from .db import Db, DbError, init_schema
from .domain import Actor, Role
from .notifications import build_dispatcher
from .services.allocation import AllocationCoordinator
from .services.inventory import PartsInventory
from .services.lifecycle import ServiceLifecycle


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="repairdesk")
    parser.add_argument("--config", default="config.toml")
    parser.add_argument("--init-db", action="store_true", help="create tables and exit")
    parser.add_argument("--user-id", type=int, default=1)
    parser.add_argument("--technician-id", type=int, default=None)
    parser.add_argument("--role", choices=[r.value for r in Role], default=Role.ADMIN.value)
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
        logging.basicConfig(level=cfg.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        db = Db(cfg.db)

        if args.init_db:
            with db.transaction() as conn:
                init_schema(conn)
            print("Schema created.")
            return 0

        dispatcher = build_dispatcher(cfg.notifications)
        actor = Actor(user_id=args.user_id, role=Role(args.role), technician_id=args.technician_id)
        dispatcher.start()
        try:
            run_cli(
                db,
                actor,
                lifecycle=ServiceLifecycle(dispatcher=dispatcher, business=cfg.business),
                allocations=AllocationCoordinator(dispatcher=dispatcher),
                inventory=PartsInventory(),
            )
        finally:
            dispatcher.stop()
        return 0
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        return 2
    except DbError as e:
        print(f"[DB ERROR] {e}")
        return 3
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())

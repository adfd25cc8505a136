from __future__ import annotations

import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from lotto3d.db.engine import make_engine

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to ``target_revision``."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def print_tables() -> None:
    engine = make_engine()
    insp = inspect(engine)
    tables = sorted(t for t in insp.get_table_names() if t != "alembic_version")
    print(f"{len(tables)} lottery tables:", ", ".join(tables))


def main(argv: list[str]) -> None:
    """Upgrade to the revision given on the command line (default ``head``)."""
    upgrade_db(argv[0] if argv else "head")
    print_tables()


if __name__ == "__main__":
    main(sys.argv[1:])

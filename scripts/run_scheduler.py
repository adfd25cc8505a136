"""Keep draws scheduled and their statuses current.

Run it as a long-lived process next to the application, or with ``--once``
from cron.
"""

from __future__ import annotations

import logging
import sys
import time

from lotto3d.config import load_settings
from lotto3d.db.engine import get_sessionmaker, make_engine
from lotto3d.errors import TransientStorageError
from lotto3d.workflows import run_in_transaction, scheduler_tick

logger = logging.getLogger("lotto3d.scheduler")

INTERVAL_SECONDS = 30


def main(argv: list[str]) -> int:
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )
    settings = load_settings()
    Session = get_sessionmaker(make_engine())
    once = "--once" in argv

    while True:
        try:
            changed = run_in_transaction(Session, scheduler_tick, settings=settings)
            for draw in changed:
                logger.info(
                    "Draw %s %s is now %s",
                    draw.draw_date.isoformat(),
                    draw.time_slot.label,
                    draw.status.value,
                )
        except TransientStorageError:
            # Already logged with traceback; the next tick retries.
            if once:
                return 1
        if once:
            return 0
        time.sleep(INTERVAL_SECONDS)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))

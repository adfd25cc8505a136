from datetime import datetime, timedelta, timezone
from decimal import Decimal

from lotto3d import ledger
from lotto3d.auth import Actor
from lotto3d.db.engine import get_sessionmaker, make_engine
from lotto3d.draws.lifecycle import ensure_draws_exist, update_draw_statuses
from lotto3d.draws.schedule import betting_slot_at
from lotto3d.models import Account, AccountRole, Base, BetType, Draw
from lotto3d.tickets import BetLine, place_ticket


def main() -> None:
    """Reset the development database and fill it with a small network."""
    engine = make_engine()

    # SQLite cannot drop self-referencing tables with foreign keys enforced.
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)
    now = datetime.now(timezone.utc)
    system = Actor.system()

    with Session.begin() as session:
        superadmin = Account("superadmin", AccountRole.SUPERADMIN, full_name="Super Admin")
        admin = Account("admin", AccountRole.ADMIN, full_name="Draw Admin", parent=superadmin)
        area = Account(
            "area_north", AccountRole.AREA_COORDINATOR, full_name="North Area", parent=admin
        )
        coordinator = Account(
            "coord_01", AccountRole.COORDINATOR, full_name="Coordinator One", parent=area
        )
        agents = [
            Account(f"agent_{i:02d}", AccountRole.AGENT, full_name=f"Agent {i}", parent=coordinator)
            for i in (1, 2, 3)
        ]
        session.add_all([superadmin, admin, area, coordinator, *agents])
        session.flush()

        ledger.load(session, coordinator.id, Decimal("20000.00"), system, "Opening float")
        coordinator_actor = Actor.for_account(coordinator)
        for agent in agents:
            ledger.transfer(
                session, coordinator.id, agent.id, Decimal("5000.00"), coordinator_actor,
                "Opening float",
            )

        ensure_draws_exist(session, (now - timedelta(days=1)).date(), 3)
        update_draw_statuses(session, now)

        current = betting_slot_at(now)
        draw = Draw.get_by_slot(session, *current) if current else None
        if draw is not None:
            place_ticket(
                session,
                agents[0].id,
                draw.id,
                [
                    BetLine(BetType.STRAIGHT, "123", Decimal("10.00")),
                    BetLine(BetType.RAMBOLITO, "456", Decimal("20.00")),
                ],
                now=now,
            )
            place_ticket(
                session,
                agents[1].id,
                draw.id,
                [BetLine(BetType.RAMBOLITO, "112", Decimal("5.00"))],
                now=now,
            )

    print("Development database seeded.")


if __name__ == "__main__":
    main()

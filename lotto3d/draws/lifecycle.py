"""Draw state machine: scheduled -> open -> closed -> settled.

Every transition is a compare-and-set ``UPDATE`` conditioned on the
expected source state, so two schedulers (or a scheduler and an operator)
racing on the same draw perform the transition exactly once and a state is
never skipped or revisited.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import audit
from ..auth import RESULT_INPUT, Actor, require_capability
from ..config import DEFAULT_SETTINGS, Settings
from ..errors import (
    DrawNotClosed,
    DrawNotFound,
    DrawNotOpen,
    InvalidDrawResult,
    InvalidDrawTransition,
    ResultAlreadySet,
)
from ..models.draw import BetLimit, Draw
from ..models.enums import AuditAction, BetType, DrawStatus, DrawTimeSlot
from ..models.types import as_money, utcnow
from ..models.utils import is_three_digits
from .engine import SettlementSummary, WinnerComputationEngine
from .schedule import SLOT_ORDER, local_today, slot_times

logger = logging.getLogger(__name__)

_STATE_ORDER = list(DrawStatus)


def _get_draw(session: Session, draw_id: int, *, refresh: bool = False) -> Draw:
    draw = session.get(Draw, draw_id, populate_existing=refresh)
    if draw is None:
        raise DrawNotFound(f"Draw {draw_id} not found.")
    return draw


def schedule_draw(
    session: Session,
    draw_date: date,
    time_slot: DrawTimeSlot | str,
    *,
    default_limits: Optional[Mapping[BetType, Decimal]] = None,
    number_limits: Optional[Mapping[BetType, Optional[Decimal]]] = None,
    settings: Settings = DEFAULT_SETTINGS,
) -> Draw:
    """Create the draw for ``draw_date``/``time_slot`` with its bet limits.

    ``default_limits`` and ``number_limits`` fall back to the bet-type totals
    and per-number caps in ``settings``. Returns the existing draw when the
    slot is already scheduled.
    """
    slot = DrawTimeSlot.parse(time_slot)
    existing = Draw.get_by_slot(session, draw_date, slot)
    if existing is not None:
        return existing

    limits = default_limits if default_limits is not None else settings.default_limits
    number_caps = (
        number_limits if number_limits is not None else settings.default_number_limits
    )
    times = slot_times(draw_date, slot, settings)
    draw = Draw(
        draw_date=draw_date,
        time_slot=slot,
        status=DrawStatus.SCHEDULED,
        opens_at=times.opens_at,
        cutoff_at=times.cutoff_at,
        draws_at=times.draws_at,
    )
    for bet_type in BetType:
        draw.bet_limits.append(
            BetLimit(
                bet_type=bet_type,
                max_amount=as_money(limits.get(bet_type, Decimal("0.00"))),
                current_total=Decimal("0.00"),
                per_number_max=(
                    as_money(number_caps[bet_type])
                    if number_caps.get(bet_type) is not None
                    else None
                ),
            )
        )
    try:
        with session.begin_nested():
            session.add(draw)
    except IntegrityError:
        # Another scheduler created the slot between our lookup and insert.
        existing = Draw.get_by_slot(session, draw_date, slot)
        if existing is None:
            raise
        return existing

    logger.info(
        "Scheduled draw %s for %s %s (opens %s, cutoff %s)",
        draw.id,
        draw_date.isoformat(),
        slot.label,
        times.opens_at.isoformat(),
        times.cutoff_at.isoformat(),
    )
    return draw


def ensure_draws_exist(
    session: Session,
    start_date: Optional[date] = None,
    days: Optional[int] = None,
    *,
    settings: Settings = DEFAULT_SETTINGS,
) -> list[Draw]:
    """Make sure every slot from ``start_date`` for ``days`` days is scheduled."""
    start_date = start_date or local_today(settings=settings)
    days = settings.schedule_days if days is None else days
    if days < 0:
        raise ValueError("days cannot be negative")
    draws: list[Draw] = []
    for offset in range(days):
        day = start_date + timedelta(days=offset)
        for slot in SLOT_ORDER:
            draws.append(schedule_draw(session, day, slot, settings=settings))
    return draws


def _transition(
    session: Session, draw_id: int, source: DrawStatus, target: DrawStatus
) -> bool:
    result = session.execute(
        update(Draw)
        .where(Draw.id == draw_id, Draw.status == source)
        .values(status=target)
        .execution_options(synchronize_session=False)
    )
    draw = _get_draw(session, draw_id, refresh=True)
    if result.rowcount == 1:
        logger.info(
            "Draw %s (%s %s) moved %s -> %s",
            draw_id,
            draw.draw_date.isoformat(),
            draw.time_slot.label,
            source.value,
            target.value,
        )
        return True
    if _STATE_ORDER.index(draw.status) >= _STATE_ORDER.index(target):
        return False
    raise InvalidDrawTransition(
        f"Draw {draw_id} is {draw.status.value}; it cannot move to {target.value}."
    )


def open_draw(session: Session, draw_id: int) -> bool:
    """Open betting on a scheduled draw.

    Returns ``True`` if this call opened it and ``False`` if it was already
    open or further along.
    """
    return _transition(session, draw_id, DrawStatus.SCHEDULED, DrawStatus.OPEN)


def close_draw(session: Session, draw_id: int) -> bool:
    """Stop betting on an open draw.

    Raises
    ------
    InvalidDrawTransition
        If the draw is still scheduled; it has to be opened first.
    """
    return _transition(session, draw_id, DrawStatus.OPEN, DrawStatus.CLOSED)


def update_draw_statuses(
    session: Session, now: Optional[datetime] = None
) -> list[Draw]:
    """Scheduler tick: open and close draws whose time has come.

    Draws are opened before closing is considered, so a draw whose whole
    window passed while the scheduler was down still goes through ``open``.

    Returns
    -------
    list[Draw]
        Draws whose status this tick changed.
    """
    now = now or datetime.now(timezone.utc)
    changed: dict[int, Draw] = {}

    to_open = session.scalars(
        select(Draw.id)
        .where(Draw.status == DrawStatus.SCHEDULED, Draw.opens_at <= now)
        .order_by(Draw.draws_at)
    ).all()
    for draw_id in to_open:
        if open_draw(session, draw_id):
            changed[draw_id] = _get_draw(session, draw_id)

    to_close = session.scalars(
        select(Draw.id)
        .where(Draw.status == DrawStatus.OPEN, Draw.cutoff_at <= now)
        .order_by(Draw.draws_at)
    ).all()
    for draw_id in to_close:
        if close_draw(session, draw_id):
            changed[draw_id] = _get_draw(session, draw_id)

    if changed:
        logger.info("Status update changed %s draw(s)", len(changed))
    return list(changed.values())


def require_open(
    session: Session,
    draw_id: int,
    now: Optional[datetime] = None,
    *,
    lock: bool = False,
) -> Draw:
    """Return the draw if it is accepting bets at ``now``.

    Parameters
    ----------
    lock : bool, default: False
        Hold a shared row lock on the draw until the transaction ends, so a
        concurrent close waits for the sale to commit. Ignored on SQLite,
        where writers are already serialized.

    Raises
    ------
    DrawNotOpen
        If the draw is not ``open`` or its cutoff has passed.
    """
    now = now or datetime.now(timezone.utc)
    stmt = select(Draw).where(Draw.id == draw_id).execution_options(populate_existing=True)
    if lock:
        stmt = stmt.with_for_update(read=True)
    draw = session.scalar(stmt)
    if draw is None:
        raise DrawNotFound(f"Draw {draw_id} not found.")
    if draw.status != DrawStatus.OPEN:
        raise DrawNotOpen(f"Draw {draw_id} is {draw.status.value}, not open for betting.")
    if now >= draw.cutoff_at:
        raise DrawNotOpen(f"Betting for draw {draw_id} closed at {draw.cutoff_at.isoformat()}.")
    return draw


def submit_result(
    session: Session,
    draw_id: int,
    result: str,
    actor: Optional[Actor],
    engine: Optional[WinnerComputationEngine] = None,
) -> SettlementSummary:
    """Record the winning number of a closed draw and settle it.

    The result is written by one conditional ``UPDATE`` on
    ``status = 'closed' AND result IS NULL``; winner computation then runs in
    the same savepoint. If settling fails the draw stays closed with no result,
    even when the caller catches the error and commits.

    Raises
    ------
    InvalidDrawResult
        If ``result`` is not exactly three digits.
    ResultAlreadySet
        If the draw has already been settled.
    DrawNotClosed
        If the draw is still scheduled or open.
    """
    require_capability(actor, RESULT_INPUT)
    if not is_three_digits(result):
        raise InvalidDrawResult()

    settled_at = utcnow()
    with session.begin_nested():
        outcome = session.execute(
            update(Draw)
            .where(
                Draw.id == draw_id,
                Draw.status == DrawStatus.CLOSED,
                Draw.result.is_(None),
            )
            .values(
                status=DrawStatus.SETTLED,
                result=result,
                settled_at=settled_at,
                settled_by_id=actor.account_id if actor else None,
            )
            .execution_options(synchronize_session=False)
        )
        draw = _get_draw(session, draw_id, refresh=True)
        if outcome.rowcount == 0:
            if draw.status == DrawStatus.SETTLED:
                raise ResultAlreadySet(
                    f"Draw {draw_id} was already settled with result {draw.result}."
                )
            raise DrawNotClosed(f"Draw {draw_id} is {draw.status.value}; close it first.")

        engine = engine or WinnerComputationEngine(session)
        summary = engine.settle(draw, result)
        audit.record(
            session,
            None,
            AuditAction.DRAW_SETTLED,
            actor,
            draw_id=draw_id,
            details={
                "result": result,
                "bets_evaluated": summary.bets_evaluated,
                "winning_tickets": summary.winning_tickets,
                "total_payout": summary.total_payout,
            },
        )
    return summary


__all__ = [
    "schedule_draw",
    "ensure_draws_exist",
    "open_draw",
    "close_draw",
    "update_draw_statuses",
    "require_open",
    "submit_result",
]

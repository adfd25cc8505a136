"""Wall-clock schedule of the three daily draws.

Draws happen at 2PM, 5PM and 9PM local time. Betting on a slot opens when
the previous slot is drawn (the 2PM window opens at 9PM the day before) and
closes ``cutoff_minutes`` before the draw itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from ..config import DEFAULT_SETTINGS, Settings
from ..models.enums import DrawTimeSlot

SLOT_ORDER: tuple[DrawTimeSlot, ...] = (
    DrawTimeSlot.TWO_PM,
    DrawTimeSlot.FIVE_PM,
    DrawTimeSlot.NINE_PM,
)


@dataclass(frozen=True)
class SlotTimes:
    """UTC instants bounding one draw's betting window."""

    opens_at: datetime
    cutoff_at: datetime
    draws_at: datetime


def _local_instant(day: date, hour: int, settings: Settings) -> datetime:
    local = datetime.combine(day, time(hour=hour), tzinfo=settings.tz)
    return local.astimezone(timezone.utc)


def previous_slot(draw_date: date, slot: DrawTimeSlot) -> tuple[date, DrawTimeSlot]:
    """Return the (date, slot) drawn immediately before ``slot`` on ``draw_date``."""
    idx = SLOT_ORDER.index(slot)
    if idx == 0:
        return draw_date - timedelta(days=1), SLOT_ORDER[-1]
    return draw_date, SLOT_ORDER[idx - 1]


def slot_times(
    draw_date: date,
    slot: DrawTimeSlot,
    settings: Settings = DEFAULT_SETTINGS,
) -> SlotTimes:
    """Compute the betting window for ``slot`` on ``draw_date``.

    Parameters
    ----------
    draw_date : date
        Local calendar date of the draw.
    slot : DrawTimeSlot
        Daily time slot.
    settings : Settings, default: DEFAULT_SETTINGS
        Supplies the timezone and the cutoff offset.

    Returns
    -------
    SlotTimes
        ``opens_at``, ``cutoff_at`` and ``draws_at`` as aware UTC datetimes.
    """
    slot = DrawTimeSlot.parse(slot)
    draws_at = _local_instant(draw_date, slot.hour, settings)
    prev_date, prev = previous_slot(draw_date, slot)
    opens_at = _local_instant(prev_date, prev.hour, settings)
    cutoff_at = draws_at - timedelta(minutes=settings.cutoff_minutes)
    return SlotTimes(opens_at=opens_at, cutoff_at=cutoff_at, draws_at=draws_at)


def local_today(now: Optional[datetime] = None, settings: Settings = DEFAULT_SETTINGS) -> date:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(settings.tz).date()


def betting_slot_at(
    now: Optional[datetime] = None,
    settings: Settings = DEFAULT_SETTINGS,
) -> Optional[tuple[date, DrawTimeSlot]]:
    """Return the (date, slot) currently accepting bets, if any.

    Between a slot's cutoff and its draw time nothing is on sale, so ``None``
    is returned.
    """
    now = now or datetime.now(timezone.utc)
    today = local_today(now, settings)
    for day in (today, today + timedelta(days=1)):
        for slot in SLOT_ORDER:
            times = slot_times(day, slot, settings)
            if times.opens_at <= now < times.cutoff_at:
                return day, slot
    return None


__all__ = [
    "SLOT_ORDER",
    "SlotTimes",
    "previous_slot",
    "slot_times",
    "local_today",
    "betting_slot_at",
]

"""Runtime settings read from the environment (and ``.env``)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from .models.enums import BetType
from .models.types import as_money


@dataclass(frozen=True)
class Settings:
    """Operational knobs for the lottery core.

    Attributes
    ----------
    timezone : str
        IANA zone the draw schedule is defined in.
    cutoff_minutes : int
        Minutes before the draw time at which betting closes.
    default_limits : Mapping[BetType, Decimal]
        ``max_amount`` given to each bet type when a draw is scheduled.
    default_number_limits : Mapping[BetType, Optional[Decimal]]
        ``per_number_max`` given to each bet type when a draw is scheduled;
        the most that may be sold on any one combination.
    schedule_days : int
        How many days ahead the scheduler keeps draws created.
    min_bet, max_bet : Decimal
        Accepted range for a single bet line.
    notify_url : Optional[str]
        Endpoint receiving winner notifications, if any.
    notify_timeout : int
        Seconds before the notification request is abandoned.
    """

    timezone: str = "Asia/Manila"
    cutoff_minutes: int = 5
    default_limits: Mapping[BetType, Decimal] = field(
        default_factory=lambda: {
            BetType.STRAIGHT: Decimal("50000.00"),
            BetType.RAMBOLITO: Decimal("50000.00"),
        }
    )
    default_number_limits: Mapping[BetType, Optional[Decimal]] = field(
        default_factory=lambda: {
            BetType.STRAIGHT: Decimal("1000.00"),
            BetType.RAMBOLITO: Decimal("1500.00"),
        }
    )
    schedule_days: int = 14
    min_bet: Decimal = Decimal("1.00")
    max_bet: Decimal = Decimal("10000.00")
    notify_url: Optional[str] = None
    notify_timeout: int = 10

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable '{name}' must be an integer") from exc


def _money_env(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return as_money(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Environment variable '{name}' must be a money amount") from exc


def load_settings() -> Settings:
    """Build :class:`Settings` from ``LOTTO3D_*`` environment variables."""
    load_dotenv()
    timezone = os.getenv("LOTTO3D_TIMEZONE") or "Asia/Manila"
    # Fail early on a misspelt zone rather than at the first schedule call.
    ZoneInfo(timezone)

    cutoff = _int_env("LOTTO3D_CUTOFF_MINUTES", 5)
    if not 0 < cutoff < 60:
        raise ValueError("LOTTO3D_CUTOFF_MINUTES must be between 1 and 59")

    settings = Settings(
        timezone=timezone,
        cutoff_minutes=cutoff,
        default_limits={
            BetType.STRAIGHT: _money_env(
                "LOTTO3D_DEFAULT_STRAIGHT_LIMIT", Decimal("50000.00")
            ),
            BetType.RAMBOLITO: _money_env(
                "LOTTO3D_DEFAULT_RAMBOLITO_LIMIT", Decimal("50000.00")
            ),
        },
        default_number_limits={
            BetType.STRAIGHT: _money_env(
                "LOTTO3D_DEFAULT_STRAIGHT_NUMBER_LIMIT", Decimal("1000.00")
            ),
            BetType.RAMBOLITO: _money_env(
                "LOTTO3D_DEFAULT_RAMBOLITO_NUMBER_LIMIT", Decimal("1500.00")
            ),
        },
        schedule_days=_int_env("LOTTO3D_SCHEDULE_DAYS", 14),
        min_bet=_money_env("LOTTO3D_MIN_BET", Decimal("1.00")),
        max_bet=_money_env("LOTTO3D_MAX_BET", Decimal("10000.00")),
        notify_url=os.getenv("LOTTO3D_NOTIFY_URL") or None,
        notify_timeout=_int_env("LOTTO3D_NOTIFY_TIMEOUT", 10),
    )
    if settings.min_bet <= 0 or settings.min_bet > settings.max_bet:
        raise ValueError("LOTTO3D_MIN_BET must be positive and not above LOTTO3D_MAX_BET")
    return settings


DEFAULT_SETTINGS = Settings()

__all__ = ["Settings", "load_settings", "DEFAULT_SETTINGS"]

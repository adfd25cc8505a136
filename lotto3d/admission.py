"""Exposure limits for bets on a draw.

Every draw carries one :class:`~lotto3d.models.draw.BetLimit` per bet type.
Admission adds the bet's amount to that counter with a single conditional
``UPDATE`` that only matches while the new total stays within
``max_amount``, so concurrent sellers can never push the counter past the
limit. A per-combination counter is maintained the same way. It is capped
by its own ``max_amount`` when an administrator sets one, and otherwise by
the bet type's default ``per_number_max``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .auth import LIMIT_EDIT, Actor, require_capability
from .errors import BetLimitExceeded, DrawNotFound, InvalidBet
from .models.draw import BetLimit, CombinationExposure, Draw
from .models.enums import BetType
from .models.types import Money, as_money
from .models.utils import is_three_digits

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class Admission:
    """Result of a successful reservation."""

    accepted: bool
    new_total: Decimal
    combination_total: Decimal


@dataclass(frozen=True)
class BetLimitStatus:
    """Snapshot of one bet type's exposure on a draw."""

    draw_id: int
    bet_type: BetType
    max_amount: Decimal
    current_total: Decimal
    per_number_max: Optional[Decimal] = None

    @property
    def remaining(self) -> Decimal:
        return max(self.max_amount - self.current_total, ZERO)

    @property
    def utilization(self) -> Decimal:
        """Share of the limit already sold, between 0 and 1."""
        if self.max_amount <= ZERO:
            return Decimal("1")
        return (self.current_total / self.max_amount).quantize(Decimal("0.0001"))


def _parse_bet_type(bet_type: Any) -> BetType:
    try:
        return BetType.parse(bet_type)
    except ValueError as exc:
        raise InvalidBet(str(exc)) from exc


def _parse_combination(combination: Any) -> str:
    if not is_three_digits(combination):
        raise InvalidBet("Bet combination must be exactly 3 digits.")
    return combination


def _parse_amount(amount: Any) -> Decimal:
    try:
        value = as_money(amount)
    except (TypeError, ValueError) as exc:
        raise InvalidBet(str(exc)) from exc
    if value <= ZERO:
        raise InvalidBet("Bet amount must be greater than zero.")
    return value


def _require_draw(session: Session, draw_id: int) -> Draw:
    draw = session.get(Draw, draw_id)
    if draw is None:
        raise DrawNotFound(f"Draw {draw_id} not found.")
    return draw


def _ensure_exposure_row(
    session: Session, draw_id: int, bet_type: BetType, combination: str
) -> None:
    exists = session.scalar(
        select(CombinationExposure.id).where(
            CombinationExposure.draw_id == draw_id,
            CombinationExposure.bet_type == bet_type,
            CombinationExposure.combination == combination,
        )
    )
    if exists is not None:
        return
    try:
        with session.begin_nested():
            session.add(
                CombinationExposure(
                    draw_id=draw_id,
                    bet_type=bet_type,
                    combination=combination,
                    current_total=ZERO,
                    bet_count=0,
                )
            )
    except IntegrityError:
        # A concurrent admission created the row first; it is usable as is.
        logger.debug(
            "Exposure row for draw %s %s %s created concurrently",
            draw_id,
            bet_type.value,
            combination,
        )


def _bet_limit(session: Session, draw_id: int, bet_type: BetType) -> Optional[BetLimit]:
    return session.scalar(
        select(BetLimit)
        .where(BetLimit.draw_id == draw_id, BetLimit.bet_type == bet_type)
        .execution_options(populate_existing=True)
    )


def _exposure(
    session: Session, draw_id: int, bet_type: BetType, combination: str
) -> Optional[CombinationExposure]:
    return session.scalar(
        select(CombinationExposure)
        .where(
            CombinationExposure.draw_id == draw_id,
            CombinationExposure.bet_type == bet_type,
            CombinationExposure.combination == combination,
        )
        .execution_options(populate_existing=True)
    )


def _effective_number_cap():
    """SQL expression for the cap of the combination row being updated."""
    default_cap = (
        select(BetLimit.per_number_max)
        .where(
            BetLimit.draw_id == CombinationExposure.draw_id,
            BetLimit.bet_type == CombinationExposure.bet_type,
        )
        .correlate(CombinationExposure)
        .scalar_subquery()
    )
    return func.coalesce(CombinationExposure.max_amount, default_cap)


def try_admit(
    session: Session,
    draw_id: int,
    bet_type: Any,
    combination: str,
    amount: Any,
) -> Admission:
    """Reserve ``amount`` of exposure for one bet.

    Both counters are updated inside a SAVEPOINT; a rejection rolls the
    savepoint back so the caller's outer transaction is left untouched.

    Raises
    ------
    BetLimitExceeded
        If the bet-type total or the combination's cap would be exceeded. A
        combination is capped by its own ``max_amount`` or, when that is
        unset, by the bet type's ``per_number_max``.
        A draw without a limit row for ``bet_type`` rejects every bet.
    InvalidBet
        If the bet type, combination or amount is malformed.
    """
    bet_type = _parse_bet_type(bet_type)
    combination = _parse_combination(combination)
    value = _parse_amount(amount)
    delta = literal(value, Money())

    with session.begin_nested():
        result = session.execute(
            update(BetLimit)
            .where(
                BetLimit.draw_id == draw_id,
                BetLimit.bet_type == bet_type,
                BetLimit.current_total + delta <= BetLimit.max_amount,
            )
            .values(current_total=BetLimit.current_total + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            limit = _bet_limit(session, draw_id, bet_type)
            max_amount = limit.max_amount if limit is not None else ZERO
            current = limit.current_total if limit is not None else ZERO
            logger.warning(
                "Bet rejected on draw %s: %s %s amount=%s total=%s max=%s",
                draw_id,
                bet_type.value,
                combination,
                value,
                current,
                max_amount,
            )
            raise BetLimitExceeded(
                f"Bet limit exceeded for {bet_type.value}. Maximum {max_amount} "
                f"allowed; current total {current}.",
                draw_id=draw_id,
                bet_type=bet_type.value,
                combination=combination,
                max_amount=max_amount,
                current_total=current,
            )

        _ensure_exposure_row(session, draw_id, bet_type, combination)
        cap = _effective_number_cap()
        result = session.execute(
            update(CombinationExposure)
            .where(
                CombinationExposure.draw_id == draw_id,
                CombinationExposure.bet_type == bet_type,
                CombinationExposure.combination == combination,
                or_(cap.is_(None), CombinationExposure.current_total + delta <= cap),
            )
            .values(
                current_total=CombinationExposure.current_total + delta,
                bet_count=CombinationExposure.bet_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            exposure = _exposure(session, draw_id, bet_type, combination)
            limit = _bet_limit(session, draw_id, bet_type)
            number_max = exposure.max_amount if exposure is not None else None
            if number_max is None and limit is not None:
                number_max = limit.per_number_max
            current = exposure.current_total if exposure is not None else ZERO
            logger.warning(
                "Bet rejected on draw %s: %s %s is sold out (total=%s cap=%s)",
                draw_id,
                bet_type.value,
                combination,
                current,
                number_max,
            )
            raise BetLimitExceeded(
                f"Bet limit exceeded. Maximum {number_max} allowed for number "
                f"{combination} in {bet_type.value} betting. Current total: {current}.",
                draw_id=draw_id,
                bet_type=bet_type.value,
                combination=combination,
                max_amount=number_max,
                current_total=current,
            )

    limit = _bet_limit(session, draw_id, bet_type)
    exposure = _exposure(session, draw_id, bet_type, combination)
    assert limit is not None and exposure is not None
    logger.debug(
        "Admitted %s %s amount=%s on draw %s (total=%s)",
        bet_type.value,
        combination,
        value,
        draw_id,
        limit.current_total,
    )
    return Admission(
        accepted=True,
        new_total=limit.current_total,
        combination_total=exposure.current_total,
    )


def release(
    session: Session,
    draw_id: int,
    bet_type: Any,
    amount: Any,
    combination: Optional[str] = None,
) -> None:
    """Give back exposure reserved by :func:`try_admit` (ticket voids).

    Raises
    ------
    ValueError
        If more would be released than is currently reserved.
    """
    bet_type = _parse_bet_type(bet_type)
    value = _parse_amount(amount)
    delta = literal(value, Money())

    with session.begin_nested():
        result = session.execute(
            update(BetLimit)
            .where(
                BetLimit.draw_id == draw_id,
                BetLimit.bet_type == bet_type,
                BetLimit.current_total >= delta,
            )
            .values(current_total=BetLimit.current_total - delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ValueError(
                f"cannot release {value} of {bet_type.value} exposure on draw {draw_id}"
            )
        if combination is not None:
            combination = _parse_combination(combination)
            result = session.execute(
                update(CombinationExposure)
                .where(
                    CombinationExposure.draw_id == draw_id,
                    CombinationExposure.bet_type == bet_type,
                    CombinationExposure.combination == combination,
                    CombinationExposure.current_total >= delta,
                    CombinationExposure.bet_count > 0,
                )
                .values(
                    current_total=CombinationExposure.current_total - delta,
                    bet_count=CombinationExposure.bet_count - 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ValueError(
                    f"cannot release {value} on {combination} for draw {draw_id}"
                )
    logger.debug(
        "Released %s %s amount=%s on draw %s", bet_type.value, combination, value, draw_id
    )


def set_bet_limit(
    session: Session,
    draw_id: int,
    bet_type: Any,
    max_amount: Any,
    actor: Optional[Actor],
) -> BetLimit:
    """Set the bet-type limit of a draw, creating the row if needed.

    The limit cannot be lowered below what has already been sold.
    """
    require_capability(actor, LIMIT_EDIT)
    bet_type = _parse_bet_type(bet_type)
    value = as_money(max_amount)
    if value < ZERO:
        raise ValueError("max_amount cannot be negative")
    _require_draw(session, draw_id)

    limit = _bet_limit(session, draw_id, bet_type)
    if limit is None:
        limit = BetLimit(draw_id=draw_id, bet_type=bet_type, max_amount=value, current_total=ZERO)
        session.add(limit)
        session.flush()
    else:
        result = session.execute(
            update(BetLimit)
            .where(
                BetLimit.id == limit.id,
                BetLimit.current_total <= literal(value, Money()),
            )
            .values(max_amount=literal(value, Money()))
            .execution_options(synchronize_session=False)
        )
        limit = _bet_limit(session, draw_id, bet_type)
        if result.rowcount == 0:
            raise BetLimitExceeded(
                f"Cannot set the limit below the {limit.current_total} already sold.",
                draw_id=draw_id,
                bet_type=bet_type.value,
                max_amount=limit.max_amount,
                current_total=limit.current_total,
            )
    logger.info(
        "Bet limit for draw %s %s set to %s by account %s",
        draw_id,
        bet_type.value,
        value,
        actor.account_id if actor else None,
    )
    return limit


def set_default_number_limit(
    session: Session,
    draw_id: int,
    bet_type: Any,
    max_amount: Any,
    actor: Optional[Actor],
) -> BetLimit:
    """Set the cap applied to every combination of ``bet_type`` on a draw.

    Combinations with their own cap keep it. ``max_amount=None`` removes the
    default so only the bet-type total bounds them. Amounts already sold above
    a lowered cap stay sold, and further bets on those combinations are refused.
    """
    require_capability(actor, LIMIT_EDIT)
    bet_type = _parse_bet_type(bet_type)
    value = None if max_amount is None else as_money(max_amount)
    if value is not None and value < ZERO:
        raise ValueError("max_amount cannot be negative")
    _require_draw(session, draw_id)

    result = session.execute(
        update(BetLimit)
        .where(BetLimit.draw_id == draw_id, BetLimit.bet_type == bet_type)
        .values(per_number_max=literal(value, Money()) if value is not None else None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ValueError(
            f"Draw {draw_id} has no {bet_type.value} limit; set one with set_bet_limit"
        )
    logger.info(
        "Default per-number limit for draw %s %s set to %s by account %s",
        draw_id,
        bet_type.value,
        value,
        actor.account_id if actor else None,
    )
    return _bet_limit(session, draw_id, bet_type)


def set_combination_limit(
    session: Session,
    draw_id: int,
    bet_type: Any,
    combination: str,
    max_amount: Any,
    actor: Optional[Actor],
) -> CombinationExposure:
    """Cap one number on a draw; ``max_amount=None`` removes the cap.

    A cap of zero marks the number sold out.
    """
    require_capability(actor, LIMIT_EDIT)
    bet_type = _parse_bet_type(bet_type)
    combination = _parse_combination(combination)
    value = None if max_amount is None else as_money(max_amount)
    if value is not None and value < ZERO:
        raise ValueError("max_amount cannot be negative")
    _require_draw(session, draw_id)

    _ensure_exposure_row(session, draw_id, bet_type, combination)
    stmt = update(CombinationExposure).where(
        CombinationExposure.draw_id == draw_id,
        CombinationExposure.bet_type == bet_type,
        CombinationExposure.combination == combination,
    )
    if value is not None:
        stmt = stmt.where(CombinationExposure.current_total <= literal(value, Money()))
    result = session.execute(
        stmt.values(max_amount=literal(value, Money()) if value is not None else None)
        .execution_options(synchronize_session=False)
    )
    exposure = _exposure(session, draw_id, bet_type, combination)
    assert exposure is not None
    if result.rowcount == 0:
        raise BetLimitExceeded(
            f"Cannot cap {combination} below the {exposure.current_total} already sold.",
            draw_id=draw_id,
            bet_type=bet_type.value,
            combination=combination,
            max_amount=exposure.max_amount,
            current_total=exposure.current_total,
        )
    logger.info(
        "Combination limit for draw %s %s %s set to %s by account %s",
        draw_id,
        bet_type.value,
        combination,
        value,
        actor.account_id if actor else None,
    )
    return exposure


def get_bet_limit_status(session: Session, draw_id: int) -> list[BetLimitStatus]:
    """Return the current exposure for every bet type configured on a draw."""
    _require_draw(session, draw_id)
    limits = session.scalars(
        select(BetLimit)
        .where(BetLimit.draw_id == draw_id)
        .order_by(BetLimit.bet_type)
        .execution_options(populate_existing=True)
    ).all()
    return [
        BetLimitStatus(
            draw_id=draw_id,
            bet_type=limit.bet_type,
            max_amount=limit.max_amount,
            current_total=limit.current_total,
            per_number_max=limit.per_number_max,
        )
        for limit in limits
    ]


def sold_out_combinations(session: Session, draw_id: int) -> list[CombinationExposure]:
    """Return combinations whose exposure has reached their effective cap."""
    _require_draw(session, draw_id)
    cap = _effective_number_cap()
    return list(
        session.scalars(
            select(CombinationExposure)
            .where(
                CombinationExposure.draw_id == draw_id,
                cap.is_not(None),
                CombinationExposure.current_total >= cap,
            )
            .order_by(CombinationExposure.bet_type, CombinationExposure.combination)
            .execution_options(populate_existing=True)
        ).all()
    )


__all__ = [
    "Admission",
    "BetLimitStatus",
    "try_admit",
    "release",
    "set_bet_limit",
    "set_default_number_limit",
    "set_combination_limit",
    "get_bet_limit_status",
    "sold_out_combinations",
]

"""Match rules and prize multipliers for 3-digit bets."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Mapping, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import PRIZE_CONFIG_EDIT, Actor, require_capability
from ..models.draw import PrizeConfiguration
from ..models.enums import BetType
from ..models.types import as_money
from ..models.utils import is_three_digits

logger = logging.getLogger(__name__)

VARIANT_STRAIGHT = "straight"
VARIANT_DOUBLE = "double"
VARIANT_DISTINCT = "distinct"

DEFAULT_MULTIPLIERS: Mapping[tuple[BetType, str], Decimal] = {
    (BetType.STRAIGHT, VARIANT_STRAIGHT): Decimal("450.00"),
    (BetType.RAMBOLITO, VARIANT_DOUBLE): Decimal("150.00"),
    (BetType.RAMBOLITO, VARIANT_DISTINCT): Decimal("75.00"),
}


@dataclass(frozen=True)
class MatchOutcome:
    """Result of comparing one bet against a draw result.

    Attributes
    ----------
    rule_key : str
        Key of the rule that produced the outcome.
    matched : bool
        ``True`` when the bet wins.
    variant : Optional[str]
        Prize variant used to look up the multiplier.
    """

    rule_key: str
    matched: bool
    variant: Optional[str]


@dataclass(frozen=True)
class MatchRule:
    """Definition of how one bet type wins.

    Attributes
    ----------
    key : str
        Registry key, the stored value of the bet type.
    matcher : Callable[[str, str], bool]
        Takes the bet combination and the draw result, returns whether the
        bet wins.
    variant_of : Callable[[str], Optional[str]]
        Maps a combination to its prize variant, or ``None`` when the
        combination cannot be played under this rule.
    description : Optional[str]
        Human-readable summary of the rule.
    """

    key: str
    matcher: Callable[[str, str], bool]
    variant_of: Callable[[str], Optional[str]]
    description: Optional[str] = None

    def accepts(self, combination: str) -> bool:
        return is_three_digits(combination) and self.variant_of(combination) is not None

    def evaluate(self, combination: str, result: str) -> MatchOutcome:
        if not is_three_digits(result):
            raise ValueError("draw result must be exactly 3 digits")
        return MatchOutcome(
            rule_key=self.key,
            matched=self.accepts(combination) and self.matcher(combination, result),
            variant=self.variant_of(combination),
        )


def _rule_key(key: Union[str, BetType]) -> str:
    try:
        return BetType.parse(key).value
    except ValueError:
        return str(key)


class MatchRuleRegistry:
    """Mutable registry mapping bet type keys to match rules."""

    def __init__(self) -> None:
        self._rules: Dict[str, MatchRule] = {}

    def register(self, rule: MatchRule, *, replace: bool = False) -> None:
        """Register ``rule`` under its key.

        Parameters
        ----------
        rule : MatchRule
            Rule to add.
        replace : bool, default: False
            Overwrite an existing registration with the same key instead of
            raising :class:`ValueError`.
        """
        if not replace and rule.key in self._rules:
            raise ValueError(f"Match rule '{rule.key}' is already registered")
        self._rules[rule.key] = rule

    def get(self, key: Union[str, BetType]) -> MatchRule:
        """Return the rule for ``key``; legacy aliases such as ``rambol`` resolve."""
        try:
            return self._rules[_rule_key(key)]
        except KeyError as exc:
            raise KeyError(f"Unknown match rule '{key}'") from exc

    def evaluate(self, key: Union[str, BetType], combination: str, result: str) -> MatchOutcome:
        return self.get(key).evaluate(combination, result)

    def available_rules(self) -> Dict[str, MatchRule]:
        return dict(self._rules)


def _straight_variant(combination: str) -> Optional[str]:
    return VARIANT_STRAIGHT


def rambolito_variant(combination: str) -> Optional[str]:
    """Return ``double`` or ``distinct``; triples like ``777`` have no variant."""
    distinct = len(set(combination))
    if distinct == 3:
        return VARIANT_DISTINCT
    if distinct == 2:
        return VARIANT_DOUBLE
    return None


def _exact_match(combination: str, result: str) -> bool:
    return combination == result


def _any_order_match(combination: str, result: str) -> bool:
    return sorted(combination) == sorted(result)


DEFAULT_MATCH_REGISTRY = MatchRuleRegistry()
DEFAULT_MATCH_REGISTRY.register(
    MatchRule(
        key=BetType.STRAIGHT.value,
        matcher=_exact_match,
        variant_of=_straight_variant,
        description="Wins when the digits equal the result in the same order.",
    )
)
DEFAULT_MATCH_REGISTRY.register(
    MatchRule(
        key=BetType.RAMBOLITO.value,
        matcher=_any_order_match,
        variant_of=rambolito_variant,
        description=(
            "Wins when the digits equal the result in any order. Combinations "
            "with a repeated digit pay the double rate."
        ),
    )
)


class PrizeTable:
    """Multipliers per (bet type, variant), with stored overrides applied."""

    def __init__(
        self, multipliers: Optional[Mapping[tuple[BetType, str], Decimal]] = None
    ) -> None:
        self._multipliers: Dict[tuple[BetType, str], Decimal] = dict(DEFAULT_MULTIPLIERS)
        if multipliers:
            for key, value in multipliers.items():
                self._multipliers[key] = as_money(value)

    @classmethod
    def from_session(cls, session: Session) -> "PrizeTable":
        """Build a table from the defaults plus active ``PrizeConfiguration`` rows."""
        rows = session.scalars(
            select(PrizeConfiguration).where(PrizeConfiguration.is_active.is_(True))
        ).all()
        return cls({(row.bet_type, row.variant): row.multiplier for row in rows})

    def multiplier(self, bet_type: Union[str, BetType], variant: str) -> Decimal:
        key = (BetType.parse(bet_type), variant)
        try:
            return self._multipliers[key]
        except KeyError as exc:
            raise KeyError(f"No multiplier for {key[0].value}/{variant}") from exc

    def prize(self, bet_type: Union[str, BetType], variant: str, amount: Decimal) -> Decimal:
        """Return ``amount * multiplier`` rounded to centavos."""
        return as_money(
            (as_money(amount) * self.multiplier(bet_type, variant)).quantize(Decimal("0.01"))
        )

    def as_dict(self) -> Dict[tuple[BetType, str], Decimal]:
        return dict(self._multipliers)


def set_prize_multiplier(
    session: Session,
    bet_type: Union[str, BetType],
    variant: str,
    multiplier,
    actor: Optional[Actor],
    description: Optional[str] = None,
) -> PrizeConfiguration:
    """Create or update the stored multiplier for one prize variant.

    New values only affect draws settled afterwards.
    """
    require_capability(actor, PRIZE_CONFIG_EDIT)
    bet_type = BetType.parse(bet_type)
    if (bet_type, variant) not in DEFAULT_MULTIPLIERS:
        raise ValueError(f"Unknown prize variant {bet_type.value}/{variant}")
    value = as_money(multiplier)
    if value < 0:
        raise ValueError("multiplier cannot be negative")

    config = session.scalar(
        select(PrizeConfiguration).where(
            PrizeConfiguration.bet_type == bet_type,
            PrizeConfiguration.variant == variant,
        )
    )
    if config is None:
        config = PrizeConfiguration(bet_type=bet_type, variant=variant, multiplier=value)
        session.add(config)
    config.multiplier = value
    config.is_active = True
    config.description = description if description is not None else config.description
    config.created_by_id = actor.account_id if actor else None
    session.flush()
    logger.info(
        "Prize multiplier %s/%s set to %s by account %s",
        bet_type.value,
        variant,
        value,
        actor.account_id if actor else None,
    )
    return config


__all__ = [
    "VARIANT_STRAIGHT",
    "VARIANT_DOUBLE",
    "VARIANT_DISTINCT",
    "DEFAULT_MULTIPLIERS",
    "MatchOutcome",
    "MatchRule",
    "MatchRuleRegistry",
    "DEFAULT_MATCH_REGISTRY",
    "PrizeTable",
    "rambolito_variant",
    "set_prize_multiplier",
]

"""Draw scheduling, lifecycle and settlement."""

from .engine import SettlementSummary, WinnerComputationEngine, WinnerNotice
from .lifecycle import (
    close_draw,
    ensure_draws_exist,
    open_draw,
    require_open,
    schedule_draw,
    submit_result,
    update_draw_statuses,
)
from .matching import (
    DEFAULT_MATCH_REGISTRY,
    MatchOutcome,
    MatchRule,
    MatchRuleRegistry,
    PrizeTable,
    set_prize_multiplier,
)
from .schedule import SlotTimes, betting_slot_at, slot_times

__all__ = [
    "DEFAULT_MATCH_REGISTRY",
    "MatchOutcome",
    "MatchRule",
    "MatchRuleRegistry",
    "PrizeTable",
    "set_prize_multiplier",
    "SettlementSummary",
    "WinnerComputationEngine",
    "WinnerNotice",
    "SlotTimes",
    "betting_slot_at",
    "slot_times",
    "schedule_draw",
    "ensure_draws_exist",
    "open_draw",
    "close_draw",
    "update_draw_statuses",
    "require_open",
    "submit_result",
]

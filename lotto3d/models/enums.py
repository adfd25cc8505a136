"""Closed sets of states and kinds used by the models.

Each enum is persisted by value with a CHECK constraint, so an illegal
status can neither be assigned in Python nor written by raw SQL.
"""

from __future__ import annotations

import enum
from typing import Optional, Type

from sqlalchemy import Enum as SAEnum


class AccountRole(str, enum.Enum):
    AGENT = "agent"
    COORDINATOR = "coordinator"
    AREA_COORDINATOR = "area_coordinator"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"

    @property
    def rank(self) -> int:
        """Position in the hierarchy; higher ranks manage lower ones."""
        return _ROLE_RANKS[self]


_ROLE_RANKS = {
    AccountRole.AGENT: 0,
    AccountRole.COORDINATOR: 1,
    AccountRole.AREA_COORDINATOR: 2,
    AccountRole.ADMIN: 3,
    AccountRole.SUPERADMIN: 4,
}


class TransactionKind(str, enum.Enum):
    LOAD = "load"
    DEDUCT = "deduct"
    PAYOUT = "payout"
    COMMISSION = "commission"
    SALE = "sale"
    REFUND = "refund"


class DrawStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    OPEN = "open"
    CLOSED = "closed"
    SETTLED = "settled"

    @property
    def next_status(self) -> Optional["DrawStatus"]:
        """Return the only legal successor, or ``None`` once settled."""
        order = list(DrawStatus)
        idx = order.index(self)
        return order[idx + 1] if idx + 1 < len(order) else None


class DrawTimeSlot(str, enum.Enum):
    TWO_PM = "twoPM"
    FIVE_PM = "fivePM"
    NINE_PM = "ninePM"

    @property
    def hour(self) -> int:
        return _SLOT_HOURS[self]

    @property
    def label(self) -> str:
        return _SLOT_LABELS[self]

    @classmethod
    def parse(cls, value: "str | DrawTimeSlot") -> "DrawTimeSlot":
        """Accept the stored value ("twoPM") or the display label ("2PM")."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for slot in cls:
            if text == slot.value or text.upper() == slot.label:
                return slot
        raise ValueError(f"unknown draw time slot: {value!r}")


_SLOT_HOURS = {
    DrawTimeSlot.TWO_PM: 14,
    DrawTimeSlot.FIVE_PM: 17,
    DrawTimeSlot.NINE_PM: 21,
}
_SLOT_LABELS = {
    DrawTimeSlot.TWO_PM: "2PM",
    DrawTimeSlot.FIVE_PM: "5PM",
    DrawTimeSlot.NINE_PM: "9PM",
}


class BetType(str, enum.Enum):
    STRAIGHT = "straight"
    RAMBOLITO = "rambolito"

    @classmethod
    def parse(cls, value: "str | BetType") -> "BetType":
        """Normalize a bet type, accepting the legacy aliases."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        key = _BET_TYPE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError as exc:
            raise ValueError(f"unknown bet type: {value!r}") from exc


_BET_TYPE_ALIASES = {
    "standard": "straight",
    "rambol": "rambolito",
}


class TicketStatus(str, enum.Enum):
    ACTIVE = "active"
    WON = "won"
    CLAIMED = "claimed"
    VOIDED = "voided"


class ClaimStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ClaimDecision(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


class AuditAction(str, enum.Enum):
    TICKET_SOLD = "TICKET_SOLD"
    TICKET_VOIDED = "TICKET_VOIDED"
    DRAW_SETTLED = "DRAW_SETTLED"
    CLAIM_REQUESTED = "CLAIM_REQUESTED"
    CLAIM_APPROVED = "CLAIM_APPROVED"
    CLAIM_REJECTED = "CLAIM_REJECTED"
    PAYOUT = "PAYOUT"


def enum_column(enum_cls: Type[enum.Enum], name: str) -> SAEnum:
    """Build a non-native Enum column type storing member values."""
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        validate_strings=True,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


__all__ = [
    "AccountRole",
    "TransactionKind",
    "DrawStatus",
    "DrawTimeSlot",
    "BetType",
    "TicketStatus",
    "ClaimStatus",
    "ClaimDecision",
    "AuditAction",
    "enum_column",
]

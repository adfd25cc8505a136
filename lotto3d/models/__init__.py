from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .account import Account, BalanceTransaction  # noqa: F401
from .draw import BetLimit, CombinationExposure, Draw, PrizeConfiguration  # noqa: F401
from .ticket import Bet, Ticket  # noqa: F401
from .claim import ClaimAuditEntry, ClaimRequest  # noqa: F401
from .enums import (  # noqa: F401
    AccountRole,
    AuditAction,
    BetType,
    ClaimDecision,
    ClaimStatus,
    DrawStatus,
    DrawTimeSlot,
    TicketStatus,
    TransactionKind,
)

__all__ = [
    "Base",
    "Account",
    "BalanceTransaction",
    "Draw",
    "BetLimit",
    "CombinationExposure",
    "PrizeConfiguration",
    "Ticket",
    "Bet",
    "ClaimRequest",
    "ClaimAuditEntry",
    "AccountRole",
    "AuditAction",
    "BetType",
    "ClaimDecision",
    "ClaimStatus",
    "DrawStatus",
    "DrawTimeSlot",
    "TicketStatus",
    "TransactionKind",
]

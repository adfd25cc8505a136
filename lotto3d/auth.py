"""Capability checks for operations restricted to parts of the hierarchy.

The identity provider authenticates the caller and hands the core an
:class:`Actor`. The UI uses :func:`has_capability` to decide what to show;
the core calls :func:`require_capability` itself before every privileged
mutation, whatever the UI did.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .errors import AccountNotFound, PermissionDenied
from .models.account import Account
from .models.enums import AccountRole

logger = logging.getLogger(__name__)

BET_PLACE = "bet.place"
TICKET_VOID = "ticket.void"
LIMIT_EDIT = "limit.edit"
PRIZE_CONFIG_EDIT = "prize.edit"
DRAW_MANAGE = "draw.manage"
RESULT_INPUT = "draw.result"
CLAIM_REQUEST = "claim.request"
CLAIM_RESOLVE = "claim.resolve"
BALANCE_LOAD = "balance.load"
BALANCE_DEDUCT = "balance.deduct"
BALANCE_OVERDRAFT = "balance.overdraft"
LEDGER_AUDIT = "ledger.audit"

_ADMIN_CAPABILITIES = frozenset(
    {
        BET_PLACE,
        TICKET_VOID,
        LIMIT_EDIT,
        PRIZE_CONFIG_EDIT,
        DRAW_MANAGE,
        RESULT_INPUT,
        CLAIM_REQUEST,
        CLAIM_RESOLVE,
        BALANCE_LOAD,
        BALANCE_DEDUCT,
        LEDGER_AUDIT,
    }
)

ROLE_CAPABILITIES: dict[AccountRole, frozenset[str]] = {
    AccountRole.AGENT: frozenset({BET_PLACE, CLAIM_REQUEST}),
    AccountRole.COORDINATOR: frozenset({BET_PLACE, CLAIM_REQUEST, BALANCE_LOAD}),
    AccountRole.AREA_COORDINATOR: frozenset(
        {BET_PLACE, CLAIM_REQUEST, BALANCE_LOAD, LEDGER_AUDIT}
    ),
    AccountRole.ADMIN: _ADMIN_CAPABILITIES,
    AccountRole.SUPERADMIN: _ADMIN_CAPABILITIES | {BALANCE_OVERDRAFT},
}


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the identity provider."""

    account_id: Optional[int]
    role: AccountRole

    @classmethod
    def system(cls) -> "Actor":
        """Actor used by the scheduler and other unattended jobs."""
        return cls(account_id=None, role=AccountRole.SUPERADMIN)

    @classmethod
    def for_account(cls, account: Account) -> "Actor":
        if account.id is None:
            raise ValueError("Account must be persisted before acting")
        return cls(account_id=account.id, role=account.role)

    @property
    def is_admin(self) -> bool:
        return self.role in (AccountRole.ADMIN, AccountRole.SUPERADMIN)


def has_capability(actor: Optional[Actor], capability_key: str) -> bool:
    """Return ``True`` when ``actor``'s role grants ``capability_key``."""
    if actor is None:
        return False
    return capability_key in ROLE_CAPABILITIES.get(actor.role, frozenset())


def require_capability(actor: Optional[Actor], capability_key: str) -> None:
    """Raise :class:`PermissionDenied` unless ``actor`` holds the capability."""
    if not has_capability(actor, capability_key):
        logger.warning(
            "Capability check failed: capability=%s role=%s account_id=%s",
            capability_key,
            actor.role.value if actor else None,
            actor.account_id if actor else None,
        )
        raise PermissionDenied(
            "Insufficient permissions for this action."
        )


def require_manages(session: Session, actor: Actor, target: Account) -> None:
    """Ensure ``target`` is inside ``actor``'s part of the hierarchy.

    Admins manage everyone below them. Coordinators and area coordinators
    manage only accounts that report to them, directly or through a
    subordinate, and only accounts of a lower rank.
    """
    if actor.is_admin:
        if target.role.rank >= actor.role.rank and actor.role != AccountRole.SUPERADMIN:
            raise PermissionDenied("You can only manage accounts below your role.")
        return
    if actor.account_id is None:
        raise PermissionDenied()
    manager = session.get(Account, actor.account_id)
    if manager is None:
        raise AccountNotFound()
    if target.role.rank >= manager.role.rank or not manager.is_ancestor_of(target):
        raise PermissionDenied("You can only manage your subordinates.")


__all__ = [
    "Actor",
    "ROLE_CAPABILITIES",
    "has_capability",
    "require_capability",
    "require_manages",
    "BET_PLACE",
    "TICKET_VOID",
    "LIMIT_EDIT",
    "PRIZE_CONFIG_EDIT",
    "DRAW_MANAGE",
    "RESULT_INPUT",
    "CLAIM_REQUEST",
    "CLAIM_RESOLVE",
    "BALANCE_LOAD",
    "BALANCE_DEDUCT",
    "BALANCE_OVERDRAFT",
    "LEDGER_AUDIT",
]

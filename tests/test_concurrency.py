import unittest
from decimal import Decimal
from functools import partial

from sqlalchemy import func, select

from lotto3d import audit, claims, ledger, workflows
from lotto3d.auth import Actor
from lotto3d.draws import close_draw, submit_result
from lotto3d.errors import BetLimitExceeded, ClaimAlreadyResolved, InsufficientBalance
from lotto3d.models import (
    AccountRole,
    AuditAction,
    BalanceTransaction,
    BetType,
    ClaimRequest,
    ClaimStatus,
    Ticket,
    TransactionKind,
)
from lotto3d.tickets import BetLine, place_ticket

from lotto_fixtures import BETTING_NOW, SYSTEM, FileDatabaseTestCase


class ConcurrentSaleTests(FileDatabaseTestCase):
    def test_racing_sellers_share_one_limit(self):
        with self.Session.begin() as session:
            agents = [
                self.make_account(session, f"agent{i:02d}", balance="100.00").id
                for i in range(2)
            ]
            draw_id = self.make_open_draw(session, limits={BetType.STRAIGHT: "100.00"}).id

        results = self.race(
            [
                partial(
                    workflows.run_in_transaction,
                    self.Session,
                    workflows.place_bet,
                    agents[i % 2],
                    draw_id,
                    "straight",
                    f"{i:03d}",
                    "10.00",
                    now=BETTING_NOW,
                )
                for i in range(16)
            ]
        )
        sold = [r for r in results if isinstance(r, Ticket)]
        refused = [r for r in results if isinstance(r, BetLimitExceeded)]
        self.assertEqual((len(sold), len(refused)), (10, 6), results)

        with self.Session() as session:
            status = {s.bet_type: s for s in workflows.get_bet_limit_status(session, draw_id)}
            self.assertEqual(status[BetType.STRAIGHT].current_total, Decimal("100.00"))
            self.assertEqual(session.scalar(select(func.count(Ticket.id))), 10)

            for agent_id in agents:
                tickets_sold = sum(1 for t in sold if t.account_id == agent_id)
                self.assertEqual(
                    ledger.get_balance(session, agent_id),
                    Decimal("100.00") - Decimal("10.00") * tickets_sold,
                )
                self.assertTrue(ledger.verify_ledger(session, agent_id).ok)


class ConcurrentBalanceTests(FileDatabaseTestCase):
    def setUp(self):
        super().setUp()
        with self.Session.begin() as session:
            self.account_id = self.make_account(session, "coord", AccountRole.COORDINATOR).id

    def test_loads_are_never_lost(self):
        results = self.race(
            [
                partial(
                    workflows.run_in_transaction,
                    self.Session,
                    ledger.load,
                    self.account_id,
                    "1.00",
                    SYSTEM,
                    f"float {i}",
                )
                for i in range(20)
            ]
        )
        self.assertTrue(all(isinstance(r, BalanceTransaction) for r in results), results)

        with self.Session() as session:
            self.assertEqual(ledger.get_balance(session, self.account_id), Decimal("20.00"))
            entries = ledger.list_transactions(
                session, self.account_id, kinds=[TransactionKind.LOAD]
            )
            self.assertEqual(
                sorted(e.balance_after for e in entries),
                [Decimal(n) for n in range(1, 21)],
            )
            self.assertTrue(ledger.verify_ledger(session, self.account_id).ok)

    def test_deductions_never_overdraw(self):
        with self.Session.begin() as session:
            ledger.load(session, self.account_id, "10.00", SYSTEM)

        results = self.race(
            [
                partial(
                    workflows.run_in_transaction,
                    self.Session,
                    ledger.deduct,
                    self.account_id,
                    "1.00",
                    SYSTEM,
                )
                for _ in range(16)
            ]
        )
        debited = [r for r in results if isinstance(r, BalanceTransaction)]
        refused = [r for r in results if isinstance(r, InsufficientBalance)]
        self.assertEqual((len(debited), len(refused)), (10, 6), results)

        with self.Session() as session:
            self.assertEqual(ledger.get_balance(session, self.account_id), Decimal("0.00"))
            self.assertTrue(ledger.verify_ledger(session, self.account_id).ok)


class ConcurrentClaimResolutionTests(FileDatabaseTestCase):
    def setUp(self):
        super().setUp()
        with self.Session.begin() as session:
            agent = self.make_account(session, "agent01", balance="100.00")
            admin = self.make_account(session, "admin", AccountRole.ADMIN)
            draw = self.make_open_draw(session)
            ticket = place_ticket(
                session,
                agent.id,
                draw.id,
                [BetLine("straight", "123", "10.00")],
                now=BETTING_NOW,
            )
            close_draw(session, draw.id)
            submit_result(session, draw.id, "123", SYSTEM)
            claim = claims.request_claim(session, ticket.ticket_number, "Juan dela Cruz")

            self.agent_id = agent.id
            self.admin = Actor.for_account(admin)
            self.claim_id = claim.id

    def test_only_one_resolution_wins(self):
        def decide(decision: str):
            return partial(
                workflows.run_in_transaction,
                self.Session,
                workflows.resolve_claim,
                self.claim_id,
                decision,
                self.admin,
                reason="duplicate presentation" if decision == "reject" else None,
            )

        results = self.race([decide("approve"), decide("reject")] * 3)
        resolved = [r for r in results if isinstance(r, ClaimRequest)]
        refused = [r for r in results if isinstance(r, ClaimAlreadyResolved)]
        self.assertEqual((len(resolved), len(refused)), (1, 5), results)
        outcome = resolved[0].status

        with self.Session() as session:
            claim = session.get(ClaimRequest, self.claim_id)
            self.assertEqual(claim.status, outcome)
            payouts = ledger.list_transactions(
                session, self.agent_id, kinds=[TransactionKind.PAYOUT]
            )
            decisions = [
                entry
                for entry in audit.history(session, claim_id=self.claim_id)
                if entry.action in (AuditAction.CLAIM_APPROVED, AuditAction.CLAIM_REJECTED)
            ]
            self.assertEqual(len(decisions), 1)

            if outcome == ClaimStatus.APPROVED:
                self.assertEqual([p.amount for p in payouts], [Decimal("4500.00")])
                self.assertEqual(ledger.get_balance(session, self.agent_id), Decimal("4590.00"))
            else:
                self.assertEqual(outcome, ClaimStatus.REJECTED)
                self.assertEqual(payouts, [])
                self.assertEqual(ledger.get_balance(session, self.agent_id), Decimal("90.00"))
            self.assertTrue(ledger.verify_ledger(session, self.agent_id).ok)


if __name__ == "__main__":
    unittest.main()

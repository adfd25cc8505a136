import unittest
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from lotto3d import ledger, workflows
from lotto3d.auth import Actor, has_capability
from lotto3d.draws import close_draw
from lotto3d.errors import (
    InsufficientBalance,
    InvalidBet,
    PermissionDenied,
    TransientStorageError,
)
from lotto3d.models import Account, AccountRole, ClaimStatus, TransactionKind

from lotto_fixtures import BETTING_NOW, SYSTEM, LotteryTestCase


class RunInTransactionTests(LotteryTestCase):
    def test_commits_on_success(self):
        def create(session, username):
            account = Account(username, AccountRole.AGENT)
            session.add(account)
            session.flush()
            return account.id

        account_id = workflows.run_in_transaction(self.Session, create, "agent01")
        with self.Session() as session:
            self.assertIsNotNone(session.get(Account, account_id))

    def test_storage_failure_becomes_transient_error(self):
        def broken(session):
            session.add(Account("agent01", AccountRole.AGENT))
            session.flush()
            raise OperationalError("UPDATE accounts", {}, Exception("disk I/O error"))

        with self.assertLogs("lotto3d.workflows", level="ERROR"):
            with self.assertRaises(TransientStorageError):
                workflows.run_in_transaction(self.Session, broken)
        with self.Session() as session:
            self.assertIsNone(session.scalar(select(Account.id)))

    def test_domain_errors_pass_through(self):
        def refuse(session):
            raise InvalidBet("nope")

        with self.assertRaises(InvalidBet):
            workflows.run_in_transaction(self.Session, refuse)


class BalanceWorkflowTests(LotteryTestCase):
    def setUp(self):
        super().setUp()
        with self.Session.begin() as session:
            admin = self.make_account(session, "admin", AccountRole.ADMIN)
            area = self.make_account(session, "area", AccountRole.AREA_COORDINATOR)
            coord = self.make_account(session, "coord", AccountRole.COORDINATOR, parent=area)
            agent = self.make_account(session, "agent01", parent=coord)
            stranger = self.make_account(session, "agent02")
            self.ids = {
                "admin": admin.id,
                "area": area.id,
                "coord": coord.id,
                "agent": agent.id,
                "stranger": stranger.id,
            }
            self.actors = {
                "admin": Actor.for_account(admin),
                "area": Actor.for_account(area),
                "coord": Actor.for_account(coord),
                "agent": Actor.for_account(agent),
            }

    def test_admin_loads_from_the_house(self):
        with self.Session.begin() as session:
            coord = workflows.load_balance(
                session, self.ids["coord"], "1000.00", self.actors["admin"], "weekly float"
            )
            self.assertEqual(coord.current_balance, Decimal("1000.00"))
            entry = ledger.list_transactions(session, self.ids["coord"])[0]
            self.assertEqual(entry.kind, TransactionKind.LOAD)
            self.assertEqual(entry.processed_by_id, self.ids["admin"])

    def test_coordinator_loads_out_of_own_balance(self):
        with self.Session.begin() as session:
            workflows.load_balance(session, self.ids["coord"], "500.00", self.actors["admin"])
            agent = workflows.load_balance(
                session, self.ids["agent"], "200.00", self.actors["coord"]
            )
            self.assertEqual(agent.current_balance, Decimal("200.00"))
            self.assertEqual(ledger.get_balance(session, self.ids["coord"]), Decimal("300.00"))

            with self.assertRaises(InsufficientBalance):
                workflows.load_balance(session, self.ids["agent"], "301.00", self.actors["coord"])
            self.assertEqual(ledger.get_balance(session, self.ids["agent"]), Decimal("200.00"))

    def test_area_coordinator_reaches_indirect_subordinates(self):
        with self.Session.begin() as session:
            workflows.load_balance(session, self.ids["area"], "100.00", self.actors["admin"])
            workflows.load_balance(session, self.ids["agent"], "40.00", self.actors["area"])
            self.assertEqual(ledger.get_balance(session, self.ids["agent"]), Decimal("40.00"))

    def test_loads_outside_the_hierarchy_are_refused(self):
        with self.Session.begin() as session:
            workflows.load_balance(session, self.ids["coord"], "500.00", self.actors["admin"])
            with self.assertRaises(PermissionDenied):
                workflows.load_balance(session, self.ids["stranger"], "10.00", self.actors["coord"])
            with self.assertRaises(PermissionDenied):
                workflows.load_balance(session, self.ids["agent"], "10.00", self.actors["agent"])
            with self.assertRaises(PermissionDenied):
                workflows.load_balance(session, self.ids["admin"], "10.00", self.actors["admin"])
            # SYSTEM is a superadmin and may load anyone.
            workflows.load_balance(session, self.ids["admin"], "10.00", SYSTEM)

    def test_deduct_is_admin_only(self):
        with self.Session.begin() as session:
            workflows.load_balance(session, self.ids["agent"], "50.00", self.actors["admin"])
            with self.assertRaises(PermissionDenied):
                workflows.deduct_balance(session, self.ids["agent"], "5.00", self.actors["coord"])
            agent = workflows.deduct_balance(
                session, self.ids["agent"], "5.00", self.actors["admin"], "correction"
            )
            self.assertEqual(agent.current_balance, Decimal("45.00"))

    def test_capabilities_for_the_ui(self):
        self.assertTrue(has_capability(self.actors["coord"], "balance.load"))
        self.assertFalse(has_capability(self.actors["agent"], "balance.load"))
        self.assertFalse(has_capability(None, "bet.place"))
        self.assertTrue(has_capability(SYSTEM, "balance.overdraft"))
        self.assertFalse(has_capability(self.actors["admin"], "balance.overdraft"))


class EndToEndTests(LotteryTestCase):
    def test_sell_settle_claim(self):
        with self.Session.begin() as session:
            agent = self.make_account(session, "agent01", balance="100.00")
            admin = self.make_account(session, "admin", AccountRole.ADMIN)
            draw = self.make_open_draw(session)
            agent_id, draw_id = agent.id, draw.id
            admin_actor = Actor.for_account(admin)

        ticket = workflows.run_in_transaction(
            self.Session, workflows.place_bet, agent_id, draw_id, "straight", "123", "10.00",
            now=BETTING_NOW,
        )
        with self.Session.begin() as session:
            status = workflows.get_bet_limit_status(session, draw_id)
            self.assertEqual(
                {s.bet_type.value: s.current_total for s in status},
                {"straight": Decimal("10.00"), "rambolito": Decimal("0.00")},
            )
            close_draw(session, draw_id)

        summary = workflows.settle_draw(self.Session, draw_id, "123", admin_actor)
        self.assertEqual(summary.total_payout, Decimal("4500.00"))

        claim = workflows.run_in_transaction(
            self.Session, workflows.request_claim, ticket.ticket_number, "Maria"
        )
        resolved = workflows.run_in_transaction(
            self.Session, workflows.resolve_claim, claim.id, "approve", admin_actor
        )
        self.assertEqual(resolved.status, ClaimStatus.APPROVED)

        with self.Session() as session:
            self.assertEqual(ledger.get_balance(session, agent_id), Decimal("4590.00"))
            self.assertTrue(ledger.verify_ledger(session, agent_id).ok)


if __name__ == "__main__":
    unittest.main()

import unittest
from decimal import Decimal

from sqlalchemy import func, select

from lotto3d import admission, audit, ledger
from lotto3d.auth import Actor
from lotto3d.errors import (
    BetLimitExceeded,
    DrawNotOpen,
    InsufficientBalance,
    InvalidBet,
    InvalidTicketNumber,
    PermissionDenied,
    TicketNotActive,
    TicketNotFound,
)
from lotto3d.models import (
    Account,
    AccountRole,
    AuditAction,
    BetType,
    CombinationExposure,
    Ticket,
    TicketStatus,
    TransactionKind,
)
from lotto3d.tickets import BetLine, get_ticket, list_tickets, place_ticket, void_ticket

from lotto_fixtures import AFTER_CUTOFF, BETTING_NOW, SYSTEM, LotteryTestCase

PRESET_NUMBER = "17604000000001234"


class PlaceTicketTests(LotteryTestCase):
    def setUp(self):
        super().setUp()
        with self.Session.begin() as session:
            self.agent_id = self.make_account(session, "agent01", balance="100.00").id
            self.draw_id = self.make_open_draw(
                session, limits={BetType.STRAIGHT: "50.00", BetType.RAMBOLITO: "50.00"}
            ).id

    def _place(self, session, lines, **kwargs):
        kwargs.setdefault("now", BETTING_NOW)
        return place_ticket(session, self.agent_id, self.draw_id, lines, **kwargs)

    def _straight_total(self, session) -> Decimal:
        status = {s.bet_type: s for s in admission.get_bet_limit_status(session, self.draw_id)}
        return status[BetType.STRAIGHT].current_total

    def test_multi_bet_ticket_charges_the_agent(self):
        with self.Session.begin() as session:
            ticket = self._place(
                session,
                [
                    BetLine("straight", "123", "10.00"),
                    {"bet_type": "rambol", "combination": "456", "amount": "5"},
                ],
            )
            self.assertEqual(len(ticket.ticket_number), 17)
            self.assertEqual(ticket.status, TicketStatus.ACTIVE)
            self.assertEqual(ticket.total_amount, Decimal("15.00"))
            self.assertEqual([b.sequence for b in ticket.bets], ["A", "B"])
            self.assertEqual(ticket.bets[1].bet_type, BetType.RAMBOLITO)
            self.assertEqual(ledger.get_balance(session, self.agent_id), Decimal("85.00"))

            sale = ledger.list_transactions(
                session, self.agent_id, kinds=[TransactionKind.SALE]
            )[0]
            self.assertEqual(sale.reference, ticket.ticket_number)
            self.assertEqual(sale.amount, Decimal("-15.00"))

            sold = audit.history(session, ticket.id, AuditAction.TICKET_SOLD)
            self.assertEqual(len(sold), 1)
            self.assertEqual(sold[0].details["total_amount"], "15.00")
            self.assertEqual(sold[0].details["bets"][1]["bet_type"], "rambolito")

    def test_short_ticket_number_is_refused(self):
        with self.Session.begin() as session:
            with self.assertRaises(InvalidTicketNumber):
                self._place(session, [BetLine("straight", "123", "1.00")], ticket_number="123")
            with self.assertRaises(InvalidTicketNumber):
                get_ticket(session, "123")
            self.assertEqual(self._straight_total(session), Decimal("0.00"))

    def test_preset_ticket_number_is_used_once(self):
        with self.Session.begin() as session:
            ticket = self._place(
                session, [BetLine("straight", "123", "1.00")], ticket_number=PRESET_NUMBER
            )
            self.assertEqual(ticket.ticket_number, PRESET_NUMBER)
            with self.assertRaises(InvalidTicketNumber):
                self._place(
                    session, [BetLine("straight", "124", "1.00")], ticket_number=PRESET_NUMBER
                )

    def test_insufficient_balance_leaves_no_exposure(self):
        with self.Session.begin() as session:
            poor = self.make_account(session, "agent02", balance="5.00")
            with self.assertRaises(InsufficientBalance):
                place_ticket(
                    session,
                    poor.id,
                    self.draw_id,
                    [BetLine("straight", "123", "4.00"), BetLine("rambolito", "123", "4.00")],
                    now=BETTING_NOW,
                )
            self.assertEqual(self._straight_total(session), Decimal("0.00"))
            self.assertEqual(session.scalar(select(func.count(Ticket.id))), 0)
            self.assertEqual(session.scalar(select(func.count(CombinationExposure.id))), 0)
            self.assertEqual(ledger.get_balance(session, poor.id), Decimal("5.00"))

    def test_rejected_line_undoes_earlier_lines(self):
        with self.Session.begin() as session:
            with self.assertRaises(BetLimitExceeded):
                self._place(
                    session,
                    [BetLine("straight", "123", "30.00"), BetLine("straight", "456", "30.00")],
                )
            self.assertEqual(self._straight_total(session), Decimal("0.00"))
            self.assertEqual(ledger.get_balance(session, self.agent_id), Decimal("100.00"))

    def test_invalid_lines(self):
        cases = [
            [BetLine("rambolito", "777", "1.00")],
            [BetLine("straight", "12", "1.00")],
            [BetLine("straight", "123", "0.50")],
            [BetLine("straight", "123", "10001")],
            [BetLine("straight", "123", 1.5)],
            [BetLine("pick4", "123", "1.00")],
            [{"bet_type": "straight", "combination": "123"}],
            [],
            [BetLine("straight", "123", "1.00")] * 27,
        ]
        with self.Session.begin() as session:
            for lines in cases:
                with self.subTest(lines=lines[:1]):
                    with self.assertRaises(InvalidBet):
                        self._place(session, lines)

    def test_after_cutoff_the_draw_refuses_bets(self):
        with self.Session.begin() as session:
            with self.assertRaises(DrawNotOpen):
                self._place(session, [BetLine("straight", "123", "1.00")], now=AFTER_CUTOFF)

    def test_inactive_agent_cannot_sell(self):
        with self.Session.begin() as session:
            agent = self.make_account(session, "agent02", balance="10.00")
            agent.is_active = False
            session.flush()
            with self.assertRaises(PermissionDenied):
                place_ticket(
                    session, agent.id, self.draw_id, [BetLine("straight", "123", "1.00")],
                    now=BETTING_NOW,
                )

    def test_lookup_and_listing(self):
        with self.Session.begin() as session:
            first = self._place(session, [BetLine("straight", "123", "1.00")])
            second = self._place(session, [BetLine("straight", "321", "1.00")])
            self.assertEqual(get_ticket(session, f" {first.ticket_number} ").id, first.id)
            with self.assertRaises(TicketNotFound):
                get_ticket(session, "99999999999999999")
            listed = list_tickets(session, account_id=self.agent_id)
            self.assertEqual([t.id for t in listed], [second.id, first.id])
            self.assertEqual(list_tickets(session, status=TicketStatus.VOIDED), [])


class VoidTicketTests(LotteryTestCase):
    def setUp(self):
        super().setUp()
        with self.Session.begin() as session:
            self.agent_id = self.make_account(session, "agent01", balance="100.00").id
            self.draw_id = self.make_open_draw(
                session, limits={BetType.STRAIGHT: "50.00", BetType.RAMBOLITO: "50.00"}
            ).id
            self.number = place_ticket(
                session,
                self.agent_id,
                self.draw_id,
                [BetLine("straight", "123", "40.00"), BetLine("rambolito", "123", "5.00")],
                now=BETTING_NOW,
            ).ticket_number

    def test_void_restores_exposure_and_balance(self):
        with self.Session.begin() as session:
            ticket = void_ticket(session, self.number, SYSTEM, "customer changed mind", now=BETTING_NOW)
            self.assertEqual(ticket.status, TicketStatus.VOIDED)
            self.assertIsNotNone(ticket.voided_at)
            self.assertEqual(ledger.get_balance(session, self.agent_id), Decimal("100.00"))

            totals = {
                s.bet_type: s.current_total
                for s in admission.get_bet_limit_status(session, self.draw_id)
            }
            self.assertEqual(totals[BetType.STRAIGHT], Decimal("0.00"))
            self.assertEqual(totals[BetType.RAMBOLITO], Decimal("0.00"))

            refund = ledger.list_transactions(
                session, self.agent_id, kinds=[TransactionKind.REFUND]
            )[0]
            self.assertEqual(refund.amount, Decimal("45.00"))
            self.assertIn("customer changed mind", refund.note)
            self.assertEqual(
                len(audit.history(session, ticket.id, AuditAction.TICKET_VOIDED)), 1
            )

            # The released exposure can be sold again.
            place_ticket(
                session,
                self.agent_id,
                self.draw_id,
                [BetLine("straight", "999", "50.00")],
                now=BETTING_NOW,
            )

    def test_void_twice(self):
        with self.Session.begin() as session:
            void_ticket(session, self.number, SYSTEM, "misprint", now=BETTING_NOW)
            with self.assertRaises(TicketNotActive):
                void_ticket(session, self.number, SYSTEM, "misprint", now=BETTING_NOW)
            self.assertEqual(ledger.get_balance(session, self.agent_id), Decimal("100.00"))

    def test_void_after_cutoff(self):
        with self.Session.begin() as session:
            with self.assertRaises(DrawNotOpen):
                void_ticket(session, self.number, SYSTEM, "late", now=AFTER_CUTOFF)
            self.assertEqual(get_ticket(session, self.number).status, TicketStatus.ACTIVE)

    def test_void_needs_capability_and_reason(self):
        with self.Session.begin() as session:
            agent = session.get(Account, self.agent_id)
            with self.assertRaises(PermissionDenied):
                void_ticket(session, self.number, Actor.for_account(agent), "mine", now=BETTING_NOW)
            admin = self.make_account(session, "admin", AccountRole.ADMIN)
            with self.assertRaises(ValueError):
                void_ticket(session, self.number, Actor.for_account(admin), "  ", now=BETTING_NOW)


if __name__ == "__main__":
    unittest.main()

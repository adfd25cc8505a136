import unittest
from decimal import Decimal

from lotto3d import audit, claims, ledger, workflows
from lotto3d.auth import Actor
from lotto3d.claims import Claimant
from lotto3d.draws import close_draw, submit_result
from lotto3d.errors import (
    ClaimAlreadyResolved,
    ClaimNotFound,
    InvalidTicketNumber,
    NotWinningTicket,
    PermissionDenied,
    TicketAlreadyClaimed,
    TicketNotFound,
)
from lotto3d.models import (
    AccountRole,
    AuditAction,
    ClaimRequest,
    ClaimStatus,
    TicketStatus,
    TransactionKind,
)
from lotto3d.tickets import BetLine, get_ticket, place_ticket

from lotto_fixtures import BETTING_NOW, SYSTEM, LotteryTestCase


class ClaimTestCase(LotteryTestCase):
    def setUp(self):
        super().setUp()
        with self.Session.begin() as session:
            agent = self.make_account(session, "agent01", balance="100.00")
            admin = self.make_account(session, "admin", AccountRole.ADMIN)
            draw = self.make_open_draw(session)
            winner = place_ticket(
                session,
                agent.id,
                draw.id,
                [BetLine("straight", "123", "10.00"), BetLine("rambolito", "321", "2.00")],
                now=BETTING_NOW,
            )
            loser = place_ticket(
                session, agent.id, draw.id, [BetLine("straight", "555", "5.00")], now=BETTING_NOW
            )
            close_draw(session, draw.id)
            submit_result(session, draw.id, "123", SYSTEM)

            self.agent_id = agent.id
            self.agent = Actor.for_account(agent)
            self.admin = Actor.for_account(admin)
            self.winning_number = winner.ticket_number
            self.losing_number = loser.ticket_number

    def _request(self, session, name="Juan dela Cruz"):
        return claims.request_claim(
            session,
            self.winning_number,
            Claimant(name=name, contact="09171234567"),
            actor=self.agent,
        )


class RequestClaimTests(ClaimTestCase):
    def test_request_records_calculated_prize(self):
        with self.Session.begin() as session:
            claim = self._request(session)
            self.assertEqual(claim.status, ClaimStatus.PENDING)
            # 10 x 450 straight plus 2 x 75 distinct rambolito.
            self.assertEqual(claim.calculated_prize_amount, Decimal("4650.00"))
            self.assertEqual(claim.claimer_contact, "09171234567")
            self.assertEqual(claim.requested_by_id, self.agent.account_id)
            self.assertEqual(claims.list_pending_claims(session), [claim])

    def test_only_one_open_claim_per_ticket(self):
        with self.Session.begin() as session:
            self._request(session)
            with self.assertRaises(TicketAlreadyClaimed):
                self._request(session, "Someone Else")

    def test_losing_ticket(self):
        with self.Session.begin() as session:
            with self.assertRaises(NotWinningTicket):
                claims.request_claim(session, self.losing_number, "Pedro")
            ticket = get_ticket(session, self.losing_number)
            self.assertEqual(ticket.status, TicketStatus.ACTIVE)

    def test_ticket_number_checks(self):
        with self.Session.begin() as session:
            with self.assertRaises(InvalidTicketNumber):
                claims.request_claim(session, "123", "Pedro")
            with self.assertRaises(TicketNotFound):
                claims.request_claim(session, "12345678901234567", "Pedro")
            with self.assertRaises(ValueError):
                claims.request_claim(session, self.winning_number, {"name": " "})


class ResolveClaimTests(ClaimTestCase):
    def test_approval_pays_the_calculated_prize_exactly(self):
        with self.Session.begin() as session:
            claim_id = self._request(session).id

        with self.Session.begin() as session:
            claim = claims.approve(session, claim_id, self.admin)
            self.assertEqual(claim.status, ClaimStatus.APPROVED)
            self.assertEqual(claim.approved_prize_amount, claim.calculated_prize_amount)
            self.assertIsNotNone(claim.resolved_at)
            self.assertEqual(claim.resolved_by_id, self.admin.account_id)

            payout = ledger.list_transactions(
                session, self.agent_id, kinds=[TransactionKind.PAYOUT]
            )
            self.assertEqual(len(payout), 1)
            self.assertEqual(payout[0].amount, claim.calculated_prize_amount)
            self.assertEqual(payout[0].reference, self.winning_number)
            # 100 float - 12 and 5 in sales + 4650 prize.
            self.assertEqual(ledger.get_balance(session, self.agent_id), Decimal("4733.00"))
            self.assertEqual(get_ticket(session, self.winning_number).status, TicketStatus.CLAIMED)
            self.assertTrue(ledger.verify_ledger(session, self.agent_id).ok)

    def test_second_resolution_is_refused(self):
        with self.Session.begin() as session:
            claim_id = self._request(session).id
        with self.Session.begin() as session:
            claims.approve(session, claim_id, self.admin)

        with self.Session.begin() as session:
            with self.assertRaises(ClaimAlreadyResolved):
                claims.approve(session, claim_id, self.admin)
            with self.assertRaises(ClaimAlreadyResolved):
                claims.reject(session, claim_id, self.admin, "duplicate")
            with self.assertRaises(TicketAlreadyClaimed):
                self._request(session)
            payouts = ledger.list_transactions(
                session, self.agent_id, kinds=[TransactionKind.PAYOUT]
            )
            self.assertEqual(len(payouts), 1)

    def test_reject_after_approval_without_notes(self):
        with self.Session.begin() as session:
            claim_id = self._request(session).id
        with self.Session.begin() as session:
            workflows.resolve_claim(session, claim_id, "approve", self.admin)

        with self.Session.begin() as session:
            with self.assertRaises(ClaimAlreadyResolved):
                workflows.resolve_claim(session, claim_id, "reject", self.admin)
            with self.assertRaises(ClaimAlreadyResolved):
                workflows.resolve_claim(session, claim_id, "approve", self.admin)
            with self.assertRaises(ClaimAlreadyResolved):
                claims.approve(session, claim_id, self.admin, override_prize_amount="0")
            claim = session.get(ClaimRequest, claim_id)
            self.assertEqual(claim.status, ClaimStatus.APPROVED)

    def test_reject_without_notes_uses_default_reason(self):
        with self.Session.begin() as session:
            claim_id = self._request(session).id
            claim = workflows.resolve_claim(session, claim_id, "reject", self.admin)
            self.assertEqual(claim.status, ClaimStatus.REJECTED)
            self.assertEqual(claim.rejection_reason, claims.DEFAULT_REJECTION_REASON)

            noted = workflows.resolve_claim(
                session, self._request(session).id, "reject", self.admin, "smudged serial"
            )
            self.assertEqual(noted.rejection_reason, "smudged serial")

    def test_override_amount(self):
        with self.Session.begin() as session:
            claim = self._request(session)
            claims.resolve(
                session, claim.id, "approve", self.admin, "partial", override_prize_amount="4000"
            )
            payout = ledger.list_transactions(
                session, self.agent_id, kinds=[TransactionKind.PAYOUT]
            )[0]
            self.assertEqual(payout.amount, Decimal("4000.00"))
            self.assertEqual(claim.payout_amount, Decimal("4000.00"))

    def test_rejected_ticket_can_be_claimed_again(self):
        with self.Session.begin() as session:
            first = self._request(session)
            rejected = claims.resolve(
                session, first.id, "reject", self.admin, reason="ID mismatch"
            )
            self.assertEqual(rejected.status, ClaimStatus.REJECTED)
            self.assertEqual(rejected.rejection_reason, "ID mismatch")
            self.assertEqual(get_ticket(session, self.winning_number).status, TicketStatus.WON)
            self.assertEqual(
                ledger.list_transactions(session, self.agent_id, kinds=[TransactionKind.PAYOUT]),
                [],
            )

            second = self._request(session)
            self.assertNotEqual(first.id, second.id)
            self.assertEqual(second.status, ClaimStatus.PENDING)

    def test_agents_cannot_resolve(self):
        with self.Session.begin() as session:
            claim = self._request(session)
            with self.assertRaises(PermissionDenied):
                claims.approve(session, claim.id, self.agent)
            with self.assertRaises(ClaimNotFound):
                claims.approve(session, 404, self.admin)
            with self.assertRaises(ValueError):
                claims.reject(session, claim.id, self.admin, "")

    def test_audit_trail(self):
        with self.Session.begin() as session:
            claim = self._request(session)
            claims.approve(session, claim.id, self.admin, notes="verified ID")
            ticket = get_ticket(session, self.winning_number)
            actions = [entry.action for entry in audit.history(session, ticket.id)]
            self.assertEqual(
                actions,
                [
                    AuditAction.TICKET_SOLD,
                    AuditAction.CLAIM_REQUESTED,
                    AuditAction.CLAIM_APPROVED,
                    AuditAction.PAYOUT,
                ],
            )
            approved = audit.history(session, claim_id=claim.id, action="CLAIM_APPROVED")[0]
            self.assertEqual(approved.performed_by_id, self.admin.account_id)
            self.assertEqual(approved.notes, "verified ID")
            self.assertEqual(approved.details["approved_prize_amount"], "4650.00")

    def test_claim_stats(self):
        with self.Session.begin() as session:
            claim = self._request(session)
            claims.reject(session, claim.id, self.admin, "blurred ticket")
            claim = self._request(session)
            claims.approve(session, claim.id, self.admin)

            stats = claims.claim_stats(session)
            self.assertEqual(stats.pending, 0)
            self.assertEqual(stats.approved, 1)
            self.assertEqual(stats.rejected, 1)
            self.assertIsNotNone(stats.average_approval_hours)


if __name__ == "__main__":
    unittest.main()

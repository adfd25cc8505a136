import unittest
from decimal import Decimal

from sqlalchemy import select, text

from lotto3d import ledger
from lotto3d.auth import Actor
from lotto3d.errors import (
    AccountNotFound,
    ImmutableRecordError,
    InsufficientBalance,
    PermissionDenied,
)
from lotto3d.models import AccountRole, BalanceTransaction, TransactionKind

from lotto_fixtures import SYSTEM, LotteryTestCase


class LedgerMutationTests(LotteryTestCase):
    def test_load_credits_balance_and_appends_entry(self):
        with self.Session.begin() as session:
            agent = self.make_account(session, "agent01")
            tx = ledger.load(session, agent.id, "250.50", SYSTEM, "float")

            self.assertEqual(tx.amount, Decimal("250.50"))
            self.assertEqual(tx.kind, TransactionKind.LOAD)
            self.assertEqual(tx.balance_after, Decimal("250.50"))
            self.assertIsNone(tx.prev_hash)
            self.assertEqual(len(tx.entry_hash), 64)
            self.assertEqual(agent.current_balance, Decimal("250.50"))
            self.assertEqual(ledger.get_balance(session, agent.id), Decimal("250.50"))

    def test_deduct_beyond_balance_changes_nothing(self):
        with self.Session.begin() as session:
            agent = self.make_account(session, "agent01", balance="100.00")
            with self.assertRaises(InsufficientBalance):
                ledger.deduct(session, agent.id, "150.00", SYSTEM)
            self.assertEqual(ledger.get_balance(session, agent.id), Decimal("100.00"))
            self.assertEqual(len(ledger.list_transactions(session, agent.id)), 1)

    def test_overdraft_needs_superadmin(self):
        with self.Session.begin() as session:
            admin = self.make_account(session, "admin", AccountRole.ADMIN)
            agent = self.make_account(session, "agent01", balance="10.00")
            admin_actor = Actor.for_account(admin)

            with self.assertRaises(PermissionDenied):
                ledger.deduct(session, agent.id, "50.00", admin_actor, allow_overdraft=True)

            tx = ledger.deduct(session, agent.id, "50.00", SYSTEM, "correction", allow_overdraft=True)
            self.assertEqual(tx.balance_after, Decimal("-40.00"))
            self.assertEqual(ledger.get_balance(session, agent.id), Decimal("-40.00"))

    def test_hash_chain_links_consecutive_entries(self):
        with self.Session.begin() as session:
            agent = self.make_account(session, "agent01")
            first = ledger.load(session, agent.id, "100.00", SYSTEM)
            second = ledger.deduct(session, agent.id, "30.00", SYSTEM)
            self.assertEqual(second.prev_hash, first.entry_hash)
            self.assertEqual(second.amount, Decimal("-30.00"))
            self.assertEqual(second.balance_after, Decimal("70.00"))

    def test_transfer_moves_funds_between_accounts(self):
        with self.Session.begin() as session:
            coord = self.make_account(session, "coord", AccountRole.COORDINATOR, balance="500.00")
            agent = self.make_account(session, "agent01", parent=coord)
            debit, credit = ledger.transfer(
                session, coord.id, agent.id, "200.00", Actor.for_account(coord)
            )
            self.assertEqual(debit.amount, Decimal("-200.00"))
            self.assertEqual(credit.amount, Decimal("200.00"))
            self.assertEqual(ledger.get_balance(session, coord.id), Decimal("300.00"))
            self.assertEqual(ledger.get_balance(session, agent.id), Decimal("200.00"))

    def test_failed_transfer_leaves_no_credit(self):
        with self.Session.begin() as session:
            agent = self.make_account(session, "agent01")
            coord = self.make_account(session, "coord", AccountRole.COORDINATOR, balance="50.00")
            # agent.id < coord.id, so the credit leg runs first and must be undone.
            with self.assertRaises(InsufficientBalance):
                ledger.transfer(session, coord.id, agent.id, "80.00", Actor.for_account(coord))
            self.assertEqual(ledger.get_balance(session, agent.id), Decimal("0.00"))
            self.assertEqual(ledger.list_transactions(session, agent.id), [])
            self.assertEqual(ledger.get_balance(session, coord.id), Decimal("50.00"))

    def test_sale_refund_and_commission_kinds(self):
        with self.Session.begin() as session:
            agent = self.make_account(session, "agent01", balance="100.00")
            ledger.charge_sale(session, agent.id, "20.00", "17604000000001234")
            ledger.refund_sale(session, agent.id, "20.00", "17604000000001234", reason="typo")
            ledger.credit_commission(session, agent.id, "1.50", reference="2026-10")
            kinds = [
                tx.kind
                for tx in ledger.list_transactions(
                    session,
                    agent.id,
                    kinds=[TransactionKind.SALE, TransactionKind.REFUND, TransactionKind.COMMISSION],
                )
            ]
            self.assertEqual(
                kinds,
                [TransactionKind.SALE, TransactionKind.REFUND, TransactionKind.COMMISSION],
            )
            self.assertEqual(ledger.get_balance(session, agent.id), Decimal("101.50"))

    def test_rejects_float_and_non_positive_amounts(self):
        with self.Session.begin() as session:
            agent = self.make_account(session, "agent01")
            with self.assertRaises(TypeError):
                ledger.load(session, agent.id, 10.5, SYSTEM)
            with self.assertRaises(ValueError):
                ledger.load(session, agent.id, "0", SYSTEM)
            with self.assertRaises(ValueError):
                ledger.load(session, agent.id, "1.005", SYSTEM)

    def test_unknown_account(self):
        with self.Session.begin() as session:
            with self.assertRaises(AccountNotFound):
                ledger.load(session, 999, "10.00", SYSTEM)
            with self.assertRaises(AccountNotFound):
                ledger.get_balance(session, 999)


class LedgerIntegrityTests(LotteryTestCase):
    def _seed(self):
        with self.Session.begin() as session:
            agent = self.make_account(session, "agent01")
            ledger.load(session, agent.id, "500.00", SYSTEM)
            ledger.deduct(session, agent.id, "120.25", SYSTEM)
            ledger.payout(session, agent.id, "4500.00", "17604000000001234")
            return agent.id

    def test_balance_equals_sum_of_transactions(self):
        agent_id = self._seed()
        with self.Session() as session:
            result = ledger.verify_ledger(session, agent_id)
            self.assertTrue(result.ok)
            self.assertEqual(result.entries, 3)
            self.assertEqual(result.ledger_total, Decimal("4879.75"))
            self.assertEqual(result.current_balance, Decimal("4879.75"))

    def test_rewritten_entry_breaks_the_chain(self):
        agent_id = self._seed()
        with self.Session.begin() as session:
            second = session.scalars(
                select(BalanceTransaction)
                .where(BalanceTransaction.account_id == agent_id)
                .order_by(BalanceTransaction.id)
            ).all()[1]
            # Out-of-band edit: -120.25 becomes -20.25 (stored in centavos).
            session.execute(
                text("UPDATE balance_transactions SET amount = -2025 WHERE id = :id"),
                {"id": second.id},
            )
            result = ledger.verify_ledger(session, agent_id)
            self.assertFalse(result.ok)
            self.assertFalse(result.chain_intact)
            self.assertEqual(result.first_broken_id, second.id)

    def test_cached_balance_drift_is_detected(self):
        agent_id = self._seed()
        with self.Session.begin() as session:
            session.execute(
                text("UPDATE accounts SET current_balance = current_balance + 100 WHERE id = :id"),
                {"id": agent_id},
            )
            result = ledger.verify_ledger(session, agent_id)
            self.assertTrue(result.chain_intact)
            self.assertFalse(result.balanced)

    def test_entries_refuse_orm_update(self):
        agent_id = self._seed()
        with self.assertRaises(ImmutableRecordError):
            with self.Session.begin() as session:
                tx = ledger.list_transactions(session, agent_id)[0]
                tx.note = "edited"
                session.flush()

    def test_entries_refuse_orm_delete(self):
        agent_id = self._seed()
        with self.assertRaises(ImmutableRecordError):
            with self.Session.begin() as session:
                tx = ledger.list_transactions(session, agent_id)[0]
                session.delete(tx)
                session.flush()


if __name__ == "__main__":
    unittest.main()

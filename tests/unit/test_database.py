"""Tests for database storage layer."""

import pytest

from rotor.storage.database import (
    DatabaseManager,
    DepositRecord,
    DepositState,
    get_db_manager,
    reset_db_manager,
)
from rotor.exceptions import DepositNotFoundError

COMMITMENT = "0x" + "0a" * 32


class TestDatabaseManager:
    """Test database manager initialization."""

    def test_database_creation(self, db_manager):
        """Test database creation."""
        assert db_manager.engine is not None
        assert db_manager.SessionLocal is not None

    def test_get_session(self, db_manager):
        """Test getting a session."""
        session = db_manager.get_session()
        assert session is not None
        session.close()

    def test_default_manager_is_shared(self, tmp_path):
        reset_db_manager()
        try:
            first = get_db_manager(f"sqlite:///{tmp_path / 'shared.db'}")
            assert get_db_manager() is first
        finally:
            first.engine.dispose()
            reset_db_manager()


class TestDepositOperations:
    """Test deposit saga records."""

    def test_create_deposit(self, db_manager, depositor):
        with db_manager.get_session() as session:
            record = db_manager.create_deposit(session, depositor, 10_000_000, COMMITMENT)
            assert record.id
            assert record.state == DepositState.PENDING
            assert record.amount == "10000000"
            assert record.amount_units == 10_000_000
            assert record.fund_tx_hash is None

    def test_large_amount_is_exact(self, db_manager, depositor):
        amount = 2**128 - 1
        with db_manager.get_session() as session:
            record = db_manager.create_deposit(session, depositor, amount, COMMITMENT)
        with db_manager.get_session() as session:
            assert db_manager.get_deposit(session, record.id).amount_units == amount

    def test_get_nonexistent_deposit(self, db_manager):
        with db_manager.get_session() as session:
            assert db_manager.get_deposit(session, "missing") is None
            with pytest.raises(DepositNotFoundError):
                db_manager.require_deposit(session, "missing")

    def test_update_deposit(self, db_manager, depositor):
        with db_manager.get_session() as session:
            record = db_manager.create_deposit(session, depositor, 5, COMMITMENT)
            db_manager.update_deposit(
                session, record.id, state=DepositState.FUNDED, fund_tx_hash="aa" * 32
            )
        with db_manager.get_session() as session:
            stored = db_manager.require_deposit(session, record.id)
            assert stored.state == DepositState.FUNDED
            assert stored.fund_tx_hash == "aa" * 32

    def test_list_by_state(self, db_manager, depositor):
        with db_manager.get_session() as session:
            first = db_manager.create_deposit(session, depositor, 1, COMMITMENT)
            db_manager.create_deposit(session, depositor, 2, COMMITMENT)
            db_manager.update_deposit(session, first.id, state=DepositState.COMMITTED)

            assert len(db_manager.list_deposits(session)) == 2
            committed = db_manager.list_deposits(session, DepositState.COMMITTED)
            assert [r.id for r in committed] == [first.id]
            assert isinstance(committed[0], DepositRecord)

    def test_repr(self, db_manager, depositor):
        with db_manager.get_session() as session:
            record = db_manager.create_deposit(session, depositor, 1, COMMITMENT)
            assert "pending" in repr(record)


class TestWithdrawalLog:
    """Test the withdrawal audit log."""

    def test_add_and_query(self, db_manager, recipient):
        nullifier_hash = "0x" + "01" * 32
        with db_manager.get_session() as session:
            db_manager.add_withdrawal_log(
                session, state="rejected", nullifier_hash=nullifier_hash,
                recipient=recipient, error="Proof verification failed",
            )
            db_manager.add_withdrawal_log(
                session, state="confirmed", nullifier_hash=nullifier_hash,
                recipient=recipient, amount=10_000_000, tx_hash="cd" * 32,
            )
            db_manager.add_withdrawal_log(session, state="rejected", error="bad shape")

        with db_manager.get_session() as session:
            logs = db_manager.get_withdrawal_logs(session, nullifier_hash=nullifier_hash)
            assert [log.state for log in logs] == ["confirmed", "rejected"]
            assert logs[0].amount == "10000000"
            assert len(db_manager.get_withdrawal_logs(session)) == 3
            assert len(db_manager.get_withdrawal_logs(session, limit=1)) == 1

    def test_lookup_by_tx(self, db_manager):
        with db_manager.get_session() as session:
            db_manager.add_withdrawal_log(session, state="failed", tx_hash="ef" * 32, error="timeout")
            entry = db_manager.get_withdrawal_log_by_tx(session, "ef" * 32)
            assert entry.state == "failed"
            assert db_manager.get_withdrawal_log_by_tx(session, "00" * 32) is None


def test_separate_databases_are_isolated(tmp_path, depositor):
    first = DatabaseManager(f"sqlite:///{tmp_path / 'a.db'}")
    second = DatabaseManager(f"sqlite:///{tmp_path / 'b.db'}")
    for db in (first, second):
        db.create_tables()
    with first.get_session() as session:
        first.create_deposit(session, depositor, 1, COMMITMENT)
    with second.get_session() as session:
        assert second.list_deposits(session) == []
    first.engine.dispose()
    second.engine.dispose()

"""
Two-phase deposit saga.

A deposit is a fund transfer into the pool followed by recording the note's
commitment as a leaf. The two ledger calls are not atomic, so progress is
persisted after each step:

    pending --fund confirmed--> funded --commit confirmed--> committed
       |
       +--fund failed--> failed

A transaction hash is stored before waiting on it. Resuming a deposit
re-queries that transaction instead of submitting a second one, so funds
are never moved twice.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from rotor.core.commitment import Note
from rotor.core.field import FieldCodec, base_address
from rotor.ledger.gateway import (
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    LedgerGateway,
    TxHandle,
    TxOutcome,
    TxStatus,
)
from rotor.storage.database import DatabaseManager, DepositRecord, DepositState
from rotor.exceptions import DepositError, LedgerRejectedError

logger = logging.getLogger(__name__)

STEP_FUND = "fund"
STEP_COMMIT = "commit"


class DepositSaga:
    """Drives deposits through fund and commit, persisting each phase."""

    def __init__(
        self,
        ledger: LedgerGateway,
        db: DatabaseManager,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.ledger = ledger
        self.db = db
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval

    def _await(self, tx_hash: str) -> TxOutcome:
        return self.ledger.await_confirmation(
            TxHandle(tx_hash=tx_hash),
            timeout=self.confirmation_timeout,
            interval=self.poll_interval,
        )

    def start(self, depositor: str, note: Note) -> DepositRecord:
        """
        Record a new pending deposit for ``note``.

        Raises:
            InvalidAddressError: If depositor is not a valid address
        """
        base_address(depositor)
        with self.db.get_session() as session:
            record = self.db.create_deposit(
                session,
                depositor=depositor,
                amount=note.amount,
                commitment=FieldCodec.to_hex(note.commitment),
            )
        logger.info("Deposit %s started for %s", record.id, depositor)
        return record

    def _fail_step(self, session: Session, record: DepositRecord, step: str, message: str,
                   state: Optional[DepositState] = None, **fields) -> DepositError:
        updates = dict(fields, last_error=message)
        if state is not None:
            updates["state"] = state
        self.db.update_deposit(session, record.id, **updates)
        funded = record.state in (DepositState.FUNDED, DepositState.COMMITTED)
        logger.error("Deposit %s failed at %s: %s", record.id, step, message)
        return DepositError(message, deposit_id=record.id, step=step, funded=funded)

    def _fund(self, session: Session, record: DepositRecord) -> None:
        if record.fund_tx_hash is None:
            try:
                handle = self.ledger.fund(record.depositor, record.amount_units)
            except LedgerRejectedError as e:
                raise self._fail_step(session, record, STEP_FUND, str(e), DepositState.FAILED) from e
            self.db.update_deposit(session, record.id, fund_tx_hash=handle.tx_hash)
        else:
            logger.info("Deposit %s: re-checking fund tx %s", record.id, record.fund_tx_hash)

        outcome = self._await(record.fund_tx_hash)
        if outcome.status == TxStatus.FAILED:
            raise self._fail_step(
                session, record, STEP_FUND, outcome.error or "fund transaction failed", DepositState.FAILED
            )
        if outcome.status == TxStatus.TIMED_OUT:
            raise self._fail_step(
                session, record, STEP_FUND, f"fund transaction {outcome.tx_hash} not confirmed"
            )

        self.db.update_deposit(session, record.id, state=DepositState.FUNDED, last_error=None)
        logger.info("Deposit %s funded (%s)", record.id, outcome.tx_hash)

    def _commit(self, session: Session, record: DepositRecord) -> None:
        if record.deposit_tx_hash is None:
            commitment = FieldCodec.from_hex(record.commitment)
            try:
                handle = self.ledger.deposit(record.depositor, commitment)
            except LedgerRejectedError as e:
                raise self._fail_step(session, record, STEP_COMMIT, str(e)) from e
            self.db.update_deposit(session, record.id, deposit_tx_hash=handle.tx_hash)
        else:
            logger.info("Deposit %s: re-checking commit tx %s", record.id, record.deposit_tx_hash)

        outcome = self._await(record.deposit_tx_hash)
        if outcome.status == TxStatus.FAILED:
            # A failed commit inserted nothing; the next resume submits again.
            raise self._fail_step(
                session, record, STEP_COMMIT, outcome.error or "deposit transaction failed",
                deposit_tx_hash=None,
            )
        if outcome.status == TxStatus.TIMED_OUT:
            raise self._fail_step(
                session, record, STEP_COMMIT, f"deposit transaction {outcome.tx_hash} not confirmed"
            )

        leaf_index = outcome.result if isinstance(outcome.result, int) else None
        self.db.update_deposit(
            session, record.id, state=DepositState.COMMITTED, leaf_index=leaf_index, last_error=None
        )
        logger.info("Deposit %s committed at leaf %s", record.id, leaf_index)

    def run(self, deposit_id: str) -> DepositRecord:
        """
        Advance a deposit until it is committed.

        Returns:
            DepositRecord: The committed record

        Raises:
            DepositNotFoundError: If no such deposit exists
            DepositError: If a step fails; ``funded`` tells whether funds moved
        """
        with self.db.get_session() as session:
            record = self.db.require_deposit(session, deposit_id)

            if record.state == DepositState.FAILED:
                raise DepositError(
                    f"Deposit {deposit_id} already failed: {record.last_error}",
                    deposit_id=deposit_id, step=STEP_FUND, funded=False,
                )
            if record.state == DepositState.PENDING:
                self._fund(session, record)
            if record.state == DepositState.FUNDED:
                self._commit(session, record)
            return record

    def resume(self, deposit_id: str) -> DepositRecord:
        """Continue an interrupted deposit from its persisted state."""
        logger.info("Resuming deposit %s", deposit_id)
        return self.run(deposit_id)

    def execute(self, depositor: str, note: Note) -> DepositRecord:
        """Start a deposit and run it to completion."""
        record = self.start(depositor, note)
        return self.run(record.id)

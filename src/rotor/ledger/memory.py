"""In-memory reference ledger.

Mirrors the pool contract: an incremental commitment tree, a ring buffer of
recent roots, a spent-nullifier set and token balances. Every write is
linearised by one lock, so the check-and-set on the spent set is atomic even
when many relayer threads redeem concurrently.
"""

import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Set

from rotor.core.field import FieldCodec, base_address
from rotor.core.merkle_tree import MerkleAccumulator, TreeConfig
from rotor.ledger.gateway import LedgerGateway, TxHandle, TxOutcome, TxStatus
from rotor.utils.hash import sha256
from rotor.exceptions import InvalidAddressError, LedgerRejectedError, RangeError

logger = logging.getLogger(__name__)

ROOT_HISTORY_SIZE = 30
POOL_ADDRESS = "pool"


@dataclass
class _PendingTx:
    outcome: TxOutcome
    polls_remaining: int


class InMemoryLedger(LedgerGateway):
    """
    Linearised reference implementation of LedgerGateway.

    Args:
        tree_config: Parameters of the commitment tree (hash, depth, zero leaf)
        pending_polls: Number of status polls a transaction reports as pending
            before its outcome becomes visible
        root_history_size: How many recent roots ``withdraw`` accepts
    """

    def __init__(
        self,
        tree_config: TreeConfig,
        pending_polls: int = 0,
        root_history_size: int = ROOT_HISTORY_SIZE,
    ):
        self.tree = MerkleAccumulator(tree_config)
        self.pending_polls = pending_polls

        self._lock = threading.Lock()
        self._counter = itertools.count()
        self._roots: Deque[bytes] = deque([self.tree.current_root()], maxlen=root_history_size)
        self._spent: Set[bytes] = set()
        self._balances: Dict[str, int] = {}
        self._transactions: Dict[str, _PendingTx] = {}

        # Message of the next write to fail on the ledger after inclusion.
        self.fail_next: Optional[str] = None

        self.withdraw_calls = 0

    # Helpers

    def _next_hash(self) -> str:
        return sha256(b"rotor.memory-tx" + next(self._counter).to_bytes(8, "big")).hex()

    @staticmethod
    def _account(address: str) -> str:
        try:
            return base_address(address)
        except InvalidAddressError as e:
            raise LedgerRejectedError(f"invalid address: {address}") from e

    def _record(self, status: TxStatus, result: Any = None, error: Optional[str] = None) -> TxHandle:
        tx_hash = self._next_hash()
        outcome = TxOutcome(status=status, tx_hash=tx_hash, result=result, error=error)
        self._transactions[tx_hash] = _PendingTx(outcome, self.pending_polls)
        return TxHandle(tx_hash=tx_hash)

    def _take_failure(self) -> Optional[TxHandle]:
        if self.fail_next is None:
            return None
        message, self.fail_next = self.fail_next, None
        logger.info("Simulated on-ledger failure: %s", message)
        return self._record(TxStatus.FAILED, error=message)

    # Token balances

    def mint(self, address: str, amount: int) -> None:
        with self._lock:
            account = self._account(address)
            self._balances[account] = self._balances.get(account, 0) + amount

    def balance_of(self, address: str) -> int:
        account = address if address == POOL_ADDRESS else self._account(address)
        with self._lock:
            return self._balances.get(account, 0)

    @property
    def pool_balance(self) -> int:
        return self.balance_of(POOL_ADDRESS)

    # LedgerGateway

    def fund(self, depositor: str, amount: int) -> TxHandle:
        account = self._account(depositor)
        with self._lock:
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise LedgerRejectedError("amount must be positive")
            if self._balances.get(account, 0) < amount:
                raise LedgerRejectedError("insufficient balance")

            failed = self._take_failure()
            if failed is not None:
                return failed

            self._balances[account] -= amount
            self._balances[POOL_ADDRESS] = self._balances.get(POOL_ADDRESS, 0) + amount
            return self._record(TxStatus.CONFIRMED)

    def deposit(self, depositor: str, commitment: bytes) -> TxHandle:
        self._account(depositor)
        with self._lock:
            if not FieldCodec.is_canonical(commitment):
                raise LedgerRejectedError("commitment is not a field element")
            if self.tree.is_full:
                raise LedgerRejectedError("merkle tree is full")

            failed = self._take_failure()
            if failed is not None:
                return failed

            leaf_index = self.tree.insert(commitment)
            self._roots.append(self.tree.current_root())
            logger.debug("Deposit: leaf=%d", leaf_index)
            return self._record(TxStatus.CONFIRMED, result=leaf_index)

    def withdraw(
        self,
        nullifier_hash: bytes,
        recipient: str,
        amount_field: bytes,
        root: Optional[bytes] = None,
    ) -> TxHandle:
        recipient_account = self._account(recipient)
        with self._lock:
            self.withdraw_calls += 1
            try:
                amount = FieldCodec.field_to_amount(amount_field)
            except (RangeError, ValueError) as e:
                raise LedgerRejectedError("invalid amount") from e
            if amount <= 0:
                raise LedgerRejectedError("amount must be positive")
            if root is not None and not self._is_known_root(root):
                raise LedgerRejectedError("unknown merkle root")
            if bytes(nullifier_hash) in self._spent:
                raise LedgerRejectedError("nullifier already spent")
            if self._balances.get(POOL_ADDRESS, 0) < amount:
                raise LedgerRejectedError("insufficient pool balance")

            failed = self._take_failure()
            if failed is not None:
                return failed

            self._spent.add(bytes(nullifier_hash))
            self._balances[POOL_ADDRESS] -= amount
            self._balances[recipient_account] = self._balances.get(recipient_account, 0) + amount
            logger.debug("Withdraw: recipient=%s, amount=%d", recipient_account, amount)
            return self._record(TxStatus.CONFIRMED)

    def _is_known_root(self, root: bytes) -> bool:
        if root == bytes(32):
            return False
        return bytes(root) in self._roots

    def is_known_root(self, root: bytes) -> bool:
        with self._lock:
            return self._is_known_root(root)

    def get_latest_root(self) -> bytes:
        with self._lock:
            return self.tree.current_root()

    def is_spent(self, nullifier_hash: bytes) -> bool:
        with self._lock:
            return bytes(nullifier_hash) in self._spent

    def get_transaction_status(self, handle: TxHandle) -> Optional[TxOutcome]:
        with self._lock:
            pending = self._transactions.get(handle.tx_hash)
            if pending is None:
                return None
            if pending.polls_remaining > 0:
                pending.polls_remaining -= 1
                return None
            return pending.outcome

    @property
    def leaves(self) -> List[bytes]:
        with self._lock:
            return list(self.tree.leaves)

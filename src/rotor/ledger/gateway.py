"""Ledger gateway interface consumed by the pool."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 2.0


class TxStatus(str, Enum):
    """Final outcome of a submitted transaction."""
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class TxHandle:
    """Reference to a transaction accepted for inclusion."""
    tx_hash: str


@dataclass(frozen=True)
class TxOutcome:
    """
    Result of waiting for a transaction.

    ``result`` carries the call's return value when the ledger reports one
    (for example the leaf index of a deposit); ``error`` the ledger's
    failure message.
    """
    status: TxStatus
    tx_hash: str
    result: Any = None
    error: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.status == TxStatus.CONFIRMED


class LedgerGateway(ABC):
    """
    External ledger capability.

    Write calls return as soon as the ledger has accepted the transaction for
    inclusion; ``await_confirmation`` observes the final outcome. A write that
    is refused before inclusion raises ``LedgerRejectedError``.
    """

    @abstractmethod
    def fund(self, depositor: str, amount: int) -> TxHandle:
        """Move ``amount`` smallest units from ``depositor`` into the pool."""

    @abstractmethod
    def deposit(self, depositor: str, commitment: bytes) -> TxHandle:
        """Record a commitment as the next leaf of the on-ledger tree."""

    @abstractmethod
    def withdraw(
        self,
        nullifier_hash: bytes,
        recipient: str,
        amount_field: bytes,
        root: Optional[bytes] = None,
    ) -> TxHandle:
        """
        Redeem a note: mark ``nullifier_hash`` spent and pay ``recipient``.

        All-or-nothing on the ledger. ``root`` is checked by ledgers that keep
        a root history; ledgers that enforce roots themselves may ignore it.
        """

    @abstractmethod
    def get_latest_root(self) -> bytes:
        """Current root of the on-ledger tree."""

    @abstractmethod
    def is_spent(self, nullifier_hash: bytes) -> bool:
        """Whether a nullifier hash has been redeemed."""

    @abstractmethod
    def get_transaction_status(self, handle: TxHandle) -> Optional[TxOutcome]:
        """Final outcome of a transaction, or None while it is still pending."""

    def await_confirmation(
        self,
        handle: TxHandle,
        timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> TxOutcome:
        """
        Poll until the transaction is final or ``timeout`` seconds pass.

        Args:
            handle: Transaction to watch
            timeout: Overall deadline in seconds
            interval: Delay between polls in seconds
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock (injectable for tests)

        Returns:
            TxOutcome: CONFIRMED, FAILED, or TIMED_OUT when the deadline passed
        """
        deadline = clock() + timeout
        while True:
            outcome = self.get_transaction_status(handle)
            if outcome is not None:
                logger.debug("Transaction %s is %s", handle.tx_hash, outcome.status.value)
                return outcome

            remaining = deadline - clock()
            if remaining <= 0:
                logger.warning("Transaction %s not confirmed after %ss", handle.tx_hash, timeout)
                return TxOutcome(status=TxStatus.TIMED_OUT, tx_hash=handle.tx_hash)
            sleep(min(interval, remaining))

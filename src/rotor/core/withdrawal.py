"""
Withdrawal orchestration.

A withdrawal request moves through:

    received -> inputs_validated -> recipient_bound -> proof_verified
             -> ledger_submitted -> confirmed | rejected | failed

Requests are rejected (no ledger interaction) until the proof is verified;
after that a failure is ``failed``. The orchestrator keeps no state between
requests: double-spend protection is the ledger's atomic spent-set, never a
local check.
"""

import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from rotor.config import NOT_CONFIGURED_MESSAGE
from rotor.core.field import FieldCodec
from rotor.crypto.proving import ProvingSystem, PublicInputs
from rotor.ledger.gateway import (
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    LedgerGateway,
    TxHandle,
    TxStatus,
)
from rotor.exceptions import (
    ConfigurationError,
    InputShapeError,
    InvalidAddressError,
    LedgerRejectedError,
    LedgerTimeoutError,
    LedgerTransactionFailedError,
    ProofInvalidError,
    RangeError,
    RecipientBindingError,
)

logger = logging.getLogger(__name__)


class WithdrawalState(str, Enum):
    """States of a single withdrawal request."""
    RECEIVED = "received"
    INPUTS_VALIDATED = "inputs_validated"
    RECIPIENT_BOUND = "recipient_bound"
    PROOF_VERIFIED = "proof_verified"
    LEDGER_SUBMITTED = "ledger_submitted"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {WithdrawalState.CONFIRMED, WithdrawalState.REJECTED, WithdrawalState.FAILED}
)


@dataclass(frozen=True)
class WithdrawalRequest:
    """Untrusted withdrawal request as received by the relayer."""

    proof: bytes
    public_inputs: Sequence
    recipient: str


@dataclass
class WithdrawalContext:
    """Per-request state and transition history."""

    state: WithdrawalState = WithdrawalState.RECEIVED
    history: List[Tuple[WithdrawalState, datetime]] = field(default_factory=list)
    nullifier_hash: Optional[str] = None
    amount_units: Optional[int] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self):
        if not self.history:
            self.history.append((self.state, datetime.now(timezone.utc)))

    def transition(self, state: WithdrawalState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Withdrawal already {self.state.value}")
        logger.info("Withdrawal %s: %s -> %s", self.nullifier_hash or "-", self.state.value, state.value)
        self.state = state
        self.history.append((state, datetime.now(timezone.utc)))

    @property
    def states(self) -> List[WithdrawalState]:
        return [state for state, _ in self.history]


@dataclass(frozen=True)
class WithdrawalResult:
    """Outcome of a confirmed withdrawal."""

    tx_hash: str
    amount: str
    amount_units: int
    recipient: str

    def to_dict(self) -> dict:
        return {
            "txHash": self.tx_hash,
            "amount": self.amount,
            "amountUnits": str(self.amount_units),
            "recipient": self.recipient,
        }


class WithdrawalOrchestrator:
    """
    Validates, binds, verifies and submits withdrawal requests.

    Args:
        proving_system: Verifier for withdrawal proofs
        ledger: Ledger gateway; None when the relayer is not configured, in
            which case verified requests fail with ConfigurationError
        confirmation_timeout: Seconds to wait for ledger confirmation
        poll_interval: Seconds between confirmation polls
        decimals: Decimals used to render amounts
        executor: Optional pool to run proof verification on
    """

    def __init__(
        self,
        proving_system: ProvingSystem,
        ledger: Optional[LedgerGateway],
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        decimals: int = 7,
        executor: Optional[Executor] = None,
    ):
        self.proving_system = proving_system
        self.ledger = ledger
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.decimals = decimals
        self.executor = executor

    def _reject(self, context: WithdrawalContext, error: Exception) -> None:
        context.error = str(error)
        context.transition(WithdrawalState.REJECTED)

    def _fail(self, context: WithdrawalContext, error: Exception) -> None:
        context.error = str(error)
        context.transition(WithdrawalState.FAILED)

    def _validate(self, request: WithdrawalRequest) -> Tuple[PublicInputs, int]:
        public_inputs = PublicInputs.parse(request.public_inputs)

        try:
            FieldCodec.address_to_field(request.recipient)
        except InvalidAddressError as e:
            raise InputShapeError("bad address", "Invalid Stellar recipient address") from e

        try:
            amount = FieldCodec.field_to_amount(public_inputs.amount_field)
        except RangeError as e:
            raise InputShapeError("bad shape", "Invalid amount in proof") from e
        if amount <= 0:
            raise InputShapeError("non-positive amount", "Amount in proof must be positive")

        if not isinstance(request.proof, (bytes, bytearray)):
            raise InputShapeError("bad shape", "proof must be a byte array")
        return public_inputs, amount

    def _check_proof(self, proof: bytes, public_inputs: PublicInputs) -> bool:
        try:
            if self.executor is not None:
                return bool(
                    self.executor.submit(self.proving_system.verify, proof, public_inputs).result()
                )
            return bool(self.proving_system.verify(proof, public_inputs))
        except (ValueError, TypeError) as e:
            logger.info("Malformed proof rejected by verifier: %s", e)
            return False

    def verify(self, proof: bytes, public_inputs: Sequence) -> bool:
        """
        Check a proof against wire-format public inputs.

        Raises:
            InputShapeError: If public inputs are not four canonical field elements
        """
        parsed = PublicInputs.parse(public_inputs)
        return self._check_proof(bytes(proof), parsed)

    def withdraw(
        self, request: WithdrawalRequest, context: Optional[WithdrawalContext] = None
    ) -> WithdrawalResult:
        """
        Run a request through the state machine.

        Args:
            request: The untrusted request
            context: Optional context to record progress into (callers that
                log the final state pass their own)

        Returns:
            WithdrawalResult: On confirmation

        Raises:
            InputShapeError: Malformed inputs, address or amount
            RecipientBindingError: Proof is bound to another recipient
            ProofInvalidError: Proof does not verify
            ConfigurationError: No ledger gateway configured
            LedgerRejectedError: Ledger refused the redemption
            LedgerTransactionFailedError: Redemption failed on the ledger
            LedgerTimeoutError: Confirmation not observed in time
        """
        context = context if context is not None else WithdrawalContext()

        # received -> inputs_validated
        try:
            public_inputs, amount = self._validate(request)
        except InputShapeError as e:
            self._reject(context, e)
            raise
        context.nullifier_hash = FieldCodec.to_hex(public_inputs.nullifier_hash)
        context.amount_units = amount
        context.transition(WithdrawalState.INPUTS_VALIDATED)

        # inputs_validated -> recipient_bound
        if public_inputs.recipient_field != FieldCodec.address_to_field(request.recipient):
            logger.warning(
                "Recipient binding mismatch for nullifier %s (recipient %s)",
                context.nullifier_hash,
                request.recipient,
            )
            error = RecipientBindingError(
                "recipient binding mismatch",
                "Proof recipient does not match the supplied Stellar address",
            )
            self._reject(context, error)
            raise error
        context.transition(WithdrawalState.RECIPIENT_BOUND)

        # recipient_bound -> proof_verified
        if not self._check_proof(bytes(request.proof), public_inputs):
            error = ProofInvalidError("proof verification failed", "Proof verification failed")
            self._reject(context, error)
            raise error
        context.transition(WithdrawalState.PROOF_VERIFIED)

        try:
            handle = self._submit(context, public_inputs, request.recipient)
        except Exception as e:
            if context.state not in TERMINAL_STATES:
                logger.exception("Unexpected error submitting withdrawal %s", context.nullifier_hash)
                self._fail(context, e)
            raise

        context.transition(WithdrawalState.CONFIRMED)
        display = FieldCodec.format_amount(amount, self.decimals)
        logger.info("Withdrawal of %s sent to %s (%s)", display, request.recipient, handle.tx_hash)
        return WithdrawalResult(
            tx_hash=handle.tx_hash,
            amount=display,
            amount_units=amount,
            recipient=request.recipient,
        )

    def _submit(self, context: WithdrawalContext, public_inputs: PublicInputs, recipient: str) -> TxHandle:
        """Submit the withdraw call and wait for its confirmation."""
        if self.ledger is None:
            error = ConfigurationError(NOT_CONFIGURED_MESSAGE)
            self._fail(context, error)
            raise error

        # proof_verified -> ledger_submitted
        try:
            handle = self.ledger.withdraw(
                public_inputs.nullifier_hash,
                recipient,
                public_inputs.amount_field,
                root=public_inputs.root,
            )
        except LedgerRejectedError as e:
            context.tx_hash = e.tx_hash
            self._fail(context, e)
            raise
        context.tx_hash = handle.tx_hash
        context.transition(WithdrawalState.LEDGER_SUBMITTED)

        # ledger_submitted -> confirmed | failed
        outcome = self.ledger.await_confirmation(
            handle, timeout=self.confirmation_timeout, interval=self.poll_interval
        )
        if outcome.status == TxStatus.TIMED_OUT:
            error = LedgerTimeoutError(
                f"Withdrawal not confirmed within {self.confirmation_timeout}s", tx_hash=handle.tx_hash
            )
            self._fail(context, error)
            raise error
        if outcome.status == TxStatus.FAILED:
            error = LedgerTransactionFailedError(
                outcome.error or "Contract withdraw call failed", tx_hash=handle.tx_hash
            )
            self._fail(context, error)
            raise error
        return handle

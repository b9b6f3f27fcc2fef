"""Custom exceptions for the Rotor privacy pool."""

from typing import Optional


class RotorError(Exception):
    """Base exception for all Rotor errors."""
    pass


class ConfigurationError(RotorError):
    """Raised when required credentials or contract identifiers are missing."""
    pass


# Cryptography Errors
class CryptoError(RotorError):
    """Base exception for cryptographic errors."""
    pass


class RangeError(CryptoError):
    """Raised when a value does not fit the scalar field or the amount domain."""
    pass


class InvalidAddressError(CryptoError):
    """Raised when a ledger address cannot be decoded."""
    pass


class NoteGenerationError(CryptoError):
    """Raised when a note cannot be derived from its secret material."""
    pass


class ConstraintViolationError(CryptoError):
    """Raised when inputs do not satisfy the withdrawal circuit."""
    pass


class ProvingError(CryptoError):
    """Raised when the proving backend fails."""
    pass


class ProvingTimeoutError(ProvingError):
    """Raised when proof generation does not finish before its deadline."""
    pass


# Merkle Tree Errors
class MerkleTreeError(RotorError):
    """Base exception for Merkle tree errors."""
    pass


class CapacityExceededError(MerkleTreeError):
    """Raised when the tree already holds 2^depth leaves."""
    pass


class InvalidLeafIndexError(MerkleTreeError):
    """Raised when leaf index is invalid."""
    pass


# Withdrawal Errors
class WithdrawalError(RotorError):
    """Base exception for withdrawal requests rejected by the relayer."""

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or reason)
        self.reason = reason


class InputShapeError(WithdrawalError):
    """Raised when a withdrawal request is malformed."""
    pass


class RecipientBindingError(WithdrawalError):
    """Raised when the proved recipient field does not match the payout address."""
    pass


class ProofInvalidError(WithdrawalError):
    """Raised when the proof is cryptographically rejected."""
    pass


# Ledger Errors
class LedgerError(RotorError):
    """Base exception for ledger interaction errors."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class LedgerRejectedError(LedgerError):
    """Raised when the ledger rejects a submission before inclusion."""
    pass


class LedgerTransactionFailedError(LedgerError):
    """Raised when an included transaction fails on the ledger."""
    pass


class LedgerTimeoutError(LedgerError):
    """Raised when confirmation is not observed before the deadline."""
    pass


# Deposit Errors
class DepositError(RotorError):
    """Raised when a deposit saga step fails.

    ``funded`` tells the caller whether the fund transfer already happened,
    so the saga can be resumed from the commit step instead of re-funding.
    """

    def __init__(self, message: str, deposit_id: str, step: str, funded: bool):
        super().__init__(message)
        self.deposit_id = deposit_id
        self.step = step
        self.funded = funded


# Storage Errors
class StorageError(RotorError):
    """Base exception for storage errors."""
    pass


class DepositNotFoundError(StorageError):
    """Raised when a deposit record is not found."""
    pass

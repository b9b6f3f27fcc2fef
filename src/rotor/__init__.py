"""Main package initialization."""

__version__ = "0.1.0"
__author__ = "Rotor Team"
__description__ = "Rotor: a shielded-transfer privacy pool and relayer for Stellar Soroban"

from .core.field import FieldCodec
from .core.merkle_tree import MerkleAccumulator, TreeConfig, AuthPath
from .core.commitment import CommitmentScheme, Note
from .core.prover import WithdrawalProver, ProofBundle
from .core.withdrawal import WithdrawalOrchestrator, WithdrawalRequest, WithdrawalResult
from .core.deposit import DepositSaga

__all__ = [
    "FieldCodec",
    "MerkleAccumulator",
    "TreeConfig",
    "AuthPath",
    "CommitmentScheme",
    "Note",
    "WithdrawalProver",
    "ProofBundle",
    "WithdrawalOrchestrator",
    "WithdrawalRequest",
    "WithdrawalResult",
    "DepositSaga",
]

"""In-process reference proving backend.

LocalProvingSystem checks the withdrawal relation directly in Python and
"proves" by signing the public inputs with an Ed25519 proving key. It is a
development and test backend: it is sound only against parties who do not
hold the proving key, and it is NOT zero-knowledge. Production relayers use
NargoProvingSystem.
"""

from typing import Optional, Sequence

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from rotor.core.field import FieldCodec
from rotor.core.merkle_tree import fold_path
from rotor.crypto.proving import PrivateInputs, ProvingSystem, PublicInputs, Witness
from rotor.utils.hash import field_hash, sha256
from rotor.exceptions import ConstraintViolationError, ProvingError

PROOF_DOMAIN = b"rotor.local-proof.v1"
PROOF_SIZE = 64


def _transcript(public_inputs: PublicInputs) -> bytes:
    return PROOF_DOMAIN + b"".join(public_inputs.as_list())


class LocalProvingSystem(ProvingSystem):
    """
    Reference backend over a domain-separated SHA-256 field hash.

    Args:
        proving_key: Ed25519 key used to sign proofs; generated when omitted.
        verification_key: Raw 32-byte Ed25519 public key. When given without a
            proving key the instance can only verify.
    """

    def __init__(
        self,
        proving_key: Optional[Ed25519PrivateKey] = None,
        verification_key: Optional[bytes] = None,
    ):
        if proving_key is None and verification_key is None:
            proving_key = Ed25519PrivateKey.generate()

        self._proving_key = proving_key
        if verification_key is not None:
            self._verification_key = Ed25519PublicKey.from_public_bytes(verification_key)
        else:
            self._verification_key = proving_key.public_key()

    @classmethod
    def from_seed(cls, seed: bytes) -> "LocalProvingSystem":
        """Deterministic backend; any seed length, hashed to a 32-byte key."""
        return cls(proving_key=Ed25519PrivateKey.from_private_bytes(sha256(seed)))

    @classmethod
    def verifier_only(cls, verification_key: bytes) -> "LocalProvingSystem":
        return cls(verification_key=verification_key)

    @property
    def verification_key(self) -> bytes:
        """Raw 32-byte Ed25519 verification key."""
        return self._verification_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def hash(self, inputs: Sequence[bytes]) -> bytes:
        for item in inputs:
            if not FieldCodec.is_canonical(item):
                raise ValueError("Hash inputs must be canonical field elements")
        return field_hash(inputs)

    def execute(self, public_inputs: PublicInputs, private_inputs: PrivateInputs) -> Witness:
        """
        Check every constraint of the withdrawal circuit.

        Raises:
            ConstraintViolationError: Naming the first constraint that fails
        """
        for name in ("nullifier", "secret"):
            if not FieldCodec.is_canonical(getattr(private_inputs, name)):
                raise ConstraintViolationError(f"{name} is not a field element")
        if len(private_inputs.siblings) != len(private_inputs.path_bits):
            raise ConstraintViolationError("Path siblings and bits differ in length")

        commitment = self.hash(
            [private_inputs.nullifier, private_inputs.secret, public_inputs.amount_field]
        )
        try:
            computed_root = fold_path(
                commitment, private_inputs.siblings, private_inputs.path_bits, self.hash_pair
            )
        except ValueError as e:
            raise ConstraintViolationError(f"Invalid authentication path: {e}") from e
        if computed_root != public_inputs.root:
            raise ConstraintViolationError("Commitment is not in the tree with the given root")

        if self.hash([private_inputs.nullifier]) != public_inputs.nullifier_hash:
            raise ConstraintViolationError("Nullifier hash does not match nullifier")

        binding = self.hash([private_inputs.secret, public_inputs.recipient_field])
        return Witness(public_inputs=public_inputs, data=binding)

    def prove(self, witness: Witness) -> bytes:
        if self._proving_key is None:
            raise ProvingError("This backend holds no proving key")
        return self._proving_key.sign(_transcript(witness.public_inputs))

    def verify(self, proof: bytes, public_inputs: PublicInputs) -> bool:
        if not isinstance(proof, (bytes, bytearray)) or len(proof) != PROOF_SIZE:
            return False
        try:
            self._verification_key.verify(bytes(proof), _transcript(public_inputs))
        except InvalidSignature:
            return False
        return True

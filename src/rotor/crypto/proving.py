"""Proving system interface consumed by the pool.

The withdrawal circuit proves knowledge of (nullifier, secret, path) such that:

    commitment     = H3(nullifier, secret, amount)
    fold(commitment, siblings, path_bits) == root
    nullifier_hash = H1(nullifier)
    binding        = H2(secret, recipient)

with public inputs [root, nullifier_hash, recipient, amount] in that order.
The hash used here MUST be the circuit's hash; a mismatch does not break
correctness of this code, it silently makes every note unprovable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple, Union

from rotor.core.field import FieldCodec
from rotor.exceptions import InputShapeError, RangeError

PUBLIC_INPUT_COUNT = 4


@dataclass(frozen=True)
class PublicInputs:
    """The four public inputs of the withdrawal circuit."""

    root: bytes
    nullifier_hash: bytes
    recipient_field: bytes
    amount_field: bytes

    def as_list(self) -> List[bytes]:
        return [self.root, self.nullifier_hash, self.recipient_field, self.amount_field]

    def to_hex_list(self) -> List[str]:
        return [FieldCodec.to_hex(value) for value in self.as_list()]

    @classmethod
    def parse(cls, values: Sequence[Union[str, bytes]]) -> "PublicInputs":
        """
        Parse public inputs from the wire (hex strings) or raw 32-byte values.

        Raises:
            InputShapeError: If there are not exactly four canonical field elements
        """
        if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
            raise InputShapeError("bad shape", "publicInputs must be a list")
        if len(values) != PUBLIC_INPUT_COUNT:
            raise InputShapeError(
                "bad shape",
                "publicInputs must contain exactly 4 elements "
                "[root, nullifierHash, recipientField, amount]"
            )

        parsed = []
        for position, value in enumerate(values):
            try:
                if isinstance(value, str):
                    element = FieldCodec.from_hex(value)
                elif isinstance(value, (bytes, bytearray)) and FieldCodec.is_canonical(value):
                    element = bytes(value)
                else:
                    raise ValueError("not a 32-byte field element")
            except (ValueError, RangeError) as e:
                raise InputShapeError(
                    "bad shape", f"publicInputs[{position}] is not a field element: {e}"
                ) from e
            parsed.append(element)

        return cls(*parsed)


@dataclass(frozen=True)
class PrivateInputs:
    """Witness-only values: the note opening and its authentication path."""

    nullifier: bytes
    secret: bytes
    siblings: Tuple[bytes, ...]
    path_bits: Tuple[bool, ...]

    def __repr__(self) -> str:
        # Never print note secrets.
        return f"PrivateInputs(path_length={len(self.siblings)})"


@dataclass(frozen=True)
class Witness:
    """Result of executing the circuit; consumed by ``prove``."""

    public_inputs: PublicInputs
    data: bytes = field(repr=False)


class ProvingSystem(ABC):
    """
    External proving capability.

    Implementations wrap a circuit backend. ``verify`` must be safe to call
    concurrently; it only reads verification-key material.
    """

    @abstractmethod
    def hash(self, inputs: Sequence[bytes]) -> bytes:
        """Arity-separated hash of field elements (H1, H2, H3, ...)."""

    @abstractmethod
    def execute(self, public_inputs: PublicInputs, private_inputs: PrivateInputs) -> Witness:
        """
        Run the circuit.

        Raises:
            ConstraintViolationError: If the inputs do not satisfy the circuit
        """

    @abstractmethod
    def prove(self, witness: Witness) -> bytes:
        """Produce an opaque proof from a witness."""

    @abstractmethod
    def verify(self, proof: bytes, public_inputs: PublicInputs) -> bool:
        """Check a proof against public inputs."""

    def hash_pair(self, left: bytes, right: bytes) -> bytes:
        """Merkle node hash H2(left, right)."""
        return self.hash([left, right])

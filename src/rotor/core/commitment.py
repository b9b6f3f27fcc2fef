"""Note commitments and nullifier hashes."""

from dataclasses import dataclass, field
from typing import Optional

from rotor.core.field import FieldCodec
from rotor.crypto.proving import ProvingSystem
from rotor.exceptions import NoteGenerationError, RangeError


@dataclass(frozen=True)
class Note:
    """
    A depositor's secret material and the values derived from it.

    ``commitment`` and ``nullifier_hash`` are always recomputed from
    (nullifier, secret, amount); they are carried here only for convenience.
    """

    nullifier: bytes = field(repr=False)
    secret: bytes = field(repr=False)
    amount: int
    commitment: bytes
    nullifier_hash: bytes

    @property
    def amount_field(self) -> bytes:
        return FieldCodec.amount_to_field(self.amount)

    def to_dict(self) -> dict:
        """Serialize the note so it can be handed to a recipient off-ledger."""
        return {
            "nullifier": FieldCodec.to_hex(self.nullifier),
            "secret": FieldCodec.to_hex(self.secret),
            "amount": str(self.amount),
            "commitment": FieldCodec.to_hex(self.commitment),
            "nullifierHash": FieldCodec.to_hex(self.nullifier_hash),
        }


class CommitmentScheme:
    """
    Commitment and nullifier derivation:

        commitment     = H3(nullifier, secret, amount_field)
        nullifier_hash = H1(nullifier)
        binding        = H2(secret, recipient_field)

    The hash is taken from the proving system so it is the exact primitive
    the circuit constrains.
    """

    def __init__(self, proving_system: ProvingSystem):
        self.proving_system = proving_system

    @staticmethod
    def _check_secret_part(name: str, value: bytes) -> bytes:
        if not FieldCodec.is_canonical(value):
            raise NoteGenerationError(f"{name} must be a 32-byte field element")
        return bytes(value)

    @staticmethod
    def _encode_amount(amount: int) -> bytes:
        try:
            return FieldCodec.amount_to_field(amount)
        except (RangeError, TypeError) as e:
            raise NoteGenerationError(f"Invalid note amount: {e}") from e

    def compute_commitment(self, nullifier: bytes, secret: bytes, amount_field: bytes) -> bytes:
        return self.proving_system.hash([nullifier, secret, amount_field])

    def compute_nullifier_hash(self, nullifier: bytes) -> bytes:
        return self.proving_system.hash([nullifier])

    def from_secrets(self, nullifier: bytes, secret: bytes, amount: int) -> Note:
        """
        Derive a note from known secret material. Deterministic.

        Raises:
            NoteGenerationError: If any component is out of range
        """
        nullifier = self._check_secret_part("Nullifier", nullifier)
        secret = self._check_secret_part("Secret", secret)
        amount_field = self._encode_amount(amount)

        return Note(
            nullifier=nullifier,
            secret=secret,
            amount=amount,
            commitment=self.compute_commitment(nullifier, secret, amount_field),
            nullifier_hash=self.compute_nullifier_hash(nullifier),
        )

    def generate(self, amount: int) -> Note:
        """
        Create a fresh note for ``amount`` smallest units.

        Raises:
            NoteGenerationError: If amount does not fit the amount domain
        """
        self._encode_amount(amount)
        return self.from_secrets(
            FieldCodec.random_field_safe(),
            FieldCodec.random_field_safe(),
            amount,
        )

    def recipient_binding(self, secret: bytes, recipient_field: bytes) -> bytes:
        """H2(secret, recipient_field): proves intended-recipient status without revealing the secret."""
        secret = self._check_secret_part("Secret", secret)
        if not FieldCodec.is_canonical(recipient_field):
            raise NoteGenerationError("Recipient field must be a 32-byte field element")
        return self.proving_system.hash([secret, recipient_field])

    def verify_note(self, note: Note) -> bool:
        """Recompute a note's derived values and compare."""
        try:
            expected = self.from_secrets(note.nullifier, note.secret, note.amount)
        except NoteGenerationError:
            return False
        return (
            expected.commitment == note.commitment
            and expected.nullifier_hash == note.nullifier_hash
        )

    def note_from_dict(self, data: dict) -> Note:
        """
        Load a serialized note, re-deriving its public values.

        Raises:
            NoteGenerationError: If the data is malformed or inconsistent
        """
        try:
            nullifier = FieldCodec.from_hex(data["nullifier"])
            secret = FieldCodec.from_hex(data["secret"])
            amount = int(data["amount"])
            commitment: Optional[bytes] = (
                FieldCodec.from_hex(data["commitment"]) if data.get("commitment") else None
            )
        except (KeyError, ValueError, TypeError, RangeError) as e:
            raise NoteGenerationError(f"Malformed note: {e}") from e

        note = self.from_secrets(nullifier, secret, amount)
        if commitment is not None and commitment != note.commitment:
            raise NoteGenerationError("Note commitment does not match its secrets")
        return note

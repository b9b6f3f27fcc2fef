"""Field encoding rules for the BN254 scalar field.

Every value that is hashed, committed to or used as a public input must be a
canonical field element: a 32-byte big-endian integer strictly below the
BN254 scalar modulus (~2^254). This module is the single place where raw
integers, addresses and random bytes are turned into such elements.

Address canonicalization:
    A Stellar ed25519 public key is 32 arbitrary bytes and can exceed the
    modulus. The recipient field is the raw key with byte 0 set to zero,
    which is always below 2^248 < p. This is lossy (8 bits) but
    deterministic, and must match the client that built the proof bit for bit.
"""

import os

from stellar_sdk import MuxedAccount, StrKey

from rotor.utils.encoding import bytes_to_hex, hex_to_bytes
from rotor.utils.hash import BN254_MODULUS
from rotor.exceptions import RangeError, InvalidAddressError


def decode_address(address: str) -> bytes:
    """
    Decode a Stellar address into its 32-byte ed25519 public key.

    Accepts ``G...`` account ids and ``M...`` muxed accounts; a muxed account
    resolves to its underlying ed25519 key.

    Raises:
        InvalidAddressError: If the address is not a valid account or muxed account
    """
    if not isinstance(address, str) or not address:
        raise InvalidAddressError("Address must be a non-empty string")
    try:
        account_id = MuxedAccount.from_account(address).account_id
        return StrKey.decode_ed25519_public_key(account_id)
    except (ValueError, TypeError) as e:
        raise InvalidAddressError(f"Invalid Stellar address: {address!r}") from e


def base_address(address: str) -> str:
    """Return the ``G...`` account id behind a (possibly muxed) address."""
    decode_address(address)
    return MuxedAccount.from_account(address).account_id


class FieldCodec:
    """
    Conversions between integers, addresses and BN254 field elements.

    No conversion in this class wraps or truncates silently: anything that
    does not fit raises.
    """

    # Constants
    FIELD_SIZE = 32  # bytes
    MODULUS = BN254_MODULUS
    MAX_AMOUNT = 2**128 - 1

    @staticmethod
    def to_int(field: bytes) -> int:
        """Big-endian integer value of a 32-byte field element."""
        if not isinstance(field, (bytes, bytearray)) or len(field) != FieldCodec.FIELD_SIZE:
            raise ValueError("Field element must be 32 bytes")
        return int.from_bytes(field, "big")

    @staticmethod
    def from_int(value: int) -> bytes:
        """
        Encode an integer as a canonical 32-byte field element.

        Raises:
            RangeError: If value is negative or not below the modulus
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"Expected int, got {type(value).__name__}")
        if value < 0 or value >= FieldCodec.MODULUS:
            raise RangeError("Value is outside the scalar field")
        return value.to_bytes(FieldCodec.FIELD_SIZE, "big")

    @staticmethod
    def is_canonical(field: bytes) -> bool:
        """True when ``field`` is 32 bytes and strictly below the modulus."""
        if not isinstance(field, (bytes, bytearray)) or len(field) != FieldCodec.FIELD_SIZE:
            return False
        return int.from_bytes(field, "big") < FieldCodec.MODULUS

    @staticmethod
    def to_hex(field: bytes) -> str:
        """Wire form: '0x' followed by 64 lowercase hex digits."""
        if not isinstance(field, (bytes, bytearray)) or len(field) != FieldCodec.FIELD_SIZE:
            raise ValueError("Field element must be 32 bytes")
        return bytes_to_hex(field)

    @staticmethod
    def from_hex(value: str) -> bytes:
        """
        Parse a hex field element (with or without '0x'; short values are
        left-padded to 32 bytes).

        Raises:
            ValueError: If the string is empty, not hex or longer than 32 bytes
            RangeError: If the value is not below the modulus
        """
        if not isinstance(value, str) or value in ("", "0x", "0X"):
            raise ValueError("Field element hex must not be empty")
        field = hex_to_bytes(value, size=FieldCodec.FIELD_SIZE)
        if not FieldCodec.is_canonical(field):
            raise RangeError("Value is outside the scalar field")
        return field

    @staticmethod
    def amount_to_field(amount: int) -> bytes:
        """
        Encode an amount (smallest ledger units) as a field element.

        Args:
            amount: Non-negative integer up to 2^128 - 1

        Returns:
            bytes: Zero-padded big-endian 32 bytes

        Raises:
            RangeError: If amount is negative or above the amount domain
            TypeError: If amount is not an integer
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise TypeError(f"Amount must be int, got {type(amount).__name__}")
        if amount < 0:
            raise RangeError("Amount must be non-negative")
        if amount > FieldCodec.MAX_AMOUNT:
            raise RangeError(f"Amount exceeds the 128-bit amount domain: {amount}")
        return amount.to_bytes(FieldCodec.FIELD_SIZE, "big")

    @staticmethod
    def field_to_amount(field: bytes) -> int:
        """
        Decode an amount field element.

        Raises:
            ValueError: If field is not 32 bytes
            RangeError: If the decoded value exceeds 2^128 - 1
        """
        value = FieldCodec.to_int(field)
        if value > FieldCodec.MAX_AMOUNT:
            raise RangeError("Amount field exceeds the 128-bit amount domain")
        return value

    @staticmethod
    def address_to_field(address: str) -> bytes:
        """
        Canonical recipient field element for a Stellar address.

        The raw 32-byte ed25519 key with its top (first) byte cleared.

        Raises:
            InvalidAddressError: If the address cannot be decoded
        """
        raw = bytearray(decode_address(address))
        raw[0] = 0
        return bytes(raw)

    @staticmethod
    def random_field_safe() -> bytes:
        """
        Generate a random field element for nullifiers and secrets.

        Returns:
            bytes: 32 random bytes from the OS CSPRNG with byte 0 cleared
        """
        raw = bytearray(os.urandom(FieldCodec.FIELD_SIZE))
        raw[0] = 0
        return bytes(raw)

    @staticmethod
    def format_amount(units: int, decimals: int = 7) -> str:
        """
        Render smallest units as a display string, e.g. 10_000_000 -> "1.0000000".

        Integer arithmetic only, so large amounts are exact.
        """
        if units < 0:
            raise RangeError("Amount must be non-negative")
        if decimals == 0:
            return str(units)
        whole, fraction = divmod(units, 10**decimals)
        return f"{whole}.{fraction:0{decimals}d}"

"""Hash utilities for the in-process proving backend."""

import hashlib
from typing import Sequence

# BN254 scalar field modulus
BN254_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617

FIELD_HASH_DOMAIN = b"rotor.field-hash.v1"


def sha256(data: bytes) -> bytes:
    """Compute SHA-256 hash of data."""
    return hashlib.sha256(data).digest()


def field_hash(inputs: Sequence[bytes]) -> bytes:
    """
    Hash 32-byte field elements to a field element.

    H_n(x_1..x_n) = SHA-256(domain || n || x_1 || .. || x_n) mod p

    The arity byte separates H1, H2 and H3 so that, for example, a single
    64-byte input can never collide with a pair of 32-byte inputs.

    Args:
        inputs: One or more 32-byte big-endian field elements

    Returns:
        bytes: 32-byte big-endian field element

    Raises:
        ValueError: If no inputs are given or any input is not 32 bytes
    """
    if not inputs:
        raise ValueError("At least one input is required")
    if len(inputs) > 255:
        raise ValueError("At most 255 inputs are supported")

    buffer = bytearray(FIELD_HASH_DOMAIN)
    buffer.append(len(inputs))
    for item in inputs:
        if not isinstance(item, (bytes, bytearray)) or len(item) != 32:
            raise ValueError("Every hash input must be 32 bytes")
        buffer.extend(item)

    digest = int.from_bytes(sha256(bytes(buffer)), "big") % BN254_MODULUS
    return digest.to_bytes(32, "big")

"""Encoding and decoding utilities."""

from typing import Optional


def bytes_to_hex(data: bytes) -> str:
    """
    Convert bytes to hexadecimal string.

    Args:
        data: Bytes to convert

    Returns:
        str: Lowercase hexadecimal string with '0x' prefix
    """
    return "0x" + bytes(data).hex()


def hex_to_bytes(hex_str: str, size: Optional[int] = None) -> bytes:
    """
    Convert hexadecimal string to bytes.

    When ``size`` is given, shorter values are left-padded with zeros and
    longer values are rejected.

    Args:
        hex_str: Hexadecimal string (with or without '0x' prefix)
        size: Optional exact output length in bytes

    Returns:
        bytes: Decoded bytes

    Raises:
        ValueError: If hex string is invalid or too long
    """
    if not isinstance(hex_str, str):
        raise ValueError(f"Expected hex string, got {type(hex_str).__name__}")

    if hex_str.startswith(("0x", "0X")):
        hex_str = hex_str[2:]

    if size is not None:
        if len(hex_str) > size * 2:
            raise ValueError(f"Hex string longer than {size} bytes")
        hex_str = hex_str.rjust(size * 2, "0")

    if len(hex_str) % 2 != 0:
        raise ValueError("Hex string must have even number of characters")

    return bytes.fromhex(hex_str)

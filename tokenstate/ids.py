"""Textual form of 32-byte identifiers: base58 with a 4-byte SHA-256 checksum."""

from __future__ import annotations

import hashlib

ID_LEN = 32
_CHECKSUM_LEN = 4
_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_INDEX = {char: position for position, char in enumerate(_ALPHABET)}


class IDError(ValueError):
    """Raised when an identifier cannot be encoded or decoded."""


def _checksum(payload: bytes) -> bytes:
    return hashlib.sha256(payload).digest()[-_CHECKSUM_LEN:]


def _b58encode(data: bytes) -> str:
    number = int.from_bytes(data, "big")
    digits = []
    while number:
        number, remainder = divmod(number, 58)
        digits.append(_ALPHABET[remainder])
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "1" * leading_zeros + "".join(reversed(digits))


def _b58decode(text: str) -> bytes:
    number = 0
    for char in text:
        try:
            number = number * 58 + _INDEX[char]
        except KeyError:
            raise IDError(f"invalid base58 character {char!r}") from None
    leading_ones = len(text) - len(text.lstrip("1"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big")
    return b"\x00" * leading_ones + body


def encode_id(raw: bytes) -> str:
    """Return the checksummed base58 string for a 32-byte identifier."""
    payload = bytes(raw)
    if len(payload) != ID_LEN:
        raise IDError(f"identifier must be {ID_LEN} bytes, got {len(payload)}")
    return _b58encode(payload + _checksum(payload))


def decode_id(text: str) -> bytes:
    """Parse a checksummed base58 string back into a 32-byte identifier."""
    decoded = _b58decode(text)
    if len(decoded) < _CHECKSUM_LEN:
        raise IDError("input string is smaller than the checksum size")
    payload, checksum = decoded[:-_CHECKSUM_LEN], decoded[-_CHECKSUM_LEN:]
    if _checksum(payload) != checksum:
        raise IDError("invalid input checksum")
    if len(payload) != ID_LEN:
        raise IDError(f"expected {ID_LEN} bytes but got {len(payload)}")
    return payload
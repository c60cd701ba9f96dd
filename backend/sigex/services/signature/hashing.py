import hashlib
from typing import Iterable

from ...core.exceptions import ValidationError


def document_hash(data: bytes) -> str:
    """Hex SHA-256 of raw document bytes"""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise ValidationError(f"Document content must be bytes, got {type(data).__name__}")
    return hashlib.sha256(data).hexdigest()


def combined_hash(hashes: Iterable[str]) -> str:
    """Hex SHA-256 of the ordered hex hashes concatenated; order is significant"""
    return hashlib.sha256("".join(hashes).encode("ascii")).hexdigest()

"""
core/hashid.py -- Reversible obfuscation of internal row ids.

Keys and categories are addressed externally by a Hashids string instead of
their integer primary key. The encoding is deterministic (same id, same salt
-> same string), collision-free, and non-sequential, which prevents clients
from enumerating records by incrementing ids.

Usage:
    codec = IdCodec(salt="...", min_length=8)
    codec.encode(42)          # "Xk3vQw9L"
    codec.decode("Xk3vQw9L")  # 42
    codec.decode("nope")      # raises InvalidIdentifierError

Layer rule: core/ is the kernel. No imports from other project packages.
"""

from __future__ import annotations

from hashids import Hashids

from core.exceptions import InvalidIdentifierError


class IdCodec:
    """Encode and decode single integer ids with a salted Hashids alphabet."""

    def __init__(self, salt: str, min_length: int = 8) -> None:
        self._hashids = Hashids(salt=salt, min_length=min_length)

    def encode(self, value: int) -> str:
        return self._hashids.encode(value)

    def decode(self, hashid: str) -> int:
        """Return the id encoded in hashid.

        Hashids signals invalid input with an empty tuple. Strings that encode
        more than one number were never issued by this codec and are rejected
        as well.
        """
        decoded = self._hashids.decode(hashid or "")
        if len(decoded) != 1:
            raise InvalidIdentifierError(f"Identifier {hashid!r} is not valid.")
        return decoded[0]

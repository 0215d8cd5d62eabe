import hashlib
from abc import ABC, abstractmethod
from typing import Any

import orjson


class Anchor(ABC):
    """Tamper-evidence for ledger records: returns an opaque receipt id."""

    @abstractmethod
    async def anchor(self, record: dict[str, Any]) -> str:
        ...


def canonical_bytes(record: dict[str, Any]) -> bytes:
    """Stable serialization: sorted keys, datetimes as ISO strings, ObjectIds as str."""
    return orjson.dumps(record, option=orjson.OPT_SORT_KEYS, default=str)


class DigestAnchor(Anchor):
    """Stub anchor: the receipt is the SHA-256 of the canonical record."""

    async def anchor(self, record: dict[str, Any]) -> str:
        return "sha256:" + hashlib.sha256(canonical_bytes(record)).hexdigest()


def get_anchor() -> Anchor:
    return DigestAnchor()

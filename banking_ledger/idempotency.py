"""
Idempotency Guard Module

Maps a client-supplied idempotency key to the transfer it already produced.
Keys are scoped to the requester: the stored scope is the JSON array
["<requester>", "<key>"], which no other (requester, key) pair can produce,
and the store enforces uniqueness on it, so two requests racing with the
same key cannot both insert a transfer.
"""

import json
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from .storage import StorageInterface
from .errors import ValidationError


T = TypeVar("T")

SCOPE_FIELD = "idempotency_scope"
MAX_KEY_LENGTH = 255


class IdempotencyGuard(Generic[T]):
    """
    Looks up previously executed requests by (requester, key)

    Args:
        storage: Shared storage backend
        table_name: Table holding the deduplicated records
        loader: Builds a record object from its stored dict
        owner_field: Stored field naming the requester; a match on scope
            alone is not enough when it is set
    """

    def __init__(self, storage: StorageInterface, table_name: str,
                 loader: Callable[[Dict[str, Any]], T], owner_field: Optional[str] = None):
        self.storage = storage
        self.table_name = table_name
        self.loader = loader
        self.owner_field = owner_field
        self.storage.create_unique_index(table_name, SCOPE_FIELD)

    @staticmethod
    def validate_key(key: Optional[str]) -> Optional[str]:
        """Normalize an incoming key; blank means no key"""
        if key is None:
            return None
        if not isinstance(key, str):
            raise ValidationError("Idempotency key must be a string")
        key = key.strip()
        if not key:
            return None
        if len(key) > MAX_KEY_LENGTH:
            raise ValidationError(f"Idempotency key must be at most {MAX_KEY_LENGTH} characters")
        return key

    @staticmethod
    def scope(requester_id: str, key: Optional[str]) -> Optional[str]:
        if key is None:
            return None
        return json.dumps([requester_id, key], separators=(",", ":"))

    def find_by_key(self, requester_id: str, key: Optional[str]) -> Optional[T]:
        """Return the record previously stored under this requester's key, or None"""
        scope = self.scope(requester_id, key)
        if scope is None:
            return None
        rows = self.storage.find(self.table_name, {SCOPE_FIELD: scope})
        if self.owner_field:
            rows = [r for r in rows if r.get(self.owner_field) == requester_id]
        return self.loader(rows[0]) if rows else None

"""
Record and tag store interfaces.

The vault never talks to a database directly. It depends on a
:class:`RecordStore` that keeps opaque ciphertext plus plaintext envelopes,
and on a :class:`TagStore` used once at enrollment to seed the default
categories.

Store implementations report transient transport problems by raising
:class:`~navigator_safe.exceptions.StoreUnavailable` (``ConnectionError``
and ``asyncio.TimeoutError`` are also accepted and wrapped by the vault).
A missing record is ``None`` or ``False``, never an exception.

``MemoryRecordStore`` and ``MemoryTagStore`` are complete in-process
implementations, used for tests and for embedding.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable
from collections.abc import Iterable

from .exceptions import AlreadyEnrolled, StoreUnavailable
from .models import (
    EntryKind,
    SafeTag,
    VaultRecord,
    VaultRegistryRecord,
)

logger = logging.getLogger("navigator.safe")

DEFAULT_CATEGORIES: tuple[tuple[str, str], ...] = (
    ("Login/Credentials", "#3b82f6"),
    ("Credit Card", "#ef4444"),
    ("Bank Account", "#10b981"),
    ("Stock Trading Account", "#f59e0b"),
    ("Identity Documents", "#8b5cf6"),
    ("Insurance", "#f97316"),
    ("Medical", "#ec4899"),
    ("License/Software", "#06b6d4"),
    ("API Key", "#84cc16"),
    ("WiFi", "#a855f7"),
    ("Gift Card", "#f43f5e"),
    ("Address", "#06b6d4"),
    ("Other", "#6b7280"),
)


async def call_store(awaitable, timeout: Optional[float] = None):
    """Await a store call, mapping timeouts and transport errors.

    Raises:
        StoreUnavailable: On timeout or connection failure. Never means
            "record does not exist".
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except StoreUnavailable:
        raise
    except (asyncio.TimeoutError, OSError) as err:
        logger.warning("Record store call failed: %s", type(err).__name__)
        raise StoreUnavailable() from err


@runtime_checkable
class RecordStore(Protocol):
    """Remote store holding registry records and encrypted vault records."""

    async def get_registry(self, user_id: str) -> Optional[VaultRegistryRecord]:
        ...

    async def insert_registry(self, record: VaultRegistryRecord) -> None:
        """Insert if absent; raise AlreadyEnrolled when one exists."""
        ...

    async def update_registry(
        self,
        record: VaultRegistryRecord,
        expected_updated_at: datetime,
    ) -> bool:
        """Replace the registry only if its ``updated_at`` still matches.

        Returns False when the token does not match (concurrent rotation).
        """
        ...

    async def list_records(self, user_id: str, kind: EntryKind) -> list[VaultRecord]:
        ...

    async def get_record(
        self, user_id: str, kind: EntryKind, record_id: str,
    ) -> Optional[VaultRecord]:
        ...

    async def put_record(self, record: VaultRecord) -> None:
        """Insert or replace a record by id."""
        ...

    async def delete_record(self, user_id: str, kind: EntryKind, record_id: str) -> bool:
        ...

    async def list_ids_by_tag(self, user_id: str, kind: EntryKind, tag_id: str) -> list[str]:
        ...

    async def delete_records(
        self, user_id: str, kind: EntryKind, record_ids: Iterable[str],
    ) -> int:
        """Delete a batch of ids; return how many were actually removed."""
        ...


@runtime_checkable
class TagStore(Protocol):
    """Category/tag collaborator consulted by enrollment."""

    async def create_default_categories(self, user_id: str) -> list[SafeTag]:
        ...

    async def list_tags(self, user_id: str) -> list[SafeTag]:
        ...


class MemoryRecordStore:
    """In-memory :class:`RecordStore`.

    Records are deep-copied on the way in and out, so callers can never
    mutate stored state by accident.
    """

    def __init__(self) -> None:
        self._registry: dict[str, VaultRegistryRecord] = {}
        self._records: dict[EntryKind, dict[str, VaultRecord]] = {
            kind: {} for kind in EntryKind
        }
        self._lock = asyncio.Lock()

    async def get_registry(self, user_id: str) -> Optional[VaultRegistryRecord]:
        record = self._registry.get(user_id)
        return record.model_copy(deep=True) if record else None

    async def insert_registry(self, record: VaultRegistryRecord) -> None:
        async with self._lock:
            if record.user_id in self._registry:
                raise AlreadyEnrolled()
            self._registry[record.user_id] = record.model_copy(deep=True)

    async def update_registry(
        self,
        record: VaultRegistryRecord,
        expected_updated_at: datetime,
    ) -> bool:
        async with self._lock:
            current = self._registry.get(record.user_id)
            if current is None or current.updated_at != expected_updated_at:
                return False
            self._registry[record.user_id] = record.model_copy(deep=True)
            return True

    async def list_records(self, user_id: str, kind: EntryKind) -> list[VaultRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._records[EntryKind(kind)].values()
            if r.user_id == user_id
        ]

    async def get_record(
        self, user_id: str, kind: EntryKind, record_id: str,
    ) -> Optional[VaultRecord]:
        record = self._records[EntryKind(kind)].get(record_id)
        if record is None or record.user_id != user_id:
            return None
        return record.model_copy(deep=True)

    async def put_record(self, record: VaultRecord) -> None:
        self._records[EntryKind(record.kind)][record.id] = record.model_copy(deep=True)

    async def delete_record(self, user_id: str, kind: EntryKind, record_id: str) -> bool:
        bucket = self._records[EntryKind(kind)]
        record = bucket.get(record_id)
        if record is None or record.user_id != user_id:
            return False
        del bucket[record_id]
        return True

    async def list_ids_by_tag(self, user_id: str, kind: EntryKind, tag_id: str) -> list[str]:
        return [
            r.id
            for r in self._records[EntryKind(kind)].values()
            if r.user_id == user_id and tag_id in r.tags
        ]

    async def delete_records(
        self, user_id: str, kind: EntryKind, record_ids: Iterable[str],
    ) -> int:
        removed = 0
        for record_id in record_ids:
            if await self.delete_record(user_id, kind, record_id):
                removed += 1
        return removed


class MemoryTagStore:
    """In-memory :class:`TagStore`."""

    def __init__(self) -> None:
        self._tags: dict[str, list[SafeTag]] = {}

    async def create_default_categories(self, user_id: str) -> list[SafeTag]:
        """Seed the system categories that do not exist yet for the user."""
        tags = self._tags.setdefault(user_id, [])
        existing = {t.name for t in tags if t.is_system_category}
        created = [
            SafeTag(user_id=user_id, name=name, color=color, is_system_category=True)
            for name, color in DEFAULT_CATEGORIES
            if name not in existing
        ]
        tags.extend(created)
        logger.debug(
            "Seeded %d default categories for user=%s", len(created), user_id,
        )
        return created

    async def create_tag(self, user_id: str, name: str, color: str = "#667eea") -> SafeTag:
        tag = SafeTag(user_id=user_id, name=name.strip(), color=color)
        self._tags.setdefault(user_id, []).append(tag)
        return tag

    async def list_tags(self, user_id: str) -> list[SafeTag]:
        return list(self._tags.get(user_id, []))

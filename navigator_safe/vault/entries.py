"""
VaultEntryManager — CRUD over encrypted vault records.

One manager serves one collection (``EntryKind.ENTRY`` safe entries or
``EntryKind.DOCUMENT`` document vault records) for one user:

- ``create(envelope, payload, session)`` — encrypt the payload and persist
- ``update(id, envelope_updates, payload, session)`` — envelope-only updates
  keep the ciphertext untouched; payload updates re-encrypt the whole payload
- ``delete(id)`` / ``delete_by_tag(tag_id)`` — strict single delete, batched bulk delete
- ``decrypt(record, session)`` / ``open(id, session)`` — decrypted views
- ``get`` / ``list_records`` / ``count`` / ``search`` / ``mark_accessed`` / ``import_records``

Every mutation runs under the user's vault lock, shared with rotation.

Security Note:
    Never log plaintext or ciphertext values. Only log record ids, counts
    and user ids.
"""
import asyncio
import logging
from typing import Any, NamedTuple, Optional
from collections.abc import Iterable, Mapping

from pydantic import BaseModel, ValidationError

from ..exceptions import (
    DecryptionFailed,
    InvalidArgument,
    NotFound,
    StoreUnavailable,
    VaultLocked,
)
from ..models import (
    ENVELOPES,
    RECORDS,
    DecryptedRecord,
    EntryKind,
    VaultRecord,
    utcnow,
)
from ..store import RecordStore, call_store
from .config import VaultConfig
from .crypto import deserialize_payload, serialize_payload
from .locks import user_locks
from .session import MasterKeySession

logger = logging.getLogger("navigator.safe")


class ImportResult(NamedTuple):
    success: int
    failed: int


def _chunks(items: list[str], size: int) -> Iterable[list[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class VaultEntryManager:
    """Encrypted record CRUD for one user and one collection."""

    def __init__(
        self,
        user_id: str,
        store: RecordStore,
        kind: EntryKind = EntryKind.ENTRY,
        config: Optional[VaultConfig] = None,
        lock: Optional[asyncio.Lock] = None,
    ) -> None:
        self._user_id = user_id
        self._store = store
        self._kind = EntryKind(kind)
        self._config = config or VaultConfig()
        self._lock = lock or user_locks.get(user_id)
        self._envelope_cls = ENVELOPES[self._kind]
        self._record_cls = RECORDS[self._kind]

    @property
    def kind(self) -> EntryKind:
        return self._kind

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _store_call(self, awaitable):
        return call_store(awaitable, self._config.store_timeout)

    def _check_session(self, session: Optional[MasterKeySession]) -> MasterKeySession:
        if session is None:
            raise InvalidArgument("An unlocked session is required for payload changes")
        if session.user_id != self._user_id:
            raise InvalidArgument("Session belongs to a different user")
        return session

    def _envelope(self, envelope: Any) -> BaseModel:
        if isinstance(envelope, self._envelope_cls):
            return envelope
        if isinstance(envelope, BaseModel):
            envelope = envelope.model_dump(exclude_unset=True)
        if not isinstance(envelope, Mapping):
            raise InvalidArgument("Envelope must be a mapping of plaintext fields")
        try:
            return self._envelope_cls.model_validate(dict(envelope))
        except ValidationError as err:
            raise InvalidArgument(
                f"Invalid {self._kind.value} envelope fields"
            ) from err

    async def _check_current(self, session: MasterKeySession) -> None:
        """Refuse writes from a session unlocked before the latest rotation."""
        if session.key_generation is None:
            return
        registry = await self._store_call(self._store.get_registry(self._user_id))
        if registry is None or registry.updated_at != session.key_generation:
            raise VaultLocked("The vault key changed, please unlock again.")

    async def _require(self, record_id: str) -> VaultRecord:
        record = await self._store_call(
            self._store.get_record(self._user_id, self._kind, record_id)
        )
        if record is None:
            raise NotFound(f"No {self._kind.value} with id {record_id}")
        return record

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(
        self,
        envelope: Any,
        payload: Any,
        session: MasterKeySession,
    ) -> DecryptedRecord:
        """Encrypt ``payload`` and persist a new record.

        Args:
            envelope: Plaintext fields (model or mapping).
            payload: Sensitive field map or payload model.
            session: Unlocked master key session.

        Returns:
            Decrypted view of the created record.
        """
        session = self._check_session(session)
        envelope = self._envelope(envelope)
        plaintext = serialize_payload(payload)
        encrypted = session.encrypt_bytes(plaintext)
        now = utcnow()
        record = self._record_cls(
            user_id=self._user_id,
            ciphertext=encrypted.ciphertext,
            nonce=encrypted.nonce,
            created_at=now,
            updated_at=now,
            **envelope.model_dump(),
        )
        async with self._lock:
            await self._check_current(session)
            await self._store_call(self._store.put_record(record))
        logger.debug(
            "Vault %s created: user=%s id=%s", self._kind.value, self._user_id, record.id,
        )
        return DecryptedRecord(record=record, fields=deserialize_payload(plaintext))

    async def update(
        self,
        record_id: str,
        envelope_updates: Any = None,
        payload: Any = None,
        session: Optional[MasterKeySession] = None,
    ) -> VaultRecord:
        """Update envelope fields and/or replace the whole payload.

        Raises:
            NotFound: If ``record_id`` does not exist.
            InvalidArgument: If a payload is given without a session.
        """
        if payload is not None:
            session = self._check_session(session)
        async with self._lock:
            current = await self._require(record_id)
            changes: dict[str, Any] = {}
            if envelope_updates:
                if isinstance(envelope_updates, BaseModel):
                    envelope_updates = envelope_updates.model_dump(exclude_unset=True)
                merged = current.envelope().model_dump()
                merged.update(envelope_updates)
                changes.update(self._envelope(merged).model_dump())
            if payload is not None:
                await self._check_current(session)
                encrypted = session.encrypt_payload(payload)
                changes["ciphertext"] = encrypted.ciphertext
                changes["nonce"] = encrypted.nonce
            changes["updated_at"] = utcnow()
            record = current.model_copy(update=changes)
            await self._store_call(self._store.put_record(record))
        logger.debug(
            "Vault %s updated: user=%s id=%s payload=%s",
            self._kind.value, self._user_id, record_id, payload is not None,
        )
        return record

    async def delete(self, record_id: str) -> None:
        """Delete one record.

        Raises:
            NotFound: If the record does not exist (strict semantics).
        """
        async with self._lock:
            removed = await self._store_call(
                self._store.delete_record(self._user_id, self._kind, record_id)
            )
        if not removed:
            raise NotFound(f"No {self._kind.value} with id {record_id}")
        logger.debug(
            "Vault %s deleted: user=%s id=%s", self._kind.value, self._user_id, record_id,
        )

    async def delete_by_tag(self, tag_id: str) -> int:
        """Delete every record carrying ``tag_id``, in bounded batches.

        Returns:
            Number of records actually removed.
        """
        batch_size = self._config.delete_batch_size
        removed = 0
        async with self._lock:
            ids = await self._store_call(
                self._store.list_ids_by_tag(self._user_id, self._kind, tag_id)
            )
            for batch in _chunks(list(ids), batch_size):
                removed += await self._store_call(
                    self._store.delete_records(self._user_id, self._kind, batch)
                )
        logger.info(
            "Vault %s bulk delete: user=%s tag=%s removed=%d",
            self._kind.value, self._user_id, tag_id, removed,
        )
        return removed

    def decrypt(self, record: VaultRecord, session: MasterKeySession) -> dict:
        """Decrypt a record's payload.

        Raises:
            DecryptionFailed: If ``record`` was encrypted under another key
                (e.g. the session predates a rotation).
        """
        return self._check_session(session).decrypt_payload(record)

    async def open(self, record_id: str, session: MasterKeySession) -> DecryptedRecord:
        """Fetch, decrypt and mark a record as accessed."""
        record = await self._require(record_id)
        fields = self.decrypt(record, session)
        record = await self.mark_accessed(record_id)
        return DecryptedRecord(record=record, fields=fields)

    async def get(self, record_id: str) -> VaultRecord:
        return await self._require(record_id)

    async def list_records(self) -> list[VaultRecord]:
        """Favourites first, then most recently updated."""
        records = await self._store_call(
            self._store.list_records(self._user_id, self._kind)
        )
        records.sort(key=lambda r: r.updated_at, reverse=True)
        records.sort(key=lambda r: not r.is_favorite)
        return records

    async def count(self) -> int:
        """Number of records; works while the vault is locked."""
        return len(await self._store_call(
            self._store.list_records(self._user_id, self._kind)
        ))

    async def search(self, text: str) -> list[VaultRecord]:
        """Case-insensitive match over plaintext envelope fields only."""
        needle = (text or "").strip().lower()
        records = await self.list_records()
        if not needle:
            return records
        matches = []
        for record in records:
            haystack = [record.title, *record.tags]
            url = getattr(record, "url", None)
            if url:
                haystack.append(url)
            if any(needle in value.lower() for value in haystack):
                matches.append(record)
        return matches

    async def mark_accessed(self, record_id: str) -> VaultRecord:
        async with self._lock:
            current = await self._require(record_id)
            record = current.model_copy(update={"last_accessed_at": utcnow()})
            await self._store_call(self._store.put_record(record))
        return record

    async def import_records(
        self,
        records: Iterable[Any],
        session: MasterKeySession,
    ) -> ImportResult:
        """Upsert already-encrypted records (backup restore).

        Records are re-owned by this manager's user. Only records that open
        under ``session`` are accepted, and the session must be current, so a
        backup taken before a rotation cannot bring old-key ciphertext back.
        Each failure is logged by id and counted; the remaining records are
        still imported.

        Raises:
            VaultLocked: If ``session`` predates the latest rotation.
        """
        session = self._check_session(session)
        success = failed = 0
        async with self._lock:
            await self._check_current(session)
            for item in records:
                record_id = getattr(item, "id", None)
                try:
                    if isinstance(item, BaseModel):
                        item = item.model_dump()
                    data = dict(item)
                    record_id = data.get("id", record_id)
                    data["user_id"] = self._user_id
                    data["kind"] = self._kind.value
                    data.setdefault("updated_at", utcnow())
                    record = self._record_cls.model_validate(data)
                    session.decrypt_payload(record)
                    await self._store_call(self._store.put_record(record))
                    success += 1
                except (
                    ValidationError, TypeError, ValueError,
                    DecryptionFailed, StoreUnavailable,
                ) as err:
                    failed += 1
                    logger.error(
                        "Error importing %s id=%s for user=%s: %s",
                        self._kind.value, record_id, self._user_id, type(err).__name__,
                    )
        logger.info(
            "Vault %s import for user=%s: %d imported, %d failed",
            self._kind.value, self._user_id, success, failed,
        )
        return ImportResult(success, failed)

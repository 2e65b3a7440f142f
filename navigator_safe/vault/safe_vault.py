"""
SafeVault — client-side encrypted vault for one user.

Provides the public API of the vault subsystem:
- ``enroll(passphrase)`` — one-time setup, seeds the default categories
- ``unlock(passphrase)`` — verify and derive a :class:`MasterKeySession`
- ``verify(passphrase)`` / ``is_enrolled()`` — checks that derive no key
- ``rotate(old, new)`` — change the passphrase and re-encrypt everything
- ``entries`` / ``documents`` — encrypted record CRUD per collection
- ``totp`` — authenticator secret provisioning
- ``backup(session)`` / ``restore(document, session)`` — encrypted backups
- ``import_csv(text, session)`` — KeePass CSV import into the entries

Security Note:
    Never log plaintext, ciphertext, passphrases or keys. Only log record
    ids, counts and user ids. Decrypted payloads exist in process memory
    while in use (see threat model in ``__init__.py``).
"""
import logging
from typing import Any, Optional, Union
from collections.abc import Mapping

from ..exceptions import InvalidArgument
from ..models import EntryKind, SafeTag, VaultRegistryRecord
from ..store import RecordStore, TagStore, call_store
from .backup import EncryptedExport, export_encrypted, import_encrypted
from .config import VaultConfig
from .crypto import KeyDerivationPool
from .csv_import import CSVImportSummary, import_csv
from .entries import ImportResult, VaultEntryManager
from .locks import user_locks
from .registry import VaultRegistry
from .session import MasterKeySession
from .totp import TOTPProvisioner

logger = logging.getLogger("navigator.safe")


class SafeVault:
    """Encrypted vault bound to one user.

    All collaborators share the user's vault lock, so entry writes and a
    passphrase rotation never interleave.
    """

    def __init__(
        self,
        user_id: str,
        store: RecordStore,
        tags: Optional[TagStore] = None,
        config: Optional[VaultConfig] = None,
        kdf: Optional[KeyDerivationPool] = None,
    ):
        if not user_id:
            raise InvalidArgument("user_id cannot be empty")
        self._user_id = user_id
        self._store = store
        self._tags = tags
        self._config = config or (kdf.config if kdf else VaultConfig())
        self._owns_kdf = kdf is None
        self._kdf = kdf or KeyDerivationPool(self._config)
        lock = user_locks.get(user_id)
        self.registry = VaultRegistry(
            user_id, store, self._kdf, tags=tags, config=self._config, lock=lock,
        )
        self.entries = VaultEntryManager(
            user_id, store, EntryKind.ENTRY, config=self._config, lock=lock,
        )
        self.documents = VaultEntryManager(
            user_id, store, EntryKind.DOCUMENT, config=self._config, lock=lock,
        )
        self.totp = TOTPProvisioner(self._config)

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def config(self) -> VaultConfig:
        return self._config

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    async def is_enrolled(self) -> bool:
        return await self.registry.is_enrolled()

    async def enroll(self, passphrase: str) -> VaultRegistryRecord:
        return await self.registry.enroll(passphrase)

    async def verify(self, passphrase: str) -> bool:
        return await self.registry.verify(passphrase)

    async def unlock(self, passphrase: str) -> MasterKeySession:
        return await self.registry.unlock(passphrase)

    async def rotate(self, old_passphrase: str, new_passphrase: str) -> dict[str, Any]:
        """Change the master passphrase.

        Sessions unlocked before the rotation can no longer decrypt or write;
        callers must ``unlock`` again with the new passphrase.
        """
        return await self.registry.rotate(old_passphrase, new_passphrase)

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def _manager(self, kind: Union[EntryKind, str]) -> VaultEntryManager:
        return self.documents if EntryKind(kind) == EntryKind.DOCUMENT else self.entries

    async def backup(
        self,
        session: MasterKeySession,
        kind: Union[EntryKind, str] = EntryKind.ENTRY,
    ) -> EncryptedExport:
        """Encrypted backup of one collection under the session key."""
        records = await self._manager(kind).list_records()
        return export_encrypted(records, session)

    async def restore(
        self,
        document: Union[EncryptedExport, Mapping, str, bytes],
        session: MasterKeySession,
        kind: Union[EntryKind, str] = EntryKind.ENTRY,
    ) -> ImportResult:
        """Restore an encrypted backup into one collection.

        Raises:
            DecryptionFailed: If the backup was made under another key.
            InvalidArgument: If the document is not a valid backup.
            VaultLocked: If ``session`` predates the latest rotation.
        """
        records = import_encrypted(document, session)
        return await self._manager(kind).import_records(records, session)

    async def import_csv(
        self,
        text: str,
        session: MasterKeySession,
        tag_id: Optional[str] = None,
    ) -> CSVImportSummary:
        """Import a KeePass CSV export into the entries collection."""
        return await import_csv(
            self.entries, text, session, tags=await self.tags(), tag_id=tag_id,
        )

    async def tags(self) -> list[SafeTag]:
        """The user's tags and categories (empty without a tag store)."""
        if self._tags is None:
            return []
        return await call_store(
            self._tags.list_tags(self._user_id), self._config.store_timeout,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Release the key derivation workers this vault created."""
        if self._owns_kdf:
            self._kdf.shutdown()
            logger.debug("Key derivation pool closed for user=%s", self._user_id)

    async def __aenter__(self) -> "SafeVault":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()

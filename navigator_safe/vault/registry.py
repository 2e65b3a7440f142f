"""
Vault Registry — enrollment, passphrase verification, unlock and rotation.

Owns the single per-user ``VaultRegistryRecord`` (salt + verification hash).
The record is created once by :meth:`VaultRegistry.enroll` and afterwards only
changed by :meth:`VaultRegistry.rotate`.

Security Note:
    Wrong passphrase and missing vault are indistinguishable to callers of
    ``unlock``/``verify``/``rotate``: both cost one full derivation and end in
    the same outcome.
"""
import asyncio
import logging
from typing import Any, Optional

from ..exceptions import AlreadyEnrolled, InvalidArgument, InvalidCredentials, StoreUnavailable
from ..models import VaultRegistryRecord, utcnow
from ..store import RecordStore, TagStore, call_store
from .config import VaultConfig
from .crypto import KeyDerivationPool, generate_salt, hashes_match
from .encoder import encode_for_storage
from .key_rotation import rotate_master_passphrase
from .locks import user_locks
from .session import MasterKeySession

logger = logging.getLogger("navigator.safe")


class VaultRegistry:
    """Set-once enrollment record plus the passphrase rotation protocol."""

    def __init__(
        self,
        user_id: str,
        store: RecordStore,
        kdf: KeyDerivationPool,
        tags: Optional[TagStore] = None,
        config: Optional[VaultConfig] = None,
        lock: Optional[asyncio.Lock] = None,
    ) -> None:
        self._user_id = user_id
        self._store = store
        self._kdf = kdf
        self._tags = tags
        self._config = config or kdf.config
        self._lock = lock or user_locks.get(user_id)

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    async def get(self) -> Optional[VaultRegistryRecord]:
        return await call_store(
            self._store.get_registry(self._user_id), self._config.store_timeout,
        )

    async def is_enrolled(self) -> bool:
        return await self.get() is not None

    async def _check(self, passphrase: str) -> Optional[VaultRegistryRecord]:
        """Return the registry if ``passphrase`` matches, else None."""
        if not isinstance(passphrase, str) or not passphrase:
            raise InvalidArgument("Passphrase cannot be empty")
        registry = await self.get()
        if registry is None:
            # same work as a real check
            await self._kdf.derive_verification_hash(passphrase, generate_salt(self._config))
            return None
        computed = await self._kdf.derive_verification_hash(passphrase, registry.salt)
        if hashes_match(computed, registry.verification_hash):
            return registry
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def enroll(self, passphrase: str) -> VaultRegistryRecord:
        """Set the master passphrase for the first time.

        Seeds the default safe categories through the tag store.

        Raises:
            InvalidArgument: If the passphrase is empty.
            AlreadyEnrolled: If a registry record already exists.
        """
        if not isinstance(passphrase, str) or not passphrase:
            raise InvalidArgument("Passphrase cannot be empty")
        async with self._lock:
            if await self.get() is not None:
                raise AlreadyEnrolled()
            salt = generate_salt(self._config)
            verification_hash = await self._kdf.derive_verification_hash(passphrase, salt)
            now = utcnow()
            record = VaultRegistryRecord(
                user_id=self._user_id,
                verification_hash=verification_hash,
                salt=encode_for_storage(salt),
                created_at=now,
                updated_at=now,
            )
            await call_store(
                self._store.insert_registry(record), self._config.store_timeout,
            )
        logger.info("Vault enrolled for user=%s", self._user_id)
        await self.ensure_default_categories()
        return record

    async def ensure_default_categories(self) -> None:
        """Seed default categories; safe to call repeatedly."""
        if self._tags is None:
            return
        try:
            await call_store(
                self._tags.create_default_categories(self._user_id),
                self._config.store_timeout,
            )
        except StoreUnavailable:
            logger.warning(
                "Default categories not seeded for user=%s; retry later",
                self._user_id,
            )

    async def verify(self, passphrase: str) -> bool:
        """Check a passphrase against the stored verification hash.

        Returns False for a wrong passphrase or when no vault exists.
        """
        return await self._check(passphrase) is not None

    async def unlock(self, passphrase: str) -> MasterKeySession:
        """Verify the passphrase and derive the session key.

        Raises:
            InvalidCredentials: Wrong passphrase or no vault; no key is derived.
        """
        registry = await self._check(passphrase)
        if registry is None:
            logger.warning("Unlock refused for user=%s", self._user_id)
            raise InvalidCredentials()
        key = await self._kdf.derive_key(passphrase, registry.salt)
        logger.debug("Vault unlocked for user=%s", self._user_id)
        return MasterKeySession(
            self._user_id, key, self._config, key_generation=registry.updated_at,
        )

    async def is_current(self, session: MasterKeySession) -> bool:
        """True if no rotation happened since ``session`` was unlocked."""
        registry = await self.get()
        return registry is not None and registry.updated_at == session.key_generation

    async def rotate(self, old_passphrase: str, new_passphrase: str) -> dict[str, Any]:
        """Change the master passphrase, re-encrypting every record.

        Serialized against every other mutation of this user's vault.

        Raises:
            InvalidCredentials: If ``old_passphrase`` does not match.
            RotationFailed: On any failure after verification.
        """
        async with self._lock:
            return await rotate_master_passphrase(
                self._store,
                self._kdf,
                self._user_id,
                old_passphrase,
                new_passphrase,
                self._config,
            )

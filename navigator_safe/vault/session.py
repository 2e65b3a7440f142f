"""
MasterKeySession — the unlocked vault key for one session.

A session is created by ``SafeVault.unlock()`` and passed explicitly to every
encrypt/decrypt call. It is the only holder of the derived key, which lives in
a private ``bytearray`` that is zeroed by ``lock()``.

Security Note:
    The key is never persisted, serialized, logged or transmitted. Sessions
    refuse to be pickled and their ``repr`` carries no key material.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from ..exceptions import DecryptionFailed, VaultLocked
from .config import VaultConfig
from .crypto import (
    EncryptedPayload,
    decrypt,
    deserialize_payload,
    encrypt,
    serialize_payload,
)

logger = logging.getLogger("navigator.safe")


class MasterKeySession:
    """Holds the derived key for the lifetime of an unlocked session.

    Usable as a (async) context manager; leaving the block locks the session.
    """

    def __init__(
        self,
        user_id: str,
        key: bytes,
        config: Optional[VaultConfig] = None,
        key_generation: Optional[datetime] = None,
    ) -> None:
        self._user_id = user_id
        self._key = bytearray(key)
        self._config = config or VaultConfig()
        self._generation = key_generation
        self._locked = False

    def __repr__(self) -> str:
        state = "locked" if self._locked else "unlocked"
        return f"<MasterKeySession user={self._user_id!r} {state}>"

    def __reduce__(self):
        raise TypeError("MasterKeySession cannot be serialized")

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def key_generation(self) -> Optional[datetime]:
        """Registry ``updated_at`` this session was unlocked against."""
        return self._generation

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def config(self) -> VaultConfig:
        return self._config

    def _current_key(self) -> bytes:
        if self._locked:
            raise VaultLocked()
        return bytes(self._key)

    # ------------------------------------------------------------------
    # Raw bytes
    # ------------------------------------------------------------------

    def encrypt_bytes(self, data: bytes) -> EncryptedPayload:
        """Encrypt raw bytes with the session key and a fresh nonce."""
        return encrypt(data, self._current_key(), self._config)

    def decrypt_bytes(
        self,
        ciphertext: str,
        nonce: str,
        record_id: Optional[str] = None,
    ) -> bytes:
        """Decrypt raw bytes with the session key.

        Raises:
            DecryptionFailed: Wrong key (e.g. stale session after rotation),
                corrupted or tampered data.
            VaultLocked: If the session has been locked.
        """
        try:
            return decrypt(ciphertext, nonce, self._current_key(), self._config)
        except DecryptionFailed as err:
            logger.error(
                "Decryption failed: user=%s record=%s", self._user_id, record_id,
            )
            raise DecryptionFailed(record_id=record_id) from err

    # ------------------------------------------------------------------
    # Payloads
    # ------------------------------------------------------------------

    def encrypt_payload(self, fields: Any) -> EncryptedPayload:
        """Serialize a payload field map (or payload model) and encrypt it."""
        return self.encrypt_bytes(serialize_payload(fields))

    def decrypt_payload(self, record: Any) -> dict:
        """Decrypt a stored record's payload back to its field map.

        Args:
            record: Anything with ``ciphertext`` and ``nonce`` attributes
                (``VaultEntry``, ``DocumentVault``).
        """
        record_id = getattr(record, "id", None)
        data = self.decrypt_bytes(record.ciphertext, record.nonce, record_id)
        try:
            return deserialize_payload(data)
        except DecryptionFailed as err:
            raise DecryptionFailed(record_id=record_id) from err

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def lock(self) -> None:
        """Zero the key buffer and refuse further use."""
        if self._locked:
            return
        for i in range(len(self._key)):
            self._key[i] = 0
        self._locked = True
        logger.debug("Session locked: user=%s", self._user_id)

    def __enter__(self) -> "MasterKeySession":
        return self

    def __exit__(self, *exc) -> None:
        self.lock()

    async def __aenter__(self) -> "MasterKeySession":
        return self

    async def __aexit__(self, *exc) -> None:
        self.lock()

"""
Vault Key Rotation — Re-encryption of every record when the master passphrase changes.

The rotation runs in two phases:

1. *Prepare* (no side effects): verify the old passphrase, read every entry
   and document record, decrypt all of them with the old key, derive the new
   salt/key/hash and re-encrypt every payload with a fresh nonce.
2. *Commit*: write all re-encrypted records, then write the registry last,
   guarded by the registry's previous ``updated_at``. The registry write is
   the commit point. If a record write fails, every record attempted so far
   (the failing one included, its write may have landed) is restored to its
   previous ciphertext and the registry is left untouched. A failed registry
   write is read back: the new salt means committed, anything else rolls the
   records back.

Cancelling during *prepare* is always safe. Once *commit* has started it runs
to completion even if the caller is cancelled.

Security Note:
    Plaintext exists in memory only between decryption and re-encryption.
    Never log plaintext or ciphertext values; only record ids and counts.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Any, Optional

from ..exceptions import (
    DecryptionFailed,
    InvalidArgument,
    InvalidCredentials,
    RotationFailed,
    StoreUnavailable,
)
from ..models import EntryKind, VaultRecord, VaultRegistryRecord, utcnow
from ..store import RecordStore, call_store
from .config import VaultConfig
from .crypto import KeyDerivationPool, decrypt, encrypt, generate_salt, hashes_match
from .encoder import encode_for_storage

logger = logging.getLogger("navigator.safe")


async def _restore(
    store: RecordStore,
    originals: list[VaultRecord],
    timeout: Optional[float],
) -> int:
    """Write back the pre-rotation version of records. Returns failures."""
    failures = 0
    for record in originals:
        try:
            await call_store(store.put_record(record), timeout)
        except Exception as err:  # keep restoring the rest
            failures += 1
            logger.error(
                "Could not restore record id=%s after failed rotation: %s",
                record.id, type(err).__name__,
            )
    return failures


async def _commit(
    store: RecordStore,
    originals: list[VaultRecord],
    updated: list[VaultRecord],
    registry: VaultRegistryRecord,
    new_registry: VaultRegistryRecord,
    timeout: Optional[float],
) -> None:
    written: list[VaultRecord] = []
    try:
        for original, record in zip(originals, updated):
            # a failed put may still have been applied
            written.append(original)
            await call_store(store.put_record(record), timeout)
    except Exception as err:
        logger.error(
            "Rotation write failed for user=%s at record %d/%d: %s",
            registry.user_id, len(written), len(updated), type(err).__name__,
        )
        await _restore(store, written, timeout)
        raise RotationFailed() from err

    try:
        committed = await call_store(
            store.update_registry(new_registry, registry.updated_at), timeout,
        )
    except Exception as err:
        # outcome unknown: read back before deciding whether to roll back
        logger.error(
            "Registry write failed for user=%s: %s",
            registry.user_id, type(err).__name__,
        )
        try:
            current = await call_store(store.get_registry(registry.user_id), timeout)
        except StoreUnavailable:
            logger.error(
                "Rotation outcome unknown for user=%s; registry unreachable",
                registry.user_id,
            )
            raise RotationFailed() from err
        if current is not None and current.salt == new_registry.salt:
            return
        await _restore(store, originals, timeout)
        raise RotationFailed() from err

    if not committed:
        logger.warning(
            "Registry changed during rotation for user=%s; rolling back",
            registry.user_id,
        )
        await _restore(store, originals, timeout)
        raise RotationFailed()


async def rotate_master_passphrase(
    store: RecordStore,
    kdf: KeyDerivationPool,
    user_id: str,
    old_passphrase: str,
    new_passphrase: str,
    config: Optional[VaultConfig] = None,
) -> dict[str, Any]:
    """Change the master passphrase and re-encrypt every record.

    The caller must hold the user's vault lock for the whole call.

    Args:
        store: Record store holding the registry and all records.
        kdf: Worker pool used for key derivation.
        user_id: Owner of the vault.
        old_passphrase: Current master passphrase.
        new_passphrase: Replacement master passphrase.
        config: Vault settings.

    Returns:
        Stats dict with keys: entries, documents, rotated.

    Raises:
        InvalidArgument: If ``new_passphrase`` is empty.
        InvalidCredentials: If ``old_passphrase`` does not match.
        RotationFailed: On any failure after verification; the previous
            passphrase remains valid.
    """
    config = config or kdf.config
    timeout = config.store_timeout
    if not isinstance(new_passphrase, str) or not new_passphrase:
        raise InvalidArgument("New passphrase cannot be empty")

    # 1. verify
    registry = await call_store(store.get_registry(user_id), timeout)
    if registry is None:
        # same work as a real check
        await kdf.derive_verification_hash(old_passphrase, generate_salt(config))
        raise InvalidCredentials()
    computed = await kdf.derive_verification_hash(old_passphrase, registry.salt)
    if not hashes_match(computed, registry.verification_hash):
        logger.warning("Rotation refused for user=%s: wrong passphrase", user_id)
        raise InvalidCredentials()

    logger.info("Starting passphrase rotation for user=%s", user_id)
    try:
        # 2. old key
        old_key = await kdf.derive_key(old_passphrase, registry.salt)

        # 3. every record
        originals: list[VaultRecord] = []
        stats = {"entries": 0, "documents": 0, "rotated": 0}
        for kind in EntryKind:
            rows = await call_store(store.list_records(user_id, kind), timeout)
            stats["entries" if kind is EntryKind.ENTRY else "documents"] = len(rows)
            originals.extend(rows)

        # 4. decrypt all before touching anything
        plaintexts: list[bytes] = []
        for record in originals:
            try:
                plaintexts.append(
                    decrypt(record.ciphertext, record.nonce, old_key, config)
                )
            except DecryptionFailed as err:
                logger.error(
                    "Rotation aborted for user=%s: record id=%s does not decrypt",
                    user_id, record.id,
                )
                raise RotationFailed() from err

        # 5. new key material
        new_salt = generate_salt(config)
        new_key = await kdf.derive_key(new_passphrase, new_salt)
        new_hash = await kdf.derive_verification_hash(new_passphrase, new_salt)

        # 6. re-encrypt, each with its own nonce
        now = utcnow()
        if now <= registry.updated_at:
            now = registry.updated_at + timedelta(microseconds=1)
        updated: list[VaultRecord] = []
        for record, plaintext in zip(originals, plaintexts):
            payload = encrypt(plaintext, new_key, config)
            updated.append(record.model_copy(update={
                "ciphertext": payload.ciphertext,
                "nonce": payload.nonce,
                "updated_at": now,
            }))
        plaintexts.clear()
        new_registry = registry.model_copy(update={
            "salt": encode_for_storage(new_salt),
            "verification_hash": new_hash,
            "updated_at": now,
        })
    except (StoreUnavailable, InvalidArgument) as err:
        raise RotationFailed() from err

    # 7. commit; not cancellable once started
    commit = asyncio.ensure_future(
        _commit(store, originals, updated, registry, new_registry, timeout)
    )
    try:
        await asyncio.shield(commit)
    except asyncio.CancelledError:
        logger.warning(
            "Rotation for user=%s cancelled during commit; finishing writes",
            user_id,
        )
        await commit
        raise

    stats["rotated"] = len(updated)
    logger.info("Passphrase rotation complete for user=%s: %s", user_id, stats)
    return stats

"""
Vault Crypto Core — Key derivation, entry encryption/decryption, and serialization.

Key derivation:
- Encryption key: PBKDF2-HMAC-SHA256(passphrase, salt || "navigator-safe:key") → 32B
- Verification hash: PBKDF2-HMAC-SHA256(passphrase, salt || "navigator-safe:verify")
  → HKDF-SHA256(info="navigator-safe:verify") → hex

The two derivations use distinct domain tags, so the stored verification hash
cannot be turned back into the encryption key.

Entry encryption: AEAD (AES-256-GCM or ChaCha20-Poly1305) with a fresh random
96-bit nonce per call. Ciphertext and nonce are returned as base64 text.

Security Note:
    Never log plaintext, ciphertext, passphrases or key material.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import asyncio
import base64
import functools
import hmac
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, NamedTuple, Optional, Union
from collections.abc import Mapping

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import DecryptionFailed, InvalidArgument
from .config import VaultConfig
from .encoder import decode_from_storage, encode_for_storage, random_bytes

logger = logging.getLogger("navigator.safe")

NONCE_SIZE = 12  # 96-bit nonce
KEY_LENGTH = 32  # AES-256
TAG_SIZE = 16

KEY_TAG = b"navigator-safe:key"
VERIFY_TAG = b"navigator-safe:verify"

_BYTES_WRAPPER_KEY = "__vault_bytes_b64__"

SaltLike = Union[bytes, str]


class EncryptedPayload(NamedTuple):
    """Ciphertext and nonce, both in storage text form."""

    ciphertext: str
    nonce: str


def _get_cipher_cls(backend: str) -> type:
    """Return the AEAD cipher class for a configured backend name."""
    if backend == "chacha20":
        return ChaCha20Poly1305
    return AESGCM


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def _passphrase_bytes(passphrase: str) -> bytes:
    if not isinstance(passphrase, str) or not passphrase:
        raise InvalidArgument("Passphrase cannot be empty")
    return passphrase.encode("utf-8")


def _salt_bytes(salt: SaltLike) -> bytes:
    if isinstance(salt, str):
        salt = decode_from_storage(salt)
    if not isinstance(salt, (bytes, bytearray)) or not salt:
        raise InvalidArgument("Salt is missing or malformed")
    return bytes(salt)


def _pbkdf2(secret: bytes, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret)


def generate_salt(config: Optional[VaultConfig] = None) -> bytes:
    """Generate a random per-user salt."""
    config = config or VaultConfig()
    return random_bytes(config.salt_length)


def derive_key(
    passphrase: str,
    salt: SaltLike,
    config: Optional[VaultConfig] = None,
) -> bytes:
    """Derive the 32-byte symmetric encryption key.

    Deterministic: the same passphrase and salt always give the same key.

    Args:
        passphrase: The master passphrase.
        salt: Raw salt bytes or its base64 storage text.
        config: Vault settings (iteration count).

    Returns:
        32-byte derived key.

    Raises:
        InvalidArgument: On empty passphrase or malformed salt.
    """
    config = config or VaultConfig()
    secret = _passphrase_bytes(passphrase)
    salt = _salt_bytes(salt)
    return _pbkdf2(secret, salt + KEY_TAG, config.kdf_iterations)


def derive_verification_hash(
    passphrase: str,
    salt: SaltLike,
    config: Optional[VaultConfig] = None,
) -> str:
    """Derive the hex verification hash stored in the vault registry.

    Uses a separate domain tag from :func:`derive_key` plus an HKDF expansion,
    so the hash proves knowledge of the passphrase without exposing the key.

    Raises:
        InvalidArgument: On empty passphrase or malformed salt.
    """
    config = config or VaultConfig()
    secret = _passphrase_bytes(passphrase)
    salt = _salt_bytes(salt)
    stretched = _pbkdf2(secret, salt + VERIFY_TAG, config.verify_iterations)
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,
        info=VERIFY_TAG,
    )
    return hkdf.derive(stretched).hex()


def hashes_match(computed: str, stored: str) -> bool:
    """Constant-time comparison of two verification hashes."""
    if not isinstance(stored, str) or not isinstance(computed, str):
        return False
    return hmac.compare_digest(computed.encode("ascii"), stored.encode("ascii"))


class KeyDerivationPool:
    """Dedicated worker pool that keeps PBKDF2 off the event loop.

    Awaiting a derivation that gets cancelled leaves no side effects: the
    worker finishes and its result is discarded.
    """

    def __init__(self, config: Optional[VaultConfig] = None) -> None:
        self._config = config or VaultConfig()
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.kdf_workers,
            thread_name_prefix="navigator-safe-kdf",
        )

    @property
    def config(self) -> VaultConfig:
        return self._config

    async def _run(self, func, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, functools.partial(func, *args, self._config),
        )

    async def derive_key(self, passphrase: str, salt: SaltLike) -> bytes:
        return await self._run(derive_key, passphrase, salt)

    async def derive_verification_hash(self, passphrase: str, salt: SaltLike) -> str:
        return await self._run(derive_verification_hash, passphrase, salt)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


# ---------------------------------------------------------------------------
# Entry cipher
# ---------------------------------------------------------------------------

def _check_key(key: Union[bytes, bytearray]) -> bytes:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        raise InvalidArgument("Encryption key must be 32 bytes")
    return bytes(key)


def encrypt(
    plaintext: bytes,
    key: Union[bytes, bytearray],
    config: Optional[VaultConfig] = None,
) -> EncryptedPayload:
    """Encrypt a payload with a fresh random nonce.

    There is no way to pass a nonce in; every call draws its own.

    Args:
        plaintext: Bytes to encrypt.
        key: 32-byte symmetric key.
        config: Vault settings (cipher backend).

    Returns:
        EncryptedPayload(ciphertext, nonce) in base64 storage text.
    """
    config = config or VaultConfig()
    if not isinstance(plaintext, (bytes, bytearray)):
        raise InvalidArgument("Plaintext must be bytes")
    cipher = _get_cipher_cls(config.cipher_backend)(_check_key(key))
    nonce = random_bytes(NONCE_SIZE)
    ct = cipher.encrypt(nonce, bytes(plaintext), None)
    return EncryptedPayload(encode_for_storage(ct), encode_for_storage(nonce))


def decrypt(
    ciphertext: str,
    nonce: str,
    key: Union[bytes, bytearray],
    config: Optional[VaultConfig] = None,
) -> bytes:
    """Decrypt and authenticate a payload.

    Wrong key, tampering, truncation and malformed encodings all raise the
    same :class:`DecryptionFailed`.

    Returns:
        Decrypted plaintext bytes.
    """
    config = config or VaultConfig()
    key = _check_key(key)
    try:
        ct = decode_from_storage(ciphertext)
        iv = decode_from_storage(nonce)
        if len(iv) != NONCE_SIZE or len(ct) < TAG_SIZE:
            raise DecryptionFailed()
        cipher = _get_cipher_cls(config.cipher_backend)(key)
        return cipher.decrypt(iv, ct, None)
    except (InvalidTag, InvalidArgument) as err:
        raise DecryptionFailed() from err


# ---------------------------------------------------------------------------
# Payload serialization
# ---------------------------------------------------------------------------

def _default(obj: Any) -> Any:
    if isinstance(obj, (bytes, bytearray)):
        return {_BYTES_WRAPPER_KEY: base64.b64encode(bytes(obj)).decode("ascii")}
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json", by_alias=True, exclude_none=True)
    raise TypeError(f"Type is not serializable: {type(obj).__name__}")


def _restore(value: Any) -> Any:
    if isinstance(value, dict):
        if len(value) == 1 and _BYTES_WRAPPER_KEY in value:
            return base64.b64decode(value[_BYTES_WRAPPER_KEY])
        return {k: _restore(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_restore(v) for v in value]
    return value


def serialize_payload(fields: Any) -> bytes:
    """Serialize a payload field map to bytes for encryption.

    Accepts a mapping or a pydantic payload model. ``bytes`` values are
    wrapped as ``{"__vault_bytes_b64__": "<base64>"}`` for a safe JSON round-trip.

    Raises:
        InvalidArgument: If the payload is not a mapping or not serializable.
    """
    if hasattr(fields, "model_dump"):
        fields = fields.model_dump(mode="json", by_alias=True, exclude_none=True)
    if not isinstance(fields, Mapping):
        raise InvalidArgument("Payload must be a mapping of fields")
    try:
        return orjson.dumps(dict(fields), default=_default)
    except TypeError as err:
        raise InvalidArgument("Payload contains unserializable values") from err


def deserialize_payload(data: bytes) -> dict:
    """Deserialize decrypted bytes back to a field map.

    Raises:
        DecryptionFailed: If the decrypted bytes are not a JSON object.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise DecryptionFailed() from err
    if not isinstance(parsed, dict):
        raise DecryptionFailed()
    return _restore(parsed)

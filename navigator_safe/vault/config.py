"""
Vault Configuration — Key derivation and storage settings.

Settings can be read from environment variables by ``VaultConfig.from_env``:
    SAFE_KDF_ITERATIONS = <int>      PBKDF2 rounds for the encryption key
    SAFE_VERIFY_ITERATIONS = <int>   PBKDF2 rounds for the verification hash
    SAFE_SALT_LENGTH = <int>         salt size in bytes
    SAFE_CIPHER_BACKEND = aesgcm | chacha20
    SAFE_DELETE_BATCH_SIZE = <int>
    SAFE_KDF_WORKERS = <int>
    SAFE_STORE_TIMEOUT = <float>     seconds

The library never reads the environment on its own; callers opt in.

Security Note:
    Never log key material. Only log iteration counts and backend names.
"""
import os
import logging

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("navigator.safe")

DEFAULT_KDF_ITERATIONS = 600_000  # OWASP 2023 guidance for PBKDF2-SHA256
DEFAULT_SALT_LENGTH = 16
DEFAULT_TOTP_SECRET_LENGTH = 20  # 160-bit, RFC 4226 recommendation


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    kdf_iterations: int = Field(default=DEFAULT_KDF_ITERATIONS, ge=1000)
    verify_iterations: int = Field(default=DEFAULT_KDF_ITERATIONS, ge=1000)
    salt_length: int = Field(default=DEFAULT_SALT_LENGTH, ge=16, le=64)
    cipher_backend: str = Field(default="aesgcm")
    totp_secret_length: int = Field(default=DEFAULT_TOTP_SECRET_LENGTH, ge=10, le=64)
    delete_batch_size: int = Field(default=100, ge=1, le=1000)
    kdf_workers: int = Field(default=2, ge=1, le=32)
    store_timeout: float = Field(default=30.0, gt=0)

    model_config = {"frozen": True}

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Unset variables keep their defaults.

        Returns:
            Populated VaultConfig instance.
        """
        mapping = {
            "kdf_iterations": "SAFE_KDF_ITERATIONS",
            "verify_iterations": "SAFE_VERIFY_ITERATIONS",
            "salt_length": "SAFE_SALT_LENGTH",
            "cipher_backend": "SAFE_CIPHER_BACKEND",
            "delete_batch_size": "SAFE_DELETE_BATCH_SIZE",
            "kdf_workers": "SAFE_KDF_WORKERS",
            "store_timeout": "SAFE_STORE_TIMEOUT",
        }
        values = {
            field: os.environ[env]
            for field, env in mapping.items()
            if env in os.environ
        }
        config = cls(**values)
        logger.debug(
            "Vault config loaded: backend=%s kdf_iterations=%d",
            config.cipher_backend, config.kdf_iterations,
        )
        return config

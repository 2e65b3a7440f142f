"""Safe Vault — client-side encrypted storage for passwords and documents.

Security Note (Threat Model):
    The record store only ever sees ciphertext, nonces, salts and a
    verification hash; a full store compromise does not reveal payloads
    without the master passphrase. The derived key lives in process memory
    for the lifetime of a ``MasterKeySession`` and decrypted payloads exist
    in memory while in use. A memory dump of the application process could
    expose both. This is an accepted limitation: ``MasterKeySession.lock()``
    zeroes the key buffer, but Python cannot guarantee that no other copy
    survives.
"""

from .config import VaultConfig
from .crypto import KeyDerivationPool, derive_key, derive_verification_hash, encrypt, decrypt
from .session import MasterKeySession
from .registry import VaultRegistry
from .entries import ImportResult, VaultEntryManager
from .key_rotation import rotate_master_passphrase
from .totp import TOTPFields, TOTPProvisioner
from .backup import (
    EncryptedExport,
    export_csv,
    export_encrypted,
    export_plaintext,
    import_encrypted,
)
from .csv_import import CSVImportSummary, import_csv, parse_keepass_csv
from .passwords import generate_password, password_strength
from .safe_vault import SafeVault

__all__ = [
    "SafeVault",
    "VaultConfig",
    "KeyDerivationPool",
    "derive_key",
    "derive_verification_hash",
    "encrypt",
    "decrypt",
    "MasterKeySession",
    "VaultRegistry",
    "VaultEntryManager",
    "ImportResult",
    "rotate_master_passphrase",
    "TOTPFields",
    "TOTPProvisioner",
    "EncryptedExport",
    "export_encrypted",
    "import_encrypted",
    "export_plaintext",
    "export_csv",
    "CSVImportSummary",
    "parse_keepass_csv",
    "import_csv",
    "generate_password",
    "password_strength",
]

"""Navigator Safe.

Client-side encrypted vault for credentials, documents and two-factor
secrets, unlocked by a single master passphrase.
"""
from .version import (
    __title__,
    __description__,
    __version__,
    __author__,
    __author_email__,
    __license__,
)
# vault must load before models: models uses vault.encoder
from .vault import (
    SafeVault,
    VaultConfig,
    MasterKeySession,
    TOTPProvisioner,
    generate_password,
    password_strength,
)
from .models import (
    Category,
    DecryptedRecord,
    DocumentEnvelope,
    DocumentVault,
    EntryEnvelope,
    EntryKind,
    SafeTag,
    VaultEntry,
    VaultRegistryRecord,
    parse_payload,
)
from .store import MemoryRecordStore, MemoryTagStore, RecordStore, TagStore
from .exceptions import (
    SafeError,
    InvalidArgument,
    AlreadyEnrolled,
    InvalidCredentials,
    DecryptionFailed,
    RotationFailed,
    NotFound,
    StoreUnavailable,
    VaultLocked,
)

__all__ = [
    "SafeVault",
    "VaultConfig",
    "MasterKeySession",
    "TOTPProvisioner",
    "generate_password",
    "password_strength",
    "Category",
    "DecryptedRecord",
    "DocumentEnvelope",
    "DocumentVault",
    "EntryEnvelope",
    "EntryKind",
    "SafeTag",
    "VaultEntry",
    "VaultRegistryRecord",
    "parse_payload",
    "MemoryRecordStore",
    "MemoryTagStore",
    "RecordStore",
    "TagStore",
    "SafeError",
    "InvalidArgument",
    "AlreadyEnrolled",
    "InvalidCredentials",
    "DecryptionFailed",
    "RotationFailed",
    "NotFound",
    "StoreUnavailable",
    "VaultLocked",
]

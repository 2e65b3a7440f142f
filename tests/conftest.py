"""
Shared fixtures for the Navigator Safe test suite.

Key derivation runs with the minimum iteration count so the suite stays
fast; every vault gets a fresh user id and an in-memory store.
"""
import uuid

import pytest

from navigator_safe.store import MemoryRecordStore, MemoryTagStore
from navigator_safe.vault import SafeVault, VaultConfig
from navigator_safe.vault.encoder import random_bytes
from navigator_safe.vault.session import MasterKeySession


@pytest.fixture
def config():
    """Fast vault settings for tests."""
    return VaultConfig(kdf_iterations=1000, verify_iterations=1000, kdf_workers=1)


@pytest.fixture
def user_id():
    return f"user-{uuid.uuid4()}"


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def tag_store():
    return MemoryTagStore()


@pytest.fixture
def vault(user_id, store, tag_store, config):
    """A SafeVault over in-memory stores; not enrolled yet."""
    safe = SafeVault(user_id, store, tags=tag_store, config=config)
    yield safe
    safe.close()


@pytest.fixture
def session(user_id, config):
    """A session over a random key, not bound to any registry state."""
    sess = MasterKeySession(user_id, random_bytes(32), config)
    yield sess
    sess.lock()

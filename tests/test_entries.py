"""
Tests for VaultEntryManager.

Tests cover:
- Create with envelope/payload separation
- Envelope-only versus payload updates
- Strict delete and batched delete by tag
- Listing, counting, searching and access tracking
- Import of already encrypted records
"""
import pytest

from navigator_safe.exceptions import (
    DecryptionFailed,
    InvalidArgument,
    NotFound,
    VaultLocked,
)
from navigator_safe.models import EntryKind, LoginPayload
from navigator_safe.store import MemoryRecordStore
from navigator_safe.vault import VaultConfig
from navigator_safe.vault.encoder import random_bytes
from navigator_safe.vault.entries import VaultEntryManager
from navigator_safe.vault.session import MasterKeySession


class CountingRecordStore(MemoryRecordStore):
    """Records the size of every bulk delete batch."""

    def __init__(self):
        super().__init__()
        self.batches = []

    async def delete_records(self, user_id, kind, record_ids):
        record_ids = list(record_ids)
        self.batches.append(len(record_ids))
        return await super().delete_records(user_id, kind, record_ids)


@pytest.fixture
def entries(user_id, store, config):
    return VaultEntryManager(user_id, store, EntryKind.ENTRY, config=config)


@pytest.fixture
def documents(user_id, store, config):
    return VaultEntryManager(user_id, store, EntryKind.DOCUMENT, config=config)


class TestCreate:
    """Tests for create."""

    @pytest.mark.asyncio
    async def test_create_and_open(self, entries, session):
        created = await entries.create(
            {"title": "Gmail", "url": "https://mail.google.com"},
            {"category": "login", "username": "alice", "password": "hunter2"},
            session,
        )
        assert created.fields["password"] == "hunter2"
        stored = await entries.get(created.id)
        assert stored.title == "Gmail"
        assert "hunter2" not in stored.ciphertext
        assert "hunter2" not in repr(stored)
        opened = await entries.open(created.id, session)
        assert opened.fields == created.fields
        assert opened.record.last_accessed_at is not None

    @pytest.mark.asyncio
    async def test_create_from_payload_model(self, entries, session):
        created = await entries.create(
            {"title": "Gmail"},
            LoginPayload(username="alice", password="pw", totp_secret="jbsw y3dp"),
            session,
        )
        assert created.fields["totpSecret"] == "JBSWY3DP"
        assert created.fields["category"] == "login"

    @pytest.mark.asyncio
    async def test_sensitive_field_in_envelope_rejected(self, entries, session):
        with pytest.raises(InvalidArgument):
            await entries.create({"title": "Gmail", "password": "leak"}, {}, session)
        assert await entries.count() == 0

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, entries, session):
        with pytest.raises(InvalidArgument):
            await entries.create({"title": ""}, {}, session)

    @pytest.mark.asyncio
    async def test_session_required(self, entries, config):
        with pytest.raises(InvalidArgument):
            await entries.create({"title": "x"}, {}, None)
        stranger = MasterKeySession("someone-else", random_bytes(32), config)
        with pytest.raises(InvalidArgument):
            await entries.create({"title": "x"}, {}, stranger)

    @pytest.mark.asyncio
    async def test_locked_session(self, entries, session):
        session.lock()
        with pytest.raises(VaultLocked):
            await entries.create({"title": "x"}, {"password": "p"}, session)

    @pytest.mark.asyncio
    async def test_document_record(self, documents, entries, session):
        created = await documents.create(
            {"title": "Car insurance", "provider": "dropbox", "document_type": "insurance"},
            {"category": "document", "fileReference": "dbx://policy.pdf", "priority": 3},
            session,
        )
        assert created.record.kind == "document"
        assert created.record.provider.value == "dropbox"
        assert await documents.count() == 1
        assert await entries.count() == 0


class TestUpdate:
    """Tests for update."""

    @pytest.mark.asyncio
    async def test_envelope_only_keeps_ciphertext(self, entries, session):
        created = await entries.create({"title": "Old"}, {"password": "p"}, session)
        updated = await entries.update(created.id, {"title": "New", "is_favorite": True})
        assert updated.title == "New"
        assert updated.is_favorite
        assert updated.ciphertext == created.record.ciphertext
        assert updated.nonce == created.record.nonce
        assert updated.updated_at >= created.record.updated_at
        assert entries.decrypt(updated, session) == {"password": "p"}

    @pytest.mark.asyncio
    async def test_payload_update_re_encrypts(self, entries, session):
        created = await entries.create({"title": "Bank"}, {"pin": "1111"}, session)
        updated = await entries.update(created.id, payload={"pin": "2222"}, session=session)
        assert updated.nonce != created.record.nonce
        assert updated.title == "Bank"
        assert entries.decrypt(updated, session) == {"pin": "2222"}

    @pytest.mark.asyncio
    async def test_payload_without_session(self, entries, session):
        created = await entries.create({"title": "Bank"}, {"pin": "1111"}, session)
        with pytest.raises(InvalidArgument):
            await entries.update(created.id, payload={"pin": "2222"})

    @pytest.mark.asyncio
    async def test_invalid_envelope_update(self, entries, session):
        created = await entries.create({"title": "Bank"}, {"pin": "1111"}, session)
        with pytest.raises(InvalidArgument):
            await entries.update(created.id, {"cvv": "123"})
        assert (await entries.get(created.id)).title == "Bank"

    @pytest.mark.asyncio
    async def test_update_missing(self, entries):
        with pytest.raises(NotFound):
            await entries.update("missing", {"title": "x"})


class TestDelete:
    """Tests for delete and delete_by_tag."""

    @pytest.mark.asyncio
    async def test_delete_is_strict(self, entries, session):
        created = await entries.create({"title": "x"}, {}, session)
        await entries.delete(created.id)
        with pytest.raises(NotFound):
            await entries.delete(created.id)
        with pytest.raises(NotFound):
            await entries.get(created.id)

    @pytest.mark.asyncio
    async def test_delete_other_users_record(self, entries, store, config, session):
        created = await entries.create({"title": "x"}, {}, session)
        other = VaultEntryManager("intruder", store, config=config)
        with pytest.raises(NotFound):
            await other.delete(created.id)
        assert await entries.count() == 1

    @pytest.mark.asyncio
    async def test_delete_by_tag_in_batches(self, user_id, session):
        store = CountingRecordStore()
        config = VaultConfig(kdf_iterations=1000, verify_iterations=1000, delete_batch_size=2)
        manager = VaultEntryManager(user_id, store, config=config)
        for i in range(5):
            await manager.create({"title": f"t{i}", "tags": ["work"]}, {}, session)
        keep = await manager.create({"title": "keep", "tags": ["home"]}, {}, session)

        removed = await manager.delete_by_tag("work")

        assert removed == 5
        assert store.batches == [2, 2, 1]
        remaining = await manager.list_records()
        assert [r.id for r in remaining] == [keep.id]

    @pytest.mark.asyncio
    async def test_delete_by_unknown_tag(self, entries):
        assert await entries.delete_by_tag("nothing") == 0


class TestQueries:
    """Tests for list_records, count, search and decrypt."""

    @pytest.mark.asyncio
    async def test_favourites_first(self, entries, session):
        a = await entries.create({"title": "A"}, {}, session)
        b = await entries.create({"title": "B", "is_favorite": True}, {}, session)
        c = await entries.create({"title": "C"}, {}, session)
        ids = [r.id for r in await entries.list_records()]
        assert ids[0] == b.id
        assert set(ids) == {a.id, b.id, c.id}
        assert await entries.count() == 3

    @pytest.mark.asyncio
    async def test_search_envelope_fields(self, entries, session):
        await entries.create({"title": "GitHub", "url": "https://github.com"}, {"password": "secret"}, session)
        await entries.create({"title": "Bank", "tags": ["Finance"]}, {}, session)
        assert [r.title for r in await entries.search("github")] == ["GitHub"]
        assert [r.title for r in await entries.search("finance")] == ["Bank"]
        assert await entries.search("secret") == []
        assert len(await entries.search("  ")) == 2

    @pytest.mark.asyncio
    async def test_decrypt_with_wrong_session(self, entries, session, user_id, config):
        created = await entries.create({"title": "x"}, {"password": "p"}, session)
        other = MasterKeySession(user_id, random_bytes(32), config)
        with pytest.raises(DecryptionFailed) as exc:
            entries.decrypt(created.record, other)
        assert exc.value.record_id == created.id

    @pytest.mark.asyncio
    async def test_mark_accessed(self, entries, session):
        created = await entries.create({"title": "x"}, {}, session)
        assert created.record.last_accessed_at is None
        record = await entries.mark_accessed(created.id)
        assert record.last_accessed_at is not None
        assert record.ciphertext == created.record.ciphertext


class TestImport:
    """Tests for import_records."""

    @pytest.mark.asyncio
    async def test_import_counts_failures(self, entries, session, user_id):
        created = await entries.create({"title": "x"}, {"password": "p"}, session)
        good = created.record.model_dump()
        await entries.delete(created.id)
        bad = {"title": "no ciphertext", "nonce": "AAAA"}

        result = await entries.import_records([good, bad], session)

        assert result.success == 1
        assert result.failed == 1
        restored = await entries.get(created.id)
        assert entries.decrypt(restored, session) == {"password": "p"}

    @pytest.mark.asyncio
    async def test_import_reowns_records(self, user_id, store, config):
        key = random_bytes(32)
        session = MasterKeySession(user_id, key, config)
        entries = VaultEntryManager(user_id, store, config=config)
        created = await entries.create({"title": "x"}, {}, session)
        target = VaultEntryManager("new-owner", MemoryRecordStore(), config=config)
        owner_session = MasterKeySession("new-owner", key, config)
        result = await target.import_records([created.record], owner_session)
        assert result.success == 1
        assert (await target.get(created.id)).user_id == "new-owner"

    @pytest.mark.asyncio
    async def test_import_rejects_records_under_another_key(self, entries, session, user_id, config):
        other = MasterKeySession(user_id, random_bytes(32), config)
        foreign = await entries.create({"title": "foreign"}, {"password": "p"}, other)
        await entries.delete(foreign.id)

        result = await entries.import_records([foreign.record], session)

        assert (result.success, result.failed) == (0, 1)
        assert await entries.count() == 0

    @pytest.mark.asyncio
    async def test_import_requires_session(self, entries):
        with pytest.raises(InvalidArgument):
            await entries.import_records([], None)

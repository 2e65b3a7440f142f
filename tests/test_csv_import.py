"""
Tests for KeePass CSV import.

Tests cover:
- Parsing with quoted multi-line fields, short rows and blank lines
- Keyword category detection against the user's system categories
- Import into the vault: encryption, duplicates, tagging and stale sessions
"""
import pytest

from navigator_safe.exceptions import InvalidArgument, VaultLocked
from navigator_safe.models import SafeTag
from navigator_safe.vault.csv_import import (
    CSVRow,
    category_mapping,
    detect_category,
    generate_preview,
    import_csv,
    parse_keepass_csv,
)

PASSPHRASE = "correct-horse-battery"

KEEPASS = (
    '"Account","Login Name","Password","Web Site","Comments"\r\n'
    '"GitHub","octocat","gh-pass","https://github.com","line one\nline two"\r\n'
    '\r\n'
    '"Amex Credit Card","alice","","","card on file"\r\n'
    '"Short row","bob"\r\n'
)


@pytest.fixture
def categories(user_id):
    return [
        SafeTag(user_id=user_id, name="Login/Credentials", is_system_category=True),
        SafeTag(user_id=user_id, name="Credit Card", is_system_category=True),
        SafeTag(user_id=user_id, name="Bank Account", is_system_category=True),
    ]


class TestParse:
    """Tests for parse_keepass_csv."""

    def test_rows_after_header(self):
        rows = parse_keepass_csv(KEEPASS)
        assert [r.account for r in rows] == ["GitHub", "Amex Credit Card", "Short row"]
        assert rows[0].comments == "line one\nline two"
        assert rows[0].web_site == "https://github.com"

    def test_short_rows_are_padded(self):
        row = parse_keepass_csv(KEEPASS)[-1]
        assert row == CSVRow("Short row", "bob", "", "", "")

    def test_header_only(self):
        assert parse_keepass_csv('"Account","Login Name"\n') == []

    @pytest.mark.parametrize("text", ["", "   \n "])
    def test_empty_text(self, text):
        with pytest.raises(InvalidArgument) as exc:
            parse_keepass_csv(text)
        assert str(exc.value) == "CSV file is empty"


class TestCategoryDetection:
    """Tests for keyword category detection."""

    def test_strong_match(self, categories):
        row = CSVRow("Amex Credit Card", "", "", "", "")
        tag_id, confidence = detect_category(row, categories)
        assert tag_id == categories[1].id
        assert confidence == "high"

    def test_medium_match(self, categories):
        row = CSVRow("Chase Checking", "", "", "https://chase.com", "")
        tag_id, confidence = detect_category(row, categories)
        assert tag_id == categories[2].id
        assert confidence == "medium"

    def test_no_match(self, categories):
        row = CSVRow("GitHub", "", "", "https://github.com", "")
        assert detect_category(row, categories) == (None, "low")

    def test_only_system_categories_count(self, user_id):
        custom = SafeTag(user_id=user_id, name="Credit Card")
        row = CSVRow("Amex Credit Card", "", "", "", "")
        assert detect_category(row, [custom]) == (None, "low")

    def test_mapping_and_preview(self, categories):
        rows = parse_keepass_csv(KEEPASS)
        assert category_mapping(rows, categories) == {
            "Login/Credentials": 2, "Credit Card": 1,
        }
        preview = generate_preview(rows, categories, limit=2)
        assert len(preview) == 2
        assert preview[0].password == "••••••••"
        assert preview[1].password is None
        assert preview[1].detected_category == "Credit Card"


class TestImport:
    """Tests for importing CSV rows into the vault."""

    @pytest.mark.asyncio
    async def test_rows_are_encrypted_and_categorized(self, vault):
        await vault.enroll(PASSPHRASE)
        session = await vault.unlock(PASSPHRASE)

        summary = await vault.import_csv(KEEPASS, session)

        assert (summary.total, summary.imported, summary.skipped) == (3, 3, 0)
        assert summary.errors == []
        assert summary.category_mapping == {"Login/Credentials": 2, "Credit Card": 1}
        by_title = {r.title: r for r in await vault.entries.list_records()}
        github = by_title["GitHub"]
        assert github.url == "https://github.com"
        assert "gh-pass" not in github.ciphertext
        assert vault.entries.decrypt(github, session) == {
            "username": "octocat", "password": "gh-pass", "notes": "line one\nline two",
        }
        card = by_title["Amex Credit Card"]
        names = {t.id: t.name for t in await vault.tags()}
        assert names[card.category_tag_id] == "Credit Card"
        assert "password" not in vault.entries.decrypt(card, session)

    @pytest.mark.asyncio
    async def test_duplicates_are_skipped(self, vault):
        await vault.enroll(PASSPHRASE)
        session = await vault.unlock(PASSPHRASE)
        await vault.entries.create(
            {"title": " github ", "url": "HTTPS://GITHUB.COM"}, {"password": "old"}, session,
        )
        text = KEEPASS + '"Short row","bob"\n'

        summary = await vault.import_csv(text, session)

        assert (summary.total, summary.imported, summary.skipped) == (4, 2, 2)
        assert await vault.entries.count() == 3

    @pytest.mark.asyncio
    async def test_selected_tag_is_attached(self, vault):
        await vault.enroll(PASSPHRASE)
        session = await vault.unlock(PASSPHRASE)

        await vault.import_csv(KEEPASS, session, tag_id="imported")

        for record in await vault.entries.list_records():
            assert record.tags == ["imported"]

    @pytest.mark.asyncio
    async def test_untitled_rows(self, vault, session):
        text = '"Account","Login Name"\n"","nobody"\n'
        summary = await import_csv(vault.entries, text, session, existing=[])
        assert summary.imported == 1
        records = await vault.entries.list_records()
        assert records[0].title == "Untitled"
        assert vault.entries.decrypt(records[0], session) == {"username": "nobody"}

    @pytest.mark.asyncio
    async def test_stale_session_is_refused(self, vault):
        await vault.enroll(PASSPHRASE)
        stale = await vault.unlock(PASSPHRASE)
        await vault.rotate(PASSPHRASE, "rotated-passphrase")

        with pytest.raises(VaultLocked):
            await vault.import_csv(KEEPASS, stale)
        assert await vault.entries.count() == 0

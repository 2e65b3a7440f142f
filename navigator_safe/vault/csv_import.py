"""
CSV Import — bring KeePass-style CSV exports into the vault.

Expected columns: ``"Account","Login Name","Password","Web Site","Comments"``.
The first row is a header and is skipped. Quoted fields may span lines.

Each row becomes a safe entry: the title and URL stay in the plaintext
envelope, username, password and notes are encrypted under the session key.
A category is guessed from keywords in the title, notes and URL, matched
against the user's system categories.

Security Note:
    Only counts and category names are logged, never row contents.
"""
import csv
import io
import logging
from typing import Literal, NamedTuple, Optional
from collections.abc import Iterable

from pydantic import BaseModel, Field

from ..exceptions import InvalidArgument, StoreUnavailable
from ..models import SafeTag, VaultRecord
from .entries import VaultEntryManager
from .session import MasterKeySession

logger = logging.getLogger("navigator.safe")

DEFAULT_CATEGORY = "Login/Credentials"

CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Credit Card": (
        "credit card", "cc ", "amex", "visa", "mastercard", "discover",
        "card number", "cvv", "expiry",
    ),
    "Bank Account": (
        "bank", "checking", "savings", "account", "icici", "chase", "sbi",
        "hdfc", "bofa", "wells fargo", "routing", "account number",
    ),
    "Insurance": (
        "insurance", "lic", "progressive", "cigna", "allstate", "policy", "premium",
    ),
    "Medical": (
        "medical", "health", "doctor", "hospital", "clinic", "prescription", "rx",
    ),
    "License/Software": ("license", "software", "product key", "serial", "activation"),
    "API Key": (
        "api key", "api", "secret key", "access token", "client id", "client secret",
    ),
    "WiFi": ("wifi", "network", "router", "ssid", "wireless"),
    "Gift Card": ("gift card", "giftcard", "voucher", "prepaid card"),
    "Identity Documents": (
        "passport", "aadhar", "aadhaar", "pan", "ssn", "dl", "driving license",
        "license plate", "vin",
    ),
    "Stock Trading Account": (
        "trading", "broker", "fidelity", "etrade", "robinhood", "schwab",
        "td ameritrade",
    ),
}

Confidence = Literal["high", "medium", "low"]


class CSVRow(NamedTuple):
    account: str
    login_name: str
    password: str
    web_site: str
    comments: str


class CSVPreview(BaseModel):
    """One row as shown before importing; the password is masked."""

    title: str
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    notes: Optional[str] = None
    detected_category: str
    confidence: Confidence


class CSVImportSummary(BaseModel):
    total: int = 0
    imported: int = 0
    skipped: int = 0
    category_mapping: dict[str, int] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)


def parse_keepass_csv(text: str) -> list[CSVRow]:
    """Parse KeePass CSV text into rows.

    Short rows are padded with empty fields, blank lines are ignored.

    Raises:
        InvalidArgument: If the text is empty or is not valid CSV.
    """
    if not text or not text.strip():
        raise InvalidArgument("CSV file is empty")
    reader = csv.reader(io.StringIO(text, newline=""))
    rows: list[CSVRow] = []
    try:
        next(reader, None)  # header
        for fields in reader:
            if not any(fields):
                continue
            fields = (fields + [""] * 5)[:5]
            rows.append(CSVRow(*fields))
    except csv.Error as err:
        raise InvalidArgument(f"Invalid CSV: {err}") from err
    return rows


def _system_categories(tags: Optional[Iterable[SafeTag]]) -> dict[str, SafeTag]:
    return {t.name: t for t in (tags or []) if t.is_system_category}


def detect_category(
    row: CSVRow,
    tags: Optional[Iterable[SafeTag]] = None,
) -> tuple[Optional[str], Confidence]:
    """Guess the category tag id of a row.

    Every matched keyword scores its length; a category name found in the
    title scores 10 more. Only categories the user actually has are candidates.
    """
    categories = _system_categories(tags)
    text = f"{row.account} {row.comments} {row.web_site}".lower()
    title = row.account.lower()
    best_id, best_score = None, 0
    for name, keywords in CATEGORY_KEYWORDS.items():
        tag = categories.get(name)
        if tag is None:
            continue
        score = sum(len(k) for k in keywords if k in text)
        if name.lower() in title:
            score += 10
        if score > best_score:
            best_id, best_score = tag.id, score
    if best_score >= 15:
        return best_id, "high"
    if best_score >= 5:
        return best_id, "medium"
    return best_id, "low"


def _category_name(tag_id: Optional[str], tags: Optional[Iterable[SafeTag]]) -> str:
    if tag_id:
        for tag in tags or []:
            if tag.id == tag_id:
                return tag.name
    return DEFAULT_CATEGORY


def generate_preview(
    rows: Iterable[CSVRow],
    tags: Optional[Iterable[SafeTag]] = None,
    limit: int = 10,
) -> list[CSVPreview]:
    tags = list(tags or [])
    preview = []
    for row in list(rows)[:limit]:
        tag_id, confidence = detect_category(row, tags)
        preview.append(CSVPreview(
            title=row.account or "Untitled",
            url=row.web_site or None,
            username=row.login_name or None,
            password="••••••••" if row.password else None,
            notes=row.comments or None,
            detected_category=_category_name(tag_id, tags),
            confidence=confidence,
        ))
    return preview


def category_mapping(
    rows: Iterable[CSVRow],
    tags: Optional[Iterable[SafeTag]] = None,
) -> dict[str, int]:
    """Count rows per detected category name."""
    tags = list(tags or [])
    mapping: dict[str, int] = {}
    for row in rows:
        name = _category_name(detect_category(row, tags)[0], tags)
        mapping[name] = mapping.get(name, 0) + 1
    return mapping


def _duplicate_key(title: Optional[str], url: Optional[str]) -> str:
    return f"{(title or '').strip().lower()}|{(url or '').strip().lower()}"


async def import_csv(
    manager: VaultEntryManager,
    text: str,
    session: MasterKeySession,
    tags: Optional[Iterable[SafeTag]] = None,
    tag_id: Optional[str] = None,
    existing: Optional[Iterable[VaultRecord]] = None,
) -> CSVImportSummary:
    """Encrypt and store every new row of a KeePass CSV export.

    Rows whose title and URL match an existing entry (case-insensitive) are
    skipped, as are repeats within the file.

    Args:
        manager: Entry manager of the target collection.
        text: CSV content.
        session: Unlocked master key session.
        tags: The user's tags, for category detection.
        tag_id: Optional tag attached to every imported entry.
        existing: Records to check duplicates against; defaults to every
            record already in the collection.

    Raises:
        InvalidArgument: If the CSV cannot be parsed.
        VaultLocked: If ``session`` predates the latest rotation.
    """
    rows = parse_keepass_csv(text)
    tags = list(tags or [])
    if existing is None:
        existing = await manager.list_records()
    seen = {_duplicate_key(r.title, getattr(r, "url", None)) for r in existing}
    summary = CSVImportSummary(total=len(rows))
    for row in rows:
        key = _duplicate_key(row.account, row.web_site)
        if key in seen:
            summary.skipped += 1
            continue
        category_id, _ = detect_category(row, tags)
        envelope = {
            "title": row.account or "Untitled",
            "url": row.web_site or None,
            "category_tag_id": category_id,
            "tags": [tag_id] if tag_id else [],
        }
        payload = {
            name: value for name, value in (
                ("username", row.login_name),
                ("password", row.password),
                ("notes", row.comments),
            ) if value
        }
        try:
            await manager.create(envelope, payload, session)
        except (InvalidArgument, StoreUnavailable) as err:
            summary.errors.append(f'Error importing "{row.account}": {err}')
            logger.error(
                "CSV import row failed for user=%s: %s",
                session.user_id, type(err).__name__,
            )
            continue
        seen.add(key)
        summary.imported += 1
        name = _category_name(category_id, tags)
        summary.category_mapping[name] = summary.category_mapping.get(name, 0) + 1
    logger.info(
        "CSV import for user=%s: %d imported, %d skipped, %d failed",
        session.user_id, summary.imported, summary.skipped, len(summary.errors),
    )
    return summary

"""
Vault Backup — encrypted backups and plaintext migration exports.

- ``export_encrypted`` seals the whole record list (still individually
  encrypted) inside one more AEAD blob under the session key.
- ``import_encrypted`` reverses it; the records can then be restored with
  ``VaultEntryManager.import_records``.
- ``export_plaintext`` / ``export_csv`` decrypt every payload for migration
  to another tool. Their output is sensitive and must be handled by the
  caller accordingly.

Security Note:
    Only record ids and counts are logged.
"""
import csv
import io
import logging
from datetime import datetime
from typing import Annotated, Any, Optional, Union
from collections.abc import Iterable, Mapping

import orjson
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from ..exceptions import DecryptionFailed, InvalidArgument
from ..models import DocumentVault, SafeTag, VaultEntry, VaultRecord, utcnow
from .session import MasterKeySession

logger = logging.getLogger("navigator.safe")

EXPORT_VERSION = "1.0"

_records_adapter: TypeAdapter = TypeAdapter(
    list[Annotated[Union[VaultEntry, DocumentVault], Field(discriminator="kind")]]
)

CSV_COLUMNS: tuple[tuple[str, Optional[str]], ...] = (
    ("Username/Email", "username"),
    ("Password", "password"),
    ("Notes", "notes"),
    ("Card Number", "cardNumber"),
    ("CVV", "cvv"),
    ("Cardholder Name", "cardholderName"),
    ("Billing Address", "billingAddress"),
    ("PIN", "pin"),
    ("Bank Name", "bankName"),
    ("Account Number", "accountNumber"),
    ("Routing Number", "routingNumber"),
    ("Account Type", "accountType"),
    ("SWIFT Code", "swiftCode"),
    ("IBAN", "iban"),
    ("Broker Name", "brokerName"),
    ("Trading Platform", "tradingPlatform"),
    ("Account Holder", "accountHolder"),
    ("TOTP Secret", "totpSecret"),
    ("TOTP Issuer", "totpIssuer"),
    ("TOTP Account", "totpAccount"),
)


class ExportMetadata(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    entry_count: int
    categories: list[str] = Field(default_factory=list)


class EncryptedExport(BaseModel):
    """Encrypted backup document (JSON, camelCase keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: str = EXPORT_VERSION
    export_date: datetime = Field(default_factory=utcnow)
    encrypted_data: str = Field(repr=False)
    encrypted_data_iv: str = Field(repr=False)
    metadata: ExportMetadata

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump(mode="json", by_alias=True))


def _tag_names(tags: Optional[Iterable[SafeTag]]) -> dict[str, str]:
    return {t.id: t.name for t in (tags or [])}


def export_encrypted(
    records: Iterable[VaultRecord],
    session: MasterKeySession,
) -> EncryptedExport:
    """Seal a list of records into an encrypted backup."""
    records = list(records)
    data = {"entries": [r.model_dump(mode="json") for r in records]}
    sealed = session.encrypt_bytes(orjson.dumps(data))
    categories = sorted({
        r.category_tag_id for r in records
        if getattr(r, "category_tag_id", None)
    })
    logger.info(
        "Encrypted export for user=%s: %d record(s)", session.user_id, len(records),
    )
    return EncryptedExport(
        encrypted_data=sealed.ciphertext,
        encrypted_data_iv=sealed.nonce,
        metadata=ExportMetadata(entry_count=len(records), categories=categories),
    )


def load_export(document: Union[EncryptedExport, Mapping, str, bytes]) -> EncryptedExport:
    """Parse an encrypted backup from JSON text/bytes or a mapping.

    Raises:
        InvalidArgument: If the document is not a valid backup.
    """
    if isinstance(document, EncryptedExport):
        return document
    try:
        if isinstance(document, (str, bytes)):
            return EncryptedExport.model_validate_json(document)
        return EncryptedExport.model_validate(document)
    except ValidationError as err:
        raise InvalidArgument("Invalid backup format") from err


def import_encrypted(
    document: Union[EncryptedExport, Mapping, str, bytes],
    session: MasterKeySession,
) -> list[VaultRecord]:
    """Open an encrypted backup and return its records.

    Raises:
        DecryptionFailed: If the backup was sealed under another key.
        InvalidArgument: If the decrypted content is not a record list.
    """
    export = load_export(document)
    plaintext = session.decrypt_bytes(export.encrypted_data, export.encrypted_data_iv)
    try:
        data = orjson.loads(plaintext)
    except orjson.JSONDecodeError as err:
        raise DecryptionFailed() from err
    if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
        raise InvalidArgument("Invalid backup format: missing entries array")
    try:
        return _records_adapter.validate_python(data["entries"])
    except ValidationError as err:
        raise InvalidArgument("Invalid backup format: malformed entries") from err


def _decrypt_or_empty(record: VaultRecord, session: MasterKeySession) -> Optional[dict]:
    try:
        return session.decrypt_payload(record)
    except DecryptionFailed:
        return None


def export_plaintext(
    records: Iterable[VaultRecord],
    session: MasterKeySession,
    tags: Optional[Iterable[SafeTag]] = None,
) -> dict[str, Any]:
    """Decrypted migration export.

    Records that fail to decrypt are exported with an empty payload and
    counted in ``failed``.
    """
    names = _tag_names(tags)
    entries = []
    failed = 0
    for record in records:
        fields = _decrypt_or_empty(record, session)
        if fields is None:
            failed += 1
            fields = {}
        item = record.envelope().model_dump(mode="json", exclude_none=True)
        category = getattr(record, "category_tag_id", None)
        if category:
            item["category_tag_id"] = names.get(category, category)
        item["tags"] = [names.get(t, t) for t in record.tags]
        item["kind"] = record.kind
        item["data"] = fields
        entries.append(item)
    if failed:
        logger.warning(
            "Plaintext export for user=%s: %d record(s) could not be decrypted",
            session.user_id, failed,
        )
    return {
        "version": EXPORT_VERSION,
        "exportDate": utcnow().isoformat(),
        "entries": entries,
        "failed": failed,
    }


def export_csv(
    records: Iterable[VaultRecord],
    session: MasterKeySession,
    tags: Optional[Iterable[SafeTag]] = None,
) -> str:
    """Decrypted CSV export with the classic password-manager column set."""
    names = _tag_names(tags)
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(
        ["Title", "URL", "Category", "Tags", "Favorite", "Expires At"]
        + [header for header, _ in CSV_COLUMNS]
        + ["Created", "Updated"]
    )
    for record in records:
        fields = _decrypt_or_empty(record, session) or {}
        category = getattr(record, "category_tag_id", None)
        expires = getattr(record, "expires_at", None) or getattr(record, "expiry_date", None)
        writer.writerow(
            [
                record.title,
                getattr(record, "url", None) or "",
                names.get(category, category) if category else "",
                "; ".join(names.get(t, t) for t in record.tags),
                "Yes" if record.is_favorite else "No",
                expires.isoformat() if expires else "",
            ]
            + ["" if fields.get(key) is None else str(fields[key]) for _, key in CSV_COLUMNS]
            + [record.created_at.isoformat(), record.updated_at.isoformat()]
        )
    return buffer.getvalue()

"""
Navigator Safe data models.

Stored records split into a plaintext, searchable *envelope* and an opaque
encrypted *payload* (``ciphertext`` + ``nonce``). Envelope models forbid
unknown fields, so values that belong in the payload cannot leak into them.

Decrypted payloads are modelled as a tagged variant keyed by
:class:`Category`. Payload models keep unknown keys: the vault treats the
payload as opaque and must not drop fields it does not know about.
"""
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .exceptions import InvalidArgument
from .vault.encoder import normalize_base32

MAX_CUSTOM_FIELDS = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class EntryKind(str, Enum):
    """Record collections owned by the vault."""

    ENTRY = "entry"
    DOCUMENT = "document"


class Category(str, Enum):
    LOGIN = "login"
    CREDIT_CARD = "credit_card"
    BANK_ACCOUNT = "bank_account"
    STOCK_TRADING = "stock_trading"
    IDENTITY = "identity"
    INSURANCE = "insurance"
    MEDICAL = "medical"
    LICENSE = "license"
    API_KEY = "api_key"
    WIFI = "wifi"
    GIFT_CARD = "gift_card"
    ADDRESS = "address"
    OTHER = "other"
    DOCUMENT = "document"


class DocumentProvider(str, Enum):
    GOOGLE = "google"
    ONEDRIVE = "onedrive"
    DROPBOX = "dropbox"


class DocumentType(str, Enum):
    INVOICE = "invoice"
    CONTRACT = "contract"
    IDENTITY = "identity"
    INSURANCE = "insurance"
    MEDICAL = "medical"
    TAX = "tax"
    WARRANTY = "warranty"
    LICENSE = "license"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class VaultRegistryRecord(BaseModel):
    """The single per-user (salt, verification hash) record."""

    id: str = Field(default_factory=new_id)
    user_id: str
    verification_hash: str = Field(repr=False)
    salt: str = Field(repr=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SafeTag(BaseModel):
    """Category or custom tag visible only in the safe section."""

    id: str = Field(default_factory=new_id)
    user_id: str
    name: str = Field(min_length=1)
    color: str = "#667eea"
    is_system_category: bool = False
    is_safe_only: bool = True
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Envelopes and stored records
# ---------------------------------------------------------------------------

class EntryEnvelope(BaseModel):
    """Plaintext, searchable fields of a safe entry."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1)
    url: Optional[str] = None
    category_tag_id: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    is_favorite: bool = False
    expires_at: Optional[date] = None


class DocumentEnvelope(BaseModel):
    """Plaintext, searchable fields of a document vault record."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1)
    provider: DocumentProvider = DocumentProvider.GOOGLE
    document_type: DocumentType = DocumentType.OTHER
    tags: list[str] = Field(default_factory=list)
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    is_favorite: bool = False


class _StoredFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id)
    user_id: str
    ciphertext: str = Field(repr=False)
    nonce: str = Field(repr=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_accessed_at: Optional[datetime] = None


class VaultEntry(EntryEnvelope, _StoredFields):
    """A stored safe entry: envelope plus encrypted payload."""

    kind: Literal["entry"] = "entry"

    def envelope(self) -> EntryEnvelope:
        return EntryEnvelope(**self.model_dump(include=set(EntryEnvelope.model_fields)))


class DocumentVault(DocumentEnvelope, _StoredFields):
    """A stored document vault record: envelope plus encrypted payload."""

    kind: Literal["document"] = "document"

    def envelope(self) -> DocumentEnvelope:
        return DocumentEnvelope(**self.model_dump(include=set(DocumentEnvelope.model_fields)))


VaultRecord = Union[VaultEntry, DocumentVault]

ENVELOPES: dict[EntryKind, type[BaseModel]] = {
    EntryKind.ENTRY: EntryEnvelope,
    EntryKind.DOCUMENT: DocumentEnvelope,
}
RECORDS: dict[EntryKind, type[BaseModel]] = {
    EntryKind.ENTRY: VaultEntry,
    EntryKind.DOCUMENT: DocumentVault,
}


class DecryptedRecord(BaseModel):
    """Transient decrypted view of a record; never written back to storage."""

    record: Union[VaultEntry, DocumentVault] = Field(discriminator="kind")
    fields: dict[str, Any] = Field(default_factory=dict, repr=False)

    @property
    def id(self) -> str:
        return self.record.id


# ---------------------------------------------------------------------------
# Payload variants
# ---------------------------------------------------------------------------

class CustomField(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    key: str
    value: str
    is_encrypted: bool = True


class BasePayload(BaseModel):
    """Fields shared by every payload category."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    notes: Optional[str] = None
    expiry_date: Optional[str] = None
    custom_fields: list[CustomField] = Field(
        default_factory=list, max_length=MAX_CUSTOM_FIELDS,
    )
    totp_secret: Optional[str] = None
    totp_issuer: Optional[str] = None
    totp_account: Optional[str] = None

    @field_validator("totp_secret")
    @classmethod
    def normalize_totp_secret(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return normalize_base32(v)

    def to_fields(self) -> dict[str, Any]:
        """Plain JSON-ready mapping using the stored (camelCase) field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LoginPayload(BasePayload):
    category: Literal["login"] = "login"
    username: Optional[str] = None
    password: Optional[str] = None


class CreditCardPayload(BasePayload):
    category: Literal["credit_card"] = "credit_card"
    card_number: Optional[str] = None
    cvv: Optional[str] = None
    cardholder_name: Optional[str] = None
    billing_address: Optional[str] = None
    pin: Optional[str] = None


class BankAccountPayload(BasePayload):
    category: Literal["bank_account"] = "bank_account"
    account_number: Optional[str] = None
    routing_number: Optional[str] = None
    bank_name: Optional[str] = None
    account_type: Optional[str] = None
    swift_code: Optional[str] = None
    iban: Optional[str] = None


class StockTradingPayload(BasePayload):
    category: Literal["stock_trading"] = "stock_trading"
    broker_name: Optional[str] = None
    trading_platform: Optional[str] = None
    trading_account_type: Optional[str] = None
    account_holder: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


class IdentityPayload(BasePayload):
    category: Literal["identity"] = "identity"
    document_number: Optional[str] = None
    issue_date: Optional[str] = None
    issue_authority: Optional[str] = None
    issue_location: Optional[str] = None


class InsurancePayload(BasePayload):
    category: Literal["insurance"] = "insurance"
    policy_number: Optional[str] = None
    group_number: Optional[str] = None
    provider: Optional[str] = None
    agent_name: Optional[str] = None
    agent_phone: Optional[str] = None
    agent_email: Optional[str] = None


class MedicalPayload(BasePayload):
    category: Literal["medical"] = "medical"
    member_id: Optional[str] = None
    medical_group_number: Optional[str] = None
    medical_provider: Optional[str] = None
    plan_name: Optional[str] = None
    rx_bin: Optional[str] = Field(default=None, alias="rxBin")
    rx_pcn: Optional[str] = Field(default=None, alias="rxPCN")


class LicensePayload(BasePayload):
    category: Literal["license"] = "license"
    license_key: Optional[str] = None
    product_name: Optional[str] = None
    version: Optional[str] = None
    vendor: Optional[str] = None


class ApiKeyPayload(BasePayload):
    category: Literal["api_key"] = "api_key"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    endpoint: Optional[str] = None
    service_name: Optional[str] = None


class WifiPayload(BasePayload):
    category: Literal["wifi"] = "wifi"
    network_name: Optional[str] = None
    security_type: Optional[str] = None
    password: Optional[str] = None


class GiftCardPayload(BasePayload):
    category: Literal["gift_card"] = "gift_card"
    gift_card_number: Optional[str] = None
    gift_card_pin: Optional[str] = None
    balance: Optional[float] = None
    merchant: Optional[str] = None


class AddressPayload(BasePayload):
    category: Literal["address"] = "address"


class OtherPayload(BasePayload):
    category: Literal["other"] = "other"
    username: Optional[str] = None
    password: Optional[str] = None


class DocumentPayload(BasePayload):
    category: Literal["document"] = "document"
    file_reference: str
    priority: Optional[int] = Field(default=None, ge=1, le=10)


Payload = Annotated[
    Union[
        LoginPayload,
        CreditCardPayload,
        BankAccountPayload,
        StockTradingPayload,
        IdentityPayload,
        InsurancePayload,
        MedicalPayload,
        LicensePayload,
        ApiKeyPayload,
        WifiPayload,
        GiftCardPayload,
        AddressPayload,
        OtherPayload,
        DocumentPayload,
    ],
    Field(discriminator="category"),
]

_payload_adapter: TypeAdapter = TypeAdapter(Payload)


def parse_payload(
    fields: dict[str, Any],
    category: Union[Category, str, None] = None,
) -> BasePayload:
    """Build the typed payload variant for a decrypted field map.

    Args:
        fields: Decrypted field map (camelCase or snake_case keys).
        category: Variant to use; defaults to ``fields["category"]`` or ``other``.

    Raises:
        InvalidArgument: If the fields do not fit the chosen variant.
    """
    data = dict(fields)
    try:
        data["category"] = Category(
            category if category is not None else data.get("category", Category.OTHER)
        ).value
    except ValueError as err:
        raise InvalidArgument("Unknown payload category") from err
    try:
        return _payload_adapter.validate_python(data)
    except ValidationError as err:
        raise InvalidArgument(
            f"Payload does not match category {data['category']!r}"
        ) from err

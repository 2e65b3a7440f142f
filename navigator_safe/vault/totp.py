"""
TOTP Provisioner — shared secrets and ``otpauth://`` URIs for authenticator apps.

Only provisioning lives here. Codes are computed by the user's authenticator;
the secret is stored as three ordinary fields of an entry payload
(``totpSecret``, ``totpIssuer``, ``totpAccount``).
"""
from typing import Any, Optional
from collections.abc import Mapping

from pydantic import BaseModel, ValidationError, field_validator

from ..exceptions import InvalidArgument
from .config import VaultConfig
from .encoder import build_provisioning_uri, encode_base32, normalize_base32, random_bytes


class TOTPFields(BaseModel):
    """The TOTP field-set carried inside an entry payload."""

    issuer: str
    account: str
    base32_secret: str

    @field_validator("issuer", "account")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("base32_secret")
    @classmethod
    def normalize_secret(cls, v: str) -> str:
        return normalize_base32(v)

    def as_payload(self) -> dict[str, str]:
        return {
            "totpSecret": self.base32_secret,
            "totpIssuer": self.issuer,
            "totpAccount": self.account,
        }

    @classmethod
    def from_payload(cls, fields: Mapping[str, Any]) -> Optional["TOTPFields"]:
        """Extract the TOTP fields from a decrypted payload, if present."""
        secret = fields.get("totpSecret")
        if not secret:
            return None
        try:
            return cls(
                issuer=fields.get("totpIssuer") or "",
                account=fields.get("totpAccount") or "",
                base32_secret=secret,
            )
        except ValidationError as err:
            raise InvalidArgument("Stored TOTP fields are incomplete") from err

    def uri(self) -> str:
        return build_provisioning_uri(self.base32_secret, self.issuer, self.account)


class TOTPProvisioner:
    """Generates TOTP shared secrets and provisioning URIs."""

    def __init__(self, config: Optional[VaultConfig] = None) -> None:
        self._config = config or VaultConfig()

    def generate_secret(self) -> str:
        """Random secret as uppercase base32 with no padding or whitespace."""
        return encode_base32(random_bytes(self._config.totp_secret_length))

    def build_uri(self, secret: str, issuer: str, account: str) -> str:
        """``otpauth://totp/{issuer}:{account}?secret=...&issuer=...``

        Raises:
            InvalidArgument: If any input is blank or the secret is not base32.
        """
        if not isinstance(secret, str) or not secret.strip():
            raise InvalidArgument("TOTP secret cannot be empty")
        return build_provisioning_uri(normalize_base32(secret), issuer, account)

    def provision(self, issuer: str, account: str) -> TOTPFields:
        """Generate a new secret bundled with its issuer and account."""
        try:
            return TOTPFields(
                issuer=issuer, account=account, base32_secret=self.generate_secret(),
            )
        except ValidationError as err:
            raise InvalidArgument("TOTP issuer and account are required") from err

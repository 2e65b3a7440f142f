"""
Secret Encoder — random material and its transportable text forms.

Salts, nonces and ciphertext cross the record store boundary as standard
base64 text; TOTP secrets use RFC 4648 base32 without padding.
"""
import re
import base64
import binascii
import secrets
from urllib.parse import quote

from ..exceptions import InvalidArgument

_BASE32_RE = re.compile(r"^[A-Z2-7]+$")
# same safe set as ECMAScript encodeURIComponent
_URI_SAFE = "!*'()"


def random_bytes(n: int) -> bytes:
    """Return ``n`` bytes from the OS CSPRNG."""
    if not isinstance(n, int) or n <= 0:
        raise InvalidArgument("Random byte count must be a positive integer")
    return secrets.token_bytes(n)


def encode_for_storage(data: bytes) -> str:
    """Encode binary data as base64 text for the record store."""
    return base64.b64encode(data).decode("ascii")


def decode_from_storage(text: str) -> bytes:
    """Decode base64 text produced by :func:`encode_for_storage`.

    Raises:
        InvalidArgument: If ``text`` is not valid base64.
    """
    if not isinstance(text, str):
        raise InvalidArgument("Stored value must be text")
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as err:
        raise InvalidArgument("Malformed storage encoding") from err


def encode_base32(data: bytes) -> str:
    """RFC 4648 base32, uppercase, padding stripped."""
    return base64.b32encode(data).decode("ascii").rstrip("=")


def normalize_base32(text: str) -> str:
    """Normalize a user supplied base32 secret.

    Strips whitespace and padding and uppercases the result.

    Raises:
        InvalidArgument: If the result is empty or outside the base32 alphabet.
    """
    if not isinstance(text, str):
        raise InvalidArgument("Secret must be text")
    cleaned = "".join(text.split()).upper().rstrip("=")
    if not cleaned or not _BASE32_RE.match(cleaned):
        raise InvalidArgument("Secret is not valid base32")
    return cleaned


def build_provisioning_uri(secret: str, issuer: str, account: str) -> str:
    """Build an ``otpauth://totp`` provisioning URI.

    Format: ``otpauth://totp/{issuer}:{account}?secret={secret}&issuer={issuer}``
    with issuer and account percent-encoded.

    Raises:
        InvalidArgument: If any argument is empty or blank.
    """
    for name, value in (("secret", secret), ("issuer", issuer), ("account", account)):
        if not isinstance(value, str) or not value.strip():
            raise InvalidArgument(f"TOTP {name} cannot be empty")
    enc_issuer = quote(issuer, safe=_URI_SAFE)
    enc_account = quote(account, safe=_URI_SAFE)
    return (
        f"otpauth://totp/{enc_issuer}:{enc_account}"
        f"?secret={secret}&issuer={enc_issuer}"
    )

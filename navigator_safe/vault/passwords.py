"""Password generation and strength scoring for vault entries."""
import re
import secrets
import string

from ..exceptions import InvalidArgument

SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"


def generate_password(
    length: int = 16,
    uppercase: bool = True,
    lowercase: bool = True,
    numbers: bool = True,
    symbols: bool = True,
) -> str:
    """Random password drawn from the selected character classes.

    With every class disabled, falls back to letters and digits.
    """
    if length <= 0:
        raise InvalidArgument("Password length must be positive")
    charset = ""
    if lowercase:
        charset += string.ascii_lowercase
    if uppercase:
        charset += string.ascii_uppercase
    if numbers:
        charset += string.digits
    if symbols:
        charset += SYMBOLS
    if not charset:
        charset = string.ascii_letters + string.digits
    return "".join(secrets.choice(charset) for _ in range(length))


def password_strength(password: str) -> int:
    """Score a password from 0 to 100.

    Up to 40 points for length, 10 per character class and a 20 point bonus
    for passwords of 8+ characters using at least three classes.
    """
    if not password:
        return 0
    length = len(password)
    if length >= 12:
        strength = 40
    elif length >= 8:
        strength = 25
    elif length >= 4:
        strength = 10
    else:
        strength = 0

    variety = 0
    for pattern in (r"[a-z]", r"[A-Z]", r"[0-9]", r"[^a-zA-Z0-9]"):
        if re.search(pattern, password):
            variety += 10
    if length >= 8 and variety >= 30:
        variety += 20
    return min(100, strength + variety)

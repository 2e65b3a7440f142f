"""
Navigator Safe exceptions.

Every error carries a user-safe ``message``. None of them ever holds
plaintext, passphrases, keys or ciphertext; callers may surface ``message``
directly to end users.
"""
from typing import Optional


class SafeError(Exception):
    """Base class for every vault error."""

    message: str = "The vault operation failed."

    def __init__(self, message: Optional[str] = None, *args) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message, *args)

    def __str__(self) -> str:
        return self.message


class InvalidArgument(SafeError, ValueError):
    """Malformed input (empty passphrase, blank TOTP field, bad encoding)."""

    message = "Invalid argument."


class AlreadyEnrolled(SafeError):
    """A master passphrase has already been set up for this user."""

    message = "The vault is already set up."


class InvalidCredentials(SafeError):
    """Wrong passphrase, or no vault for the user (indistinguishable)."""

    message = "Wrong passphrase."


class DecryptionFailed(SafeError):
    """Authentication of an encrypted record failed."""

    message = "This item could not be decrypted."

    def __init__(self, message: Optional[str] = None, record_id: Optional[str] = None) -> None:
        self.record_id = record_id
        super().__init__(message)


class RotationFailed(SafeError):
    """Passphrase change failed; the previous passphrase is still valid."""

    message = "Change failed, please try again."


class NotFound(SafeError, KeyError):
    """A referenced entry or registry record does not exist."""

    message = "Record not found."

    def __str__(self) -> str:
        # KeyError.__str__ would quote the message
        return self.message


class StoreUnavailable(SafeError):
    """Transient failure talking to the record store; safe to retry."""

    message = "The vault storage is unavailable, please try again."


class VaultLocked(SafeError):
    """The master key session was locked or never unlocked."""

    message = "Could not unlock."

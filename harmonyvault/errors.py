"""
HarmonyVault - Error Types

Every failure the store or the backup pipeline can report:
- StorageFault: SQLite unavailable, write not committed, store not initialized
- PassphraseRequired: an export/import was attempted without a passphrase
- AuthenticationFailure: AES-GCM rejected the ciphertext (cipher level)
- WrongPassphraseOrCorruptData: a backup could not be decrypted (import level)
- FormatError: envelope or decrypted payload is malformed

Nothing here is retried automatically. Callers see the exception directly.
"""


class HarmonyError(Exception):
    """Base class for all HarmonyVault errors."""


class StorageFault(HarmonyError):
    """The underlying SQLite medium is unavailable or a write was not committed."""


class PassphraseRequired(HarmonyError):
    """No passphrase was supplied for an operation that needs one."""

    def __init__(self, message: str = "A passphrase is required for this operation"):
        super().__init__(message)


class AuthenticationFailure(HarmonyError):
    """
    Authenticated decryption failed.

    Raised for a wrong key, a wrong nonce, wrong associated data or a
    tampered ciphertext. AES-GCM cannot tell these apart, and neither do we.
    """

    def __init__(self, message: str = "Authenticated decryption failed"):
        super().__init__(message)


class WrongPassphraseOrCorruptData(HarmonyError):
    """
    A backup envelope could not be decrypted.

    The message is deliberately generic: it must never reveal whether the
    passphrase was wrong or the file was damaged.
    """

    def __init__(self, message: str = "Failed to decrypt backup: wrong passphrase or corrupted file"):
        super().__init__(message)


class FormatError(HarmonyError):
    """An envelope or a decrypted payload is malformed or truncated."""

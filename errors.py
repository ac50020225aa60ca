"""
errors.py – Exception hierarchy shared by every vault module.

All exceptions derive from VaultError so the command-line front end can
report any vault failure with a single except clause, while the core
modules still raise (and tests still assert) the precise type.

Taxonomy
--------
AuthenticationError   wrong PIN; recoverable, nothing is mutated.
PinPolicyError        PIN rejected at setup (too short, not digits).
DecryptionError       ciphertext present but the key is wrong or the
                      token is corrupted.
RecordParseError      decrypted plaintext is not a valid record collection.
PersistenceError      the key-value store could not be read or written;
                      in-memory state is left unchanged.
VaultLockedError      the operation needs an unlocked vault.
DuplicateRecordError  add() called with an id already in the collection.
"""

from typing import Optional


class VaultError(Exception):
    """Base class for every error raised by the vault core."""


class AuthenticationError(VaultError):
    """Raised when a PIN does not match the stored PIN hash."""


class PinPolicyError(VaultError, ValueError):
    """Raised by AuthVault.setup_pin() when the PIN violates the policy."""


class DecryptionError(VaultError):
    """Raised when a ciphertext blob cannot be decrypted with the given key."""


class RecordParseError(VaultError):
    """Raised when decrypted plaintext is not a valid record collection."""


class PersistenceError(VaultError):
    """
    Raised when the underlying key-value store fails.

    Attributes
    ----------
    key : str or None
        The store key involved in the failed operation, when known.
    """

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.key: Optional[str] = key


class VaultLockedError(VaultError):
    """Raised when a record operation is attempted without a session key."""


class DuplicateRecordError(VaultError, ValueError):
    """Raised when a record with the same id already exists."""

"""
crypto.py – Cryptographic operations for PasswordSaver.

This module contains CryptoManager, which is the single place responsible
for every cryptographic concern in the application:

  - One-way hashing of the PIN (SHA-256, hex encoded) for login checks.
  - Key derivation from the PIN using PBKDF2-HMAC-SHA256.
  - Encrypting and decrypting byte streams with Fernet
    (AES-128-CBC + HMAC-SHA256, provided by the 'cryptography' package).

Key-derivation note
-------------------
By default the KDF uses the fixed salt KDF_SALT and only KDF_ITERATIONS
rounds.  Both are inherited from earlier releases of the app: any vault
written by them can only be opened with exactly these parameters.  The salt
is therefore identical on every installation, which makes precomputed PIN
tables possible.  AuthVault can opt into a random per-installation salt
instead (config option "use_random_salt"); doing so only affects vaults set
up after the option is enabled.
"""

import base64
import hmac
import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import KDF_ITERATIONS, KDF_KEY_LENGTH, KDF_SALT, RANDOM_SALT_LENGTH
from errors import DecryptionError

logger = logging.getLogger("PasswordSaver")


class CryptoManager:
    """
    Handles all cryptographic primitives used by the vault.

    The manager is stateless apart from its KDF parameters: it never holds
    a session key.  AuthVault owns the key for the lifetime of a session and
    passes it explicitly to encrypt() / decrypt().

    Parameters
    ----------
    iterations : int
        PBKDF2 iteration count (defaults to KDF_ITERATIONS).
    default_salt : bytes
        Salt used when derive_key() is called without one.
    """

    def __init__(
        self,
        iterations: int = KDF_ITERATIONS,
        default_salt: bytes = KDF_SALT,
    ) -> None:
        self.iterations = iterations
        self.default_salt = default_salt

    # ------------------------------------------------------------------
    # PIN hashing
    # ------------------------------------------------------------------

    @staticmethod
    def hash_pin(pin: str) -> str:
        """Return the hex SHA-256 digest of *pin* (the persisted pinHash)."""
        digest = hashes.Hash(hashes.SHA256())
        digest.update(pin.encode("utf-8", errors="surrogatepass"))
        return digest.finalize().hex()

    def pin_matches(self, pin: str, stored_hash: str) -> bool:
        """Compare the hash of *pin* with *stored_hash* in constant time."""
        return hmac.compare_digest(
            self.hash_pin(pin).encode("ascii"),
            stored_hash.encode("ascii", errors="replace"),
        )

    # ------------------------------------------------------------------
    # Key derivation
    # ------------------------------------------------------------------

    def derive_key(self, pin: str, salt: Optional[bytes] = None) -> bytes:
        """
        Derive a 32-byte Fernet-compatible key from *pin* using
        PBKDF2-HMAC-SHA256.

        *salt* defaults to the fixed application salt.  The result is
        deterministic for a given (pin, salt, iterations) triple and is
        URL-safe base64-encoded so it can be passed directly to Fernet().
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KDF_KEY_LENGTH,
            salt=salt if salt is not None else self.default_salt,
            iterations=self.iterations,
        )
        logger.debug("Deriving key (%d PBKDF2 iterations)", self.iterations)
        raw_key = kdf.derive(pin.encode("utf-8", errors="surrogatepass"))
        return base64.urlsafe_b64encode(raw_key)

    @staticmethod
    def generate_salt() -> bytes:
        """Return a new cryptographically-random salt."""
        return os.urandom(RANDOM_SALT_LENGTH)

    # ------------------------------------------------------------------
    # Encrypt / decrypt helpers
    # ------------------------------------------------------------------

    @staticmethod
    def encrypt(data: bytes, key: bytes) -> bytes:
        """Encrypt *data* with *key* and return the Fernet token."""
        return Fernet(key).encrypt(data)

    @staticmethod
    def decrypt(token: bytes, key: bytes) -> bytes:
        """
        Decrypt the Fernet *token* with *key* and return the plaintext.

        Raises DecryptionError when the key is wrong, the token has been
        tampered with, or the token is not a Fernet token at all.
        """
        try:
            return Fernet(key).decrypt(token)
        except (InvalidToken, ValueError, TypeError) as exc:
            raise DecryptionError("Ciphertext could not be decrypted") from exc


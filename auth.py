"""
auth.py – PIN lifecycle and session-key management.

This module contains AuthVault, which gates access to the vault:

  - First run: set up a PIN, persist its one-way hash and derive the
    session key.
  - Subsequent runs: verify a PIN against the stored hash and, on success,
    re-derive the session key.  The key is never persisted.
  - Logout: forget the session key; stored state is untouched.
  - Reset: erase the PIN hash.  Records encrypted under the old key can no
    longer be opened; there is no recovery path.
  - Biometrics preference: a persisted flag only.  No key material is tied
    to biometrics; VaultSession uses the flag to allow re-entry into an
    already-unlocked session.

State machine
-------------
    UNINITIALIZED --setup_pin--> AUTHENTICATED
    AUTHENTICATED --logout-----> LOCKED
    LOCKED --verify_pin (ok)---> AUTHENTICATED
    LOCKED --verify_pin (fail)-> LOCKED
    any ---------reset_pin-----> UNINITIALIZED

AuthVault depends on CryptoManager (hashing, KDF) and a key-value store.
It never shows prompts itself – the CLI in main.py does that.
"""

import enum
import logging
from typing import Optional, Tuple

from config import BIOMETRICS_KEY, PIN_HASH_KEY, SALT_KEY
from crypto import CryptoManager
from errors import PinPolicyError

logger = logging.getLogger("PasswordSaver")


class AuthState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOCKED = "locked"
    AUTHENTICATED = "authenticated"


class AuthVault:
    """
    Owns the PIN hash, the biometrics flag and the session key.

    Parameters
    ----------
    store : KeyValueStore
        Persistent store for pinHash, useBiometrics and the optional salt.
    crypto : CryptoManager, optional
        Hashing / KDF provider.  A default manager is created if omitted.
    min_pin_length : int
        Shortest PIN accepted by setup_pin().
    use_random_salt : bool
        When True, setup_pin() generates a per-installation salt instead of
        using the fixed application salt.

    Attributes
    ----------
    derived_key : bytes or None
        Fernet key for the current session; None while not authenticated.
    """

    def __init__(
        self,
        store,
        crypto: Optional[CryptoManager] = None,
        min_pin_length: int = 4,
        use_random_salt: bool = False,
    ) -> None:
        self.store = store
        self.crypto = crypto or CryptoManager()
        self.min_pin_length = min_pin_length
        self.use_random_salt = use_random_salt

        self._derived_key: Optional[bytes] = None
        self._authenticated: bool = False

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    @property
    def derived_key(self) -> Optional[bytes]:
        return self._derived_key

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated and self._derived_key is not None

    @property
    def state(self) -> AuthState:
        if self.is_authenticated:
            return AuthState.AUTHENTICATED
        if self.is_pin_configured():
            return AuthState.LOCKED
        return AuthState.UNINITIALIZED

    def is_pin_configured(self) -> bool:
        """Return True iff a PIN hash exists in persistent storage."""
        return self.store.get(PIN_HASH_KEY) is not None

    @property
    def biometrics_enabled(self) -> bool:
        return self.store.get(BIOMETRICS_KEY) == b"true"

    # ------------------------------------------------------------------
    # PIN lifecycle
    # ------------------------------------------------------------------

    def validate_pin(self, pin: str) -> None:
        """
        Raise PinPolicyError unless *pin* is an ASCII digit string of at least
        min_pin_length characters.
        """
        if not pin:
            raise PinPolicyError("PIN cannot be empty.")
        if not (pin.isascii() and pin.isdecimal()):
            raise PinPolicyError("PIN must contain digits only.")
        if len(pin) < self.min_pin_length:
            raise PinPolicyError(
                f"PIN must be at least {self.min_pin_length} digits."
            )

    def setup_pin(self, pin: str) -> None:
        """
        Store the hash of a new PIN and open a session with its key.

        Raises PinPolicyError for an unacceptable PIN (nothing is stored)
        and PersistenceError if the hash cannot be stored (no session is
        opened and the previous salt is put back).
        """
        self.validate_pin(pin)

        salt = self.crypto.generate_salt() if self.use_random_salt else None
        key = self.crypto.derive_key(pin, salt)
        self._store_pin(pin, salt)

        self._derived_key = key
        self._authenticated = True
        logger.info("PIN configured (random salt: %s)", self.use_random_salt)

    def verify_pin(self, pin: str) -> bool:
        """
        Return True and open a session if *pin* matches the stored hash.

        A wrong PIN returns False without touching any stored state.  An
        unconfigured vault never verifies.
        """
        stored = self.store.get(PIN_HASH_KEY)
        if stored is None:
            logger.warning("PIN verification attempted before setup")
            return False

        if not self.crypto.pin_matches(pin or "", stored.decode("ascii", errors="replace")):
            logger.warning("PIN verification failed")
            return False

        self._derived_key = self.crypto.derive_key(pin, self.store.get(SALT_KEY))
        self._authenticated = True
        logger.info("PIN verified")
        return True

    def derive_candidate_key(self, pin: str) -> Tuple[bytes, Optional[bytes]]:
        """
        Return (key, salt) for *pin* under the current salt policy, without
        touching stored state.  Used by VaultSession when changing the PIN.
        """
        salt = self.crypto.generate_salt() if self.use_random_salt else None
        return self.crypto.derive_key(pin, salt), salt

    def commit_pin(self, pin: str, key: bytes, salt: Optional[bytes]) -> None:
        """
        Persist the hash (and salt) for *pin* and adopt *key* as the session
        key.  Callers must have re-encrypted existing data under *key* first.
        """
        self._store_pin(pin, salt)
        self._derived_key = key
        self._authenticated = True
        logger.info("PIN changed")

    def _store_pin(self, pin: str, salt: Optional[bytes]) -> None:
        """Write the salt, then the hash; the old salt returns if the hash fails."""
        old_salt = self.store.get(SALT_KEY)
        self._put_salt(salt)
        try:
            self.store.set(PIN_HASH_KEY, self.crypto.hash_pin(pin).encode("ascii"))
        except Exception:
            logger.exception("Failed to store the PIN hash; restoring the previous salt")
            self._put_salt(old_salt)
            raise

    def _put_salt(self, salt: Optional[bytes]) -> None:
        if salt is None:
            self.store.remove(SALT_KEY)
        else:
            self.store.set(SALT_KEY, salt)

    def reset_pin(self) -> None:
        """
        Erase the PIN hash and end the session.

        Irreversible: any records encrypted under the previous key become
        unreadable once a new PIN is set up.
        """
        self.store.remove(PIN_HASH_KEY)
        self.store.remove(SALT_KEY)
        self._derived_key = None
        self._authenticated = False
        logger.warning("PIN reset; existing encrypted records are orphaned")

    def logout(self) -> None:
        """Forget the session key.  Stored PIN hash and flags are kept."""
        self._derived_key = None
        self._authenticated = False
        logger.info("Logged out")

    # ------------------------------------------------------------------
    # Biometrics preference
    # ------------------------------------------------------------------

    def toggle_biometrics(self) -> bool:
        """Flip and persist the biometrics flag; return the new value."""
        new_value = not self.biometrics_enabled
        self.store.set(BIOMETRICS_KEY, b"true" if new_value else b"false")
        logger.info("Biometrics %s", "enabled" if new_value else "disabled")
        return new_value

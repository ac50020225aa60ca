"""
session.py – The vault session context object.

VaultSession wires one AuthVault and one RecordStore around a shared
key-value store and drives the control flow between them:

    unlock(pin) / setup(pin)  -> derive key -> RecordStore.load(key)
    CRUD                      -> RecordStore (full re-encrypt per mutation)
    lock() / background()     -> key and in-memory records are dropped

The session is an ordinary object: create one per application run (or one
per test) and pass it to whatever needs vault access.  Nothing here is a
module-level singleton.

Biometrics never provide key material.  When the preference is on and
"lock_on_background" is off, background() keeps the key but suspends the
session; resume(prompt) calls the OS prompt and, on success, re-enters the
session that was already unlocked with the PIN.
"""

import logging
from typing import Callable, Optional

from auth import AuthState, AuthVault
from config import RECORDS_KEY, SALT_KEY, AppConfig
from crypto import CryptoManager
from errors import AuthenticationError, VaultLockedError
from kvstore import FileKeyValueStore, KeyValueStore
from storage import LoadStatus, RecordStore

logger = logging.getLogger("PasswordSaver")


class VaultSession:
    """
    One authenticated (or not yet authenticated) use of the vault.

    Parameters
    ----------
    store : KeyValueStore
        Persistent store shared by AuthVault and RecordStore.
    min_pin_length : int
        PIN policy passed to AuthVault.
    use_random_salt : bool
        Opt-in per-installation KDF salt, passed to AuthVault.
    lock_on_background : bool
        When True, background() always locks the vault completely.

    Attributes
    ----------
    auth : AuthVault
    records : RecordStore
    last_load_status : LoadStatus or None
        Result of the most recent load; lets callers report a vault whose
        data could not be decrypted separately from an empty one.
    """

    def __init__(
        self,
        store: KeyValueStore,
        min_pin_length: int = 4,
        use_random_salt: bool = False,
        lock_on_background: bool = True,
    ) -> None:
        crypto = CryptoManager()
        self.store = store
        self.auth = AuthVault(
            store,
            crypto=crypto,
            min_pin_length=min_pin_length,
            use_random_salt=use_random_salt,
        )
        self.records = RecordStore(store, crypto=crypto)
        self.lock_on_background = lock_on_background
        self.last_load_status: Optional[LoadStatus] = None
        self._suspended = False

    @classmethod
    def from_config(cls, config: AppConfig) -> "VaultSession":
        """Build a session backed by the file store in *config*'s data dir."""
        return cls(
            FileKeyValueStore(config.store_dir),
            min_pin_length=int(config.get("min_pin_length", 4)),
            use_random_salt=bool(config.get("use_random_salt", False)),
            lock_on_background=bool(config.get("lock_on_background", True)),
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self.auth.state

    @property
    def is_unlocked(self) -> bool:
        return self.auth.is_authenticated and not self._suspended

    @property
    def is_suspended(self) -> bool:
        return self._suspended

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def setup(self, pin: str) -> LoadStatus:
        """Configure the first PIN and open the (possibly orphaned) records."""
        self.auth.setup_pin(pin)
        return self._open()

    def unlock(self, pin: str) -> bool:
        """
        Verify *pin* and load the records.

        Returns False for a wrong PIN; nothing is changed in that case.
        """
        if not self.auth.verify_pin(pin):
            return False
        self._open()
        return True

    def require_unlock(self, pin: str) -> LoadStatus:
        """Like unlock() but raises AuthenticationError on a wrong PIN."""
        if not self.unlock(pin):
            raise AuthenticationError("Incorrect PIN")
        return self.last_load_status

    def lock(self) -> None:
        """Log out: forget the key and every decrypted record."""
        self.records.close()
        self.auth.logout()
        self._suspended = False

    def background(self) -> None:
        """
        React to the app leaving the foreground.

        The vault locks fully unless biometric re-entry is enabled and the
        configuration allows keeping the session while backgrounded.
        """
        if not self.auth.is_authenticated:
            return
        if self.lock_on_background or not self.auth.biometrics_enabled:
            logger.info("Backgrounded; locking vault")
            self.lock()
            return
        logger.info("Backgrounded; session suspended until biometric re-entry")
        self._suspended = True

    def resume(self, prompt: Callable[[], bool]) -> bool:
        """
        Re-enter a suspended session after a successful biometric prompt.

        Returns True when the session is usable again.  A locked vault
        always needs the PIN, so resume() returns False without prompting.
        """
        if not self._suspended:
            return self.is_unlocked
        if not (self.auth.is_authenticated and self.auth.biometrics_enabled):
            self.lock()
            return False
        if prompt():
            self._suspended = False
            logger.info("Session resumed after biometric check")
            return True
        logger.warning("Biometric check failed; session stays suspended")
        return False

    def reset(self) -> None:
        """
        Forget the PIN.  The encrypted records are left in storage but can
        never be decrypted again once a new PIN is set up.
        """
        self.records.close()
        self.auth.reset_pin()
        self._suspended = False
        self.last_load_status = None

    def change_pin(self, old_pin: str, new_pin: str) -> bool:
        """
        Re-encrypt the records under a key derived from *new_pin*.

        Returns False if *old_pin* is wrong.  Raises PinPolicyError for an
        unacceptable *new_pin* and VaultLockedError if the stored records
        could not be decrypted (re-encrypting an empty view would destroy
        them).  On any failure the old PIN stays valid.
        """
        self.auth.validate_pin(new_pin)
        if not self.unlock(old_pin):
            return False
        if not self.last_load_status.ok:
            raise VaultLockedError("Stored records are unreadable; refusing to re-encrypt them.")

        new_key, salt = self.auth.derive_candidate_key(new_pin)
        old_blob = self.store.get(RECORDS_KEY)
        old_salt = self.store.get(SALT_KEY)
        self.records.reencrypt(new_key)
        try:
            self.auth.commit_pin(new_pin, new_key, salt)
        except Exception:
            logger.exception("Failed to store the new PIN; restoring previous records")
            self._restore(RECORDS_KEY, old_blob)
            self._restore(SALT_KEY, old_salt)
            self.lock()
            raise
        return True

    def _restore(self, key: str, value: Optional[bytes]) -> None:
        if value is None:
            self.store.remove(key)
        else:
            self.store.set(key, value)

    # ------------------------------------------------------------------
    # Record access
    # ------------------------------------------------------------------

    def vault(self) -> RecordStore:
        """Return the record store, raising VaultLockedError while locked."""
        if not self.is_unlocked or not self.records.is_open:
            raise VaultLockedError("The vault is locked.")
        return self.records

    def _open(self) -> LoadStatus:
        self._suspended = False
        status = self.records.load(self.auth.derived_key)
        self.last_load_status = status
        if status is LoadStatus.DECRYPT_FAILED:
            logger.warning("Existing records are unreadable with this PIN; showing an empty vault")
        return status


"""
storage.py – Encrypted credential record storage.

This module contains RecordStore, the single class responsible for the
collection of credential records:

  - Loading the encrypted collection with the session key supplied by
    AuthVault and parsing it back into CredentialRecord objects.
  - Adding, updating, removing and clearing records.  Every mutation
    re-serialises the *whole* collection, encrypts it as one Fernet token
    and replaces the stored blob wholesale.
  - Lookup, search and a read-only snapshot for the export module.

Persistence is transactional: a mutation is applied to a working copy,
the copy is persisted, and only then does it become the live collection.
If the store write fails, PersistenceError propagates and the live
collection is exactly what it was before the call.

Serialised form
---------------
A UTF-8 JSON array of objects with the keys id, appName, username,
emailOrPhone, password and createdAt.  Non-ASCII text is written as-is.
"""

import enum
import json
import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from config import RECORDS_KEY
from crypto import CryptoManager
from errors import (
    DecryptionError,
    DuplicateRecordError,
    RecordParseError,
    VaultLockedError,
)

logger = logging.getLogger("PasswordSaver")

# Serialised field name -> CredentialRecord attribute.
_FIELD_MAP = (
    ("id", "id"),
    ("appName", "app_name"),
    ("username", "username"),
    ("emailOrPhone", "email_or_phone"),
    ("password", "password"),
    ("createdAt", "created_at"),
)

_id_lock = threading.Lock()
_last_id = 0


def _next_record_id() -> str:
    """Millisecond timestamp id, bumped when two records share a millisecond."""
    global _last_id
    with _id_lock:
        candidate = time.time_ns() // 1_000_000
        if candidate <= _last_id:
            candidate = _last_id + 1
        _last_id = candidate
        return str(candidate)


@dataclass(frozen=True)
class CredentialRecord:
    """One stored credential.  Instances are immutable."""

    id: str
    app_name: str
    username: str
    email_or_phone: str
    password: str
    created_at: str

    @classmethod
    def create(
        cls,
        app_name: str,
        username: str = "",
        email_or_phone: str = "",
        password: str = "",
    ) -> "CredentialRecord":
        """Build a new record with a fresh id and the current UTC time."""
        created = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
        return cls(
            id=_next_record_id(),
            app_name=app_name,
            username=username,
            email_or_phone=email_or_phone,
            password=password,
            created_at=created.replace("+00:00", "Z"),
        )

    def with_changes(self, **changes) -> "CredentialRecord":
        """Return a copy with *changes* applied; id and created_at are kept."""
        changes.pop("id", None)
        changes.pop("created_at", None)
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {name: getattr(self, attr) for name, attr in _FIELD_MAP}

    @classmethod
    def from_dict(cls, data) -> "CredentialRecord":
        """
        Build a record from its serialised mapping.

        Raises RecordParseError if *data* is not a mapping, a field is
        missing, or a field is not a string.
        """
        if not isinstance(data, dict):
            raise RecordParseError(f"Record must be an object, got {type(data).__name__}")
        values = {}
        for name, attr in _FIELD_MAP:
            value = data.get(name)
            if not isinstance(value, str):
                raise RecordParseError(f"Record field {name!r} is missing or not a string")
            values[attr] = value
        return cls(**values)


def serialize_records(records: Iterable[CredentialRecord]) -> bytes:
    """Encode *records* as the canonical UTF-8 JSON array."""
    payload = [record.to_dict() for record in records]
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def deserialize_records(data: bytes) -> List[CredentialRecord]:
    """
    Decode bytes produced by serialize_records().

    Raises RecordParseError for invalid UTF-8, invalid JSON, a top-level
    value that is not an array, malformed records, or duplicate ids.
    """
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise RecordParseError("Record collection is not valid JSON") from exc

    if not isinstance(payload, list):
        raise RecordParseError("Record collection must be a JSON array")

    records = [CredentialRecord.from_dict(item) for item in payload]
    ids = [record.id for record in records]
    if len(set(ids)) != len(ids):
        raise RecordParseError("Record collection contains duplicate ids")
    return records


class LoadStatus(enum.Enum):
    """Outcome of RecordStore.load()."""

    EMPTY = "empty"                    # nothing stored yet
    LOADED = "loaded"                  # blob decrypted and parsed
    DECRYPT_FAILED = "decrypt_failed"  # wrong key or corrupted ciphertext
    PARSE_FAILED = "parse_failed"      # decrypted but not a collection

    @property
    def ok(self) -> bool:
        return self in (LoadStatus.EMPTY, LoadStatus.LOADED)


class RecordStore:
    """
    Manages the in-memory record collection and its encrypted mirror.

    Parameters
    ----------
    store : KeyValueStore
        Persistent store holding the ciphertext blob under RECORDS_KEY.
    crypto : CryptoManager, optional
        Encrypt/decrypt provider.

    The session key is handed in by load() and forgotten by close(); the
    store never obtains a key by any other route.
    """

    def __init__(self, store, crypto: Optional[CryptoManager] = None) -> None:
        self.store = store
        self.crypto = crypto or CryptoManager()

        self._key: Optional[bytes] = None
        self._records: List[CredentialRecord] = []
        self._damaged = False
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._key is not None

    @property
    def is_damaged(self) -> bool:
        """True while a decryptable but unparseable blob is write-protected."""
        return self._damaged

    def load(self, key: bytes) -> LoadStatus:
        """
        Read, decrypt and parse the stored collection with *key*.

        A missing blob gives an empty collection.  A blob that cannot be
        decrypted or parsed also gives an empty collection; the returned
        status tells the two failure modes apart from "no data yet".
        A blob that decrypts but does not parse still holds the user's data,
        so mutations are refused until discard_damaged() is called.
        Raises PersistenceError only if the store itself cannot be read.
        """
        with self._lock:
            self._key = None
            self._records = []
            self._damaged = False

            blob = self.store.get(RECORDS_KEY)
            self._key = key
            if blob is None:
                logger.info("No stored records; starting with an empty collection")
                return LoadStatus.EMPTY

            try:
                plaintext = self.crypto.decrypt(blob, key)
            except DecryptionError:
                logger.error("Stored records could not be decrypted with the session key")
                return LoadStatus.DECRYPT_FAILED

            try:
                self._records = deserialize_records(plaintext)
            except RecordParseError:
                logger.exception("Decrypted records could not be parsed; vault is read-only")
                self._damaged = True
                return LoadStatus.PARSE_FAILED

            logger.info("Loaded %d record(s)", len(self._records))
            return LoadStatus.LOADED

    def close(self) -> None:
        """Forget the session key and drop every in-memory record."""
        with self._lock:
            self._key = None
            self._records = []
            self._damaged = False

    def discard_damaged(self) -> None:
        """Allow mutations to overwrite a blob that failed to parse."""
        with self._lock:
            self._require_open()
            if self._damaged:
                logger.warning("Unparseable records will be overwritten on the next write")
            self._damaged = False

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def records(self) -> Tuple[CredentialRecord, ...]:
        """Read-only snapshot of the collection in insertion order."""
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def get_by_id(self, record_id: str) -> Optional[CredentialRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def search(self, query: str) -> List[CredentialRecord]:
        """
        Return records whose app name, username or email/phone contains
        *query* (case-insensitive).  A blank query returns every record.
        """
        needle = query.strip().casefold()
        if not needle:
            return list(self._records)
        return [
            r for r in self._records
            if needle in r.app_name.casefold()
            or needle in r.username.casefold()
            or needle in r.email_or_phone.casefold()
        ]

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def add(self, record: CredentialRecord) -> None:
        """Append *record* and persist.  Raises DuplicateRecordError on id clash."""
        with self._lock:
            self._require_writable()
            if self.get_by_id(record.id) is not None:
                raise DuplicateRecordError(f"A record with id {record.id!r} already exists")
            self._commit(self._records + [record])
            logger.info("Record %s added", record.id)

    def update(self, record: CredentialRecord) -> bool:
        """
        Replace the record sharing *record.id* and persist.

        The stored created_at is kept, so the record read back differs from
        *record* whenever the caller passes another timestamp.  Returns
        False (and writes nothing) if no such record exists.
        """
        with self._lock:
            self._require_writable()
            existing = self.get_by_id(record.id)
            if existing is None:
                logger.info("Update ignored; no record %s", record.id)
                return False
            merged = replace(record, created_at=existing.created_at)
            self._commit([merged if r.id == record.id else r for r in self._records])
            logger.info("Record %s updated", record.id)
            return True

    def remove(self, record_id: str) -> bool:
        """Drop the record with *record_id* and persist; False if absent."""
        with self._lock:
            self._require_writable()
            if self.get_by_id(record_id) is None:
                logger.info("Remove ignored; no record %s", record_id)
                return False
            self._commit([r for r in self._records if r.id != record_id])
            logger.info("Record %s removed", record_id)
            return True

    def clear_all(self) -> None:
        """Empty the collection and persist an encrypted empty list."""
        with self._lock:
            self._require_writable()
            self._commit([])
            logger.info("All records cleared")

    def reencrypt(self, new_key: bytes) -> None:
        """
        Persist the current collection under *new_key* and adopt that key.

        Used when the PIN changes.  On PersistenceError the old key and the
        old blob stay in place.
        """
        with self._lock:
            self._require_writable()
            self.store.set(RECORDS_KEY, self.crypto.encrypt(serialize_records(self._records), new_key))
            self._key = new_key
            logger.info("Records re-encrypted under a new key")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_open(self) -> None:
        if self._key is None:
            raise VaultLockedError("The vault is locked; load() must be called first.")

    def _require_writable(self) -> None:
        self._require_open()
        if self._damaged:
            raise VaultLockedError(
                "Stored records could not be parsed; refusing to overwrite them."
            )

    def _commit(self, working: List[CredentialRecord]) -> None:
        """Persist *working* as the full collection, then make it live."""
        blob = self.crypto.encrypt(serialize_records(working), self._key)
        self.store.set(RECORDS_KEY, blob)
        self._records = working


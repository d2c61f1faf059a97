"""
HarmonyVault - Encrypted Backup & Restore

Export: read all collections -> serialize -> derive key (random salt) ->
AES-256-GCM -> BackupEnvelope.
Import: BackupEnvelope -> derive key (stored salt) -> decrypt -> deserialize
-> put every record back at its own key.

Backup file (UTF-8 JSON):
    {"version": 1, "aead": "aes256gcm", "kdf": "pbkdf2-sha256",
     "iterations": 100000, "salt": b64, "nonce": b64, "ciphertext": b64}

Files from the first release of the app look like
    {"encrypted": [int, ...], "iv": [int, ...]}
and were all derived from one fixed salt. They can still be imported.

Known limitation: by default the five collections are read one after the
other, not in one transaction. A put landing during an export may be
captured in one collection and missed in another. Pass consistent=True to
read them all under one store-wide read barrier instead.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from . import codec, crypto, store
from .errors import (
    AuthenticationFailure,
    FormatError,
    PassphraseRequired,
    WrongPassphraseOrCorruptData,
)

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 1
AEAD_ALGO = "aes256gcm"
KDF_ALGO = "pbkdf2-sha256"


# =============================================================================
# ENVELOPE
# =============================================================================

@dataclass(frozen=True)
class BackupEnvelope:
    """Encrypted, portable snapshot of the whole store."""

    ciphertext: bytes
    nonce: bytes
    salt: Optional[bytes] = None           # None only for legacy envelopes
    iterations: int = crypto.PBKDF2_ITERATIONS

    @property
    def is_legacy(self) -> bool:
        return self.salt is None

    def key_salt(self) -> bytes:
        return crypto.LEGACY_SALT if self.salt is None else self.salt

    def associated_data(self) -> Optional[dict]:
        """
        Header fields bound to the ciphertext.

        Legacy envelopes were encrypted without associated data.
        """
        if self.is_legacy:
            return None
        return envelope_header(self.iterations)

    def to_dict(self) -> dict:
        if self.is_legacy:
            return {"encrypted": list(self.ciphertext), "iv": list(self.nonce)}
        return {
            "version": ENVELOPE_VERSION,
            "aead": AEAD_ALGO,
            "kdf": KDF_ALGO,
            "iterations": self.iterations,
            "salt": _b64(self.salt),
            "nonce": _b64(self.nonce),
            "ciphertext": _b64(self.ciphertext),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "BackupEnvelope":
        """
        Parse an envelope in either the current or the legacy layout.

        Raises:
            FormatError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise FormatError("Backup file must contain a JSON object")

        if "encrypted" in data and "iv" in data:
            envelope = cls(
                ciphertext=_int_array(data["encrypted"], "encrypted"),
                nonce=_int_array(data["iv"], "iv"),
            )
        else:
            if data.get("version") != ENVELOPE_VERSION:
                raise FormatError(f"Unsupported backup version: {data.get('version')!r}")
            if data.get("aead") != AEAD_ALGO or data.get("kdf") != KDF_ALGO:
                raise FormatError("Unsupported backup algorithms")
            iterations = data.get("iterations")
            if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
                raise FormatError("Backup iteration count must be a positive integer")
            if iterations > crypto.MAX_PBKDF2_ITERATIONS:
                raise FormatError(f"Backup iteration count {iterations} exceeds {crypto.MAX_PBKDF2_ITERATIONS}")
            envelope = cls(
                ciphertext=_unb64(data, "ciphertext"),
                nonce=_unb64(data, "nonce"),
                salt=_unb64(data, "salt"),
                iterations=iterations,
            )

        if len(envelope.nonce) != crypto.NONCE_SIZE:
            raise FormatError(f"Backup nonce must be {crypto.NONCE_SIZE} bytes")
        return envelope

    @classmethod
    def from_json(cls, text: str) -> "BackupEnvelope":
        try:
            data = json.loads(text)
        except ValueError as e:
            raise FormatError(f"Backup file is not valid JSON: {e}") from e
        return cls.from_dict(data)


def envelope_header(iterations: int) -> dict:
    """Associated data of a current-format envelope."""
    return {
        "ctx": "harmony_backup",
        "version": ENVELOPE_VERSION,
        "aead": AEAD_ALGO,
        "kdf": KDF_ALGO,
        "iterations": iterations,
    }


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


def _unb64(data: dict, name: str) -> bytes:
    value = data.get(name)
    if not isinstance(value, str):
        raise FormatError(f"Backup field '{name}' is missing")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Backup field '{name}' is not valid base64") from e


def _int_array(value, name: str) -> bytes:
    if not isinstance(value, list):
        raise FormatError(f"Backup field '{name}' must be a list of bytes")
    try:
        return bytes(value)
    except (TypeError, ValueError) as e:
        raise FormatError(f"Backup field '{name}' must be a list of bytes") from e


# =============================================================================
# EXPORT / IMPORT
# =============================================================================

@dataclass
class ImportSummary:
    """Records written per collection by one import."""

    written: Dict[str, int] = field(default_factory=dict)
    legacy: bool = False

    @property
    def total(self) -> int:
        return sum(self.written.values())


class BackupManager:
    """
    Exports the store into encrypted envelopes and merges envelopes back.

    Usage:
        manager = BackupManager(store)
        envelope = await manager.export_backup("passphrase")
        summary = await manager.import_backup(envelope, "passphrase")
    """

    def __init__(self, store: store.Store, iterations: int = crypto.PBKDF2_ITERATIONS):
        """
        Args:
            store: Opened store handle
            iterations: PBKDF2 iteration count for new backups
        """
        self.store = store
        self.iterations = iterations

    async def snapshot(self, consistent: bool = False) -> codec.Snapshot:
        """
        Read all five collections.

        Args:
            consistent: Read under one store-wide read barrier instead of
                five independent get_all() calls
        """
        if consistent:
            return codec.Snapshot.from_collections(await self.store.read_snapshot())

        collections = {}
        for name in store.COLLECTIONS:
            collections[name] = await self.store.get_all(name)
        return codec.Snapshot.from_collections(collections)

    async def export_backup(self, passphrase: Optional[str], consistent: bool = False) -> BackupEnvelope:
        """
        Snapshot the store and encrypt it.

        Raises:
            PassphraseRequired: If passphrase is None or empty
            StorageFault: If any read fails
        """
        if not passphrase:
            raise PassphraseRequired()

        snapshot = await self.snapshot(consistent=consistent)
        plaintext = codec.serialize(snapshot)

        salt = crypto.generate_salt()
        key = await crypto.derive_key(passphrase, salt, self.iterations)
        ciphertext, nonce = crypto.encrypt(key, plaintext, envelope_header(self.iterations))

        logger.info("Backup exported: %s", snapshot.counts())
        return BackupEnvelope(ciphertext=ciphertext, nonce=nonce, salt=salt, iterations=self.iterations)

    async def open_backup(self, envelope: BackupEnvelope, passphrase: Optional[str]) -> codec.Snapshot:
        """
        Decrypt and decode an envelope without touching the store.

        Raises:
            PassphraseRequired: If passphrase is None or empty
            WrongPassphraseOrCorruptData: If authenticated decryption fails
            FormatError: If the decrypted payload is malformed
        """
        if not passphrase:
            raise PassphraseRequired()

        key = await crypto.derive_key(passphrase, envelope.key_salt(), envelope.iterations)
        try:
            plaintext = crypto.decrypt(key, envelope.ciphertext, envelope.nonce, envelope.associated_data())
        except AuthenticationFailure:
            logger.warning("Backup import rejected: decryption failed")
            raise WrongPassphraseOrCorruptData() from None

        snapshot = codec.deserialize(plaintext)
        _check_keys(snapshot)
        return snapshot

    async def import_backup(self, envelope: BackupEnvelope, passphrase: Optional[str]) -> ImportSummary:
        """
        Merge an envelope into the store (last write wins per key).

        Nothing is written unless decryption and decoding both succeed.
        Importing the same envelope twice leaves the same state as once.
        """
        snapshot = await self.open_backup(envelope, passphrase)

        summary = ImportSummary(legacy=envelope.is_legacy)
        for name, records in snapshot.collections().items():
            for record in records:
                await self.store.put(name, record)
            summary.written[name] = len(records)

        logger.info("Backup imported: %s", summary.written)
        return summary

    # =========================================================================
    # FILES
    # =========================================================================

    async def write_backup(self, path: str, passphrase: Optional[str], consistent: bool = False) -> BackupEnvelope:
        """Export and write the envelope as the entire content of path."""
        envelope = await self.export_backup(passphrase, consistent=consistent)
        with open(path, "w", encoding="utf-8") as f:
            f.write(envelope.to_json())
        return envelope

    async def restore_backup(self, path: str, passphrase: Optional[str]) -> ImportSummary:
        """Read an envelope file and import it."""
        with open(path, "r", encoding="utf-8") as f:
            envelope = BackupEnvelope.from_json(f.read())
        return await self.import_backup(envelope, passphrase)


def _check_keys(snapshot: codec.Snapshot) -> None:
    """Reject payloads whose records can't be put back, before any write happens."""
    for name, records in snapshot.collections().items():
        coll = store.COLLECTIONS[name]
        for record in records:
            try:
                key = coll.key_of(record)
            except ValueError as e:
                raise FormatError(f"Backup record rejected: {e}") from e
            if key is None:
                raise FormatError(f"Backup record in {name} has no '{coll.key_path}'")

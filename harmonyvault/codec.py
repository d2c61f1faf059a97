"""
HarmonyVault - Backup Codec

Turns a snapshot of the five collections into one plaintext payload and back.

Payload format (UTF-8 JSON object):
    {
        "version": 1,
        "profile":  [ <profile record> ] or [],
        "symptoms": [ ... ],
        "meds":     [ ... ],
        "cycles":   [ ... ],
        "progress": [ ... ]
    }

Payloads written by the first release of the app carry no "version" field;
they are read as version 1. Missing collections read as empty.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from . import store
from .errors import FormatError

PAYLOAD_VERSION = 1

Record = Dict[str, Any]

# Payload field -> collection name
PAYLOAD_FIELDS = {
    "symptoms": store.SYMPTOMS,
    "meds": store.MEDICATIONS,
    "cycles": store.CYCLES,
    "progress": store.PROGRESS,
}


@dataclass
class Snapshot:
    """Full contents of the store at one moment (per collection)."""

    profile: Optional[Record] = None
    symptom_logs: List[Record] = field(default_factory=list)
    med_logs: List[Record] = field(default_factory=list)
    cycles: List[Record] = field(default_factory=list)
    progress_logs: List[Record] = field(default_factory=list)

    @classmethod
    def from_collections(cls, collections: Dict[str, List[Record]]) -> "Snapshot":
        """Build a snapshot from {collection name: records}."""
        profiles = collections.get(store.PROFILE, [])
        return cls(
            profile=profiles[0] if profiles else None,
            symptom_logs=list(collections.get(store.SYMPTOMS, [])),
            med_logs=list(collections.get(store.MEDICATIONS, [])),
            cycles=list(collections.get(store.CYCLES, [])),
            progress_logs=list(collections.get(store.PROGRESS, [])),
        )

    def collections(self) -> Dict[str, List[Record]]:
        """Inverse of from_collections()."""
        return {
            store.PROFILE: [self.profile] if self.profile is not None else [],
            store.SYMPTOMS: self.symptom_logs,
            store.MEDICATIONS: self.med_logs,
            store.CYCLES: self.cycles,
            store.PROGRESS: self.progress_logs,
        }

    def counts(self) -> Dict[str, int]:
        return {name: len(records) for name, records in self.collections().items()}


def serialize(snapshot: Snapshot) -> bytes:
    """Encode a snapshot as the plaintext backup payload."""
    payload = {
        "version": PAYLOAD_VERSION,
        "profile": [snapshot.profile] if snapshot.profile is not None else [],
        "symptoms": snapshot.symptom_logs,
        "meds": snapshot.med_logs,
        "cycles": snapshot.cycles,
        "progress": snapshot.progress_logs,
    }
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode('utf-8')


def deserialize(data: bytes) -> Snapshot:
    """
    Decode a plaintext backup payload.

    Raises:
        FormatError: If the payload is malformed, truncated or of an
            unsupported version
    """
    try:
        payload = json.loads(data.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as e:
        raise FormatError(f"Backup payload is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise FormatError("Backup payload must be a JSON object")

    version = payload.get("version", PAYLOAD_VERSION)
    if version != PAYLOAD_VERSION:
        raise FormatError(f"Unsupported backup payload version: {version!r}")

    profiles = _records(payload, "profile")
    if len(profiles) > 1:
        raise FormatError(f"Backup payload holds {len(profiles)} profiles, expected at most one")

    return Snapshot(
        profile=profiles[0] if profiles else None,
        symptom_logs=_records(payload, "symptoms"),
        med_logs=_records(payload, "meds"),
        cycles=_records(payload, "cycles"),
        progress_logs=_records(payload, "progress"),
    )


def _records(payload: dict, name: str) -> List[Record]:
    records = payload.get(name)
    if records is None:
        return []
    if not isinstance(records, list):
        raise FormatError(f"Backup field '{name}' must be a list")
    for record in records:
        if not isinstance(record, dict):
            raise FormatError(f"Backup field '{name}' contains a non-object record")
    return records

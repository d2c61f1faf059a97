"""
HarmonyVault - Record Models

Typed constructors for the five record kinds. The store itself works on
plain dicts; these classes only build and read them with the right fields
in the right order (the order is what the tabular export uses as header).
"""

import time
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

from .store import PROFILE_ID


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def _kwargs(cls, record: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in record.items() if k in names}


@dataclass
class Profile:
    """The single user profile (key: id, always "main")."""

    name: str = ""
    age: Any = None
    height: Any = None      # cm
    weight: Any = None      # kg
    id: str = PROFILE_ID

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "age": self.age,
            "height": self.height,
            "weight": self.weight,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Profile":
        return cls(**_kwargs(cls, record))


@dataclass
class SymptomLog:
    symptom: str
    severity: Any = None
    notes: str = ""
    timestamp: int = field(default_factory=now_ms)

    def to_record(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "symptom": self.symptom,
            "severity": self.severity,
            "notes": self.notes,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "SymptomLog":
        return cls(**_kwargs(cls, record))


@dataclass
class MedicationLog:
    name: str
    dosage: str = ""
    site: str = ""
    info: str = ""
    timestamp: int = field(default_factory=now_ms)

    def to_record(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "name": self.name,
            "dosage": self.dosage,
            "site": self.site,
            "info": self.info,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "MedicationLog":
        return cls(**_kwargs(cls, record))


@dataclass
class CycleRecord:
    """
    One menstrual cycle.

    end is None while the cycle is open. id is None until the store assigns
    one; closing the cycle is a put of the same record with end set.
    """

    start: int = field(default_factory=now_ms)
    end: Optional[int] = None
    notes: str = ""
    id: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.end is None

    def close(self, end: Optional[int] = None, notes: Optional[str] = None) -> "CycleRecord":
        """Return a closed copy of this cycle."""
        end = now_ms() if end is None else end
        if end < self.start:
            raise ValueError("Cycle cannot end before it starts")
        return replace(self, end=end, notes=self.notes if notes is None else notes)

    def to_record(self) -> Dict[str, Any]:
        record = {"start": self.start, "end": self.end, "notes": self.notes}
        if self.id is not None:
            record["id"] = self.id
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CycleRecord":
        return cls(**_kwargs(cls, record))


@dataclass
class ProgressLog:
    weight: float
    bmi: Optional[float] = None
    timestamp: int = field(default_factory=now_ms)

    def to_record(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "weight": self.weight, "bmi": self.bmi}

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ProgressLog":
        return cls(**_kwargs(cls, record))

"""
HarmonyVault - Tracker Calculations

Read-side logic used by the front end: recent entries, BMI, cycle
statistics and the dashboard numbers.

Nothing here trusts the order records arrive in. Every "most recent" or
"last" is taken after an explicit sort by the collection key.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from . import store

DEFAULT_HEIGHT_CM = 170.0
MS_PER_DAY = 1000 * 60 * 60 * 24

Record = Dict[str, Any]


def sort_by_key(records: List[Record], key: str) -> List[Record]:
    return sorted(records, key=lambda r: r[key])


def most_recent(records: List[Record], key: str = "timestamp", n: int = 5) -> List[Record]:
    """Return the n records with the largest keys, newest first."""
    if n <= 0:
        return []
    return list(reversed(sort_by_key(records, key)[-n:]))


def calculate_bmi(weight_kg: float, height_cm: Any = None) -> float:
    """
    BMI rounded to one decimal.

    height_cm may be a string as entered in the profile form; a missing or
    zero height falls back to 170 cm.
    """
    if not weight_kg or weight_kg <= 0:
        raise ValueError("Weight must be a positive number")
    height = float(height_cm) if height_cm else DEFAULT_HEIGHT_CM
    if height <= 0:
        height = DEFAULT_HEIGHT_CM
    height_m = height / 100
    return round(weight_kg / (height_m * height_m), 1)


# =============================================================================
# Cycles
# =============================================================================

def cycle_lengths(cycles: List[Record]) -> List[float]:
    """Length in days of every closed cycle, in id order."""
    return [
        (c["end"] - c["start"]) / MS_PER_DAY
        for c in sort_by_key(cycles, "id")
        if c.get("end")
    ]


def average_cycle_length(cycles: List[Record]) -> Optional[float]:
    """Mean closed-cycle length in days; None with fewer than two cycles."""
    if len(cycles) < 2:
        return None
    lengths = cycle_lengths(cycles)
    if not lengths:
        return None
    return sum(lengths) / len(lengths)


def next_expected_period(cycles: List[Record]) -> Optional[datetime]:
    """
    Predicted start of the next period: last cycle start + average length.

    None while the last cycle is still open or no average is known.
    """
    average = average_cycle_length(cycles)
    if not average:
        return None
    last = sort_by_key(cycles, "id")[-1]
    if not last.get("end"):
        return None
    expected_ms = last["start"] + average * MS_PER_DAY
    return datetime.fromtimestamp(expected_ms / 1000, tz=timezone.utc)


# =============================================================================
# Dashboard
# =============================================================================

def bmi_trend(progress: List[Record]) -> Optional[str]:
    """Compare the two latest BMI readings: "up", "down", "flat" or None.

    Entries without a BMI are skipped.
    """
    latest = most_recent([p for p in progress if p.get("bmi") is not None], n=2)
    if len(latest) < 2:
        return None
    current, previous = float(latest[0]["bmi"]), float(latest[1]["bmi"])
    if current > previous:
        return "up"
    if current < previous:
        return "down"
    return "flat"


async def dashboard_summary(vault: store.Store) -> Dict[str, Any]:
    """Counts and latest progress figures for the dashboard."""
    progress = await vault.get_all(store.PROGRESS)
    latest = most_recent(progress, n=1)
    return {
        "symptom_count": await vault.count(store.SYMPTOMS),
        "med_count": await vault.count(store.MEDICATIONS),
        "latest_weight": latest[0]["weight"] if latest else None,
        "latest_bmi": latest[0]["bmi"] if latest else None,
        "bmi_trend": bmi_trend(progress),
    }

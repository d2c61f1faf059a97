"""
HarmonyVault - Tabular Export

Writes each non-empty log collection as a comma-separated text file:
the first line holds the field names of the first record, every following
line one record's values in that same field order.

Values are joined as-is. A comma or newline inside a value is NOT escaped
and will break the row; spreadsheet tools should be pointed at the
encrypted backup when notes contain such characters.
"""

import logging
import os
from typing import Any, Dict, List

from . import store

logger = logging.getLogger(__name__)

# Collection -> output file name
TABULAR_FILES = {
    store.SYMPTOMS: "symptoms.csv",
    store.MEDICATIONS: "medications.csv",
    store.CYCLES: "cycles.csv",
    store.PROGRESS: "progress.csv",
}


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_rows(records: List[Dict[str, Any]]) -> str:
    """Render records as header + one line per record. Empty input gives ''."""
    if not records:
        return ""
    header = list(records[0].keys())
    lines = [",".join(header)]
    for record in records:
        lines.append(",".join(format_value(record.get(name)) for name in header))
    return "\n".join(lines)


async def export_tables(vault: store.Store, directory: str) -> List[str]:
    """
    Write one file per non-empty collection into directory.

    Returns:
        Paths of the files written, in collection order
    """
    os.makedirs(directory, exist_ok=True)
    written = []
    for collection, filename in TABULAR_FILES.items():
        records = await vault.get_all(collection)
        if not records:
            continue
        path = os.path.join(directory, filename)
        with open(path, "w", encoding="utf-8") as f:
            f.write(to_rows(records))
        written.append(path)
        logger.info("Exported %d %s records to %s", len(records), collection, path)
    return written

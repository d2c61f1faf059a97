"""
HarmonyVault - Offline Health Record Store with Encrypted Backups

A local, offline-first store for a personal health tracker, plus an
encrypted export/import pipeline for the whole store.

Key Features:
- Five keyed collections: profile, symptom logs, medication logs, cycles, progress
- Last-write-wins puts, durable before they return
- Encrypted backups: PBKDF2-HMAC-SHA256 (random salt per backup) + AES-256-GCM
- Idempotent restore: every record is put back at its own key

Components:
- store.py: SQLite collection store
- crypto.py: Key derivation and authenticated encryption
- codec.py: Snapshot <-> plaintext payload
- backup.py: Envelope format, export and import
- tracker.py: Recent entries, BMI, cycle statistics
- tabular.py: Comma-separated export
- cli.py: Command-line interface (argparse)

Usage:
    harmonyvault init                       # Create store
    harmonyvault symptom "Headache"         # Log a symptom
    harmonyvault export backup.json         # Encrypted backup
    harmonyvault import backup.json         # Restore
"""

__version__ = "0.3.0"

"""
HarmonyVault - Command Line

    harmonyvault init
    harmonyvault profile --name Sam --height 165 --weight 60
    harmonyvault symptom "Hot flush" --severity 3 --notes "after lunch"
    harmonyvault med Estradiol --dosage 2mg --site arm
    harmonyvault cycle-start
    harmonyvault cycle-end --notes "lighter than usual"
    harmonyvault progress 61.5
    harmonyvault recent symptoms -n 5
    harmonyvault summary
    harmonyvault export backup.json
    harmonyvault import backup.json
    harmonyvault export-csv ./csv

Passphrases are prompted for with getpass, or read from the environment
variable named by --passphrase-env.
"""

import argparse
import asyncio
import getpass
import logging
import os
import sys
from datetime import datetime
from typing import List, Optional

from . import store, tabular, tracker
from .backup import BackupManager
from .config import Settings
from .errors import FormatError, HarmonyError, PassphraseRequired, StorageFault, WrongPassphraseOrCorruptData
from .models import CycleRecord, MedicationLog, Profile, ProgressLog, SymptomLog

logger = logging.getLogger(__name__)

RECENT_CHOICES = {
    "symptoms": (store.SYMPTOMS, "timestamp"),
    "meds": (store.MEDICATIONS, "timestamp"),
    "cycles": (store.CYCLES, "id"),
    "progress": (store.PROGRESS, "timestamp"),
}


def fmt_ms(ms: Optional[int]) -> str:
    if ms is None:
        return "Ongoing"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


def read_passphrase(args, confirm: bool = False) -> str:
    if args.passphrase_env:
        return os.environ.get(args.passphrase_env, "")
    pw = getpass.getpass("Backup passphrase: ")
    if confirm and pw and getpass.getpass("Confirm: ") != pw:
        raise ValueError("Passphrases don't match")
    return pw


# =============================================================================
# COMMANDS
# =============================================================================

async def cmd_init(vault, args, settings):
    print(f"✓ Store ready at {vault.db_path} (schema v{store.SCHEMA_VERSION})")


async def cmd_profile(vault, args, settings):
    current = await vault.get(store.PROFILE, store.PROFILE_ID)
    updates = {k: getattr(args, k) for k in ("name", "age", "height", "weight") if getattr(args, k) is not None}
    if not updates:
        if current is None:
            print("No profile yet. Set one with --name/--age/--height/--weight.")
        else:
            p = Profile.from_record(current)
            print(f"Name: {p.name or '-'}  Age: {p.age or '-'}  Height: {p.height or '-'} cm  Weight: {p.weight or '-'} kg")
        return
    profile = Profile.from_record(current) if current else Profile()
    for k, v in updates.items():
        setattr(profile, k, v)
    await vault.put(store.PROFILE, profile.to_record())
    print(f"✓ Welcome, {profile.name or 'friend'}")


async def cmd_symptom(vault, args, settings):
    log = SymptomLog(symptom=args.symptom, severity=args.severity, notes=args.notes)
    await vault.put(store.SYMPTOMS, log.to_record())
    print(f"✓ Logged {log.symptom} at {fmt_ms(log.timestamp)}")


async def cmd_med(vault, args, settings):
    log = MedicationLog(name=args.name, dosage=args.dosage, site=args.site, info=args.info)
    await vault.put(store.MEDICATIONS, log.to_record())
    print(f"✓ Logged {log.name} at {fmt_ms(log.timestamp)}")


async def cmd_cycle_start(vault, args, settings):
    cycle = CycleRecord(notes=args.notes)
    cycle_id = await vault.put(store.CYCLES, cycle.to_record())
    print(f"✓ Period started (cycle {cycle_id})")


async def cmd_cycle_end(vault, args, settings):
    if args.id is not None:
        record = await vault.get(store.CYCLES, args.id)
        if record is None:
            raise ValueError(f"Cycle {args.id} not found")
    else:
        open_cycles = [c for c in await vault.get_all(store.CYCLES) if c.get("end") is None]
        if not open_cycles:
            raise ValueError("Start a period first")
        record = tracker.most_recent(open_cycles, key="id", n=1)[0]
    cycle = CycleRecord.from_record(record).close(notes=args.notes)
    await vault.put(store.CYCLES, cycle.to_record())
    print(f"✓ Period ended and saved (cycle {cycle.id})")


async def cmd_progress(vault, args, settings):
    profile = await vault.get(store.PROFILE, store.PROFILE_ID) or {}
    bmi = tracker.calculate_bmi(args.weight, profile.get("height"))
    await vault.put(store.PROGRESS, ProgressLog(weight=args.weight, bmi=bmi).to_record())
    print(f"✓ Weight {args.weight} kg, BMI {bmi}")


async def cmd_recent(vault, args, settings):
    collection, key = RECENT_CHOICES[args.kind]
    records = tracker.most_recent(await vault.get_all(collection), key=key, n=args.n)
    if not records:
        print("No entries.")
        return
    for r in records:
        if args.kind == "symptoms":
            print(f"{fmt_ms(r['timestamp'])}  {r.get('symptom')} (Severity: {r.get('severity')})  {r.get('notes') or ''}")
        elif args.kind == "meds":
            print(f"{fmt_ms(r['timestamp'])}  {r.get('name')} - {r.get('dosage')}  Site: {r.get('site') or 'N/A'}  {r.get('info') or ''}")
        elif args.kind == "cycles":
            print(f"#{r['id']:<4} Start: {fmt_ms(r.get('start'))}  End: {fmt_ms(r.get('end'))}  Notes: {r.get('notes') or ''}")
        else:
            print(f"{fmt_ms(r['timestamp'])}  {r.get('weight')} kg  BMI {r.get('bmi')}")


async def cmd_summary(vault, args, settings):
    summary = await tracker.dashboard_summary(vault)
    cycles = await vault.get_all(store.CYCLES)
    print(f"Symptoms logged:    {summary['symptom_count']}")
    print(f"Medications logged: {summary['med_count']}")
    if summary["latest_weight"] is not None:
        print(f"Latest weight:      {summary['latest_weight']} kg")
        print(f"Latest BMI:         {summary['latest_bmi']} ({summary['bmi_trend'] or '-'})")
    average = tracker.average_cycle_length(cycles)
    if average:
        print(f"Average cycle:      {average:.1f} days")
    expected = tracker.next_expected_period(cycles)
    if expected:
        print(f"Next expected:      {expected.astimezone().strftime('%Y-%m-%d')}")


async def cmd_export(vault, args, settings):
    manager = BackupManager(vault, iterations=settings.kdf_iterations)
    passphrase = read_passphrase(args, confirm=True)
    await manager.write_backup(args.path, passphrase, consistent=args.consistent)
    print(f"✓ Encrypted backup written to {args.path}")


async def cmd_import(vault, args, settings):
    manager = BackupManager(vault, iterations=settings.kdf_iterations)
    passphrase = read_passphrase(args)
    summary = await manager.restore_backup(args.path, passphrase)
    print(f"✓ Backup restored successfully! ({summary.total} records)")


async def cmd_export_csv(vault, args, settings):
    paths = await tabular.export_tables(vault, args.directory)
    if not paths:
        print("Nothing to export.")
    for path in paths:
        print(f"✓ {path}")


COMMANDS = {
    "init": cmd_init,
    "profile": cmd_profile,
    "symptom": cmd_symptom,
    "med": cmd_med,
    "cycle-start": cmd_cycle_start,
    "cycle-end": cmd_cycle_end,
    "progress": cmd_progress,
    "recent": cmd_recent,
    "summary": cmd_summary,
    "export": cmd_export,
    "import": cmd_import,
    "export-csv": cmd_export_csv,
}


# =============================================================================
# ENTRY POINT
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="harmonyvault", description="Offline health tracker store")
    parser.add_argument("--db", help="SQLite file (default: $HARMONY_DB_PATH or ~/.harmonyvault/harmony.db)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create or upgrade the store")

    p = sub.add_parser("profile", help="Show or update the profile")
    p.add_argument("--name")
    p.add_argument("--age")
    p.add_argument("--height", help="cm")
    p.add_argument("--weight", help="kg")

    p = sub.add_parser("symptom", help="Log a symptom")
    p.add_argument("symptom")
    p.add_argument("--severity")
    p.add_argument("--notes", default="")

    p = sub.add_parser("med", help="Log a medication")
    p.add_argument("name")
    p.add_argument("--dosage", default="")
    p.add_argument("--site", default="")
    p.add_argument("--info", default="")

    p = sub.add_parser("cycle-start", help="Start a period")
    p.add_argument("--notes", default="")

    p = sub.add_parser("cycle-end", help="End the open period")
    p.add_argument("id", nargs="?", type=int, help="Cycle id (default: latest open cycle)")
    p.add_argument("--notes")

    p = sub.add_parser("progress", help="Log weight; BMI uses the profile height")
    p.add_argument("weight", type=float)

    p = sub.add_parser("recent", help="Most recent entries, newest first")
    p.add_argument("kind", choices=sorted(RECENT_CHOICES))
    p.add_argument("-n", type=int, default=5)

    sub.add_parser("summary", help="Dashboard numbers and cycle prediction")

    for name, help_text in (("export", "Write an encrypted backup"), ("import", "Restore an encrypted backup")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("path")
        p.add_argument("--passphrase-env", metavar="VAR", help="Read the passphrase from this environment variable")
        if name == "export":
            p.add_argument("--consistent", action="store_true",
                           help="Read all collections under one read barrier")

    p = sub.add_parser("export-csv", help="Write one .csv per non-empty log collection")
    p.add_argument("directory")
    return parser


async def run(args, settings: Settings) -> None:
    async with store.Store(args.db or settings.db_path, busy_timeout_ms=settings.busy_timeout_ms) as vault:
        await COMMANDS[args.command](vault, args, settings)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(run(args, settings))
    except PassphraseRequired:
        print("ERROR: A passphrase is required.")
        return 1
    except WrongPassphraseOrCorruptData:
        print("ERROR: Failed to decrypt backup. Wrong passphrase or corrupted file?")
        return 1
    except FormatError as e:
        print(f"ERROR: Not a valid backup ({e}).")
        return 1
    except StorageFault as e:
        print(f"ERROR: Storage unavailable ({e}).")
        return 1
    except (HarmonyError, ValueError, OSError) as e:
        print(f"ERROR: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

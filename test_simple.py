"""
HarmonyVault - Self-Tests

Run with: python test_simple.py   (or: pytest)

Covers the store, the cipher, the codec and the backup pipeline:
- Key derivation is deterministic and passphrase/salt sensitive
- Authenticated encryption fails closed (wrong key, nonce, AD, tampering)
- Payloads round-trip; malformed payloads are rejected
- put replaces by key; get_all returns key order; cycles get sequential ids
- Export/import scenarios, wrong passphrase, idempotent restore
- Legacy (fixed-salt) backups still import
- Out-of-range keys and oversized KDF parameters are refused
- The command line reports a wrong passphrase generically
"""

import asyncio
import contextlib
import io
import json
import os
import sqlite3
import tempfile

from harmonyvault import cli, codec, crypto, store, tabular, tracker
from harmonyvault.backup import BackupEnvelope, BackupManager, envelope_header
from harmonyvault.errors import (
    AuthenticationFailure,
    FormatError,
    PassphraseRequired,
    StorageFault,
    WrongPassphraseOrCorruptData,
)
from harmonyvault.models import CycleRecord, Profile, SymptomLog

# Keeps the backup tests fast; test_kdf uses the real default.
FAST_ITERATIONS = 1_000

PROFILE = {"id": "main", "name": "Sam", "age": "34", "height": "165", "weight": "60"}


async def open_store(directory: str, name: str = "harmony.db") -> store.Store:
    vault = store.Store(os.path.join(directory, name))
    await vault.open()
    return vault


def seal(payload: dict, passphrase: str) -> BackupEnvelope:
    """Encrypt a raw payload dict the way export_backup does."""
    salt = crypto.generate_salt()
    key = crypto.derive_backup_key(passphrase, salt, FAST_ITERATIONS)
    ciphertext, nonce = crypto.encrypt(key, json.dumps(payload).encode(), envelope_header(FAST_ITERATIONS))
    return BackupEnvelope(ciphertext=ciphertext, nonce=nonce, salt=salt, iterations=FAST_ITERATIONS)


def test_kdf():
    """Test key derivation from passphrase."""
    print("Testing KDF (Key Derivation)...")

    salt = crypto.generate_salt()
    key1 = crypto.derive_backup_key("abc123", salt)
    key2 = asyncio.run(crypto.derive_key("abc123", salt))

    assert key1 == key2, "KDF should be deterministic"
    assert len(key1) == 32, "Key should be 32 bytes"
    assert crypto.derive_backup_key("abc124", salt) != key1, "Different passphrases should give different keys"
    assert crypto.derive_backup_key("abc123", crypto.generate_salt()) != key1, "Different salts should give different keys"
    assert crypto.derive_backup_key("abc123", salt, iterations=1000) != key1

    print("  [OK] KDF works correctly")


def test_encryption():
    """Test AES-GCM encryption/decryption."""
    print("Testing Encryption...")

    salt = crypto.generate_salt()
    key = crypto.derive_backup_key("abc123", salt, FAST_ITERATIONS)
    plaintext = b'{"symptoms":[]}'

    ciphertext, nonce = crypto.encrypt(key, plaintext)
    assert len(nonce) == crypto.NONCE_SIZE
    assert len(ciphertext) == len(plaintext) + crypto.TAG_SIZE
    assert crypto.decrypt(key, ciphertext, nonce) == plaintext, "Decryption should recover plaintext"
    print("  [OK] Encryption/decryption works")

    _, nonce2 = crypto.encrypt(key, plaintext)
    assert nonce != nonce2, "Every encryption should draw a fresh nonce"

    wrong_key = crypto.derive_backup_key("wrong", salt, FAST_ITERATIONS)
    tampered = bytearray(ciphertext)
    tampered[0] ^= 1
    attempts = [
        (wrong_key, ciphertext, nonce, None),
        (key, bytes(tampered), nonce, None),
        (key, ciphertext, os.urandom(crypto.NONCE_SIZE), None),
        (key, ciphertext, nonce, {"ctx": "other"}),
        (key, ciphertext[:10], nonce, None),
    ]
    for attempt in attempts:
        try:
            crypto.decrypt(*attempt)
        except AuthenticationFailure:
            pass
        else:
            raise AssertionError("Decryption should have failed closed")
    print("  [OK] Wrong key, tampering, wrong nonce and wrong AD are rejected")

    ad = {"ctx": "harmony_backup", "version": 1}
    ciphertext, nonce = crypto.encrypt(key, plaintext, ad)
    assert crypto.decrypt(key, ciphertext, nonce, dict(reversed(list(ad.items())))) == plaintext
    print("  [OK] Associated data is canonical")


def test_codec():
    """Test payload serialization."""
    print("Testing Codec...")

    empty = codec.Snapshot()
    assert codec.deserialize(codec.serialize(empty)) == empty
    print("  [OK] Empty snapshot round-trips")

    snapshot = codec.Snapshot(
        profile=dict(PROFILE),
        symptom_logs=[{"timestamp": 100, "symptom": "Headache", "severity": "3", "notes": "ünïcode"}],
        med_logs=[{"timestamp": 150, "name": "Estradiol", "dosage": "2mg", "site": "", "info": ""}],
        cycles=[{"start": 1, "end": None, "notes": "", "id": 1}],
        progress_logs=[{"timestamp": 300, "weight": 61.5, "bmi": 22.6}],
    )
    assert codec.deserialize(codec.serialize(snapshot)) == snapshot
    print("  [OK] Full snapshot round-trips field-for-field")

    # Payloads from the first release have no version field
    legacy = json.dumps({"profile": [PROFILE], "symptoms": [], "meds": [], "cycles": [], "progress": []})
    assert codec.deserialize(legacy.encode()).profile == PROFILE
    assert codec.deserialize(b'{"symptoms": []}') == empty
    print("  [OK] Unversioned payloads and missing collections accepted")

    malformed = [
        codec.serialize(snapshot)[:-5],
        b"\xff\xfe",
        b"[]",
        b'{"symptoms": {}}',
        b'{"symptoms": [1, 2]}',
        b'{"profile": [{"id": "main"}, {"id": "main"}]}',
        b'{"version": 99}',
    ]
    for data in malformed:
        try:
            codec.deserialize(data)
        except FormatError:
            pass
        else:
            raise AssertionError(f"Should reject malformed payload {data!r}")
    print("  [OK] Malformed payloads rejected")


def test_store_operations():
    """Test put/get/get_all semantics."""
    print("Testing Store Operations...")

    async def scenario(directory):
        vault = store.Store(os.path.join(directory, "harmony.db"))
        try:
            await vault.get_all(store.SYMPTOMS)
        except StorageFault:
            print("  [OK] Access before open() is refused")
        else:
            raise AssertionError("Store should refuse access before open()")

        await vault.open()

        for ts in (300, 100, 200):
            await vault.put(store.SYMPTOMS, SymptomLog("Cramps", "2", timestamp=ts).to_record())
        logs = await vault.get_all(store.SYMPTOMS)
        assert [log["timestamp"] for log in logs] == [100, 200, 300], "get_all should be key-ordered"
        print("  [OK] get_all returns records in key order")

        await vault.put(store.SYMPTOMS, {"timestamp": 200, "symptom": "Fatigue"})
        logs = await vault.get_all(store.SYMPTOMS)
        assert len(logs) == 3
        replaced = [log for log in logs if log["timestamp"] == 200]
        assert replaced == [{"timestamp": 200, "symptom": "Fatigue"}], "put should fully replace the record"
        print("  [OK] put with existing key replaces the whole record")

        assert await vault.get(store.PROFILE, store.PROFILE_ID) is None
        key = await vault.put(store.PROFILE, Profile(name="Sam", height="165").to_record())
        assert key == "main"
        await vault.put(store.PROFILE, Profile(name="Samantha").to_record())
        assert (await vault.get(store.PROFILE, "main"))["name"] == "Samantha"
        assert await vault.count(store.PROFILE) == 1
        try:
            await vault.put(store.PROFILE, {**PROFILE, "id": "zzz"})
        except ValueError:
            pass
        else:
            raise AssertionError("Profile should only be stored under its fixed id")
        assert await vault.count(store.PROFILE) == 1
        print("  [OK] Profile is a single record")

        bad_records = (
            {"symptom": "no key"}, {"timestamp": "100"}, {"timestamp": True},
            {"timestamp": 2**64}, {"timestamp": store.SQLITE_INT_MAX + 1}, {"timestamp": store.SQLITE_INT_MIN - 1},
        )
        for bad in bad_records:
            try:
                await vault.put(store.SYMPTOMS, bad)
            except ValueError:
                pass
            else:
                raise AssertionError(f"Should reject record {bad!r}")
        assert await vault.get_all(store.SYMPTOMS) == logs, "Rejected puts must not write"
        await vault.put(store.SYMPTOMS, {"timestamp": store.SQLITE_INT_MAX, "symptom": "edge"})
        try:
            await vault.put("notes", {"id": 1})
        except KeyError:
            pass
        else:
            raise AssertionError("Should reject unknown collection")
        print("  [OK] Invalid and out-of-range keys, unknown collections rejected")

        vault.close()

    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(scenario(tmp))


def test_cycles():
    """Test sequential ids and open -> closed cycles."""
    print("Testing Cycles...")

    async def scenario(directory):
        vault = await open_store(directory)
        first = await vault.put(store.CYCLES, CycleRecord(start=1_000, notes="").to_record())
        second = await vault.put(store.CYCLES, CycleRecord(start=2_000).to_record())
        assert (first, second) == (1, 2), "Cycle ids should be sequential"

        opened = CycleRecord.from_record(await vault.get(store.CYCLES, second))
        assert opened.is_open and opened.id == 2
        await vault.put(store.CYCLES, opened.close(end=3_000, notes="done").to_record())

        cycles = await vault.get_all(store.CYCLES)
        assert len(cycles) == 2
        assert cycles[1] == {"start": 2_000, "end": 3_000, "notes": "done", "id": 2}

        # Explicit ids (from a restore) push the sequence forward
        await vault.put(store.CYCLES, {"start": 5_000, "end": None, "notes": "", "id": 10})
        assert await vault.put(store.CYCLES, {"start": 6_000, "end": None, "notes": ""}) == 11
        print("  [OK] Cycle ids assigned and open cycles closed in place")

    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(scenario(tmp))


def test_concurrent_puts():
    """Concurrent puts: distinct keys both persist, same key keeps issue order."""
    print("Testing Concurrent Puts...")

    async def scenario(directory):
        vault = await open_store(directory)
        await asyncio.gather(
            vault.put(store.SYMPTOMS, {"timestamp": 100, "symptom": "Headache"}),
            vault.put(store.SYMPTOMS, {"timestamp": 200, "symptom": "Nausea"}),
            vault.put(store.MEDICATIONS, {"timestamp": 100, "name": "Spiro"}),
        )
        assert [r["timestamp"] for r in await vault.get_all(store.SYMPTOMS)] == [100, 200]
        assert len(await vault.get_all(store.MEDICATIONS)) == 1

        await asyncio.gather(*[
            vault.put(store.PROGRESS, {"timestamp": 1, "weight": w, "bmi": None})
            for w in (60, 61, 62)
        ])
        assert (await vault.get(store.PROGRESS, 1))["weight"] == 62, "Later write should win"
        print("  [OK] Concurrent puts persist, last write wins")

    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(scenario(tmp))


def test_schema_versions():
    """Test the schema version gate and additive upgrades."""
    print("Testing Schema Versions...")

    with tempfile.TemporaryDirectory() as tmp:
        # A version-1 database without the progress collection
        old_path = os.path.join(tmp, "old.db")
        conn = sqlite3.connect(old_path)
        conn.execute('CREATE TABLE "symptomLogs" (key INTEGER PRIMARY KEY, data TEXT NOT NULL)')
        conn.execute('INSERT INTO "symptomLogs" VALUES (100, \'{"timestamp": 100, "symptom": "Acne"}\')')
        conn.execute("PRAGMA user_version = 1")
        conn.commit()
        conn.close()

        async def upgrade():
            vault = store.Store(old_path)
            await vault.open()
            assert await vault.get_all(store.SYMPTOMS) == [{"timestamp": 100, "symptom": "Acne"}]
            assert await vault.get_all(store.PROGRESS) == []
        asyncio.run(upgrade())
        print("  [OK] Upgrade adds missing collections and keeps data")

        new_path = os.path.join(tmp, "new.db")
        conn = sqlite3.connect(new_path)
        conn.execute(f"PRAGMA user_version = {store.SCHEMA_VERSION + 1}")
        conn.commit()
        conn.close()

        async def too_new():
            vault = store.Store(new_path)
            try:
                await vault.open()
            except StorageFault:
                assert not vault.is_open
            else:
                raise AssertionError("Newer schema should be refused")
        asyncio.run(too_new())
        print("  [OK] Newer schema refused")

        # Parent "directory" is a regular file
        blocker = os.path.join(tmp, "blocker")
        with open(blocker, "w") as f:
            f.write("not a directory")

        async def bad_parent():
            vault = store.Store(os.path.join(blocker, "sub", "harmony.db"))
            try:
                await vault.open()
            except StorageFault:
                assert not vault.is_open
            else:
                raise AssertionError("Unusable parent directory should be a storage fault")
        asyncio.run(bad_parent())
        print("  [OK] Filesystem errors on open become StorageFault")


def test_export_scenario():
    """Export one profile + two symptom logs and read it back."""
    print("Testing Export...")

    async def scenario(directory):
        vault = await open_store(directory)
        manager = BackupManager(vault, iterations=FAST_ITERATIONS)
        await vault.put(store.PROFILE, dict(PROFILE))
        await vault.put(store.SYMPTOMS, {"timestamp": 200, "symptom": "Nausea", "severity": "1", "notes": ""})
        await vault.put(store.SYMPTOMS, {"timestamp": 100, "symptom": "Headache", "severity": "4", "notes": "am"})

        for passphrase in (None, ""):
            try:
                await manager.export_backup(passphrase)
            except PassphraseRequired:
                pass
            else:
                raise AssertionError("Export without passphrase should fail")

        for consistent in (False, True):
            envelope = await manager.export_backup("abc123", consistent=consistent)
            assert len(envelope.nonce) == 12 and len(envelope.salt) == crypto.SALT_SIZE

            snapshot = await manager.open_backup(envelope, "abc123")
            assert snapshot.profile == PROFILE
            assert [s["timestamp"] for s in snapshot.symptom_logs] == [100, 200]
            assert snapshot.med_logs == [] and snapshot.cycles == [] and snapshot.progress_logs == []

        other = await manager.export_backup("abc123")
        assert other.salt != envelope.salt, "Each export should get its own salt"
        print("  [OK] Export captures exactly the stored records")

    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(scenario(tmp))


def test_import():
    """Wrong passphrase leaves store untouched; import is idempotent."""
    print("Testing Import...")

    async def scenario(directory):
        source = await open_store(directory, "source.db")
        await source.put(store.PROFILE, dict(PROFILE))
        await source.put(store.SYMPTOMS, {"timestamp": 100, "symptom": "Headache"})
        await source.put(store.CYCLES, {"start": 1, "end": 2, "notes": ""})
        await source.put(store.PROGRESS, {"timestamp": 5, "weight": 60, "bmi": 22.0})
        envelope = await BackupManager(source, iterations=FAST_ITERATIONS).export_backup("abc123")

        target = await open_store(directory, "target.db")
        await target.put(store.SYMPTOMS, {"timestamp": 100, "symptom": "Old"})
        await target.put(store.SYMPTOMS, {"timestamp": 900, "symptom": "Local only"})
        manager = BackupManager(target)
        before = await target.read_snapshot()

        try:
            await manager.import_backup(envelope, "wrong")
        except WrongPassphraseOrCorruptData as e:
            assert "wrong passphrase or corrupted" in str(e)
        else:
            raise AssertionError("Wrong passphrase should fail")
        assert await target.read_snapshot() == before, "Failed import must not touch the store"
        print("  [OK] Wrong passphrase rejected, store unchanged")

        summary = await manager.import_backup(envelope, "abc123")
        assert summary.total == 4 and not summary.legacy
        once = await target.read_snapshot()
        await manager.import_backup(envelope, "abc123")
        assert await target.read_snapshot() == once, "Second import should change nothing"

        assert once[store.PROFILE] == [PROFILE]
        assert once[store.SYMPTOMS] == [
            {"timestamp": 100, "symptom": "Headache"},
            {"timestamp": 900, "symptom": "Local only"},
        ]
        assert once[store.CYCLES] == [{"start": 1, "end": 2, "notes": "", "id": 1}]
        print("  [OK] Import overwrites by key and is idempotent")

    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(scenario(tmp))


def test_envelope_file():
    """Test the backup file format and tamper detection."""
    print("Testing Envelope File...")

    async def scenario(directory):
        vault = await open_store(directory)
        manager = BackupManager(vault, iterations=FAST_ITERATIONS)
        await vault.put(store.PROFILE, dict(PROFILE))

        path = os.path.join(directory, "hormone_harmony_backup.json")
        envelope = await manager.write_backup(path, "abc123")
        with open(path) as f:
            data = json.load(f)
        assert set(data) == {"version", "aead", "kdf", "iterations", "salt", "nonce", "ciphertext"}
        assert BackupEnvelope.from_json(json.dumps(data)) == envelope
        summary = await manager.restore_backup(path, "abc123")
        assert summary.written[store.PROFILE] == 1
        print("  [OK] Envelope file round-trips")

        tampered = []
        for field_name in ("salt", "nonce", "ciphertext"):
            raw = bytearray(getattr(envelope, field_name))
            raw[-1] ^= 1
            tampered.append(BackupEnvelope(**{**envelope.__dict__, field_name: bytes(raw)}))
        tampered.append(BackupEnvelope(**{**envelope.__dict__, "iterations": FAST_ITERATIONS + 1}))
        for bad in tampered:
            try:
                await manager.import_backup(bad, "abc123")
            except WrongPassphraseOrCorruptData:
                pass
            else:
                raise AssertionError("Tampered envelope should be rejected")
        print("  [OK] Tampered salt, nonce, ciphertext and header rejected")

        for text in ("not json", "[]", '{"version": 1}', json.dumps({**data, "nonce": "AAAA"}),
                     json.dumps({**data, "salt": "***"}), '{"encrypted": "x", "iv": []}',
                     json.dumps({**data, "iterations": 0}),
                     json.dumps({**data, "iterations": crypto.MAX_PBKDF2_ITERATIONS + 1}),
                     json.dumps({**data, "iterations": 10**10})):
            try:
                BackupEnvelope.from_json(text)
            except FormatError:
                pass
            else:
                raise AssertionError(f"Malformed envelope accepted: {text}")
        print("  [OK] Malformed envelope files rejected")

    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(scenario(tmp))


def test_import_rejects_bad_keys():
    """Payloads with keys the store can't hold are refused before any write."""
    print("Testing Import Key Validation...")

    async def scenario(directory):
        vault = await open_store(directory)
        await vault.put(store.PROFILE, dict(PROFILE))
        manager = BackupManager(vault)
        before = await vault.read_snapshot()

        payloads = [
            {"profile": [{**PROFILE, "id": "other"}]},
            {"symptoms": [{"timestamp": 1, "symptom": "ok"}, {"timestamp": 2**64, "symptom": "huge"}]},
            {"progress": [{"timestamp": -(2**63) - 1, "weight": 60, "bmi": None}]},
            {"meds": [{"name": "no timestamp"}]},
        ]
        for payload in payloads:
            try:
                await manager.import_backup(seal(payload, "abc123"), "abc123")
            except FormatError:
                pass
            else:
                raise AssertionError(f"Payload should be rejected: {payload!r}")
            assert await vault.read_snapshot() == before, "Rejected import must not write anything"
        print("  [OK] Foreign profile ids and out-of-range keys rejected, store unchanged")

    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(scenario(tmp))


def test_cli_import():
    """Command-line import: generic message on a wrong passphrase, restore on the right one."""
    print("Testing CLI Import...")

    var = "HARMONY_TEST_PASSPHRASE"
    with tempfile.TemporaryDirectory() as tmp:
        async def make_backup():
            vault = await open_store(tmp, "source.db")
            await vault.put(store.PROFILE, dict(PROFILE))
            await vault.put(store.SYMPTOMS, {"timestamp": 100, "symptom": "Headache"})
            await BackupManager(vault, iterations=FAST_ITERATIONS).write_backup(path, "abc123")

        path = os.path.join(tmp, "backup.json")
        asyncio.run(make_backup())
        target = os.path.join(tmp, "target.db")
        argv = ["--db", target, "import", path, "--passphrase-env", var]

        try:
            os.environ[var] = "wrong"
            out = io.StringIO()
            with contextlib.redirect_stdout(out):
                code = cli.main(argv)
            assert code == 1
            assert out.getvalue().strip() == "ERROR: Failed to decrypt backup. Wrong passphrase or corrupted file?"

            async def count_target():
                vault = await open_store(tmp, "target.db")
                return await vault.count(store.SYMPTOMS)
            assert asyncio.run(count_target()) == 0
            print("  [OK] Wrong passphrase exits 1 with the generic message")

            os.environ[var] = "abc123"
            out = io.StringIO()
            with contextlib.redirect_stdout(out):
                code = cli.main(argv)
            assert code == 0
            assert "Backup restored successfully! (2 records)" in out.getvalue()
            assert asyncio.run(count_target()) == 1
            print("  [OK] Right passphrase restores and exits 0")
        finally:
            os.environ.pop(var, None)


def test_legacy_backup():
    """Backups from the first release (fixed salt, int arrays) still import."""
    print("Testing Legacy Backup...")

    payload = {
        "profile": [PROFILE],
        "symptoms": [{"timestamp": 100, "symptom": "Headache", "severity": "3", "notes": ""}],
        "meds": [],
        "cycles": [{"start": 1, "end": None, "notes": "", "id": 1}],
        "progress": [],
    }
    key = crypto.derive_backup_key("abc123", crypto.LEGACY_SALT)
    ciphertext, nonce = crypto.encrypt(key, json.dumps(payload).encode())
    text = json.dumps({"encrypted": list(ciphertext), "iv": list(nonce)})

    async def scenario(directory):
        vault = await open_store(directory)
        envelope = BackupEnvelope.from_json(text)
        assert envelope.is_legacy
        summary = await BackupManager(vault).import_backup(envelope, "abc123")
        assert summary.legacy and summary.total == 3
        assert await vault.get(store.CYCLES, 1) == payload["cycles"][0]
        try:
            await BackupManager(vault).import_backup(envelope, "wrong")
        except WrongPassphraseOrCorruptData:
            pass
        else:
            raise AssertionError("Wrong passphrase should fail for legacy backups too")

    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(scenario(tmp))
    print("  [OK] Legacy backups import")


def test_tabular_export():
    """Test comma-separated export."""
    print("Testing Tabular Export...")

    assert tabular.to_rows([]) == ""
    rows = tabular.to_rows([
        {"timestamp": 1, "weight": 60.5, "bmi": None},
        {"timestamp": 2, "bmi": 22.1, "weight": 61},
    ])
    assert rows == "timestamp,weight,bmi\n1,60.5,\n2,61,22.1"

    async def scenario(directory):
        vault = await open_store(directory)
        await vault.put(store.PROFILE, dict(PROFILE))
        await vault.put(store.MEDICATIONS, {"timestamp": 2, "name": "B", "dosage": "1", "site": "", "info": ""})
        await vault.put(store.MEDICATIONS, {"timestamp": 1, "name": "A", "dosage": "2", "site": "arm", "info": ""})
        out = os.path.join(directory, "csv")
        paths = await tabular.export_tables(vault, out)
        assert paths == [os.path.join(out, "medications.csv")], "Only non-empty log collections are written"
        with open(paths[0]) as f:
            assert f.read() == "timestamp,name,dosage,site,info\n1,A,2,arm,\n2,B,1,,"

    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(scenario(tmp))
    print("  [OK] Tabular export works")


def test_tracker():
    """Test recent entries, BMI and cycle statistics."""
    print("Testing Tracker...")

    logs = [{"timestamp": t} for t in (5, 1, 4, 2, 3, 6)]
    assert [r["timestamp"] for r in tracker.most_recent(logs, n=3)] == [6, 5, 4]
    assert tracker.most_recent(logs, n=0) == []

    assert tracker.calculate_bmi(60, "165") == 22.0
    assert tracker.calculate_bmi(60, None) == 20.8
    print("  [OK] most_recent and BMI work")

    day = tracker.MS_PER_DAY
    cycles = [
        {"id": 2, "start": 30 * day, "end": 35 * day, "notes": ""},
        {"id": 1, "start": 0, "end": 3 * day, "notes": ""},
    ]
    assert tracker.cycle_lengths(cycles) == [3.0, 5.0]
    assert tracker.average_cycle_length(cycles) == 4.0
    assert tracker.average_cycle_length(cycles[:1]) is None
    expected = tracker.next_expected_period(cycles)
    assert expected.timestamp() * 1000 == 34 * day
    assert tracker.next_expected_period(cycles + [{"id": 3, "start": 60 * day, "end": None}]) is None

    progress = [{"timestamp": 2, "bmi": 22.5}, {"timestamp": 1, "bmi": 22.0}]
    assert tracker.bmi_trend(progress) == "up"
    assert tracker.bmi_trend(progress[:1]) is None
    with_gaps = progress + [{"timestamp": 3, "bmi": None}, {"timestamp": 0, "weight": 59}]
    assert tracker.bmi_trend(with_gaps) == "up", "Entries without a BMI are skipped"
    assert tracker.bmi_trend([{"timestamp": 1, "bmi": None}, {"timestamp": 2, "bmi": None}]) is None
    print("  [OK] Cycle statistics and BMI trend work")

    async def scenario(directory):
        vault = await open_store(directory)
        for p in progress:
            await vault.put(store.PROGRESS, {**p, "weight": 60})
        await vault.put(store.SYMPTOMS, {"timestamp": 1, "symptom": "x"})
        summary = await tracker.dashboard_summary(vault)
        assert summary == {
            "symptom_count": 1, "med_count": 0,
            "latest_weight": 60, "latest_bmi": 22.5, "bmi_trend": "up",
        }

        await vault.put(store.PROGRESS, {"timestamp": 3, "weight": 61, "bmi": None})
        summary = await tracker.dashboard_summary(vault)
        assert summary["latest_bmi"] is None and summary["bmi_trend"] == "up"

    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(scenario(tmp))
    print("  [OK] Dashboard summary works")


def run_all_tests():
    """Run all tests."""
    print("=" * 70)
    print("HarmonyVault - Test Suite")
    print("=" * 70)
    print()

    tests = [
        test_kdf,
        test_encryption,
        test_codec,
        test_store_operations,
        test_cycles,
        test_concurrent_puts,
        test_schema_versions,
        test_export_scenario,
        test_import,
        test_envelope_file,
        test_import_rejects_bad_keys,
        test_cli_import,
        test_legacy_backup,
        test_tabular_export,
        test_tracker,
    ]

    failed = []

    for test in tests:
        try:
            test()
            print()
        except Exception as e:
            print(f"  [FAIL] TEST FAILED: {e!r}")
            failed.append((test.__name__, e))
            print()

    print("=" * 70)
    if not failed:
        print("[OK] ALL TESTS PASSED!")
    else:
        print(f"[FAIL] {len(failed)} TESTS FAILED:")
        for name, error in failed:
            print(f"  - {name}: {error!r}")
    print("=" * 70)

    return len(failed) == 0


if __name__ == "__main__":
    import sys
    success = run_all_tests()
    sys.exit(0 if success else 1)

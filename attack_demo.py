"""
HarmonyVault - Attack Demonstration

Run: python attack_demo.py

What it shows (and why attacks fail):
1) Wrong passphrase cannot decrypt a backup, and the store is left untouched.
2) Ciphertext tampering is detected by AES-GCM.
3) Swapping in another backup's nonce or salt is detected.
4) Downgrading the KDF iteration count in the header breaks the AD binding.
5) Every failure produces the same message (no wrong-password oracle).
6) Why the fixed legacy salt was dropped: one precomputed guess fits every legacy backup.
"""

import asyncio
import os
import tempfile

from harmonyvault import crypto, store
from harmonyvault.backup import BackupEnvelope, BackupManager
from harmonyvault.errors import WrongPassphraseOrCorruptData


LINE = "=" * 70


def section(title: str):
    print(f"\n{LINE}\n{title}\n{LINE}")


async def try_import(manager: BackupManager, envelope: BackupEnvelope, passphrase: str) -> str:
    try:
        await manager.import_backup(envelope, passphrase)
        return "Unexpected: import succeeded"
    except WrongPassphraseOrCorruptData as e:
        return f"Expected failure: {e}"


async def main(directory: str):
    passphrase = "CorrectHorseBatteryStaple!"

    vault = store.Store(os.path.join(directory, "harmony.db"))
    await vault.open()
    await vault.put(store.PROFILE, {"id": "main", "name": "Sam", "age": "34", "height": "165", "weight": "60"})
    await vault.put(store.SYMPTOMS, {"timestamp": 100, "symptom": "Headache", "severity": "3", "notes": ""})
    manager = BackupManager(vault)
    envelope = await manager.export_backup(passphrase)
    other = await manager.export_backup(passphrase)

    section("Attack 1: Wrong passphrase")
    before = await vault.read_snapshot()
    print(await try_import(manager, envelope, "wrong_password"))
    print(f"Store unchanged: {await vault.read_snapshot() == before}")

    section("Attack 2: Ciphertext tampering (AES-GCM)")
    ct = bytearray(envelope.ciphertext)
    ct[0] ^= 1  # flip one bit
    messages = [await try_import(manager, BackupEnvelope(bytes(ct), envelope.nonce, envelope.salt), passphrase)]
    print(messages[-1])

    section("Attack 3: Nonce / salt from another backup")
    messages.append(await try_import(manager, BackupEnvelope(envelope.ciphertext, other.nonce, envelope.salt), passphrase))
    print(messages[-1])
    messages.append(await try_import(manager, BackupEnvelope(envelope.ciphertext, envelope.nonce, other.salt), passphrase))
    print(messages[-1])

    section("Attack 4: Downgrade KDF iterations in the header")
    messages.append(await try_import(
        manager, BackupEnvelope(envelope.ciphertext, envelope.nonce, envelope.salt, iterations=1), passphrase
    ))
    print(messages[-1])

    section("Attack 5: Telling 'wrong password' from 'corrupted file'")
    messages.append(await try_import(manager, envelope, "wrong_password"))
    print(f"Distinct failure messages: {len(set(messages))}")

    section("Attack 6: Precomputation against the legacy fixed salt")
    guess = crypto.derive_backup_key(passphrase, crypto.LEGACY_SALT)
    legacy_a = crypto.encrypt(crypto.derive_backup_key(passphrase, crypto.LEGACY_SALT), b'{"a":1}')
    legacy_b = crypto.encrypt(crypto.derive_backup_key(passphrase, crypto.LEGACY_SALT), b'{"b":2}')
    cracked = sum(1 for ct, nonce in (legacy_a, legacy_b) if crypto.decrypt(guess, ct, nonce))
    print(f"Legacy backups opened with ONE precomputed key: {cracked} of 2")
    print(f"Current backups share a salt: {envelope.salt == other.salt}")

    vault.close()
    print("\nDemo complete. All showcased attacks failed as expected.")


if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(main(tmp))

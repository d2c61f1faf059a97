"""
HarmonyVault - Cryptography Module

This single file contains ALL cryptographic operations for encrypted backups.
It depends only on the 'cryptography' library.

Security Architecture:
    1. Passphrase + random per-backup salt -> PBKDF2-HMAC-SHA256 -> Backup Key (32 bytes)
    2. Backup Key + fresh random nonce -> AES-256-GCM -> ciphertext + tag
    3. Salt, nonce and KDF parameters travel with the ciphertext (not secret)

Why this is secure:
    - PBKDF2 with 100,000 iterations makes each passphrase guess expensive
    - A random salt per backup defeats precomputed tables across backups
    - AES-256-GCM provides authenticated encryption (tampering is detected)
    - Associated data binds the envelope header to the ciphertext
"""

import asyncio
import json
import os
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import AuthenticationFailure


# =============================================================================
# Configuration
# =============================================================================

BACKUP_KEY_SIZE = 32     # 256-bit key
NONCE_SIZE = 12          # 96-bit nonce for AES-GCM
TAG_SIZE = 16            # 128-bit authentication tag
SALT_SIZE = 16           # 128-bit random salt per backup

PBKDF2_ITERATIONS = 100_000
# Upper bound accepted from a backup header
MAX_PBKDF2_ITERATIONS = 10_000_000

# Every backup written by the first release of the app was derived from this
# constant. Only used to read those files; new backups always get a random salt.
LEGACY_SALT = b"hormoneharmony"


# =============================================================================
# Key Derivation
# =============================================================================

def generate_salt() -> bytes:
    """Return a fresh random salt for one backup."""
    return os.urandom(SALT_SIZE)


def derive_backup_key(passphrase: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Derive a backup key from a passphrase using PBKDF2-HMAC-SHA256.

    Same passphrase + salt + iteration count always yields the same key.

    Args:
        passphrase: User's backup passphrase
        salt: Random salt (stored in the envelope, NOT secret)
        iterations: PBKDF2 iteration count

    Returns:
        32-byte backup key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=BACKUP_KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode('utf-8'))


async def derive_key(passphrase: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Async variant of derive_backup_key().

    PBKDF2 is deliberately slow, so it runs in a worker thread and the
    event loop keeps serving other tasks meanwhile.
    """
    return await asyncio.to_thread(derive_backup_key, passphrase, salt, iterations)


# =============================================================================
# Canonical Associated Data
# =============================================================================

def canonical_ad(ad: dict) -> bytes:
    """
    Convert associated data to canonical JSON bytes.

    Same AD dict ALWAYS produces same bytes: keys sorted, compact
    separators, UTF-8 without escaping non-ASCII.
    """
    json_str = json.dumps(ad, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return json_str.encode('utf-8')


# =============================================================================
# Encryption (AES-256-GCM)
# =============================================================================

def encrypt(key: bytes, plaintext: bytes, associated_data: Optional[dict] = None) -> Tuple[bytes, bytes]:
    """
    Encrypt data with AES-256-GCM (Authenticated Encryption).

    Args:
        key: 32-byte encryption key
        plaintext: Data to encrypt
        associated_data: Optional context dict, authenticated but not encrypted

    Returns:
        (ciphertext, nonce) tuple
        - ciphertext: encrypted data + 16-byte tag
        - nonce: 12 random bytes (must be stored with ciphertext)
    """
    # Generate random nonce (NEVER reuse with same key!)
    nonce = os.urandom(NONCE_SIZE)

    ad_bytes = canonical_ad(associated_data) if associated_data is not None else None

    aesgcm = AESGCM(key)
    ciphertext = aesgcm.encrypt(nonce, plaintext, ad_bytes)

    return ciphertext, nonce


def decrypt(key: bytes, ciphertext: bytes, nonce: bytes, associated_data: Optional[dict] = None) -> bytes:
    """
    Decrypt AES-256-GCM ciphertext.

    Args:
        key: Same 32-byte key used for encryption
        ciphertext: Encrypted data (includes tag)
        nonce: Same nonce used for encryption
        associated_data: MUST match encryption exactly, or decryption fails

    Returns:
        Plaintext bytes

    Raises:
        AuthenticationFailure: If tampered, wrong key, wrong nonce or wrong AD
    """
    if len(nonce) != NONCE_SIZE or len(ciphertext) < TAG_SIZE:
        raise AuthenticationFailure()

    ad_bytes = canonical_ad(associated_data) if associated_data is not None else None

    aesgcm = AESGCM(key)
    try:
        return aesgcm.decrypt(nonce, ciphertext, ad_bytes)
    except InvalidTag:
        raise AuthenticationFailure() from None

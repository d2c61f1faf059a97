"""
HarmonyVault - Configuration

Settings come from environment variables with defaults suitable for a
single-user install. Command line flags override them.

    HARMONY_DB_PATH          SQLite file (default ~/.harmonyvault/harmony.db)
    HARMONY_KDF_ITERATIONS   PBKDF2 iterations for new backups (default 100000)
    HARMONY_BUSY_TIMEOUT_MS  SQLite busy timeout (default 5000)
    HARMONY_LOG_LEVEL        logging level name (default WARNING)
"""

import os
from dataclasses import dataclass

from . import crypto

DEFAULT_DB_PATH = os.path.join(os.path.expanduser("~"), ".harmonyvault", "harmony.db")


@dataclass(frozen=True)
class Settings:
    db_path: str = DEFAULT_DB_PATH
    kdf_iterations: int = crypto.PBKDF2_ITERATIONS
    busy_timeout_ms: int = 5000
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        iterations = int(os.getenv("HARMONY_KDF_ITERATIONS", str(crypto.PBKDF2_ITERATIONS)))
        if iterations < 1:
            raise ValueError("HARMONY_KDF_ITERATIONS must be positive")
        return cls(
            db_path=os.getenv("HARMONY_DB_PATH", DEFAULT_DB_PATH),
            kdf_iterations=iterations,
            busy_timeout_ms=int(os.getenv("HARMONY_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("HARMONY_LOG_LEVEL", "WARNING").upper(),
        )

# Kuze: Reference Secrets Vault
#
# Encrypted SQLite store implementing the SecretSetter / SecretGetter
# interfaces the token service consumes, so Kuze runs stand-alone.
#
# Master password -> key (PBKDF2-HMAC-SHA256, per-vault random salt)
# Values -> AES-256-GCM, fresh nonce per write, secret name as associated
# data (a ciphertext cannot be moved to another name).
#
# set() is an idempotent overwrite: the human form path relies on it.

import asyncio
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .core.db import connect
from .exceptions import ConfigurationError, SecretNotFoundError, SecretStoreError

logger = logging.getLogger(__name__)

# Secret types understood by the vault; the token service treats them as opaque.
TYPE_API_KEY = "api_key"
TYPE_MATRIX_TOKEN = "matrix_token"
TYPE_GENERIC_JSON = "generic_json"
SECRET_TYPES = {TYPE_API_KEY, TYPE_MATRIX_TOKEN, TYPE_GENERIC_JSON}

_CHECK_PLAINTEXT = b"kuze-vault-check-v1"


class EncryptionService:
    """
    Key derivation and AES-256-GCM for vault values.

    Flow:
    1. Master password + vault salt -> 256-bit key (PBKDF2)
    2. Each value gets a unique 96-bit nonce
    3. The secret name is bound in as associated data
    """

    # OWASP 2023: 600k iterations for PBKDF2-SHA256
    PBKDF2_ITERATIONS = 600_000
    KEY_LENGTH = 32
    SALT_LENGTH = 32
    NONCE_LENGTH = 12

    @staticmethod
    def derive_key(master_password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=EncryptionService.KEY_LENGTH,
            salt=salt,
            iterations=iterations,
            backend=default_backend()
        )
        return kdf.derive(master_password.encode('utf-8'))

    @staticmethod
    def generate_salt() -> bytes:
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def encrypt(plaintext: bytes, key: bytes, associated_data: bytes) -> Tuple[bytes, bytes]:
        """Returns (nonce, ciphertext)."""
        nonce = os.urandom(EncryptionService.NONCE_LENGTH)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, associated_data)
        return nonce, ciphertext

    @staticmethod
    def decrypt(nonce: bytes, ciphertext: bytes, key: bytes, associated_data: bytes) -> bytes:
        """
        Raises:
            cryptography.exceptions.InvalidTag: If authentication fails
        """
        return AESGCM(key).decrypt(nonce, ciphertext, associated_data)


class SecretVault:
    """Encrypted, SQLite-backed secret store.

    Usage::

        vault = SecretVault("data/kuze_vault.db", master_password="...")
        await vault.set("openai_key", "api_key", b"sk-...")
        value = await vault.get("openai_key")

    Args:
        db_path: Path to the vault database.
        master_password: Password the encryption key is derived from.
        kdf_iterations: PBKDF2 iterations; fixed when the vault is created.

    Raises:
        ConfigurationError: If the password is empty or does not open an
            existing vault.
    """

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        master_password: str = "",
        kdf_iterations: int = EncryptionService.PBKDF2_ITERATIONS,
    ):
        if not master_password:
            raise ConfigurationError("vault master password must not be empty")
        self.db_path = Path(db_path) if db_path else Path("data/kuze_vault.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()
        self._key = self._load_key(master_password, kdf_iterations)

    def _init_database(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS vault_meta (
                    key   TEXT PRIMARY KEY,
                    value BLOB NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS secrets (
                    name        TEXT PRIMARY KEY,
                    secret_type TEXT NOT NULL,
                    nonce       BLOB NOT NULL,
                    ciphertext  BLOB NOT NULL,
                    created_at  TEXT NOT NULL,
                    updated_at  TEXT NOT NULL
                )
            """)

    @contextmanager
    def _connect(self):
        conn = connect(self.db_path, row_factory=True)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _load_key(self, master_password: str, iterations: int) -> bytes:
        """Derive the key; create salt and check value on first open."""
        with self._connect() as conn:
            meta = {
                row["key"]: row["value"]
                for row in conn.execute("SELECT key, value FROM vault_meta")
            }
            if "salt" not in meta:
                salt = EncryptionService.generate_salt()
                key = EncryptionService.derive_key(master_password, salt, iterations)
                nonce, check = EncryptionService.encrypt(_CHECK_PLAINTEXT, key, b"check")
                conn.executemany(
                    "INSERT INTO vault_meta (key, value) VALUES (?, ?)",
                    [
                        ("salt", salt),
                        ("iterations", str(iterations).encode()),
                        ("check_nonce", nonce),
                        ("check", check),
                    ],
                )
                logger.info("Created new secrets vault at %s", self.db_path)
                return key

        key = EncryptionService.derive_key(
            master_password, meta["salt"], int(meta["iterations"].decode()),
        )
        try:
            EncryptionService.decrypt(meta["check_nonce"], meta["check"], key, b"check")
        except InvalidTag:
            raise ConfigurationError("vault master password is incorrect")
        return key

    # ── Synchronous API ──────────────────────────────────────────────

    def set_secret(self, name: str, secret_type: str, value: bytes) -> None:
        """Encrypt and store value under name, replacing any previous value."""
        if not name:
            raise SecretStoreError("secret name must not be empty")
        if secret_type not in SECRET_TYPES:
            raise SecretStoreError(f"unknown secret type {secret_type!r}")
        nonce, ciphertext = EncryptionService.encrypt(value, self._key, name.encode("utf-8"))
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO secrets
                       (name, secret_type, nonce, ciphertext, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?)
                       ON CONFLICT(name) DO UPDATE SET
                           secret_type = excluded.secret_type,
                           nonce = excluded.nonce,
                           ciphertext = excluded.ciphertext,
                           updated_at = excluded.updated_at""",
                    (name, secret_type, nonce, ciphertext, now, now),
                )
        except sqlite3.Error as exc:
            raise SecretStoreError(f"store secret {name}: {exc}") from exc
        logger.info("Secret %s stored (type=%s)", name, secret_type)

    def get_secret(self, name: str) -> bytes:
        """Decrypt and return the value stored under name."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT nonce, ciphertext FROM secrets WHERE name = ?", (name,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise SecretStoreError(f"read secret {name}: {exc}") from exc
        if row is None:
            raise SecretNotFoundError(f"secret {name!r} not found")
        try:
            return EncryptionService.decrypt(
                row["nonce"], row["ciphertext"], self._key, name.encode("utf-8"),
            )
        except InvalidTag as exc:
            raise SecretStoreError(f"secret {name!r} failed authentication") from exc

    def list_names(self) -> List[str]:
        """Secret names only, never values."""
        with self._connect() as conn:
            rows = conn.execute("SELECT name FROM secrets ORDER BY name").fetchall()
        return [r["name"] for r in rows]

    # ── SecretSetter / SecretGetter ──────────────────────────────────

    async def set(self, ref: str, secret_type: str, value: bytes) -> None:
        await asyncio.to_thread(self.set_secret, ref, secret_type, value)

    async def get(self, ref: str) -> bytes:
        return await asyncio.to_thread(self.get_secret, ref)

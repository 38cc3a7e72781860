# Kuze: One-Time Token Store
#
# Persists and retires the one-time tokens that scope a single secret entry
# (human web form) or a single secret redemption (agent HTTP call).
#
# Lifecycle (derived, never stored as an enum):
#   Pending  used = 0 and now <  expires_at
#   Used     used = 1                         (terminal)
#   Expired  used = 0 and now >= expires_at   (terminal, logical)
# Used and Expired rows are physically removed by prune_expired().
#
# Concurrency:
#   - No in-process locks. Single use reduces to the conditional update
#     UPDATE ... SET used = 1 WHERE token = ? AND used = 0 and its rowcount.
#   - redeem() runs identity check + burn inside one BEGIN IMMEDIATE
#     transaction so two callers with the same valid identity cannot both win.
#   - One short-lived WAL connection per operation.

import logging
import secrets
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .core.db import DEFAULT_BUSY_TIMEOUT_MS, connect
from .exceptions import (
    AgentIDMismatchError,
    EmptyAgentIDError,
    StorageError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenUsedError,
)

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────

DEFAULT_TTL = timedelta(minutes=10)
# Fixed for agent tokens, independent of the configured human TTL.
AGENT_TTL = timedelta(seconds=60)
TOKEN_BYTES = 32
TOKEN_PREFIX_LENGTH = 8
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_COLUMNS = (
    "token, secret_ref, secret_type, created_at, expires_at, used, agent_id, purpose"
)


# ── Helpers ──────────────────────────────────────────────────────────


def utcnow() -> datetime:
    """Current UTC time truncated to the stored (second) precision."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as RFC 3339 UTC text (``2024-01-02T03:04:05Z``)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    try:
        parsed = datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def safe_prefix(token: str, n: int = TOKEN_PREFIX_LENGTH) -> str:
    """Leading characters of a token, safe to put in logs."""
    return token[:n]


# ── Data Model ───────────────────────────────────────────────────────


@dataclass
class PendingToken:
    """A token row loaded from the store."""
    token: str
    secret_ref: str
    secret_type: str
    created_at: datetime
    expires_at: datetime
    used: bool = False
    agent_id: str = ""        # empty for human-scoped tokens
    purpose: str = ""         # audit label only

    @property
    def is_agent_scoped(self) -> bool:
        return bool(self.agent_id)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logs and notifications. Never exposes the full token."""
        return {
            "token_prefix": safe_prefix(self.token),
            "secret_ref": self.secret_ref,
            "secret_type": self.secret_type,
            "created_at": format_timestamp(self.created_at),
            "expires_at": format_timestamp(self.expires_at),
            "used": self.used,
            "agent_id": self.agent_id,
            "purpose": self.purpose,
        }


# ── Token Store ──────────────────────────────────────────────────────


class TokenStore:
    """SQLite-backed one-time token store.

    Usage::

        store = TokenStore("data/kuze.db", ttl=timedelta(minutes=10))
        token, expires_at = store.issue("openai_key", "api_key")
        pt = store.validate(token)        # read-only
        store.burn(token)                 # exactly one caller succeeds

    Args:
        db_path: Path to the SQLite database file.
        ttl: Lifetime of human tokens. Zero or negative means DEFAULT_TTL.
        busy_timeout_ms: SQLite busy timeout for each connection.
    """

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        ttl: Optional[timedelta] = None,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ):
        self.db_path = Path(db_path) if db_path else Path("data/kuze.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        if ttl is None or ttl <= timedelta(0):
            ttl = DEFAULT_TTL
        self.ttl = ttl
        self._busy_timeout_ms = busy_timeout_ms
        self._init_database()

    def _init_database(self):
        """Create the table and indexes; add agent columns to older tables."""
        with self._connect("initialise schema") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kuze_tokens (
                    token       TEXT    PRIMARY KEY,
                    secret_ref  TEXT    NOT NULL,
                    secret_type TEXT    NOT NULL,
                    created_at  TEXT    NOT NULL,
                    expires_at  TEXT    NOT NULL,
                    used        INTEGER NOT NULL DEFAULT 0,
                    agent_id    TEXT,
                    purpose     TEXT
                )
            """)
            existing = {
                row["name"]
                for row in conn.execute("PRAGMA table_info(kuze_tokens)")
            }
            for col in ("agent_id", "purpose"):
                if col not in existing:
                    conn.execute(f"ALTER TABLE kuze_tokens ADD COLUMN {col} TEXT")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_kuze_tokens_expires "
                "ON kuze_tokens(expires_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_kuze_tokens_agent_id "
                "ON kuze_tokens(agent_id) WHERE agent_id IS NOT NULL"
            )

    @contextmanager
    def _connect(self, operation: str):
        """Open a WAL connection; commit on success, wrap sqlite errors."""
        try:
            conn = connect(
                self.db_path, row_factory=True, busy_timeout_ms=self._busy_timeout_ms,
            )
        except sqlite3.Error as exc:
            raise StorageError(operation, exc) from exc
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(operation, exc) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ── Issuance ─────────────────────────────────────────────────────

    def issue(self, secret_ref: str, secret_type: str) -> Tuple[str, datetime]:
        """Create a human-scoped token that expires after the store TTL."""
        return self._issue(secret_ref, secret_type, "", "")

    def issue_agent(
        self,
        secret_ref: str,
        secret_type: str,
        agent_id: str,
        purpose: str = "",
    ) -> Tuple[str, datetime]:
        """Create an agent-scoped token.

        The TTL is always AGENT_TTL, whatever the store TTL is, so a token
        only bridges one immediate HTTP round-trip.
        """
        if not agent_id:
            raise EmptyAgentIDError()
        return self._issue(secret_ref, secret_type, agent_id, purpose)

    def _issue(
        self, secret_ref: str, secret_type: str, agent_id: str, purpose: str,
    ) -> Tuple[str, datetime]:
        try:
            token = secrets.token_urlsafe(TOKEN_BYTES)
        except OSError as exc:
            raise StorageError("generate token entropy", exc) from exc

        now = utcnow()
        expires_at = now + (AGENT_TTL if agent_id else self.ttl)

        with self._connect("insert token") as conn:
            conn.execute(
                f"INSERT INTO kuze_tokens ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, 0, ?, ?)",
                (
                    token,
                    secret_ref,
                    secret_type,
                    format_timestamp(now),
                    format_timestamp(expires_at),
                    agent_id or None,
                    purpose or None,
                ),
            )

        logger.debug(
            "Token issued: %s for %s (agent=%s, expires=%s)",
            safe_prefix(token), secret_ref, agent_id or "-", format_timestamp(expires_at),
        )
        return token, expires_at

    # ── Validation + Consumption ─────────────────────────────────────

    def validate(self, token: str) -> PendingToken:
        """Return the token if it is still Pending. Does not consume it."""
        with self._connect("query token") as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM kuze_tokens WHERE token = ?", (token,),
            ).fetchone()

        if row is None:
            raise TokenNotFoundError()
        pt = self._row_to_token(row)
        if pt.used:
            raise TokenUsedError()
        if pt.is_expired():
            raise TokenExpiredError()
        return pt

    def burn(self, token: str) -> None:
        """Mark a token used. Raises TokenUsedError if another caller won."""
        with self._connect("burn token") as conn:
            cursor = conn.execute(
                "UPDATE kuze_tokens SET used = 1 WHERE token = ? AND used = 0",
                (token,),
            )
            burned = cursor.rowcount > 0
        if not burned:
            raise TokenUsedError()

    def redeem(self, token: str, claimed_agent_id: str) -> PendingToken:
        """Validate, check identity and burn an agent token as one unit.

        Raises TokenNotFoundError, TokenUsedError, TokenExpiredError or
        AgentIDMismatchError. A mismatch leaves the token live.
        """
        with self._connect("redeem token") as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM kuze_tokens WHERE token = ?", (token,),
            ).fetchone()
            if row is None:
                raise TokenNotFoundError()

            pt = self._row_to_token(row)
            if pt.used:
                raise TokenUsedError()
            if pt.is_expired():
                raise TokenExpiredError()
            # Human-scoped rows carry no identity and never match.
            if not pt.agent_id or pt.agent_id != claimed_agent_id:
                raise AgentIDMismatchError()

            cursor = conn.execute(
                "UPDATE kuze_tokens SET used = 1 WHERE token = ? AND used = 0",
                (token,),
            )
            if cursor.rowcount == 0:
                raise TokenUsedError()

        pt.used = True
        return pt

    # ── Housekeeping ─────────────────────────────────────────────────

    def list_expired_unused(self, before: Optional[datetime] = None) -> List[PendingToken]:
        """Tokens that expired without being used (expiry notification candidates).

        before: Cutoff; rows with expires_at < before are listed. Defaults to now.
        """
        now = format_timestamp(before or utcnow())
        with self._connect("query expired unused tokens") as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM kuze_tokens "
                "WHERE used = 0 AND expires_at < ? ORDER BY expires_at",
                (now,),
            ).fetchall()
        return [self._row_to_token(r) for r in rows]

    def prune_expired(self, before: Optional[datetime] = None) -> int:
        """Delete every used row and every row expired before the cutoff.

        Returns the number deleted. The cutoff defaults to now.
        """
        now = format_timestamp(before or utcnow())
        with self._connect("prune tokens") as conn:
            cursor = conn.execute(
                "DELETE FROM kuze_tokens WHERE expires_at < ? OR used = 1", (now,),
            )
            deleted = cursor.rowcount
        if deleted:
            logger.info("Pruned %d dead token(s)", deleted)
        return deleted

    def count(self) -> int:
        """Number of rows currently stored, live or dead."""
        with self._connect("count tokens") as conn:
            return conn.execute("SELECT COUNT(*) FROM kuze_tokens").fetchone()[0]

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _row_to_token(row: sqlite3.Row) -> PendingToken:
        """Convert a database row to a PendingToken."""
        return PendingToken(
            token=row["token"],
            secret_ref=row["secret_ref"],
            secret_type=row["secret_type"],
            created_at=parse_timestamp(row["created_at"]),
            expires_at=parse_timestamp(row["expires_at"]),
            used=bool(row["used"]),
            agent_id=row["agent_id"] or "",
            purpose=row["purpose"] or "",
        )

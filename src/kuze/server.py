# Kuze: Protocol Server
#
# Issues one-time tokens, enforces identity binding on agent redemption and
# mediates between the token store and the secrets store.
#
# Flow (human):
#   1. Issuer calls issue_human_token() -> {base_url}/s/<token>
#   2. Browser GETs the link; validate_entry() checks the token without
#      consuming it (agent-scoped tokens are dead on this path)
#   3. Browser POSTs the value; accept_entry() stores it, then burns the token
#
# Flow (agent):
#   1. Distributor calls issue_agent_token() -> {base_url}/kuze/redeem/<token>
#   2. Agent GETs the URL with X-Agent-ID; redeem() checks identity + burns
#      atomically, then reads the plaintext from the secrets store
#
# The form path is not end-to-end atomic: two concurrent submissions that
# both pass validate_entry() may both write the value (set() overwrites);
# only one burn succeeds. The agent path is atomic inside TokenStore.redeem().
#
# Store calls run in worker threads, bounded by config.store_timeout.
# Notification hooks are best-effort: errors are logged, never raised.

import asyncio
import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from .config import KuzeConfig
from .core.audit_log import AuditLogger, EventSeverity, EventType, get_audit_logger
from .exceptions import (
    AgentIDMismatchError,
    EmptyAgentIDError,
    EmptySecretRefError,
    EmptySecretValueError,
    KuzeError,
    MissingAgentIDError,
    NotConfiguredError,
    SecretStoreError,
    StorageError,
    WrongScopeError,
)
from .tokens import PendingToken, TokenStore, format_timestamp, safe_prefix, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SECRET_TYPE = "api_key"


# ── Collaborator interfaces ──────────────────────────────────────────


class SecretSetter(Protocol):
    """Minimal write interface Kuze needs from the secrets store."""

    async def set(self, ref: str, secret_type: str, value: bytes) -> None:
        ...


class SecretGetter(Protocol):
    """Read interface used to deliver a secret to an agent on redemption."""

    async def get(self, ref: str) -> bytes:
        ...


# Hooks may be plain functions or coroutine functions.
SecretStoredHook = Callable[[str], Any]
TokenExpiredHook = Callable[[PendingToken], Any]


# ── Results ──────────────────────────────────────────────────────────


@dataclass
class IssueResult:
    """Returned by issue_human_token()."""
    link: str
    token: str
    expires_at: datetime
    secret_ref: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "link": self.link,
            "token": self.token,
            "expires_at": format_timestamp(self.expires_at),
            "secret_ref": self.secret_ref,
        }


@dataclass
class AgentIssueResult:
    """Returned by issue_agent_token()."""
    redeem_url: str
    token: str
    expires_at: datetime
    secret_ref: str
    agent_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "redeem_url": self.redeem_url,
            "token": self.token,
            "expires_at": format_timestamp(self.expires_at),
            "secret_ref": self.secret_ref,
            "agent_id": self.agent_id,
        }


@dataclass
class RedeemResult:
    """Plaintext secret delivered to an agent. Never log ``value``."""
    secret_ref: str
    secret_type: str
    value: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "secret_ref": self.secret_ref,
            "secret_type": self.secret_type,
            "value": base64.b64encode(self.value).decode("ascii"),
        }


# ── Server ───────────────────────────────────────────────────────────


class KuzeServer:
    """Token issuance, validation and redemption on top of a TokenStore.

    Args:
        tokens: The token store.
        secrets_setter: Secrets store used by the human form path. Without
            one, accept_entry() raises NotConfiguredError.
        config: Base URL and timeouts. Defaults to KuzeConfig().
        secrets_getter: Secrets store used by agent redemption. Without
            one, redeem() raises NotConfiguredError.
        on_secret_stored: Called with the secret_ref after a form store.
        on_token_expired: Called with each expired, unused token on prune.
        audit_logger: Defaults to the global audit logger.
    """

    def __init__(
        self,
        tokens: TokenStore,
        secrets_setter: Optional[SecretSetter] = None,
        config: Optional[KuzeConfig] = None,
        secrets_getter: Optional[SecretGetter] = None,
        on_secret_stored: Optional[SecretStoredHook] = None,
        on_token_expired: Optional[TokenExpiredHook] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.tokens = tokens
        self.config = config or KuzeConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self._setter = secrets_setter
        self._getter = secrets_getter
        self._on_secret_stored = on_secret_stored
        self._on_token_expired = on_token_expired
        self._audit = audit_logger

    # ── Wiring ───────────────────────────────────────────────────────

    def set_secrets_getter(self, getter: SecretGetter):
        """Register the getter used by GET /kuze/redeem/<token>."""
        self._getter = getter

    def set_on_secret_stored(self, fn: Optional[SecretStoredHook]):
        """Register the hook called after a value is stored via the form."""
        self._on_secret_stored = fn

    def set_on_token_expired(self, fn: Optional[TokenExpiredHook]):
        """Register the hook called for each expired-unused token on prune."""
        self._on_token_expired = fn

    @property
    def audit(self) -> AuditLogger:
        return self._audit or get_audit_logger()

    @property
    def redemption_configured(self) -> bool:
        return self._getter is not None

    # ── Issuance ─────────────────────────────────────────────────────

    async def issue_human_token(self, secret_ref: str, secret_type: str = "") -> IssueResult:
        """Create a one-time entry link for secret_ref."""
        if not secret_ref:
            raise EmptySecretRefError()
        secret_type = secret_type or DEFAULT_SECRET_TYPE

        token, expires_at = await self._store_call(
            "issue token", self.tokens.issue, secret_ref, secret_type,
        )

        self.audit.log_token_event(
            EventType.TOKEN_ISSUED,
            f"human entry link issued for {secret_ref}",
            details={
                "token_prefix": safe_prefix(token),
                "secret_ref": secret_ref,
                "secret_type": secret_type,
                "expires_at": format_timestamp(expires_at),
            },
        )
        return IssueResult(
            link=f"{self.base_url}/s/{token}",
            token=token,
            expires_at=expires_at,
            secret_ref=secret_ref,
        )

    async def issue_agent_token(
        self,
        agent_id: str,
        secret_ref: str,
        secret_type: str = "",
        purpose: str = "",
    ) -> AgentIssueResult:
        """Create a short-lived redemption token bound to agent_id."""
        if not agent_id:
            raise EmptyAgentIDError()
        if not secret_ref:
            raise EmptySecretRefError()
        secret_type = secret_type or DEFAULT_SECRET_TYPE

        token, expires_at = await self._store_call(
            "issue agent token",
            self.tokens.issue_agent, secret_ref, secret_type, agent_id, purpose,
        )

        logger.info(
            "Issued agent redemption token %s for %s (ref=%s, expires=%s)",
            safe_prefix(token), agent_id, secret_ref, format_timestamp(expires_at),
        )
        self.audit.log_token_event(
            EventType.TOKEN_ISSUED,
            f"agent redemption token issued for {agent_id}",
            details={
                "token_prefix": safe_prefix(token),
                "agent_id": agent_id,
                "secret_ref": secret_ref,
                "secret_type": secret_type,
                "purpose": purpose,
                "expires_at": format_timestamp(expires_at),
            },
        )
        return AgentIssueResult(
            redeem_url=f"{self.base_url}/kuze/redeem/{token}",
            token=token,
            expires_at=expires_at,
            secret_ref=secret_ref,
            agent_id=agent_id,
        )

    # ── Human form path ──────────────────────────────────────────────

    async def validate(self, token: str) -> PendingToken:
        """Check that a token is Pending without consuming it."""
        return await self._store_call("validate token", self.tokens.validate, token)

    async def validate_entry(self, token: str) -> PendingToken:
        """Validate a token for the human form. Agent-scoped tokens are dead here."""
        pt = await self.validate(token)
        if pt.is_agent_scoped:
            logger.warning(
                "Agent-scoped token %s presented on the entry form (agent=%s)",
                safe_prefix(token), pt.agent_id,
            )
            raise WrongScopeError()
        return pt

    async def accept_entry(self, token: str, value: Union[str, bytes]) -> PendingToken:
        """Store a submitted value and burn the token.

        Raises:
            DeadTokenError: The token died since the form was served, or is
                agent-scoped.
            NotConfiguredError: No secrets setter is wired.
            EmptySecretValueError: Nothing was submitted; the token stays live.
            SecretStoreError: The secrets store rejected the value; the token
                stays live so the user can retry.
        """
        pt = await self.validate_entry(token)

        if self._setter is None:
            logger.error("Form submission received but no secrets setter is configured")
            raise NotConfiguredError("kuze: secrets setter not configured")

        if not value:
            raise EmptySecretValueError(pt.secret_ref)
        raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)

        try:
            await asyncio.wait_for(
                self._setter.set(pt.secret_ref, pt.secret_type, raw),
                timeout=self.config.store_timeout,
            )
        except Exception as exc:
            logger.error("Store secret via form failed (ref=%s): %s", pt.secret_ref, exc)
            self.audit.log_token_event(
                EventType.SECRET_STORE_FAILED,
                f"storing {pt.secret_ref} failed",
                details={"token_prefix": safe_prefix(token), "secret_ref": pt.secret_ref},
                severity=EventSeverity.CRITICAL,
            )
            raise SecretStoreError("failed to store secret; please try again") from exc

        try:
            await self._store_call("burn token", self.tokens.burn, token)
        except KuzeError as exc:
            # The value is already persisted; the user still sees success.
            logger.warning(
                "Burn after successful store failed for token %s: %s",
                safe_prefix(token), exc,
            )

        logger.info("Secret stored via one-time form (ref=%s)", pt.secret_ref)
        self.audit.log_token_event(
            EventType.SECRET_STORED,
            f"secret {pt.secret_ref} stored via one-time form",
            details={
                "token_prefix": safe_prefix(token),
                "secret_ref": pt.secret_ref,
                "secret_type": pt.secret_type,
            },
        )
        await self._invoke_hook("on_secret_stored", self._on_secret_stored, pt.secret_ref)
        return pt

    # ── Agent path ───────────────────────────────────────────────────

    async def redeem(self, token: str, claimed_agent_id: str) -> RedeemResult:
        """Burn an agent token and return the plaintext it unlocks.

        Raises:
            MissingAgentIDError: No identity was asserted.
            NotConfiguredError: No secrets getter is wired.
            DeadTokenError: Not found, expired or already used.
            AgentIDMismatchError: Wrong identity; the token stays live.
            SecretStoreError: The get failed after the burn; the token is
                consumed and the agent must ask for a new one.
        """
        if not claimed_agent_id:
            raise MissingAgentIDError()
        if self._getter is None:
            logger.error("Redeem called but no secrets getter is configured")
            raise NotConfiguredError("kuze: secrets getter not configured")

        try:
            pt = await self._store_call(
                "redeem token", self.tokens.redeem, token, claimed_agent_id,
            )
        except AgentIDMismatchError:
            logger.warning(
                "Agent identity mismatch on redeem (claimed=%s, token=%s)",
                claimed_agent_id, safe_prefix(token),
            )
            self.audit.log_token_event(
                EventType.TOKEN_IDENTITY_MISMATCH,
                f"redemption refused for claimed agent {claimed_agent_id}",
                details={"token_prefix": safe_prefix(token), "claimed_agent_id": claimed_agent_id},
                severity=EventSeverity.ALERT,
            )
            raise

        try:
            raw = await asyncio.wait_for(
                self._getter.get(pt.secret_ref), timeout=self.config.store_timeout,
            )
        except Exception as exc:
            logger.error(
                "Fetch secret after redeem failed (ref=%s, agent=%s): %s",
                pt.secret_ref, claimed_agent_id, exc,
            )
            self.audit.log_token_event(
                EventType.SECRET_STORE_FAILED,
                f"secret {pt.secret_ref} unavailable after redemption",
                details={
                    "token_prefix": safe_prefix(token),
                    "secret_ref": pt.secret_ref,
                    "agent_id": claimed_agent_id,
                },
                severity=EventSeverity.CRITICAL,
            )
            raise SecretStoreError("secret unavailable; request a new token") from exc

        if isinstance(raw, str):
            raw = raw.encode("utf-8")

        logger.info(
            "Secret redeemed by agent %s (ref=%s, token=%s)",
            claimed_agent_id, pt.secret_ref, safe_prefix(token),
        )
        self.audit.log_token_event(
            EventType.TOKEN_REDEEMED,
            f"secret {pt.secret_ref} redeemed by {claimed_agent_id}",
            details={
                "token_prefix": safe_prefix(token),
                "secret_ref": pt.secret_ref,
                "agent_id": claimed_agent_id,
                "purpose": pt.purpose,
            },
        )
        return RedeemResult(secret_ref=pt.secret_ref, secret_type=pt.secret_type, value=raw)

    # ── Pruning ──────────────────────────────────────────────────────

    async def prune_expired(self, before: Optional[datetime] = None) -> int:
        """Delete used and expired tokens without notifying anyone."""
        return await self._store_call("prune tokens", self.tokens.prune_expired, before)

    async def prune_expired_with_notify(self) -> int:
        """Notify about expired-unused tokens, then prune all dead rows.

        Used tokens are pruned silently. A failure to list expired tokens is
        logged and does not prevent the prune. Listing and pruning share one
        cutoff, so a token that expires while hooks run is left for the next
        cycle.
        """
        cutoff = utcnow()
        if self._on_token_expired is not None:
            try:
                expired: List[PendingToken] = await self._store_call(
                    "list expired tokens", self.tokens.list_expired_unused, cutoff,
                )
            except StorageError as exc:
                logger.warning("List expired tokens for notification failed: %s", exc)
            else:
                for pt in expired:
                    self.audit.log_token_event(
                        EventType.TOKEN_EXPIRED,
                        f"token for {pt.secret_ref} expired unused",
                        details=pt.to_dict(),
                        severity=EventSeverity.INVESTIGATE,
                    )
                    await self._invoke_hook("on_token_expired", self._on_token_expired, pt)

        deleted = await self.prune_expired(cutoff)
        if deleted:
            self.audit.log_token_event(
                EventType.TOKENS_PRUNED,
                f"pruned {deleted} dead token(s)",
                details={"deleted": deleted},
            )
        return deleted

    # ── Helpers ──────────────────────────────────────────────────────

    async def _store_call(self, operation: str, fn: Callable, *args):
        """Run a blocking store call in a worker thread with a timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args), timeout=self.config.store_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Token store %s timed out after %.1fs", operation, self.config.store_timeout)
            raise StorageError(operation, exc) from exc

    async def _invoke_hook(self, name: str, hook: Optional[Callable], *args):
        """Call a notification hook; swallow and log anything it raises."""
        if hook is None:
            return
        try:
            result = hook(*args)
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=self.config.notify_timeout)
        except Exception:
            logger.exception("Notification hook %s failed", name)

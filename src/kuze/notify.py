# Kuze: Webhook Notifier
#
# Reference observer for the two notification hooks. Posts a small JSON
# event to a chat-layer webhook so the user hears that a secret was stored
# or that a link expired unused. No retries: notifications are best-effort.
#
# Payloads carry secret names and agent IDs only, never tokens or values.

import logging
from typing import Any, Dict, Optional

import httpx

from .tokens import PendingToken, format_timestamp

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SEC = 5.0
USER_AGENT = "Kuze/0.1"


class WebhookNotifier:
    """POST lifecycle events to a webhook URL.

    Wire it into the server with::

        notifier = WebhookNotifier("http://chat-gateway/hooks/kuze")
        server.set_on_secret_stored(notifier.on_secret_stored)
        server.set_on_token_expired(notifier.on_token_expired)

    Args:
        url: Webhook endpoint.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        url: str,
        timeout: float = REQUEST_TIMEOUT_SEC,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def on_secret_stored(self, secret_ref: str) -> bool:
        return await self._post({"event": "secret_stored", "secret_ref": secret_ref})

    async def on_token_expired(self, pt: PendingToken) -> bool:
        return await self._post({
            "event": "token_expired",
            "secret_ref": pt.secret_ref,
            "secret_type": pt.secret_type,
            "agent_id": pt.agent_id,
            "expires_at": format_timestamp(pt.expires_at),
        })

    async def _post(self, payload: Dict[str, Any]) -> bool:
        """Send one event. Returns False on any failure instead of raising."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                resp = await client.post(self.url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Webhook notification %s failed: %s", payload["event"], exc)
            return False
        return True

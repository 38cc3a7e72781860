# Kuze: Token Pruner
#
# Background asyncio task that periodically surfaces expiry notifications
# and deletes dead (used or expired) token rows.

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from .server import KuzeServer

logger = logging.getLogger(__name__)


class TokenPruner:
    """Runs KuzeServer.prune_expired_with_notify() on a fixed interval.

    Store work happens in worker threads, so a cycle never blocks request
    handlers. Errors in a cycle are logged and the loop carries on.

    Args:
        server: The server whose tokens are pruned.
        interval: Seconds (or a timedelta) between cycles. Defaults to the
            server's human token TTL.
    """

    def __init__(
        self,
        server: "KuzeServer",
        interval: Optional[Union[float, timedelta]] = None,
    ):
        self._server = server
        if interval is None:
            interval = server.config.effective_prune_interval
        if isinstance(interval, timedelta):
            interval = interval.total_seconds()
        self.interval = float(interval)
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the pruning loop as a background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._prune_loop())
        logger.info("Token pruner started (interval=%.0fs)", self.interval)

    async def stop(self):
        """Stop the pruning loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Token pruner stopped")

    async def run_once(self) -> int:
        """One prune cycle. Returns the number of rows deleted."""
        return await self._server.prune_expired_with_notify()

    async def _prune_loop(self):
        """Main pruning loop."""
        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Prune cycle error")
            await asyncio.sleep(self.interval)

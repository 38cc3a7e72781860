# Kuze: FastAPI application
#
# Wires the token store, the reference vault and the optional webhook
# notifier into one KuzeServer, mounts the routes and runs the pruning loop
# for the lifetime of the application.

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI

from .. import __version__
from ..config import KuzeConfig
from ..core import EventSeverity, EventType, configure_audit_logger
from ..exceptions import ConfigurationError
from ..notify import WebhookNotifier
from ..pruner import TokenPruner
from ..server import KuzeServer
from ..tokens import TokenStore
from ..vault import SecretVault
from .kuze_routes import router as kuze_router

logger = logging.getLogger(__name__)


def build_server(config: KuzeConfig, require_vault: bool = True) -> KuzeServer:
    """Construct a KuzeServer and its collaborators from configuration.

    The vault serves as both secrets setter and getter. Without a vault
    password the server is built unconfigured (form and redeem return 501)
    unless require_vault is set, in which case ConfigurationError is raised.
    """
    audit = configure_audit_logger(config.audit_dir)
    tokens = TokenStore(db_path=config.db_path, ttl=config.ttl)

    vault = None
    if config.vault_password:
        vault = SecretVault(config.vault_path, master_password=config.vault_password)
    elif require_vault:
        raise ConfigurationError("KUZE_VAULT_PASSWORD must be set to run the server")
    else:
        logger.warning("No vault password configured; form entry and redemption disabled")

    server = KuzeServer(
        tokens,
        secrets_setter=vault,
        config=config,
        secrets_getter=vault,
        audit_logger=audit,
    )

    if config.notify_url:
        notifier = WebhookNotifier(config.notify_url, timeout=config.notify_timeout)
        server.set_on_secret_stored(notifier.on_secret_stored)
        server.set_on_token_expired(notifier.on_token_expired)
        logger.info("Webhook notifications enabled (%s)", config.notify_url)

    return server


def create_app(
    server: Optional[KuzeServer] = None,
    config: Optional[KuzeConfig] = None,
    start_pruner: bool = True,
) -> FastAPI:
    """Create the Kuze FastAPI application.

    Args:
        server: A prebuilt server (tests pass one). Built from config when
            omitted.
        config: Used only when server is omitted. Defaults to the
            environment.
        start_pruner: Run the background pruning loop while the app lives.
    """
    if server is None:
        server = build_server(config or KuzeConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        pruner = None
        if start_pruner:
            pruner = TokenPruner(server)
            await pruner.start()
        app.state.pruner = pruner
        server.audit.log_event(
            event_type=EventType.SYSTEM_START,
            severity=EventSeverity.INFO,
            message="Kuze API server starting",
            details={"version": __version__, "base_url": server.base_url},
        )

        yield

        server.audit.log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.INFO,
            message="Kuze API server shutting down",
        )
        if pruner is not None:
            await pruner.stop()

    app = FastAPI(
        title="Kuze",
        description="One-time secret entry and agent redemption tokens",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.kuze = server
    app.include_router(kuze_router)
    return app


def start_api_server(
    config: Optional[KuzeConfig] = None,
    host: str = "127.0.0.1",
    port: int = 8000,
):
    """
    Start the Kuze API server.

    Args:
        config: Service configuration (default: from environment)
        host: Host to bind to (default: localhost only)
        port: Port to listen on
    """
    app = create_app(config=config or KuzeConfig.from_env())
    uvicorn.run(app, host=host, port=port, log_level="info")

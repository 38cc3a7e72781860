# Kuze: Web API
#
# FastAPI application and routes for token issuance, the one-time entry
# form and agent redemption.

from .main import build_server, create_app, start_api_server
from .kuze_routes import router

__all__ = [
    "build_server",
    "create_app",
    "start_api_server",
    "router",
]

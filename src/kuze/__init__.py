# Kuze: One-time secret entry and agent redemption tokens
#
# A human receives a single-use link to type a secret into a form; an agent
# receives a short-lived token bound to its identity and redeems it once.

__version__ = "0.1.0"
__description__ = "One-time secret entry and agent redemption tokens"

from .config import KuzeConfig
from .exceptions import (
    AgentIDMismatchError,
    DeadTokenError,
    KuzeError,
    StorageError,
)
from .server import (
    AgentIssueResult,
    IssueResult,
    KuzeServer,
    RedeemResult,
    SecretGetter,
    SecretSetter,
)
from .tokens import AGENT_TTL, DEFAULT_TTL, PendingToken, TokenStore

__all__ = [
    "__version__",
    "KuzeConfig",
    "KuzeServer",
    "IssueResult",
    "AgentIssueResult",
    "RedeemResult",
    "SecretSetter",
    "SecretGetter",
    "TokenStore",
    "PendingToken",
    "DEFAULT_TTL",
    "AGENT_TTL",
    "KuzeError",
    "DeadTokenError",
    "AgentIDMismatchError",
    "StorageError",
]

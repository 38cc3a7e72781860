"""
Kuze Exception Classes

Dead-token errors share a base class so the HTTP layer can collapse them
into one response without inspecting the cause.
"""


class KuzeError(Exception):
    """Base exception for token service operations"""
    pass


class DeadTokenError(KuzeError):
    """Raised when a token can no longer be used, whatever the reason"""
    pass


class TokenNotFoundError(DeadTokenError):
    """Raised when the requested token does not exist"""

    def __init__(self, message: str = "kuze: token not found"):
        super().__init__(message)


class TokenExpiredError(DeadTokenError):
    """Raised when the token's TTL has elapsed"""

    def __init__(self, message: str = "kuze: token expired"):
        super().__init__(message)


class TokenUsedError(DeadTokenError):
    """Raised when the token has already been burned"""

    def __init__(self, message: str = "kuze: token already used"):
        super().__init__(message)


class WrongScopeError(DeadTokenError):
    """Raised when an agent-scoped token is presented on the human entry form"""

    def __init__(self, message: str = "kuze: token not valid for form entry"):
        super().__init__(message)


class AgentIDMismatchError(KuzeError):
    """Raised when a redemption carries a different agent identity than the token"""

    def __init__(self, message: str = "kuze: agent identity does not match token"):
        super().__init__(message)


class InvalidInputError(KuzeError):
    """Raised when caller input is rejected before touching storage"""
    pass


class EmptySecretRefError(InvalidInputError):
    """Raised when secret_ref is empty at issuance"""

    def __init__(self, message: str = "kuze: secret_ref must not be empty"):
        super().__init__(message)


class EmptyAgentIDError(InvalidInputError):
    """Raised when agent_id is empty at agent token issuance"""

    def __init__(self, message: str = "kuze: agent_id must not be empty"):
        super().__init__(message)


class MissingAgentIDError(InvalidInputError):
    """Raised when a redemption request does not assert an agent identity"""

    def __init__(self, message: str = "kuze: X-Agent-ID header is required"):
        super().__init__(message)


class EmptySecretValueError(InvalidInputError):
    """Raised when the human form is submitted without a value"""

    def __init__(self, secret_ref: str = "", message: str = "Secret value cannot be empty."):
        self.secret_ref = secret_ref
        super().__init__(message)


class StorageError(KuzeError):
    """Raised when the token database fails; carries the failed operation"""

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"kuze: {operation}: {cause}")


class SecretStoreError(KuzeError):
    """Raised when the secrets store rejects a set or get"""
    pass


class SecretNotFoundError(SecretStoreError):
    """Raised by the vault when no secret exists under the requested name"""
    pass


class NotConfiguredError(KuzeError):
    """Raised when form entry or redemption runs without a secrets store wired"""
    pass


class ConfigurationError(KuzeError):
    """Raised when the environment configuration is invalid"""
    pass

# Kuze Core: Audit Logging
#
# Append-only audit trail for token lifecycle events. Every issuance,
# redemption, form submission, identity mismatch and expiry is recorded as
# one JSON line with a timestamp and event ID.
#
# Never log a full token or a secret value: details carry token prefixes
# and secret names only.

import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog

AUDIT_LOGGER_NAME = "kuze.audit"


class EventType(str, Enum):
    """Types of audit events."""
    # Token lifecycle
    TOKEN_ISSUED = "token.issued"
    TOKEN_REDEEMED = "token.redeemed"
    TOKEN_IDENTITY_MISMATCH = "token.identity_mismatch"
    TOKEN_EXPIRED = "token.expired"
    TOKENS_PRUNED = "tokens.pruned"

    # Secret store
    SECRET_STORED = "secret.stored"
    SECRET_STORE_FAILED = "secret.store.failed"

    # System Events
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    """
    Severity levels for audit events.

    - INFO: normal lifecycle activity
    - INVESTIGATE: something an operator may want to look at
    - ALERT: a caller did something it should not
    - CRITICAL: the service could not do its job
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for token service events.

    Features:
    - Structured JSON lines via structlog
    - Automatic timestamp and event ID
    - Daily log file under log_dir
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )

        self._setup_file_handler()

        self.logger = structlog.get_logger(AUDIT_LOGGER_NAME)

    def _setup_file_handler(self):
        """Attach a daily log file to the audit logger (once per file)."""
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        log_file = (self.log_dir / f"audit_{today}.log").resolve()

        audit = logging.getLogger(AUDIT_LOGGER_NAME)
        audit.setLevel(logging.INFO)
        for handler in audit.handlers:
            if isinstance(handler, logging.FileHandler) and \
                    Path(handler.baseFilename) == log_file:
                return

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog formats
        audit.addHandler(file_handler)
        self._file_handler = file_handler

    def close(self):
        """Detach and close this instance's file handler."""
        handler = getattr(self, "_file_handler", None)
        if handler is not None:
            logging.getLogger(AUDIT_LOGGER_NAME).removeHandler(handler)
            handler.close()
            self._file_handler = None

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log an audit event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (names and prefixes only)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())
        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
            "host": self._host_context(),
        }

        if severity in (EventSeverity.ALERT, EventSeverity.CRITICAL):
            self.logger.warning("audit_event", **event_data)
        else:
            self.logger.info("audit_event", **event_data)
        return event_id

    def log_token_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> str:
        """Log a token lifecycle event with a ``Kuze:`` message prefix."""
        return self.log_event(
            event_type=event_type,
            severity=severity,
            message=f"Kuze: {message}",
            details=details,
        )

    @staticmethod
    def _host_context() -> Dict[str, Any]:
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(log_dir: Path) -> AuditLogger:
    """Replace the global audit logger with one writing under log_dir."""
    global _audit_logger
    if _audit_logger is not None:
        _audit_logger.close()
    _audit_logger = AuditLogger(log_dir=log_dir)
    return _audit_logger

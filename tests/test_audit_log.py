"""
Tests for the structlog-based audit logger.
"""

import json

from kuze.core import audit_log
from kuze.core.audit_log import AuditLogger, EventSeverity, EventType


def _read_events(log_dir):
    lines = []
    for path in sorted(log_dir.glob("audit_*.log")):
        lines.extend(l for l in path.read_text(encoding="utf-8").splitlines() if l.strip())
    return [json.loads(l) for l in lines]


class TestAuditLogger:
    def test_writes_json_line(self, tmp_path):
        logger = AuditLogger(log_dir=tmp_path / "audit")
        try:
            event_id = logger.log_event(
                EventType.TOKEN_ISSUED, EventSeverity.INFO, "issued", {"secret_ref": "k"},
            )
        finally:
            logger.close()

        events = _read_events(tmp_path / "audit")
        assert len(events) == 1
        event = events[0]
        assert event["event_id"] == event_id
        assert event["event_type"] == "token.issued"
        assert event["severity"] == "info"
        assert event["details"] == {"secret_ref": "k"}
        assert "hostname" in event["host"]

    def test_token_event_prefix_and_severity(self, tmp_path):
        logger = AuditLogger(log_dir=tmp_path / "audit")
        try:
            logger.log_token_event(
                EventType.TOKEN_IDENTITY_MISMATCH, "refused", severity=EventSeverity.ALERT,
            )
        finally:
            logger.close()

        event = _read_events(tmp_path / "audit")[0]
        assert event["message"] == "Kuze: refused"
        assert event["severity"] == "alert"
        assert event["level"] == "warning"

    def test_close_detaches_handler(self, tmp_path):
        logger = AuditLogger(log_dir=tmp_path / "audit")
        logger.close()
        logger.log_event(EventType.SYSTEM_START, EventSeverity.INFO, "after close")
        assert _read_events(tmp_path / "audit") == []


class TestGlobalLogger:
    def test_get_returns_singleton(self):
        assert audit_log.get_audit_logger() is audit_log.get_audit_logger()

    def test_configure_replaces_singleton(self, tmp_path):
        old = audit_log.get_audit_logger()
        new = audit_log.configure_audit_logger(tmp_path / "elsewhere")
        assert new is audit_log.get_audit_logger()
        assert new is not old
        assert (tmp_path / "elsewhere").is_dir()

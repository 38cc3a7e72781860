"""
Shared pytest fixtures for the Kuze test suite.

Autouse fixtures below isolate tests from live application data:
  - Audit logger -> temp directory  (prevents test events in ./audit_logs)
"""

import pytest


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path):
    """Point the global AuditLogger at a temp directory for every test.

    Without this, any test that (directly or indirectly) calls
    ``get_audit_logger().log_event(...)`` writes into the real
    ``./audit_logs/`` directory.
    """
    import kuze.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = audit_mod.AuditLogger(log_dir=tmp_path / "audit_logs")

    yield audit_mod._audit_logger

    audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger

"""
Tests for KuzeConfig (environment-driven settings).
"""

from datetime import timedelta
from pathlib import Path

import pytest

from kuze.config import DEFAULT_BASE_URL, KuzeConfig
from kuze.exceptions import ConfigurationError
from kuze.tokens import DEFAULT_TTL


class TestDefaults:
    def test_defaults(self):
        config = KuzeConfig.from_env({})
        assert config.base_url == DEFAULT_BASE_URL
        assert config.ttl == DEFAULT_TTL
        assert config.db_path == Path("data/kuze.db")
        assert config.prune_interval is None
        assert config.effective_prune_interval == DEFAULT_TTL
        assert config.store_timeout == 5.0
        assert config.notify_url == ""
        assert config.vault_password == ""

    def test_trailing_slash_stripped(self):
        assert KuzeConfig(base_url="https://kuze.example.com/").base_url == "https://kuze.example.com"

    def test_non_positive_ttl_uses_default(self):
        assert KuzeConfig(ttl=timedelta(0)).ttl == DEFAULT_TTL


class TestFromEnv:
    def test_reads_all_variables(self, tmp_path):
        env = {
            "KUZE_BASE_URL": "https://kuze.example.com/",
            "KUZE_TTL_SECONDS": "300",
            "KUZE_DB_PATH": str(tmp_path / "t.db"),
            "KUZE_PRUNE_INTERVAL_SECONDS": "30",
            "KUZE_STORE_TIMEOUT_SECONDS": "1.5",
            "KUZE_NOTIFY_TIMEOUT_SECONDS": "2",
            "KUZE_NOTIFY_URL": "http://chat/hooks/kuze",
            "KUZE_VAULT_PATH": str(tmp_path / "v.db"),
            "KUZE_VAULT_PASSWORD": "pw",
            "KUZE_AUDIT_DIR": str(tmp_path / "audit"),
        }
        config = KuzeConfig.from_env(env)
        assert config.base_url == "https://kuze.example.com"
        assert config.ttl == timedelta(seconds=300)
        assert config.db_path == tmp_path / "t.db"
        assert config.effective_prune_interval == timedelta(seconds=30)
        assert config.store_timeout == 1.5
        assert config.notify_timeout == 2.0
        assert config.notify_url == "http://chat/hooks/kuze"
        assert config.vault_path == tmp_path / "v.db"
        assert config.vault_password == "pw"
        assert config.audit_dir == tmp_path / "audit"

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("KUZE_TTL_SECONDS", "120")
        assert KuzeConfig.from_env().ttl == timedelta(seconds=120)

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_invalid_numbers_rejected(self, value):
        with pytest.raises(ConfigurationError, match="KUZE_TTL_SECONDS"):
            KuzeConfig.from_env({"KUZE_TTL_SECONDS": value})

    def test_invalid_prune_interval_rejected(self):
        with pytest.raises(ConfigurationError):
            KuzeConfig.from_env({"KUZE_PRUNE_INTERVAL_SECONDS": "soon"})

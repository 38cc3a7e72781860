"""
Tests for application wiring (build_server) and the kuze command line.
"""

import json
from unittest.mock import patch

import pytest

from kuze.__main__ import main
from kuze.api.main import build_server
from kuze.config import KuzeConfig
from kuze.exceptions import ConfigurationError
from kuze.tokens import TokenStore


@pytest.fixture
def env(tmp_path, monkeypatch):
    """Point every KUZE_* path at tmp_path and keep .env files out of the way."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("KUZE_DB_PATH", str(tmp_path / "kuze.db"))
    monkeypatch.setenv("KUZE_VAULT_PATH", str(tmp_path / "vault.db"))
    monkeypatch.setenv("KUZE_AUDIT_DIR", str(tmp_path / "audit"))
    monkeypatch.setenv("KUZE_BASE_URL", "https://kuze.example.com")
    monkeypatch.delenv("KUZE_VAULT_PASSWORD", raising=False)
    monkeypatch.delenv("KUZE_NOTIFY_URL", raising=False)
    return tmp_path


class TestBuildServer:
    def test_requires_vault_password(self, env):
        with pytest.raises(ConfigurationError):
            build_server(KuzeConfig.from_env())

    def test_without_vault_is_unconfigured(self, env):
        server = build_server(KuzeConfig.from_env(), require_vault=False)
        assert not server.redemption_configured

    def test_with_vault(self, env, monkeypatch):
        monkeypatch.setenv("KUZE_VAULT_PASSWORD", "pw")
        with patch("kuze.api.main.SecretVault") as vault_cls:
            server = build_server(KuzeConfig.from_env())
        vault_cls.assert_called_once()
        assert server.redemption_configured

    def test_notifier_hooks_wired(self, env, monkeypatch):
        monkeypatch.setenv("KUZE_NOTIFY_URL", "http://chat/hooks/kuze")
        server = build_server(KuzeConfig.from_env(), require_vault=False)
        assert server._on_secret_stored is not None
        assert server._on_token_expired is not None


class TestCommandLine:
    def test_issue_human(self, env, capsys):
        main(["issue-human", "openai_key"])
        data = json.loads(capsys.readouterr().out)
        assert data["secret_ref"] == "openai_key"
        assert data["link"] == f"https://kuze.example.com/s/{data['token']}"
        assert TokenStore(env / "kuze.db").validate(data["token"]).secret_type == "api_key"

    def test_issue_agent(self, env, capsys):
        main(["issue-agent", "warren", "finnhub_key", "--purpose", "market data"])
        data = json.loads(capsys.readouterr().out)
        assert data["agent_id"] == "warren"
        pt = TokenStore(env / "kuze.db").validate(data["token"])
        assert pt.agent_id == "warren"
        assert pt.purpose == "market data"

    def test_prune(self, env, capsys):
        main(["issue-human", "openai_key"])
        token = json.loads(capsys.readouterr().out)["token"]
        TokenStore(env / "kuze.db").burn(token)

        main(["prune"])
        assert json.loads(capsys.readouterr().out) == {"deleted": 1}

    def test_invalid_input_exits_nonzero(self, env, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["issue-human", ""])
        assert exc_info.value.code == 1
        assert "secret_ref" in capsys.readouterr().err

    def test_serve_passes_host_and_port(self, env):
        with patch("kuze.api.main.start_api_server") as start:
            main(["serve", "--host", "0.0.0.0", "--port", "9000"])
        config = start.call_args.args[0]
        assert config.base_url == "https://kuze.example.com"
        assert start.call_args.kwargs == {"host": "0.0.0.0", "port": 9000}

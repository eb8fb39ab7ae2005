from pathlib import Path

from oauth_debugger.settings import DebuggerSettings


def test_defaults_describe_debug_client():
    settings = DebuggerSettings()
    client_metadata = settings.client_metadata()

    assert [str(uri) for uri in client_metadata.redirect_uris] == ["http://localhost:6274/oauth/callback/debug"]
    assert client_metadata.token_endpoint_auth_method == "none"
    assert client_metadata.grant_types == ["authorization_code", "refresh_token"]
    assert client_metadata.response_types == ["code"]
    assert client_metadata.client_name == "MCP Inspector"
    assert client_metadata.scope is None


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("MCP_AUTH_DEBUGGER_STORAGE_PATH", str(tmp_path / "state.json"))
    monkeypatch.setenv("MCP_AUTH_DEBUGGER_REDIRECT_URL", "http://127.0.0.1:3000/callback")
    monkeypatch.setenv("MCP_AUTH_DEBUGGER_HTTP_TIMEOUT", "5")

    settings = DebuggerSettings()

    assert settings.storage_path == Path(tmp_path / "state.json")
    assert str(settings.redirect_url) == "http://127.0.0.1:3000/callback"
    assert settings.http_timeout == 5.0

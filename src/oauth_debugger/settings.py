from pathlib import Path

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

from oauth_debugger.shared.auth import OAuthClientMetadata


class DebuggerSettings(BaseSettings):
    """Settings for the OAuth debugger."""

    model_config = SettingsConfigDict(env_prefix="MCP_AUTH_DEBUGGER_")

    # Where stored metadata, client registrations, verifiers and tokens live
    storage_path: Path = Path.home() / ".mcp-auth-debugger" / "session.json"

    # Client registration
    redirect_url: AnyHttpUrl = AnyHttpUrl("http://localhost:6274/oauth/callback/debug")
    client_name: str = "MCP Inspector"
    client_uri: AnyHttpUrl = AnyHttpUrl("https://github.com/modelcontextprotocol/inspector")

    http_timeout: float = 30.0
    log_level: str = "INFO"

    def client_metadata(self) -> OAuthClientMetadata:
        return OAuthClientMetadata(
            redirect_uris=[self.redirect_url],
            token_endpoint_auth_method="none",
            grant_types=["authorization_code", "refresh_token"],
            response_types=["code"],
            client_name=self.client_name,
            client_uri=self.client_uri,
        )

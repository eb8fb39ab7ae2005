from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel

from oauth_debugger.shared.auth import (
    OAuthClientInformationFull,
    OAuthMetadata,
    OAuthToken,
    ProtectedResourceMetadata,
)


class OAuthStep(str, Enum):
    """Steps of the guided authorization flow, in the order they run."""

    METADATA_DISCOVERY = "metadata_discovery"
    CLIENT_REGISTRATION = "client_registration"
    AUTHORIZATION_REDIRECT = "authorization_redirect"
    AUTHORIZATION_CODE = "authorization_code"
    TOKEN_REQUEST = "token_request"
    COMPLETE = "complete"


class StatusMessage(BaseModel):
    type: Literal["error", "success", "info"]
    message: str


class AuthDebuggerState(BaseModel):
    """
    Everything the debugger shows the operator about an authorization attempt.

    The PKCE code verifier is deliberately absent: this record is displayed,
    the verifier only ever lives in the auth store.

    ``auth_server_url`` is None until metadata discovery resolves it. It is
    then the target server's own origin unless protected resource metadata
    names an authorization server.
    """

    step: OAuthStep = OAuthStep.METADATA_DISCOVERY
    is_initiating_auth: bool = False

    resource_metadata: ProtectedResourceMetadata | None = None
    resource_metadata_error: str | None = None
    auth_server_url: str | None = None
    oauth_metadata: OAuthMetadata | None = None
    oauth_client_info: OAuthClientInformationFull | None = None

    authorization_url: str | None = None
    authorization_code: str = ""
    validation_error: str | None = None

    oauth_tokens: OAuthToken | None = None

    status_message: StatusMessage | None = None
    latest_error: str | None = None

    def apply(self, updates: dict[str, Any]) -> "AuthDebuggerState":
        """Return a copy with the given fields overwritten."""
        unknown = set(updates) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown debugger state fields: {sorted(unknown)}")
        return self.model_copy(update=updates)


def empty_debugger_state() -> AuthDebuggerState:
    return AuthDebuggerState()

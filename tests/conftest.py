from unittest.mock import AsyncMock, Mock
from urllib.parse import urlencode

import pytest
from pydantic import AnyHttpUrl, AnyUrl

from oauth_debugger.client.debugger import AuthDebugger
from oauth_debugger.client.errors import ProtectedResourceMetadataError
from oauth_debugger.client.state_machine import OAuthStateMachine
from oauth_debugger.client.storage import InMemoryStorage, SessionAuthStore
from oauth_debugger.shared.auth import (
    OAuthClientInformationFull,
    OAuthClientMetadata,
    OAuthMetadata,
    OAuthToken,
)

SERVER_URL = "https://example.com"
REDIRECT_URL = "http://localhost:6274/oauth/callback/debug"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def oauth_metadata_json():
    return {
        "issuer": "https://oauth.example.com",
        "authorization_endpoint": "https://oauth.example.com/authorize",
        "token_endpoint": "https://oauth.example.com/token",
        "registration_endpoint": "https://oauth.example.com/register",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code"],
    }


@pytest.fixture
def oauth_metadata(oauth_metadata_json):
    return OAuthMetadata.model_validate(oauth_metadata_json)


@pytest.fixture
def client_info():
    return OAuthClientInformationFull(
        client_id="test_client_id",
        client_secret="test_client_secret",
        redirect_uris=[AnyUrl(REDIRECT_URL)],
    )


@pytest.fixture
def tokens():
    return OAuthToken(
        access_token="test_access_token",
        token_type="Bearer",
        expires_in=3600,
        refresh_token="test_refresh_token",
        scope="test_scope",
    )


@pytest.fixture
def client_metadata():
    return OAuthClientMetadata(
        redirect_uris=[AnyUrl(REDIRECT_URL)],
        token_endpoint_auth_method="none",
        grant_types=["authorization_code", "refresh_token"],
        response_types=["code"],
        client_name="MCP Inspector",
        client_uri=AnyHttpUrl("https://github.com/modelcontextprotocol/inspector"),
    )


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def store(storage):
    return SessionAuthStore(SERVER_URL, storage)


@pytest.fixture
def protocol_client(oauth_metadata_json, client_info, tokens):
    """Protocol client double; protected resource metadata is unavailable by default."""

    async def start_authorization(server_url, *, metadata, client_information, redirect_url, scope=None):
        params = {"client_id": client_information.client_id, "redirect_uri": redirect_url}
        if scope:
            params["scope"] = scope
        return f"https://oauth.example.com/authorize?{urlencode(params)}", "test_verifier"

    client = Mock()
    client.discover_protected_resource_metadata = AsyncMock(
        side_effect=ProtectedResourceMetadataError("No protected resource metadata found")
    )
    client.discover_oauth_metadata = AsyncMock(return_value=oauth_metadata_json)
    client.register_client = AsyncMock(return_value=client_info)
    client.start_authorization = AsyncMock(side_effect=start_authorization)
    client.exchange_authorization = AsyncMock(return_value=tokens)
    return client


@pytest.fixture
def state_machine(store, protocol_client, client_metadata):
    return OAuthStateMachine(
        server_url=SERVER_URL,
        store=store,
        client=protocol_client,
        client_metadata=client_metadata,
        redirect_url=REDIRECT_URL,
    )


@pytest.fixture
def redirect_handler():
    return AsyncMock()


@pytest.fixture
def debugger(store, protocol_client, client_metadata, redirect_handler):
    return AuthDebugger(
        server_url=SERVER_URL,
        store=store,
        client=protocol_client,
        client_metadata=client_metadata,
        redirect_url=REDIRECT_URL,
        redirect_handler=redirect_handler,
    )

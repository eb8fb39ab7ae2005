"""
OAuth 2.0 protocol operations used by the authorization debugger.

Implements the network half of the authorization code flow with PKCE:
protected resource and authorization server metadata discovery, dynamic
client registration, authorization URL construction and code exchange.
The state machine treats these as opaque operations behind the
``OAuthProtocolClient`` protocol.
"""

import base64
import hashlib
import logging
import secrets
import string
from typing import Any, Literal, Protocol
from urllib.parse import urlencode, urljoin, urlparse

import httpx
from pydantic import BaseModel, Field, ValidationError

from oauth_debugger.client.errors import (
    OAuthAuthorizationError,
    OAuthFlowError,
    OAuthMetadataError,
    OAuthRegistrationError,
    OAuthTokenError,
    ProtectedResourceMetadataError,
)
from oauth_debugger.shared.auth import (
    OAuthClientInformationFull,
    OAuthClientMetadata,
    OAuthMetadata,
    OAuthToken,
    ProtectedResourceMetadata,
)

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION = "mcp-protocol-version"
LATEST_PROTOCOL_VERSION = "2025-06-18"

PROTECTED_RESOURCE_WELL_KNOWN = "/.well-known/oauth-protected-resource"
AUTHORIZATION_SERVER_WELL_KNOWN = "/.well-known/oauth-authorization-server"


class PKCEParameters(BaseModel):
    """PKCE (Proof Key for Code Exchange) parameters."""

    code_verifier: str = Field(..., min_length=43, max_length=128)
    code_challenge: str = Field(..., min_length=43, max_length=128)
    code_challenge_method: Literal["S256"] = Field(default="S256")

    @classmethod
    def generate(cls) -> "PKCEParameters":
        """Generate new PKCE parameters."""
        code_verifier = "".join(secrets.choice(string.ascii_letters + string.digits + "-._~") for _ in range(128))
        digest = hashlib.sha256(code_verifier.encode()).digest()
        code_challenge = base64.urlsafe_b64encode(digest).decode().rstrip("=")

        return cls(code_verifier=code_verifier, code_challenge=code_challenge)


class OAuthProtocolClient(Protocol):
    """Protocol for the network operations the state machine depends on."""

    async def discover_protected_resource_metadata(self, server_url: str) -> ProtectedResourceMetadata:
        """Discover RFC 9728 metadata for the target server; raises if unavailable."""
        ...

    async def discover_oauth_metadata(self, auth_server_url: str) -> dict[str, Any] | None:
        """Fetch raw RFC 8414 metadata, or None if the server publishes none."""
        ...

    async def register_client(
        self,
        server_url: str,
        *,
        metadata: OAuthMetadata | None,
        client_metadata: OAuthClientMetadata,
    ) -> OAuthClientInformationFull:
        """Dynamically register a client."""
        ...

    async def start_authorization(
        self,
        server_url: str,
        *,
        metadata: OAuthMetadata | None,
        client_information: OAuthClientInformationFull,
        redirect_url: str,
        scope: str | None = None,
    ) -> tuple[str, str]:
        """Build the authorization URL; returns (authorization_url, code_verifier)."""
        ...

    async def exchange_authorization(
        self,
        server_url: str,
        *,
        metadata: OAuthMetadata | None,
        client_information: OAuthClientInformationFull,
        authorization_code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> OAuthToken:
        """Exchange an authorization code for tokens."""
        ...


def get_authorization_base_url(server_url: str) -> str:
    """Extract base URL by removing path component."""
    try:
        parsed = urlparse(server_url)
    except ValueError as e:
        raise OAuthFlowError(f"Invalid server URL {server_url!r}: {e}") from e
    if not parsed.scheme or not parsed.netloc:
        raise OAuthFlowError(f"Invalid server URL {server_url!r}: expected an absolute http(s) URL")
    return f"{parsed.scheme}://{parsed.netloc}"


def build_well_known_urls(server_url: str, well_known: str) -> list[str]:
    """
    Candidate discovery URLs for a server, most specific first.

    RFC 8414 and RFC 9728 insert the well-known segment between the host and
    the path; servers that only publish at the root are tried second.
    """
    base_url = get_authorization_base_url(server_url)
    pathname = urlparse(server_url).path.rstrip("/")

    urls = []
    if pathname:
        urls.append(f"{base_url}{well_known}{pathname}")
    urls.append(urljoin(base_url, well_known))
    return urls


class HttpxOAuthClient:
    """``OAuthProtocolClient`` implementation on top of ``httpx.AsyncClient``."""

    def __init__(self, http_client: httpx.AsyncClient | None = None, timeout: float = 30.0):
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "HttpxOAuthClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def _get_well_known(self, server_url: str, well_known: str) -> httpx.Response | None:
        """GET the first discovery URL that does not answer 404."""
        for url in build_well_known_urls(server_url, well_known):
            logger.debug(f"Trying discovery URL {url}")
            response = await self.http_client.get(url, headers={MCP_PROTOCOL_VERSION: LATEST_PROTOCOL_VERSION})
            if response.status_code != 404:
                return response
        return None

    async def discover_protected_resource_metadata(self, server_url: str) -> ProtectedResourceMetadata:
        response = await self._get_well_known(server_url, PROTECTED_RESOURCE_WELL_KNOWN)
        if response is None:
            raise ProtectedResourceMetadataError(
                "Resource server does not implement OAuth 2.0 Protected Resource Metadata."
            )
        if response.status_code != 200:
            raise ProtectedResourceMetadataError(
                f"HTTP {response.status_code} trying to load well-known OAuth protected resource metadata."
            )

        try:
            content = await response.aread()
            return ProtectedResourceMetadata.model_validate_json(content)
        except ValidationError as e:
            raise ProtectedResourceMetadataError(f"Invalid protected resource metadata: {e}")

    async def discover_oauth_metadata(self, auth_server_url: str) -> dict[str, Any] | None:
        response = await self._get_well_known(auth_server_url, AUTHORIZATION_SERVER_WELL_KNOWN)
        if response is None:
            logger.debug(f"No authorization server metadata published for {auth_server_url}")
            return None
        if response.status_code != 200:
            logger.error(f"Authorization server metadata discovery failed: HTTP {response.status_code}")
            raise OAuthMetadataError(
                f"HTTP {response.status_code} trying to load well-known OAuth metadata"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise OAuthMetadataError(f"Authorization server metadata is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise OAuthMetadataError("Authorization server metadata must be a JSON object")
        return data

    async def register_client(
        self,
        server_url: str,
        *,
        metadata: OAuthMetadata | None,
        client_metadata: OAuthClientMetadata,
    ) -> OAuthClientInformationFull:
        if metadata:
            if not metadata.registration_endpoint:
                raise OAuthRegistrationError("Incompatible auth server: does not support dynamic client registration")
            registration_url = str(metadata.registration_endpoint)
        else:
            registration_url = urljoin(get_authorization_base_url(server_url), "/register")

        registration_data = client_metadata.model_dump(by_alias=True, mode="json", exclude_none=True)
        response = await self.http_client.post(
            registration_url,
            json=registration_data,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                MCP_PROTOCOL_VERSION: LATEST_PROTOCOL_VERSION,
            },
        )

        if response.status_code not in (200, 201):
            logger.error(f"HTTP error in client registration: {response.status_code}")
            raise OAuthRegistrationError(f"Registration failed: {response.status_code} {response.text}")

        try:
            content = await response.aread()
            client_info = OAuthClientInformationFull.model_validate_json(content)
        except ValidationError as e:
            raise OAuthRegistrationError(f"Invalid registration response: {e}")

        logger.debug(f"Registered client {client_info.client_id} at {registration_url}")
        return client_info

    async def start_authorization(
        self,
        server_url: str,
        *,
        metadata: OAuthMetadata | None,
        client_information: OAuthClientInformationFull,
        redirect_url: str,
        scope: str | None = None,
    ) -> tuple[str, str]:
        if metadata:
            if "code" not in metadata.response_types_supported:
                raise OAuthAuthorizationError("Incompatible auth server: does not support response type code")
            if (
                metadata.code_challenge_methods_supported is not None
                and "S256" not in metadata.code_challenge_methods_supported
            ):
                raise OAuthAuthorizationError(
                    "Incompatible auth server: does not support code challenge method S256"
                )
            auth_endpoint = str(metadata.authorization_endpoint)
        else:
            auth_endpoint = urljoin(get_authorization_base_url(server_url), "/authorize")

        pkce_params = PKCEParameters.generate()
        auth_params = {
            "response_type": "code",
            "client_id": client_information.client_id,
            "code_challenge": pkce_params.code_challenge,
            "code_challenge_method": pkce_params.code_challenge_method,
            "redirect_uri": redirect_url,
            "state": secrets.token_urlsafe(32),
        }

        if scope:
            auth_params["scope"] = scope

        separator = "&" if "?" in auth_endpoint else "?"
        authorization_url = f"{auth_endpoint}{separator}{urlencode(auth_params)}"
        return authorization_url, pkce_params.code_verifier

    async def exchange_authorization(
        self,
        server_url: str,
        *,
        metadata: OAuthMetadata | None,
        client_information: OAuthClientInformationFull,
        authorization_code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> OAuthToken:
        if metadata:
            if metadata.grant_types_supported is not None and "authorization_code" not in metadata.grant_types_supported:
                raise OAuthTokenError("Incompatible auth server: does not support grant type authorization_code")
            token_url = str(metadata.token_endpoint)
        else:
            token_url = urljoin(get_authorization_base_url(server_url), "/token")

        token_data = {
            "grant_type": "authorization_code",
            "code": authorization_code,
            "code_verifier": code_verifier,
            "redirect_uri": redirect_uri,
            "client_id": client_information.client_id,
        }

        if client_information.client_secret:
            token_data["client_secret"] = client_information.client_secret

        response = await self.http_client.post(
            token_url,
            data=token_data,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
                MCP_PROTOCOL_VERSION: LATEST_PROTOCOL_VERSION,
            },
        )

        if response.status_code != 200:
            logger.error(f"HTTP error during token exchange: {response.status_code}")
            raise OAuthTokenError(f"Token exchange failed: {self._describe_error(response)}")

        try:
            content = await response.aread()
            return OAuthToken.model_validate_json(content)
        except ValidationError as e:
            raise OAuthTokenError(f"Invalid token response: {e}")

    @staticmethod
    def _describe_error(response: httpx.Response) -> str:
        try:
            error_data = response.json()
        except ValueError:
            return f"{response.status_code} {response.text}"

        if isinstance(error_data, dict):
            error_msg = error_data.get("error_description", error_data.get("error", "Unknown error"))
            return f"{error_msg} (HTTP {response.status_code})"
        return f"{response.status_code} {response.text}"

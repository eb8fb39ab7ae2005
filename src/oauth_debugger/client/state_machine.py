"""
Guided OAuth authorization flow as a table-driven state machine.

Each step of the flow has a precondition and an asynchronous action. The
driver runs one step per operator action and returns the fields the step
changed; it never chains steps on its own.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from oauth_debugger.client.auth import OAuthProtocolClient, get_authorization_base_url
from oauth_debugger.client.errors import (
    AuthorizationCodeRequiredError,
    OAuthFlowError,
    OAuthMetadataError,
    OAuthStateTransitionError,
    OAuthTokenError,
    stringify_pydantic_error,
)
from oauth_debugger.client.state import AuthDebuggerState, OAuthStep
from oauth_debugger.client.storage import AuthStore
from oauth_debugger.shared.auth import OAuthClientMetadata, OAuthMetadata, ProtectedResourceMetadata

logger = logging.getLogger(__name__)

StateUpdates = dict[str, Any]


@dataclass
class StateMachineContext:
    """Everything a transition may read while it runs."""

    state: AuthDebuggerState
    server_url: str
    store: AuthStore
    client: OAuthProtocolClient
    client_metadata: OAuthClientMetadata
    redirect_url: str


@dataclass
class StateTransition:
    """Precondition and action for one step."""

    can_transition: Callable[[StateMachineContext], Awaitable[bool]]
    execute: Callable[[StateMachineContext], Awaitable[StateUpdates]]


async def _always(context: StateMachineContext) -> bool:
    return True


async def _never(context: StateMachineContext) -> bool:
    return False


async def _discover_metadata(context: StateMachineContext) -> StateUpdates:
    auth_server_url = get_authorization_base_url(context.server_url)
    resource_metadata: ProtectedResourceMetadata | None = None
    resource_metadata_error: str | None = None

    # Any failure here only means we fall back to the server's own origin
    try:
        resource_metadata = await context.client.discover_protected_resource_metadata(context.server_url)
        if resource_metadata.authorization_servers:
            auth_server_url = str(resource_metadata.authorization_servers[0]).rstrip("/")
    except Exception as e:
        logger.warning(f"Protected resource metadata unavailable for {context.server_url}: {e}")
        resource_metadata_error = str(e) or type(e).__name__

    raw_metadata = await context.client.discover_oauth_metadata(auth_server_url)
    if not raw_metadata:
        raise OAuthMetadataError("Failed to discover OAuth metadata")

    try:
        metadata = OAuthMetadata.model_validate(raw_metadata)
    except ValidationError as e:
        raise OAuthMetadataError(f"Invalid OAuth metadata:\n{stringify_pydantic_error(e)}")

    await context.store.save_server_metadata(metadata)
    logger.debug(f"OAuth metadata discovered at {auth_server_url}")

    return {
        "resource_metadata": resource_metadata,
        "resource_metadata_error": resource_metadata_error,
        "auth_server_url": auth_server_url,
        "oauth_metadata": metadata,
        "step": OAuthStep.CLIENT_REGISTRATION,
    }


async def _has_metadata(context: StateMachineContext) -> bool:
    return context.state.oauth_metadata is not None


def registration_scope(
    resource_metadata: ProtectedResourceMetadata | None, metadata: OAuthMetadata
) -> str | None:
    """Scopes to register for; resource metadata wins over server metadata."""
    scopes_supported = (resource_metadata.scopes_supported if resource_metadata else None) or metadata.scopes_supported
    if scopes_supported:
        return " ".join(scopes_supported)
    return None


async def _register_client(context: StateMachineContext) -> StateUpdates:
    metadata = context.state.oauth_metadata
    if metadata is None:
        raise OAuthFlowError("No OAuth metadata available for registration")

    client_metadata = context.client_metadata.model_copy(deep=True)
    scope = registration_scope(context.state.resource_metadata, metadata)
    if scope is not None:
        client_metadata.scope = scope

    client_info = await context.client.register_client(
        context.server_url,
        metadata=metadata,
        client_metadata=client_metadata,
    )

    await context.store.save_client_information(client_info)
    logger.debug(f"Registered client {client_info.client_id}")

    return {
        "oauth_client_info": client_info,
        "step": OAuthStep.AUTHORIZATION_REDIRECT,
    }


async def _has_metadata_and_client(context: StateMachineContext) -> bool:
    return context.state.oauth_metadata is not None and context.state.oauth_client_info is not None


async def _start_authorization(context: StateMachineContext) -> StateUpdates:
    metadata = context.state.oauth_metadata
    client_info = context.state.oauth_client_info
    if metadata is None or client_info is None:
        raise OAuthFlowError("Missing OAuth metadata or client info")

    scope = " ".join(metadata.scopes_supported) if metadata.scopes_supported else None

    authorization_url, code_verifier = await context.client.start_authorization(
        context.server_url,
        metadata=metadata,
        client_information=client_info,
        redirect_url=context.redirect_url,
        scope=scope,
    )

    await context.store.save_code_verifier(code_verifier)

    return {
        "authorization_url": authorization_url,
        "step": OAuthStep.AUTHORIZATION_CODE,
    }


async def _validate_authorization_code(context: StateMachineContext) -> StateUpdates:
    if not context.state.authorization_code or not context.state.authorization_code.strip():
        raise AuthorizationCodeRequiredError("You need to provide an authorization code")

    return {
        "validation_error": None,
        "step": OAuthStep.TOKEN_REQUEST,
    }


async def _can_request_token(context: StateMachineContext) -> bool:
    # the in-memory copies may not have survived the redirect, so check the store
    return (
        bool(context.state.authorization_code and context.state.authorization_code.strip())
        and await context.store.get_server_metadata() is not None
        and await context.store.get_client_information() is not None
    )


async def _request_token(context: StateMachineContext) -> StateUpdates:
    code_verifier = await context.store.get_code_verifier()
    if not code_verifier:
        raise OAuthTokenError("No code verifier saved for session")

    metadata = await context.store.get_server_metadata()
    client_info = await context.store.get_client_information()
    if metadata is None or client_info is None:
        raise OAuthFlowError("Missing stored OAuth metadata or client info")

    tokens = await context.client.exchange_authorization(
        context.server_url,
        metadata=metadata,
        client_information=client_info,
        authorization_code=context.state.authorization_code.strip(),
        code_verifier=code_verifier,
        redirect_uri=context.redirect_url,
    )

    await context.store.save_tokens(tokens)
    logger.debug("Token exchange successful")

    return {
        "oauth_tokens": tokens,
        "step": OAuthStep.COMPLETE,
    }


async def _noop(context: StateMachineContext) -> StateUpdates:
    return {}


OAUTH_TRANSITIONS: dict[OAuthStep, StateTransition] = {
    OAuthStep.METADATA_DISCOVERY: StateTransition(_always, _discover_metadata),
    OAuthStep.CLIENT_REGISTRATION: StateTransition(_has_metadata, _register_client),
    OAuthStep.AUTHORIZATION_REDIRECT: StateTransition(_has_metadata_and_client, _start_authorization),
    OAuthStep.AUTHORIZATION_CODE: StateTransition(_always, _validate_authorization_code),
    OAuthStep.TOKEN_REQUEST: StateTransition(_can_request_token, _request_token),
    OAuthStep.COMPLETE: StateTransition(_never, _noop),
}


class OAuthStateMachine:
    """Runs one transition of the guided flow against a single target server."""

    def __init__(
        self,
        server_url: str,
        store: AuthStore,
        client: OAuthProtocolClient,
        client_metadata: OAuthClientMetadata,
        redirect_url: str,
    ):
        self.server_url = server_url
        self.store = store
        self.client = client
        self.client_metadata = client_metadata
        self.redirect_url = redirect_url

    async def execute_step(self, state: AuthDebuggerState) -> StateUpdates:
        """
        Execute the transition for ``state.step``.

        Returns the fields to merge into the debugger state. Raises
        ``OAuthStateTransitionError`` without running anything if the step's
        precondition does not hold; errors from the action propagate as-is.
        """
        context = StateMachineContext(
            state=state,
            server_url=self.server_url,
            store=self.store,
            client=self.client,
            client_metadata=self.client_metadata,
            redirect_url=self.redirect_url,
        )

        transition = OAUTH_TRANSITIONS[state.step]
        if not await transition.can_transition(context):
            raise OAuthStateTransitionError(state.step.value)

        logger.debug(f"Executing OAuth step {state.step.value} for {self.server_url}")
        return await transition.execute(context)

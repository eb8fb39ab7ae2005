"""
Operator-facing controller for the guided OAuth flow.

Holds the current ``AuthDebuggerState`` for one target server, advances it
one step at a time through ``OAuthStateMachine`` and keeps the auth store in
sync around the authorization redirect, which may cost us the process.
"""

import logging
from collections.abc import Awaitable, Callable

import httpx

from oauth_debugger.client.auth import OAuthProtocolClient
from oauth_debugger.client.errors import AuthorizationCodeRequiredError, OAuthFlowError
from oauth_debugger.client.state import AuthDebuggerState, OAuthStep, StatusMessage, empty_debugger_state
from oauth_debugger.client.state_machine import OAuthStateMachine, StateUpdates
from oauth_debugger.client.storage import AuthStore
from oauth_debugger.shared.auth import OAuthClientMetadata

logger = logging.getLogger(__name__)

RedirectHandler = Callable[[str], Awaitable[None]]


class AuthDebugger:
    def __init__(
        self,
        server_url: str,
        store: AuthStore,
        client: OAuthProtocolClient,
        client_metadata: OAuthClientMetadata,
        redirect_url: str,
        redirect_handler: RedirectHandler | None = None,
        state: AuthDebuggerState | None = None,
    ):
        self.server_url = server_url
        self.store = store
        self.redirect_handler = redirect_handler
        self.state = state or empty_debugger_state()
        self.state_machine = OAuthStateMachine(
            server_url=server_url,
            store=store,
            client=client,
            client_metadata=client_metadata,
            redirect_url=redirect_url,
        )

    def update_state(self, updates: StateUpdates) -> AuthDebuggerState:
        self.state = self.state.apply(updates)
        return self.state

    async def load(self) -> AuthDebuggerState:
        """Rehydrate the debugger state saved for this server, if any."""
        self.state = await self.store.get_debugger_state() or empty_debugger_state()
        return self.state

    async def save(self) -> None:
        await self.store.save_debugger_state(self.state)

    def _require_server_url(self) -> bool:
        if self.server_url:
            return True
        self.update_state(
            {
                "status_message": StatusMessage(
                    type="error",
                    message="Please enter a server URL before authenticating",
                )
            }
        )
        return False

    def start_guided_flow(self) -> bool:
        """Reset to the first step; earlier results stay visible until overwritten."""
        if not self._require_server_url():
            return False

        self.update_state(
            {
                "step": OAuthStep.METADATA_DISCOVERY,
                "authorization_url": None,
                "status_message": None,
                "latest_error": None,
            }
        )
        return True

    async def proceed(self) -> bool:
        """
        Run the current step once.

        Returns True if the step succeeded and the state advanced. On failure
        the error is recorded in ``latest_error`` and ``step`` is unchanged.
        """
        previous_step = self.state.step
        try:
            updates = await self.state_machine.execute_step(self.state)
        except AuthorizationCodeRequiredError as e:
            self.update_state({**e.updates, "latest_error": str(e)})
            return False
        except (OAuthFlowError, httpx.HTTPError) as e:
            logger.error(f"OAuth step {previous_step.value} failed: {e}")
            self.update_state({"latest_error": str(e) or type(e).__name__})
            return False

        self.update_state({**updates, "latest_error": None})

        if previous_step == OAuthStep.AUTHORIZATION_REDIRECT:
            # the operator is about to leave for the authorization server
            await self.save()

        return True

    async def quick_flow(self) -> bool:
        """
        Run discovery, registration and the redirect step back to back, then
        hand the authorization URL to the redirect handler.
        """
        if not self._require_server_url():
            return False

        self.update_state(
            {
                "step": OAuthStep.METADATA_DISCOVERY,
                "authorization_url": None,
                "status_message": None,
                "latest_error": None,
                "is_initiating_auth": True,
            }
        )

        while self.state.step != OAuthStep.AUTHORIZATION_CODE:
            if not await self.proceed():
                self.update_state(
                    {
                        "status_message": StatusMessage(
                            type="error",
                            message=f"Failed to start OAuth flow: {self.state.latest_error}",
                        ),
                        "is_initiating_auth": False,
                    }
                )
                return False

        self.update_state({"is_initiating_auth": False})
        await self.save()

        if self.redirect_handler and self.state.authorization_url:
            await self.redirect_handler(self.state.authorization_url)
        return True

    async def resume(self, authorization_code: str) -> AuthDebuggerState:
        """Pick the flow back up after the redirect with the code the operator brought back."""
        await self.load()
        return self.update_state({"authorization_code": authorization_code})

    async def finish_flow(self) -> bool:
        """Run the remaining steps up to ``complete``."""
        if self.state.step not in (OAuthStep.AUTHORIZATION_CODE, OAuthStep.TOKEN_REQUEST):
            # running the redirect step again would mint a verifier the code was not issued for
            self.update_state(
                {
                    "status_message": StatusMessage(
                        type="error",
                        message=f"No authorization in progress (current step: {self.state.step.value})",
                    )
                }
            )
            return False

        self.update_state({"is_initiating_auth": True, "status_message": None, "latest_error": None})

        while self.state.step != OAuthStep.COMPLETE:
            if not await self.proceed():
                self.update_state(
                    {
                        "status_message": StatusMessage(
                            type="error",
                            message=f"Failed to complete OAuth flow: {self.state.latest_error}",
                        ),
                        "is_initiating_auth": False,
                    }
                )
                return False

        self.update_state(
            {
                "status_message": StatusMessage(type="success", message="Authentication completed successfully"),
                "is_initiating_auth": False,
            }
        )
        return True

    async def clear(self) -> AuthDebuggerState:
        """Forget everything stored for this server and start over."""
        await self.store.clear()
        self.state = empty_debugger_state().apply(
            {"status_message": StatusMessage(type="success", message="OAuth tokens cleared successfully")}
        )
        return self.state

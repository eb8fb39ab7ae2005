"""
Persistent storage for the authorization debugger.

Everything the flow needs after the browser has been sent to the
authorization server lives here rather than in memory: server metadata,
the registered client, the PKCE code verifier, tokens and a snapshot of
the debugger state. Entries are scoped to one target server.
"""

import json
import logging
from pathlib import Path
from typing import Protocol

import anyio
from pydantic import ValidationError

from oauth_debugger.client.state import AuthDebuggerState
from oauth_debugger.shared.auth import OAuthClientInformationFull, OAuthMetadata, OAuthToken

logger = logging.getLogger(__name__)


class SessionKeys:
    """Storage keys, prefixed per target server by ``scoped_key``."""

    CODE_VERIFIER = "mcp_code_verifier"
    TOKENS = "mcp_tokens"
    CLIENT_INFORMATION = "mcp_client_information"
    SERVER_METADATA = "mcp_server_metadata"
    AUTH_DEBUGGER_STATE = "mcp_auth_debugger_state"

    ALL = (CODE_VERIFIER, TOKENS, CLIENT_INFORMATION, SERVER_METADATA, AUTH_DEBUGGER_STATE)


def scoped_key(server_url: str, key: str) -> str:
    return f"[{server_url}] {key}"


class KeyValueStorage(Protocol):
    """Protocol for string key/value backends."""

    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...


class InMemoryStorage(KeyValueStorage):
    """Backend that only lives as long as the process. Useful in tests."""

    def __init__(self):
        self.items: dict[str, str] = {}

    async def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    async def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class JSONFileStorage(KeyValueStorage):
    """Backend persisting every entry in a single JSON object on disk."""

    def __init__(self, path: str | Path):
        self.path = anyio.Path(path)
        self._lock = anyio.Lock()

    async def _read(self) -> dict[str, str]:
        if not await self.path.exists():
            return {}
        content = await self.path.read_text(encoding="utf-8")
        if not content.strip():
            return {}
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(f"Storage file {self.path} does not contain a JSON object")
        return data

    async def _write(self, data: dict[str, str]) -> None:
        await self.path.parent.mkdir(parents=True, exist_ok=True)
        await self.path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")

    async def get_item(self, key: str) -> str | None:
        async with self._lock:
            return (await self._read()).get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            data = await self._read()
            data[key] = value
            await self._write(data)

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            data = await self._read()
            if data.pop(key, None) is not None:
                await self._write(data)


class AuthStore(Protocol):
    """Protocol for the per-target persistent auth store."""

    async def get_server_metadata(self) -> OAuthMetadata | None: ...

    async def save_server_metadata(self, metadata: OAuthMetadata) -> None: ...

    async def get_client_information(self) -> OAuthClientInformationFull | None: ...

    async def save_client_information(self, client_information: OAuthClientInformationFull) -> None: ...

    async def get_code_verifier(self) -> str | None: ...

    async def save_code_verifier(self, code_verifier: str) -> None: ...

    async def get_tokens(self) -> OAuthToken | None: ...

    async def save_tokens(self, tokens: OAuthToken) -> None: ...

    async def get_debugger_state(self) -> AuthDebuggerState | None: ...

    async def save_debugger_state(self, state: AuthDebuggerState) -> None: ...

    async def clear(self) -> None: ...


class SessionAuthStore(AuthStore):
    """``AuthStore`` backed by a ``KeyValueStorage``, scoped to one server URL."""

    def __init__(self, server_url: str, storage: KeyValueStorage):
        self.server_url = server_url
        self.storage = storage

    def _key(self, key: str) -> str:
        return scoped_key(self.server_url, key)

    async def get_server_metadata(self) -> OAuthMetadata | None:
        value = await self.storage.get_item(self._key(SessionKeys.SERVER_METADATA))
        if value is None:
            return None
        return OAuthMetadata.model_validate_json(value)

    async def save_server_metadata(self, metadata: OAuthMetadata) -> None:
        await self.storage.set_item(self._key(SessionKeys.SERVER_METADATA), metadata.model_dump_json(exclude_none=True))

    async def get_client_information(self) -> OAuthClientInformationFull | None:
        value = await self.storage.get_item(self._key(SessionKeys.CLIENT_INFORMATION))
        if value is None:
            return None
        return OAuthClientInformationFull.model_validate_json(value)

    async def save_client_information(self, client_information: OAuthClientInformationFull) -> None:
        await self.storage.set_item(
            self._key(SessionKeys.CLIENT_INFORMATION), client_information.model_dump_json(exclude_none=True)
        )

    async def get_code_verifier(self) -> str | None:
        return await self.storage.get_item(self._key(SessionKeys.CODE_VERIFIER))

    async def save_code_verifier(self, code_verifier: str) -> None:
        await self.storage.set_item(self._key(SessionKeys.CODE_VERIFIER), code_verifier)

    async def get_tokens(self) -> OAuthToken | None:
        value = await self.storage.get_item(self._key(SessionKeys.TOKENS))
        if value is None:
            return None
        return OAuthToken.model_validate_json(value)

    async def save_tokens(self, tokens: OAuthToken) -> None:
        await self.storage.set_item(self._key(SessionKeys.TOKENS), tokens.model_dump_json(exclude_none=True))

    async def get_debugger_state(self) -> AuthDebuggerState | None:
        value = await self.storage.get_item(self._key(SessionKeys.AUTH_DEBUGGER_STATE))
        if value is None:
            return None
        try:
            return AuthDebuggerState.model_validate_json(value)
        except ValidationError as e:
            # a stale snapshot should not block starting over
            logger.warning(f"Discarding unreadable debugger state for {self.server_url}: {e}")
            return None

    async def save_debugger_state(self, state: AuthDebuggerState) -> None:
        await self.storage.set_item(self._key(SessionKeys.AUTH_DEBUGGER_STATE), state.model_dump_json())

    async def clear(self) -> None:
        for key in SessionKeys.ALL:
            await self.storage.remove_item(self._key(key))
        logger.debug(f"Cleared stored OAuth state for {self.server_url}")

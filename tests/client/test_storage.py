"""
Tests for the persistent auth store.
"""

import json

import pytest

from oauth_debugger.client.state import AuthDebuggerState, OAuthStep
from oauth_debugger.client.storage import JSONFileStorage, SessionAuthStore, SessionKeys, scoped_key

from ..conftest import SERVER_URL


@pytest.mark.anyio
async def test_entries_are_scoped_to_server(store, storage, oauth_metadata):
    await store.save_server_metadata(oauth_metadata)
    other = SessionAuthStore("https://other.example.com", storage)

    assert scoped_key(SERVER_URL, SessionKeys.SERVER_METADATA) in storage.items
    assert "[https://example.com] mcp_server_metadata" in storage.items
    assert await other.get_server_metadata() is None
    assert await store.get_server_metadata() == oauth_metadata


@pytest.mark.anyio
async def test_round_trips(store, oauth_metadata, client_info, tokens):
    assert await store.get_client_information() is None
    assert await store.get_code_verifier() is None
    assert await store.get_tokens() is None

    await store.save_client_information(client_info)
    await store.save_code_verifier("test_verifier")
    await store.save_tokens(tokens)

    assert await store.get_client_information() == client_info
    assert await store.get_code_verifier() == "test_verifier"
    assert await store.get_tokens() == tokens


@pytest.mark.anyio
async def test_debugger_state_round_trip(store, oauth_metadata, client_info):
    state = AuthDebuggerState(
        step=OAuthStep.AUTHORIZATION_CODE,
        auth_server_url="https://oauth.example.com",
        resource_metadata_error="No protected resource metadata found",
        oauth_metadata=oauth_metadata,
        oauth_client_info=client_info,
        authorization_url="https://oauth.example.com/authorize?client_id=test_client_id",
    )

    await store.save_debugger_state(state)

    assert await store.get_debugger_state() == state


@pytest.mark.anyio
async def test_unreadable_debugger_state_is_ignored(store, storage):
    await storage.set_item(scoped_key(SERVER_URL, SessionKeys.AUTH_DEBUGGER_STATE), '{"step": "nowhere"}')

    assert await store.get_debugger_state() is None


@pytest.mark.anyio
async def test_clear_removes_only_this_server(store, storage, oauth_metadata, client_info, tokens):
    other = SessionAuthStore("https://other.example.com", storage)
    await other.save_code_verifier("other_verifier")

    await store.save_server_metadata(oauth_metadata)
    await store.save_client_information(client_info)
    await store.save_code_verifier("test_verifier")
    await store.save_tokens(tokens)
    await store.save_debugger_state(AuthDebuggerState())

    await store.clear()

    assert list(storage.items) == [scoped_key("https://other.example.com", SessionKeys.CODE_VERIFIER)]


@pytest.mark.anyio
async def test_file_storage_survives_new_instance(tmp_path, client_info):
    path = tmp_path / "nested" / "session.json"
    await SessionAuthStore(SERVER_URL, JSONFileStorage(path)).save_client_information(client_info)

    # a fresh process sees the same data
    reopened = SessionAuthStore(SERVER_URL, JSONFileStorage(path))
    assert await reopened.get_client_information() == client_info

    on_disk = json.loads(path.read_text())
    assert list(on_disk) == ["[https://example.com] mcp_client_information"]

    await reopened.clear()
    assert json.loads(path.read_text()) == {}


@pytest.mark.anyio
async def test_file_storage_missing_file(tmp_path):
    storage = JSONFileStorage(tmp_path / "absent.json")

    assert await storage.get_item("anything") is None
    await storage.remove_item("anything")
    assert not (tmp_path / "absent.json").exists()

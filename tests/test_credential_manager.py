import asyncio
import time
from pathlib import Path

import httpx
import pytest
from cryptography.fernet import Fernet

from jagex_oauth.credential_manager import CredentialManager, RefreshStatus
from jagex_oauth.errors import NeedsLoginError
from jagex_oauth.models import TokenResponse
from utils.storage import EncryptedCredentialStore, StoreUnavailableError

NOW = 1_700_000_000


def _manager(store: EncryptedCredentialStore, handler=None, now: float = NOW) -> CredentialManager:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return CredentialManager(store=store, http_client=client, clock=lambda: now)


def _refreshed(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"access_token": "fresh-access", "expires_in": 3600})


def test_store_tokens_keeps_access_token_in_memory(store: EncryptedCredentialStore) -> None:
    manager = _manager(store)
    manager.store_tokens(
        TokenResponse(access_token="access-secret", refresh_token="refresh", access_token_expiry=NOW + 3600)
    )

    assert manager.get_access_token() == "access-secret"
    assert store.read() == {"refresh_token": "refresh", "access_token_expiry": NOW + 3600}
    assert "access_token" not in store.read()


def test_failed_write_leaves_no_access_token_in_memory(tmp_path: Path) -> None:
    broken = EncryptedCredentialStore(credential_file=str(tmp_path / "credentials.enc"), key="not-a-fernet-key")
    manager = _manager(broken)

    with pytest.raises(StoreUnavailableError):
        manager.store_tokens(TokenResponse(access_token="access-secret", refresh_token="r", access_token_expiry=NOW + 3600))

    assert manager.get_access_token() is None


def test_store_tokens_can_replace_session(store: EncryptedCredentialStore) -> None:
    manager = _manager(store)
    manager.store_game_session("old-session", "c1", "Zezima")
    manager.store_tokens(TokenResponse(access_token="a", refresh_token="r", access_token_expiry=NOW), replace_session=True)

    assert store.read() == {"refresh_token": "r", "access_token_expiry": NOW}


def test_credentials_accessors(store: EncryptedCredentialStore) -> None:
    manager = _manager(store)
    assert manager.get_credentials() is None
    assert manager.has_credentials() is False
    assert manager.get_display_name() is None
    assert manager.is_store_available() is True

    manager.store_tokens(TokenResponse(access_token="a", refresh_token="r", access_token_expiry=NOW))
    manager.store_game_session("session", "c1", "Zezima")

    credentials = manager.get_credentials()
    assert credentials.refresh_token == "r"
    assert credentials.session_id == "session"
    assert credentials.is_legacy is False
    assert manager.has_credentials() is True
    assert manager.get_display_name() == "Zezima"


@pytest.mark.asyncio
async def test_valid_token_is_not_refreshed(store: EncryptedCredentialStore) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    store.write_group({"refresh_token": "r", "access_token_expiry": NOW + 600})
    result = await _manager(store, handler).refresh_if_needed()
    assert result.status == RefreshStatus.VALID


@pytest.mark.asyncio
async def test_token_inside_margin_is_refreshed(store: EncryptedCredentialStore) -> None:
    store.write_group({"refresh_token": "r", "access_token_expiry": NOW + 30})
    manager = _manager(store, _refreshed)

    result = await manager.refresh_if_needed()

    assert result.status == RefreshStatus.REFRESHED
    assert manager.get_access_token() == "fresh-access"
    assert store.get("refresh_token") == "r"
    assert store.get("access_token_expiry") >= int(time.time()) + 3500


@pytest.mark.asyncio
async def test_force_refresh(store: EncryptedCredentialStore) -> None:
    store.write_group({"refresh_token": "r", "access_token_expiry": NOW + 3600})
    result = await _manager(store, _refreshed).refresh_if_needed(force=True)
    assert result.status == RefreshStatus.REFRESHED


@pytest.mark.asyncio
async def test_missing_refresh_token_needs_login(store: EncryptedCredentialStore) -> None:
    result = await _manager(store, _refreshed).refresh_if_needed()
    assert result.status == RefreshStatus.NEEDS_LOGIN
    assert isinstance(result.error, NeedsLoginError)


@pytest.mark.asyncio
async def test_rejected_refresh_token_needs_login(store: EncryptedCredentialStore) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid_grant"})

    store.write_group({"refresh_token": "dead", "access_token_expiry": 0})
    result = await _manager(store, handler).refresh_if_needed()
    assert result.status == RefreshStatus.NEEDS_LOGIN


@pytest.mark.asyncio
async def test_server_error_is_network_error(store: EncryptedCredentialStore) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="maintenance")

    store.write_group({"refresh_token": "r", "access_token_expiry": 0})
    result = await _manager(store, handler).refresh_if_needed()
    assert result.status == RefreshStatus.NETWORK_ERROR
    assert store.get("refresh_token") == "r"


@pytest.mark.asyncio
async def test_structured_error_description_is_network_error(store: EncryptedCredentialStore) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": {"reason": "revoked"}})

    store.write_group({"refresh_token": "r", "access_token_expiry": 0})
    result = await _manager(store, handler).refresh_if_needed()

    assert result.status == RefreshStatus.NETWORK_ERROR
    assert result.error.code == "invalid_grant"
    assert result.error.description is None


@pytest.mark.asyncio
async def test_transport_failure_is_network_error(store: EncryptedCredentialStore) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    store.write_group({"refresh_token": "r", "access_token_expiry": 0})
    result = await _manager(store, handler).refresh_if_needed()
    assert result.status == RefreshStatus.NETWORK_ERROR


@pytest.mark.asyncio
async def test_unreadable_store_is_reported(keyed_store: EncryptedCredentialStore) -> None:
    keyed_store.write_group({"refresh_token": "r", "access_token_expiry": 0})
    wrong_key = EncryptedCredentialStore(
        credential_file=str(keyed_store.credential_file),
        key=Fernet.generate_key().decode("ascii"),
    )
    manager = _manager(wrong_key, _refreshed)

    result = await manager.refresh_if_needed()
    assert result.status == RefreshStatus.STORE_UNAVAILABLE
    assert manager.is_store_available() is True
    with pytest.raises(StoreUnavailableError):
        manager.get_credentials()


@pytest.mark.asyncio
async def test_concurrent_refreshes_share_one_request(store: EncryptedCredentialStore) -> None:
    calls = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        await asyncio.sleep(0.05)
        return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})

    store.write_group({"refresh_token": "r", "access_token_expiry": 0})
    manager = CredentialManager(
        store=store,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    first, second = await asyncio.gather(manager.refresh_if_needed(), manager.refresh_if_needed())

    assert len(calls) == 1
    assert {first.status, second.status} == {RefreshStatus.REFRESHED, RefreshStatus.VALID}


@pytest.mark.asyncio
async def test_refresh_finishing_after_clear_is_discarded(store: EncryptedCredentialStore) -> None:
    started = asyncio.Event()
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        started.set()
        await release.wait()
        return httpx.Response(200, json={"access_token": "late", "refresh_token": "late-refresh"})

    store.write_group({"refresh_token": "r", "access_token_expiry": 0})
    manager = _manager(store, handler)

    refresh = asyncio.ensure_future(manager.refresh_if_needed())
    await started.wait()
    assert manager.clear_credentials() is True
    release.set()
    result = await refresh

    assert result.status == RefreshStatus.NEEDS_LOGIN
    assert manager.get_access_token() is None
    assert store.read() == {}


def test_clear_credentials(store: EncryptedCredentialStore) -> None:
    manager = _manager(store)
    manager.store_tokens(TokenResponse(access_token="a", refresh_token="r", access_token_expiry=NOW))

    assert manager.clear_credentials() is True

    assert manager.get_access_token() is None
    assert manager.get_credentials() is None
    assert not store.credential_file.exists()


def test_clear_credentials_when_the_file_cannot_be_removed(store: EncryptedCredentialStore, monkeypatch: pytest.MonkeyPatch) -> None:
    manager = _manager(store)
    manager.store_tokens(TokenResponse(access_token="a", refresh_token="r", access_token_expiry=NOW))
    monkeypatch.setattr(store, "clear", lambda: False)

    assert manager.clear_credentials() is False
    assert manager.get_access_token() is None


def test_launch_environment_for_jagex_account(store: EncryptedCredentialStore) -> None:
    manager = _manager(store)
    manager.store_tokens(TokenResponse(access_token="a", refresh_token="r", access_token_expiry=NOW))
    manager.store_game_session("session-1", "1001", "Zezima")

    assert manager.launch_environment() == {
        "JX_SESSION_ID": "session-1",
        "JX_CHARACTER_ID": "1001",
        "JX_DISPLAY_NAME": "Zezima",
    }


def test_launch_environment_for_legacy_account(store: EncryptedCredentialStore) -> None:
    manager = _manager(store)
    manager.store_tokens(TokenResponse(access_token="legacy-access", refresh_token="legacy-refresh", access_token_expiry=NOW))

    assert manager.launch_environment() == {
        "JX_ACCESS_TOKEN": "legacy-access",
        "JX_REFRESH_TOKEN": "legacy-refresh",
    }


def test_launch_environment_needs_login(store: EncryptedCredentialStore) -> None:
    manager = _manager(store)
    with pytest.raises(NeedsLoginError):
        manager.launch_environment()

    # Legacy refresh token on disk but no access token in this process
    store.write_group({"refresh_token": "r", "access_token_expiry": NOW})
    with pytest.raises(NeedsLoginError):
        manager.launch_environment()

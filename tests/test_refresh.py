"""Tests for access token renewal."""

import asyncio

import httpx
import pytest

from fake_billing_api import mint_token
from invokta_session.errors import MalformedResponseError, NoRefreshTokenError, RenewalRejectedError
from invokta_session.refresh import RefreshCoordinator
from invokta_session.session_data import CredentialPair


@pytest.fixture
def refresher(http, store, test_settings):
    return RefreshCoordinator(http, store, test_settings)


def seed(backend, store, expires_in=-60):
    pair = backend.issue_pair("ada@example.com", expires_in=expires_in)
    store.save_credentials(CredentialPair(access_token=pair["accessToken"], refresh_token=pair["refreshToken"]))
    store.save_envelope({"authenticationData": pair, "payload": {}})
    return pair


async def test_refresh_persists_rotated_pair(backend, store, refresher):
    old = seed(backend, store)

    token = await refresher.refresh()

    assert token == store.access_token
    assert token != old["accessToken"]
    assert store.refresh_token not in (None, old["refreshToken"])
    assert backend.refresh_calls == 1


async def test_refresh_token_sent_in_dedicated_header_only(backend, store, refresher):
    old = seed(backend, store)

    await refresher.refresh()

    headers = backend.refresh_request_headers[0]
    assert headers["x-refresh-token"] == old["refreshToken"]
    assert "authorization" not in headers


async def test_unrotated_refresh_token_is_kept(backend, store, refresher):
    backend.rotate_refresh_tokens = False
    old = seed(backend, store)

    await refresher.refresh()

    assert store.refresh_token == old["refreshToken"]


async def test_concurrent_callers_share_one_renewal(backend, store, refresher):
    seed(backend, store)

    tokens = await asyncio.gather(*(refresher.refresh() for _ in range(10)))

    assert backend.refresh_calls == 1
    assert refresher.renewals_started == 1
    assert len(set(tokens)) == 1
    assert not refresher.in_flight


async def test_later_renewal_starts_a_new_call(backend, store, refresher):
    seed(backend, store)

    first = await refresher.refresh()
    second = await refresher.refresh()

    assert backend.refresh_calls == 2
    assert first != second


async def test_cancelled_waiter_does_not_cancel_shared_renewal(backend, store, refresher):
    seed(backend, store)

    waiter = asyncio.ensure_future(refresher.refresh())
    other = asyncio.ensure_future(refresher.refresh())
    await asyncio.sleep(0)
    waiter.cancel()

    token = await other
    assert token == store.access_token
    assert backend.refresh_calls == 1


async def test_missing_refresh_token_tears_down(backend, store, refresher):
    store.save_credentials(CredentialPair(access_token=mint_token(expires_in=-60)))
    store.save_envelope({"payload": {}})
    torn_down = []
    refresher.add_teardown_listener(torn_down.append)

    with pytest.raises(NoRefreshTokenError):
        await refresher.refresh()

    assert backend.refresh_calls == 0
    assert store.access_token is None
    assert store.load_envelope() is None
    assert len(torn_down) == 1
    assert isinstance(torn_down[0], NoRefreshTokenError)


async def test_rejected_renewal_clears_everything(backend, store, refresher):
    seed(backend, store)
    backend.refresh_status = 500
    torn_down = []
    refresher.add_teardown_listener(torn_down.append)

    with pytest.raises(RenewalRejectedError) as exc_info:
        await refresher.refresh()

    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "Refresh token expired"
    assert store.load_credentials() is None
    assert store.load_envelope() is None
    assert [e.message for e in torn_down] == ["Refresh token expired"]
    assert backend.refresh_calls == 1


async def test_unsuccessful_envelope_is_rejected(backend, store, refresher):
    seed(backend, store)
    backend.refresh_body = {"success": False, "message": "Session revoked"}

    with pytest.raises(RenewalRejectedError, match="Session revoked"):
        await refresher.refresh()
    assert store.load_credentials() is None


async def test_unwrapped_response_is_accepted(backend, store, refresher):
    seed(backend, store)
    backend.refresh_body = {"authenticationData": {"accessToken": "new-access", "refreshToken": "new-refresh"}}

    assert await refresher.refresh() == "new-access"
    assert store.refresh_token == "new-refresh"


async def test_body_without_access_token_is_malformed(backend, store, refresher):
    seed(backend, store)
    backend.refresh_body = {"success": True, "data": {"authenticationData": {"refreshToken": "r"}}}

    with pytest.raises(MalformedResponseError):
        await refresher.refresh()
    assert store.load_credentials() is None


async def test_reused_refresh_token_is_rejected_by_backend(backend, store, refresher):
    """Why single flight matters: the second use of a rotated token fails."""
    old = seed(backend, store)
    await refresher.refresh()

    store.save_credentials(CredentialPair(access_token=store.access_token, refresh_token=old["refreshToken"]))
    with pytest.raises(RenewalRejectedError, match="Invalid refresh token"):
        await refresher.refresh()


async def test_network_failure_is_fatal(store, test_settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver")
    store.save_credentials(CredentialPair(access_token="a", refresh_token="r"))
    refresher = RefreshCoordinator(http, store, test_settings)

    with pytest.raises(RenewalRejectedError):
        await refresher.refresh()
    assert store.load_credentials() is None
    await http.aclose()


async def test_failing_listener_does_not_mask_renewal_error(backend, store, refresher):
    seed(backend, store)
    backend.refresh_status = 500
    notified = []

    def broken(error):
        raise RuntimeError("listener blew up")

    refresher.add_teardown_listener(broken)
    refresher.add_teardown_listener(notified.append)

    with pytest.raises(RenewalRejectedError, match="Refresh token expired"):
        await refresher.refresh()
    assert len(notified) == 1
    assert store.load_credentials() is None

"""Tests for access-token refresh and the Google token endpoint client."""

from __future__ import annotations

from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from fakes import NOW, FrozenClock, StubRefresher, make_credential
from lead_intake.auth import TokenStoreAccessor
from lead_intake.core.config import GoogleSettings
from lead_intake.core.interfaces import CredentialMissing, RefreshFailed
from lead_intake.storage import SqliteCrmRepository
from lead_intake.transport import GoogleOAuthClient, TokenGrant


def test_valid_token_is_returned_without_refresh(
    repository: SqliteCrmRepository, clock: FrozenClock
) -> None:
    repository.upsert_credential(make_credential(token_expiry=NOW + timedelta(hours=1)))
    refresher = StubRefresher()
    tokens = TokenStoreAccessor(repository, refresher, clock=clock)

    assert tokens.get_valid_token("M1@example.com") == "stored-token"
    assert refresher.calls == []


def test_token_within_skew_is_refreshed_and_saved(
    repository: SqliteCrmRepository, clock: FrozenClock
) -> None:
    repository.upsert_credential(make_credential(token_expiry=NOW + timedelta(seconds=30)))
    refresher = StubRefresher(TokenGrant(access_token="fresh-token", expires_in=3600))
    tokens = TokenStoreAccessor(repository, refresher, skew_seconds=60, clock=clock)

    assert tokens.get_valid_token("m1@example.com") == "fresh-token"
    assert refresher.calls == ["refresh-1"]

    stored = repository.get_credential("user-1")
    assert stored is not None
    assert stored.access_token == "fresh-token"
    assert stored.refresh_token == "refresh-1"
    assert stored.token_expiry == NOW + timedelta(seconds=3600)


def test_rotated_refresh_token_replaces_stored_one(
    repository: SqliteCrmRepository, clock: FrozenClock
) -> None:
    credential = make_credential(token_expiry=NOW - timedelta(minutes=5))
    repository.upsert_credential(credential)
    refresher = StubRefresher(
        TokenGrant(access_token="fresh-token", expires_in=600, refresh_token="refresh-2")
    )

    refreshed = TokenStoreAccessor(repository, refresher, clock=clock).ensure_valid(
        credential
    )

    assert refreshed.refresh_token == "refresh-2"
    stored = repository.get_credential("user-1")
    assert stored is not None
    assert stored.refresh_token == "refresh-2"


def test_unknown_mailbox_raises_credential_missing(
    repository: SqliteCrmRepository, clock: FrozenClock
) -> None:
    tokens = TokenStoreAccessor(repository, StubRefresher(), clock=clock)
    with pytest.raises(CredentialMissing):
        tokens.get_valid_token("nobody@example.com")


def test_rejected_refresh_leaves_credential_untouched(
    repository: SqliteCrmRepository, clock: FrozenClock
) -> None:
    repository.upsert_credential(make_credential(token_expiry=NOW - timedelta(hours=1)))
    refresher = StubRefresher(error=RefreshFailed("invalid_grant"))
    tokens = TokenStoreAccessor(repository, refresher, clock=clock)

    with pytest.raises(RefreshFailed):
        tokens.get_valid_token("m1@example.com")

    stored = repository.get_credential("user-1")
    assert stored is not None
    assert stored.access_token == "stored-token"


def _google_settings() -> GoogleSettings:
    return GoogleSettings(client_id="client-id", client_secret="client-secret")


def test_oauth_client_posts_refresh_grant() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"access_token": "ya29.new", "expires_in": 1800})

    with httpx.Client(transport=httpx.MockTransport(handler)) as http_client:
        grant = GoogleOAuthClient(_google_settings(), http_client=http_client).refresh(
            "refresh-1"
        )

    assert grant == TokenGrant(access_token="ya29.new", expires_in=1800)
    form = parse_qs(seen[0].content.decode("utf-8"))
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["refresh-1"]
    assert form["client_id"] == ["client-id"]


def test_oauth_client_raises_on_denial() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Token revoked"}
        )

    with httpx.Client(transport=httpx.MockTransport(handler)) as http_client:
        client = GoogleOAuthClient(_google_settings(), http_client=http_client)
        with pytest.raises(RefreshFailed, match="invalid_grant"):
            client.refresh("refresh-1")


def test_oauth_client_raises_on_transport_error_and_bad_body() -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    with httpx.Client(transport=httpx.MockTransport(unreachable)) as http_client:
        with pytest.raises(RefreshFailed):
            GoogleOAuthClient(_google_settings(), http_client=http_client).refresh("r")

    def garbage(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    with httpx.Client(transport=httpx.MockTransport(garbage)) as http_client:
        with pytest.raises(RefreshFailed):
            GoogleOAuthClient(_google_settings(), http_client=http_client).refresh("r")


def test_oauth_client_requires_client_credentials() -> None:
    with pytest.raises(RefreshFailed):
        GoogleOAuthClient(GoogleSettings()).refresh("refresh-1")

"""Access-token lookup and refresh for connected mailboxes."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Protocol

from ..core.datetime_utils import ensure_utc, utcnow
from ..core.interfaces import CredentialMissing, CredentialStore, RefreshFailed
from ..core.models import MailboxCredential
from ..transport.payloads import TokenGrant

LOGGER = logging.getLogger(__name__)


class TokenRefresher(Protocol):
    """Identity provider capable of a refresh-token exchange."""

    def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange ``refresh_token`` for a new grant."""
        raise NotImplementedError


class TokenStoreAccessor:
    """Hand out valid bearer tokens, refreshing expired ones on demand."""

    def __init__(
        self,
        store: CredentialStore,
        refresher: TokenRefresher,
        *,
        skew_seconds: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._refresher = refresher
        self._skew = timedelta(seconds=skew_seconds)
        self._clock = clock

    def get_valid_token(self, mailbox_id: str) -> str:
        """Return a usable access token for the Gmail address ``mailbox_id``."""
        credential = self._store.get_credential_by_email(mailbox_id)
        if credential is None:
            raise CredentialMissing(f"No credential stored for {mailbox_id}")
        return self.ensure_valid(credential).access_token

    def ensure_valid(self, credential: MailboxCredential) -> MailboxCredential:
        """Return ``credential`` or a refreshed copy whose token is still valid."""
        now = self._clock()
        expiry = ensure_utc(credential.token_expiry)
        if expiry is not None and expiry > now + self._skew:
            return credential
        if not credential.refresh_token:
            raise RefreshFailed(f"No refresh token stored for {credential.gmail_email}")

        LOGGER.info("Refreshing access token for %s", credential.gmail_email)
        grant = self._refresher.refresh(credential.refresh_token)
        new_expiry = now + timedelta(seconds=grant.expires_in)
        # A rotated refresh token only replaces the stored one when present.
        rotated = grant.refresh_token or None
        self._store.save_access_token(
            credential.user_id,
            access_token=grant.access_token,
            token_expiry=new_expiry,
            refresh_token=rotated,
        )
        return replace(
            credential,
            access_token=grant.access_token,
            token_expiry=new_expiry,
            refresh_token=rotated or credential.refresh_token,
            updated_at=now,
        )


__all__ = ["TokenRefresher", "TokenStoreAccessor"]

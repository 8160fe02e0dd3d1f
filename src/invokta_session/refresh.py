# src/invokta_session/refresh.py

import asyncio
import logging
from typing import Callable, List, Optional

import httpx

from .auth_utils import extract_credentials, redact_token
from .config import Settings, settings as default_settings
from .errors import MalformedResponseError, NoRefreshTokenError, RenewalRejectedError, SessionError
from .session_data import CredentialPair
from .storage import CredentialStore

logger = logging.getLogger(__name__)

TeardownListener = Callable[[SessionError], None]


class RefreshCoordinator:
    """
    Renews the access token with the refresh token.

    At most one renewal is ever in flight: many backends invalidate a refresh
    token on first use, so a second parallel renewal with the same token would
    fail and log the user out for nothing. Callers arriving while a renewal is
    outstanding await that same renewal.

    Any failure is fatal for the session: stored credentials are dropped,
    teardown listeners run, and the error propagates.
    """

    def __init__(self, http: httpx.AsyncClient, store: CredentialStore, cfg: Settings = default_settings):
        self.http = http
        self.store = store
        self.cfg = cfg
        self._pending: Optional[asyncio.Task] = None
        self._teardown_listeners: List[TeardownListener] = []
        self.renewals_started = 0

    def add_teardown_listener(self, listener: TeardownListener) -> None:
        self._teardown_listeners.append(listener)

    @property
    def in_flight(self) -> bool:
        return self._pending is not None

    async def refresh(self) -> str:
        if self._pending is None:
            self.renewals_started += 1
            self._pending = asyncio.ensure_future(self._run())
        else:
            logger.debug("REFRESH: Renewal already in flight, joining it.")
        # Shielded so one cancelled caller does not cancel everyone's renewal.
        return await asyncio.shield(self._pending)

    async def _run(self) -> str:
        try:
            return await self._renew()
        except SessionError as e:
            self._teardown(e)
            raise
        except httpx.HTTPError as e:
            error = RenewalRejectedError(f"Token refresh failed: {e}")
            self._teardown(error)
            raise error from e
        finally:
            self._pending = None

    async def _renew(self) -> str:
        refresh_token = self.store.refresh_token
        if not refresh_token:
            logger.info("REFRESH: No refresh token in storage.")
            raise NoRefreshTokenError()

        logger.debug("REFRESH: Renewing access token with refresh token %s", redact_token(refresh_token))
        response = await self.http.post(
            self.cfg.REFRESH_TOKEN_PATH,
            json={},
            headers={self.cfg.REFRESH_TOKEN_HEADER: refresh_token},
        )
        body = _json_or_none(response)

        if not response.is_success:
            message = _message_from(body) or f"Token refresh failed with status {response.status_code}"
            logger.warning("REFRESH: Renewal rejected: %s - %s", response.status_code, message)
            raise RenewalRejectedError(message, status_code=response.status_code)

        if not isinstance(body, dict):
            raise MalformedResponseError("Invalid token response - expected a JSON object")
        if "success" in body:
            if not body.get("success") or not body.get("data"):
                raise RenewalRejectedError(_message_from(body) or "Token refresh failed",
                                           status_code=response.status_code)
            body = body["data"]

        pair = extract_credentials(body)
        if not pair.refresh_token:
            # Not rotated: keep using the one we have.
            pair = CredentialPair(access_token=pair.access_token, refresh_token=refresh_token)
        self.store.save_credentials(pair)
        logger.info("REFRESH: Access token renewed (%s)", redact_token(pair.access_token))
        return pair.access_token

    def _teardown(self, error: SessionError) -> None:
        logger.warning("REFRESH: Renewal failed (%s), clearing stored session.", error.message)
        self.store.clear_credentials()
        self.store.clear_envelope()
        for listener in list(self._teardown_listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("REFRESH: Teardown listener %r failed.", listener)


def _json_or_none(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return None


def _message_from(body) -> Optional[str]:
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail")
        if isinstance(message, str) and message:
            return message
    return None

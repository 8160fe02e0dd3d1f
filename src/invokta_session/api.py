# src/invokta_session/api.py

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional

import httpx

from .auth_utils import is_token_expired, redact_token
from .config import Settings, settings as default_settings
from .errors import ApiError, ServiceUnavailableError
from .refresh import RefreshCoordinator
from .storage import CredentialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Call:
    """
    One logical request. Retrying produces a new Call with a higher attempt
    count instead of flagging the original.
    """
    method: str
    path: str
    params: Optional[Mapping[str, Any]] = None
    json: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    authenticated: bool = True
    attempt: int = 0
    bearer: Optional[str] = None

    def retried(self, bearer: str) -> "Call":
        return replace(self, attempt=self.attempt + 1, bearer=bearer)


class ApiClient:
    """
    The one transport every billing API call goes through.

    Before each call the access token is checked and, if expired, renewed
    through the RefreshCoordinator before being attached as bearer. After each
    call the JSON body is returned on success; a 401 triggers one renewal and
    one retry of the same call.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        store: CredentialStore,
        refresher: RefreshCoordinator,
        cfg: Settings = default_settings,
    ):
        self.http = http
        self.store = store
        self.refresher = refresher
        self.cfg = cfg

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()

    # --- Public helpers ---

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        call = Call(
            method=method.upper(),
            path=path,
            params=params,
            json=json,
            headers=dict(headers or {}),
            authenticated=not self.cfg.is_public_path(path),
        )
        return await self.dispatch(call)

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request("PUT", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)

    # --- Pipeline ---

    async def dispatch(self, call: Call) -> Any:
        headers = await self._before_request(call)
        try:
            response = await self.http.request(
                call.method,
                call.path,
                params=call.params,
                json=call.json,
                headers=headers,
            )
        except httpx.RequestError as e:
            logger.error("API: %s %s - Request error: %s", call.method, call.path, e)
            raise ServiceUnavailableError() from e
        return await self._after_response(call, response)

    async def _before_request(self, call: Call) -> Dict[str, str]:
        # Never let a caller-supplied credential through; bearer is ours to set.
        blocked = {self.cfg.REFRESH_TOKEN_HEADER.lower(), self.cfg.AUTHORIZATION_HEADER.lower()}
        headers = {k: v for k, v in call.headers.items() if k.lower() not in blocked}
        if not call.authenticated:
            return headers

        token = call.bearer
        if token is None:
            token = self.store.access_token
            if token and is_token_expired(token, self.cfg.EXPIRY_SKEW_SECONDS):
                logger.debug("API: %s %s - Access token %s expired, renewing before dispatch.",
                             call.method, call.path, redact_token(token))
                # A failed renewal aborts this call; the coordinator already tore the session down.
                token = await self.refresher.refresh()

        if token:
            headers[self.cfg.AUTHORIZATION_HEADER] = f"Bearer {token}"
        return headers

    async def _after_response(self, call: Call, response: httpx.Response) -> Any:
        if response.is_success:
            return _payload(response)

        if response.status_code == 401 and call.authenticated and call.attempt == 0:
            logger.info("API: %s %s - 401, renewing and retrying once.", call.method, call.path)
            token = await self.refresher.refresh()
            return await self.dispatch(call.retried(bearer=token))

        message = _error_message(response)
        logger.debug("API: %s %s - %s %s", call.method, call.path, response.status_code, message)
        raise ApiError(response.status_code, message)


def _payload(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "detail", "error_description", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return response.reason_phrase or f"Request failed with status {response.status_code}"

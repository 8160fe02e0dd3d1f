# src/invokta_session/controller.py

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

import httpx
from jose import JWTError

from .api import ApiClient
from .auth_utils import (
    build_federated_login_url,
    decode_claims,
    extract_credentials,
    is_token_expired,
    parse_federated_payload,
    redact_token,
    unwrap_api_response,
)
from .config import Settings, settings as default_settings
from .errors import (
    SERVICE_UNAVAILABLE_MESSAGE,
    AuthenticationError,
    BackendUnavailableError,
    FederatedReplayError,
    MalformedResponseError,
    ServiceUnavailableError,
    SessionError,
)
from .identity import normalize
from .passwords import password_strength, strength_label
from .refresh import RefreshCoordinator
from .session_data import Business, SessionPhase, SessionState, UserProfile
from .storage import CredentialStore

logger = logging.getLogger(__name__)

# A navigator may be sync, or return an awaitable that settles once the route is shown
Navigator = Callable[[str], Optional[Awaitable[None]]]
StateListener = Callable[[SessionState], None]


class SessionController:
    """
    Owns the session: login, registration, federated login, logout and the
    post-login business gate. The only writer of SessionState; everyone else
    reads `state` or subscribes to changes.
    """

    def __init__(
        self,
        cfg: Settings = default_settings,
        store: Optional[CredentialStore] = None,
        http: Optional[httpx.AsyncClient] = None,
        navigate: Optional[Navigator] = None,
    ):
        self.cfg = cfg
        self.store = store if store is not None else CredentialStore(cfg=cfg)
        self.http = http if http is not None else httpx.AsyncClient(base_url=cfg.API_ROOT)
        self.refresher = RefreshCoordinator(self.http, self.store, cfg)
        self.refresher.add_teardown_listener(self._on_session_expired)
        self.api = ApiClient(self.http, self.store, self.refresher, cfg)
        self.route: Optional[str] = None
        self._navigate = navigate
        self._navigations: Set[asyncio.Future] = set()
        self._state = SessionState()
        self._listeners: List[StateListener] = []
        self.loading_watchdog: Optional[asyncio.Task] = None

    async def aclose(self) -> None:
        await self.http.aclose()

    # --- State ---

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _replace_state(self, state: SessionState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def _set_state(self, **changes: Any) -> None:
        self._replace_state(self._state.model_copy(update=changes))

    def _go(self, route: str) -> Optional[asyncio.Future]:
        """Returns the pending navigation when the navigator is async, else None."""
        logger.debug("SESSION: Navigating to %s", route)
        self.route = route
        if self._navigate is None:
            return None
        result = self._navigate(route)
        if not inspect.isawaitable(result):
            return None
        navigation = asyncio.ensure_future(result)
        self._navigations.add(navigation)
        navigation.add_done_callback(self._navigations.discard)
        return navigation

    def _on_session_expired(self, error: SessionError) -> None:
        logger.warning("SESSION: Token renewal failed (%s). Session cleared, sign-in required.", error.message)
        self._replace_state(SessionState(error=error.message, is_loading=self._state.is_loading))
        self._go(self.cfg.LOGIN_ROUTE)

    # --- Start-up ---

    async def check_backend_availability(self) -> bool:
        """Any HTTP answer counts as reachable; only transport failures do not."""
        try:
            await self.http.get(self.cfg.LIVENESS_PATH, timeout=self.cfg.LIVENESS_TIMEOUT_SECONDS)
            return True
        except httpx.RequestError as e:
            logger.error("SESSION: Backend availability check failed: %s", e)
            return False

    async def initialize(self) -> SessionState:
        self._set_state(phase=SessionPhase.INITIALIZING, is_loading=True, error=None)
        try:
            await self._restore_session()
        finally:
            self._set_state(is_loading=False)
        return self._state

    async def _restore_session(self) -> None:
        if not await self.check_backend_availability():
            self.logout()
            self._set_state(error=SERVICE_UNAVAILABLE_MESSAGE)
            raise BackendUnavailableError()

        token = self.store.access_token
        if not token:
            self._set_state(phase=SessionPhase.UNAUTHENTICATED)
            return

        try:
            if is_token_expired(token, self.cfg.EXPIRY_SKEW_SECONDS):
                logger.info("SESSION: Stored access token expired, renewing.")
                token = await self.refresher.refresh()
            self._restore_from_token(token)
        except SessionError as e:
            logger.warning("SESSION: Could not restore stored session: %s", e.message)
            self.logout()
            self._set_state(error=e.message)
        except JWTError as e:
            logger.warning("SESSION: Stored access token is unreadable: %s", e)
            self.logout()
            self._set_state(error="Stored session could not be restored")

    def _restore_from_token(self, token: str) -> None:
        claims = decode_claims(token)
        envelope = self.store.load_envelope()
        auth_response = unwrap_api_response(envelope) if envelope else None
        user = normalize(claims, auth_response)
        self._set_state(user=user, session_envelope=auth_response, phase=SessionPhase.AUTHENTICATED)
        logger.info("SESSION: Restored session for %s", user.email if user else "unknown user")

    # --- Password login and registration ---

    @staticmethod
    def _auth_response_from(body: Any, default_message: str) -> Dict[str, Any]:
        message = body.get("message") if isinstance(body, dict) else None
        if not isinstance(body, dict) or not body.get("success"):
            raise AuthenticationError(message or default_message)
        auth_response = body.get("data")
        if not isinstance(auth_response, dict) or not auth_response.get("authenticationData"):
            raise AuthenticationError(message or default_message)
        return auth_response

    async def _authenticate(self, path: str, fields: Mapping[str, Any], default_message: str) -> str:
        self._set_state(error=None, is_loading=True)
        try:
            body = await self.api.post(path, json=dict(fields))
            auth_response = self._auth_response_from(body, default_message)
            return self.handle_auth_response(auth_response)
        except ServiceUnavailableError as e:
            self._set_state(error=e.message)
            raise
        except AuthenticationError as e:
            self._set_state(error=e.message)
            raise
        except SessionError as e:
            message = e.message or default_message
            self._set_state(error=message)
            raise AuthenticationError(message) from e
        finally:
            self._set_state(is_loading=False)

    async def login(self, email: str, password: str) -> str:
        logger.info("SESSION: Login attempt for %s", email)
        return await self._authenticate(self.cfg.LOGIN_PATH, {"email": email, "password": password}, "Login failed")

    async def register(self, fields: Mapping[str, Any]) -> str:
        if self.cfg.MIN_PASSWORD_STRENGTH:
            score = password_strength(str(fields.get("password") or ""))
            if score < self.cfg.MIN_PASSWORD_STRENGTH:
                message = f"Password is too weak ({strength_label(score)})"
                self._set_state(error=message)
                raise AuthenticationError(message)
        self.store.clear_credentials()
        return await self._authenticate(self.cfg.REGISTER_PATH, fields, "Registration failed")

    # --- Federated login ---

    def federated_login_url(self, redirect_uri: Optional[str] = None) -> str:
        return build_federated_login_url(redirect_uri, cfg=self.cfg)

    async def _loading_watchdog(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        if self._state.is_loading:
            logger.warning("SESSION: Loading flag still set after %.1fs, resetting it.", seconds)
            self._set_state(is_loading=False)

    async def complete_federated_login(self, payload: Any) -> str:
        """
        Consumes the payload handed to the federated login callback and waits
        for the resulting navigation. The loading flag is reset by a watchdog
        if the flow hangs, and always once the call finishes.
        """
        watchdog = asyncio.ensure_future(self._loading_watchdog(self.cfg.FEDERATED_LOGIN_WATCHDOG_SECONDS))
        self.loading_watchdog = watchdog
        self._set_state(is_loading=True, error=None)
        try:
            if not payload:
                raise AuthenticationError("Authentication response missing")

            replay_key = payload if isinstance(payload, str) else json.dumps(payload, sort_keys=True, default=str)
            if self.store.is_processed(replay_key):
                raise FederatedReplayError("Authentication response already processed")
            self.store.mark_processed(replay_key)

            auth_response = parse_federated_payload(payload)
            extract_credentials(auth_response)
            if not isinstance(auth_response.get("payload"), Mapping):
                raise MalformedResponseError("Failed to extract user data from authentication response")

            route = self._accept_auth_response(auth_response)
            navigation = self._go(route)
            if navigation is not None:
                await navigation
            return route
        except SessionError as e:
            logger.error("SESSION: Federated login failed: %s", e.message)
            self._set_state(error=e.message)
            if self.route != self.cfg.LOGIN_ROUTE:
                self._go(self.cfg.LOGIN_ROUTE)
            raise
        finally:
            watchdog.cancel()
            self._set_state(is_loading=False)

    # --- Shared auth response handling ---

    def _identity_from(self, auth_response: Mapping[str, Any], access_token: str) -> Optional[Mapping[str, Any]]:
        payload = auth_response.get("payload")
        if isinstance(payload, Mapping):
            return payload
        top_level = {k: v for k, v in auth_response.items() if k not in ("authenticationData", "payload")}
        if top_level:
            return top_level
        try:
            return decode_claims(access_token)
        except JWTError:
            return None

    def handle_auth_response(self, auth_response: Dict[str, Any]) -> str:
        """
        Persists the credentials from a login/registration response, builds the
        profile and routes the user. Returns the route taken.
        """
        route = self._accept_auth_response(auth_response)
        self._go(route)
        return route

    def _accept_auth_response(self, auth_response: Dict[str, Any]) -> str:
        try:
            pair = extract_credentials(auth_response)
            identity = self._identity_from(auth_response, pair.access_token)
            if identity is None:
                raise MalformedResponseError("Failed to extract user data from authentication response")
            user = normalize(identity, auth_response)
        except SessionError as e:
            self.store.clear_credentials()
            self.store.clear_envelope()
            self._replace_state(SessionState(error=e.message, is_loading=self._state.is_loading))
            self._go(self.cfg.LOGIN_ROUTE)
            raise

        self.store.save_credentials(pair)
        self.store.save_envelope(auth_response)
        self._set_state(user=user, session_envelope=auth_response, phase=SessionPhase.AUTHENTICATED, error=None)
        logger.info("SESSION: Authenticated %s (access token %s)", user.email, redact_token(pair.access_token))

        return self.business_gate(user)

    def business_gate(self, user: Optional[UserProfile]) -> str:
        if (user is not None and user.has_businesses) or self.store.onboarding_completed:
            return self.cfg.DASHBOARD_ROUTE
        return self.cfg.ONBOARDING_ROUTE

    # --- Onboarding ---

    async def complete_onboarding(self, business_fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Creates the user's first business and opens the main application."""
        body = await self.api.post(self.cfg.BUSINESS_ADD_PATH, json=dict(business_fields))
        business = unwrap_api_response(body)
        if not isinstance(business, dict) or not business.get("business_id"):
            raise MalformedResponseError("No business ID returned from API")

        self.store.onboarding_completed = True
        if self._state.user is not None:
            businesses = list(self._state.user.businesses) + [Business.model_validate(business)]
            self._set_state(user=self._state.user.model_copy(update={"businesses": businesses}))
        self._go(self.cfg.DASHBOARD_ROUTE)
        return business

    # --- Password reset ---

    async def request_password_reset(self, email: str) -> Any:
        try:
            return await self.api.post(self.cfg.FORGOT_PASSWORD_PATH, json={"email": email})
        except SessionError as e:
            self._set_state(error=e.message)
            raise

    async def reset_password(self, token: str, new_password: str) -> Any:
        try:
            return await self.api.post(self.cfg.RESET_PASSWORD_PATH, json={"token": token, "newPassword": new_password})
        except SessionError as e:
            self._set_state(error=e.message)
            raise

    # --- Renewal and logout ---

    async def refresh(self) -> str:
        return await self.refresher.refresh()

    def logout(self) -> None:
        self.store.clear()
        self._replace_state(SessionState(error=self._state.error, is_loading=self._state.is_loading))
        logger.info("SESSION: Logged out.")
        if self.route != self.cfg.LOGIN_ROUTE:
            self._go(self.cfg.LOGIN_ROUTE)

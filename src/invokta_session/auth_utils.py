# src/invokta_session/auth_utils.py

import json
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlencode

from jose import JWTError, jwt  # python-jose, claims only (the server verifies signatures)

from .config import Settings, settings as default_settings
from .errors import MalformedResponseError
from .session_data import CredentialPair

logger = logging.getLogger(__name__)


def redact_token(token: Optional[str]) -> str:
    if not token:
        return "<none>"
    return f"{token[:6]}...({len(token)} chars)"


# --- Expiry oracle ---

def decode_claims(token: str) -> Dict[str, Any]:
    """Reads the token's claims without verifying its signature."""
    claims = jwt.get_unverified_claims(token)
    if not isinstance(claims, dict):
        raise JWTError("Token claims are not an object")
    return claims


def is_token_expired(token: str, skew_seconds: int = 0, now: Optional[float] = None) -> bool:
    """
    True when the token's exp claim is in the past. Anything that cannot be
    decoded, or carries no usable exp, counts as expired.
    """
    try:
        claims = decode_claims(token)
        exp = float(claims["exp"])
    except (JWTError, KeyError, TypeError, ValueError, AttributeError) as e:
        logger.debug("AUTH_UTILS: is_token_expired - Undecodable token %s (%s). Treating as expired.",
                     redact_token(token), e)
        return True
    current = time.time() if now is None else now
    return exp <= current + skew_seconds


# --- Auth response envelopes ---

def unwrap_api_response(body: Any) -> Any:
    """Strips an optional {"success": ..., "data": ...} wrapper."""
    if isinstance(body, dict) and "success" in body and body.get("data") is not None:
        return body["data"]
    return body


def extract_credentials(auth_response: Any) -> CredentialPair:
    """
    Pulls the credential pair out of {"authenticationData": {...}}, or out of
    a bare {"accessToken": ..., "refreshToken": ...}.
    """
    if not isinstance(auth_response, dict):
        raise MalformedResponseError("Invalid auth response format - expected an object")
    auth_data = auth_response.get("authenticationData", auth_response)
    if not isinstance(auth_data, dict):
        raise MalformedResponseError("Invalid auth response format - authenticationData is not an object")
    access_token = auth_data.get("accessToken")
    if not access_token or not isinstance(access_token, str):
        raise MalformedResponseError("Invalid auth response format - missing access token")
    refresh_token = auth_data.get("refreshToken")
    if refresh_token is not None and not isinstance(refresh_token, str):
        raise MalformedResponseError("Invalid auth response format - refresh token is not a string")
    return CredentialPair(access_token=access_token, refresh_token=refresh_token or None)


# --- Federated login ---

def build_federated_login_url(redirect_uri: Optional[str] = None, cfg: Settings = default_settings) -> str:
    """URL the browser is sent to for the third-party login."""
    auth_url = cfg.FEDERATED_LOGIN_URL
    if redirect_uri:
        auth_url = f"{auth_url}?{urlencode({'redirect_uri': redirect_uri})}"
    logger.debug("AUTH_UTILS: build_federated_login_url - Generated URL: %s", auth_url)
    return auth_url


def parse_federated_payload(payload: Any) -> Dict[str, Any]:
    """
    The callback hands us either a parsed object or the URL-encoded JSON
    string taken from the query string. Returns the unwrapped auth response.
    """
    if isinstance(payload, (str, bytes)):
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            parsed = json.loads(unquote(text))
        except ValueError as e:
            raise MalformedResponseError("Failed to parse authentication response") from e
    else:
        parsed = payload

    if not isinstance(parsed, dict):
        raise MalformedResponseError("Invalid auth response format - expected an object")
    if parsed.get("success") is False:
        raise MalformedResponseError(parsed.get("message") or "Federated login was not successful")

    auth_response = unwrap_api_response(parsed)
    if not isinstance(auth_response, dict):
        raise MalformedResponseError("Invalid auth response format - expected an object")
    return auth_response

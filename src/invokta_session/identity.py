# src/invokta_session/identity.py
"""
Identity normalization.

Password login, federated login and the claims of a decoded access token all
describe the same user in different shapes:

    {"firstName": "Ada", ...}                          flat
    {"userDto": {"firstName": "Ada", ...}}             one wrapper
    {"user": {"userDto": {"firstName": "Ada", ...}}}   two wrappers
    {"first_name": "Ada", "sub": "...", "exp": ...}    token claims

`normalize` probes a fixed, ordered list of candidate paths for every
canonical field and builds one UserProfile from the first present values.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .auth_utils import unwrap_api_response
from .session_data import UserProfile

logger = logging.getLogger(__name__)

Path = Tuple[str, ...]

# Wrapper prefixes, most direct first.
WRAPPERS: Tuple[Path, ...] = (
    (),
    ("userDto",),
    ("usersDto",),
    ("user", "userDto"),
)

# Canonical field -> candidate source keys, in priority order.
FIELD_KEYS: Dict[str, Tuple[str, ...]] = {
    "id": ("id", "user_id", "userId", "sub"),
    "username": ("username", "userName", "user_name"),
    "email": ("email", "userEmail", "user_email"),
    "first_name": ("firstName", "first_name"),
    "middle_name": ("middleName", "middle_name"),
    "last_name": ("lastName", "last_name"),
    "full_name": ("fullName", "full_name", "name"),
    "phone": ("phone", "phoneNumber", "phone_number"),
    "picture_url": ("pictureUrl", "picture_url", "image", "picture", "avatar"),
    "businesses": ("businesses",),
}


def _candidate_paths(keys: Iterable[str]) -> List[Path]:
    return [wrapper + (key,) for wrapper in WRAPPERS for key in keys]


FIELD_PATHS: Dict[str, List[Path]] = {field: _candidate_paths(keys) for field, keys in FIELD_KEYS.items()}

# `id` keeps whatever type the server uses; `businesses` is a list.
_TEXT_FIELDS = tuple(field for field in FIELD_KEYS if field not in ("id", "businesses"))

# Keys that would collide with a canonical attribute or its alias.
_RESERVED_KEYS = frozenset(
    name for field_name, info in UserProfile.model_fields.items() for name in (field_name, info.alias) if name
)


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _dig(source: Mapping[str, Any], path: Path) -> Any:
    node: Any = source
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def probe(source: Mapping[str, Any], paths: Iterable[Path]) -> Any:
    """First present value along `paths`, or None."""
    for path in paths:
        value = _dig(source, path)
        if _present(value):
            return value
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _as_businesses(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [dict(item) for item in value if isinstance(item, Mapping)]


def split_full_name(full_name: str) -> Dict[str, Optional[str]]:
    parts = full_name.split()
    names: Dict[str, Optional[str]] = {"first_name": None, "middle_name": None, "last_name": None}
    if len(parts) >= 1:
        names["first_name"] = parts[0]
    if len(parts) >= 2:
        names["last_name"] = parts[-1]
    if len(parts) >= 3:
        names["middle_name"] = " ".join(parts[1:-1])
    return names


def join_name(*components: Optional[str]) -> str:
    return " ".join(c for c in components if c)


def _envelope_identity(session_envelope: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """The deepest identity object the auth response carries, if any."""
    if not session_envelope:
        return None
    envelope = unwrap_api_response(session_envelope)
    if not isinstance(envelope, Mapping):
        return None
    user_dto = _dig(envelope, ("payload", "user", "userDto"))
    return user_dto if isinstance(user_dto, Mapping) else None


def normalize(
    raw_identity: Optional[Mapping[str, Any]],
    session_envelope: Optional[Mapping[str, Any]] = None,
) -> Optional[UserProfile]:
    if raw_identity is None:
        return None
    if not isinstance(raw_identity, Mapping):
        logger.warning("IDENTITY: normalize - Ignoring identity of type %s", type(raw_identity).__name__)
        raw_identity = {}

    canonical: Dict[str, Any] = {field: probe(raw_identity, paths) for field, paths in FIELD_PATHS.items()}
    for field in _TEXT_FIELDS:
        canonical[field] = _as_text(canonical[field])
    canonical["businesses"] = _as_businesses(canonical["businesses"])

    # Lower priority source: the identity nested inside the auth response.
    secondary = _envelope_identity(session_envelope)
    if secondary is not None and secondary is not raw_identity:
        for field, paths in FIELD_PATHS.items():
            if field == "businesses":
                if not canonical["businesses"]:
                    canonical["businesses"] = _as_businesses(probe(secondary, paths))
            elif canonical[field] is None:
                value = probe(secondary, paths)
                canonical[field] = _as_text(value) if field in _TEXT_FIELDS else value

    has_components = bool(canonical["first_name"] or canonical["last_name"])
    if canonical["full_name"] and not has_components:
        canonical.update(split_full_name(canonical["full_name"]))
    elif not canonical["full_name"] and (has_components or canonical["middle_name"]):
        canonical["full_name"] = join_name(canonical["first_name"], canonical["middle_name"], canonical["last_name"])

    # Original fields ride along underneath the canonical ones.
    passthrough = {k: v for k, v in raw_identity.items() if isinstance(k, str) and k not in _RESERVED_KEYS}
    if secondary is not None:
        for k, v in secondary.items():
            if isinstance(k, str) and k not in _RESERVED_KEYS and k not in passthrough:
                passthrough[k] = v

    profile = UserProfile.model_validate({**passthrough, **canonical})
    logger.debug("IDENTITY: normalize - Profile for id=%s with %d business(es)", profile.id, len(profile.businesses))
    return profile


def denormalize(profile: UserProfile, shape: str = "flat") -> Dict[str, Any]:
    """
    Renders a profile back into one of the source shapes the server uses:
    "flat", "userDto", "nested" (user.userDto) or "claims" (snake_case keys).
    """
    fields = profile.model_dump(by_alias=True, exclude_none=True)
    if shape == "flat":
        return fields
    if shape == "userDto":
        return {"userDto": fields}
    if shape == "nested":
        return {"user": {"userDto": fields}}
    if shape == "claims":
        claims = profile.model_dump(by_alias=False, exclude_none=True)
        claims.pop("id", None)
        claims["user_id"] = profile.id
        return claims
    raise ValueError(f"Unknown identity shape: {shape}")

# src/invokta_session/session_data.py

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SessionPhase(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"


class CredentialPair(BaseModel):
    """
    Access/refresh token pair as issued by the billing API.
    The refresh token only ever travels on the renewal call.
    """
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    access_token: str
    refresh_token: Optional[str] = None


class Business(BaseModel):
    model_config = ConfigDict(extra="allow")

    business_id: Optional[Any] = None
    businessName: Optional[str] = None
    businessType: Optional[str] = None


class UserProfile(BaseModel):
    """
    Canonical user record. Unrecognized source fields are kept as extras so
    screens reading non-canonical keys still find them.
    """
    model_config = ConfigDict(extra="allow", alias_generator=to_camel, populate_by_name=True)

    id: Optional[Any] = None
    username: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    picture_url: Optional[str] = None
    businesses: List[Business] = Field(default_factory=list)

    @property
    def has_businesses(self) -> bool:
        return len(self.businesses) > 0


class SessionState(BaseModel):
    """
    In-memory session state. Replaced as a whole by the SessionController;
    everything else only reads it.
    """
    model_config = ConfigDict(frozen=True)

    user: Optional[UserProfile] = None
    # The raw auth response: {"authenticationData": {...}, "payload": {...}}
    session_envelope: Optional[Dict[str, Any]] = None
    is_loading: bool = False
    error: Optional[str] = None
    phase: SessionPhase = SessionPhase.UNAUTHENTICATED

    @property
    def is_authenticated(self) -> bool:
        return self.phase == SessionPhase.AUTHENTICATED and self.user is not None

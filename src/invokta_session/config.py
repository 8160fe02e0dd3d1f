# src/invokta_session/config.py

import logging
from pathlib import Path
from typing import Any, List, Optional, Union

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# .env is at the project root, two levels up from src/invokta_session/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)
    logger.debug("InvoktaSession: Loaded .env file from: %s", ENV_FILE_PATH)
else:
    logger.debug("InvoktaSession: .env file not found at %s. Relying on environment variables.", ENV_FILE_PATH)


class Settings(BaseSettings):
    # === Billing API ===
    API_BASE_URL: AnyHttpUrl = "http://localhost:8080"

    # === Auth endpoints ===
    LOGIN_PATH: str = "/api/auth/authenticate"
    REGISTER_PATH: str = "/api/auth/register"
    REFRESH_TOKEN_PATH: str = "/api/auth/refresh-token"
    FORGOT_PASSWORD_PATH: str = "/api/auth/forgot-password"
    RESET_PASSWORD_PATH: str = "/api/auth/reset-password"
    FEDERATED_LOGIN_PATH: str = "/oauth2/authorization/google"
    # Any lightweight endpoint works; every HTTP status counts as "reachable"
    LIVENESS_PATH: str = "/api/users"
    BUSINESS_ADD_PATH: str = "/api/business/add"

    # Paths sent without a bearer credential and never retried on 401.
    # Comes in from the env as a comma-separated string.
    PUBLIC_PATHS: Union[str, List[str]] = (
        "/api/auth/authenticate,/api/auth/register,/api/auth/refresh-token,"
        "/api/auth/forgot-password,/api/auth/reset-password"
    )

    # === Headers ===
    AUTHORIZATION_HEADER: str = "Authorization"
    REFRESH_TOKEN_HEADER: str = "X-Refresh-Token"

    # === Timing ===
    LIVENESS_TIMEOUT_SECONDS: float = 3.0
    FEDERATED_LOGIN_WATCHDOG_SECONDS: float = 5.0
    EXPIRY_SKEW_SECONDS: int = 0

    # === Client-side storage ===
    # None keeps everything in memory for the lifetime of the process
    STORAGE_PATH: Optional[Path] = None
    TOKEN_STORAGE_KEY: str = "token"
    REFRESH_TOKEN_STORAGE_KEY: str = "refreshToken"
    AUTH_DATA_STORAGE_KEY: str = "authData"
    ONBOARDING_STORAGE_KEY: str = "businessSetupCompleted"
    PROCESSED_AUTH_RESPONSES_STORAGE_KEY: str = "processedAuthResponses"

    # === Routes handed to the navigation callback ===
    LOGIN_ROUTE: str = "/login"
    DASHBOARD_ROUTE: str = "/dashboard"
    ONBOARDING_ROUTE: str = "/business-setup"

    # 0 disables the registration password check
    MIN_PASSWORD_STRENGTH: int = 0

    @property
    def API_ROOT(self) -> str:
        return str(self.API_BASE_URL).rstrip("/")

    @property
    def FEDERATED_LOGIN_URL(self) -> str:
        return f"{self.API_ROOT}{self.FEDERATED_LOGIN_PATH}"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator("PUBLIC_PATHS", mode='before')
    @classmethod
    def parse_comma_separated_paths(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            if not v.strip():
                return []
            return [path.strip() for path in v.split(',') if path.strip()]
        if isinstance(v, (list, tuple)):
            return list(v)
        raise TypeError(f'PUBLIC_PATHS: Expected a comma-separated string or a list, got {type(v)}')

    @model_validator(mode='after')
    def check_paths_and_timeouts(self) -> 'Settings':
        if not isinstance(self.PUBLIC_PATHS, list):
            raise ValueError(f"PUBLIC_PATHS ended up as {type(self.PUBLIC_PATHS)}, expected list.")
        if self.LIVENESS_TIMEOUT_SECONDS <= 0:
            raise ValueError("LIVENESS_TIMEOUT_SECONDS must be positive.")
        if not 0 <= self.MIN_PASSWORD_STRENGTH <= 4:
            raise ValueError("MIN_PASSWORD_STRENGTH must be between 0 and 4.")
        return self

    def is_public_path(self, path: str) -> bool:
        return path.split("?", 1)[0] in self.PUBLIC_PATHS


try:
    settings = Settings()
    logger.debug("InvoktaSession: API root: %s", settings.API_ROOT)
except Exception as e:
    logger.error("InvoktaSession: Error instantiating Settings: %s", e)
    raise

# src/invokta_session/storage.py

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .config import Settings, settings as default_settings
from .session_data import CredentialPair

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    """String-valued, origin-scoped storage (the local-storage contract)."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class MemoryStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)


class JsonFileStorage:
    """
    Durable storage backed by a single JSON file, so a session survives a
    restart the same way browser storage survives a reload.
    Writes go through a temp file and an atomic rename.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: Dict[str, str] = self._read()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("STORAGE: Could not read %s (%s). Starting empty.", self.path, e)
            return {}
        if not isinstance(raw, dict):
            logger.warning("STORAGE: %s does not hold an object. Starting empty.", self.path)
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._data), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def remove_item(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()


def storage_from_settings(cfg: Settings = default_settings) -> KeyValueStorage:
    if cfg.STORAGE_PATH:
        return JsonFileStorage(cfg.STORAGE_PATH)
    return MemoryStorage()


class CredentialStore:
    """
    Persists the credential pair, the raw session envelope and the onboarding
    flag. Pure get/set/clear: token contents are never inspected here.
    """

    def __init__(self, storage: Optional[KeyValueStorage] = None, cfg: Settings = default_settings):
        self.storage = storage if storage is not None else storage_from_settings(cfg)
        self.cfg = cfg

    # --- Credential pair ---

    @property
    def access_token(self) -> Optional[str]:
        return self.storage.get_item(self.cfg.TOKEN_STORAGE_KEY)

    @property
    def refresh_token(self) -> Optional[str]:
        return self.storage.get_item(self.cfg.REFRESH_TOKEN_STORAGE_KEY)

    def save_credentials(self, pair: CredentialPair) -> None:
        self.storage.set_item(self.cfg.TOKEN_STORAGE_KEY, pair.access_token)
        if pair.refresh_token:
            self.storage.set_item(self.cfg.REFRESH_TOKEN_STORAGE_KEY, pair.refresh_token)
        else:
            self.storage.remove_item(self.cfg.REFRESH_TOKEN_STORAGE_KEY)

    def load_credentials(self) -> Optional[CredentialPair]:
        access_token = self.access_token
        if not access_token:
            return None
        return CredentialPair(access_token=access_token, refresh_token=self.refresh_token)

    def clear_credentials(self) -> None:
        self.storage.remove_item(self.cfg.TOKEN_STORAGE_KEY)
        self.storage.remove_item(self.cfg.REFRESH_TOKEN_STORAGE_KEY)

    # --- Session envelope ---

    def save_envelope(self, envelope: Dict[str, Any]) -> None:
        self.storage.set_item(self.cfg.AUTH_DATA_STORAGE_KEY, json.dumps(envelope))

    def load_envelope(self) -> Optional[Dict[str, Any]]:
        raw = self.storage.get_item(self.cfg.AUTH_DATA_STORAGE_KEY)
        if not raw:
            return None
        try:
            envelope = json.loads(raw)
        except ValueError:
            logger.warning("STORAGE: Stored session envelope is not valid JSON. Ignoring it.")
            return None
        return envelope if isinstance(envelope, dict) else None

    def clear_envelope(self) -> None:
        self.storage.remove_item(self.cfg.AUTH_DATA_STORAGE_KEY)

    # --- Onboarding flag ---

    @property
    def onboarding_completed(self) -> bool:
        return self.storage.get_item(self.cfg.ONBOARDING_STORAGE_KEY) == "true"

    @onboarding_completed.setter
    def onboarding_completed(self, value: bool) -> None:
        self.storage.set_item(self.cfg.ONBOARDING_STORAGE_KEY, "true" if value else "false")

    # --- Federated responses already consumed ---

    def _processed(self) -> List[str]:
        raw = self.storage.get_item(self.cfg.PROCESSED_AUTH_RESPONSES_STORAGE_KEY)
        if not raw:
            return []
        try:
            value = json.loads(raw)
        except ValueError:
            return []
        return [str(item) for item in value] if isinstance(value, list) else []

    @staticmethod
    def fingerprint(raw: str) -> str:
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def is_processed(self, raw: str) -> bool:
        return self.fingerprint(raw) in self._processed()

    def mark_processed(self, raw: str) -> None:
        processed = self._processed()
        digest = self.fingerprint(raw)
        if digest not in processed:
            processed.append(digest)
            self.storage.set_item(self.cfg.PROCESSED_AUTH_RESPONSES_STORAGE_KEY, json.dumps(processed))

    def clear(self) -> None:
        """Drop every session key together. Processed-response fingerprints stay."""
        self.clear_credentials()
        self.clear_envelope()
        self.storage.remove_item(self.cfg.ONBOARDING_STORAGE_KEY)

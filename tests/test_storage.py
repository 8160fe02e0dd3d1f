"""Tests for the credential store and its storage backends."""

import json

from invokta_session.session_data import CredentialPair
from invokta_session.storage import CredentialStore, JsonFileStorage, MemoryStorage, storage_from_settings


def test_save_and_load_credentials(store):
    store.save_credentials(CredentialPair(access_token="a1", refresh_token="r1"))
    pair = store.load_credentials()
    assert pair.access_token == "a1"
    assert pair.refresh_token == "r1"
    assert store.access_token == "a1"
    assert store.refresh_token == "r1"


def test_load_without_tokens(store):
    assert store.load_credentials() is None


def test_saving_pair_without_refresh_token_drops_old_one(store):
    store.save_credentials(CredentialPair(access_token="a1", refresh_token="r1"))
    store.save_credentials(CredentialPair(access_token="a2"))
    assert store.refresh_token is None


def test_clear_credentials(store):
    store.save_credentials(CredentialPair(access_token="a1", refresh_token="r1"))
    store.clear_credentials()
    assert store.access_token is None
    assert store.refresh_token is None


def test_envelope_round_trip(store):
    envelope = {"authenticationData": {"accessToken": "a1"}, "payload": {"user": {"userDto": {"id": 1}}}}
    store.save_envelope(envelope)
    assert store.load_envelope() == envelope
    store.clear_envelope()
    assert store.load_envelope() is None


def test_corrupt_envelope_is_ignored(test_settings):
    store = CredentialStore(MemoryStorage({"authData": "{not json"}), cfg=test_settings)
    assert store.load_envelope() is None


def test_onboarding_flag(store):
    assert store.onboarding_completed is False
    store.onboarding_completed = True
    assert store.onboarding_completed is True
    assert store.storage.get_item("businessSetupCompleted") == "true"


def test_processed_federated_responses(store):
    assert store.is_processed("payload-1") is False
    store.mark_processed("payload-1")
    store.mark_processed("payload-1")
    assert store.is_processed("payload-1") is True
    assert len(json.loads(store.storage.get_item("processedAuthResponses"))) == 1
    assert "payload-1" not in store.storage.get_item("processedAuthResponses")


def test_clear_removes_every_session_key(store):
    store.save_credentials(CredentialPair(access_token="a1", refresh_token="r1"))
    store.save_envelope({"authenticationData": {}})
    store.onboarding_completed = True
    store.mark_processed("payload-1")

    store.clear()

    assert store.storage.keys() == ["processedAuthResponses"]


def test_file_storage_survives_restart(tmp_path, test_settings):
    path = tmp_path / "session.json"
    first = CredentialStore(JsonFileStorage(path), cfg=test_settings)
    first.save_credentials(CredentialPair(access_token="a1", refresh_token="r1"))
    first.save_envelope({"payload": {"email": "ada@example.com"}})

    second = CredentialStore(JsonFileStorage(path), cfg=test_settings)
    assert second.load_credentials() == CredentialPair(access_token="a1", refresh_token="r1")
    assert second.load_envelope() == {"payload": {"email": "ada@example.com"}}


def test_file_storage_remove_persists(tmp_path):
    path = tmp_path / "session.json"
    storage = JsonFileStorage(path)
    storage.set_item("token", "a1")
    storage.remove_item("token")
    assert JsonFileStorage(path).get_item("token") is None


def test_file_storage_with_unreadable_file(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("[1, 2", encoding="utf-8")
    assert JsonFileStorage(path).get_item("token") is None


def test_storage_from_settings(tmp_path, test_settings):
    assert isinstance(storage_from_settings(test_settings), MemoryStorage)
    file_settings = test_settings.model_copy(update={"STORAGE_PATH": tmp_path / "s.json"})
    assert isinstance(storage_from_settings(file_settings), JsonFileStorage)

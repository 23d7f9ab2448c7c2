from __future__ import annotations

import pytest

import client
from core.errors import ConfigurationError


class RecordingClient:
    def __init__(self, session: str, api_id: int, api_hash: str) -> None:
        self.args = (session, api_id, api_hash)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    monkeypatch.setattr(client, "load_dotenv", lambda: False)
    monkeypatch.setattr(client, "TelegramClient", RecordingClient)
    for name in ("API_ID", "API_HASH", "SESSION_NAME"):
        monkeypatch.delenv(name, raising=False)


def test_missing_credentials_are_a_configuration_error(monkeypatch) -> None:
    monkeypatch.setenv("API_ID", "12345")

    with pytest.raises(ConfigurationError):
        client.build_client()


def test_non_numeric_api_id_is_a_configuration_error(monkeypatch) -> None:
    monkeypatch.setenv("API_ID", "abc")
    monkeypatch.setenv("API_HASH", "hash")

    with pytest.raises(ConfigurationError, match="API_ID"):
        client.build_client()


def test_client_uses_session_name_and_numeric_id(monkeypatch) -> None:
    monkeypatch.setenv("API_ID", "12345")
    monkeypatch.setenv("API_HASH", "hash")

    assert client.build_client().args == ("chatwarden", 12345, "hash")

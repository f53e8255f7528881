from pathlib import Path

import pytest

from backroom.config import OPENROUTER_BASE_URL, load_settings
from backroom.ledger import SqliteInventoryStore
from backroom.services import build_services


_KEYS = [
    "INVENTORY_BACKEND", "INVENTORY_ACCOUNT", "NLU_API_KEY", "OPENAI_API_KEY", "OPEN_ROUTER_API_KEY",
    "NLU_BASE_URL", "NLU_ENABLED", "NLU_TIMEOUT_SECONDS", "GOOGLE_PRIVATE_KEY", "WHATSAPP_VERIFY_TOKEN",
    "TRANSCRIPTION_API_KEY", "TRANSCRIPTION_BASE_URL", "WHISPER_BASE_URL", "TRANSCRIPTION_ENABLED",
    "WHATSAPP_PHONE_NUMBER_ID", "WHATSAPP_ACCESS_TOKEN",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)


def test_dotenv_is_found_from_a_subdirectory(tmp_path: Path):
    (tmp_path / ".env").write_text(
        "INVENTORY_ACCOUNT=shop-1\n"
        "OPEN_ROUTER_API_KEY=or-key\n"
        "NLU_TIMEOUT_SECONDS=2.5\n"
        "NLU_ENABLED=no\n"
        'GOOGLE_PRIVATE_KEY="-----BEGIN KEY-----\\nabc\\n-----END KEY-----"\n',
        encoding="utf-8",
    )
    nested = tmp_path / "src" / "deep"
    nested.mkdir(parents=True)

    settings = load_settings(str(nested))

    assert settings.account == "shop-1"
    assert settings.nlu_api_key == "or-key"
    assert settings.nlu_base_url == OPENROUTER_BASE_URL
    assert settings.nlu_timeout_seconds == 2.5
    assert settings.nlu_enabled is False
    assert "\n" in settings.google_private_key


def test_environment_wins_over_dotenv(tmp_path: Path, monkeypatch):
    (tmp_path / ".env").write_text("INVENTORY_ACCOUNT=from-file\nINVENTORY_BACKEND=oracle\n", encoding="utf-8")
    monkeypatch.setenv("INVENTORY_ACCOUNT", "from-env")

    settings = load_settings(str(tmp_path))

    assert settings.account == "from-env"
    assert settings.backend == "sqlite"
    assert settings.whatsapp_configured is False


def test_openrouter_key_does_not_become_the_transcription_endpoint(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("OPEN_ROUTER_API_KEY", "or-key")

    settings = load_settings(str(tmp_path))

    assert settings.nlu_base_url == OPENROUTER_BASE_URL
    assert settings.transcription_api_key is None
    assert settings.transcription_base_url is None

    services = build_services(settings, store=SqliteInventoryStore(str(tmp_path / "inventory.sqlite3")))
    try:
        assert services.pipeline.transcriber is None
    finally:
        services.close()


def test_transcription_has_its_own_key_and_endpoint(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("OPEN_ROUTER_API_KEY", "or-key")
    monkeypatch.setenv("TRANSCRIPTION_API_KEY", "sk-audio")
    monkeypatch.setenv("WHISPER_BASE_URL", "http://localhost:9000/v1")

    settings = load_settings(str(tmp_path))

    assert settings.nlu_api_key == "or-key"
    assert settings.transcription_api_key == "sk-audio"
    assert settings.transcription_base_url == "http://localhost:9000/v1"


def test_openai_key_is_shared_with_transcription(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-main")
    monkeypatch.setenv("NLU_BASE_URL", "http://gateway.local/v1")

    settings = load_settings(str(tmp_path))

    assert settings.transcription_api_key == "sk-main"
    assert settings.transcription_base_url == "http://gateway.local/v1"

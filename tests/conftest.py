import os
from types import SimpleNamespace

# pas de fichier de logs sous ~/CleverDecks à l'import de app.main
os.environ.setdefault("LOG_FILE", "")

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import create_app

VALID_KEY = "sk-" + "a1B2" * 12


class FakeStream:
    """Flux de chunks au format chat.completions (delta.content)."""

    def __init__(self, text, size=7):
        self._parts = [text[i:i + size] for i in range(0, len(text), size)]

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for part in self._parts:
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=part))])


class FakeCompletions:
    def __init__(self):
        self.replies = []
        self.calls = []

    async def create(self, model, messages, stream=False):
        self.calls.append({"model": model, "messages": messages, "stream": stream})
        text = self.replies.pop(0) if self.replies else ""
        if stream:
            return FakeStream(text)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class FakeOpenAI:
    def __init__(self, api_key):
        self.api_key = api_key
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture
def app_env(tmp_path, monkeypatch):
    """
    Variables d'env isolées : DATA_PATH et .env dans un dossier temporaire.
    """
    data = tmp_path / "data"
    data.mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("APP_NAME", "CleverDecks API (tests)")
    monkeypatch.setenv("DATA_PATH", str(data))
    monkeypatch.setenv("LOG_FILE", "")
    monkeypatch.setenv("ENV_FILE", str(tmp_path / ".env"))
    monkeypatch.setenv("CORS_ORIGINS", "http://localhost")
    monkeypatch.setenv("OPENAI_SECRET_KEY", VALID_KEY)

    # IMPORTANT: vider le cache des settings pour prendre en compte les env
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


@pytest.fixture
def test_client(app_env):
    app = create_app(chat_client_factory=FakeOpenAI)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def fake_openai(test_client):
    """Client OpenAI factice de l'app : remplir `.completions.replies`."""
    return test_client.app.state.chat.client


@pytest.fixture
def make_client(app_env):
    """Nouvelle app sur le même DATA_PATH (simule un redémarrage)."""
    def _make():
        return TestClient(create_app(chat_client_factory=FakeOpenAI))
    return _make

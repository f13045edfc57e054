from dataclasses import dataclass, field

import pytest

from genesis.llm.client import GenerationResult
from genesis.service import ChatService
from genesis.sessions.store import SessionStore
from genesis.settings import Settings, SettingsStore
from genesis.storage import MemoryStore


@dataclass
class FakeClient:
    replies: list = field(default_factory=lambda: ["hello back"])
    calls: list = field(default_factory=list)
    on_generate: object = None

    def generate(self, messages, settings):
        self.calls.append((list(messages), settings))
        if self.on_generate is not None:
            self.on_generate()
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return GenerationResult(text=reply, elapsed_ms=7)

    def test_key(self, credential):
        self.calls.append(([], credential))
        return GenerationResult(text="pong", elapsed_ms=3)

    def close(self):
        pass


@pytest.fixture
def kv():
    return MemoryStore()


@pytest.fixture
def store(kv):
    return SessionStore(kv)


@pytest.fixture
def settings_store(kv):
    return SettingsStore(kv)


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def service(store, settings_store, fake_client):
    settings_store.save(Settings(api_key="test-key"))
    return ChatService(store, settings_store, fake_client, memory_window=4)

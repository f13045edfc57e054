import pytest

from genesis.config import GenesisConfig
from genesis.errors import ConfigError
from genesis.settings import Settings, SettingsStore
from genesis.storage import KEY_API_KEY, KEY_SETTINGS, MemoryStore


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.api_key == ""
        assert settings.temperature == 0.4
        assert settings.max_tokens == 512

    @pytest.mark.parametrize("value,expected", [(-3, 0.0), (0.25, 0.25), (7, 1.0), ("abc", 0.4)])
    def test_temperature_clamped(self, value, expected):
        assert Settings(temperature=value).temperature == expected

    @pytest.mark.parametrize("value,expected", [(1, 64), (100, 100), (99999, 2048), ("12.9", 64), (None, 512)])
    def test_max_tokens_clamped(self, value, expected):
        assert Settings(max_tokens=value).max_tokens == expected

    def test_key_is_stripped(self):
        assert Settings(api_key="  abc ").api_key == "abc"

    def test_masked_key(self):
        assert Settings().masked_key() == "(not set)"
        assert Settings(api_key="abcdefghijkl").masked_key() == "abcd...ijkl"


class TestSettingsStore:
    def test_load_defaults_when_empty(self, settings_store):
        assert settings_store.load().model_dump() == Settings().model_dump()

    def test_save_and_load(self, settings_store, kv):
        settings_store.save(Settings(api_key="k", temperature=0.9, max_tokens=1024))
        loaded = settings_store.load()
        assert loaded == Settings(api_key="k", temperature=0.9, max_tokens=1024)
        assert kv.get_string(KEY_API_KEY) == "k"
        assert kv.get_json(KEY_SETTINGS) == {"temperature": 0.9, "maxTokens": 1024}

    def test_malformed_settings_use_defaults(self):
        kv = MemoryStore({KEY_SETTINGS: "[not an object"})
        assert SettingsStore(kv).load().model_dump() == Settings().model_dump()

    def test_wrong_shape_settings_use_defaults(self):
        kv = MemoryStore({KEY_SETTINGS: '["a"]'})
        assert SettingsStore(kv).load().max_tokens == 512

    def test_update_partial(self, settings_store):
        settings_store.save(Settings(api_key="k", temperature=0.1))
        updated = settings_store.update(temperature=0.6, max_tokens=None)
        assert updated.api_key == "k"
        assert updated.temperature == 0.6

    def test_fallback_key_not_persisted(self, kv):
        store = SettingsStore(kv, fallback_api_key="env-key")
        assert store.load().api_key == "env-key"
        store.update(temperature=0.2)
        assert kv.get_string(KEY_API_KEY) == ""
        assert store.load().api_key == "env-key"

    def test_clearing_key_removes_it(self, settings_store, kv):
        settings_store.save(Settings(api_key="k"))
        settings_store.update(api_key="")
        assert kv.get_string(KEY_API_KEY, "missing") == "missing"


class TestGenesisConfig:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("GENESIS_DATA_DIR", "/tmp/g")
        monkeypatch.setenv("GENESIS_MEMORY_WINDOW", "7")
        monkeypatch.setenv("GENESIS_TIMEOUT", "12.5")
        config = GenesisConfig.from_env()
        assert config.data_dir == "/tmp/g"
        assert config.memory_window == 7
        assert config.timeout == 12.5
        config.validate()

    def test_no_timeout_by_default(self, monkeypatch):
        monkeypatch.delenv("GENESIS_TIMEOUT", raising=False)
        assert GenesisConfig.from_env().timeout is None

    def test_bad_window(self, monkeypatch):
        monkeypatch.setenv("GENESIS_MEMORY_WINDOW", "lots")
        with pytest.raises(ConfigError):
            GenesisConfig.from_env()

    def test_validate_rejects_bad_values(self):
        config = GenesisConfig()
        config.memory_window = 0
        with pytest.raises(ConfigError):
            config.validate()

"""Tests for configuration loading."""

import pytest

from chatfeed.config import Config, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in [
        "CHATFEED_STORE_URL",
        "CHATFEED_STORE_API_KEY",
        "CHATFEED_MQTT_BROKER",
        "CHATFEED_MQTT_PORT",
        "CHATFEED_SNAPSHOT_LIMIT",
        "CHATFEED_USER_ID",
        "CHATFEED_USER_EMAIL",
    ]:
        monkeypatch.delenv(key, raising=False)


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        config = load_config(None)

        assert isinstance(config, Config)
        assert config.feed.snapshot_limit == 200
        assert config.store.messages_table == "messages"
        assert config.store.profiles_table == "profiles"
        assert config.realtime.port == 1883

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.store.url == "http://localhost:54321"

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """
store:
  url: https://chat.example.com
  api_key: anon
blob:
  bucket: uploads
realtime:
  broker: mqtt.example.com
  port: 8883
  topic_prefix: rooms
feed:
  snapshot_limit: 50
viewer:
  user_id: u1
  email: alice@example.com
"""
        )

        config = load_config(path)

        assert config.store.url == "https://chat.example.com"
        assert config.store.api_key == "anon"
        assert config.blob.bucket == "uploads"
        assert config.realtime.broker == "mqtt.example.com"
        assert config.realtime.port == 8883
        assert config.realtime.topic_prefix == "rooms"
        assert config.realtime.schema == "public"
        assert config.feed.snapshot_limit == 50
        assert config.viewer.user_id == "u1"

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("feed:\n  snapshot_limit: 50\n")
        monkeypatch.setenv("CHATFEED_SNAPSHOT_LIMIT", "25")
        monkeypatch.setenv("CHATFEED_MQTT_PORT", "1884")
        monkeypatch.setenv("CHATFEED_USER_ID", "u7")

        config = load_config(path)

        assert config.feed.snapshot_limit == 25
        assert config.realtime.port == 1884
        assert config.viewer.user_id == "u7"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        config = load_config(path)

        assert config.feed.snapshot_limit == 200

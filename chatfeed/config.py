"""Configuration loading for chatfeed."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class StoreConfig:
    """Relational store (PostgREST-style HTTP API)."""

    url: str = "http://localhost:54321"
    api_key: str | None = None
    timeout_seconds: float = 30.0
    messages_table: str = "messages"
    profiles_table: str = "profiles"


@dataclass
class BlobConfig:
    bucket: str = "chat-files"


@dataclass
class RealtimeConfig:
    """MQTT broker carrying table change events."""

    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "chatfeed"
    schema: str = "public"
    username: str | None = None
    password: str | None = None
    keepalive: int = 60


@dataclass
class FeedConfig:
    snapshot_limit: int = 200


@dataclass
class ViewerConfig:
    user_id: str = ""
    email: str = ""


@dataclass
class Config:
    store: StoreConfig = field(default_factory=StoreConfig)
    blob: BlobConfig = field(default_factory=BlobConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    viewer: ViewerConfig = field(default_factory=ViewerConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with CHATFEED_ prefix."""
    return os.environ.get(f"CHATFEED_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Store overrides
    if url := _get_env("STORE_URL"):
        config.store.url = url
    if api_key := _get_env("STORE_API_KEY"):
        config.store.api_key = api_key
    if timeout := _get_env("STORE_TIMEOUT"):
        config.store.timeout_seconds = float(timeout)

    # Blob overrides
    if bucket := _get_env("BLOB_BUCKET"):
        config.blob.bucket = bucket

    # Realtime overrides
    if broker := _get_env("MQTT_BROKER"):
        config.realtime.broker = broker
    if port := _get_env("MQTT_PORT"):
        config.realtime.port = int(port)
    if username := _get_env("MQTT_USERNAME"):
        config.realtime.username = username
    if password := _get_env("MQTT_PASSWORD"):
        config.realtime.password = password

    # Feed overrides
    if limit := _get_env("SNAPSHOT_LIMIT"):
        config.feed.snapshot_limit = int(limit)

    # Viewer overrides
    if user_id := _get_env("USER_ID"):
        config.viewer.user_id = user_id
    if email := _get_env("USER_EMAIL"):
        config.viewer.email = email

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "store" in data:
                store_data = data["store"]
                config.store = StoreConfig(
                    url=store_data.get("url", config.store.url),
                    api_key=store_data.get("api_key"),
                    timeout_seconds=store_data.get(
                        "timeout_seconds", config.store.timeout_seconds
                    ),
                    messages_table=store_data.get(
                        "messages_table", config.store.messages_table
                    ),
                    profiles_table=store_data.get(
                        "profiles_table", config.store.profiles_table
                    ),
                )

            if "blob" in data:
                config.blob = BlobConfig(
                    bucket=data["blob"].get("bucket", config.blob.bucket)
                )

            if "realtime" in data:
                rt_data = data["realtime"]
                config.realtime = RealtimeConfig(
                    broker=rt_data.get("broker", config.realtime.broker),
                    port=rt_data.get("port", config.realtime.port),
                    topic_prefix=rt_data.get(
                        "topic_prefix", config.realtime.topic_prefix
                    ),
                    schema=rt_data.get("schema", config.realtime.schema),
                    username=rt_data.get("username"),
                    password=rt_data.get("password"),
                    keepalive=rt_data.get("keepalive", config.realtime.keepalive),
                )

            if "feed" in data:
                config.feed = FeedConfig(
                    snapshot_limit=data["feed"].get(
                        "snapshot_limit", config.feed.snapshot_limit
                    )
                )

            if "viewer" in data:
                viewer_data = data["viewer"]
                config.viewer = ViewerConfig(
                    user_id=str(viewer_data.get("user_id", "")),
                    email=viewer_data.get("email", ""),
                )

    return _apply_env_overrides(config)

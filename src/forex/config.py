"""Configuration system using pydantic-settings with environment variable loading."""

from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class QuoteServiceSettings(BaseSettings):
    """Remote quote source connection settings."""

    model_config = SettingsConfigDict(env_prefix="FOREX_")

    base_url: str = ""
    api_token: SecretStr = SecretStr("")
    timeout_seconds: float = 10.0

    def missing_fields(self) -> list[str]:
        """Return the names of required values that are not configured."""
        missing = []
        if not self.base_url.strip():
            missing.append("base_url")
        if not self.api_token.get_secret_value():
            missing.append("api_token")
        return missing


class StreamingSettings(BaseSettings):
    """Rate streaming parameters."""

    model_config = SettingsConfigDict(env_prefix="STREAM_")

    poll_interval: float = 5.0  # seconds between recurring cycles


class StorageSettings(BaseSettings):
    """Watchlist persistence configuration."""

    model_config = SettingsConfigDict(env_prefix="WATCHLIST_")

    db_path: str = "data/watchlist.db"


class ServerSettings(BaseSettings):
    """HTTP/WebSocket server configuration."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = "0.0.0.0"
    port: int = 8080
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    quotes: QuoteServiceSettings = QuoteServiceSettings()
    streaming: StreamingSettings = StreamingSettings()
    storage: StorageSettings = StorageSettings()
    server: ServerSettings = ServerSettings()

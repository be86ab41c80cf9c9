"""Application settings loaded from environment variables."""

import os
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Kite configuration. All values come from environment variables."""

    # Telegram
    telegram_bot_token: str = Field(default="")
    telegram_webhook_endpoint: str = Field(default="")
    telegram_webhook_secret: str = Field(default="")

    # WebSocket API advertised to hosts
    ws_api_execution_endpoint: str = Field(default="wss://localhost:8443/ws")

    # HTTP server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8443)

    # Database
    database_path: Path = Field(default=Path("data/kite.db"))

    # Uploads (empty public_base_url disables the UPL protocol)
    upload_dir: Path = Field(default=Path("data/uploads"))
    public_base_url: str = Field(default="")

    # Routing
    dispatch_timeout: float = Field(default=10.0)
    history_limit: int = Field(default=10)
    history_page_cap: int = Field(default=100)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_ws_api(self) -> str:
        """Return the WebSocket API endpoint, forced to the ``wss`` scheme."""
        parts = urlsplit(self.ws_api_execution_endpoint)
        if parts.scheme == "wss":
            return self.ws_api_execution_endpoint
        return urlunsplit(("wss", parts.netloc, parts.path, parts.query, parts.fragment))

    def uploads_enabled(self) -> bool:
        return bool(self.public_base_url.strip())


settings = Settings()

"""Configuration management for the SkySpark history client."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from pathlib import Path
import os


def load_secrets_file(secrets_path: str = ".secrets") -> dict:
    """Load secrets from a separate secrets file.

    The secrets file uses the same format as .env files.
    Returns a dict of key-value pairs.
    """
    secrets = {}

    # First secrets file found wins
    paths_to_check = [
        Path(secrets_path),
        Path.home() / ".secrets",
    ]

    for path in paths_to_check:
        if path.is_file():
            with open(path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#"):
                        continue
                    if "=" in line:
                        key, value = line.split("=", 1)
                        secrets[key.strip()] = value.strip()
            break

    return secrets


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # SkySpark project API, e.g. "http://localhost:8080/api/demo/"
    skyspark_url: Optional[str] = Field(default=None, alias="SKYSPARK_URL")
    skyspark_username: Optional[str] = Field(default=None, alias="SKYSPARK_USERNAME")
    # Loaded from .secrets file, not environment
    skyspark_password: Optional[str] = Field(default=None, alias="SKYSPARK_PASSWORD")

    # Transport timeout in whole seconds (0 disables it)
    skyspark_timeout: int = Field(default=30, alias="SKYSPARK_TIMEOUT")

    # Timezone used for writes when none is given
    tz: str = Field(default="UTC", alias="SKYSPARK_TZ")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @property
    def is_complete(self) -> bool:
        """Check that URL and credentials are all present."""
        return bool(self.skyspark_url and self.skyspark_username and self.skyspark_password)


def create_settings(secrets_path: str = ".secrets") -> Settings:
    """Create settings instance, loading secrets from .secrets file."""
    secrets = load_secrets_file(secrets_path)

    # The .secrets file is authoritative for sensitive values
    for key, value in secrets.items():
        if key.endswith("_TOKEN") or key.endswith("_PASSWORD"):
            os.environ[key] = value

    return Settings()

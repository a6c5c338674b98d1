from functools import lru_cache
from pathlib import Path
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Store
    db_path: Path = Field(
        default=Path.home() / ".cache" / "nicindex",
        alias="NICINDEX_DB_PATH",
    )
    db_filename: str = Field(default="nicindex.db", alias="NICINDEX_DB_FILENAME")
    sqlite_echo: bool = Field(default=False, alias="NICINDEX_SQLITE_ECHO")

    # Loading
    progress_interval: int = Field(default=100, alias="NICINDEX_PROGRESS_INTERVAL")
    show_progress: bool = Field(default=True, alias="NICINDEX_SHOW_PROGRESS")

    # Network
    http_timeout: int = Field(default=60, alias="NICINDEX_HTTP_TIMEOUT")
    rdap_timeout: int = Field(default=30, alias="NICINDEX_RDAP_TIMEOUT")
    download_retries: int = Field(default=5, alias="NICINDEX_DOWNLOAD_RETRIES")

    # Misc
    log_level: str = Field(default="INFO", alias="NICINDEX_LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def store_path(self) -> Path:
        return self.db_path / self.db_filename

    def recommended_warnings(self) -> List[str]:
        warnings: List[str] = []
        if self.progress_interval < 1:
            warnings.append(
                (
                    "NICINDEX_PROGRESS_INTERVAL="
                    f"{self.progress_interval}; progress is reported "
                    "on every line."
                )
            )
        if self.http_timeout < 10:
            warnings.append(
                (
                    "NICINDEX_HTTP_TIMEOUT="
                    f"{self.http_timeout} is low; large RIR feeds "
                    "may fail to download."
                )
            )
        if self.download_retries < 1:
            warnings.append(
                "NICINDEX_DOWNLOAD_RETRIES=0; transient download errors are fatal."
            )
        return warnings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def reset_settings_cache() -> None:
    """Clear cached settings (intended for test usage)."""
    get_settings.cache_clear()

"""Configuration management for the Miracle Boot planner.

Loads settings from environment variables and .env files using pydantic-settings.
Provides a cached singleton via get_config().
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from miracle_boot.exceptions import InvalidDriveError


def normalize_drive_letter(value: object) -> str:
    """Return a drive letter as a single uppercase character.

    Accepts ``"c"``, ``"C:"`` and ``"C:\\"`` forms.

    Raises:
        InvalidDriveError: If the value is not a single A-Z letter.
    """
    text = str(value).strip().rstrip("\\/").rstrip(":").upper()
    if len(text) != 1 or not ("A" <= text <= "Z"):
        raise InvalidDriveError(f"Invalid drive letter: {value!r}", details={"value": str(value)})
    return text


class BootConfig(BaseSettings):
    """Application configuration sourced from environment variables."""

    target_drive: str = Field("C", alias="MIRACLE_TARGET_DRIVE")
    esp_letter: str = Field("S", alias="MIRACLE_ESP_LETTER")
    probe_timeout: int = Field(5, ge=1, le=60, alias="MIRACLE_PROBE_TIMEOUT")
    step_timeout: int = Field(300, ge=1, alias="MIRACLE_STEP_TIMEOUT")
    action_log_path: str = Field("miracle-boot-actions.log", alias="MIRACLE_ACTION_LOG_PATH")
    backup_dir: str = Field("X:\\MiracleBoot\\Backups", alias="MIRACLE_BACKUP_DIR")
    driver_path: str = Field("X:\\Drivers", alias="MIRACLE_DRIVER_PATH")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("target_drive", "esp_letter", mode="before")
    @classmethod
    def _drive_letter(cls, value: object) -> str:
        try:
            return normalize_drive_letter(value)
        except InvalidDriveError as exc:
            raise ValueError(str(exc)) from exc


@lru_cache(maxsize=1)
def get_config() -> BootConfig:
    """Return a cached singleton of BootConfig."""
    return BootConfig()

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pilgrim_booking.config.paths import default_draft_dir, default_upload_dir, env_file_path

_UNSET = object()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(env_file_path()),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = "dev"
    log_level: str = "INFO"

    database_url: str | None = None

    # Wizard drafts are client-local; this is where the file-backed store keeps them.
    draft_dir: str = Field(default_factory=lambda: str(default_draft_dir()), alias="DRAFT_DIR")
    draft_autosave_seconds: float = Field(default=1.5, alias="DRAFT_AUTOSAVE_SECONDS")

    field_config_refresh_seconds: float = Field(default=60.0, alias="FIELD_CONFIG_REFRESH_SECONDS")

    upload_dir: str = Field(default_factory=lambda: str(default_upload_dir()), alias="UPLOAD_DIR")
    signed_url_ttl_seconds: int = Field(default=3600, alias="SIGNED_URL_TTL_SECONDS")

    booking_reference_prefix: str = Field(default="UMR", alias="BOOKING_REFERENCE_PREFIX")


def require_database_url(value: object = _UNSET) -> str:
    """
    If `value` is provided (even None), use it. Otherwise fall back to settings.database_url.
    This makes the function unit-testable without depending on a local .env file.
    """
    url = settings.database_url if value is _UNSET else value

    if not isinstance(url, str) or not url.strip():
        raise RuntimeError(
            "DATABASE_URL is not set. Add it to .env (recommended) or set it as an environment variable."
        )

    return url


settings = Settings()

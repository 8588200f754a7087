"""Application settings loaded from environment variables via pydantic-settings.

Two sources, in priority order:

  1. Environment variables, e.g. ``OPENROUTER_API_KEY=sk-or-...``
  2. ``.env`` in the working directory (local development)

Field names map to upper-cased variable names.  An empty credential means
"not configured": the provider registry marks providers whose credentials
are all empty as unavailable.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """booking-ocr application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === OCR provider credentials ===
    google_gemini_api_key: str = ""
    google_api_key: str = ""
    openrouter_api_key: str = ""

    # === Provider models / endpoints ===
    gemini_model: str = "gemini-1.5-pro"
    # Tried once on server errors from the primary model; empty disables it.
    gemini_fallback_model: str = "gemini-1.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    openrouter_model: str = "mistralai/pixtral-12b"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"

    # === OCR behaviour ===
    ocr_config_path: str = "config/config.yaml"
    max_upload_mb: int = 20
    max_batch_documents: int = 10
    preprocess_images: bool = True

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"
    cors_origins: str = "*"

    @property
    def gemini_api_key(self) -> str:
        """Gemini key, falling back to the generic Google key."""
        return self.google_gemini_api_key or self.google_api_key

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def has_credential(self, field_name: str) -> bool:
        """Return ``True`` if the settings field *field_name* is a non-empty string."""
        return bool(str(getattr(self, field_name, "") or "").strip())

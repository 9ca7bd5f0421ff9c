"""
YKS OCR service configuration.

Values are read from the .env file (or environment variables) with the
OCR_ prefix. The only mandatory value is GEMINI_API_KEY: without it the
settings object cannot be built and the service refuses to start.

Parameter reference: .env.example
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings of the YKS OCR service.

    Reads OCR_* variables from .env; the Gemini credential keeps its
    provider name (GEMINI_API_KEY) without the prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Server ---
    port: int = 3000

    # --- Upload: staging and limits ---
    upload_dir: str = "uploads"
    max_file_size_mb: int = 10

    # --- OCR: Tesseract ---
    # Recognition is pinned to one language pack, no auto-detection
    ocr_language: str = "tur"
    ocr_oem: int = 3
    ocr_psm: int = 3

    # --- Refinement: Gemini ---
    gemini_api_key: str = Field(validation_alias="GEMINI_API_KEY", min_length=1)
    gemini_model: str = "gemini-2.5-flash"
    refine_timeout_seconds: float = 30.0
    min_refine_chars: int = 10

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


# Global settings instance
settings = Settings()

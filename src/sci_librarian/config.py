"""
Configuration module for sci-librarian.

This module centralizes the loading and validation of all configuration
parameters from environment variables. It provides a single `Settings`
class that acts as a container for all configurable values, ensuring
that they are defined in one place and can be easily imported and used
throughout the application.
"""

from __future__ import annotations

import os
from typing import Literal

DEFAULT_LLM_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_AI_MODELS = "mistralai/mistral-small-3.2-24b-instruct"


class Settings:
    """
    A container for all configuration settings, loaded from environment variables.

    This class centralizes configuration, providing default values for optional
    settings and raising errors for missing required settings.
    """

    # --- Dropbox API Configuration ---
    DROPBOX_TOKEN: str
    DROPBOX_UPLOAD_PREFIX: str
    DROPBOX_TIMEOUT: int

    # --- LLM Configuration ---
    LLM_API_KEY: str
    LLM_BASE_URL: str
    AI_MODELS: list[str]
    OCR_MODEL: str
    REQUEST_TIMEOUT: int

    # --- Retry Configuration ---
    MAX_RETRIES: int
    MAX_RETRY_BACKOFF_SECONDS: int

    # --- Batch Configuration ---
    RULES_FILE: str
    BATCH_SIZE: int
    DOCUMENT_WORKERS: int

    # --- Text Extraction ---
    MAX_PAGES: int
    OCR_FALLBACK: bool
    OCR_DPI: int

    # --- Logging ---
    LOG_LEVEL: str
    LOG_FORMAT: Literal["console", "json"]

    def __init__(self):
        """
        Loads settings from environment variables and performs validation.
        """
        # --- Dropbox API Configuration ---
        self.DROPBOX_TOKEN = self._get_required_env("DROPBOX_TOKEN")
        self.DROPBOX_UPLOAD_PREFIX = os.getenv("DROPBOX_UPLOAD_PREFIX", "/")
        self.DROPBOX_TIMEOUT = self._get_positive_int("DROPBOX_TIMEOUT", 30)

        # --- LLM Configuration ---
        # Only the commands that call the LLM need a key; see `require_llm`.
        self.LLM_API_KEY = os.getenv("LLM_API_KEY", "")
        self.LLM_BASE_URL = os.getenv("LLM_BASE_URL", DEFAULT_LLM_BASE_URL).rstrip("/")
        self.AI_MODELS = self._get_list("AI_MODELS", DEFAULT_AI_MODELS)
        if not self.AI_MODELS:
            raise ValueError("AI_MODELS must name at least one model")
        self.OCR_MODEL = os.getenv("OCR_MODEL", "").strip() or self.AI_MODELS[0]
        self.REQUEST_TIMEOUT = self._get_positive_int("REQUEST_TIMEOUT", 120)

        # --- Retry Configuration ---
        self.MAX_RETRIES = self._get_positive_int("MAX_RETRIES", 3)
        self.MAX_RETRY_BACKOFF_SECONDS = self._get_positive_int(
            "MAX_RETRY_BACKOFF_SECONDS", 30
        )

        # --- Batch Configuration ---
        self.RULES_FILE = os.getenv("RULES_FILE", "rules.json")
        self.BATCH_SIZE = self._get_positive_int("BATCH_SIZE", 10)
        self.DOCUMENT_WORKERS = self._get_positive_int("DOCUMENT_WORKERS", 4)

        # --- Text Extraction ---
        self.MAX_PAGES = self._get_positive_int("MAX_PAGES", 5)
        self.OCR_FALLBACK = self._get_bool("OCR_FALLBACK", False)
        self.OCR_DPI = self._get_positive_int("OCR_DPI", 200)

        # --- Logging ---
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_FORMAT = os.getenv("LOG_FORMAT", "console").lower()
        if self.LOG_FORMAT not in ("console", "json"):
            raise ValueError("LOG_FORMAT must be 'console' or 'json'")

    def require_llm(self) -> None:
        """Raise `ValueError` unless the LLM credentials are configured."""
        if not self.LLM_API_KEY:
            raise ValueError("Required environment variable 'LLM_API_KEY' is not set.")

    def _get_required_env(self, var_name: str) -> str:
        """
        Gets a required environment variable, raising an error if it's not set.
        """
        value = os.getenv(var_name)
        if value is None:
            raise ValueError(f"Required environment variable '{var_name}' is not set.")
        return value

    def _get_positive_int(self, var_name: str, default: int) -> int:
        raw = os.getenv(var_name)
        if raw is None or not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError:
            raise ValueError(f"{var_name} must be an integer, got {raw!r}") from None
        if value < 1:
            raise ValueError(f"{var_name} must be at least 1, got {value}")
        return value

    def _get_bool(self, var_name: str, default: bool) -> bool:
        raw = os.getenv(var_name)
        if raw is None or not raw.strip():
            return default
        value = raw.strip().lower()
        if value in ("1", "true", "yes", "on"):
            return True
        if value in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"{var_name} must be a boolean, got {raw!r}")

    def _get_list(self, var_name: str, default: str) -> list[str]:
        """Parse a comma-separated list, dropping blanks and duplicates."""
        raw = os.getenv(var_name, default)
        items: list[str] = []
        for part in raw.split(","):
            item = part.strip()
            if item and item not in items:
                items.append(item)
        return items

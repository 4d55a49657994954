"""Runtime settings for formvault.

Settings are read from ``FORMVAULT_``-prefixed environment variables or a
``.env`` file in the working directory. ``data_dir`` and ``upload_dir`` must
not point at the same directory: deleting a form removes its upload directory,
and the flat-file backend keeps submissions next to the form document.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FORMVAULT_", env_file=".env", extra="ignore")

    # STORAGE
    storage_backend: Literal["file", "database"] = "file"
    data_dir: str = "./data/forms"
    database_url: str = "sqlite:///./formvault.db"

    # UPLOADS
    upload_dir: str = "./uploads/forms"
    public_base_url: str = ""  # e.g. "https://forms.example.com"; empty keeps url unset

    # FORM DEFINITIONS
    max_conditional_depth: int = 5

    # LISTING
    form_page_limit: int = 10
    submission_page_limit: int = 20

    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler with the package log format.

    Library code only creates module loggers; hosts call this once at startup.
    """
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("formvault").setLevel(level.upper())


__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
]

"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class Settings:
    google_api_key: str
    model: str = "gemini-2.5-flash"
    temperature: float = 0.2
    exclusion_limit: int = 50
    fallback_source_limit: int = 3
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_api_key = os.getenv("GOOGLE_API_KEY") or os.getenv("API_KEY") or ""
    model = os.getenv("FACTORY_FIND_MODEL", "gemini-2.5-flash")
    temperature = float(os.getenv("FACTORY_FIND_TEMPERATURE", "0.2"))
    exclusion_limit = int(os.getenv("FACTORY_FIND_EXCLUSION_LIMIT", "50"))
    fallback_source_limit = int(os.getenv("FACTORY_FIND_FALLBACK_SOURCES", "3"))
    log_level = os.getenv("FACTORY_FIND_LOG_LEVEL", "INFO").strip().upper()

    if not google_api_key:
        logger.warning("GOOGLE_API_KEY is not configured; manufacturer searches will fail.")

    return Settings(
        google_api_key=google_api_key.strip(),
        model=model,
        temperature=temperature,
        exclusion_limit=max(exclusion_limit, 0),
        fallback_source_limit=max(fallback_source_limit, 0),
        log_level=log_level,
    )


def configure_logging(settings: Settings | None = None) -> None:
    """Attach a stream handler to the root logger once per process.

    Streamlit reruns the script on every interaction, so repeated calls must
    not stack duplicate handlers.
    """
    settings = settings or get_settings()
    root = logging.getLogger()
    if not any(getattr(h, "_factory_find", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._factory_find = True
        root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level, logging.INFO))

"""
Configuration.
"""
import logging
import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Mind map settings."""

    # Interactive caps
    max_nodes: int = int(os.getenv("MINDMAP_MAX_NODES", "20"))
    max_connections: int = int(os.getenv("MINDMAP_MAX_CONNECTIONS", "50"))

    # Layout cache (empty dir = memory only)
    cache_dir: str = os.getenv("MINDMAP_CACHE_DIR", "")
    cache_max_entries: int = int(os.getenv("MINDMAP_CACHE_MAX_ENTRIES", "50"))
    cache_ttl_seconds: float = float(os.getenv("MINDMAP_CACHE_TTL_SECONDS", "86400"))

    # Physics
    layout_max_iterations: int = int(os.getenv("MINDMAP_LAYOUT_MAX_ITERATIONS", "50"))

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = os.getenv("MINDMAP_LOG_LEVEL", "INFO").upper()


# Used by the command line tool; services receive settings explicitly.
settings = Settings()


def validate_settings(config: Settings) -> bool:
    """Check caps and cache bounds are usable."""
    ok = True
    for name in ("max_nodes", "max_connections", "cache_max_entries", "layout_max_iterations"):
        if getattr(config, name) <= 0:
            logger.warning("setting %s must be positive, got %s", name, getattr(config, name))
            ok = False
    if config.cache_ttl_seconds <= 0:
        logger.warning("setting cache_ttl_seconds must be positive, got %s", config.cache_ttl_seconds)
        ok = False
    return ok

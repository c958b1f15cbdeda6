"""
Runtime configuration.

Values come from the environment (optionally a `.env` file):

    TEMPLATEFORGE_DATABASE_URL    SQLAlchemy URL for SqlEntityStore (default: in-memory store)
    TEMPLATEFORGE_MAX_DEPTH       Maximum dependency depth before traversal aborts
    TEMPLATEFORGE_LOG_LEVEL       Log level for the `templateforge` loggers
    TEMPLATEFORGE_DEFAULT_BRANCH  Branch recorded on new version records
"""
import os
import logging
from typing import Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_MAX_DEPTH = 64

# Every component logger is a child of this one, e.g. "templateforge.DependencyResolver"
LOGGER_ROOT = "templateforge"


class Settings(BaseModel):
    database_url: Optional[str] = None
    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=1)
    log_level: str = "INFO"
    default_branch: str = "main"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, loading `.env` first."""
        load_dotenv()
        return cls(
            database_url=os.getenv("TEMPLATEFORGE_DATABASE_URL") or None,
            max_depth=int(os.getenv("TEMPLATEFORGE_MAX_DEPTH", DEFAULT_MAX_DEPTH)),
            log_level=os.getenv("TEMPLATEFORGE_LOG_LEVEL", "INFO"),
            default_branch=os.getenv("TEMPLATEFORGE_DEFAULT_BRANCH", "main"),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next `get_settings()` re-reads the environment."""
    global _settings
    _settings = None


def configure_logging(level: Union[int, str, None] = None) -> None:
    """Attach a stream handler to the engine's parent logger and set its level."""
    if level is None:
        level = get_settings().log_level
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger = logging.getLogger(LOGGER_ROOT)
    logger.handlers = [handler]
    logger.setLevel(level)

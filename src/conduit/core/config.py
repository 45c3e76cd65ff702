"""Configuration management for Conduit."""

import os
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

STORE_BACKENDS = ("firestore", "memory")


def setup_logging(level: str = "INFO") -> None:
    """Set up logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def load_environment(env_file: Optional[str] = None) -> None:
    """Load environment variables from .env file.

    Args:
        env_file: Path to .env file. If None, looks for .env in current directory.
    """
    env_path = Path(env_file) if env_file else Path('.env')

    if env_path.exists():
        load_dotenv(env_path)
        logging.info(f"Loaded environment from {env_path}")
    else:
        logging.debug(f"No .env file found at {env_path}")


def get_optional_env(key: str, default: str = "") -> str:
    """Get an optional environment variable."""
    return os.getenv(key, default)


def get_store_backend() -> str:
    """Store backend selected by CONDUIT_STORE (firestore or memory)."""
    backend = get_optional_env("CONDUIT_STORE", "firestore").lower()
    if backend not in STORE_BACKENDS:
        raise ValueError(f"CONDUIT_STORE must be one of {', '.join(STORE_BACKENDS)}, got '{backend}'")
    return backend

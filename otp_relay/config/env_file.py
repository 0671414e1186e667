"""
Mirrors runtime configuration changes into the .env file.
"""

import logging
from typing import Optional

from dotenv import set_key

logger = logging.getLogger(__name__)


def save_env_value(env_file: Optional[str], key: str, value: str) -> bool:
    """
    Write one variable to the env file, keeping every other line.

    Args:
        env_file: Path to the .env file, or None when mirroring is disabled
        key: Variable name (e.g. "LOGIN_PASSWORD")
        value: New value

    Returns:
        True if the file was updated
    """
    if not env_file:
        return False

    try:
        set_key(env_file, key, value, quote_mode="auto")
    except OSError as e:
        logger.error(f"Failed to write {key} to {env_file}: {e}")
        return False

    logger.info(f"{key} saved to {env_file}")
    return True

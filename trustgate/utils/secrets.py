"""
Secrets lookup for TRUSTGATE.

Supports multiple secret sources:
1. {NAME}_FILE environment variable (path to a file holding the secret)
2. {NAME} environment variable
3. /run/secrets/{name} (Docker secrets default path)

Usage:
    from trustgate.utils.secrets import get_secret

    db_password = get_secret("POSTGRES_PASSWORD")
"""
import os
import logging
from typing import Optional
from functools import lru_cache

logger = logging.getLogger(__name__)


def _read_secret_file(path: str) -> Optional[str]:
    try:
        with open(path, 'r') as f:
            return f.read().strip()
    except OSError as e:
        logger.warning(f"Failed to read secret file {path}: {e}")
        return None


@lru_cache(maxsize=32)
def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Resolve a secret by name.

    Args:
        name: Secret name (e.g., "REDIS_PASSWORD")
        default: Returned when no source defines the secret

    Returns:
        Secret value or default
    """
    file_path = os.environ.get(f"{name}_FILE")
    if file_path and os.path.isfile(file_path):
        secret = _read_secret_file(file_path)
        if secret is not None:
            logger.debug(f"Loaded secret {name} from file")
            return secret

    env_value = os.environ.get(name)
    if env_value:
        return env_value

    docker_secret_path = f"/run/secrets/{name.lower()}"
    if os.path.isfile(docker_secret_path):
        secret = _read_secret_file(docker_secret_path)
        if secret is not None:
            logger.debug(f"Loaded secret {name} from Docker secrets")
            return secret

    return default


def mask_secret(secret: str, visible_chars: int = 4) -> str:
    """
    Mask an identifier for safe logging ("abcd...wxyz").
    """
    if not secret or len(secret) <= visible_chars * 2:
        return "***"
    return f"{secret[:visible_chars]}...{secret[-visible_chars:]}"

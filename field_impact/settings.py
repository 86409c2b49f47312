import os
from typing import Dict

from field_impact.errors import ConfigurationError


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _req(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(f"Missing required environment variable: {name}")
    return value


DEFAULT_CACHE_TTL_SECONDS = _env_int("METADATA_CACHE_TTL", 60 * 60)
DEFAULT_BATCH_SIZE = _env_int("METADATA_BATCH_SIZE", 5)
DEFAULT_API_VERSION = os.getenv("SF_API_VERSION", "v57.0")
DEFAULT_HTTP_TIMEOUT = _env_int("SF_HTTP_TIMEOUT", 60)


def get_env() -> Dict[str, str]:
    return {
        "INSTANCE_URL": _req("SF_INSTANCE_URL"),
        "API_VERSION": os.getenv("SF_API_VERSION", DEFAULT_API_VERSION),
    }

import os


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


LITELLM_URL = os.getenv("NODEFLOW_LITELLM_URL", "http://localhost:4000/v1/chat/completions")
DEFAULT_MODEL = os.getenv("NODEFLOW_DEFAULT_MODEL", "gpt-4o-mini")

MAX_CONCURRENCY = max(1, _env_int("NODEFLOW_MAX_CONCURRENCY", 4))
NODE_TIMEOUT_MS = _env_int("NODEFLOW_NODE_TIMEOUT_MS", 30_000)

MAX_IMAGE_BYTES = _env_int("NODEFLOW_MAX_IMAGE_BYTES", 10 * 1024 * 1024)
SUPPORTED_IMAGE_FORMATS = {"JPEG", "PNG", "WEBP", "BMP", "GIF"}

LOG_LEVEL = os.getenv("NODEFLOW_LOG_LEVEL", "INFO").upper()
LOG_MAX_LEN = _env_int("NODEFLOW_LOG_MAX_LEN", 0)

import logging
import os
from dataclasses import dataclass


def _env_flag(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() not in ("0", "false", "no", "off", "")


def _env_log_level(name: str, default: int) -> int:
    val = os.getenv(name)
    if not val:
        return default
    level = logging.getLevelName(val.strip().upper())
    return level if isinstance(level, int) else default


@dataclass
class AppConfig:
    use_gpu: bool
    power_preference: str
    verify_results: bool
    log_level: int
    default_image: str


# Global application constants
APP_CONFIG = AppConfig(
    use_gpu=_env_flag("HISTEQ_USE_GPU", True),
    power_preference=os.getenv("HISTEQ_POWER_PREFERENCE", "high-performance"),
    verify_results=_env_flag("HISTEQ_VERIFY", True),
    log_level=_env_log_level("HISTEQ_LOG_LEVEL", logging.INFO),
    default_image=os.getenv("HISTEQ_DEFAULT_IMAGE", "test.pgm"),
)

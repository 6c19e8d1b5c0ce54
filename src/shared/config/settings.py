"""Service configuration.

Settings are read from the environment (and a local .env file) once at
startup and passed explicitly to the application factory.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple

from dotenv import find_dotenv, load_dotenv

DEFAULT_PORT = 9090
DEFAULT_MAX_UPLOAD_BYTES = 2 * 1024 * 1024 * 1024  # 2 GiB
DEFAULT_ENGINE_TIMEOUT = 3600.0

ENV_PREFIX = "STREAMEME_"


def _get(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _get_int(name: str, default: int, minimum: int = 0) -> int:
    raw = _get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {value}")
    return value


def _get_timeout(name: str, default: float) -> Optional[float]:
    raw = _get(name)
    if raw is None:
        return default
    if raw.lower() in ("none", "off", "0"):
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number of seconds, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{ENV_PREFIX}{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration for the upload service.

    Attributes:
        host, port: Address Uvicorn binds to.
        engine_dir: Directory the inference script runs in.
        engine_python: Interpreter used to run the script, relative to engine_dir.
        engine_script: Inference script name, relative to engine_dir.
        engine_timeout: Seconds before an analysis is abandoned as crashed,
            or None to wait indefinitely.
        max_upload_bytes: Largest accepted request body, or None for no limit.
        max_concurrent_analyses: Engine invocations allowed at once.
        temp_dir: Root for per-invocation scratch directories (system default if None).
        cors_origins: Origins allowed to call the API.
        log_level: Root logging level name.
    """
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    engine_dir: Path = Path("../streameme_inference")
    engine_python: str = "./.venv/bin/python"
    engine_script: str = "inference.py"
    engine_timeout: Optional[float] = DEFAULT_ENGINE_TIMEOUT
    max_upload_bytes: Optional[int] = DEFAULT_MAX_UPLOAD_BYTES
    max_concurrent_analyses: int = 1
    temp_dir: Optional[Path] = None
    cors_origins: Tuple[str, ...] = field(default_factory=lambda: ("*",))
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Builds settings from STREAMEME_* environment variables."""
        load_dotenv(dotenv_path or find_dotenv(usecwd=True))

        max_upload = _get_int("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES)
        temp_dir = _get("TEMP_DIR")
        origins = _get("CORS_ORIGINS", "*")

        return cls(
            host=_get("HOST", "0.0.0.0"),
            port=_get_int("PORT", DEFAULT_PORT, minimum=1),
            engine_dir=Path(_get("ENGINE_DIR", "../streameme_inference")),
            engine_python=_get("ENGINE_PYTHON", "./.venv/bin/python"),
            engine_script=_get("ENGINE_SCRIPT", "inference.py"),
            engine_timeout=_get_timeout("ENGINE_TIMEOUT", DEFAULT_ENGINE_TIMEOUT),
            max_upload_bytes=max_upload or None,  # 0 disables the limit
            max_concurrent_analyses=_get_int("MAX_CONCURRENT_ANALYSES", 1, minimum=1),
            temp_dir=Path(temp_dir) if temp_dir else None,
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            log_level=_get("LOG_LEVEL", "INFO").upper()
        )

    def with_overrides(self, **changes) -> "Settings":
        """Returns a copy with the given fields replaced (e.g. CLI flags)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

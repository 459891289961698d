# mpcsum/config.py
"""Node configuration from environment variables (and an optional .env).

  NODE_ADDRESS=http://127.0.0.1:8001   # required, this node's own base URL
  HOST=127.0.0.1  PORT=8001
  LOG_LEVEL=INFO
  POLL_INTERVAL_S=0.5  PHASE_TIMEOUT_S=30  HTTP_TIMEOUT_S=1.5
  BACKOFF_MAX_S=5  MAX_NOT_FOUND=5
  CORS_ORIGINS=*
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional, TypeVar

from dotenv import find_dotenv, load_dotenv

from .process import normalize_address

T = TypeVar("T")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def load_env_file() -> Optional[str]:
    """Load .env from the working directory (or a parent); returns its path."""
    path = find_dotenv(usecwd=True)
    if path:
        load_dotenv(path)
        return path
    return None


def _parse_level(v: str) -> str:
    level = v.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"unknown log level {v!r}")
    return level


def _positive(cast: Callable[[str], T]) -> Callable[[str], T]:
    def parse(v: str) -> T:
        x = cast(v)
        if x <= 0:
            raise ValueError("must be > 0")
        return x

    return parse


def _csv(v: str) -> List[str]:
    return [x.strip() for x in v.split(",") if x.strip()]


@dataclass
class Settings:
    node_address: str
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    poll_interval: float = 0.5
    phase_timeout: float = 30.0
    http_timeout: float = 1.5
    backoff_max: float = 5.0
    max_not_found: int = 5
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Parse every variable and report all problems at once."""
        env = os.environ if environ is None else environ
        errors: List[str] = []

        def get(name: str, cast: Callable[[str], T], default: T) -> T:
            raw = env.get(name, "")
            if not raw.strip():
                return default
            try:
                return cast(raw)
            except ValueError as e:
                errors.append(f"[{name}]: {e}")
                return default

        node_address = normalize_address(env.get("NODE_ADDRESS", ""))
        if not node_address:
            errors.append("[NODE_ADDRESS]: must be specified and non empty")

        settings = cls(
            node_address=node_address,
            host=get("HOST", str.strip, cls.host),
            port=get("PORT", _positive(int), cls.port),
            log_level=get("LOG_LEVEL", _parse_level, cls.log_level),
            poll_interval=get("POLL_INTERVAL_S", _positive(float), cls.poll_interval),
            phase_timeout=get("PHASE_TIMEOUT_S", _positive(float), cls.phase_timeout),
            http_timeout=get("HTTP_TIMEOUT_S", _positive(float), cls.http_timeout),
            backoff_max=get("BACKOFF_MAX_S", _positive(float), cls.backoff_max),
            max_not_found=get("MAX_NOT_FOUND", _positive(int), cls.max_not_found),
            cors_origins=get("CORS_ORIGINS", _csv, ["*"]),
        )
        if errors:
            raise RuntimeError("invalid configuration: " + ", ".join(errors))
        return settings


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)

import logging
import os
from dataclasses import dataclass
from typing import Optional

from bs4.builder import builder_registry
from dotenv import load_dotenv

DEFAULT_TG_BASE = "https://tgprepanchayat.telangana.gov.in"
DEFAULT_TG_PATH = "/PSPerformance/home"
DEFAULT_TG_TIMEOUT_MS = 20000
DEFAULT_PORT = 5000

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_handler: Optional[logging.Handler] = None


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, built once at startup and passed to the app."""
    tg_base: str = DEFAULT_TG_BASE
    tg_path: str = DEFAULT_TG_PATH
    tg_timeout_ms: int = DEFAULT_TG_TIMEOUT_MS
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    html_parser: str = "html.parser"
    log_level: str = "INFO"

    @property
    def external_url(self) -> str:
        return f"{self.tg_base.removesuffix('/')}{self.tg_path}"

    @property
    def timeout_seconds(self) -> float:
        return self.tg_timeout_ms / 1000


def _int_env(env, name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def load_settings(env=None) -> Settings:
    """Read settings from the environment (after loading a local .env file).

    Every variable is optional. ``env`` can be any mapping and is mainly there
    for tests; by default ``os.environ`` is used.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    log_level = env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"Unknown LOG_LEVEL {log_level!r}")

    timeout_ms = _int_env(env, "TG_TIMEOUT", DEFAULT_TG_TIMEOUT_MS)
    if timeout_ms <= 0:
        raise ConfigError("TG_TIMEOUT must be a positive number of milliseconds")

    return Settings(
        tg_base=env.get("TG_BASE") or DEFAULT_TG_BASE,
        tg_path=env.get("TG_PATH") or DEFAULT_TG_PATH,
        tg_timeout_ms=timeout_ms,
        host=env.get("HOST") or "0.0.0.0",
        port=_int_env(env, "PORT", DEFAULT_PORT),
        html_parser=env.get("HTML_PARSER") or "html.parser",
        log_level=log_level,
    )


def check_html_parser(name: str) -> None:
    """Fail fast when BeautifulSoup has no tree builder for ``name``."""
    if builder_registry.lookup(name) is None:
        raise ConfigError(
            f"HTML parser {name!r} is not available; install it or set HTML_PARSER=html.parser"
        )


def configure_logging(level: str = "INFO") -> logging.Handler:
    global _handler
    root = logging.getLogger()
    # only one handler per process
    if _handler is None:
        _handler = logging.StreamHandler()
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(_handler)
    root.setLevel(level)
    return _handler


def reset_logging() -> None:
    """Remove the installed handler. Mainly for tests."""
    global _handler
    if _handler is not None:
        logging.getLogger().removeHandler(_handler)
        _handler = None

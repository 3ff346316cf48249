from __future__ import annotations

import logging
import os
import re
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from confluence_lib.credentials import UserConfig

VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")

ROOT = Path(__file__).resolve().parents[1]
WORKER_SCRIPT = ROOT / "scripts" / "confluence_stdio_server.py"

DEFAULT_VERSION = "1.0.0"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_WORKER_TIMEOUT = 120.0
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

BASE_URL_VAR = "CONFLUENCE_BASE_URL"
API_TOKEN_VAR = "CONFLUENCE_API_TOKEN"
USER_EMAIL_VAR = "CONFLUENCE_USER_EMAIL"
ENV_FILE_VAR = "CONFLUENCE_MCP_ENV_FILE"


def default_worker_command() -> tuple[str, ...]:
    return (sys.executable, str(WORKER_SCRIPT))


@dataclass(frozen=True)
class Settings:
    base_url: str | None = None
    api_token: str | None = field(default=None, repr=False)
    user_email: str | None = None
    version: str = DEFAULT_VERSION
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    worker_command: tuple[str, ...] = field(default_factory=default_worker_command)
    worker_timeout: float | None = DEFAULT_WORKER_TIMEOUT
    require_auth: bool = False
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL

    def credentials(self) -> UserConfig | None:
        """Process-wide default credentials, or None unless all three are set."""
        if self.base_url and self.api_token and self.user_email:
            return UserConfig(
                base_url=self.base_url.rstrip("/"),
                api_token=self.api_token,
                user_email=self.user_email,
            )
        return None

    def missing_credentials(self) -> list[str]:
        missing = []
        if not self.base_url:
            missing.append(BASE_URL_VAR)
        if not self.api_token:
            missing.append(API_TOKEN_VAR)
        if not self.user_email:
            missing.append(USER_EMAIL_VAR)
        return missing


def _coerce_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return None


def _coerce_float(name: str, value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _coerce_worker_command(value: str | None) -> tuple[str, ...]:
    if value is None or not value.strip():
        return default_worker_command()
    parts = tuple(shlex.split(value))
    if not parts:
        raise ValueError("CONFLUENCE_MCP_WORKER_COMMAND must not be empty")
    return parts


def parse_env_file(path: Path | None) -> dict[str, str]:
    """Read ``KEY=value`` lines; blank lines, comments and malformed lines are skipped."""

    if not path or not path.is_file():
        return {}
    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip().removeprefix("export ").strip()
        key, sep, value = line.partition("=")
        if not sep or line.startswith("#"):
            continue
        values[key.strip()] = value.strip().strip("\"'")
    return values


def expand_env_values(
    values: Mapping[str, str],
    *,
    fallback: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Expand ``${VAR}`` in file order from earlier keys, then ``fallback``, else empty."""

    resolved: dict[str, str] = {}
    fallback = fallback or {}

    def lookup(match: re.Match[str]) -> str:
        name = match.group(1)
        return resolved.get(name, fallback.get(name, ""))

    for key, raw_value in values.items():
        resolved[key] = VAR_PATTERN.sub(lookup, raw_value)
    return resolved


def load_layered_env(
    *,
    env_file: Path | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge a dotenv file under the given environment; real env vars win."""

    base = dict(os.environ if base_env is None else base_env)
    file_values = expand_env_values(parse_env_file(env_file), fallback=base)
    merged = dict(file_values)
    merged.update(base)
    return merged


def load_settings(
    env: Mapping[str, str] | None = None,
    *,
    env_file: Path | None = None,
) -> Settings:
    source = dict(os.environ if env is None else env)
    if env_file is None:
        env_file = Path(source.get(ENV_FILE_VAR) or ".env").expanduser()
    values = load_layered_env(env_file=env_file, base_env=source)

    def get(name: str) -> str | None:
        value = values.get(name)
        return value.strip() if value and value.strip() else None

    port_raw = get("PORT")
    try:
        port = int(port_raw) if port_raw else DEFAULT_PORT
    except ValueError as exc:
        raise ValueError(f"PORT must be an integer, got {port_raw!r}") from exc

    timeout = _coerce_float(
        "CONFLUENCE_MCP_WORKER_TIMEOUT",
        get("CONFLUENCE_MCP_WORKER_TIMEOUT"),
        DEFAULT_WORKER_TIMEOUT,
    )

    return Settings(
        base_url=get(BASE_URL_VAR),
        api_token=get(API_TOKEN_VAR),
        user_email=get(USER_EMAIL_VAR),
        version=get("MCP_SERVER_VERSION") or DEFAULT_VERSION,
        host=get("HOST") or DEFAULT_HOST,
        port=port,
        worker_command=_coerce_worker_command(get("CONFLUENCE_MCP_WORKER_COMMAND")),
        worker_timeout=timeout if timeout > 0 else None,
        require_auth=bool(_coerce_bool(get("CONFLUENCE_MCP_REQUIRE_AUTH"))),
        http_timeout=_coerce_float(
            "CONFLUENCE_MCP_HTTP_TIMEOUT",
            get("CONFLUENCE_MCP_HTTP_TIMEOUT"),
            DEFAULT_HTTP_TIMEOUT,
        ),
        log_level=(get("CONFLUENCE_MCP_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
    )


def configure_logger(name: str, level: str = DEFAULT_LOG_LEVEL) -> logging.Logger:
    """Attach a stderr handler to ``name``; stdout stays reserved for protocol traffic."""

    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger


def child_env(extra: Mapping[str, str] | None = None, *, base: Mapping[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    if extra:
        env.update(extra)
    return env


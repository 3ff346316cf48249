import sys
import textwrap
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402

from confluence_lib.config import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def reset_config_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate config env between tests."""

    for var in (
        "CONFLUENCE_BASE_URL",
        "CONFLUENCE_API_TOKEN",
        "CONFLUENCE_USER_EMAIL",
        "MCP_SERVER_VERSION",
        "HOST",
        "PORT",
        "CONFLUENCE_MCP_WORKER_COMMAND",
        "CONFLUENCE_MCP_WORKER_TIMEOUT",
        "CONFLUENCE_MCP_REQUIRE_AUTH",
        "CONFLUENCE_MCP_HTTP_TIMEOUT",
        "CONFLUENCE_MCP_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    # Keep a stray .env in the working tree out of load_settings().
    monkeypatch.setenv("CONFLUENCE_MCP_ENV_FILE", str(tmp_path / "missing.env"))


@pytest.fixture
def worker_script(tmp_path: Path):
    """Write a throwaway worker script and return the command that runs it."""

    def _write(body: str, name: str = "worker.py") -> tuple[str, ...]:
        path = tmp_path / name
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return (sys.executable, str(path))

    return _write


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        values = {
            "base_url": "https://wiki.example.com",
            "api_token": "default-token",
            "user_email": "default@example.com",
            "version": "9.9.9",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def anyio_backend():
    """Run anyio-marked tests on asyncio, as their markers declare."""

    return "asyncio"

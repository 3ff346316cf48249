import logging
import sys
from pathlib import Path

import pytest

from confluence_lib import config


def test_defaults_without_environment(tmp_path: Path):
    settings = config.load_settings({}, env_file=tmp_path / "absent.env")

    assert settings.port == 8080
    assert settings.host == "0.0.0.0"
    assert settings.version == "1.0.0"
    assert settings.worker_timeout == 120.0
    assert settings.require_auth is False
    assert settings.worker_command == (sys.executable, str(config.WORKER_SCRIPT))
    assert settings.credentials() is None
    assert settings.missing_credentials() == [
        "CONFLUENCE_BASE_URL",
        "CONFLUENCE_API_TOKEN",
        "CONFLUENCE_USER_EMAIL",
    ]


def test_env_file_is_layered_under_real_environment(tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n".join(
            [
                "# comment",
                "CONFLUENCE_HOST=wiki.example.com",
                "export CONFLUENCE_BASE_URL=https://${CONFLUENCE_HOST}/",
                "CONFLUENCE_USER_EMAIL='file@example.com'",
                "PORT=9000",
            ]
        ),
        encoding="utf-8",
    )
    env = {"CONFLUENCE_API_TOKEN": "secret", "PORT": "8181", "CONFLUENCE_MCP_REQUIRE_AUTH": "yes"}

    settings = config.load_settings(env, env_file=env_file)

    assert settings.port == 8181
    assert settings.require_auth is True
    creds = settings.credentials()
    assert creds.base_url == "https://wiki.example.com"
    assert creds.user_email == "file@example.com"
    assert creds.api_token == "secret"
    assert "secret" not in repr(settings)


def test_env_file_location_comes_from_environment(tmp_path: Path):
    env_file = tmp_path / "custom.env"
    env_file.write_text("MCP_SERVER_VERSION=2.3.4\n", encoding="utf-8")

    settings = config.load_settings({"CONFLUENCE_MCP_ENV_FILE": str(env_file)})

    assert settings.version == "2.3.4"


def test_worker_command_and_timeouts(tmp_path: Path):
    settings = config.load_settings(
        {
            "CONFLUENCE_MCP_WORKER_COMMAND": "node dist/index.js --stdio",
            "CONFLUENCE_MCP_WORKER_TIMEOUT": "0",
            "CONFLUENCE_MCP_HTTP_TIMEOUT": "5",
            "CONFLUENCE_MCP_LOG_LEVEL": "debug",
        },
        env_file=tmp_path / "absent.env",
    )

    assert settings.worker_command == ("node", "dist/index.js", "--stdio")
    assert settings.worker_timeout is None
    assert settings.http_timeout == 5.0
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    "env",
    [
        {"PORT": "eighty"},
        {"CONFLUENCE_MCP_WORKER_TIMEOUT": "soon"},
    ],
)
def test_malformed_numbers_are_rejected(env, tmp_path: Path):
    with pytest.raises(ValueError):
        config.load_settings(env, env_file=tmp_path / "absent.env")


def test_expansion_follows_file_order():
    expanded = config.expand_env_values(
        {"A": "${B}-${HOME_DIR}", "B": "b", "C": "${B}/${A}"},
        fallback={"HOME_DIR": "/home/me"},
    )

    assert expanded == {"A": "-/home/me", "B": "b", "C": "b/-/home/me"}


def test_configure_logger_writes_to_stderr_only():
    logger = config.configure_logger("confluence.test_config", "warning")

    assert logger.level == logging.WARNING
    assert logger.propagate is False
    assert [handler.stream for handler in logger.handlers] == [sys.stderr]


def test_child_env_overlays_credentials():
    env = config.child_env({"CONFLUENCE_API_TOKEN": "t"}, base={"PATH": "/bin"})

    assert env == {"PATH": "/bin", "CONFLUENCE_API_TOKEN": "t"}

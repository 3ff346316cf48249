import json
import os
import subprocess
import sys

from starlette.testclient import TestClient

from confluence_lib.bridge import create_app
from confluence_lib.config import WORKER_SCRIPT


def _run_worker(stdin: str, **env_overrides):
    env = {key: value for key, value in os.environ.items() if not key.startswith("CONFLUENCE_")}
    env.update(env_overrides)
    return subprocess.run(
        [sys.executable, str(WORKER_SCRIPT)],
        input=stdin,
        capture_output=True,
        text=True,
        env=env,
        timeout=30,
    )


def test_worker_refuses_to_start_without_credentials(tmp_path):
    result = _run_worker("", CONFLUENCE_MCP_ENV_FILE=str(tmp_path / "absent.env"))

    assert result.returncode == 1
    assert result.stdout == ""
    assert "CONFLUENCE_API_TOKEN" in result.stderr


def test_worker_answers_each_line_then_exits(tmp_path):
    requests = "\n".join(
        [
            json.dumps({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}),
            json.dumps({"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "nope", "arguments": {}}}),
        ]
    )
    result = _run_worker(
        requests + "\n",
        CONFLUENCE_BASE_URL="https://wiki.invalid",
        CONFLUENCE_API_TOKEN="token",
        CONFLUENCE_USER_EMAIL="me@example.com",
        CONFLUENCE_MCP_ENV_FILE=str(tmp_path / "absent.env"),
    )

    assert result.returncode == 0
    responses = [json.loads(line) for line in result.stdout.splitlines()]
    assert [response["id"] for response in responses] == [1, 2]
    assert len(responses[0]["result"]["tools"]) == 5
    assert responses[1]["error"]["code"] == -32601


def test_bridge_lists_tools_through_real_worker(make_settings, tmp_path, monkeypatch):
    monkeypatch.setenv("CONFLUENCE_MCP_ENV_FILE", str(tmp_path / "absent.env"))
    client = TestClient(create_app(make_settings()))

    response = client.get("/mcp/tools")

    assert response.status_code == 200
    names = [tool["name"] for tool in response.json()["result"]["tools"]]
    assert names == ["get_page", "get_child_pages", "create_page", "create_comment", "search_pages"]

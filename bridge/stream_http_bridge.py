#!/usr/bin/env python3
"""
HTTP/SSE bridge for the Confluence MCP worker.

- GET  /health    -> liveness + version; never starts a worker
- GET  /mcp/tools -> tool catalogue, answered by a fresh worker
- POST /mcp/call  -> relays {method, params} to a fresh worker
- GET  /sse       -> streams everything a fresh worker writes until it exits

Each request gets its own stdio worker (scripts/confluence_stdio_server.py by
default, override with CONFLUENCE_MCP_WORKER_COMMAND). Per-request credentials
arrive in the X-Confluence-* headers.
"""

import sys
from pathlib import Path

import uvicorn

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from confluence_lib.bridge import create_app  # noqa: E402
from confluence_lib.config import configure_logger, load_settings  # noqa: E402

settings = load_settings()
logger = configure_logger("confluence", settings.log_level)

app = create_app(settings)


def main() -> None:
    if settings.credentials() is None:
        logger.warning(
            "No default Confluence credentials (%s); requests must carry X-Confluence-* headers",
            ", ".join(settings.missing_credentials()),
        )
    logger.info("Starting Confluence MCP bridge %s on %s:%s", settings.version, settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()

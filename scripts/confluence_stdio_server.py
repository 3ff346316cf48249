#!/usr/bin/env python3
"""Stdio MCP worker exposing the Confluence tools.

Reads line-delimited JSON-RPC from stdin and answers on stdout until stdin
closes. Credentials come from CONFLUENCE_BASE_URL, CONFLUENCE_API_TOKEN and
CONFLUENCE_USER_EMAIL (the bridge sets them per request); diagnostics go to
stderr only.
"""

from __future__ import annotations

import sys
from pathlib import Path

import anyio

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from confluence_lib.config import configure_logger, load_settings  # noqa: E402
from confluence_lib.content_service import ConfluenceClient  # noqa: E402
from confluence_lib.dispatcher import Dispatcher  # noqa: E402
from confluence_lib.stdio_endpoint import serve_stdio  # noqa: E402


def main() -> None:
    settings = load_settings()
    logger = configure_logger("confluence", settings.log_level)

    credentials = settings.credentials()
    if credentials is None:
        missing = ", ".join(settings.missing_credentials())
        raise SystemExit(f"Missing Confluence configuration; set {missing}")

    dispatcher = Dispatcher(lambda: ConfluenceClient(credentials, timeout=settings.http_timeout))
    logger.info("Confluence MCP worker ready for %s", credentials.base_url)
    handled = anyio.run(serve_stdio, dispatcher)
    logger.info("Stdin closed after %d requests", handled)


if __name__ == "__main__":
    main()

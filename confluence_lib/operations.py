from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Mapping

from mcp import types

from confluence_lib import formatting
from confluence_lib.content_service import ConfluenceClient
from confluence_lib.errors import ContentServiceError

LOGGER = logging.getLogger("confluence.operations")

Operation = Callable[..., Awaitable[types.CallToolResult]]


def text_result(text: str) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)])


def _translate(
    exc: ContentServiceError,
    action: str,
    *,
    not_found: str | None = None,
    forbidden: str | None = None,
    conflict: str | None = None,
) -> ContentServiceError:
    if exc.status == 401:
        message = "Authentication failed; check the API token and user email"
    elif exc.status == 403:
        message = forbidden or f"Permission denied while trying to {action}"
    elif exc.status == 404 and not_found:
        message = not_found
    elif exc.status == 409 and conflict:
        message = conflict
    elif exc.status == 400:
        message = f"Failed to {action}, check the parameters: {exc.message}"
    else:
        message = f"Failed to {action}: {exc.message}"
    return ContentServiceError(exc.status, message)


async def _require(lookup: Awaitable[Dict[str, Any]], not_found: str) -> Dict[str, Any]:
    try:
        return await lookup
    except ContentServiceError as exc:
        if exc.status == 404:
            raise ContentServiceError(404, not_found) from exc
        raise


async def get_page(client: ConfluenceClient, *, pageId: str, includeComments: bool = True) -> types.CallToolResult:
    if pageId.isdigit():
        not_found = f"Page not found (ID: {pageId}); it may have been deleted or moved"
    else:
        not_found = f"Invalid page ID format (ID: {pageId})"
    try:
        page = await client.get_page(pageId)
    except ContentServiceError as exc:
        raise _translate(
            exc,
            "get the page",
            not_found=not_found,
            forbidden=f"No permission to access page (ID: {pageId})",
        ) from exc

    comments: list[Dict[str, Any]] = []
    if includeComments:
        try:
            comments = await client.get_comments(pageId)
        except ContentServiceError as exc:
            LOGGER.warning("Could not load comments for page %s: %s", pageId, exc)

    text = formatting.render_page(page, comments, client.web_url(page.get("_links")))
    return text_result(text)


async def get_child_pages(
    client: ConfluenceClient,
    *,
    pageId: str,
    limit: int = 50,
    start: int = 0,
) -> types.CallToolResult:
    try:
        children = await client.get_child_pages(pageId, limit=int(limit), start=int(start))
    except ContentServiceError as exc:
        raise _translate(
            exc,
            "list child pages",
            not_found=f"Parent page not found (ID: {pageId})",
            forbidden=f"No permission to access page (ID: {pageId})",
        ) from exc

    parent_title = ""
    try:
        parent = await client.get_page(pageId, expand="space")
        parent_title = str(parent.get("title") or "")
    except ContentServiceError as exc:
        LOGGER.warning("Could not load parent page %s: %s", pageId, exc)

    urls = [client.web_url(page.get("_links")) for page in children]
    return text_result(formatting.render_child_pages(children, parent_title, urls))


async def create_page(
    client: ConfluenceClient,
    *,
    spaceKey: str,
    title: str,
    content: str,
    parentId: str | None = None,
) -> types.CallToolResult:
    try:
        await _require(client.get_space(spaceKey), f"Space not found: {spaceKey}")
        if parentId:
            await _require(client.get_page(parentId, expand="space"), f"Parent page not found: {parentId}")
        created = await client.create_page(
            space_key=spaceKey,
            title=title,
            content=content,
            parent_id=parentId,
        )
    except ContentServiceError as exc:
        if exc.status == 404:
            raise
        raise _translate(
            exc,
            "create the page",
            forbidden=f"No permission to create pages in space {spaceKey}",
            conflict=f'A page titled "{title}" already exists in this space',
        ) from exc

    text = formatting.render_created_page(created, client.web_url(created.get("_links")), content, parentId)
    return text_result(text)


async def create_comment(client: ConfluenceClient, *, pageId: str, comment: str) -> types.CallToolResult:
    not_found = f"Page not found (ID: {pageId})"
    try:
        page = await _require(client.get_page(pageId, expand="space"), not_found)
        created = await client.create_comment(pageId, comment)
    except ContentServiceError as exc:
        raise _translate(
            exc,
            "create the comment",
            not_found=not_found,
            forbidden=f"No permission to comment on page {pageId}",
        ) from exc

    text = formatting.render_created_comment(
        created,
        pageId,
        str(page.get("title") or ""),
        client.web_url(created.get("_links")),
    )
    return text_result(text)


def build_cql(query: str, space_key: str | None = None) -> str:
    escaped = query.replace("\\", "\\\\").replace('"', '\\"')
    cql = f'type=page AND text~"{escaped}"'
    if space_key:
        cql += f' AND space="{space_key}"'
    return cql


async def search_pages(
    client: ConfluenceClient,
    *,
    query: str,
    spaceKey: str | None = None,
    limit: int = 20,
    start: int = 0,
) -> types.CallToolResult:
    limit = int(limit)
    try:
        if spaceKey:
            await _require(client.get_space(spaceKey), f"Space not found: {spaceKey}")
        payload = await client.search(build_cql(query, spaceKey), limit=limit, start=int(start))
    except ContentServiceError as exc:
        if exc.status == 404:
            raise
        if exc.status == 400:
            raise ContentServiceError(400, f"Invalid search query: {exc.message}") from exc
        scope = f" (space: {spaceKey})" if spaceKey else ""
        raise _translate(exc, "search pages", forbidden=f"No permission to search{scope}") from exc

    results = list(payload.get("results") or [])
    total = payload.get("totalSize")
    if not isinstance(total, int):
        total = payload.get("size") if isinstance(payload.get("size"), int) else len(results)
    urls = [client.web_url(item.get("_links")) for item in results]
    return text_result(formatting.render_search_results(query, spaceKey, results, total, limit, urls))


OPERATIONS: Mapping[str, Operation] = {
    "get_page": get_page,
    "get_child_pages": get_child_pages,
    "create_page": create_page,
    "create_comment": create_comment,
    "search_pages": search_pages,
}

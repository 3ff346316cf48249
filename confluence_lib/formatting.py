"""Markdown renderers for tool results. Pure functions over Confluence payloads."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Iterable, List

TAG_PATTERN = re.compile(r"<[^>]*>")
SPACE_PATTERN = re.compile(r"\s+")

EXCERPT_LENGTH = 200
PREVIEW_LENGTH = 500


def _get(data: Dict[str, Any] | None, *path: str, default: Any = "") -> Any:
    current: Any = data
    for key in path:
        if not isinstance(current, dict):
            return default
        current = current.get(key)
    return default if current is None else current


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def plain_excerpt(storage_html: str, limit: int = EXCERPT_LENGTH) -> str:
    plain = SPACE_PATTERN.sub(" ", TAG_PATTERN.sub("", storage_html or "")).strip()
    return truncate(plain, limit)


def format_timestamp(value: str, *, date_only: bool = False) -> str:
    if not value:
        return ""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%Y-%m-%d") if date_only else parsed.strftime("%Y-%m-%d %H:%M:%S")


def _person(data: Dict[str, Any] | None) -> str:
    name = _get(data, "displayName")
    email = _get(data, "email")
    return f"{name} ({email})" if email else name


def render_page(page: Dict[str, Any], comments: Iterable[Dict[str, Any]], web_url: str) -> str:
    lines = [
        "# Page",
        "",
        f"**Title:** {_get(page, 'title')}",
        f"**ID:** {_get(page, 'id')}",
        f"**Space:** {_get(page, 'space', 'name')} ({_get(page, 'space', 'key')})",
        f"**Status:** {_get(page, 'status')}",
        f"**Version:** {_get(page, 'version', 'number')}",
        f"**Last modified:** {_get(page, 'version', 'when')}",
        f"**Modified by:** {_get(page, 'version', 'by', 'displayName')}",
        f"**Link:** {web_url}",
        "",
        "## Content",
        "",
        _get(page, "body", "storage", "value"),
        "",
    ]
    comment_list = list(comments)
    if not comment_list:
        lines.extend(["## Comments", "", "No comments."])
        return "\n".join(lines)

    lines.extend([f"## Comments ({len(comment_list)})", ""])
    for index, comment in enumerate(comment_list, start=1):
        lines.extend(
            [
                f"### Comment {index}",
                f"**Author:** {_get(comment, 'version', 'by', 'displayName')}",
                f"**Created:** {_get(comment, 'version', 'when')}",
                "",
                _get(comment, "body", "storage", "value"),
                "",
            ]
        )
    return "\n".join(lines).rstrip("\n")


def render_child_pages(
    children: List[Dict[str, Any]],
    parent_title: str,
    web_urls: List[str],
) -> str:
    summary = f"Found {len(children)} child pages"
    if parent_title:
        summary += f" (parent: {parent_title})"
    lines = ["# Child pages", "", summary, ""]
    if not children:
        lines.append("No child pages.")
        return "\n".join(lines)

    lines.append("| Title | ID | Created | Author | Last modified | Modified by | Version | Status |")
    lines.append("|-------|----|---------|--------|---------------|-------------|---------|--------|")
    for page, url in zip(children, web_urls):
        lines.append(
            f"| [{_get(page, 'title')}]({url}) | {_get(page, 'id')} "
            f"| {format_timestamp(_get(page, 'history', 'createdDate'), date_only=True)} "
            f"| {_get(page, 'history', 'createdBy', 'displayName')} "
            f"| {format_timestamp(_get(page, 'version', 'when'), date_only=True)} "
            f"| {_get(page, 'version', 'by', 'displayName')} "
            f"| v{_get(page, 'version', 'number')} | {_get(page, 'status')} |"
        )

    lines.extend(["", "## Details", ""])
    for index, (page, url) in enumerate(zip(children, web_urls), start=1):
        lines.extend(
            [
                f"### {index}. {_get(page, 'title')}",
                f"- **Page ID:** {_get(page, 'id')}",
                f"- **Created:** {format_timestamp(_get(page, 'history', 'createdDate'))}",
                f"- **Author:** {_person(_get(page, 'history', 'createdBy', default=None))}",
                f"- **Last modified:** {format_timestamp(_get(page, 'version', 'when'))}",
                f"- **Modified by:** {_person(_get(page, 'version', 'by', default=None))}",
                f"- **Version:** {_get(page, 'version', 'number')}",
                f"- **Status:** {_get(page, 'status')}",
                f"- **Link:** {url}",
                "",
            ]
        )
    return "\n".join(lines).rstrip("\n")


def render_created_page(page: Dict[str, Any], web_url: str, content: str, parent_id: str | None) -> str:
    lines = [
        "# Page created",
        "",
        "The page was created successfully.",
        "",
        "## Page details",
        "",
        f"- **Title:** {_get(page, 'title')}",
        f"- **Page ID:** {_get(page, 'id')}",
        f"- **Space:** {_get(page, 'space', 'name')} ({_get(page, 'space', 'key')})",
        f"- **Status:** {_get(page, 'status')}",
        f"- **Version:** {_get(page, 'version', 'number')}",
        f"- **Created:** {format_timestamp(_get(page, 'version', 'when'))}",
        f"- **Author:** {_person(_get(page, 'version', 'by', default=None))}",
        f"- **Link:** [open]({web_url})",
    ]
    if parent_id:
        lines.append(f"- **Parent page ID:** {parent_id}")
    lines.extend(["", "## Content preview", "", truncate(content, PREVIEW_LENGTH)])
    return "\n".join(lines)


def render_created_comment(comment: Dict[str, Any], page_id: str, page_title: str, web_url: str) -> str:
    lines = [
        "# Comment created",
        "",
        "The comment was added to the page.",
        "",
        "## Comment details",
        "",
        f"- **Comment ID:** {_get(comment, 'id')}",
        f"- **Page:** {page_title} (ID: {page_id})",
        f"- **Status:** {_get(comment, 'status')}",
        f"- **Version:** {_get(comment, 'version', 'number')}",
        f"- **Created:** {format_timestamp(_get(comment, 'version', 'when'))}",
        f"- **Author:** {_person(_get(comment, 'version', 'by', default=None))}",
        f"- **Link:** [open]({web_url})",
        "",
        "## Comment",
        "",
        _get(comment, "body", "storage", "value"),
    ]
    return "\n".join(lines)


def render_search_results(
    query: str,
    space_key: str | None,
    results: List[Dict[str, Any]],
    total: int,
    limit: int,
    web_urls: List[str],
) -> str:
    summary = f'Query: "{query}"'
    if space_key:
        summary += f" (space: {space_key})"
    summary += f"\nFound {total} results"
    if total > limit:
        summary += f", showing the first {len(results)}"
    lines = ["# Search results", "", summary, ""]

    if not results:
        lines.extend(
            [
                "No matching pages.",
                "",
                "**Suggestions:**",
                "- Try different keywords",
                "- Check the spelling",
                "- Use more general terms",
            ]
        )
        return "\n".join(lines)

    lines.extend(["## Results", ""])
    for index, (result, url) in enumerate(zip(results, web_urls), start=1):
        lines.extend(
            [
                f"### {index}. [{_get(result, 'title')}]({url})",
                "",
                "**Page:**",
                f"- **ID:** {_get(result, 'id')}",
                f"- **Space:** {_get(result, 'space', 'name')} ({_get(result, 'space', 'key')})",
                f"- **Status:** {_get(result, 'status')}",
                f"- **Created:** {format_timestamp(_get(result, 'history', 'createdDate'), date_only=True)}"
                f" by {_get(result, 'history', 'createdBy', 'displayName')}",
                f"- **Last modified:** {format_timestamp(_get(result, 'version', 'when'), date_only=True)}"
                f" by {_get(result, 'version', 'by', 'displayName')}",
                f"- **Version:** v{_get(result, 'version', 'number')}",
                "",
            ]
        )
        excerpt = plain_excerpt(_get(result, "body", "storage", "value"))
        if excerpt:
            lines.extend(["**Excerpt:**", excerpt, ""])
        lines.extend(["---", ""])

    if total > limit:
        remaining = total - len(results)
        lines.append(
            f"**Note:** {remaining} more results are not shown. "
            "Increase `limit` or refine the query to see them."
        )
    return "\n".join(lines).rstrip("\n")

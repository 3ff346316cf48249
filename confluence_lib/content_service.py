"""Thin async client for the Confluence REST API (``/rest/api``)."""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from confluence_lib.credentials import UserConfig
from confluence_lib.errors import ContentServiceError

LOGGER = logging.getLogger("confluence.content_service")

DEFAULT_TIMEOUT = 30.0
MAX_CHILD_LIMIT = 200
MAX_SEARCH_LIMIT = 100


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if not isinstance(body, dict):
        return response.text or response.reason_phrase
    message = str(body.get("message") or response.reason_phrase)
    details = []
    for item in body.get("errors") or []:
        text = item.get("message") if isinstance(item, dict) else None
        if isinstance(text, dict):
            text = text.get("translation") or text.get("key")
        if text:
            details.append(f"- {text}")
    if details:
        return "\n".join([message, *details])
    return message


class ConfluenceClient:
    def __init__(
        self,
        credentials: UserConfig,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.credentials = credentials
        self.timeout = timeout
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self.credentials.base_url

    def web_url(self, links: Dict[str, Any] | None) -> str:
        webui = (links or {}).get("webui") or ""
        return f"{self.base_url}{webui}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self.base_url}/rest/api",
            auth=(self.credentials.user_email, self.credentials.api_token),
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        LOGGER.debug("confluence %s %s params=%s", method, path, params)
        try:
            async with self._client() as client:
                response = await client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            raise ContentServiceError(None, f"Request to Confluence failed: {exc}") from exc
        if response.status_code >= 400:
            raise ContentServiceError(response.status_code, _error_message(response))
        try:
            payload = response.json()
        except ValueError as exc:
            raise ContentServiceError(response.status_code, "Confluence returned a non-JSON response") from exc
        if not isinstance(payload, dict):
            raise ContentServiceError(response.status_code, "Confluence returned an unexpected payload shape")
        return payload

    async def get_page(self, page_id: str, *, expand: str = "body.storage,version,space") -> Dict[str, Any]:
        return await self._request("GET", f"/content/{page_id}", params={"expand": expand})

    async def get_comments(self, page_id: str, *, limit: int = 100) -> list[Dict[str, Any]]:
        payload = await self._request(
            "GET",
            f"/content/{page_id}/child/comment",
            params={"expand": "body.storage,version", "limit": limit},
        )
        return list(payload.get("results") or [])

    async def get_child_pages(self, page_id: str, *, limit: int = 50, start: int = 0) -> list[Dict[str, Any]]:
        payload = await self._request(
            "GET",
            f"/content/{page_id}/child/page",
            params={
                "expand": "version,history,space",
                "limit": min(limit, MAX_CHILD_LIMIT),
                "start": start,
            },
        )
        return list(payload.get("results") or [])

    async def get_space(self, space_key: str) -> Dict[str, Any]:
        return await self._request("GET", f"/space/{space_key}")

    async def create_page(
        self,
        *,
        space_key: str,
        title: str,
        content: str,
        parent_id: str | None = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "type": "page",
            "title": title,
            "space": {"key": space_key},
            "body": {"storage": {"value": content, "representation": "storage"}},
        }
        if parent_id:
            body["ancestors"] = [{"id": parent_id}]
        return await self._request("POST", "/content", json=body)

    async def create_comment(self, page_id: str, comment: str) -> Dict[str, Any]:
        body = {
            "type": "comment",
            "container": {"id": page_id, "type": "page"},
            "body": {"storage": {"value": comment, "representation": "storage"}},
        }
        return await self._request("POST", "/content", json=body)

    async def search(self, cql: str, *, limit: int = 20, start: int = 0) -> Dict[str, Any]:
        return await self._request(
            "GET",
            "/content/search",
            params={
                "cql": cql,
                "expand": "space,version,history,body.storage",
                "limit": min(limit, MAX_SEARCH_LIMIT),
                "start": start,
            },
        )

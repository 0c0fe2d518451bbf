"""Authenticated async HTTP client for the GitLab REST and GraphQL APIs."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from gls.config import Settings
from gls.errors import RemoteFetchError

logger = logging.getLogger("gls.remote")


class GitLabClient:
    """Thin wrapper over httpx.AsyncClient that turns non-2xx responses into RemoteFetchError."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Private-Token": token,
                "Accept": "application/json",
            },
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> GitLabClient:
        return cls(settings.base_url, settings.token, **kwargs)

    async def __aenter__(self) -> GitLabClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, *, scope: str | None, **kwargs: Any) -> httpx.Response:
        logger.debug("%s %s scope=%s", method, path, scope)
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteFetchError(f"{method} {path} failed: {exc}", scope=scope) from exc
        if response.status_code >= 400:
            raise RemoteFetchError(
                f"{method} {path} failed (status {response.status_code})",
                scope=scope,
                status_code=response.status_code,
            )
        return response

    async def get(self, path: str, params: dict[str, Any] | None = None, *, scope: str | None = None) -> httpx.Response:
        return await self._send("GET", path, scope=scope, params=params)

    async def graphql(self, query: str, variables: dict[str, Any], *, scope: str | None = None) -> Any:
        response = await self._send(
            "POST",
            "/api/graphql",
            scope=scope,
            json={"query": query, "variables": variables},
        )
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteFetchError(f"GraphQL malformed response for {scope}", scope=scope) from exc

"""Remote project sources: group-scoped and membership-scoped listings."""
from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from gls.errors import RemoteFetchError
from gls.models import ProjectRecord
from gls.remote.client import GitLabClient

logger = logging.getLogger("gls.remote")

MEMBERSHIP_SCOPE = "membership"

_GROUP_COUNT_QUERY = (
    "query GroupProjectCount($fullPath: ID!) "
    "{ group(fullPath: $fullPath) { projects { count } } }"
)
_GROUP_LISTING_FILTERS = {
    "with_shared": "false",
    "include_subgroups": "true",
    "simple": "true",
    "archived": "false",
}
_MEMBERSHIP_LISTING_FILTERS = {
    "membership": "true",
    "simple": "true",
    "archived": "false",
}


class RemoteSource(Protocol):
    async def count(self, scope: str) -> int: ...

    async def fetch_page(self, scope: str, page: int, page_size: int) -> list[ProjectRecord]: ...


def _json_body(response: httpx.Response, scope: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise RemoteFetchError(f"Listing for {scope} returned invalid JSON", scope=scope) from exc


def _records_from_payload(payload: Any, scope: str, namespace: str | None) -> list[ProjectRecord]:
    if not isinstance(payload, list):
        logger.debug("Listing for %s returned a non-array body; treating as empty page", scope)
        return []
    try:
        return [ProjectRecord.from_api(item, namespace) for item in payload if isinstance(item, dict)]
    except (KeyError, ValidationError) as exc:
        raise RemoteFetchError(f"Listing for {scope} contained a malformed project: {exc}", scope=scope) from exc


class GroupProjectSource:
    """Projects of a group hierarchy (subgroups included, shared and archived excluded)."""

    def __init__(self, client: GitLabClient):
        self.client = client

    async def count(self, scope: str) -> int:
        payload = await self.client.graphql(_GROUP_COUNT_QUERY, {"fullPath": scope}, scope=scope)
        if not isinstance(payload, dict):
            raise RemoteFetchError(f"GraphQL malformed response for {scope}", scope=scope)
        count = ((((payload.get("data") or {}).get("group") or {}).get("projects")) or {}).get("count")
        if not isinstance(count, int) or isinstance(count, bool):
            raise RemoteFetchError(f"GraphQL count missing for {scope}", scope=scope)
        return count

    async def fetch_page(self, scope: str, page: int, page_size: int) -> list[ProjectRecord]:
        response = await self.client.get(
            f"/api/v4/groups/{quote(scope, safe='')}/projects",
            {"per_page": page_size, "page": page, **_GROUP_LISTING_FILTERS},
            scope=scope,
        )
        return _records_from_payload(_json_body(response, scope), scope, scope)


class MembershipProjectSource:
    """Projects the token's user is a member of. Used when no group paths are configured."""

    def __init__(self, client: GitLabClient):
        self.client = client

    async def count(self, scope: str = MEMBERSHIP_SCOPE) -> int:
        response = await self.client.get(
            "/api/v4/projects",
            {"per_page": 1, "page": 1, **_MEMBERSHIP_LISTING_FILTERS},
            scope=scope,
        )
        total = response.headers.get("X-Total")
        if total is None:
            raise RemoteFetchError("Membership listing did not report X-Total", scope=scope)
        try:
            return int(total)
        except ValueError as exc:
            raise RemoteFetchError(f"Membership X-Total header malformed: {total!r}", scope=scope) from exc

    async def fetch_page(self, scope: str, page: int, page_size: int) -> list[ProjectRecord]:
        response = await self.client.get(
            "/api/v4/projects",
            {"per_page": page_size, "page": page, **_MEMBERSHIP_LISTING_FILTERS},
            scope=scope,
        )
        return _records_from_payload(_json_body(response, scope), scope, None)


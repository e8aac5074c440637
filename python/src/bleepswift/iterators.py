"""Paginated listings of containers in an account and objects in a container.

Both iterators keep a marker that advances after each page, so a page is
never returned twice. An empty page means the listing is exhausted::

    it = container.objects(prefix="logs/")
    while True:
        names = await it.next_page(limit=100)
        if not names:
            break
        ...

The detailed variants request ``format=json`` and return typed info records.
Iterating with ``async for`` yields detailed records across all pages.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from bleepswift.errors import SwiftError
from bleepswift.request import Request, RequestOptions, clone_request_options

if TYPE_CHECKING:
    from bleepswift.account import Account
    from bleepswift.container import Container
    from bleepswift.object import Object


@dataclass
class ContainerInfo:
    """A container entry from an account listing."""

    container: Container
    object_count: int = 0
    bytes_used: int = 0
    last_modified: datetime | None = None


@dataclass
class ObjectInfo:
    """An object entry from a container listing.

    When the listing uses a delimiter, pseudo-directories are reported with
    ``subdirectory`` set to the directory name (including the delimiter) and
    all other fields except ``object`` left at their defaults.
    """

    object: Object
    size_bytes: int = 0
    content_type: str = ""
    etag: str = ""
    last_modified: datetime | None = None
    subdirectory: str = ""


class _ListingIterator:
    """Shared paging logic. Subclasses define the listed resource."""

    def __init__(
        self,
        *,
        prefix: str = "",
        marker: str = "",
        end_marker: str = "",
        options: RequestOptions | None = None,
    ) -> None:
        self.prefix = prefix
        self.marker = marker
        self.end_marker = end_marker
        self.options = options

    def _container_name(self) -> str:
        return ""

    def _account(self) -> Account:
        raise NotImplementedError

    def _extra_values(self) -> dict[str, str]:
        return {}

    async def _get_page(self, limit: int, detailed: bool) -> list[Any]:
        opts = clone_request_options(self.options)
        if self.prefix:
            opts.values["prefix"] = self.prefix
        if self.marker:
            opts.values["marker"] = self.marker
        if self.end_marker:
            opts.values["end_marker"] = self.end_marker
        if limit > 0:
            opts.values["limit"] = str(limit)
        opts.values.update(self._extra_values())
        if detailed:
            opts.values["format"] = "json"
            opts.headers.set("Accept", "application/json")
        else:
            opts.headers.set("Accept", "text/plain")

        response = await Request(
            "GET",
            container_name=self._container_name(),
            options=opts,
            expect_status_codes=(200, 204),
        ).do(self._account().backend)
        try:
            body = await response.aread()
        finally:
            await response.aclose()

        if response.status_code == 204 or not body:
            return []
        if detailed:
            try:
                entries = json.loads(body)
            except ValueError as exc:
                raise SwiftError(f"invalid listing response: {exc}") from exc
            if not isinstance(entries, list):
                raise SwiftError("invalid listing response: expected a JSON array")
            return entries
        return [line for line in body.decode("utf-8").split("\n") if line]

    async def next_page(self, limit: int = 0) -> list[str]:
        """Return the names on the next page. ``limit == 0`` uses the server's default."""
        names = await self._get_page(limit, detailed=False)
        if names:
            self.marker = names[-1]
        return names

    async def next_page_detailed(self, limit: int = 0) -> list[Any]:
        raise NotImplementedError

    async def collect(self) -> list[str]:
        """Return the names of all remaining entries."""
        result: list[str] = []
        while True:
            page = await self.next_page()
            if not page:
                return result
            result.extend(page)

    async def collect_detailed(self) -> list[Any]:
        """Return the info records of all remaining entries."""
        result: list[Any] = []
        while True:
            page = await self.next_page_detailed()
            if not page:
                return result
            result.extend(page)

    async def __aiter__(self) -> AsyncIterator[Any]:
        while True:
            page = await self.next_page_detailed()
            if not page:
                return
            for info in page:
                yield info


class ContainerIterator(_ListingIterator):
    """Iterates over the containers in an account."""

    def __init__(self, account: Account, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.account = account

    def _account(self) -> Account:
        return self.account

    async def next_page_detailed(self, limit: int = 0) -> list[ContainerInfo]:
        entries = await self._get_page(limit, detailed=True)
        result = [
            ContainerInfo(
                container=self.account.container(entry["name"]),
                object_count=int(entry.get("count", 0)),
                bytes_used=int(entry.get("bytes", 0)),
                last_modified=_parse_last_modified(entry.get("last_modified")),
            )
            for entry in entries
        ]
        if result:
            self.marker = result[-1].container.name
        return result


class ObjectIterator(_ListingIterator):
    """Iterates over the objects in a container."""

    def __init__(self, container: Container, *, delimiter: str = "", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.container = container
        self.delimiter = delimiter

    def _account(self) -> Account:
        return self.container.account

    def _container_name(self) -> str:
        return self.container.name

    def _extra_values(self) -> dict[str, str]:
        if self.delimiter:
            return {"delimiter": self.delimiter}
        return {}

    async def next_page_detailed(self, limit: int = 0) -> list[ObjectInfo]:
        entries = await self._get_page(limit, detailed=True)
        result: list[ObjectInfo] = []
        for entry in entries:
            if "subdir" in entry:
                result.append(
                    ObjectInfo(
                        object=self.container.object(entry["subdir"]),
                        subdirectory=entry["subdir"],
                    )
                )
                continue
            result.append(
                ObjectInfo(
                    object=self.container.object(entry["name"]),
                    size_bytes=int(entry.get("bytes", 0)),
                    content_type=entry.get("content_type", ""),
                    etag=entry.get("hash", ""),
                    last_modified=_parse_last_modified(entry.get("last_modified")),
                )
            )
        if result:
            self.marker = result[-1].object.name
        return result


def _parse_last_modified(value: str | None) -> datetime | None:
    # Swift reports "2018-02-17T12:34:56.123450" in UTC without a zone suffix.
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise SwiftError(f"invalid last_modified in listing: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

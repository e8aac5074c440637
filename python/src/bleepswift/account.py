"""Account handle: the entry point for all operations on a Swift account."""

from __future__ import annotations

import json
import logging
import re
import weakref
from collections.abc import Iterable
from typing import TYPE_CHECKING

import httpx

from bleepswift import bulk
from bleepswift.backend import Backend
from bleepswift.capabilities import Capabilities
from bleepswift.container import Container
from bleepswift.errors import SwiftError, UnexpectedStatusCodeError
from bleepswift.headers import AccountHeaders, parse_response_headers
from bleepswift.iterators import ContainerIterator
from bleepswift.request import Body, Request, RequestOptions

if TYPE_CHECKING:
    from bleepswift.object import Object

logger = logging.getLogger(__name__)

# Endpoint URLs look like "https://swift.example.com/v1/AUTH_projectid/".
_ENDPOINT_RE = re.compile(r"^(.*/)v1/(.*)/$")

# GET /info results, shared by all handles on the same backend.
_capabilities_cache: weakref.WeakKeyDictionary[Backend, Capabilities] = (
    weakref.WeakKeyDictionary()
)


class Account:
    """A Swift account, bound to a backend.

    Constructing an Account performs no I/O. Headers are fetched on demand
    and cached until the next successful write or ``invalidate()``::

        account = Account(TokenBackend("http://swift:8080/v1/AUTH_test/", token))
        hdr = await account.headers()
        print(hdr.bytes_used.get())
    """

    def __init__(self, backend: Backend) -> None:
        """Initialize the account.

        Raises:
            ValueError: If the backend's endpoint URL does not end in
                ``/v1/<account>/``.
        """
        match = _ENDPOINT_RE.match(backend.endpoint_url)
        if match is None:
            raise ValueError(f"invalid Swift endpoint URL: {backend.endpoint_url!r}")
        self._backend = backend
        self._base_url = match.group(1)
        self._name = match.group(2)
        self._headers: AccountHeaders | None = None

    @property
    def name(self) -> str:
        """The account name, e.g. ``AUTH_projectid``."""
        return self._name

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def base_url(self) -> str:
        """The server's base URL, i.e. the endpoint URL without ``v1/<account>/``."""
        return self._base_url

    def __repr__(self) -> str:
        return f"Account({self._backend.endpoint_url!r})"

    def is_equal_to(self, other: Account) -> bool:
        """Check whether both handles refer to the same account."""
        return self._backend.endpoint_url == other._backend.endpoint_url

    def switch_account(self, account_name: str) -> Account:
        """Return a handle for another account on the same server.

        This is useful for reseller admins that can access other tenants'
        accounts with their own token. The backend is cloned; the returned
        handle shares no cached state with this one.
        """
        endpoint_url = self._base_url + "v1/" + account_name + "/"
        return Account(self._backend.clone(endpoint_url))

    def container(self, name: str) -> Container:
        """Return a handle for the container with the given name. No I/O."""
        return Container(self, name)

    async def exists(self) -> bool:
        """Check whether the account exists (HEAD, 404 means False)."""
        try:
            await self.headers()
        except UnexpectedStatusCodeError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    async def headers(self) -> AccountHeaders:
        """Return the account's headers, from cache or via HEAD.

        Raises:
            UnexpectedStatusCodeError: If the HEAD request fails.
            MalformedHeaderError: If a well-known header cannot be parsed.
        """
        if self._headers is not None:
            return self._headers

        response = await Request(
            "HEAD",
            expect_status_codes=(200, 204),
            drain_response_body=True,
        ).do(self._backend)
        headers = parse_response_headers(AccountHeaders, response.headers)
        self._headers = headers
        return headers

    async def update(
        self,
        headers: AccountHeaders | None = None,
        opts: RequestOptions | None = None,
    ) -> None:
        """Update the account's metadata with a POST request.

        Keys omitted from ``headers`` stay unchanged; use ``clear()`` on a
        field to remove it.
        """
        await Request(
            "POST",
            headers=headers,
            options=opts,
            expect_status_codes=(204,),
            drain_response_body=True,
        ).do(self._backend)
        self.invalidate()

    async def create(
        self,
        headers: AccountHeaders | None = None,
        opts: RequestOptions | None = None,
    ) -> None:
        """Create the account (PUT). Only reseller admins may do this."""
        await Request(
            "PUT",
            headers=headers,
            options=opts,
            expect_status_codes=(201, 202),
            drain_response_body=True,
        ).do(self._backend)
        self.invalidate()

    def invalidate(self) -> None:
        """Drop cached headers. Cached capabilities are kept."""
        self._headers = None

    def containers(
        self,
        prefix: str = "",
        marker: str = "",
        end_marker: str = "",
        opts: RequestOptions | None = None,
    ) -> ContainerIterator:
        """Return an iterator over the containers in this account."""
        return ContainerIterator(
            self, prefix=prefix, marker=marker, end_marker=end_marker, options=opts
        )

    async def capabilities(self) -> Capabilities:
        """Return the capabilities of the server (``GET <base>/info``), cached per backend."""
        cached = _capabilities_cache.get(self._backend)
        if cached is not None:
            return cached

        url = self._base_url + "info"
        response = await self._backend.do(
            httpx.Request("GET", url), lambda: httpx.Request("GET", url)
        )
        try:
            body = await response.aread()
        finally:
            await response.aclose()
        if response.status_code != 200:
            raise UnexpectedStatusCodeError((200,), response, body)

        try:
            data = json.loads(body)
        except ValueError as exc:
            raise SwiftError(f"invalid capabilities response: {exc}") from exc
        capabilities = Capabilities.model_validate(data)
        _capabilities_cache[self._backend] = capabilities
        logger.debug("Loaded capabilities of %s", self._base_url)
        return capabilities

    async def bulk_upload(
        self,
        upload_path: str,
        fmt: bulk.BulkUploadFormat | str,
        contents: Body,
        headers: AccountHeaders | None = None,
        opts: RequestOptions | None = None,
    ) -> int:
        """Extract an archive into this account. See ``bulk.bulk_upload()``."""
        return await bulk.bulk_upload(self, upload_path, fmt, contents, headers, opts)

    async def bulk_delete(
        self,
        objects: Iterable[Object] = (),
        containers: Iterable[Container] = (),
        opts: RequestOptions | None = None,
    ) -> bulk.BulkDeleteResult:
        """Delete many objects and containers. See ``bulk.bulk_delete()``."""
        return await bulk.bulk_delete(self, objects, containers, opts)

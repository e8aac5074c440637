"""Container handle."""

from __future__ import annotations

from typing import TYPE_CHECKING

from bleepswift.errors import UnexpectedStatusCodeError
from bleepswift.headers import ContainerHeaders, parse_response_headers
from bleepswift.iterators import ObjectIterator
from bleepswift.object import Object
from bleepswift.request import Request, RequestOptions

if TYPE_CHECKING:
    from bleepswift.account import Account


class Container:
    """A Swift container in some account.

    Handles are cheap: constructing one performs no I/O, and many handles
    may refer to the same container.
    """

    def __init__(self, account: Account, name: str) -> None:
        self._account = account
        self._name = name
        self._headers: ContainerHeaders | None = None

    @property
    def account(self) -> Account:
        return self._account

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"Container({self._account.backend.endpoint_url!r}, {self._name!r})"

    def is_equal_to(self, other: Container) -> bool:
        """Check whether both handles refer to the same container."""
        return self._name == other._name and self._account.is_equal_to(other._account)

    def object(self, name: str) -> Object:
        """Return a handle for the object with the given name. No I/O."""
        return Object(self, name)

    async def exists(self) -> bool:
        """Check whether the container exists (HEAD, 404 means False)."""
        try:
            await self.headers()
        except UnexpectedStatusCodeError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    async def headers(self) -> ContainerHeaders:
        """Return the container's headers, from cache or via HEAD.

        Raises:
            UnexpectedStatusCodeError: If the HEAD request fails (404 if the
                container does not exist).
            MalformedHeaderError: If a well-known header cannot be parsed.
        """
        if self._headers is not None:
            return self._headers

        response = await Request(
            "HEAD",
            container_name=self._name,
            expect_status_codes=(204,),
            drain_response_body=True,
        ).do(self._account.backend)
        headers = parse_response_headers(ContainerHeaders, response.headers)
        self._headers = headers
        return headers

    async def update(
        self,
        headers: ContainerHeaders | None = None,
        opts: RequestOptions | None = None,
    ) -> None:
        """Update the container's metadata with a POST request."""
        await Request(
            "POST",
            container_name=self._name,
            headers=headers,
            options=opts,
            expect_status_codes=(204,),
            drain_response_body=True,
        ).do(self._account.backend)
        self.invalidate()

    async def create(
        self,
        headers: ContainerHeaders | None = None,
        opts: RequestOptions | None = None,
    ) -> None:
        """Create the container with a PUT request.

        Swift answers 202 when the container already existed; its metadata
        is then updated with the given headers.
        """
        await Request(
            "PUT",
            container_name=self._name,
            headers=headers,
            options=opts,
            expect_status_codes=(201, 202),
            drain_response_body=True,
        ).do(self._account.backend)
        self.invalidate()

    async def delete(
        self,
        headers: ContainerHeaders | None = None,
        opts: RequestOptions | None = None,
    ) -> None:
        """Delete the container. Fails with 409 Conflict if it is not empty."""
        await Request(
            "DELETE",
            container_name=self._name,
            headers=headers,
            options=opts,
            expect_status_codes=(204,),
        ).do(self._account.backend)
        self.invalidate()

    async def ensure_exists(self) -> Container:
        """Create the container if needed, and return this handle for chaining::

            segments = await account.container("archive_segments").ensure_exists()
        """
        await self.create()
        return self

    def invalidate(self) -> None:
        """Drop cached headers; the next headers() call issues a HEAD request."""
        self._headers = None

    def objects(
        self,
        prefix: str = "",
        delimiter: str = "",
        marker: str = "",
        end_marker: str = "",
        opts: RequestOptions | None = None,
    ) -> ObjectIterator:
        """Return an iterator over the objects in this container."""
        return ObjectIterator(
            self,
            prefix=prefix,
            delimiter=delimiter,
            marker=marker,
            end_marker=end_marker,
            options=opts,
        )

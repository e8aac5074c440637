"""Object handle, downloads and uploads with checksum verification."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from bleepswift import largeobject, metrics, tempurl
from bleepswift.errors import (
    ChecksumMismatchError,
    MalformedHeaderError,
    NotLargeError,
    UnexpectedStatusCodeError,
)
from bleepswift.headers import ObjectHeaders, parse_response_headers
from bleepswift.request import (
    Body,
    Request,
    RequestOptions,
    clone_request_options,
    encode_body,
    is_seekable,
)

if TYPE_CHECKING:
    from bleepswift.container import Container
    from bleepswift.largeobject import LargeObject, LargeObjectStrategy

logger = logging.getLogger(__name__)

# Read size when hashing seekable files before upload: 64 KB
_HASH_CHUNK_SIZE = 64 * 1024


class DownloadedObject:
    """The streaming response of ``Object.download()``.

    The body must be consumed exactly once, through ``as_bytes()``,
    ``as_str()`` or ``iter_bytes()``, or released with ``aclose()``::

        async with await obj.download() as dl:
            async for chunk in dl.iter_bytes():
                ...
    """

    def __init__(self, response: httpx.Response, headers: ObjectHeaders) -> None:
        self._response = response
        self._headers = headers

    @property
    def headers(self) -> ObjectHeaders:
        return self._headers

    @property
    def status_code(self) -> int:
        return self._response.status_code

    async def as_bytes(self) -> bytes:
        """Read the entire body and close the response."""
        try:
            return await self._response.aread()
        finally:
            await self._response.aclose()

    async def as_str(self, encoding: str = "utf-8") -> str:
        return (await self.as_bytes()).decode(encoding)

    async def iter_bytes(self, chunk_size: int | None = None) -> AsyncIterator[bytes]:
        """Yield the body in chunks; the response is closed afterwards."""
        try:
            async for chunk in self._response.aiter_bytes(chunk_size):
                yield chunk
        finally:
            await self._response.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()

    async def __aenter__(self) -> DownloadedObject:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


class _HashingStream:
    """Wraps a request body to compute its MD5 and size while it is sent."""

    def __init__(self, source: AsyncIterator[bytes]) -> None:
        self._source = source
        self.hasher = hashlib.md5()
        self.size_bytes = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._source:
            self.hasher.update(chunk)
            self.size_bytes += len(chunk)
            yield chunk


class Object:
    """A Swift object in some container. Constructing one performs no I/O."""

    def __init__(self, container: Container, name: str) -> None:
        self._container = container
        self._name = name
        self._headers: ObjectHeaders | None = None

    @property
    def container(self) -> Container:
        return self._container

    @property
    def name(self) -> str:
        return self._name

    @property
    def full_name(self) -> str:
        """The container name and object name joined by a slash."""
        return self._container.name + "/" + self._name

    @property
    def url(self) -> str:
        """The canonical URL of this object. Accessing it requires a token
        unless the container is public or the URL is signed (see temp_url())."""
        return Request(
            "GET", container_name=self._container.name, object_name=self._name
        ).url(self._container.account.backend.endpoint_url)

    def __repr__(self) -> str:
        return f"Object({self._container.account.backend.endpoint_url!r}, {self.full_name!r})"

    def is_equal_to(self, other: Object) -> bool:
        """Check whether both handles refer to the same object."""
        return self._name == other._name and self._container.is_equal_to(other._container)

    async def exists(self) -> bool:
        """Check whether the object exists (HEAD, 404 means False)."""
        try:
            await self.headers()
        except UnexpectedStatusCodeError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    async def headers(self) -> ObjectHeaders:
        """Return the object's headers, from cache or via HEAD.

        Raises:
            UnexpectedStatusCodeError: If the HEAD request fails.
            MalformedHeaderError: If a well-known header cannot be parsed.
        """
        if self._headers is not None:
            return self._headers

        response = await Request(
            "HEAD",
            container_name=self._container.name,
            object_name=self._name,
            expect_status_codes=(200,),
            drain_response_body=True,
        ).do(self._container.account.backend)
        headers = parse_response_headers(ObjectHeaders, response.headers)
        self._headers = headers
        return headers

    async def update(
        self,
        headers: ObjectHeaders | None = None,
        opts: RequestOptions | None = None,
    ) -> None:
        """Replace the object's metadata with a POST request.

        Object metadata is replaced wholesale: keys missing from ``headers``
        are removed on the server.
        """
        await Request(
            "POST",
            container_name=self._container.name,
            object_name=self._name,
            headers=headers,
            options=opts,
            expect_status_codes=(202,),
            drain_response_body=True,
        ).do(self._container.account.backend)
        self.invalidate()

    async def upload(
        self,
        content: Body = None,
        headers: ObjectHeaders | None = None,
        opts: RequestOptions | None = None,
    ) -> None:
        """Create or replace the object with a PUT request.

        For ``bytes`` and seekable binary files, Content-Length and Etag are
        computed before the request is sent, so the server rejects corrupted
        uploads. For other bodies, the MD5 is computed while streaming and
        compared with the Etag in the response.

        Raises:
            UnexpectedStatusCodeError: If the PUT fails.
            ChecksumMismatchError: If the Etag returned by the server does not
                match the streamed content.
        """
        await self._upload(content, headers, opts, compute_etag=True)

    async def _upload(
        self,
        content: Body,
        headers: ObjectHeaders | None,
        opts: RequestOptions | None,
        *,
        compute_etag: bool,
    ) -> None:
        hdrs = ObjectHeaders()
        hdrs.update_from(headers)
        if compute_etag and opts is not None and "Etag" in opts.headers:
            compute_etag = False
        if compute_etag and hdrs.etag.exists():
            compute_etag = False

        if content is None:
            content = b""
        body: Any
        stream: _HashingStream | None = None
        size_bytes = 0

        if isinstance(content, (bytes, bytearray, memoryview)):
            body = bytes(content)
            size_bytes = len(body)
            if not hdrs.size_bytes.exists():
                hdrs.size_bytes.set(size_bytes)
            if compute_etag:
                hdrs.etag.set(hashlib.md5(body).hexdigest())
        elif is_seekable(content):
            etag, size_bytes = _hash_seekable(content)  # type: ignore[arg-type]
            body = content
            if not hdrs.size_bytes.exists():
                hdrs.size_bytes.set(size_bytes)
            if compute_etag:
                hdrs.etag.set(etag)
        else:
            stream = _HashingStream(encode_body(content))  # type: ignore[arg-type]
            body = stream

        response = await Request(
            "PUT",
            container_name=self._container.name,
            object_name=self._name,
            headers=hdrs,
            options=opts,
            body=body,
            expect_status_codes=(201,),
            drain_response_body=True,
        ).do(self._container.account.backend)
        self.invalidate()

        if stream is not None:
            size_bytes = stream.size_bytes
            if compute_etag:
                expected = stream.hasher.hexdigest()
                actual = response.headers.get("Etag", "").strip('"')
                if expected != actual:
                    logger.warning(
                        "Checksum mismatch on upload of %s: computed %s, server reported %s",
                        self.full_name,
                        expected,
                        actual,
                    )
                    raise ChecksumMismatchError()

        if metrics.bytes_uploaded_total is not None:
            metrics.bytes_uploaded_total.inc(size_bytes)

    async def download(
        self,
        headers: ObjectHeaders | None = None,
        opts: RequestOptions | None = None,
    ) -> DownloadedObject:
        """Retrieve the object's contents with a GET request.

        Returns a DownloadedObject wrapping the streaming response; the
        caller is responsible for consuming or closing it. A plain full GET
        refreshes the cached headers.
        """
        response = await Request(
            "GET",
            container_name=self._container.name,
            object_name=self._name,
            headers=headers,
            options=opts,
            expect_status_codes=(200, 206),
        ).do(self._container.account.backend)
        try:
            hdrs = parse_response_headers(ObjectHeaders, response.headers)
        except MalformedHeaderError:
            await response.aclose()
            raise
        if response.status_code == 200 and not (opts and opts.values):
            self._headers = hdrs
        return DownloadedObject(response, hdrs)

    async def delete(
        self,
        headers: ObjectHeaders | None = None,
        opts: RequestOptions | None = None,
        *,
        delete_segments: bool = False,
    ) -> None:
        """Delete the object.

        For large objects, only the manifest is deleted unless
        ``delete_segments`` is set, in which case the segments are
        bulk-deleted after the manifest.
        """
        segments: list[Object] = []
        if delete_segments:
            try:
                lo = await self.as_large_object()
            except NotLargeError:
                lo = None
            if lo is not None:
                segments = lo.segment_objects()

        await Request(
            "DELETE",
            container_name=self._container.name,
            object_name=self._name,
            headers=headers,
            options=opts,
            expect_status_codes=(204,),
        ).do(self._container.account.backend)
        self.invalidate()
        self._container.invalidate()

        if segments:
            await self._container.account.bulk_delete(segments)

    async def copy_to(
        self,
        target: Object,
        headers: ObjectHeaders | None = None,
        opts: RequestOptions | None = None,
    ) -> None:
        """Copy this object to ``target`` with a server-side COPY request.

        The target may live in another container or another account on the
        same server. Metadata of the source is kept unless overridden by
        ``headers``.
        """
        opts = clone_request_options(opts)
        opts.headers.set(
            "Destination",
            "/" + quote(target.container.name, safe="") + "/" + quote(target.name, safe="/"),
        )
        target_account = target.container.account
        if not target_account.is_equal_to(self._container.account):
            opts.headers.set("Destination-Account", target_account.name)

        await Request(
            "COPY",
            container_name=self._container.name,
            object_name=self._name,
            headers=headers,
            options=opts,
            expect_status_codes=(201,),
            drain_response_body=True,
        ).do(self._container.account.backend)
        target.invalidate()

    def invalidate(self) -> None:
        """Drop cached headers; the next headers() call issues a HEAD request."""
        self._headers = None

    async def as_large_object(self) -> LargeObject:
        """Open this object as a large object.

        If the object does not exist yet, the result is an empty static
        large object without segment container or prefix; set both before
        appending.

        Raises:
            NotLargeError: If the object exists but is not a large object.
            InvalidManifestError: If its SLO manifest cannot be parsed.
        """
        return await largeobject.open_large_object(self)

    async def as_new_large_object(
        self,
        segment_container: Container | None,
        segment_prefix: str,
        strategy: LargeObjectStrategy | None = None,
        delete_segments: bool = False,
    ) -> LargeObject:
        """Start a new large object in place of this object.

        If this object currently is a large object, its segments are
        truncated first (and deleted if ``delete_segments`` is set).
        Nothing is written until segments are appended and the manifest is
        written.
        """
        return await largeobject.new_large_object(
            self,
            segment_container,
            segment_prefix,
            strategy or largeobject.LargeObjectStrategy.STATIC,
            delete_segments,
        )

    async def temp_url(
        self,
        key: str,
        method: str,
        expires_at: datetime | int,
        allowed_digests: list[str] | None = None,
    ) -> str:
        """Return a signed URL granting ``method`` access to this object until
        ``expires_at``. See ``tempurl.temp_url()``."""
        return await tempurl.temp_url(self, key, method, expires_at, allowed_digests)


def _hash_seekable(fileobj: Any) -> tuple[str, int]:
    """Return MD5 hex digest and size of the rest of ``fileobj``, then rewind."""
    start = fileobj.tell()
    hasher = hashlib.md5()
    size_bytes = 0
    while True:
        chunk = fileobj.read(_HASH_CHUNK_SIZE)
        if not chunk:
            break
        hasher.update(chunk)
        size_bytes += len(chunk)
    fileobj.seek(start)
    return hasher.hexdigest(), size_bytes

"""Large objects: one logical object assembled from many segment objects.

Swift supports two kinds of large objects:

* Static large objects (SLO) are described by an explicit manifest, a JSON
  list of segments that may live in any container of the account. Segments
  may be restricted to a byte range of their backing object, or carry small
  amounts of inline data instead of referencing an object.
* Dynamic large objects (DLO) are described by an ``X-Object-Manifest``
  header naming a container and an object name prefix; the content is the
  concatenation of all objects below that prefix, in listing order.

Typical usage::

    segments = await account.container("archive_segments").ensure_exists()
    lo = await account.container("archive").object("dump.tar").as_new_large_object(
        segments, "dump.tar/", delete_segments=True,
    )
    with open("dump.tar", "rb") as f:
        await lo.append(f, segment_size=1 << 30)
    await lo.write_manifest()

Segment uploads are strictly sequential.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import os.path
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from bleepswift import metrics
from bleepswift.errors import (
    AccountMismatchError,
    ContainerMismatchError,
    InvalidManifestError,
    NoContainerNameError,
    NotLargeError,
    SegmentInvalidError,
    UnexpectedStatusCodeError,
)
from bleepswift.manifest import (
    SLOSegmentRecord,
    data_record,
    decode_slo_manifest,
    encode_slo_manifest,
    format_http_range,
    parse_http_range,
)
from bleepswift.request import Body, RequestOptions, clone_request_options, encode_body

if TYPE_CHECKING:
    from bleepswift.container import Container
    from bleepswift.object import Object

logger = logging.getLogger(__name__)

# Counter of the first segment. Sixteen digits sort correctly for any
# realistic number of segments.
INITIAL_INDEX = "0000000000000001"
_MAX_INDEX = 2**64 - 1
_SEGMENT_INDEX_RE = re.compile(r"^(.*?)([0-9]+)$")


class LargeObjectStrategy(enum.Enum):
    """How the segments of a large object are tied together."""

    STATIC = "static"
    DYNAMIC = "dynamic"


@dataclass
class SegmentInfo:
    """One segment of a large object.

    Object-backed segments reference ``object`` (with optional
    ``size_bytes`` and ``etag``, which the server verifies for SLOs). For
    SLOs, the segment may be limited to a byte range of the object:

    ================  ==============  =================================
    range_offset      range_length    segment content
    ================  ==============  =================================
    0                 0               the entire object
    >= 0              > 0             ``length`` bytes from ``offset``
    > 0               0               everything after ``offset``
    < 0               > 0             the last ``length`` bytes
    < 0               0               invalid
    ================  ==============  =================================

    Data segments (SLO only) carry ``data`` inline; all other fields must
    then be left at their defaults. The manifest size is limited, so data
    segments are only suitable for small chunks such as archive headers.
    """

    object: Object | None = None
    size_bytes: int = 0
    etag: str = ""
    range_offset: int = 0
    range_length: int = 0
    data: bytes = b""


class LargeObject:
    """A view of a large object that can be modified and then persisted
    with write_manifest().

    Construct through ``Object.as_large_object()`` (existing objects) or
    ``Object.as_new_large_object()`` (new objects or replacements).

    Attributes:
        object: The object holding the manifest.
        segment_container: Where new segments are uploaded. For DLOs, all
            segments must live there.
        segment_prefix: Name prefix for new segments. For DLOs, all segment
            names must start with it.
        strategy: STATIC or DYNAMIC.
    """

    def __init__(
        self,
        obj: Object,
        segment_container: Container | None = None,
        segment_prefix: str = "",
        strategy: LargeObjectStrategy = LargeObjectStrategy.STATIC,
    ) -> None:
        self.object = obj
        self.segment_container = segment_container
        self.segment_prefix = segment_prefix
        self.strategy = strategy
        self._segments: list[SegmentInfo] = []

    def __repr__(self) -> str:
        return (
            f"LargeObject({self.object.full_name!r}, strategy={self.strategy.value}, "
            f"segments={len(self._segments)})"
        )

    def segments(self) -> list[SegmentInfo]:
        """Return all segments in order. The list is a copy."""
        return list(self._segments)

    def segment_objects(self) -> list[Object]:
        """Return each object referenced by a segment once, in order of
        first occurrence. Data segments are skipped."""
        seen: set[tuple[str, str]] = set()
        result = []
        for segment in self._segments:
            if segment.object is None:
                continue
            key = (segment.object.container.account.backend.endpoint_url, segment.object.full_name)
            if key not in seen:
                seen.add(key)
                result.append(segment.object)
        return result

    def next_segment_object(self) -> Object:
        """Suggest where to upload the next segment.

        The last segment inside the segment container and below the segment
        prefix decides: if its name ends in a counter, the counter is
        incremented with the same number of digits ("seg0009" becomes
        "seg0010", "9999" becomes "10000"); otherwise a counter is
        appended. Without such a segment, the first segment is named
        ``segment_prefix + "0000000000000001"``.

        Raises:
            NoContainerNameError: If segment_container is not set.
        """
        if self.segment_container is None:
            raise NoContainerNameError()

        previous = ""
        for segment in self._segments:
            obj = segment.object
            if obj is None:
                continue
            if obj.container.is_equal_to(self.segment_container) and obj.name.startswith(
                self.segment_prefix
            ):
                previous = obj.name

        if previous:
            name = next_segment_name(previous)
        else:
            name = self.segment_prefix + INITIAL_INDEX
        return self.segment_container.object(name)

    def add_segment(self, segment: SegmentInfo) -> None:
        """Append an already uploaded segment. Performs no I/O.

        Raises:
            SegmentInvalidError: If required fields are missing, the range is
                invalid, or the segment type is not supported by the strategy.
            AccountMismatchError: If the segment lives in another account.
            ContainerMismatchError: If a DLO segment lies outside the segment
                container or prefix.
            NoContainerNameError: For DLOs without a segment container.
        """
        if not segment.data:
            obj = segment.object
            if obj is None:
                raise SegmentInvalidError()
            if not obj.container.account.is_equal_to(self.object.container.account):
                raise AccountMismatchError()

            if self.strategy is LargeObjectStrategy.DYNAMIC:
                if self.segment_container is None:
                    raise NoContainerNameError()
                if segment.range_length != 0 or segment.range_offset != 0:
                    raise SegmentInvalidError("dynamic large objects do not support ranges")
                if not obj.container.is_equal_to(self.segment_container):
                    raise ContainerMismatchError()
                if not obj.name.startswith(self.segment_prefix):
                    raise ContainerMismatchError()
            elif segment.range_length == 0 and segment.range_offset < 0:
                raise SegmentInvalidError("malformed range: last 0 bytes")
        else:
            if self.strategy is not LargeObjectStrategy.STATIC:
                raise SegmentInvalidError("dynamic large objects do not support data segments")
            if (
                segment.object is not None
                or segment.size_bytes != 0
                or segment.etag != ""
                or segment.range_length != 0
                or segment.range_offset != 0
            ):
                raise SegmentInvalidError("data segments must not set any other field")

        self._segments.append(segment)

    async def append(
        self,
        content: Body,
        segment_size: int = 0,
        opts: RequestOptions | None = None,
    ) -> None:
        """Upload ``content`` into new segments appended to this object.

        With ``segment_size > 0``, segments are cut at exactly that size (the
        last one may be shorter). With ``segment_size == 0``, every chunk
        produced by ``content`` becomes one segment; a ``bytes`` value is a
        single chunk, files are read in 64 KB chunks.

        The manifest is not updated; call write_manifest() afterwards.

        Raises:
            NoContainerNameError: If segment_container is not set.
            AccountMismatchError: If segment_container is in another account.
        """
        self._check_segment_container()

        buffer = bytearray()
        async for chunk in _iter_chunks(content):
            if not chunk:
                continue
            if segment_size <= 0:
                await self._upload_segment(bytes(chunk), opts)
                continue
            buffer += chunk
            while len(buffer) >= segment_size:
                await self._upload_segment(bytes(buffer[:segment_size]), opts)
                del buffer[:segment_size]
        if buffer:
            await self._upload_segment(bytes(buffer), opts)

    def open_writer(
        self,
        segment_size: int = 0,
        opts: RequestOptions | None = None,
    ) -> LargeObjectWriter:
        """Return a writer that appends segments and writes the manifest on close.

        Raises:
            NoContainerNameError: If segment_container is not set.
            AccountMismatchError: If segment_container is in another account.
        """
        self._check_segment_container()
        return LargeObjectWriter(self, segment_size, opts)

    async def write_manifest(self, opts: RequestOptions | None = None) -> None:
        """Create or replace the large object by writing its manifest.

        For DLOs, no request is sent if the object already carries the
        correct manifest.
        """
        if self.strategy is LargeObjectStrategy.DYNAMIC:
            await self._write_dlo_manifest(opts)
        else:
            await self._write_slo_manifest(opts)

    async def truncate(
        self,
        delete_segments: bool = False,
        opts: RequestOptions | None = None,
    ) -> None:
        """Remove all segments from this view, deleting their objects if
        ``delete_segments`` is set. The manifest is not updated."""
        if delete_segments:
            objects = self.segment_objects()
            if objects:
                await self.object.container.account.bulk_delete(objects, opts=opts)
        self._segments = []

    def _check_segment_container(self) -> None:
        if self.segment_container is None:
            raise NoContainerNameError()
        if not self.segment_container.account.is_equal_to(self.object.container.account):
            raise AccountMismatchError()

    async def _upload_segment(self, data: bytes, opts: RequestOptions | None) -> None:
        segment = self.next_segment_object()
        await segment.upload(data, opts=opts)
        self.add_segment(
            SegmentInfo(
                object=segment,
                size_bytes=len(data),
                etag=hashlib.md5(data).hexdigest(),
            )
        )
        if metrics.segments_uploaded_total is not None:
            metrics.segments_uploaded_total.inc()
        logger.debug("Uploaded segment %s (%d bytes)", segment.full_name, len(data))

    async def _write_dlo_manifest(self, opts: RequestOptions | None) -> None:
        if self.segment_container is None:
            raise NoContainerNameError()
        manifest = self.segment_container.name + "/" + self.segment_prefix

        try:
            headers = await self.object.headers()
        except UnexpectedStatusCodeError as exc:
            if exc.status_code != 404:
                raise
        else:
            if headers.manifest.get() == manifest:
                return

        opts = clone_request_options(opts)
        opts.headers.set("X-Object-Manifest", manifest)
        await self.object.upload(b"", opts=opts)

    async def _write_slo_manifest(self, opts: RequestOptions | None) -> None:
        records = []
        for segment in self._segments:
            if segment.object is None:
                records.append(data_record(segment.data))
                continue
            records.append(
                SLOSegmentRecord(
                    path="/" + segment.object.full_name,
                    size_bytes=segment.size_bytes or None,
                    etag=segment.etag or None,
                    range=format_http_range(segment.range_offset, segment.range_length),
                )
            )

        opts = clone_request_options(opts)
        opts.headers.delete("X-Object-Manifest")
        opts.values["multipart-manifest"] = "put"
        await self.object._upload(encode_slo_manifest(records), None, opts, compute_etag=False)


class LargeObjectWriter:
    """Writes content into a large object, one segment at a time.

    Use as an async context manager; the manifest is written when the
    block exits without an exception::

        async with lo.open_writer(segment_size=1 << 20) as w:
            await w.write(b"...")
    """

    def __init__(
        self,
        lo: LargeObject,
        segment_size: int = 0,
        opts: RequestOptions | None = None,
    ) -> None:
        self._lo = lo
        self._segment_size = segment_size
        self._opts = opts
        self._buffer = bytearray()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> int:
        """Buffer ``data`` and upload all full segments.

        With ``segment_size == 0``, each non-empty write becomes one segment.
        """
        if self._closed:
            raise ValueError("write to closed LargeObjectWriter")
        if not data:
            return 0
        if self._segment_size <= 0:
            await self._lo._upload_segment(bytes(data), self._opts)
            return len(data)

        self._buffer += data
        while len(self._buffer) >= self._segment_size:
            await self._lo._upload_segment(bytes(self._buffer[: self._segment_size]), self._opts)
            del self._buffer[: self._segment_size]
        return len(data)

    async def close(self) -> None:
        """Upload the buffered remainder and write the manifest. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._buffer:
            await self._lo._upload_segment(bytes(self._buffer), self._opts)
            self._buffer.clear()
        await self._lo.write_manifest(self._opts)

    async def __aenter__(self) -> LargeObjectWriter:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if exc_type is None:
            await self.close()
        else:
            self._closed = True


def next_segment_name(segment_name: str) -> str:
    """Compute the name of the segment following ``segment_name``.

    >>> next_segment_name("archive/0009")
    'archive/0010'
    >>> next_segment_name("archive/first")
    'archive/first0000000000000001'
    """
    match = _SEGMENT_INDEX_RE.match(segment_name)
    if match is None:
        return segment_name + INITIAL_INDEX
    base, digits = match.group(1), match.group(2)

    index = int(digits)
    if index >= _MAX_INDEX:
        # restart, with a dash so that the next call parses the new counter only
        return segment_name + "-" + INITIAL_INDEX
    return base + str(index + 1).zfill(len(digits))


async def open_large_object(obj: Object) -> LargeObject:
    """Open a large object. See ``Object.as_large_object()``."""
    try:
        headers = await obj.headers()
    except UnexpectedStatusCodeError as exc:
        if exc.status_code != 404:
            raise
        # not created yet: empty view, segment container and prefix unset
        return LargeObject(obj)

    if headers.is_static_large_object():
        return await _open_slo(obj)
    if headers.is_dynamic_large_object():
        return await _open_dlo(obj, headers.manifest.get())
    raise NotLargeError()


async def new_large_object(
    obj: Object,
    segment_container: Container | None,
    segment_prefix: str,
    strategy: LargeObjectStrategy,
    delete_segments: bool,
) -> LargeObject:
    """Start a new large object. See ``Object.as_new_large_object()``."""
    if segment_container is None:
        raise NoContainerNameError()
    if not segment_container.account.is_equal_to(obj.container.account):
        raise AccountMismatchError()

    try:
        existing = await open_large_object(obj)
    except NotLargeError:
        existing = None
    if existing is not None:
        await existing.truncate(delete_segments=delete_segments)

    return LargeObject(obj, segment_container, segment_prefix, strategy)


async def _open_dlo(obj: Object, manifest: str) -> LargeObject:
    container_name, sep, prefix = manifest.partition("/")
    if not sep or not container_name:
        raise NotLargeError()

    segment_container = obj.container.account.container(container_name)
    lo = LargeObject(obj, segment_container, prefix, LargeObjectStrategy.DYNAMIC)
    infos = await segment_container.objects(prefix=prefix).collect_detailed()
    for info in infos:
        lo._segments.append(
            SegmentInfo(object=info.object, size_bytes=info.size_bytes, etag=info.etag)
        )
    return lo


async def _open_slo(obj: Object) -> LargeObject:
    opts = RequestOptions(values={"multipart-manifest": "get", "format": "raw"})
    download = await obj.download(opts=opts)
    records = decode_slo_manifest(await download.as_bytes())

    account = obj.container.account
    lo = LargeObject(obj, strategy=LargeObjectStrategy.STATIC)
    for record in records:
        if record.data:
            lo._segments.append(SegmentInfo(data=record.decoded_data()))
            continue

        container_name, object_name = record.split_path()
        segment = SegmentInfo(
            object=account.container(container_name).object(object_name),
            size_bytes=record.size_bytes or 0,
            etag=record.etag or "",
        )
        if record.range:
            try:
                segment.range_offset, segment.range_length = parse_http_range(record.range)
            except ValueError as exc:
                raise InvalidManifestError(
                    f"invalid SLO segment: malformed range: {record.range!r}"
                ) from exc
        lo._segments.append(segment)

    _infer_segment_location(lo)
    return lo


def _infer_segment_location(lo: LargeObject) -> None:
    """Choose segment_container by plurality vote among the segments (ties go
    to the container seen first), and segment_prefix as the longest common
    prefix of the segment names in that container, cut back to the last
    slash if it contains one."""
    votes: dict[str, int] = {}
    for segment in lo._segments:
        if segment.object is not None:
            name = segment.object.container.name
            votes[name] = votes.get(name, 0) + 1
    if not votes:
        return

    winner = max(votes, key=lambda name: votes[name])
    lo.segment_container = lo.object.container.account.container(winner)

    names = [
        segment.object.name
        for segment in lo._segments
        if segment.object is not None and segment.object.container.name == winner
    ]
    prefix = os.path.commonprefix(names)
    if "/" in prefix:
        prefix = prefix[: prefix.rindex("/") + 1]
    lo.segment_prefix = prefix


async def _iter_chunks(content: Body) -> AsyncIterator[bytes]:
    if content is None:
        return
    if isinstance(content, (bytes, bytearray, memoryview)):
        yield bytes(content)
        return
    async for chunk in encode_body(content):  # type: ignore[union-attr]
        yield chunk

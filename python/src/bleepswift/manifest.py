"""Codec for static large object manifests and segment ranges.

An SLO manifest is a JSON array of segment records. A record either
references a backing object::

    {"path": "/segments/archive/0000000000000001", "size_bytes": 1048576,
     "etag": "e4d909c290d0fb1ca068ffaddf22cbd0", "range": "0-1023"}

or carries inline data (base64-encoded)::

    {"data": "aGVsbG8="}

Ranges use the syntax of HTTP byte ranges ("M-N", "-N", "M-") and are
represented as an (offset, length) pair; see ``SegmentInfo`` for the
semantics of that pair.
"""

from __future__ import annotations

import base64
import binascii
from typing import Optional

from pydantic import BaseModel, TypeAdapter, ValidationError

from bleepswift.errors import InvalidManifestError


class SLOSegmentRecord(BaseModel):
    """One record of an SLO manifest, in the ``format=raw`` representation."""

    path: Optional[str] = None
    size_bytes: Optional[int] = None
    etag: Optional[str] = None
    range: Optional[str] = None
    data: Optional[str] = None

    def decoded_data(self) -> bytes:
        """Return the inline data, base64-decoded.

        Raises:
            InvalidManifestError: If the data is not valid base64.
        """
        try:
            return base64.b64decode(self.data or "", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidManifestError(f"invalid SLO data segment: {exc}") from exc

    def split_path(self) -> tuple[str, str]:
        """Split ``path`` into container name and object name.

        Raises:
            InvalidManifestError: If the path does not name an object.
        """
        fields = (self.path or "").lstrip("/").split("/", 1)
        if len(fields) != 2 or not fields[0] or not fields[1]:
            raise InvalidManifestError(f"invalid SLO segment: malformed path: {self.path!r}")
        return fields[0], fields[1]


_MANIFEST_ADAPTER = TypeAdapter(list[SLOSegmentRecord])


def decode_slo_manifest(buf: bytes) -> list[SLOSegmentRecord]:
    """Parse the body of ``GET ?multipart-manifest=get&format=raw``.

    Raises:
        InvalidManifestError: If the body is not a JSON array of records.
    """
    try:
        return _MANIFEST_ADAPTER.validate_json(buf)
    except ValidationError as exc:
        raise InvalidManifestError(f"invalid SLO manifest: {exc}") from exc


def encode_slo_manifest(records: list[SLOSegmentRecord]) -> bytes:
    """Serialize records for ``PUT ?multipart-manifest=put``. Unset fields are omitted."""
    return _MANIFEST_ADAPTER.dump_json(records, exclude_none=True)


def data_record(data: bytes) -> SLOSegmentRecord:
    return SLOSegmentRecord(data=base64.b64encode(data).decode("ascii"))


def parse_http_range(value: str) -> tuple[int, int]:
    """Parse an SLO segment range into (offset, length).

    ======  ====================
    range   (offset, length)
    ======  ====================
    "-"     (0, 0)
    "-N"    (-1, N), N > 0
    "M-"    (M, 0)
    "M-N"   (M, N - M + 1), N >= M
    ======  ====================

    Raises:
        ValueError: If ``value`` is not one of the forms above.
    """
    first, sep, last = value.partition("-")
    if not sep:
        raise ValueError(f"malformed range: {value!r}")

    if first == "":
        if last == "":
            return 0, 0
        length = _parse_uint(last, value)
        if length == 0:
            raise ValueError(f"malformed range: {value!r}")
        return -1, length

    first_byte = _parse_uint(first, value)
    if last == "":
        return first_byte, 0
    last_byte = _parse_uint(last, value)
    if last_byte < first_byte:
        raise ValueError(f"malformed range: {value!r}")
    return first_byte, last_byte - first_byte + 1


def format_http_range(offset: int, length: int) -> Optional[str]:
    """Inverse of parse_http_range(). Returns None for the entire object."""
    if offset < 0:
        return f"-{length}"
    if length > 0:
        return f"{offset}-{offset + length - 1}"
    if offset > 0:
        return f"{offset}-"
    return None


def _parse_uint(field: str, value: str) -> int:
    if not (field.isascii() and field.isdigit()):
        raise ValueError(f"malformed range: {value!r}")
    return int(field)

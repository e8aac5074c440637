"""Type-safe representation of headers on Swift accounts, containers and objects.

Headers live in a case-insensitive map (``Headers``) whose keys are stored in
canonical MIME form (``x-object-meta-foo`` becomes ``X-Object-Meta-Foo``).
Typed field accessors are thin views into such a map: reading a field parses
the raw string, writing a field formats the value back into the map.

Swift's API has two different ways of removing a header on update:

* For account and container headers (including metadata), a key that is
  omitted from a POST stays unchanged on the server. To remove it, send it
  with an empty value, which is what ``clear()`` does.
* Object metadata is replaced wholesale on each POST/PUT, so omitting a key
  (``delete()``) removes it. ``clear()`` has the same effect there.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, MutableMapping
from datetime import datetime, timezone
from typing import TypeVar

import httpx

from bleepswift.errors import MalformedHeaderError

_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def canonical_header_key(key: str) -> str:
    """Return the canonical MIME form of a header name.

    The first letter and every letter following a hyphen are upper-cased, all
    other letters are lower-cased. Keys containing characters that are not
    valid in header names are returned unchanged.
    """
    if not _TOKEN_RE.match(key):
        return key
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


class Headers(MutableMapping[str, str]):
    """A case-insensitive header map that allows only one value per key."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = {}
        if initial:
            for key, value in initial.items():
                self[key] = value

    def __getitem__(self, key: str) -> str:
        return self._data[canonical_header_key(key)]

    def __setitem__(self, key: str, value: str) -> None:
        self._data[canonical_header_key(key)] = value

    def __delitem__(self, key: str) -> None:
        del self._data[canonical_header_key(key)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and canonical_header_key(key) in self._data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data!r})"

    def get(self, key: str, default: str = "") -> str:  # type: ignore[override]
        """Return the value for ``key``, or ``default`` (the empty string)."""
        return self._data.get(canonical_header_key(key), default)

    def set(self, key: str, value: str) -> None:
        """Set a new value, overwriting any previous one."""
        self[key] = value

    def delete(self, key: str) -> None:
        """Remove ``key`` locally; the key stays unchanged on the server."""
        self._data.pop(canonical_header_key(key), None)

    def clear_key(self, key: str) -> None:
        """Set ``key`` to the empty string, so that the server removes it."""
        self[key] = ""

    def copy(self) -> Headers:
        """Return a shallow copy of the same type."""
        result = type(self)()
        result._data = dict(self._data)
        return result

    def update_from(self, other: MutableMapping[str, str] | None) -> None:
        """Copy all entries from ``other`` into this map (``other`` wins)."""
        if other:
            for key, value in other.items():
                self[key] = value

    @classmethod
    def from_http(cls, source: httpx.Headers) -> Headers:
        """Build a header map from a response. Only the first value of a
        multi-valued header is kept."""
        result = cls()
        for key, value in source.multi_items():
            if key not in result:
                result[key] = value
        return result

    def to_http(self) -> dict[str, str]:
        """Return a plain dict suitable for building an ``httpx.Request``."""
        return dict(self._data)

    def validate(self) -> None:
        """Check all well-known fields for malformed values.

        Raises:
            MalformedHeaderError: For the first field that fails to parse.
        """
        for name in getattr(self, "_validated_fields", ()):
            getattr(self, name).validate()


# ---------------------------------------------------------------------------
# Field types
# ---------------------------------------------------------------------------


class _Field:
    __slots__ = ("headers", "key")

    def __init__(self, headers: Headers, key: str) -> None:
        self.headers = headers
        self.key = key

    def exists(self) -> bool:
        """Check whether there is a non-empty value for this header."""
        return self.headers.get(self.key) != ""

    def validate(self) -> None:
        """Readonly and string fields cannot be malformed."""


class _WritableMixin:
    headers: Headers
    key: str

    def delete(self) -> None:
        """Remove this key locally; it stays unchanged on the server during update()."""
        self.headers.delete(self.key)

    def clear(self) -> None:
        """Set this key to the empty string; the server removes it during update()."""
        self.headers.clear_key(self.key)


class StringReadonlyField(_Field):
    """Read access to a header whose value is a string."""

    def get(self) -> str:
        return self.headers.get(self.key)


class StringField(_WritableMixin, StringReadonlyField):
    """Read-write access to a header whose value is a string.

    Example::

        hdr = AccountHeaders()
        hdr.temp_url_key.set("secret")   # same as hdr["X-Account-Meta-Temp-URL-Key"] = "secret"
        hdr.temp_url_key.clear()         # removes the key on the server
    """

    def set(self, value: str) -> None:
        self.headers.set(self.key, value)


class UnsignedIntReadonlyField(_Field):
    """Read access to a header whose value is an unsigned integer."""

    def get(self) -> int:
        """Return the value, or 0 if there is none (or if it is malformed)."""
        try:
            return _parse_uint(self.headers.get(self.key))
        except ValueError:
            return 0

    def validate(self) -> None:
        value = self.headers.get(self.key)
        if value == "":
            return
        try:
            _parse_uint(value)
        except ValueError as exc:
            raise MalformedHeaderError(canonical_header_key(self.key), exc) from exc


class UnsignedIntField(_WritableMixin, UnsignedIntReadonlyField):
    """Read-write access to a header whose value is an unsigned integer."""

    def set(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"{self.key} must not be negative, got {value}")
        self.headers.set(self.key, str(value))


class UnixTimeReadonlyField(_Field):
    """Read access to a header whose value is a UNIX timestamp, possibly
    with fractional seconds (e.g. ``X-Timestamp: 1518870040.12345``)."""

    def get(self) -> datetime | None:
        """Return the value as an aware UTC datetime, or None if absent or invalid."""
        try:
            seconds = float(self.headers.get(self.key))
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None

    def validate(self) -> None:
        value = self.headers.get(self.key)
        if value == "":
            return
        try:
            float(value)
        except ValueError as exc:
            raise MalformedHeaderError(canonical_header_key(self.key), exc) from exc


class UnixTimeField(_WritableMixin, UnixTimeReadonlyField):
    """Read-write access to a UNIX timestamp header (whole seconds on write)."""

    def set(self, value: datetime) -> None:
        self.headers.set(self.key, str(int(value.timestamp())))


class Metadata:
    """A projection onto all headers sharing a metadata prefix.

    Example::

        hdr = ObjectHeaders()
        # the following two statements are equivalent
        hdr["X-Object-Meta-Access"] = "strictly confidential"
        hdr.metadata.set("Access", "strictly confidential")
    """

    __slots__ = ("headers", "prefix")

    def __init__(self, headers: Headers, prefix: str) -> None:
        self.headers = headers
        self.prefix = prefix

    def get(self, key: str) -> str:
        return self.headers.get(self.prefix + key)

    def set(self, key: str, value: str) -> None:
        self.headers.set(self.prefix + key, value)

    def delete(self, key: str) -> None:
        self.headers.delete(self.prefix + key)

    def clear(self, key: str) -> None:
        self.headers.clear_key(self.prefix + key)

    def keys(self) -> list[str]:
        """Return the metadata keys with the prefix stripped."""
        canonical_prefix = canonical_header_key(self.prefix.rstrip("-")) + "-"
        return [
            key[len(canonical_prefix):]
            for key in self.headers
            if key.startswith(canonical_prefix)
        ]

    def items(self) -> list[tuple[str, str]]:
        return [(key, self.get(key)) for key in self.keys()]

    def __contains__(self, key: str) -> bool:
        return (self.prefix + key) in self.headers


def _parse_uint(value: str) -> int:
    if not (value.isascii() and value.isdigit()):
        raise ValueError(f"invalid unsigned integer: {value!r}")
    return int(value)


# ---------------------------------------------------------------------------
# Scoped header types
# ---------------------------------------------------------------------------


class AccountHeaders(Headers):
    """Headers of a Swift account."""

    _validated_fields = (
        "bytes_used",
        "container_count",
        "object_count",
        "bytes_used_quota",
        "timestamp",
    )

    @property
    def bytes_used(self) -> UnsignedIntReadonlyField:
        return UnsignedIntReadonlyField(self, "X-Account-Bytes-Used")

    @property
    def container_count(self) -> UnsignedIntReadonlyField:
        return UnsignedIntReadonlyField(self, "X-Account-Container-Count")

    @property
    def object_count(self) -> UnsignedIntReadonlyField:
        return UnsignedIntReadonlyField(self, "X-Account-Object-Count")

    @property
    def bytes_used_quota(self) -> UnsignedIntField:
        return UnsignedIntField(self, "X-Account-Meta-Quota-Bytes")

    @property
    def temp_url_key(self) -> StringField:
        return StringField(self, "X-Account-Meta-Temp-URL-Key")

    @property
    def temp_url_key_2(self) -> StringField:
        return StringField(self, "X-Account-Meta-Temp-URL-Key-2")

    @property
    def metadata(self) -> Metadata:
        return Metadata(self, "X-Account-Meta-")

    @property
    def timestamp(self) -> UnixTimeReadonlyField:
        return UnixTimeReadonlyField(self, "X-Timestamp")


class ContainerHeaders(Headers):
    """Headers of a Swift container."""

    _validated_fields = (
        "bytes_used",
        "object_count",
        "bytes_used_quota",
        "object_count_quota",
        "timestamp",
    )

    @property
    def bytes_used(self) -> UnsignedIntReadonlyField:
        return UnsignedIntReadonlyField(self, "X-Container-Bytes-Used")

    @property
    def object_count(self) -> UnsignedIntReadonlyField:
        return UnsignedIntReadonlyField(self, "X-Container-Object-Count")

    @property
    def bytes_used_quota(self) -> UnsignedIntField:
        return UnsignedIntField(self, "X-Container-Meta-Quota-Bytes")

    @property
    def object_count_quota(self) -> UnsignedIntField:
        return UnsignedIntField(self, "X-Container-Meta-Quota-Count")

    @property
    def read_acl(self) -> StringField:
        return StringField(self, "X-Container-Read")

    @property
    def write_acl(self) -> StringField:
        return StringField(self, "X-Container-Write")

    @property
    def sync_key(self) -> StringField:
        return StringField(self, "X-Container-Sync-Key")

    @property
    def sync_to(self) -> StringField:
        return StringField(self, "X-Container-Sync-To")

    @property
    def versions_location(self) -> StringField:
        return StringField(self, "X-Versions-Location")

    @property
    def history_location(self) -> StringField:
        return StringField(self, "X-History-Location")

    @property
    def storage_policy(self) -> StringField:
        return StringField(self, "X-Storage-Policy")

    @property
    def temp_url_key(self) -> StringField:
        return StringField(self, "X-Container-Meta-Temp-URL-Key")

    @property
    def temp_url_key_2(self) -> StringField:
        return StringField(self, "X-Container-Meta-Temp-URL-Key-2")

    @property
    def metadata(self) -> Metadata:
        return Metadata(self, "X-Container-Meta-")

    @property
    def timestamp(self) -> UnixTimeReadonlyField:
        return UnixTimeReadonlyField(self, "X-Timestamp")


class ObjectHeaders(Headers):
    """Headers of a Swift object."""

    _validated_fields = (
        "size_bytes",
        "expires_at",
        "expires_after",
        "timestamp",
    )

    @property
    def content_type(self) -> StringField:
        return StringField(self, "Content-Type")

    @property
    def content_disposition(self) -> StringField:
        return StringField(self, "Content-Disposition")

    @property
    def content_encoding(self) -> StringField:
        return StringField(self, "Content-Encoding")

    @property
    def size_bytes(self) -> UnsignedIntField:
        return UnsignedIntField(self, "Content-Length")

    @property
    def etag(self) -> StringField:
        return StringField(self, "Etag")

    @property
    def expires_at(self) -> UnixTimeField:
        return UnixTimeField(self, "X-Delete-At")

    @property
    def expires_after(self) -> UnsignedIntField:
        return UnsignedIntField(self, "X-Delete-After")

    @property
    def manifest(self) -> StringField:
        return StringField(self, "X-Object-Manifest")

    @property
    def metadata(self) -> Metadata:
        return Metadata(self, "X-Object-Meta-")

    @property
    def timestamp(self) -> UnixTimeReadonlyField:
        return UnixTimeReadonlyField(self, "X-Timestamp")

    def is_static_large_object(self) -> bool:
        return self.get("X-Static-Large-Object").lower() == "true"

    def is_dynamic_large_object(self) -> bool:
        return self.manifest.exists()

    def is_large_object(self) -> bool:
        return self.is_static_large_object() or self.is_dynamic_large_object()


H = TypeVar("H", bound=Headers)


def parse_response_headers(cls: type[H], source: httpx.Headers) -> H:
    """Build scoped headers from a response and validate them.

    Raises:
        MalformedHeaderError: If a well-known field is malformed. The parsed
            snapshot is attached to the error as ``.headers``.
    """
    headers = cls.from_http(source)
    try:
        headers.validate()
    except MalformedHeaderError as exc:
        exc.headers = headers
        raise
    return headers

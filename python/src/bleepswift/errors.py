"""Swift client error definitions for BleepSwift."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from bleepswift.headers import Headers


class SwiftError(Exception):
    """Base class for all errors raised by BleepSwift.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnexpectedStatusCodeError(SwiftError):
    """A request to Swift did not yield one of the expected status codes.

    Attributes:
        expected_status_codes: The status codes that would have been accepted.
        response: The actual (already closed) response.
        body: The response body, collected verbatim.
    """

    def __init__(
        self,
        expected_status_codes: tuple[int, ...],
        response: httpx.Response,
        body: bytes = b"",
    ) -> None:
        self.expected_status_codes = tuple(expected_status_codes)
        self.response = response
        self.body = body
        codes = "/".join(str(code) for code in self.expected_status_codes)
        message = f"expected {codes} response, got {response.status_code} instead"
        if body:
            message += ": " + body.decode("utf-8", errors="replace")
        super().__init__(message)

    @property
    def status_code(self) -> int:
        """The status code of the actual response."""
        return self.response.status_code


class MalformedHeaderError(SwiftError):
    """A response from Swift contains a header that cannot be parsed.

    Attributes:
        key: The canonical header name.
        parse_error: The underlying parse error.
        headers: The partially-parsed header snapshot, when available.
    """

    def __init__(self, key: str, parse_error: Exception) -> None:
        super().__init__(f"Bad header {key}: {parse_error}")
        self.key = key
        self.parse_error = parse_error
        self.headers: Headers | None = None


class ChecksumMismatchError(SwiftError):
    """The Etag on an uploaded object does not match the uploaded data."""

    def __init__(
        self,
        message: str = "Etag on uploaded object does not match MD5 checksum of uploaded data",
    ) -> None:
        super().__init__(message)


class NoContainerNameError(SwiftError):
    """A container name is required, but none was given."""

    def __init__(self, message: str = "missing container name") -> None:
        super().__init__(message)


class MalformedContainerNameError(SwiftError):
    """The container name contains a slash."""

    def __init__(self, message: str = "container name may not contain slashes") -> None:
        super().__init__(message)


class NotSupportedError(SwiftError):
    """The operation is not supported by the server."""

    def __init__(self, message: str = "operation not supported by this Swift server") -> None:
        super().__init__(message)


class NotLargeError(SwiftError):
    """The object is not a large object."""

    def __init__(self, message: str = "not a large object") -> None:
        super().__init__(message)


class AccountMismatchError(SwiftError):
    """Two handles that must share an account live in different accounts."""

    def __init__(self, message: str = "some of the given objects are not in this account") -> None:
        super().__init__(message)


class ContainerMismatchError(SwiftError):
    """A segment is not located where a dynamic large object expects it."""

    def __init__(
        self,
        message: str = "segment is not in the segment container below the segment prefix",
    ) -> None:
        super().__init__(message)


class SegmentInvalidError(SwiftError):
    """A segment descriptor violates the rules for this large object."""

    def __init__(self, message: str = "segment invalid or incompatible with large object strategy") -> None:
        super().__init__(message)


class InvalidManifestError(SwiftError):
    """A static large object manifest could not be parsed."""

    def __init__(self, message: str = "invalid SLO manifest") -> None:
        super().__init__(message)


@dataclass
class BulkObjectError:
    """The failure of a single object (or container) in a bulk operation."""

    container_name: str
    object_name: str
    status_code: int

    def __str__(self) -> str:
        if self.object_name:
            return f"{self.container_name}/{self.object_name}: {self.status_code}"
        return f"{self.container_name}: {self.status_code}"


class BulkError(SwiftError):
    """Aggregated failure report of a bulk upload or bulk delete.

    Attributes:
        status_code: The overall HTTP status reported by the server.
        overall_error: Error message not tied to a single object.
        object_errors: Per-object failures.
        number_succeeded: Objects created (upload) or deleted (delete).
        number_not_found: Objects that were already gone (delete only).
    """

    def __init__(
        self,
        status_code: int,
        overall_error: str = "",
        object_errors: list[BulkObjectError] | None = None,
        number_succeeded: int = 0,
        number_not_found: int = 0,
    ) -> None:
        self.status_code = status_code
        self.overall_error = overall_error
        self.object_errors = object_errors or []
        self.number_succeeded = number_succeeded
        self.number_not_found = number_not_found
        super().__init__(self._format())

    def _format(self) -> str:
        result = f"{self.status_code}"
        if self.overall_error:
            result += f" ({self.overall_error})"
        if self.object_errors:
            result += ": " + ", ".join(str(e) for e in self.object_errors)
        return result


def is_status(err: BaseException, code: int) -> bool:
    """Check whether ``err`` is an UnexpectedStatusCodeError for ``code``.

    Example::

        try:
            await container.delete()
        except SwiftError as exc:
            if not is_status(exc, 404):
                raise
    """
    return isinstance(err, UnexpectedStatusCodeError) and err.status_code == code


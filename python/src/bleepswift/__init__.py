"""BleepSwift: an asyncio client library for OpenStack Swift."""

__version__ = "0.1.0"

from bleepswift.account import Account  # noqa: E402
from bleepswift.backend import Backend, TokenBackend, V1AuthBackend  # noqa: E402
from bleepswift.bulk import BulkDeleteResult, BulkUploadFormat  # noqa: E402
from bleepswift.capabilities import Capabilities  # noqa: E402
from bleepswift.container import Container  # noqa: E402
from bleepswift.errors import (  # noqa: E402
    AccountMismatchError,
    BulkError,
    BulkObjectError,
    ChecksumMismatchError,
    ContainerMismatchError,
    InvalidManifestError,
    MalformedContainerNameError,
    MalformedHeaderError,
    NoContainerNameError,
    NotLargeError,
    NotSupportedError,
    SegmentInvalidError,
    SwiftError,
    UnexpectedStatusCodeError,
    is_status,
)
from bleepswift.headers import (  # noqa: E402
    AccountHeaders,
    ContainerHeaders,
    Headers,
    ObjectHeaders,
)
from bleepswift.iterators import (  # noqa: E402
    ContainerInfo,
    ContainerIterator,
    ObjectInfo,
    ObjectIterator,
)
from bleepswift.largeobject import (  # noqa: E402
    LargeObject,
    LargeObjectStrategy,
    LargeObjectWriter,
    SegmentInfo,
)
from bleepswift.object import DownloadedObject, Object  # noqa: E402
from bleepswift.request import Request, RequestOptions  # noqa: E402

__all__ = [
    "Account",
    "AccountHeaders",
    "AccountMismatchError",
    "Backend",
    "BulkDeleteResult",
    "BulkError",
    "BulkObjectError",
    "BulkUploadFormat",
    "Capabilities",
    "ChecksumMismatchError",
    "Container",
    "ContainerHeaders",
    "ContainerInfo",
    "ContainerIterator",
    "ContainerMismatchError",
    "DownloadedObject",
    "Headers",
    "InvalidManifestError",
    "LargeObject",
    "LargeObjectStrategy",
    "LargeObjectWriter",
    "MalformedContainerNameError",
    "MalformedHeaderError",
    "NoContainerNameError",
    "NotLargeError",
    "NotSupportedError",
    "Object",
    "ObjectHeaders",
    "ObjectInfo",
    "ObjectIterator",
    "Request",
    "RequestOptions",
    "SegmentInfo",
    "SegmentInvalidError",
    "SwiftError",
    "TokenBackend",
    "UnexpectedStatusCodeError",
    "V1AuthBackend",
    "is_status",
]

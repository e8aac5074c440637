"""Bulk operations: archive extraction and multi-object deletion.

Both rely on Swift's bulk middleware, whose responses carry a JSON report
instead of a meaningful HTTP status::

    {
        "Response Status": "400 Bad Request",
        "Response Body": "Max delete failures exceeded",
        "Errors": [["/container/object", "409 Conflict"]],
        "Number Deleted": 3,
        "Number Not Found": 1
    }

The report is folded into a ``BulkError`` whenever anything failed.
"""

from __future__ import annotations

import enum
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from bleepswift.errors import (
    AccountMismatchError,
    BulkError,
    BulkObjectError,
    NotSupportedError,
    SwiftError,
    UnexpectedStatusCodeError,
)
from bleepswift.headers import AccountHeaders
from bleepswift.request import Body, Request, RequestOptions, clone_request_options

if TYPE_CHECKING:
    from bleepswift.account import Account
    from bleepswift.container import Container
    from bleepswift.object import Object

logger = logging.getLogger(__name__)

# Swift's default for bulk_delete.max_deletes_per_request
DEFAULT_MAX_DELETES_PER_REQUEST = 10000


class BulkUploadFormat(str, enum.Enum):
    """Archive formats accepted by ``?extract-archive``."""

    TAR = "tar"
    TAR_GZ = "tar.gz"
    TAR_BZ2 = "tar.bz2"


@dataclass
class BulkDeleteResult:
    """Outcome of a successful bulk delete."""

    number_deleted: int = 0
    number_not_found: int = 0


async def bulk_upload(
    account: Account,
    upload_path: str,
    fmt: BulkUploadFormat | str,
    contents: Body,
    headers: AccountHeaders | None = None,
    opts: RequestOptions | None = None,
) -> int:
    """Extract an archive into the account.

    The path of each file in the archive is appended to ``upload_path`` to
    form the full name of the resulting object. For an archive containing
    the file ``a/b/c``:

    * ``upload_path=""`` creates object ``b/c`` in container ``a``;
    * ``upload_path="foo"`` creates object ``a/b/c`` in container ``foo``;
    * ``upload_path="foo/bar"`` creates object ``bar/a/b/c`` in container ``foo``.

    Returns:
        The number of files created.

    Raises:
        NotSupportedError: If the server does not support archive extraction.
        BulkError: If any file failed; ``number_succeeded`` holds the count
            of files that were created anyway.
    """
    caps = await account.capabilities()
    if caps.bulk_upload is None:
        raise NotSupportedError()

    opts = clone_request_options(opts)
    opts.headers.set("Accept", "application/json")
    opts.values["extract-archive"] = BulkUploadFormat(fmt).value

    fields = upload_path.strip("/").split("/", 1)
    container_name = fields[0]
    object_name = fields[1] if len(fields) == 2 else ""

    response = await Request(
        "PUT",
        container_name=container_name,
        object_name=object_name,
        headers=headers,
        options=opts,
        body=contents,
        expect_status_codes=(200,),
    ).do(account.backend)
    try:
        body = await response.aread()
    finally:
        await response.aclose()

    report = _parse_report(body)
    created = int(report.get("Number Files Created", 0))
    status_code = _parse_response_status(report.get("Response Status", ""))
    overall_error = report.get("Response Body", "")
    object_errors = _parse_object_errors(report.get("Errors") or [])

    if object_errors or overall_error or not 200 <= status_code < 300:
        raise BulkError(status_code, overall_error, object_errors, number_succeeded=created)
    logger.debug("Bulk upload into %r created %d files", upload_path, created)
    return created


async def bulk_delete(
    account: Account,
    objects: Iterable[Object] = (),
    containers: Iterable[Container] = (),
    opts: RequestOptions | None = None,
) -> BulkDeleteResult:
    """Delete objects, then containers, in as few requests as possible.

    Uses ``?bulk-delete`` when the server supports it, splitting the names
    into batches of ``max_deletes_per_request``. Otherwise every object and
    container is deleted with its own DELETE request, and 404 responses are
    counted as not found.

    Raises:
        AccountMismatchError: If any handle belongs to a different account.
        BulkError: If anything failed. All batches are attempted before the
            error is raised; it carries the partial counts.
    """
    objects = list(objects)
    containers = list(containers)
    for obj in objects:
        if not obj.container.account.is_equal_to(account):
            raise AccountMismatchError()
    for container in containers:
        if not container.account.is_equal_to(account):
            raise AccountMismatchError()
    if not objects and not containers:
        return BulkDeleteResult()

    caps = await account.capabilities()
    if caps.bulk_delete is None:
        result = await _delete_individually(objects, containers, opts)
    else:
        names = [
            "/" + quote(obj.container.name, safe="") + "/" + quote(obj.name, safe="/")
            for obj in objects
        ]
        names.extend("/" + quote(container.name, safe="") for container in containers)
        batch_size = caps.bulk_delete.max_deletes_per_request or DEFAULT_MAX_DELETES_PER_REQUEST
        result = await _delete_in_batches(account, names, batch_size, opts)

    for obj in objects:
        obj.invalidate()
    for container in containers:
        container.invalidate()
    return result


async def _delete_in_batches(
    account: Account,
    names: list[str],
    batch_size: int,
    opts: RequestOptions | None,
) -> BulkDeleteResult:
    result = BulkDeleteResult()
    status_code = 200
    overall_errors: list[str] = []
    object_errors: list[BulkObjectError] = []

    for start in range(0, len(names), batch_size):
        batch = names[start:start + batch_size]
        req_opts = clone_request_options(opts)
        req_opts.headers.set("Content-Type", "text/plain")
        req_opts.headers.set("Accept", "application/json")
        req_opts.values["bulk-delete"] = ""

        response = await Request(
            "DELETE",
            options=req_opts,
            body="\n".join(batch).encode("utf-8") + b"\n",
            expect_status_codes=(200,),
        ).do(account.backend)
        try:
            body = await response.aread()
        finally:
            await response.aclose()

        report = _parse_report(body)
        result.number_deleted += int(report.get("Number Deleted", 0))
        result.number_not_found += int(report.get("Number Not Found", 0))
        batch_status = _parse_response_status(report.get("Response Status", ""))
        if not 200 <= batch_status < 300:
            status_code = batch_status
        if report.get("Response Body"):
            overall_errors.append(report["Response Body"])
        object_errors.extend(_parse_object_errors(report.get("Errors") or []))
        logger.debug(
            "Bulk delete batch of %d: %d deleted, %d not found",
            len(batch),
            report.get("Number Deleted", 0),
            report.get("Number Not Found", 0),
        )

    if object_errors or overall_errors or not 200 <= status_code < 300:
        if 200 <= status_code < 300:
            status_code = 400
        raise BulkError(
            status_code,
            "; ".join(overall_errors),
            object_errors,
            number_succeeded=result.number_deleted,
            number_not_found=result.number_not_found,
        )
    return result


async def _delete_individually(
    objects: list[Object],
    containers: list[Container],
    opts: RequestOptions | None,
) -> BulkDeleteResult:
    result = BulkDeleteResult()
    object_errors: list[BulkObjectError] = []

    for obj in objects:
        status = await _delete_one(obj, opts, result)
        if status:
            object_errors.append(BulkObjectError(obj.container.name, obj.name, status))
    for container in containers:
        status = await _delete_one(container, opts, result)
        if status:
            object_errors.append(BulkObjectError(container.name, "", status))

    if object_errors:
        raise BulkError(
            object_errors[0].status_code,
            object_errors=object_errors,
            number_succeeded=result.number_deleted,
            number_not_found=result.number_not_found,
        )
    return result


async def _delete_one(
    target: Object | Container,
    opts: RequestOptions | None,
    result: BulkDeleteResult,
) -> int:
    """Delete ``target`` and count the outcome. Returns the status code of a failure, else 0."""
    try:
        await target.delete(opts=opts)
    except UnexpectedStatusCodeError as exc:
        if exc.status_code != 404:
            return exc.status_code
        result.number_not_found += 1
        return 0
    result.number_deleted += 1
    return 0


def _parse_report(body: bytes) -> dict[str, Any]:
    try:
        report = json.loads(body)
    except ValueError as exc:
        raise SwiftError(f"invalid bulk operation report: {exc}") from exc
    if not isinstance(report, dict):
        raise SwiftError("invalid bulk operation report: expected a JSON object")
    return report


def _parse_response_status(status: str) -> int:
    # looks like "201 Created"
    code = status.split(" ", 1)[0]
    try:
        return int(code)
    except ValueError as exc:
        raise SwiftError(f"invalid status in bulk operation report: {status!r}") from exc


def _parse_object_errors(errors: list[Any]) -> list[BulkObjectError]:
    result = []
    for entry in errors:
        if not isinstance(entry, list) or len(entry) != 2:
            continue
        name, status = entry
        fields = str(name).lstrip("/").split("/", 1)
        result.append(
            BulkObjectError(
                container_name=fields[0],
                object_name=fields[1] if len(fields) == 2 else "",
                status_code=_parse_response_status(str(status)),
            )
        )
    return result

"""In-memory fake of a Swift cluster, served through httpx.MockTransport.

Implements the subset of the Swift API that BleepSwift uses: v1 auth,
``/info``, account/container/object CRUD, JSON and plain-text listings,
static and dynamic large objects, COPY, bulk delete and archive extraction.
"""

import base64
import hashlib
import io
import json
import tarfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import unquote

import httpx

BASE_URL = "http://swift.test/"


def md5_hex(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def _last_modified(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")


@dataclass
class FakeObject:
    data: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    slo_manifest: Optional[list[dict[str, Any]]] = None
    etag: str = ""


@dataclass
class FakeContainer:
    meta: dict[str, str] = field(default_factory=dict)
    objects: dict[str, FakeObject] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


@dataclass
class FakeAccount:
    meta: dict[str, str] = field(default_factory=dict)
    containers: dict[str, FakeContainer] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class FakeSwift:
    """A Swift cluster living in memory.

    Attributes:
        accounts: All accounts by name.
        token: The currently valid auth token.
        requests: Log of (method, path, query dict) for every storage request.
        corrupt_etags: When set, object PUTs answer with a wrong Etag.
    """

    def __init__(
        self,
        account_name: str = "AUTH_test",
        token: str = "valid-token",
        *,
        bulk_delete: bool = True,
        bulk_upload: bool = True,
        tempurl: bool = True,
        max_deletes_per_request: int = 10000,
        tempurl_digests: Optional[list[str]] = None,
    ) -> None:
        self.accounts: dict[str, FakeAccount] = {account_name: FakeAccount()}
        self.account_name = account_name
        self.token = token
        self.requests: list[tuple[str, str, dict[str, str]]] = []
        self.corrupt_etags = False
        self.auth_user = "test:tester"
        self.auth_key = "testing"
        self.auth_requests = 0
        self.info_requests = 0

        self.info: dict[str, Any] = {
            "swift": {"version": "2.33.0", "max_file_size": 5368709122},
            "slo": {"max_manifest_segments": 1000, "min_segment_size": 1},
        }
        if bulk_delete:
            self.info["bulk_delete"] = {
                "max_deletes_per_request": max_deletes_per_request,
                "max_failed_deletes": 1000,
            }
        if bulk_upload:
            self.info["bulk_upload"] = {
                "max_containers_per_extraction": 10000,
                "max_failed_extractions": 1000,
            }
        if tempurl:
            section: dict[str, Any] = {"methods": ["GET", "HEAD", "PUT", "POST", "DELETE"]}
            if tempurl_digests is not None:
                section["allowed_digests"] = tempurl_digests
            self.info["tempurl"] = section

    @property
    def endpoint_url(self) -> str:
        return f"{BASE_URL}v1/{self.account_name}/"

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def streaming_client(self) -> httpx.AsyncClient:
        """A client whose transport consumes request bodies as streams.

        httpx.MockTransport buffers request bodies before calling the handler,
        so a body can be sent twice there. A network transport cannot do that.
        """
        return httpx.AsyncClient(transport=_StreamingTransport(self))

    # ------------------------------------------------------------------
    # Direct access helpers for tests
    # ------------------------------------------------------------------

    def container(self, name: str, account: Optional[str] = None) -> FakeContainer:
        return self.accounts[account or self.account_name].containers[name]

    def get_object(self, container: str, name: str) -> FakeObject:
        return self.container(container).objects[name]

    def object_names(self, container: str) -> list[str]:
        return sorted(self.container(container).objects)

    def put_object(self, container: str, name: str, data: bytes, **headers: str) -> FakeObject:
        cont = self.accounts[self.account_name].containers.setdefault(container, FakeContainer())
        obj = FakeObject(data=data, headers=dict(headers), etag=md5_hex(data))
        cont.objects[name] = obj
        return obj

    def count_requests(self, method: str, path_suffix: str = "") -> int:
        return sum(
            1 for m, path, _ in self.requests if m == method and path.endswith(path_suffix)
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = dict(request.url.params)

        if path == "/info":
            self.info_requests += 1
            return _json_response(200, self.info)
        if path == "/auth/v1.0":
            return self._handle_auth(request)
        if not path.startswith("/v1/"):
            return httpx.Response(404)

        self.requests.append((request.method, path, params))
        if request.headers.get("X-Auth-Token") != self.token:
            return httpx.Response(401, content=b"<html><h1>Unauthorized</h1></html>")

        parts = path[len("/v1/"):].split("/", 2)
        account_name = parts[0]
        container_name = parts[1] if len(parts) > 1 else ""
        object_name = parts[2] if len(parts) > 2 else ""

        if not container_name:
            return self._handle_account(request, account_name, params)
        if not object_name:
            return self._handle_container(request, account_name, container_name, params)
        return self._handle_object(request, account_name, container_name, object_name, params)

    def _handle_auth(self, request: httpx.Request) -> httpx.Response:
        self.auth_requests += 1
        if (
            request.headers.get("X-Auth-User") != self.auth_user
            or request.headers.get("X-Auth-Key") != self.auth_key
        ):
            return httpx.Response(401)
        return httpx.Response(
            200,
            headers={"X-Auth-Token": self.token, "X-Storage-Url": self.endpoint_url.rstrip("/")},
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def _handle_account(
        self, request: httpx.Request, account_name: str, params: dict[str, str]
    ) -> httpx.Response:
        method = request.method
        account = self.accounts.get(account_name)

        if method == "PUT" and "extract-archive" not in params:
            if account is not None:
                return httpx.Response(202)
            self.accounts[account_name] = FakeAccount(meta=_meta_from(request, "X-Account-Meta-"))
            return httpx.Response(201)

        if account is None:
            return httpx.Response(404)

        if "bulk-delete" in params and method in ("DELETE", "POST"):
            return self._bulk_delete(request, account)
        if "extract-archive" in params and method == "PUT":
            return self._extract_archive(request, account, "", params["extract-archive"])

        if method in ("HEAD", "GET"):
            headers = {
                "X-Account-Container-Count": str(len(account.containers)),
                "X-Account-Object-Count": str(
                    sum(len(c.objects) for c in account.containers.values())
                ),
                "X-Account-Bytes-Used": str(
                    sum(len(o.data) for c in account.containers.values() for o in c.objects.values())
                ),
                "X-Timestamp": f"{account.timestamp:.5f}",
            }
            headers.update(account.meta)
            if method == "HEAD":
                return httpx.Response(204, headers=headers)
            entries = [
                {
                    "name": name,
                    "count": len(cont.objects),
                    "bytes": sum(len(o.data) for o in cont.objects.values()),
                    "last_modified": _last_modified(cont.timestamp),
                }
                for name, cont in sorted(account.containers.items())
            ]
            return _listing_response(entries, params, headers)

        if method == "POST":
            _apply_meta(account.meta, request, "X-Account-Meta-")
            return httpx.Response(204)

        return httpx.Response(405)

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def _handle_container(
        self,
        request: httpx.Request,
        account_name: str,
        container_name: str,
        params: dict[str, str],
    ) -> httpx.Response:
        method = request.method
        account = self.accounts.get(account_name)
        if account is None:
            return httpx.Response(404)
        container = account.containers.get(container_name)

        if method == "PUT" and "extract-archive" in params:
            return self._extract_archive(
                request, account, container_name, params["extract-archive"]
            )

        if method == "PUT":
            if container is not None:
                _apply_meta(container.meta, request, "X-Container-Meta-")
                return httpx.Response(202)
            account.containers[container_name] = FakeContainer(
                meta=_meta_from(request, "X-Container-Meta-", "X-Container-Read", "X-Versions-Location")
            )
            return httpx.Response(201)

        if container is None:
            return httpx.Response(404)

        if method in ("HEAD", "GET"):
            headers = {
                "X-Container-Object-Count": str(len(container.objects)),
                "X-Container-Bytes-Used": str(sum(len(o.data) for o in container.objects.values())),
                "X-Timestamp": f"{container.timestamp:.5f}",
            }
            headers.update(container.meta)
            if method == "HEAD":
                return httpx.Response(204, headers=headers)
            entries = [
                {
                    "name": name,
                    "bytes": len(self._content_of(account, obj)),
                    "hash": obj.etag,
                    "content_type": obj.headers.get("Content-Type", "application/octet-stream"),
                    "last_modified": _last_modified(obj.timestamp),
                }
                for name, obj in sorted(container.objects.items())
            ]
            return _listing_response(entries, params, headers)

        if method == "POST":
            _apply_meta(container.meta, request, "X-Container-Meta-")
            return httpx.Response(204)

        if method == "DELETE":
            if container.objects:
                return httpx.Response(409, content=b"There was a conflict when trying to complete your request.")
            del account.containers[container_name]
            return httpx.Response(204)

        return httpx.Response(405)

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    def _handle_object(
        self,
        request: httpx.Request,
        account_name: str,
        container_name: str,
        object_name: str,
        params: dict[str, str],
    ) -> httpx.Response:
        method = request.method
        account = self.accounts.get(account_name)
        if account is None:
            return httpx.Response(404)
        if method == "PUT" and "extract-archive" in params:
            return self._extract_archive(
                request, account, container_name + "/" + object_name, params["extract-archive"]
            )
        container = account.containers.get(container_name)
        if container is None:
            return httpx.Response(404)
        obj = container.objects.get(object_name)

        if method == "PUT":
            if params.get("multipart-manifest") == "put":
                return self._put_slo_manifest(request, account, container, object_name)
            return self._put_object(request, container, object_name)

        if obj is None:
            return httpx.Response(404)

        if method in ("HEAD", "GET"):
            return self._get_object(request, account, obj, params)

        if method == "POST":
            preserved = {
                key: value
                for key, value in obj.headers.items()
                if key in ("Content-Type", "X-Object-Manifest", "X-Static-Large-Object")
            }
            obj.headers = preserved
            obj.headers.update(_meta_from(request, "X-Object-Meta-"))
            if request.headers.get("Content-Type"):
                obj.headers["Content-Type"] = request.headers["Content-Type"]
            return httpx.Response(202)

        if method == "DELETE":
            del container.objects[object_name]
            return httpx.Response(204)

        if method == "COPY":
            return self._copy_object(request, account, obj)

        return httpx.Response(405)

    def _put_object(
        self, request: httpx.Request, container: FakeContainer, object_name: str
    ) -> httpx.Response:
        body = request.content
        etag = md5_hex(body)
        expected = request.headers.get("Etag")
        if expected is not None and expected.strip('"') != etag:
            return httpx.Response(422, content=b"Unprocessable Entity")

        headers = _meta_from(
            request,
            "X-Object-Meta-",
            "Content-Type",
            "Content-Disposition",
            "Content-Encoding",
            "X-Object-Manifest",
            "X-Delete-At",
        )
        if "X-Delete-After" in request.headers:
            headers["X-Delete-At"] = str(int(time.time()) + int(request.headers["X-Delete-After"]))
        headers.setdefault("Content-Type", "application/octet-stream")
        container.objects[object_name] = FakeObject(data=body, headers=headers, etag=etag)

        reported = "0" * 32 if self.corrupt_etags else etag
        return httpx.Response(201, headers={"Etag": reported})

    def _put_slo_manifest(
        self,
        request: httpx.Request,
        account: FakeAccount,
        container: FakeContainer,
        object_name: str,
    ) -> httpx.Response:
        try:
            records = json.loads(request.content)
        except ValueError:
            return httpx.Response(400, content=b"Manifest must be valid JSON.")
        if not isinstance(records, list):
            return httpx.Response(400, content=b"Manifest must be a list.")

        etags = []
        for record in records:
            if "data" in record:
                etags.append(md5_hex(_b64decode(record["data"])))
                continue
            seg_container, _, seg_name = record.get("path", "").lstrip("/").partition("/")
            cont = account.containers.get(seg_container)
            segment = cont.objects.get(seg_name) if cont is not None else None
            if segment is None:
                return httpx.Response(400, content=f"{record['path']}: 404 Not Found".encode())
            content = self._content_of(account, segment)
            if record.get("etag") not in (None, segment.etag):
                return httpx.Response(400, content=f"{record['path']}: Etag Mismatch".encode())
            if record.get("size_bytes") not in (None, len(content)):
                return httpx.Response(400, content=f"{record['path']}: Size Mismatch".encode())
            etags.append(segment.etag)

        etag = md5_hex("".join(etags).encode())
        headers = _meta_from(request, "X-Object-Meta-", "Content-Type")
        headers.setdefault("Content-Type", "application/octet-stream")
        headers["X-Static-Large-Object"] = "True"
        container.objects[object_name] = FakeObject(
            data=b"", headers=headers, slo_manifest=records, etag=etag
        )
        return httpx.Response(201, headers={"Etag": f'"{etag}"'})

    def _get_object(
        self,
        request: httpx.Request,
        account: FakeAccount,
        obj: FakeObject,
        params: dict[str, str],
    ) -> httpx.Response:
        if obj.slo_manifest is not None and params.get("multipart-manifest") == "get":
            if params.get("format") == "raw":
                body = json.dumps(obj.slo_manifest).encode()
            else:
                body = json.dumps(
                    [
                        {"name": r.get("path"), "hash": r.get("etag"), "bytes": r.get("size_bytes")}
                        for r in obj.slo_manifest
                    ]
                ).encode()
            headers = {
                "Content-Type": "application/json; charset=utf-8",
                "X-Static-Large-Object": "True",
                "Etag": md5_hex(body),
                "X-Timestamp": f"{obj.timestamp:.5f}",
            }
            if request.method == "HEAD":
                body = b""
            return httpx.Response(200, headers=headers, content=body)

        content = self._content_of(account, obj)
        headers = dict(obj.headers)
        headers["Etag"] = f'"{obj.etag}"' if obj.slo_manifest is not None else obj.etag
        headers["X-Timestamp"] = f"{obj.timestamp:.5f}"
        headers["Last-Modified"] = datetime.fromtimestamp(obj.timestamp, tz=timezone.utc).strftime(
            "%a, %d %b %Y %H:%M:%S GMT"
        )

        status = 200
        range_header = request.headers.get("Range", "")
        if range_header.startswith("bytes=") and request.method == "GET":
            first, _, last = range_header[len("bytes="):].partition("-")
            start = int(first) if first else max(len(content) - int(last), 0)
            end = int(last) + 1 if first and last else len(content)
            headers["Content-Range"] = f"bytes {start}-{end - 1}/{len(content)}"
            content = content[start:end]
            status = 206

        if request.method == "HEAD":
            headers["Content-Length"] = str(len(content))
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, headers=headers, content=content)

    def _copy_object(
        self, request: httpx.Request, account: FakeAccount, obj: FakeObject
    ) -> httpx.Response:
        destination = unquote(request.headers.get("Destination", "")).lstrip("/")
        dest_container_name, _, dest_name = destination.partition("/")
        dest_account = account
        if "Destination-Account" in request.headers:
            dest_account = self.accounts.get(request.headers["Destination-Account"])
            if dest_account is None:
                return httpx.Response(404)
        dest_container = dest_account.containers.get(dest_container_name)
        if dest_container is None or not dest_name:
            return httpx.Response(404)

        content = self._content_of(account, obj)
        headers = {
            key: value
            for key, value in obj.headers.items()
            if key not in ("X-Static-Large-Object", "X-Object-Manifest")
        }
        headers.update(_meta_from(request, "X-Object-Meta-"))
        dest_container.objects[dest_name] = FakeObject(
            data=content, headers=headers, etag=md5_hex(content)
        )
        return httpx.Response(201, headers={"Etag": md5_hex(content)})

    def _content_of(self, account: FakeAccount, obj: FakeObject) -> bytes:
        """Assemble the content of plain, static large and dynamic large objects."""
        if obj.slo_manifest is not None:
            chunks = []
            for record in obj.slo_manifest:
                if "data" in record:
                    chunks.append(_b64decode(record["data"]))
                    continue
                seg_container, _, seg_name = record["path"].lstrip("/").partition("/")
                segment = account.containers[seg_container].objects[seg_name]
                data = self._content_of(account, segment)
                if "range" in record:
                    data = _apply_range(data, record["range"])
                chunks.append(data)
            return b"".join(chunks)

        manifest = obj.headers.get("X-Object-Manifest")
        if manifest:
            seg_container, _, prefix = manifest.partition("/")
            cont = account.containers.get(seg_container)
            if cont is None:
                return b""
            return b"".join(
                segment.data
                for name, segment in sorted(cont.objects.items())
                if name.startswith(prefix)
            )
        return obj.data

    # ------------------------------------------------------------------
    # Bulk middleware
    # ------------------------------------------------------------------

    def _bulk_delete(self, request: httpx.Request, account: FakeAccount) -> httpx.Response:
        deleted = 0
        not_found = 0
        errors: list[list[str]] = []
        for line in request.content.decode().splitlines():
            if not line.strip():
                continue
            name = unquote(line.strip()).lstrip("/")
            container_name, _, object_name = name.partition("/")
            container = account.containers.get(container_name)
            if object_name:
                if container is None or object_name not in container.objects:
                    not_found += 1
                else:
                    del container.objects[object_name]
                    deleted += 1
            elif container is None:
                not_found += 1
            elif container.objects:
                errors.append(["/" + container_name, "409 Conflict"])
            else:
                del account.containers[container_name]
                deleted += 1

        status = "400 Bad Request" if errors else "200 OK"
        return _json_response(
            200,
            {
                "Response Status": status,
                "Response Body": "",
                "Errors": errors,
                "Number Deleted": deleted,
                "Number Not Found": not_found,
            },
        )

    def _extract_archive(
        self,
        request: httpx.Request,
        account: FakeAccount,
        upload_path: str,
        fmt: str,
    ) -> httpx.Response:
        mode = {"tar": "r:", "tar.gz": "r:gz", "tar.bz2": "r:bz2"}.get(fmt)
        if mode is None:
            return httpx.Response(400)

        created = 0
        errors: list[list[str]] = []
        try:
            archive = tarfile.open(fileobj=io.BytesIO(request.content), mode=mode)
        except tarfile.TarError:
            return _json_response(
                200,
                {
                    "Response Status": "400 Bad Request",
                    "Response Body": "Invalid Tar File: invalid header",
                    "Errors": [],
                    "Number Files Created": 0,
                },
            )
        with archive:
            for member in archive.getmembers():
                if not member.isfile():
                    continue
                full_name = "/".join(p for p in (upload_path, member.name) if p)
                container_name, _, object_name = full_name.partition("/")
                if not object_name:
                    errors.append(["/" + full_name, "400 Bad Request"])
                    continue
                container = account.containers.setdefault(container_name, FakeContainer())
                fileobj = archive.extractfile(member)
                data = fileobj.read() if fileobj is not None else b""
                container.objects[object_name] = FakeObject(
                    data=data,
                    headers={"Content-Type": "application/octet-stream"},
                    etag=md5_hex(data),
                )
                created += 1

        if created == 0 and not errors:
            status, body = "400 Bad Request", "Invalid Tar File: No Valid Files"
        elif errors:
            status, body = "400 Bad Request", ""
        else:
            status, body = "201 Created", ""
        return _json_response(
            200,
            {
                "Response Status": status,
                "Response Body": body,
                "Errors": errors,
                "Number Files Created": created,
            },
        )


def _json_response(status: int, payload: Any, headers: Optional[dict[str, str]] = None) -> httpx.Response:
    all_headers = {"Content-Type": "application/json; charset=utf-8"}
    all_headers.update(headers or {})
    return httpx.Response(status, headers=all_headers, content=json.dumps(payload).encode())


def _listing_response(
    entries: list[dict[str, Any]], params: dict[str, str], headers: dict[str, str]
) -> httpx.Response:
    prefix = params.get("prefix", "")
    marker = params.get("marker", "")
    end_marker = params.get("end_marker", "")
    delimiter = params.get("delimiter", "")
    limit = int(params.get("limit", "10000"))

    result: list[dict[str, Any]] = []
    seen_subdirs: set[str] = set()
    for entry in entries:
        name = entry["name"]
        if not name.startswith(prefix):
            continue
        if delimiter:
            idx = name.find(delimiter, len(prefix))
            if idx >= 0:
                subdir = name[: idx + len(delimiter)]
                if subdir in seen_subdirs or (marker and subdir <= marker):
                    continue
                seen_subdirs.add(subdir)
                result.append({"subdir": subdir})
                if len(result) >= limit:
                    break
                continue
        if marker and name <= marker:
            continue
        if end_marker and name >= end_marker:
            continue
        result.append(entry)
        if len(result) >= limit:
            break

    if params.get("format") == "json":
        return _json_response(200, result, headers)
    if not result:
        return httpx.Response(204, headers=headers)
    names = [entry.get("subdir") or entry["name"] for entry in result]
    return httpx.Response(
        200,
        headers={**headers, "Content-Type": "text/plain; charset=utf-8"},
        content=("\n".join(names) + "\n").encode(),
    )


def _meta_from(request: httpx.Request, prefix: str, *extra_keys: str) -> dict[str, str]:
    result = {}
    for key, value in request.headers.items():
        canonical = "-".join(p.capitalize() for p in key.split("-"))
        if canonical.lower().startswith(prefix.lower()) and value != "":
            result[canonical] = value
        elif canonical.lower() in (k.lower() for k in extra_keys) and value != "":
            result[next(k for k in extra_keys if k.lower() == canonical.lower())] = value
    return result


def _apply_meta(meta: dict[str, str], request: httpx.Request, prefix: str) -> None:
    for key, value in request.headers.items():
        canonical = "-".join(p.capitalize() for p in key.split("-"))
        if not canonical.lower().startswith(prefix.lower()):
            continue
        if value == "":
            meta.pop(canonical, None)
        else:
            meta[canonical] = value


def _apply_range(data: bytes, spec: str) -> bytes:
    first, _, last = spec.partition("-")
    if first == "":
        if last == "":
            return data
        return data[-int(last):]
    if last == "":
        return data[int(first):]
    return data[int(first): int(last) + 1]


def _b64decode(value: str) -> bytes:
    return base64.b64decode(value)


class _StreamingTransport(httpx.AsyncBaseTransport):
    """Reads each request body chunk by chunk from ``request.stream``."""

    def __init__(self, fake: FakeSwift) -> None:
        self._fake = fake

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = b"".join([chunk async for chunk in request.stream])
        return await self._fake.handle(
            httpx.Request(request.method, request.url, headers=request.headers, content=body)
        )

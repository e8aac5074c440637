"""Tests for the Object handle: uploads, downloads, copies and deletes."""

import io
from datetime import datetime, timezone

import pytest
from fake_swift import FakeAccount, md5_hex

from bleepswift.errors import (
    ChecksumMismatchError,
    MalformedHeaderError,
    UnexpectedStatusCodeError,
)
from bleepswift.headers import ObjectHeaders
from bleepswift.request import RequestOptions


class TestUpload:
    """Tests for Object.upload()."""

    async def test_bytes(self, container, fake):
        hdr = ObjectHeaders()
        hdr.content_type.set("text/plain")
        hdr.metadata.set("Author", "me")
        await container.object("hello.txt").upload(b"hello", hdr)

        stored = fake.get_object("test", "hello.txt")
        assert stored.data == b"hello"
        assert stored.headers["Content-Type"] == "text/plain"
        assert stored.headers["X-Object-Meta-Author"] == "me"

    async def test_none_creates_empty_object(self, container, fake):
        await container.object("empty").upload()
        assert fake.get_object("test", "empty").data == b""

    async def test_seekable_file(self, container, fake):
        data = b"0123456789" * 10000
        await container.object("file").upload(io.BytesIO(data))
        assert fake.get_object("test", "file").data == data

    async def test_stream(self, container, fake):
        async def gen():
            yield b"abc"
            yield b"def"

        await container.object("stream").upload(gen())
        assert fake.get_object("test", "stream").data == b"abcdef"

    async def test_stream_checksum_mismatch(self, container, fake):
        """Streamed uploads are verified against the Etag in the response."""
        fake.corrupt_etags = True
        with pytest.raises(ChecksumMismatchError):
            await container.object("stream").upload(iter([b"abc", b"def"]))

    async def test_bytes_rejected_on_wrong_etag(self, container):
        """An explicit Etag that does not match the content yields 422."""
        hdr = ObjectHeaders()
        hdr.etag.set(md5_hex(b"other"))
        with pytest.raises(UnexpectedStatusCodeError) as exc_info:
            await container.object("o").upload(b"content", hdr)
        assert exc_info.value.status_code == 422

    async def test_missing_container(self, account):
        with pytest.raises(UnexpectedStatusCodeError) as exc_info:
            await account.container("nope").object("o").upload(b"x")
        assert exc_info.value.status_code == 404

    async def test_upload_invalidates_cache(self, container):
        obj = container.object("o")
        await obj.upload(b"one")
        assert (await obj.headers()).size_bytes.get() == 3
        await obj.upload(b"three")
        assert (await obj.headers()).size_bytes.get() == 5


class TestDownload:
    """Tests for Object.download()."""

    async def test_as_bytes(self, container, fake):
        fake.put_object("test", "o", b"payload", **{"Content-Type": "text/plain"})
        obj = container.object("o")
        dl = await obj.download()
        assert dl.status_code == 200
        assert dl.headers.content_type.get() == "text/plain"
        assert await dl.as_bytes() == b"payload"

    async def test_full_get_fills_cache(self, container, fake):
        fake.put_object("test", "o", b"payload")
        obj = container.object("o")
        await (await obj.download()).aclose()
        await obj.headers()
        assert fake.count_requests("HEAD", "/test/o") == 0

    async def test_iter_bytes_context_manager(self, container, fake):
        fake.put_object("test", "o", b"x" * 1000)
        async with await container.object("o").download() as dl:
            chunks = [chunk async for chunk in dl.iter_bytes(100)]
        assert b"".join(chunks) == b"x" * 1000

    async def test_range(self, container, fake):
        fake.put_object("test", "o", b"0123456789")
        opts = RequestOptions()
        opts.headers.set("Range", "bytes=2-4")
        dl = await container.object("o").download(opts=opts)
        assert dl.status_code == 206
        assert await dl.as_str() == "234"

    async def test_missing(self, container):
        with pytest.raises(UnexpectedStatusCodeError) as exc_info:
            await container.object("missing").download()
        assert exc_info.value.status_code == 404


class TestHeadersAndUpdate:
    """Tests for Object.headers(), exists() and update()."""

    async def test_headers(self, container, fake):
        fake.put_object("test", "o", b"abc", **{"X-Object-Meta-Color": "red"})
        hdr = await container.object("o").headers()
        assert hdr.size_bytes.get() == 3
        assert hdr.etag.get() == md5_hex(b"abc")
        assert hdr.metadata.get("Color") == "red"
        assert not hdr.is_large_object()

    async def test_exists(self, container, fake):
        fake.put_object("test", "o", b"abc")
        assert await container.object("o").exists()
        assert not await container.object("p").exists()

    async def test_update_replaces_metadata(self, container, fake):
        fake.put_object("test", "o", b"abc", **{"X-Object-Meta-Color": "red"})
        obj = container.object("o")
        hdr = ObjectHeaders()
        hdr.metadata.set("Shape", "round")
        await obj.update(hdr)
        new = await obj.headers()
        assert new.metadata.get("Shape") == "round"
        assert "Color" not in new.metadata

    async def test_malformed_header(self, container, fake):
        fake.put_object("test", "o", b"abc", **{"X-Delete-At": "soon"})
        with pytest.raises(MalformedHeaderError):
            await container.object("o").headers()

    async def test_expires_at(self, container, fake):
        obj = container.object("o")
        hdr = ObjectHeaders()
        when = datetime(2040, 1, 1, tzinfo=timezone.utc)
        hdr.expires_at.set(when)
        await obj.upload(b"x", hdr)
        assert (await obj.headers()).expires_at.get() == when


class TestDeleteAndCopy:
    """Tests for Object.delete() and Object.copy_to()."""

    async def test_delete(self, container, fake):
        fake.put_object("test", "o", b"abc")
        await container.object("o").delete()
        assert fake.object_names("test") == []

    async def test_delete_missing(self, container):
        with pytest.raises(UnexpectedStatusCodeError) as exc_info:
            await container.object("o").delete()
        assert exc_info.value.status_code == 404

    async def test_delete_segments_of_plain_object(self, container, fake):
        """delete_segments is ignored for objects that are not large."""
        fake.put_object("test", "o", b"abc")
        await container.object("o").delete(delete_segments=True)
        assert fake.object_names("test") == []

    async def test_copy_within_account(self, account, container, fake):
        fake.put_object("test", "src", b"data", **{"X-Object-Meta-Color": "red"})
        target = (await account.container("dest").ensure_exists()).object("dir/copy")
        await container.object("src").copy_to(target)
        copied = fake.get_object("dest", "dir/copy")
        assert copied.data == b"data"
        assert copied.headers["X-Object-Meta-Color"] == "red"

    async def test_copy_to_other_account(self, account, container, fake):
        fake.accounts["AUTH_other"] = FakeAccount()
        other = account.switch_account("AUTH_other")
        await other.container("dest").create()
        fake.put_object("test", "src", b"data")
        await container.object("src").copy_to(other.container("dest").object("copy"))
        assert fake.container("dest", account="AUTH_other").objects["copy"].data == b"data"


class TestIdentity:
    """Tests for object naming and equality."""

    def test_full_name_and_url(self, container):
        obj = container.object("a b/c")
        assert obj.full_name == "test/a b/c"
        assert obj.url == "http://swift.test/v1/AUTH_test/test/a%20b/c"

    def test_is_equal_to(self, container, account):
        assert container.object("o").is_equal_to(account.container("test").object("o"))
        assert not container.object("o").is_equal_to(account.container("other").object("o"))

"""Tests for attachment encoding."""

import base64

import pytest

from codeloom.errors import ApiErrorCode
from codeloom.services.llm.attachments import (
    DEFAULT_MIME_TYPE,
    AttachmentReadError,
    AttachmentTooLargeError,
    FileAttachment,
    InlineAttachment,
    encode_attachment,
    encode_attachments,
    guess_mime_type,
)
from tests.helpers import b64


class TestGuessMimeType:
    def test_known_extension(self):
        assert guess_mime_type("photo.png") == "image/png"

    def test_unknown_extension(self):
        assert guess_mime_type("blob.unknownext") == DEFAULT_MIME_TYPE


class TestEncodeAttachment:
    """Attachments become inline parts or fail the build."""

    @pytest.mark.asyncio
    async def test_file_attachment(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_bytes(b"hello")

        part = await encode_attachment(FileAttachment(path))

        assert part.mime_type == "text/plain"
        assert part.name == "notes.txt"
        assert base64.b64decode(part.data_base64) == b"hello"

    @pytest.mark.asyncio
    async def test_file_attachment_explicit_mime(self, tmp_path):
        path = tmp_path / "data"
        path.write_bytes(b"{}")
        part = await encode_attachment(FileAttachment(path, mime_type="application/json"))
        assert part.mime_type == "application/json"

    @pytest.mark.asyncio
    async def test_missing_file_fails(self, tmp_path):
        with pytest.raises(AttachmentReadError) as exc_info:
            await encode_attachment(FileAttachment(tmp_path / "missing.png"))
        assert exc_info.value.code == ApiErrorCode.E_ATTACHMENT_UNREADABLE
        assert exc_info.value.name == "missing.png"

    @pytest.mark.asyncio
    async def test_inline_attachment(self):
        part = await encode_attachment(InlineAttachment("a.png", "image/png", b64(b"\x89PNG")))
        assert part.mime_type == "image/png"
        assert base64.b64decode(part.data_base64) == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_invalid_base64_fails(self):
        with pytest.raises(AttachmentReadError):
            await encode_attachment(InlineAttachment("a.png", "image/png", "not base64!!"))

    @pytest.mark.asyncio
    async def test_too_large(self):
        attachment = InlineAttachment("big.bin", DEFAULT_MIME_TYPE, b64(b"x" * 11))
        with pytest.raises(AttachmentTooLargeError) as exc_info:
            await encode_attachment(attachment, max_bytes=10)
        assert exc_info.value.size_bytes == 11
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_first_failure_aborts_batch(self):
        attachments = [
            InlineAttachment("ok.txt", "text/plain", b64(b"ok")),
            InlineAttachment("bad.txt", "text/plain", "%%%"),
        ]
        with pytest.raises(AttachmentReadError):
            await encode_attachments(attachments)

    @pytest.mark.asyncio
    async def test_batch_preserves_order(self):
        attachments = [
            InlineAttachment("one.txt", "text/plain", b64(b"1")),
            InlineAttachment("two.txt", "text/plain", b64(b"2")),
        ]
        parts = await encode_attachments(attachments)
        assert [p.name for p in parts] == ["one.txt", "two.txt"]

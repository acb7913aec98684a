"""Attachment encoding for generation requests.

Attachments become inline binary parts tagged with a MIME type. Any failure to
read or decode an attachment fails the request build; an attachment is never
silently dropped.

Sources:
- FileAttachment: a file on disk (read off the event loop)
- InlineAttachment: base64 payload received from a client
"""

import asyncio
import base64
import binascii
import mimetypes
from dataclasses import dataclass
from pathlib import Path

from codeloom.errors import ApiError, ApiErrorCode
from codeloom.logging import get_logger
from codeloom.services.llm.types import InlineDataPart

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_MAX_ATTACHMENT_BYTES = 20 * 1024 * 1024


class AttachmentReadError(ApiError):
    """An attachment could not be read or decoded."""

    def __init__(self, name: str, reason: str):
        self.name = name
        super().__init__(
            ApiErrorCode.E_ATTACHMENT_UNREADABLE,
            f"Could not read attachment '{name}': {reason}",
        )


class AttachmentTooLargeError(ApiError):
    """An attachment exceeds the size ceiling."""

    def __init__(self, name: str, size_bytes: int, max_bytes: int):
        self.name = name
        self.size_bytes = size_bytes
        super().__init__(
            ApiErrorCode.E_ATTACHMENT_TOO_LARGE,
            f"Attachment '{name}' is {size_bytes} bytes (max {max_bytes})",
        )


@dataclass(frozen=True)
class FileAttachment:
    """File on disk. mime_type is guessed from the name when not given."""

    path: Path
    mime_type: str | None = None

    @property
    def name(self) -> str:
        return Path(self.path).name


@dataclass(frozen=True)
class InlineAttachment:
    """Base64 payload, as uploaded by a client."""

    name: str
    mime_type: str
    data_base64: str


Attachment = FileAttachment | InlineAttachment


def guess_mime_type(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or DEFAULT_MIME_TYPE


async def encode_attachment(
    attachment: Attachment, *, max_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES
) -> InlineDataPart:
    """Convert an attachment into an inline binary part.

    Raises:
        AttachmentReadError: The file cannot be read or the payload is not base64.
        AttachmentTooLargeError: The decoded payload exceeds max_bytes.
    """
    if isinstance(attachment, FileAttachment):
        try:
            data = await asyncio.to_thread(Path(attachment.path).read_bytes)
        except OSError as e:
            logger.warning("attachment_read_failed", attachment_name=attachment.name, error=str(e))
            raise AttachmentReadError(attachment.name, e.strerror or type(e).__name__) from e
        mime_type = attachment.mime_type or guess_mime_type(attachment.name)
    else:
        try:
            data = base64.b64decode(attachment.data_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            logger.warning("attachment_decode_failed", attachment_name=attachment.name)
            raise AttachmentReadError(attachment.name, "invalid base64 payload") from e
        mime_type = attachment.mime_type or guess_mime_type(attachment.name)

    if len(data) > max_bytes:
        raise AttachmentTooLargeError(attachment.name, len(data), max_bytes)

    return InlineDataPart(
        mime_type=mime_type,
        data_base64=base64.b64encode(data).decode("ascii"),
        name=attachment.name,
    )


async def encode_attachments(
    attachments: list[Attachment] | tuple[Attachment, ...],
    *,
    max_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES,
) -> list[InlineDataPart]:
    """Encode attachments in order; the first failure aborts the whole build."""
    return [await encode_attachment(a, max_bytes=max_bytes) for a in attachments]

"""
Attachment validation

Files are checked locally before anything is uploaded or sent:
- images (jpeg, png, gif, webp) up to MAX_IMAGE_SIZE_BYTES (5 MB)
- any other file up to MAX_DOCUMENT_SIZE_BYTES (10 MB)
- executables/scripts, other image formats and empty files are refused
"""
import base64
import logging
import mimetypes
import posixpath
from dataclasses import dataclass
from typing import List, Optional, Tuple

from marketplace_chat.core.config import Settings, get_settings
from marketplace_chat.core.errors import AttachmentRejectedError
from marketplace_chat.models.message import Attachment, AttachmentKind
from marketplace_chat.utils.formatting import format_file_size

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}

BLOCKED_EXTENSIONS = {".exe", ".bat", ".cmd", ".com", ".msi", ".scr", ".sh", ".ps1", ".vbs", ".jar"}
BLOCKED_TYPES = {
    "application/x-msdownload",
    "application/x-msdos-program",
    "application/x-sh",
    "application/x-executable",
    "application/java-archive",
}


@dataclass
class PendingFile:
    """A file picked by the user and not yet sent"""
    name: str
    size: int
    content_type: Optional[str] = None
    data: Optional[bytes] = None

    @property
    def resolved_type(self) -> str:
        if self.content_type:
            return self.content_type.lower()
        guessed, _ = mimetypes.guess_type(self.name)
        return guessed or "application/octet-stream"

    @property
    def extension(self) -> str:
        return posixpath.splitext(self.name)[1].lower()


def classify(file: PendingFile) -> AttachmentKind:
    return AttachmentKind.IMAGE if file.resolved_type.startswith("image/") else AttachmentKind.FILE


def validate_attachment(file: PendingFile, settings: Optional[Settings] = None) -> AttachmentKind:
    """
    Check one file against type and size limits.

    Returns:
        The attachment kind the file will be sent as

    Raises:
        AttachmentRejectedError: with reason empty_file, unsupported_type or size_exceeded
    """
    settings = settings or get_settings()
    content_type = file.resolved_type
    kind = classify(file)

    if file.size <= 0:
        raise AttachmentRejectedError(file.name, AttachmentRejectedError.EMPTY_FILE, f"{file.name} is empty")

    if file.extension in BLOCKED_EXTENSIONS or content_type in BLOCKED_TYPES:
        raise AttachmentRejectedError(
            file.name,
            AttachmentRejectedError.UNSUPPORTED_TYPE,
            f"{file.name}: executable files cannot be shared",
        )

    if kind == AttachmentKind.IMAGE:
        if content_type not in ALLOWED_IMAGE_TYPES:
            raise AttachmentRejectedError(
                file.name,
                AttachmentRejectedError.UNSUPPORTED_TYPE,
                f"{file.name}: only JPEG, PNG, GIF and WebP images are supported",
            )
        limit = settings.MAX_IMAGE_SIZE_BYTES
    else:
        limit = settings.MAX_DOCUMENT_SIZE_BYTES

    if file.size > limit:
        raise AttachmentRejectedError(
            file.name,
            AttachmentRejectedError.SIZE_EXCEEDED,
            f"{file.name} is {format_file_size(file.size)}; the limit is {format_file_size(limit)}",
        )
    return kind


def validate_attachments(
    files: List[PendingFile],
    settings: Optional[Settings] = None,
) -> Tuple[List[PendingFile], List[AttachmentRejectedError]]:
    """Split a selection into accepted files and per-file rejections."""
    accepted, rejected = [], []
    for f in files:
        try:
            validate_attachment(f, settings)
            accepted.append(f)
        except AttachmentRejectedError as e:
            logger.info(f"Rejected attachment {f.name}: {e.reason}")
            rejected.append(e)
    return accepted, rejected


def to_attachment(file: PendingFile, url: Optional[str] = None, settings: Optional[Settings] = None) -> Attachment:
    """
    Build the wire attachment for a validated file.

    Without an upload URL the file body is inlined as a data URL.
    """
    kind = validate_attachment(file, settings)
    if url is None:
        if file.data is None:
            raise AttachmentRejectedError(file.name, AttachmentRejectedError.EMPTY_FILE, f"{file.name} has no data")
        encoded = base64.b64encode(file.data).decode("ascii")
        url = f"data:{file.resolved_type};base64,{encoded}"
    return Attachment(name=file.name, type=kind, url=url, size=file.size)

"""Turn local attachments into inline data-URI uploads for the agent backend."""

from __future__ import annotations

import base64
import logging
import mimetypes
from pathlib import Path

from elevate.schemas.chat import Attachment, ChatUpload

logger = logging.getLogger("elevate.uploads")

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB
MAX_FILES = 5

# Types the model reads directly (it can "see" these).
MODEL_VISIBLE_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
    }
)

# Types that go through the backend's document-extraction tools.
DOCUMENT_MIME_TYPES = frozenset(
    {
        "text/plain",
        "text/csv",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)

ALLOWED_MIME_TYPES = MODEL_VISIBLE_MIME_TYPES | DOCUMENT_MIME_TYPES


class AttachmentError(ValueError):
    """Attachment rejected before anything is sent."""


def to_data_uri(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def load_attachment(path: str | Path, visible_to_model: bool | None = None) -> Attachment:
    """Read a file from disk into an Attachment, enforcing type and size limits.

    Images are model-visible by default; everything else goes down the
    document-extraction path unless ``visible_to_model`` says otherwise.
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise AttachmentError(f"File not found: {file_path}")

    mime_type, _ = mimetypes.guess_type(file_path.name)
    mime_type = mime_type or "application/octet-stream"
    if mime_type not in ALLOWED_MIME_TYPES:
        raise AttachmentError(f"Unsupported file type for {file_path.name}: {mime_type}")

    size = file_path.stat().st_size
    if size > MAX_FILE_SIZE:
        raise AttachmentError(
            f"{file_path.name} is {size / (1024 * 1024):.1f} MB; the limit is "
            f"{MAX_FILE_SIZE // (1024 * 1024)} MB"
        )

    if visible_to_model is None:
        visible_to_model = mime_type.startswith("image/")

    return Attachment(
        data=file_path.read_bytes(),
        mime_type=mime_type,
        display_name=file_path.name,
        visible_to_model=visible_to_model,
    )


def build_uploads(attachments: list[Attachment]) -> list[ChatUpload]:
    """Convert attachments to the backend upload format.

    `file` uploads are shown to the model; `file:full` uploads are only
    text-extracted.
    """
    if len(attachments) > MAX_FILES:
        raise AttachmentError(f"At most {MAX_FILES} files can be attached, got {len(attachments)}")

    uploads: list[ChatUpload] = []
    for attachment in attachments:
        upload = ChatUpload(
            data=to_data_uri(attachment.data, attachment.mime_type),
            type="file" if attachment.visible_to_model else "file:full",
            name=attachment.display_name,
            mime=attachment.mime_type,
        )
        logger.debug(
            "Converted attachment %s: type=%s mime=%s bytes=%d",
            upload.name,
            upload.type,
            upload.mime,
            len(attachment.data),
        )
        uploads.append(upload)
    return uploads

"""Helpers for inline (data URL) media and local reference files."""

import base64
import binascii
import logging
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path

from models.project import ReferenceFile, ReferenceFileType

logger = logging.getLogger(__name__)

DATA_URL_PATTERN = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp", ".gif"}


@dataclass(frozen=True)
class InlineMedia:
    """Decoded pieces of a base64 data URL."""

    mime_type: str
    base64_data: str

    @property
    def data(self) -> bytes:
        return base64.b64decode(self.base64_data)


def parse_data_url(value: str | None) -> InlineMedia | None:
    """Split a ``data:<mime>;base64,<payload>`` URL.

    Returns None when the value is not a base64 data URL or the payload does
    not decode.
    """
    if not value or not isinstance(value, str):
        return None

    match = DATA_URL_PATTERN.match(value.strip())
    if not match:
        return None

    mime_type, payload = match.group(1), match.group(2)
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        logger.debug(f"Data URL payload for {mime_type} is not valid base64")
        return None
    return InlineMedia(mime_type=mime_type, base64_data=payload)


def to_data_url(data: bytes, mime_type: str) -> str:
    """Encode raw bytes as a base64 data URL."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def inline_data_bytes(data: bytes | str) -> bytes:
    """Raw bytes of a GenAI inline_data payload (bytes, or base64 text)."""
    if isinstance(data, str):
        return base64.b64decode(data)
    return bytes(data)


def strip_data_url_prefix(content: str) -> str:
    """Return the base64 payload of ``content`` whether or not it has a data URL prefix."""
    return content.split(",", 1)[1] if "," in content else content


def load_reference_file(path: str | Path) -> ReferenceFile:
    """Load a local file as planning reference material.

    Images and PDFs are base64 encoded; anything else is read as text.
    """
    file_path = Path(path)
    suffix = file_path.suffix.lower()
    mime_type = mimetypes.guess_type(file_path.name)[0]

    if suffix in IMAGE_SUFFIXES:
        return ReferenceFile(
            name=file_path.name,
            type=ReferenceFileType.IMAGE,
            content=base64.b64encode(file_path.read_bytes()).decode("ascii"),
            mime_type=mime_type or "image/png",
        )
    if suffix == ".pdf":
        return ReferenceFile(
            name=file_path.name,
            type=ReferenceFileType.PDF,
            content=base64.b64encode(file_path.read_bytes()).decode("ascii"),
            mime_type="application/pdf",
        )
    return ReferenceFile(
        name=file_path.name,
        type=ReferenceFileType.TEXT,
        content=file_path.read_text(encoding="utf-8", errors="replace"),
        mime_type=mime_type or "text/plain",
    )


def reference_link(url: str) -> ReferenceFile:
    """Wrap a web or YouTube URL as reference material."""
    return ReferenceFile(name=url, type=ReferenceFileType.LINK, content=url)

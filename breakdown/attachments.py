"""Attachment ingestion with a size ceiling."""

from __future__ import annotations

import asyncio
import base64
import logging

from .collaborators import FileIngestor, IngestedFile, RawFile
from .config import MAX_ATTACHMENT_MB, MEBIBYTE
from .errors import AttachmentReadError, AttachmentTooLargeError
from .identity import IdentityGenerator
from .models import Attachment

logger = logging.getLogger("breakdown.attachments")

MAX_ATTACHMENT_BYTES = MAX_ATTACHMENT_MB * MEBIBYTE


class DataUrlIngestor:
    """Encode a file's bytes as a base64 ``data:`` URL."""

    async def ingest(self, raw_file: RawFile) -> IngestedFile:
        content = await asyncio.to_thread(raw_file.read_bytes)
        encoded = base64.b64encode(content).decode("ascii")
        mime = raw_file.type or "application/octet-stream"
        return IngestedFile(
            name=raw_file.name,
            type=raw_file.type,
            data_url=f"data:{mime};base64,{encoded}",
        )


def check_size(raw_file: RawFile, max_bytes: int = MAX_ATTACHMENT_BYTES) -> None:
    """Reject files above the ceiling before anything reads them."""
    if raw_file.size > max_bytes:
        raise AttachmentTooLargeError(raw_file.name, raw_file.size, max_bytes)


async def read_attachment(
    raw_file: RawFile,
    ingestor: FileIngestor,
    ids: IdentityGenerator,
    max_bytes: int = MAX_ATTACHMENT_BYTES,
) -> Attachment:
    """Ingest a file into a new ``Attachment``.

    Raises ``AttachmentTooLargeError`` without calling the ingestor when the
    file is above ``max_bytes``, and ``AttachmentReadError`` when the read
    fails or does not produce a string data URL.
    """
    check_size(raw_file, max_bytes)

    try:
        result = await ingestor.ingest(raw_file)
    except AttachmentReadError:
        raise
    except Exception as e:
        logger.warning(f"Reading '{raw_file.name}' failed: {e}")
        raise AttachmentReadError(f"An error occurred while reading '{raw_file.name}'.") from e

    if not isinstance(result.data_url, str) or not result.data_url.startswith("data:"):
        raise AttachmentReadError(f"Failed to read '{raw_file.name}'.")

    attachment = Attachment(
        id=ids.generate("attach"),
        name=result.name or raw_file.name,
        type=result.type or raw_file.type,
        data_url=result.data_url,
    )
    logger.debug(f"Ingested attachment {attachment.id} ({raw_file.size} bytes)")
    return attachment

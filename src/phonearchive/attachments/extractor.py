"""Move binary MMS part payloads out of the XML and into the attachment store."""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from phonearchive.attachments.store import AttachmentInfo, AttachmentStore, generate_filename
from phonearchive.core.errors import AttachmentError
from phonearchive.records.sms import MMS, MMSPart

logger = logging.getLogger(__name__)

EXTRACTED = "extracted"
REFERENCED = "referenced"
SKIPPED = "skipped"

# Encoded payloads shorter than this are left inline.
MIN_BASE64_LENGTH = 1024

BINARY_CONTENT_TYPES = frozenset({
    "image/jpeg", "image/jpg", "image/png", "image/gif", "image/bmp",
    "image/webp", "image/tiff", "image/tif", "image/heic", "image/heif",
    "video/mp4", "video/3gpp", "video/3gpp2", "video/quicktime", "video/avi",
    "video/mov", "video/wmv", "video/flv",
    "audio/mpeg", "audio/mp3", "audio/mp4", "audio/amr", "audio/wav",
    "audio/ogg", "audio/aac", "audio/m4a",
    "application/pdf", "application/zip", "application/rar", "application/7z",
    "application/msword", "application/vnd.ms-excel", "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/octet-stream",
})

TEXT_CONTENT_TYPES = frozenset({
    "text/plain", "text/html", "text/xml", "text/css", "text/javascript",
    "text/csv", "text/rtf", "text/x-vcard", "text/vcard",
    "application/xml", "application/json", "application/javascript",
    "application/smil", "application/xhtml+xml",
    "application/vnd.wap.multipart.related",
})


def normalize_content_type(content_type: str) -> str:
    return content_type.split(";")[0].strip().lower()


def should_extract(content_type: str) -> tuple[bool, str]:
    """Decide whether a part's payload belongs in the attachment store."""
    normalized = normalize_content_type(content_type or "")
    if not normalized:
        return False, "missing content type"
    if normalized in BINARY_CONTENT_TYPES:
        return True, "whitelisted binary type"
    if normalized in TEXT_CONTENT_TYPES:
        return False, "text content kept inline"
    return False, f"unknown content type: {normalized}"


@dataclass
class ExtractionResult:
    action: str
    reason: str = ""
    hash: str = ""
    path: str = ""
    size: int = 0


@dataclass
class ExtractionStats:
    messages: int = 0
    parts: int = 0
    extracted: int = 0
    referenced: int = 0
    skipped: int = 0
    extracted_bytes: int = 0
    referenced_bytes: int = 0
    by_content_type: dict[str, int] = field(default_factory=dict)

    def add(self, part: MMSPart, result: ExtractionResult) -> None:
        self.parts += 1
        if result.action == EXTRACTED:
            self.extracted += 1
            self.extracted_bytes += result.size
        elif result.action == REFERENCED:
            self.referenced += 1
            self.referenced_bytes += result.size
        else:
            self.skipped += 1
            return
        ct = normalize_content_type(part.content_type)
        self.by_content_type[ct] = self.by_content_type.get(ct, 0) + 1

    def to_dict(self) -> dict:
        return {
            "messages": self.messages,
            "parts": self.parts,
            "extracted": self.extracted,
            "referenced": self.referenced,
            "skipped": self.skipped,
            "extracted_bytes": self.extracted_bytes,
            "referenced_bytes": self.referenced_bytes,
        }


class AttachmentExtractor:
    """Rewrites MMS parts to point at stored blobs instead of inline base64."""

    def __init__(self, store: AttachmentStore, dry_run: bool = False):
        self.store = store
        self.dry_run = dry_run
        self.stats = ExtractionStats()

    def extract_part(self, part: MMSPart) -> ExtractionResult:
        if not part.data or part.data == "null":
            return ExtractionResult(SKIPPED, reason="no-data")
        extract, why = should_extract(part.content_type)
        if not extract:
            logger.debug("leaving part inline: %s", why)
            return ExtractionResult(SKIPPED, reason="content-type-filtered")
        if len(part.data) < MIN_BASE64_LENGTH:
            return ExtractionResult(SKIPPED, reason="too-small")

        try:
            payload = base64.b64decode("".join(part.data.split()), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AttachmentError(f"invalid base64 payload: {exc}") from exc

        digest = hashlib.sha256(payload).hexdigest()
        if self.store.exists(digest):
            return ExtractionResult(
                REFERENCED, hash=digest, path=self.store.get_path(digest), size=len(payload),
            )

        if self.dry_run:
            path = f"{self.store.dir_for(digest)}/{generate_filename(_original_name(part), part.content_type)}"
        else:
            path = self.store.store(digest, payload, AttachmentInfo(
                hash=digest,
                original_name=_original_name(part),
                mime_type=part.content_type,
                size=len(payload),
            ))
        logger.debug("extracted attachment %s (%d bytes)", digest[:12], len(payload))
        return ExtractionResult(EXTRACTED, hash=digest, path=path, size=len(payload))

    def extract_from_mms(self, mms: MMS) -> list[ExtractionResult]:
        """Extract every eligible part of ``mms`` in place.

        Raises ``AttachmentError`` (or a path validation error) if any part
        cannot be extracted; the caller rejects the whole message.
        """
        self.stats.messages += 1
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        results = []
        for part in mms.parts:
            result = self.extract_part(part)
            if result.action in (EXTRACTED, REFERENCED):
                part.data = ""
                part.path = result.path
                part.original_size = result.size
                part.extraction_date = now
            self.stats.add(part, result)
            results.append(result)
        return results


def _original_name(part: MMSPart) -> str:
    for candidate in (part.extra.get("fn", ""), part.extra.get("cl", ""), part.name):
        if candidate and candidate != "null":
            return candidate
    return ""

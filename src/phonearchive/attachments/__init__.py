"""Content-addressed attachment storage and MMS attachment extraction."""

from phonearchive.attachments.extractor import AttachmentExtractor, ExtractionResult
from phonearchive.attachments.orphans import OrphanRemovalResult, remove_orphan_attachments
from phonearchive.attachments.store import (
    AttachmentInfo,
    AttachmentStore,
    StoredAttachment,
    generate_filename,
)

__all__ = [
    "AttachmentExtractor",
    "AttachmentInfo",
    "AttachmentStore",
    "ExtractionResult",
    "OrphanRemovalResult",
    "StoredAttachment",
    "generate_filename",
    "remove_orphan_attachments",
]

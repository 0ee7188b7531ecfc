"""Names of the files and directories that make up a repository."""

from __future__ import annotations

MARKER_FILE = ".phonearchive.yaml"
MANIFEST_FILE = "files.yaml"
MANIFEST_CHECKSUM_FILE = "files.yaml.sha256"
SUMMARY_FILE = "summary.yaml"
CONTACTS_FILE = "contacts.yaml"

CALLS_DIR = "calls"
SMS_DIR = "sms"
ATTACHMENTS_DIR = "attachments"
REJECTED_DIR = "rejected"

PARTITION_DIRS = {
    "calls": CALLS_DIR,
    "sms": SMS_DIR,
}

REQUIRED_DIRS = (CALLS_DIR, SMS_DIR, ATTACHMENTS_DIR)
REQUIRED_FILES = (CONTACTS_FILE, SUMMARY_FILE, MANIFEST_FILE, MANIFEST_CHECKSUM_FILE)

# Never listed in the manifest.
MANIFEST_EXCLUDED = frozenset({MANIFEST_FILE, MANIFEST_CHECKSUM_FILE})

METADATA_FILE = "metadata.yaml"


def partition_filename(kind: str, year: int) -> str:
    return f"{kind}-{year:04d}.xml"


def partition_path(kind: str, year: int) -> str:
    """Repository-relative path of a year partition."""
    return f"{PARTITION_DIRS[kind]}/{partition_filename(kind, year)}"

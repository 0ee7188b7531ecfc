"""Phase 4: re-derive counts and attachment references from the partitions."""

from __future__ import annotations

import re

from phonearchive.core.errors import XMLSecurityError
from phonearchive.records.base import release
from phonearchive.records.calls import Call
from phonearchive.records.sms import MMS, attachment_hash_from_path, message_from_element
from phonearchive.repository import layout
from phonearchive.security.xml import iterparse_secure
from phonearchive.validation.context import ContentFacts, ValidationContext
from phonearchive.validation.types import ViolationType, error

PHASE = "content"

_HEX64 = re.compile(r"^[0-9a-f]{64}$")
_PREFIX = re.compile(r"^[0-9a-f]{2}$")

_RECORD_TAGS = {
    "calls": ("calls", ("call",)),
    "sms": ("smses", ("sms", "mms")),
}


def _scan_partition(ctx: ValidationContext, kind: str, year: int, facts: ContentFacts) -> None:
    rel = layout.partition_path(kind, year)
    root_tag, record_tags = _RECORD_TAGS[kind]
    counts = facts.calls_by_year if kind == "calls" else facts.sms_by_year
    declared: str | None = None
    actual = 0
    misfiled = 0
    malformed = 0
    problems: dict[str, None] = {}
    try:
        for event, el in iterparse_secure(ctx.repo_root / rel, events=("start", "end")):
            if event == "start":
                if el.getparent() is None:
                    if el.tag != root_tag:
                        facts.violations.append(error(
                            ViolationType.INVALID_FORMAT, rel,
                            f"root element is <{el.tag}>, expected <{root_tag}>",
                        ))
                    declared = el.get("count")
                continue
            if el.tag not in record_tags or el.getparent() is None:
                continue
            if el.getparent().getparent() is not None:
                continue  # nested element named like a record
            if actual % 500 == 0:
                ctx.checkpoint()
            if kind == "calls":
                record = Call.from_element(el)
            else:
                record = message_from_element(el)
                if isinstance(record, MMS):
                    for part in record.parts:
                        if not part.path:
                            continue
                        ref = attachment_hash_from_path(part.path)
                        if ref is None or not _HEX64.match(ref):
                            facts.violations.append(error(
                                ViolationType.INVALID_FORMAT, rel,
                                f"malformed attachment path {part.path!r}",
                            ))
                            continue
                        facts.referenced_attachments.setdefault(ref, []).append(rel)
            actual += 1
            reasons = record.format_errors()
            if reasons:
                malformed += 1
                problems.update(dict.fromkeys(reasons))
            elif record.year() != year:
                misfiled += 1
            release(el)
    except XMLSecurityError as exc:
        facts.violations.append(error(ViolationType.INVALID_FORMAT, rel, str(exc)))
        return

    counts[year] = actual
    if malformed:
        facts.violations.append(error(
            ViolationType.INVALID_FORMAT, rel,
            f"{malformed} record(s) have malformed fields: {', '.join(problems)}",
        ))
    if misfiled:
        facts.violations.append(error(
            ViolationType.INVALID_FORMAT, rel,
            f"{misfiled} record(s) do not belong to year {year}",
        ))
    if declared is None or not declared.isdigit():
        facts.violations.append(error(
            ViolationType.INVALID_FORMAT, rel, "root element has no numeric count attribute",
        ))
    elif int(declared) != actual:
        facts.violations.append(error(
            ViolationType.COUNT_MISMATCH, rel,
            "count attribute does not match the number of records",
            expected=declared, actual=str(actual),
        ))


def derive_content_facts(ctx: ValidationContext) -> ContentFacts:
    facts = ContentFacts()
    for kind, dirname in layout.PARTITION_DIRS.items():
        directory = ctx.repo_root / dirname
        if not directory.is_dir():
            continue
        pattern = re.compile(rf"^{kind}-(\d{{4}})\.xml$")
        for child in sorted(directory.iterdir()):
            match = pattern.match(child.name)
            if not match or not child.is_file():
                continue
            ctx.checkpoint()
            _scan_partition(ctx, kind, int(match.group(1)), facts)
            ctx.count_file()
    return facts


def check_attachment_layout(ctx: ValidationContext) -> None:
    root = ctx.repo_root / layout.ATTACHMENTS_DIR
    if not root.is_dir():
        return
    for prefix_dir in sorted(root.iterdir()):
        ctx.checkpoint()
        rel_prefix = f"{layout.ATTACHMENTS_DIR}/{prefix_dir.name}"
        if not prefix_dir.is_dir() or not _PREFIX.match(prefix_dir.name):
            ctx.emit(PHASE, error(
                ViolationType.INVALID_FORMAT, rel_prefix,
                "attachments/ may only contain two-character hex directories",
            ))
            continue
        for hash_dir in sorted(prefix_dir.iterdir()):
            rel = f"{rel_prefix}/{hash_dir.name}"
            if (
                not hash_dir.is_dir()
                or not _HEX64.match(hash_dir.name)
                or not hash_dir.name.startswith(prefix_dir.name)
            ):
                ctx.emit(PHASE, error(
                    ViolationType.INVALID_FORMAT, rel,
                    "expected a directory named by a sha256 starting with its prefix",
                ))
                continue
            children = [c for c in hash_dir.iterdir() if not c.name.endswith(".tmp")]
            names = {c.name for c in children}
            if layout.METADATA_FILE not in names:
                ctx.emit(PHASE, error(
                    ViolationType.MISSING_FILE, f"{rel}/{layout.METADATA_FILE}",
                    "attachment metadata is missing",
                ))
            blobs = [c for c in children if c.name != layout.METADATA_FILE]
            if not blobs:
                ctx.emit(PHASE, error(
                    ViolationType.MISSING_FILE, rel, "attachment directory holds no content file",
                ))
            elif len(blobs) > 1:
                ctx.emit(PHASE, error(
                    ViolationType.INVALID_FORMAT, rel,
                    "attachment directory holds more than one content file",
                ))


def check_content(ctx: ValidationContext) -> None:
    facts = ctx.content_facts(derive_content_facts)
    for violation in facts.violations:
        ctx.emit(PHASE, violation)
    check_attachment_layout(ctx)

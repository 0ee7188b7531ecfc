"""Phase 5: derived facts vs. the cached summary and the attachment store."""

from __future__ import annotations

from phonearchive.attachments.store import AttachmentStore
from phonearchive.core.errors import RepositoryError
from phonearchive.repository import layout
from phonearchive.repository.summary import load_summary
from phonearchive.validation.content import derive_content_facts
from phonearchive.validation.context import ContentFacts, ValidationContext
from phonearchive.validation.types import ViolationType, error, warning

PHASE = "consistency"


def _compare_years(
    ctx: ValidationContext, label: str, recorded: dict[int, int], derived: dict[int, int],
) -> None:
    for year in sorted(set(recorded) | set(derived)):
        if recorded.get(year, 0) != derived.get(year, 0):
            ctx.emit(PHASE, error(
                ViolationType.COUNT_MISMATCH, layout.SUMMARY_FILE,
                f"{label} count for {year} differs from the partition",
                expected=str(derived.get(year, 0)), actual=str(recorded.get(year, 0)),
            ))


def check_summary(ctx: ValidationContext, facts: ContentFacts, stored: list) -> None:
    if not (ctx.repo_root / layout.SUMMARY_FILE).is_file():
        return  # reported by the structure phase
    try:
        summary = load_summary(ctx.repo_root)
    except RepositoryError as exc:
        ctx.emit(PHASE, error(ViolationType.INVALID_FORMAT, layout.SUMMARY_FILE, str(exc)))
        return

    derived_calls = sum(facts.calls_by_year.values())
    derived_sms = sum(facts.sms_by_year.values())
    checks = [
        ("total_calls", summary.total_calls, derived_calls, ViolationType.COUNT_MISMATCH),
        ("total_sms", summary.total_sms, derived_sms, ViolationType.COUNT_MISMATCH),
        ("total_attachments", summary.total_attachments, len(stored), ViolationType.COUNT_MISMATCH),
        (
            "total_attachment_bytes",
            summary.total_attachment_bytes,
            sum(a.size for a in stored),
            ViolationType.SIZE_MISMATCH,
        ),
    ]
    for name, recorded, derived, vtype in checks:
        ctx.checkpoint()
        if recorded != derived:
            ctx.emit(PHASE, error(
                vtype, layout.SUMMARY_FILE,
                f"{name} in summary does not match the repository",
                expected=str(derived), actual=str(recorded),
            ))
    _compare_years(ctx, "calls", summary.calls_by_year, facts.calls_by_year)
    _compare_years(ctx, "sms", summary.sms_by_year, facts.sms_by_year)


def check_references(ctx: ValidationContext, facts: ContentFacts, stored: list) -> None:
    stored_hashes = {a.hash: a for a in stored}
    store = AttachmentStore(ctx.repo_root)
    for ref in sorted(facts.referenced_attachments):
        ctx.checkpoint()
        if ref not in stored_hashes:
            files = ", ".join(sorted(set(facts.referenced_attachments[ref])))
            ctx.emit(PHASE, error(
                ViolationType.MISSING_FILE, store.dir_for(ref),
                f"attachment referenced by {files} is not in the store",
            ))
    for attachment in stored:
        ctx.checkpoint()
        if attachment.hash not in facts.referenced_attachments:
            ctx.emit(PHASE, warning(
                ViolationType.ORPHANED_ATTACHMENT, attachment.path,
                "attachment is not referenced by any message",
            ))


def check_consistency(ctx: ValidationContext) -> None:
    facts = ctx.content_facts(derive_content_facts)
    stored = list(AttachmentStore(ctx.repo_root).iter_attachments())
    check_summary(ctx, facts, stored)
    check_references(ctx, facts, stored)

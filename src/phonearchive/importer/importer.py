"""Import call and message backups into a repository."""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Iterator

from phonearchive.attachments.extractor import AttachmentExtractor
from phonearchive.attachments.store import AttachmentStore
from phonearchive.coalescer import Coalescer
from phonearchive.core.config import ImportOptions, ValidationOptions
from phonearchive.core.errors import (
    ArchiveError,
    AttachmentError,
    ImportFailedError,
    OperationCancelledError,
    PathValidationError,
    XMLSecurityError,
)
from phonearchive.core.logging import RunLogger, Verbosity
from phonearchive.importer.rejections import RejectedRecord, RejectionWriter
from phonearchive.importer.types import EntityStats, ImportSummary, YearStat, YearTracker
from phonearchive.records.calls import read_calls, write_calls
from phonearchive.records.partitions import PartitionReader
from phonearchive.records.sms import MMS, read_messages, write_messages
from phonearchive.repository import layout
from phonearchive.repository.contacts import ContactsBook
from phonearchive.repository.manifest import generate_manifest
from phonearchive.repository.summary import RepositoryStats, write_summary
from phonearchive.security.xml import iterparse_secure
from phonearchive.validation.validator import RepositoryValidator

logger = logging.getLogger(__name__)

_BACKUP_PATTERNS = {
    "calls": re.compile(r"^calls.*\.xml$", re.IGNORECASE),
    "sms": re.compile(r"^sms.*\.xml$", re.IGNORECASE),
}
_ROOT_KINDS = {"calls": "calls", "smses": "sms"}


class EntityImporter:
    """Coalesces one record kind (calls or messages) across backup files."""

    def __init__(
        self,
        kind: str,
        reader: Callable[..., Iterator],
        writer: Callable[[Path, Iterable], int],
        options: ImportOptions,
        run_logger: RunLogger,
        contacts: ContactsBook,
        extractor: AttachmentExtractor | None = None,
    ):
        self.kind = kind
        self.reader = reader
        self.writer = writer
        self.options = options
        self.run_logger = run_logger
        self.contacts = contacts
        self.extractor = extractor
        self.coalescer: Coalescer = Coalescer()
        self.tracker = YearTracker()
        self.rejected = 0
        self.errors = 0

    def load_existing(self, cancel: threading.Event | None = None) -> int:
        reader = PartitionReader(self.options.repo_root, self.kind, self.options.max_xml_size)
        loaded = self.coalescer.load_existing(reader.iter_all(), cancel=cancel)
        for entry in self.coalescer.get_all():
            self.tracker.track_initial(entry.year())
        logger.info("loaded %d existing %s record(s)", loaded, self.kind)
        if reader.skipped:
            logger.warning("skipped %d malformed existing %s record(s)", reader.skipped, self.kind)
        return loaded

    def import_file(
        self, path: Path, cancel: threading.Event | None = None,
    ) -> list[RejectedRecord]:
        """Coalesce every valid record of ``path``; return the rejects."""
        step = f"{self.kind}:{path.name}"
        self.run_logger.step_start(step)
        rejected: list[RejectedRecord] = []
        added = duplicates = processed = 0
        try:
            for position, record in enumerate(
                self.reader(path, max_size=self.options.max_xml_size), start=1,
            ):
                if cancel is not None and cancel.is_set():
                    raise OperationCancelledError(f"import cancelled while reading {path}")
                processed += 1
                reasons = self._check(record)
                if reasons:
                    rejected.append(RejectedRecord(record, reasons, position))
                    self.run_logger.record_decision(step, record.hash(), "rejected")
                    continue
                self._collect_contacts(record)
                was_added = self.coalescer.add(record)
                self.tracker.track_import(record.year(), was_added)
                if was_added:
                    added += 1
                else:
                    duplicates += 1
                self.run_logger.record_decision(
                    step, record.hash(), "added" if was_added else "duplicate",
                )
        except XMLSecurityError as exc:
            self.errors += 1
            self.run_logger.warning(f"{path}: {exc}")
            logger.warning("failed to read %s: %s", path, exc)
        self.rejected += len(rejected)
        self.run_logger.step_finish(
            step, processed=processed, added=added, duplicates=duplicates,
            rejected=len(rejected),
        )
        return rejected

    def _check(self, record) -> list[str]:
        reasons = record.validate()
        if reasons:
            return reasons
        size = getattr(record, "approximate_size", None)
        if size is not None and size() > self.options.max_message_size:
            return ["message-too-large"]
        if isinstance(record, MMS) and self.extractor is not None:
            try:
                self.extractor.extract_from_mms(record)
            except (AttachmentError, PathValidationError) as exc:
                logger.warning("attachment extraction failed: %s", exc)
                return ["attachment-extraction-error"]
        return []

    def _collect_contacts(self, record) -> None:
        name = getattr(record, "contact_name", "")
        number = getattr(record, "number", None) or getattr(record, "address", "")
        if name and number:
            self.contacts.add_from_record(number, name)

    def write_partitions(self, cancel: threading.Event | None = None) -> dict[int, int]:
        """Rewrite every year partition from one ordered pass."""
        by_year: dict[int, list] = {}
        for entry in self.coalescer.get_all(cancel=cancel):
            by_year.setdefault(entry.year(), []).append(entry)
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("import cancelled before writing partitions")
        directory = Path(self.options.repo_root) / layout.PARTITION_DIRS[self.kind]
        counts = {}
        for year, entries in sorted(by_year.items()):
            counts[year] = self.writer(
                directory / layout.partition_filename(self.kind, year), entries,
            )
        return counts

    def counts_by_year(self) -> dict[int, int]:
        counts: dict[int, int] = {}
        for entry in self.coalescer.get_all():
            counts[entry.year()] = counts.get(entry.year(), 0) + 1
        return counts

    def stats(self) -> EntityStats:
        summary = self.coalescer.get_summary()
        return EntityStats(
            years=self.tracker.year_stats(),
            total=YearStat(
                initial=summary.initial,
                final=summary.final,
                added=summary.added,
                duplicates=summary.duplicates,
                rejected=self.rejected,
                errors=self.errors,
            ),
        )


class Importer:
    """Validate, load, coalesce, write: one import run over a repository."""

    def __init__(self, options: ImportOptions, run_logger: RunLogger | None = None):
        self.options = options
        self.repo_root = Path(options.repo_root)
        if options.log_dir is not None and _is_within(Path(options.log_dir), self.repo_root):
            raise ImportFailedError("log directory must be outside the repository")
        self.run_logger = run_logger or RunLogger(
            "import", verbosity=Verbosity(min(options.verbosity, 2)), log_dir=options.log_dir,
        )
        self.store = AttachmentStore(self.repo_root)
        self.contacts = ContactsBook()
        self.extractor = AttachmentExtractor(self.store, dry_run=options.dry_run)
        self.rejections = RejectionWriter(self.repo_root)

    def run(self, cancel: threading.Event | None = None) -> ImportSummary:
        try:
            return self._run(cancel)
        finally:
            self.run_logger.close()

    def _run(self, cancel: threading.Event | None) -> ImportSummary:
        started = time.time()
        self.run_logger.run_start(str(self.repo_root), dry_run=self.options.dry_run)
        self._validate_repository()
        self.contacts = ContactsBook.load(self.repo_root)

        importers = {
            "calls": EntityImporter(
                "calls", read_calls, write_calls, self.options, self.run_logger, self.contacts,
            ),
            "sms": EntityImporter(
                "sms", read_messages, write_messages, self.options, self.run_logger,
                self.contacts, extractor=self.extractor,
            ),
        }
        for importer in importers.values():
            importer.load_existing(cancel=cancel)

        summary = ImportSummary(dry_run=self.options.dry_run)
        pending_rejections: list[tuple[str, Path, list[RejectedRecord]]] = []
        for kind, path in self.scan_inputs():
            if cancel is not None and cancel.is_set():
                raise OperationCancelledError("import cancelled")
            rejected = importers[kind].import_file(path, cancel=cancel)
            pending_rejections.append((kind, path, rejected))
            summary.files_processed.append(str(path))

        if not self.options.dry_run:
            for kind, path, rejected in pending_rejections:
                written = self.rejections.write(kind, path, rejected)
                if written:
                    summary.rejection_files.append(written)
            for importer in importers.values():
                importer.write_partitions(cancel=cancel)
            self.contacts.save(self.repo_root)
            write_summary(self.repo_root, self._repository_stats(importers))
            generate_manifest(self.repo_root)

        summary.calls = importers["calls"].stats()
        summary.sms = importers["sms"].stats()
        summary.attachments = self.extractor.stats
        summary.duration = time.time() - started
        self.run_logger.run_finish(
            calls_added=summary.calls.total.added,
            sms_added=summary.sms.total.added,
            rejected=summary.total_rejected,
        )
        return summary

    def scan_inputs(self) -> list[tuple[str, Path]]:
        """Backup files to import, as ``(kind, path)`` in a stable order."""
        found: list[tuple[str, Path]] = []
        repo = self.repo_root.resolve()
        for raw in self.options.paths:
            path = Path(raw)
            if not path.exists():
                raise ImportFailedError(f"input path does not exist: {path}")
            if path.is_file():
                kind = self._kind_of(path, explicit=True)
                if kind is not None:
                    found.append((kind, path))
                continue
            for dirpath, dirnames, filenames in os.walk(path):
                here = Path(dirpath).resolve()
                dirnames[:] = sorted(
                    d for d in dirnames
                    if not d.startswith(".") and not _is_repository_dir(here / d, repo)
                )
                for name in sorted(filenames):
                    file_path = Path(dirpath) / name
                    kind = self._kind_of(file_path, explicit=False)
                    if kind is not None:
                        found.append((kind, file_path))
        return found

    def _kind_of(self, path: Path, explicit: bool) -> str | None:
        for kind, pattern in _BACKUP_PATTERNS.items():
            if pattern.match(path.name):
                return kind if self._wanted(kind) else None
        if not explicit:
            return None
        if path.suffix.lower() == ".xml":
            kind = _sniff_kind(path, self.options.max_xml_size)
            if kind is not None:
                return kind if self._wanted(kind) else None
        raise ImportFailedError(f"cannot tell whether {path} holds calls or messages")

    def _wanted(self, kind: str) -> bool:
        return self.options.filter in (None, kind)

    def _validate_repository(self) -> None:
        validator = RepositoryValidator(self.repo_root)
        report = validator.validate(ValidationOptions(parallel=False))
        if not report.passed:
            details = "; ".join(f"{v.type}: {v.file}" for v in report.errors[:5])
            raise ImportFailedError(f"repository failed validation: {details}")

    def _repository_stats(self, importers: dict[str, EntityImporter]) -> RepositoryStats:
        stats = RepositoryStats(
            calls_by_year=importers["calls"].counts_by_year(),
            sms_by_year=importers["sms"].counts_by_year(),
        )
        for attachment in self.store.iter_attachments():
            stats.total_attachments += 1
            stats.total_attachment_bytes += attachment.size
        return stats


def _sniff_kind(path: Path, max_size: int) -> str | None:
    try:
        for _event, element in iterparse_secure(path, max_size=max_size, events=("start",)):
            return _ROOT_KINDS.get(element.tag)
    except ArchiveError:
        return None
    return None


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def _is_repository_dir(path: Path, repo: Path) -> bool:
    """Directories of the target repository are never scanned for input."""
    return path == repo or _is_within(path, repo)

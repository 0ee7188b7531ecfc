"""Cached aggregate statistics (``summary.yaml``)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import yaml

from phonearchive.core.errors import RepositoryError, atomic_write
from phonearchive.repository import layout


@dataclass
class RepositoryStats:
    calls_by_year: dict[int, int] = field(default_factory=dict)
    sms_by_year: dict[int, int] = field(default_factory=dict)
    total_attachments: int = 0
    total_attachment_bytes: int = 0

    @property
    def total_calls(self) -> int:
        return sum(self.calls_by_year.values())

    @property
    def total_sms(self) -> int:
        return sum(self.sms_by_year.values())

    @property
    def years_covered(self) -> list[int]:
        return sorted(set(self.calls_by_year) | set(self.sms_by_year))

    def to_dict(self) -> dict:
        return {
            "total_calls": self.total_calls,
            "total_sms": self.total_sms,
            "total_attachments": self.total_attachments,
            "total_attachment_bytes": self.total_attachment_bytes,
            "years_covered": self.years_covered,
            "calls_by_year": dict(sorted(self.calls_by_year.items())),
            "sms_by_year": dict(sorted(self.sms_by_year.items())),
        }


@dataclass
class SummaryFile:
    """Decoded ``summary.yaml``; totals are kept as recorded, not recomputed."""

    last_updated: str = ""
    total_calls: int = 0
    total_sms: int = 0
    total_attachments: int = 0
    total_attachment_bytes: int = 0
    years_covered: list[int] = field(default_factory=list)
    calls_by_year: dict[int, int] = field(default_factory=dict)
    sms_by_year: dict[int, int] = field(default_factory=dict)


def calculate_stats(repo_root: Path) -> RepositoryStats:
    """Recount everything on disk."""
    from phonearchive.attachments.store import AttachmentStore
    from phonearchive.records.partitions import PartitionReader

    stats = RepositoryStats()
    for kind, target in (("calls", stats.calls_by_year), ("sms", stats.sms_by_year)):
        reader = PartitionReader(repo_root, kind)
        for year in reader.available_years():
            target[year] = sum(1 for _ in reader.iter_year(year))
    for attachment in AttachmentStore(repo_root).iter_attachments():
        stats.total_attachments += 1
        stats.total_attachment_bytes += attachment.size
    return stats


def write_summary(repo_root: Path, stats: RepositoryStats) -> None:
    data = {
        "last_updated": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "statistics": stats.to_dict(),
    }
    atomic_write(
        Path(repo_root) / layout.SUMMARY_FILE,
        yaml.safe_dump(data, default_flow_style=False, sort_keys=False),
    )


def _int_map(raw) -> dict[int, int]:
    if not isinstance(raw, dict):
        return {}
    return {int(k): int(v) for k, v in raw.items()}


def load_summary(repo_root: Path) -> SummaryFile:
    path = Path(repo_root) / layout.SUMMARY_FILE
    try:
        data = yaml.safe_load(path.read_text())
    except (yaml.YAMLError, OSError, UnicodeDecodeError) as exc:
        raise RepositoryError(f"cannot read {layout.SUMMARY_FILE}: {exc}") from exc
    if not isinstance(data, dict):
        raise RepositoryError(f"{layout.SUMMARY_FILE} is not a mapping")
    stats = data.get("statistics") or {}
    if not isinstance(stats, dict):
        raise RepositoryError(f"{layout.SUMMARY_FILE} 'statistics' is not a mapping")
    try:
        return SummaryFile(
            last_updated=str(data.get("last_updated", "")),
            total_calls=int(stats.get("total_calls", 0)),
            total_sms=int(stats.get("total_sms", 0)),
            total_attachments=int(stats.get("total_attachments", 0)),
            total_attachment_bytes=int(stats.get("total_attachment_bytes", 0)),
            years_covered=[int(y) for y in stats.get("years_covered") or []],
            calls_by_year=_int_map(stats.get("calls_by_year")),
            sms_by_year=_int_map(stats.get("sms_by_year")),
        )
    except (TypeError, ValueError) as exc:
        raise RepositoryError(f"{layout.SUMMARY_FILE} has non-numeric statistics: {exc}") from exc

"""Statistics reported by an import run."""

from __future__ import annotations

from dataclasses import dataclass, field

from phonearchive.attachments.extractor import ExtractionStats


@dataclass
class YearStat:
    initial: int = 0
    final: int = 0
    added: int = 0
    duplicates: int = 0
    rejected: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "initial": self.initial,
            "final": self.final,
            "added": self.added,
            "duplicates": self.duplicates,
            "rejected": self.rejected,
            "errors": self.errors,
        }


class YearTracker:
    """Per-year initial/added/duplicate counts for one entity type."""

    def __init__(self):
        self.initial: dict[int, int] = {}
        self.added: dict[int, int] = {}
        self.duplicates: dict[int, int] = {}

    def track_initial(self, year: int) -> None:
        self.initial[year] = self.initial.get(year, 0) + 1

    def track_import(self, year: int, was_added: bool) -> None:
        target = self.added if was_added else self.duplicates
        target[year] = target.get(year, 0) + 1

    def years(self) -> list[int]:
        return sorted(set(self.initial) | set(self.added) | set(self.duplicates))

    def year_stats(self) -> dict[int, YearStat]:
        stats = {}
        for year in self.years():
            initial = self.initial.get(year, 0)
            added = self.added.get(year, 0)
            stats[year] = YearStat(
                initial=initial,
                final=initial + added,
                added=added,
                duplicates=self.duplicates.get(year, 0),
            )
        return stats


@dataclass
class EntityStats:
    """Import result for calls or messages."""

    years: dict[int, YearStat] = field(default_factory=dict)
    total: YearStat = field(default_factory=YearStat)

    def to_dict(self) -> dict:
        return {
            "years": {year: stat.to_dict() for year, stat in sorted(self.years.items())},
            "total": self.total.to_dict(),
        }


@dataclass
class ImportSummary:
    calls: EntityStats = field(default_factory=EntityStats)
    sms: EntityStats = field(default_factory=EntityStats)
    attachments: ExtractionStats = field(default_factory=ExtractionStats)
    files_processed: list[str] = field(default_factory=list)
    rejection_files: list[str] = field(default_factory=list)
    duration: float = 0.0
    dry_run: bool = False

    @property
    def total_rejected(self) -> int:
        return self.calls.total.rejected + self.sms.total.rejected

    @property
    def total_errors(self) -> int:
        return self.calls.total.errors + self.sms.total.errors

    def to_dict(self) -> dict:
        return {
            "calls": self.calls.to_dict(),
            "sms": self.sms.to_dict(),
            "attachments": self.attachments.to_dict(),
            "files_processed": list(self.files_processed),
            "rejection_files": list(self.rejection_files),
            "duration": round(self.duration, 3),
            "dry_run": self.dry_run,
        }

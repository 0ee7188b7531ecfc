"""Import backups into a repository."""

from phonearchive.importer.importer import EntityImporter, Importer
from phonearchive.importer.types import EntityStats, ImportSummary, YearStat, YearTracker

__all__ = [
    "EntityImporter",
    "EntityStats",
    "ImportSummary",
    "Importer",
    "YearStat",
    "YearTracker",
]

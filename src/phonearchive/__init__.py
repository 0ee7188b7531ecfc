"""phonearchive — deduplicated, integrity-checked archive of call and SMS/MMS backups."""

__version__ = "0.1.0"

"""Hash-keyed deduplicating collection with chronological retrieval."""

from phonearchive.coalescer.coalescer import Coalescer, Entry, Summary

__all__ = ["Coalescer", "Entry", "Summary"]

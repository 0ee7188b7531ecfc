"""Shared helpers for record models: time conversion, hashing, XML output."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable
from zoneinfo import ZoneInfo

from lxml import etree

from phonearchive.core.errors import RecordFormatError, atomic_write

READABLE_DATE_ZONE = ZoneInfo("America/New_York")

XML_DECLARATION = b"<?xml version='1.0' encoding='UTF-8' standalone='yes'?>\n"

# 9999-12-31T23:59:59.999Z, the last instant a datetime can represent.
MAX_TIMESTAMP_MS = 253402300799999


def parse_int(value: str | None, default: int = 0) -> int:
    """Lenient integer parse: empty and ``null`` attributes become ``default``.

    Raises ``RecordFormatError`` for anything else that is not a number.
    """
    if value is None:
        return default
    value = value.strip()
    if not value or value == "null":
        return default
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return int(float(value))
    except (ValueError, OverflowError) as exc:
        raise RecordFormatError(f"not an integer: {value!r}") from exc


def ms_to_datetime(ms: int) -> datetime:
    if not 0 <= ms <= MAX_TIMESTAMP_MS:
        raise RecordFormatError(f"timestamp {ms} is out of range")
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def readable_date(ms: int) -> str:
    """Render epoch milliseconds as e.g. ``Mar 15, 2024 2:30:00 PM`` (US Eastern)."""
    local = ms_to_datetime(ms).astimezone(READABLE_DATE_ZONE)
    hour = local.hour % 12 or 12
    return f"{local:%b} {local.day}, {local.year} {hour}:{local:%M:%S} {local:%p}"


def display_date(ms: int, fallback: str) -> str:
    """``readable_date`` for timestamps in range, ``fallback`` otherwise."""
    if 0 < ms <= MAX_TIMESTAMP_MS:
        return readable_date(ms)
    return fallback


class AttributeReader:
    """Typed access to an element's attributes.

    Unparseable numbers become ``0`` and are remembered in ``errors`` (as
    ``invalid-<name>`` reasons) and ``raw`` (the original text), so one bad
    field turns into a rejection instead of aborting the whole file.
    """

    def __init__(self, el: etree._Element, prefix: str = ""):
        self.attrs = dict(el.attrib)
        self.prefix = prefix
        self.errors: list[str] = []
        self.raw: dict[str, str] = {}

    def get(self, name: str, default: str = "") -> str:
        return self.attrs.get(name, default)

    def integer(self, name: str, reason: str | None = None) -> int:
        value = self.attrs.get(name)
        try:
            return parse_int(value)
        except RecordFormatError:
            self.errors.append(self.prefix + (reason or f"invalid-{name.replace('_', '-')}"))
            self.raw[name] = value
            return 0

    def extra(self, owned: Iterable[str]) -> dict[str, str]:
        """Attributes the model does not own, plus the raw text of bad fields."""
        owned = set(owned)
        extra = {k: v for k, v in self.attrs.items() if k not in owned}
        extra.update(self.raw)
        return extra


class TimedRecord:
    """Time accessors and field checks shared by calls and messages."""

    date: int
    field_errors: list[str]

    def timestamp(self) -> datetime:
        return ms_to_datetime(self.date)

    def year(self) -> int:
        return self.timestamp().year

    def format_errors(self) -> list[str]:
        """Unparseable fields plus a missing or out-of-range timestamp."""
        reasons = list(self.field_errors)
        if "invalid-timestamp" not in reasons:
            if self.date <= 0:
                reasons.append("missing-timestamp")
            elif self.date > MAX_TIMESTAMP_MS:
                reasons.append("invalid-timestamp")
        return reasons


def field_digest(fields: Iterable[tuple[str, object]]) -> str:
    """sha256 hex over ``name:value|`` pairs, in the order given."""
    h = hashlib.sha256()
    for name, value in fields:
        h.update(f"{name}:{value}|".encode("utf-8"))
    return h.hexdigest()


def write_document(path: Path, root: etree._Element) -> None:
    """Serialize ``root`` with the backup-style declaration and write atomically."""
    body = etree.tostring(root, encoding="UTF-8", xml_declaration=False, pretty_print=True)
    path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write(path, XML_DECLARATION + body)


def release(el: etree._Element) -> None:
    """Free a streamed element and its already-processed siblings."""
    el.clear()
    parent = el.getparent()
    if parent is not None:
        while el.getprevious() is not None:
            del parent[0]

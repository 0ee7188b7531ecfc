"""Call records: model, identity hash and XML reading/writing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Iterable, Iterator

from lxml import etree

from phonearchive.core.config import DEFAULT_MAX_XML_SIZE
from phonearchive.records.base import (
    AttributeReader,
    TimedRecord,
    display_date,
    field_digest,
    release,
    write_document,
)
from phonearchive.security.xml import iterparse_secure

logger = logging.getLogger(__name__)

# Attributes the model owns; everything else on <call> is carried in ``extra``.
_CALL_FIELDS = ("number", "duration", "date", "type", "readable_date", "contact_name")


class CallType(IntEnum):
    INCOMING = 1
    OUTGOING = 2
    MISSED = 3
    VOICEMAIL = 4


@dataclass
class Call(TimedRecord):
    number: str = ""
    duration: int = 0
    date: int = 0  # epoch milliseconds
    type: int = 0
    readable_date: str = ""
    contact_name: str = ""
    extra: dict[str, str] = field(default_factory=dict)
    field_errors: list[str] = field(default_factory=list, compare=False, repr=False)

    def hash(self) -> str:
        """Identity digest. Display-only fields are excluded."""
        return field_digest([
            ("number", self.number),
            ("duration", self.duration),
            ("date", self.date),
            ("type", self.type),
        ])

    def validate(self) -> list[str]:
        """Return rejection reasons; an empty list means the call is importable."""
        reasons = self.format_errors()
        if not self.number:
            reasons.append("missing-number")
        if self.type not in CallType._value2member_map_:
            reasons.append("invalid-type")
        if self.duration < 0:
            reasons.append("negative-duration")
        return list(dict.fromkeys(reasons))

    @classmethod
    def from_element(cls, el: etree._Element) -> Call:
        attrs = AttributeReader(el)
        call = cls(
            number=attrs.get("number"),
            duration=attrs.integer("duration"),
            date=attrs.integer("date", "invalid-timestamp"),
            type=attrs.integer("type"),
            readable_date=attrs.get("readable_date"),
            contact_name=attrs.get("contact_name"),
        )
        call.extra = attrs.extra(_CALL_FIELDS)
        call.field_errors = attrs.errors
        return call

    def to_element(self) -> etree._Element:
        el = etree.Element("call")
        el.set("number", self.number)
        el.set("duration", str(self.duration))
        el.set("date", str(self.date))
        el.set("type", str(self.type))
        for key, value in self.extra.items():
            el.set(key, value)
        el.set("readable_date", display_date(self.date, self.readable_date))
        if self.contact_name:
            el.set("contact_name", self.contact_name)
        return el


def read_calls(path: str | Path, max_size: int = DEFAULT_MAX_XML_SIZE) -> Iterator[Call]:
    """Stream ``Call`` records from a backup or partition file."""
    for _event, el in iterparse_secure(path, tag="call", max_size=max_size):
        yield Call.from_element(el)
        release(el)


def write_calls(path: Path, calls: Iterable[Call]) -> int:
    """Write ``calls`` (already in chronological order) as a ``<calls>`` document."""
    root = etree.Element("calls")
    count = 0
    for call in calls:
        root.append(call.to_element())
        count += 1
    root.set("count", str(count))
    write_document(path, root)
    logger.debug("wrote %d calls to %s", count, path)
    return count

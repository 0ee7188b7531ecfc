"""SMS and MMS records: models, identity hashes and XML reading/writing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Iterable, Iterator, Union

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

_SMS_FIELDS = (
    "protocol", "address", "date", "type", "subject", "body", "service_center",
    "read", "status", "locked", "date_sent", "readable_date", "contact_name",
)
_MMS_FIELDS = ("date", "msg_box", "address", "m_type", "m_id", "readable_date", "contact_name")
_PART_FIELDS = (
    "seq", "ct", "name", "text", "data", "path", "original_size", "extraction_date",
)


class MessageType(IntEnum):
    RECEIVED = 1
    SENT = 2


@dataclass
class SMS(TimedRecord):
    address: str = ""
    date: int = 0
    type: int = 0
    body: str = ""
    protocol: str = ""
    subject: str = ""
    service_center: str = ""
    read: int = 0
    status: int = 0
    locked: int = 0
    date_sent: int = 0
    readable_date: str = ""
    contact_name: str = ""
    extra: dict[str, str] = field(default_factory=dict)
    field_errors: list[str] = field(default_factory=list, compare=False, repr=False)

    kind = "sms"

    def hash(self) -> str:
        return field_digest([
            ("address", self.address),
            ("date", self.date),
            ("type", self.type),
            ("msgtype", "sms"),
            ("body", self.body),
            ("protocol", self.protocol),
            ("subject", self.subject),
            ("service_center", self.service_center),
            ("read", self.read),
            ("status", self.status),
            ("locked", self.locked),
            ("date_sent", self.date_sent),
        ])

    def validate(self) -> list[str]:
        reasons = self.format_errors()
        if not self.address:
            reasons.append("missing-address")
        if self.type not in MessageType._value2member_map_:
            reasons.append("invalid-type")
        return list(dict.fromkeys(reasons))

    def approximate_size(self) -> int:
        return len(self.address) + 50 + len(self.body)

    @classmethod
    def from_element(cls, el: etree._Element) -> SMS:
        attrs = AttributeReader(el)
        sms = cls(
            address=attrs.get("address"),
            date=attrs.integer("date", "invalid-timestamp"),
            type=attrs.integer("type"),
            body=attrs.get("body"),
            protocol=attrs.get("protocol"),
            subject=attrs.get("subject"),
            service_center=attrs.get("service_center"),
            read=attrs.integer("read"),
            status=attrs.integer("status"),
            locked=attrs.integer("locked"),
            date_sent=attrs.integer("date_sent"),
            readable_date=attrs.get("readable_date"),
            contact_name=attrs.get("contact_name"),
        )
        sms.extra = attrs.extra(_SMS_FIELDS)
        sms.field_errors = attrs.errors
        return sms

    def to_element(self) -> etree._Element:
        el = etree.Element("sms")
        el.set("protocol", self.protocol)
        el.set("address", self.address)
        el.set("date", str(self.date))
        el.set("type", str(self.type))
        el.set("subject", self.subject)
        el.set("body", self.body)
        el.set("service_center", self.service_center)
        el.set("read", str(self.read))
        el.set("status", str(self.status))
        el.set("locked", str(self.locked))
        el.set("date_sent", str(self.date_sent))
        for key, value in self.extra.items():
            el.set(key, value)
        el.set("readable_date", display_date(self.date, self.readable_date))
        if self.contact_name:
            el.set("contact_name", self.contact_name)
        return el


@dataclass
class MMSPart:
    seq: int = 0
    content_type: str = ""
    name: str = ""
    text: str = ""
    data: str = ""  # base64, cleared once extracted
    path: str = ""  # repository-relative attachment path after extraction
    original_size: int = 0
    extraction_date: str = ""
    extra: dict[str, str] = field(default_factory=dict)
    field_errors: list[str] = field(default_factory=list, compare=False, repr=False)

    @classmethod
    def from_element(cls, el: etree._Element, prefix: str = "") -> MMSPart:
        attrs = AttributeReader(el, prefix)
        part = cls(
            seq=attrs.integer("seq"),
            content_type=attrs.get("ct"),
            name=attrs.get("name"),
            text=attrs.get("text"),
            data=attrs.get("data"),
            path=attrs.get("path"),
            original_size=attrs.integer("original_size"),
            extraction_date=attrs.get("extraction_date"),
        )
        part.extra = attrs.extra(_PART_FIELDS)
        part.field_errors = attrs.errors
        return part

    def to_element(self) -> etree._Element:
        el = etree.Element("part")
        el.set("seq", str(self.seq))
        el.set("ct", self.content_type)
        el.set("name", self.name)
        for key, value in self.extra.items():
            el.set(key, value)
        el.set("text", self.text)
        if self.path:
            el.set("path", self.path)
            el.set("original_size", str(self.original_size))
            el.set("extraction_date", self.extraction_date)
        elif self.data:
            el.set("data", self.data)
        return el


@dataclass
class MMSAddress:
    address: str = ""
    type: int = 0
    charset: int = 0


@dataclass
class MMS(TimedRecord):
    address: str = ""
    date: int = 0
    msg_box: int = 0
    m_id: str = ""
    m_type: int = 0
    parts: list[MMSPart] = field(default_factory=list)
    addresses: list[MMSAddress] = field(default_factory=list)
    readable_date: str = ""
    contact_name: str = ""
    extra: dict[str, str] = field(default_factory=dict)
    field_errors: list[str] = field(default_factory=list, compare=False, repr=False)

    kind = "mms"

    @property
    def type(self) -> int:
        return MessageType.RECEIVED if self.msg_box == 1 else MessageType.SENT

    def hash(self) -> str:
        fields: list[tuple[str, object]] = [
            ("address", self.address),
            ("date", self.date),
            ("type", int(self.type)),
            ("msgtype", "mms"),
            ("msg_box", self.msg_box),
            ("m_id", self.m_id),
            ("m_type", self.m_type),
        ]
        for i, part in enumerate(self.parts):
            fields += [
                (f"part{i}_seq", part.seq),
                (f"part{i}_ct", part.content_type),
                (f"part{i}_name", part.name),
                (f"part{i}_text", part.text),
            ]
            if part.path:
                fields.append((f"part{i}_path", part.path))
            elif part.data:
                fields.append((f"part{i}_has_data", "true"))
        for i, addr in enumerate(self.addresses):
            fields += [
                (f"addr{i}_address", addr.address),
                (f"addr{i}_type", addr.type),
                (f"addr{i}_charset", addr.charset),
            ]
        return field_digest(fields)

    def validate(self) -> list[str]:
        reasons = self.format_errors()
        if not self.address:
            reasons.append("missing-address")
        if self.msg_box not in (1, 2):
            reasons.append("invalid-msg-box")
        for i, part in enumerate(self.parts):
            if not part.content_type:
                reasons.append(f"part-{i}-missing-content-type")
        return list(dict.fromkeys(reasons))

    def approximate_size(self) -> int:
        size = len(self.address) + 50 + len(self.extra.get("sub", ""))
        for part in self.parts:
            size += len(part.data) + len(part.content_type) + len(part.name)
        return size

    @classmethod
    def from_element(cls, el: etree._Element) -> MMS:
        attrs = AttributeReader(el)
        mms = cls(
            address=attrs.get("address"),
            date=attrs.integer("date", "invalid-timestamp"),
            msg_box=attrs.integer("msg_box"),
            m_id=attrs.get("m_id"),
            m_type=attrs.integer("m_type"),
            readable_date=attrs.get("readable_date"),
            contact_name=attrs.get("contact_name"),
        )
        mms.extra = attrs.extra(_MMS_FIELDS)
        errors = attrs.errors
        for i, p in enumerate(el.iterfind("parts/part")):
            part = MMSPart.from_element(p, f"part-{i}-")
            errors += part.field_errors
            mms.parts.append(part)
        for i, a in enumerate(el.iterfind("addrs/addr")):
            reader = AttributeReader(a, f"addr-{i}-")
            mms.addresses.append(MMSAddress(
                address=reader.get("address"),
                type=reader.integer("type"),
                charset=reader.integer("charset"),
            ))
            errors += reader.errors
        mms.field_errors = errors
        return mms

    def to_element(self) -> etree._Element:
        el = etree.Element("mms")
        el.set("date", str(self.date))
        el.set("msg_box", str(self.msg_box))
        el.set("address", self.address)
        el.set("m_type", str(self.m_type))
        el.set("m_id", self.m_id)
        for key, value in self.extra.items():
            el.set(key, value)
        el.set("readable_date", display_date(self.date, self.readable_date))
        if self.contact_name:
            el.set("contact_name", self.contact_name)
        parts = etree.SubElement(el, "parts")
        for part in self.parts:
            parts.append(part.to_element())
        addrs = etree.SubElement(el, "addrs")
        for addr in self.addresses:
            etree.SubElement(addrs, "addr", {
                "address": addr.address,
                "type": str(addr.type),
                "charset": str(addr.charset),
            })
        return el


Message = Union[SMS, MMS]


def message_from_element(el: etree._Element) -> Message:
    if el.tag == "mms":
        return MMS.from_element(el)
    return SMS.from_element(el)


def attachment_references(message: Message) -> list[str]:
    """Hashes of the stored attachments an MMS points at, in part order."""
    if not isinstance(message, MMS):
        return []
    refs = []
    for part in message.parts:
        ref = attachment_hash_from_path(part.path)
        if ref:
            refs.append(ref)
    return refs


def attachment_hash_from_path(path: str) -> str | None:
    """``attachments/ab/<hash>/<file>`` -> ``<hash>``; None for anything else."""
    if not path:
        return None
    pieces = path.split("/")
    if len(pieces) >= 3 and pieces[0] == "attachments":
        return pieces[2]
    return None


def read_messages(path: str | Path, max_size: int = DEFAULT_MAX_XML_SIZE) -> Iterator[Message]:
    """Stream SMS and MMS records from a backup or partition file."""
    for _event, el in iterparse_secure(path, tag=("sms", "mms"), max_size=max_size):
        yield message_from_element(el)
        release(el)


def write_messages(path: Path, messages: Iterable[Message]) -> int:
    """Write ``messages`` (already in chronological order) as a ``<smses>`` document."""
    root = etree.Element("smses")
    count = 0
    for message in messages:
        root.append(message.to_element())
        count += 1
    root.set("count", str(count))
    write_document(path, root)
    logger.debug("wrote %d messages to %s", count, path)
    return count

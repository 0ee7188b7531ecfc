"""Hardened XML decoding for backup files and repository partitions.

All XML read by phonearchive goes through these helpers. The parser never
resolves entities, never loads external DTDs and never touches the
network. Before the parser sees a document, every entity declared in its
internal DTD subset is rewritten to an empty value: a reference in element
content stays an unresolved reference node and a reference inside an
attribute value expands to nothing. XXE and expansion payloads therefore
never reach a record, and decoding still succeeds. Character and
predefined references such as ``&lt;`` resolve.
"""

from __future__ import annotations

import io
import os
import re
from pathlib import Path
from typing import BinaryIO, Iterator

from lxml import etree

from phonearchive.core.config import DEFAULT_MAX_XML_SIZE
from phonearchive.core.errors import XMLSecurityError, XMLSizeLimitError

_PARSER_SETTINGS = dict(
    resolve_entities=False,
    no_network=True,
    load_dtd=False,
    dtd_validation=False,
    huge_tree=False,
)

# Largest prolog buffered while looking for the end of a DOCTYPE.
MAX_PROLOG_SIZE = 1 << 20
_PROLOG_CHUNK = 8192

_ELEMENT_START = re.compile(rb"<[A-Za-z_:]")
_DOCTYPE = re.compile(
    rb"""<!DOCTYPE\s[^\[>]*"""
    rb"""(?:\[(?P<subset>(?:"[^"]*"|'[^']*'|<!--.*?-->|<(?!!--)|[^\]"'<])*)\])?"""
    rb"""\s*>""",
    re.DOTALL,
)
_ENTITY_DECL = re.compile(
    rb"""<!ENTITY\s+(?P<name>(?:%\s+)?[^\s"'>]+)\s(?:"[^"]*"|'[^']*'|[^"'>])*>"""
)


def secure_parser(**overrides) -> etree.XMLParser:
    """Build an lxml parser with entity resolution and network access off."""
    settings = dict(_PARSER_SETTINGS)
    settings.update(overrides)
    return etree.XMLParser(**settings)


class LimitedReader(io.RawIOBase):
    """File-like wrapper that refuses to yield more than ``limit`` bytes."""

    def __init__(self, stream: BinaryIO, limit: int = DEFAULT_MAX_XML_SIZE):
        self._stream = stream
        self.limit = limit
        self.consumed = 0
        self.exceeded = False

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = self.limit - self.consumed + 1
        chunk = self._stream.read(min(size, self.limit - self.consumed + 1))
        self.consumed += len(chunk)
        if self.consumed > self.limit:
            self.exceeded = True
            raise XMLSizeLimitError(self.limit)
        return chunk


def neutralize_entities(subset: bytes) -> bytes:
    """Rewrite every entity declaration in a DTD subset to an empty value."""
    return _ENTITY_DECL.sub(lambda m: b'<!ENTITY ' + m.group("name") + b' "">', subset)


class EntityNeutralizer(io.RawIOBase):
    """Pass a document through with its internal-subset entities emptied.

    Only the prolog is buffered; the rest of the stream is read through.
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._pending = b""
        self._prolog_done = False

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if not self._prolog_done:
            self._pending = self._read_prolog()
            self._prolog_done = True
        if not self._pending:
            return self._stream.read(size)
        if size is None or size < 0:
            chunk, self._pending = self._pending + self._stream.read(), b""
            return chunk
        chunk, self._pending = self._pending[:size], self._pending[size:]
        return chunk

    def _read_prolog(self) -> bytes:
        buffer = b""
        while True:
            chunk = self._stream.read(max(_PROLOG_CHUNK, len(buffer)))
            buffer += chunk
            start = buffer.find(b"<!DOCTYPE")
            element = _ELEMENT_START.search(buffer)
            if element is not None and (start < 0 or element.start() < start):
                return buffer
            if start >= 0:
                match = _DOCTYPE.match(buffer, start)
                if match is not None:
                    if match.group("subset") is None:
                        return buffer
                    begin, end = match.span("subset")
                    subset = neutralize_entities(match.group("subset"))
                    return buffer[:begin] + subset + buffer[end:]
            if not chunk:
                return buffer
            if len(buffer) > MAX_PROLOG_SIZE:
                raise XMLSecurityError(
                    f"DOCTYPE not closed within the first {MAX_PROLOG_SIZE} bytes"
                )


def _open_source(source, max_size: int) -> tuple[LimitedReader, BinaryIO | None]:
    if isinstance(source, (bytes, bytearray)):
        if len(source) > max_size:
            raise XMLSizeLimitError(max_size)
        return LimitedReader(io.BytesIO(bytes(source)), max_size), None
    if isinstance(source, (str, os.PathLike)):
        path = Path(source)
        if path.stat().st_size > max_size:
            raise XMLSizeLimitError(max_size)
        handle = open(path, "rb")
        return LimitedReader(handle, max_size), handle
    return LimitedReader(source, max_size), None


def _describe(source) -> str:
    if isinstance(source, (str, os.PathLike)):
        return str(source)
    return "<stream>"


def parse_secure(source, max_size: int = DEFAULT_MAX_XML_SIZE) -> etree._Element:
    """Parse a whole document and return its root element.

    ``source`` may be a path, raw bytes or a binary file object.
    """
    reader, handle = _open_source(source, max_size)
    try:
        tree = etree.parse(EntityNeutralizer(reader), secure_parser())
    except XMLSizeLimitError:
        raise
    except etree.XMLSyntaxError as exc:
        if reader.exceeded:
            raise XMLSizeLimitError(max_size) from exc
        raise XMLSecurityError(f"malformed XML in {_describe(source)}: {exc}") from exc
    finally:
        if handle is not None:
            handle.close()
    return tree.getroot()


def iterparse_secure(
    source,
    tag: str | tuple[str, ...] | None = None,
    max_size: int = DEFAULT_MAX_XML_SIZE,
    events: tuple[str, ...] = ("end",),
) -> Iterator[tuple[str, etree._Element]]:
    """Stream ``(event, element)`` pairs with the hardened settings.

    Callers should ``clear()`` elements they are done with to keep memory
    flat on large backups.
    """
    reader, handle = _open_source(source, max_size)
    try:
        context = etree.iterparse(
            EntityNeutralizer(reader), events=events, tag=tag, **_PARSER_SETTINGS,
        )
        for event, element in context:
            yield event, element
    except XMLSizeLimitError:
        raise
    except etree.XMLSyntaxError as exc:
        if reader.exceeded:
            raise XMLSizeLimitError(max_size) from exc
        raise XMLSecurityError(f"malformed XML in {_describe(source)}: {exc}") from exc
    finally:
        if handle is not None:
            handle.close()


def root_attribute(source, name: str, max_size: int = DEFAULT_MAX_XML_SIZE) -> str | None:
    """Return an attribute of the document root without reading the body."""
    for _event, element in iterparse_secure(source, max_size=max_size, events=("start",)):
        return element.get(name)
    return None

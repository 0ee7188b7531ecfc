"""Contact book (``contacts.yaml``) and names collected from backups."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from phonearchive.core.errors import RepositoryError, atomic_write
from phonearchive.repository import layout

logger = logging.getLogger(__name__)

_UNKNOWN_NAMES = frozenset({"", "(Unknown)", "null"})


def normalize_number(number: str) -> str:
    """Digits only, with a leading US country code dropped."""
    digits = re.sub(r"\D", "", number)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def is_unknown(name: str) -> bool:
    return name in _UNKNOWN_NAMES


@dataclass
class Contact:
    name: str
    numbers: list[str] = field(default_factory=list)


class ContactsBook:
    """Known contacts plus unconfirmed ``number -> names`` seen during import."""

    def __init__(self, contacts: list[Contact] | None = None):
        self.contacts: list[Contact] = list(contacts or [])
        self._by_number: dict[str, str] = {}
        self._unprocessed: dict[str, list[str]] = {}
        for contact in self.contacts:
            for number in contact.numbers:
                normalized = normalize_number(number)
                existing = self._by_number.get(normalized)
                if existing is not None and existing != contact.name:
                    raise RepositoryError(
                        f"number {number} belongs to both {existing!r} and {contact.name!r}"
                    )
                self._by_number[normalized] = contact.name

    @classmethod
    def load(cls, repo_root: Path) -> ContactsBook:
        path = Path(repo_root) / layout.CONTACTS_FILE
        if not path.exists():
            return cls()
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except (yaml.YAMLError, OSError, UnicodeDecodeError) as exc:
            raise RepositoryError(f"cannot read {layout.CONTACTS_FILE}: {exc}") from exc
        if not isinstance(data, dict):
            raise RepositoryError(f"{layout.CONTACTS_FILE} is not a mapping")
        contacts = [
            Contact(name=str(c.get("name", "")), numbers=[str(n) for n in c.get("numbers") or []])
            for c in data.get("contacts") or []
        ]
        book = cls(contacts)
        for entry in data.get("unprocessed") or []:
            if isinstance(entry, dict):
                for name in entry.get("contact_names") or []:
                    book.add_unprocessed(str(entry.get("phone_number", "")), str(name))
        return book

    def lookup(self, number: str) -> str | None:
        return self._by_number.get(normalize_number(number))

    def is_known(self, number: str) -> bool:
        return normalize_number(number) in self._by_number

    def add_unprocessed(self, number: str, name: str) -> None:
        """Remember a name seen next to ``number`` in a backup.

        A real name replaces ``(Unknown)`` placeholders for the same number;
        a placeholder is ignored once a real name is known.
        """
        normalized = normalize_number(number)
        if not normalized or self.is_known(number):
            return
        names = self._unprocessed.setdefault(normalized, [])
        if name in names:
            return
        if is_unknown(name):
            if any(not is_unknown(n) for n in names):
                return
        else:
            names[:] = [n for n in names if not is_unknown(n)]
        names.append(name)

    def add_from_record(self, addresses: str, contact_names: str) -> None:
        """Handle ``~``-separated addresses paired with ``,``-separated names."""
        address_list = addresses.split("~")
        name_list = contact_names.split(",")
        if len(address_list) != len(name_list):
            logger.debug(
                "skipping contact pairing: %d addresses vs %d names",
                len(address_list), len(name_list),
            )
            return
        for address, name in zip(address_list, name_list):
            if address and name:
                self.add_unprocessed(address, name.strip())

    def unprocessed(self) -> dict[str, list[str]]:
        return {k: sorted(v) for k, v in sorted(self._unprocessed.items()) if v}

    def to_dict(self) -> dict:
        data: dict = {
            "contacts": [{"name": c.name, "numbers": list(c.numbers)} for c in self.contacts],
        }
        unprocessed = self.unprocessed()
        if unprocessed:
            data["unprocessed"] = [
                {"phone_number": number, "contact_names": names}
                for number, names in unprocessed.items()
            ]
        return data

    def save(self, repo_root: Path) -> None:
        atomic_write(
            Path(repo_root) / layout.CONTACTS_FILE,
            yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False),
        )


@dataclass
class ReprocessResult:
    files_processed: dict[str, int] = field(default_factory=lambda: {"calls": 0, "sms": 0})
    records_processed: dict[str, int] = field(default_factory=lambda: {"calls": 0, "sms": 0})
    failed_files: list[str] = field(default_factory=list)
    found: dict[str, list[str]] = field(default_factory=dict)
    added: dict[str, list[str]] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def added_count(self) -> int:
        return sum(len(names) for names in self.added.values())

    def to_dict(self) -> dict:
        return {
            "files_processed": dict(self.files_processed),
            "records_processed": dict(self.records_processed),
            "failed_files": list(self.failed_files),
            "contacts_found": sum(len(names) for names in self.found.values()),
            "contacts_added": self.added_count,
            "added": {number: list(names) for number, names in self.added.items()},
            "dry_run": self.dry_run,
        }


def reprocess_contacts(
    repo_root: Path, dry_run: bool = False, max_size: int | None = None,
) -> ReprocessResult:
    """Re-collect contact names from every stored partition.

    Names not yet in ``contacts.yaml`` are added to its unprocessed section;
    confirmed contacts are never touched. Unless ``dry_run`` is set the
    manifest is regenerated afterwards, even when nothing was added.
    """
    from phonearchive.core.config import DEFAULT_MAX_XML_SIZE
    from phonearchive.core.errors import XMLSecurityError
    from phonearchive.records.partitions import PartitionReader
    from phonearchive.repository.manifest import generate_manifest

    repo_root = Path(repo_root)
    if not (repo_root / layout.MARKER_FILE).is_file():
        raise RepositoryError(f"not a repository (missing {layout.MARKER_FILE}): {repo_root}")

    book = ContactsBook.load(repo_root)
    before = book.unprocessed()
    found = ContactsBook()
    result = ReprocessResult(dry_run=dry_run)
    for kind in ("calls", "sms"):
        reader = PartitionReader(repo_root, kind, max_size or DEFAULT_MAX_XML_SIZE)
        for year in reader.available_years():
            seen = 0
            try:
                for record in reader.iter_year(year):
                    seen += 1
                    number = getattr(record, "number", None) or getattr(record, "address", "")
                    if number and record.contact_name:
                        found.add_from_record(number, record.contact_name)
            except XMLSecurityError as exc:
                logger.warning("skipping %s: %s", reader.path_for(year).name, exc)
                result.failed_files.append(layout.partition_path(kind, year))
                continue
            result.files_processed[kind] += 1
            result.records_processed[kind] += seen

    result.found = found.unprocessed()
    for number, names in result.found.items():
        for name in names:
            book.add_unprocessed(number, name)
    for number, names in book.unprocessed().items():
        new = [n for n in names if n not in before.get(number, [])]
        if new:
            result.added[number] = new

    if dry_run:
        return result
    if result.added:
        book.save(repo_root)
    generate_manifest(repo_root)
    logger.info("reprocessed contacts: %d new name(s)", result.added_count)
    return result

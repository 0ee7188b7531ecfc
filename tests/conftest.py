"""Shared test fixtures for phonearchive."""

from __future__ import annotations

import base64
from pathlib import Path

import pytest
from lxml import etree

from phonearchive.core.config import ImportOptions
from phonearchive.importer import Importer
from phonearchive.repository.creator import initialize_repository
from phonearchive.repository.manifest import load_manifest, write_manifest

# 2024-03-15T14:30:00Z and 2023-06-01T00:00:00Z in epoch milliseconds.
MAR_15_2024 = 1710513000000
JUN_1_2023 = 1685577600000


class BackupFactory:
    """Builds backup XML files in the layout phone backup apps produce."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def call(number="+15551234567", date=MAR_15_2024, duration=60, type=1,
             contact_name="Alice", **extra):
        attrs = {
            "number": number,
            "duration": str(duration),
            "date": str(date),
            "type": str(type),
            "contact_name": contact_name,
        }
        attrs.update({k: str(v) for k, v in extra.items()})
        return etree.Element("call", attrs)

    @staticmethod
    def sms(address="+15551234567", date=MAR_15_2024, type=1, body="hello",
            contact_name="Alice", **extra):
        attrs = {
            "protocol": "0",
            "address": address,
            "date": str(date),
            "type": str(type),
            "subject": "null",
            "body": body,
            "service_center": "null",
            "read": "1",
            "status": "-1",
            "locked": "0",
            "date_sent": "0",
            "contact_name": contact_name,
        }
        attrs.update({k: str(v) for k, v in extra.items()})
        return etree.Element("sms", attrs)

    @staticmethod
    def mms(address="+15551234567", date=MAR_15_2024, msg_box=1, payload=None,
            content_type="image/jpeg", name="photo.jpg", text="look at this",
            contact_name="Alice"):
        el = etree.Element("mms", {
            "date": str(date),
            "msg_box": str(msg_box),
            "address": address,
            "m_type": "132",
            "m_id": f"mid-{date}",
            "contact_name": contact_name,
        })
        parts = etree.SubElement(el, "parts")
        etree.SubElement(parts, "part", {
            "seq": "0", "ct": "text/plain", "name": "null", "text": text,
        })
        if payload is not None:
            etree.SubElement(parts, "part", {
                "seq": "1",
                "ct": content_type,
                "name": name,
                "cl": name,
                "text": "null",
                "data": base64.b64encode(payload).decode("ascii"),
            })
        addrs = etree.SubElement(el, "addrs")
        etree.SubElement(addrs, "addr", {"address": address, "type": "137", "charset": "106"})
        return el

    def write_calls(self, name: str, *records) -> Path:
        return self._write(name, "calls", records)

    def write_sms(self, name: str, *records) -> Path:
        return self._write(name, "smses", records)

    def write_raw(self, name: str, content: str | bytes) -> Path:
        path = self.directory / name
        if isinstance(content, str):
            content = content.encode("utf-8")
        path.write_bytes(content)
        return path

    def _write(self, name: str, root_tag: str, records) -> Path:
        root = etree.Element(root_tag, {"count": str(len(records))})
        for record in records:
            root.append(record)
        path = self.directory / name
        path.write_bytes(etree.tostring(
            root, encoding="UTF-8", xml_declaration=True, standalone=True, pretty_print=True,
        ))
        return path


@pytest.fixture
def repo(tmp_path):
    """Freshly initialized, valid repository."""
    root = tmp_path / "repo"
    initialize_repository(root)
    return root


@pytest.fixture
def backups(tmp_path):
    return BackupFactory(tmp_path / "backups")


@pytest.fixture
def jpeg_payload():
    """Binary payload large enough to be extracted from an MMS."""
    return b"\xff\xd8\xff\xe0" + bytes(range(256)) * 8


@pytest.fixture
def run_import():
    """Run an import and return its summary."""

    def _run(repo_root, *paths, **options):
        data = {"repo_root": repo_root, "paths": list(paths)}
        data.update(options)
        return Importer(ImportOptions.from_dict(data)).run()

    return _run


@pytest.fixture
def populated_repo(repo, backups, run_import, jpeg_payload):
    """Repository holding calls and messages in 2023 and 2024 plus one attachment."""
    calls = backups.write_calls(
        "calls-1.xml",
        backups.call(date=JUN_1_2023, duration=10),
        backups.call(date=MAR_15_2024, number="+15559876543", contact_name="Bob"),
    )
    sms = backups.write_sms(
        "sms-1.xml",
        backups.sms(date=JUN_1_2023, body="first"),
        backups.sms(date=MAR_15_2024, body="second", type=2),
        backups.mms(date=MAR_15_2024 + 1000, payload=jpeg_payload),
    )
    run_import(repo, calls, sms)
    return repo


@pytest.fixture
def rewrite_manifest():
    """Apply ``mutate(manifest)`` and rewrite files.yaml with a matching checksum."""

    def _rewrite(repo_root, mutate):
        manifest = load_manifest(repo_root)
        mutate(manifest)
        write_manifest(repo_root, manifest)
        return manifest

    return _rewrite

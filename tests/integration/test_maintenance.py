"""Integration tests for orphaned-attachment removal and contact reprocessing."""

from __future__ import annotations

import hashlib

import pytest
import yaml

from phonearchive.attachments.orphans import find_orphans, remove_orphan_attachments
from phonearchive.attachments.store import AttachmentInfo, AttachmentStore
from phonearchive.core.errors import RepositoryError, XMLSecurityError
from phonearchive.repository.contacts import ContactsBook, reprocess_contacts
from phonearchive.repository.manifest import generate_manifest
from phonearchive.repository.summary import calculate_stats, load_summary, write_summary
from phonearchive.validation import RepositoryValidator, ValidationOptions

SEQUENTIAL = ValidationOptions(parallel=False)


def store_orphan(repo, data=b"orphan" * 100):
    digest = hashlib.sha256(data).hexdigest()
    AttachmentStore(repo).store(digest, data, AttachmentInfo(
        hash=digest, original_name="o.bin", mime_type="application/octet-stream",
        size=len(data),
    ))
    write_summary(repo, calculate_stats(repo))
    generate_manifest(repo)
    return digest


class TestOrphanRemoval:
    def test_dry_run_reports_without_deleting(self, populated_repo):
        digest = store_orphan(populated_repo)
        result = remove_orphan_attachments(populated_repo, dry_run=True)
        assert result.dry_run
        assert result.attachments_scanned == 2
        assert result.orphans_found == 1
        assert result.orphans_removed == 1
        assert result.bytes_freed == 600
        assert AttachmentStore(populated_repo).exists(digest)

    def test_removes_only_unreferenced(self, populated_repo):
        digest = store_orphan(populated_repo)
        [referenced] = [
            a for a in AttachmentStore(populated_repo).iter_attachments() if a.hash != digest
        ]

        result = remove_orphan_attachments(populated_repo)

        assert result.orphans_removed == 1
        assert result.removal_failures == 0
        store = AttachmentStore(populated_repo)
        assert not store.exists(digest)
        assert not (populated_repo / store.dir_for(digest)).exists()
        assert store.exists(referenced.hash)
        assert load_summary(populated_repo).total_attachments == 1

        report = RepositoryValidator(populated_repo).validate(SEQUENTIAL)
        assert report.passed, [v.to_dict() for v in report.violations]
        assert not report.violations

    def test_nothing_to_remove(self, populated_repo):
        manifest_before = (populated_repo / "files.yaml").read_bytes()
        result = remove_orphan_attachments(populated_repo)
        assert result.orphans_found == 0
        assert (populated_repo / "files.yaml").read_bytes() == manifest_before

    def test_unreadable_partition_deletes_nothing(self, populated_repo):
        digest = store_orphan(populated_repo)
        (populated_repo / "sms" / "sms-2024.xml").write_text("<smses count='1'><mms")
        with pytest.raises(XMLSecurityError):
            remove_orphan_attachments(populated_repo)
        assert AttachmentStore(populated_repo).exists(digest)

    def test_find_orphans(self, populated_repo):
        digest = store_orphan(populated_repo)
        orphans, total = find_orphans(populated_repo)
        assert [o.hash for o in orphans] == [digest]
        assert total == 2


class TestReprocessContacts:
    @pytest.fixture
    def emptied(self, populated_repo):
        (populated_repo / "contacts.yaml").write_text("contacts: []\n")
        generate_manifest(populated_repo)
        return populated_repo

    def test_names_collected_from_partitions(self, emptied):
        result = reprocess_contacts(emptied)
        assert result.records_processed == {"calls": 2, "sms": 3}
        assert result.files_processed == {"calls": 2, "sms": 2}
        assert result.added == {"5551234567": ["Alice"], "5559876543": ["Bob"]}

        book = ContactsBook.load(emptied)
        assert book.unprocessed() == result.added
        report = RepositoryValidator(emptied).validate(SEQUENTIAL)
        assert report.passed, [v.to_dict() for v in report.violations]

    def test_confirmed_contacts_untouched(self, emptied):
        (emptied / "contacts.yaml").write_text(yaml.safe_dump({
            "contacts": [{"name": "Alice Smith", "numbers": ["5551234567"]}],
        }))
        generate_manifest(emptied)
        result = reprocess_contacts(emptied)
        assert result.added == {"5559876543": ["Bob"]}
        data = yaml.safe_load((emptied / "contacts.yaml").read_text())
        assert data["contacts"] == [{"name": "Alice Smith", "numbers": ["5551234567"]}]

    def test_second_run_adds_nothing(self, emptied):
        reprocess_contacts(emptied)
        result = reprocess_contacts(emptied)
        assert result.added == {}
        assert result.added_count == 0

    def test_dry_run_writes_nothing(self, emptied):
        before = (emptied / "contacts.yaml").read_bytes()
        manifest_before = (emptied / "files.yaml").read_bytes()
        result = reprocess_contacts(emptied, dry_run=True)
        assert result.added_count == 2
        assert (emptied / "contacts.yaml").read_bytes() == before
        assert (emptied / "files.yaml").read_bytes() == manifest_before

    def test_not_a_repository(self, tmp_path):
        with pytest.raises(RepositoryError):
            reprocess_contacts(tmp_path)

"""Integration tests for importing backups into a repository."""

from __future__ import annotations

import json
import threading

import pytest
import yaml

from phonearchive.attachments.store import AttachmentStore
from phonearchive.core.config import ImportOptions
from phonearchive.core.errors import ImportFailedError, OperationCancelledError
from phonearchive.importer import Importer
from phonearchive.records.calls import read_calls
from phonearchive.records.partitions import PartitionReader
from phonearchive.records.sms import MMS, read_messages
from phonearchive.repository.creator import initialize_repository
from phonearchive.repository.manifest import generate_manifest
from phonearchive.repository.summary import load_summary
from phonearchive.validation import RepositoryValidator, ValidationOptions

MAR_15_2024 = 1710513000000
JUN_1_2023 = 1685577600000


def assert_valid(repo):
    report = RepositoryValidator(repo).validate(ValidationOptions(parallel=False))
    assert report.passed, [v.to_dict() for v in report.violations]


def assert_year_invariant(entity):
    for stat in entity.years.values():
        assert stat.initial + stat.added == stat.final
    assert entity.total.initial + entity.total.added == entity.total.final


class TestCoalescing:
    def test_duplicates_within_one_file(self, repo, backups, run_import):
        path = backups.write_calls(
            "calls-a.xml",
            backups.call(date=MAR_15_2024),
            backups.call(date=MAR_15_2024),
            backups.call(date=MAR_15_2024 + 60_000, number="+15550001111"),
        )
        summary = run_import(repo, path)
        total = summary.calls.total
        assert (total.initial, total.added, total.duplicates, total.final) == (0, 2, 1, 2)
        assert_year_invariant(summary.calls)
        assert_valid(repo)

    def test_reimport_adds_nothing(self, repo, backups, run_import):
        path = backups.write_calls(
            "calls-a.xml",
            backups.call(date=MAR_15_2024),
            backups.call(date=MAR_15_2024),
            backups.call(date=MAR_15_2024 + 60_000, number="+15550001111"),
        )
        run_import(repo, path)
        before = (repo / "calls" / "calls-2024.xml").read_bytes()

        summary = run_import(repo, path)
        total = summary.calls.total
        assert (total.initial, total.added, total.duplicates, total.final) == (2, 0, 3, 2)
        assert_year_invariant(summary.calls)
        assert (repo / "calls" / "calls-2024.xml").read_bytes() == before
        assert_valid(repo)

    def test_overlapping_backups_merge(self, repo, backups, run_import):
        first = backups.write_sms(
            "sms-jan.xml",
            backups.sms(date=JUN_1_2023, body="a"),
            backups.sms(date=MAR_15_2024, body="b"),
        )
        second = backups.write_sms(
            "sms-feb.xml",
            backups.sms(date=MAR_15_2024, body="b"),
            backups.sms(date=MAR_15_2024 + 5, body="c"),
        )
        run_import(repo, first)
        summary = run_import(repo, second)
        assert summary.sms.total.added == 1
        assert summary.sms.total.duplicates == 1
        assert summary.sms.years[2024].final == 2
        assert summary.sms.years[2023].initial == 1
        assert_year_invariant(summary.sms)

        bodies = [m.body for m in PartitionReader(repo, "sms").iter_all()]
        assert bodies == ["a", "b", "c"]

    def test_partitions_by_utc_year(self, repo, backups, run_import):
        path = backups.write_calls(
            "calls-a.xml",
            backups.call(date=1704067199000, number="1"),  # 2023-12-31T23:59:59Z
            backups.call(date=1704067200000, number="2"),  # 2024-01-01T00:00:00Z
        )
        run_import(repo, path)
        reader = PartitionReader(repo, "calls")
        assert reader.available_years() == [2023, 2024]
        assert [c.number for c in reader.iter_year(2023)] == ["1"]
        assert reader.count(2024) == 1

    def test_partition_order_is_chronological(self, repo, backups, run_import):
        path = backups.write_calls(
            "calls-a.xml",
            backups.call(date=MAR_15_2024 + 3000, number="3"),
            backups.call(date=MAR_15_2024 + 1000, number="1"),
            backups.call(date=MAR_15_2024 + 2000, number="2"),
        )
        run_import(repo, path)
        numbers = [c.number for c in read_calls(repo / "calls" / "calls-2024.xml")]
        assert numbers == ["1", "2", "3"]


class TestRejections:
    def test_invalid_records_are_rejected(self, repo, backups, run_import):
        path = backups.write_calls(
            "calls-bad.xml",
            backups.call(number=""),
            backups.call(type=9, number="+15550002222"),
            backups.call(number="+15550003333"),
        )
        summary = run_import(repo, path)
        assert summary.calls.total.rejected == 2
        assert summary.calls.total.added == 1
        assert summary.total_rejected == 2
        [rejects] = summary.rejection_files
        assert rejects.startswith("rejected/calls/calls-bad-")
        assert rejects.endswith("-rejects.xml")

        rejected_calls = list(read_calls(repo / rejects))
        assert len(rejected_calls) == 2
        reasons = yaml.safe_load(
            (repo / rejects.replace("-rejects.xml", "-violations.yaml")).read_text()
        )
        assert reasons["source"] == "calls-bad.xml"
        assert reasons["rejections"] == [
            {"position": 1, "violations": ["missing-number"]},
            {"position": 2, "violations": ["invalid-type"]},
        ]
        assert_valid(repo)

    def test_oversized_message_is_rejected(self, repo, backups, run_import):
        path = backups.write_sms("sms-big.xml", backups.sms(body="x" * 500))
        summary = run_import(repo, path, max_message_size=100)
        assert summary.sms.total.rejected == 1
        assert summary.sms.total.final == 0

    def test_malformed_file_counts_as_error(self, repo, backups, run_import):
        bad = backups.write_raw("calls-broken.xml", "<calls><call number='1'")
        good = backups.write_calls("calls-good.xml", backups.call())
        summary = run_import(repo, bad, good)
        assert summary.calls.total.errors == 1
        assert summary.calls.total.added == 1
        assert_valid(repo)

    def test_entity_payload_is_not_imported(self, repo, backups, run_import):
        path = backups.write_raw("sms-evil.xml", (
            '<?xml version="1.0"?>\n'
            '<!DOCTYPE smses [<!ENTITY xxe SYSTEM "file:///etc/passwd">]>\n'
            '<smses count="1"><sms address="1" date="1710513000000" type="1" body="hi">'
            '&xxe;</sms></smses>'
        ))
        summary = run_import(repo, path)
        assert summary.sms.total.errors == 0
        assert summary.sms.total.final == 1
        partition = (repo / "sms" / "sms-2024.xml").read_bytes()
        assert b"root:" not in partition
        assert b"xxe" not in partition


    def test_unparseable_timestamps_are_rejected(self, repo, backups, run_import):
        path = backups.write_calls(
            "calls-dates.xml",
            backups.call(date="garbage"),
            backups.call(date=10**17, number="+15550002222"),
            backups.call(duration="forever", number="+15550003333"),
            backups.call(number="+15550004444"),
        )
        summary = run_import(repo, path)
        assert summary.calls.total.rejected == 3
        assert summary.calls.total.added == 1
        assert summary.calls.total.errors == 0
        [rejects] = summary.rejection_files
        reasons = yaml.safe_load(
            (repo / rejects.replace("-rejects.xml", "-violations.yaml")).read_text()
        )
        assert reasons["rejections"] == [
            {"position": 1, "violations": ["invalid-timestamp"]},
            {"position": 2, "violations": ["invalid-timestamp"]},
            {"position": 3, "violations": ["invalid-duration"]},
        ]
        kept = (repo / rejects).read_text()
        assert 'date="garbage"' in kept
        assert 'duration="forever"' in kept
        assert_valid(repo)

    def test_unparseable_message_fields_are_rejected(self, repo, backups, run_import):
        path = backups.write_sms(
            "sms-dates.xml",
            backups.sms(date="yesterday"),
            backups.sms(date=-5, body="negative"),
            backups.sms(body="fine"),
        )
        summary = run_import(repo, path)
        assert summary.sms.total.rejected == 2
        assert summary.sms.total.final == 1
        assert_valid(repo)

    def test_entity_in_attribute_is_not_expanded(self, repo, backups, run_import):
        path = backups.write_raw("sms-entity.xml", (
            '<?xml version="1.0"?>\n'
            '<!DOCTYPE smses [<!ENTITY a "PAYLOAD">]>\n'
            '<smses count="1"><sms address="1" date="1710513000000" type="1" body="x&a;y" />'
            '</smses>'
        ))
        summary = run_import(repo, path)
        assert summary.sms.total.final == 1
        [sms] = list(read_messages(repo / "sms" / "sms-2024.xml"))
        assert sms.body == "xy"
        assert b"PAYLOAD" not in (repo / "sms" / "sms-2024.xml").read_bytes()

    def test_malformed_partition_blocks_import(self, repo, backups, run_import):
        first = backups.write_calls("calls-a.xml", backups.call())
        run_import(repo, first)
        partition = repo / "calls" / "calls-2024.xml"
        partition.write_text(partition.read_text().replace(
            f'date="{MAR_15_2024}"', 'date="garbage"', 1,
        ))
        generate_manifest(repo)
        second = backups.write_calls("calls-b.xml", backups.call(number="+15550009999"))
        with pytest.raises(ImportFailedError):
            run_import(repo, second)
        assert 'date="garbage"' in partition.read_text()


class TestAttachments:
    def test_mms_payload_extracted_once(self, repo, backups, run_import, jpeg_payload):
        a = backups.write_sms("sms-a.xml", backups.mms(date=MAR_15_2024, payload=jpeg_payload))
        b = backups.write_sms(
            "sms-b.xml",
            backups.mms(date=MAR_15_2024, payload=jpeg_payload),
            backups.mms(date=MAR_15_2024 + 10, payload=jpeg_payload, text="again"),
        )
        summary = run_import(repo, a, b)
        assert summary.attachments.extracted == 1
        assert summary.attachments.referenced == 2
        assert summary.sms.total.added == 2
        assert summary.sms.total.duplicates == 1

        stored = list(AttachmentStore(repo).iter_attachments())
        assert len(stored) == 1
        assert stored[0].path.endswith("/photo.jpg")

        messages = list(read_messages(repo / "sms" / "sms-2024.xml"))
        image_parts = [p for m in messages if isinstance(m, MMS) for p in m.parts if p.path]
        assert len(image_parts) == 2
        assert all(p.data == "" and p.path == stored[0].path for p in image_parts)
        assert load_summary(repo).total_attachments == 1
        assert_valid(repo)

    def test_reimport_of_extracted_mms_is_duplicate(self, repo, backups, run_import, jpeg_payload):
        path = backups.write_sms("sms-a.xml", backups.mms(payload=jpeg_payload))
        run_import(repo, path)
        summary = run_import(repo, path)
        assert summary.sms.total.duplicates == 1
        assert summary.sms.total.added == 0


class TestRunModes:
    def test_dry_run_writes_nothing(self, repo, backups, run_import, jpeg_payload):
        path = backups.write_sms("sms-a.xml", backups.sms(), backups.mms(payload=jpeg_payload))
        manifest_before = (repo / "files.yaml").read_bytes()

        summary = run_import(repo, path, dry_run=True)

        assert summary.dry_run is True
        assert summary.sms.total.added == 2
        assert (repo / "files.yaml").read_bytes() == manifest_before
        assert list((repo / "sms").iterdir()) == []
        assert list((repo / "attachments").iterdir()) == []

    def test_filter_skips_other_kind(self, repo, backups, run_import):
        calls = backups.write_calls("calls-a.xml", backups.call())
        sms = backups.write_sms("sms-a.xml", backups.sms())
        summary = run_import(repo, calls, sms, filter="calls")
        assert summary.calls.total.added == 1
        assert summary.sms.total.added == 0
        assert summary.files_processed == [str(calls)]

    def test_directory_scan(self, repo, backups, run_import):
        backups.write_calls("calls-a.xml", backups.call())
        backups.write_sms("sms-a.xml", backups.sms())
        backups.write_raw("notes.xml", "<notes/>")
        hidden = backups.directory / ".cache"
        hidden.mkdir()
        (hidden / "calls-hidden.xml").write_text('<calls count="0"/>')

        summary = run_import(repo, backups.directory)
        assert sorted(p.rsplit("/", 1)[-1] for p in summary.files_processed) == [
            "calls-a.xml", "sms-a.xml",
        ]

    def test_scan_skips_repository_inside_input(self, backups, run_import):
        repo = backups.directory / "archive"
        initialize_repository(repo)
        backups.write_calls("calls-a.xml", backups.call())
        run_import(repo, backups.directory)

        summary = run_import(repo, backups.directory)
        assert [p.rsplit("/", 1)[-1] for p in summary.files_processed] == ["calls-a.xml"]

    def test_explicit_file_is_sniffed(self, repo, backups, run_import):
        path = backups.write_sms("export.xml", backups.sms())
        summary = run_import(repo, path)
        assert summary.sms.total.added == 1

    def test_unrecognized_explicit_file(self, repo, backups, run_import):
        path = backups.write_raw("export.xml", "<notes/>")
        with pytest.raises(ImportFailedError):
            run_import(repo, path)

    def test_invalid_repository_is_refused(self, repo, backups, run_import):
        (repo / "stray.txt").write_text("unlisted")
        path = backups.write_calls("calls-a.xml", backups.call())
        with pytest.raises(ImportFailedError):
            run_import(repo, path)

    def test_log_dir_inside_repository_is_refused(self, repo, backups):
        options = ImportOptions.from_dict({
            "repo_root": repo,
            "paths": [backups.write_calls("calls-a.xml", backups.call())],
            "log_dir": repo / "logs",
        })
        with pytest.raises(ImportFailedError):
            Importer(options)

    def test_run_log_written(self, repo, backups, run_import, tmp_path):
        path = backups.write_calls("calls-a.xml", backups.call())
        run_import(repo, path, log_dir=tmp_path / "logs")
        [log_file] = list((tmp_path / "logs").glob("import-*.jsonl"))
        events = [json.loads(line)["event"] for line in log_file.read_text().splitlines()]
        assert events[0] == "run_start"
        assert events[-1] == "run_finish"
        assert "record" in events

    def test_cancelled_import_leaves_repository_untouched(self, repo, backups):
        path = backups.write_calls("calls-a.xml", backups.call())
        manifest_before = (repo / "files.yaml").read_bytes()
        cancel = threading.Event()
        cancel.set()
        importer = Importer(ImportOptions.from_dict({"repo_root": repo, "paths": [path]}))
        with pytest.raises(OperationCancelledError):
            importer.run(cancel=cancel)
        assert (repo / "files.yaml").read_bytes() == manifest_before

    def test_contact_names_collected(self, repo, backups, run_import):
        path = backups.write_calls(
            "calls-a.xml", backups.call(number="+15551234567", contact_name="Alice"),
        )
        run_import(repo, path)
        data = yaml.safe_load((repo / "contacts.yaml").read_text())
        assert data["unprocessed"] == [{"phone_number": "5551234567", "contact_names": ["Alice"]}]

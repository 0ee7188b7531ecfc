"""Unit tests for phonearchive CLI commands."""

from __future__ import annotations

import hashlib
import json

import pytest
import yaml
from click.testing import CliRunner

from phonearchive.attachments.store import AttachmentInfo, AttachmentStore
from phonearchive.cli import main
from phonearchive.repository.manifest import generate_manifest
from phonearchive.repository.summary import calculate_stats, write_summary
from phonearchive.validation import RepositoryValidator

MAR_15_2024 = 1710513000000


def store_orphan(repo):
    data = b"unreferenced" * 50
    digest = hashlib.sha256(data).hexdigest()
    AttachmentStore(repo).store(digest, data, AttachmentInfo(
        hash=digest, original_name="o.bin", mime_type="application/octet-stream",
        size=len(data),
    ))
    write_summary(repo, calculate_stats(repo))
    generate_manifest(repo)
    return digest


@pytest.fixture
def runner():
    return CliRunner()


class TestHelp:
    @pytest.mark.parametrize(
        "command", ["init", "import", "validate", "info", "reprocess-contacts"],
    )
    def test_command_exists(self, runner, command):
        result = runner.invoke(main, [command, "--help"])
        assert result.exit_code == 0
        assert "Usage" in result.output

    def test_group_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("init", "import", "validate", "info", "reprocess-contacts"):
            assert command in result.output


class TestInit:
    def test_creates_valid_repository(self, runner, tmp_path):
        target = tmp_path / "archive"
        result = runner.invoke(main, ["init", str(target)])
        assert result.exit_code == 0, result.output
        assert "Created repository" in result.output
        assert (target / ".phonearchive.yaml").is_file()
        assert RepositoryValidator(target).validate().passed

    def test_dry_run_creates_nothing(self, runner, tmp_path):
        target = tmp_path / "archive"
        result = runner.invoke(main, ["init", str(target), "--dry-run"])
        assert result.exit_code == 0
        assert "Would create" in result.output
        assert not target.exists()

    def test_non_empty_directory_refused(self, runner, tmp_path):
        (tmp_path / "keep.txt").write_text("x")
        result = runner.invoke(main, ["init", str(tmp_path)])
        assert result.exit_code == 2
        assert "not empty" in result.output


class TestImport:
    def test_import_table(self, runner, repo, backups):
        path = backups.write_calls("calls-a.xml", backups.call(), backups.call())
        result = runner.invoke(main, ["import", "--repo-root", str(repo), str(path)])
        assert result.exit_code == 0, result.output
        assert "Calls" in result.output
        assert "2024" in result.output

    def test_import_json(self, runner, repo, backups):
        path = backups.write_sms("sms-a.xml", backups.sms())
        result = runner.invoke(main, ["import", "-r", str(repo), "--json", str(path)])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["sms"]["total"]["added"] == 1
        assert data["sms"]["years"]["2024"]["final"] == 1
        assert data["dry_run"] is False

    def test_rejections_exit_one(self, runner, repo, backups):
        path = backups.write_calls("calls-a.xml", backups.call(number=""), backups.call())
        result = runner.invoke(main, ["import", "-r", str(repo), "--json", str(path)])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["calls"]["total"]["rejected"] == 1
        assert len(data["rejection_files"]) == 1

    def test_dry_run(self, runner, repo, backups):
        path = backups.write_calls("calls-a.xml", backups.call())
        result = runner.invoke(main, ["import", "-r", str(repo), "--dry-run", str(path)])
        assert result.exit_code == 0
        assert "Dry run" in result.output
        assert list((repo / "calls").iterdir()) == []

    def test_invalid_repository_exit_two(self, runner, repo, backups):
        (repo / "stray.txt").write_text("x")
        path = backups.write_calls("calls-a.xml", backups.call())
        result = runner.invoke(main, ["import", "-r", str(repo), str(path)])
        assert result.exit_code == 2
        assert "failed validation" in result.output

    def test_no_error_on_rejects(self, runner, repo, backups):
        path = backups.write_calls("calls-a.xml", backups.call(number=""), backups.call())
        result = runner.invoke(
            main, ["import", "-r", str(repo), "--json", "--no-error-on-rejects", str(path)],
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["calls"]["total"]["rejected"] == 1

    def test_max_message_size(self, runner, repo, backups):
        path = backups.write_sms(
            "sms-a.xml", backups.sms(body="x" * 2000), backups.sms(body="short"),
        )
        result = runner.invoke(
            main, ["import", "-r", str(repo), "--json", "--max-message-size", "1KB", str(path)],
        )
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["sms"]["total"]["added"] == 1
        assert data["sms"]["total"]["rejected"] == 1
        [violations] = list((repo / "rejected" / "sms").glob("*-violations.yaml"))
        assert "message-too-large" in violations.read_text()

    def test_quiet_suppresses_tables(self, runner, repo, backups):
        path = backups.write_calls("calls-a.xml", backups.call())
        result = runner.invoke(main, ["--quiet", "import", "-r", str(repo), str(path)])
        assert result.exit_code == 0
        assert "Calls" not in result.output
        assert list((repo / "calls").iterdir())

    def test_quiet_keeps_errors(self, runner, repo, backups):
        (repo / "stray.txt").write_text("x")
        path = backups.write_calls("calls-a.xml", backups.call())
        result = runner.invoke(main, ["-q", "import", "-r", str(repo), str(path)])
        assert result.exit_code == 2
        assert "failed validation" in result.output

    def test_missing_input_rejected_by_click(self, runner, repo, tmp_path):
        result = runner.invoke(main, ["import", "-r", str(repo), str(tmp_path / "nope.xml")])
        assert result.exit_code == 2


class TestValidate:
    def test_valid_repository(self, runner, populated_repo):
        result = runner.invoke(main, ["validate", "-r", str(populated_repo)])
        assert result.exit_code == 0, result.output
        assert "valid" in result.output

    def test_extra_file_exit_one(self, runner, repo):
        (repo / "notes.txt").write_text("unlisted")
        result = runner.invoke(main, ["validate", "-r", str(repo), "--sequential"])
        assert result.exit_code == 1
        assert "extra_file" in result.output

    def test_json_output(self, runner, repo):
        (repo / "notes.txt").write_text("unlisted")
        result = runner.invoke(main, ["validate", "-r", str(repo), "--json"])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["status"] == "invalid"
        assert [v["type"] for v in data["violations"]] == ["extra_file"]

    def test_json_with_metrics(self, runner, repo):
        result = runner.invoke(main, ["validate", "-r", str(repo), "--json", "--show-metrics"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["status"] == "valid"
        assert set(data["metrics"]["phase_durations"]) == {
            "structure", "manifest", "checksum", "content", "consistency",
        }

    def test_show_metrics_table(self, runner, repo):
        result = runner.invoke(main, ["validate", "-r", str(repo), "--show-metrics"])
        assert result.exit_code == 0
        assert "Metrics" in result.output

    def test_single_phase(self, runner, repo):
        (repo / "contacts.yaml").write_text("contacts: []\n# edited\n")
        result = runner.invoke(main, ["validate", "-r", str(repo), "--phase", "manifest", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["violations"] == []

        result = runner.invoke(main, ["validate", "-r", str(repo), "--phase", "checksum", "--json"])
        assert result.exit_code == 1
        types = [v["type"] for v in json.loads(result.stdout)["violations"]]
        assert types == ["checksum_mismatch"]

    def test_unknown_phase_rejected_by_click(self, runner, repo):
        result = runner.invoke(main, ["validate", "-r", str(repo), "--phase", "everything"])
        assert result.exit_code == 2

    def test_early_termination(self, runner, repo):
        (repo / "contacts.yaml").write_text("contacts: []\n# edited\n")
        result = runner.invoke(
            main, ["validate", "-r", str(repo), "--early-termination", "--json"],
        )
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["terminated_early"] == "checksum"

    def test_unsupported_version_exit_two(self, runner, repo):
        marker = repo / ".phonearchive.yaml"
        data = yaml.safe_load(marker.read_text())
        data["repository_structure_version"] = "9"
        marker.write_text(yaml.safe_dump(data))
        result = runner.invoke(main, ["validate", "-r", str(repo)])
        assert result.exit_code == 2
        assert "9" in result.output

    def test_repo_root_from_environment(self, runner, repo, monkeypatch):
        monkeypatch.setenv("PHONEARCHIVE_REPO_ROOT", str(repo))
        result = runner.invoke(main, ["validate", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["repository_path"] == str(repo)

    def test_remove_orphans_dry_run(self, runner, populated_repo):
        digest = store_orphan(populated_repo)
        result = runner.invoke(main, [
            "validate", "-r", str(populated_repo), "--sequential", "--json",
            "--remove-orphan-attachments", "--dry-run",
        ])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["orphan_removal"]["orphans_found"] == 1
        assert data["orphan_removal"]["dry_run"] is True
        assert AttachmentStore(populated_repo).exists(digest)

    def test_remove_orphans(self, runner, populated_repo):
        digest = store_orphan(populated_repo)
        result = runner.invoke(main, [
            "validate", "-r", str(populated_repo), "--remove-orphan-attachments",
        ])
        assert result.exit_code == 0, result.output
        assert "Removed 1 of 1 orphaned attachment(s)" in result.output
        assert not AttachmentStore(populated_repo).exists(digest)

        result = runner.invoke(main, ["validate", "-r", str(populated_repo), "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["violations"] == []


class TestInfo:
    def test_info_json(self, runner, populated_repo):
        result = runner.invoke(main, ["info", "-r", str(populated_repo), "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["total_calls"] == 2
        assert data["total_sms"] == 3
        assert data["total_attachments"] == 1
        assert data["calls_by_year"] == {"2023": 1, "2024": 1}
        assert data["marker"]["repository_structure_version"] == "1"

    def test_info_table(self, runner, populated_repo):
        result = runner.invoke(main, ["info", "-r", str(populated_repo)])
        assert result.exit_code == 0
        assert "Records by Year" in result.output

    def test_not_a_repository(self, runner, tmp_path):
        result = runner.invoke(main, ["info", "-r", str(tmp_path)])
        assert result.exit_code == 2


class TestReprocessContacts:
    @pytest.fixture
    def emptied(self, populated_repo):
        (populated_repo / "contacts.yaml").write_text("contacts: []\n")
        generate_manifest(populated_repo)
        return populated_repo

    def test_json(self, runner, emptied):
        result = runner.invoke(main, ["reprocess-contacts", "-r", str(emptied), "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["contacts_added"] == 2
        assert data["added"] == {"5551234567": ["Alice"], "5559876543": ["Bob"]}
        assert RepositoryValidator(emptied).validate().passed

    def test_dry_run_table(self, runner, emptied):
        result = runner.invoke(main, ["reprocess-contacts", "-r", str(emptied), "--dry-run"])
        assert result.exit_code == 0, result.output
        assert "Contacts Reprocessed" in result.output
        assert "Would add 2" in result.output
        assert (emptied / "contacts.yaml").read_text() == "contacts: []\n"

    def test_not_a_repository(self, runner, tmp_path):
        result = runner.invoke(main, ["reprocess-contacts", "-r", str(tmp_path)])
        assert result.exit_code == 2

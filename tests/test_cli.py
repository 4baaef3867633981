"""
Tests for leadsmith/cli.py

The enrich command runs with every paid API switched off in the settings
file, so no request leaves the process.
"""

import json

import pytest
from click.testing import CliRunner

from leadsmith.cli import main
from leadsmith.persistence.job_status import JobTracker

OFFLINE_SETTINGS = (
    "apiToggles:\n"
    "  skip-tracing: {enabled: false}\n"
    "output:\n"
    "  defaultDestination: dashboard\n"
)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def offline(data_dir):
    (data_dir / "settings.yaml").write_text(OFFLINE_SETTINGS, encoding="utf-8")
    return data_dir


@pytest.fixture
def leads_csv(tmp_path):
    path = tmp_path / "leads.csv"
    path.write_text(
        "Name,Phone,City,State\n"
        "Jane Doe,(512) 555-0100,Austin,TX\n"
        "John Roe,5125550101,Dallas,TX\n",
        encoding="utf-8",
    )
    return path


def invoke(runner, data_dir, *args):
    return runner.invoke(main, ["-d", str(data_dir), *args], catch_exceptions=False)


class TestEnrich:

    def test_enrich_runs_job_and_writes_output(self, runner, offline, leads_csv, tmp_path):
        output = tmp_path / "out.json"

        result = invoke(runner, offline, "enrich", str(leads_csv), "--output", str(output))

        assert result.exit_code == 0, result.output
        assert "completed" in result.output
        rows = json.loads(output.read_text(encoding="utf-8"))
        assert [r["Phone"] for r in rows] == ["5125550100", "5125550101"]

        (job,) = JobTracker().list_all()
        assert job.status == "completed"
        assert job.metadata["source"] == str(leads_csv)

    def test_rerun_skips_checkpointed_leads(self, runner, offline, leads_csv):
        invoke(runner, offline, "enrich", str(leads_csv))
        result = invoke(runner, offline, "enrich", str(leads_csv))
        assert "skipped 2" in result.output

    def test_limit(self, runner, offline, leads_csv):
        result = invoke(runner, offline, "enrich", str(leads_csv), "--limit", "1")
        assert "enriched 1" in result.output

    def test_bad_settings_file_fails_cleanly(self, runner, data_dir, leads_csv):
        (data_dir / "settings.yaml").write_text("rateThrottle: turbo\n", encoding="utf-8")
        result = invoke(runner, data_dir, "enrich", str(leads_csv))
        assert result.exit_code == 1


class TestJobs:

    def test_list_show_cancel(self, runner, data_dir):
        job = JobTracker().create("scraping", total=3)

        listed = invoke(runner, data_dir, "jobs", "list")
        assert job.job_id in listed.output

        shown = invoke(runner, data_dir, "jobs", "show", job.job_id)
        assert json.loads(shown.output)["jobId"] == job.job_id

        cancelled = invoke(runner, data_dir, "jobs", "cancel", job.job_id, "--reason", "manual")
        assert "cancelled" in cancelled.output
        assert invoke(runner, data_dir, "jobs", "list").output.strip() == "No jobs"
        assert job.job_id in invoke(runner, data_dir, "jobs", "list", "--all").output

    def test_missing_job(self, runner, data_dir):
        assert invoke(runner, data_dir, "jobs", "show", "nope").exit_code == 1
        assert invoke(runner, data_dir, "jobs", "cancel", "nope").exit_code == 1

    def test_cleanup(self, runner, data_dir):
        result = invoke(runner, data_dir, "jobs", "cleanup", "--days", "7")
        assert "Deleted 0 job records" in result.output


class TestCheckpointAndLeads:

    def test_status_export_clear(self, runner, offline, leads_csv, tmp_path):
        invoke(runner, offline, "enrich", str(leads_csv))

        status = invoke(runner, offline, "checkpoint", "status")
        assert "Processed leads:  2" in status.output

        exported = invoke(runner, offline, "leads", "export")
        names = sorted(lead["name"] for lead in json.loads(exported.output))
        assert names == ["Jane Doe", "John Roe"]

        rows_csv = tmp_path / "rows.csv"
        invoke(runner, offline, "leads", "export", "--rows", "--format", "csv", "--output", str(rows_csv))
        assert rows_csv.read_text(encoding="utf-8").startswith("Name,Phone,City,State")

        listed = invoke(runner, offline, "leads", "list")
        assert "(512) 555-0101" in listed.output
        assert "John Roe" in listed.output

        cleared = invoke(runner, offline, "checkpoint", "clear", "--yes")
        assert "Checkpoint cleared" in cleared.output
        assert "Processed leads:  0" in invoke(runner, offline, "checkpoint", "status").output

    def test_list_without_saved_leads(self, runner, data_dir):
        assert invoke(runner, data_dir, "leads", "list").output.strip() == "No saved leads"


class TestSettingsAndCooldown:

    def test_settings_show(self, runner, offline):
        result = invoke(runner, offline, "settings", "show")
        assert result.exit_code == 0
        assert "skip-tracing" in result.output
        assert "Destination:      dashboard" in result.output
        # skip-tracing off switches telnyx off with it
        assert "Estimated cost:   $0.00 per 1000 leads" in result.output

    def test_cooldown_status_and_clear(self, runner, data_dir):
        status = invoke(runner, data_dir, "cooldown", "status")
        assert json.loads(status.output) == {"isPaused": False, "errorCount": 0}
        assert "Cooldown cleared" in invoke(runner, data_dir, "cooldown", "clear").output

"""
CLI for Leadsmith
=================

Commands:
    leadsmith enrich <csv>                 Enrich a CSV of leads (resumable)
    leadsmith jobs list|show|cancel|cleanup
    leadsmith checkpoint status|clear
    leadsmith leads list|export            Show or export saved lead summaries
    leadsmith cooldown status|clear
    leadsmith settings show                Enabled APIs and estimated cost
"""

import asyncio
import csv
import json
import logging
import sys
from typing import Optional

import click

from leadsmith import __version__
from leadsmith.config import (
    API_REGISTRY,
    LOG_FILE,
    LOG_LEVEL,
    calculate_cost,
    default_settings_path,
    is_api_enabled,
    load_settings,
    resolve_data_dir,
)
from leadsmith.errors import LeadsmithError
from leadsmith.enrichment.summary import format_phone_number
from leadsmith.jobs.cooldown import CooldownManager
from leadsmith.jobs.runner import run_enrichment_job
from leadsmith.output_router import export_csv
from leadsmith.persistence.checkpoint import CheckpointStore
from leadsmith.persistence.job_status import JobTracker
from leadsmith.utils.logger import setup_logging
from leadsmith.utils.storage import FileStore


class Context:
    def __init__(self, data_dir: str, settings_path: Optional[str]):
        self.data_dir = data_dir
        self.settings_path = settings_path
        self.store = FileStore(data_dir)

    def settings(self):
        return load_settings(self.settings_path or default_settings_path(self.data_dir))


def read_csv_rows(path: str):
    """Rows of a CSV file as dicts (header row required)."""
    with open(path, "r", newline="", encoding="utf-8-sig") as f:
        return [dict(row) for row in csv.DictReader(f)]


def _fail(message: str) -> None:
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--data-dir", "-d", default=None, help="Data directory (default: LEADSMITH_DATA_DIR or ./data)")
@click.option("--settings", "settings_path", default=None, help="Settings file (YAML or JSON)")
@click.option("--log-file", default=None, help="Also write logs to this file")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx, data_dir: Optional[str], settings_path: Optional[str], log_file: Optional[str], verbose: bool):
    """
    Leadsmith - resumable lead enrichment

    Examples:
        leadsmith enrich leads.csv
        leadsmith jobs list
        leadsmith checkpoint status
    """
    data_dir = data_dir or resolve_data_dir()
    level = logging.DEBUG if verbose else getattr(logging, LOG_LEVEL, logging.INFO)
    setup_logging("leadsmith", level=level, log_file_path=log_file or LOG_FILE)
    ctx.obj = Context(data_dir, settings_path)


# ============================================================================
# enrich
# ============================================================================


@main.command()
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--limit", "-n", default=None, type=int, help="Only enrich the first N rows")
@click.option("--output", "-o", default=None, help="Write enriched rows to this JSON file")
@click.option("--fresh", is_flag=True, help="Clear the checkpoint before starting")
@click.option("--no-route", is_flag=True, help="Do not route results to the configured destination")
@click.pass_obj
def enrich(obj: Context, csv_path: str, limit: Optional[int], output: Optional[str], fresh: bool, no_route: bool):
    """Enrich the leads in CSV_PATH as a tracked job."""
    try:
        rows = read_csv_rows(csv_path)
        if limit is not None:
            rows = rows[:limit]
        settings = obj.settings()
    except (OSError, csv.Error, LeadsmithError) as e:
        _fail(f"Could not start enrichment: {e}")
        return

    checkpoint = CheckpointStore(obj.store)
    if fresh:
        checkpoint.clear()

    click.echo(f"🔍 Enriching {len(rows)} leads from {csv_path}")
    try:
        run = asyncio.run(
            run_enrichment_job(
                rows,
                metadata={"source": csv_path},
                tracker=JobTracker(obj.store),
                checkpoint=checkpoint,
                cooldown=CooldownManager(obj.store, settings),
                settings=settings,
                route_output=not no_route,
            )
        )
    except Exception as e:
        _fail(f"Enrichment failed: {e}")
        return

    job = run.job
    batch = run.batch
    click.echo(f"✅ Job {job.job_id if job else '?'}: {job.status if job else 'unknown'}")
    if batch is not None:
        click.echo(
            f"   enriched {batch.attempted}, skipped {batch.skipped}, "
            f"saved {batch.saved}, failed {batch.failed}"
        )

    if output:
        with open(output, "w", encoding="utf-8") as f:
            json.dump(run.rows, f, indent=2, default=str)
        click.echo(f"💾 Saved enriched rows to {output}")

    if job is not None and job.status == "failed":
        sys.exit(1)


# ============================================================================
# jobs
# ============================================================================


@main.group()
def jobs():
    """Inspect and manage background jobs."""


@jobs.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include finished jobs")
@click.option("--limit", "-l", default=50, type=int, help="Maximum jobs to show with --all")
@click.pass_obj
def jobs_list(obj: Context, show_all: bool, limit: int):
    tracker = JobTracker(obj.store)
    found = tracker.list_all(limit) if show_all else tracker.list_active()
    if not found:
        click.echo("No jobs")
        return
    for job in found:
        click.echo(
            f"{job.job_id:45s} {job.type:10s} {job.status:9s} "
            f"{job.progress.current}/{job.progress.total} ({job.progress.percentage}%)"
        )


@jobs.command("show")
@click.argument("job_id")
@click.pass_obj
def jobs_show(obj: Context, job_id: str):
    job = JobTracker(obj.store).get(job_id)
    if job is None:
        _fail(f"Job not found: {job_id}")
        return
    click.echo(json.dumps(job.to_dict(), indent=2))


@jobs.command("cancel")
@click.argument("job_id")
@click.option("--reason", default=None, help="Recorded as the job error")
@click.pass_obj
def jobs_cancel(obj: Context, job_id: str, reason: Optional[str]):
    job = JobTracker(obj.store).cancel(job_id, reason)
    if job is None:
        _fail(f"Job not found: {job_id}")
        return
    click.echo(f"Job {job_id}: {job.status}")


@jobs.command("cleanup")
@click.option("--days", default=30, type=int, help="Keep finished jobs this many days")
@click.pass_obj
def jobs_cleanup(obj: Context, days: int):
    counts = JobTracker(obj.store).cleanup_old(days)
    click.echo(f"🧹 Deleted {counts['deleted']} job records ({counts['errors']} errors)")


# ============================================================================
# checkpoint
# ============================================================================


@main.group()
def checkpoint():
    """Inspect or reset the enrichment checkpoint."""


@checkpoint.command("status")
@click.pass_obj
def checkpoint_status(obj: Context):
    store = CheckpointStore(obj.store)
    click.echo(f"Data directory:   {obj.data_dir}")
    click.echo(f"Processed leads:  {store.processed_count()}")
    click.echo(f"Saved summaries:  {len(store.load_all())}")


@checkpoint.command("clear")
@click.confirmation_option(prompt="Forget all processed leads? Saved results are kept.")
@click.pass_obj
def checkpoint_clear(obj: Context):
    CheckpointStore(obj.store).clear()
    click.echo("Checkpoint cleared")


# ============================================================================
# leads
# ============================================================================


@main.group()
def leads():
    """Saved enriched leads."""


@leads.command("list")
@click.option("--limit", "-l", default=50, type=int, help="Maximum leads to show")
@click.pass_obj
def leads_list(obj: Context, limit: int):
    """One line per saved lead, newest first."""
    summaries = CheckpointStore(obj.store).load_all()
    if not summaries:
        click.echo("No saved leads")
        return
    for summary in summaries[:limit]:
        location = ", ".join(p for p in (summary.city, summary.state) if p)
        click.echo(
            f"{summary.name or '?':30s} {format_phone_number(summary.phone):16s} "
            f"{location:24s} {summary.dob_or_age or '-':6s} {summary.line_type or '-'}"
        )
    if len(summaries) > limit:
        click.echo(f"... {len(summaries) - limit} more")


@leads.command("export")
@click.option("--format", "-f", "fmt", type=click.Choice(["json", "csv"]), default="json")
@click.option("--output", "-o", default=None, help="Output file (json: default stdout)")
@click.option("--rows", "full_rows", is_flag=True, help="Export full enriched rows instead of summaries")
@click.pass_obj
def leads_export(obj: Context, fmt: str, output: Optional[str], full_rows: bool):
    """Export the latest summary (or enriched row) of every saved lead."""
    store = CheckpointStore(obj.store)
    summaries = store.load_artifact_rows() if full_rows else [s.to_dict() for s in store.load_all()]

    if fmt == "csv":
        if output:
            columns = []
            for summary in summaries:
                columns.extend(k for k in summary if k not in columns)
            with open(output, "w", newline="", encoding="utf-8") as f:
                writer = csv.DictWriter(f, fieldnames=columns)
                writer.writeheader()
                writer.writerows(summaries)
            path = output
        else:
            path = export_csv(summaries, obj.data_dir)
        click.echo(f"💾 Exported {len(summaries)} leads to {path}")
        return

    text = json.dumps(summaries, indent=2)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"💾 Exported {len(summaries)} leads to {output}")
    else:
        click.echo(text)


# ============================================================================
# cooldown
# ============================================================================


@main.group()
def cooldown():
    """Error-spike cooldown state."""


@cooldown.command("status")
@click.pass_obj
def cooldown_status(obj: Context):
    click.echo(json.dumps(CooldownManager(obj.store, obj.settings()).status(), indent=2))


@cooldown.command("clear")
@click.pass_obj
def cooldown_clear(obj: Context):
    CooldownManager(obj.store, obj.settings()).clear()
    click.echo("Cooldown cleared")


# ============================================================================
# settings
# ============================================================================


@main.group("settings")
def settings_group():
    """Runtime settings."""


@settings_group.command("show")
@click.option("--leads", "lead_count", default=1000, type=int, help="Lead count for the cost estimate")
@click.pass_obj
def settings_show(obj: Context, lead_count: int):
    """Show API toggles, output destination and the estimated enrichment cost."""
    try:
        settings = obj.settings()
    except LeadsmithError as e:
        _fail(str(e))
        return

    for key, meta in API_REGISTRY.items():
        state = "on" if is_api_enabled(key, settings) else "off"
        lock = " (locked)" if meta.locked else ""
        click.echo(f"{key:20s} {state:4s} ${meta.cost_per_1000:.2f}/1000{lock}")

    click.echo(f"Rate throttle:    {settings.rate_throttle or 'none'}")
    click.echo(f"Destination:      {settings.output.default_destination}")
    click.echo(f"Cooldown:         {'enabled' if settings.cooldown.enabled else 'disabled'}")
    click.echo(f"Estimated cost:   ${calculate_cost(settings, lead_count):.2f} per {lead_count} leads")


if __name__ == "__main__":
    main()

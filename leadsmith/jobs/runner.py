"""
Background job runners.

Wraps an enrichment batch or a paged scrape in a tracked job:

1. save the job as ``running`` (total = leads or pages)
2. drive ``update_progress`` from the work loop
3. ``complete`` with result metadata, or ``fail`` with the error message
   and re-raise

A job cancelled from outside stops the loop before the next lead/page and
stays ``cancelled``.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from leadsmith.config import Settings
from leadsmith.enrichment.batch import BatchResult, enrich_batch
from leadsmith.enrichment.columns import Row
from leadsmith.enrichment.pipeline import Enricher
from leadsmith.errors import ErrorCode, LeadsmithError, build_error
from leadsmith.jobs.cooldown import CooldownManager
from leadsmith.persistence.checkpoint import CheckpointStore
from leadsmith.persistence.job_status import Job, JobProgress, JobTracker

logger = logging.getLogger(__name__)

SCRAPE_PAGE_DELAY_SECONDS = 2.0

# fetch_page(page_number) -> (leads on the page, whether more pages exist)
FetchPage = Callable[[int], Awaitable[Tuple[List[Dict[str, Any]], bool]]]


@dataclass
class JobRun:
    job: Optional[Job]
    rows: List[Dict[str, Any]] = field(default_factory=list)
    batch: Optional[BatchResult] = None


def _start_job(
    tracker: JobTracker,
    job_type: str,
    total: int,
    job_id: Optional[str],
    metadata: Optional[Dict[str, Any]],
) -> Job:
    job = tracker.get(job_id) if job_id else None
    if job is None:
        job = tracker.create(job_type, total=total, metadata=metadata, job_id=job_id)
    elif job.status == "cancelled":
        logger.info(f"Job {job.job_id} was cancelled before it started")
        return job
    else:
        job.metadata.update(metadata or {})

    job.status = "running"
    job.progress = JobProgress(current=0, total=total, percentage=0)
    tracker.save(job)
    logger.info(f"Job {job.job_id} running ({job_type}, total {total})")
    return job


def _fail(tracker: JobTracker, job_id: str, error: Exception, cooldown: Optional[CooldownManager]) -> None:
    code = error.code if isinstance(error, LeadsmithError) else ErrorCode.UNKNOWN
    logger.error(json.dumps({"jobId": job_id, **build_error(code, error)}))
    if cooldown is not None:
        try:
            cooldown.record_error()
        except Exception as e:
            logger.warning(f"Failed to record error for cooldown: {e}")
    tracker.fail(job_id, str(error) or type(error).__name__)


# ============================================================================
# Enrichment
# ============================================================================


async def run_enrichment_job(
    rows: List[Row],
    job_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    tracker: Optional[JobTracker] = None,
    checkpoint: Optional[CheckpointStore] = None,
    enricher: Optional[Enricher] = None,
    cooldown: Optional[CooldownManager] = None,
    settings: Optional[Settings] = None,
    **batch_kwargs,
) -> JobRun:
    """
    Enrich ``rows`` as a tracked job.

    When every attempted lead fails (error and no phone) the job is marked
    failed; partial failures still complete.

    Args:
        rows: Lead rows
        job_id: Existing job id to run under (a new job is created otherwise)
        metadata: Extra job metadata
        tracker, checkpoint, enricher, cooldown: Collaborators (defaults if omitted)
        settings: Settings override
        **batch_kwargs: Passed through to ``enrich_batch``

    Returns:
        JobRun with the final job record and enriched rows

    Raises:
        Exception: Whatever aborted the batch, after the job is marked failed
    """
    tracker = tracker or JobTracker()
    job = _start_job(tracker, "enrichment", len(rows), job_id, metadata)
    job_id = job.job_id

    def on_progress(current, total, row, result) -> None:
        tracker.update_progress(job_id, current, total)

    owns_enricher = enricher is None
    if owns_enricher:
        enricher = Enricher(
            settings=settings,
            data_dir=str(checkpoint.store.root) if checkpoint is not None else None,
            on_api_error=cooldown.record_error if cooldown is not None else None,
        )

    try:
        batch = await enrich_batch(
            rows,
            enricher=enricher,
            checkpoint=checkpoint,
            on_progress=on_progress,
            should_stop=lambda: tracker.is_cancelled(job_id),
            settings=settings,
            **batch_kwargs,
        )
    except Exception as e:
        logger.error(f"Enrichment job {job_id} aborted: {e}")
        _fail(tracker, job_id, e, cooldown)
        raise
    finally:
        if owns_enricher:
            await enricher.close()

    if batch.stopped:
        return JobRun(tracker.get(job_id), batch.rows, batch)

    if batch.all_failed:
        first_error = batch.results[0].error if batch.results else None
        message = f"All {batch.attempted} leads failed"
        if first_error:
            message += f": {first_error}"
        tracker.fail(job_id, message)
        return JobRun(tracker.get(job_id), batch.rows, batch)

    completed = tracker.complete(
        job_id,
        {
            "enrichedCount": len(batch.rows),
            "totalLeads": len(rows),
            "skippedCount": batch.skipped,
            "failedCount": batch.failed,
        },
    )
    return JobRun(completed, batch.rows, batch)


# ============================================================================
# Scraping
# ============================================================================


async def run_scraping_job(
    fetch_page: FetchPage,
    max_pages: int,
    max_results: int,
    job_id: Optional[str] = None,
    search_params: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    tracker: Optional[JobTracker] = None,
    cooldown: Optional[CooldownManager] = None,
    page_delay: float = SCRAPE_PAGE_DELAY_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> JobRun:
    """
    Fetch result pages sequentially as a tracked job.

    Stops at ``max_pages``, at ``max_results`` leads, when a page reports no
    more results, on cancellation, or when the error cooldown is active.

    Args:
        fetch_page: Async page fetcher, pages numbered from 1
        max_pages: Page limit (also the progress total)
        max_results: Lead limit; extra leads are dropped
        job_id: Existing job id to run under
        search_params: Recorded in the job metadata
        metadata: Extra job metadata
        tracker, cooldown: Collaborators (defaults if omitted)
        page_delay: Seconds between pages
        sleep: Awaitable sleep, injectable for tests

    Returns:
        JobRun with the final job record and scraped leads
    """
    tracker = tracker or JobTracker()
    job_metadata = dict(metadata or {})
    job_metadata.update(
        {"searchParams": search_params or {}, "maxPages": max_pages, "maxResults": max_results}
    )
    job = _start_job(tracker, "scraping", max_pages, job_id, job_metadata)
    job_id = job.job_id

    leads: List[Dict[str, Any]] = []
    page = 1
    has_more = True
    paused = False

    try:
        while has_more and page <= max_pages and len(leads) < max_results:
            if tracker.is_cancelled(job_id):
                logger.info(f"Scraping job {job_id} cancelled at page {page}")
                return JobRun(tracker.get(job_id), leads[:max_results])

            if cooldown is not None and cooldown.is_in_cooldown():
                logger.warning(f"Scraping job {job_id} stopping at page {page}: error cooldown active")
                paused = True
                break

            page_leads, has_more = await fetch_page(page)
            leads.extend(page_leads or [])
            tracker.update_progress(job_id, page, max_pages)
            page += 1

            if has_more and page <= max_pages and len(leads) < max_results:
                await sleep(page_delay)
    except Exception as e:
        logger.error(f"Scraping job {job_id} failed on page {page}: {e}")
        _fail(tracker, job_id, e, cooldown)
        raise

    final_leads = leads[:max_results]
    result_metadata = {"leadsScraped": len(final_leads), "pagesScraped": page - 1}
    if paused:
        result_metadata["stoppedForCooldown"] = True

    completed = tracker.complete(job_id, result_metadata)
    return JobRun(completed, final_leads)

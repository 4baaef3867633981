"""
Batch enrichment driver.

Walks the rows in input order. Each lead is checked against the checkpoint,
enriched, merged back into its row and saved to disk before the next lead
starts. Routing the finished rows to the configured destination happens
after the loop and can never fail the batch.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from leadsmith import config
from leadsmith.config import Settings
from leadsmith.enrichment.columns import (
    Row,
    clean_phone,
    extract_display_name,
    find_column,
    is_blank,
    is_valid_email,
)
from leadsmith.enrichment.models import EnrichmentResult, ProgressCallback, StepCallback
from leadsmith.enrichment.pipeline import Enricher
from leadsmith.enrichment.summary import extract_lead_summary
from leadsmith.output_router import route_enriched_leads
from leadsmith.persistence.checkpoint import UNKNOWN_LEAD_KEY, CheckpointStore, lead_key

logger = logging.getLogger(__name__)


# ============================================================================
# Row merge
# ============================================================================


def _set_if_present(row: Row, column: str, value: Optional[str]) -> None:
    if value:
        row[column] = value


def merge_enrichment(row: Row, result: EnrichmentResult) -> Row:
    """
    Copy enrichment output into a copy of ``row``.

    Phone/email: a valid discovered value replaces the row value; a missing
    or invalid discovered value never blanks a valid row value. ZIP only
    fills a blank zip column.

    Returns:
        New row dict
    """
    merged = dict(row)

    _set_if_present(merged, "Line Type", result.line_type)
    _set_if_present(merged, "Carrier", result.carrier_name)
    _set_if_present(merged, "Normalized Carrier", result.normalized_carrier)
    _set_if_present(merged, "Age", result.age)
    _set_if_present(merged, "DOB", result.dob)

    if result.zip_code:
        zip_column = find_column(merged, "zip") or "Zipcode"
        if is_blank(merged.get(zip_column)):
            merged[zip_column] = result.zip_code

    phone_column = find_column(merged, "phone") or "Phone"
    discovered_phone = clean_phone(result.phone)
    if discovered_phone:
        merged[phone_column] = discovered_phone

    email_column = find_column(merged, "email") or "Email"
    if is_valid_email(result.email):
        merged[email_column] = str(result.email).strip()

    return merged


# ============================================================================
# Batch
# ============================================================================


@dataclass
class BatchResult:
    rows: List[Row] = field(default_factory=list)
    results: List[EnrichmentResult] = field(default_factory=list)
    skipped: int = 0
    saved: int = 0
    stopped: bool = False

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        """Leads that ended with an error and no phone."""
        return sum(1 for r in self.results if r.error and not r.phone)

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.failed == self.attempted


def _notify(on_progress: Optional[ProgressCallback], current: int, total: int, row: Row, result) -> None:
    if on_progress is None:
        return
    try:
        on_progress(current, total, row, result)
    except Exception as e:
        logger.warning(f"Progress callback failed at lead {current}/{total}: {e}")


async def enrich_batch(
    rows: List[Row],
    enricher: Optional[Enricher] = None,
    checkpoint: Optional[CheckpointStore] = None,
    on_progress: Optional[ProgressCallback] = None,
    on_step: Optional[Callable[[int, str], Optional[StepCallback]]] = None,
    inter_lead_delay: float = config.INTER_LEAD_DELAY_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    should_stop: Optional[Callable[[], bool]] = None,
    route_output: bool = True,
    settings: Optional[Settings] = None,
) -> BatchResult:
    """
    Enrich ``rows`` sequentially with resume support.

    Args:
        rows: Lead rows in input order
        enricher: Enricher to use (a fresh one, closed afterwards, if omitted)
        checkpoint: Checkpoint store (default data directory if omitted)
        on_progress: ``on_progress(current, total, row, result)`` after every
            lead; ``result`` is None for leads skipped by the checkpoint
        on_step: Factory ``on_step(index, lead_name) -> StepCallback`` for
            per-step updates of one lead
        inter_lead_delay: Seconds to wait between leads
        sleep: Awaitable sleep, injectable for tests
        should_stop: Polled before every lead; True ends the batch early
        route_output: Route the enriched rows when the batch finishes
        settings: Settings for routing

    Returns:
        BatchResult
    """
    checkpoint = checkpoint or CheckpointStore()
    owns_enricher = enricher is None
    enricher = enricher or Enricher(settings=settings)
    batch = BatchResult()
    total = len(rows)

    try:
        for i, row in enumerate(rows):
            if should_stop is not None and should_stop():
                logger.info(f"Batch stopped before lead {i + 1}/{total}")
                batch.stopped = True
                break

            key = lead_key(row)
            lead_name = extract_display_name(row) or f"Lead {i + 1}"

            if checkpoint.is_key_processed(key):
                logger.info(f"Skipping already processed lead {i + 1}/{total}")
                batch.skipped += 1
                _notify(on_progress, i + 1, total, row, None)
                continue

            step_callback = on_step(i, lead_name) if on_step is not None else None
            result = await enricher.enrich_row(row, step_callback)
            enriched_row = merge_enrichment(row, result)
            batch.results.append(result)
            batch.rows.append(enriched_row)

            if key != UNKNOWN_LEAD_KEY:
                summary = extract_lead_summary(enriched_row, result)
                # Record the input row's key so a resumed run recognises the row
                saved = await asyncio.to_thread(
                    checkpoint.save_enriched_lead_immediate, enriched_row, summary, key
                )
                if saved:
                    batch.saved += 1
            else:
                logger.warning(f"Lead {i + 1}/{total} has no usable identity, not checkpointed")

            _notify(on_progress, i + 1, total, enriched_row, result)

            if i < total - 1 and inter_lead_delay > 0:
                await sleep(inter_lead_delay)
    finally:
        if owns_enricher:
            await enricher.close()

    logger.info(
        f"Batch finished: {batch.attempted} enriched, {batch.skipped} skipped, "
        f"{batch.saved} saved, {batch.failed} failed"
    )

    if route_output and batch.rows:
        await _route_non_critical(batch.rows, settings, str(checkpoint.store.root))

    return batch


async def _route_non_critical(rows: List[Row], settings: Optional[Settings], data_dir: str) -> None:
    try:
        outcome = await route_enriched_leads(rows, settings, data_dir)
        if not outcome.success:
            logger.warning(f"Routing to {outcome.destination} failed: {outcome.error}")
    except Exception as e:
        logger.warning(f"Failed to route enriched leads: {e}")


async def enrich_data(
    rows: List[Row],
    on_progress: Optional[ProgressCallback] = None,
    **kwargs,
) -> List[Dict]:
    """Enrich ``rows`` and return the enriched rows (checkpointed leads are left out)."""
    batch = await enrich_batch(rows, on_progress=on_progress, **kwargs)
    return batch.rows

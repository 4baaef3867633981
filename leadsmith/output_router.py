"""
Output Router
=============

Delivers enriched leads to the destination chosen in the settings file
(``output.defaultDestination``):

- ``webhook``    one batch POST, exponential backoff per ``output.retry``
- ``csv``        ``<data_dir>/exports/enriched-<timestamp>.csv``
- ``dashboard``  nothing to do, the leads are already on disk
- ``crm``        not implemented (reported as unsuccessful)
- anything else  falls back to csv

Routing runs after the enrichment batch is finished and never raises.
"""

import asyncio
import csv
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from leadsmith.config import RetrySettings, Settings, load_settings, resolve_data_dir
from leadsmith.utils.storage import now_z

logger = logging.getLogger(__name__)

EXPORTS_DIR = "exports"
WEBHOOK_TIMEOUT_SECONDS = 30.0


@dataclass
class RouteOutcome:
    destination: str
    success: bool
    sent: int = 0
    failed: int = 0
    path: Optional[str] = None
    error: Optional[str] = None


def apply_field_mapping(lead: Dict[str, Any], field_mapping: Dict[str, str]) -> Dict[str, Any]:
    """Rename lead keys per ``field_mapping`` (internal -> external); unmapped keys are dropped."""
    if not field_mapping:
        return dict(lead)
    return {external: lead[internal] for internal, external in field_mapping.items() if internal in lead}


def _public_fields(lead: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in lead.items() if not str(k).startswith("_")}


# ============================================================================
# Webhook
# ============================================================================


async def send_batch_to_webhook(
    leads: List[Dict[str, Any]],
    webhook_url: str,
    field_mapping: Optional[Dict[str, str]] = None,
    retry: Optional[RetrySettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RouteOutcome:
    """
    POST all leads in one request, retrying with exponential backoff.

    Args:
        leads: Enriched lead rows
        webhook_url: Target URL
        field_mapping: Optional internal -> external key mapping
        retry: Retry policy (settings defaults if omitted)
        transport: httpx transport override (tests)
        sleep: Awaitable sleep, injectable for tests

    Returns:
        RouteOutcome for destination "webhook"
    """
    retry = retry or RetrySettings()
    body = {
        "leads": [apply_field_mapping(_public_fields(lead), field_mapping or {}) for lead in leads],
        "count": len(leads),
        "timestamp": now_z(),
    }

    delay = retry.initial_delay_ms / 1000
    last_error = None

    async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS, transport=transport) as client:
        for attempt in range(retry.max_retries + 1):
            try:
                response = await client.post(webhook_url, json=body)
                if response.status_code < 400:
                    logger.info(f"Sent {len(leads)} leads to webhook")
                    return RouteOutcome("webhook", True, sent=len(leads))
                last_error = f"Webhook returned {response.status_code}"
            except httpx.HTTPError as e:
                last_error = f"Webhook request failed: {e}"

            if attempt < retry.max_retries:
                logger.warning(f"{last_error}, retrying in {delay:.1f}s ({attempt + 1}/{retry.max_retries})")
                await sleep(delay)
                delay = min(delay * retry.backoff_multiplier, retry.max_delay_ms / 1000)

    logger.error(f"Webhook delivery failed after {retry.max_retries + 1} attempts: {last_error}")
    return RouteOutcome("webhook", False, failed=len(leads), error=last_error)


# ============================================================================
# CSV
# ============================================================================


def export_csv(
    leads: List[Dict[str, Any]],
    data_dir: Optional[str] = None,
    field_mapping: Optional[Dict[str, str]] = None,
) -> Path:
    """
    Write leads to ``<data_dir>/exports/enriched-<timestamp>.csv``.

    Columns are the union of all lead keys in first-seen order.

    Returns:
        Path of the written file
    """
    rows = [apply_field_mapping(_public_fields(lead), field_mapping or {}) for lead in leads]

    columns: List[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)

    exports = Path(data_dir or resolve_data_dir()) / EXPORTS_DIR
    exports.mkdir(parents=True, exist_ok=True)
    path = exports / f"enriched-{re.sub(r'[:.]', '-', now_z())}.csv"

    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow({k: "" if v is None else v for k, v in row.items()})

    logger.info(f"Exported {len(rows)} leads to {path}")
    return path


# ============================================================================
# Router
# ============================================================================


async def route_enriched_leads(
    leads: List[Dict[str, Any]],
    settings: Optional[Settings] = None,
    data_dir: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RouteOutcome:
    """
    Route enriched leads to the configured destination.

    Never raises; failures are reported in the returned outcome.
    """
    try:
        settings = settings or load_settings()
        output = settings.output
        destination = output.default_destination

        if destination == "webhook":
            if not output.webhook_url:
                logger.warning("Webhook destination selected but no webhook URL configured")
                return RouteOutcome("webhook", False, failed=len(leads), error="Webhook URL not configured")
            return await send_batch_to_webhook(
                leads,
                output.webhook_url,
                output.field_mapping,
                output.retry,
                transport=transport,
                sleep=sleep,
            )

        if destination == "dashboard":
            logger.info(f"{len(leads)} leads available in dashboard")
            return RouteOutcome("dashboard", True, sent=len(leads))

        if destination == "crm":
            logger.info("CRM destination not yet implemented")
            return RouteOutcome("crm", False, error="CRM destination not implemented")

        if destination != "csv":
            logger.info(f"Unknown destination '{destination}', defaulting to csv")

        path = await asyncio.to_thread(export_csv, leads, data_dir, output.field_mapping)
        return RouteOutcome("csv", True, sent=len(leads), path=str(path))

    except Exception as e:
        logger.error(f"Failed to route leads: {e}")
        return RouteOutcome("unknown", False, error=str(e))

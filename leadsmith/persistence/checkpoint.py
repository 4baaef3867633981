"""
Incremental Enrichment Checkpoint
=================================

Makes long enrichment runs resumable. Every lead is written to disk before the
batch moves on, so a run killed mid-way (deploy, crash, Ctrl-C) loses at most
the lead in flight.

Layout under the data directory:

    enrichment-checkpoint.json              {"lastUpdated", "processedKeys", "totalProcessed"}
    enriched-leads/<ts>-<lead key>.json      one artifact per saved lead
    enriched-leads/summary-YYYY-MM-DD.json   daily aggregate, one entry per lead key

The checkpoint document and the daily aggregate are read-modify-write and go
through the file lock so two runs sharing the data directory cannot lose each
other's updates.

Lead keys:
    linkedin:<profile url>          when the row has a profile URL
    name:<name>:<email or phone>    when it has a name plus a contact value
    name:<name>                     name only
    name:unknown                    nothing usable; never counted as processed
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from leadsmith.enrichment.columns import (
    Row,
    extract_display_name,
    extract_linkedin_url,
    find_value,
)
from leadsmith.enrichment.summary import LeadSummary
from leadsmith.utils.file_lock import locked
from leadsmith.utils.storage import FileStore, now_z

logger = logging.getLogger(__name__)

CHECKPOINT_FILE = "enrichment-checkpoint.json"
ENRICHED_DIR = "enriched-leads"
SUMMARY_PREFIX = "summary-"
UNKNOWN_LEAD_KEY = "name:unknown"
MAX_KEY_FILENAME_LENGTH = 100


def lead_key(row: Row) -> str:
    """Derive the stable dedup key for a lead row."""
    linkedin_url = extract_linkedin_url(row)
    if linkedin_url:
        return f"linkedin:{linkedin_url}"

    name = extract_display_name(row)
    contact = find_value(row, "email") or find_value(row, "phone")
    if name and contact:
        return f"name:{name}:{contact}"

    return f"name:{name or 'unknown'}"


def _sanitize_key(key: str) -> str:
    return re.sub(r"[^a-zA-Z0-9:]", "_", key)[:MAX_KEY_FILENAME_LENGTH]


class CheckpointStore:
    """Durable processed-set plus per-lead artifacts and daily aggregates."""

    def __init__(self, store: Optional[FileStore] = None):
        self.store = store or FileStore()

    # ------------------------------------------------------------------
    # Processed-key set
    # ------------------------------------------------------------------

    def _checkpoint_path(self) -> str:
        return str(self.store.path(CHECKPOINT_FILE))

    def processed_keys(self) -> Set[str]:
        data = self.store.read_json(CHECKPOINT_FILE)
        if not isinstance(data, dict):
            return set()
        return set(data.get("processedKeys") or [])

    def processed_count(self) -> int:
        return len(self.processed_keys())

    def is_key_processed(self, key: str) -> bool:
        if key == UNKNOWN_LEAD_KEY:
            return False
        return key in self.processed_keys()

    def is_processed(self, row: Row) -> bool:
        return self.is_key_processed(lead_key(row))

    def save_processed_key(self, key: str) -> bool:
        """
        Add ``key`` to the processed set. Idempotent.

        Returns:
            True if the key was newly added
        """
        if key == UNKNOWN_LEAD_KEY:
            return False

        with locked(self._checkpoint_path()):
            keys = self.processed_keys()
            if key in keys:
                return False
            keys.add(key)
            self.store.write_json(
                CHECKPOINT_FILE,
                {
                    "lastUpdated": now_z(),
                    "processedKeys": sorted(keys),
                    "totalProcessed": len(keys),
                },
            )
        return True

    def clear(self) -> None:
        """Forget all processed keys. Saved artifacts are kept."""
        with locked(self._checkpoint_path()):
            self.store.delete(CHECKPOINT_FILE)
        logger.info("Enrichment checkpoint cleared")

    # ------------------------------------------------------------------
    # Per-lead artifacts
    # ------------------------------------------------------------------

    def save_enriched_lead_immediate(
        self,
        row: Row,
        summary: LeadSummary,
        key: Optional[str] = None,
    ) -> bool:
        """
        Persist one enriched lead right away.

        Writes the per-lead artifact, upserts the lead into today's aggregate
        and marks its key processed. Never raises: a failed save is logged and
        reported through the return value so the batch keeps going.

        Args:
            row: Enriched row
            summary: Lead summary for the row
            key: Lead key to record (defaults to the key derived from ``row``)

        Returns:
            True if every write succeeded
        """
        key = key or lead_key(row)
        try:
            now = datetime.now(timezone.utc)
            saved_at = now_z()
            timestamp = re.sub(r"[:.]", "-", saved_at)

            self.store.write_json(
                f"{ENRICHED_DIR}/{timestamp}-{_sanitize_key(key)}.json",
                {
                    "metadata": {"savedAt": saved_at, "leadKey": key},
                    "enrichedRow": row,
                    "leadSummary": summary.to_dict(),
                },
            )

            self._upsert_daily_summary(now.strftime("%Y-%m-%d"), key, saved_at, summary)
            self.save_processed_key(key)
            return True
        except Exception as e:
            logger.error(f"Failed to save enriched lead {_sanitize_key(key)[:40]}: {e}")
            return False

    def _upsert_daily_summary(self, day: str, key: str, saved_at: str, summary: LeadSummary) -> None:
        name = f"{ENRICHED_DIR}/{SUMMARY_PREFIX}{day}.json"
        with locked(str(self.store.path(name))):
            entries = self.store.read_json(name)
            if not isinstance(entries, list):
                entries = []

            entry = {"leadKey": key, "savedAt": saved_at, "leadSummary": summary.to_dict()}
            for i, existing in enumerate(entries):
                if isinstance(existing, dict) and existing.get("leadKey") == key:
                    entries[i] = entry
                    break
            else:
                entries.append(entry)

            self.store.write_json(name, entries)

    # ------------------------------------------------------------------
    # Resume / dashboard reads
    # ------------------------------------------------------------------

    def _daily_summary_files(self) -> List[str]:
        names = [
            n
            for n in self.store.list(ENRICHED_DIR, suffix=".json")
            if n.startswith(SUMMARY_PREFIX)
        ]
        return sorted(names, reverse=True)

    def load_all(self) -> List[LeadSummary]:
        """
        All saved summaries, deduplicated by lead key, most recent first.

        Daily aggregates are scanned newest day first and entries within a
        day newest first, so the first occurrence of a key is its latest save.
        """
        seen: Set[str] = set()
        leads: List[LeadSummary] = []

        for name in self._daily_summary_files():
            entries = self.store.read_json(f"{ENRICHED_DIR}/{name}")
            if not isinstance(entries, list):
                continue

            entries = [e for e in entries if isinstance(e, dict)]
            entries.sort(key=lambda e: e.get("savedAt") or "", reverse=True)

            for entry in entries:
                key = entry.get("leadKey")
                if key and key in seen:
                    continue
                try:
                    summary = LeadSummary.from_dict(entry.get("leadSummary") or {})
                except ValueError as e:
                    logger.warning(f"Skipping malformed summary in {name}: {e}")
                    continue
                if key:
                    seen.add(key)
                leads.append(summary)

        return leads

    def load_artifact_rows(self) -> List[Dict[str, Any]]:
        """Enriched rows from the per-lead artifacts, newest first, one per lead key."""
        seen: Set[str] = set()
        rows: List[Dict[str, Any]] = []
        names = sorted(
            (n for n in self.store.list(ENRICHED_DIR, suffix=".json") if n.startswith("20")),
            reverse=True,
        )
        for name in names:
            artifact = self.store.read_json(f"{ENRICHED_DIR}/{name}")
            if not isinstance(artifact, dict):
                continue
            key = (artifact.get("metadata") or {}).get("leadKey")
            if key in seen:
                continue
            seen.add(key)
            rows.append(artifact.get("enrichedRow") or {})
        return rows

"""
Tests for leadsmith/enrichment/batch.py
"""

import asyncio
import csv

import aiohttp
import pytest

from leadsmith.config import CooldownSettings, OutputSettings, Settings
from leadsmith.enrichment.batch import enrich_batch, enrich_data, merge_enrichment
from leadsmith.enrichment.clients import TELNYX_PATH
from leadsmith.enrichment.models import EnrichmentResult
from leadsmith.enrichment.pipeline import Enricher
from leadsmith.enrichment.postal import PostalResolver
from leadsmith.errors import PersistenceError
from leadsmith.jobs.cooldown import CooldownManager
from leadsmith.persistence.checkpoint import CheckpointStore

TELNYX_OK = (200, {"portability": {"line_type": "wireless"}, "carrier": {"name": "Verizon"}})


def handler(path, params):
    if path == TELNYX_PATH:
        return TELNYX_OK
    if "peo_id" in params:
        return 404, {}
    return 200, {"PeopleDetails": [{"Person ID": "P1", "Telephone": "5125550142", "Age": "40"}]}


@pytest.fixture
def checkpoint(store):
    return CheckpointStore(store)


@pytest.fixture
def make_enricher(scripted_api, data_dir):
    def make():
        return Enricher(client=scripted_api(handler), postal=PostalResolver(data_dir))

    return make


async def _no_sleep(seconds):
    return None


def _run_batch(rows, enricher, checkpoint, **kwargs):
    kwargs.setdefault("route_output", False)
    kwargs.setdefault("sleep", _no_sleep)
    return asyncio.run(enrich_batch(rows, enricher=enricher, checkpoint=checkpoint, **kwargs))


class TestMergeEnrichment:

    @pytest.mark.parametrize("discovered", [None, "", "123", "N/A"])
    def test_invalid_discovery_never_erases_row_phone(self, discovered):
        merged = merge_enrichment({"Name": "Jane Doe", "Phone": "5551234567"}, EnrichmentResult(phone=discovered))
        assert merged["Phone"] == "5551234567"

    def test_valid_discovery_replaces_row_phone(self):
        merged = merge_enrichment({"Phone Number": "5551234567"}, EnrichmentResult(phone="+1 (512) 555-0100"))
        assert merged["Phone Number"] == "5125550100"

    def test_phone_column_created_when_missing(self):
        merged = merge_enrichment({"Name": "Jane Doe"}, EnrichmentResult(phone="5125550100"))
        assert merged["Phone"] == "5125550100"

    def test_email_rules(self):
        row = {"Email": "row@example.com"}
        assert merge_enrichment(row, EnrichmentResult(email="nope"))["Email"] == "row@example.com"
        assert merge_enrichment(row, EnrichmentResult(email="new@example.com"))["Email"] == "new@example.com"

    def test_zip_only_fills_blank(self):
        assert merge_enrichment({"Zip": "N/A"}, EnrichmentResult(zip_code="78701"))["Zip"] == "78701"
        assert merge_enrichment({"Zip": "73301"}, EnrichmentResult(zip_code="78701"))["Zip"] == "73301"
        assert merge_enrichment({"Name": "x"}, EnrichmentResult(zip_code="78701"))["Zipcode"] == "78701"

    def test_intel_columns(self):
        result = EnrichmentResult(line_type="wireless", carrier_name="Verizon", normalized_carrier="Verizon Wireless", age="41")
        merged = merge_enrichment({"Name": "Jane Doe"}, result)
        assert merged["Line Type"] == "wireless"
        assert merged["Carrier"] == "Verizon"
        assert merged["Normalized Carrier"] == "Verizon Wireless"
        assert merged["Age"] == "41"

    def test_input_row_untouched(self):
        row = {"Name": "Jane Doe"}
        merge_enrichment(row, EnrichmentResult(phone="5125550100"))
        assert row == {"Name": "Jane Doe"}


class TestBatch:

    def test_contact_preserved_when_lookup_finds_nothing(self, scripted_api, checkpoint, data_dir):
        api = scripted_api(lambda path, params: (404, {}))
        enricher = Enricher(client=api, postal=PostalResolver(data_dir))

        batch = _run_batch([{"Name": "Jane Doe", "Phone": "5551234567"}], enricher, checkpoint)

        assert batch.rows[0]["Phone"] == "5551234567"
        assert batch.results[0].phone == "5551234567"

    def test_enriches_and_checkpoints_every_lead(self, make_enricher, checkpoint):
        rows = [{"Name": "Jane Doe"}, {"Name": "John Roe", "Email": "john@example.com"}]
        progress = []

        batch = _run_batch(rows, make_enricher(), checkpoint, on_progress=lambda *a: progress.append(a))

        assert batch.attempted == 2
        assert batch.saved == 2
        assert [r["Phone"] for r in batch.rows] == ["5125550142", "5125550142"]
        assert [p[:2] for p in progress] == [(1, 2), (2, 2)]
        assert checkpoint.processed_count() == 2
        # Keys come from the input rows, before enrichment added a phone
        assert checkpoint.is_key_processed("name:Jane Doe")
        assert checkpoint.is_key_processed("name:John Roe:john@example.com")

    def test_rerun_skips_processed_leads(self, make_enricher, checkpoint):
        rows = [{"Name": "Jane Doe"}, {"Name": "John Roe"}]
        _run_batch(rows, make_enricher(), checkpoint)

        enricher = make_enricher()
        progress = []
        batch = _run_batch(rows, enricher, checkpoint, on_progress=lambda *a: progress.append(a))

        assert batch.skipped == 2
        assert batch.rows == []
        assert enricher.client.calls == []
        assert [p[3] for p in progress] == [None, None]

    def test_unknown_identity_is_enriched_but_not_saved(self, make_enricher, checkpoint):
        rows = [{"City": "Austin", "Phone": "5125550100"}]

        batch = _run_batch(rows, make_enricher(), checkpoint)
        again = _run_batch(rows, make_enricher(), checkpoint)

        assert batch.attempted == 1 and batch.saved == 0
        assert again.attempted == 1
        assert checkpoint.processed_count() == 0

    def test_should_stop_ends_batch(self, make_enricher, checkpoint):
        seen = []

        def stop():
            return len(seen) >= 1

        rows = [{"Name": "Jane Doe"}, {"Name": "John Roe"}]
        batch = _run_batch(rows, make_enricher(), checkpoint, on_progress=lambda *a: seen.append(a), should_stop=stop)

        assert batch.stopped
        assert batch.attempted == 1

    def test_delay_between_leads_only(self, make_enricher, checkpoint):
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)

        rows = [{"Name": f"Lead {n} Person", "Phone": f"512555010{n}"} for n in range(3)]
        _run_batch(rows, make_enricher(), checkpoint, inter_lead_delay=0.1, sleep=sleep)
        assert sleeps == [0.1, 0.1]

    def test_progress_callback_failure_is_contained(self, make_enricher, checkpoint):
        def explode(*args):
            raise RuntimeError("socket closed")

        batch = _run_batch([{"Name": "Jane Doe"}], make_enricher(), checkpoint, on_progress=explode)
        assert batch.saved == 1

    def test_step_factory_receives_index_and_name(self, make_enricher, checkpoint):
        factory_calls = []
        updates = []

        def factory(index, lead_name):
            factory_calls.append((index, lead_name))
            return updates.append

        _run_batch([{"Name": "Jane Doe"}, {"City": "Austin"}], make_enricher(), checkpoint, on_step=factory)

        assert factory_calls == [(0, "Jane Doe"), (1, "Lead 2")]
        assert updates[-1].step == "complete"

    def test_all_failed(self, scripted_api, checkpoint, data_dir):
        api = scripted_api(lambda path, params: (500, {"error": "down"}))
        enricher = Enricher(client=api, postal=PostalResolver(data_dir))

        batch = _run_batch([{"Name": "Jane Doe"}, {"Name": "John Roe"}], enricher, checkpoint)

        assert batch.failed == 2
        assert batch.all_failed

    def test_cooldown_write_failure_does_not_abort_batch(self, scripted_api, checkpoint, store, data_dir, monkeypatch):
        cooldown = CooldownManager(store, Settings(cooldown=CooldownSettings(enabled=True)))

        def broken_save(state):
            raise PersistenceError("disk full")

        monkeypatch.setattr(cooldown, "_save", broken_save)

        def handler(path, params):
            raise aiohttp.ClientConnectionError("connection refused")

        api = scripted_api(handler, on_error=cooldown.record_error)
        enricher = Enricher(client=api, postal=PostalResolver(data_dir))

        batch = _run_batch([{"Name": "Jane Doe"}, {"Name": "John Roe"}], enricher, checkpoint)

        assert batch.attempted == 2
        assert all("connection refused" in r.error for r in batch.results)


class TestRouting:

    def test_rows_exported_to_csv(self, make_enricher, checkpoint, data_dir):
        settings = Settings(output=OutputSettings(default_destination="csv"))
        rows = [{"Name": "Jane Doe", "City": "Austin"}]

        asyncio.run(
            enrich_batch(rows, enricher=make_enricher(), checkpoint=checkpoint, settings=settings, sleep=_no_sleep)
        )

        exports = list((data_dir / "exports").glob("enriched-*.csv"))
        assert len(exports) == 1
        with open(exports[0], newline="", encoding="utf-8") as f:
            exported = list(csv.DictReader(f))
        assert exported[0]["Name"] == "Jane Doe"
        assert exported[0]["Phone"] == "5125550142"

    def test_routing_failure_does_not_fail_batch(self, make_enricher, checkpoint):
        settings = Settings(output=OutputSettings(default_destination="webhook"))
        batch = asyncio.run(
            enrich_batch([{"Name": "Jane Doe"}], enricher=make_enricher(), checkpoint=checkpoint, settings=settings, sleep=_no_sleep)
        )
        assert batch.saved == 1

    def test_enrich_data_returns_rows(self, make_enricher, checkpoint):
        rows = asyncio.run(
            enrich_data(
                [{"Name": "Jane Doe"}],
                enricher=make_enricher(),
                checkpoint=checkpoint,
                route_output=False,
                sleep=_no_sleep,
            )
        )
        assert rows[0]["Phone"] == "5125550142"
        assert rows[0]["Age"] == "40"

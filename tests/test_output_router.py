"""
Tests for leadsmith/output_router.py

Webhook delivery runs against httpx.MockTransport; no network.
"""

import asyncio
import csv
import json

import httpx
import pytest

from leadsmith.config import OutputSettings, RetrySettings, Settings
from leadsmith.output_router import (
    apply_field_mapping,
    export_csv,
    route_enriched_leads,
    send_batch_to_webhook,
)

LEADS = [
    {"Name": "Jane Doe", "Phone": "5125550100", "_internal": "x"},
    {"Name": "John Roe", "Email": "john@example.com"},
]

HOOK = "https://hooks.example.com/leads"


class Recorder:
    """MockTransport handler answering with the given status codes in order."""

    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.bodies = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.bodies.append(json.loads(request.content))
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, json={"ok": status < 400})


def _webhook_settings(**retry):
    return Settings(
        output=OutputSettings(
            default_destination="webhook",
            webhook_url=HOOK,
            retry=RetrySettings(**retry),
        )
    )


class TestFieldMapping:

    def test_mapping_renames_and_drops(self):
        mapped = apply_field_mapping({"Name": "Jane", "Phone": "1", "Zip": "2"}, {"Name": "full_name", "Phone": "phone"})
        assert mapped == {"full_name": "Jane", "phone": "1"}

    def test_no_mapping_copies(self):
        lead = {"Name": "Jane"}
        assert apply_field_mapping(lead, {}) == lead


class TestWebhook:

    def test_single_post_with_all_leads(self):
        recorder = Recorder(200)
        outcome = asyncio.run(send_batch_to_webhook(LEADS, HOOK, transport=httpx.MockTransport(recorder)))

        assert outcome.success and outcome.sent == 2
        (body,) = recorder.bodies
        assert body["count"] == 2
        assert body["timestamp"].endswith("Z")
        assert body["leads"][0] == {"Name": "Jane Doe", "Phone": "5125550100"}

    def test_retries_with_exponential_backoff(self):
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)

        recorder = Recorder(500, 502, 200)
        outcome = asyncio.run(
            send_batch_to_webhook(
                LEADS,
                HOOK,
                retry=RetrySettings(max_retries=3, initial_delay_ms=1000, max_delay_ms=10000, backoff_multiplier=2),
                transport=httpx.MockTransport(recorder),
                sleep=sleep,
            )
        )

        assert outcome.success
        assert len(recorder.bodies) == 3
        assert sleeps == [1.0, 2.0]

    def test_gives_up_after_max_retries(self):
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)

        recorder = Recorder(500, 500, 500)
        outcome = asyncio.run(
            send_batch_to_webhook(
                LEADS,
                HOOK,
                retry=RetrySettings(max_retries=2, initial_delay_ms=4000, max_delay_ms=5000),
                transport=httpx.MockTransport(recorder),
                sleep=sleep,
            )
        )

        assert not outcome.success
        assert outcome.failed == 2
        assert outcome.error == "Webhook returned 500"
        assert sleeps == [4.0, 5.0]

    def test_transport_error_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("refused")
            return httpx.Response(204)

        async def sleep(seconds):
            return None

        outcome = asyncio.run(
            send_batch_to_webhook(LEADS, HOOK, transport=httpx.MockTransport(handler), sleep=sleep)
        )
        assert outcome.success
        assert len(calls) == 2


class TestCsv:

    def test_export_union_of_columns(self, data_dir):
        path = export_csv(LEADS, str(data_dir))

        assert path.parent == data_dir / "exports"
        assert path.name.startswith("enriched-") and path.suffix == ".csv"
        with open(path, newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)
            rows = list(reader)
        assert reader.fieldnames == ["Name", "Phone", "Email"]
        assert rows[1] == {"Name": "John Roe", "Phone": "", "Email": "john@example.com"}


class TestRouter:

    def test_webhook_destination(self, data_dir):
        recorder = Recorder(200)
        outcome = asyncio.run(
            route_enriched_leads(LEADS, _webhook_settings(), str(data_dir), transport=httpx.MockTransport(recorder))
        )
        assert outcome.destination == "webhook" and outcome.success

    def test_webhook_without_url_fails(self, data_dir):
        settings = Settings(output=OutputSettings(default_destination="webhook"))
        outcome = asyncio.run(route_enriched_leads(LEADS, settings, str(data_dir)))
        assert not outcome.success
        assert outcome.error == "Webhook URL not configured"

    def test_dashboard_is_a_no_op(self, data_dir):
        outcome = asyncio.run(
            route_enriched_leads(LEADS, Settings(output=OutputSettings(default_destination="dashboard")), str(data_dir))
        )
        assert outcome.success
        assert not (data_dir / "exports").exists()

    def test_crm_not_implemented(self, data_dir):
        outcome = asyncio.run(
            route_enriched_leads(LEADS, Settings(output=OutputSettings(default_destination="crm")), str(data_dir))
        )
        assert outcome.destination == "crm"
        assert not outcome.success

    @pytest.mark.parametrize("destination", ["csv", "sftp"])
    def test_csv_and_unknown_write_export(self, data_dir, destination):
        settings = Settings(output=OutputSettings(default_destination=destination))
        outcome = asyncio.run(route_enriched_leads(LEADS, settings, str(data_dir)))
        assert outcome.destination == "csv" and outcome.success
        assert outcome.path.endswith(".csv")

    def test_router_never_raises(self, data_dir, monkeypatch):
        def broken(*args, **kwargs):
            raise OSError("read-only filesystem")

        monkeypatch.setattr("leadsmith.output_router.export_csv", broken)
        outcome = asyncio.run(route_enriched_leads(LEADS, Settings(), str(data_dir)))
        assert not outcome.success
        assert "read-only" in outcome.error

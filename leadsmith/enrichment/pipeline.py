"""
Per-lead enrichment pipeline.

Steps run strictly in order; each paid step only runs when the earlier,
cheaper steps have not already settled or disqualified the lead:

    1. linkedin         profile fields from the row (free)
    2. zip              city/state -> ZIP from the local table (free)
    3. phone-discovery  skip-trace search, person details only if the
                        search result carried no phone (paid, rate limited)
    4. telnyx           line type + carrier for the phone (paid)
    5. gatekeep         no phone / VoIP / junk carrier / geo mismatch (free)
    6. age              search age, else cached details, else one detail
                        call when step 3 did not make one (paid)
    7. complete

Values found by an earlier step are never replaced by a later step, and a
phone or email is never erased once found.
"""

import logging
from typing import Any, Dict, Optional

from leadsmith.config import Settings
from leadsmith.enrichment.clients import ApiResponse, EnrichmentApiClient
from leadsmith.enrichment.columns import (
    Row,
    extract_address,
    extract_city,
    extract_email,
    extract_linkedin_url,
    extract_name,
    extract_phone,
    extract_state,
    extract_zip,
    has_dob_or_age,
)
from leadsmith.enrichment.extractors import (
    detail_address,
    detail_age,
    detail_city,
    detail_email,
    detail_phone,
    detail_state,
    detail_zip,
    person_id,
    phone_intel,
    search_age,
    search_email,
    search_first_person,
    search_location,
    search_phone,
    unwrap,
)
from leadsmith.enrichment.gatekeep import evaluate_gate
from leadsmith.enrichment.models import (
    STEP_AGE,
    STEP_COMPLETE,
    STEP_GATEKEEP,
    STEP_LINKEDIN,
    STEP_PHONE_DISCOVERY,
    STEP_TELNYX,
    STEP_ZIP,
    EnrichmentResult,
    StepCallback,
    StepUpdate,
)
from leadsmith.enrichment.postal import PostalResolver
from leadsmith.utils.logger import log_event
from leadsmith.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

GATEKEEP_FAILED_MESSAGE = "Gatekeep failed: Skipping age enrichment"


def _report(on_step: Optional[StepCallback], step: str, result: EnrichmentResult, error: Optional[str] = None, **extra: Any) -> None:
    if on_step is None:
        return
    fields = result.snapshot()
    fields.update(extra)
    try:
        on_step(StepUpdate(step=step, fields=fields, error=error))
    except Exception as e:
        logger.warning(f"Step callback failed at {step}: {e}")


def _citystatezip(city: Optional[str], state: Optional[str], zip_code: Optional[str]) -> str:
    if not city or not state:
        return ""
    value = f"{city}, {state}"
    if zip_code:
        value += f" {zip_code}"
    return value


class Enricher:
    """
    Owns the per-run enrichment state: API client, rate limiter and
    postal resolver. Construct one per run and close it when the run ends::

        async with Enricher() as enricher:
            result = await enricher.enrich_row(row)
    """

    def __init__(
        self,
        client: Optional[EnrichmentApiClient] = None,
        postal: Optional[PostalResolver] = None,
        settings: Optional[Settings] = None,
        data_dir: Optional[str] = None,
        on_api_error=None,
    ):
        self.limiter = client.limiter if client is not None else RateLimiter()
        self.client = client or EnrichmentApiClient(
            limiter=self.limiter, settings=settings, on_error=on_api_error
        )
        self.postal = postal or PostalResolver(data_dir)

    async def __aenter__(self) -> "Enricher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    async def enrich_row(self, row: Row, on_step: Optional[StepCallback] = None) -> EnrichmentResult:
        """
        Run the pipeline for one lead row.

        Step failures never raise; they accumulate in ``result.error``.

        Args:
            row: Lead row (column name -> value)
            on_step: Called after every step with a snapshot of known fields

        Returns:
            EnrichmentResult
        """
        result = EnrichmentResult()

        # ==============================================================
        # STEP 1: profile fields from the row
        # ==============================================================
        name = extract_name(row)
        city = extract_city(row)
        state = extract_state(row)
        result.first_name = name.first_name
        result.last_name = name.last_name
        result.city = city
        result.state = state

        linkedin_url = extract_linkedin_url(row)
        if linkedin_url:
            result.linkedin_data = {
                "linkedinUrl": linkedin_url,
                "firstName": name.first_name,
                "lastName": name.last_name,
                "city": city,
                "state": state,
            }
        _report(on_step, STEP_LINKEDIN, result)

        # ==============================================================
        # STEP 2: local ZIP lookup
        # ==============================================================
        zip_code = extract_zip(row)
        if not zip_code and city and state:
            zip_code = self.postal.lookup(city, state)
        result.zip_code = zip_code
        if zip_code:
            _report(on_step, STEP_ZIP, result)

        initial_phone = extract_phone(row)
        initial_email = extract_email(row)
        phone = initial_phone
        email = initial_email
        result.phone = phone
        result.email = email
        result.address = extract_address(row)

        # ==============================================================
        # STEP 3: phone discovery
        # ==============================================================
        person: Optional[Dict[str, Any]] = None
        details_fetched = False

        if not phone and name.first_name and name.last_name:
            search = await self.client.search_person(
                name.full_name, _citystatezip(city, state, zip_code)
            )
            result.add_error(search.error)

            if search.data is not None and not search.error:
                result.skip_tracing_data = unwrap(search.data)
                person = search_first_person(search.data)
                result.person_id = person_id(person)
                phone = search_phone(person)

                if not phone and result.person_id:
                    details_fetched = True
                    details = await self.client.person_details(result.person_id)
                    result.add_error(details.error)
                    if details.data is not None and not details.error:
                        phone, email, state = self._apply_details(result, details, email, state)

                email = email or search_email(person)

            if phone:
                result.phone = phone
            if email:
                result.email = email
            log_event(logger, STEP_PHONE_DISCOVERY, name=name.full_name, phone=phone, email=email)
            _report(on_step, STEP_PHONE_DISCOVERY, result, error=search.error)

        # ==============================================================
        # STEP 4: phone intelligence
        # ==============================================================
        if phone:
            lookup = await self.client.phone_lookup(phone)
            if lookup.data is not None:
                result.telnyx_data = lookup.data
                intel = phone_intel(lookup.data)
                result.line_type = intel.line_type
                result.carrier_name = intel.carrier_name
                result.carrier_type = intel.carrier_type
                result.normalized_carrier = intel.normalized_carrier
            result.add_error(lookup.error)
            _report(on_step, STEP_TELNYX, result, error=lookup.error)

        # ==============================================================
        # STEP 5: gatekeep
        # ==============================================================
        traced_city, traced_state = search_location(person)
        if not (traced_city and traced_state) and isinstance(result.skip_tracing_data, dict):
            traced_city, traced_state = search_location(result.skip_tracing_data)

        decision = evaluate_gate(
            phone,
            result.line_type,
            result.carrier_name,
            city,
            state,
            traced_city,
            traced_state,
        )
        result.gate_passed = decision.passed
        if not decision.passed:
            log_event(logger, "gatekeep-stopped", name=name.full_name, phone=phone, reason=decision.reason)
        _report(
            on_step,
            STEP_GATEKEEP,
            result,
            error=None if decision.passed else GATEKEEP_FAILED_MESSAGE,
            gateReason=decision.reason,
        )

        # ==============================================================
        # STEP 6: age
        # ==============================================================
        if (
            decision.passed
            and not has_dob_or_age(row)
            and name.first_name
            and name.last_name
            and phone
        ):
            age = search_age(person)
            if not age and result.person_details_data is not None:
                age = detail_age(result.person_details_data)
            if not age and result.person_id and not details_fetched:
                details = await self.client.person_details(result.person_id)
                result.add_error(details.error)
                if details.data is not None and not details.error:
                    result.person_details_data = unwrap(details.data)
                    age = detail_age(details.data)
            result.age = age
            _report(on_step, STEP_AGE, result)

        # ==============================================================
        # Final contact preservation
        # ==============================================================
        result.phone = phone or initial_phone
        result.email = email or initial_email

        _report(on_step, STEP_COMPLETE, result, error=result.error)
        return result

    def _apply_details(
        self,
        result: EnrichmentResult,
        details: ApiResponse,
        email: Optional[str],
        state: Optional[str],
    ):
        """Take phone from a details payload and fill email/state/zip/city/address gaps."""
        payload = details.data
        result.person_details_data = unwrap(payload)

        phone = detail_phone(payload)
        email = email or detail_email(payload)
        state = state or detail_state(payload)

        result.state = result.state or state
        result.city = result.city or detail_city(payload)
        result.zip_code = result.zip_code or detail_zip(payload)
        result.address = result.address or detail_address(payload)
        return phone, email, state


async def enrich_row(
    row: Row,
    on_step: Optional[StepCallback] = None,
    settings: Optional[Settings] = None,
) -> EnrichmentResult:
    """Enrich a single row with a throwaway ``Enricher``."""
    async with Enricher(settings=settings) as enricher:
        return await enricher.enrich_row(row, on_step)

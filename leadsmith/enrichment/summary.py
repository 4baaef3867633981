"""
Lead summaries.

A LeadSummary is the compact, export-ready view of an enriched lead:
name, best phone, age/DOB, location, email, DNC status and carrier info.
Summaries are what the checkpoint layer persists per lead and what the
dashboard and CSV exports read back.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, Optional

import phonenumbers
from pydantic import BaseModel, ConfigDict, Field

from leadsmith.enrichment.columns import (
    Row,
    extract_display_name,
    extract_zip,
    find_value,
    is_blank,
    is_valid_email,
    is_valid_phone,
)
from leadsmith.enrichment.models import EnrichmentResult

logger = logging.getLogger(__name__)

DOB_FORMATS = ["%Y-%m-%d", "%m/%d/%Y", "%m-%d-%Y", "%Y/%m/%d", "%B %d, %Y", "%b %d, %Y"]


class LeadSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    phone: str = ""
    dob_or_age: str = Field("", alias="dobOrAge")
    zipcode: str = ""
    state: str = ""
    city: str = ""
    email: str = ""
    dnc_status: str = Field("UNKNOWN", alias="dncStatus")
    dnc_last_checked: Optional[str] = Field(None, alias="dncLastChecked")
    income: Optional[float] = None
    line_type: Optional[str] = Field(None, alias="lineType")
    carrier: Optional[str] = None
    normalized_carrier: Optional[str] = Field(None, alias="normalizedCarrier")
    search_filter: Optional[str] = Field(None, alias="searchFilter")
    date_scraped: Optional[str] = Field(None, alias="dateScraped")
    linkedin_url: Optional[str] = Field(None, alias="linkedinUrl")
    platform: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeadSummary":
        return cls.model_validate(data)


def calculate_age(dob: str, today: Optional[date] = None) -> str:
    """Age in whole years for a date of birth; the input unchanged if it cannot be parsed."""
    if not dob:
        return ""

    parsed = None
    text = str(dob).strip()
    for fmt in DOB_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt).date()
            break
        except ValueError:
            continue
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            return text

    today = today or date.today()
    age = today.year - parsed.year
    if (today.month, today.day) < (parsed.month, parsed.day):
        age -= 1
    return str(age)


def format_phone_number(phone: Optional[str]) -> str:
    """
    Format a US number as (XXX) XXX-XXXX.

    Returns "N/A" for empty input and the input unchanged when it is not a
    10-digit NANP number.
    """
    if not phone:
        return "N/A"
    try:
        parsed = phonenumbers.parse(str(phone), "US")
    except phonenumbers.NumberParseException:
        return phone

    national = str(parsed.national_number)
    if parsed.country_code != 1 or len(national) != 10:
        return phone
    return f"({national[:3]}) {national[3:6]}-{national[6:]}"


def _dnc_status(row: Row, dnc: Optional[Dict[str, Any]]) -> str:
    if dnc is not None:
        return "YES" if dnc.get("isDoNotCall") else "NO"
    value = find_value(row, "dnc")
    if not value:
        return "UNKNOWN"
    return "YES" if value.upper() in ("YES", "TRUE", "Y", "1") else "NO"


def _platform(row: Row, linkedin_url: Optional[str]) -> Optional[str]:
    value = (find_value(row, "platform") or "").lower()
    if value in ("linkedin", "facebook"):
        return value
    if linkedin_url:
        return "linkedin"
    return None


def _dob_or_age(row: Row, result: Optional[EnrichmentResult]) -> str:
    dob = find_value(row, "dob")
    if dob:
        return calculate_age(dob)
    age = find_value(row, "age")
    if age:
        return age
    if result is not None:
        if result.age:
            return str(result.age)
        if result.dob:
            return calculate_age(result.dob)
    return ""


def extract_lead_summary(
    row: Row,
    result: Optional[EnrichmentResult] = None,
    dnc: Optional[Dict[str, Any]] = None,
    date_scraped: Optional[str] = None,
) -> LeadSummary:
    """
    Build a LeadSummary from a (merged) row and its enrichment result.

    Row values win when valid; enrichment values fill the gaps.

    Args:
        row: Lead row, usually already merged with enrichment output
        result: Enrichment result for the row, if any
        dnc: Optional DNC scrub record ({"isDoNotCall": bool, ...})
        date_scraped: Optional scrape date override

    Returns:
        LeadSummary
    """
    phone = ""
    row_phone = find_value(row, "phone")
    if row_phone and is_valid_phone(row_phone):
        phone = row_phone
    elif result is not None and is_valid_phone(result.phone):
        phone = result.phone

    email = ""
    row_email = find_value(row, "email")
    if row_email and is_valid_email(row_email):
        email = row_email
    elif result is not None and is_valid_email(result.email):
        email = result.email

    name = extract_display_name(row)
    if not name and result is not None:
        name = f"{result.first_name} {result.last_name}".strip()

    zipcode = extract_zip(row) or (result.zip_code if result is not None else None) or ""
    city = find_value(row, "city") or (result.city if result is not None else None) or ""
    state = find_value(row, "state") or (result.state if result is not None else None) or ""

    line_type = result.line_type if result is not None else None
    carrier = result.carrier_name if result is not None else None
    normalized_carrier = result.normalized_carrier if result is not None else None
    line_type = line_type or _row_text(row, "Line Type")
    carrier = carrier or _row_text(row, "Carrier")
    normalized_carrier = normalized_carrier or _row_text(row, "Normalized Carrier")

    linkedin_url = find_value(row, "linkedin_url")

    return LeadSummary(
        name=name,
        phone=phone,
        dob_or_age=_dob_or_age(row, result),
        zipcode=zipcode,
        state=state,
        city=city,
        email=email,
        dnc_status=_dnc_status(row, dnc),
        line_type=line_type,
        carrier=carrier,
        normalized_carrier=normalized_carrier,
        search_filter=find_value(row, "search_filter"),
        date_scraped=date_scraped or find_value(row, "date_scraped"),
        linkedin_url=linkedin_url,
        platform=_platform(row, linkedin_url),
        income=_income(row),
    )


def _row_text(row: Row, column: str) -> Optional[str]:
    value = row.get(column)
    return None if is_blank(value) else str(value).strip()


def _income(row: Row) -> Optional[float]:
    value = row.get("Income")
    if is_blank(value):
        return None
    digits = re.sub(r"[^\d.]", "", str(value))
    try:
        return float(digits) if digits else None
    except ValueError:
        return None

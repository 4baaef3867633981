"""
Payload extractors for the external enrichment services.

Each function takes a raw JSON payload from one service and returns one
explicit optional value. The pipeline composes them; nothing outside this
module knows the vendor payload shapes.

Services:
- skip-tracing search: ``{"PeopleDetails": [{"Person ID", "Telephone", "Age", ...}]}``
- skip-tracing person details: ``{"All Phone Details": [...], "Person Details": [...],
  "Email Addresses": [...], "Current Address Details List": [...]}``
- phone intelligence (Telnyx): ``{"portability": {"line_type"}, "carrier": {...}}``

Any of these may arrive wrapped in one or two ``"data"`` envelopes.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from leadsmith.enrichment.columns import clean_phone, is_blank

SEARCH_PHONE_KEYS = ("Telephone", "phone", "phone_number", "Phone Number", "Phone")
SEARCH_EMAIL_KEYS = ("Email", "email", "email_address", "Email Address")
PERSON_ID_KEYS = ("Person ID", "person_id", "peo_id")
WIRELESS = "wireless"

_REPORTED_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%Y", "%b %Y", "%B %Y", "%Y-%m")


def unwrap(payload: Any, depth: int = 2) -> Any:
    """Strip up to ``depth`` ``{"data": ...}`` envelopes."""
    for _ in range(depth):
        if isinstance(payload, dict) and isinstance(payload.get("data"), (dict, list)):
            payload = payload["data"]
        else:
            break
    return payload


def _first(items: Any) -> Optional[Dict[str, Any]]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return None


def _text(value: Any) -> Optional[str]:
    if is_blank(value):
        return None
    return str(value).strip()


def payload_error(payload: Any) -> Optional[str]:
    """Error reported inside a 200 response (``{"success": false, "error": ...}``)."""
    if isinstance(payload, dict) and (payload.get("success") is False or payload.get("error")):
        return str(payload.get("error") or "Unknown error")
    return None


# ============================================================================
# Skip-tracing search
# ============================================================================


def search_first_person(payload: Any) -> Optional[Dict[str, Any]]:
    """First candidate person record of a search response."""
    data = unwrap(payload)
    if isinstance(data, dict):
        return _first(data.get("PeopleDetails"))
    return None


def search_phone(person: Optional[Dict[str, Any]]) -> Optional[str]:
    if not person:
        return None
    for key in SEARCH_PHONE_KEYS:
        phone = clean_phone(person.get(key))
        if phone:
            return phone
    return None


def search_email(person: Optional[Dict[str, Any]]) -> Optional[str]:
    if not person:
        return None
    for key in SEARCH_EMAIL_KEYS:
        value = _text(person.get(key))
        if value and "@" in value:
            return value
    return None


def person_id(person: Optional[Dict[str, Any]]) -> Optional[str]:
    if not person:
        return None
    for key in PERSON_ID_KEYS:
        value = _text(person.get(key))
        if value:
            return value
    return None


def search_age(person: Optional[Dict[str, Any]]) -> Optional[str]:
    if not person:
        return None
    return _text(person.get("Age") or person.get("age"))


def search_location(person: Optional[Dict[str, Any]]) -> Tuple[Optional[str], Optional[str]]:
    """(city, state) of a search candidate, from explicit fields or "Lives in"."""
    if not person:
        return None, None
    city = _text(person.get("City") or person.get("city"))
    state = _text(person.get("State") or person.get("state"))
    if city and state:
        return city, state

    lives_in = _text(person.get("Lives in") or person.get("lives_in"))
    if lives_in and "," in lives_in:
        lives_city, _, rest = lives_in.rpartition(",")
        tokens = rest.split()
        city = city or _text(lives_city)
        state = state or (tokens[0] if tokens else None)
    return city, state


# ============================================================================
# Skip-tracing person details
# ============================================================================


def _parse_reported(value: Any) -> datetime:
    text = _text(value)
    if not text:
        return datetime.min
    for fmt in _REPORTED_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return datetime.min


@dataclass
class PhoneCandidate:
    number: str
    phone_type: str = ""
    last_reported: datetime = datetime.min

    @property
    def is_wireless(self) -> bool:
        return self.phone_type.lower() == WIRELESS


def detail_phone_candidates(payload: Any) -> List[PhoneCandidate]:
    """
    Phone records of a details response, best first.

    Ranking: wireless before any other type, then most recently reported.
    Numbers with fewer than 10 digits are dropped.
    """
    data = unwrap(payload)
    if not isinstance(data, dict):
        return []

    candidates = []
    for record in data.get("All Phone Details") or []:
        if not isinstance(record, dict):
            continue
        number = clean_phone(record.get("phone_number"))
        if not number:
            continue
        candidates.append(
            PhoneCandidate(
                number=number,
                phone_type=str(record.get("phone_type") or ""),
                last_reported=_parse_reported(record.get("last_reported")),
            )
        )

    candidates.sort(key=lambda c: (not c.is_wireless, -(c.last_reported - datetime.min).total_seconds()))
    return candidates


def detail_phone(payload: Any) -> Optional[str]:
    """Best phone of a details response, falling back to Person Details[0].Telephone."""
    candidates = detail_phone_candidates(payload)
    if candidates:
        return candidates[0].number

    data = unwrap(payload)
    if isinstance(data, dict):
        return clean_phone((_first(data.get("Person Details")) or {}).get("Telephone"))
    return None


def detail_email(payload: Any) -> Optional[str]:
    data = unwrap(payload)
    if not isinstance(data, dict):
        return None
    for email in data.get("Email Addresses") or []:
        value = _text(email if isinstance(email, str) else (email or {}).get("email"))
        if value and "@" in value:
            return value
    return None


def _current_address(payload: Any) -> Optional[Dict[str, Any]]:
    data = unwrap(payload)
    if isinstance(data, dict):
        return _first(data.get("Current Address Details List"))
    return None


def detail_state(payload: Any) -> Optional[str]:
    return _text((_current_address(payload) or {}).get("address_region"))


def detail_city(payload: Any) -> Optional[str]:
    return _text((_current_address(payload) or {}).get("address_locality"))


def detail_zip(payload: Any) -> Optional[str]:
    postal = _text((_current_address(payload) or {}).get("postal_code"))
    if postal and len(postal) >= 5:
        return postal
    return None


def detail_address(payload: Any) -> Optional[str]:
    address = _current_address(payload) or {}
    return _text(address.get("street_address") or address.get("address"))


def detail_age(payload: Any) -> Optional[str]:
    data = unwrap(payload)
    if isinstance(data, dict):
        return _text((_first(data.get("Person Details")) or {}).get("Age"))
    return None


# ============================================================================
# Phone intelligence
# ============================================================================


@dataclass
class PhoneIntel:
    line_type: Optional[str] = None
    carrier_name: Optional[str] = None
    carrier_type: Optional[str] = None
    normalized_carrier: Optional[str] = None


def phone_intel(payload: Any) -> PhoneIntel:
    data = unwrap(payload)
    if not isinstance(data, dict):
        return PhoneIntel()
    portability = data.get("portability") or {}
    carrier = data.get("carrier") or {}
    return PhoneIntel(
        line_type=_text(portability.get("line_type")),
        carrier_name=_text(carrier.get("name")),
        carrier_type=_text(carrier.get("type")),
        normalized_carrier=_text(carrier.get("normalized_carrier")),
    )

"""
Column synonym resolution for scraped lead rows.

Scrapes from different sources name the same concept differently ("Phone",
"phone_number", "Mobile"...). COLUMN_SYNONYMS maps each canonical field to
its accepted column names in priority order; COLUMN_KEYWORDS is a looser
substring fallback for columns nobody listed yet. ``find_value`` is the
single resolver every extractor goes through.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

Row = Dict[str, Any]

# Placeholders written by spreadsheet exports and earlier runs
BLANK_SENTINELS = {"", "EMPTY", "N/A"}

MIN_PHONE_DIGITS = 10

COLUMN_SYNONYMS: Dict[str, List[str]] = {
    "name": ["Name", "Full Name", "full_name", "fullName", "Contact Name"],
    "first_name": ["First Name", "FirstName", "first_name", "firstName", "First"],
    "last_name": ["Last Name", "LastName", "last_name", "lastName", "Last"],
    "phone": [
        "Phone", "Phone Number", "PhoneNumber", "phone_number", "Mobile",
        "Mobile Phone", "Primary Phone", "PrimaryPhone", "Telephone", "Cell",
    ],
    "email": ["Email", "E-mail", "Email Address", "EmailAddress", "email_address"],
    "zip": [
        "Zip", "ZIP", "Zip Code", "ZipCode", "Zipcode", "zip_code",
        "Postal Code", "PostalCode",
    ],
    "city": ["City", "Town"],
    "state": ["State", "ST", "Province", "Region"],
    "address": ["Address", "Street Address", "Street", "Address Line 1", "addressLine1"],
    "linkedin_url": [
        "LinkedIn URL", "LinkedInURL", "linkedin_url", "linkedinUrl",
        "navigationUrl", "profile_url",
    ],
    "dob": ["DOB", "Date Of Birth", "DateOfBirth", "date_of_birth", "Birth Date", "BirthDate"],
    "age": ["Age"],
    "dnc": ["DNC", "DoNotCall", "Do Not Call", "isDoNotCall"],
    "search_filter": ["Search Filter"],
    "platform": ["Platform", "platform", "Source"],
    "date_scraped": ["Date Scraped", "dateScraped", "Scraped At", "created_at"],
}

COLUMN_KEYWORDS: Dict[str, List[str]] = {
    "phone": ["phone", "tel", "mobile"],
    "email": ["email", "e-mail"],
    "zip": ["zip", "postal"],
    "linkedin_url": ["linkedin", "linked-in"],
    "address": ["address", "street"],
    "dob": ["birth", "dob"],
}


def _norm(column: str) -> str:
    return re.sub(r"[\s_\-]+", "", str(column)).lower()


def is_blank(value: Any) -> bool:
    """True for None, empty strings and the "EMPTY"/"N/A" placeholders."""
    if value is None:
        return True
    return str(value).strip().upper() in BLANK_SENTINELS


def find_columns(row: Row, field: str) -> List[str]:
    """All columns of ``row`` that denote ``field``, best match first."""
    by_norm = {}
    for column in row.keys():
        by_norm.setdefault(_norm(column), column)

    found: List[str] = []
    for synonym in COLUMN_SYNONYMS.get(field, []):
        column = by_norm.get(_norm(synonym))
        if column is not None and column not in found:
            found.append(column)

    for keyword in COLUMN_KEYWORDS.get(field, []):
        for column in row.keys():
            if keyword in str(column).lower() and column not in found:
                found.append(column)

    return found


def find_column(row: Row, field: str) -> Optional[str]:
    columns = find_columns(row, field)
    return columns[0] if columns else None


def find_value(row: Row, field: str) -> Optional[str]:
    """First non-blank value (stripped string) among the columns for ``field``."""
    for column in find_columns(row, field):
        value = row.get(column)
        if not is_blank(value):
            return str(value).strip()
    return None


# ============================================================================
# Value cleaning
# ============================================================================


def clean_phone(raw: Any) -> Optional[str]:
    """
    Reduce a phone value to its national digits.

    Strips formatting and a leading +1 / + country prefix. Returns None when
    fewer than 10 digits remain.
    """
    if is_blank(raw):
        return None
    cleaned = re.sub(r"[^\d+]", "", str(raw))
    if cleaned.startswith("+1"):
        cleaned = cleaned[2:]
    elif cleaned.startswith("+"):
        cleaned = cleaned[1:]
    cleaned = cleaned.replace("+", "")
    if len(cleaned) == 11 and cleaned.startswith("1"):
        cleaned = cleaned[1:]
    if len(cleaned) < MIN_PHONE_DIGITS:
        return None
    return cleaned


def is_valid_phone(value: Any) -> bool:
    return clean_phone(value) is not None


def is_valid_email(value: Any) -> bool:
    return not is_blank(value) and "@" in str(value)


# ============================================================================
# Name normalization
# ============================================================================

_EMOJI_RE = re.compile("[\U0001F300-\U0001FAFF\u2600-\u27BF\uFE0F]")

_CREDENTIALS = {
    "md", "do", "pharmd", "cpa", "jd", "mph", "mba", "psyd", "rn", "np", "pa",
    "dds", "dmd", "lcsw", "lmft", "phd", "cfp", "esq", "pmp",
}
_SUFFIXES = {"jr", "sr", "ii", "iii", "iv"}
_STOP_WORDS = {"aka", "dba"}


@dataclass
class NormalizedName:
    first_name: str = ""
    last_name: str = ""
    suffix_raw: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


def _is_credential(token: str) -> bool:
    bare = token.replace(".", "").lower()
    if bare in _CREDENTIALS:
        return True
    if bare.startswith("shrm"):
        return True
    # Compound credentials such as MD/MPH
    if "/" in bare:
        return all(part in _CREDENTIALS for part in bare.split("/") if part)
    return False


def normalize_name(full_name: Any) -> NormalizedName:
    """
    Split a scraped display name into first/last name.

    Emoji, professional credentials ("MD", "PharmD", "CPA", "MD/MPH"...),
    generational suffixes and anything after "AKA"/"DBA" or a comma are
    dropped. First remaining token is the first name, last remaining token
    the last name.
    """
    if is_blank(full_name):
        return NormalizedName()

    cleaned = _EMOJI_RE.sub("", str(full_name))
    cleaned = re.sub(r"\s+", " ", cleaned).strip()

    suffixes: List[str] = []
    if "," in cleaned:
        cleaned, _, tail = cleaned.partition(",")
        suffixes.append(tail.strip())

    tokens: List[str] = []
    for token in cleaned.split(" "):
        if not token:
            continue
        if token.lower().strip(".") in _STOP_WORDS:
            break
        if tokens and (_is_credential(token) or token.lower().strip(".") in _SUFFIXES):
            suffixes.append(token)
            continue
        token = re.sub(r"[^\w\-']", "", token)
        if token:
            tokens.append(token)

    suffix_raw = " ".join(s for s in suffixes if s) or None
    if not tokens:
        return NormalizedName(suffix_raw=suffix_raw)

    return NormalizedName(
        first_name=tokens[0],
        last_name=tokens[-1] if len(tokens) > 1 else "",
        suffix_raw=suffix_raw,
    )


# ============================================================================
# Row extractors
# ============================================================================


def extract_name(row: Row) -> NormalizedName:
    """First/last name from dedicated columns, else from the full name column."""
    first = find_value(row, "first_name")
    last = find_value(row, "last_name")
    if first or last:
        first_part = normalize_name(first)
        last_part = normalize_name(last)
        return NormalizedName(
            first_name=first_part.first_name,
            last_name=last_part.last_name or last_part.first_name,
        )
    return normalize_name(find_value(row, "name"))


def extract_display_name(row: Row) -> str:
    """Name as it should appear in summaries and lead keys."""
    name = find_value(row, "name")
    if name:
        return name
    first = find_value(row, "first_name") or ""
    last = find_value(row, "last_name") or ""
    return f"{first} {last}".strip()


def extract_phone(row: Row) -> Optional[str]:
    for column in find_columns(row, "phone"):
        phone = clean_phone(row.get(column))
        if phone:
            return phone
    return None


def extract_email(row: Row) -> Optional[str]:
    for column in find_columns(row, "email"):
        value = row.get(column)
        if is_valid_email(value):
            return str(value).strip()
    return None


def extract_zip(row: Row) -> Optional[str]:
    for column in find_columns(row, "zip"):
        value = row.get(column)
        if is_blank(value):
            continue
        match = re.search(r"\d{5}", str(value))
        if match:
            return match.group(0)
    return None


def extract_city(row: Row) -> Optional[str]:
    return find_value(row, "city")


def extract_state(row: Row) -> Optional[str]:
    return find_value(row, "state")


def extract_address(row: Row) -> Optional[str]:
    return find_value(row, "address")


def extract_linkedin_url(row: Row) -> Optional[str]:
    return find_value(row, "linkedin_url")


def has_dob_or_age(row: Row) -> bool:
    return bool(find_value(row, "dob") or find_value(row, "age"))

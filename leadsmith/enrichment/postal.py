"""
City/state -> ZIP resolution (offline).

Lookup order:
1. ``zip-lookup-table.json`` in the data directory (exact city + state match)
2. State-level centroid ZIP (largest-city ZIP of the state)

State names are normalized to USPS abbreviations with the ``us`` package.
"""

import json
import logging
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

import us

from leadsmith.config import resolve_data_dir
from leadsmith.utils.file_lock import locked

logger = logging.getLogger(__name__)

ZIP_LOOKUP_FILE = "zip-lookup-table.json"

STATE_ZIP_CENTROIDS: Dict[str, str] = {
    "AL": "35201", "AK": "99501", "AZ": "85001", "AR": "72201", "CA": "90001",
    "CO": "80201", "CT": "06101", "DE": "19901", "FL": "33101", "GA": "30301",
    "HI": "96801", "ID": "83701", "IL": "60601", "IN": "46201", "IA": "50301",
    "KS": "66101", "KY": "40201", "LA": "70101", "ME": "04101", "MD": "21201",
    "MA": "02101", "MI": "48201", "MN": "55401", "MS": "39201", "MO": "63101",
    "MT": "59101", "NE": "68101", "NV": "89101", "NH": "03101", "NJ": "07001",
    "NM": "87101", "NY": "10001", "NC": "28201", "ND": "58101", "OH": "44101",
    "OK": "73101", "OR": "97201", "PA": "19101", "RI": "02901", "SC": "29201",
    "SD": "57101", "TN": "37201", "TX": "75201", "UT": "84101", "VT": "05401",
    "VA": "23201", "WA": "98101", "WV": "25301", "WI": "53201", "WY": "82001",
    "DC": "20001",
}

_DC_ALIASES = {"dc", "d c", "district of columbia", "washington dc", "washington d c"}


def normalize_city(city: str) -> str:
    city = re.sub(r"[^a-z0-9\s]", "", (city or "").lower())
    return re.sub(r"\s+", " ", city).strip()


def normalize_state(state: str) -> str:
    """USPS abbreviation for a state name/abbreviation; upper-cased input if unknown."""
    cleaned = re.sub(r"[^a-z0-9\s]", " ", (state or "").lower())
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if not cleaned:
        return ""
    if cleaned in _DC_ALIASES:
        return "DC"

    found = us.states.lookup(cleaned)
    if found is not None:
        return found.abbr
    return cleaned.upper()


class PostalResolver:
    """Resolves a best-effort ZIP for a city/state pair."""

    def __init__(self, data_dir: Optional[Union[str, Path]] = None):
        self.table_path = Path(data_dir or resolve_data_dir()) / ZIP_LOOKUP_FILE
        self._table: Optional[List[Dict[str, str]]] = None
        self._lock = threading.Lock()

    def _load_table(self) -> List[Dict[str, str]]:
        with self._lock:
            if self._table is None:
                self._table = []
                if self.table_path.exists():
                    try:
                        with open(self.table_path, "r", encoding="utf-8") as f:
                            data = json.load(f)
                        if isinstance(data, list):
                            self._table = [e for e in data if isinstance(e, dict)]
                    except (OSError, json.JSONDecodeError) as e:
                        logger.error(f"Error loading ZIP lookup table: {e}")
            return self._table

    def lookup(self, city: Optional[str], state: Optional[str]) -> Optional[str]:
        """
        ZIP for ``city``/``state``: table match first, then the state centroid.

        Returns:
            5-digit ZIP string, or None if the state is unknown or either input is empty
        """
        if not city or not state:
            return None

        norm_city = normalize_city(city)
        norm_state = normalize_state(state)

        for entry in self._load_table():
            if (
                normalize_city(entry.get("city", "")) == norm_city
                and normalize_state(entry.get("state", "")) == norm_state
                and entry.get("zipcode")
            ):
                return str(entry["zipcode"])

        return STATE_ZIP_CENTROIDS.get(norm_state)

    def add_entry(self, city: str, state: str, zipcode: str) -> None:
        """Add or replace a city/state -> ZIP mapping in the lookup table."""
        norm_city = normalize_city(city)
        norm_state = normalize_state(state)
        entry = {"city": city, "state": state, "zipcode": zipcode, "stateAbbr": norm_state}

        self.table_path.parent.mkdir(parents=True, exist_ok=True)
        with locked(str(self.table_path)):
            with self._lock:
                self._table = None
            table = list(self._load_table())

            for i, existing in enumerate(table):
                if (
                    normalize_city(existing.get("city", "")) == norm_city
                    and normalize_state(existing.get("state", "")) == norm_state
                ):
                    table[i] = entry
                    break
            else:
                table.append(entry)

            with open(self.table_path, "w", encoding="utf-8") as f:
                json.dump(table, f, indent=2)
            with self._lock:
                self._table = table

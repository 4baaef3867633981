"""
Gatekeep: the cost-control decision before the paid age lookup.

Checks run in a fixed order and the first failing check decides:

1. no phone                  -> stop
2. line type is VoIP         -> stop
3. junk/disposable carrier   -> stop
4. geo mismatch              -> stop (only when both the row and the
                                skip-trace record carry city AND state)

States must match exactly after lowercasing ("Texas" and "TX" do not). City
comparison is loose: cities match when either name contains the other
("Austin" vs "Austin Heights").
"""

from dataclasses import dataclass
from typing import Optional

JUNK_CARRIERS = (
    "google voice",
    "textnow",
    "burner",
    "hushed",
    "line2",
    "bandwidth",
    "twilio",
)

VOIP = "voip"

REASON_NO_PHONE = "no_phone"
REASON_VOIP = "voip"
REASON_JUNK_CARRIER = "junk_carrier"
REASON_STATE_MISMATCH = "state_mismatch"
REASON_CITY_MISMATCH = "city_mismatch"


@dataclass
class GateDecision:
    passed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.passed


def is_junk_carrier(carrier_name: Optional[str]) -> bool:
    if not carrier_name:
        return False
    lowered = carrier_name.lower()
    return any(junk in lowered for junk in JUNK_CARRIERS)


def evaluate_gate(
    phone: Optional[str],
    line_type: Optional[str] = None,
    carrier_name: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    traced_city: Optional[str] = None,
    traced_state: Optional[str] = None,
) -> GateDecision:
    """
    Decide whether a lead is worth the paid age lookup.

    Args:
        phone: Best phone found so far
        line_type: Line type from phone intelligence
        carrier_name: Carrier name from phone intelligence
        city, state: Location from the lead row
        traced_city, traced_state: Location from the skip-trace record

    Returns:
        GateDecision (truthy when the lead passes)
    """
    if not phone:
        return GateDecision(False, REASON_NO_PHONE)

    if line_type and line_type.strip().lower() == VOIP:
        return GateDecision(False, REASON_VOIP)

    if is_junk_carrier(carrier_name):
        return GateDecision(False, REASON_JUNK_CARRIER)

    if traced_city and traced_state and city and state:
        # exact after lowercasing, no name/abbreviation folding
        if state.strip().lower() != traced_state.strip().lower():
            return GateDecision(False, REASON_STATE_MISMATCH)

        row_city = city.strip().lower()
        other_city = traced_city.strip().lower()
        if row_city and other_city and row_city not in other_city and other_city not in row_city:
            return GateDecision(False, REASON_CITY_MISMATCH)

    return GateDecision(True)


def should_continue_enrichment(*args, **kwargs) -> bool:
    """Boolean form of ``evaluate_gate``."""
    return evaluate_gate(*args, **kwargs).passed

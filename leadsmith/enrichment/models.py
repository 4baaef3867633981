"""
Enrichment data models.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

# Step identifiers reported to progress callbacks, in pipeline order
STEP_LINKEDIN = "linkedin"
STEP_ZIP = "zip"
STEP_PHONE_DISCOVERY = "phone-discovery"
STEP_TELNYX = "telnyx"
STEP_GATEKEEP = "gatekeep"
STEP_AGE = "age"
STEP_COMPLETE = "complete"

PIPELINE_STEPS = [
    STEP_LINKEDIN,
    STEP_ZIP,
    STEP_PHONE_DISCOVERY,
    STEP_TELNYX,
    STEP_GATEKEEP,
    STEP_AGE,
    STEP_COMPLETE,
]

ERROR_SEPARATOR = " | "


@dataclass
class EnrichmentResult:
    """
    Everything the pipeline learned about one lead.

    Raw payloads are kept for audit. ``error`` accumulates step errors
    joined by " | " instead of being overwritten.
    """

    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None
    zip_code: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    line_type: Optional[str] = None
    carrier_name: Optional[str] = None
    carrier_type: Optional[str] = None
    normalized_carrier: Optional[str] = None
    age: Optional[str] = None
    dob: Optional[str] = None
    person_id: Optional[str] = None
    gate_passed: Optional[bool] = None
    linkedin_data: Optional[Any] = None
    skip_tracing_data: Optional[Any] = None
    person_details_data: Optional[Any] = None
    telnyx_data: Optional[Any] = None
    error: Optional[str] = None

    def add_error(self, message: Optional[str]) -> None:
        if not message:
            return
        self.error = f"{self.error}{ERROR_SEPARATOR}{message}" if self.error else message

    @property
    def errors(self) -> List[str]:
        return self.error.split(ERROR_SEPARATOR) if self.error else []

    def snapshot(self) -> Dict[str, Any]:
        """Known scalar fields (no raw payloads), for progress callbacks."""
        data = asdict(self)
        for key in ("linkedin_data", "skip_tracing_data", "person_details_data", "telnyx_data"):
            data.pop(key, None)
        return {k: v for k, v in data.items() if v not in (None, "")}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StepUpdate:
    step: str
    fields: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


# on_step(update) after every pipeline step of one lead
StepCallback = Callable[[StepUpdate], None]

# on_progress(current, total, row, result) after every lead of a batch
ProgressCallback = Callable[[int, int, Dict[str, Any], Optional[EnrichmentResult]], None]

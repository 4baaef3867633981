"""
Leadsmith Configuration
=======================

Loads environment variables (``.env`` in the project root is honoured) and
the user-editable settings file that toggles external APIs, throttling,
output routing and the error-spike cooldown.

Settings file (YAML or JSON), all keys optional::

    apiToggles:
      telnyx-lookup: {enabled: true, dependencies: [skip-tracing]}
    rateThrottle: normal          # safe | normal | aggressive
    output:
      defaultDestination: csv     # webhook | csv | dashboard | crm
      webhookUrl: https://example.com/hook
    cooldown:
      enabled: true
      errorThreshold: 10
      pauseDuration: 300
"""

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from leadsmith.errors import ConfigError

load_dotenv()

logger = logging.getLogger(__name__)

# ============================================================
# Paths
# ============================================================
DEFAULT_DATA_DIR = "./data"  # overridden per call by LEADSMITH_DATA_DIR / DATA_DIR
SETTINGS_FILE = os.getenv("LEADSMITH_SETTINGS_FILE")  # default: <data_dir>/settings.yaml

# ============================================================
# External API
# ============================================================
API_BASE_URL = os.getenv("LEADSMITH_API_BASE_URL", "http://localhost:3000")
API_TIMEOUT_SECONDS = float(os.getenv("LEADSMITH_API_TIMEOUT", "30"))
PERSON_DETAILS_TIMEOUT_SECONDS = float(os.getenv("LEADSMITH_PERSON_DETAILS_TIMEOUT", "60"))

# ============================================================
# Logging
# ============================================================
LOG_LEVEL = os.getenv("LEADSMITH_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LEADSMITH_LOG_FILE")

# ============================================================
# Pipeline
# ============================================================
INTER_LEAD_DELAY_SECONDS = float(os.getenv("LEADSMITH_INTER_LEAD_DELAY", "0.1"))
SETTINGS_CACHE_TTL = 5.0  # seconds

RATE_THROTTLE_DELAYS = {
    "safe": 3.0,
    "normal": 2.0,
    "aggressive": 1.0,
}


def resolve_data_dir(payload: Optional[Dict[str, Any]] = None) -> str:
    """
    Resolve data directory with precedence: payload.config.data_dir -> env -> ./data.

    Args:
        payload: Optional job/tool payload

    Returns:
        Resolved data directory path
    """
    if payload and payload.get("config", {}).get("data_dir"):
        return payload["config"]["data_dir"]

    env_data_dir = os.environ.get("LEADSMITH_DATA_DIR") or os.environ.get("DATA_DIR")
    if env_data_dir:
        return env_data_dir

    return DEFAULT_DATA_DIR


# ============================================================
# Settings Models
# ============================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ApiToggle(_CamelModel):
    enabled: bool = True
    dependencies: List[str] = Field(default_factory=list)


class RetrySettings(_CamelModel):
    max_retries: int = Field(3, alias="maxRetries")
    initial_delay_ms: int = Field(1000, alias="initialDelayMs")
    max_delay_ms: int = Field(10000, alias="maxDelayMs")
    backoff_multiplier: float = Field(2.0, alias="backoffMultiplier")


class OutputSettings(_CamelModel):
    default_destination: str = Field("csv", alias="defaultDestination")
    webhook_url: Optional[str] = Field(None, alias="webhookUrl")
    field_mapping: Dict[str, str] = Field(default_factory=dict, alias="fieldMapping")
    retry: RetrySettings = Field(default_factory=RetrySettings)


class CooldownSettings(_CamelModel):
    enabled: bool = False
    error_threshold: int = Field(10, alias="errorThreshold")
    pause_duration: int = Field(300, alias="pauseDuration")  # seconds


class Settings(_CamelModel):
    """User-editable runtime settings."""

    api_toggles: Dict[str, ApiToggle] = Field(default_factory=dict, alias="apiToggles")
    rate_throttle: Optional[Literal["safe", "normal", "aggressive"]] = Field(
        None, alias="rateThrottle"
    )
    output: OutputSettings = Field(default_factory=OutputSettings)
    cooldown: CooldownSettings = Field(default_factory=CooldownSettings)


# ============================================================
# API Registry
# ============================================================


class ApiMetadata(BaseModel):
    name: str
    cost_per_1000: float
    dependencies: List[str] = Field(default_factory=list)
    category: Literal["scraping", "enrichment", "compliance", "validation"]
    locked: bool = False


API_REGISTRY: Dict[str, ApiMetadata] = {
    "linkedin-scraper": ApiMetadata(
        name="LinkedIn Scraper", cost_per_1000=15.00, category="scraping", locked=True
    ),
    "facebook-scraper": ApiMetadata(
        name="Facebook Scraper", cost_per_1000=10.00, category="scraping"
    ),
    "skip-tracing": ApiMetadata(
        name="Skip Tracing", cost_per_1000=25.00, category="enrichment", locked=True
    ),
    "telnyx-lookup": ApiMetadata(
        name="Telnyx Lookup",
        cost_per_1000=4.00,
        dependencies=["skip-tracing"],
        category="validation",
        locked=True,
    ),
    "income-by-zip": ApiMetadata(
        name="Income by Zip", cost_per_1000=1.00, category="enrichment"
    ),
    "website-contacts": ApiMetadata(
        name="Website Contacts", cost_per_1000=5.00, category="enrichment"
    ),
    "linkedin-profile": ApiMetadata(
        name="LinkedIn Profile", cost_per_1000=10.00, category="enrichment"
    ),
    "dnc-scrub": ApiMetadata(
        name="DNC Scrubbing", cost_per_1000=0.00, category="compliance", locked=True
    ),
}

# Display names used at call sites -> registry keys
_API_NAME_MAP = {
    "Skip-tracing": "skip-tracing",
    "Skip-tracing (Phone Discovery)": "skip-tracing",
    "Skip-tracing (Person Details)": "skip-tracing",
    "Skip-tracing (Age)": "skip-tracing",
    "Telnyx": "telnyx-lookup",
    "Income by Zip": "income-by-zip",
    "Website Contacts": "website-contacts",
    "LinkedIn Profile": "linkedin-profile",
    "DNC Scrubbing": "dnc-scrub",
}


def map_api_name_to_key(api_name: str) -> str:
    """Map a display API name to its registry key (exact, case-insensitive, then kebab-case)."""
    if api_name in _API_NAME_MAP:
        return _API_NAME_MAP[api_name]

    lower_name = api_name.lower()
    for name, key in _API_NAME_MAP.items():
        if name.lower() == lower_name:
            return key

    kebab = "-".join(lower_name.split())
    return "".join(c for c in kebab if c.isalnum() or c == "-")


def is_api_enabled(api_name: str, settings: Settings) -> bool:
    """
    Check whether an API may be called under the given settings.

    Unknown APIs and APIs without a toggle entry are enabled. An API whose
    toggle is off, or any of whose dependencies (registry or toggle declared)
    is off, is disabled.
    """
    key = map_api_name_to_key(api_name)
    metadata = API_REGISTRY.get(key)
    if metadata is None:
        return True

    toggle = settings.api_toggles.get(key)
    if toggle is not None and not toggle.enabled:
        return False

    dependencies = list(metadata.dependencies)
    if toggle is not None:
        dependencies += [d for d in toggle.dependencies if d not in dependencies]

    for dep in dependencies:
        dep_toggle = settings.api_toggles.get(dep)
        if dep_toggle is not None and not dep_toggle.enabled:
            logger.info(f"{api_name} disabled because dependency {dep} is off")
            return False

    return True


def calculate_cost(settings: Settings, lead_count: int = 1000) -> float:
    """Estimated USD cost of the enabled enrichment/validation APIs for ``lead_count`` leads."""
    total = 0.0
    for key, meta in API_REGISTRY.items():
        if meta.category not in ("enrichment", "validation"):
            continue
        if key not in settings.api_toggles and not meta.locked:
            # Optional APIs only count when explicitly switched on
            continue
        if is_api_enabled(key, settings):
            total += meta.cost_per_1000 * lead_count / 1000
    return round(total, 2)


# ============================================================
# Settings Loading
# ============================================================

_settings_cache: Optional[Settings] = None
_settings_cache_path: Optional[str] = None
_settings_cache_time = 0.0
_settings_lock = threading.Lock()


def default_settings_path(data_dir: Optional[str] = None) -> str:
    if SETTINGS_FILE:
        return SETTINGS_FILE
    return str(Path(data_dir or resolve_data_dir()) / "settings.yaml")


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load settings from a YAML or JSON file.

    A missing file yields defaults. Results are cached for a few seconds so
    per-call toggle checks do not re-read the file.

    Args:
        path: Settings file path (defaults to <data_dir>/settings.yaml)

    Returns:
        Settings instance

    Raises:
        ConfigError: If the file exists but cannot be parsed or validated
    """
    global _settings_cache, _settings_cache_path, _settings_cache_time

    path = path or default_settings_path()

    with _settings_lock:
        now = time.monotonic()
        if (
            _settings_cache is not None
            and _settings_cache_path == path
            and now - _settings_cache_time < SETTINGS_CACHE_TTL
        ):
            return _settings_cache

        settings = _read_settings_file(path)
        _settings_cache = settings
        _settings_cache_path = path
        _settings_cache_time = now
        return settings


def invalidate_settings_cache() -> None:
    """Drop cached settings (call after the settings file changes)."""
    global _settings_cache, _settings_cache_path, _settings_cache_time
    with _settings_lock:
        _settings_cache = None
        _settings_cache_path = None
        _settings_cache_time = 0.0


def _read_settings_file(path: str) -> Settings:
    if not os.path.exists(path):
        return Settings()

    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.endswith((".yaml", ".yml")):
                raw = yaml.safe_load(f)
            else:
                raw = json.load(f)
    except (yaml.YAMLError, json.JSONDecodeError, OSError) as e:
        raise ConfigError(f"Failed to read settings file {path}: {e}")

    try:
        return Settings.model_validate(raw or {})
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {path}: {e}")

"""
Logging setup with PII masking.

Every module logs through ``logging.getLogger(__name__)``. Entry points (CLI,
job runner) call ``setup_logging()`` once to attach a console handler and,
when a data directory is known, a per-run file under ``<data_dir>/logs``.

Lead-level events are logged as JSON through ``log_event()`` with the raw
lead fields; the handlers installed by ``setup_logging()`` mask them on the
way out. Plain-text messages get a best-effort pass for emails and phone
numbers.
"""

import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse


MAX_LOG_FILES = 10

SECRET_KEY = re.compile(r"(^|_)(api_?)?key$|token|secret|password|jwt")
NAME_KEYS = {"name", "fullname", "firstname", "lastname", "first_name", "last_name", "full_name"}
ADDRESS_KEYS = {"address", "street", "addressline1", "address_line1"}

EMAIL_IN_TEXT = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
PHONE_IN_TEXT = re.compile(r"(?<![\w-])(?:\+?1[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}(?![\w])")


# ============================================================================
# PII Masking
# ============================================================================


def mask_email(email: str) -> str:
    """
    Mask an email address, keeping the first character and the domain.

    Args:
        email: Raw email address

    Returns:
        Masked email (e.g., "j***@example.com"); input without "@" is returned as is
    """
    if not email or "@" not in email:
        return email
    local_part, domain = email.split("@", 1)
    return f"{local_part[:1]}***@{domain}"


def mask_phone(phone: str) -> str:
    """
    Mask a phone number down to its last four digits.

    Args:
        phone: Raw phone number, any formatting

    Returns:
        Masked phone (e.g., "XXXXXXXX0100"); four digits or fewer are returned as is
    """
    if not phone:
        return phone
    digits = re.sub(r"[^\d+]", "", str(phone))
    if len(digits) <= 4:
        return phone
    prefix = "+" if digits.startswith("+") else ""
    return f"{prefix}XXXXXXXX{digits[-4:]}"


def mask_linkedin(linkedin_url: str) -> str:
    """Mask the profile slug of a LinkedIn URL ("/in/***")."""
    if not linkedin_url:
        return linkedin_url
    path = urlparse(linkedin_url).path if linkedin_url.startswith("http") else linkedin_url
    if path.startswith("/in/"):
        return "/in/***"
    if path.startswith("/company/"):
        return "/company/***"
    return path


def mask_name(name: str) -> str:
    """Keep the initial of each name part: "Jane Doe" -> "J*** D***"."""
    if not name:
        return name
    return " ".join(f"{part[0]}***" for part in name.split())


def mask_field(key: str, value: Any) -> Any:
    """
    Mask one lead field by its key.

    Secrets are redacted whatever their value; names, emails, phones,
    LinkedIn URLs and street addresses are masked. Other strings get the
    free-text pass (overlong strings are truncated instead).
    """
    if not isinstance(value, str):
        return value

    key_lower = key.lower()
    if SECRET_KEY.search(key_lower):
        return "***REDACTED***"
    if key_lower in NAME_KEYS:
        return mask_name(value)
    if key_lower in ADDRESS_KEYS:
        return "***" if value else value
    if "email" in key_lower and "@" in value:
        return mask_email(value)
    if "phone" in key_lower and any(c.isdigit() for c in value):
        return mask_phone(value)
    if "linkedin" in key_lower and "linkedin.com" in value:
        return mask_linkedin(value)
    if len(value) > 2048:
        return f"{value[:100]}...***TRUNCATED***"
    return mask_text(value)


def mask_text(text: str) -> str:
    """Mask emails and phone numbers embedded in free text."""
    text = EMAIL_IN_TEXT.sub(lambda m: mask_email(m.group(0)), text)
    return PHONE_IN_TEXT.sub(lambda m: mask_phone(m.group(0)), text)


class PIIMaskingFormatter(logging.Formatter):
    """Masks lead PII in JSON messages by key, and in plain text by pattern."""

    def format(self, record):
        msg = record.getMessage()
        try:
            data = json.loads(msg)
        except (json.JSONDecodeError, TypeError):
            data = None

        if isinstance(data, (dict, list)):
            record.msg = json.dumps(self._mask_json(data))
        else:
            record.msg = mask_text(msg)
        record.args = None
        return super().format(record)

    def _mask_json(self, data, key: str = ""):
        if isinstance(data, dict):
            return {k: self._mask_json(v, k) for k, v in data.items()}
        if isinstance(data, list):
            return [self._mask_json(item, key) for item in data]
        return mask_field(key, data)


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    """
    Log a lead-level event as one JSON line.

    Pass raw lead fields (``name``, ``phone``, ``email`` ...); masking is
    applied by the formatter.
    """
    if logger.isEnabledFor(level):
        logger.log(level, json.dumps({"event": event, **fields}, default=str))


# ============================================================================
# Logger Setup
# ============================================================================


def setup_logging(
    name: str = "leadsmith",
    level: int = logging.INFO,
    data_dir: Optional[str] = None,
    log_file_path: Optional[str] = None,
) -> logging.Logger:
    """
    Attach masked console and file handlers to the ``name`` logger.

    Args:
        name: Logger name (child module loggers propagate into it)
        level: Logging level
        data_dir: Data directory; file logs go to ``<data_dir>/logs``
        log_file_path: Explicit log file (wins over ``data_dir``)

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = PIIMaskingFormatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_file_path = log_file_path or os.environ.get("LEADSMITH_LOG_FILE")
    logs_dir = None

    if log_file_path or data_dir:
        try:
            if not log_file_path:
                logs_dir = os.path.join(data_dir, "logs")
                os.makedirs(logs_dir, exist_ok=True)
                timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M")
                log_file_path = os.path.join(logs_dir, f"{name}_{timestamp}.log")
            else:
                os.makedirs(os.path.dirname(log_file_path) or ".", exist_ok=True)

            file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
            logger.debug(f"File logging enabled: {log_file_path}")
        except OSError as e:
            # console logging still works; a read-only data dir must not stop a run
            logger.warning(f"Failed to setup file logging: {e}")

    logger.propagate = False

    if logs_dir:
        cleanup_old_logs(logs_dir, max_log_files=MAX_LOG_FILES)

    return logger


def cleanup_old_logs(logs_dir: str, max_log_files: int = MAX_LOG_FILES) -> None:
    """Delete all but the ``max_log_files`` newest ``.log`` files in ``logs_dir``."""
    if not os.path.isdir(logs_dir):
        return

    paths = [os.path.join(logs_dir, f) for f in os.listdir(logs_dir) if f.endswith(".log")]
    paths.sort(key=os.path.getmtime, reverse=True)

    for path in paths[max_log_files:]:
        try:
            os.remove(path)
        except OSError:
            logging.getLogger(__name__).debug(f"Could not remove old log {path}")

"""
Leadsmith Utilities
===================

Core utilities for:
- logger.py: logging setup with PII masking
- storage.py: durable JSON/text file store under the data directory
- file_lock.py: cross-process lock markers with staleness detection
- rate_limiter.py: FIFO admission + 429 backoff for quota-constrained APIs
"""

"""
Leadsmith Lead Enrichment
=========================

Crash-safe enrichment of scraped contact records (leads).

Features:
- Sequential per-lead pipeline with a cost-saving gatekeep step
- Rate-limited, throttle-aware calls to quota-constrained APIs
- Incremental checkpointing so interrupted runs resume where they stopped
- File-backed job status tracking for background runs
"""

__version__ = "1.0.0"
__author__ = "Leadsmith Team"

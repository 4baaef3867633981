"""
Lead Enrichment Pipeline
========================

- columns.py: column synonym resolution and row field extraction
- postal.py: city/state -> ZIP resolution (offline)
- extractors.py: named extractors for external service payloads
- clients.py: outbound API calls (timeouts, 429 retry, toggles)
- gatekeep.py: cost-control gate before paid age lookups
- summary.py: lead summary records for export and dashboards
- pipeline.py: per-lead multi-step pipeline
- batch.py: batch driver over many rows
"""

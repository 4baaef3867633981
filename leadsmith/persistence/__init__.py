"""
Durable state: the enrichment checkpoint and background job records.
"""

"""
Background job shapes (enrichment, scraping) and the error-spike cooldown.
"""

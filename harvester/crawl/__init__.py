"""Crawl engine: paginated loop, per-run dedup, worker pool and detail fan-out."""

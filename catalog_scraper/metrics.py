"""Prometheus metrics for the catalog scraper."""

from prometheus_client import Counter, Histogram

# Fetch metrics
page_fetches_total = Counter(
    "catalog_page_fetches_total",
    "Total number of page fetches by outcome",
    ["site", "stage", "status"],
)

fetch_retries_total = Counter(
    "catalog_fetch_retries_total",
    "Total number of fetch retries",
    ["site", "reason"],
)

# Pipeline metrics
links_discovered_total = Counter(
    "catalog_links_discovered_total",
    "Total number of product links discovered",
    ["site"],
)

products_persisted_total = Counter(
    "catalog_products_persisted_total",
    "Total number of products handed to persistence",
    ["site", "outcome"],
)

scrape_jobs_total = Counter(
    "catalog_scrape_jobs_total",
    "Total number of scrape jobs by final status",
    ["site", "status"],
)

detail_batch_duration_seconds = Histogram(
    "catalog_detail_batch_duration_seconds",
    "Time spent processing one detail batch",
    ["site"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)

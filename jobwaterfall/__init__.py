"""
Job Waterfall - Main Package

Tiered, resilient acquisition of structured job records from caches,
persistent stores, paid APIs, job-board scrapers and a generative text service.

Modules:
    orchestrator: Waterfall coordination, caching, retry and circuit breaking
    clients: HTTP clients for the structured source and the generative service
    scrapers: Browser-backed job-board adapters behind a rate-limited fetcher
    parsers: Decoding of free-text responses and job-board HTML
    normalizer: Record schemas, validation and payload conversion
    storage: Shared cache and persistent search store
    utils: Shared utilities (logging, exceptions)
"""

__version__ = "0.1.0"
__author__ = "Job Waterfall Team"

__all__ = [
    "__version__",
    "__author__",
]

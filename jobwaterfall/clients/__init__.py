"""
Clients Module

Live upstream sources.

Components:
    - jsearch: Primary structured job API (JSearch via RapidAPI)
    - perplexity: Generative text service
    - generative_source: Generative tier producing validated listings
"""

from jobwaterfall.clients.generative_source import GenerativeJobSource
from jobwaterfall.clients.jsearch import JSearchClient, JSearchClientConfig
from jobwaterfall.clients.perplexity import Completion, PerplexityClient

__all__ = [
    "JSearchClient",
    "JSearchClientConfig",
    "PerplexityClient",
    "Completion",
    "GenerativeJobSource",
]

"""
Wallet Enrichment via the Abstract APIs

Per-wallet building blocks:
- RetryingFetcher: one HTTP call with 429 backoff and bounded retries
- AbstractClient: portal profile picture + on-chain transaction count
- EnrichmentWorker: runs the lookups for one wallet concurrently
- RateLimiter: sliding-window throttle for inbound callers

Usage:
    from enrichment import AbstractClient, EnrichmentWorker

    client = AbstractClient()
    worker = EnrichmentWorker(client.lookups())
    record = worker.enrich(item)
"""

from enrichment.abstract_client import AbstractClient
from enrichment.fetcher import RetryingFetcher
from enrichment.models import Checkpoint, EnrichedRecord, WorkItem
from enrichment.rate_limiter import RateLimiter, RateLimitResult, client_key
from enrichment.worker import EnrichmentWorker

__all__ = [
    'AbstractClient',
    'RetryingFetcher',
    'EnrichmentWorker',
    'RateLimiter',
    'RateLimitResult',
    'client_key',
    'WorkItem',
    'EnrichedRecord',
    'Checkpoint',
]

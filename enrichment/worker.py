"""
Enrichment Worker

Runs every lookup for one wallet concurrently, joins them under a time
bound, and folds the answers onto the record. A lookup that fails, returns
None, or overruns the bound leaves its field at the fallback value.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Optional

from enrichment.models import EnrichedRecord, WorkItem


worker_logger = logging.getLogger('wallet_enrich.worker')
worker_logger.setLevel(logging.INFO)

Lookup = Callable[[WorkItem], Optional[Any]]


class EnrichmentWorker:
    """
    Stateless per-item enricher.

    The executor is the only thing kept between calls; lookups must not
    share mutable state beyond what is thread-safe (fetcher stats).
    """

    def __init__(self, lookups: Dict[str, Lookup], lookup_timeout: float = 60.0):
        """
        Args:
            lookups: {field: fn(item) -> value or None}; fields are 'pfp' / 'txs'
            lookup_timeout: Upper bound in seconds for all lookups of one item
        """
        unknown = set(lookups) - {'pfp', 'txs'}
        if unknown:
            raise ValueError(f"unsupported enrichment fields: {sorted(unknown)}")

        self.lookups = lookups
        self.lookup_timeout = lookup_timeout
        self.executor = ThreadPoolExecutor(
            max_workers=max(len(lookups), 1) * 2,
            thread_name_prefix='enrich'
        )

    def enrich(self, item: WorkItem) -> EnrichedRecord:
        record = EnrichedRecord.fallback(item)
        if not self.lookups:
            return record

        futures = {
            self.executor.submit(fn, item): name
            for name, fn in self.lookups.items()
        }
        done, not_done = wait(futures, timeout=self.lookup_timeout)

        for future in not_done:
            future.cancel()
            worker_logger.warning(json.dumps({
                'event': 'lookup_timeout',
                'field': futures[future],
                'wallet': item.wallet,
                'timeout_s': self.lookup_timeout,
            }))

        for future in done:
            name = futures[future]
            try:
                value = future.result()
            except Exception as e:
                worker_logger.warning(json.dumps({
                    'event': 'lookup_failed',
                    'field': name,
                    'wallet': item.wallet,
                    'error': repr(e),
                }))
                continue

            if value is None:
                continue
            self._apply(record, name, value)

        return record

    @staticmethod
    def _apply(record: EnrichedRecord, name: str, value: Any):
        if name == 'pfp':
            # Empty avatar from the portal keeps whatever we already had
            record.pfp = str(value) or record.pfp
            record.pfp_found = True
        elif name == 'txs':
            try:
                record.txs = int(value)
            except (TypeError, ValueError):
                return
            record.txs_found = True

    def close(self):
        self.executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

"""
Retrying HTTP fetcher for the enrichment APIs.

One outbound call with bounded retries:
- 429            -> sleep (attempt + 1) * base_delay, try again
- other non-2xx  -> give up immediately (None)
- network error  -> fixed short delay, retry until attempts run out

Always returns parsed JSON or None, never raises for HTTP/network trouble,
so one bad wallet cannot abort a batch.
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Optional

import requests


fetch_logger = logging.getLogger('wallet_enrich.fetcher')
fetch_logger.setLevel(logging.INFO)

DEFAULT_HEADERS = {
    'accept': 'application/json',
    'user-agent': 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36',
}


class RetryingFetcher:
    """
    Wraps requests with the retry policy above.

    Safe to share between threads: the only shared state is the stats
    counters, updated under a lock.
    """

    def __init__(self,
                 base_delay: float = 5.0,
                 network_retry_delay: float = 1.0,
                 timeout: float = 10,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            base_delay: Seconds per attempt for the 429 backoff
            network_retry_delay: Seconds to wait after a connection error
            timeout: Per-request timeout in seconds
            sleep: Injected for tests
        """
        self.base_delay = base_delay
        self.network_retry_delay = network_retry_delay
        self.timeout = timeout
        self.sleep = sleep

        # Stats
        self.lock = threading.Lock()
        self.calls = 0
        self.rate_limited = 0
        self.failures = 0

    def fetch(self, url: str, method: str = 'GET', max_retries: int = 3,
              headers: Optional[dict] = None, **kwargs) -> Optional[Any]:
        """
        Issue the request, returning decoded JSON or None.

        Extra kwargs (params, json, ...) go straight to requests.
        """
        merged_headers = dict(DEFAULT_HEADERS)
        if headers:
            merged_headers.update(headers)

        for attempt in range(max_retries):
            self._count('calls')
            try:
                response = requests.request(
                    method,
                    url,
                    headers=merged_headers,
                    timeout=self.timeout,
                    **kwargs
                )
            except requests.RequestException as e:
                if attempt == max_retries - 1:
                    self._count('failures')
                    fetch_logger.warning(json.dumps({
                        'event': 'fetch_exhausted',
                        'url': url,
                        'attempts': attempt + 1,
                        'error': str(e),
                    }))
                    return None
                self.sleep(self.network_retry_delay)
                continue

            if response.status_code == 429:
                self._count('rate_limited')
                wait = (attempt + 1) * self.base_delay
                fetch_logger.info(json.dumps({
                    'event': 'rate_limited',
                    'url': url,
                    'attempt': attempt + 1,
                    'wait_s': wait,
                }))
                self.sleep(wait)
                continue

            if not 200 <= response.status_code < 300:
                self._count('failures')
                fetch_logger.warning(json.dumps({
                    'event': 'http_error',
                    'url': url,
                    'status': response.status_code,
                }))
                return None

            try:
                return response.json()
            except ValueError:
                self._count('failures')
                fetch_logger.warning(json.dumps({
                    'event': 'bad_json',
                    'url': url,
                }))
                return None

        self._count('failures')
        fetch_logger.warning(json.dumps({
            'event': 'fetch_exhausted',
            'url': url,
            'attempts': max_retries,
        }))
        return None

    def _count(self, name: str):
        with self.lock:
            setattr(self, name, getattr(self, name) + 1)

    def get_stats(self) -> dict:
        with self.lock:
            return {
                'calls': self.calls,
                'rate_limited': self.rate_limited,
                'failures': self.failures,
            }

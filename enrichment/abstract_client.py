"""
Abstract Chain Lookups for Wallet Enrichment

Per-wallet lookups used by the EnrichmentWorker:
- Profile picture from the Abstract Portal API
- Transaction count from the Abstract RPC (nonce) or the block explorer

Each lookup maps one HTTP response to a field value, or None when the
upstream has nothing usable. Retries and 429 handling live in RetryingFetcher.

Usage:
    from enrichment.abstract_client import AbstractClient

    client = AbstractClient()
    pfp = client.get_profile_picture(user_id)
    txs = client.get_transaction_count('0x...')
"""

from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

from enrichment.fetcher import RetryingFetcher
from enrichment.models import WorkItem
from wallet_utils.config import ABSTRACT_RPC_URL, EXPLORER_API, PORTAL_API


class AbstractClient:
    """
    Abstract Portal + chain client.

    tx_source='rpc' uses eth_getTransactionCount (outgoing nonce, one cheap call).
    tx_source='explorer' counts txlist entries (slower, includes incoming).
    """

    def __init__(self,
                 fetcher: Optional[RetryingFetcher] = None,
                 portal_api: str = PORTAL_API,
                 explorer_api: str = EXPLORER_API,
                 rpc_url: str = ABSTRACT_RPC_URL,
                 tx_source: str = 'rpc',
                 max_retries: int = 3):
        if tx_source not in ('rpc', 'explorer'):
            raise ValueError(f"unknown tx_source {tx_source!r}")

        self.fetcher = fetcher or RetryingFetcher()
        self.portal_api = portal_api.rstrip('/')
        self.explorer_api = explorer_api
        self.rpc_url = rpc_url
        self.tx_source = tx_source
        self.max_retries = max_retries

    def _rpc_call(self, method: str, params: list) -> Optional[str]:
        """Make JSON-RPC call to the Abstract node"""
        result = self.fetcher.fetch(
            self.rpc_url,
            method='POST',
            max_retries=self.max_retries,
            json={
                'jsonrpc': '2.0',
                'id': 1,
                'method': method,
                'params': params
            },
            headers={'content-type': 'application/json'},
        )
        if not isinstance(result, dict) or 'error' in result:
            return None
        return result.get('result')

    def get_profile_picture(self, user_id: Any) -> Optional[str]:
        """Portal avatar URL, None if the portal has no such user"""
        if user_id is None or user_id == '':
            return None

        data = self.fetcher.fetch(
            f"{self.portal_api}/user/{quote(str(user_id), safe='')}",
            max_retries=self.max_retries,
        )
        if not isinstance(data, dict) or not isinstance(data.get('user'), dict):
            return None

        user = data['user']
        return user.get('overrideProfilePictureUrl') or user.get('avatar') or ''

    def get_transaction_count(self, address: str) -> Optional[int]:
        """Get transaction count for address"""
        if not address:
            return None
        address = str(address).lower()
        if self.tx_source == 'explorer':
            return self._explorer_tx_count(address)

        result = self._rpc_call('eth_getTransactionCount', [address, 'latest'])
        if not result:
            return None
        try:
            return int(result, 16)
        except (TypeError, ValueError):
            return None

    def _explorer_tx_count(self, address: str) -> Optional[int]:
        params = {
            'module': 'account',
            'action': 'txlist',
            'address': address,
            'startblock': '0',
            'endblock': '99999999',
            'page': '1',
            'offset': '10000',
            'sort': 'asc',
        }
        data = self.fetcher.fetch(self.explorer_api, params=params,
                                  max_retries=self.max_retries)
        if not isinstance(data, dict):
            return None
        if data.get('status') == '1' and isinstance(data.get('result'), list):
            return len(data['result'])
        # Explorer answers status '0' / "No transactions found" for fresh wallets
        if data.get('message') == 'No transactions found':
            return 0
        return None

    def lookups(self) -> Dict[str, Callable[[WorkItem], Any]]:
        """Field name -> lookup(item), in the shape EnrichmentWorker expects"""
        return {
            'pfp': lambda item: self.get_profile_picture(item.id),
            'txs': lambda item: self.get_transaction_count(item.wallet),
        }

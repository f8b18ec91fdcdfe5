from unittest.mock import MagicMock

import pytest

from enrichment.abstract_client import AbstractClient
from enrichment.models import WorkItem


def _client(response, tx_source: str = 'rpc') -> AbstractClient:
    fetcher = MagicMock()
    fetcher.fetch.return_value = response
    return AbstractClient(fetcher=fetcher, tx_source=tx_source)


def test_profile_picture_prefers_override_url() -> None:
    client = _client({'user': {'overrideProfilePictureUrl': 'https://a/1.png', 'avatar': 'https://a/old.png'}})

    assert client.get_profile_picture('abc') == 'https://a/1.png'
    url = client.fetcher.fetch.call_args[0][0]
    assert url == 'https://backend.portal.abs.xyz/api/user/abc'


def test_profile_picture_falls_back_to_avatar() -> None:
    client = _client({'user': {'avatar': 'https://a/avatar.png'}})
    assert client.get_profile_picture('abc') == 'https://a/avatar.png'


def test_profile_picture_none_without_user_block() -> None:
    assert _client({'error': 'not found'}).get_profile_picture('abc') is None
    assert _client(None).get_profile_picture('abc') is None


def test_rpc_transaction_count_parses_hex() -> None:
    client = _client({'jsonrpc': '2.0', 'id': 1, 'result': '0x1a'})

    assert client.get_transaction_count('0xabc') == 26
    kwargs = client.fetcher.fetch.call_args[1]
    assert kwargs['method'] == 'POST'
    assert kwargs['json']['method'] == 'eth_getTransactionCount'
    assert kwargs['json']['params'] == ['0xabc', 'latest']


def test_rpc_zero_nonce_is_a_real_zero() -> None:
    assert _client({'result': '0x0'}).get_transaction_count('0xabc') == 0


def test_rpc_error_yields_none() -> None:
    assert _client({'error': {'code': -32000}}).get_transaction_count('0xabc') is None
    assert _client(None).get_transaction_count('0xabc') is None


def test_explorer_counts_txlist_entries() -> None:
    client = _client({'status': '1', 'result': [{}, {}, {}]}, tx_source='explorer')

    assert client.get_transaction_count('0xabc') == 3
    params = client.fetcher.fetch.call_args[1]['params']
    assert params['action'] == 'txlist'
    assert params['address'] == '0xabc'


def test_explorer_no_transactions_is_zero() -> None:
    client = _client({'status': '0', 'message': 'No transactions found', 'result': []}, tx_source='explorer')
    assert client.get_transaction_count('0xabc') == 0


def test_lookups_map_fields_to_item_attributes() -> None:
    client = AbstractClient(fetcher=MagicMock())
    client.get_profile_picture = MagicMock(return_value='p')
    client.get_transaction_count = MagicMock(return_value=3)
    item = WorkItem(id='u1', wallet='0xabc')

    lookups = client.lookups()

    assert lookups['pfp'](item) == 'p'
    assert lookups['txs'](item) == 3
    client.get_profile_picture.assert_called_once_with('u1')
    client.get_transaction_count.assert_called_once_with('0xabc')


def test_unknown_tx_source_rejected() -> None:
    with pytest.raises(ValueError):
        AbstractClient(tx_source='graph')


def test_address_is_lowercased_for_lookups_only() -> None:
    client = _client({'result': '0x2'})
    item = WorkItem(id='u1', wallet='0xABCdef')

    assert client.lookups()['txs'](item) == 2
    assert client.fetcher.fetch.call_args[1]['json']['params'] == ['0xabcdef', 'latest']
    assert item.wallet == '0xABCdef'


def test_numeric_user_id_is_looked_up() -> None:
    client = _client({'user': {'avatar': 'https://a/7.png'}})

    assert client.get_profile_picture(7) == 'https://a/7.png'
    assert client.fetcher.fetch.call_args[0][0].endswith('/user/7')

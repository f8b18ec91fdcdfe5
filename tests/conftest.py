from typing import List

import pytest

from enrichment.models import WorkItem
from enrichment.worker import EnrichmentWorker
from pipeline.batch_runner import BatchRunner
from pipeline.stores import JsonCheckpointStore, JsonFileSource, JsonlFileSink


def make_items(n: int, prefix: str = 'u') -> List[WorkItem]:
    return [
        WorkItem(id=f'{prefix}{i}', wallet=f'0x{i:040x}', name=f'wallet {i}', extra={'tierV2': i % 6 + 1})
        for i in range(n)
    ]


def fake_lookups(fail: bool = False):
    """pfp = 'pfp-<id>', txs = index parsed from the wallet address"""
    if fail:
        return {'pfp': lambda item: None, 'txs': lambda item: None}
    return {
        'pfp': lambda item: f'https://cdn.example/{item.id}.png',
        'txs': lambda item: int(item.wallet, 16),
    }


@pytest.fixture
def data_dir(tmp_path):
    return str(tmp_path)


@pytest.fixture
def source(data_dir):
    return JsonFileSource(data_dir)


@pytest.fixture
def sink(data_dir):
    return JsonlFileSink(data_dir)


@pytest.fixture
def checkpoints(data_dir):
    return JsonCheckpointStore(data_dir)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_runner(sink, checkpoints, sleeps):
    workers = []

    def _make(lookups=None, batch_size=10, **kwargs):
        worker = EnrichmentWorker(lookups if lookups is not None else fake_lookups(), lookup_timeout=5.0)
        workers.append(worker)
        return BatchRunner(
            worker, sink, checkpoints,
            batch_size=batch_size,
            sleep=sleeps.append,
            **kwargs
        )

    yield _make
    for worker in workers:
        worker.close()

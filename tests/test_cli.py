import csv

import pytest

import run_enrich
from enrichment.worker import EnrichmentWorker
from pipeline.stores import JsonCheckpointStore, JsonFileSource, JsonlFileSink
from tests.conftest import fake_lookups, make_items


@pytest.fixture(autouse=True)
def offline(monkeypatch):
    monkeypatch.setattr(run_enrich, 'build_worker', lambda settings: EnrichmentWorker(fake_lookups()))
    monkeypatch.setenv('ENRICH_REQUEST_DELAY', '0')
    monkeypatch.setenv('ENRICH_BATCH_DELAY', '0')


def test_run_writes_output_and_checkpoint(data_dir, capsys) -> None:
    JsonFileSource(data_dir).write_items('gold', make_items(7))

    assert run_enrich.main(['--data-dir', data_dir, 'run', 'gold', '3']) == 0

    assert len(JsonlFileSink(data_dir).load_partial('gold')) == 7
    assert JsonCheckpointStore(data_dir).load('gold').last_index == 7
    out = capsys.readouterr().out
    assert 'WALLET ENRICHMENT: gold' in out
    assert 'Batch 3/3' in out


def test_run_exports_csv(data_dir, tmp_path) -> None:
    JsonFileSource(data_dir).write_items('gold', make_items(4))
    csv_path = str(tmp_path / 'out.csv')

    assert run_enrich.main(['--data-dir', data_dir, 'run', 'gold', '--csv', csv_path]) == 0

    with open(csv_path, newline='') as f:
        assert len(list(csv.DictReader(f))) == 4


def test_chunk_command(data_dir, capsys) -> None:
    JsonFileSource(data_dir).write_items('gold', make_items(5))

    assert run_enrich.main(['--data-dir', data_dir, 'chunk', 'gold', '0', '--chunk-size', '2']) == 0

    assert len(JsonlFileSink(data_dir).load_partial('gold')) == 2
    assert 'next chunk: 1' in capsys.readouterr().out


def test_worker_command_runs_its_shard(data_dir) -> None:
    JsonFileSource(data_dir).write_items('gold-worker-2', make_items(3))

    assert run_enrich.main(['worker', 'gold', '2', '--data-dir', data_dir]) == 0

    assert len(JsonlFileSink(data_dir).load_partial('gold-worker-2')) == 3


def test_missing_dataset_exits_nonzero(data_dir, capsys) -> None:
    assert run_enrich.main(['--data-dir', data_dir, 'run', 'nope']) == 1
    assert 'input not found' in capsys.readouterr().out


@pytest.mark.parametrize('argv', [
    ['run', 'gold', '0'],
    ['run', 'gold', '10', '-1'],
    ['run-parallel', 'gold', 'x'],
    ['chunk', 'gold', '-2'],
])
def test_invalid_arguments(argv) -> None:
    with pytest.raises(SystemExit) as exc_info:
        run_enrich.main(argv)
    assert exc_info.value.code == 2

import json
import os

from enrichment.models import Checkpoint, EnrichedRecord, WorkItem
from pipeline.stores import input_path, output_path, progress_path
from tests.conftest import make_items


def test_source_reads_wallet_array(source, data_dir) -> None:
    with open(input_path('gold', data_dir), 'w') as f:
        json.dump([
            {'id': 'a', 'wallet': '0xABC', 'name': 'Alice', 'tierV2': 4},
            {'id': 'b', 'wallet': '0xdef', 'name': 'Bob', 'pfp': 'p.png', 'txs': 9},
        ], f)

    items = source.load_items('gold')

    assert items[0].wallet == '0xABC'
    assert items[0].extra == {'tierV2': 4}
    assert items[1].pfp == 'p.png'
    assert items[1].txs == 9


def test_source_round_trips_extra_fields(source) -> None:
    items = make_items(3)
    source.write_items('gold-worker-0', items)

    assert source.exists('gold-worker-0')
    assert source.load_items('gold-worker-0') == items

    source.delete('gold-worker-0')
    assert not source.exists('gold-worker-0')


def test_sink_appends_and_loads_in_order(sink) -> None:
    items = make_items(5)
    sink.append_results('gold', [EnrichedRecord(item=i, pfp='x', txs=1, pfp_found=True) for i in items[:2]])
    sink.append_results('gold', [EnrichedRecord.fallback(i) for i in items[2:]])

    loaded = sink.load_partial('gold')

    assert [r.id for r in loaded] == [i.id for i in items]
    assert loaded[0].pfp_found and not loaded[0].txs_found
    assert not loaded[4].pfp_found


def test_sink_missing_output_is_none(sink) -> None:
    assert sink.load_partial('nope') is None


def test_sink_ignores_torn_trailing_line(sink, data_dir) -> None:
    items = make_items(3)
    sink.append_results('gold', [EnrichedRecord.fallback(i) for i in items])
    with open(output_path('gold', data_dir), 'a') as f:
        f.write('{"id": "u3", "wal')

    assert len(sink.load_partial('gold')) == 3


def test_sink_replace_overwrites_without_temp_leftovers(sink, data_dir) -> None:
    items = make_items(4)
    sink.append_results('gold', [EnrichedRecord.fallback(i) for i in items])
    sink.replace('gold', [EnrichedRecord.fallback(items[0])])

    assert [r.id for r in sink.load_partial('gold')] == ['u0']
    assert not os.path.exists(output_path('gold', data_dir) + '.tmp')


def test_enriched_output_keeps_original_fields(sink, data_dir) -> None:
    item = WorkItem(id='a', wallet='0xabc', name='Alice', extra={'tierV2': 2, 'badges': [1]})
    sink.append_results('gold', [EnrichedRecord(item=item, pfp='p', txs=0, txs_found=True)])

    with open(output_path('gold', data_dir)) as f:
        row = json.loads(f.readline())

    assert row == {
        'id': 'a', 'wallet': '0xabc', 'name': 'Alice', 'tierV2': 2, 'badges': [1],
        'pfp': 'p', 'txs': 0, 'pfpFound': False, 'txsFound': True,
    }


def test_checkpoint_save_load_clear(checkpoints, data_dir) -> None:
    checkpoints.save('gold', Checkpoint(last_index=50, total=200, timestamp=1700000000))

    loaded = checkpoints.load('gold')
    assert loaded.last_index == 50
    assert loaded.total == 200
    assert loaded.timestamp == 1700000000
    assert not loaded.is_complete

    with open(progress_path('gold', data_dir)) as f:
        raw = json.load(f)
    assert raw['lastIndex'] == 50
    assert raw['timestamp'].startswith('2023-11-14T')

    checkpoints.clear('gold')
    assert checkpoints.load('gold') is None


def test_corrupt_checkpoint_is_ignored(checkpoints, data_dir) -> None:
    with open(progress_path('gold', data_dir), 'w') as f:
        f.write('{not json')

    assert checkpoints.load('gold') is None


def test_input_fields_pass_through_unchanged(source, sink, data_dir) -> None:
    with open(input_path('gold', data_dir), 'w') as f:
        json.dump([{'id': 7, 'wallet': '0xABCdef', 'name': None, 'tierV2': '3'}], f)

    item = source.load_items('gold')[0]
    sink.append_results('gold', [EnrichedRecord(item=item, pfp='p', txs=2, pfp_found=True, txs_found=True)])

    with open(output_path('gold', data_dir)) as f:
        row = json.loads(f.readline())
    assert row['id'] == 7
    assert row['wallet'] == '0xABCdef'
    assert row['name'] is None
    assert row['tierV2'] == '3'


def test_line_missing_its_newline_is_torn(sink, data_dir) -> None:
    items = make_items(2)
    sink.append_results('gold', [EnrichedRecord.fallback(items[0])])
    with open(output_path('gold', data_dir), 'a') as f:
        f.write(json.dumps(EnrichedRecord.fallback(items[1]).to_dict()))

    assert [r.id for r in sink.load_partial('gold')] == ['u0']


def test_truncate_keeps_exact_prefix_bytes(sink, data_dir) -> None:
    items = make_items(5)
    sink.append_results('gold', [EnrichedRecord.fallback(i) for i in items])
    path = output_path('gold', data_dir)
    with open(path, 'rb') as f:
        lines = f.read().splitlines(keepends=True)
    with open(path, 'ab') as f:
        f.write(b'{"id": "u5", "wal')

    assert sink.truncate('gold', 3)

    with open(path, 'rb') as f:
        assert f.read() == b''.join(lines[:3])
    assert not sink.truncate('gold', 3)


def test_truncate_drops_torn_tail_at_count(sink, data_dir) -> None:
    items = make_items(3)
    sink.append_results('gold', [EnrichedRecord.fallback(i) for i in items])
    with open(output_path('gold', data_dir), 'a') as f:
        f.write('{"id": "u3"')

    assert sink.truncate('gold', 3)
    assert len(sink.load_partial('gold')) == 3
    sink.append_results('gold', [EnrichedRecord.fallback(make_items(4)[3])])
    assert [r.id for r in sink.load_partial('gold')] == ['u0', 'u1', 'u2', 'u3']


def test_truncate_to_zero_and_missing_file(sink) -> None:
    assert not sink.truncate('nope', 0)

    sink.append_results('gold', [EnrichedRecord.fallback(i) for i in make_items(2)])
    assert sink.truncate('gold', 0)
    assert sink.load_partial('gold') == []

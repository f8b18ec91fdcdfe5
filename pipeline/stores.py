"""
JSON file collaborators for the pipeline.

Layout under DATA_DIR, per dataset id:
    wallets-{ds}.json             input, JSON array of wallet dicts
    wallets-{ds}-enriched.jsonl   output, one enriched wallet per line
    wallets-{ds}-progress.json    checkpoint

Shard workers use the dataset id "{ds}-worker-{i}", so they get their own
three files without any special casing.

Write failures are not caught here: an unwritable sink must stop the run.
"""

import json
import logging
import os
import time
from typing import List, Optional

from enrichment.models import Checkpoint, EnrichedRecord, WorkItem
from wallet_utils.config import get_data_path


store_logger = logging.getLogger('wallet_enrich.stores')


def input_path(dataset_id: str, data_dir: Optional[str] = None) -> str:
    return get_data_path(f'wallets-{dataset_id}.json', data_dir)


def output_path(dataset_id: str, data_dir: Optional[str] = None) -> str:
    return get_data_path(f'wallets-{dataset_id}-enriched.jsonl', data_dir)


def progress_path(dataset_id: str, data_dir: Optional[str] = None) -> str:
    return get_data_path(f'wallets-{dataset_id}-progress.json', data_dir)


def _atomic_write(path: str, text: str):
    """Write to a temp file then rename over the target"""
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    tmp_path = f'{path}.tmp'
    with open(tmp_path, 'w', encoding='utf-8') as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


def _remove(path: str):
    if os.path.exists(path):
        os.remove(path)


class JsonFileSource:
    """Reads the full wallet list once per run"""

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = data_dir

    def load_items(self, dataset_id: str) -> List[WorkItem]:
        path = input_path(dataset_id, self.data_dir)
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a JSON array of wallets")
        return [WorkItem.from_dict(d) for d in data]

    def write_items(self, dataset_id: str, items: List[WorkItem]):
        _atomic_write(
            input_path(dataset_id, self.data_dir),
            json.dumps([item.to_dict() for item in items], indent=2)
        )

    def exists(self, dataset_id: str) -> bool:
        return os.path.exists(input_path(dataset_id, self.data_dir))

    def delete(self, dataset_id: str):
        _remove(input_path(dataset_id, self.data_dir))


class JsonlFileSink:
    """Append-only JSONL output; truncate for resume trims, replace for merges"""

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = data_dir

    def append_results(self, dataset_id: str, records: List[EnrichedRecord]):
        if not records:
            return
        path = output_path(dataset_id, self.data_dir)
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)

        with open(path, 'a', encoding='utf-8') as f:
            for record in records:
                f.write(json.dumps(record.to_dict()) + '\n')
            f.flush()
            os.fsync(f.fileno())

    def _complete_lines(self, path: str):
        """
        Yield (byte_end, record) for every intact line, in order.

        A line without its trailing newline, or one that does not parse,
        is a torn write; nothing after it is trusted.
        """
        offset = 0
        with open(path, 'rb') as f:
            for line_num, raw in enumerate(f, start=1):
                if not raw.endswith(b'\n'):
                    self._warn_torn(path, line_num)
                    return
                offset += len(raw)
                text = raw.decode('utf-8').strip()
                if not text:
                    continue
                try:
                    record = EnrichedRecord.from_dict(json.loads(text))
                except (json.JSONDecodeError, UnicodeDecodeError):
                    self._warn_torn(path, line_num)
                    return
                yield offset, record

    @staticmethod
    def _warn_torn(path: str, line_num: int):
        store_logger.warning(json.dumps({
            'event': 'torn_output_line',
            'path': path,
            'line': line_num,
        }))

    def load_partial(self, dataset_id: str) -> Optional[List[EnrichedRecord]]:
        path = output_path(dataset_id, self.data_dir)
        if not os.path.exists(path):
            return None
        return [record for _, record in self._complete_lines(path)]

    def truncate(self, dataset_id: str, count: int) -> bool:
        """
        Cut the output file back to its first `count` records, byte for byte.

        Drops records past `count` and any torn tail. Returns True when
        anything was removed.
        """
        path = output_path(dataset_id, self.data_dir)
        if not os.path.exists(path):
            return False

        keep = 0
        if count > 0:
            for n, (offset, _) in enumerate(self._complete_lines(path), start=1):
                keep = offset
                if n == count:
                    break

        if os.path.getsize(path) == keep:
            return False
        with open(path, 'r+b') as f:
            f.truncate(keep)
            f.flush()
            os.fsync(f.fileno())
        return True

    def replace(self, dataset_id: str, records: List[EnrichedRecord]):
        text = ''.join(json.dumps(r.to_dict()) + '\n' for r in records)
        _atomic_write(output_path(dataset_id, self.data_dir), text)

    def delete(self, dataset_id: str):
        _remove(output_path(dataset_id, self.data_dir))


class JsonCheckpointStore:
    """Small durable progress marker, one JSON file per dataset"""

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = data_dir

    def save(self, dataset_id: str, checkpoint: Checkpoint):
        if not checkpoint.timestamp:
            checkpoint.timestamp = time.time()
        _atomic_write(progress_path(dataset_id, self.data_dir),
                      json.dumps(checkpoint.to_dict()))

    def load(self, dataset_id: str) -> Optional[Checkpoint]:
        path = progress_path(dataset_id, self.data_dir)
        if not os.path.exists(path):
            return None
        with open(path, 'r', encoding='utf-8') as f:
            try:
                return Checkpoint.from_dict(json.load(f))
            except (json.JSONDecodeError, TypeError, ValueError):
                store_logger.warning(json.dumps({
                    'event': 'invalid_checkpoint',
                    'path': path,
                }))
                return None

    def clear(self, dataset_id: str):
        _remove(progress_path(dataset_id, self.data_dir))

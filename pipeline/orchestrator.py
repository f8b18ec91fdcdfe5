"""
Parallel Orchestrator

Fans a dataset out to K worker processes, one shard each, then merges.

Flow:
1. Plan shards, write wallets-{ds}-worker-{i}.json per shard plus a manifest
2. Spawn `python -m run_enrich worker <ds> <i>` per shard
3. Wait; the first non-zero exit terminates every other worker
4. Read shard outputs in shard order, concatenate, write the merged output
5. Delete shard inputs / outputs / checkpoints

Each worker is a plain BatchRunner on dataset "{ds}-worker-{i}", so it has
its own checkpoint. When a run fails, shard files are left in place; rerunning
with the same input and worker count reuses them, and shards that already
finished exit immediately.

Usage:
    orch = ParallelOrchestrator(source, sink, checkpoints, worker_count=10)
    result = orch.run_all('gold')
    print(result.stats.with_pfp)
"""

import hashlib
import json
import logging
import os
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from enrichment.models import Checkpoint, EnrichedRecord, WorkItem
from pipeline.errors import WorkerFailedError
from pipeline.sharding import Shard, plan_shards
from pipeline.stats import EnrichmentStats, compute_stats
from wallet_utils.config import get_data_path


orchestrator_logger = logging.getLogger('wallet_enrich.orchestrator')
orchestrator_logger.setLevel(logging.INFO)

CommandFactory = Callable[[str, int], List[str]]


def shard_dataset_id(dataset_id: str, shard_index: int) -> str:
    return f'{dataset_id}-worker-{shard_index}'


def manifest_path(dataset_id: str, data_dir: Optional[str] = None) -> str:
    return get_data_path(f'wallets-{dataset_id}-shards.json', data_dir)


def _fingerprint(items: List[WorkItem]) -> str:
    digest = hashlib.sha256()
    for item in items:
        digest.update(f'{item.id}:{item.wallet}\n'.encode('utf-8'))
    return digest.hexdigest()


@dataclass
class MergeResult:
    records: List[EnrichedRecord]
    stats: EnrichmentStats
    shards: List[Shard]


class ParallelOrchestrator:
    """Runs one worker process per shard and merges their outputs"""

    def __init__(self,
                 source,
                 sink,
                 checkpoints,
                 worker_count: int = 10,
                 batch_size: int = 50,
                 data_dir: Optional[str] = None,
                 command_factory: Optional[CommandFactory] = None,
                 poll_interval: float = 0.5,
                 grace_period: float = 5.0):
        """
        Args:
            source / sink / checkpoints: JSON file collaborators (see stores)
            worker_count: Max parallel worker processes
            batch_size: Passed to each worker's BatchRunner
            data_dir: Where shard files live (defaults to DATA_DIR)
            command_factory: (dataset_id, shard_index) -> argv; defaults to
                             the run_enrich worker subcommand
            poll_interval: Seconds between worker status checks
            grace_period: Seconds to wait after terminate() before kill()
        """
        if worker_count < 1:
            raise ValueError(f"worker_count must be >= 1, got {worker_count}")

        self.source = source
        self.sink = sink
        self.checkpoints = checkpoints
        self.worker_count = worker_count
        self.batch_size = batch_size
        self.data_dir = data_dir
        self.command_factory = command_factory or self.default_command
        self.poll_interval = poll_interval
        self.grace_period = grace_period
        self._relays: List[threading.Thread] = []

    def default_command(self, dataset_id: str, shard_index: int) -> List[str]:
        cmd = [
            sys.executable, '-m', 'run_enrich', 'worker',
            dataset_id, str(shard_index),
            '--batch-size', str(self.batch_size),
        ]
        if self.data_dir:
            cmd += ['--data-dir', self.data_dir]
        return cmd

    # -- shard files -------------------------------------------------------

    def prepare(self, dataset_id: str, items: List[WorkItem]) -> List[Shard]:
        """Plan shards and write their inputs, reusing a matching earlier plan"""
        shards = plan_shards(len(items), self.worker_count)
        manifest = {
            'total': len(items),
            'worker_count': self.worker_count,
            'fingerprint': _fingerprint(items),
            'shards': [s.to_dict() for s in shards],
        }

        previous = self._load_manifest(dataset_id)
        if previous == manifest and all(
            self.source.exists(shard_dataset_id(dataset_id, s.index)) for s in shards
        ):
            print(f"✓ Reusing shard files from an earlier run ({len(shards)} shards)")
            return shards

        if previous:
            # Different input or worker count: old shard state is meaningless
            self.cleanup(dataset_id, [Shard.from_dict(d) for d in previous.get('shards', [])])

        for shard in shards:
            shard_ds = shard_dataset_id(dataset_id, shard.index)
            self.source.write_items(shard_ds, items[shard.start:shard.end])
            self.sink.delete(shard_ds)
            self.checkpoints.clear(shard_ds)
            print(f"Worker {shard.index}: wallets {shard.start + 1}-{shard.end} "
                  f"({shard.size} wallets)")

        path = manifest_path(dataset_id, self.data_dir)
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, 'w') as f:
            json.dump(manifest, f, indent=2)

        return shards

    def _load_manifest(self, dataset_id: str) -> Optional[dict]:
        path = manifest_path(dataset_id, self.data_dir)
        if not os.path.exists(path):
            return None
        with open(path, 'r') as f:
            try:
                return json.load(f)
            except json.JSONDecodeError:
                return None

    def cleanup(self, dataset_id: str, shards: List[Shard]):
        for shard in shards:
            shard_ds = shard_dataset_id(dataset_id, shard.index)
            self.source.delete(shard_ds)
            self.sink.delete(shard_ds)
            self.checkpoints.clear(shard_ds)

        path = manifest_path(dataset_id, self.data_dir)
        if os.path.exists(path):
            os.remove(path)

    # -- processes -----------------------------------------------------------

    def _relay(self, shard_index: int, proc: subprocess.Popen):
        """Forward a worker's output with a [W{i}] prefix"""
        try:
            for line in proc.stdout:
                sys.stdout.write(f"[W{shard_index}] {line}")
                sys.stdout.flush()
        finally:
            proc.stdout.close()

    def spawn(self, dataset_id: str, shards: List[Shard]) -> Dict[int, subprocess.Popen]:
        env = dict(os.environ)
        env['PYTHONUNBUFFERED'] = '1'
        if self.data_dir:
            env['DATA_DIR'] = self.data_dir

        procs = {}
        self._relays = []
        try:
            for shard in shards:
                proc = subprocess.Popen(
                    self.command_factory(dataset_id, shard.index),
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    bufsize=1,
                    env=env,
                )
                procs[shard.index] = proc

                relay = threading.Thread(target=self._relay, args=(shard.index, proc), daemon=True)
                relay.start()
                self._relays.append(relay)
        except OSError:
            self.terminate_all(procs)
            raise

        orchestrator_logger.info(json.dumps({
            'event': 'workers_started',
            'dataset': dataset_id,
            'workers': len(procs),
        }))
        return procs

    def terminate_all(self, procs: Dict[int, subprocess.Popen]):
        """Stop every worker still running: terminate, then kill stragglers"""
        alive = [p for p in procs.values() if p.poll() is None]
        for proc in alive:
            proc.terminate()

        deadline = time.time() + self.grace_period
        for proc in alive:
            try:
                proc.wait(timeout=max(0.0, deadline - time.time()))
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()

    def wait_all(self, procs: Dict[int, subprocess.Popen]) -> Dict[int, int]:
        """
        Block until every worker exits.

        Returns {shard_index: exit_code} for failed workers. On the first
        failure the remaining workers are terminated.
        """
        running = dict(procs)
        failed = {}

        try:
            while running:
                for i, proc in list(running.items()):
                    code = proc.poll()
                    if code is None:
                        continue
                    del running[i]
                    if code != 0:
                        failed[i] = code
                        print(f"❌ Worker {i} exited with code {code}")

                if failed and running:
                    print(f"Stopping {len(running)} remaining workers...")
                    self.terminate_all(running)
                    for i, proc in running.items():
                        failed.setdefault(i, proc.returncode)
                    running = {}

                if running:
                    time.sleep(self.poll_interval)
        except KeyboardInterrupt:
            self.terminate_all(procs)
            raise
        finally:
            for relay in self._relays:
                relay.join(timeout=1.0)

        return failed

    # -- merge -------------------------------------------------------------

    def merge(self, dataset_id: str, shards: List[Shard]) -> List[EnrichedRecord]:
        """Concatenate shard outputs in shard order"""
        merged = []
        incomplete = {}

        for shard in shards:
            records = self.sink.load_partial(shard_dataset_id(dataset_id, shard.index)) or []
            if len(records) != shard.size:
                incomplete[shard.index] = None
                orchestrator_logger.error(json.dumps({
                    'event': 'shard_incomplete',
                    'dataset': dataset_id,
                    'shard': shard.index,
                    'expected': shard.size,
                    'found': len(records),
                }))
                continue
            merged.extend(records)

        if incomplete:
            raise WorkerFailedError(incomplete)
        return merged

    def run_all(self, dataset_id: str) -> MergeResult:
        items = self.source.load_items(dataset_id)
        print(f"Total {dataset_id} wallets: {len(items):,}")

        if not items:
            self.sink.replace(dataset_id, [])
            return MergeResult(records=[], stats=compute_stats([]), shards=[])

        shards = self.prepare(dataset_id, items)
        print(f"\nStarting {len(shards)} parallel workers...\n")

        procs = self.spawn(dataset_id, shards)
        failed = self.wait_all(procs)
        if failed:
            orchestrator_logger.error(json.dumps({
                'event': 'workers_failed',
                'dataset': dataset_id,
                'failed': {str(k): v for k, v in failed.items()},
            }))
            raise WorkerFailedError(failed)

        print("\nAll workers complete!")
        print("\nMerging results...")
        merged = self.merge(dataset_id, shards)

        self.sink.replace(dataset_id, merged)
        self.checkpoints.save(dataset_id, Checkpoint(
            last_index=len(merged), total=len(items), timestamp=time.time()
        ))
        self.cleanup(dataset_id, shards)
        print(f"Merged {len(merged):,} wallets")

        return MergeResult(records=merged, stats=compute_stats(merged), shards=shards)

"""
Checkpointed batch runner.

Walks a wallet list in fixed-size batches, one wallet at a time with a
small delay between wallets, and after every batch:
    1. appends the batch to the sink
    2. saves the checkpoint (only after the output write succeeded)
    3. prints a progress line

A crash leaves the last checkpoint pointing at output that is already on
disk, so a rerun resumes from there without reprocessing.

States: idle -> running -> checkpointed -> running -> ... -> completed
"""

import json
import logging
import math
import time
from typing import Callable, List, Tuple

from enrichment.models import Checkpoint, EnrichedRecord, WorkItem
from enrichment.worker import EnrichmentWorker
from pipeline.errors import ResumeError


runner_logger = logging.getLogger('wallet_enrich.runner')
runner_logger.setLevel(logging.INFO)

DELAY_BETWEEN_BATCHES = 2.0   # seconds
DELAY_BETWEEN_REQUESTS = 0.1  # seconds

IDLE = 'idle'
RUNNING = 'running'
CHECKPOINTED = 'checkpointed'
COMPLETED = 'completed'


class BatchRunner:
    """Resumable sequential enrichment of one wallet list"""

    def __init__(self,
                 worker: EnrichmentWorker,
                 sink,
                 checkpoints,
                 batch_size: int = 50,
                 request_delay: float = DELAY_BETWEEN_REQUESTS,
                 batch_delay: float = DELAY_BETWEEN_BATCHES,
                 sleep: Callable[[float], None] = time.sleep,
                 label: str = ''):
        """
        Args:
            worker: Enriches a single wallet
            sink: append_results / load_partial / truncate / replace
            checkpoints: save / load
            batch_size: Wallets per checkpoint
            request_delay: Pause between wallets inside a batch
            batch_delay: Pause between batches
            label: Prefix for progress lines (e.g. 'Worker 3')
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.worker = worker
        self.sink = sink
        self.checkpoints = checkpoints
        self.batch_size = batch_size
        self.request_delay = request_delay
        self.batch_delay = batch_delay
        self.sleep = sleep
        self.label = label

        self.state = IDLE
        self.current_batch = 0

    def _print(self, msg: str):
        print(f"{self.label}: {msg}" if self.label else msg, flush=True)

    def process_slice(self, items: List[WorkItem]) -> List[EnrichedRecord]:
        """Enrich items in order with pacing. No persistence."""
        results = []
        for i, item in enumerate(items):
            results.append(self.worker.enrich(item))

            # Small delay between individual requests
            if i < len(items) - 1 and self.request_delay > 0:
                self.sleep(self.request_delay)
        return results

    def _resume_point(self, dataset_id: str, total: int, start_index: int,
                      resume: bool) -> Tuple[int, List[EnrichedRecord]]:
        """Work out where to start and which prior records to keep"""
        checkpoint = self.checkpoints.load(dataset_id) if resume else None

        if checkpoint and checkpoint.last_index > 0:
            if checkpoint.total and checkpoint.total != total:
                raise ResumeError(
                    f"{dataset_id}: checkpoint was written for {checkpoint.total} wallets, "
                    f"input now has {total}"
                )
            start = min(checkpoint.last_index, total)
            self._print(f"✓ Found checkpoint: {start:,}/{total:,}")
        else:
            start = max(0, min(start_index, total))

        if start == 0:
            self.sink.replace(dataset_id, [])
            return 0, []

        existing = self.sink.load_partial(dataset_id) or []
        if len(existing) < start:
            raise ResumeError(
                f"{dataset_id}: resuming from {start} but only {len(existing)} "
                f"enriched wallets are saved"
            )

        # Drop whatever sits past the checkpoint: records written before the
        # checkpoint save, or a line torn by the crash
        if self.sink.truncate(dataset_id, start):
            runner_logger.info(json.dumps({
                'event': 'trim_output',
                'dataset': dataset_id,
                'saved': len(existing),
                'checkpoint': start,
            }))
        existing = existing[:start]

        self._print(f"Loaded {len(existing):,} already enriched wallets")
        return start, existing

    def run(self, dataset_id: str, items: List[WorkItem], start_index: int = 0,
            resume: bool = True) -> List[EnrichedRecord]:
        """
        Enrich items[start:] batch by batch.

        Returns the complete output list (prior records + new ones).
        Sink / checkpoint errors propagate; the last checkpoint stays valid.
        """
        total = len(items)
        start, enriched = self._resume_point(dataset_id, total, start_index, resume)

        if start >= total:
            self._print(f"✅ Already fully processed ({start:,} >= {total:,} wallets)")
            self.state = COMPLETED
            return enriched

        total_batches = math.ceil((total - start) / self.batch_size)
        self._print(f"Starting from index {start:,}, batch size {self.batch_size} "
                    f"({total_batches} batches)")

        for batch_num in range(total_batches):
            self.state = RUNNING
            self.current_batch = batch_num
            batch_start = start + batch_num * self.batch_size
            batch_end = min(batch_start + self.batch_size, total)

            batch = self.process_slice(items[batch_start:batch_end])

            # Output first, checkpoint second
            self.sink.append_results(dataset_id, batch)
            enriched.extend(batch)
            self.checkpoints.save(dataset_id, Checkpoint(
                last_index=batch_end,
                total=total,
                timestamp=time.time(),
            ))
            self.state = CHECKPOINTED

            self._report(batch_num, total_batches, batch_end, total, batch)

            if batch_num < total_batches - 1 and self.batch_delay > 0:
                self.sleep(self.batch_delay)

        self.state = COMPLETED
        self._print(f"Done! Enriched {len(enriched):,} wallets.")
        return enriched

    def _report(self, batch_num: int, total_batches: int, current: int, total: int,
                batch: List[EnrichedRecord]):
        pfp_found = sum(1 for r in batch if r.pfp_found)
        txs_found = sum(1 for r in batch if r.txs_found)
        avg_txs = sum(r.txs for r in batch) / len(batch) if batch else 0
        pct = current / total * 100 if total else 100

        self._print(
            f"Batch {batch_num + 1}/{total_batches}: {current:,}/{total:,} ({pct:.1f}%) - "
            f"pfp {pfp_found}/{len(batch)}, txs {txs_found}/{len(batch)}, "
            f"avg txs {round(avg_txs)}"
        )
        runner_logger.debug(json.dumps({
            'event': 'batch_checkpointed',
            'batch': batch_num + 1,
            'last_index': current,
            'total': total,
        }))

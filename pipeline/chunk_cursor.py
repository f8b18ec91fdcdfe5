"""
Stateless chunk cursor.

For callers that can only hold a process for a short slice of time (a cron
hitting an HTTP endpoint). Each call names a chunk index; we enrich exactly
that slice, append it to the sink, and say which chunk comes next. Nothing
is remembered between calls.

    chunk 0 -> nextChunk 1 -> ... -> nextChunk None (done)

Calling with a chunk past the end is a no-op and can be repeated safely.
Chunk 0 starts a new pass and overwrites the output of the previous one.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from enrichment.models import WorkItem
from pipeline.batch_runner import BatchRunner
from pipeline.errors import InvalidChunkError


@dataclass
class ChunkResult:
    chunk: int
    chunk_size: int
    total_chunks: int
    processed: int
    next_chunk: Optional[int]
    pfp_found: int = 0
    txs_found: int = 0

    @property
    def done(self) -> bool:
        return self.next_chunk is None

    def to_dict(self) -> dict:
        return {
            'success': True,
            'chunk': self.chunk,
            'totalChunks': self.total_chunks,
            'processed': self.processed,
            'nextChunk': self.next_chunk,
            'pfpFound': self.pfp_found,
            'txsFound': self.txs_found,
        }


def parse_chunk_param(raw: Optional[str]) -> int:
    """Query-string chunk value -> index. Missing means chunk 0."""
    if raw is None or raw == '':
        return 0
    text = str(raw).strip()
    # Plain ASCII digits only: no sign, no underscores
    if not (text.isascii() and text.isdigit()):
        raise InvalidChunkError(f"Invalid chunk parameter: {raw!r}")
    return int(text)


class ChunkCursor:
    """Runs one chunk per call through the BatchRunner's per-item loop"""

    def __init__(self, runner: BatchRunner, sink, chunk_size: int = 50):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.runner = runner
        self.sink = sink
        self.chunk_size = chunk_size

    def bounds(self, chunk_index: int, n_items: int) -> Tuple[int, int]:
        start = chunk_index * self.chunk_size
        return start, min(start + self.chunk_size, n_items)

    def handle(self, dataset_id: str, chunk_index: int,
               items: List[WorkItem]) -> ChunkResult:
        if isinstance(chunk_index, bool) or not isinstance(chunk_index, int) or chunk_index < 0:
            raise InvalidChunkError(f"Invalid chunk index: {chunk_index!r}")

        n = len(items)
        total_chunks = math.ceil(n / self.chunk_size)
        start, end = self.bounds(chunk_index, n)

        if start >= n:
            return ChunkResult(
                chunk=chunk_index,
                chunk_size=self.chunk_size,
                total_chunks=total_chunks,
                processed=0,
                next_chunk=None,
            )

        print(f"Enriching chunk {chunk_index + 1}/{total_chunks}: "
              f"wallets {start + 1}-{end} of {n}", flush=True)

        results = self.runner.process_slice(items[start:end])
        if chunk_index == 0:
            # Chunk 0 opens a new pass
            self.sink.replace(dataset_id, results)
        else:
            self.sink.append_results(dataset_id, results)

        return ChunkResult(
            chunk=chunk_index,
            chunk_size=self.chunk_size,
            total_chunks=total_chunks,
            processed=len(results),
            next_chunk=None if end == n else chunk_index + 1,
            pfp_found=sum(1 for r in results if r.pfp_found),
            txs_found=sum(1 for r in results if r.txs_found),
        )

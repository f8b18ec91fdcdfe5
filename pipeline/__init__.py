"""
Sharded, checkpointed enrichment pipeline.

Components:
- plan_shards: split N wallets into K near-equal contiguous shards
- BatchRunner: resumable batch loop with a checkpoint after every batch
- ParallelOrchestrator: one worker process per shard, then merge
- ChunkCursor: stateless one-chunk-per-call variant for cron endpoints
"""

from pipeline.batch_runner import BatchRunner
from pipeline.chunk_cursor import ChunkCursor, ChunkResult, parse_chunk_param
from pipeline.errors import (
    InvalidChunkError, PipelineError, ResumeError, WorkerFailedError
)
from pipeline.orchestrator import MergeResult, ParallelOrchestrator
from pipeline.sharding import Shard, plan_shards, split_items
from pipeline.stats import EnrichmentStats, compute_stats, export_csv
from pipeline.stores import JsonCheckpointStore, JsonFileSource, JsonlFileSink

__all__ = [
    'BatchRunner',
    'ChunkCursor',
    'ChunkResult',
    'parse_chunk_param',
    'ParallelOrchestrator',
    'MergeResult',
    'Shard',
    'plan_shards',
    'split_items',
    'EnrichmentStats',
    'compute_stats',
    'export_csv',
    'JsonFileSource',
    'JsonlFileSink',
    'JsonCheckpointStore',
    'PipelineError',
    'ResumeError',
    'InvalidChunkError',
    'WorkerFailedError',
]

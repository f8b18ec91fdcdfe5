#!/usr/bin/env python3
"""
Wallet Enrichment - Main Runner

Adds profile pictures and transaction counts to a wallet dataset
(data/wallets-<dataset>.json).

Usage:
    # Single process, resumable (checkpoint after every batch)
    python run_enrich.py run gold 50 0

    # Forked workers, one shard each, merged at the end
    python run_enrich.py run-parallel gold 10

    # One chunk, as the cron endpoint would do it
    python run_enrich.py chunk gold 3

    # HTTP chunk endpoint
    python run_enrich.py serve --port 8000

Exit code is non-zero only for fatal failures (missing input, unwritable
output, a worker crash). Wallets whose lookups fail still count as done.
"""

import argparse
import os
import sys
from dataclasses import replace

from enrichment import AbstractClient, EnrichmentWorker, RetryingFetcher
from pipeline import (
    BatchRunner, ChunkCursor, JsonCheckpointStore, JsonFileSource, JsonlFileSink,
    ParallelOrchestrator, PipelineError, compute_stats, export_csv
)
from pipeline.orchestrator import shard_dataset_id
from pipeline.stats import print_stats
from pipeline.stores import output_path
from wallet_utils.config import Settings, configure_logging


def build_worker(settings: Settings) -> EnrichmentWorker:
    client = AbstractClient(
        fetcher=RetryingFetcher(
            base_delay=settings.retry_base_delay,
            network_retry_delay=settings.network_retry_delay,
        ),
        portal_api=settings.portal_api,
        explorer_api=settings.explorer_api,
        rpc_url=settings.rpc_url,
        tx_source=settings.tx_source,
    )
    return EnrichmentWorker(client.lookups())


def build_runner(settings: Settings, batch_size: int, label: str = '') -> BatchRunner:
    return BatchRunner(
        build_worker(settings),
        JsonlFileSink(settings.data_dir),
        JsonCheckpointStore(settings.data_dir),
        batch_size=batch_size,
        request_delay=settings.request_delay,
        batch_delay=settings.batch_delay,
        label=label,
    )


def banner(title: str):
    print("=" * 60)
    print(title)
    print("=" * 60)


def cmd_run(args, settings: Settings) -> int:
    batch_size = args.batch_size or settings.batch_size
    source = JsonFileSource(settings.data_dir)
    items = source.load_items(args.dataset)

    banner(f"WALLET ENRICHMENT: {args.dataset}")
    print(f"Loaded {len(items):,} {args.dataset} wallets")

    runner = build_runner(settings, batch_size)
    try:
        records = runner.run(args.dataset, items, start_index=args.start_index,
                             resume=not args.no_resume)
    finally:
        runner.worker.close()

    print(f"\nOutput saved to: {output_path(args.dataset, settings.data_dir)}")
    print_stats(compute_stats(records))

    if args.csv:
        export_csv(records, args.csv)
        print(f"CSV written to: {args.csv}")
    return 0


def cmd_run_parallel(args, settings: Settings) -> int:
    worker_count = args.worker_count or settings.worker_count

    banner(f"PARALLEL WALLET ENRICHMENT: {args.dataset}")
    print(f"Workers: {worker_count}, batch size: {args.batch_size or settings.batch_size}")

    orchestrator = ParallelOrchestrator(
        JsonFileSource(settings.data_dir),
        JsonlFileSink(settings.data_dir),
        JsonCheckpointStore(settings.data_dir),
        worker_count=worker_count,
        batch_size=args.batch_size or settings.batch_size,
        data_dir=settings.data_dir,
    )
    result = orchestrator.run_all(args.dataset)

    print(f"\nOutput saved to: {output_path(args.dataset, settings.data_dir)}")
    print_stats(result.stats)

    if args.csv:
        export_csv(result.records, args.csv)
        print(f"CSV written to: {args.csv}")
    return 0


def cmd_worker(args, settings: Settings) -> int:
    """Entry point for one shard, spawned by run-parallel"""
    shard_ds = shard_dataset_id(args.dataset, args.shard_index)
    items = JsonFileSource(settings.data_dir).load_items(shard_ds)

    runner = build_runner(settings, args.batch_size or settings.batch_size,
                          label=f"Worker {args.shard_index}")
    try:
        runner.run(shard_ds, items)
    finally:
        runner.worker.close()

    print(f"Worker {args.shard_index} complete!")
    return 0


def cmd_chunk(args, settings: Settings) -> int:
    items = JsonFileSource(settings.data_dir).load_items(args.dataset)
    runner = build_runner(settings, settings.batch_size)
    cursor = ChunkCursor(runner, runner.sink, chunk_size=args.chunk_size or settings.chunk_size)

    try:
        result = cursor.handle(args.dataset, args.chunk_index, items)
    finally:
        runner.worker.close()

    print(f"Processed {result.processed} wallets "
          f"(chunk {result.chunk + 1}/{result.total_chunks}), next chunk: {result.next_chunk}")
    return 0


def cmd_serve(args, settings: Settings) -> int:
    import uvicorn

    from server import create_app

    uvicorn.run(create_app(settings), host=args.host, port=args.port)
    return 0


def non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}")
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return parsed


def positive_int(value: str) -> int:
    parsed = non_negative_int(value)
    if parsed == 0:
        raise argparse.ArgumentTypeError("expected a positive integer")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Wallet pfp / transaction-count enrichment')
    parser.add_argument('--data-dir', default=None,
                        help='Data directory (default: $DATA_DIR or ./data)')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('run', help='Resumable single-process enrichment')
    p.add_argument('dataset', help='Dataset id, e.g. gold (reads wallets-gold.json)')
    p.add_argument('batch_size', nargs='?', type=positive_int, default=None)
    p.add_argument('start_index', nargs='?', type=non_negative_int, default=0)
    p.add_argument('--no-resume', action='store_true',
                   help='Ignore an existing checkpoint')
    p.add_argument('--csv', default=None, help='Also export the result as CSV')
    p.set_defaults(func=cmd_run)

    p = sub.add_parser('run-parallel', help='Shard across worker processes and merge')
    p.add_argument('dataset')
    p.add_argument('worker_count', nargs='?', type=positive_int, default=None)
    p.add_argument('--batch-size', type=positive_int, default=None)
    p.add_argument('--csv', default=None)
    p.set_defaults(func=cmd_run_parallel)

    p = sub.add_parser('worker', help=argparse.SUPPRESS)
    p.add_argument('dataset')
    p.add_argument('shard_index', type=non_negative_int)
    p.add_argument('--batch-size', type=positive_int, default=None)
    p.add_argument('--data-dir', dest='worker_data_dir', default=None)
    p.set_defaults(func=cmd_worker)

    p = sub.add_parser('chunk', help='Enrich a single chunk and append it')
    p.add_argument('dataset')
    p.add_argument('chunk_index', type=non_negative_int)
    p.add_argument('--chunk-size', type=positive_int, default=None)
    p.set_defaults(func=cmd_chunk)

    p = sub.add_parser('serve', help='Run the chunk HTTP endpoint')
    p.add_argument('--host', default='0.0.0.0')
    p.add_argument('--port', type=int, default=int(os.environ.get('PORT', '8000')))
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    settings = Settings.from_env()
    data_dir = getattr(args, 'worker_data_dir', None) or args.data_dir
    if data_dir:
        settings = replace(settings, data_dir=data_dir)

    try:
        return args.func(args, settings)
    except FileNotFoundError as e:
        print(f"\nError: input not found: {e.filename}")
        return 1
    except PipelineError as e:
        print(f"\nError: {e}")
        return 1
    except OSError as e:
        print(f"\nError: could not write progress, stopping: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted - progress up to the last checkpoint is saved")
        return 130


if __name__ == '__main__':
    sys.exit(main())

"""
Aggregate statistics and CSV export for enriched wallets.

"Found" counts wallets whose lookup actually answered; "with" counts
wallets whose final value is non-empty / non-zero (fallbacks included).
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List

import polars as pl

from enrichment.models import EnrichedRecord


@dataclass
class EnrichmentStats:
    total: int = 0
    with_pfp: int = 0
    with_txs: int = 0
    pfp_found: int = 0
    txs_found: int = 0
    total_txs: int = 0
    avg_txs: float = 0.0
    sub_tiers: Dict[str, int] = field(default_factory=dict)

    @property
    def pfp_fallback(self) -> int:
        return self.total - self.pfp_found

    @property
    def txs_fallback(self) -> int:
        return self.total - self.txs_found

    def to_dict(self) -> dict:
        d = asdict(self)
        d['pfp_fallback'] = self.pfp_fallback
        d['txs_fallback'] = self.txs_fallback
        return d


def records_frame(records: List[EnrichedRecord]) -> pl.DataFrame:
    """One row per wallet with the columns stats and exports need"""
    return pl.DataFrame(
        {
            'id': [None if r.id is None else str(r.id) for r in records],
            'wallet': [r.wallet for r in records],
            'name': [r.item.name for r in records],
            'pfp': [r.pfp for r in records],
            'txs': [r.txs for r in records],
            'pfp_found': [r.pfp_found for r in records],
            'txs_found': [r.txs_found for r in records],
            'tierV2': [_as_tier(r.item.extra.get('tierV2')) for r in records],
        },
        schema={
            'id': pl.Utf8,
            'wallet': pl.Utf8,
            'name': pl.Utf8,
            'pfp': pl.Utf8,
            'txs': pl.Int64,
            'pfp_found': pl.Boolean,
            'txs_found': pl.Boolean,
            'tierV2': pl.Int64,
        },
    )


def _as_tier(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def compute_stats(records: List[EnrichedRecord]) -> EnrichmentStats:
    if not records:
        return EnrichmentStats()

    df = records_frame(records)
    row = df.select(
        pl.len().alias('total'),
        (pl.col('pfp').str.len_chars() > 0).sum().alias('with_pfp'),
        (pl.col('txs') > 0).sum().alias('with_txs'),
        pl.col('pfp_found').sum().alias('pfp_found'),
        pl.col('txs_found').sum().alias('txs_found'),
        pl.col('txs').sum().alias('total_txs'),
        pl.col('txs').mean().alias('avg_txs'),
    ).row(0, named=True)

    # Sub-tier within the dataset tier: tierV2 1..3 -> 1..3, 4..6 -> 1..3, ...
    sub_tiers = {}
    tiered = df.filter(pl.col('tierV2').is_not_null())
    if tiered.height:
        counts = (
            tiered
            .with_columns((((pl.col('tierV2') - 1) % 3) + 1).alias('sub_tier'))
            .group_by('sub_tier')
            .len()
            .sort('sub_tier')
        )
        sub_tiers = {str(r['sub_tier']): int(r['len']) for r in counts.iter_rows(named=True)}

    return EnrichmentStats(
        total=int(row['total']),
        with_pfp=int(row['with_pfp']),
        with_txs=int(row['with_txs']),
        pfp_found=int(row['pfp_found']),
        txs_found=int(row['txs_found']),
        total_txs=int(row['total_txs'] or 0),
        avg_txs=round(float(row['avg_txs'] or 0), 2),
        sub_tiers=sub_tiers,
    )


def export_csv(records: List[EnrichedRecord], path: str):
    """Write enriched wallets to CSV"""
    records_frame(records).write_csv(path)


def print_stats(stats: EnrichmentStats, label: str = 'Stats'):
    """Human summary, matching the runner's progress output"""
    total = stats.total or 1
    print(f"\n{label}:")
    print(f"  Wallets with PFP: {stats.with_pfp:,}/{stats.total:,} ({stats.with_pfp / total * 100:.0f}%)")
    print(f"  Wallets with Txs: {stats.with_txs:,}/{stats.total:,} ({stats.with_txs / total * 100:.0f}%)")
    print(f"  Lookups answered: pfp {stats.pfp_found:,}, txs {stats.txs_found:,} "
          f"(fallback: pfp {stats.pfp_fallback:,}, txs {stats.txs_fallback:,})")
    print(f"  Total transactions: {stats.total_txs:,} (avg {stats.avg_txs:,.1f})")

    if stats.sub_tiers:
        print("  Sub-tier distribution:")
        for tier, count in stats.sub_tiers.items():
            print(f"    {tier}: {count:,}")

"""
Wallet record types shared by the enrichment and pipeline packages.

WorkItem is the raw wallet as loaded from the dataset file.
EnrichedRecord is the same wallet plus pfp / txs, with a flag per field
telling whether the value came from a successful lookup or from the fallback.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Keys with a dedicated attribute; everything else rides along in `extra`
CORE_KEYS = ('id', 'wallet', 'name', 'pfp', 'txs')


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class WorkItem:
    """
    Unenriched wallet record. Never mutated by the pipeline.

    id / wallet / name are carried exactly as read (no casting, no case
    folding) so the output row matches the input row.
    """
    id: Any
    wallet: str
    name: Optional[str] = None
    pfp: Optional[str] = None
    txs: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict) -> 'WorkItem':
        return cls(
            id=d.get('id'),
            wallet=d.get('wallet'),
            name=d.get('name'),
            pfp=d.get('pfp') or None,
            txs=_as_int(d.get('txs')),
            extra={k: v for k, v in d.items() if k not in CORE_KEYS},
        )

    def to_dict(self) -> dict:
        d = dict(self.extra)
        d.update({'id': self.id, 'wallet': self.wallet, 'name': self.name})
        if self.pfp is not None:
            d['pfp'] = self.pfp
        if self.txs is not None:
            d['txs'] = self.txs
        return d


@dataclass
class EnrichedRecord:
    """
    WorkItem plus enrichment fields.

    pfp_found / txs_found separate "upstream answered" from "fell back",
    so txs == 0 with txs_found=True means the chain really reports zero.
    """
    item: WorkItem
    pfp: str = ''
    txs: int = 0
    pfp_found: bool = False
    txs_found: bool = False

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def wallet(self) -> str:
        return self.item.wallet

    def to_dict(self) -> dict:
        d = self.item.to_dict()
        d['pfp'] = self.pfp
        d['txs'] = self.txs
        d['pfpFound'] = self.pfp_found
        d['txsFound'] = self.txs_found
        return d

    @classmethod
    def from_dict(cls, d: dict) -> 'EnrichedRecord':
        raw = {k: v for k, v in d.items() if k not in ('pfpFound', 'txsFound')}
        item = WorkItem.from_dict(raw)
        return cls(
            item=item,
            pfp=item.pfp or '',
            txs=item.txs or 0,
            pfp_found=bool(d.get('pfpFound', False)),
            txs_found=bool(d.get('txsFound', False)),
        )

    @classmethod
    def fallback(cls, item: WorkItem) -> 'EnrichedRecord':
        """Record with every field at its prior/default value"""
        return cls(item=item, pfp=item.pfp or '', txs=item.txs or 0)


@dataclass
class Checkpoint:
    """Durable marker of how far a resumable run has progressed"""
    last_index: int
    total: int
    timestamp: float = 0

    def to_dict(self) -> dict:
        return {
            'lastIndex': self.last_index,
            'total': self.total,
            'timestamp': datetime.fromtimestamp(
                self.timestamp or time.time(), tz=timezone.utc
            ).isoformat(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'Checkpoint':
        ts = d.get('timestamp')
        if isinstance(ts, str):
            try:
                ts = datetime.fromisoformat(ts.replace('Z', '+00:00')).timestamp()
            except ValueError:
                ts = 0
        return cls(
            last_index=int(d.get('lastIndex', 0)),
            total=int(d.get('total', 0)),
            timestamp=float(ts or 0),
        )

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.last_index >= self.total

import logging
import os
from dataclasses import dataclass
from typing import Optional

# Data directory - defaults to ./data, but can be set via DATA_DIR env var
# On a persistent host this should point at the mounted disk
DATA_DIR = os.environ.get('DATA_DIR', './data')

PORTAL_API = 'https://backend.portal.abs.xyz/api'
EXPLORER_API = 'https://block-explorer-api.mainnet.abs.xyz/api'
ABSTRACT_RPC_URL = 'https://api.mainnet.abs.xyz'


def get_data_path(relative_path: str, data_dir: Optional[str] = None) -> str:
    """Get the full path for a data file, relative to DATA_DIR."""
    return os.path.join(data_dir or DATA_DIR, relative_path)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, '')
    try:
        return int(raw) if raw else default
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, '')
    try:
        return float(raw) if raw else default
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class Settings:
    """Runtime settings, read once from the environment"""
    data_dir: str = './data'

    # Upstream endpoints
    portal_api: str = PORTAL_API
    explorer_api: str = EXPLORER_API
    rpc_url: str = ABSTRACT_RPC_URL
    tx_source: str = 'rpc'  # 'rpc' or 'explorer'

    # Pacing
    batch_size: int = 50
    request_delay: float = 0.1   # between individual wallets
    batch_delay: float = 2.0     # between batches
    retry_base_delay: float = 5.0       # 429 backoff step
    network_retry_delay: float = 1.0    # after a connection error
    worker_count: int = 10
    chunk_size: int = 50

    # Inbound throttling for the chunk endpoint
    rate_limit_window_ms: int = 60_000
    rate_limit_max_requests: int = 100

    cron_secret: Optional[str] = None
    app_env: str = 'production'

    @classmethod
    def from_env(cls) -> 'Settings':
        tx_source = os.environ.get('ENRICH_TX_SOURCE', 'rpc').lower()
        if tx_source not in ('rpc', 'explorer'):
            raise ValueError(f"ENRICH_TX_SOURCE must be 'rpc' or 'explorer', got {tx_source!r}")

        return cls(
            data_dir=os.environ.get('DATA_DIR', DATA_DIR),
            portal_api=os.environ.get('PORTAL_API', PORTAL_API),
            explorer_api=os.environ.get('EXPLORER_API', EXPLORER_API),
            rpc_url=os.environ.get('ABSTRACT_RPC_URL', ABSTRACT_RPC_URL),
            tx_source=tx_source,
            batch_size=_env_int('ENRICH_BATCH_SIZE', 50),
            request_delay=_env_float('ENRICH_REQUEST_DELAY', 0.1),
            batch_delay=_env_float('ENRICH_BATCH_DELAY', 2.0),
            retry_base_delay=_env_float('ENRICH_RETRY_BASE_DELAY', 5.0),
            network_retry_delay=_env_float('ENRICH_NETWORK_RETRY_DELAY', 1.0),
            worker_count=_env_int('ENRICH_WORKERS', 10),
            chunk_size=_env_int('CHUNK_SIZE', 50),
            rate_limit_window_ms=_env_int('RATE_LIMIT_WINDOW_MS', 60_000),
            rate_limit_max_requests=_env_int('RATE_LIMIT_MAX_REQUESTS', 100),
            cron_secret=os.environ.get('CRON_SECRET') or None,
            app_env=os.environ.get('APP_ENV', 'production').lower(),
        )

    @property
    def is_development(self) -> bool:
        return self.app_env == 'development'


def configure_logging(level: Optional[str] = None):
    """Route the wallet_enrich.* loggers to stderr."""
    level_name = (level or os.environ.get('LOG_LEVEL', 'INFO')).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s %(message)s',
    )

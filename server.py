"""
Chunk endpoint for scheduler-driven enrichment.

A cron job calls GET/POST /api/run-chunk?dataset=gold&chunk=N with
`Authorization: Bearer $CRON_SECRET`, then keeps calling with nextChunk
until it comes back null. Each call does one chunk and returns.

Responses:
    200  {success, chunk, totalChunks, processed, nextChunk, pfpFound, txsFound}
    400  invalid chunk / empty dataset
    401  missing or wrong secret
    429  caller over the inbound rate limit
    500  fatal sink failure
"""

import hmac
import json
import logging
import re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from enrichment import RateLimiter, client_key
from pipeline import ChunkCursor, InvalidChunkError, JsonFileSource, parse_chunk_param
from wallet_utils.config import Settings


server_logger = logging.getLogger('wallet_enrich.server')
server_logger.setLevel(logging.INFO)

DATASET_RE = re.compile(r'^[A-Za-z0-9_-]{1,64}$')


def validate_cron_secret(provided: Optional[str], settings: Settings) -> bool:
    """No secret configured: only allowed in development"""
    if not settings.cron_secret:
        return settings.is_development
    if not provided:
        return False
    return hmac.compare_digest(provided.encode('utf-8'), settings.cron_secret.encode('utf-8'))


def safe_error_message(error: Exception, fallback: str, settings: Settings) -> str:
    if settings.app_env == 'production':
        return fallback
    return str(error) or fallback


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get('authorization')
    if not header:
        return None
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip() or None
    return header.strip() or None


def create_app(settings: Optional[Settings] = None,
               source=None,
               cursor: Optional[ChunkCursor] = None,
               limiter: Optional[RateLimiter] = None) -> FastAPI:
    """
    Build the app. Collaborators default to the JSON file stores and a live
    AbstractClient; tests pass their own.
    """
    settings = settings or Settings.from_env()
    source = source or JsonFileSource(settings.data_dir)
    if cursor is None:
        from run_enrich import build_runner

        runner = build_runner(settings, settings.batch_size)
        cursor = ChunkCursor(runner, runner.sink, chunk_size=settings.chunk_size)
    limiter = limiter or RateLimiter(
        window_ms=settings.rate_limit_window_ms,
        max_requests=settings.rate_limit_max_requests,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        limiter.start()
        yield
        limiter.stop()

    app = FastAPI(title='Wallet Enrichment', lifespan=lifespan)
    app.state.settings = settings
    app.state.limiter = limiter
    app.state.cursor = cursor

    @app.get('/health')
    def health():
        return {'status': 'ok'}

    def run_chunk(request: Request, dataset: str = 'gold', chunk: Optional[str] = None):
        if not validate_cron_secret(_bearer_token(request), settings):
            return JSONResponse({'error': 'Unauthorized'}, status_code=401)

        limit = limiter.allow(client_key(request.headers))
        if not limit.allowed:
            return JSONResponse(
                {
                    'error': 'Too Many Requests',
                    'message': 'Rate limit exceeded. Please try again later.',
                    'retryAfter': limit.retry_after(),
                },
                status_code=429,
                headers=limit.headers(),
            )

        try:
            chunk_index = parse_chunk_param(chunk)
        except InvalidChunkError:
            return JSONResponse({'error': 'Invalid chunk parameter'}, status_code=400)

        if not DATASET_RE.match(dataset):
            return JSONResponse({'error': 'Invalid dataset parameter'}, status_code=400)

        try:
            items = source.load_items(dataset)
        except FileNotFoundError:
            return JSONResponse({'error': f'Unknown dataset: {dataset}'}, status_code=400)

        if not items:
            return JSONResponse({'error': 'No wallets in dataset'}, status_code=400)

        try:
            result = cursor.handle(dataset, chunk_index, items)
        except Exception as e:
            server_logger.error(json.dumps({
                'event': 'chunk_failed',
                'dataset': dataset,
                'chunk': chunk_index,
                'error': repr(e),
            }))
            return JSONResponse(
                {'error': safe_error_message(e, 'Chunk enrichment failed', settings)},
                status_code=500,
            )

        body = result.to_dict()
        if result.processed == 0:
            body['message'] = 'Chunk out of range - all wallets already processed'
        return JSONResponse(body, status_code=200, headers=limit.headers())

    app.add_api_route('/api/run-chunk', run_chunk, methods=['GET', 'POST'])
    return app

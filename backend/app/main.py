"""
app/main.py
───────────
FastAPI application factory.

GET /health       Liveness probe
GET /api/tokens   Current market data for the configured tokens

Collaborators (Redis, Postgres, CoinGecko) are built in the lifespan hook,
so a missing environment value stops the process at startup instead of
surfacing on the first request.
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from app.api.routes import router
from app.cache import FastCache, create_redis_client
from app.config.settings import get_settings
from app.db.session import create_engine, create_sessionmaker, create_tables
from app.db.store import DurableStore
from app.orchestration.durable_write import DurableWriter
from app.orchestration.tokens import TokenOrchestrator
from app.providers.coingecko import CoinGeckoClient, create_http_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    # Each client is closed on shutdown and also when a later step fails.
    async with AsyncExitStack() as stack:
        cache = FastCache(create_redis_client(settings))
        stack.push_async_callback(cache.close)
        engine = create_engine(settings)
        stack.push_async_callback(engine.dispose)
        store = DurableStore(create_sessionmaker(engine))
        provider = CoinGeckoClient(create_http_client(settings), retry=settings.retry)
        stack.push_async_callback(provider.close)
        try:
            await create_tables(engine)
        except Exception:
            logger.exception("Durable store initialisation failed")
            raise

        orchestrator = TokenOrchestrator(
            cache=cache,
            provider=provider,
            store=store,
            writer=DurableWriter(cache, store, settings.cache),
            tokens=settings.tokens,
            cache_settings=settings.cache,
        )
        app.state.orchestrator = orchestrator
        logger.info("Serving tokens %s", ", ".join(settings.tokens.token_ids))

        yield

        await orchestrator.drain()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(title="pricedesk", lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()

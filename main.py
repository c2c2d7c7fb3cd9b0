"""Entry point: wires all components and starts the gRPC server."""

from __future__ import annotations

import json
import logging
import signal
import sys
import threading
import time
from concurrent import futures

import grpc

import config
from productreco.cache import CacheBackend, CacheService, MemoryCacheBackend, RedisCacheBackend
from productreco.catalogue import ProductCatalogue
from productreco.concurrency import BackgroundExecutor
from productreco.emergency import EmergencyRecommender
from productreco.engine import HybridRecommendationEngine
from productreco.ingestion import InteractionIngestionService
from productreco.interactions import InteractionLog
from productreco.metrics import TrendingMetricsService
from productreco.models import Product
from productreco.service import RecommenderServicer, add_recommender_to_server
from productreco.strategies.registry import build_registry
from productreco.strategy_service import StrategyRecommendationService
from productreco.user_context import UserContextService
from productreco.user_state import InMemoryPreferenceRepository, UserStateService

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def load_products_file(path: str) -> list[Product]:
    """Read a JSON array of products; an empty *path* yields no products."""
    if not path:
        return []
    with open(path, encoding="utf-8") as fh:
        return [Product.from_dict(entry) for entry in json.load(fh)]


def build_cache_backend() -> CacheBackend:
    if config.CACHE_BACKEND == "redis":
        return RedisCacheBackend(
            host=config.REDIS_HOST,
            port=config.REDIS_PORT,
            db=config.REDIS_DB,
            password=config.REDIS_PASSWORD,
            socket_timeout=config.REDIS_SOCKET_TIMEOUT,
        )
    return MemoryCacheBackend()


def build_server(
    catalogue: ProductCatalogue,
    repository: InMemoryPreferenceRepository,
    interactions: InteractionLog,
    cache: CacheService,
) -> tuple[grpc.Server, BackgroundExecutor]:
    """Construct and configure the gRPC server with all dependencies wired.

    Args:
        catalogue: The loaded :class:`~productreco.catalogue.ProductCatalogue`.
        repository: Preference profile storage.
        interactions: Interaction event log.
        cache: Shared result cache.

    Returns:
        A configured but not-yet-started :class:`grpc.Server` and the
        background executor to shut down with it.
    """
    registry = build_registry(catalogue, cache, repository)
    contexts = UserContextService(repository, interactions, catalogue)
    metrics = TrendingMetricsService(interactions, cache)
    user_state = UserStateService(repository, catalogue, cache)
    background = BackgroundExecutor(
        max_workers=config.BACKGROUND_WORKERS, max_pending=config.BACKGROUND_MAX_PENDING
    )
    fanout = futures.ThreadPoolExecutor(
        max_workers=config.FANOUT_WORKERS, thread_name_prefix="fanout"
    )

    engine = HybridRecommendationEngine(
        registry=registry,
        contexts=contexts,
        cache=cache,
        metrics=metrics,
        emergency=EmergencyRecommender(catalogue),
        interactions=interactions,
        products=catalogue,
        executor=fanout,
        background=background,
        debug=config.DEBUG_SCORES,
    )
    strategies = StrategyRecommendationService(
        registry, contexts, catalogue, cache, metrics, debug=config.DEBUG_SCORES
    )
    ingestion = InteractionIngestionService(
        interactions, user_state, cache, registry, contexts, executor=fanout
    )
    servicer = RecommenderServicer(
        engine=engine,
        strategies=strategies,
        ingestion=ingestion,
        warn_threshold_ms=config.RECOMMENDATION_WARN_THRESHOLD_MS,
    )

    server = grpc.server(futures.ThreadPoolExecutor(max_workers=config.GRPC_MAX_WORKERS))
    add_recommender_to_server(servicer, server)
    server.add_insecure_port(f"{config.GRPC_SERVER_HOST}:{config.GRPC_SERVER_PORT}")
    return server, background


def start_purge_loop(interactions: InteractionLog, interval_seconds: int) -> threading.Thread:
    """Periodically drop expired interaction events in a daemon thread."""

    def loop() -> None:
        while True:
            time.sleep(interval_seconds)
            try:
                interactions.purge_expired()
            except Exception:
                logger.exception("Interaction purge failed.")

    thread = threading.Thread(target=loop, name="interaction-purge", daemon=True)
    thread.start()
    return thread


def main() -> None:
    """Initialise all components and start the gRPC server.

    Startup sequence:
    1. Connect the cache backend (Redis outages degrade to no caching).
    2. Load the product catalogue.
    3. Create the preference and interaction stores.
    4. Start background threads (catalogue refresh, state persistence when a
       persister is configured, interaction purge).
    5. Build the gRPC server.
    6. Register ``SIGTERM``/``SIGINT`` shutdown handlers.
    7. Start serving.
    """
    logger.info("Starting recommender (env=%s, cache=%s)", config.APP_ENV, config.CACHE_BACKEND)
    cache = CacheService(build_cache_backend())

    # Step 2: Load catalogue
    catalogue = ProductCatalogue(
        loader=lambda: load_products_file(config.PRODUCTS_FILE),
        refresh_interval_seconds=config.CATALOGUE_REFRESH_INTERVAL_SECONDS,
    )
    catalogue.refresh()
    logger.info("Catalogue loaded: %d products.", len(catalogue.all_products()))

    # Step 3: Stores
    repository = InMemoryPreferenceRepository()
    interactions = InteractionLog()

    # Step 4: Background threads
    catalogue.start_refresh_loop()
    repository.start_persist_loop(config.STATE_PERSIST_INTERVAL_SECONDS)
    start_purge_loop(interactions, config.INTERACTION_PURGE_INTERVAL_SECONDS)

    # Step 5: Build gRPC server
    server, background = build_server(catalogue, repository, interactions, cache)

    # Step 6: Register shutdown handlers
    def handle_shutdown(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s; persisting preferences and shutting down.", sig_name)
        repository.persist_all()
        server.stop(grace=5)
        background.shutdown(wait=False)
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    # Step 7: Start serving
    server.start()
    logger.info(
        "Recommender gRPC server listening on %s:%d",
        config.GRPC_SERVER_HOST,
        config.GRPC_SERVER_PORT,
    )
    server.wait_for_termination()


if __name__ == "__main__":
    main()

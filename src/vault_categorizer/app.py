import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from vault_categorizer.api.routes import backfill, categorize, sync, training
from vault_categorizer.classifiers.learned import LearnedVendorMap
from vault_categorizer.classifiers.linear import LocalClassifier
from vault_categorizer.core import settings
from vault_categorizer.domain.session import SessionState
from vault_categorizer.integration.embeddings import OpenAIEmbeddingProvider
from vault_categorizer.logger import get_logger, setup_logging
from vault_categorizer.manager import AutoCategorizer
from vault_categorizer.services.backfill import EmbeddingBackfill
from vault_categorizer.services.suggestions import SuggestionPipeline
from vault_categorizer.services.training import TrainingManager
from vault_categorizer.storage.base import LocalStore
from vault_categorizer.storage.file import FileStore
from vault_categorizer.storage.memory import MemoryStore

logger = get_logger(__name__)


def build_store() -> LocalStore:
    if settings.STORE_BACKEND == "memory":
        logger.warning("STORE_BACKEND=memory: nothing will be persisted.")
        return MemoryStore()
    return FileStore(data_dir=settings.DATA_DIR)


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        store = build_store()
        await store.initialize()

        provider = OpenAIEmbeddingProvider(
            model=settings.EMBEDDING_MODEL,
            base_url=settings.EMBEDDING_BASE_URL,
            dimensions=settings.EMBEDDING_DIM,
        )
        classifier = LocalClassifier(
            store,
            dim=settings.EMBEDDING_DIM,
            min_samples=settings.CLASSIFIER_MIN_SAMPLES,
        )
        categorizer = AutoCategorizer(store, learned=LearnedVendorMap(store), classifier=classifier)
        await categorizer.initialize()

        session = SessionState()
        training_manager = TrainingManager(categorizer)
        pipeline = SuggestionPipeline(store, categorizer, limit=settings.SUGGESTION_LIMIT)
        backfill_job = EmbeddingBackfill(
            store,
            provider,
            batch_size=settings.BACKFILL_BATCH_SIZE,
            dim=settings.EMBEDDING_DIM,
        )

        app.state.store = store
        app.state.categorizer = categorizer
        app.state.training_manager = training_manager
        app.state.pipeline = pipeline
        app.state.backfill = backfill_job
        app.state.session = session

        await training_manager.ensure_trained(session)

        backfill_task: asyncio.Task | None = None
        if settings.BACKFILL_ON_STARTUP:
            backfill_task = asyncio.create_task(backfill_job.run_once_per_session(session))

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")

        if backfill_task is not None:
            backfill_job.request_cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await backfill_task

        await categorizer.dispose()
        await provider.aclose()
        await store.dispose()

    app = FastAPI(title="Vault Categorizer", lifespan=lifespan)

    app.include_router(categorize.router)
    app.include_router(training.router)
    app.include_router(backfill.router)
    app.include_router(sync.router)

    return app


app = create_app()

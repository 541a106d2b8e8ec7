import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Callable, Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request

from controllers.capture_controller import save_capture_state
from dal.capture_dal import CaptureSessionDAL
from dal.upload_snapshot_dal import UploadSnapshotDAL
from routes.capture_route import router as capture_router
from routes.upload_route import router as upload_router
from routes.upload_session_route import router as upload_session_router
from services.broker_client import BrokerClient
from services.capture_session import CaptureSessionStore
from services.recognition.engine import RecognitionEngine
from services.recognition.factory import build_engine
from services.recognition.queue import RecognitionQueue
from services.upload_broker import UploadBroker
from services.upload_poller import UploadPoller
from utils.database_cleaner import BrokerCleaner
from utils.database_init import AsyncDatabaseInitializer
from utils.settings import Settings

load_dotenv()  # Load environment variables from .env file if present

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
LOGGER = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[RecognitionEngine] = None,
    qr_renderer: Optional[Callable[[str], Optional[str]]] = None,
    broker_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    Args:
        settings: Runtime settings; read from the environment when omitted.
        engine: Recognition engine; built from `settings` when omitted.
        qr_renderer: Turns an upload URL into a QR image data URL. None leaves `qrImage` empty.
        broker_transport: httpx transport for the broker client, used by tests.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan manager that wires up, and tears down in reverse:
          - the recognition queue and its engine
          - the capture session store (reloaded from SQLite when DATABASE_DIR is set)
          - the upload broker (reloaded from its JSON snapshot) and its cleaner
          - the broker client and upload poller for the phone link
        """
        config = settings or Settings.from_env()
        app.state.settings = config

        recognition_engine = engine if engine is not None else build_engine(config)
        queue = RecognitionQueue(
            recognition_engine,
            timeout=config.recognition_timeout,
            min_dimension=config.min_recognition_dimension,
        )
        queue.start()
        app.state.recognition_queue = queue

        store = CaptureSessionStore.from_settings(config, recognition=queue)
        broker = UploadBroker.from_settings(config)
        app.state.capture_store = store
        app.state.upload_broker = broker
        app.state.capture_dal = None
        app.state.upload_snapshot_dal = None

        if config.database_dir:
            db_initializer = AsyncDatabaseInitializer(config.database_dir)
            await db_initializer.ensure_database()
            app.state.db_initializer = db_initializer

            capture_dal = CaptureSessionDAL(db_initializer)
            store.restore(await capture_dal.load())
            app.state.capture_dal = capture_dal

            snapshot_dal = UploadSnapshotDAL(config.database_dir)
            restored = broker.restore(await snapshot_dal.load())
            app.state.upload_snapshot_dal = snapshot_dal
            LOGGER.info("Restored capture session and %d upload sessions", restored)
        else:
            LOGGER.info("DATABASE_DIR not set; sessions are kept in memory only")

        cleaner = BrokerCleaner(broker, app.state.upload_snapshot_dal)
        cleanup_task = asyncio.create_task(cleaner.run_periodic_cleanup(config.cleanup_interval))

        broker_client = BrokerClient(config.broker_url, timeout=config.broker_timeout, transport=broker_transport)
        app.state.broker_client = broker_client
        app.state.upload_poller = UploadPoller(
            broker_client,
            store,
            interval=config.poll_interval,
            on_ingest=lambda: save_capture_state(app.state),
        )
        app.state.phone_link = None
        app.state.qr_renderer = qr_renderer

        try:
            yield
        finally:
            await app.state.upload_poller.stop()
            cleanup_task.cancel()
            try:
                await cleanup_task
            except asyncio.CancelledError:
                pass
            await queue.stop()
            await broker_client.aclose()
            await save_capture_state(app.state)

    app = FastAPI(title="CaptureDeck", lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check reporting the recognition backend and store sizes.
        """
        queue = request.app.state.recognition_queue
        return {
            "ok": True,
            "recognition": queue.engine.name if queue.enabled else None,
            "recognitionPending": queue.pending,
            "recognitionInFlight": queue.in_flight,
            "uploadSessions": request.app.state.upload_broker.count(),
            "persistent": request.app.state.capture_dal is not None,
        }

    # Register application routers
    app.include_router(capture_router)
    app.include_router(upload_session_router)
    app.include_router(upload_router)

    return app


app = create_app()

"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from extractify.config import get_settings
from extractify.job_queue import ExtractionQueue
from extractify.routers import extractions

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    queue = ExtractionQueue(get_settings())
    try:
        queue.start()
        app.state.extraction_queue = queue
    except Exception:
        logger.exception("Extraction queue failed to start; submissions will return 503.")
        app.state.extraction_queue = None
    try:
        yield
    finally:
        if app.state.extraction_queue is not None:
            app.state.extraction_queue.stop()


app = FastAPI(title="Extractify API", version="0.1.0", lifespan=lifespan)

app.include_router(extractions.router, tags=["extractions"])


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}

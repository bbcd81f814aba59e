"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from prometheus_fastapi_instrumentator import Instrumentator

from plusone.ai.oracle import ExtractionOracle
from plusone.api.routes import analysis, monitor, orders, products
from plusone.config import settings
from plusone.ingest.reconciler import Reconciler
from plusone.monitor.capture import PlaywrightPageSource
from plusone.monitor.screen_monitor import ScreenMonitor
from plusone.sync.runtime import open_ledger

# Configure structured logging
from plusone.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting PlusOne ledger...")

    runtime = await open_ledger()

    oracle = ExtractionOracle()
    reconciler = Reconciler(runtime.store, oracle)
    screen_monitor = ScreenMonitor(reconciler, source_factory=PlaywrightPageSource)

    app.state.runtime = runtime
    app.state.oracle = oracle
    app.state.reconciler = reconciler
    app.state.monitor = screen_monitor
    logger.info(f"Ledger ready in {runtime.mode.value} mode")

    yield

    # Shutdown
    logger.info("Shutting down...")

    await screen_monitor.stop()
    await screen_monitor.drain()
    await runtime.close()
    await oracle.close()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="PlusOne Ledger",
    description="Turn group-buy chat messages into an order ledger",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=False,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(orders.router)
app.include_router(products.router)
app.include_router(analysis.router)
app.include_router(monitor.router)


@app.get("/health")
async def health(request: Request):
    """Health check endpoint, including which ledger mode is active."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        return {"status": "starting"}
    return {
        "status": "healthy",
        "ledger_mode": runtime.mode.value,
        "warning": runtime.store.startup_warning,
    }


def run():
    uvicorn.run(
        "plusone.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()

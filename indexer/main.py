"""Entry point for the indexer service."""

import asyncio
import time
import uuid

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from indexer.config import (
    CLEANUP_INTERVAL,
    INDEXER_HOST,
    INDEXER_PORT,
    NODE_STALE_THRESHOLD,
    TRUSTED_NODE_URLS,
)
from indexer.exceptions import IndexerError, RootNotFoundError
from indexer.node_registry import NodeRegistry
from indexer.routes import router, set_node_registry

logger = setup_logging('indexer')

app = FastAPI(
    title="Shardline Indexer",
    description="Storage node registry and root location service",
    version="1.0.0"
)

node_registry = NodeRegistry(trusted_urls=TRUSTED_NODE_URLS, stale_threshold=NODE_STALE_THRESHOLD)
set_node_registry(node_registry)

cleanup_task = None


async def node_cleanup_loop(registry: NodeRegistry):
    """
    Periodically remove stale nodes.
    """
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL)
        try:
            await registry.cleanup_stale_nodes()
        except Exception as e:
            logger.error(f"Node cleanup error: {e}", exc_info=True)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(f"Request started: {request.method} {request.url.path} [request_id={request_id}]")

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


@app.on_event("startup")
async def startup_event():
    """
    Start background tasks on application startup.
    """
    global cleanup_task
    logger.info(f"Indexer starting up with {len(TRUSTED_NODE_URLS)} trusted node URL(s)")
    cleanup_task = asyncio.create_task(node_cleanup_loop(node_registry))


@app.on_event("shutdown")
async def shutdown_event():
    """
    Stop background tasks on application shutdown.
    """
    global cleanup_task
    logger.info("Indexer shutting down...")
    if cleanup_task is not None:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
        cleanup_task = None


@app.exception_handler(RootNotFoundError)
async def root_not_found_handler(request: Request, exc: RootNotFoundError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.info(f"Root not found: {exc} [request_id={request_id}] path={request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc), "code": "ROOT_NOT_FOUND"}
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(f"Invalid request: {exc} [request_id={request_id}] path={request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "code": "INVALID_REQUEST"}
    )


@app.exception_handler(IndexerError)
async def indexer_error_handler(request: Request, exc: IndexerError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(f"Indexer error: {exc} [request_id={request_id}] path={request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "code": "INTERNAL_ERROR"}
    )


app.include_router(router)


@app.get("/")
async def root():
    """
    Root endpoint for health check.
    """
    return {"message": "Shardline Indexer API", "status": "running"}


@app.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns 200 if service is alive.
    """
    return {"status": "healthy", "service": "indexer"}


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "indexer.main:app",
        host=INDEXER_HOST,
        port=INDEXER_PORT,
    )


if __name__ == "__main__":
    main()

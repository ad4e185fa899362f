"""
Rodent - FastAPI Application Entry Point

Node-local control plane for ZFS: dataset lifecycle, properties,
snapshots, permissions and send/receive replication over a REST API.
"""

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from rodent import __version__, errors
from rodent.config import settings
from rodent.errors import ErrorCode, RodentError
from rodent.routers import datasets, health

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Rodent v{__version__} starting...")
    logger.info(f"API: {settings.api_host}:{settings.api_port}")
    logger.info(f"ZFS binaries: {settings.zfs_binary}, {settings.zpool_binary} (sudo={settings.use_sudo})")

    yield

    logger.info("Rodent shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Rodent API",
    description="REST API for node-local ZFS management",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)


@app.exception_handler(RodentError)
async def rodent_error_handler(request: Request, exc: RodentError):
    """Classified failures: body from to_dict(), status from the taxonomy."""
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}"
        for err in exc.errors()
    )
    err = errors.new(ErrorCode.SERVER_REQUEST_VALIDATION, problems)
    return JSONResponse(status_code=err.http_status, content=err.to_dict())


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    err = errors.wrap(exc, ErrorCode.SERVER_RESPONSE_ERROR)
    return JSONResponse(status_code=err.http_status, content=err.to_dict())


# Include routers
app.include_router(health.router)
app.include_router(datasets.router)


@app.get("/")
async def root():
    """Root endpoint - points at docs."""
    return {
        "name": "Rodent",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


def run(host: Optional[str] = None, port: Optional[int] = None):
    """Run the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "rodent.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower()
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rodent",
        description="Node-local ZFS control plane.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run the REST API server.")
    serve.add_argument("--host", default=settings.api_host, help="Address to bind.")
    serve.add_argument("--port", default=settings.api_port, type=int, help="Port to bind.")

    commands.add_parser("version", help="Print the version and exit.")
    commands.add_parser("health", help="Check zfs availability and imported pools on this host.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Command-line entry point.

    With no subcommand the server is started, like `rodent serve`.

    Returns:
        Process exit status
    """
    args = build_parser().parse_args(argv)

    if args.command == "version":
        print(f"rodent {__version__}")
        return 0
    if args.command == "health":
        report = health.collect_health()
        print(report.model_dump_json(indent=2))
        return 0 if report.status == "ok" else 1

    run(getattr(args, "host", None), getattr(args, "port", None))
    return 0


if __name__ == "__main__":
    sys.exit(main())

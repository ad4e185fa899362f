"""
Health endpoint.
"""

import logging
import shutil
import socket
import time
from typing import List

from fastapi import APIRouter
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from rodent import __version__
from rodent.config import settings
from rodent.errors import RodentError
from rodent.services.pool import PoolManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Track startup time
_startup_time = time.time()

_pools = PoolManager()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    uptime_seconds: int
    version: str
    hostname: str
    zfs_available: bool
    pools: List[str]


def _check_binary(name: str) -> bool:
    """Check if a binary resolves on PATH (or is an executable path)."""
    return shutil.which(name) is not None


def collect_health() -> HealthResponse:
    """
    Report liveness, whether zfs is reachable and which pools are imported.

    A failed pool listing degrades the status instead of failing the check.
    """
    zfs_available = _check_binary(settings.zfs_binary) and _check_binary(settings.zpool_binary)
    pools: List[str] = []
    state = "ok" if zfs_available else "degraded"

    if zfs_available:
        try:
            pools = [p.name for p in _pools.list()]
        except RodentError as e:
            logger.warning(f"Pool listing failed during health check: {e}")
            state = "degraded"

    return HealthResponse(
        status=state,
        uptime_seconds=int(time.time() - _startup_time),
        version=__version__,
        hostname=socket.gethostname(),
        zfs_available=zfs_available,
        pools=pools
    )


@router.get("/health", response_model=HealthResponse)
async def health_check():
    return await run_in_threadpool(collect_health)

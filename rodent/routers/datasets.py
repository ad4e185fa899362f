"""
Dataset management endpoints.

Each handler binds a JSON body to the operation's config model, runs the
manager call in a worker thread under a context tied to the request, and
maps success to the operation's status.
Failures propagate as RodentError and are rendered by the app's handler.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.concurrency import run_in_threadpool

from rodent.models.dataset import (
    AllowConfig,
    BookmarkConfig,
    CloneConfig,
    DatasetInfo,
    DestroyConfig,
    DiffConfig,
    DiffEntry,
    FilesystemConfig,
    InheritConfig,
    ListConfig,
    MountConfig,
    NameConfig,
    Property,
    PropertyConfig,
    RenameConfig,
    RollbackConfig,
    SetPropertyConfig,
    ShareConfig,
    SnapshotConfig,
    UnallowConfig,
    UnmountConfig,
    UnshareConfig,
    VolumeConfig,
)
from rodent.models.transfer import TransferConfig
from rodent.services.command import ExecutionContext
from rodent.services.dataset import DatasetManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/rodent/zfs/dataset", tags=["datasets"])

_manager = DatasetManager()

DISCONNECT_POLL_SECONDS = 0.5


def get_dataset_manager() -> DatasetManager:
    return _manager


def _result(value: Any) -> Dict[str, Any]:
    return {"result": value}


async def _call(request: Request, func: Callable, *args: Any) -> Any:
    """
    Run a manager call in a worker thread under a per-request context.

    The context is cancelled when the client disconnects or the handler
    itself is cancelled (server shutdown), which terminates any zfs
    process the call is supervising.
    """
    ctx = ExecutionContext.background()
    task = asyncio.create_task(run_in_threadpool(func, *args, ctx=ctx))
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.warning(f"Client disconnected, cancelling {request.method} {request.url.path}")
                ctx.cancel()
                return await task
    finally:
        if not task.done():
            ctx.cancel()


async def _list(request: Request, manager: DatasetManager, cfg: ListConfig, dataset_type: str) -> Dict[str, List[DatasetInfo]]:
    cfg = cfg.model_copy(update={"type": dataset_type})
    return _result(await _call(request, manager.list, cfg))


# =========================================================================
# Listing
# =========================================================================

@router.post("/list")
async def list_datasets(request: Request, cfg: ListConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    """List datasets using the type given in the body."""
    return _result(await _call(request, manager.list, cfg))


@router.post("/all/list")
async def list_all(request: Request, cfg: ListConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    return await _list(request, manager, cfg, "all")


@router.post("/filesystem/list")
async def list_filesystems(request: Request, cfg: ListConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    return await _list(request, manager, cfg, "filesystem")


@router.post("/volume/list")
async def list_volumes(request: Request, cfg: ListConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    return await _list(request, manager, cfg, "volume")


@router.post("/snapshot/list")
async def list_snapshots(request: Request, cfg: ListConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    return await _list(request, manager, cfg, "snapshot")


@router.post("/bookmark/list")
async def list_bookmarks(request: Request, cfg: ListConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    return await _list(request, manager, cfg, "bookmark")


@router.post("/exists")
async def dataset_exists(request: Request, cfg: NameConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    return _result(await _call(request, manager.exists, cfg.name))


# =========================================================================
# Create / destroy
# =========================================================================

@router.post("/filesystem", status_code=status.HTTP_201_CREATED)
async def create_filesystem(request: Request, cfg: FilesystemConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.create_filesystem, cfg)
    return Response(status_code=status.HTTP_201_CREATED)


@router.post("/volume", status_code=status.HTTP_201_CREATED)
async def create_volume(request: Request, cfg: VolumeConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.create_volume, cfg)
    return Response(status_code=status.HTTP_201_CREATED)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def destroy_dataset(request: Request, cfg: DestroyConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.destroy, cfg)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =========================================================================
# Properties
# =========================================================================

@router.post("/property")
async def get_property(request: Request, cfg: PropertyConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    prop: Property = await _call(request, manager.get_property, cfg)
    return _result(prop)


@router.put("/property", status_code=status.HTTP_201_CREATED)
async def set_property(request: Request, cfg: SetPropertyConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.set_property, cfg)
    return Response(status_code=status.HTTP_201_CREATED)


@router.put("/property/inherit", status_code=status.HTTP_201_CREATED)
async def inherit_property(request: Request, cfg: InheritConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.inherit_property, cfg)
    return Response(status_code=status.HTTP_201_CREATED)


@router.post("/properties")
async def list_properties(request: Request, cfg: NameConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    return _result(await _call(request, manager.list_properties, cfg))


# =========================================================================
# Snapshots, clones and bookmarks
# =========================================================================

@router.post("/snapshot", status_code=status.HTTP_201_CREATED)
async def create_snapshot(request: Request, cfg: SnapshotConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.create_snapshot, cfg)
    return Response(status_code=status.HTTP_201_CREATED)


@router.post("/snapshot/rollback")
async def rollback_snapshot(request: Request, cfg: RollbackConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.rollback, cfg)
    return Response(status_code=status.HTTP_200_OK)


@router.delete("/snapshot", status_code=status.HTTP_204_NO_CONTENT)
async def destroy_snapshot(request: Request, cfg: DestroyConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.destroy_snapshot, cfg)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/clone", status_code=status.HTTP_201_CREATED)
async def create_clone(request: Request, cfg: CloneConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.clone, cfg)
    return Response(status_code=status.HTTP_201_CREATED)


@router.post("/clone/promote")
async def promote_clone(request: Request, cfg: NameConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.promote_clone, cfg)
    return Response(status_code=status.HTTP_200_OK)


@router.post("/bookmark", status_code=status.HTTP_201_CREATED)
async def create_bookmark(request: Request, cfg: BookmarkConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.create_bookmark, cfg)
    return Response(status_code=status.HTTP_201_CREATED)


# =========================================================================
# Rename, mount, diff
# =========================================================================

@router.post("/rename")
async def rename_dataset(request: Request, cfg: RenameConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.rename, cfg)
    return Response(status_code=status.HTTP_200_OK)


@router.post("/mount")
async def mount_dataset(request: Request, cfg: MountConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.mount, cfg)
    return Response(status_code=status.HTTP_200_OK)


@router.post("/unmount", status_code=status.HTTP_204_NO_CONTENT)
async def unmount_dataset(request: Request, cfg: UnmountConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.unmount, cfg)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/diff")
async def diff_dataset(request: Request, cfg: DiffConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    entries: List[DiffEntry] = await _call(request, manager.diff, cfg)
    return _result(entries)


# =========================================================================
# Transfers
# =========================================================================

@router.post("/transfer")
async def send_dataset(request: Request, cfg: TransferConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    """
    Run a combined send/receive.

    Blocks for the whole transfer; the worker thread keeps other requests
    flowing meanwhile.
    """
    await _call(request, manager.send_receive, cfg.send, cfg.receive)
    return Response(status_code=status.HTTP_200_OK)


@router.post("/resume-token")
async def get_resume_token(request: Request, cfg: NameConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    return _result(await _call(request, manager.get_resume_token, cfg))


# =========================================================================
# Permissions and sharing
# =========================================================================

@router.put("/permissions", status_code=status.HTTP_201_CREATED)
async def allow_permissions(request: Request, cfg: AllowConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.allow, cfg)
    return Response(status_code=status.HTTP_201_CREATED)


@router.delete("/permissions", status_code=status.HTTP_204_NO_CONTENT)
async def unallow_permissions(request: Request, cfg: UnallowConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.unallow, cfg)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/permissions")
async def list_permissions(request: Request, cfg: NameConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    return _result(await _call(request, manager.list_permissions, cfg))


@router.post("/share")
async def share_dataset(request: Request, cfg: ShareConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.share, cfg)
    return Response(status_code=status.HTTP_200_OK)


@router.post("/unshare")
async def unshare_dataset(request: Request, cfg: UnshareConfig, manager: DatasetManager = Depends(get_dataset_manager)):
    await _call(request, manager.unshare, cfg)
    return Response(status_code=status.HTTP_200_OK)

"""
ZFS pool service.

Minimal pool lifecycle built on the same command executor and error
taxonomy as the dataset manager.
"""

import logging
from typing import List, Optional

from rodent import errors
from rodent.errors import ErrorCode, RodentError
from rodent.models.pool import PoolCreateConfig, PoolInfo
from rodent.services import names
from rodent.services.command import ZPOOL, CommandExecutor, ExecutionContext
from rodent.services.names import NameKind

logger = logging.getLogger(__name__)

VDEV_TYPES = (
    "stripe", "mirror", "raidz", "raidz1", "raidz2", "raidz3",
    "log", "cache", "spare", "special", "dedup",
)


class PoolManager:
    """Create, destroy and list pools."""

    def __init__(self, executor: Optional[CommandExecutor] = None):
        self.executor = executor or CommandExecutor()

    def _run(self, argv: List[str], ctx: Optional[ExecutionContext], code: int):
        try:
            return self.executor.run(argv, ctx)
        except RodentError as e:
            if e.code in (ErrorCode.ZFS_POOL_NOT_FOUND, ErrorCode.ZFS_PERMISSION_DENIED,
                          ErrorCode.CMD_CONTEXT, ErrorCode.CMD_TIMEOUT):
                raise
            raise errors.wrap(e, code)

    def create(self, cfg: PoolCreateConfig, ctx: Optional[ExecutionContext] = None):
        """
        Create a pool.

        Args:
            cfg: Pool name, vdev layout and pool/root-dataset properties
            ctx: Caller's cancellation scope
        """
        names.validate(cfg.name, NameKind.POOL)
        if not cfg.vdev_spec:
            raise errors.new(ErrorCode.ZFS_POOL_INVALID_DEVICE, "No vdevs given")

        argv = [ZPOOL, "create"]
        if cfg.force:
            argv.append("-f")
        if cfg.mountpoint:
            argv.extend(["-m", cfg.mountpoint])
        for flag, props in (("-o", cfg.properties), ("-O", cfg.fs_properties)):
            for key, value in props.items():
                names.validate_property_name(key)
                names.validate_property_value(value)
                argv.extend([flag, f"{key}={value}"])
        argv.append(cfg.name)

        for vdev in cfg.vdev_spec:
            if vdev.type not in VDEV_TYPES:
                raise errors.new(ErrorCode.ZFS_POOL_INVALID_DEVICE, f"Unknown vdev type '{vdev.type}'")
            if not vdev.devices:
                raise errors.new(ErrorCode.ZFS_POOL_INVALID_DEVICE, f"Empty {vdev.type} vdev")
            for device in vdev.devices:
                if not device or device.startswith("-"):
                    raise errors.new(ErrorCode.ZFS_POOL_INVALID_DEVICE, f"'{device}'")
            if vdev.type != "stripe":
                argv.append(vdev.type)
            argv.extend(vdev.devices)

        self._run(argv, ctx, ErrorCode.ZFS_POOL_CREATE)
        logger.info(f"Created pool {cfg.name}")

    def destroy(self, name: str, force: bool = False, ctx: Optional[ExecutionContext] = None):
        names.validate(name, NameKind.POOL)
        argv = [ZPOOL, "destroy"]
        if force:
            argv.append("-f")
        argv.append(name)
        self._run(argv, ctx, ErrorCode.ZFS_POOL_DESTROY)
        logger.info(f"Destroyed pool {name}")

    def list(self, ctx: Optional[ExecutionContext] = None) -> List[PoolInfo]:
        """List all pools with capacity and health."""
        argv = [ZPOOL, "list", "-Hp", "-o", "name,size,alloc,free,health"]
        result = self._run(argv, ctx, ErrorCode.ZFS_POOL_LIST)

        pools = []
        for line in result.stdout.strip().split("\n"):
            if not line:
                continue
            parts = line.split("\t")
            if len(parts) >= 5:
                pools.append(PoolInfo(
                    name=parts[0],
                    size_bytes=int(parts[1]),
                    allocated_bytes=int(parts[2]),
                    free_bytes=int(parts[3]),
                    health=parts[4]
                ))
        return pools

    def exists(self, name: str, ctx: Optional[ExecutionContext] = None) -> bool:
        names.validate(name, NameKind.POOL)
        try:
            self._run([ZPOOL, "list", "-H", "-o", "name", name], ctx, ErrorCode.ZFS_POOL_LIST)
        except RodentError as e:
            if errors.is_error(e, errors.ERR_ZFS_POOL_NOT_FOUND):
                return False
            raise
        return True

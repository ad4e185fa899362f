"""
Dataset management service.

Validates identifiers, builds zfs argument vectors and parses their
tab-separated output into typed results. All state lives in ZFS; the
manager itself keeps none between calls.
"""

import logging
from typing import Dict, List, Optional, Sequence

from rodent import errors
from rodent.errors import ErrorCode, RodentError
from rodent.models.dataset import (
    AllowConfig,
    BookmarkConfig,
    CloneConfig,
    CreateConfig,
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
from rodent.services import names
from rodent.services.command import (
    ZFS,
    CommandExecutor,
    CommandOptions,
    CommandResult,
    ExecutionContext,
)
from rodent.services.names import NameKind
from rodent.services.transfer import TransferMixin

logger = logging.getLogger(__name__)

# Codes callers branch on; never re-wrapped into an operation code.
PASSTHROUGH_CODES = frozenset({
    ErrorCode.ZFS_DATASET_NOT_FOUND,
    ErrorCode.ZFS_DATASET_PROPERTY_NOT_FOUND,
    ErrorCode.ZFS_DATASET_NO_RECEIVE_TOKEN,
    ErrorCode.ZFS_POOL_NOT_FOUND,
    ErrorCode.ZFS_PERMISSION_DENIED,
    ErrorCode.ZFS_PROPERTY_VALUE_TOO_LONG,
    ErrorCode.ZFS_QUOTA_EXCEEDED,
    ErrorCode.CMD_NOT_FOUND,
    ErrorCode.CMD_TIMEOUT,
    ErrorCode.CMD_CONTEXT,
})

PROPERTY_COLUMNS = "name,property,value,source"

# Section headers printed by `zfs allow <dataset>`
_PERMISSION_SECTIONS = {
    "Permission sets:": "permission_sets",
    "Create time permissions:": "create_time",
    "Local permissions:": "local",
    "Descendent permissions:": "descendent",
    "Local+Descendent permissions:": "local_descendent",
}


def _rows(output: str) -> List[List[str]]:
    return [line.split("\t") for line in output.splitlines() if line.strip()]


def _property_args(flag: str, properties: Dict[str, str]) -> List[str]:
    args = []
    for key, value in properties.items():
        names.validate_property_name(key)
        names.validate_property_value(value)
        args.extend([flag, f"{key}={value}"])
    return args


def _permission_list(permissions: Sequence[str]) -> str:
    for perm in permissions:
        if not perm or "," in perm or any(ch.isspace() for ch in perm):
            raise errors.new(ErrorCode.CMD_INVALID_INPUT, f"Invalid permission '{perm}'")
    return ",".join(permissions)


def _who_args(cfg: AllowConfig) -> List[str]:
    args = []
    if cfg.local:
        args.append("-l")
    if cfg.descendent:
        args.append("-d")
    if cfg.users:
        args.extend(["-u", ",".join(cfg.users)])
    if cfg.groups:
        args.extend(["-g", ",".join(cfg.groups)])
    if cfg.everyone:
        args.append("-e")
    return args


class DatasetManager(TransferMixin):
    """Dataset, snapshot, clone, bookmark and permission operations."""

    def __init__(self, executor: Optional[CommandExecutor] = None):
        self.executor = executor or CommandExecutor()

    def _run(
        self,
        argv: List[str],
        ctx: Optional[ExecutionContext],
        code: int,
        options: Optional[CommandOptions] = None
    ) -> CommandResult:
        """Run argv, re-classifying failures under the operation's code."""
        try:
            return self.executor.run(argv, ctx, options)
        except RodentError as e:
            raise self._classified(e, code)

    def _classified(self, err: RodentError, code: int) -> RodentError:
        if err.code in PASSTHROUGH_CODES:
            return err
        return errors.wrap(err, code)

    # =========================================================================
    # Listing and existence
    # =========================================================================

    def list(self, cfg: ListConfig, ctx: Optional[ExecutionContext] = None) -> List[DatasetInfo]:
        """
        List datasets of the requested type.

        Args:
            cfg: Root name, type filter, recursion/depth and property columns
            ctx: Caller's cancellation scope

        Returns:
            DatasetInfo per row, in the order zfs printed them. An empty
            listing is not an error.
        """
        if cfg.name:
            names.validate(cfg.name, NameKind.DATASET)
        columns = ["name", "type"] + [p for p in cfg.properties if p not in ("name", "type")]
        for prop in columns:
            names.validate_property_name(prop)

        argv = [ZFS, "list", "-H", "-p", "-o", ",".join(columns), "-t", cfg.type]
        if cfg.recursive:
            argv.append("-r")
        if cfg.depth is not None:
            argv.extend(["-d", str(cfg.depth)])
        if cfg.name:
            argv.append(cfg.name)

        result = self._run(argv, ctx, ErrorCode.ZFS_DATASET_LIST)
        datasets = []
        for row in _rows(result.stdout):
            values = dict(zip(columns, row))
            datasets.append(DatasetInfo(
                name=values.pop("name"),
                type=values.pop("type", ""),
                properties=values
            ))
        return datasets

    def exists(self, name: str, ctx: Optional[ExecutionContext] = None) -> bool:
        """True if the dataset, snapshot or bookmark exists. Never raises not-found."""
        names.validate(name, NameKind.DATASET)
        try:
            self._run([ZFS, "list", "-H", "-o", "name", "-t", "all", name], ctx, ErrorCode.ZFS_DATASET_LIST)
        except RodentError as e:
            if errors.is_error(e, errors.ERR_ZFS_DATASET_NOT_FOUND):
                return False
            raise
        return True

    # =========================================================================
    # Create / destroy
    # =========================================================================

    def create(self, cfg: CreateConfig, ctx: Optional[ExecutionContext] = None):
        if cfg.type == "volume":
            if not cfg.size:
                raise errors.new(ErrorCode.ZFS_INVALID_SIZE, "Volume size is required")
            self.create_volume(VolumeConfig(
                name=cfg.name,
                size=cfg.size,
                properties=cfg.properties,
                parents=cfg.parents,
                sparse=cfg.sparse,
                block_size=cfg.block_size
            ), ctx)
        else:
            self.create_filesystem(FilesystemConfig(
                name=cfg.name,
                properties=cfg.properties,
                parents=cfg.parents
            ), ctx)

    def create_filesystem(self, cfg: FilesystemConfig, ctx: Optional[ExecutionContext] = None):
        names.validate(cfg.name, NameKind.FILESYSTEM)
        argv = [ZFS, "create"]
        if cfg.parents:
            argv.append("-p")
        argv.extend(_property_args("-o", cfg.properties))
        argv.append(cfg.name)

        self._run(argv, ctx, ErrorCode.ZFS_DATASET_CREATE)
        logger.info(f"Created filesystem {cfg.name}")

    def create_volume(self, cfg: VolumeConfig, ctx: Optional[ExecutionContext] = None):
        names.validate(cfg.name, NameKind.FILESYSTEM)
        names.parse_size(cfg.size)

        argv = [ZFS, "create"]
        if cfg.parents:
            argv.append("-p")
        if cfg.sparse:
            argv.append("-s")
        if cfg.block_size:
            names.parse_size(cfg.block_size)
            argv.extend(["-b", cfg.block_size])
        argv.extend(["-V", cfg.size])
        argv.extend(_property_args("-o", cfg.properties))
        argv.append(cfg.name)

        self._run(argv, ctx, ErrorCode.ZFS_DATASET_CREATE)
        logger.info(f"Created volume {cfg.name} ({cfg.size})")

    def _destroy_argv(self, cfg: DestroyConfig) -> List[str]:
        argv = [ZFS, "destroy"]
        if cfg.recursive:
            argv.append("-r")
        if cfg.recursive_dependents:
            argv.append("-R")
        if cfg.force:
            argv.append("-f")
        if cfg.defer:
            argv.append("-d")
        if cfg.dry_run:
            argv.extend(["-n", "-v"])
        argv.append(cfg.name)
        return argv

    def destroy(self, cfg: DestroyConfig, ctx: Optional[ExecutionContext] = None):
        """
        Destroy a dataset, snapshot or bookmark.

        A missing target raises ZFS_DATASET_NOT_FOUND rather than a generic
        destroy failure. Dependent clones block the destroy unless
        recursive_dependents is set.
        """
        names.validate(cfg.name, NameKind.DATASET)
        self._run(self._destroy_argv(cfg), ctx, ErrorCode.ZFS_DATASET_DESTROY)
        logger.info(f"Destroyed {cfg.name}")

    # =========================================================================
    # Properties
    # =========================================================================

    def get_property(self, cfg: PropertyConfig, ctx: Optional[ExecutionContext] = None) -> Property:
        names.validate(cfg.name, NameKind.DATASET)
        names.validate_property_name(cfg.property)

        argv = [ZFS, "get", "-H", "-p", "-o", PROPERTY_COLUMNS, cfg.property, cfg.name]
        result = self._run(argv, ctx, ErrorCode.ZFS_DATASET_GET_PROPERTY)
        props = self._parse_properties(result.stdout)
        if not props:
            raise errors.new(ErrorCode.ZFS_DATASET_PROPERTY_NOT_FOUND, f"{cfg.property} on {cfg.name}")

        prop = props[0]
        # Unset user properties come back as "-" from "-"
        if ":" in cfg.property and prop.value == "-" and prop.source == "-":
            raise errors.new(ErrorCode.ZFS_DATASET_PROPERTY_NOT_FOUND, f"{cfg.property} on {cfg.name}")
        return prop

    def set_property(self, cfg: SetPropertyConfig, ctx: Optional[ExecutionContext] = None):
        names.validate(cfg.name, NameKind.DATASET)
        names.validate_property_name(cfg.property)
        names.validate_property_value(cfg.value)

        self._run([ZFS, "set", f"{cfg.property}={cfg.value}", cfg.name], ctx, ErrorCode.ZFS_DATASET_SET_PROPERTY)
        logger.info(f"Set {cfg.property}={cfg.value} on {cfg.name}")

    def inherit_property(self, cfg: InheritConfig, ctx: Optional[ExecutionContext] = None):
        names.validate(cfg.name, NameKind.DATASET)
        names.validate_property_name(cfg.property)

        argv = [ZFS, "inherit"]
        if cfg.recursive:
            argv.append("-r")
        if cfg.revert:
            argv.append("-S")
        argv.extend([cfg.property, cfg.name])
        self._run(argv, ctx, ErrorCode.ZFS_DATASET_SET_PROPERTY)

    def list_properties(self, cfg: NameConfig, ctx: Optional[ExecutionContext] = None) -> List[Property]:
        names.validate(cfg.name, NameKind.DATASET)
        argv = [ZFS, "get", "-H", "-p", "-o", PROPERTY_COLUMNS, "all", cfg.name]
        result = self._run(argv, ctx, ErrorCode.ZFS_DATASET_GET_PROPERTY)
        return self._parse_properties(result.stdout)

    def _parse_properties(self, output: str) -> List[Property]:
        props = []
        for row in _rows(output):
            if len(row) < 4:
                continue
            props.append(Property(name=row[0], property=row[1], value=row[2], source=row[3]))
        return props

    # =========================================================================
    # Snapshots, clones and bookmarks
    # =========================================================================

    def create_snapshot(self, cfg: SnapshotConfig, ctx: Optional[ExecutionContext] = None) -> str:
        """Create dataset@name and return the full snapshot name."""
        snapshot = f"{cfg.dataset}@{cfg.name}"
        names.validate(snapshot, NameKind.SNAPSHOT)

        argv = [ZFS, "snapshot"]
        if cfg.recursive:
            argv.append("-r")
        argv.extend(_property_args("-o", cfg.properties))
        argv.append(snapshot)

        self._run(argv, ctx, ErrorCode.ZFS_SNAPSHOT_FAILED)
        logger.info(f"Created snapshot {snapshot}")
        return snapshot

    def rollback(self, cfg: RollbackConfig, ctx: Optional[ExecutionContext] = None):
        """
        Roll back to a snapshot.

        Destructive: with destroy_recent, later snapshots are destroyed. The
        caller is expected to have confirmed intent; nothing here prompts.
        """
        names.validate(cfg.name, NameKind.SNAPSHOT)
        argv = [ZFS, "rollback"]
        if cfg.destroy_recent:
            argv.append("-r")
        if cfg.destroy_recent_clones:
            argv.append("-R")
        if cfg.force:
            argv.append("-f")
        argv.append(cfg.name)

        self._run(argv, ctx, ErrorCode.ZFS_SNAPSHOT_ROLLBACK)
        logger.warning(f"Rolled back to {cfg.name}")

    def destroy_snapshot(self, cfg: DestroyConfig, ctx: Optional[ExecutionContext] = None):
        names.validate(cfg.name, NameKind.SNAPSHOT)
        self._run(self._destroy_argv(cfg), ctx, ErrorCode.ZFS_SNAPSHOT_DESTROY)
        logger.info(f"Destroyed snapshot {cfg.name}")

    def clone(self, cfg: CloneConfig, ctx: Optional[ExecutionContext] = None):
        names.validate(cfg.name, NameKind.SNAPSHOT)
        names.validate(cfg.clone_name, NameKind.FILESYSTEM)

        argv = [ZFS, "clone"]
        if cfg.parents:
            argv.append("-p")
        argv.extend(_property_args("-o", cfg.properties))
        argv.extend([cfg.name, cfg.clone_name])

        self._run(argv, ctx, ErrorCode.ZFS_DATASET_CLONE)
        logger.info(f"Cloned {cfg.name} to {cfg.clone_name}")

    def promote_clone(self, cfg: NameConfig, ctx: Optional[ExecutionContext] = None):
        names.validate(cfg.name, NameKind.FILESYSTEM)
        self._run([ZFS, "promote", cfg.name], ctx, ErrorCode.ZFS_CLONE_PROMOTE_FAILED)
        logger.info(f"Promoted clone {cfg.name}")

    def create_bookmark(self, cfg: BookmarkConfig, ctx: Optional[ExecutionContext] = None) -> str:
        """Bookmark a snapshot (or copy a bookmark); returns the bookmark name."""
        if names.BOOKMARK_DELIMITER in cfg.snapshot:
            names.validate(cfg.snapshot, NameKind.BOOKMARK)
        else:
            names.validate(cfg.snapshot, NameKind.SNAPSHOT)

        bookmark = cfg.bookmark
        if names.BOOKMARK_DELIMITER not in bookmark:
            bookmark = f"{names.dataset_of(cfg.snapshot)}{names.BOOKMARK_DELIMITER}{bookmark}"
        names.validate(bookmark, NameKind.BOOKMARK)

        self._run([ZFS, "bookmark", cfg.snapshot, bookmark], ctx, ErrorCode.ZFS_BOOKMARK_FAILED)
        logger.info(f"Created bookmark {bookmark}")
        return bookmark

    # =========================================================================
    # Rename, mount, diff
    # =========================================================================

    def rename(self, cfg: RenameConfig, ctx: Optional[ExecutionContext] = None):
        names.validate(cfg.name, NameKind.DATASET)
        names.validate(cfg.new_name, NameKind.DATASET)
        if cfg.recursive and names.SNAPSHOT_DELIMITER not in cfg.name:
            raise errors.new(ErrorCode.ZFS_DATASET_RENAME, "Recursive rename applies to snapshots only")

        argv = [ZFS, "rename"]
        if cfg.parents:
            argv.append("-p")
        if cfg.force:
            argv.append("-f")
        if cfg.no_remount:
            argv.append("-u")
        if cfg.recursive:
            argv.append("-r")
        argv.extend([cfg.name, cfg.new_name])

        self._run(argv, ctx, ErrorCode.ZFS_DATASET_RENAME)
        logger.info(f"Renamed {cfg.name} to {cfg.new_name}")

    def mount(self, cfg: MountConfig, ctx: Optional[ExecutionContext] = None):
        names.validate(cfg.name, NameKind.FILESYSTEM)
        argv = [ZFS, "mount"]
        if cfg.options:
            argv.extend(["-o", ",".join(cfg.options)])
        if cfg.overlay:
            argv.append("-O")
        if cfg.force:
            argv.append("-f")
        if cfg.load_keys:
            argv.append("-l")
        argv.append(cfg.name)
        self._run(argv, ctx, ErrorCode.ZFS_MOUNT_OPERATION_FAILED)

    def unmount(self, cfg: UnmountConfig, ctx: Optional[ExecutionContext] = None):
        names.validate(cfg.name, NameKind.FILESYSTEM)
        argv = [ZFS, "unmount"]
        if cfg.force:
            argv.append("-f")
        argv.append(cfg.name)
        self._run(argv, ctx, ErrorCode.ZFS_UNMOUNT_OPERATION_FAILED)

    def diff(self, cfg: DiffConfig, ctx: Optional[ExecutionContext] = None) -> List[DiffEntry]:
        """
        Describe changes between a snapshot and a later snapshot or the
        current filesystem.

        Returns:
            One DiffEntry per changed path; renames carry new_path.
        """
        names.validate(cfg.names[0], NameKind.SNAPSHOT)
        if len(cfg.names) > 1:
            names.validate(cfg.names[1], NameKind.DATASET)

        argv = [ZFS, "diff", "-H", "-F"]
        if cfg.timestamps:
            argv.append("-t")
        argv.extend(cfg.names)

        result = self._run(argv, ctx, ErrorCode.ZFS_DATASET_OPERATION)
        entries = []
        for row in _rows(result.stdout):
            timestamp = row.pop(0) if cfg.timestamps else None
            if len(row) < 3:
                continue
            entries.append(DiffEntry(
                change=row[0],
                file_type=row[1],
                path=row[2],
                new_path=row[3] if len(row) > 3 else None,
                timestamp=timestamp
            ))
        return entries

    # =========================================================================
    # Delegated permissions and sharing
    # =========================================================================

    def allow(self, cfg: AllowConfig, ctx: Optional[ExecutionContext] = None):
        """Grant delegated permissions (zfs allow)."""
        names.validate(cfg.name, NameKind.FILESYSTEM)
        if not cfg.permissions:
            raise errors.new(ErrorCode.CMD_INVALID_INPUT, "At least one permission is required")
        perms = _permission_list(cfg.permissions)

        argv = [ZFS, "allow"]
        if cfg.set_name:
            argv.extend(["-s", self._set_name(cfg.set_name)])
        elif cfg.create:
            argv.append("-c")
        else:
            if not (cfg.users or cfg.groups or cfg.everyone):
                raise errors.new(ErrorCode.CMD_INVALID_INPUT, "No users, groups or everyone given")
            argv.extend(_who_args(cfg))
        argv.extend([perms, cfg.name])

        self._run(argv, ctx, ErrorCode.ZFS_DATASET_OPERATION)
        logger.info(f"Granted {perms} on {cfg.name}")

    def unallow(self, cfg: UnallowConfig, ctx: Optional[ExecutionContext] = None):
        """Revoke delegated permissions; an empty permission list revokes all."""
        names.validate(cfg.name, NameKind.FILESYSTEM)

        argv = [ZFS, "unallow"]
        if cfg.recursive:
            argv.append("-r")
        if cfg.set_name:
            argv.extend(["-s", self._set_name(cfg.set_name)])
        elif cfg.create:
            argv.append("-c")
        else:
            if not (cfg.users or cfg.groups or cfg.everyone):
                raise errors.new(ErrorCode.CMD_INVALID_INPUT, "No users, groups or everyone given")
            argv.extend(_who_args(cfg))
        if cfg.permissions:
            argv.append(_permission_list(cfg.permissions))
        argv.append(cfg.name)

        self._run(argv, ctx, ErrorCode.ZFS_DATASET_OPERATION)
        logger.info(f"Revoked permissions on {cfg.name}")

    def _set_name(self, set_name: str) -> str:
        if not set_name.startswith("@"):
            set_name = f"@{set_name}"
        if len(set_name) < 2 or any(ch.isspace() or ch == "," for ch in set_name):
            raise errors.new(ErrorCode.CMD_INVALID_INPUT, f"Invalid permission set '{set_name}'")
        return set_name

    def list_permissions(self, cfg: NameConfig,
                         ctx: Optional[ExecutionContext] = None) -> Dict[str, Dict[str, List[str]]]:
        """
        Show delegated permissions.

        Returns:
            {dataset: {section: [entry, ...]}} where section is one of
            permission_sets, create_time, local, descendent, local_descendent
        """
        names.validate(cfg.name, NameKind.FILESYSTEM)
        result = self._run([ZFS, "allow", cfg.name], ctx, ErrorCode.ZFS_DATASET_OPERATION)

        permissions: Dict[str, Dict[str, List[str]]] = {}
        current: Optional[Dict[str, List[str]]] = None
        section: Optional[str] = None
        for raw in result.stdout.splitlines():
            line = raw.strip()
            if not line:
                continue
            if line.startswith("----") and "Permissions on" in line:
                dataset = line.split("Permissions on", 1)[1].strip(" -")
                current = permissions.setdefault(dataset, {})
                section = None
            elif line in _PERMISSION_SECTIONS and current is not None:
                section = _PERMISSION_SECTIONS[line]
                current.setdefault(section, [])
            elif section is not None and current is not None:
                current[section].append(line)
        return permissions

    def share(self, cfg: ShareConfig, ctx: Optional[ExecutionContext] = None):
        self._run(self._share_argv("share", cfg), ctx, ErrorCode.ZFS_DATASET_OPERATION)

    def unshare(self, cfg: UnshareConfig, ctx: Optional[ExecutionContext] = None):
        self._run(self._share_argv("unshare", cfg), ctx, ErrorCode.ZFS_DATASET_OPERATION)

    def _share_argv(self, verb: str, cfg: ShareConfig) -> List[str]:
        if cfg.all:
            return [ZFS, verb, "-a"]
        if not cfg.name:
            raise errors.new(ErrorCode.CMD_INVALID_INPUT, f"{verb} needs a name or all")
        names.validate(cfg.name, NameKind.FILESYSTEM)
        return [ZFS, verb, cfg.name]

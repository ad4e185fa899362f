"""
Pydantic models for dataset operations.
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


DatasetType = Literal["filesystem", "volume", "snapshot", "bookmark", "all"]

DEFAULT_LIST_PROPERTIES = ["name", "type", "used", "available", "referenced", "mountpoint"]


class NameConfig(BaseModel):
    """Request naming a single dataset."""
    name: str


class ListConfig(BaseModel):
    """Request to list datasets."""
    name: Optional[str] = None  # Root of the listing; all pools if None
    type: DatasetType = "filesystem"
    recursive: bool = False
    depth: Optional[int] = Field(default=None, ge=0)
    properties: List[str] = DEFAULT_LIST_PROPERTIES


class DatasetInfo(BaseModel):
    """One row of a dataset listing."""
    name: str
    type: str
    properties: Dict[str, str] = {}


class CreateConfig(BaseModel):
    """Request to create a filesystem or volume."""
    name: str
    type: Literal["filesystem", "volume"] = "filesystem"
    properties: Dict[str, str] = {}
    parents: bool = False
    size: Optional[str] = None  # Required for volumes, e.g. "10G"
    sparse: bool = False
    block_size: Optional[str] = None


class FilesystemConfig(BaseModel):
    name: str
    properties: Dict[str, str] = {}
    parents: bool = False


class VolumeConfig(BaseModel):
    name: str
    size: str
    properties: Dict[str, str] = {}
    parents: bool = False
    sparse: bool = False
    block_size: Optional[str] = None


class DestroyConfig(BaseModel):
    """Request to destroy a dataset, snapshot or bookmark."""
    name: str
    recursive: bool = False             # -r: children
    recursive_dependents: bool = False  # -R: clones too
    force: bool = False                 # -f: force unmount
    defer: bool = False                 # -d: deferred snapshot destroy
    dry_run: bool = False               # -n -v


class PropertyConfig(BaseModel):
    name: str
    property: str


class SetPropertyConfig(BaseModel):
    name: str
    property: str
    value: str


class InheritConfig(BaseModel):
    name: str
    property: str
    recursive: bool = False
    revert: bool = False  # -S: revert to received value


class Property(BaseModel):
    """A single dataset property."""
    name: str
    property: str
    value: str
    source: str


class SnapshotConfig(BaseModel):
    """Request to create dataset@name."""
    dataset: str
    name: str
    recursive: bool = False
    properties: Dict[str, str] = {}


class RollbackConfig(BaseModel):
    """Roll a dataset back to a snapshot. Destructive; caller confirms intent."""
    name: str  # Full snapshot name
    destroy_recent: bool = False         # -r
    destroy_recent_clones: bool = False  # -R
    force: bool = False                  # -f


class CloneConfig(BaseModel):
    name: str        # Source snapshot
    clone_name: str  # Target filesystem
    properties: Dict[str, str] = {}
    parents: bool = False


class BookmarkConfig(BaseModel):
    snapshot: str  # Source snapshot (or bookmark)
    bookmark: str  # Bookmark name, with or without the dataset# prefix


class RenameConfig(BaseModel):
    name: str
    new_name: str
    parents: bool = False     # -p
    force: bool = False       # -f
    no_remount: bool = False  # -u
    recursive: bool = False   # -r, snapshots only


class MountConfig(BaseModel):
    name: str
    options: List[str] = []
    overlay: bool = False
    force: bool = False
    load_keys: bool = False


class UnmountConfig(BaseModel):
    name: str
    force: bool = False


class DiffConfig(BaseModel):
    """Diff a snapshot against a later snapshot or the live filesystem."""
    names: List[str] = Field(min_length=1, max_length=2)
    timestamps: bool = False


class DiffEntry(BaseModel):
    change: str  # '+', '-', 'M' or 'R'
    file_type: str
    path: str
    new_path: Optional[str] = None
    timestamp: Optional[str] = None


class AllowConfig(BaseModel):
    """Delegate permissions on a dataset."""
    name: str
    permissions: List[str]
    users: List[str] = []
    groups: List[str] = []
    everyone: bool = False
    create: bool = False      # -c: create-time permissions
    set_name: Optional[str] = None  # -s @set
    local: bool = False       # -l
    descendent: bool = False  # -d


class UnallowConfig(AllowConfig):
    permissions: List[str] = []  # Empty removes everything for the who-list
    recursive: bool = False


class ShareConfig(BaseModel):
    name: Optional[str] = None
    all: bool = False


class UnshareConfig(ShareConfig):
    pass

"""
ZFS identifier validation.

Pure checks of pool, dataset, snapshot and bookmark names, plus property
names/values and size strings. Each check raises the RodentError of the
first rule that fails; nothing here touches the system.
"""

import re
from enum import Enum
from typing import List, Optional, Tuple

from rodent import errors
from rodent.errors import ErrorCode

# ZFS_MAX_DATASET_NAME_LEN; a name must be strictly shorter
MAX_NAME_LEN = 256
# ZAP_MAXNAMELEN / ZAP_MAXVALUELEN
MAX_PROPERTY_NAME_LEN = 256
MAX_PROPERTY_VALUE_LEN = 8192

SNAPSHOT_DELIMITER = "@"
BOOKMARK_DELIMITER = "#"

RESERVED_POOL_PREFIXES = ("mirror", "raidz", "draid", "spare")
RESERVED_POOL_NAMES = ("log",)

_VALID_COMPONENT_CHAR = re.compile(r"[A-Za-z0-9\-_.: ]")
_DISK_LIKE = re.compile(r"^c[0-9]")
_PROPERTY_NAME = re.compile(r"^[a-z][a-z0-9_:.\-]*$")
_SIZE = re.compile(r"^(\d+(?:\.\d+)?)\s*([KMGTPE]?)(?:i?B)?$", re.IGNORECASE)
_SIZE_MULTIPLIERS = {
    "": 1,
    "K": 1024,
    "M": 1024 ** 2,
    "G": 1024 ** 3,
    "T": 1024 ** 4,
    "P": 1024 ** 5,
    "E": 1024 ** 6,
}


class NameKind(str, Enum):
    POOL = "pool"
    FILESYSTEM = "filesystem"  # filesystem or volume, no delimiter
    DATASET = "dataset"        # dataset, snapshot or bookmark
    SNAPSHOT = "snapshot"
    BOOKMARK = "bookmark"


def _fail(code: int, name: str):
    raise errors.new(code, f"'{name}'")


def _split(name: str) -> Tuple[List[str], Optional[str], Optional[str]]:
    """Split into path components, delimiter and the part after it."""
    delimiter = None
    tail = None
    path = name
    for delim in (SNAPSHOT_DELIMITER, BOOKMARK_DELIMITER):
        if delim in name:
            delimiter = delim
            path, tail = name.split(delim, 1)
            break
    return path.split("/"), delimiter, tail


def _check_component(component: str, name: str, is_pool: bool):
    if component == "":
        _fail(ErrorCode.ZFS_NAME_EMPTY_COMPONENT, name)

    for ch in component:
        if not _VALID_COMPONENT_CHAR.match(ch):
            _fail(ErrorCode.ZFS_NAME_INVALID_CHAR, name)

    if component == ".":
        _fail(ErrorCode.ZFS_NAME_SELF_REF, name)
    if component == "..":
        _fail(ErrorCode.ZFS_NAME_PARENT_REF, name)

    if is_pool:
        lowered = component.lower()
        if lowered in RESERVED_POOL_NAMES or lowered.startswith(RESERVED_POOL_PREFIXES):
            _fail(ErrorCode.ZFS_NAME_RESERVED, name)
        if _DISK_LIKE.match(component):
            _fail(ErrorCode.ZFS_NAME_DISK_LIKE, name)


def validate(name: str, kind: NameKind = NameKind.DATASET):
    """
    Validate a ZFS identifier.

    Rules are evaluated in a fixed order and the first failure is raised:
    empty/leading-slash/trailing-slash, delimiter count, per-component
    (empty, invalid char, '.'/'..', reserved, disk-like), pool starts with a
    letter, total length, then delimiter presence for snapshot/bookmark.

    Raises:
        RodentError with one of the ZFS_NAME_* codes
    """
    kind = NameKind(kind)
    if name is None or name == "":
        _fail(ErrorCode.ZFS_NAME_EMPTY_COMPONENT, "")
    if name.startswith("/"):
        _fail(ErrorCode.ZFS_NAME_LEADING_SLASH, name)
    if name.endswith("/"):
        _fail(ErrorCode.ZFS_NAME_TRAILING_SLASH, name)

    if name.count(SNAPSHOT_DELIMITER) + name.count(BOOKMARK_DELIMITER) > 1:
        _fail(ErrorCode.ZFS_NAME_MULTIPLE_DELIMITERS, name)

    components, delimiter, tail = _split(name)

    if delimiter is not None and kind in (NameKind.POOL, NameKind.FILESYSTEM):
        _fail(ErrorCode.ZFS_NAME_INVALID_CHAR, name)
    if kind == NameKind.POOL and len(components) > 1:
        _fail(ErrorCode.ZFS_NAME_INVALID_CHAR, name)

    for index, component in enumerate(components):
        _check_component(component, name, is_pool=(index == 0))
    if tail is not None:
        _check_component(tail, name, is_pool=False)

    if not components[0][:1].isalpha() or not components[0][:1].isascii():
        _fail(ErrorCode.ZFS_NAME_NO_LETTER, name)

    if len(name) >= MAX_NAME_LEN:
        _fail(ErrorCode.ZFS_NAME_TOO_LONG, name)

    if kind == NameKind.SNAPSHOT and delimiter != SNAPSHOT_DELIMITER:
        _fail(ErrorCode.ZFS_NAME_NO_AT_SIGN, name)
    if kind == NameKind.BOOKMARK and delimiter != BOOKMARK_DELIMITER:
        _fail(ErrorCode.ZFS_NAME_NO_POUND, name)


def is_valid(name: str, kind: NameKind = NameKind.DATASET) -> bool:
    try:
        validate(name, kind)
    except errors.RodentError:
        return False
    return True


def dataset_of(name: str) -> str:
    """Strip a snapshot or bookmark suffix."""
    components, _, _ = _split(name)
    return "/".join(components)


# =========================================================================
# Properties and sizes
# =========================================================================

def validate_property_name(prop: str):
    if not prop or len(prop) >= MAX_PROPERTY_NAME_LEN or not _PROPERTY_NAME.match(prop):
        raise errors.new(ErrorCode.ZFS_DATASET_INVALID_PROPERTY, f"Invalid property name '{prop}'")


def validate_property_value(value: str):
    if len(value) > MAX_PROPERTY_VALUE_LEN:
        raise errors.new(
            ErrorCode.ZFS_PROPERTY_VALUE_TOO_LONG,
            f"{len(value)} bytes exceeds {MAX_PROPERTY_VALUE_LEN}"
        )
    if "\x00" in value or "\n" in value:
        raise errors.new(ErrorCode.ZFS_INVALID_PROPERTY_VALUE, "Control characters not allowed")


def parse_size(size: str) -> int:
    """
    Parse a ZFS size string ('10G', '512M', '1.5T', '4096') to bytes.

    Raises:
        RodentError ZFS_INVALID_SIZE when malformed or not positive
    """
    match = _SIZE.match(str(size).strip())
    if not match:
        raise errors.new(ErrorCode.ZFS_INVALID_SIZE, f"'{size}'")
    number, unit = match.groups()
    value = int(float(number) * _SIZE_MULTIPLIERS[unit.upper()])
    if value <= 0:
        raise errors.new(ErrorCode.ZFS_INVALID_SIZE, f"'{size}' must be positive")
    return value

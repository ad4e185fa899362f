"""
Pydantic models for ZFS pools.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel


class VDevSpec(BaseModel):
    type: str = "stripe"  # stripe, mirror, raidz, raidz2, raidz3
    devices: List[str]


class PoolCreateConfig(BaseModel):
    name: str
    vdev_spec: List[VDevSpec]
    force: bool = False
    mountpoint: Optional[str] = None
    properties: Dict[str, str] = {}     # -o pool properties
    fs_properties: Dict[str, str] = {}  # -O root dataset properties


class PoolInfo(BaseModel):
    """ZFS pool information."""
    name: str
    size_bytes: int
    allocated_bytes: int
    free_bytes: int
    health: str  # ONLINE, DEGRADED, FAULTED, OFFLINE, UNAVAIL

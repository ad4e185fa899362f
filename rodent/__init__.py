"""
Rodent - node-local ZFS control plane.

Provides:
- Classified error taxonomy for storage operations
- Supervised execution of zfs/zpool commands
- Dataset, snapshot, clone, bookmark and permission management
- Full, incremental, resumable and SSH-piped replication
"""

__version__ = "0.1.0"
__author__ = "StrataSTOR"

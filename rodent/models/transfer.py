"""
Pydantic models for send/receive transfers.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel


class RemoteConfig(BaseModel):
    """Where and how to reach a remote receiver over SSH."""
    host: str
    user: str = "root"
    port: int = 22
    private_key: Optional[str] = None  # Path to the private key file
    skip_host_key_check: bool = False
    known_hosts_file: Optional[str] = None
    use_sudo: bool = False
    timeout: Optional[float] = None


class SendConfig(BaseModel):
    snapshot: Optional[str] = None
    from_snapshot: Optional[str] = None  # Base for an incremental stream
    intermediary: bool = False           # -I instead of -i
    resume_token: Optional[str] = None   # Supersedes snapshot fields
    compressed: bool = False             # -c
    raw: bool = False                    # -w
    large_blocks: bool = False           # -L
    embed_data: bool = False             # -e
    properties: bool = False             # -p
    replicate: bool = False              # -R
    verbose: bool = False                # -v
    progress: bool = False               # -P
    dry_run: bool = False                # -n
    log_level: Optional[str] = None


class ReceiveConfig(BaseModel):
    target: str
    force: bool = False         # -F
    resumable: bool = False     # -s
    unmounted: bool = False     # -u
    use_parent: bool = False    # -d
    use_last: bool = False      # -e
    dry_run: bool = False       # -n
    verbose: bool = False       # -v
    properties: Dict[str, str] = {}      # -o k=v
    exclude_properties: List[str] = []   # -x prop
    remote: Optional[RemoteConfig] = None


class TransferConfig(BaseModel):
    """HTTP body for a combined transfer."""
    send: SendConfig
    receive: ReceiveConfig

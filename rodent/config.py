"""
Configuration for Rodent.

Reads from environment variables (RODENT_ prefix) with sensible defaults.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_prefix="RODENT_")

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8042

    # ZFS binaries
    zfs_binary: str = "zfs"
    zpool_binary: str = "zpool"

    # Privilege elevation for zfs/zpool (sudo -n, never prompts)
    use_sudo: bool = False
    sudo_binary: str = "sudo"

    # Command supervision
    command_timeout: float = 0  # seconds, 0 disables the default deadline
    terminate_grace_seconds: float = 5.0
    poll_interval_seconds: float = 0.1

    # Transfers
    transfer_chunk_size: int = 128 * 1024
    ssh_connect_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"


settings = Settings()

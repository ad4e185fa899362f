"""
Remote receive over SSH.

Runs `zfs receive` on another host through a paramiko session and pumps
the local send stream into the channel in fixed-size chunks, so the
stream is never held in memory.
"""

import logging
import os
import select
import shlex
import time
from typing import List, Optional, Sequence

import paramiko

from rodent import errors
from rodent.config import settings
from rodent.errors import ErrorCode, RodentError
from rodent.models.transfer import RemoteConfig
from rodent.services.command import (
    CommandOptions,
    CommandResult,
    ExecutionContext,
    StdinSource,
    classify_failure,
    validate_argv,
)

logger = logging.getLogger(__name__)


class RemoteReceiver:
    """StreamRunner that executes the receive side on a remote host."""

    def __init__(self, config: RemoteConfig):
        self.config = config

    def _connection_error(self, message: str, exc: Exception, reason: str) -> RodentError:
        err = errors.new(ErrorCode.CMD_EXECUTION, f"{message}: {exc}")
        return err.with_metadata_items({
            "host": self.config.host,
            "port": self.config.port,
            "user": self.config.user,
            "reason": reason,
        })

    def connect(self) -> paramiko.SSHClient:
        """
        Open an SSH connection with host-key verification.

        Unknown hosts are rejected unless skip_host_key_check is set.

        Returns:
            Connected paramiko.SSHClient; the caller closes it
        """
        cfg = self.config
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        if cfg.known_hosts_file:
            client.load_host_keys(cfg.known_hosts_file)
        if cfg.skip_host_key_check:
            logger.warning(f"Host key verification disabled for {cfg.host}")
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())

        try:
            client.connect(
                cfg.host,
                port=cfg.port,
                username=cfg.user,
                key_filename=cfg.private_key,
                timeout=cfg.timeout or settings.ssh_connect_timeout
            )
        except paramiko.AuthenticationException as e:
            client.close()
            raise self._connection_error("SSH authentication failed", e, "authentication") from e
        except paramiko.BadHostKeyException as e:
            client.close()
            raise self._connection_error("SSH host key mismatch", e, "host_key") from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise self._connection_error("SSH connection failed", e, "connection") from e

        logger.info(f"SSH connected to {cfg.user}@{cfg.host}:{cfg.port}")
        return client

    def _command(self, argv: Sequence[str]) -> List[str]:
        validate_argv(argv)
        cmd = list(argv)
        if self.config.use_sudo:
            cmd = ["sudo", "-n"] + cmd
        return cmd

    def run_streaming(
        self,
        argv: Sequence[str],
        stdin_source: StdinSource,
        ctx: Optional[ExecutionContext] = None,
        options: Optional[CommandOptions] = None
    ) -> CommandResult:
        """
        Run argv on the remote host, feeding it stdin_source.

        Args:
            argv: Receive argument vector, quoted with shlex for the remote shell
            stdin_source: Local byte stream (file object or fd) to forward
            ctx: Caller's cancellation scope; checked between chunks
            options: Timeout and classification options

        Returns:
            CommandResult on remote exit status 0

        Raises:
            RodentError: CMD_EXECUTION for connection failures, CMD_CONTEXT or
            CMD_TIMEOUT on cancellation, classified failure on non-zero exit
        """
        options = options or CommandOptions()
        ctx = ctx or ExecutionContext.background()
        timeout = options.timeout if options.timeout is not None else settings.command_timeout
        scope = ctx.with_timeout(timeout)

        command = shlex.join(self._command(argv))
        if scope.done:
            raise scope.error(command)
        fd = stdin_source if isinstance(stdin_source, int) else stdin_source.fileno()

        client = self.connect()
        channel = None
        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []
        try:
            channel = client.get_transport().open_session()
            logger.debug(f"Running remote command on {self.config.host}: {command}")
            channel.exec_command(command)

            self._pump(channel, fd, scope, command, stdout_chunks, stderr_chunks)
            channel.shutdown_write()

            while not channel.status_event.wait(settings.poll_interval_seconds):
                self._check(scope, channel, command)
                self._drain(channel, stdout_chunks, stderr_chunks)
            exit_code = channel.recv_exit_status()
            self._drain(channel, stdout_chunks, stderr_chunks)
        except paramiko.SSHException as e:
            raise self._connection_error("SSH channel failed", e, "channel") from e
        finally:
            if channel is not None:
                channel.close()
            client.close()

        stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
        stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
        result = CommandResult(command, exit_code, stdout, stderr)
        if exit_code != 0:
            logger.error(f"Remote command failed on {self.config.host} (ret={exit_code}): {command}")
            err = classify_failure(argv, command, exit_code, stdout, stderr, options.classify)
            raise err.with_metadata("host", self.config.host)
        return result

    # =========================================================================
    # Stream pump
    # =========================================================================

    def _check(self, ctx: ExecutionContext, channel: paramiko.Channel, command: str):
        if ctx.done:
            logger.error(f"Remote command interrupted on {self.config.host}: {command}")
            channel.close()
            raise ctx.error(command).with_metadata("host", self.config.host)

    def _drain(self, channel: paramiko.Channel, stdout_chunks: List[bytes], stderr_chunks: List[bytes]):
        while channel.recv_ready():
            stdout_chunks.append(channel.recv(65536))
        while channel.recv_stderr_ready():
            stderr_chunks.append(channel.recv_stderr(65536))

    def _pump(self, channel: paramiko.Channel, fd: int, ctx: ExecutionContext, command: str,
              stdout_chunks: List[bytes], stderr_chunks: List[bytes]):
        """Copy fd into the channel until EOF or until the remote side exits."""
        poll = settings.poll_interval_seconds
        chunk_size = settings.transfer_chunk_size
        while True:
            self._check(ctx, channel, command)
            self._drain(channel, stdout_chunks, stderr_chunks)
            if channel.exit_status_ready():
                return

            readable, _, _ = select.select([fd], [], [], poll)
            if not readable:
                continue
            data = os.read(fd, chunk_size)
            if not data:
                return

            while data:
                self._check(ctx, channel, command)
                if channel.exit_status_ready():
                    return
                if not channel.send_ready():
                    self._drain(channel, stdout_chunks, stderr_chunks)
                    time.sleep(0.01)
                    continue
                sent = channel.send(data)
                if sent == 0:
                    # channel closed under us
                    return
                data = data[sent:]

"""
Send/receive transfer functionality for the Dataset Manager.

A transfer is a `zfs send` whose stdout is handed to a `zfs receive`,
either a local child process or a receive running on a remote host over
SSH. The orchestration is the same for both; only the StreamRunner
differs.
"""

import logging
from typing import List, Optional

from rodent import errors
from rodent.config import settings
from rodent.errors import ErrorCode, RodentError
from rodent.models.dataset import NameConfig
from rodent.models.transfer import ReceiveConfig, SendConfig
from rodent.services import names
from rodent.services.command import ZFS, CommandExecutor, ExecutionContext, StreamRunner
from rodent.services.names import NameKind
from rodent.services.remote import RemoteReceiver

logger = logging.getLogger(__name__)

MODE_FULL = "full"
MODE_INCREMENTAL = "incremental"
MODE_RESUME = "resume"

_CONTEXT_CODES = (ErrorCode.CMD_CONTEXT, ErrorCode.CMD_TIMEOUT)


def transfer_mode(cfg: SendConfig) -> str:
    if cfg.resume_token:
        return MODE_RESUME
    if cfg.from_snapshot:
        return MODE_INCREMENTAL
    return MODE_FULL


class TransferMixin:
    """Mixin providing send/receive transfers for DatasetManager"""

    # Set by DatasetManager
    executor: CommandExecutor

    # =========================================================================
    # Argument construction
    # =========================================================================

    def send_argv(self, cfg: SendConfig) -> List[str]:
        """
        Build the `zfs send` argv.

        A resume token supersedes the snapshot fields and only the flags
        `zfs send -t` accepts are passed along with it.
        """
        argv = [ZFS, "send"]
        if cfg.resume_token:
            if cfg.embed_data:
                argv.append("-e")
            if cfg.verbose:
                argv.append("-v")
            if cfg.progress:
                argv.append("-P")
            if cfg.dry_run:
                argv.append("-n")
            argv.extend(["-t", cfg.resume_token])
            return argv

        if not cfg.snapshot:
            raise errors.new(ErrorCode.ZFS_SNAPSHOT_INVALID_NAME, "Send needs a snapshot or a resume token")
        names.validate(cfg.snapshot, NameKind.SNAPSHOT)

        for flag, enabled in (
            ("-c", cfg.compressed),
            ("-w", cfg.raw),
            ("-L", cfg.large_blocks),
            ("-e", cfg.embed_data),
            ("-p", cfg.properties),
            ("-R", cfg.replicate),
            ("-v", cfg.verbose),
            ("-P", cfg.progress),
            ("-n", cfg.dry_run),
        ):
            if enabled:
                argv.append(flag)

        if cfg.from_snapshot:
            base = cfg.from_snapshot
            # "@snap" / "#mark" are shorthand for the same dataset
            if base[0] in (names.SNAPSHOT_DELIMITER, names.BOOKMARK_DELIMITER):
                full_base = names.dataset_of(cfg.snapshot) + base
            else:
                full_base = base
            if names.BOOKMARK_DELIMITER in full_base:
                if cfg.intermediary:
                    raise errors.new(ErrorCode.CMD_INVALID_INPUT, "Intermediary streams cannot start from a bookmark")
                names.validate(full_base, NameKind.BOOKMARK)
            else:
                names.validate(full_base, NameKind.SNAPSHOT)
            argv.extend(["-I" if cfg.intermediary else "-i", base])

        argv.append(cfg.snapshot)
        return argv

    def receive_argv(self, cfg: ReceiveConfig) -> List[str]:
        names.validate(cfg.target, NameKind.DATASET)
        if cfg.use_parent and cfg.use_last:
            raise errors.new(ErrorCode.CMD_INVALID_INPUT, "use_parent and use_last are mutually exclusive")

        argv = [ZFS, "receive"]
        for flag, enabled in (
            ("-F", cfg.force),
            ("-s", cfg.resumable),
            ("-u", cfg.unmounted),
            ("-d", cfg.use_parent),
            ("-e", cfg.use_last),
            ("-n", cfg.dry_run),
            ("-v", cfg.verbose),
        ):
            if enabled:
                argv.append(flag)

        for key, value in cfg.properties.items():
            names.validate_property_name(key)
            names.validate_property_value(value)
            argv.extend(["-o", f"{key}={value}"])
        for prop in cfg.exclude_properties:
            names.validate_property_name(prop)
            argv.extend(["-x", prop])

        argv.append(cfg.target)
        return argv

    def destination(self, send_cfg: SendConfig, recv_cfg: ReceiveConfig) -> str:
        """
        The filesystem a receive actually writes to.

        With use_parent the sent path minus its pool is appended to the
        target; with use_last only its final component is.
        """
        target = names.dataset_of(recv_cfg.target)
        if not send_cfg.snapshot or send_cfg.resume_token:
            return target
        source = names.dataset_of(send_cfg.snapshot)
        if recv_cfg.use_parent:
            _, _, rest = source.partition("/")
            return f"{target}/{rest}" if rest else target
        if recv_cfg.use_last:
            return f"{target}/{source.rsplit('/', 1)[-1]}"
        return target

    def _stream_runner(self, recv_cfg: ReceiveConfig) -> StreamRunner:
        if recv_cfg.remote is not None:
            return RemoteReceiver(recv_cfg.remote)
        return self.executor

    # =========================================================================
    # Public API
    # =========================================================================

    def get_resume_token(self, cfg: NameConfig, ctx: Optional[ExecutionContext] = None) -> str:
        """
        Fetch the receive_resume_token of a partially received dataset.

        Raises:
            RodentError ZFS_DATASET_NO_RECEIVE_TOKEN when none is recorded
        """
        names.validate(cfg.name, NameKind.FILESYSTEM)
        argv = [ZFS, "get", "-H", "-o", "value", "receive_resume_token", cfg.name]
        result = self._run(argv, ctx, ErrorCode.ZFS_DATASET_GET_PROPERTY)

        token = result.stdout.strip()
        if not token or token == "-":
            raise errors.new(ErrorCode.ZFS_DATASET_NO_RECEIVE_TOKEN, cfg.name)
        return token

    def send_receive(self, send_cfg: SendConfig, recv_cfg: ReceiveConfig,
                     ctx: Optional[ExecutionContext] = None):
        """
        Stream a snapshot (full, incremental or resumed) into a receive.

        Args:
            send_cfg: Source snapshot, optional base, or a resume token
            recv_cfg: Target and receive flags; remote routes the stream over SSH
            ctx: Caller's cancellation scope, bound to both sides

        Raises:
            RodentError: ZFS_DATASET_SEND or ZFS_DATASET_RECEIVE, or the
            semantic/context code of the underlying failure. A failed
            resumable local receive carries the destination's token as
            resume_token metadata. Nothing is retried.
        """
        ctx = ctx or ExecutionContext.background()
        mode = transfer_mode(send_cfg)
        level = logging.INFO
        if send_cfg.log_level:
            level = getattr(logging, send_cfg.log_level.upper(), logging.INFO)

        send_argv = self.send_argv(send_cfg)
        recv_argv = self.receive_argv(recv_cfg)
        runner = self._stream_runner(recv_cfg)
        source = send_cfg.snapshot or "resume token"
        where = f"{recv_cfg.remote.host}:" if recv_cfg.remote else ""
        logger.log(level, f"Starting {mode} transfer {source} -> {where}{recv_cfg.target}")

        with self.executor.start(send_argv, ctx) as sender:
            try:
                runner.run_streaming(recv_argv, sender.stdout, ctx)
            except RodentError as recv_err:
                sender.close_stdout()
                raise self._receive_failure(recv_err, sender, send_cfg, recv_cfg, ctx)

            sender.close_stdout()
            try:
                sender.wait()
            except RodentError as send_err:
                raise self._classified(send_err, ErrorCode.ZFS_DATASET_SEND)

            if sender.stderr_text.strip():
                logger.debug(f"Send output: {sender.stderr_text.strip()}")

        logger.log(level, f"Completed {mode} transfer {source} -> {where}{recv_cfg.target}")

    def _receive_failure(self, recv_err: RodentError, sender, send_cfg: SendConfig,
                         recv_cfg: ReceiveConfig, ctx: ExecutionContext) -> RodentError:
        """
        Decide which side a failed pipe is blamed on.

        Cancellation wins. A sender that exited on its own (not from the
        broken pipe the receive left behind) is the root cause; otherwise
        the receive is.
        """
        if recv_err.code in _CONTEXT_CODES:
            return recv_err

        send_err = sender.failure(settings.terminate_grace_seconds)
        if (send_err is not None and sender.returncode is not None and sender.returncode > 0
                and "broken pipe" not in sender.stderr_text.lower()):
            logger.error(f"Send failed before receive: {sender.command}")
            err = self._classified(send_err, ErrorCode.ZFS_DATASET_SEND)
            return err.with_metadata("receive_stderr", recv_err.metadata.get("stderr", ""))

        err = self._classified(recv_err, ErrorCode.ZFS_DATASET_RECEIVE)
        if recv_cfg.resumable and recv_cfg.remote is None and not ctx.done:
            dest = self.destination(send_cfg, recv_cfg)
            try:
                token = self.get_resume_token(NameConfig(name=dest), ctx)
            except RodentError as token_err:
                logger.debug(f"No resume token on {dest}: {token_err}")
            else:
                logger.info(f"Receive into {dest} left a resume token")
                err = err.with_metadata("resume_token", token)
        return err

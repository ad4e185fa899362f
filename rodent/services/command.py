"""
Command execution service.

Builds argument vectors for zfs/zpool, spawns them without a shell,
supervises them under the caller's ExecutionContext and classifies
failures into the Rodent error taxonomy.
"""

import logging
import shlex
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import IO, Deque, Dict, List, Optional, Protocol, Sequence, Union

from rodent import errors
from rodent.config import settings
from rodent.errors import ErrorCode, RodentError

logger = logging.getLogger(__name__)

ZFS = "zfs"
ZPOOL = "zpool"
ENGINE_COMMANDS = (ZFS, ZPOOL)

# Chunks of sender stderr kept for diagnostics; older output is dropped
STDERR_TAIL_CHUNKS = 16

# Engine stderr fragments mapped to semantic codes. First match wins.
STDERR_CLASSIFIERS = (
    ("dataset does not exist", ErrorCode.ZFS_DATASET_NOT_FOUND),
    ("could not find any snapshots to destroy", ErrorCode.ZFS_DATASET_NOT_FOUND),
    ("no such pool", ErrorCode.ZFS_POOL_NOT_FOUND),
    ("does not have any resumable receive state", ErrorCode.ZFS_DATASET_NO_RECEIVE_TOKEN),
    ("permission denied", ErrorCode.ZFS_PERMISSION_DENIED),
    ("bad property list", ErrorCode.ZFS_DATASET_PROPERTY_NOT_FOUND),
    ("invalid property", ErrorCode.ZFS_DATASET_PROPERTY_NOT_FOUND),
    ("value is too long", ErrorCode.ZFS_PROPERTY_VALUE_TOO_LONG),
    ("out of space", ErrorCode.ZFS_QUOTA_EXCEEDED),
    ("quota exceeded", ErrorCode.ZFS_QUOTA_EXCEEDED),
)

StdinSource = Union[IO[bytes], int]


class ExecutionContext:
    """
    Cancellation and deadline scope for one caller.

    Child scopes created with with_timeout() share the parent's cancel
    event, so cancelling the parent cancels every child.
    """

    def __init__(self, deadline: Optional[float] = None, cancel_event: Optional[threading.Event] = None):
        self._deadline = deadline
        self._cancel_event = cancel_event or threading.Event()

    @classmethod
    def background(cls) -> "ExecutionContext":
        return cls()

    @classmethod
    def with_deadline_in(cls, seconds: float) -> "ExecutionContext":
        return cls().with_timeout(seconds)

    def with_timeout(self, seconds: Optional[float]) -> "ExecutionContext":
        if not seconds or seconds <= 0:
            return self
        deadline = time.monotonic() + seconds
        if self._deadline is not None:
            deadline = min(deadline, self._deadline)
        return ExecutionContext(deadline=deadline, cancel_event=self._cancel_event)

    def cancel(self):
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def error(self, command: str = "") -> Optional[RodentError]:
        """The classified error for a finished scope, or None while it is live."""
        if self.cancelled:
            err = errors.new(ErrorCode.CMD_CONTEXT, "Operation cancelled")
        elif self.expired:
            err = errors.new(ErrorCode.CMD_TIMEOUT, "Operation deadline exceeded")
        else:
            return None
        if command:
            err = err.with_metadata("command", command)
        return err


@dataclass
class CommandOptions:
    timeout: Optional[float] = None
    env: Optional[Dict[str, str]] = None
    cwd: Optional[str] = None
    input: Optional[bytes] = None
    classify: bool = True


@dataclass
class CommandResult:
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class StreamRunner(Protocol):
    """Anything that can run a command fed from a byte stream."""

    def run_streaming(
        self,
        argv: Sequence[str],
        stdin_source: StdinSource,
        ctx: Optional[ExecutionContext] = None,
        options: Optional[CommandOptions] = None
    ) -> CommandResult:
        ...


def classify_failure(argv: Sequence[str], command: str, exit_code: int, stdout: str, stderr: str,
                     classify: bool = True) -> RodentError:
    """
    Build the error for a command that exited non-zero.

    Engine commands are re-classified by known stderr fragments so callers
    can branch on semantic codes.
    """
    code = ErrorCode.CMD_EXECUTION
    if classify and argv and argv[0] in ENGINE_COMMANDS:
        lowered = stderr.lower()
        for fragment, semantic_code in STDERR_CLASSIFIERS:
            if fragment in lowered:
                code = semantic_code
                break
    err = errors.command_error(command, exit_code, stderr.strip(), code=code)
    if stdout.strip():
        err = err.with_metadata("output", stdout.strip())
    return err


def validate_argv(argv: Sequence[str]):
    """Every element must be a str without NUL bytes."""
    if not argv:
        raise errors.new(ErrorCode.CMD_INVALID_INPUT, "Empty command")
    for part in argv:
        if not isinstance(part, str):
            raise errors.new(ErrorCode.CMD_INVALID_INPUT, f"Non-string argument: {part!r}")
        if "\x00" in part:
            raise errors.new(ErrorCode.CMD_INVALID_INPUT, "NUL byte in argument")


def _decode(data: Optional[bytes]) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


class ManagedProcess:
    """
    A spawned process whose stdout is handed to someone else.

    Use as a context manager: leaving the block terminates and reaps the
    process whatever happened inside it.
    """

    def __init__(self, proc: subprocess.Popen, argv: Sequence[str], command: str,
                 ctx: ExecutionContext, executor: "CommandExecutor"):
        self.proc = proc
        self.argv = list(argv)
        self.command = command
        self.ctx = ctx
        self._executor = executor
        self._stderr_chunks: Deque[bytes] = deque(maxlen=STDERR_TAIL_CHUNKS)
        self._stderr_lock = threading.Lock()
        self._stderr_thread = threading.Thread(target=self._drain_stderr, daemon=True)
        self._stderr_thread.start()

    @property
    def stdout(self) -> IO[bytes]:
        return self.proc.stdout

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def stderr_text(self) -> str:
        """Tail of the process stderr collected so far."""
        with self._stderr_lock:
            return _decode(b"".join(self._stderr_chunks))

    def _drain_stderr(self):
        # Read to EOF so the child never blocks on a full pipe
        try:
            for chunk in iter(lambda: self.proc.stderr.read1(65536), b""):
                with self._stderr_lock:
                    self._stderr_chunks.append(chunk)
        except (OSError, ValueError):
            pass

    def close_stdout(self):
        """Drop our copy of the stdout pipe; the consumer owns the other end."""
        if self.proc.stdout and not self.proc.stdout.closed:
            self.proc.stdout.close()

    def wait(self, classify: bool = True) -> CommandResult:
        """Wait for exit under the context; raise a classified error on failure."""
        poll = settings.poll_interval_seconds
        while True:
            try:
                self.proc.wait(timeout=poll)
                break
            except subprocess.TimeoutExpired:
                if self.ctx.done:
                    self._executor.terminate(self.proc)
                    self._stderr_thread.join(timeout=1)
                    raise self.ctx.error(self.command) from None

        self._stderr_thread.join()
        result = CommandResult(self.command, self.proc.returncode, stderr=self.stderr_text)
        if result.exit_code != 0:
            logger.error(f"Command failed (ret={result.exit_code}): {self.command}")
            raise classify_failure(self.argv, self.command, result.exit_code, "", result.stderr, classify)
        return result

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.returncode

    def failure(self, timeout: float, classify: bool = True) -> Optional[RodentError]:
        """
        Give the process up to timeout seconds to exit.

        Returns:
            The classified error if it exited non-zero, None if it succeeded
            or is still running.
        """
        try:
            self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        self._stderr_thread.join(timeout=1)
        if self.proc.returncode == 0:
            return None
        return classify_failure(self.argv, self.command, self.proc.returncode, "", self.stderr_text, classify)

    def close(self):
        self._executor.terminate(self.proc)
        self.close_stdout()
        if self.proc.stderr and not self.proc.stderr.closed:
            self._stderr_thread.join(timeout=1)
            self.proc.stderr.close()

    def __enter__(self) -> "ManagedProcess":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class CommandExecutor:
    """
    Runs zfs/zpool (or any argv) as supervised child processes.

    Holds no mutable state; safe to share across threads.
    """

    def __init__(self, use_sudo: Optional[bool] = None, binaries: Optional[Dict[str, str]] = None):
        self.use_sudo = settings.use_sudo if use_sudo is None else use_sudo
        self.binaries = {
            ZFS: settings.zfs_binary,
            ZPOOL: settings.zpool_binary,
        }
        if binaries:
            self.binaries.update(binaries)

    # =========================================================================
    # Argument handling
    # =========================================================================

    def build(self, argv: Sequence[str]) -> List[str]:
        """Resolve logical binaries and apply sudo. Never goes through a shell."""
        validate_argv(argv)
        head = argv[0]
        cmd = [self.binaries.get(head, head)] + list(argv[1:])
        if self.use_sudo and head in ENGINE_COMMANDS:
            cmd = [settings.sudo_binary, "-n"] + cmd
        return cmd

    def _scope(self, ctx: Optional[ExecutionContext], options: CommandOptions) -> ExecutionContext:
        ctx = ctx or ExecutionContext.background()
        timeout = options.timeout if options.timeout is not None else settings.command_timeout
        return ctx.with_timeout(timeout)

    def _spawn(self, cmd: List[str], command: str, **kwargs) -> subprocess.Popen:
        try:
            return subprocess.Popen(cmd, **kwargs)
        except FileNotFoundError:
            raise errors.new(ErrorCode.CMD_NOT_FOUND, f"Command not found: '{cmd[0]}'").with_metadata("command", command)
        except PermissionError:
            raise errors.new(ErrorCode.CMD_PERMISSION, f"Permission denied executing '{cmd[0]}'").with_metadata("command", command)
        except NotADirectoryError:
            raise errors.new(ErrorCode.CMD_WORK_DIR, str(kwargs.get("cwd"))).with_metadata("command", command)

    def terminate(self, proc: subprocess.Popen):
        """SIGTERM, then SIGKILL after the grace period; always reaps."""
        if proc.poll() is None:
            logger.warning(f"Terminating pid {proc.pid}")
            try:
                proc.terminate()
                proc.wait(timeout=settings.terminate_grace_seconds)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
            except ProcessLookupError:
                pass
        else:
            proc.wait()

    def _communicate(self, proc: subprocess.Popen, ctx: ExecutionContext, command: str,
                     input_data: Optional[bytes] = None):
        poll = settings.poll_interval_seconds
        while True:
            wait = poll
            remaining = ctx.remaining()
            if remaining is not None:
                wait = min(wait, max(remaining, 0.001))
            try:
                return proc.communicate(input=input_data, timeout=wait)
            except subprocess.TimeoutExpired:
                # Popen keeps feeding the remaining input on later calls
                input_data = None
                if ctx.done:
                    logger.error(f"Command interrupted: {command}")
                    self.terminate(proc)
                    proc.communicate()
                    raise ctx.error(command) from None

    # =========================================================================
    # Public API
    # =========================================================================

    def run(self, argv: Sequence[str], ctx: Optional[ExecutionContext] = None,
            options: Optional[CommandOptions] = None) -> CommandResult:
        """
        Run a command to completion and capture its output.

        Args:
            argv: Argument vector; argv[0] may be the logical name 'zfs' or 'zpool'
            ctx: Caller's cancellation/deadline scope
            options: Timeout, environment and stdin input

        Returns:
            CommandResult on exit status 0

        Raises:
            RodentError classified by exit status, stderr and context state
        """
        options = options or CommandOptions()
        cmd = self.build(argv)
        command = shlex.join(cmd)
        scope = self._scope(ctx, options)
        if scope.done:
            raise scope.error(command)

        logger.debug(f"Running command: {command}")
        proc = self._spawn(
            cmd,
            command,
            stdin=subprocess.PIPE if options.input is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=options.env,
            cwd=options.cwd,
        )
        try:
            out, err = self._communicate(proc, scope, command, options.input)
        finally:
            self.terminate(proc)

        result = CommandResult(command, proc.returncode, _decode(out), _decode(err))
        if result.exit_code != 0:
            logger.error(f"Command failed (ret={result.exit_code}): {command}")
            if result.stderr:
                logger.debug(f"Stderr: {result.stderr.strip()}")
            raise classify_failure(argv, command, result.exit_code, result.stdout, result.stderr, options.classify)
        return result

    def run_streaming(self, argv: Sequence[str], stdin_source: StdinSource,
                      ctx: Optional[ExecutionContext] = None,
                      options: Optional[CommandOptions] = None) -> CommandResult:
        """
        Run a command whose stdin is an existing byte stream.

        The stream is handed to the child directly, so data flows through the
        kernel pipe and is never buffered here.
        """
        options = options or CommandOptions()
        cmd = self.build(argv)
        command = shlex.join(cmd)
        scope = self._scope(ctx, options)
        if scope.done:
            raise scope.error(command)

        logger.debug(f"Running streaming command: {command}")
        proc = self._spawn(
            cmd,
            command,
            stdin=stdin_source,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=options.env,
            cwd=options.cwd,
        )
        try:
            out, err = self._communicate(proc, scope, command)
        finally:
            self.terminate(proc)

        result = CommandResult(command, proc.returncode, _decode(out), _decode(err))
        if result.exit_code != 0:
            logger.error(f"Streaming command failed (ret={result.exit_code}): {command}")
            raise classify_failure(argv, command, result.exit_code, result.stdout, result.stderr, options.classify)
        return result

    def start(self, argv: Sequence[str], ctx: Optional[ExecutionContext] = None,
              options: Optional[CommandOptions] = None) -> ManagedProcess:
        """Spawn a command with its stdout exposed as a pipe for another consumer."""
        options = options or CommandOptions()
        cmd = self.build(argv)
        command = shlex.join(cmd)
        scope = self._scope(ctx, options)
        if scope.done:
            raise scope.error(command)

        logger.debug(f"Starting command: {command}")
        proc = self._spawn(
            cmd,
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=options.env,
            cwd=options.cwd,
        )
        return ManagedProcess(proc, argv, command, scope, self)

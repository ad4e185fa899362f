import shutil
import threading
import time
import unittest
from unittest import mock

from rodent import errors
from rodent.config import settings
from rodent.errors import ErrorCode
from rodent.services import command
from rodent.services.command import (
    CommandExecutor,
    CommandOptions,
    ExecutionContext,
    classify_failure,
)


class ExecutionContextTests(unittest.TestCase):
    def test_background_is_live(self):
        ctx = ExecutionContext.background()
        self.assertFalse(ctx.done)
        self.assertIsNone(ctx.remaining())
        self.assertIsNone(ctx.error())

    def test_child_shares_cancellation(self):
        parent = ExecutionContext.background()
        child = parent.with_timeout(60)
        parent.cancel()
        self.assertTrue(child.cancelled)
        self.assertEqual(child.error("zfs list").code, ErrorCode.CMD_CONTEXT)
        self.assertEqual(child.error("zfs list").metadata["command"], "zfs list")

    def test_child_keeps_tighter_deadline(self):
        parent = ExecutionContext.with_deadline_in(0.5)
        child = parent.with_timeout(60)
        self.assertLessEqual(child.remaining(), 0.5)
        self.assertIs(parent.with_timeout(None), parent)
        self.assertIs(parent.with_timeout(0), parent)

    def test_expired_deadline_is_timeout(self):
        ctx = ExecutionContext.with_deadline_in(0.01)
        time.sleep(0.05)
        self.assertTrue(ctx.expired)
        self.assertEqual(ctx.error().code, ErrorCode.CMD_TIMEOUT)


class ClassifyFailureTests(unittest.TestCase):
    def test_engine_stderr_is_reclassified(self):
        cases = [
            ("cannot open 'tank/x': dataset does not exist", ErrorCode.ZFS_DATASET_NOT_FOUND),
            ("cannot open 'nopool': no such pool", ErrorCode.ZFS_POOL_NOT_FOUND),
            ("cannot destroy: permission denied", ErrorCode.ZFS_PERMISSION_DENIED),
            ("bad property list: invalid property 'foo'", ErrorCode.ZFS_DATASET_PROPERTY_NOT_FOUND),
            ("'tank/x' does not have any resumable receive state to abort", ErrorCode.ZFS_DATASET_NO_RECEIVE_TOKEN),
            ("cannot create 'tank/x': out of space", ErrorCode.ZFS_QUOTA_EXCEEDED),
            ("could not find any snapshots to destroy; check snapshot names.", ErrorCode.ZFS_DATASET_NOT_FOUND),
        ]
        for stderr, code in cases:
            err = classify_failure(["zfs", "destroy", "tank/x"], "zfs destroy tank/x", 1, "", stderr)
            self.assertEqual(err.code, code, stderr)
            self.assertEqual(err.metadata["stderr"], stderr)
            self.assertEqual(err.metadata["exit_code"], "1")

    def test_unknown_stderr_stays_generic(self):
        err = classify_failure(["zfs", "list"], "zfs list", 2, "", "something odd")
        self.assertEqual(err.code, ErrorCode.CMD_EXECUTION)

    def test_non_engine_commands_are_not_reclassified(self):
        err = classify_failure(["ls"], "ls", 1, "", "dataset does not exist")
        self.assertEqual(err.code, ErrorCode.CMD_EXECUTION)

    def test_classification_can_be_disabled(self):
        err = classify_failure(["zfs", "list"], "zfs list", 1, "", "dataset does not exist", classify=False)
        self.assertEqual(err.code, ErrorCode.CMD_EXECUTION)


class BuildTests(unittest.TestCase):
    def test_logical_binaries_and_sudo(self):
        executor = CommandExecutor(use_sudo=True, binaries={"zfs": "/sbin/zfs"})
        self.assertEqual(executor.build(["zfs", "list"]), [settings.sudo_binary, "-n", "/sbin/zfs", "list"])
        self.assertEqual(executor.build(["ls", "-l"]), ["ls", "-l"])

    def test_rejects_bad_arguments(self):
        executor = CommandExecutor(use_sudo=False)
        for argv in ([], ["zfs", "a\x00b"], ["zfs", 3]):
            with self.assertRaises(errors.RodentError) as cm:
                executor.build(argv)
            self.assertEqual(cm.exception.code, ErrorCode.CMD_INVALID_INPUT)


@unittest.skipUnless(shutil.which("sh") and shutil.which("sleep") and shutil.which("cat"), "needs POSIX tools")
class RunTests(unittest.TestCase):
    def setUp(self):
        # "zfs" resolves to sh so engine classification runs on scripted stderr
        self.executor = CommandExecutor(use_sudo=False, binaries={"zfs": "sh"})

    def test_captures_output(self):
        result = self.executor.run(["sh", "-c", "echo hi; echo warn >&2"])
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.stdout, "hi\n")
        self.assertEqual(result.stderr, "warn\n")
        self.assertEqual(result.command, "sh -c 'echo hi; echo warn >&2'")

    def test_stdin_input(self):
        result = self.executor.run(["cat"], options=CommandOptions(input=b"payload"))
        self.assertEqual(result.stdout, "payload")

    def test_stdin_input_to_slow_reader(self):
        # the reader outlives several poll intervals before consuming stdin
        result = self.executor.run(["sh", "-c", "sleep 0.5; cat"], options=CommandOptions(input=b"payload"))
        self.assertEqual(result.stdout, "payload")

    def test_failure_carries_diagnostics(self):
        with self.assertRaises(errors.RodentError) as cm:
            self.executor.run(["sh", "-c", "echo oops >&2; exit 3"])
        err = cm.exception
        self.assertEqual(err.code, ErrorCode.CMD_EXECUTION)
        self.assertEqual(err.metadata["exit_code"], "3")
        self.assertEqual(err.metadata["stderr"], "oops")
        self.assertIn("sh -c", err.metadata["command"])

    def test_engine_failure_is_reclassified(self):
        script = "echo \"cannot open 'tank/x': dataset does not exist\" >&2; exit 1"
        with self.assertRaises(errors.RodentError) as cm:
            self.executor.run(["zfs", "-c", script])
        self.assertTrue(errors.is_error(cm.exception, errors.ERR_ZFS_DATASET_NOT_FOUND))

    def test_missing_binary(self):
        with self.assertRaises(errors.RodentError) as cm:
            self.executor.run(["/nonexistent/rodent-binary"])
        self.assertEqual(cm.exception.code, ErrorCode.CMD_NOT_FOUND)

    def test_timeout_terminates_process(self):
        start = time.monotonic()
        with self.assertRaises(errors.RodentError) as cm:
            self.executor.run(["sleep", "30"], options=CommandOptions(timeout=0.3))
        self.assertEqual(cm.exception.code, ErrorCode.CMD_TIMEOUT)
        self.assertLess(time.monotonic() - start, 10)

    def test_cancellation(self):
        ctx = ExecutionContext.background()
        timer = threading.Timer(0.2, ctx.cancel)
        timer.start()
        try:
            with self.assertRaises(errors.RodentError) as cm:
                self.executor.run(["sleep", "30"], ctx)
        finally:
            timer.cancel()
        self.assertEqual(cm.exception.code, ErrorCode.CMD_CONTEXT)

    def test_already_cancelled_context_never_spawns(self):
        ctx = ExecutionContext.background()
        ctx.cancel()
        with self.assertRaises(errors.RodentError) as cm:
            self.executor.run(["/nonexistent/rodent-binary"], ctx)
        self.assertEqual(cm.exception.code, ErrorCode.CMD_CONTEXT)


@unittest.skipUnless(shutil.which("sh") and shutil.which("sleep") and shutil.which("cat"), "needs POSIX tools")
class StreamingTests(unittest.TestCase):
    def setUp(self):
        self.executor = CommandExecutor(use_sudo=False)

    def test_pipe_between_processes(self):
        with self.executor.start(["sh", "-c", "printf hello; echo progress >&2"]) as sender:
            result = self.executor.run_streaming(["cat"], sender.stdout)
            sender.close_stdout()
            sent = sender.wait()
        self.assertEqual(result.stdout, "hello")
        self.assertEqual(sent.exit_code, 0)
        self.assertEqual(sender.stderr_text, "progress\n")

    def test_streaming_failure_is_classified(self):
        with self.executor.start(["sh", "-c", "printf data"]) as sender:
            with self.assertRaises(errors.RodentError) as cm:
                self.executor.run_streaming(["sh", "-c", "cat >/dev/null; exit 4"], sender.stdout)
        self.assertEqual(cm.exception.metadata["exit_code"], "4")

    def test_context_exit_reaps_process(self):
        with self.executor.start(["sleep", "30"]) as proc:
            self.assertIsNone(proc.returncode)
        self.assertIsNotNone(proc.returncode)

    def test_wait_raises_on_failure(self):
        with self.executor.start(["sh", "-c", "echo bad >&2; exit 2"]) as proc:
            with self.assertRaises(errors.RodentError) as cm:
                proc.wait()
        self.assertEqual(cm.exception.metadata["stderr"], "bad")

    def test_failure_reports_exit_status(self):
        with self.executor.start(["sh", "-c", "echo bad >&2; exit 2"]) as proc:
            err = proc.failure(5)
        self.assertIsNotNone(err)
        self.assertEqual(err.metadata["exit_code"], "2")

        with self.executor.start(["sleep", "30"]) as proc:
            self.assertIsNone(proc.failure(0.1))

    @unittest.skipUnless(shutil.which("head"), "needs head")
    def test_stderr_keeps_only_a_tail(self):
        script = "head -c 1048576 /dev/zero >&2; echo END >&2"
        with mock.patch.object(command, "STDERR_TAIL_CHUNKS", 2):
            with self.executor.start(["sh", "-c", script]) as proc:
                proc.wait()
        self.assertLessEqual(len(proc.stderr_text), 2 * 65536)
        self.assertTrue(proc.stderr_text.endswith("END\n"))

    def test_wait_honours_cancellation(self):
        ctx = ExecutionContext.background()
        with self.executor.start(["sleep", "30"], ctx) as proc:
            ctx.cancel()
            with self.assertRaises(errors.RodentError) as cm:
                proc.wait()
        self.assertEqual(cm.exception.code, ErrorCode.CMD_CONTEXT)


if __name__ == "__main__":
    unittest.main()

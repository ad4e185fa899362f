import shlex
import unittest

from rodent import errors
from rodent.errors import ErrorCode
from rodent.models.dataset import (
    AllowConfig,
    BookmarkConfig,
    CloneConfig,
    CreateConfig,
    DestroyConfig,
    DiffConfig,
    FilesystemConfig,
    InheritConfig,
    ListConfig,
    MountConfig,
    NameConfig,
    PropertyConfig,
    RenameConfig,
    RollbackConfig,
    SetPropertyConfig,
    ShareConfig,
    SnapshotConfig,
    UnallowConfig,
    UnmountConfig,
    VolumeConfig,
)
from rodent.services.command import CommandResult
from rodent.services.dataset import DatasetManager


class FakeExecutor:
    """Records argv and replays scripted stdout or errors in call order."""

    def __init__(self, outputs=None, failures=None):
        self.calls = []
        self.outputs = list(outputs or [])
        self.failures = list(failures or [])

    def run(self, argv, ctx=None, options=None):
        self.calls.append(list(argv))
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        stdout = self.outputs.pop(0) if self.outputs else ""
        return CommandResult(shlex.join(argv), 0, stdout, "")


def engine_error(code, stderr="boom"):
    return errors.command_error("zfs", 1, stderr, code=code)


class DatasetManagerTestCase(unittest.TestCase):
    def manager(self, outputs=None, failures=None):
        self.executor = FakeExecutor(outputs, failures)
        return DatasetManager(self.executor)

    def assertCodeRaised(self, code, func, *args):
        with self.assertRaises(errors.RodentError) as cm:
            func(*args)
        self.assertEqual(cm.exception.code, code)
        return cm.exception


class ListTests(DatasetManagerTestCase):
    def test_list_builds_argv_and_parses_rows(self):
        output = "tank\tfilesystem\t1000\t2000\t24\t/tank\ntank/a\tfilesystem\t500\t2000\t24\t/tank/a\n"
        mgr = self.manager([output])
        result = mgr.list(ListConfig(name="tank", recursive=True, depth=1))

        self.assertEqual(self.executor.calls[0], [
            "zfs", "list", "-H", "-p", "-o", "name,type,used,available,referenced,mountpoint",
            "-t", "filesystem", "-r", "-d", "1", "tank",
        ])
        self.assertEqual([d.name for d in result], ["tank", "tank/a"])
        self.assertEqual(result[1].type, "filesystem")
        self.assertEqual(result[1].properties["mountpoint"], "/tank/a")
        self.assertNotIn("name", result[1].properties)

    def test_empty_listing_is_not_an_error(self):
        self.assertEqual(self.manager([""]).list(ListConfig(type="snapshot")), [])
        self.assertIn("snapshot", self.executor.calls[0])

    def test_exists(self):
        self.assertTrue(self.manager().exists("tank/a"))
        self.assertEqual(self.executor.calls[0], ["zfs", "list", "-H", "-o", "name", "-t", "all", "tank/a"])

        mgr = self.manager(failures=[engine_error(ErrorCode.ZFS_DATASET_NOT_FOUND)])
        self.assertFalse(mgr.exists("tank/missing"))

    def test_exists_propagates_other_failures(self):
        mgr = self.manager(failures=[engine_error(ErrorCode.CMD_EXECUTION)])
        err = self.assertCodeRaised(ErrorCode.ZFS_DATASET_LIST, mgr.exists, "tank/a")
        self.assertEqual(err.metadata["wrapped_code"], str(int(ErrorCode.CMD_EXECUTION)))


class CreateDestroyTests(DatasetManagerTestCase):
    def test_create_filesystem(self):
        mgr = self.manager()
        mgr.create_filesystem(FilesystemConfig(name="tank/a/b", parents=True, properties={"compression": "lz4"}))
        self.assertEqual(self.executor.calls, [["zfs", "create", "-p", "-o", "compression=lz4", "tank/a/b"]])

    def test_create_filesystem_validates_before_running(self):
        mgr = self.manager()
        self.assertCodeRaised(ErrorCode.ZFS_NAME_INVALID_CHAR, mgr.create_filesystem, FilesystemConfig(name="tank/a@s"))
        self.assertCodeRaised(ErrorCode.ZFS_NAME_LEADING_SLASH, mgr.create_filesystem, FilesystemConfig(name="/tank/a"))
        self.assertEqual(self.executor.calls, [])

    def test_create_volume(self):
        mgr = self.manager()
        mgr.create_volume(VolumeConfig(name="tank/vol", size="10G", sparse=True, block_size="8K"))
        self.assertEqual(self.executor.calls, [["zfs", "create", "-s", "-b", "8K", "-V", "10G", "tank/vol"]])

    def test_volume_size_must_be_positive(self):
        mgr = self.manager()
        self.assertCodeRaised(ErrorCode.ZFS_INVALID_SIZE, mgr.create_volume, VolumeConfig(name="tank/vol", size="0"))
        self.assertCodeRaised(ErrorCode.ZFS_INVALID_SIZE, mgr.create, CreateConfig(name="tank/vol", type="volume"))
        self.assertEqual(self.executor.calls, [])

    def test_create_dispatches_on_type(self):
        mgr = self.manager()
        mgr.create(CreateConfig(name="tank/fs"))
        mgr.create(CreateConfig(name="tank/vol", type="volume", size="1G"))
        self.assertEqual(self.executor.calls[0], ["zfs", "create", "tank/fs"])
        self.assertEqual(self.executor.calls[1], ["zfs", "create", "-V", "1G", "tank/vol"])

    def test_destroy_flags(self):
        mgr = self.manager()
        mgr.destroy(DestroyConfig(name="tank/a", recursive=True, recursive_dependents=True, force=True, dry_run=True))
        self.assertEqual(self.executor.calls, [["zfs", "destroy", "-r", "-R", "-f", "-n", "-v", "tank/a"]])

    def test_destroy_missing_dataset_keeps_not_found(self):
        mgr = self.manager(failures=[engine_error(ErrorCode.ZFS_DATASET_NOT_FOUND)])
        err = self.assertCodeRaised(ErrorCode.ZFS_DATASET_NOT_FOUND, mgr.destroy, DestroyConfig(name="tank/gone"))
        self.assertTrue(errors.is_error(err, errors.ERR_ZFS_DATASET_NOT_FOUND))

    def test_destroy_generic_failure_is_wrapped(self):
        mgr = self.manager(failures=[engine_error(ErrorCode.CMD_EXECUTION, "dataset is busy")])
        err = self.assertCodeRaised(ErrorCode.ZFS_DATASET_DESTROY, mgr.destroy, DestroyConfig(name="tank/a"))
        self.assertEqual(err.metadata["stderr"], "dataset is busy")
        self.assertEqual(err.metadata["wrapped_domain"], "CMD")


class PropertyTests(DatasetManagerTestCase):
    def test_get_property(self):
        mgr = self.manager(["tank/a\tcompression\tlz4\tlocal\n"])
        prop = mgr.get_property(PropertyConfig(name="tank/a", property="compression"))
        self.assertEqual(self.executor.calls[0], [
            "zfs", "get", "-H", "-p", "-o", "name,property,value,source", "compression", "tank/a",
        ])
        self.assertEqual((prop.value, prop.source), ("lz4", "local"))

    def test_unset_user_property_is_not_found(self):
        mgr = self.manager(["tank/a\tcom.example:tag\t-\t-\n"])
        self.assertCodeRaised(
            ErrorCode.ZFS_DATASET_PROPERTY_NOT_FOUND,
            mgr.get_property, PropertyConfig(name="tank/a", property="com.example:tag")
        )

    def test_unknown_property_passes_through(self):
        mgr = self.manager(failures=[engine_error(ErrorCode.ZFS_DATASET_PROPERTY_NOT_FOUND)])
        self.assertCodeRaised(
            ErrorCode.ZFS_DATASET_PROPERTY_NOT_FOUND,
            mgr.get_property, PropertyConfig(name="tank/a", property="nosuchprop")
        )

    def test_set_property_validates_value_first(self):
        mgr = self.manager()
        self.assertCodeRaised(
            ErrorCode.ZFS_PROPERTY_VALUE_TOO_LONG,
            mgr.set_property, SetPropertyConfig(name="tank/a", property="com.example:note", value="x" * 9000)
        )
        self.assertEqual(self.executor.calls, [])

        mgr.set_property(SetPropertyConfig(name="tank/a", property="quota", value="10G"))
        self.assertEqual(self.executor.calls, [["zfs", "set", "quota=10G", "tank/a"]])

    def test_inherit_property(self):
        mgr = self.manager()
        mgr.inherit_property(InheritConfig(name="tank/a", property="compression", recursive=True, revert=True))
        self.assertEqual(self.executor.calls, [["zfs", "inherit", "-r", "-S", "compression", "tank/a"]])

    def test_list_properties(self):
        output = "tank/a\tused\t1024\t-\ntank/a\tcompression\tlz4\tinherited from tank\n"
        props = self.manager([output]).list_properties(NameConfig(name="tank/a"))
        self.assertEqual([p.property for p in props], ["used", "compression"])
        self.assertEqual(props[1].source, "inherited from tank")
        self.assertEqual(self.executor.calls[0][-2:], ["all", "tank/a"])


class SnapshotCloneBookmarkTests(DatasetManagerTestCase):
    def test_create_snapshot(self):
        mgr = self.manager()
        name = mgr.create_snapshot(SnapshotConfig(dataset="tank/a", name="s1", recursive=True))
        self.assertEqual(name, "tank/a@s1")
        self.assertEqual(self.executor.calls, [["zfs", "snapshot", "-r", "tank/a@s1"]])

    def test_snapshot_name_validated(self):
        mgr = self.manager()
        self.assertCodeRaised(
            ErrorCode.ZFS_NAME_MULTIPLE_DELIMITERS,
            mgr.create_snapshot, SnapshotConfig(dataset="tank/a", name="@s1")
        )

    def test_rollback(self):
        mgr = self.manager()
        mgr.rollback(RollbackConfig(name="tank/a@s1", destroy_recent=True))
        self.assertEqual(self.executor.calls, [["zfs", "rollback", "-r", "tank/a@s1"]])
        self.assertCodeRaised(ErrorCode.ZFS_NAME_NO_AT_SIGN, mgr.rollback, RollbackConfig(name="tank/a"))

    def test_rollback_failure_code(self):
        mgr = self.manager(failures=[engine_error(ErrorCode.CMD_EXECUTION, "more recent snapshots exist")])
        self.assertCodeRaised(ErrorCode.ZFS_SNAPSHOT_ROLLBACK, mgr.rollback, RollbackConfig(name="tank/a@s1"))

    def test_destroy_snapshot(self):
        mgr = self.manager()
        mgr.destroy_snapshot(DestroyConfig(name="tank/a@s1", defer=True))
        self.assertEqual(self.executor.calls, [["zfs", "destroy", "-d", "tank/a@s1"]])
        self.assertCodeRaised(ErrorCode.ZFS_NAME_NO_AT_SIGN, mgr.destroy_snapshot, DestroyConfig(name="tank/a"))

    def test_clone_and_promote(self):
        mgr = self.manager()
        mgr.clone(CloneConfig(name="tank/a@s1", clone_name="tank/c", properties={"readonly": "on"}))
        mgr.promote_clone(NameConfig(name="tank/c"))
        self.assertEqual(self.executor.calls, [
            ["zfs", "clone", "-o", "readonly=on", "tank/a@s1", "tank/c"],
            ["zfs", "promote", "tank/c"],
        ])

    def test_clone_validates_both_names(self):
        mgr = self.manager()
        self.assertCodeRaised(ErrorCode.ZFS_NAME_NO_AT_SIGN, mgr.clone, CloneConfig(name="tank/a", clone_name="tank/c"))
        self.assertCodeRaised(
            ErrorCode.ZFS_NAME_INVALID_CHAR, mgr.clone, CloneConfig(name="tank/a@s1", clone_name="tank/c@x")
        )

    def test_create_bookmark(self):
        mgr = self.manager()
        self.assertEqual(mgr.create_bookmark(BookmarkConfig(snapshot="tank/a@s1", bookmark="b1")), "tank/a#b1")
        mgr.create_bookmark(BookmarkConfig(snapshot="tank/a#b1", bookmark="tank/a#b2"))
        self.assertEqual(self.executor.calls, [
            ["zfs", "bookmark", "tank/a@s1", "tank/a#b1"],
            ["zfs", "bookmark", "tank/a#b1", "tank/a#b2"],
        ])


class MiscOperationTests(DatasetManagerTestCase):
    def test_rename(self):
        mgr = self.manager()
        mgr.rename(RenameConfig(name="tank/a", new_name="tank/b/a", parents=True, no_remount=True))
        self.assertEqual(self.executor.calls, [["zfs", "rename", "-p", "-u", "tank/a", "tank/b/a"]])
        self.assertCodeRaised(
            ErrorCode.ZFS_DATASET_RENAME, mgr.rename, RenameConfig(name="tank/a", new_name="tank/b", recursive=True)
        )

    def test_mount_and_unmount(self):
        mgr = self.manager()
        mgr.mount(MountConfig(name="tank/a", options=["ro", "noatime"], overlay=True))
        mgr.unmount(UnmountConfig(name="tank/a", force=True))
        self.assertEqual(self.executor.calls, [
            ["zfs", "mount", "-o", "ro,noatime", "-O", "tank/a"],
            ["zfs", "unmount", "-f", "tank/a"],
        ])

    def test_diff_parses_entries(self):
        output = (
            "1700000000.100\tM\t/\t/tank/a/\n"
            "1700000000.200\tR\tF\t/tank/a/old\t/tank/a/new\n"
            "1700000000.300\t+\tF\t/tank/a/file\n"
        )
        mgr = self.manager([output])
        entries = mgr.diff(DiffConfig(names=["tank/a@s1", "tank/a@s2"], timestamps=True))

        self.assertEqual(self.executor.calls[0], ["zfs", "diff", "-H", "-F", "-t", "tank/a@s1", "tank/a@s2"])
        self.assertEqual(len(entries), 3)
        self.assertEqual(entries[1].change, "R")
        self.assertEqual(entries[1].new_path, "/tank/a/new")
        self.assertEqual(entries[2].timestamp, "1700000000.300")
        self.assertIsNone(entries[2].new_path)

    def test_diff_against_live_filesystem(self):
        mgr = self.manager(["+\tF\t/tank/a/file\n"])
        entries = mgr.diff(DiffConfig(names=["tank/a@s1"]))
        self.assertEqual(self.executor.calls[0], ["zfs", "diff", "-H", "-F", "tank/a@s1"])
        self.assertEqual((entries[0].change, entries[0].path), ("+", "/tank/a/file"))


class PermissionAndShareTests(DatasetManagerTestCase):
    def test_allow_users(self):
        mgr = self.manager()
        mgr.allow(AllowConfig(name="tank/a", permissions=["create", "mount"], users=["bob", "amy"], local=True))
        self.assertEqual(self.executor.calls, [["zfs", "allow", "-l", "-u", "bob,amy", "create,mount", "tank/a"]])

    def test_allow_permission_set_and_create_time(self):
        mgr = self.manager()
        mgr.allow(AllowConfig(name="tank/a", permissions=["snapshot"], set_name="backup"))
        mgr.allow(AllowConfig(name="tank/a", permissions=["destroy"], create=True))
        self.assertEqual(self.executor.calls, [
            ["zfs", "allow", "-s", "@backup", "snapshot", "tank/a"],
            ["zfs", "allow", "-c", "destroy", "tank/a"],
        ])

    def test_allow_requires_who_and_clean_permissions(self):
        mgr = self.manager()
        self.assertCodeRaised(ErrorCode.CMD_INVALID_INPUT, mgr.allow, AllowConfig(name="tank/a", permissions=["create"]))
        self.assertCodeRaised(
            ErrorCode.CMD_INVALID_INPUT, mgr.allow,
            AllowConfig(name="tank/a", permissions=["create,destroy"], everyone=True)
        )
        self.assertEqual(self.executor.calls, [])

    def test_unallow_everything_recursively(self):
        mgr = self.manager()
        mgr.unallow(UnallowConfig(name="tank/a", everyone=True, recursive=True))
        self.assertEqual(self.executor.calls, [["zfs", "unallow", "-r", "-e", "tank/a"]])

    def test_list_permissions(self):
        output = (
            "---- Permissions on tank/a ------------------------------------------\n"
            "Permission sets:\n"
            "\t@backup snapshot,send\n"
            "Local+Descendent permissions:\n"
            "\tuser bob create,mount\n"
            "\tgroup staff snapshot\n"
            "---- Permissions on tank --------------------------------------------\n"
            "Local permissions:\n"
            "\teveryone send\n"
        )
        perms = self.manager([output]).list_permissions(NameConfig(name="tank/a"))
        self.assertEqual(perms["tank/a"]["permission_sets"], ["@backup snapshot,send"])
        self.assertEqual(perms["tank/a"]["local_descendent"], ["user bob create,mount", "group staff snapshot"])
        self.assertEqual(perms["tank"]["local"], ["everyone send"])

    def test_share_and_unshare(self):
        mgr = self.manager()
        mgr.share(ShareConfig(all=True))
        mgr.unshare(ShareConfig(name="tank/a"))
        self.assertEqual(self.executor.calls, [["zfs", "share", "-a"], ["zfs", "unshare", "tank/a"]])
        self.assertCodeRaised(ErrorCode.CMD_INVALID_INPUT, mgr.share, ShareConfig())


if __name__ == "__main__":
    unittest.main()

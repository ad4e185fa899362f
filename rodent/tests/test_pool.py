import unittest

from rodent import errors
from rodent.errors import ErrorCode
from rodent.models.pool import PoolCreateConfig, VDevSpec
from rodent.services.pool import PoolManager
from rodent.tests.test_dataset_manager import FakeExecutor, engine_error


class PoolManagerTests(unittest.TestCase):
    def test_create_mirror(self):
        executor = FakeExecutor()
        cfg = PoolCreateConfig(
            name="tank",
            vdev_spec=[VDevSpec(type="mirror", devices=["/dev/sdb", "/dev/sdc"]),
                       VDevSpec(type="log", devices=["/dev/nvme0n1"])],
            force=True,
            mountpoint="/mnt/tank",
            properties={"ashift": "12"},
            fs_properties={"compression": "lz4"},
        )
        PoolManager(executor).create(cfg)
        self.assertEqual(executor.calls[0], [
            "zpool", "create", "-f", "-m", "/mnt/tank", "-o", "ashift=12", "-O", "compression=lz4",
            "tank", "mirror", "/dev/sdb", "/dev/sdc", "log", "/dev/nvme0n1",
        ])

    def test_stripe_adds_no_keyword(self):
        executor = FakeExecutor()
        PoolManager(executor).create(PoolCreateConfig(name="scratch", vdev_spec=[VDevSpec(devices=["/tmp/d1"])]))
        self.assertEqual(executor.calls[0], ["zpool", "create", "scratch", "/tmp/d1"])

    def test_bad_vdevs(self):
        mgr = PoolManager(FakeExecutor())
        for vdevs in ([], [VDevSpec(type="raid5", devices=["/dev/sdb"])],
                     [VDevSpec(devices=[])], [VDevSpec(devices=["-f"])]):
            with self.assertRaises(errors.RodentError) as cm:
                mgr.create(PoolCreateConfig(name="tank", vdev_spec=vdevs))
            self.assertEqual(cm.exception.code, ErrorCode.ZFS_POOL_INVALID_DEVICE)

    def test_reserved_pool_name(self):
        with self.assertRaises(errors.RodentError):
            PoolManager(FakeExecutor()).create(
                PoolCreateConfig(name="mirror", vdev_spec=[VDevSpec(devices=["/dev/sdb"])])
            )

    def test_list(self):
        executor = FakeExecutor(outputs=[
            "tank\t1000\t400\t600\tONLINE\nbackup\t2000\t0\t2000\tDEGRADED\n"
        ])
        pools = PoolManager(executor).list()
        self.assertEqual([p.name for p in pools], ["tank", "backup"])
        self.assertEqual(pools[0].allocated_bytes, 400)
        self.assertEqual(pools[1].health, "DEGRADED")

    def test_exists(self):
        executor = FakeExecutor(failures=[engine_error(ErrorCode.ZFS_POOL_NOT_FOUND, "no such pool")])
        self.assertFalse(PoolManager(executor).exists("tank"))
        self.assertTrue(PoolManager(FakeExecutor()).exists("tank"))

    def test_destroy_failure_is_wrapped(self):
        executor = FakeExecutor(failures=[engine_error(ErrorCode.CMD_EXECUTION, "pool is busy")])
        with self.assertRaises(errors.RodentError) as cm:
            PoolManager(executor).destroy("tank", force=True)
        self.assertEqual(cm.exception.code, ErrorCode.ZFS_POOL_DESTROY)
        self.assertEqual(executor.calls[0], ["zpool", "destroy", "-f", "tank"])


if __name__ == "__main__":
    unittest.main()

import unittest
from unittest.mock import MagicMock

from fleet_backend.db import InMemoryMachineStore
from fleet_backend.errors import UpstreamUnavailableError
from fleet_backend.provider import StaticNodeStatusProvider
from fleet_backend.reconciler import refresh_all


class RefreshAllTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryMachineStore()

    def test_updates_matching_record(self):
        self.store.create_machine("pi-1", "http://x/start", "http://x/stop")
        provider = StaticNodeStatusProvider(
            {
                "pi-1": {
                    "id": "n1",
                    "status": "running",
                    "os": "linux",
                    "ip": "10.0.0.1",
                    "lastbootuptime": "t1",
                }
            }
        )
        machines, nodes = refresh_all(self.store, provider)
        self.assertEqual(len(machines), 1)
        record = machines[0]
        self.assertEqual(record.status, "running")
        self.assertEqual(record.node_id, "n1")
        self.assertEqual(record.os, "linux")
        self.assertEqual(record.ip, "10.0.0.1")
        self.assertEqual(record.last_boot_up_time, "t1")
        self.assertEqual(nodes["pi-1"]["status"], "running")

    def test_skips_unknown_names_and_leaves_others(self):
        self.store.create_machine("pi-1", "", "")
        provider = StaticNodeStatusProvider({"pi-9": {"status": "running"}})
        machines, nodes = refresh_all(self.store, provider)
        self.assertEqual([m.name for m in machines], ["pi-1"])
        self.assertEqual(machines[0].status, "")
        self.assertIsNone(self.store.find_by_name("pi-9"))
        self.assertIn("pi-9", nodes)

    def test_upstream_failure_writes_nothing(self):
        self.store.create_machine("pi-1", "", "")
        provider = MagicMock()
        provider.fetch_all_node_statuses.side_effect = UpstreamUnavailableError(
            "down"
        )
        with self.assertRaises(UpstreamUnavailableError):
            refresh_all(self.store, provider)
        self.assertEqual(self.store.find_by_name("pi-1").status, "")


if __name__ == "__main__":
    unittest.main()

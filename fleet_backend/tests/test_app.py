import unittest
from unittest.mock import MagicMock, patch

import requests
from fastapi.testclient import TestClient

from fleet_backend.app import create_app
from fleet_backend.config import Settings
from fleet_backend.db import InMemoryMachineStore
from fleet_backend.dependencies import build_services
from fleet_backend.dispatcher import CommandDispatcher
from fleet_backend.errors import UpstreamUnavailableError
from fleet_backend.provider import StaticNodeStatusProvider


class FakeTimer:
    def __init__(self, interval, function, args=()):
        self.interval = interval
        self.function = function
        self.args = args
        self.daemon = False
        self.cancelled = False

    def start(self):
        pass

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args)


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        self.settings = Settings(
            use_in_memory_backends=True,
            provider_url="http://provider.test/api/nodes",
        )
        self.store = InMemoryMachineStore()
        self.provider = StaticNodeStatusProvider(
            {
                "pi-1": {
                    "id": "n1",
                    "status": "running",
                    "os": "linux",
                    "ip": "10.0.0.1",
                    "lastbootuptime": "t1",
                },
                "pi-2": {"id": "n2", "status": "stopped"},
            }
        )
        self.timers = []

        def timer_factory(interval, function, args=()):
            timer = FakeTimer(interval, function, args)
            self.timers.append(timer)
            return timer

        self.services = build_services(
            self.settings,
            store=self.store,
            provider=self.provider,
            dispatcher=CommandDispatcher(
                self.store, self.provider, timer_factory=timer_factory
            ),
        )
        self.client = TestClient(create_app(self.settings, self.services))

    def _add(self, name="pi-1"):
        response = self.client.post(
            "/api/machines",
            json={
                "name": name,
                "startUrl": f"http://{name}/start",
                "stopUrl": f"http://{name}/stop",
            },
        )
        self.assertEqual(response.status_code, 200)
        return response.json()["machine"]

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(), {"status": "ok", "store": "InMemoryMachineStore"}
        )

    def test_add_and_list_machines(self):
        machine = self._add()
        self.assertEqual(machine["name"], "pi-1")
        self.assertEqual(machine["status"], "")
        self.assertEqual(machine["startUrl"], "http://pi-1/start")

        response = self.client.get("/api/machines")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([m["id"] for m in response.json()], [machine["id"]])

    def test_add_duplicate_name(self):
        self._add("pi-2")
        response = self.client.post(
            "/api/machines",
            json={"name": "pi-2", "startUrl": "http://x/start", "stopUrl": "http://x/stop"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(), {"error": "Machine with this name already exists"}
        )
        self.assertEqual(len(self.store.list_machines()), 1)

    def test_add_requires_name(self):
        response = self.client.post("/api/machines", json={"startUrl": "http://x"})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(list(response.json()), ["error"])
        self.assertIn("name", response.json()["error"])
        self.assertEqual(self.store.list_machines(), [])

    def test_malformed_json_gets_error_body(self):
        machine = self._add()
        response = self.client.put(
            f"/api/machines/{machine['id']}",
            content="not json",
            headers={"Content-Type": "application/json"},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(list(response.json()), ["error"])
        self.assertEqual(
            self.store.find_by_id(machine["id"]).start_url, "http://pi-1/start"
        )

    def test_update_with_only_start_url_keeps_stop_url(self):
        machine = self._add()
        response = self.client.put(
            f"/api/machines/{machine['id']}", json={"startUrl": "http://s2"}
        )
        self.assertEqual(response.status_code, 200)
        updated = response.json()["machine"]
        self.assertEqual(updated["startUrl"], "http://s2")
        self.assertEqual(updated["stopUrl"], "http://pi-1/stop")

    def test_update_machine(self):
        machine = self._add()
        response = self.client.put(
            f"/api/machines/{machine['id']}",
            json={"startUrl": "http://new/start", "stopUrl": "http://new/stop"},
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["machine"]["startUrl"], "http://new/start")
        self.assertEqual(payload["machine"]["name"], "pi-1")

    def test_update_unknown_machine(self):
        response = self.client.put(
            "/api/machines/missing", json={"startUrl": "a", "stopUrl": "b"}
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Machine not found"})

    def test_delete_machine_twice(self):
        machine = self._add()
        for _ in range(2):
            response = self.client.delete(f"/api/machines/{machine['id']}")
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json(), {"success": True})
        self.assertIsNone(self.store.find_by_id(machine["id"]))

    def test_refresh_machines(self):
        self._add("pi-1")
        self._add("pi-3")
        response = self.client.get("/api/refresh-machines")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["success"])
        by_name = {m["name"]: m for m in payload["machines"]}
        self.assertEqual(by_name["pi-1"]["status"], "running")
        self.assertEqual(by_name["pi-1"]["nodeId"], "n1")
        self.assertEqual(by_name["pi-1"]["lastBootUpTime"], "t1")
        self.assertEqual(by_name["pi-3"]["status"], "")
        self.assertNotIn("pi-2", by_name)
        self.assertEqual(payload["nodes"]["pi-2"], {"id": "n2", "status": "stopped"})

    def test_refresh_machines_upstream_failure(self):
        self.provider.fetch_all_node_statuses = MagicMock(
            side_effect=UpstreamUnavailableError("provider down")
        )
        response = self.client.get("/api/refresh-machines")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "provider down"})

    def test_unexpected_error_is_json_and_logged_once(self):
        self.provider.list_node_names = MagicMock(side_effect=RuntimeError("boom"))
        client = TestClient(
            create_app(self.settings, self.services), raise_server_exceptions=False
        )
        with self.assertNoLogs("fleet_backend.app", level="ERROR"):
            response = client.get("/api/nodes")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "boom"})

    def test_list_nodes(self):
        response = self.client.get("/api/nodes")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), ["pi-1", "pi-2"])

    @patch("fleet_backend.dispatcher.requests.get")
    def test_start_machine_refreshes_later(self, mock_get):
        machine = self._add("pi-2")
        response = self.client.post(f"/api/machines/{machine['id']}/start")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(), {"success": True, "message": "Start command sent"}
        )
        mock_get.assert_called_once_with("http://pi-2/start", timeout=None)
        self.assertEqual(self.store.find_by_id(machine["id"]).status, "")

        self.provider.nodes["pi-2"] = {"id": "n2", "status": "running"}
        self.timers[0].fire()
        self.assertEqual(self.store.find_by_id(machine["id"]).status, "running")

    @patch("fleet_backend.dispatcher.requests.get")
    def test_stop_unknown_machine(self, mock_get):
        response = self.client.post("/api/machines/missing/stop")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Machine not found"})
        mock_get.assert_not_called()

    @patch("fleet_backend.dispatcher.requests.get")
    def test_stop_dispatch_failure(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("unreachable")
        machine = self._add()
        response = self.client.post(f"/api/machines/{machine['id']}/stop")
        self.assertEqual(response.status_code, 500)
        self.assertIn("unreachable", response.json()["error"])
        self.assertEqual(self.timers, [])

    @patch("fleet_backend.dispatcher.requests.get")
    def test_delete_cancels_pending_refresh(self, mock_get):
        machine = self._add()
        self.client.post(f"/api/machines/{machine['id']}/start")
        self.client.delete(f"/api/machines/{machine['id']}")
        self.assertTrue(self.timers[0].cancelled)
        self.assertEqual(self.services.dispatcher.pending_machine_ids(), [])

    @patch("fleet_backend.dispatcher.requests.get")
    def test_shutdown_cancels_pending_refreshes(self, mock_get):
        app = create_app(self.settings, self.services)
        with TestClient(app) as client:
            machine = client.post(
                "/api/machines",
                json={"name": "pi-1", "startUrl": "http://pi-1/start"},
            ).json()["machine"]
            client.post(f"/api/machines/{machine['id']}/start")
        self.assertTrue(self.timers[0].cancelled)

    def test_cors_allowlist_from_settings(self):
        settings = Settings(
            use_in_memory_backends=True,
            cors_allowed_origins="https://app.example.com, https://ops.example.com",
        )
        self.assertEqual(
            settings.cors_origins(),
            ["https://app.example.com", "https://ops.example.com"],
        )
        self.assertEqual(Settings(cors_allowed_origins="").cors_origins(), ["*"])


if __name__ == "__main__":
    unittest.main()

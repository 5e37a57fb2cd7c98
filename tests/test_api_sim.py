"""Integration-style tests for the websocket hub and the admin REST surface."""
from __future__ import annotations

import json
import time
import unittest
from typing import Any, Callable, Dict
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from usbhub.api import create_app, get_runtime
from usbhub.config import HubSettings


def _invoke(ws, invocation_id: str, target: str, *arguments: Any) -> Dict[str, Any]:
    ws.send_json(
        {
            "type": "invocation",
            "invocationId": invocation_id,
            "target": target,
            "arguments": list(arguments),
        }
    )
    reply = ws.receive_json()
    assert reply["type"] == "completion", reply
    assert reply["invocationId"] == invocation_id, reply
    return reply


def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class ApiSimulationTest(unittest.TestCase):
    def setUp(self) -> None:
        settings = HubSettings(database_url="sqlite://", events_default_limit=2, events_max_limit=3)
        self.app = create_app(settings)
        self.client = TestClient(self.app)
        self.client.__enter__()

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)

    def _clients(self):
        return self.client.get("/clients").json()

    def test_end_to_end_scenario(self) -> None:
        with self.client.websocket_connect("/hub?username=agent1") as ws:
            hello = ws.receive_json()
            self.assertEqual(hello["type"], "connected")
            connection_id = hello["connectionId"]

            presence = _invoke(ws, "1", "GetConnectedClients")["result"]
            self.assertEqual(len(presence), 1)
            self.assertEqual(presence[0]["name"], "agent1")
            self.assertEqual(presence[0]["connectionId"], connection_id)

            shape_a = [{"deviceIndex": 0, "vendorId": 0x046D, "productId": 0xC52B, "serialNumber": " SN1 ", "isBlocked": False}]
            self.assertEqual(_invoke(ws, "2", "ReportUsbDevices", shape_a)["result"], {"saved": 1})

            events = self.client.get("/events").json()
            self.assertEqual(len(events), 1)
            self.assertEqual(events[0]["serialNumber"], "SN1")

            shape_b = json.dumps(
                {"type": "usb", "data": [{"deviceIndex": 1, "vendorId": 1234, "productId": 5678, "friendlyName": "Mouse", "isWhitelisted": False}]}
            )
            self.assertEqual(_invoke(ws, "3", "SendDeviceList", shape_b)["result"], {"saved": 1})

            newest = self.client.get("/events").json()[0]
            self.assertEqual(newest["productString"], "Mouse")
            self.assertTrue(newest["isBlocked"])
            self.assertEqual(newest["serialNumber"], "")
            self.assertEqual(newest["connectionId"], connection_id)

        self.assertTrue(_wait_for(lambda: self._clients() == []))

    def test_blank_username_defaults_to_anonymous(self) -> None:
        with self.client.websocket_connect("/hub?username=%20") as ws:
            ws.receive_json()
            presence = _invoke(ws, "1", "GetConnectedClients")["result"]
        self.assertEqual(presence[0]["name"], "anonymous")
        self.assertEqual(presence[0]["remoteAddress"], "testclient")

    def test_directed_message_reaches_only_target(self) -> None:
        with self.client.websocket_connect("/hub?username=alice") as alice:
            alice.receive_json()
            with self.client.websocket_connect("/hub?username=bob") as bob:
                bob_id = bob.receive_json()["connectionId"]
                self._direct_message_flow(alice, bob, bob_id)

    def _direct_message_flow(self, alice, bob, bob_id: str) -> None:
        reply = _invoke(alice, "1", "SendMessageToClient", bob_id, "alice", "hi bob")
        self.assertIsNone(reply["result"])
        self.assertEqual(
            bob.receive_json(),
            {"type": "invocation", "target": "ReceiveMessage", "arguments": ["alice", "hi bob"]},
        )

        # unknown target is absorbed, not reported as an error
        reply = _invoke(alice, "2", "SendMessageToClient", "missing", "alice", "anyone?")
        self.assertNotIn("error", reply)

        presence = _invoke(bob, "9", "GetConnectedClients")["result"]
        self.assertEqual([row["name"] for row in presence], ["alice", "bob"])

    def test_malformed_frames_keep_connection_open(self) -> None:
        with self.client.websocket_connect("/hub") as ws:
            ws.receive_json()

            ws.send_text("not json")
            reply = ws.receive_json()
            self.assertIsNone(reply["invocationId"])
            self.assertIn("invalid frame JSON", reply["error"])

            reply = _invoke(ws, "2", "NoSuchMethod")
            self.assertIn("unknown hub method", reply["error"])

            reply = _invoke(ws, "3", "SendDeviceList", "{broken json")
            self.assertEqual(reply["result"], {"saved": 0})

            reply = _invoke(ws, "4", "GetConnectedClients")
            self.assertEqual(len(reply["result"]), 1)

    def test_deeply_nested_json_keeps_connection_open(self) -> None:
        with self.client.websocket_connect("/hub") as ws:
            ws.receive_json()

            ws.send_text("[" * 100000)
            reply = ws.receive_json()
            self.assertIsNone(reply["invocationId"])
            self.assertIn("invalid frame JSON", reply["error"])

            reply = _invoke(ws, "1", "SendDeviceList", "[" * 100000)
            self.assertEqual(reply["result"], {"saved": 0})

            reply = _invoke(ws, "2", "GetConnectedClients")
            self.assertEqual(len(reply["result"]), 1)

    def test_storage_failure_returns_error_and_keeps_connection_open(self) -> None:
        events = get_runtime(self.app).events
        failure = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with self.client.websocket_connect("/hub?username=agent") as ws:
            ws.receive_json()

            with patch.object(events, "append_batch", side_effect=failure):
                reply = _invoke(ws, "1", "ReportUsbDevices", [{"deviceIndex": 0, "vendorId": 1, "productId": 2}])
            self.assertNotIn("result", reply)
            self.assertIn("disk I/O error", reply["error"])

            presence = _invoke(ws, "2", "GetConnectedClients")["result"]
            self.assertEqual([row["name"] for row in presence], ["agent"])

            reply = _invoke(ws, "3", "ReportUsbDevices", [{"deviceIndex": 0, "vendorId": 1, "productId": 2}])
            self.assertEqual(reply["result"], {"saved": 1})
        self.assertEqual(events.count(), 1)

    def test_events_limit_is_clamped_and_defaulted(self) -> None:
        events = get_runtime(self.app).events
        with self.client.websocket_connect("/hub?username=agent") as ws:
            ws.receive_json()
            devices = [{"deviceIndex": i, "vendorId": 1, "productId": 2} for i in range(5)]
            _invoke(ws, "1", "ReportUsbDevices", devices)
        self.assertEqual(events.count(), 5)

        self.assertEqual(len(self.client.get("/events", params={"limit": 100}).json()), 3)
        self.assertEqual(len(self.client.get("/events").json()), 2)
        self.assertEqual(len(self.client.get("/events", params={"limit": 0}).json()), 2)
        self.assertEqual(len(self.client.get("/events", params={"limit": -5}).json()), 2)

    def test_delete_event_by_id(self) -> None:
        with self.client.websocket_connect("/hub") as ws:
            ws.receive_json()
            _invoke(ws, "1", "ReportUsbDevices", [{"deviceIndex": 0, "vendorId": 1, "productId": 2}])
        event_id = self.client.get("/events").json()[0]["id"]

        response = self.client.delete(f"/events/{event_id}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "deleted")

        response = self.client.delete(f"/events/{event_id}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "absent")
        self.assertEqual(self.client.get("/events").json(), [])

    def test_health_endpoint_returns_ok(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "ok")
        self.assertIn("time", payload)


if __name__ == "__main__":
    unittest.main()

"""Tests for the command-line entry point."""
from __future__ import annotations

import contextlib
import io
import json
import os
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

from usbhub.api import create_app
from usbhub.cli import main
from usbhub.models.records import UsbEvent
from usbhub.store import Database, EventStore


class ServeCommandTest(unittest.TestCase):
    def test_database_url_option_reaches_the_served_app(self) -> None:
        with patch.dict(os.environ, {}, clear=False), patch("uvicorn.run") as run:
            os.environ.pop("USBHUB_DATABASE_URL", None)
            self.assertEqual(main(["--database-url", "sqlite:///cli-hub.db", "serve", "--port", "6001"]), 0)

            target = run.call_args.args[0]
            self.assertEqual(target, "usbhub.api:create_app")
            self.assertTrue(run.call_args.kwargs["factory"])
            self.assertEqual(run.call_args.kwargs["port"], 6001)

            app = create_app()
            self.assertEqual(app.state.settings.database_url, "sqlite:///cli-hub.db")


class StoreCommandsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.url = f"sqlite:///{Path(self._tmp.name, 'hub.db')}"
        database = Database(self.url)
        database.create_all()
        EventStore(database).append_batch(
            [
                UsbEvent(
                    connection_id="conn-a",
                    device_index=index,
                    vendor_id=0x046D,
                    product_id=0xC52B,
                    detected_at=datetime(2026, 10, 18, 9, index, tzinfo=timezone.utc),
                )
                for index in range(3)
            ]
        )
        database.dispose()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _run(self, *argv: str) -> str:
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            self.assertEqual(main(["--database-url", self.url, *argv]), 0)
        return out.getvalue()

    def test_events_json_lists_newest_first(self) -> None:
        rows = json.loads(self._run("events", "--limit", "2", "--json"))
        self.assertEqual([row["deviceIndex"] for row in rows], [2, 1])
        # JSON output keeps numeric ids; only the table shows hex
        self.assertEqual(rows[0]["vendorId"], 0x046D)

    def test_delete_event_then_clients(self) -> None:
        event_id = json.loads(self._run("events", "--json"))[0]["id"]
        self.assertIn("deleted", self._run("delete-event", str(event_id)))
        self.assertIn("not found", self._run("delete-event", str(event_id)))
        self.assertEqual(len(json.loads(self._run("events", "--json"))), 2)
        self.assertEqual(json.loads(self._run("clients", "--json")), [])


if __name__ == "__main__":
    unittest.main()

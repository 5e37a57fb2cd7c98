"""USB hub command-line interface."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from usbhub.config import HubSettings
from usbhub.store import ClientStore, Database, EventStore


def _open_stores(settings: HubSettings) -> tuple[Database, ClientStore, EventStore]:
	database = Database(settings.database_url)
	database.create_all()
	events = EventStore(
		database,
		default_limit=settings.events_default_limit,
		max_limit=settings.events_max_limit,
	)
	return database, ClientStore(database), events


def _render(title: str, columns: Sequence[str], rows: List[Dict[str, Any]], as_json: bool) -> None:
	if as_json:
		json.dump(rows, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return
	table = Table(title=title, show_lines=False)
	for column in columns:
		table.add_column(column)
	for row in rows:
		table.add_row(*(str(row.get(column, "")) for column in columns))
	Console().print(table)


def _cmd_serve(args: argparse.Namespace, settings: HubSettings) -> int:
	import uvicorn

	# The factory runs in the server process, which only sees the environment.
	os.environ["USBHUB_DATABASE_URL"] = settings.database_url
	uvicorn.run(
		"usbhub.api:create_app",
		factory=True,
		host=args.host,
		port=args.port,
		reload=args.reload,
		log_level=settings.log_level.lower(),
	)
	return 0


def _cmd_events(args: argparse.Namespace, settings: HubSettings) -> int:
	database, _, events = _open_stores(settings)
	try:
		rows = [event.to_dict() for event in events.recent(args.limit)]
	finally:
		database.dispose()
	if not args.json:
		for row in rows:
			row["vendorId"] = f"{row['vendorId']:04x}"
			row["productId"] = f"{row['productId']:04x}"
	_render(
		"USB Events",
		("id", "connectionId", "deviceIndex", "vendorId", "productId", "serialNumber",
		 "productString", "manufacturerString", "isBlocked", "detectedAt"),
		rows,
		args.json,
	)
	return 0


def _cmd_clients(args: argparse.Namespace, settings: HubSettings) -> int:
	database, clients, _ = _open_stores(settings)
	try:
		rows = [client.to_dict() for client in clients.list()]
	finally:
		database.dispose()
	_render("Connected Clients", ("id", "connectionId", "name", "remoteAddress", "connectedAt"), rows, args.json)
	return 0


def _cmd_delete_event(args: argparse.Namespace, settings: HubSettings) -> int:
	database, _, events = _open_stores(settings)
	try:
		removed = events.delete_by_id(args.event_id)
	finally:
		database.dispose()
	sys.stdout.write(f"event {args.event_id} {'deleted' if removed else 'not found'}\n")
	return 0


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="USB hub server and event log utilities")
	parser.add_argument("--database-url", help="SQLAlchemy URL (overrides USBHUB_DATABASE_URL)")
	sub = parser.add_subparsers(dest="command", required=True)

	serve = sub.add_parser("serve", help="Run the hub server")
	serve.add_argument("--host", default="127.0.0.1", help="Bind address")
	serve.add_argument("--port", type=int, default=5009, help="Bind port")
	serve.add_argument("--reload", action="store_true", help="Enable auto-reload")
	serve.set_defaults(handler=_cmd_serve)

	events = sub.add_parser("events", help="List recent USB events")
	events.add_argument("--limit", type=int, help="Number of events (clamped to the configured maximum)")
	events.add_argument("--json", action="store_true", help="Output JSON")
	events.set_defaults(handler=_cmd_events)

	clients = sub.add_parser("clients", help="List connected clients")
	clients.add_argument("--json", action="store_true", help="Output JSON")
	clients.set_defaults(handler=_cmd_clients)

	delete = sub.add_parser("delete-event", help="Delete one USB event by id")
	delete.add_argument("event_id", type=int, help="Event id")
	delete.set_defaults(handler=_cmd_delete_event)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	settings = HubSettings.from_env()
	if args.database_url:
		settings.database_url = args.database_url
	logging.basicConfig(
		level=getattr(logging, settings.log_level, logging.INFO),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	return args.handler(args, settings)


if __name__ == "__main__":
	sys.exit(main())

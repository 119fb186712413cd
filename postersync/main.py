"""
Poster Sync Client

Keeps a local cache of placed posters and reconciles it with the remote
poster service. Placements and removals are written locally first and sent
when the service is reachable.

Usage:
    python main.py sync                 # Flush pending changes, then pull updates
    python main.py place LAT LNG        # Place a poster
    python main.py remove LAT LNG       # Remove the nearest poster
    python main.py list [--pending]     # Show cached posters
    python main.py status               # Show sync status
    python main.py login                # Start a new session (wipes the cache)
    python main.py purge                # Delete confirmed removals from the cache

The session is read from POSTER_AUTH_KEY, POSTER_USER_ID and POSTER_PARTY_ID.
"""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from app.poster_service import PosterService
from config.app_config import AppConfig
from models import Location, PosterRecord, Session
from sync.errors import PosterSyncError

logger = logging.getLogger("poster_sync")


def session_from_env() -> Optional[Session]:
    """Build the session from environment variables, or None if incomplete."""
    auth_key = os.environ.get("POSTER_AUTH_KEY")
    user_id = os.environ.get("POSTER_USER_ID")
    party_id = os.environ.get("POSTER_PARTY_ID")
    if not (auth_key and user_id and party_id):
        return None
    return Session(
        auth_key=auth_key,
        user_id=int(user_id),
        party_id=int(party_id),
        username=os.environ.get("POSTER_USERNAME", "")
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="poster-sync", description="Offline-first poster sync client")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("sync", help="Flush pending changes, then pull updates")
    subparsers.add_parser("login", help="Start a new session, wiping the local cache")
    subparsers.add_parser("status", help="Show sync status")
    subparsers.add_parser("purge", help="Delete confirmed removals from the cache")

    for name in ("place", "remove"):
        sub = subparsers.add_parser(name, help=f"{name.capitalize()} a poster at a location")
        sub.add_argument("lat", type=float)
        sub.add_argument("lng", type=float)

    list_parser = subparsers.add_parser("list", help="Show cached posters")
    list_parser.add_argument("--pending", action="store_true", help="Only show unsent changes")
    return parser


def print_posters(posters: List[PosterRecord]) -> None:
    if not posters:
        print("No posters.")
        return
    for p in posters:
        state = "pending" if p.pending_sync else "synced"
        kind = "removal" if p.removed else "poster"
        server = p.server_id if p.server_id is not None else "-"
        line = f"{p.local_id:>5}  {server:>6}  {p.latitude:.6f}, {p.longitude:.6f}  {kind} ({state})"
        if p.last_error:
            line += f"  [{p.attempts} failed: {p.last_error}]"
        print(line)


def run_command(service: PosterService, args: argparse.Namespace) -> int:
    if args.command == "list":
        print_posters(service.pending_posters() if args.pending else service.active_posters())
        return 0
    if args.command == "status":
        print(json.dumps(service.get_status_summary(), indent=2, default=str))
        return 0
    if args.command == "purge":
        print(f"Purged {service.app.store.purge_removed()} removed posters")
        return 0

    if service.session is None:
        print("No session: set POSTER_AUTH_KEY, POSTER_USER_ID and POSTER_PARTY_ID", file=sys.stderr)
        return 2

    if args.command == "login":
        service.login(service.session)
    elif args.command == "sync":
        service.refresh()
    elif args.command == "place":
        record = service.place_poster(Location(args.lat, args.lng))
        print(f"Poster stored as local {record.local_id}")
    elif args.command == "remove":
        service.remove_poster(Location(args.lat, args.lng))

    state = service.state
    print(f"{state.status.value}: {state.message} ({state.pending_count} pending)")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the poster sync client.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = AppConfig.from_env()
    # one-shot commands sync explicitly
    config.sync.sync_on_start = False
    service = PosterService(config)
    try:
        service.start(session_from_env())
        return run_command(service, args)
    except PosterSyncError as e:
        logger.error(f"Command failed: {e}")
        return 1
    finally:
        service.stop()


if __name__ == "__main__":
    sys.exit(main())

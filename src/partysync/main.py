"""partysync demo entry point.

Usage:
    Host a room:        partysync --host
    Join a room:        partysync --join ROOM_ID --peer-at 192.168.1.20:23456
    Probe a room:       partysync --status ROOM_ID --peer-at 192.168.1.20:23456
    Local test:         partysync --local        (host plus a bot, no sockets)

Processes on the same device find each other through a shared peers file in
the data directory; ``--peer-at`` adds an address for a room on another
device.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

import pygame

from partysync.config import (
    DATA_DIR_NAME,
    DEFAULT_PORT,
    PEERS_FILE,
    SCREEN_HEIGHT,
    SCREEN_WIDTH,
)
from partysync.errors import InitError
from partysync.networking.loopback import LoopbackNetwork
from partysync.networking.tcp_transport import PeerDirectory, TcpTransport
from partysync.session.identity import IdentityStore
from partysync.session.manager import MultiplayerSession
from partysync.world import ArenaWorld

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="partysync: host-authoritative party play")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "--host", action="store_true",
        help="Host a room (room id is this device's persistent id)",
    )
    group.add_argument(
        "--join", type=str, metavar="ROOM_ID",
        help="Join the room with this id",
    )
    group.add_argument(
        "--status", type=str, metavar="ROOM_ID",
        help="Print whether a room is hosting, in game, or offline",
    )
    group.add_argument(
        "--local", action="store_true",
        help="Run host and a bot joiner in one process over the loopback transport",
    )
    parser.add_argument(
        "--port", type=int, default=DEFAULT_PORT,
        help=f"Port the host listens on (default {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--peer-at", type=str, metavar="HOST:PORT",
        help="Address of the room given to --join/--status",
    )
    parser.add_argument(
        "--data-dir", type=Path, default=Path.home() / DATA_DIR_NAME,
        help="Where the persistent id and contacts are stored",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    if args.status is not None:
        sys.exit(_run_status(args))

    pygame.init()
    screen = pygame.display.set_mode((SCREEN_WIDTH, SCREEN_HEIGHT))
    pygame.display.set_caption("partysync")
    try:
        if args.local:
            _run_local(screen)
        else:
            _run_networked(screen, args)
    finally:
        pygame.quit()


def _tcp_transport(args: argparse.Namespace) -> TcpTransport:
    directory = PeerDirectory(args.data_dir / PEERS_FILE)
    room_id = args.join or args.status
    if args.peer_at and room_id:
        host, _, port = args.peer_at.rpartition(":")
        if not host or not port.isdigit():
            print(f"Invalid address: {args.peer_at}. Expected HOST:PORT")
            sys.exit(1)
        directory.register(room_id, host, int(port))
    # Only the host listens on a known port; everything else is ephemeral.
    return TcpTransport(directory, port=args.port if args.host else 0)


def _run_status(args: argparse.Namespace) -> int:
    transport = _tcp_transport(args)
    session = MultiplayerSession(transport, ArenaWorld(), IdentityStore(args.data_dir))
    result: list[str] = []
    session.probe_status(args.status, result.append)
    while not result:
        session.poll()
        time.sleep(0.01)
    print(f"{args.status}: {result[0]}")
    transport.close()
    return 0 if result[0] != "offline" else 1


def _run_networked(screen: pygame.Surface, args: argparse.Namespace) -> None:
    from partysync.app import DemoApp, HudObserver

    transport = _tcp_transport(args)
    world = ArenaWorld()
    hud = HudObserver()
    session = MultiplayerSession(transport, world, IdentityStore(args.data_dir), hud)
    try:
        if args.host:
            room_id = session.host_game()
            print(f"Hosting room {room_id} on port {args.port}")
        else:
            session.join_game(args.join)
    except InitError as e:
        print(f"Could not start: {e}")
        transport.close()
        sys.exit(1)
    DemoApp(screen, session, world, hud).run()
    transport.close()


def _run_local(screen: pygame.Surface) -> None:
    from partysync.app import BotPlayer, DemoApp, HudObserver

    network = LoopbackNetwork()
    world = ArenaWorld(seed=42)
    hud = HudObserver()
    host = MultiplayerSession(network.transport(), world, IdentityStore(), hud)
    room_id = host.host_game()

    bot_session = MultiplayerSession(network.transport(), ArenaWorld(seed=7), IdentityStore())
    bot_session.join_game(room_id)
    DemoApp(screen, host, world, hud, bot=BotPlayer(bot_session)).run()


if __name__ == "__main__":
    main()

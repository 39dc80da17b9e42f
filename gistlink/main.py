from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import threading
from typing import Optional

from .errors import ChannelNotOpenError, GistLinkError
from .logging_config import setup_logging
from .net import protocol
from .rtc.connection import Connection


logger = logging.getLogger(__name__)


CHAT = "chat"


def _stdin_lines(loop: asyncio.AbstractEventLoop) -> "asyncio.Queue[Optional[str]]":
	"""Feed stdin lines into a queue from a daemon thread; None marks EOF."""

	queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

	def _read() -> None:
		for line in sys.stdin:
			loop.call_soon_threadsafe(queue.put_nowait, line.rstrip("\n"))
		loop.call_soon_threadsafe(queue.put_nowait, None)

	threading.Thread(target=_read, name="stdin-reader", daemon=True).start()
	return queue


async def _relay_stdin(conn: Connection) -> None:
	lines = _stdin_lines(asyncio.get_running_loop())
	while True:
		text = await lines.get()
		if text is None:
			return
		if not text:
			continue
		try:
			conn.send(CHAT, text)
		except ChannelNotOpenError:
			print("Channel is not open yet, message dropped")


async def _run(args: argparse.Namespace) -> int:
	async with Connection(args.token, args.gist_id) as conn:
		if args.command == "rooms":
			for room_id in await conn.list_rooms():
				print(room_id)
			return 0

		conn.on(CHAT, lambda text: print(f"< {text}"))
		conn.on(protocol.OPEN, lambda _data: print("Channel open, type to chat (Ctrl-D to quit)"))
		conn.on(protocol.CLOSE, lambda _data: print("Channel closed"))

		if args.command == "create":
			await conn.create_room(args.room)
			print(f"Room {args.room!r} published in gist {conn.container_id}, waiting for a peer...")
			await conn.wait_for_answer()
		elif not await conn.join_room(args.room):
			print(f"Room {args.room!r} has no offer yet")
			return 1

		await _relay_stdin(conn)
	return 0


def main(argv: list[str] | None = None) -> int:
	parser = argparse.ArgumentParser(description="Peer-to-peer chat negotiated through a GitHub gist")
	parser.add_argument(
		"command",
		choices=("create", "join", "rooms"),
		help="create a room, join a room, or list the rooms stored in the gist",
	)
	parser.add_argument(
		"--log-level",
		default=None,
		help="Logging level (debug, info, warning, error). Can also use GISTLINK_LOG_LEVEL.",
	)
	parser.add_argument(
		"--token",
		default=os.environ.get("GISTLINK_TOKEN"),
		help="GitHub token with the gist scope",
	)
	parser.add_argument(
		"--gist-id",
		default=os.environ.get("GISTLINK_GIST_ID"),
		help="Gist holding the rooms (found or created when omitted)",
	)
	parser.add_argument(
		"--room",
		default=os.environ.get("GISTLINK_ROOM", protocol.DEFAULT_ROOM_ID),
		help="Room id",
	)
	args = parser.parse_args(argv)

	setup_logging(args.log_level)

	if not args.token:
		print("A GitHub token is required: pass --token or set GISTLINK_TOKEN")
		return 2

	try:
		return asyncio.run(_run(args))
	except KeyboardInterrupt:
		return 130
	except GistLinkError as e:
		logger.error("%s", e)
		return 1


if __name__ == "__main__":
	raise SystemExit(main(sys.argv[1:]))

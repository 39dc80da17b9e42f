"""Room documents persisted in the shared container of a document store."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..errors import InitializationError, RoomSourceMissingError, StoreError
from . import protocol
from .gist_client import DocumentStore
from .protocol import ContainerInfo, Room


logger = logging.getLogger(__name__)


async def resolve_container(
	store: DocumentStore,
	existing_id: Optional[str] = None,
	room_id: str = protocol.DEFAULT_ROOM_ID,
) -> str:
	"""Find the tagged container, creating it when the account has none.

	`existing_id` is trusted as-is. Any store failure is turned into an
	`InitializationError`.
	"""

	if existing_id:
		return existing_id

	try:
		containers = await store.list_containers()
		for container in containers:
			if protocol.is_room_container(container):
				logger.info("room container found id=%s", container.get("id"))
				return str(container["id"])

		payload = protocol.default_container_payload(room_id)
		created = await store.create(payload["description"], payload["files"])
	except StoreError as e:
		raise InitializationError(f"could not resolve room container: {e}") from e

	container_id = created.get("id") if isinstance(created, dict) else None
	if not container_id:
		raise InitializationError("room container creation returned no id")
	logger.info("room container created id=%s", container_id)
	return str(container_id)


class RoomStore:
	def __init__(self, store: DocumentStore, container_id: str):
		self.store = store
		self.container_id = container_id

	async def get_room(self, room_id: str) -> Room:
		name = protocol.room_name(room_id)
		container = await self._container()
		entry = (container.get("files") or {}).get(name)
		if not entry:
			return Room(name=name)

		content = await self.store.fetch_file_json(entry)
		return Room.from_content(name, content)

	async def update_room(self, room: Room) -> Room:
		"""Write `room`, keeping ice entries of sessions that `room` does not mention.

		offer and answer are overwritten, so a fresh offer clears a stale answer.
		"""

		current = await self.get_room_by_name(room.name)
		merged = Room(
			name=room.name,
			ice=protocol.merge_ice(current.ice, room.ice),
			offer=room.offer,
			answer=room.answer,
		)
		await self.store.update(self.container_id, {merged.name: {"content": merged.to_content()}})
		logger.debug(
			"room written name=%s sessions=%s state=%s",
			merged.name,
			len(merged.ice or {}),
			merged.state,
		)
		return merged

	async def get_room_by_name(self, name: str) -> Room:
		room_id = protocol.room_id_from_name(name)
		if room_id is None:
			raise protocol.ProtocolError(f"not a room file name: {name}")
		return await self.get_room(room_id)

	async def list_rooms(self) -> List[str]:
		container = await self._container()
		rooms: List[str] = []
		for filename, entry in (container.get("files") or {}).items():
			entry = {**entry, "filename": entry.get("filename", filename)}
			if protocol.is_room_file(entry):
				room_id = protocol.room_id_from_name(entry["filename"])
				if room_id is not None:
					rooms.append(room_id)
		return sorted(rooms)

	async def _container(self) -> ContainerInfo:
		container = await self.store.get(self.container_id)
		if not container:
			raise RoomSourceMissingError(self.container_id)
		return container

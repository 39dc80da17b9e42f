"""Room document and data channel protocol helpers.

Rooms live as JSON files inside one tagged container of the document store.
The file name is derived from the room id; the file content holds everything
but the name:

	{"ice": {"<session id>": [candidate, ...]}, "offer": {...}, "answer": {...}}

Messages on the data channel are single JSON objects `{"type": ..., "data": ...}`.
The tag and prefix below are shared with browser peers, do not change them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, TypedDict

from ..errors import GistLinkError


DEFAULT_ROOM_ID = "default_room"

CONTAINER_TAG = "__pist_repo__"
ROOM_PREFIX = "__pist_room__:"

# Built-in event types
OPEN = "open"
CLOSE = "close"
TRACK = "track"
CONNECTION_STATE = "connectionstatechange"

# In-band control message
RENEGOTIATE = "renegotiate"

# Room states
UNCLAIMED = "unclaimed"
AWAITING_ANSWER = "awaiting-answer"
COMPLETE = "complete"


class IceCandidateDict(TypedDict, total=False):
	candidate: str
	sdpMid: Optional[str]
	sdpMLineIndex: Optional[int]


class SessionDescriptionDict(TypedDict):
	type: str
	sdp: str


class FileEntry(TypedDict, total=False):
	filename: str
	raw_url: str
	content: str
	truncated: bool


class ContainerInfo(TypedDict, total=False):
	id: str
	description: str
	files: Dict[str, FileEntry]


IceMap = Dict[str, List[IceCandidateDict]]


class ProtocolError(GistLinkError):
	pass


def room_name(room_id: str) -> str:
	return f"{ROOM_PREFIX}{room_id}"


def room_id_from_name(name: str) -> Optional[str]:
	if not name.startswith(ROOM_PREFIX):
		return None
	return name[len(ROOM_PREFIX):]


def container_tag() -> str:
	return CONTAINER_TAG


def is_room_container(container: ContainerInfo) -> bool:
	return container.get("description") == CONTAINER_TAG


def is_room_file(entry: FileEntry) -> bool:
	return str(entry.get("filename", "")).startswith(ROOM_PREFIX)


def default_container_payload(room_id: str = DEFAULT_ROOM_ID) -> Dict[str, Any]:
	"""Payload used to create the shared container, with one empty room."""

	return {
		"description": CONTAINER_TAG,
		"files": {room_name(room_id): {"content": json.dumps({})}},
	}


def merge_ice(base: Optional[IceMap], update: Optional[IceMap]) -> IceMap:
	"""Merge candidate maps by session id; sessions in `update` replace their own entry only."""

	merged: IceMap = {k: list(v) for k, v in (base or {}).items()}
	for session_id, candidates in (update or {}).items():
		merged[session_id] = list(candidates)
	return merged


def remote_candidates(ice: Optional[IceMap], session_id: str) -> List[IceCandidateDict]:
	"""All candidates in `ice` except the ones published by `session_id`."""

	out: List[IceCandidateDict] = []
	for owner, candidates in (ice or {}).items():
		if owner == session_id:
			continue
		out.extend(candidates)
	return out


def _is_ice_map(ice: Any) -> bool:
	if not isinstance(ice, dict):
		return False
	return all(
		isinstance(candidates, list) and all(isinstance(c, dict) for c in candidates)
		for candidates in ice.values()
	)


@dataclass
class Room:
	name: str
	ice: Optional[IceMap] = None
	offer: Optional[SessionDescriptionDict] = None
	answer: Optional[SessionDescriptionDict] = None

	@property
	def state(self) -> str:
		if not self.offer:
			return UNCLAIMED
		if not self.answer:
			return AWAITING_ANSWER
		return COMPLETE

	def to_content(self) -> str:
		body: Dict[str, Any] = {}
		if self.ice is not None:
			body["ice"] = self.ice
		if self.offer is not None:
			body["offer"] = self.offer
		if self.answer is not None:
			body["answer"] = self.answer
		return json.dumps(body, separators=(",", ":"), ensure_ascii=False)

	@classmethod
	def from_content(cls, name: str, content: Any) -> "Room":
		"""Build a room from stored file content (raw JSON text or decoded mapping)."""

		if isinstance(content, (str, bytes)):
			try:
				content = json.loads(content) if content else {}
			except ValueError as e:
				raise ProtocolError(f"room {name} is not valid JSON: {e}") from e
		if not isinstance(content, dict):
			raise ProtocolError(f"room {name} content must be an object")

		ice = content.get("ice")
		if ice is not None and not _is_ice_map(ice):
			raise ProtocolError(f"room {name} has malformed ice map")
		return cls(
			name=name,
			ice=ice,
			offer=content.get("offer") or None,
			answer=content.get("answer") or None,
		)


def make_message(mtype: str, data: Any = None) -> str:
	return json.dumps({"type": mtype, "data": data}, separators=(",", ":"), ensure_ascii=False)


def parse_message(raw: Any) -> Tuple[str, Any]:
	try:
		if isinstance(raw, bytes):
			raw = raw.decode("utf-8")
		msg = json.loads(raw)
	except (TypeError, ValueError) as e:
		raise ProtocolError(f"invalid-json: {e}") from e
	if not isinstance(msg, dict):
		raise ProtocolError("invalid-message")
	mtype = msg.get("type")
	if not isinstance(mtype, str):
		raise ProtocolError("missing-type")
	return mtype, msg.get("data")

"""Shared fakes: an in-memory document store and a scripted transport."""

import copy
import json
import uuid

import pytest
from pyee import EventEmitter

from gistlink.rtc.connection import Connection, ConnectionConfig


class MemoryStore:
    """In-memory stand-in for the gist API, with the same patch semantics."""

    def __init__(self):
        self.containers = {}
        self.updates = 0
        self.creates = 0
        self.fail_list = None

    def add_container(self, description, files=None, container_id=None):
        container_id = container_id or uuid.uuid4().hex
        self.containers[container_id] = {"id": container_id, "description": description, "files": {}}
        self._write_files(container_id, files or {})
        return container_id

    def room_content(self, container_id, name):
        entry = self.containers[container_id]["files"].get(name)
        return json.loads(entry["content"]) if entry else None

    async def list_containers(self):
        if self.fail_list is not None:
            raise self.fail_list
        return copy.deepcopy(list(self.containers.values()))

    async def get(self, container_id):
        container = self.containers.get(container_id)
        return copy.deepcopy(container) if container else None

    async def create(self, description, files):
        self.creates += 1
        return {"id": self.add_container(description, files)}

    async def update(self, container_id, files):
        self.updates += 1
        self._write_files(container_id, files)
        return {"id": container_id}

    async def fetch_file_json(self, ref):
        return json.loads(ref["content"]) if ref["content"] else {}

    def _write_files(self, container_id, files):
        stored = self.containers[container_id]["files"]
        for name, body in files.items():
            stored[name] = {
                "filename": name,
                "raw_url": f"mem://{container_id}/{name}",
                "content": body["content"],
            }


class FakeChannel(EventEmitter):
    def __init__(self, label="gistlink", ready_state="connecting"):
        super().__init__()
        self.label = label
        self.readyState = ready_state
        self.sent = []

    def send(self, data):
        self.sent.append(data)

    def open(self):
        self.readyState = "open"
        self.emit("open")

    def receive(self, raw):
        self.emit("message", raw)

    def close(self):
        if self.readyState == "closed":
            return
        self.readyState = "closed"
        self.emit("close")


class FakeTransport:
    """Scripted transport: each set_local_description replays `candidates`."""

    def __init__(self, callbacks, candidates=None, complete=True):
        self.callbacks = callbacks
        self.candidates = candidates if candidates is not None else []
        self.complete = complete
        self.local = None
        self.remote = []
        self.applied = []
        self.channels = []
        self.tracks = []
        self.closed = False
        self._offers = 0

    @property
    def local_description(self):
        return self.local

    async def create_offer(self):
        self._offers += 1
        return {"type": "offer", "sdp": f"offer-{self._offers}"}

    async def create_answer(self):
        return {"type": "answer", "sdp": "answer-1"}

    async def set_local_description(self, description):
        self.local = description
        for candidate in self.candidates:
            self.callbacks.on_ice_candidate(candidate)
        if self.complete:
            self.callbacks.on_ice_candidate(None)

    async def set_remote_description(self, description):
        self.remote.append(description)

    async def add_ice_candidate(self, candidate):
        self.applied.append(candidate)

    def create_data_channel(self, label):
        channel = FakeChannel(label)
        self.channels.append(channel)
        return channel

    def add_track(self, track):
        self.tracks.append(track)
        return ("sender", track)

    def remove_track(self, sender):
        self.tracks.remove(sender[1])

    async def close(self):
        self.closed = True


def candidate(n):
    return {"candidate": f"candidate:{n} 1 udp 2122260223 10.0.0.{n} 5000{n} typ host", "sdpMid": "0", "sdpMLineIndex": 0}


FAST = ConnectionConfig(
    gather_timeout=1.0,
    gather_interval=0.01,
    answer_poll_interval=0.01,
    renegotiate_delay=5.0,
)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
async def make_connection(store):
    created = []

    def _make(candidates=None, complete=True, config=FAST, container_id=None, backing=None):
        transports = []

        def factory(callbacks):
            transport = FakeTransport(callbacks, candidates, complete)
            transports.append(transport)
            return transport

        conn = Connection(
            "token",
            container_id,
            config=config,
            store=backing or store,
            transport_factory=factory,
        )
        conn.transports = transports
        created.append(conn)
        return conn

    yield _make

    for conn in created:
        await conn.close()

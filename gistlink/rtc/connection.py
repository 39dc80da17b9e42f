"""Peer connection negotiated through a shared document store.

One side calls `create_room()`: it publishes an offer plus its candidates in the
room document and polls the document until an answer shows up. The other side
calls `join_room()`: it reads the offer, answers, and publishes the answer plus
its own candidates into the same document.

Each Connection tags the candidates it publishes with a random session id so
that it never applies its own candidates when reading the room back.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from aiortc.rtcconfiguration import RTCConfiguration

from ..errors import (
    ChannelNotOpenError,
    ConnectionStateError,
    InitializationError,
    StoreError,
)
from ..events import EventBus, Listener
from ..net import protocol
from ..net.gist_client import DocumentStore, GistClient
from ..net.protocol import IceCandidateDict, IceMap, Room
from ..net.room_store import RoomStore, resolve_container
from .gatherer import DEFAULT_GATHER_INTERVAL, DEFAULT_GATHER_TIMEOUT, CandidateGatherer
from .transport import Transport, TransportCallbacks, TransportFactory, WebRTCTransport


logger = logging.getLogger(__name__)


AsyncCallback = Callable[..., Awaitable[None]]


def _env_float(name: str, default: float) -> float:
    v = os.environ.get(name)
    if v is None:
        return default
    try:
        return float(v)
    except Exception:
        return default


def _env_truthy(name: str, default: bool) -> bool:
    v = os.environ.get(name)
    if v is None:
        return default
    return v.strip().casefold() in {"1", "true", "yes", "on"}


class ConnectionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    OFFERING = "offering"
    ANSWERING = "answering"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class ConnectionConfig:
    """Timing and policy knobs for a Connection.

    Optional env vars: GISTLINK_GATHER_TIMEOUT, GISTLINK_GATHER_INTERVAL,
    GISTLINK_ANSWER_POLL_INTERVAL, GISTLINK_RENEGOTIATE_DELAY,
    GISTLINK_REGATHER_WITH_OPEN_CHANNEL, GISTLINK_CHANNEL_LABEL.
    """

    gather_timeout: float = DEFAULT_GATHER_TIMEOUT
    gather_interval: float = DEFAULT_GATHER_INTERVAL
    answer_poll_interval: float = 2.0
    renegotiate_delay: float = 10.0
    # When a channel is already open, publish no new candidates for the round.
    regather_with_open_channel: bool = False
    channel_label: str = "gistlink"

    @classmethod
    def from_env(cls) -> "ConnectionConfig":
        return cls(
            gather_timeout=_env_float("GISTLINK_GATHER_TIMEOUT", cls.gather_timeout),
            gather_interval=_env_float("GISTLINK_GATHER_INTERVAL", cls.gather_interval),
            answer_poll_interval=_env_float("GISTLINK_ANSWER_POLL_INTERVAL", cls.answer_poll_interval),
            renegotiate_delay=_env_float("GISTLINK_RENEGOTIATE_DELAY", cls.renegotiate_delay),
            regather_with_open_channel=_env_truthy("GISTLINK_REGATHER_WITH_OPEN_CHANNEL", cls.regather_with_open_channel),
            channel_label=os.environ.get("GISTLINK_CHANNEL_LABEL", cls.channel_label),
        )


@dataclass
class ConnectionCallbacks:
    on_log: Optional[AsyncCallback] = None  # (msg: str)
    on_state: Optional[AsyncCallback] = None  # (state: ConnectionState)


class Connection:
    def __init__(
        self,
        token: str,
        container_id: Optional[str] = None,
        *,
        config: Optional[ConnectionConfig] = None,
        callbacks: Optional[ConnectionCallbacks] = None,
        store: Optional[DocumentStore] = None,
        transport_factory: Optional[TransportFactory] = None,
        rtc_config: Optional[RTCConfiguration] = None,
    ):
        self.session_id = str(uuid.uuid4())
        self.container_id = container_id
        self.config = config or ConnectionConfig.from_env()
        self._callbacks = callbacks or ConnectionCallbacks()

        self._owns_store = store is None
        self._store: DocumentStore = store if store is not None else GistClient(token)
        self._transport_factory: TransportFactory = transport_factory or (
            lambda cb: WebRTCTransport(cb, rtc_config=rtc_config)
        )

        self._bus = EventBus()
        self._gatherer = CandidateGatherer(interval=self.config.gather_interval)
        self._rooms: Optional[RoomStore] = None
        self._transport: Optional[Transport] = None
        self._channel: Any = None

        self._state = ConnectionState.UNINITIALIZED
        self._connected = False
        self._init_task: Optional[asyncio.Task[None]] = None
        self._init_error: Optional[InitializationError] = None
        self._room_id: Optional[str] = None

        self._gather_task: Optional[asyncio.Task[List[IceCandidateDict]]] = None
        self._answer_task: Optional[asyncio.Task[Room]] = None
        self._renegotiate_task: Optional[asyncio.Task[None]] = None
        self._reoffer_task: Optional[asyncio.Task[None]] = None
        self.negotiating = False

        self._bus.on(protocol.RENEGOTIATE, self._on_renegotiate_message)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def channel(self) -> Any:
        return self._channel

    @property
    def room_id(self) -> Optional[str]:
        return self._room_id

    @property
    def is_open(self) -> bool:
        return self._channel is not None and getattr(self._channel, "readyState", None) == "open"

    def on(self, event_type: str, listener: Optional[Listener] = None):
        return self._bus.on(event_type, listener)

    def send(self, mtype: str, data: Any = None) -> None:
        if not self.is_open:
            raise ChannelNotOpenError(f"cannot send {mtype!r}: data channel is not open")
        self._channel.send(protocol.make_message(mtype, data))

    def add_track(self, track: Any) -> Any:
        return self._require_transport().add_track(track)

    def remove_track(self, sender: Any) -> None:
        self._require_transport().remove_track(sender)

    async def __aenter__(self) -> "Connection":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def initialize(self) -> None:
        """Resolve the room container and create the transport.

        Safe to call more than once. A failure is terminal: it is raised again
        by every later call on this Connection.
        """

        if self._init_error is not None:
            raise self._init_error
        if self._state is ConnectionState.CLOSED:
            raise ConnectionStateError("connection is closed")
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        await self._init_task

    async def create_room(self, room_id: str = protocol.DEFAULT_ROOM_ID) -> None:
        """Publish an offer for `room_id` and start polling for the answer."""

        await self.initialize()
        transport = self._require_transport()
        self._room_id = room_id
        self._cancel_task(self._answer_task)
        self._answer_task = None

        # The channel must exist before the offer so that it is part of it.
        had_channel = self._channel is not None
        if not had_channel:
            self._set_channel(transport.create_data_channel(self.config.channel_label))

        await self._transition(ConnectionState.OFFERING)
        try:
            self._gatherer.reset()
            offer = await transport.create_offer()
            await transport.set_local_description(offer)
            offer = transport.local_description or offer
            candidates = await self._gather_local(skip=had_channel)

            room = Room(
                name=protocol.room_name(room_id),
                ice={self.session_id: candidates} if candidates is not None else {},
                offer=offer,
            )
            await self._require_rooms().update_room(room)
        except Exception:
            await self._transition(self._resting_state())
            raise

        logger.info(
            "room offer published room=%s session=%s candidates=%s",
            room_id,
            self.session_id,
            len(candidates) if candidates is not None else "skipped",
        )
        await self._log(f"Offer published in room {room_id}")
        self._answer_task = asyncio.ensure_future(self._poll_answer(room_id))
        self._answer_task.add_done_callback(self._log_task_failure)

    async def join_room(self, room_id: str = protocol.DEFAULT_ROOM_ID) -> bool:
        """Answer the offer stored in `room_id`. False when nobody has offered yet."""

        await self.initialize()
        transport = self._require_transport()
        rooms = self._require_rooms()

        room = await rooms.get_room(room_id)
        if not room.offer:
            logger.info("room join skipped room=%s state=%s", room_id, room.state)
            return False

        self._room_id = room_id
        await self._transition(ConnectionState.ANSWERING)
        try:
            self._gatherer.reset()
            await transport.set_remote_description(room.offer)
            await self._apply_candidates(room.ice)

            answer = await transport.create_answer()
            await transport.set_local_description(answer)
            answer = transport.local_description or answer
            candidates = await self._gather_local(skip=self._channel is not None)

            await rooms.update_room(
                Room(
                    name=room.name,
                    ice={self.session_id: candidates} if candidates is not None else {},
                    offer=room.offer,
                    answer=answer,
                )
            )
        except Exception:
            await self._transition(self._resting_state())
            raise

        self._connected = True
        await self._transition(ConnectionState.CONNECTED)
        logger.info("room joined room=%s session=%s", room_id, self.session_id)
        await self._log(f"Joined room {room_id}")
        return True

    async def wait_for_answer(self, timeout: Optional[float] = None) -> Room:
        """Wait until the answer poll started by `create_room()` finishes."""

        task = self._answer_task
        if task is None:
            raise ConnectionStateError("no answer poll in progress")
        return await asyncio.wait_for(asyncio.shield(task), timeout)

    async def leave_room(self, room_id: Optional[str] = None) -> None:
        """Stop every timer, close the channel and the transport. Terminal."""

        if self._state is ConnectionState.CLOSED:
            return
        logger.info("room leave room=%s session=%s", room_id or self._room_id, self.session_id)

        for task in (self._gather_task, self._answer_task, self._renegotiate_task, self._reoffer_task, self._init_task):
            await self._cancel_and_wait(task)
        self._gather_task = self._answer_task = self._renegotiate_task = self._reoffer_task = None
        self.negotiating = False
        self._gatherer.reset()

        channel, self._channel = self._channel, None
        if channel is not None:
            channel.close()
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()
        if self._owns_store:
            await self._store.aclose()  # type: ignore[attr-defined]

        await self._transition(ConnectionState.CLOSED)
        await self._log(f"Left room {room_id or self._room_id}")

    async def close(self) -> None:
        await self.leave_room(self._room_id)

    async def list_rooms(self) -> List[str]:
        await self.initialize()
        return await self._require_rooms().list_rooms()

    async def _initialize(self) -> None:
        await self._transition(ConnectionState.INITIALIZING)
        try:
            container_id = await resolve_container(self._store, self.container_id)
        except InitializationError as e:
            logger.error("connection init failed session=%s error=%s", self.session_id, e)
            self._init_error = e
            if self._owns_store:
                await self._store.aclose()  # type: ignore[attr-defined]
            await self._transition(ConnectionState.CLOSED)
            raise

        self.container_id = container_id
        self._rooms = RoomStore(self._store, container_id)
        self._transport = self._transport_factory(
            TransportCallbacks(
                on_ice_candidate=self._gatherer.push,
                on_datachannel=self._on_datachannel,
                on_track=self._on_track,
                on_negotiation_needed=self._on_negotiation_needed,
                on_connection_state=self._on_connection_state,
            )
        )
        await self._transition(ConnectionState.READY)
        logger.info("connection ready session=%s container=%s", self.session_id, container_id)

    async def _gather_local(self, skip: bool) -> Optional[List[IceCandidateDict]]:
        if skip and not self.config.regather_with_open_channel:
            logger.debug("gather skipped, channel already exists")
            self._gatherer.reset()
            return None
        self._gather_task = asyncio.ensure_future(self._gatherer.gather(self.config.gather_timeout))
        try:
            return await self._gather_task
        finally:
            self._gather_task = None

    async def _poll_answer(self, room_id: str) -> Room:
        transport = self._require_transport()
        rooms = self._require_rooms()
        try:
            room = await self._next_answer(rooms, room_id)
            await transport.set_remote_description(room.answer)
            await self._apply_candidates(room.ice)
        except Exception:
            await self._transition(self._resting_state())
            raise

        self._connected = True
        await self._transition(ConnectionState.CONNECTED)
        logger.info("room answer applied room=%s session=%s", room_id, self.session_id)
        await self._log(f"Answer received in room {room_id}")
        return room

    async def _next_answer(self, rooms: RoomStore, room_id: str) -> Room:
        while True:
            await asyncio.sleep(self.config.answer_poll_interval)
            try:
                room = await rooms.get_room(room_id)
            except StoreError as e:
                logger.warning("answer poll failed room=%s error=%s", room_id, e)
                continue
            if room.answer:
                return room
            logger.debug("answer poll room=%s state=%s", room_id, room.state)

    async def _apply_candidates(self, ice: Optional[IceMap]) -> None:
        transport = self._require_transport()
        candidates = protocol.remote_candidates(ice, self.session_id)
        logger.debug("applying remote candidates=%s", len(candidates))
        for candidate in candidates:
            try:
                await transport.add_ice_candidate(candidate)
            except ValueError as e:
                logger.warning("remote candidate rejected candidate=%r error=%s", candidate, e)

    def _set_channel(self, channel: Any) -> None:
        @channel.on("message")
        def on_message(raw) -> None:
            try:
                mtype, data = protocol.parse_message(raw)
            except protocol.ProtocolError as e:
                logger.warning("channel message dropped: %s", e)
                return
            logger.debug("channel recv type=%s", mtype)
            self._bus.emit(mtype, data)

        @channel.on("open")
        def on_open() -> None:
            logger.info("channel open label=%s", getattr(channel, "label", "?"))
            self._bus.emit(protocol.OPEN, None)

        @channel.on("close")
        def on_close() -> None:
            logger.info("channel closed label=%s", getattr(channel, "label", "?"))
            self._bus.emit(protocol.CLOSE, None)

        self._channel = channel

    def _on_datachannel(self, channel: Any) -> None:
        self._set_channel(channel)
        # aiortc hands over remote channels already open.
        if getattr(channel, "readyState", None) == "open":
            self._bus.emit(protocol.OPEN, None)

    def _on_track(self, track: Any) -> None:
        self._bus.emit(protocol.TRACK, track)

    def _on_connection_state(self, state: str) -> None:
        logger.debug("transport state=%s session=%s", state, self.session_id)
        self._bus.emit(protocol.CONNECTION_STATE, state)

    def _on_negotiation_needed(self) -> None:
        if self.negotiating:
            logger.debug("renegotiation dropped, one already in flight")
            return
        if self._room_id is None or not self.is_open:
            logger.debug("renegotiation skipped, no open channel")
            return

        self.negotiating = True
        self.send(protocol.RENEGOTIATE)
        logger.info("renegotiation requested room=%s delay=%.1fs", self._room_id, self.config.renegotiate_delay)
        self._renegotiate_task = asyncio.ensure_future(self._rejoin_later(self._room_id))
        self._renegotiate_task.add_done_callback(self._log_task_failure)

    async def _rejoin_later(self, room_id: str) -> None:
        try:
            await asyncio.sleep(self.config.renegotiate_delay)
            await self.join_room(room_id)
        finally:
            self.negotiating = False

    def _on_renegotiate_message(self, _data: Any) -> None:
        if self._room_id is None or self._state is ConnectionState.CLOSED:
            return
        if self._reoffer_task is not None and not self._reoffer_task.done():
            logger.debug("renegotiation received, re-offer already in flight room=%s", self._room_id)
            return
        logger.info("renegotiation received, re-offering room=%s", self._room_id)
        self._reoffer_task = asyncio.ensure_future(self.create_room(self._room_id))
        self._reoffer_task.add_done_callback(self._log_task_failure)

    def _resting_state(self) -> ConnectionState:
        return ConnectionState.CONNECTED if self._connected else ConnectionState.READY

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise ConnectionStateError(f"transport unavailable in state {self._state.value}")
        return self._transport

    def _require_rooms(self) -> RoomStore:
        if self._rooms is None:
            raise ConnectionStateError(f"room store unavailable in state {self._state.value}")
        return self._rooms

    def _cancel_task(self, task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _cancel_and_wait(self, task: Optional[asyncio.Task]) -> None:
        if task is None or task is asyncio.current_task():
            return
        self._cancel_task(task)
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            # Already reported by _log_task_failure or the caller.
            logger.debug("task ended with error during leave: %s", e)

    def _log_task_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background task failed session=%s", self.session_id, exc_info=exc)

    async def _transition(self, state: ConnectionState) -> None:
        if self._state is state:
            return
        logger.debug("connection state %s -> %s", self._state.value, state.value)
        self._state = state
        if self._callbacks.on_state:
            await self._callbacks.on_state(state)

    async def _log(self, message: str) -> None:
        if self._callbacks.on_log:
            await self._callbacks.on_log(message)

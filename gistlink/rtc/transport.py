"""Transport session contract and its aiortc implementation.

The controller only talks to a `Transport`: it creates/applies session
descriptions, applies remote candidates, opens data channels and adds tracks.
Local candidates, incoming channels/tracks and renegotiation requests come back
through `TransportCallbacks`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from aiortc import RTCPeerConnection, RTCSessionDescription
from aiortc.rtcconfiguration import RTCConfiguration
from aiortc.sdp import candidate_from_sdp

from ..net.protocol import IceCandidateDict, SessionDescriptionDict


logger = logging.getLogger(__name__)


CANDIDATE_PREFIX = "candidate:"


@dataclass
class TransportCallbacks:
    on_ice_candidate: Optional[Callable[[Optional[IceCandidateDict]], None]] = None  # None = end of candidates
    on_datachannel: Optional[Callable[[Any], None]] = None  # (channel)
    on_track: Optional[Callable[[Any], None]] = None  # (track)
    on_negotiation_needed: Optional[Callable[[], None]] = None
    on_connection_state: Optional[Callable[[str], None]] = None


class Transport(Protocol):
    @property
    def local_description(self) -> Optional[SessionDescriptionDict]: ...

    async def create_offer(self) -> SessionDescriptionDict: ...

    async def create_answer(self) -> SessionDescriptionDict: ...

    async def set_local_description(self, description: SessionDescriptionDict) -> None: ...

    async def set_remote_description(self, description: SessionDescriptionDict) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidateDict) -> None: ...

    def create_data_channel(self, label: str) -> Any: ...

    def add_track(self, track: Any) -> Any: ...

    def remove_track(self, sender: Any) -> None: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[TransportCallbacks], Transport]


def _description_to_json(description: RTCSessionDescription) -> SessionDescriptionDict:
    return {"type": description.type, "sdp": description.sdp}


def candidates_from_sdp(sdp: str) -> List[IceCandidateDict]:
    """Extract `a=candidate` lines of a session description, tagged with their media."""

    out: List[IceCandidateDict] = []
    mline_index = -1
    mid: Optional[str] = None
    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            mline_index += 1
            mid = None
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:"):]
        elif line.startswith("a=" + CANDIDATE_PREFIX) and mline_index >= 0:
            out.append(
                {
                    "candidate": line[2:],
                    "sdpMid": mid,
                    "sdpMLineIndex": mline_index,
                }
            )
    return out


def _candidate_from_json(obj: Dict[str, Any]):
    cand_sdp = obj.get("candidate")
    if not isinstance(cand_sdp, str) or not cand_sdp:
        raise ValueError("missing candidate")
    if cand_sdp.startswith(CANDIDATE_PREFIX):
        cand_sdp = cand_sdp[len(CANDIDATE_PREFIX):]
    try:
        cand = candidate_from_sdp(cand_sdp)
    except (AssertionError, IndexError, ValueError) as e:
        raise ValueError(f"malformed candidate {cand_sdp!r}") from e
    cand.sdpMid = obj.get("sdpMid")
    cand.sdpMLineIndex = obj.get("sdpMLineIndex")
    return cand


class WebRTCTransport:
    """aiortc peer connection behind the `Transport` contract.

    aiortc gathers every candidate while setting the local description and
    never trickles, so the candidates are replayed from the local SDP right
    after it is set, followed by the end marker.
    """

    def __init__(
        self,
        callbacks: Optional[TransportCallbacks] = None,
        rtc_config: Optional[RTCConfiguration] = None,
    ):
        self._callbacks = callbacks or TransportCallbacks()
        self._pc = RTCPeerConnection(configuration=rtc_config)
        self._closed = False

        @self._pc.on("datachannel")
        def on_datachannel(channel) -> None:
            logger.debug("transport remote datachannel label=%s", channel.label)
            if self._callbacks.on_datachannel:
                self._callbacks.on_datachannel(channel)

        @self._pc.on("track")
        def on_track(track) -> None:
            logger.debug("transport remote track kind=%s", track.kind)
            if self._callbacks.on_track:
                self._callbacks.on_track(track)

        @self._pc.on("connectionstatechange")
        def on_connectionstatechange() -> None:
            state = self._pc.connectionState
            logger.info("transport connectionState=%s", state)
            if self._callbacks.on_connection_state:
                self._callbacks.on_connection_state(state)

    @property
    def local_description(self) -> Optional[SessionDescriptionDict]:
        desc = self._pc.localDescription
        return _description_to_json(desc) if desc is not None else None

    async def create_offer(self) -> SessionDescriptionDict:
        return _description_to_json(await self._pc.createOffer())

    async def create_answer(self) -> SessionDescriptionDict:
        return _description_to_json(await self._pc.createAnswer())

    async def set_local_description(self, description: SessionDescriptionDict) -> None:
        await self._pc.setLocalDescription(RTCSessionDescription(sdp=description["sdp"], type=description["type"]))
        self._replay_local_candidates()

    async def set_remote_description(self, description: SessionDescriptionDict) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=description["sdp"], type=description["type"]))

    async def add_ice_candidate(self, candidate: IceCandidateDict) -> None:
        # Browsers publish an empty candidate as their own end-of-candidates.
        if not candidate or not candidate.get("candidate"):
            return
        cand = _candidate_from_json(dict(candidate))
        await self._pc.addIceCandidate(cand)

    def create_data_channel(self, label: str) -> Any:
        return self._pc.createDataChannel(label)

    def add_track(self, track: Any) -> Any:
        sender = self._pc.addTrack(track)
        self._maybe_negotiation_needed()
        return sender

    def remove_track(self, sender: Any) -> None:
        # aiortc has no removeTrack; detaching the track from its sender is the equivalent.
        sender.replaceTrack(None)
        self._maybe_negotiation_needed()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pc.close()

    def _replay_local_candidates(self) -> None:
        desc = self._pc.localDescription
        if not self._callbacks.on_ice_candidate or desc is None:
            return
        candidates = candidates_from_sdp(desc.sdp)
        logger.debug("transport local candidates=%s", len(candidates))
        for candidate in candidates:
            self._callbacks.on_ice_candidate(candidate)
        self._callbacks.on_ice_candidate(None)

    def _maybe_negotiation_needed(self) -> None:
        # Only an established session needs renegotiating; the first offer picks tracks up.
        if self._pc.remoteDescription is None or self._pc.signalingState != "stable":
            return
        if self._callbacks.on_negotiation_needed:
            self._callbacks.on_negotiation_needed()

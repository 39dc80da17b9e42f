"""Tests for the aiortc transport adapter."""

import pytest
from aiortc.rtcconfiguration import RTCConfiguration

from gistlink.rtc.transport import TransportCallbacks, WebRTCTransport, _candidate_from_json, candidates_from_sdp


SDP = """v=0
o=- 3890 3890 IN IP4 0.0.0.0
s=-
t=0 0
a=group:BUNDLE 0 1
m=audio 9 UDP/TLS/RTP/SAVPF 111
c=IN IP4 10.0.0.5
a=mid:0
a=candidate:1 1 udp 2130706431 10.0.0.5 50000 typ host
a=candidate:2 1 udp 1694498815 203.0.113.9 50000 typ srflx raddr 10.0.0.5 rport 50000
a=end-of-candidates
m=application 9 DTLS/SCTP 5000
c=IN IP4 10.0.0.5
a=mid:1
a=candidate:3 1 udp 2130706431 10.0.0.5 50001 typ host
"""


def test_candidates_from_sdp_tags_media() -> None:
    candidates = candidates_from_sdp(SDP)

    assert [c["sdpMid"] for c in candidates] == ["0", "0", "1"]
    assert [c["sdpMLineIndex"] for c in candidates] == [0, 0, 1]
    assert candidates[1]["candidate"].startswith("candidate:2 1 udp")


def test_candidate_from_json_accepts_browser_prefix() -> None:
    cand = _candidate_from_json(
        {"candidate": "candidate:2 1 udp 1694498815 203.0.113.9 50000 typ srflx raddr 10.0.0.5 rport 50000", "sdpMid": "0", "sdpMLineIndex": 0}
    )

    assert cand.ip == "203.0.113.9"
    assert cand.port == 50000
    assert cand.type == "srflx"
    assert cand.sdpMid == "0"


def test_candidate_from_json_rejects_empty() -> None:
    with pytest.raises(ValueError):
        _candidate_from_json({"candidate": "", "sdpMid": "0"})


async def test_offer_replays_local_candidates_then_end_marker() -> None:
    pushed = []
    transport = WebRTCTransport(
        TransportCallbacks(on_ice_candidate=pushed.append),
        rtc_config=RTCConfiguration(iceServers=[]),
    )
    try:
        transport.create_data_channel("gistlink")
        offer = await transport.create_offer()
        await transport.set_local_description(offer)

        assert offer["type"] == "offer"
        assert transport.local_description["type"] == "offer"
        assert pushed and pushed[-1] is None
        assert all(c["candidate"].startswith("candidate:") for c in pushed[:-1])
    finally:
        await transport.close()


async def test_add_empty_candidate_is_ignored() -> None:
    transport = WebRTCTransport(rtc_config=RTCConfiguration(iceServers=[]))
    try:
        await transport.add_ice_candidate({"candidate": "", "sdpMid": "0", "sdpMLineIndex": 0})
    finally:
        await transport.close()

"""Tests for the event bus."""

import asyncio

from gistlink.events import EventBus


async def test_listeners_run_in_registration_order() -> None:
    bus = EventBus()
    calls = []
    bus.on("hello", lambda data: calls.append(("first", data)))
    bus.on("hello", lambda data: calls.append(("second", data)))

    assert bus.emit("hello", 42) is True
    assert calls == [("first", 42), ("second", 42)]


async def test_emit_without_listeners_is_a_noop() -> None:
    assert EventBus().emit("nobody-listens", 1) is False


async def test_listener_added_during_emit_misses_that_emit() -> None:
    bus = EventBus()
    late = []

    def register_more(_data) -> None:
        bus.on("tick", late.append)

    bus.on("tick", register_more)
    bus.emit("tick", 1)
    assert late == []

    bus.emit("tick", 2)
    assert late == [2]


async def test_decorator_form_and_remove_listener() -> None:
    bus = EventBus()
    seen = []

    @bus.on("open")
    def on_open(data) -> None:
        seen.append(data)

    bus.emit("open", None)
    bus.remove_listener("open", on_open)
    bus.emit("open", None)

    assert seen == [None]


async def test_coroutine_listener_is_scheduled() -> None:
    bus = EventBus()
    done = asyncio.Event()
    received = []

    async def on_msg(data) -> None:
        received.append(data)
        done.set()

    bus.on("msg", on_msg)
    bus.emit("msg", "hi")
    await asyncio.wait_for(done.wait(), 1)

    assert received == ["hi"]


async def test_failing_listener_does_not_stop_the_others() -> None:
    bus = EventBus()
    seen = []

    def broken(_data) -> None:
        raise RuntimeError("boom")

    bus.on("x", broken)
    bus.on("x", seen.append)
    bus.emit("x", 1)

    assert seen == [1]

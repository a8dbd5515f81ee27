"""Tests for SubscriptionManager."""

import asyncio

import pytest

from storefront.state.subscription import SubscriptionManager

from conftest import settle


class Recorder:
    def __init__(self):
        self.snapshots = []
        self.errors = []

    def on_snapshot(self, docs):
        self.snapshots.append(docs)

    def on_error(self, exc):
        self.errors.append(exc)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def manager(recorder):
    m = SubscriptionManager(recorder.on_snapshot, recorder.on_error, name="test")
    yield m
    m.stop()


def queue_stream(queue, closed):
    async def stream():
        try:
            while True:
                yield await queue.get()
        finally:
            closed.append(True)

    return stream


class TestStart:
    async def test_delivers_emissions(self, manager, recorder):
        queue = asyncio.Queue()
        manager.start("u1", queue_stream(queue, []))
        queue.put_nowait(["a"])
        queue.put_nowait(["b"])
        await settle()

        assert recorder.snapshots == [["a"], ["b"]]
        assert manager.is_active_for("u1")

    async def test_same_identity_is_a_no_op(self, manager):
        calls = []

        def stream():
            calls.append(1)
            return queue_stream(asyncio.Queue(), [])()

        assert manager.start("u1", stream)
        assert not manager.start("u1", stream)
        assert len(calls) == 1

    async def test_new_identity_replaces_old_stream(self, manager, recorder):
        old_queue, old_closed = asyncio.Queue(), []
        manager.start("u1", queue_stream(old_queue, old_closed))
        await settle()
        first_generation = manager.generation

        manager.start("u2", queue_stream(asyncio.Queue(), []))
        old_queue.put_nowait(["stale"])
        await settle()

        assert old_closed == [True]
        assert recorder.snapshots == []
        assert manager.identity == "u2"
        assert manager.generation > first_generation


class TestStop:
    async def test_stop_closes_stream(self, manager):
        closed = []
        manager.start("u1", queue_stream(asyncio.Queue(), closed))
        await settle()

        manager.stop()
        await settle()

        assert closed == [True]
        assert not manager.is_active
        assert manager.identity is None

    async def test_emission_after_stop_is_dropped(self, manager, recorder):
        """A stream that emits twice without yielding control cannot leak the second list."""

        async def burst():
            yield ["first"]
            yield ["second"]

        def on_snapshot(docs):
            recorder.snapshots.append(docs)
            manager.stop()

        manager._on_snapshot = on_snapshot
        manager.start("u1", burst)
        await settle()

        assert recorder.snapshots == [["first"]]


class TestErrors:
    async def test_stream_error_is_reported(self, manager, recorder):
        async def broken():
            yield ["ok"]
            raise ConnectionError("gone")

        manager.start("u1", broken)
        await settle()

        assert recorder.snapshots == [["ok"]]
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], ConnectionError)
        assert not manager.is_active
        assert manager.identity is None

    async def test_error_after_stop_is_not_reported(self, manager, recorder):
        gate = asyncio.Event()

        async def late_failure():
            await gate.wait()
            raise ConnectionError("late")
            yield []

        manager.start("u1", late_failure)
        await settle()
        generation = manager.generation
        manager.stop()
        gate.set()
        await settle()

        assert recorder.errors == []
        assert manager.generation == generation + 1

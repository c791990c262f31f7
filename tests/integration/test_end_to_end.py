"""
End-to-end integration tests.

These tests run the complete pipeline from an upstream byte stream to
live subscribers, with the upstream served by an in-process transport.
"""

import asyncio

import httpx
import pytest

from metadata_proxy.app import live_events
from metadata_proxy.config import Config
from metadata_proxy.context import AppContext
from metadata_proxy.distributor import NOT_AVAILABLE
from metadata_proxy.stream_fetcher import SupervisorState
from tests.fixtures.sample_data import (
    IDENTIFICATION_PACKET_TYPE,
    TRACK_A,
    TRACK_B,
    audio_noise,
    build_comment_packet,
)


def radio_stream() -> bytes:
    """Header packet, audio, repeated comment updates and a track change."""
    return b"".join(
        [
            build_comment_packet([], packet_type=IDENTIFICATION_PACKET_TYPE),
            audio_noise(3000, seed=1),
            build_comment_packet(TRACK_A),
            audio_noise(5000, seed=2),
            build_comment_packet(TRACK_A),
            audio_noise(5000, seed=3),
            build_comment_packet(TRACK_B),
            audio_noise(3000, seed=4),
        ]
    )


def chunked(data: bytes, size: int):
    async def chunks():
        for i in range(0, len(data), size):
            yield data[i : i + size]
            await asyncio.sleep(0)

    return chunks()


@pytest.fixture
def config():
    return Config(
        stream_url="http://test.stream.local:8000/chiptune.ogg",
        retry_delay_seconds=0.01,
        min_emit_interval_seconds=0,
        keepalive_seconds=0.5,
        buffer_window_bytes=4096,
    )


async def collect(subscription, count: int, timeout: float = 2.0):
    return [await subscription.get(timeout=timeout) for _ in range(count)]


@pytest.mark.integration
class TestEndToEndPipeline:
    """Test the pipeline from upstream bytes to subscribers."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chunk_size", [1, 97, 4096])
    async def test_each_change_delivered_once(self, config, chunk_size):
        data = radio_stream()
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, content=chunked(data, chunk_size))
        )
        context = AppContext.from_config(
            config, client_factory=lambda: httpx.AsyncClient(transport=transport)
        )
        subscription = context.distributor.subscribe()

        task = asyncio.create_task(context.supervisor.run())
        items = await collect(subscription, 3)

        # A reconnect replays the same stream, which must not publish again
        while context.supervisor.attempts < 3:
            await asyncio.sleep(0.01)
        context.supervisor.stop()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert items[0] is NOT_AVAILABLE
        assert [item.title for item in items[1:]] == ["Blip Song", "Square Wave"]
        assert subscription.pending == 0
        assert context.supervisor.attempts >= 2
        assert context.supervisor.state is SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_late_subscriber_receives_snapshot(self, config):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, content=build_comment_packet(TRACK_A))
        )
        context = AppContext.from_config(
            config, client_factory=lambda: httpx.AsyncClient(transport=transport)
        )

        task = asyncio.create_task(context.supervisor.run())
        while context.distributor.read_current() is None:
            await asyncio.sleep(0.005)

        events = live_events(context.distributor, keepalive=0.05)
        first = await asyncio.wait_for(events.__anext__(), timeout=1)
        second = await asyncio.wait_for(events.__anext__(), timeout=1)
        await events.aclose()

        context.supervisor.stop()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert '"title": "Blip Song"' in first
        assert second.startswith(":")

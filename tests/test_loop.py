"""
Tests for the asyncio sensor loop.
"""

import asyncio

from proximity_engine.loop import SensorLoop


class TestSensorLoop:
    def test_ticks_and_publishes(self, harness):
        h = harness()
        h.feed.set(45)
        snapshots = []

        async def on_snapshot(snapshot):
            snapshots.append(snapshot)

        loop = SensorLoop(h.engine, on_snapshot=on_snapshot)

        async def scenario():
            loop.start()
            await asyncio.sleep(0.25)
            assert loop.running
            await loop.stop()

        asyncio.run(scenario())
        assert not loop.running
        assert loop.ticks >= 2
        assert len(snapshots) == loop.ticks
        assert snapshots[0].zone.label == "ambient"

    def test_cadence_capped_by_config(self, harness):
        loop = SensorLoop(harness().engine, max_hz=50)
        assert loop.interval == 0.1

    def test_callback_failure_keeps_running(self, harness):
        h = harness()
        calls = []

        def broken(snapshot):
            calls.append(snapshot)
            raise ValueError("overlay disconnected")

        loop = SensorLoop(h.engine, on_snapshot=broken)

        async def scenario():
            loop.start()
            await asyncio.sleep(0.25)
            await loop.stop()

        asyncio.run(scenario())
        assert len(calls) >= 2

    def test_stop_without_start(self, harness):
        loop = SensorLoop(harness().engine)
        asyncio.run(loop.stop())
        assert not loop.running

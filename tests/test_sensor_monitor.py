"""
Tests fuer SensorMonitor: Polling und unabhaengige Alert-Timer.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from homeagent.sensor_analyzer import SensorAnalyzer
from homeagent.sensor_monitor import SensorMonitor
from homeagent.task_registry import TaskRegistry


@pytest.fixture
def source():
    mock = AsyncMock()
    mock.poll = AsyncMock(return_value={"co2": 700, "presence": True})
    return mock


@pytest.fixture
def monitor(source, clock):
    registry = TaskRegistry()
    return SensorMonitor(source, SensorAnalyzer(task_registry=registry, clock=clock), registry)


class TestSensorMonitor:
    """Tests fuer die einzelnen Schritte und den Lifecycle."""

    def test_default_intervals(self, monitor):
        assert monitor.poll_interval == 5
        assert monitor.anomaly_interval == 10
        assert monitor.predictive_interval == 20

    @pytest.mark.asyncio
    async def test_poll_updates_analyzer(self, monitor):
        reading = await monitor.poll_once()
        assert monitor.analyzer.latest is reading
        assert reading.environmental.co2 == 700
        assert reading.occupancy.presence is True

    @pytest.mark.asyncio
    async def test_anomaly_check_emits(self, monitor, source):
        callback = AsyncMock()
        monitor.analyzer.set_alert_callback(callback)
        source.poll.return_value = {"power": 6000}
        await monitor.poll_once()

        emitted = await monitor.check_anomalies_once()
        await asyncio.sleep(0)
        assert emitted == 1
        assert callback.await_args.args[0].level == "anomaly"

    @pytest.mark.asyncio
    async def test_prediction_check_without_data(self, monitor):
        assert await monitor.check_predictions_once() == 0

    @pytest.mark.asyncio
    async def test_start_without_source_is_noop(self, clock):
        registry = TaskRegistry()
        monitor = SensorMonitor(None, SensorAnalyzer(clock=clock), registry)
        await monitor.start()
        assert monitor.running is False
        assert registry.active_tasks == []

    @pytest.mark.asyncio
    async def test_start_and_stop(self, monitor, source):
        await monitor.start()
        assert set(monitor._task_registry.active_tasks) == {
            "sensor_poll", "sensor_anomalies", "sensor_predictions",
        }
        await asyncio.sleep(0)
        await monitor.stop()
        await asyncio.sleep(0)
        assert monitor.running is False
        assert monitor._task_registry.active_tasks == []
        source.poll.assert_awaited()

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self, monitor, source):
        source.poll.side_effect = [ConnectionError("sensor bus down"), {"co2": 800}]
        monitor.poll_interval = 0
        await monitor.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await monitor.stop()
        assert source.poll.await_count >= 2
        assert monitor.analyzer.latest.environmental.co2 == 800

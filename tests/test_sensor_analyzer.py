"""
Tests fuer SensorAnalyzer: Scores, Sicherheit, Schwellwerte, Alerts.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from homeagent.exceptions import NoSensorData
from homeagent.models import SensorReading
from homeagent.sensor_analyzer import (
    SensorAnalyzer,
    air_quality_score,
    light_score,
    noise_score,
    predict_next_activity,
    thermal_comfort,
)
from homeagent.task_registry import TaskRegistry

from conftest import FakeClock


def reading(ts=None, **raw) -> SensorReading:
    return SensorReading.from_raw(raw, timestamp=ts or datetime(2024, 3, 12, 10, 0))


@pytest.fixture
def analyzer(clock):
    return SensorAnalyzer(clock=clock)


class TestScores:
    """Tests fuer die Stueckfunktionen."""

    def test_thermal_optimum(self):
        assert thermal_comfort(22, 45) == 1.0

    def test_thermal_penalty(self):
        # 27 C → 0.5, 60 % → 0.5
        assert thermal_comfort(27, 60) == pytest.approx(0.5)

    def test_thermal_never_negative(self):
        assert thermal_comfort(50, 100) == 0.0

    @pytest.mark.parametrize("co2,score", [
        (400, 1.0), (700, 0.8), (900, 0.6), (1200, 0.4), (1500, 0.2), (2500, 0.2),
    ])
    def test_air_quality_bands(self, co2, score):
        assert air_quality_score(co2) == score

    @pytest.mark.parametrize("lux,score", [(50, 0.3), (200, 0.7), (400, 1.0), (800, 0.8), (2000, 0.6)])
    def test_light_bands(self, lux, score):
        assert light_score(lux) == score

    @pytest.mark.parametrize("db,score", [(20, 1.0), (40, 0.8), (55, 0.6), (65, 0.4), (90, 0.2)])
    def test_noise_bands(self, db, score):
        assert noise_score(db) == score

    @pytest.mark.parametrize("activity,hour,expected", [
        ("working", 23, "sleeping"),
        ("idle", 7, "morning_routine"),
        ("cooking", 12, "resting"),
        ("working", 10, "working"),
        ("working", 18, "relaxing"),
        ("reading", 11, "reading"),
    ])
    def test_predict_next_activity(self, activity, hour, expected):
        assert predict_next_activity(activity, hour) == expected


class TestAnalyze:
    """Tests fuer analyze()."""

    def test_no_data_raises(self, analyzer):
        with pytest.raises(NoSensorData):
            analyzer.analyze()

    @pytest.mark.parametrize("raw", [
        {},
        {"co2": 5000, "smoke": True, "co": True},
        {"temperature": -10, "humidity": 100, "noise": 100},
        {"doors": {"a": True, "b": True}, "power": 50000, "count": 100},
    ])
    def test_analyze_after_update_never_raises(self, analyzer, raw):
        analyzer.update(reading(**raw))
        analysis = analyzer.analyze()
        assert 0.0 <= analysis.comfort.overall <= 1.0
        assert 0.0 <= analysis.safety.risk <= 1.0

    def test_co2_critical_scenario(self, analyzer):
        analyzer.update(reading(co2=2500, smoke=False))
        analysis = analyzer.analyze()
        co2_alerts = [a for a in analysis.safety.alerts if a.metric == "co2"]
        assert len(co2_alerts) == 1
        assert co2_alerts[0].is_critical
        assert analysis.comfort.air == 0.2

    def test_comfort_overall_is_mean(self, analyzer):
        analyzer.update(reading(temperature=22, humidity=45, co2=400, light=400, noise=20))
        comfort = analyzer.analyze().comfort
        assert comfort.overall == 1.0

    def test_latest_reading_replaced(self, analyzer):
        first = reading(co2=500)
        second = reading(co2=900)
        analyzer.update(first)
        analyzer.update(second)
        assert analyzer.latest is second


class TestSafety:
    """Tests fuer die additive Sicherheitsbewertung."""

    def test_smoke_and_co_saturate(self, analyzer):
        safety = analyzer.assess_safety(reading(smoke=True, co=True, doors={"front": True}))
        assert safety.risk == 1.0
        assert {"smoke", "co", "doors"} <= {a.metric for a in safety.alerts}

    def test_open_doors_add_up(self, analyzer):
        safety = analyzer.assess_safety(reading(doors={"front": True, "garage": True, "back": False}))
        assert safety.risk == pytest.approx(0.2)
        assert "Check safety systems" in safety.recommendations

    def test_water_leak_alert_without_risk(self, analyzer):
        safety = analyzer.assess_safety(reading(water=True))
        assert safety.risk == 0.0
        assert any(a.metric == "water" for a in safety.alerts)
        assert "Shut off the main water valve" in safety.recommendations

    def test_quiet_house_no_alerts(self, analyzer):
        safety = analyzer.assess_safety(reading())
        assert safety.risk == 0.0
        assert safety.alerts == ()


class TestThresholds:
    """Tests fuer check_thresholds()."""

    def test_warning_band(self, analyzer):
        alerts = analyzer.check_thresholds(reading(co2=1500))
        assert [(a.metric, a.level) for a in alerts] == [("co2", "warning")]

    def test_limit_itself_is_not_exceeded(self, analyzer):
        assert analyzer.check_thresholds(reading(co2=1000)) == []

    def test_multiple_metrics(self, analyzer):
        alerts = analyzer.check_thresholds(reading(tvoc=1200, pm25=50, noise=90))
        levels = {a.metric: a.level for a in alerts}
        assert levels == {"tvoc": "critical", "pm25": "warning", "noise": "critical"}

    @pytest.mark.parametrize("temperature,level", [(16, "warning"), (10, "critical"), (29, "warning"),
                                                   (35, "critical")])
    def test_temperature_range(self, analyzer, temperature, level):
        alerts = analyzer.check_thresholds(reading(temperature=temperature))
        assert [(a.metric, a.level) for a in alerts] == [("temperature", level)]

    def test_humidity_low(self, analyzer):
        alerts = analyzer.check_thresholds(reading(humidity=15))
        assert alerts[0].level == "critical"
        assert "low" in alerts[0].message


class TestAnomaliesAndPredictions:

    def test_anomalies(self, analyzer):
        analyzer.update(reading(power=6000, count=12, wifi_devices=25))
        metrics = {a.metric for a in analyzer.check_anomalies()}
        assert metrics == {"power", "occupancy", "wifi_devices"}

    def test_no_anomalies_without_data(self, analyzer):
        assert analyzer.check_anomalies() == []

    def test_predictions(self, analyzer):
        analyzer.update(reading(temperature=19, power=4500))
        metrics = {a.metric for a in analyzer.check_predictions()}
        assert metrics == {"temperature", "power"}

    def test_co2_rise_prediction(self, analyzer):
        analyzer.update(reading(co2=600))
        analyzer.update(reading(co2=700))
        analyzer.update(reading(co2=850))
        alerts = [a for a in analyzer.check_predictions() if a.metric == "co2"]
        assert len(alerts) == 1
        assert "+250" in alerts[0].message


class TestAlertEmission:
    """Tests fuer den Fire-and-Forget Alert-Versand."""

    @pytest.mark.asyncio
    async def test_critical_alert_dispatched(self, clock):
        registry = TaskRegistry()
        analyzer = SensorAnalyzer(task_registry=registry, clock=clock)
        callback = AsyncMock()
        analyzer.set_alert_callback(callback)

        analyzer.update(reading(co2=2500))
        await asyncio.sleep(0)

        callback.assert_awaited_once()
        alert = callback.await_args.args[0]
        assert alert.metric == "co2"
        assert alert.is_critical

    @pytest.mark.asyncio
    async def test_warning_not_dispatched_on_update(self, analyzer):
        callback = AsyncMock()
        analyzer.set_alert_callback(callback)
        analyzer.update(reading(co2=1500))
        await asyncio.sleep(0)
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cooldown_per_metric(self, analyzer, clock):
        callback = AsyncMock()
        analyzer.set_alert_callback(callback)

        analyzer.update(reading(co2=2500))
        analyzer.update(reading(co2=2600))
        await asyncio.sleep(0)
        assert callback.await_count == 1

        clock.advance(seconds=301)
        analyzer.update(reading(co2=2700))
        await asyncio.sleep(0)
        assert callback.await_count == 2

    @pytest.mark.asyncio
    async def test_logged_only_alert_does_not_start_cooldown(self, analyzer):
        analyzer.update(reading(co2=2500))
        callback = AsyncMock()
        analyzer.set_alert_callback(callback)
        analyzer.update(reading(co2=2600))
        await asyncio.sleep(0)
        callback.assert_awaited_once()

    def test_emit_without_loop_only_logs(self):
        analyzer = SensorAnalyzer(clock=FakeClock(datetime(2024, 3, 12, 10, 0)))
        analyzer.set_alert_callback(AsyncMock())
        alerts = analyzer.check_thresholds(reading(co2=2500))
        assert analyzer.emit(alerts[0]) is False

    @pytest.mark.asyncio
    async def test_callback_failure_does_not_touch_analysis(self, analyzer):
        analyzer.set_alert_callback(AsyncMock(side_effect=RuntimeError("ws down")))
        analyzer.update(reading(co2=2500))
        await asyncio.sleep(0)
        assert analyzer.analyze().comfort.air == 0.2

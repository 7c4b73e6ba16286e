"""
Sensor Monitor - unabhaengige Sensor-Timer neben dem Entscheidungszyklus.

Drei Loops mit eigenen Kadenzen:
  - Polling der Sensorquelle (alle 5s) → SensorAnalyzer.update()
  - Anomalie-Check (alle 10s)
  - Praediktiver Check (alle 20s)

Die Loops teilen sich nur das aktuelle Reading des Analyzers. Ein
langsamer Inference-Call im Zyklus haelt sie nicht auf.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .config import section
from .constants import SENSOR_ANOMALY_INTERVAL, SENSOR_POLL_INTERVAL, SENSOR_PREDICTIVE_INTERVAL
from .models import SensorReading
from .providers import SensorSource
from .sensor_analyzer import SensorAnalyzer
from .task_registry import TaskRegistry

logger = logging.getLogger(__name__)


class SensorMonitor:
    """Treibt Polling und Alert-Checks fuer einen SensorAnalyzer."""

    def __init__(self, source: Optional[SensorSource], analyzer: SensorAnalyzer,
                 task_registry: TaskRegistry):
        cfg = section("sensors")
        self.source = source
        self.analyzer = analyzer
        self._task_registry = task_registry
        self.poll_interval = float(cfg.get("poll_interval", SENSOR_POLL_INTERVAL))
        self.anomaly_interval = float(cfg.get("anomaly_interval", SENSOR_ANOMALY_INTERVAL))
        self.predictive_interval = float(cfg.get("predictive_interval", SENSOR_PREDICTIVE_INTERVAL))
        self._running = False
        self._task_names: list[str] = []

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self.source is None:
            logger.info("Keine Sensorquelle konfiguriert, Sensor-Timer bleiben aus")
            return
        self._running = True
        loops = [
            ("sensor_poll", self.poll_interval, self.poll_once),
            ("sensor_anomalies", self.anomaly_interval, self.check_anomalies_once),
            ("sensor_predictions", self.predictive_interval, self.check_predictions_once),
        ]
        for name, interval, step in loops:
            self._task_registry.create_task(self._loop(name, interval, step), name=name, replace=True)
            self._task_names.append(name)
        logger.info("Sensor-Timer gestartet (poll=%.0fs, anomaly=%.0fs, predictive=%.0fs)",
                    self.poll_interval, self.anomaly_interval, self.predictive_interval)

    async def stop(self) -> None:
        self._running = False
        for name in self._task_names:
            self._task_registry.cancel(name)
        self._task_names.clear()

    async def poll_once(self) -> SensorReading:
        raw = await self.source.poll()
        reading = SensorReading.from_raw(raw or {})
        self.analyzer.update(reading)
        return reading

    async def check_anomalies_once(self) -> int:
        alerts = self.analyzer.check_anomalies()
        return sum(1 for alert in alerts if self.analyzer.emit(alert))

    async def check_predictions_once(self) -> int:
        alerts = self.analyzer.check_predictions()
        return sum(1 for alert in alerts if self.analyzer.emit(alert))

    async def _loop(self, name: str, interval: float, step: Callable[[], Awaitable]) -> None:
        while self._running:
            try:
                await step()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("%s fehlgeschlagen: %s", name, e)
            await asyncio.sleep(interval)

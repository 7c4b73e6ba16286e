"""
Sensor Analyzer - Komfort, Sicherheit, Effizienz und Aktivitaet aus Sensordaten.

Haelt das jeweils letzte Reading (wird als Ganzes ersetzt, nie teilweise)
und berechnet daraus bei Bedarf eine zustandslose SensorAnalysis.

Schwellwert-Pruefung laeuft bei jedem neuen Reading. Kritische Werte
werden sofort und ohne Warten an den Alert-Callback gemeldet, unabhaengig
vom Analyse-Ergebnis und vom Entscheidungszyklus.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from .config import section
from .constants import (
    ANOMALY_OCCUPANCY_LIMIT,
    ANOMALY_POWER_LIMIT,
    ANOMALY_WIFI_DEVICE_LIMIT,
    PREDICTIVE_CO2_RISE,
    PREDICTIVE_POWER_LIMIT,
    PREDICTIVE_TEMP_MARGIN,
    SENSOR_ALERT_COOLDOWN,
    SENSOR_HISTORY_SIZE,
)
from .exceptions import NoSensorData
from .models import (
    ActivityAssessment,
    ComfortScores,
    EfficiencyAssessment,
    SafetyAssessment,
    SensorAlert,
    SensorAnalysis,
    SensorReading,
    clamp,
)
from .task_registry import TaskRegistry

logger = logging.getLogger(__name__)

AlertCallback = Callable[[SensorAlert], Awaitable[None]]

# Schwellwerte (Defaults, ueberschreibbar via settings.yaml sensors.thresholds)
DEFAULT_THRESHOLDS = {
    "co2": {"warning": 1000, "critical": 2000},
    "tvoc": {"warning": 500, "critical": 1000},
    "pm25": {"warning": 35, "critical": 150},
    "noise": {"warning": 60, "critical": 85},
    "temperature": {"min": 18, "max": 27, "critical_min": 12, "critical_max": 32},
    "humidity": {"min": 30, "max": 60, "critical_min": 20, "critical_max": 75},
}

# Metriken mit Obergrenze (warning/critical) vs. Komfortbereich (min/max)
_UPPER_BOUND_METRICS = ("co2", "tvoc", "pm25", "noise")
_RANGE_METRICS = ("temperature", "humidity")

_UNITS = {
    "co2": "ppm", "tvoc": "ppb", "pm25": "ug/m3", "noise": "dB",
    "temperature": "C", "humidity": "%",
}

SAFETY_RISK_SMOKE = 0.5
SAFETY_RISK_CO = 0.5
SAFETY_RISK_PER_OPEN_DOOR = 0.1


def _merge_thresholds(overrides: Optional[dict]) -> dict:
    merged = {metric: dict(limits) for metric, limits in DEFAULT_THRESHOLDS.items()}
    for metric, limits in (overrides or {}).items():
        if metric in merged and isinstance(limits, dict):
            merged[metric].update({k: float(v) for k, v in limits.items()})
    return merged


# ============================================================
# Einzel-Scores (deterministische Stueckfunktionen)
# ============================================================

def thermal_comfort(temperature: float, humidity: float) -> float:
    """Mittel zweier Dreiecksfunktionen um 22 C und 45 %."""
    temp_score = 1 - abs(temperature - 22) / 10
    humidity_score = 1 - abs(humidity - 45) / 30
    return clamp((temp_score + humidity_score) / 2)


def air_quality_score(co2: float) -> float:
    if co2 < 600:
        return 1.0
    if co2 < 800:
        return 0.8
    if co2 < 1000:
        return 0.6
    if co2 < 1500:
        return 0.4
    return 0.2


def light_score(lux: float) -> float:
    if lux < 100:
        return 0.3
    if lux < 300:
        return 0.7
    if lux < 500:
        return 1.0
    if lux < 1000:
        return 0.8
    return 0.6


def noise_score(db: float) -> float:
    if db < 30:
        return 1.0
    if db < 50:
        return 0.8
    if db < 60:
        return 0.6
    if db < 70:
        return 0.4
    return 0.2


def predict_next_activity(activity: str, hour: int) -> str:
    if hour >= 22 or hour < 6:
        return "sleeping"
    if 6 <= hour < 9:
        return "morning_routine"
    if activity in ("cooking", "eating"):
        return "resting"
    if activity == "working":
        return "working" if hour < 17 else "relaxing"
    return "relaxing" if hour >= 17 else activity


class SensorAnalyzer:
    """Analysiert das jeweils aktuelle Sensor-Reading."""

    def __init__(self, task_registry: Optional[TaskRegistry] = None,
                 clock: Callable[[], datetime] = datetime.now):
        cfg = section("sensors")
        self.thresholds = _merge_thresholds(cfg.get("thresholds"))
        self.alert_cooldown = timedelta(
            seconds=float(cfg.get("alert_cooldown_seconds", SENSOR_ALERT_COOLDOWN))
        )
        self._task_registry = task_registry
        self._clock = clock
        self._reading: Optional[SensorReading] = None
        self._history: deque[SensorReading] = deque(maxlen=SENSOR_HISTORY_SIZE)
        self._alert_callback: Optional[AlertCallback] = None
        # (metric, level) -> letzte Meldung
        self._alert_cooldowns: dict[tuple[str, str], datetime] = {}

    def set_alert_callback(self, callback: Optional[AlertCallback]) -> None:
        self._alert_callback = callback

    @property
    def latest(self) -> Optional[SensorReading]:
        return self._reading

    @property
    def has_data(self) -> bool:
        return self._reading is not None

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def update(self, reading: SensorReading) -> None:
        """Ersetzt das aktuelle Reading und meldet kritische Schwellwerte."""
        self._reading = reading
        self._history.append(reading)
        for alert in self.check_thresholds(reading):
            if alert.is_critical:
                self.emit(alert)

    # ------------------------------------------------------------------
    # Analyse
    # ------------------------------------------------------------------

    def analyze(self) -> SensorAnalysis:
        reading = self._reading
        if reading is None:
            raise NoSensorData("Noch kein Sensor-Reading empfangen")
        return SensorAnalysis(
            comfort=self.assess_comfort(reading),
            safety=self.assess_safety(reading),
            efficiency=self.assess_efficiency(reading),
            activity=self.assess_activity(reading),
            timestamp=reading.timestamp,
        )

    def assess_comfort(self, reading: SensorReading) -> ComfortScores:
        env = reading.environmental
        thermal = thermal_comfort(env.temperature, env.humidity)
        air = air_quality_score(env.co2)
        light = light_score(env.light)
        noise = noise_score(env.noise)
        return ComfortScores(
            thermal=thermal,
            air=air,
            light=light,
            noise=noise,
            overall=clamp((thermal + air + light + noise) / 4),
        )

    def assess_safety(self, reading: SensorReading) -> SafetyAssessment:
        sec = reading.security
        now = reading.timestamp
        alerts: list[SensorAlert] = []
        recommendations: list[str] = []

        # Additiv: mehrere Gefahren saettigen schnell
        risk = 0.0
        if sec.smoke:
            risk += SAFETY_RISK_SMOKE
            alerts.append(SensorAlert("smoke", "critical", 1.0, "Smoke detected", now))
        if sec.co:
            risk += SAFETY_RISK_CO
            alerts.append(SensorAlert("co", "critical", 1.0, "Carbon monoxide detected", now))
        open_doors = sec.open_doors
        if open_doors:
            risk += SAFETY_RISK_PER_OPEN_DOOR * len(open_doors)
            alerts.append(SensorAlert(
                "doors", "warning", float(len(open_doors)),
                f"Doors open: {', '.join(sorted(open_doors))}", now,
            ))
        if sec.water:
            alerts.append(SensorAlert("water", "warning", 1.0, "Water leak detected", now))

        threshold_alerts = self.check_thresholds(reading)
        alerts.extend(threshold_alerts)

        risk = clamp(risk)
        if risk > 0:
            recommendations.append("Check safety systems")
        if sec.smoke or sec.co:
            recommendations.append("Leave the building and ventilate immediately")
        if sec.water:
            recommendations.append("Shut off the main water valve")
        if any(a.is_critical and a.metric in ("co2", "tvoc", "pm25") for a in threshold_alerts):
            recommendations.append("Ventilate affected rooms")

        return SafetyAssessment(risk=risk, alerts=tuple(alerts), recommendations=tuple(recommendations))

    def assess_efficiency(self, reading: SensorReading) -> EfficiencyAssessment:
        energy = reading.energy
        optimizations: list[str] = []

        energy_score = 1.0
        if energy.power > ANOMALY_POWER_LIMIT:
            energy_score *= 0.8
            optimizations.append("Reduce power consumption")
        if energy.power_factor < 0.9:
            energy_score *= 0.9
            optimizations.append("Improve power factor")

        resource_score = 1.0
        temp = self.thresholds["temperature"]
        outside_comfort = not (temp["min"] <= reading.environmental.temperature <= temp["max"])
        if reading.security.open_windows and outside_comfort:
            resource_score *= 0.8
            optimizations.append("Close windows while heating or cooling")

        return EfficiencyAssessment(
            energy=clamp(energy_score),
            resource=clamp(resource_score),
            optimizations=tuple(optimizations),
        )

    def assess_activity(self, reading: SensorReading) -> ActivityAssessment:
        occ = reading.occupancy
        patterns = [f"Current activity: {occ.activity}", f"Occupancy count: {occ.count}"]
        if occ.locations:
            patterns.append(f"Active locations: {', '.join(occ.locations)}")
        anomalies = []
        if occ.count > ANOMALY_OCCUPANCY_LIMIT:
            anomalies.append("Unusual number of occupants")
        predictions = [f"Next activity: {predict_next_activity(occ.activity, reading.timestamp.hour)}"]
        return ActivityAssessment(
            patterns=tuple(patterns),
            anomalies=tuple(anomalies),
            predictions=tuple(predictions),
        )

    # ------------------------------------------------------------------
    # Alert-Pruefungen
    # ------------------------------------------------------------------

    def check_thresholds(self, reading: SensorReading) -> list[SensorAlert]:
        """Ordnet jede Metrik in warning/critical ein (strikt ueber der Grenze)."""
        env = reading.environmental
        alerts = []
        for metric in _UPPER_BOUND_METRICS:
            value = getattr(env, metric)
            limits = self.thresholds[metric]
            if value > limits["critical"]:
                level = "critical"
            elif value > limits["warning"]:
                level = "warning"
            else:
                continue
            alerts.append(SensorAlert(
                metric, level, value,
                f"{metric.upper()} {level}: {value:.0f} {_UNITS[metric]} (limit {limits[level]:.0f})",
                reading.timestamp,
            ))
        for metric in _RANGE_METRICS:
            value = getattr(env, metric)
            limits = self.thresholds[metric]
            if value < limits["critical_min"] or value > limits["critical_max"]:
                level = "critical"
            elif value < limits["min"] or value > limits["max"]:
                level = "warning"
            else:
                continue
            direction = "low" if value < limits["min"] else "high"
            alerts.append(SensorAlert(
                metric, level, value,
                f"{metric.capitalize()} {direction} ({level}): {value:.1f} {_UNITS[metric]}",
                reading.timestamp,
            ))
        return alerts

    def check_anomalies(self) -> list[SensorAlert]:
        reading = self._reading
        if reading is None:
            return []
        now = reading.timestamp
        alerts = []
        if reading.energy.power > ANOMALY_POWER_LIMIT:
            alerts.append(SensorAlert("power", "anomaly", reading.energy.power,
                                      "Unusually high power consumption", now))
        if reading.occupancy.count > ANOMALY_OCCUPANCY_LIMIT:
            alerts.append(SensorAlert("occupancy", "anomaly", float(reading.occupancy.count),
                                      "Unusual number of occupants", now))
        if reading.network.wifi_devices > ANOMALY_WIFI_DEVICE_LIMIT:
            alerts.append(SensorAlert("wifi_devices", "anomaly", float(reading.network.wifi_devices),
                                      "Unusual number of network devices", now))
        return alerts

    def check_predictions(self) -> list[SensorAlert]:
        reading = self._reading
        if reading is None:
            return []
        now = reading.timestamp
        alerts = []
        temp_min = self.thresholds["temperature"]["min"]
        if reading.environmental.temperature < temp_min + PREDICTIVE_TEMP_MARGIN:
            alerts.append(SensorAlert("temperature", "prediction", reading.environmental.temperature,
                                      "Temperature expected to drop below comfort range", now))
        if reading.energy.power > PREDICTIVE_POWER_LIMIT:
            alerts.append(SensorAlert("power", "prediction", reading.energy.power,
                                      "Power consumption approaching limit", now))
        if len(self._history) >= 2:
            rise = reading.environmental.co2 - self._history[0].environmental.co2
            if rise >= PREDICTIVE_CO2_RISE:
                alerts.append(SensorAlert("co2", "prediction", reading.environmental.co2,
                                          f"CO2 rising (+{rise:.0f} ppm), ventilation advised", now))
        return alerts

    # ------------------------------------------------------------------
    # Alert-Versand
    # ------------------------------------------------------------------

    def emit(self, alert: SensorAlert) -> bool:
        """Meldet einen Alert fire-and-forget an den Callback (mit Cooldown).

        Returns:
            True wenn der Alert verschickt wurde
        """
        key = (alert.metric, alert.level)
        now = self._clock()
        last = self._alert_cooldowns.get(key)
        if last and now - last < self.alert_cooldown:
            return False

        log = logger.warning if alert.is_critical else logger.info
        log("Sensor-Alert [%s] %s", alert.level, alert.message)

        if self._alert_callback is None:
            return False
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Kein Event-Loop, Alert nur geloggt")
            return False

        coro = self._alert_callback(alert)
        name = f"sensor_alert_{alert.metric}_{alert.level}_{now.timestamp():.0f}"
        if self._task_registry is not None:
            try:
                self._task_registry.create_task(coro, name=name)
            except RuntimeError as e:
                logger.debug("Alert nicht verschickt: %s", e)
                return False
        else:
            asyncio.create_task(coro, name=name)
        # Cooldown erst, wenn der Alert wirklich unterwegs ist
        self._alert_cooldowns[key] = now
        return True

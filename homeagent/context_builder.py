"""
Context Builder - baut den unveraenderlichen Kontext-Snapshot pro Zyklus.

Quellen: Uhr, aktuelle Sensor-Analyse, Wetter-Provider, gespeicherte
Nutzer-Praeferenzen und die Pattern-Historie. Fehlende oder fehlerhafte
Quellen werden durch neutrale Werte ersetzt, der Zyklus laeuft weiter.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from .constants import KV_USER_PREFERENCES
from .exceptions import NoSensorData
from .kv_store import KeyValueStore
from .models import Context, UserPreferences, WeatherData
from .pattern_memory import PatternMemory
from .providers import WeatherProvider
from .sensor_analyzer import SensorAnalyzer

logger = logging.getLogger(__name__)


class ContextBuilder:
    """Sammelt alle Daten fuer einen Entscheidungszyklus."""

    def __init__(
        self,
        analyzer: SensorAnalyzer,
        memory: PatternMemory,
        weather: Optional[WeatherProvider] = None,
        kv_store: Optional[KeyValueStore] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.analyzer = analyzer
        self.memory = memory
        self.weather = weather
        self.kv = kv_store
        self._clock = clock

    async def build(self) -> Context:
        now = self._clock()

        # Wetter und Praeferenzen parallel holen
        weather, preferences = await asyncio.gather(
            self._get_weather(), self._get_preferences(), return_exceptions=True,
        )
        if isinstance(weather, Exception):
            logger.warning("Wetter nicht verfuegbar: %s", weather)
            weather = WeatherData.unknown()
        if isinstance(preferences, Exception):
            logger.warning("Praeferenzen nicht lesbar: %s", preferences)
            preferences = UserPreferences()

        try:
            sensors = self.analyzer.analyze()
        except NoSensorData:
            sensors = None

        reading = self.analyzer.latest
        occupancy = bool(reading and (reading.occupancy.presence or reading.occupancy.motion
                                      or reading.occupancy.count > 0))

        return Context(
            timestamp=now,
            occupancy=occupancy,
            weather=weather,
            preferences=preferences,
            history=self.memory.historical_summary(),
            sensors=sensors,
        )

    async def _get_weather(self) -> WeatherData:
        if self.weather is None:
            return WeatherData.unknown()
        return await self.weather.current()

    async def _get_preferences(self) -> UserPreferences:
        if self.kv is None:
            return UserPreferences()
        raw = await self.kv.get(KV_USER_PREFERENCES)
        if not isinstance(raw, dict):
            return UserPreferences()
        return UserPreferences.from_dict(raw)

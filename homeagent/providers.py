"""
Capability-Provider - schmale Schnittstellen zu externen Integrationen.

Lieferdienst, Smart-Home, Gesundheitsdaten, Wetter und Sensorquelle sind
externe Kollaborateure. Hier liegen nur ihre Vertraege, der Puffer fuer
gepushte Gesundheitsdaten und die austauschbare Auswahl-Strategie fuer
den besten Lieferdienst.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional, Protocol

from .exceptions import ProviderUnavailable
from .models import (
    DeliveryItem,
    DeliveryProviderInfo,
    HealthSample,
    Mood,
    Order,
    Urgency,
    WeatherData,
)

logger = logging.getLogger(__name__)


class DeliveryService(Protocol):
    async def providers(self) -> list[DeliveryProviderInfo]: ...

    async def place_order(self, items: list[DeliveryItem], provider_id: str) -> Order:
        """Wirft ProviderUnknown oder RequestFailed."""
        ...

    async def track_order(self, order_id: str) -> Order: ...


class SmartHomeProvider(Protocol):
    async def optimize_energy(self) -> None: ...

    async def set_mood(self, mood: Mood) -> None: ...

    async def prepare_for_sleep(self) -> None: ...


class HealthProvider(Protocol):
    async def pending_samples(self) -> list[HealthSample]:
        """Alle seit dem letzten Aufruf gepushten Samples."""
        ...


class WeatherProvider(Protocol):
    async def current(self) -> WeatherData: ...


class SensorSource(Protocol):
    async def poll(self) -> dict:
        """Rohes Reading, Kategorien oder flache Felder."""
        ...


class HealthSampleBuffer:
    """HealthProvider fuer Push-Quellen: Adapter pushen, der Scheduler holt ab."""

    def __init__(self, max_samples: int = 1000):
        self._samples: deque[HealthSample] = deque(maxlen=max_samples)

    def push(self, sample: HealthSample) -> None:
        self._samples.append(sample)

    async def pending_samples(self) -> list[HealthSample]:
        samples = list(self._samples)
        self._samples.clear()
        return samples

    def __len__(self) -> int:
        return len(self._samples)


# ============================================================
# Auswahl des Lieferdienstes
# ============================================================

@dataclass(frozen=True)
class ProviderRequest:
    urgency: Urgency
    order_value: float


class ProviderStrategy(Protocol):
    def select(self, providers: list[DeliveryProviderInfo],
               request: ProviderRequest) -> DeliveryProviderInfo: ...


# Wie stark die Lieferzeit je Dringlichkeit zaehlt
URGENCY_TIME_FACTOR = {
    Urgency.LOW: 0.5,
    Urgency.MEDIUM: 1.0,
    Urgency.HIGH: 3.0,
}


class WeightedProviderStrategy:
    """Waehlt den Anbieter mit den geringsten gewichteten Kosten.

    Kosten = Lieferzeit * time_weight * Dringlichkeitsfaktor + Gebuehr * fee_weight.
    Nicht verfuegbare Anbieter und solche, deren Mindestbestellwert nicht
    erreicht wird, scheiden aus. Bei Gleichstand gewinnt die kuerzere
    Lieferzeit, dann die ID.
    """

    def __init__(self, time_weight: float = 1.0, fee_weight: float = 5.0):
        self.time_weight = time_weight
        self.fee_weight = fee_weight

    def cost(self, provider: DeliveryProviderInfo, request: ProviderRequest) -> float:
        time_cost = provider.estimated_time * self.time_weight * URGENCY_TIME_FACTOR[request.urgency]
        return time_cost + provider.delivery_fee * self.fee_weight

    def select(self, providers: list[DeliveryProviderInfo],
               request: ProviderRequest) -> DeliveryProviderInfo:
        candidates = [
            p for p in providers
            if p.is_available and request.order_value >= p.minimum_order
        ]
        if not candidates:
            raise ProviderUnavailable(
                f"Kein Lieferdienst verfuegbar (Bestellwert {request.order_value:.2f}, "
                f"{len(providers)} Anbieter)"
            )
        best = min(candidates, key=lambda p: (self.cost(p, request), p.estimated_time, p.id))
        logger.debug("Lieferdienst gewaehlt: %s (Kosten %.1f, Dringlichkeit %s)",
                     best.name, self.cost(best, request), request.urgency.value)
        return best


def find_provider(providers: list[DeliveryProviderInfo],
                  provider_id: str) -> Optional[DeliveryProviderInfo]:
    for provider in providers:
        if provider.id == provider_id:
            return provider
    return None

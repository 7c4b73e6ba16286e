"""
Circuit Breaker - Schutz vor haengenden externen Diensten.

Ollama, ChromaDB und Redis werden je ueber einen eigenen Breaker
angesprochen:

  CLOSED    → Normalbetrieb, Fehler werden gezaehlt
  OPEN      → Dienst gilt als ausgefallen, Calls werden sofort abgelehnt
  HALF_OPEN → nach recovery_timeout ein Test-Call, Erfolg → CLOSED

Ein offener Breaker verzoegert nur den betroffenen Zyklus, nie die
Sensor-Timer.
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

from .config import section
from .constants import BREAKER_DEFAULTS
from .exceptions import TransientProviderError

logger = logging.getLogger(__name__)

# Marker: kein Fallback → Fehler werden weitergereicht
_RAISE = object()


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(TransientProviderError):
    """Breaker ist offen, der Dienst wird gerade nicht angefragt."""


class CircuitBreaker:
    """Circuit Breaker fuer einen einzelnen externen Dienst."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: float = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            logger.info("Circuit %s: OPEN -> HALF_OPEN", self.name)
        return self._state

    @property
    def is_available(self) -> bool:
        """True wenn ein Call durchgelassen wird (im HALF_OPEN genau einer)."""
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info("Circuit %s: HALF_OPEN -> CLOSED", self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN:
            self._trip("Test-Call fehlgeschlagen")
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._trip(f"{self._failure_count} Fehler")

    def _trip(self, reason: str) -> None:
        logger.warning("Circuit %s: -> OPEN (%s)", self.name, reason)
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._trial_in_flight = False

    def status(self) -> dict:
        """Status fuer /healthz."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
        }


class BreakerSet:
    """Ein Breaker pro externem Dienst, Grenzwerte aus settings.yaml (resilience)."""

    def __init__(self, limits: Optional[dict] = None):
        self._limits = limits or {}
        self._by_service: dict[str, CircuitBreaker] = {}

    def for_service(self, service: str) -> CircuitBreaker:
        """Liefert den Breaker des Dienstes, legt ihn beim ersten Zugriff an."""
        breaker = self._by_service.get(service)
        if breaker is None:
            defaults = BREAKER_DEFAULTS.get(service, (5, 30.0))
            overrides = self._limits.get(service) or {}
            breaker = CircuitBreaker(
                service,
                failure_threshold=int(overrides.get("failure_threshold", defaults[0])),
                recovery_timeout=float(overrides.get("recovery_seconds", defaults[1])),
            )
            self._by_service[service] = breaker
        return breaker

    def get(self, service: str) -> Optional[CircuitBreaker]:
        return self._by_service.get(service)

    def open_services(self) -> list[str]:
        return sorted(name for name, cb in self._by_service.items() if cb.state != CircuitState.CLOSED)

    def all_status(self) -> list[dict]:
        return [cb.status() for _, cb in sorted(self._by_service.items())]


registry = BreakerSet(section("resilience"))

ollama_breaker = registry.for_service("ollama")
chromadb_breaker = registry.for_service("chromadb")
redis_breaker = registry.for_service("redis")


async def call_with_breaker(
    breaker: CircuitBreaker,
    coro_factory: Callable,
    *args: Any,
    fallback: Any = _RAISE,
    **kwargs: Any,
) -> Any:
    """Fuehrt einen async Call mit Breaker-Schutz aus.

    Ohne fallback werden Fehler nach dem Zaehlen weitergereicht und ein
    offener Breaker wirft CircuitOpenError. Mit fallback wird dieser
    stattdessen zurueckgegeben.
    """
    if not breaker.is_available:
        if fallback is _RAISE:
            raise CircuitOpenError(f"{breaker.name} nicht verfuegbar (Circuit offen)")
        logger.debug("Circuit %s ist offen, nutze Fallback", breaker.name)
        return fallback

    try:
        result = await coro_factory(*args, **kwargs)
    except Exception as e:
        breaker.record_failure()
        if fallback is _RAISE:
            raise
        logger.warning("Circuit %s: Call fehlgeschlagen: %s", breaker.name, e)
        return fallback
    breaker.record_success()
    return result

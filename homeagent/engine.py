"""
HomeAgent - verdrahtet alle Komponenten zu einer Engine-Instanz.

Sensoren → SensorAnalyzer ─┐
PatternMemory ─────────────┼→ ContextBuilder → DecisionEngine → ActionExecutor
Wetter / Praeferenzen ─────┘                                          ↓
                         AdaptiveScheduler ←── Outcomes ── PatternMemory

Die Praesentationsschicht sieht nur drei Operationen: get_status(),
trigger_action() und subscribe().
"""

import inspect
import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional, Union

from .action_executor import ActionExecutor, ExecutionResult
from .constants import NO_ACTION
from .context_builder import ContextBuilder
from .decision_engine import DecisionEngine
from .exceptions import MalformedResponseError
from .inference import InferenceService
from .kv_store import KeyValueStore
from .models import AgentAction, Decision, SensorAlert, SuggestTask
from .pattern_memory import PatternMemory
from .providers import (
    DeliveryService,
    HealthProvider,
    ProviderStrategy,
    SensorSource,
    SmartHomeProvider,
    WeatherProvider,
)
from .scheduler import AdaptiveScheduler, TaskOutcome, is_night
from .sensor_analyzer import SensorAnalyzer
from .sensor_monitor import SensorMonitor
from .task_registry import TaskRegistry
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)

# Listener bekommen (event, data), duerfen sync oder async sein
UpdateListener = Callable[[str, Any], Any]


class HomeAgent:
    """Eine autonome Engine-Instanz mit eigenem Gedaechtnis und eigenen Tasks."""

    def __init__(
        self,
        inference: InferenceService,
        kv_store: Optional[KeyValueStore] = None,
        vector_index: Optional[VectorIndex] = None,
        delivery: Optional[DeliveryService] = None,
        smart_home: Optional[SmartHomeProvider] = None,
        health: Optional[HealthProvider] = None,
        weather: Optional[WeatherProvider] = None,
        sensor_source: Optional[SensorSource] = None,
        strategy: Optional[ProviderStrategy] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.health = health
        self.smart_home = smart_home
        self._clock = clock
        self._listeners: list[UpdateListener] = []
        self._sleep_prepared_on: Optional[date] = None
        self.last_action: Optional[str] = None
        self.last_decision: Optional[Decision] = None
        self.last_result: Optional[ExecutionResult] = None

        self.task_registry = TaskRegistry()
        self.memory = PatternMemory(kv_store, vector_index, inference, clock)
        self.analyzer = SensorAnalyzer(self.task_registry, clock)
        self.analyzer.set_alert_callback(self._on_alert)
        self.sensor_monitor = SensorMonitor(sensor_source, self.analyzer, self.task_registry)
        self.context_builder = ContextBuilder(self.analyzer, self.memory, weather, kv_store, clock)
        self.decision_engine = DecisionEngine(self.context_builder, self.memory, inference, clock)
        self.executor = ActionExecutor(
            self.memory, delivery=delivery, smart_home=smart_home,
            strategy=strategy, notifier=self._on_task_suggestion, clock=clock,
        )
        self.scheduler = AdaptiveScheduler(
            tasks={
                "health": self.sync_health,
                "security": self.sync_smart_home,
                "productivity": self.sync_orders,
                "decision": self.decision_cycle,
            },
            always_run={"decision"},
            on_cycle_complete=self._learn,
            task_registry=self.task_registry,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, start_scheduler: bool = True) -> None:
        await self.memory.load()
        await self.sensor_monitor.start()
        if start_scheduler:
            await self.scheduler.start()
        logger.info("HomeAgent initialisiert")

    async def close(self) -> None:
        """Stoppt Timer und Scheduler, ein laufender Zyklus wird noch beendet."""
        await self.sensor_monitor.stop()
        await self.scheduler.stop()
        await self.task_registry.shutdown()
        await self.memory.close()
        logger.info("HomeAgent beendet")

    # ------------------------------------------------------------------
    # Praesentations-API
    # ------------------------------------------------------------------

    def get_status(self) -> dict:
        return {
            "is_processing": self.decision_engine.is_thinking,
            "last_action": self.last_action,
            "state": self.decision_engine.state.value,
            "interval": self.scheduler.current_interval(),
            "priority_tasks": sorted(self.scheduler.priority_tasks),
            "cycles": self.scheduler.cycles,
            "last_decision": self.last_decision.to_dict() if self.last_decision else None,
        }

    async def trigger_action(self, action: Union[AgentAction, dict, str]) -> ExecutionResult:
        """Fuehrt eine Aktion sofort aus, am Scheduler vorbei.

        Raises:
            UnknownActionType, ProviderUnavailable, ProviderError
        """
        if isinstance(action, str):
            action = AgentAction.parse(action)
        elif isinstance(action, dict):
            action = AgentAction.from_dict(action)
        result = await self.executor.execute(action)
        self.last_action = action.type.value
        self.last_result = result
        await self._publish("action_executed", result.to_dict())
        return result

    def subscribe(self, listener: UpdateListener) -> Callable[[], None]:
        """Registriert einen Listener. Gibt eine Abmelde-Funktion zurueck."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _publish(self, event: str, data: Any = None) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event, data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("Listener-Fehler bei '%s': %s", event, e)

    # ------------------------------------------------------------------
    # Sub-Tasks eines Zyklus
    # ------------------------------------------------------------------

    async def decision_cycle(self) -> Optional[Decision]:
        """Denken, dann handeln. Unbrauchbare Antworten → Fallback + Fehler."""
        try:
            decision = await self.decision_engine.think()
        except MalformedResponseError as e:
            fallback = self.decision_engine.fallback_decision(
                [f"Inference response unusable: {e}"], created_at=self._clock(),
            )
            self.last_decision = fallback
            await self._publish("decision", fallback.to_dict())
            raise

        if decision.action == NO_ACTION:
            return decision
        self.last_decision = decision
        await self._publish("decision", decision.to_dict())

        result = await self.executor.execute_decision(decision)
        self.last_action = decision.action
        self.last_result = result
        await self._publish("action_executed", result.to_dict())
        return decision

    async def sync_health(self) -> int:
        """Gepushte Health-Samples als Beobachtungen ins Gedaechtnis."""
        if self.health is None:
            return 0
        samples = await self.health.pending_samples()
        for sample in samples:
            await self.memory.record_observation(
                sample.kind, {"value": sample.value, "unit": sample.unit}, sample.timestamp,
            )
        if samples:
            logger.info("%d Health-Samples uebernommen", len(samples))
        return len(samples)

    async def sync_smart_home(self) -> None:
        """Energie optimieren, nachts einmal das Haus schlafbereit machen."""
        if self.smart_home is None:
            return
        await self.smart_home.optimize_energy()

        now = self._clock()
        if not is_night(now.hour):
            return
        # Nacht zaehlt zum Datum ihres Beginns
        night_of = (now - timedelta(days=1)).date() if now.hour < 12 else now.date()
        if self._sleep_prepared_on == night_of:
            return
        await self.smart_home.prepare_for_sleep()
        self._sleep_prepared_on = night_of
        await self._publish("sleep_prepared", {"at": now})

    async def sync_orders(self) -> int:
        orders = await self.executor.refresh_orders()
        for order in orders:
            await self._publish("order_status", order.to_dict())
        return len(orders)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    async def _learn(self, outcomes: list[TaskOutcome]) -> None:
        """Lern-Schritt nach dem Fan-in: Archivierung + Zyklus-Status."""
        await self.memory.sweep()
        await self._publish("cycle_complete", {
            "outcomes": outcomes,
            "interval": self.scheduler.current_interval(),
            "priority_tasks": sorted(self.scheduler.priority_tasks),
        })

    async def _on_alert(self, alert: SensorAlert) -> None:
        event = "critical_alert" if alert.is_critical else "sensor_alert"
        await self._publish(event, alert.to_dict())

    async def _on_task_suggestion(self, task: SuggestTask) -> None:
        await self._publish("task_suggestion", {"title": task.title, "description": task.description})

"""
Adaptive Scheduler - treibt den Agent-Zyklus und stellt sich selbst nach.

Pro Zyklus (tick):
  1. Auswahl: Prioritaets-Tasks + immer laufende Tasks ("decision"),
     die uebrigen nur jeden N-ten Zyklus
  2. Fan-out aller ausgewaehlten Sub-Tasks, Fan-in mit return_exceptions
  3. Lern-Hook (on_cycle_complete)
  4. Retune - die einzige Stelle, die AdaptiveConfig veraendert:
       Fehlerquote > 0.2 → Intervall * 0.8 (min. 5 Min)
       Fehlerquote < 0.1 → Intervall * 1.2 (max. 60 Min)
       Nachts (22-6 Uhr) "security" priorisiert, "productivity" raus

Zyklen laufen nie parallel (asyncio.Lock). stop() laesst einen laufenden
Zyklus zu Ende laufen.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from .config import section
from .constants import (
    INITIAL_PRIORITY_TASKS,
    SCHEDULER_GROW_FACTOR,
    SCHEDULER_HIGH_FAILURE_RATE,
    SCHEDULER_INITIAL_INTERVAL,
    SCHEDULER_LOW_FAILURE_RATE,
    SCHEDULER_MAX_INTERVAL,
    SCHEDULER_MIN_INTERVAL,
    SCHEDULER_NIGHT_END,
    SCHEDULER_NIGHT_START,
    SCHEDULER_OPPORTUNISTIC_EVERY,
    SCHEDULER_OUTCOME_WINDOW,
    SCHEDULER_SHRINK_FACTOR,
    SCHEDULER_SHUTDOWN_TIMEOUT,
)
from .log_context import cycle_scope
from .task_registry import TaskRegistry

logger = logging.getLogger(__name__)

SubTask = Callable[[], Awaitable]
CycleHook = Callable[[list["TaskOutcome"]], Awaitable[None]]

SCHEDULER_TASK_NAME = "agent_scheduler"


@dataclass(frozen=True)
class TaskOutcome:
    task: str
    success: bool
    timestamp: datetime
    error: str = ""


@dataclass
class AdaptiveConfig:
    interval: float = SCHEDULER_INITIAL_INTERVAL
    min_interval: float = SCHEDULER_MIN_INTERVAL
    max_interval: float = SCHEDULER_MAX_INTERVAL
    priority_tasks: set[str] = field(default_factory=lambda: set(INITIAL_PRIORITY_TASKS))
    # Letzte `window` Outcomes je Sub-Task
    window: int = SCHEDULER_OUTCOME_WINDOW
    outcomes: dict[str, deque] = field(default_factory=dict)
    cycles: int = 0

    def record(self, outcome: TaskOutcome) -> None:
        history = self.outcomes.get(outcome.task)
        if history is None:
            history = self.outcomes[outcome.task] = deque(maxlen=self.window)
        history.append(outcome)

    @property
    def outcome_count(self) -> int:
        return sum(len(history) for history in self.outcomes.values())

    @property
    def failure_rate(self) -> float:
        """Fehlerquote ueber die Fenster aller Sub-Tasks zusammen."""
        total = self.outcome_count
        if not total:
            return 0.0
        failed = sum(1 for history in self.outcomes.values() for o in history if not o.success)
        return failed / total

    def task_history(self, name: str) -> list[TaskOutcome]:
        return list(self.outcomes.get(name, ()))

    @classmethod
    def from_config(cls, cfg: dict) -> "AdaptiveConfig":
        min_interval = float(cfg.get("min_interval_minutes", SCHEDULER_MIN_INTERVAL / 60)) * 60
        max_interval = float(cfg.get("max_interval_minutes", SCHEDULER_MAX_INTERVAL / 60)) * 60
        if max_interval < min_interval:
            logger.warning("max_interval < min_interval, nutze Standardwerte")
            min_interval, max_interval = SCHEDULER_MIN_INTERVAL, SCHEDULER_MAX_INTERVAL
        interval = float(cfg.get("initial_interval_minutes", SCHEDULER_INITIAL_INTERVAL / 60)) * 60
        window = max(1, int(cfg.get("outcome_window", SCHEDULER_OUTCOME_WINDOW)))
        return cls(
            interval=min(max_interval, max(min_interval, interval)),
            min_interval=min_interval,
            max_interval=max_interval,
            priority_tasks=set(cfg.get("priority_tasks") or INITIAL_PRIORITY_TASKS),
            window=window,
        )


def is_night(hour: int) -> bool:
    return hour >= SCHEDULER_NIGHT_START or hour < SCHEDULER_NIGHT_END


class AdaptiveScheduler:
    """Fuehrt Zyklen sequentiell aus und passt Intervall und Prioritaeten an."""

    def __init__(
        self,
        tasks: dict[str, SubTask],
        always_run: Optional[set[str]] = None,
        on_cycle_complete: Optional[CycleHook] = None,
        task_registry: Optional[TaskRegistry] = None,
        config: Optional[AdaptiveConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        cfg = section("scheduler")
        self.tasks = dict(tasks)
        self.always_run = set(always_run if always_run is not None else {"decision"})
        self.on_cycle_complete = on_cycle_complete
        self.config = config or AdaptiveConfig.from_config(cfg)
        self.opportunistic_every = max(1, int(cfg.get("opportunistic_every", SCHEDULER_OPPORTUNISTIC_EVERY)))
        self._task_registry = task_registry
        self._clock = clock
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self.last_outcomes: list[TaskOutcome] = []

    @property
    def cycles(self) -> int:
        return self.config.cycles

    @property
    def priority_tasks(self) -> set[str]:
        return set(self.config.priority_tasks)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def current_interval(self) -> float:
        return self.config.interval

    def select_tasks(self) -> list[str]:
        """Sub-Tasks fuer den naechsten Zyklus, in Registrierungsreihenfolge."""
        opportunistic = self.cycles % self.opportunistic_every == 0
        wanted = self.config.priority_tasks | self.always_run
        return [name for name in self.tasks if opportunistic or name in wanted]

    async def tick(self) -> float:
        """Genau ein Zyklus. Gibt die Dauer in Sekunden zurueck."""
        async with self._lock:
            started = time.monotonic()
            with cycle_scope():
                names = self.select_tasks()
                logger.debug("Zyklus %d: %s", self.cycles + 1, ", ".join(names) or "-")

                results = await asyncio.gather(
                    *(self.tasks[name]() for name in names), return_exceptions=True,
                )
                now = self._clock()
                outcomes = []
                for name, result in zip(names, results):
                    if isinstance(result, BaseException):
                        logger.warning("Sub-Task %s fehlgeschlagen: %s", name, result)
                        outcomes.append(TaskOutcome(name, False, now, f"{type(result).__name__}: {result}"))
                    else:
                        outcomes.append(TaskOutcome(name, True, now))
                self.last_outcomes = outcomes

                if self.on_cycle_complete is not None:
                    try:
                        await self.on_cycle_complete(outcomes)
                    except Exception as e:
                        logger.error("Lern-Hook fehlgeschlagen: %s", e)

                self.retune(self._clock(), outcomes)
                duration = time.monotonic() - started
                logger.info("Zyklus %d fertig in %.2fs (%d/%d ok, naechster in %.0fs)",
                            self.cycles, duration, sum(o.success for o in outcomes),
                            len(outcomes), self.config.interval)
                return duration

    def retune(self, now: datetime, outcomes: list[TaskOutcome]) -> None:
        """Passt Intervall und Prioritaeten an. Einzige Mutation von AdaptiveConfig."""
        cfg = self.config
        cfg.cycles += 1
        for outcome in outcomes:
            cfg.record(outcome)

        previous = cfg.interval
        if cfg.outcome_count:
            rate = cfg.failure_rate
            if rate > SCHEDULER_HIGH_FAILURE_RATE:
                cfg.interval = max(cfg.min_interval, cfg.interval * SCHEDULER_SHRINK_FACTOR)
            elif rate < SCHEDULER_LOW_FAILURE_RATE:
                cfg.interval = min(cfg.max_interval, cfg.interval * SCHEDULER_GROW_FACTOR)
            if cfg.interval != previous:
                logger.info("Intervall %.0fs -> %.0fs (Fehlerquote %.2f)", previous, cfg.interval, rate)

        if is_night(now.hour):
            cfg.priority_tasks.add("security")
            cfg.priority_tasks.discard("productivity")
        else:
            cfg.priority_tasks.add("productivity")

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        if self._task_registry is not None:
            self._loop_task = self._task_registry.create_task(
                self._run(), name=SCHEDULER_TASK_NAME, on_stop=self._stop_event.set,
            )
        else:
            self._loop_task = asyncio.create_task(self._run(), name=SCHEDULER_TASK_NAME)
        logger.info("Scheduler gestartet (Intervall %.0fs)", self.config.interval)

    async def stop(self, timeout: float = SCHEDULER_SHUTDOWN_TIMEOUT) -> None:
        """Signalisiert Stop und wartet, bis ein laufender Zyklus fertig ist."""
        self._stop_event.set()
        task = self._loop_task
        if task is None or task.done():
            return
        _, pending = await asyncio.wait({task}, timeout=timeout)
        if pending:
            logger.warning("Scheduler nach %.0fs nicht beendet, breche ab", timeout)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Scheduler gestoppt nach %d Zyklen", self.cycles)

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error("Zyklus abgebrochen: %s", e, exc_info=True)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.interval)
            except asyncio.TimeoutError:
                pass

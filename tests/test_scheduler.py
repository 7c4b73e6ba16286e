"""
Tests fuer den AdaptiveScheduler: Retune, Auswahl, Fan-out, Lifecycle.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from homeagent.scheduler import (
    SCHEDULER_TASK_NAME,
    AdaptiveConfig,
    AdaptiveScheduler,
    TaskOutcome,
    is_night,
)
from homeagent.task_registry import TaskRegistry

DAY = datetime(2024, 3, 12, 10, 0)
NIGHT = datetime(2024, 3, 12, 23, 0)


def outcomes(ok: int, failed: int) -> list[TaskOutcome]:
    return ([TaskOutcome("health", True, DAY)] * ok) + ([TaskOutcome("security", False, DAY, "boom")] * failed)


def make_scheduler(tasks=None, **kwargs) -> AdaptiveScheduler:
    tasks = tasks or {name: AsyncMock() for name in ("health", "security", "productivity", "decision")}
    kwargs.setdefault("config", AdaptiveConfig())
    return AdaptiveScheduler(tasks, **kwargs)


class TestAdaptiveConfig:

    def test_defaults(self):
        cfg = AdaptiveConfig()
        assert cfg.interval == 15 * 60
        assert cfg.priority_tasks == {"health", "security"}
        assert cfg.failure_rate == 0.0

    def test_from_config_minutes(self):
        cfg = AdaptiveConfig.from_config({
            "initial_interval_minutes": 10, "min_interval_minutes": 2,
            "max_interval_minutes": 30, "outcome_window": 5, "priority_tasks": ["health"],
        })
        assert (cfg.interval, cfg.min_interval, cfg.max_interval) == (600, 120, 1800)
        assert cfg.window == 5
        assert cfg.priority_tasks == {"health"}

    def test_from_config_inverted_bounds(self):
        cfg = AdaptiveConfig.from_config({"min_interval_minutes": 90, "max_interval_minutes": 10})
        assert (cfg.min_interval, cfg.max_interval) == (300, 3600)

    def test_initial_interval_clamped(self):
        assert AdaptiveConfig.from_config({"initial_interval_minutes": 600}).interval == 3600

    def test_task_history(self):
        cfg = AdaptiveConfig()
        for outcome in outcomes(2, 1):
            cfg.record(outcome)
        assert len(cfg.task_history("security")) == 1
        assert cfg.task_history("missing") == []

    def test_window_is_per_task(self):
        cfg = AdaptiveConfig(window=3)
        cfg.record(TaskOutcome("security", False, DAY, "boom"))
        for _ in range(10):
            cfg.record(TaskOutcome("health", True, DAY))
        assert len(cfg.task_history("security")) == 1
        assert len(cfg.task_history("health")) == 3
        assert cfg.failure_rate == pytest.approx(0.25)


class TestRetune:
    """Tests fuer Intervall- und Prioritaets-Anpassung."""

    def test_high_failure_rate_shrinks(self):
        scheduler = make_scheduler()
        scheduler.retune(DAY, outcomes(3, 1))
        assert scheduler.current_interval() == pytest.approx(15 * 60 * 0.8)

    def test_low_failure_rate_grows(self):
        scheduler = make_scheduler()
        scheduler.retune(DAY, outcomes(4, 0))
        assert scheduler.current_interval() == pytest.approx(15 * 60 * 1.2)

    def test_middle_band_holds(self):
        scheduler = make_scheduler()
        scheduler.retune(DAY, outcomes(17, 3))
        assert scheduler.current_interval() == 15 * 60

    def test_empty_history_holds(self):
        scheduler = make_scheduler()
        scheduler.retune(DAY, [])
        assert scheduler.current_interval() == 15 * 60

    def test_busy_task_cannot_hide_failures(self):
        scheduler = make_scheduler(config=AdaptiveConfig(window=4))
        scheduler.retune(DAY, [TaskOutcome("security", False, DAY, "boom")])
        scheduler.retune(DAY, [TaskOutcome("health", True, DAY)] * 10)
        assert scheduler.config.task_history("security")[0].error == "boom"
        assert scheduler.config.cycles == 2

    def test_interval_bounded(self):
        scheduler = make_scheduler()
        for _ in range(50):
            scheduler.retune(DAY, outcomes(0, 4))
            assert 300 <= scheduler.current_interval() <= 3600
        assert scheduler.current_interval() == 300

        scheduler = make_scheduler(config=AdaptiveConfig(window=4))
        for _ in range(50):
            scheduler.retune(DAY, outcomes(4, 0))
        assert scheduler.current_interval() == 3600

    def test_night_priorities(self):
        scheduler = make_scheduler()
        scheduler.config.priority_tasks.add("productivity")
        scheduler.retune(NIGHT, [])
        assert "security" in scheduler.priority_tasks
        assert "productivity" not in scheduler.priority_tasks

    def test_day_priorities(self):
        scheduler = make_scheduler()
        scheduler.retune(DAY, [])
        assert "productivity" in scheduler.priority_tasks

    @pytest.mark.parametrize("hour,night", [(21, False), (22, True), (3, True), (6, False)])
    def test_is_night(self, hour, night):
        assert is_night(hour) is night


class TestTick:
    """Tests fuer einen Zyklus."""

    @pytest.mark.asyncio
    async def test_first_cycle_runs_everything(self, clock):
        tasks = {name: AsyncMock() for name in ("health", "security", "productivity", "decision")}
        scheduler = make_scheduler(tasks, clock=clock)
        await scheduler.tick()
        for task in tasks.values():
            task.assert_awaited_once()
        assert scheduler.cycles == 1

    @pytest.mark.asyncio
    async def test_opportunistic_tasks_skipped_between(self, clock):
        tasks = {name: AsyncMock() for name in ("health", "security", "extra", "decision")}
        scheduler = make_scheduler(tasks, clock=clock)
        await scheduler.tick()
        await scheduler.tick()
        assert tasks["extra"].await_count == 1
        assert tasks["decision"].await_count == 2
        assert tasks["health"].await_count == 2

    @pytest.mark.asyncio
    async def test_failure_does_not_abort_siblings(self, clock):
        tasks = {
            "health": AsyncMock(side_effect=ConnectionError("api down")),
            "security": AsyncMock(),
            "decision": AsyncMock(),
        }
        scheduler = make_scheduler(tasks, clock=clock)
        await scheduler.tick()
        tasks["security"].assert_awaited_once()
        tasks["decision"].assert_awaited_once()
        failed = [o for o in scheduler.last_outcomes if not o.success]
        assert [o.task for o in failed] == ["health"]
        assert "ConnectionError" in failed[0].error
        # 1 von 3 fehlgeschlagen → schrumpfen
        assert scheduler.current_interval() == pytest.approx(720)

    @pytest.mark.asyncio
    async def test_hook_receives_outcomes(self, clock):
        hook = AsyncMock()
        scheduler = make_scheduler(on_cycle_complete=hook, clock=clock)
        await scheduler.tick()
        assert len(hook.await_args.args[0]) == 4

    @pytest.mark.asyncio
    async def test_hook_failure_tolerated(self, clock):
        scheduler = make_scheduler(on_cycle_complete=AsyncMock(side_effect=RuntimeError("boom")),
                                   clock=clock)
        await scheduler.tick()
        assert scheduler.cycles == 1

    @pytest.mark.asyncio
    async def test_cycles_never_overlap(self, clock):
        active = 0
        peak = 0

        async def slow():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        scheduler = make_scheduler({"decision": slow}, clock=clock)
        await asyncio.gather(scheduler.tick(), scheduler.tick(), scheduler.tick())
        assert peak == 1
        assert scheduler.cycles == 3


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_registers_and_stop_waits(self, clock):
        registry = TaskRegistry()
        finished = asyncio.Event()

        async def decision():
            await asyncio.sleep(0.01)
            finished.set()

        scheduler = make_scheduler({"decision": decision}, task_registry=registry, clock=clock)
        await scheduler.start()
        assert registry.is_running(SCHEDULER_TASK_NAME)
        await asyncio.sleep(0)
        await scheduler.stop()
        assert finished.is_set()
        assert scheduler.running is False
        assert scheduler.cycles == 1

    @pytest.mark.asyncio
    async def test_registry_shutdown_stops_gracefully(self, clock):
        registry = TaskRegistry()
        scheduler = make_scheduler({"decision": AsyncMock()}, task_registry=registry, clock=clock)
        await scheduler.start()
        await asyncio.sleep(0)
        await registry.shutdown(timeout=1)
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        scheduler = make_scheduler()
        await scheduler.stop()
        assert scheduler.running is False

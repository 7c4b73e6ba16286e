"""
Task Registry - Zentrales Tracking aller asyncio Background-Tasks.

Sensor-Timer, Scheduler-Loop und Fire-and-Forget-Alerts laufen als
registrierte Tasks. Beim Shutdown werden normale Tasks abgebrochen,
"graceful" Tasks (der Scheduler) bekommen ein Stop-Signal und duerfen
ihren laufenden Zyklus zu Ende bringen.
"""

import asyncio
import logging
from typing import Callable, Coroutine, Optional

logger = logging.getLogger(__name__)


class TaskRegistry:
    """Verwaltet alle Background-Tasks einer Engine-Instanz."""

    def __init__(self):
        self._tasks: dict[str, asyncio.Task] = {}
        self._stoppers: dict[str, Callable[[], None]] = {}
        self._shutting_down = False

    def create_task(
        self,
        coro: Coroutine,
        *,
        name: str,
        replace: bool = False,
        on_stop: Optional[Callable[[], None]] = None,
    ) -> asyncio.Task:
        """Erstellt und registriert einen Task.

        Args:
            coro: Die auszufuehrende Coroutine
            name: Eindeutiger Name
            replace: Bestehenden Task gleichen Namens abbrechen statt ueberspringen
            on_stop: Stop-Signal fuer graceful Shutdown; ohne wird der Task gecancelt
        """
        if self._shutting_down:
            coro.close()
            raise RuntimeError("TaskRegistry is shutting down")

        existing = self._tasks.get(name)
        if existing and not existing.done():
            if not replace:
                logger.debug("Task '%s' laeuft bereits, uebersprungen", name)
                coro.close()
                return existing
            existing.cancel()
            logger.debug("Task '%s' ersetzt", name)

        task = asyncio.create_task(coro, name=name)
        self._tasks[name] = task
        if on_stop is not None:
            self._stoppers[name] = on_stop
        else:
            self._stoppers.pop(name, None)
        task.add_done_callback(lambda t: self._on_task_done(t, name))
        return task

    def _on_task_done(self, task: asyncio.Task, name: str) -> None:
        # Ein ersetzter Task darf seinen Nachfolger nicht austragen
        if self._tasks.get(name) is task:
            del self._tasks[name]
            self._stoppers.pop(name, None)
        if task.cancelled():
            logger.debug("Task '%s' wurde abgebrochen", name)
            return
        exc = task.exception()
        if exc:
            logger.error("Background-Task '%s' fehlgeschlagen: %s", name, exc, exc_info=exc)

    def cancel(self, name: str) -> bool:
        task = self._tasks.get(name)
        if task and not task.done():
            task.cancel()
            return True
        return False

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    @property
    def active_tasks(self) -> list[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Beendet alle Tasks.

        Graceful Tasks bekommen ihr Stop-Signal und bis zu ``timeout``
        Sekunden Zeit, alle anderen werden sofort abgebrochen.
        """
        self._shutting_down = True
        active = {name: task for name, task in self._tasks.items() if not task.done()}
        if not active:
            return

        graceful = {name: task for name, task in active.items() if name in self._stoppers}
        for name, task in active.items():
            if name in graceful:
                self._stoppers[name]()
            else:
                task.cancel()

        if graceful:
            _, pending = await asyncio.wait(graceful.values(), timeout=timeout)
            for task in pending:
                logger.warning("Task '%s' nach %.0fs nicht fertig, breche ab", task.get_name(), timeout)
                task.cancel()

        results = await asyncio.gather(*active.values(), return_exceptions=True)
        errors = sum(
            1 for r in results
            if isinstance(r, Exception) and not isinstance(r, asyncio.CancelledError)
        )
        logger.info("TaskRegistry: %d Tasks beendet (%d graceful, %d Fehler)",
                    len(active), len(graceful), errors)
        self._tasks.clear()
        self._stoppers.clear()

    def status(self) -> dict:
        return {
            "active": self.active_tasks,
            "graceful": sorted(n for n in self._stoppers if self.is_running(n)),
            "shutting_down": self._shutting_down,
        }

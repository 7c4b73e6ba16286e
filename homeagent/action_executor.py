"""
Action Executor - fuehrt akzeptierte Entscheidungen ueber die Provider aus.

Dispatch-Tabelle ActionType → Handler, vollstaendig ueber das Enum.
Lieferdienst-Auswahl ueber eine austauschbare ProviderStrategy.
Jeder Dispatch (erfolgreich oder nicht) landet als Outcome in der
PatternMemory. Fehler gehen typisiert an den Aufrufer.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from .config import section
from .constants import MIN_CONFIDENCE_THRESHOLD
from .exceptions import AgentError, ProviderError, ProviderUnavailable, RequestFailed, UnknownActionType
from .models import (
    ActionType,
    AgentAction,
    Decision,
    Order,
    OrderGroceries,
    OrderStatus,
    Outcome,
    SetMood,
    SuggestTask,
)
from .pattern_memory import PatternMemory
from .providers import (
    DeliveryService,
    ProviderRequest,
    ProviderStrategy,
    SmartHomeProvider,
    WeightedProviderStrategy,
    find_provider,
)

logger = logging.getLogger(__name__)

TaskNotifier = Callable[[SuggestTask], Awaitable[None]]


@dataclass(frozen=True)
class ExecutionResult:
    action: ActionType
    success: bool
    message: str = ""
    order: Optional[Order] = None
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "success": self.success,
            "message": self.message,
            "order": self.order.to_dict() if self.order else None,
            "duration": round(self.duration, 3),
        }


def default_strategy() -> WeightedProviderStrategy:
    cfg = section("providers").get("delivery") or {}
    return WeightedProviderStrategy(
        time_weight=float(cfg.get("time_weight", 1.0)),
        fee_weight=float(cfg.get("fee_weight", 5.0)),
    )


class ActionExecutor:
    """Bruecke zwischen Entscheidungen und Capability-Providern."""

    def __init__(
        self,
        memory: PatternMemory,
        delivery: Optional[DeliveryService] = None,
        smart_home: Optional[SmartHomeProvider] = None,
        strategy: Optional[ProviderStrategy] = None,
        notifier: Optional[TaskNotifier] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.memory = memory
        self.delivery = delivery
        self.smart_home = smart_home
        self.strategy = strategy or default_strategy()
        self.notifier = notifier
        self._clock = clock
        self._open_orders: dict[str, Order] = {}
        self._handlers: dict[ActionType, Callable[[AgentAction], Awaitable[ExecutionResult]]] = {
            ActionType.NONE: self._noop,
            ActionType.MAINTAIN_CURRENT_STATE: self._maintain,
            ActionType.SUGGEST_TASK: self._suggest_task,
            ActionType.ORDER_GROCERIES: self._order_groceries,
            ActionType.OPTIMIZE_ENERGY: self._optimize_energy,
            ActionType.SET_MOOD: self._set_mood,
            ActionType.PREPARE_FOR_SLEEP: self._prepare_for_sleep,
        }

    @property
    def open_orders(self) -> list[Order]:
        return list(self._open_orders.values())

    async def execute_decision(self, decision: Decision) -> ExecutionResult:
        """Entscheidung → typisierte Aktion → Dispatch."""
        return await self.execute(AgentAction.from_decision(decision), decision)

    async def execute(self, action: AgentAction,
                      decision: Optional[Decision] = None) -> ExecutionResult:
        """Fuehrt eine Aktion aus.

        Raises:
            UnknownActionType: Kein Handler fuer den Aktionstyp
            ProviderUnavailable: Benoetigter Provider fehlt oder keiner verfuegbar
            ProviderError: Provider-Call fehlgeschlagen
        """
        handler = self._handlers.get(action.type)
        if handler is None:
            raise UnknownActionType(f"Kein Handler fuer {action.type}")

        started = time.monotonic()
        try:
            result = await handler(action)
        except AgentError as e:
            await self._record(action, decision, False, str(e), time.monotonic() - started)
            logger.warning("Aktion %s fehlgeschlagen: %s", action.type.value, e)
            raise
        except Exception as e:
            await self._record(action, decision, False, str(e), time.monotonic() - started)
            logger.error("Provider-Fehler bei %s: %s", action.type.value, e)
            raise ProviderError(f"{action.type.value}: {e}") from e

        duration = time.monotonic() - started
        result = ExecutionResult(result.action, result.success, result.message, result.order, duration)
        await self._record(action, decision, result.success, result.message, duration)
        logger.info("Aktion %s ausgefuehrt (%.2fs): %s", action.type.value, duration, result.message)
        return result

    async def refresh_orders(self) -> list[Order]:
        """Fragt den Status offener Bestellungen ab, gelieferte fallen raus."""
        if not self._open_orders or self.delivery is None:
            return []
        refreshed = []
        failed = []
        for order_id in list(self._open_orders):
            try:
                order = await self.delivery.track_order(order_id)
            except ProviderError as e:
                logger.warning("Bestellung %s nicht abrufbar: %s", order_id, e)
                failed.append(order_id)
                continue
            refreshed.append(order)
            if order.status == OrderStatus.DELIVERED:
                logger.info("Bestellung %s geliefert", order_id)
                self._open_orders.pop(order_id, None)
            else:
                self._open_orders[order_id] = order
        if failed:
            raise RequestFailed(f"Status fuer {len(failed)} Bestellung(en) nicht abrufbar")
        return refreshed

    # ------------------------------------------------------------------
    # Handler
    # ------------------------------------------------------------------

    async def _noop(self, action: AgentAction) -> ExecutionResult:
        return ExecutionResult(action.type, True, getattr(action.payload, "reason", ""))

    async def _maintain(self, action: AgentAction) -> ExecutionResult:
        return ExecutionResult(action.type, True, "Current state maintained")

    async def _suggest_task(self, action: AgentAction) -> ExecutionResult:
        payload: SuggestTask = action.payload
        if self.notifier is not None:
            await self.notifier(payload)
        return ExecutionResult(action.type, True, f"Suggested task: {payload.title}")

    async def _order_groceries(self, action: AgentAction) -> ExecutionResult:
        payload: OrderGroceries = action.payload
        if self.delivery is None:
            raise ProviderUnavailable("Kein Lieferdienst konfiguriert")
        if not payload.items:
            raise ProviderError("Bestellung ohne Artikel")

        providers = await self.delivery.providers()
        if payload.provider_id:
            provider = find_provider(providers, payload.provider_id)
            if provider is None or not provider.is_available:
                raise ProviderUnavailable(f"Lieferdienst {payload.provider_id} nicht verfuegbar")
        else:
            provider = self.strategy.select(
                providers, ProviderRequest(urgency=payload.urgency, order_value=payload.order_value),
            )

        order = await self.delivery.place_order(list(payload.items), provider.id)
        if order.status != OrderStatus.DELIVERED:
            self._open_orders[order.id] = order
        return ExecutionResult(
            action.type, True,
            f"Order {order.id} placed with {provider.name} ({len(payload.items)} items)",
            order=order,
        )

    async def _optimize_energy(self, action: AgentAction) -> ExecutionResult:
        await self._require_smart_home().optimize_energy()
        return ExecutionResult(action.type, True, "Energy usage optimized")

    async def _set_mood(self, action: AgentAction) -> ExecutionResult:
        payload: SetMood = action.payload
        await self._require_smart_home().set_mood(payload.mood)
        return ExecutionResult(action.type, True, f"Mood set to {payload.mood.value}")

    async def _prepare_for_sleep(self, action: AgentAction) -> ExecutionResult:
        await self._require_smart_home().prepare_for_sleep()
        return ExecutionResult(action.type, True, "Home prepared for sleep")

    def _require_smart_home(self) -> SmartHomeProvider:
        if self.smart_home is None:
            raise ProviderUnavailable("Kein Smart-Home-Provider konfiguriert")
        return self.smart_home

    # ------------------------------------------------------------------
    # Lernen
    # ------------------------------------------------------------------

    async def _record(self, action: AgentAction, decision: Optional[Decision],
                      success: bool, detail: str, duration: float) -> None:
        # Kein Dispatch, nichts zu lernen
        if action.type is ActionType.NONE:
            return
        now = self._clock()
        if decision is None or decision.action != action.type.value:
            decision = Decision(action=action.type.value, confidence=MIN_CONFIDENCE_THRESHOLD,
                                created_at=now)
        outcome = Outcome(action=action.type.value, success=success, timestamp=now,
                          duration=duration, detail=detail)
        await self.memory.record_outcome(decision, outcome)

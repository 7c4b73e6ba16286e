"""
Decision Engine - der Denk-Zyklus des HomeAgent.

Zustaende: IDLE → THINKING → (ACCEPTED | FALLEN_BACK) → IDLE

Ablauf pro Zyklus:
  1. Kontext-Snapshot (inkl. aktueller Sensor-Analyse)
  2. Relevante Patterns + Kurzzeit-Gedaechtnis
  3. Kontextuelle Konfidenz = 0.3 * Zeit + 0.3 * Umgebung + 0.4 * Patterns
  4. Kandidat vom Inference-Dienst, Temperatur = max(0.1, 1 - Konfidenz)
  5. Bewertung: Konfidenz * (1 - Risiko) * History-Faktor
  6. Ueber dem Schwellwert → akzeptiert und gelernt, sonst sichere
     Fallback-Entscheidung ("maintain_current_state") mit Begruendung

Es laeuft immer hoechstens ein Zyklus. Ein zweiter think()-Aufruf
waehrend THINKING bekommt sofort eine "none"-Entscheidung, nichts wird
eingereiht. Inference-Fehler gehen an den Aufrufer, Speicher-Fehler nicht.
"""

import dataclasses
import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .config import section
from .constants import (
    ALTERNATIVE_CONFIDENCE_FACTOR,
    BUSINESS_HOURS,
    COMFORT_WEATHER_RANGE,
    CONSERVATIVE_IMPACT_FACTOR,
    CONTEXT_WEIGHT_ENVIRONMENT,
    CONTEXT_WEIGHT_PATTERN,
    CONTEXT_WEIGHT_TIME,
    EXTREME_WEATHER_RANGE,
    FALLBACK_ACTION,
    FORECAST_PREPARATION_RANGE,
    FORECAST_TREND_DELTA,
    FREQUENT_PATTERN_LIMIT,
    MAX_LOW_CONFIDENCE_PATTERNS,
    MIN_CONFIDENCE_THRESHOLD,
    MIN_INFERENCE_TEMPERATURE,
    NO_ACTION,
    QUIET_HOURS,
    RISK_WEIGHTS,
)
from .context_builder import ContextBuilder
from .exceptions import MalformedResponseError
from .inference import InferenceService
from .models import (
    ActionType,
    Context,
    Decision,
    ForecastDay,
    HistoricalSummary,
    Impact,
    MemoryItem,
    MemoryType,
    PatternMatch,
    WeatherCondition,
    WeatherData,
    clamp,
)
from .pattern_memory import PatternMemory

logger = logging.getLogger(__name__)

_PERIODS = ("morning", "afternoon", "evening", "night")


class EngineState(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    ACCEPTED = "accepted"
    FALLEN_BACK = "fallen_back"


@dataclass(frozen=True)
class RiskFlag:
    category: str  # environmental | operational | comfort | hazard
    severity: str  # low | medium | high
    description: str


@dataclass(frozen=True)
class ForecastInsight:
    trend: str = "stable"  # rising | falling | stable
    upcoming: tuple[str, ...] = ()
    requires_preparation: bool = False


@dataclass(frozen=True)
class ContextInsights:
    time_confidence: float
    environment_confidence: float
    pattern_confidence: float
    confidence: float
    successful_patterns: tuple[PatternMatch, ...] = ()
    risks: tuple[RiskFlag, ...] = ()
    recent: tuple[MemoryItem, ...] = ()
    forecast: ForecastInsight = ForecastInsight()
    # period -> Aktionen, plus die haeufigsten Patterns
    patterns_by_period: dict = field(default_factory=dict)
    frequent_patterns: tuple[dict, ...] = ()
    outcomes: dict = field(default_factory=dict)


# ============================================================
# Bewertungsregeln
# ============================================================

def time_confidence(hour: int) -> float:
    start, end = BUSINESS_HOURS
    return 0.8 if start <= hour <= end else 0.6


def environment_confidence(weather: WeatherData) -> float:
    low, high = COMFORT_WEATHER_RANGE
    if weather.known and low <= weather.temperature <= high:
        return 0.9
    return 0.5


def pattern_confidence(successful: list[PatternMatch]) -> float:
    return 0.8 if successful else 0.4


def contextual_confidence(time_conf: float, env_conf: float, pattern_conf: float) -> float:
    return clamp(
        CONTEXT_WEIGHT_TIME * time_conf
        + CONTEXT_WEIGHT_ENVIRONMENT * env_conf
        + CONTEXT_WEIGHT_PATTERN * pattern_conf
    )


def inference_temperature(confidence: float) -> float:
    """Unsicherer Kontext → breitere Exploration."""
    return max(MIN_INFERENCE_TEMPERATURE, 1 - confidence)


def temperature_trend(forecast: tuple[ForecastDay, ...]) -> str:
    """Vergleicht die Tagesmittel des ersten und letzten Vorhersage-Tags."""
    if len(forecast) < 2:
        return "stable"
    first = (forecast[0].high + forecast[0].low) / 2
    last = (forecast[-1].high + forecast[-1].low) / 2
    if last - first > FORECAST_TREND_DELTA:
        return "rising"
    if last - first < -FORECAST_TREND_DELTA:
        return "falling"
    return "stable"


def forecast_requires_preparation(forecast: tuple[ForecastDay, ...]) -> bool:
    low, high = FORECAST_PREPARATION_RANGE
    return any(
        day.condition == WeatherCondition.STORM or day.high > high or day.low < low
        for day in forecast
    )


def analyze_forecast(weather: WeatherData) -> ForecastInsight:
    if not weather.known or not weather.forecast:
        return ForecastInsight()
    return ForecastInsight(
        trend=temperature_trend(weather.forecast),
        upcoming=tuple(day.condition.value for day in weather.forecast),
        requires_preparation=forecast_requires_preparation(weather.forecast),
    )


def group_patterns_by_period(history: HistoricalSummary) -> dict[str, list[str]]:
    """Aktionen der bekannten Patterns nach Tageszeit (aus dem Pattern-Key)."""
    groups: dict[str, list[str]] = {period: [] for period in _PERIODS}
    for pattern in history.patterns:
        period = str(pattern.get("key", "")).rsplit("_", 1)[-1]
        action = pattern.get("action")
        if period in groups and action and not str(action).startswith("observe_"):
            groups[period].append(action)
    return groups


def frequent_patterns(history: HistoricalSummary,
                      limit: int = FREQUENT_PATTERN_LIMIT) -> list[dict]:
    ranked = sorted(
        (p for p in history.patterns if not str(p.get("action", "")).startswith("observe_")),
        key=lambda p: p.get("frequency", 0),
        reverse=True,
    )
    return [{"pattern": p.get("key"), "frequency": p.get("frequency", 0)} for p in ranked[:limit]]


def summarize_outcomes(recent: list[MemoryItem]) -> dict:
    """Erfolgsquote der zuletzt ausgefuehrten Aktionen."""
    results = [bool(item.content.get("success")) for item in recent if item.type == MemoryType.ACTION]
    success = sum(results)
    total = len(results)
    return {
        "success": success,
        "failure": total - success,
        "total": total,
        "success_rate": round(success / total, 2) if total else 0.0,
    }


def assess_risks(context: Context, matches: list[PatternMatch],
                 min_confidence: float = MIN_CONFIDENCE_THRESHOLD) -> list[RiskFlag]:
    risks = []
    weather = context.weather
    low, high = EXTREME_WEATHER_RANGE
    if weather.known and (weather.temperature < low or weather.temperature > high
                          or weather.condition == WeatherCondition.STORM):
        risks.append(RiskFlag("environmental", "medium",
                              f"Extreme weather ({weather.condition.value}, {weather.temperature:.0f}C)"))
    if weather.known and forecast_requires_preparation(weather.forecast):
        risks.append(RiskFlag("environmental", "medium",
                              "Forecast requires preparation (storm or extreme temperatures ahead)"))

    weak = sum(1 for m in matches if m.confidence < min_confidence)
    if weak > MAX_LOW_CONFIDENCE_PATTERNS:
        risks.append(RiskFlag("operational", "high", f"{weak} low-confidence patterns in similar contexts"))

    quiet_start, quiet_end = QUIET_HOURS
    if context.hour < quiet_start or context.hour > quiet_end:
        risks.append(RiskFlag("comfort", "low", "Quiet hours, avoid disruptive actions"))

    if context.sensors is not None:
        hazard = context.sensors.safety.risk
        if hazard >= 0.5:
            risks.append(RiskFlag("hazard", "high", f"Active safety hazard (risk {hazard:.1f})"))
        elif hazard > 0:
            risks.append(RiskFlag("hazard", "medium", f"Minor safety concern (risk {hazard:.1f})"))
    return risks


def aggregate_risk(flags) -> float:
    """Additiv wie die Sensor-Sicherheit, auf [0, 1] begrenzt."""
    return clamp(sum(RISK_WEIGHTS.get(flag.severity, 0.0) for flag in flags))


def score_decision(confidence: float, risk: float, history_factor: float) -> float:
    return clamp(clamp(confidence) * (1 - clamp(risk)) * clamp(history_factor))


# ============================================================
# Antwort-Parsing
# ============================================================

def extract_json_object(text: str) -> dict:
    """JSON-Objekt aus der LLM-Antwort, direkt oder aus dem ersten {...}-Block."""
    text = (text or "").strip()
    data = None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            try:
                data = json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                data = None
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Kein JSON-Objekt in der Antwort: {text[:120]!r}")
    return data


def parse_decision(text: str, created_at: Optional[datetime] = None) -> Decision:
    """Wandelt die LLM-Antwort in einen Decision-Kandidaten."""
    data = extract_json_object(text)

    action = data.get("action")
    if not isinstance(action, str) or not action.strip():
        raise MalformedResponseError("Antwort ohne 'action'")
    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or math.isnan(confidence):
        raise MalformedResponseError(f"Ungueltige 'confidence': {confidence!r}")
    reasoning = data.get("reasoning") or []
    if not isinstance(reasoning, (list, str)):
        raise MalformedResponseError("'reasoning' ist weder Liste noch Text")

    alternatives = data.get("alternatives")
    payload = data.get("payload")
    return Decision.from_dict({
        "action": action.strip().lower(),
        "confidence": clamp(confidence),
        "reasoning": reasoning,
        "alternatives": alternatives if isinstance(alternatives, list) else [],
        "impact": data.get("impact"),
        "payload": payload if isinstance(payload, dict) else {},
        "created_at": created_at or datetime.now(),
    })


# ============================================================
# Prompt
# ============================================================

_SYSTEM_PROMPT = (
    "You are the decision core of a home assistant. Pick exactly one action "
    "that improves the residents' health, productivity or comfort, or keep the "
    "current state. Answer with a single JSON object only:\n"
    '{"action": "<one of the allowed actions>", "confidence": <0..1>, '
    '"reasoning": ["..."], "impact": {"health": <0..1>, "productivity": <0..1>, '
    '"comfort": <0..1>}, "payload": {...}, "alternatives": []}\n'
    "Payloads: suggest_task {\"title\", \"description\"}; order_groceries "
    "{\"items\": [{\"name\", \"quantity\", \"price\"}], \"urgency\": low|medium|high}; "
    "set_mood {\"mood\": work|relax|party}; all other actions take no payload."
)


def build_prompt(context: Context, insights: ContextInsights) -> str:
    state = {
        "time_of_day": context.time_of_day,
        "period": context.period,
        "occupancy": context.occupancy,
        "weather": {
            "known": context.weather.known,
            "temperature": context.weather.temperature,
            "humidity": context.weather.humidity,
            "condition": context.weather.condition.value,
            "forecast_trend": insights.forecast.trend,
            "upcoming_conditions": list(insights.forecast.upcoming),
            "forecast_requires_preparation": insights.forecast.requires_preparation,
        },
        "preferences": {
            "temperature_min": context.preferences.temperature_min,
            "temperature_max": context.preferences.temperature_max,
        },
        "context_confidence": round(insights.confidence, 2),
        "risks": [f"{r.severity}: {r.description}" for r in insights.risks],
        "successful_patterns": [
            {"action": m.action, "confidence": round(m.confidence, 2)}
            for m in insights.successful_patterns
        ],
        "user_patterns": {
            "by_period": {k: v for k, v in insights.patterns_by_period.items() if v},
            "frequent": list(insights.frequent_patterns),
        },
        "recent_outcomes": insights.outcomes,
        "recent_memory": [
            {"type": item.type.value, **{k: v for k, v in item.content.items() if k != "reasoning"}}
            for item in insights.recent[-10:]
        ],
    }
    if context.sensors is not None:
        s = context.sensors
        state["sensors"] = {
            "comfort": round(s.comfort.overall, 2),
            "air_quality": s.comfort.air,
            "safety_risk": s.safety.risk,
            "alerts": [a.message for a in s.safety.alerts],
            "energy_hints": list(s.efficiency.optimizations),
            "activity": list(s.activity.patterns),
        }
    allowed = ", ".join(t.value for t in ActionType)
    return (
        f"{_SYSTEM_PROMPT}\nAllowed actions: {allowed}\n\n"
        f"Current situation:\n{json.dumps(state, ensure_ascii=False, default=str)}"
    )


# ============================================================
# Engine
# ============================================================

class DecisionEngine:
    """Think/Act-Zyklus mit Zustandsmaschine und Konfidenz-Gate."""

    def __init__(
        self,
        context_builder: ContextBuilder,
        memory: PatternMemory,
        inference: InferenceService,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.context_builder = context_builder
        self.memory = memory
        self.inference = inference
        self.min_confidence = float(section("agent").get("min_confidence", MIN_CONFIDENCE_THRESHOLD))
        self._clock = clock
        self.state = EngineState.IDLE
        self.last_result: Optional[EngineState] = None
        self.last_decision: Optional[Decision] = None
        self.last_context: Optional[Context] = None

    @property
    def is_thinking(self) -> bool:
        return self.state == EngineState.THINKING

    def _transition(self, state: EngineState) -> None:
        logger.debug("DecisionEngine: %s -> %s", self.state.value, state.value)
        self.state = state

    async def think(self) -> Decision:
        """Ein kompletter Denk-Zyklus.

        Raises:
            TransientProviderError: Inference-Dienst nicht erreichbar / gedrosselt
            MalformedResponseError: Antwort nicht verwertbar
        """
        # Pruefen und Setzen ohne await dazwischen
        if self.state == EngineState.THINKING:
            logger.info("think() abgelehnt, Zyklus laeuft bereits")
            return Decision(action=NO_ACTION, confidence=0.0,
                            reasoning=("Already processing",),
                            created_at=self._clock())
        self._transition(EngineState.THINKING)
        try:
            context = await self.context_builder.build()
            self.last_context = context
            await self.memory.save_context(context)
            return await self.decide(context)
        finally:
            self._transition(EngineState.IDLE)

    async def decide(self, context: Context) -> Decision:
        matches = await self.memory.relevant_patterns(context)
        recent = self.memory.recent_memory()
        insights = self.analyze_context(context, matches, recent)

        temperature = inference_temperature(insights.confidence)
        prompt = build_prompt(context, insights)
        text = await self.inference.complete(prompt, temperature)
        candidate = parse_decision(text, created_at=context.timestamp)
        logger.info("Kandidat: %s (Konfidenz %.2f, T=%.2f)",
                    candidate.action, candidate.confidence, temperature)
        return await self.evaluate(candidate, context, insights)

    def analyze_context(self, context: Context, matches: list[PatternMatch],
                        recent: list[MemoryItem]) -> ContextInsights:
        successful = self.memory.successful_patterns(matches)
        t_conf = time_confidence(context.hour)
        e_conf = environment_confidence(context.weather)
        p_conf = pattern_confidence(successful)
        return ContextInsights(
            time_confidence=t_conf,
            environment_confidence=e_conf,
            pattern_confidence=p_conf,
            confidence=contextual_confidence(t_conf, e_conf, p_conf),
            successful_patterns=tuple(successful),
            risks=tuple(assess_risks(context, matches, self.min_confidence)),
            recent=tuple(recent),
            forecast=analyze_forecast(context.weather),
            patterns_by_period=group_patterns_by_period(context.history),
            frequent_patterns=tuple(frequent_patterns(context.history)),
            outcomes=summarize_outcomes(recent),
        )

    async def evaluate(self, candidate: Decision, context: Context,
                       insights: ContextInsights) -> Decision:
        """Bewertet den Kandidaten und akzeptiert ihn oder faellt zurueck."""
        risk = aggregate_risk(insights.risks)
        history = self.memory.history_factor(candidate.action)
        score = score_decision(candidate.confidence, risk, history)
        threshold = max(self.min_confidence, self.memory.action_threshold(candidate.action))
        reasoning = self._reasoning(insights, risk, history, score)

        if score > self.min_confidence and score >= threshold:
            decision = dataclasses.replace(
                candidate,
                confidence=score,
                reasoning=candidate.reasoning + tuple(reasoning),
                alternatives=candidate.alternatives + tuple(self._alternatives(candidate, insights)),
                created_at=context.timestamp,
            )
            await self.memory.record_decision(decision, context)
            self._transition(EngineState.ACCEPTED)
            self.last_result = EngineState.ACCEPTED
            self.last_decision = decision
            logger.info("Entscheidung akzeptiert: %s (%.2f)", decision.action, score)
            return decision

        reasoning.append(
            f"Rejected '{candidate.action}': confidence {score:.2f} not above threshold {threshold:.2f}"
        )
        decision = self.fallback_decision(reasoning, created_at=context.timestamp)
        self._transition(EngineState.FALLEN_BACK)
        self.last_result = EngineState.FALLEN_BACK
        self.last_decision = decision
        logger.info("Entscheidung %s verworfen (%.2f <= %.2f), Fallback",
                    candidate.action, score, threshold)
        return decision

    def fallback_decision(self, reasons: list[str],
                          created_at: Optional[datetime] = None) -> Decision:
        """Sichere Standard-Entscheidung mit genau der Mindest-Konfidenz."""
        return Decision(
            action=FALLBACK_ACTION,
            confidence=self.min_confidence,
            reasoning=tuple(reasons) + ("Falling back to safe state due to low confidence",),
            alternatives=(),
            impact=Impact(0.5, 0.5, 0.5),
            created_at=created_at or self._clock(),
        )

    def _reasoning(self, insights: ContextInsights, risk: float,
                   history: float, score: float) -> list[str]:
        start, end = BUSINESS_HOURS
        lines = [
            f"Time context confidence {insights.time_confidence:.2f} "
            f"({'business hours' if insights.time_confidence >= 0.8 else f'outside {start}-{end}h'})",
            f"Environment confidence {insights.environment_confidence:.2f}",
        ]
        if insights.successful_patterns:
            best = max(insights.successful_patterns, key=lambda m: m.confidence)
            lines.append(f"{len(insights.successful_patterns)} successful pattern(s), "
                         f"best '{best.action}' at {best.confidence:.2f}")
        else:
            lines.append("No successful patterns for this context")
        for flag in insights.risks:
            lines.append(f"Risk ({flag.severity}, {flag.category}): {flag.description}")
        lines.append(f"Decision confidence {score:.2f} (risk {risk:.2f}, history factor {history:.2f})")
        return lines

    def _alternatives(self, candidate: Decision, insights: ContextInsights) -> list[Decision]:
        alternatives = []
        others = [m for m in insights.successful_patterns if m.action and m.action != candidate.action]
        if others:
            best = max(others, key=lambda m: m.confidence)
            alternatives.append(Decision(
                action=best.action,
                confidence=clamp(best.confidence * ALTERNATIVE_CONFIDENCE_FACTOR),
                reasoning=(f"Based on successful pattern '{best.id}'",),
                impact=Impact(0.6, 0.6, 0.6),
                created_at=candidate.created_at,
            ))
        if candidate.action != FALLBACK_ACTION:
            impact = candidate.impact
            alternatives.append(Decision(
                action=FALLBACK_ACTION,
                confidence=self.min_confidence,
                reasoning=("Conservative alternative to maintain current state",),
                impact=Impact(
                    max(0.5, impact.health * CONSERVATIVE_IMPACT_FACTOR),
                    max(0.5, impact.productivity * CONSERVATIVE_IMPACT_FACTOR),
                    max(0.5, impact.comfort * CONSERVATIVE_IMPACT_FACTOR),
                ),
                created_at=candidate.created_at,
            ))
        return alternatives

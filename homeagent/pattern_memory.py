"""
Pattern Memory - Kurzzeit-Gedaechtnis und gelernte Behavior-Patterns.

Ein expliziter Store pro Engine (kein Modul-Zustand):
  - Kurzzeit-Gedaechtnis: Entscheidungen, Aktionen, Beobachtungen (bounded)
  - Live-Patterns: (Aktion, Tageszeit) → Konfidenz, Frequenz, Zeit-Tags, Outcomes
  - Schwellwerte und Erfolgsstatistik pro Aktion

Lernregeln:
  - Konfidenz wird nie ueberschrieben, sondern exponentiell geglaettet
    (new = old * (1 - alpha) + incoming * alpha)
  - Schwellwert pro Aktion: Erfolg → max(MIN, t * 0.95), Fehler → min(0.95, t * 1.05)
  - Patterns aelter als die Retention werden mit archived=True in den
    Vektor-Index geschrieben und erst danach aus dem Live-Speicher entfernt

Persistenz ueber den Key-Value-Store (agent_memory, agent_context,
agent_patterns). Speicher-Fehler werden geloggt und sind nie fatal.
"""

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, TypeVar

from .config import section
from .constants import (
    HISTORY_FACTOR_BASELINE,
    KV_AGENT_CONTEXT,
    KV_AGENT_MEMORY,
    KV_AGENT_PATTERNS,
    LEARNING_RATE,
    MAX_ACTION_THRESHOLD,
    MEMORY_MAX_PERSISTED_ITEMS,
    MEMORY_RETENTION_DAYS,
    MIN_CONFIDENCE_THRESHOLD,
    PATTERN_TOP_K,
    RECENT_MEMORY_HOURS,
    SHORT_TERM_MAX_ITEMS,
    SWEEP_INTERVAL_SECONDS,
)
from .exceptions import MalformedResponseError, StorageError, TransientProviderError
from .inference import InferenceService
from .kv_store import KeyValueStore
from .models import (
    BehaviorPattern,
    Context,
    Decision,
    HistoricalSummary,
    MemoryItem,
    MemoryType,
    Outcome,
    PatternMatch,
    period_of_day,
)
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fehler externer Speicher, die den Zyklus nicht abbrechen duerfen
_NON_FATAL = (StorageError, TransientProviderError, MalformedResponseError)


def pattern_key(action: str, when: datetime) -> str:
    return f"{action}_{period_of_day(when.hour)}"


def time_tags(when: datetime) -> set[str]:
    return {f"{when.hour:02d}h", period_of_day(when.hour)}


def archive_id(pattern: BehaviorPattern) -> str:
    """Eigene Index-Id pro Archiv-Stand, ein wiederkehrender Key ueberschreibt ihn nicht."""
    return f"{pattern.key}:archived:{pattern.last_updated.isoformat()}"


class PatternMemory:
    """Gedaechtnis einer Engine-Instanz."""

    def __init__(
        self,
        kv_store: Optional[KeyValueStore] = None,
        vector_index: Optional[VectorIndex] = None,
        inference: Optional[InferenceService] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        cfg = section("memory")
        self.learning_rate = float(cfg.get("learning_rate", LEARNING_RATE))
        self.retention = timedelta(days=float(cfg.get("retention_days", MEMORY_RETENTION_DAYS)))
        self.recent_window = timedelta(hours=float(cfg.get("recent_hours", RECENT_MEMORY_HOURS)))
        self.top_k = int(cfg.get("top_k", PATTERN_TOP_K))
        self.max_items = int(cfg.get("max_items", MEMORY_MAX_PERSISTED_ITEMS))
        self.sweep_interval = timedelta(
            seconds=float(cfg.get("sweep_interval_seconds", SWEEP_INTERVAL_SECONDS))
        )
        self.min_confidence = float(section("agent").get("min_confidence", MIN_CONFIDENCE_THRESHOLD))

        self.kv = kv_store
        self.index = vector_index
        self.inference = inference
        self._clock = clock

        self._patterns: dict[str, BehaviorPattern] = {}
        self._short_term: deque[MemoryItem] = deque(maxlen=SHORT_TERM_MAX_ITEMS)
        self._thresholds: dict[str, float] = {}
        # action -> {"success": n, "total": n}
        self._action_stats: dict[str, dict[str, int]] = {}
        self._last_sweep: Optional[datetime] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Stellt Gedaechtnis aus dem Key-Value-Store wieder her.

        Kaputte Daten fuehren zu leerem Zustand, nie zu einem Absturz.
        """
        if self.kv is None:
            return
        items = await self._best_effort("agent_memory laden", self.kv.get_list(KV_AGENT_MEMORY)) or []
        cutoff = self._clock() - self.recent_window
        restored = 0
        for raw in items:
            try:
                item = MemoryItem.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError):
                continue
            if item.timestamp >= cutoff:
                self._short_term.append(item)
                restored += 1

        snapshot = await self._best_effort("agent_patterns laden", self.kv.get(KV_AGENT_PATTERNS))
        if isinstance(snapshot, dict):
            for raw in snapshot.get("patterns") or []:
                try:
                    pattern = BehaviorPattern.from_dict(raw)
                except (KeyError, TypeError, ValueError, AttributeError):
                    continue
                self._patterns[pattern.key] = pattern
            thresholds = snapshot.get("thresholds")
            if isinstance(thresholds, dict):
                self._thresholds = {
                    str(k): float(v) for k, v in thresholds.items() if isinstance(v, (int, float))
                }
            stats = snapshot.get("action_stats")
            if isinstance(stats, dict):
                self._action_stats = {
                    str(k): {"success": int(v.get("success", 0)), "total": int(v.get("total", 0))}
                    for k, v in stats.items() if isinstance(v, dict)
                }
        elif snapshot is not None:
            logger.warning("agent_patterns hat unerwartetes Format, starte leer")

        logger.info("PatternMemory geladen (%d Patterns, %d Erinnerungen)",
                    len(self._patterns), restored)

    async def close(self) -> None:
        if self._closed:
            return
        await self._persist_patterns()
        self._closed = True

    # ------------------------------------------------------------------
    # Lernen
    # ------------------------------------------------------------------

    async def record_decision(self, decision: Decision, context: Context) -> BehaviorPattern:
        """Merkt sich eine akzeptierte Entscheidung und aktualisiert ihr Pattern."""
        now = self._clock()
        key = pattern_key(decision.action, decision.created_at)
        pattern = self._patterns.get(key)
        if pattern is None:
            pattern = BehaviorPattern(
                key=key,
                action=decision.action,
                confidence=decision.confidence,
                time_context=time_tags(context.timestamp),
                last_updated=now,
            )
            self._patterns[key] = pattern
        else:
            pattern.merge(decision.confidence, time_tags(context.timestamp), self.learning_rate, now)

        await self._remember(MemoryItem(MemoryType.DECISION, {
            "action": decision.action,
            "confidence": round(decision.confidence, 4),
            "reasoning": list(decision.reasoning),
            "pattern": key,
            "time_of_day": context.time_of_day,
        }, now))
        await self._index_pattern(pattern, context.signature(), "decision")
        await self._persist_patterns()
        await self.maybe_sweep()
        return pattern

    async def record_outcome(self, decision: Decision, outcome: Outcome) -> BehaviorPattern:
        """Verbucht das Ergebnis einer Aktion (Tally, Konfidenz, Schwellwert)."""
        now = self._clock()
        success = outcome.succeeded
        key = pattern_key(decision.action, decision.created_at)
        pattern = self._patterns.get(key)
        if pattern is None:
            pattern = BehaviorPattern(
                key=key,
                action=decision.action,
                confidence=decision.confidence,
                time_context=time_tags(decision.created_at),
                frequency=0,
                last_updated=now,
            )
            self._patterns[key] = pattern
        pattern.record_outcome(success, self.learning_rate, now)

        stats = self._action_stats.setdefault(decision.action, {"success": 0, "total": 0})
        stats["total"] += 1
        if success:
            stats["success"] += 1
        self._adjust_threshold(decision.action, success)

        await self._remember(MemoryItem(MemoryType.ACTION, {
            "action": decision.action,
            "success": success,
            "detail": outcome.detail,
            "duration": round(outcome.duration, 3),
            "pattern": key,
        }, now))
        signature = f"action={decision.action} period={period_of_day(decision.created_at.hour)}"
        await self._index_pattern(pattern, signature, "outcome")
        await self._persist_patterns()
        return pattern

    async def record_observation(self, kind: str, content: dict,
                                 when: Optional[datetime] = None) -> BehaviorPattern:
        """Beobachtung (z.B. Health-Sample) als Pattern-Input merken."""
        now = self._clock()
        when = when or now
        action = f"observe_{kind}"
        key = pattern_key(action, when)
        pattern = self._patterns.get(key)
        if pattern is None:
            pattern = BehaviorPattern(key=key, action=action, confidence=1.0,
                                      time_context=time_tags(when), last_updated=now)
            self._patterns[key] = pattern
        else:
            pattern.merge(1.0, time_tags(when), self.learning_rate, now)
        await self._remember(MemoryItem(MemoryType.OBSERVATION, {"kind": kind, **content}, now))
        return pattern

    def _adjust_threshold(self, action: str, success: bool) -> None:
        current = self._thresholds.get(action, self.min_confidence)
        if success:
            updated = max(self.min_confidence, current * 0.95)
        else:
            updated = min(MAX_ACTION_THRESHOLD, current * 1.05)
        if updated != current:
            logger.debug("Schwellwert %s: %.3f -> %.3f", action, current, updated)
        self._thresholds[action] = updated

    # ------------------------------------------------------------------
    # Abfragen
    # ------------------------------------------------------------------

    async def relevant_patterns(self, context: Context,
                                top_k: Optional[int] = None) -> list[PatternMatch]:
        """Aehnlichste Patterns zum Kontext, aehnlichste zuerst, max. top_k.

        Ohne Vektor-Index (oder bei Fehlern) wird auf die Live-Patterns der
        gleichen Tageszeit zurueckgefallen.
        """
        k = top_k or self.top_k
        await self.maybe_sweep()
        if self.index is None or self.inference is None:
            return self._local_matches(context, k)
        try:
            vector = await self.inference.embed(context.signature())
            matches = await self.index.query(vector, k)
        except _NON_FATAL as e:
            logger.warning("Pattern-Suche fehlgeschlagen, nutze Live-Patterns: %s", e)
            return self._local_matches(context, k)

        # Live-Konfidenz ist aktueller als die Metadaten im Index
        refreshed = []
        for match in matches:
            live = self._patterns.get(match.metadata.get("pattern", match.id))
            if live is not None:
                match = PatternMatch(match.id, match.score, live.action, live.confidence, match.metadata)
            refreshed.append(match)
        refreshed.sort(key=lambda m: m.score, reverse=True)
        return refreshed[:k]

    def _local_matches(self, context: Context, k: int) -> list[PatternMatch]:
        matches = []
        for pattern in self._patterns.values():
            if pattern.action.startswith("observe_"):
                continue
            score = 1.0 if context.period in pattern.time_context else 0.5
            matches.append(PatternMatch(pattern.key, score, pattern.action,
                                        pattern.confidence, pattern.to_metadata()))
        matches.sort(key=lambda m: (m.score, m.confidence), reverse=True)
        return matches[:k]

    def successful_patterns(self, matches: list[PatternMatch]) -> list[PatternMatch]:
        return [m for m in matches if m.confidence > self.min_confidence]

    def recent_memory(self, window: Optional[timedelta] = None) -> list[MemoryItem]:
        cutoff = self._clock() - (window or self.recent_window)
        return [item for item in self._short_term if item.timestamp >= cutoff]

    def history_factor(self, action: str) -> float:
        """0.5 ohne Historie, sonst 0.5 + 0.5 * Erfolgsquote der Aktion."""
        stats = self._action_stats.get(action)
        if not stats or not stats["total"]:
            return HISTORY_FACTOR_BASELINE
        rate = stats["success"] / stats["total"]
        return HISTORY_FACTOR_BASELINE + (1 - HISTORY_FACTOR_BASELINE) * rate

    def action_threshold(self, action: str) -> float:
        return self._thresholds.get(action, self.min_confidence)

    def get(self, key: str) -> Optional[BehaviorPattern]:
        return self._patterns.get(key)

    @property
    def patterns(self) -> dict[str, BehaviorPattern]:
        return dict(self._patterns)

    def historical_summary(self, limit: int = 10) -> HistoricalSummary:
        recent = sorted(self._patterns.values(), key=lambda p: p.last_updated, reverse=True)[:limit]
        if not recent:
            return HistoricalSummary()
        return HistoricalSummary(
            patterns=tuple({
                "key": p.key,
                "action": p.action,
                "frequency": p.frequency,
                "time_context": sorted(p.time_context),
                "last_occurred": p.last_updated.isoformat(),
            } for p in recent),
            start=min(p.last_updated for p in recent),
            end=max(p.last_updated for p in recent),
        )

    def snapshot(self) -> dict:
        """Zustand fuer Diagnose-Endpoints."""
        return {
            "patterns": [p.to_dict() for p in self._patterns.values()],
            "recent": [item.to_dict() for item in self.recent_memory()],
            "thresholds": dict(self._thresholds),
            "action_stats": {k: dict(v) for k, v in self._action_stats.items()},
        }

    # ------------------------------------------------------------------
    # Archivierung
    # ------------------------------------------------------------------

    async def maybe_sweep(self) -> int:
        now = self._clock()
        if self._last_sweep and now - self._last_sweep < self.sweep_interval:
            return 0
        return await self.sweep(now)

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Archiviert veraltete Patterns. Evicted wird nur nach erfolgreichem Upsert."""
        now = now or self._clock()
        self._last_sweep = now
        stale = [p for p in self._patterns.values() if now - p.last_updated > self.retention]
        if not stale:
            return 0
        if self.index is None or self.inference is None:
            logger.debug("%d veraltete Patterns, aber kein Vektor-Index zum Archivieren", len(stale))
            return 0

        archived = 0
        for pattern in stale:
            text = f"action={pattern.action} context={' '.join(sorted(pattern.time_context))}"
            try:
                vector = await self.inference.embed(text)
                await self.index.upsert(archive_id(pattern), vector, {
                    **pattern.to_metadata(), "type": "pattern", "archived": True,
                })
            except _NON_FATAL as e:
                logger.warning("Pattern %s nicht archiviert, bleibt live: %s", pattern.key, e)
                continue
            # Kann waehrend des awaits aktualisiert worden sein
            current = self._patterns.get(pattern.key)
            if current is pattern and now - pattern.last_updated > self.retention:
                del self._patterns[pattern.key]
                archived += 1

        if archived:
            logger.info("%d Patterns archiviert", archived)
            await self._persist_patterns()
        return archived

    # ------------------------------------------------------------------
    # Persistenz
    # ------------------------------------------------------------------

    async def save_context(self, context: Context) -> None:
        if self.kv is None:
            return
        await self._best_effort("agent_context speichern", self.kv.set(KV_AGENT_CONTEXT, context.to_dict()))

    async def _remember(self, item: MemoryItem) -> None:
        self._short_term.append(item)
        if self.kv is None:
            return
        await self._best_effort(
            "agent_memory schreiben",
            self.kv.append(KV_AGENT_MEMORY, item.to_dict(), self.max_items),
        )

    async def _index_pattern(self, pattern: BehaviorPattern, signature: str, kind: str) -> None:
        if self.index is None or self.inference is None:
            return
        try:
            vector = await self.inference.embed(f"{signature} action={pattern.action}")
            await self.index.upsert(pattern.key, vector, {
                **pattern.to_metadata(), "type": kind, "archived": False,
            })
        except _NON_FATAL as e:
            logger.warning("Pattern %s nicht indexiert: %s", pattern.key, e)

    async def _persist_patterns(self) -> None:
        if self.kv is None:
            return
        await self._best_effort("agent_patterns speichern", self.kv.set(KV_AGENT_PATTERNS, {
            "patterns": [p.to_dict() for p in self._patterns.values()],
            "thresholds": dict(self._thresholds),
            "action_stats": {k: dict(v) for k, v in self._action_stats.items()},
        }))

    async def _best_effort(self, what: str, awaitable: Awaitable[T]) -> Optional[T]:
        try:
            return await awaitable
        except _NON_FATAL as e:
            logger.warning("%s fehlgeschlagen: %s", what, e)
            return None

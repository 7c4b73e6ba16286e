"""
Zentrale Konstanten fuer den HomeAgent.

Sammelt Schwellwerte, Intervalle, Limits und Storage-Keys
an einem Ort statt sie ueber alle Module zu verstreuen.
"""

from typing import Final

# ============================================================
# Entscheidungen
# ============================================================

MIN_CONFIDENCE_THRESHOLD: Final[float] = 0.7
MAX_ACTION_THRESHOLD: Final[float] = 0.95
LEARNING_RATE: Final[float] = 0.1

# Gewichte der kontextuellen Konfidenz
CONTEXT_WEIGHT_TIME: Final[float] = 0.3
CONTEXT_WEIGHT_ENVIRONMENT: Final[float] = 0.3
CONTEXT_WEIGHT_PATTERN: Final[float] = 0.4

MIN_INFERENCE_TEMPERATURE: Final[float] = 0.1

# Risiko-Gewichte pro Schweregrad
RISK_WEIGHTS: Final[dict] = {"high": 0.3, "medium": 0.1, "low": 0.05}

BUSINESS_HOURS: Final[tuple] = (9, 17)
COMFORT_WEATHER_RANGE: Final[tuple] = (20.0, 25.0)
EXTREME_WEATHER_RANGE: Final[tuple] = (18.0, 27.0)
QUIET_HOURS: Final[tuple] = (7, 22)

# Vorhersage: Trend ab +-2 Grad, Vorbereitung bei Tief < 10 oder Hoch > 30
FORECAST_TREND_DELTA: Final[float] = 2.0
FORECAST_PREPARATION_RANGE: Final[tuple] = (10.0, 30.0)

FREQUENT_PATTERN_LIMIT: Final[int] = 5

# Mehr schwache Patterns als das → operationales Risiko
MAX_LOW_CONFIDENCE_PATTERNS: Final[int] = 3

ALTERNATIVE_CONFIDENCE_FACTOR: Final[float] = 0.9
CONSERVATIVE_IMPACT_FACTOR: Final[float] = 0.7

FALLBACK_ACTION: Final[str] = "maintain_current_state"
NO_ACTION: Final[str] = "none"

# ============================================================
# Pattern Memory
# ============================================================

MEMORY_RETENTION_DAYS: Final[int] = 7
RECENT_MEMORY_HOURS: Final[int] = 24
PATTERN_TOP_K: Final[int] = 5
SHORT_TERM_MAX_ITEMS: Final[int] = 200
MEMORY_MAX_PERSISTED_ITEMS: Final[int] = 500
SWEEP_INTERVAL_SECONDS: Final[int] = 3600
HISTORY_FACTOR_BASELINE: Final[float] = 0.5

# Key-Value Namespaces
KV_AGENT_MEMORY: Final[str] = "agent_memory"
KV_AGENT_CONTEXT: Final[str] = "agent_context"
KV_AGENT_PATTERNS: Final[str] = "agent_patterns"
KV_USER_PREFERENCES: Final[str] = "user_preferences"

# ============================================================
# Sensoren (Sekunden)
# ============================================================

SENSOR_POLL_INTERVAL: Final[float] = 5.0
SENSOR_ANOMALY_INTERVAL: Final[float] = 10.0
SENSOR_PREDICTIVE_INTERVAL: Final[float] = 20.0
SENSOR_ALERT_COOLDOWN: Final[int] = 300
SENSOR_HISTORY_SIZE: Final[int] = 12

ANOMALY_POWER_LIMIT: Final[float] = 5000.0
ANOMALY_OCCUPANCY_LIMIT: Final[int] = 10
ANOMALY_WIFI_DEVICE_LIMIT: Final[int] = 20
PREDICTIVE_POWER_LIMIT: Final[float] = 4000.0
PREDICTIVE_TEMP_MARGIN: Final[float] = 2.0
PREDICTIVE_CO2_RISE: Final[float] = 200.0

# ============================================================
# Scheduler (Sekunden)
# ============================================================

SCHEDULER_INITIAL_INTERVAL: Final[float] = 15 * 60
SCHEDULER_MIN_INTERVAL: Final[float] = 5 * 60
SCHEDULER_MAX_INTERVAL: Final[float] = 60 * 60
SCHEDULER_SHRINK_FACTOR: Final[float] = 0.8
SCHEDULER_GROW_FACTOR: Final[float] = 1.2
SCHEDULER_HIGH_FAILURE_RATE: Final[float] = 0.2
SCHEDULER_LOW_FAILURE_RATE: Final[float] = 0.1
SCHEDULER_OUTCOME_WINDOW: Final[int] = 20
SCHEDULER_OPPORTUNISTIC_EVERY: Final[int] = 3
SCHEDULER_NIGHT_START: Final[int] = 22
SCHEDULER_NIGHT_END: Final[int] = 6
SCHEDULER_SHUTDOWN_TIMEOUT: Final[float] = 30.0

INITIAL_PRIORITY_TASKS: Final[frozenset] = frozenset({"health", "security"})

# ============================================================
# Inference (Sekunden)
# ============================================================

LLM_TIMEOUT_COMPLETE: Final[int] = 60
LLM_TIMEOUT_EMBED: Final[int] = 15
LLM_DEFAULT_MAX_TOKENS: Final[int] = 512

# ============================================================
# Circuit Breaker: (Fehler bis OPEN, Sekunden bis HALF_OPEN)
# ============================================================

BREAKER_DEFAULTS: Final[dict] = {
    "ollama": (3, 30.0),
    "chromadb": (5, 60.0),
    "redis": (3, 15.0),
}

"""
Datenmodell des HomeAgent.

Kontext-Snapshots, Sensor-Readings und -Analysen, Behavior-Patterns,
Entscheidungen, Outcomes und die geschlossene Menge an Aktionstypen.

Alle Records sind Dataclasses mit to_dict() (JSON-kompatibel). Was
persistiert wird, hat zusaetzlich from_dict() und ist tolerant gegenueber
fehlenden oder kaputten Feldern.
"""

import dataclasses
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from .exceptions import UnknownActionType


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Begrenzt einen Wert auf [low, high]."""
    return max(low, min(high, float(value)))


def to_jsonable(obj: Any) -> Any:
    """Wandelt Dataclasses, Enums, Sets und Datumswerte rekursiv in JSON-Typen."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (set, frozenset)):
        return sorted(to_jsonable(v) for v in obj)
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]
    return obj


def _as_float(raw: Any, default: float = 0.0) -> float:
    """float(raw), bei Muell, inf oder nan der Default."""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


def _naive_local(value: datetime) -> datetime:
    # Die Engine rechnet mit naiver Lokalzeit, Offsets werden umgerechnet
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _parse_datetime(raw: Any, default: Optional[datetime] = None) -> datetime:
    if isinstance(raw, datetime):
        return _naive_local(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return _naive_local(datetime.fromisoformat(text))
        except ValueError:
            pass
    return default or datetime.now()


def period_of_day(hour: int) -> str:
    """Tageszeit-Bucket fuer Pattern-Keys."""
    if hour < 6:
        return "night"
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


# ============================================================
# Wetter, Praeferenzen, Historie
# ============================================================

class WeatherCondition(str, Enum):
    CLEAR = "clear"
    CLOUDY = "cloudy"
    RAIN = "rain"
    SNOW = "snow"
    STORM = "storm"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> "WeatherCondition":
        try:
            return cls(str(raw).lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class ForecastDay:
    day: date
    high: float
    low: float
    condition: WeatherCondition = WeatherCondition.UNKNOWN
    precipitation: float = 0.0
    wind_speed: Optional[float] = None


@dataclass(frozen=True)
class WeatherData:
    temperature: float
    humidity: float
    condition: WeatherCondition = WeatherCondition.UNKNOWN
    forecast: tuple[ForecastDay, ...] = ()
    last_updated: datetime = field(default_factory=datetime.now)
    known: bool = True

    @classmethod
    def unknown(cls) -> "WeatherData":
        """Neutrales Wetter wenn kein Provider liefert."""
        return cls(temperature=0.0, humidity=0.0, known=False)

    @classmethod
    def from_dict(cls, data: dict) -> "WeatherData":
        forecast = []
        for day in data.get("forecast") or []:
            try:
                forecast.append(ForecastDay(
                    day=date.fromisoformat(str(day.get("day") or day.get("date"))[:10]),
                    high=_as_float(day.get("high")),
                    low=_as_float(day.get("low")),
                    condition=WeatherCondition.parse(day.get("condition")),
                    precipitation=_as_float(day.get("precipitation")),
                    wind_speed=day.get("wind_speed"),
                ))
            except (AttributeError, ValueError):
                continue
        return cls(
            temperature=_as_float(data.get("temperature")),
            humidity=_as_float(data.get("humidity")),
            condition=WeatherCondition.parse(data.get("condition")),
            forecast=tuple(forecast),
            last_updated=_parse_datetime(data.get("last_updated")),
            known=bool(data.get("known", True)),
        )


@dataclass(frozen=True)
class LightingSlot:
    time: str
    brightness: int
    color: Optional[str] = None


@dataclass(frozen=True)
class UserPreferences:
    temperature_min: float = 20.0
    temperature_max: float = 24.0
    lighting_schedule: tuple[LightingSlot, ...] = ()
    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_dict(cls, data: dict) -> "UserPreferences":
        temp = data.get("temperature") or {}
        slots = []
        for slot in data.get("lighting_schedule") or []:
            if isinstance(slot, dict) and slot.get("time"):
                slots.append(LightingSlot(
                    time=str(slot["time"]),
                    brightness=int(clamp(_as_float(slot.get("brightness"), 100), 0, 100)),
                    color=slot.get("color"),
                ))
        return cls(
            temperature_min=_as_float(temp.get("min", data.get("temperature_min")), 20.0),
            temperature_max=_as_float(temp.get("max", data.get("temperature_max")), 24.0),
            lighting_schedule=tuple(slots),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class HistoricalSummary:
    """Kurzreferenz auf die aktuell bekannten Patterns."""
    patterns: tuple[dict, ...] = ()
    start: Optional[datetime] = None
    end: Optional[datetime] = None


# ============================================================
# Sensoren
# ============================================================

# Physikalisch gueltige Wertebereiche (min, max) pro Feld
SENSOR_RANGES: dict[str, tuple[float, float]] = {
    "temperature": (-10.0, 50.0),
    "humidity": (0.0, 100.0),
    "co2": (0.0, 5000.0),
    "tvoc": (0.0, 2000.0),
    "pm25": (0.0, 500.0),
    "pm10": (0.0, 500.0),
    "pressure": (900.0, 1100.0),
    "light": (0.0, 10000.0),
    "noise": (0.0, 100.0),
    "count": (0.0, 100.0),
    "power": (0.0, 50000.0),
    "voltage": (0.0, 500.0),
    "current": (0.0, 200.0),
    "frequency": (0.0, 100.0),
    "power_factor": (0.0, 1.0),
    "signal_strength": (-120.0, 0.0),
    "wifi_devices": (0.0, 1000.0),
    "bluetooth_devices": (0.0, 1000.0),
    "bandwidth": (0.0, 10000.0),
}


def _clamped(source: dict, name: str, default: float) -> float:
    low, high = SENSOR_RANGES[name]
    return clamp(_as_float(source.get(name), default), low, high)


def _flags(raw: Any) -> dict[str, bool]:
    if isinstance(raw, dict):
        return {str(k): bool(v) for k, v in raw.items()}
    return {}


@dataclass(frozen=True)
class EnvironmentalReading:
    temperature: float = 22.0
    humidity: float = 45.0
    co2: float = 400.0
    tvoc: float = 0.0
    pm25: float = 0.0
    pm10: float = 0.0
    pressure: float = 1013.0
    light: float = 300.0
    noise: float = 35.0


@dataclass(frozen=True)
class OccupancyReading:
    motion: bool = False
    presence: bool = False
    count: int = 0
    activity: str = "idle"
    locations: tuple[str, ...] = ()


@dataclass(frozen=True)
class SecurityReading:
    doors: dict[str, bool] = field(default_factory=dict)
    windows: dict[str, bool] = field(default_factory=dict)
    cameras: dict[str, bool] = field(default_factory=dict)
    smoke: bool = False
    co: bool = False
    water: bool = False

    @property
    def open_doors(self) -> list[str]:
        return [name for name, is_open in self.doors.items() if is_open]

    @property
    def open_windows(self) -> list[str]:
        return [name for name, is_open in self.windows.items() if is_open]


@dataclass(frozen=True)
class EnergyReading:
    power: float = 0.0
    voltage: float = 230.0
    current: float = 0.0
    frequency: float = 50.0
    power_factor: float = 1.0


@dataclass(frozen=True)
class NetworkReading:
    signal_strength: float = -50.0
    wifi_devices: int = 0
    bluetooth_devices: int = 0
    bandwidth: float = 0.0


@dataclass(frozen=True)
class SensorReading:
    """Ein vollstaendiger Sensor-Snapshot, alle Werte bereits geklemmt."""
    environmental: EnvironmentalReading = field(default_factory=EnvironmentalReading)
    occupancy: OccupancyReading = field(default_factory=OccupancyReading)
    security: SecurityReading = field(default_factory=SecurityReading)
    energy: EnergyReading = field(default_factory=EnergyReading)
    network: NetworkReading = field(default_factory=NetworkReading)
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_raw(cls, raw: dict, timestamp: Optional[datetime] = None) -> "SensorReading":
        """Baut ein Reading aus Rohdaten und klemmt jedes numerische Feld.

        Akzeptiert verschachtelte Kategorien ({"environmental": {...}}) oder
        flache Felder ({"co2": 2500, "smoke": False}).
        """
        def part(name: str) -> dict:
            value = raw.get(name)
            return value if isinstance(value, dict) else raw

        env = part("environmental")
        occ = part("occupancy")
        sec = part("security")
        energy = part("energy")
        net = part("network")

        locations = occ.get("locations") or ()
        if isinstance(locations, str):
            locations = (locations,)

        return cls(
            environmental=EnvironmentalReading(
                temperature=_clamped(env, "temperature", 22.0),
                humidity=_clamped(env, "humidity", 45.0),
                co2=_clamped(env, "co2", 400.0),
                tvoc=_clamped(env, "tvoc", 0.0),
                pm25=_clamped(env, "pm25", 0.0),
                pm10=_clamped(env, "pm10", 0.0),
                pressure=_clamped(env, "pressure", 1013.0),
                light=_clamped(env, "light", 300.0),
                noise=_clamped(env, "noise", 35.0),
            ),
            occupancy=OccupancyReading(
                motion=bool(occ.get("motion", False)),
                presence=bool(occ.get("presence", False)),
                count=int(_clamped(occ, "count", 0)),
                activity=str(occ.get("activity") or "idle"),
                locations=tuple(str(loc) for loc in locations),
            ),
            security=SecurityReading(
                doors=_flags(sec.get("doors")),
                windows=_flags(sec.get("windows")),
                cameras=_flags(sec.get("cameras")),
                smoke=bool(sec.get("smoke", False)),
                co=bool(sec.get("co", False)),
                water=bool(sec.get("water", False)),
            ),
            energy=EnergyReading(
                power=_clamped(energy, "power", 0.0),
                voltage=_clamped(energy, "voltage", 230.0),
                current=_clamped(energy, "current", 0.0),
                frequency=_clamped(energy, "frequency", 50.0),
                power_factor=_clamped(energy, "power_factor", 1.0),
            ),
            network=NetworkReading(
                signal_strength=_clamped(net, "signal_strength", -50.0),
                wifi_devices=int(_clamped(net, "wifi_devices", 0)),
                bluetooth_devices=int(_clamped(net, "bluetooth_devices", 0)),
                bandwidth=_clamped(net, "bandwidth", 0.0),
            ),
            timestamp=timestamp or datetime.now(),
        )


@dataclass(frozen=True)
class SensorAlert:
    metric: str
    level: str  # warning | critical | anomaly | prediction
    value: float
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_critical(self) -> bool:
        return self.level == "critical"

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass(frozen=True)
class ComfortScores:
    thermal: float
    air: float
    light: float
    noise: float
    overall: float


@dataclass(frozen=True)
class SafetyAssessment:
    risk: float
    alerts: tuple[SensorAlert, ...] = ()
    recommendations: tuple[str, ...] = ()


@dataclass(frozen=True)
class EfficiencyAssessment:
    energy: float
    resource: float
    optimizations: tuple[str, ...] = ()


@dataclass(frozen=True)
class ActivityAssessment:
    patterns: tuple[str, ...] = ()
    anomalies: tuple[str, ...] = ()
    predictions: tuple[str, ...] = ()


@dataclass(frozen=True)
class SensorAnalysis:
    comfort: ComfortScores
    safety: SafetyAssessment
    efficiency: EfficiencyAssessment
    activity: ActivityAssessment
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return to_jsonable(self)


# ============================================================
# Kontext
# ============================================================

@dataclass(frozen=True)
class Context:
    """Unveraenderlicher Snapshot pro Zyklus."""
    timestamp: datetime
    occupancy: bool
    weather: WeatherData
    preferences: UserPreferences
    history: HistoricalSummary = field(default_factory=HistoricalSummary)
    sensors: Optional[SensorAnalysis] = None

    @property
    def hour(self) -> int:
        return self.timestamp.hour

    @property
    def time_of_day(self) -> str:
        return self.timestamp.strftime("%H:%M")

    @property
    def period(self) -> str:
        return period_of_day(self.hour)

    def signature(self) -> str:
        """Kompakte Textform fuer Embeddings."""
        parts = [
            f"period={self.period}",
            f"hour={self.hour}",
            f"occupied={'yes' if self.occupancy else 'no'}",
        ]
        if self.weather.known:
            parts.append(f"weather={self.weather.condition.value} {self.weather.temperature:.0f}C")
        if self.sensors:
            parts.append(f"comfort={self.sensors.comfort.overall:.1f}")
            parts.append(f"risk={self.sensors.safety.risk:.1f}")
        return " ".join(parts)

    def to_dict(self) -> dict:
        data = to_jsonable(self)
        data["time_of_day"] = self.time_of_day
        return data


# ============================================================
# Patterns
# ============================================================

@dataclass
class BehaviorPattern:
    key: str
    action: str
    confidence: float
    frequency: int = 1
    time_context: set[str] = field(default_factory=set)
    outcomes: dict[str, int] = field(default_factory=lambda: {"positive": 0, "negative": 0})
    last_updated: datetime = field(default_factory=datetime.now)

    def merge(self, incoming: float, tags: set[str], alpha: float, now: datetime) -> None:
        """Exponentielle Glaettung statt Ueberschreiben."""
        self.confidence = clamp(self.confidence * (1 - alpha) + clamp(incoming) * alpha)
        self.frequency += 1
        self.time_context |= tags
        self.last_updated = now

    def record_outcome(self, success: bool, alpha: float, now: datetime) -> None:
        self.outcomes["positive" if success else "negative"] += 1
        target = 1.0 if success else 0.0
        self.confidence = clamp(self.confidence * (1 - alpha) + target * alpha)
        self.last_updated = now

    @property
    def total_outcomes(self) -> int:
        return self.outcomes.get("positive", 0) + self.outcomes.get("negative", 0)

    def to_dict(self) -> dict:
        return to_jsonable(self)

    def to_metadata(self) -> dict:
        """Flache Metadaten fuer den Vektor-Index (nur Skalare)."""
        return {
            "pattern": self.key,
            "action": self.action,
            "confidence": round(self.confidence, 4),
            "frequency": self.frequency,
            "time_context": ",".join(sorted(self.time_context)),
            "positive": self.outcomes.get("positive", 0),
            "negative": self.outcomes.get("negative", 0),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BehaviorPattern":
        outcomes = data.get("outcomes") or {}
        return cls(
            key=str(data["key"]),
            action=str(data["action"]),
            confidence=clamp(_as_float(data.get("confidence"), 0.5)),
            frequency=int(data.get("frequency", 1)),
            time_context=set(data.get("time_context") or []),
            outcomes={
                "positive": int(outcomes.get("positive", 0)),
                "negative": int(outcomes.get("negative", 0)),
            },
            last_updated=_parse_datetime(data.get("last_updated")),
        )


@dataclass(frozen=True)
class PatternMatch:
    """Treffer aus dem Vektor-Index, hoeherer Score = aehnlicher."""
    id: str
    score: float
    action: str = ""
    confidence: float = 0.0
    metadata: dict = field(default_factory=dict)


# ============================================================
# Entscheidungen & Outcomes
# ============================================================

@dataclass(frozen=True)
class Impact:
    health: float = 0.5
    productivity: float = 0.5
    comfort: float = 0.5

    def __post_init__(self):
        for name in ("health", "productivity", "comfort"):
            object.__setattr__(self, name, clamp(getattr(self, name)))

    @classmethod
    def from_dict(cls, data: Any) -> "Impact":
        if not isinstance(data, dict):
            return cls()
        return cls(
            health=_as_float(data.get("health"), 0.5),
            productivity=_as_float(data.get("productivity"), 0.5),
            comfort=_as_float(data.get("comfort"), 0.5),
        )


@dataclass(frozen=True)
class Decision:
    action: str
    confidence: float
    reasoning: tuple[str, ...] = ()
    alternatives: tuple["Decision", ...] = ()
    impact: Impact = field(default_factory=Impact)
    payload: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return to_jsonable(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Decision":
        reasoning = data.get("reasoning") or []
        if isinstance(reasoning, str):
            reasoning = [reasoning]
        return cls(
            action=str(data.get("action", "")),
            confidence=clamp(_as_float(data.get("confidence"))),
            reasoning=tuple(str(r) for r in reasoning),
            alternatives=tuple(
                cls.from_dict(a) for a in data.get("alternatives") or [] if isinstance(a, dict)
            ),
            impact=Impact.from_dict(data.get("impact")),
            payload=dict(data.get("payload") or {}),
            created_at=_parse_datetime(data.get("created_at")),
        )


@dataclass(frozen=True)
class Outcome:
    action: str
    success: Optional[bool] = None
    positive: float = 0.0
    negative: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    duration: float = 0.0
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return bool(self.success) or self.positive > self.negative

    def to_dict(self) -> dict:
        data = to_jsonable(self)
        data["succeeded"] = self.succeeded
        return data


class MemoryType(str, Enum):
    DECISION = "decision"
    ACTION = "action"
    OBSERVATION = "observation"


@dataclass(frozen=True)
class MemoryItem:
    type: MemoryType
    content: dict
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return to_jsonable(self)

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryItem":
        return cls(
            type=MemoryType(data["type"]),
            content=dict(data.get("content") or {}),
            timestamp=_parse_datetime(data.get("timestamp")),
        )


# ============================================================
# Provider-Typen
# ============================================================

class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, raw: Any) -> "Urgency":
        try:
            return cls(str(raw).lower())
        except ValueError:
            return cls.MEDIUM


class Mood(str, Enum):
    WORK = "work"
    RELAX = "relax"
    PARTY = "party"


@dataclass(frozen=True)
class DeliveryItem:
    id: str
    name: str
    quantity: int = 1
    price: float = 0.0
    urgency: Urgency = Urgency.MEDIUM

    @classmethod
    def from_dict(cls, data: dict) -> "DeliveryItem":
        name = str(data.get("name") or data.get("id") or "")
        return cls(
            id=str(data.get("id") or name),
            name=name,
            quantity=max(1, int(_as_float(data.get("quantity"), 1))),
            price=max(0.0, _as_float(data.get("price"))),
            urgency=Urgency.parse(data.get("urgency", "medium")),
        )


@dataclass(frozen=True)
class DeliveryProviderInfo:
    id: str
    name: str
    is_available: bool
    estimated_time: float  # Minuten
    minimum_order: float
    delivery_fee: float


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"


@dataclass(frozen=True)
class Order:
    id: str
    items: tuple[DeliveryItem, ...]
    provider: DeliveryProviderInfo
    status: OrderStatus
    estimated_delivery: datetime
    address: str
    total: float

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass(frozen=True)
class HealthSample:
    kind: str  # steps, heart_rate, active_energy, sleep, weight
    value: float
    unit: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


# ============================================================
# Aktionen (geschlossene Menge, typisierte Payloads)
# ============================================================

class ActionType(str, Enum):
    NONE = "none"
    MAINTAIN_CURRENT_STATE = "maintain_current_state"
    SUGGEST_TASK = "suggest_task"
    ORDER_GROCERIES = "order_groceries"
    OPTIMIZE_ENERGY = "optimize_energy"
    SET_MOOD = "set_mood"
    PREPARE_FOR_SLEEP = "prepare_for_sleep"


@dataclass(frozen=True)
class NoAction:
    reason: str = ""


@dataclass(frozen=True)
class MaintainState:
    pass


@dataclass(frozen=True)
class SuggestTask:
    title: str
    description: str = ""


@dataclass(frozen=True)
class OrderGroceries:
    items: tuple[DeliveryItem, ...]
    urgency: Urgency = Urgency.MEDIUM
    provider_id: Optional[str] = None

    @property
    def order_value(self) -> float:
        return sum(item.price * item.quantity for item in self.items)


@dataclass(frozen=True)
class OptimizeEnergy:
    pass


@dataclass(frozen=True)
class SetMood:
    mood: Mood


@dataclass(frozen=True)
class PrepareForSleep:
    pass


ActionPayload = Union[
    NoAction, MaintainState, SuggestTask, OrderGroceries,
    OptimizeEnergy, SetMood, PrepareForSleep,
]


def _build_payload(action_type: ActionType, data: dict, reasoning: tuple[str, ...]) -> ActionPayload:
    if action_type is ActionType.NONE:
        return NoAction(reason=str(data.get("reason") or (reasoning[0] if reasoning else "")))
    if action_type is ActionType.MAINTAIN_CURRENT_STATE:
        return MaintainState()
    if action_type is ActionType.SUGGEST_TASK:
        title = data.get("title") or (reasoning[0] if reasoning else "")
        if not title:
            raise UnknownActionType("suggest_task ohne Titel")
        return SuggestTask(title=str(title), description=str(data.get("description") or ""))
    if action_type is ActionType.ORDER_GROCERIES:
        items = tuple(DeliveryItem.from_dict(i) for i in data.get("items") or [] if isinstance(i, dict))
        return OrderGroceries(
            items=items,
            urgency=Urgency.parse(data.get("urgency", "medium")),
            provider_id=data.get("provider_id") or None,
        )
    if action_type is ActionType.OPTIMIZE_ENERGY:
        return OptimizeEnergy()
    if action_type is ActionType.SET_MOOD:
        try:
            mood = Mood(str(data.get("mood", "relax")).lower())
        except ValueError as e:
            raise UnknownActionType(f"Unbekannte Stimmung: {data.get('mood')}") from e
        return SetMood(mood=mood)
    if action_type is ActionType.PREPARE_FOR_SLEEP:
        return PrepareForSleep()
    raise UnknownActionType(action_type.value)


@dataclass(frozen=True)
class AgentAction:
    type: ActionType
    payload: ActionPayload

    @classmethod
    def parse(cls, action: str, data: Optional[dict] = None,
              reasoning: tuple[str, ...] = ()) -> "AgentAction":
        """Baut eine typisierte Aktion, wirft UnknownActionType."""
        try:
            action_type = ActionType(str(action).strip().lower())
        except ValueError as e:
            raise UnknownActionType(f"Unbekannter Aktionstyp: {action}") from e
        return cls(type=action_type, payload=_build_payload(action_type, data or {}, reasoning))

    @classmethod
    def from_decision(cls, decision: Decision) -> "AgentAction":
        return cls.parse(decision.action, decision.payload, decision.reasoning)

    @classmethod
    def from_dict(cls, data: dict) -> "AgentAction":
        return cls.parse(data.get("type") or data.get("action") or "", data.get("payload") or {})

    def to_dict(self) -> dict:
        return {"type": self.type.value, "payload": to_jsonable(self.payload)}

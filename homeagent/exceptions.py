"""
HomeAgent Exceptions

Fehler-Hierarchie fuer Engine, externe Dienste und Provider.
"""


class AgentError(Exception):
    """Basis-Exception fuer den HomeAgent."""


class TransientProviderError(AgentError):
    """Externer Dienst voruebergehend nicht erreichbar (Netzwerk, Timeout).

    Wird nie innerhalb eines Zyklus wiederholt, erst im naechsten.
    """


class RateLimited(TransientProviderError):
    """Inference-Dienst hat die Anfrage gedrosselt."""


class MalformedResponseError(AgentError):
    """Antwort des Inference-Dienstes ist nicht verwertbar."""


class InvalidResponse(MalformedResponseError):
    """Inference-Dienst hat eine ungueltige Antwort geliefert."""


class StorageError(AgentError):
    """Key-Value-Store oder Vektor-Index nicht nutzbar."""


class NoSensorData(AgentError):
    """Es wurde noch kein Sensor-Reading empfangen."""


class UnknownActionType(AgentError):
    """Aktion ist keinem bekannten ActionType zugeordnet."""


class ProviderUnavailable(AgentError):
    """Kein Provider fuer die Aktion konfiguriert oder verfuegbar."""


class ProviderError(AgentError):
    """Provider-Call fehlgeschlagen."""


class ProviderUnknown(ProviderError):
    """Provider-ID ist dem Dienst nicht bekannt."""


class RequestFailed(ProviderError):
    """Anfrage an den Provider ist fehlgeschlagen."""

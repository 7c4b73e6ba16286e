"""
Zentrale Konfiguration - liest .env und settings.yaml
"""

import logging
import shutil
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Umgebungsvariablen aus .env"""

    # Ollama (Completion + Embeddings)
    ollama_url: str = "http://localhost:11434"
    model: str = "qwen3:8b"
    embed_model: str = "nomic-embed-text"

    # Redis + ChromaDB
    redis_url: str = "redis://localhost:6379"
    chroma_url: str = "http://localhost:8100"
    chroma_collection: str = "homeagent_patterns"

    # HomeAgent Server
    agent_host: str = "0.0.0.0"
    agent_port: int = 8210
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


def load_yaml_config() -> dict:
    """Laedt settings.yaml, erzeugt sie aus .example wenn sie fehlt."""
    config_path = Path(__file__).parent.parent / "config" / "settings.yaml"
    example_path = config_path.with_suffix(".yaml.example")

    if not config_path.exists() and example_path.exists():
        shutil.copy2(example_path, config_path)

    if config_path.exists():
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f)
                if not isinstance(data, dict):
                    return {}
                return data
        except yaml.YAMLError as e:
            logger.warning("settings.yaml nicht lesbar: %s", e)
            return {}
    return {}


# Globale Instanzen
settings = Settings()
yaml_config = load_yaml_config()

# settings.yaml ueberschreibt .env fuer die Modelle (wenn gesetzt)
_inference = yaml_config.get("inference") or {}
if _inference.get("model"):
    settings.model = _inference["model"]
if _inference.get("embed_model"):
    settings.embed_model = _inference["embed_model"]


def section(name: str) -> dict:
    """Gibt einen Abschnitt aus settings.yaml zurueck (immer ein dict)."""
    value = yaml_config.get(name)
    return value if isinstance(value, dict) else {}

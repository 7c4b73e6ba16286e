"""
Inference - Text-Completion und Embeddings ueber die Ollama REST API.

Vertrag: complete(prompt, temperature) -> str, embed(text) -> list[float].
Fehler werden typisiert gemeldet:
- RateLimited / TransientProviderError: Netzwerk, Timeout, 429, 5xx
- InvalidResponse: leere oder unbrauchbare Antwort

Kein Retry innerhalb eines Zyklus, der naechste Scheduler-Tick versucht es erneut.

Qwen 3 Kompatibilitaet: <think>...</think> Bloecke werden entfernt.
"""

import asyncio
import logging
import re
from typing import Optional, Protocol

import aiohttp

from .circuit_breaker import call_with_breaker, ollama_breaker
from .config import section, settings
from .constants import LLM_DEFAULT_MAX_TOKENS, LLM_TIMEOUT_COMPLETE, LLM_TIMEOUT_EMBED
from .exceptions import InvalidResponse, RateLimited, TransientProviderError

logger = logging.getLogger(__name__)

_THINK_PATTERN = re.compile(r"<think>[\s\S]*?</think>\s*", re.DOTALL)


class InferenceService(Protocol):
    async def complete(self, prompt: str, temperature: float) -> str: ...

    async def embed(self, text: str) -> list[float]: ...


def strip_think_tags(text: str) -> str:
    """Entfernt <think>...</think> Bloecke aus Qwen 3 Antworten."""
    if not text or "<think>" not in text:
        return text
    cleaned = _THINK_PATTERN.sub("", text).strip()
    return cleaned if cleaned else text


class OllamaInference:
    """Asynchroner Ollama-Client mit geteilter Session und Circuit Breaker."""

    def __init__(self, base_url: Optional[str] = None, model: Optional[str] = None,
                 embed_model: Optional[str] = None):
        cfg = section("inference")
        self.base_url = (base_url or settings.ollama_url).rstrip("/")
        self.model = model or settings.model
        self.embed_model = embed_model or settings.embed_model
        self.max_tokens = int(cfg.get("max_tokens", LLM_DEFAULT_MAX_TOKENS))
        self.timeout = float(cfg.get("timeout_seconds", LLM_TIMEOUT_COMPLETE))
        # Shared Session (lazy) spart den TCP-Handshake pro Request
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()
            return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _post(self, path: str, payload: dict, timeout: float) -> dict:
        session = await self._get_session()
        try:
            async with session.post(
                f"{self.base_url}{path}",
                json=payload,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if resp.status == 429:
                    raise RateLimited(f"Ollama drosselt ({path})")
                if resp.status >= 500:
                    error = await resp.text()
                    raise TransientProviderError(f"Ollama Fehler {resp.status}: {error[:200]}")
                if resp.status != 200:
                    error = await resp.text()
                    raise InvalidResponse(f"Ollama Fehler {resp.status}: {error[:200]}")
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise TransientProviderError(f"Ollama Timeout nach {timeout:.0f}s ({path})") from e
        except aiohttp.ContentTypeError as e:
            raise InvalidResponse(f"Ollama lieferte kein JSON: {e}") from e
        except aiohttp.ClientError as e:
            raise TransientProviderError(f"Ollama nicht erreichbar: {e}") from e

    async def complete(self, prompt: str, temperature: float) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
            "think": False,
            "options": {
                "temperature": round(temperature, 3),
                "num_predict": self.max_tokens,
            },
        }
        result = await call_with_breaker(
            ollama_breaker, self._post, "/api/generate", payload, self.timeout,
        )
        text = strip_think_tags(str(result.get("response") or "")).strip()
        if not text:
            raise InvalidResponse("Ollama lieferte eine leere Antwort")
        logger.debug("Completion (%d Zeichen, T=%.2f)", len(text), temperature)
        return text

    async def embed(self, text: str) -> list[float]:
        payload = {"model": self.embed_model, "prompt": text}
        result = await call_with_breaker(
            ollama_breaker, self._post, "/api/embeddings", payload, LLM_TIMEOUT_EMBED,
        )
        vector = result.get("embedding")
        if not isinstance(vector, list) or not vector:
            raise InvalidResponse("Ollama lieferte kein Embedding")
        try:
            return [float(v) for v in vector]
        except (TypeError, ValueError) as e:
            raise InvalidResponse(f"Embedding nicht numerisch: {e}") from e

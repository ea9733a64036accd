# services/ai/llm_service.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple

import httpx

from utils.common_helpers import parse_json_strict


# ============================================================================
# PUBLIC INTERFACE
# ============================================================================

class LLMClient(Protocol):
    model: str

    async def generate_json(self, *, system: str, user: str, temperature: Optional[float] = None) -> str:
        """Return raw text that should be JSON."""


@dataclass
class LLMConfig:
    provider: str = "openai"  # openai | anthropic | cloud
    temperature: float = 0.2

    # OpenAI (or any OpenAI-compatible endpoint)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openai_timeout_s: float = 60.0

    # Anthropic
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-sonnet-latest"
    anthropic_timeout_s: float = 60.0

    # Cloud gateway (optional)
    cloud_base_url: str = ""
    cloud_api_key: str = ""
    cloud_model: str = "cloud"
    cloud_timeout_s: float = 60.0

    @staticmethod
    def from_env() -> "LLMConfig":
        provider = (os.getenv("AI_PROVIDER") or "openai").lower()
        return LLMConfig(
            provider=provider,
            temperature=float(os.getenv("AI_TEMPERATURE", "0.2")),

            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_base_url=os.getenv("OPENAI_BASE_URL") or "https://api.openai.com/v1",
            openai_model=os.getenv("OPENAI_MODEL") or "gpt-4o-mini",
            openai_timeout_s=float(os.getenv("OPENAI_TIMEOUT_S", "60")),

            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            anthropic_model=os.getenv("ANTHROPIC_MODEL") or "claude-3-5-sonnet-latest",
            anthropic_timeout_s=float(os.getenv("ANTHROPIC_TIMEOUT_S", "60")),

            cloud_base_url=os.getenv("CLOUD_LLM_BASE_URL", ""),
            cloud_api_key=os.getenv("CLOUD_LLM_API_KEY", ""),
            cloud_model=os.getenv("CLOUD_LLM_MODEL") or "cloud",
            cloud_timeout_s=float(os.getenv("CLOUD_LLM_TIMEOUT_S", "60")),
        )


# ============================================================================
# PROVIDER CLIENTS
# ============================================================================

class _HTTPJSONClient:
    """One POST per call; subclasses shape the request and pick the text out of the reply."""

    model: str = ""

    def __init__(self, *, model: str, temperature: Optional[float], timeout_s: float):
        self.model = model
        self.temperature = temperature
        self.timeout_s = timeout_s

    def _request(self, system: str, user: str, temperature: Optional[float]) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        raise NotImplementedError

    def _extract(self, data: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def generate_json(self, *, system: str, user: str, temperature: Optional[float] = None) -> str:
        temp = self.temperature if temperature is None else temperature
        url, headers, payload = self._request(system, user, temp)
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            r = await client.post(url, headers={"Content-Type": "application/json", **headers}, json=payload)
            r.raise_for_status()
            try:
                return self._extract(r.json())
            except (KeyError, IndexError, TypeError) as e:
                raise ValueError(f"{type(self).__name__}: unexpected response shape") from e


class OpenAIClient(_HTTPJSONClient):
    """Chat Completions; works against any OpenAI-compatible base URL."""

    def __init__(self, api_key: str, model: str, temperature: float, base_url: str, timeout_s: float = 60.0):
        super().__init__(model=model, temperature=temperature, timeout_s=timeout_s)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _request(self, system, user, temperature):
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
        }
        if temperature is not None:
            payload["temperature"] = temperature
        return f"{self.base_url}/chat/completions", {"Authorization": f"Bearer {self.api_key}"}, payload

    def _extract(self, data):
        return data["choices"][0]["message"]["content"]


class AnthropicClient(_HTTPJSONClient):
    API_URL = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"

    def __init__(self, api_key: str, model: str, temperature: float, timeout_s: float = 60.0, max_tokens: int = 2000):
        super().__init__(model=model, temperature=temperature, timeout_s=timeout_s)
        self.api_key = api_key
        self.max_tokens = max_tokens

    def _request(self, system, user, temperature):
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }
        if temperature is not None:
            payload["temperature"] = temperature
        headers = {"x-api-key": self.api_key, "anthropic-version": self.API_VERSION}
        return self.API_URL, headers, payload

    def _extract(self, data):
        # content is a list of blocks; join the text ones
        return "".join(b.get("text", "") for b in data["content"] if b.get("type") == "text")


class CloudLLMClient(_HTTPJSONClient):
    """In-house gateway: {system, user[, temperature]} -> {text}."""

    def __init__(self, base_url: str, api_key: str, model: str = "cloud", timeout_s: float = 60.0):
        super().__init__(model=model, temperature=None, timeout_s=timeout_s)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    def _request(self, system, user, temperature):
        payload: Dict[str, Any] = {"system": system, "user": user}
        if temperature is not None:
            payload["temperature"] = temperature
        return f"{self.base_url}/v1/generate", {"Authorization": f"Bearer {self.api_key}"}, payload

    def _extract(self, data):
        return data["text"]


# ============================================================================
# LLM SERVICE
# ============================================================================

class LLMService:
    def __init__(self, cfg: Optional[LLMConfig] = None, client: Optional[LLMClient] = None):
        self.cfg = cfg or LLMConfig.from_env()
        self.client: LLMClient = client or self._resolve_client(self.cfg)

    @property
    def model(self) -> str:
        return getattr(self.client, "model", "") or ""

    def _resolve_client(self, cfg: LLMConfig) -> LLMClient:
        p = (cfg.provider or "openai").lower()

        if p == "anthropic":
            if not cfg.anthropic_api_key:
                raise ValueError("Missing ANTHROPIC_API_KEY")
            return AnthropicClient(
                api_key=cfg.anthropic_api_key,
                model=cfg.anthropic_model,
                temperature=cfg.temperature,
                timeout_s=cfg.anthropic_timeout_s,
            )

        if p == "cloud":
            if not cfg.cloud_base_url or not cfg.cloud_api_key:
                raise ValueError("Missing CLOUD_LLM_BASE_URL or CLOUD_LLM_API_KEY")
            return CloudLLMClient(
                base_url=cfg.cloud_base_url,
                api_key=cfg.cloud_api_key,
                model=cfg.cloud_model,
                timeout_s=cfg.cloud_timeout_s,
            )

        if p != "openai":
            raise ValueError(f"Unsupported AI_PROVIDER: {p}")
        if not cfg.openai_api_key:
            raise ValueError("Missing OPENAI_API_KEY")
        return OpenAIClient(
            api_key=cfg.openai_api_key,
            model=cfg.openai_model,
            temperature=cfg.temperature,
            base_url=cfg.openai_base_url,
            timeout_s=cfg.openai_timeout_s,
        )

    async def generate_text(self, *, system: str, user: str, temperature: Optional[float] = None) -> str:
        return await self.client.generate_json(system=system, user=user, temperature=temperature)

    async def generate_json(self, *, system: str, user: str, temperature: Optional[float] = None) -> Dict[str, Any]:
        raw = await self.generate_text(system=system, user=user, temperature=temperature)
        return parse_json_strict(raw)


_llm_singleton: Optional[LLMService] = None


def get_llm_service() -> LLMService:
    global _llm_singleton
    if _llm_singleton is None:
        _llm_singleton = LLMService()
    return _llm_singleton

"""LLM query expansion: add synonyms and related terms before embedding a query."""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import requests

from ..core.errors import ConfigurationError

logger = logging.getLogger(__name__)

MAX_CACHE_SIZE = 100

SYSTEM_PROMPT = """You are a code search assistant. Given a search query, generate relevant synonyms and related technical terms.

Respond ONLY with a JSON object in this exact format (no explanation):
{
    "synonyms": ["term1", "term2"],
    "related": ["term3", "term4"]
}"""


@dataclass
class ExpansionResult:
    original_query: str
    synonyms: List[str] = field(default_factory=list)
    related_terms: List[str] = field(default_factory=list)

    @property
    def expanded_query(self) -> str:
        return " ".join([self.original_query, *self.synonyms, *self.related_terms])


def build_prompt(query: str, max_synonyms: int, max_related: int, context_hint: str = "code search") -> str:
    return (
        f'Query: "{query}"\n'
        f"Context: {context_hint}\n\n"
        f"Generate up to {max_synonyms} direct synonyms and up to {max_related} related programming terms."
    )


def parse_expansion(text: str, max_synonyms: int, max_related: int) -> Tuple[List[str], List[str]]:
    """Pull synonym and related-term lists out of an LLM reply; anything unparseable yields empty lists."""
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        logger.warning("No JSON found in expansion response")
        return [], []
    try:
        parsed = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse expansion response: {e}")
        return [], []
    if not isinstance(parsed, dict):
        return [], []

    def terms(key: str, limit: int) -> List[str]:
        values = parsed.get(key)
        if not isinstance(values, list):
            return []
        return [v.strip() for v in values if isinstance(v, str) and v.strip()][:limit]

    return terms("synonyms", max_synonyms), terms("related", max_related)


class ExpansionProvider(ABC):
    """Generates expansion terms for a query with an LLM."""

    provider_name: str = "base"

    def __init__(self, model: str, temperature: float = 0.3, timeout: float = 5.0) -> None:
        self.model = model
        self.temperature = temperature
        self.timeout = timeout

    @abstractmethod
    def check_connection(self) -> bool:
        pass

    @abstractmethod
    def _complete(self, query: str, max_synonyms: int, max_related: int) -> str:
        """Raw LLM reply for the expansion prompt; raises requests.RequestException on failure."""

    def expand(self, query: str, max_synonyms: int = 3, max_related: int = 2) -> ExpansionResult:
        reply = self._complete(query, max_synonyms, max_related)
        synonyms, related = parse_expansion(reply, max_synonyms, max_related)
        return ExpansionResult(query, synonyms, related)


class OllamaExpansionProvider(ExpansionProvider):
    provider_name = "ollama"

    def __init__(self, url: str, model: str, temperature: float = 0.3, timeout: float = 5.0) -> None:
        super().__init__(model, temperature, timeout)
        self.base_url = url.rstrip("/")

    def check_connection(self) -> bool:
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=self.timeout)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.debug(f"Ollama expansion connection check failed: {e}")
            return False

    def _complete(self, query: str, max_synonyms: int, max_related: int) -> str:
        payload = {
            "model": self.model,
            "prompt": SYSTEM_PROMPT + "\n\n" + build_prompt(query, max_synonyms, max_related),
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        response = requests.post(f"{self.base_url}/api/generate", json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response.json().get("response", "")


class OpenAIExpansionProvider(ExpansionProvider):
    provider_name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.3,
        timeout: float = 5.0,
        max_tokens: int = 150,
    ) -> None:
        super().__init__(model, temperature, timeout)
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def check_connection(self) -> bool:
        try:
            response = requests.get(f"{self.base_url}/models", headers=self.headers, timeout=self.timeout)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.debug(f"OpenAI expansion connection check failed: {e}")
            return False

    def _complete(self, query: str, max_synonyms: int, max_related: int) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(query, max_synonyms, max_related)},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        response = requests.post(
            f"{self.base_url}/chat/completions",
            headers=self.headers,
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()
        choices = response.json().get("choices") or []
        if not choices:
            return ""
        return choices[0].get("message", {}).get("content", "") or ""


class QueryExpander:
    """Expands queries through a provider, caching the most recent expansions.

    Without a provider, or when the provider fails, the query is returned unchanged.
    """

    def __init__(
        self,
        provider: Optional[ExpansionProvider],
        max_synonyms: int = 3,
        max_related: int = 2,
        max_cache_size: int = MAX_CACHE_SIZE,
    ) -> None:
        self.provider = provider
        self.max_synonyms = max_synonyms
        self.max_related = max_related
        self.max_cache_size = max_cache_size
        self._cache: "OrderedDict[str, ExpansionResult]" = OrderedDict()

    @property
    def enabled(self) -> bool:
        return self.provider is not None

    def _cache_key(self, query: str) -> str:
        return f"{query.strip().lower()}:{self.max_synonyms}:{self.max_related}"

    def expand_detailed(self, query: str) -> ExpansionResult:
        if self.provider is None:
            return ExpansionResult(query)

        key = self._cache_key(query)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Using cached expansion for {query!r}")
            return cached

        try:
            result = self.provider.expand(query, self.max_synonyms, self.max_related)
        except requests.RequestException as e:
            logger.error(f"Query expansion failed, using original query: {e}")
            return ExpansionResult(query)

        if len(self._cache) >= self.max_cache_size:
            self._cache.popitem(last=False)
        self._cache[key] = result
        logger.info(
            f"Query expanded: {query!r} -> {result.expanded_query!r} "
            f"({len(result.synonyms)} synonyms, {len(result.related_terms)} related)"
        )
        return result

    def expand(self, query: str) -> str:
        return self.expand_detailed(query).expanded_query

    def clear_cache(self) -> None:
        self._cache.clear()


def make_expansion_provider(cfg: Dict) -> Optional[ExpansionProvider]:
    """Create the configured query expansion provider, or None when expansion is off.

    Raises:
        ConfigurationError: If the provider is unknown or credentials are missing
    """
    exp_cfg = cfg.get("search", {}).get("expansion", {})
    emb_cfg = cfg.get("embedding", {})
    provider = str(exp_cfg.get("provider", "none")).strip().lower()
    temperature = float(exp_cfg.get("temperature", 0.3))
    timeout = float(exp_cfg.get("timeout_seconds", 5))

    if provider in ("", "none"):
        return None
    if provider == "ollama":
        return OllamaExpansionProvider(
            emb_cfg.get("ollama_url", "http://localhost:11434"),
            exp_cfg.get("model") or "llama3.2",
            temperature,
            timeout,
        )
    if provider == "openai":
        api_key = emb_cfg.get("openai_api_key") or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("OpenAI query expansion requires an API key (OPENAI_API_KEY)")
        return OpenAIExpansionProvider(
            api_key,
            exp_cfg.get("model") or "gpt-4o-mini",
            emb_cfg.get("openai_base_url", "https://api.openai.com/v1"),
            temperature,
            timeout,
        )
    raise ConfigurationError(f"Unknown query expansion provider: {provider!r}")

"""Embedding providers for semantic search."""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import requests

from .chunking import count_tokens
from .errors import ConfigurationError, EmbeddingError
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingModel:
    name: str
    dimensions: int
    max_tokens: int
    task_prefix_supported: bool = False
    query_prefix: Optional[str] = None
    document_prefix: Optional[str] = None
    normalize: bool = True


EMBEDDING_MODELS: Dict[str, Dict[str, EmbeddingModel]] = {
    "ollama": {
        "nomic-embed-text": EmbeddingModel(
            "nomic-embed-text", 768, 8192,
            task_prefix_supported=True,
            query_prefix="search_query:",
            document_prefix="search_document:",
        ),
        "mxbai-embed-large": EmbeddingModel("mxbai-embed-large", 1024, 512),
    },
    "openai": {
        # OpenAI already returns unit vectors
        "text-embedding-3-small": EmbeddingModel("text-embedding-3-small", 1536, 8191, normalize=False),
        "text-embedding-3-large": EmbeddingModel("text-embedding-3-large", 3072, 8191, normalize=False),
    },
    "sentence_transformers": {
        "sentence-transformers/all-MiniLM-L6-v2": EmbeddingModel(
            "sentence-transformers/all-MiniLM-L6-v2", 384, 256, normalize=False,
        ),
        "BAAI/bge-small-en-v1.5": EmbeddingModel(
            "BAAI/bge-small-en-v1.5", 384, 512,
            task_prefix_supported=True,
            query_prefix="Represent this sentence for searching relevant passages:",
            normalize=False,
        ),
    },
}


def get_model_config(provider: str, model: str) -> Optional[EmbeddingModel]:
    return EMBEDDING_MODELS.get(provider, {}).get(model)


def normalize_vector(vector: List[float]) -> List[float]:
    """L2-normalize a vector; the zero vector is returned unchanged."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0:
        return list(vector)
    return (arr / norm).tolist()


_CAMEL = re.compile(r"([a-z])([A-Z])")
_PASCAL = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WHITESPACE = re.compile(r"\s+")


def split_identifiers(code: str) -> str:
    """Turn camelCase, PascalCase, snake_case and kebab-case into words."""
    processed = _CAMEL.sub(r"\1 \2", code)
    processed = _PASCAL.sub(r"\1 \2", processed)
    processed = processed.replace("_", " ").replace("-", " ")
    return _WHITESPACE.sub(" ", processed).strip()


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    provider_name = "base"

    def __init__(self, model_config: EmbeddingModel, preprocess_code: bool = True) -> None:
        self.model_config = model_config
        self.preprocess_code = preprocess_code

    @property
    def model(self) -> str:
        return self.model_config.name

    @property
    def dimensions(self) -> int:
        return self.model_config.dimensions

    @property
    def normalize(self) -> bool:
        return self.model_config.normalize

    @property
    def supports_task_prefix(self) -> bool:
        return self.model_config.task_prefix_supported

    @abstractmethod
    def check_connection(self) -> bool:
        """Return True when the backend is reachable."""

    @abstractmethod
    def is_model_available(self) -> bool:
        """Return True when the configured model can be used."""

    @abstractmethod
    def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Send already prepared texts to the backend."""

    def prepare_text(self, text: str, is_query: bool = False) -> str:
        processed = split_identifiers(text) if self.preprocess_code else text
        if self.supports_task_prefix:
            prefix = self.model_config.query_prefix if is_query else self.model_config.document_prefix
            if prefix:
                processed = f"{prefix} {processed}"
        return processed

    def _postprocess(self, vector: List[float]) -> List[float]:
        if self.normalize and vector:
            return normalize_vector(vector)
        return list(vector)

    def embed(self, text: str, is_query: bool = False) -> List[float]:
        """Embed a single text into a vector."""
        return self.embed_batch([text], is_query=is_query)[0]

    def embed_batch(self, texts: List[str], is_query: bool = False) -> List[List[float]]:
        """Embed multiple texts; the result is aligned with ``texts``."""
        if not texts:
            return []
        prepared = [self.prepare_text(t, is_query) for t in texts]
        vectors = self._embed_texts(prepared)
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"{self.provider_name} returned {len(vectors)} embeddings for {len(texts)} inputs",
            )
        return [self._postprocess(v) for v in vectors]


class SentenceTransformersProvider(EmbeddingProvider):
    """In-process embeddings with the SentenceTransformers library."""

    provider_name = "sentence_transformers"

    def __init__(self, model_config: EmbeddingModel, preprocess_code: bool = True, device: Optional[str] = None) -> None:
        super().__init__(model_config, preprocess_code)
        self.device = device
        self._model = None

    def _load(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer  # type: ignore
            self._model = SentenceTransformer(self.model_config.name, device=self.device)
        return self._model

    def check_connection(self) -> bool:
        try:
            self._load()
            return True
        except Exception as e:
            logger.error(f"Failed to load SentenceTransformers model {self.model}: {e}")
            return False

    def is_model_available(self) -> bool:
        return self.check_connection()

    def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        try:
            arr = self._load().encode(texts, normalize_embeddings=True, show_progress_bar=False)
        except Exception as e:
            raise EmbeddingError(f"SentenceTransformers encode failed: {e}") from e
        return [row.tolist() for row in arr]


@dataclass
class OllamaConfig:
    url: str = "http://localhost:11434"
    model: str = "nomic-embed-text"
    timeout: int = 60
    health_timeout: int = 5


class OllamaProvider(EmbeddingProvider):
    """Embeddings from a local Ollama server."""

    provider_name = "ollama"

    def __init__(self, config: OllamaConfig, model_config: EmbeddingModel, preprocess_code: bool = True) -> None:
        super().__init__(model_config, preprocess_code)
        self.config = config
        self.base_url = config.url.rstrip("/")

    def _tags(self) -> List[str]:
        response = requests.get(f"{self.base_url}/api/tags", timeout=self.config.health_timeout)
        response.raise_for_status()
        return [m.get("name", "") for m in response.json().get("models", [])]

    def check_connection(self) -> bool:
        try:
            self._tags()
            return True
        except requests.RequestException as e:
            logger.error(f"Cannot reach Ollama at {self.base_url}: {e}")
            return False

    def is_model_available(self) -> bool:
        try:
            return any(self.model in name for name in self._tags())
        except requests.RequestException as e:
            logger.error(f"Failed to check model availability: {e}")
            return False

    def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        try:
            response = requests.post(
                f"{self.base_url}/api/embed",
                json={"model": self.model, "input": texts},
                timeout=self.config.timeout,
            )
            response.raise_for_status()
        except requests.ConnectionError as e:
            raise EmbeddingError(f"Cannot connect to Ollama at {self.base_url}") from e
        except requests.Timeout as e:
            raise EmbeddingError(f"Ollama request timed out after {self.config.timeout}s") from e
        except requests.RequestException as e:
            raise EmbeddingError(f"Ollama error: {e}") from e
        return response.json().get("embeddings", [])


@dataclass
class OpenAIConfig:
    api_key: str
    model: str = "text-embedding-3-small"
    base_url: str = "https://api.openai.com/v1"
    timeout: int = 30
    health_timeout: int = 5
    requests_per_minute: int = 500
    tokens_per_minute: Optional[int] = 1_000_000


class OpenAIProvider(EmbeddingProvider):
    """Embeddings from the OpenAI API, throttled by a token bucket."""

    provider_name = "openai"

    def __init__(
        self,
        config: OpenAIConfig,
        model_config: EmbeddingModel,
        preprocess_code: bool = True,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        super().__init__(model_config, preprocess_code)
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }
        self.rate_limiter = rate_limiter or RateLimiter(config.requests_per_minute, config.tokens_per_minute)

    def check_connection(self) -> bool:
        try:
            response = requests.get(f"{self.base_url}/models", headers=self.headers, timeout=self.config.health_timeout)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.error(f"Cannot reach OpenAI at {self.base_url}: {e}")
            return False

    def is_model_available(self) -> bool:
        try:
            response = requests.get(
                f"{self.base_url}/models/{self.model}",
                headers=self.headers,
                timeout=self.config.health_timeout,
            )
            return response.status_code == 200
        except requests.RequestException as e:
            logger.error(f"Failed to check model availability: {e}")
            return False

    def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.rate_limiter.acquire(tokens=sum(count_tokens(t) for t in texts))
        try:
            response = requests.post(
                f"{self.base_url}/embeddings",
                headers=self.headers,
                json={"model": self.model, "input": texts},
                timeout=self.config.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            if status == 429:
                raise EmbeddingError("OpenAI rate limit exceeded") from e
            raise EmbeddingError(f"OpenAI error: HTTP {status}") from e
        except requests.RequestException as e:
            raise EmbeddingError(f"OpenAI request failed: {e}") from e

        data = sorted(response.json().get("data", []), key=lambda item: item.get("index", 0))
        return [item.get("embedding", []) for item in data]


def make_provider(cfg: Dict) -> EmbeddingProvider:
    """Create an embedding provider from config.

    Args:
        cfg: Configuration dictionary

    Returns:
        EmbeddingProvider instance

    Raises:
        ConfigurationError: If the provider or model is unknown, or credentials are missing
    """
    emb_cfg = cfg.get("embedding", {})
    provider = str(emb_cfg.get("provider", "sentence_transformers")).strip().lower()
    model = emb_cfg.get("model") or ""
    preprocess = bool(emb_cfg.get("preprocess_code", True))

    if provider not in EMBEDDING_MODELS:
        raise ConfigurationError(f"Unknown embedding provider: {provider!r}")
    model_config = get_model_config(provider, model)
    if model_config is None:
        known = ", ".join(sorted(EMBEDDING_MODELS[provider]))
        raise ConfigurationError(f"Unknown {provider} model {model!r}; expected one of: {known}")

    if provider == "ollama":
        ollama = OllamaConfig(url=emb_cfg.get("ollama_url", OllamaConfig.url), model=model)
        return OllamaProvider(ollama, model_config, preprocess)

    if provider == "openai":
        api_key = emb_cfg.get("openai_api_key") or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("OpenAI provider requires an API key (OPENAI_API_KEY)")
        limits = emb_cfg.get("rate_limit", {})
        openai = OpenAIConfig(
            api_key=api_key,
            model=model,
            base_url=emb_cfg.get("openai_base_url", OpenAIConfig.base_url),
            requests_per_minute=int(limits.get("requests_per_minute", 500)),
            tokens_per_minute=limits.get("tokens_per_minute", 1_000_000),
        )
        return OpenAIProvider(openai, model_config, preprocess)

    return SentenceTransformersProvider(model_config, preprocess, device=emb_cfg.get("device"))

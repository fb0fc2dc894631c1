"""Tests for embedding providers."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from semantic_grep.core.embeddings import (
    OllamaConfig,
    OllamaProvider,
    OpenAIConfig,
    OpenAIProvider,
    SentenceTransformersProvider,
    get_model_config,
    make_provider,
    normalize_vector,
    split_identifiers,
)
from semantic_grep.core.errors import ConfigurationError, EmbeddingError


def _response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
    return response


@pytest.fixture
def ollama():
    return OllamaProvider(OllamaConfig(), get_model_config("ollama", "nomic-embed-text"), preprocess_code=False)


@pytest.fixture
def openai():
    return OpenAIProvider(
        OpenAIConfig(api_key="sk-test"),
        get_model_config("openai", "text-embedding-3-small"),
        preprocess_code=False,
        rate_limiter=MagicMock(),
    )


class TestVectors:
    def test_normalize_vector(self):
        assert normalize_vector([3.0, 4.0]) == pytest.approx([0.6, 0.8])

    def test_zero_vector_unchanged(self):
        assert normalize_vector([0.0, 0.0, 0.0]) == [0.0, 0.0, 0.0]

    @pytest.mark.parametrize("code,expected", [
        ("getUserName", "get User Name"),
        ("parse_http_response", "parse http response"),
        ("HTTPServer", "HTTP Server"),
        ("kebab-case-name", "kebab case name"),
    ])
    def test_split_identifiers(self, code, expected):
        assert split_identifiers(code) == expected


class TestOllama:
    def test_task_prefixes(self, ollama):
        assert ollama.prepare_text("find users", is_query=True) == "search_query: find users"
        assert ollama.prepare_text("def f(): pass") == "search_document: def f(): pass"

    def test_embed_normalizes(self, ollama):
        with patch("semantic_grep.core.embeddings.requests.post", return_value=_response({"embeddings": [[3.0, 4.0]]})) as post:
            vector = ollama.embed("hello")
        assert vector == pytest.approx([0.6, 0.8])
        assert post.call_args.kwargs["json"] == {"model": "nomic-embed-text", "input": ["search_document: hello"]}

    def test_count_mismatch(self, ollama):
        with patch("semantic_grep.core.embeddings.requests.post", return_value=_response({"embeddings": [[1.0]]})):
            with pytest.raises(EmbeddingError):
                ollama.embed_batch(["a", "b"])

    def test_connection_error(self, ollama):
        with patch("semantic_grep.core.embeddings.requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(EmbeddingError, match="Cannot connect"):
                ollama.embed("x")

    def test_model_availability(self, ollama):
        tags = _response({"models": [{"name": "nomic-embed-text:latest"}]})
        with patch("semantic_grep.core.embeddings.requests.get", return_value=tags):
            assert ollama.check_connection()
            assert ollama.is_model_available()
        with patch("semantic_grep.core.embeddings.requests.get", side_effect=requests.ConnectionError()):
            assert not ollama.check_connection()

    def test_empty_batch(self, ollama):
        assert ollama.embed_batch([]) == []


class TestOpenAI:
    def test_results_follow_input_order(self, openai):
        payload = {"data": [{"index": 1, "embedding": [0.0, 1.0]}, {"index": 0, "embedding": [1.0, 0.0]}]}
        with patch("semantic_grep.core.embeddings.count_tokens", side_effect=len), \
                patch("semantic_grep.core.embeddings.requests.post", return_value=_response(payload)) as post:
            vectors = openai.embed_batch(["first", "second"])
        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer sk-test"
        openai.rate_limiter.acquire.assert_called_once_with(tokens=len("first") + len("second"))

    def test_rate_limited_response(self, openai):
        with patch("semantic_grep.core.embeddings.count_tokens", side_effect=len), \
                patch("semantic_grep.core.embeddings.requests.post", return_value=_response({}, status_code=429)):
            with pytest.raises(EmbeddingError, match="rate limit"):
                openai.embed("x")


class TestMakeProvider:
    def test_default_is_sentence_transformers(self):
        provider = make_provider({"embedding": {"model": "sentence-transformers/all-MiniLM-L6-v2"}})
        assert isinstance(provider, SentenceTransformersProvider)
        assert provider.dimensions == 384

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            make_provider({"embedding": {"provider": "nope", "model": "x"}})

    def test_unknown_model(self):
        with pytest.raises(ConfigurationError):
            make_provider({"embedding": {"provider": "ollama", "model": "not-a-model"}})

    def test_openai_requires_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            make_provider({"embedding": {"provider": "openai", "model": "text-embedding-3-small"}})

    def test_ollama_url(self):
        provider = make_provider({"embedding": {
            "provider": "ollama", "model": "mxbai-embed-large", "ollama_url": "http://gpu-box:11434/",
        }})
        assert isinstance(provider, OllamaProvider)
        assert provider.base_url == "http://gpu-box:11434"
        assert provider.dimensions == 1024

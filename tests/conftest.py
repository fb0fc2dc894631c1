"""
Shared test fixtures.

Provides: deterministic embedding provider, in-memory Qdrant store, sample source files
"""

import zlib
from typing import List

import pytest
from qdrant_client import QdrantClient

from semantic_grep.core.embeddings import EmbeddingModel, EmbeddingProvider
from semantic_grep.core.models import ChunkType, SourceChunk
from semantic_grep.search.ranking import tokenize_code
from semantic_grep.storage.qdrant import QdrantVectorStore


class FakeProvider(EmbeddingProvider):
    """Bag-of-words hashing embedder; similar texts get similar vectors."""

    provider_name = "fake"

    def __init__(self, dims: int = 32, available: bool = True):
        super().__init__(EmbeddingModel("fake-model", dims, 512), preprocess_code=False)
        self.available = available
        self.batches: List[List[str]] = []

    def check_connection(self) -> bool:
        return self.available

    def is_model_available(self) -> bool:
        return self.available

    def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.batches.append(list(texts))
        vectors = []
        for text in texts:
            vector = [0.0] * self.dimensions
            vector[-1] = 0.01
            for token in tokenize_code(text):
                vector[zlib.crc32(token.encode("utf-8")) % (self.dimensions - 1)] += 1.0
            vectors.append(vector)
        return vectors


def make_chunk(file_path="src/app.py", start=1, text="def main():\n    pass", vector=None,
               chunk_type=ChunkType.FUNCTION, language="py", end=None) -> SourceChunk:
    end = end if end is not None else start + text.count("\n")
    return SourceChunk(
        file_path=file_path,
        start_line=start,
        end_line=end,
        text=text,
        type=chunk_type,
        language=language,
        vector=vector,
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def store():
    return QdrantVectorStore("test_chunks", client=QdrantClient(location=":memory:"))


@pytest.fixture
def sample_repo(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "config.py").write_text(
        "import os\n"
        "import json\n"
        "\n"
        "\n"
        "def load_config(path):\n"
        "    with open(path) as fh:\n"
        "        return json.load(fh)\n"
        "\n"
        "\n"
        "class Settings:\n"
        "    def __init__(self, data):\n"
        "        self.data = data\n"
    )
    (tmp_path / "src" / "render.ts").write_text(
        "import { html } from './html';\n"
        "\n"
        "export function renderPage(title: string): string {\n"
        "  return html`<h1>${title}</h1>`;\n"
        "}\n"
    )
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("module.exports = 1;\n")
    (tmp_path / "README.md").write_text("# readme\n")
    return tmp_path

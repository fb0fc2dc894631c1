"""Qdrant vector database backend."""

from __future__ import annotations

import logging
import os
import re
import uuid
from typing import Dict, List, Optional, Set, Tuple

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchText,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    TextIndexParams,
    TextIndexType,
    TokenizerType,
    VectorParams,
)

from ..core.errors import IndexNotReadyError, SchemaMismatchError
from ..core.models import IndexStats, SearchResult, SourceChunk
from ..search.ranking import (
    bm25_rank,
    reciprocal_rank_fusion,
    similarity_from_squared_distance,
    squared_distance,
    tokenize_code,
)
from .base import VectorStore

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 100
SCROLL_PAGE_SIZE = 256
MAX_LEXICAL_TERMS = 16
_WORD = re.compile(r"[A-Za-z0-9_]{2,}")


def point_id(chunk_id: str) -> str:
    """Deterministic point id so re-inserting a chunk overwrites it."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, chunk_id))


class QdrantVectorStore(VectorStore):
    """Chunks stored as Qdrant points with Euclidean distance.

    Similarity is derived from the squared L2 distance between the query and
    the stored vector: ``clamp(1 - d^2 / 2, 0, 1)``, which equals cosine
    similarity for unit vectors.
    """

    def __init__(
        self,
        collection_name: str,
        host: str = "localhost",
        port: int = 6333,
        path: Optional[str] = None,
        location: Optional[str] = None,
        client: Optional[QdrantClient] = None,
    ) -> None:
        self.collection_name = collection_name
        self.host = host
        self.port = port
        self.path = path
        if client is not None:
            self.client = client
        elif location:
            self.client = QdrantClient(location=location)
        elif path:
            self.client = QdrantClient(path=path)
        else:
            self.client = QdrantClient(host=host, port=port)
        self._lexical_ready = True

    # -- collection management ------------------------------------------------

    def _exists(self) -> bool:
        return self.client.collection_exists(collection_name=self.collection_name)

    def _get_collection_vector_dim(self) -> Optional[int]:
        if not self._exists():
            return None
        collection_info = self.client.get_collection(collection_name=self.collection_name)
        return collection_info.config.params.vectors.size

    @property
    def dimension(self) -> Optional[int]:
        return self._get_collection_vector_dim()

    def _create_collection(self, vector_dim: int) -> None:
        self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=vector_dim, distance=Distance.EUCLID),
        )
        logger.info(f"Created collection '{self.collection_name}' with dimension {vector_dim}")
        self.client.create_payload_index(
            collection_name=self.collection_name,
            field_name="file_path",
            field_schema=PayloadSchemaType.KEYWORD,
        )
        try:
            self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name="text",
                field_schema=TextIndexParams(
                    type=TextIndexType.TEXT,
                    tokenizer=TokenizerType.WORD,
                    min_token_len=2,
                    lowercase=True,
                ),
            )
            self._lexical_ready = True
        except Exception as e:
            logger.warning(f"Full-text index unavailable for '{self.collection_name}', hybrid search disabled: {e}")
            self._lexical_ready = False

    def _ensure_ready(self) -> None:
        if not self.is_ready():
            raise IndexNotReadyError(
                f"Collection '{self.collection_name}' is empty or missing. Please run indexing first."
            )

    # -- writes ---------------------------------------------------------------

    def check_dimensions(self, chunks: List[SourceChunk]) -> None:
        records = [c for c in chunks if c.vector]
        if not records:
            return
        expected = self._get_collection_vector_dim() or len(records[0].vector)
        for record in records:
            if len(record.vector) != expected:
                raise SchemaMismatchError(expected, len(record.vector), self.collection_name)

    def insert(self, chunks: List[SourceChunk]) -> int:
        records = [c for c in chunks if c.vector]
        if not records:
            logger.warning("No embedded chunks to save")
            return 0

        self.check_dimensions(records)
        if not self._exists():
            self._create_collection(len(records[0].vector))

        points = [
            PointStruct(id=point_id(record.id), vector=list(record.vector), payload=record.to_payload())
            for record in records
        ]

        total_batches = (len(points) + UPSERT_BATCH_SIZE - 1) // UPSERT_BATCH_SIZE
        for i in range(0, len(points), UPSERT_BATCH_SIZE):
            batch = points[i:i + UPSERT_BATCH_SIZE]
            batch_num = i // UPSERT_BATCH_SIZE + 1
            try:
                self.client.upsert(collection_name=self.collection_name, points=batch)
                logger.debug(f"Uploaded batch {batch_num}/{total_batches}")
            except Exception as e:
                raise RuntimeError(
                    f"Failed to upsert batch {batch_num}/{total_batches} "
                    f"(points {i}-{i + len(batch)}): {e}"
                ) from e

        logger.info(f"Saved {len(points)} chunks to collection '{self.collection_name}'")
        return len(points)

    def _file_filter(self, file_path: str) -> Filter:
        return Filter(must=[FieldCondition(key="file_path", match=MatchValue(value=file_path))])

    def delete_file(self, file_path: str) -> int:
        if not self._exists():
            return 0
        removed = self.client.count(
            collection_name=self.collection_name,
            count_filter=self._file_filter(file_path),
            exact=True,
        ).count
        if removed:
            self.client.delete(
                collection_name=self.collection_name,
                points_selector=FilterSelector(filter=self._file_filter(file_path)),
            )
            logger.info(f"Deleted {removed} chunks for {file_path}")
        return removed

    def clear(self) -> None:
        if self._exists():
            self.client.delete_collection(collection_name=self.collection_name)
            logger.info(f"Deleted collection '{self.collection_name}'")
        self._lexical_ready = True

    # -- reads ----------------------------------------------------------------

    def count(self) -> int:
        if not self._exists():
            return 0
        return self.client.count(collection_name=self.collection_name, exact=True).count

    def file_paths(self) -> Set[str]:
        paths: Set[str] = set()
        if not self._exists():
            return paths
        offset = None
        while True:
            points, offset = self.client.scroll(
                collection_name=self.collection_name,
                limit=SCROLL_PAGE_SIZE,
                offset=offset,
                with_payload=["file_path"],
                with_vectors=False,
            )
            paths.update(p.payload["file_path"] for p in points)
            if offset is None:
                break
        return paths

    def _storage_bytes(self) -> int:
        if not self.path or not os.path.isdir(self.path):
            return 0
        total = 0
        for root, _, files in os.walk(self.path):
            for name in files:
                try:
                    total += os.path.getsize(os.path.join(root, name))
                except OSError:
                    continue
        return total

    def stats(self) -> IndexStats:
        return IndexStats(
            chunk_count=self.count(),
            file_count=len(self.file_paths()),
            storage_bytes=self._storage_bytes(),
        )

    def _to_result(self, point, query_vector: List[float]) -> SearchResult:
        vector = point.vector if isinstance(point.vector, list) else None
        if vector:
            distance_sq = squared_distance(query_vector, vector)
        else:
            # Euclidean score is the plain L2 distance
            distance_sq = float(getattr(point, "score", 2.0)) ** 2
        chunk = SourceChunk.from_payload(point.payload)
        return SearchResult(chunk=chunk, similarity=similarity_from_squared_distance(distance_sq))

    def _vector_candidates(self, query_vector: List[float], fetch: int, min_similarity: float) -> List[SearchResult]:
        response = self.client.query_points(
            collection_name=self.collection_name,
            query=list(query_vector),
            limit=fetch,
            with_payload=True,
            with_vectors=True,
        )
        results = [self._to_result(p, query_vector) for p in response.points]
        results = [r for r in results if r.similarity >= min_similarity]
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results

    def vector_search(self, query_vector: List[float], limit: int, min_similarity: float = 0.0) -> List[SearchResult]:
        self._ensure_ready()
        results = self._vector_candidates(query_vector, limit * 2, min_similarity)
        return results[:limit]

    def _lexical_candidates(self, query_text: str, query_vector: List[float], fetch: int) -> List[SearchResult]:
        terms = sorted(set(_WORD.findall(query_text)) | set(tokenize_code(query_text)))[:MAX_LEXICAL_TERMS]
        if not terms:
            return []
        points, _ = self.client.scroll(
            collection_name=self.collection_name,
            scroll_filter=Filter(should=[FieldCondition(key="text", match=MatchText(text=t)) for t in terms]),
            limit=max(fetch * 5, 50),
            with_payload=True,
            with_vectors=True,
        )
        by_id: Dict[str, object] = {p.payload["id"]: p for p in points}
        ranked = bm25_rank(query_text, {cid: p.payload["text"] for cid, p in by_id.items()})[:fetch]
        return [self._to_result(by_id[cid], query_vector) for cid in ranked]

    def hybrid_search(
        self,
        query_text: str,
        query_vector: List[float],
        limit: int,
        min_similarity: float = 0.0,
    ) -> List[SearchResult]:
        self._ensure_ready()
        fetch = limit * 2
        vector_results = self._vector_candidates(query_vector, fetch, min_similarity)
        if not self._lexical_ready:
            return vector_results[:limit]

        try:
            lexical_results = self._lexical_candidates(query_text, query_vector, fetch)
        except Exception as e:
            logger.warning(f"Lexical search failed, using vector results only: {e}")
            return vector_results[:limit]

        by_id: Dict[str, SearchResult] = {r.chunk.id: r for r in lexical_results}
        by_id.update({r.chunk.id: r for r in vector_results})
        scores = reciprocal_rank_fusion([
            [r.chunk.id for r in vector_results],
            [r.chunk.id for r in lexical_results],
        ])
        ranked: List[Tuple[float, SearchResult]] = []
        for cid, score in scores.items():
            result = by_id[cid]
            result.fusion_score = score
            ranked.append((score, result))
        ranked.sort(key=lambda item: (item[0], item[1].similarity), reverse=True)
        logger.debug(
            f"Hybrid search: {len(vector_results)} vector + {len(lexical_results)} lexical "
            f"candidates, {len(ranked)} fused"
        )
        return [result for _, result in ranked[:limit]]

"""
Semantic memory of past events using FAISS for vector similarity search.

Events (study sessions, workouts, check-ins, feedback...) are embedded
and indexed so the engine can ask "how did things go last time I was in
a situation like this?".

Embedding uses sentence-transformers, installed with the optional extra:
pip install nudge-agent[semantic]
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Tuple, Union

import faiss
import numpy as np

from .types import MemoryEvent

if TYPE_CHECKING:
    from .storage import AgentStore

logger = logging.getLogger(__name__)

# Check for optional embedding backend
_SENTENCE_TRANSFORMERS_AVAILABLE = False
try:
    from sentence_transformers import SentenceTransformer
    _SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    pass

DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"  # 384-dim
DEFAULT_EMBEDDING_DIM = 384
EMBEDDING_MAX_CONCURRENT_TASKS = 2

# Outcome estimate when there is nothing to compare against
NEUTRAL_OUTCOME = 0.5

EMBEDDING_DTYPE = np.dtype("<f4")


def is_semantic_available() -> bool:
    """Check if the sentence-transformers backend is installed."""
    return _SENTENCE_TRANSFORMERS_AVAILABLE


class Embedder(ABC):
    """Turns text into a fixed-length float32 vector."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of every embedding."""

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """Embed one text."""


class SentenceTransformerEmbedder(Embedder):
    """
    Embedder backed by a sentence-transformers model.

    The model loads on first use unless lazy_load is False.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_EMBEDDING_MODEL,
        device: Optional[str] = None,
        lazy_load: bool = True,
    ):
        if not _SENTENCE_TRANSFORMERS_AVAILABLE:
            raise ImportError(
                "Semantic memory requires sentence-transformers.\n"
                "Install with: pip install nudge-agent[semantic]"
            )
        self.model_name = model_name
        self.device = device
        self._model: Optional[SentenceTransformer] = None
        self._dimension: Optional[int] = None
        self._load_lock = threading.Lock()

        if not lazy_load:
            self._ensure_model()

    def _ensure_model(self) -> "SentenceTransformer":
        """Lazy-load the embedding model."""
        with self._load_lock:
            if self._model is None:
                logger.info(f"Loading embedding model: {self.model_name}")
                self._model = SentenceTransformer(self.model_name, device=self.device)
                self._dimension = self._model.get_sentence_embedding_dimension()
        return self._model

    @property
    def dimension(self) -> int:
        self._ensure_model()
        return int(self._dimension)

    def embed(self, text: str) -> np.ndarray:
        model = self._ensure_model()
        vector = model.encode(text, normalize_embeddings=True)
        return np.asarray(vector, dtype=np.float32).ravel()


class EmbeddingWorkerPool:
    """
    Bounded pool for embedding work.

    At most `max_workers` embeddings run at once; further requests queue.
    Embedding never runs on the caller's thread.
    """

    def __init__(self, embedder: Embedder, max_workers: int = EMBEDDING_MAX_CONCURRENT_TASKS):
        self.embedder = embedder
        self.max_workers = max(1, max_workers)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="embedding",
        )

    @property
    def dimension(self) -> int:
        return self.embedder.dimension

    def submit(self, text: str) -> "Future[np.ndarray]":
        return self._executor.submit(self.embedder.embed, text)

    def embed(self, text: str, timeout: Optional[float] = None) -> np.ndarray:
        """Embed on the pool and wait (raises TimeoutError past `timeout`)."""
        return self.submit(text).result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


@dataclass(frozen=True)
class MemorySearchResult:
    """An event and how close it is to the query."""
    event: MemoryEvent
    similarity: float
    distance: float

    def to_dict(self) -> dict:
        data = self.event.to_dict()
        data["similarity"] = self.similarity
        return data


def similarity_from_distance(distance: float) -> float:
    """Map a Euclidean distance to (0, 1]; identical vectors give 1.0."""
    return 1.0 / (1.0 + max(0.0, distance))


class SemanticMemoryIndex:
    """
    FAISS index over embedded memory events.

    Events are persisted in the AgentStore and indexed in insertion order.
    The index is rebuilt from the store on first use.

    Example:
        >>> memory = SemanticMemoryIndex(store, pool)
        >>> memory.add_event("study_session", "90 minute calculus session", 0.9)
        >>> avg, similar = memory.get_similar_context_outcomes("high energy, weekday morning")
    """

    def __init__(
        self,
        store: "AgentStore",
        pool: Optional[EmbeddingWorkerPool] = None,
        dimension: Optional[int] = None,
        embed_timeout: Optional[float] = 30.0,
    ):
        self.store = store
        self.pool = pool
        self.embed_timeout = embed_timeout
        self._dimension = dimension
        self._index: Optional[faiss.IndexFlatL2] = None
        self._events: List[MemoryEvent] = []
        self._lock = threading.RLock()

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = self.pool.dimension if self.pool is not None else DEFAULT_EMBEDDING_DIM
        return self._dimension

    def _ensure_index(self) -> faiss.IndexFlatL2:
        with self._lock:
            if self._index is None:
                self._rebuild_locked()
            return self._index

    def _rebuild_locked(self) -> None:
        dim = self.dimension
        index = faiss.IndexFlatL2(dim)
        events: List[MemoryEvent] = []
        vectors = []
        skipped = 0
        for event, blob in self.store.load_memory_events():
            if blob is None:
                continue
            vector = np.frombuffer(blob, dtype=EMBEDDING_DTYPE)
            if vector.shape[0] != dim:
                skipped += 1
                continue
            events.append(event)
            vectors.append(vector)
        if vectors:
            index.add(np.vstack(vectors).astype(np.float32))
        if skipped:
            logger.warning(f"Skipped {skipped} memory events with embedding dimension != {dim}")
        self._index = index
        self._events = events
        logger.debug(f"Semantic memory index built with {len(events)} events")

    def rebuild(self) -> None:
        with self._lock:
            self._rebuild_locked()

    def _embed(self, text: str) -> np.ndarray:
        if self.pool is None:
            raise RuntimeError("No embedding model configured for semantic memory")
        return self._check_vector(self.pool.embed(text, timeout=self.embed_timeout))

    def _check_vector(self, vector) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32).ravel()
        if arr.shape[0] != self.dimension:
            raise ValueError(
                f"Embedding has dimension {arr.shape[0]}, index expects {self.dimension}"
            )
        if not np.all(np.isfinite(arr)):
            raise ValueError("Embedding contains non-finite values")
        return arr

    def add_event(
        self,
        event_type: str,
        content: str,
        outcome_score: Optional[float] = None,
        metadata: Optional[dict] = None,
        embedding: Optional[np.ndarray] = None,
        when: Optional[datetime] = None,
    ) -> MemoryEvent:
        """
        Persist an event and index it.

        The embedding is computed on the worker pool unless one is given.
        """
        vector = self._check_vector(embedding) if embedding is not None else self._embed(content)
        # Insert and index under one lock so a concurrent rebuild cannot index the row twice
        with self._lock:
            event = self.store.add_memory_event(
                event_type=event_type,
                content=content,
                embedding=vector.astype(EMBEDDING_DTYPE).tobytes(),
                outcome_score=outcome_score,
                metadata=metadata,
                when=when,
            )
            if self._index is None:
                # Rebuilding from the store picks up the new event
                self._rebuild_locked()
            else:
                self._index.add(vector.reshape(1, -1))
                self._events.append(event)
        return event

    def search_similar(
        self,
        query: Union[str, np.ndarray],
        k: int = 5,
        event_type: Optional[str] = None,
    ) -> List[MemorySearchResult]:
        """
        Nearest events to a text or an embedding, most similar first.

        With event_type set, only events of that type are returned.
        """
        if k <= 0 or self._ensure_index().ntotal == 0:
            return []
        vector = self._embed(query) if isinstance(query, str) else self._check_vector(query)

        with self._lock:
            index = self._ensure_index()
            if index.ntotal == 0:
                return []
            limit = index.ntotal if event_type is not None else min(k, index.ntotal)
            distances, ids = index.search(vector.reshape(1, -1), limit)
            events = list(self._events)

        results: List[MemorySearchResult] = []
        for squared, idx in zip(distances[0], ids[0]):
            if idx < 0:
                continue
            event = events[idx]
            if event_type is not None and event.event_type != event_type:
                continue
            distance = float(np.sqrt(max(float(squared), 0.0)))
            results.append(MemorySearchResult(
                event=event,
                similarity=similarity_from_distance(distance),
                distance=distance,
            ))
            if len(results) >= k:
                break
        return results

    def get_similar_context_outcomes(
        self,
        description: Union[str, np.ndarray],
        k: int = 5,
    ) -> Tuple[float, List[MemorySearchResult]]:
        """
        Similarity-weighted mean outcome of the k nearest events.

        Events without an outcome carry no weight. Returns the neutral
        prior when nothing comparable exists.
        """
        results = self.search_similar(description, k)
        weighted = 0.0
        total_weight = 0.0
        for result in results:
            if result.event.outcome_score is None:
                continue
            weighted += result.similarity * result.event.outcome_score
            total_weight += result.similarity
        if total_weight <= 0:
            return NEUTRAL_OUTCOME, results
        return weighted / total_weight, results

    def count(self) -> int:
        return self.store.count_memory_events()

    def __len__(self) -> int:
        return self.count()

"""
Text embeddings and vector similarity.

Provides:
- Pluggable embedding providers (OpenAI, any OpenAI-compatible HTTP
  endpoint, and a local deterministic hashing fallback)
- A thread-safe TTL cache keyed by the SHA-256 of the text
- Cosine similarity over numpy vectors
"""
import hashlib
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

import httpx
import numpy as np

from joins.normalizer import ColumnNormalizer

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 384
DEFAULT_HTTP_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"


class EmbeddingUnavailable(Exception):
    """Raised when a provider cannot produce an embedding."""
    pass


class DimensionMismatchError(ValueError):
    """Raised when comparing vectors of different lengths."""
    pass


@dataclass(frozen=True, eq=False)
class EmbeddingVector:
    """A fixed-dimension embedding with the text it was computed from."""
    values: np.ndarray
    source_text: str = ""
    source_id: Optional[str] = None

    def __post_init__(self):
        values = np.array(self.values, dtype=np.float64)
        values.setflags(write=False)
        object.__setattr__(self, "values", values)

    @property
    def dimension(self) -> int:
        return int(self.values.shape[0])

    def to_list(self) -> List[float]:
        return self.values.tolist()


def cosine_similarity(a, b) -> float:
    """
    Cosine similarity of two vectors, clamped to [-1, 1].

    Accepts EmbeddingVector or array-likes. Returns 0.0 when either vector
    has zero magnitude or holds a NaN or infinite component.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    va = np.asarray(a.values if isinstance(a, EmbeddingVector) else a, dtype=np.float64)
    vb = np.asarray(b.values if isinstance(b, EmbeddingVector) else b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatchError(f"Vector dimensions differ: {va.shape[0]} vs {vb.shape[0]}")
    if not (np.all(np.isfinite(va)) and np.all(np.isfinite(vb))):
        return 0.0

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    similarity = np.dot(va, vb) / (norm_a * norm_b)
    if not np.isfinite(similarity):
        return 0.0
    return float(np.clip(similarity, -1.0, 1.0))


# =============================================================================
# Providers
# =============================================================================

class EmbeddingProvider(ABC):
    """Produces a fixed-dimension vector for a text."""

    name: str = "provider"
    dimension: int = DEFAULT_DIMENSION

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """Embed a text; raises EmbeddingUnavailable on failure."""

    def _checked(self, values) -> np.ndarray:
        vector = np.asarray(values, dtype=np.float64)
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise EmbeddingUnavailable(
                f"{self.name} returned dimension {vector.shape} (expected {self.dimension})"
            )
        if not np.all(np.isfinite(vector)):
            raise EmbeddingUnavailable(f"{self.name} returned non-finite values")
        return vector


class HashEmbeddingProvider(EmbeddingProvider):
    """
    Local deterministic fallback embedding.

    This is not a semantic model. Each word contributes a pseudo-random
    vector seeded from its SHA-256, and known domain words are pushed
    towards a shared concept band so that related business terms land
    close together. Use it for development and tests, or when no model
    endpoint is configured.
    """

    name = "hash"

    STOP_WORDS = frozenset({
        'the', 'and', 'for', 'with', 'from', 'this', 'that', 'these', 'those',
        'what', 'which', 'was', 'were', 'are', 'is', 'how', 'many', 'much',
        'show', 'get', 'list', 'give', 'find', 'all', 'per', 'each', 'into',
        'our', 'their', 'its', 'has', 'have', 'had', 'been', 'used', 'by',
    })

    # word -> concept band (start, end) in the vector
    CONCEPT_BANDS: Dict[str, Tuple[int, int]] = {
        "revenue": (0, 50),
        "player": (50, 100),
        "game": (100, 150),
        "financial": (150, 200),
    }

    CONCEPT_TERMS: Dict[str, FrozenSet[str]] = {
        "revenue": frozenset({"ggr", "ngr", "revenue", "profit", "income", "earning", "earnings"}),
        "player": frozenset({"player", "customer", "member", "user", "vip", "gambler", "segment"}),
        "game": frozenset({"game", "slot", "poker", "blackjack", "roulette", "casino", "rtp", "sport", "live"}),
        "financial": frozenset({
            "deposit", "withdrawal", "bet", "betting", "wager", "stake", "win",
            "winning", "payout", "bonus", "amount", "transaction",
        }),
    }

    CONCEPT_BOOST = 0.3

    def __init__(self, dimension: int = DEFAULT_DIMENSION):
        if dimension < 200:
            raise ValueError("Hash embedding needs at least 200 dimensions for its concept bands")
        self.dimension = dimension
        self._word_cache: Dict[str, np.ndarray] = {}
        self._word_lock = threading.Lock()
        self._concept_of = {
            word: concept for concept, words in self.CONCEPT_TERMS.items() for word in words
        }

    def tokenize(self, text: str) -> List[str]:
        """Lowercase words of a text, identifiers split and plurals folded."""
        words: List[str] = []
        for raw in re.findall(r"[A-Za-z0-9_]+", text or ""):
            for part in ColumnNormalizer.to_parts(raw):
                if len(part) <= 2 or part in self.STOP_WORDS:
                    continue
                words.append(self._singular(part))
        return words

    def _singular(self, word: str) -> str:
        if word in self._concept_of:
            return word
        if len(word) > 3 and word.endswith("s") and not word.endswith(("ss", "us")):
            return word[:-1]
        return word

    def _word_vector(self, word: str) -> np.ndarray:
        with self._word_lock:
            cached = self._word_cache.get(word)
        if cached is not None:
            return cached

        seed = int.from_bytes(hashlib.sha256(word.encode("utf-8")).digest()[:8], "big")
        rng = np.random.default_rng(seed)
        concept = self._concept_of.get(word)
        if concept is None:
            vector = (rng.random(self.dimension) - 0.5) * 0.1
        else:
            vector = rng.random(self.dimension) - 0.5
            start, end = self.CONCEPT_BANDS[concept]
            vector[start:end] += self.CONCEPT_BOOST
            vector /= np.linalg.norm(vector)

        with self._word_lock:
            self._word_cache[word] = vector
        return vector

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float64)
        for word in self.tokenize(text):
            vector += self._word_vector(word)
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings from the OpenAI API."""

    name = "openai"

    def __init__(self, api_key: str, model: str = DEFAULT_OPENAI_MODEL,
                 dimension: int = DEFAULT_DIMENSION, timeout_seconds: float = 10.0):
        self.api_key = api_key
        self.model = model
        self.dimension = dimension
        self.timeout_seconds = timeout_seconds
        self._client = None

    def _get_client(self):
        """Get or create the OpenAI client."""
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout_seconds)
        return self._client

    def embed(self, text: str) -> np.ndarray:
        import openai

        try:
            response = self._get_client().embeddings.create(
                model=self.model,
                input=text,
                dimensions=self.dimension,
            )
        except openai.OpenAIError as e:
            raise EmbeddingUnavailable(f"OpenAI embedding failed: {e}") from e
        if not response.data:
            raise EmbeddingUnavailable("OpenAI returned no embedding data")
        return self._checked(response.data[0].embedding)


class HttpEmbeddingProvider(EmbeddingProvider):
    """
    Embeddings from an OpenAI-compatible HTTP endpoint.

    POSTs {"input": text, "model": model} and reads data[0].embedding.
    """

    name = "http"

    def __init__(self, endpoint: str, api_key: Optional[str] = None, model: str = DEFAULT_HTTP_MODEL,
                 dimension: int = DEFAULT_DIMENSION, timeout_seconds: float = 10.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.endpoint = endpoint
        self.api_key = api_key
        self.model = model
        self.dimension = dimension
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def embed(self, text: str) -> np.ndarray:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self._transport) as client:
                r = client.post(self.endpoint, json={"input": text, "model": self.model}, headers=headers)
                r.raise_for_status()
                payload = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingUnavailable(f"Embedding endpoint {self.endpoint} failed: {e}") from e

        try:
            values = payload["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingUnavailable(f"Malformed embedding response from {self.endpoint}") from e
        return self._checked(values)


# =============================================================================
# Cache
# =============================================================================

class EmbeddingCache:
    """
    Bounded TTL cache for embeddings.

    The lock only guards dictionary access; two threads missing on the
    same key may both compute the vector.
    """

    def __init__(self, ttl_seconds: float = 86400, max_entries: int = 10000,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[np.ndarray, float]]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def key_for(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def get(self, key: str) -> Optional[np.ndarray]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            values, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return values

    def put(self, key: str, values: np.ndarray) -> None:
        with self._lock:
            self._entries[key] = (values, self._clock() + self.ttl_seconds)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# Service
# =============================================================================

class EmbeddingService:
    """
    Cached embedding front end over a provider.

    Usage:
        service = EmbeddingService(HashEmbeddingProvider())
        vector = service.embed("total GGR for VIP players")
        service.similarity(vector, service.embed("gross gaming revenue"))
    """

    def __init__(self, provider: EmbeddingProvider, cache: Optional[EmbeddingCache] = None):
        self.provider = provider
        self.cache = cache if cache is not None else EmbeddingCache()

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    def embed(self, text: str, source_id: Optional[str] = None) -> EmbeddingVector:
        """
        Embed a text, serving repeated texts from the cache.

        Raises:
            EmbeddingUnavailable: If the provider fails
        """
        text = text or ""
        key = EmbeddingCache.key_for(text)
        values = self.cache.get(key)
        if values is None:
            values = self.provider.embed(text)
            self.cache.put(key, values)
        else:
            logger.debug(f"Embedding cache hit for {key[:12]}")
        return EmbeddingVector(values=values, source_text=text, source_id=source_id)

    def similarity(self, a, b) -> float:
        return cosine_similarity(a, b)


def create_embedding_service(
    provider: str = "hash",
    dimension: int = DEFAULT_DIMENSION,
    model: Optional[str] = None,
    api_endpoint: Optional[str] = None,
    api_key: Optional[str] = None,
    timeout_seconds: float = 10.0,
    cache_ttl_seconds: float = 86400,
    cache_max_entries: int = 10000,
) -> EmbeddingService:
    """
    Build an embedding service for a provider name.

    Args:
        provider: "hash", "openai" or "http"
        dimension: Vector dimension
        model: Model name for remote providers
        api_endpoint: URL for the http provider
        api_key: API key for remote providers
        timeout_seconds: Request timeout for remote providers
        cache_ttl_seconds: Cache entry lifetime
        cache_max_entries: Cache size bound

    Returns:
        Configured EmbeddingService
    """
    if provider == "openai":
        backend: EmbeddingProvider = OpenAIEmbeddingProvider(
            api_key=api_key, model=model or DEFAULT_OPENAI_MODEL,
            dimension=dimension, timeout_seconds=timeout_seconds,
        )
    elif provider == "http":
        backend = HttpEmbeddingProvider(
            endpoint=api_endpoint, api_key=api_key, model=model or DEFAULT_HTTP_MODEL,
            dimension=dimension, timeout_seconds=timeout_seconds,
        )
    elif provider == "hash":
        backend = HashEmbeddingProvider(dimension=dimension)
    else:
        raise ValueError(f"Unknown embedding provider: {provider}")

    logger.info(f"Using {backend.name} embedding provider ({dimension} dimensions)")
    return EmbeddingService(backend, EmbeddingCache(cache_ttl_seconds, cache_max_entries))

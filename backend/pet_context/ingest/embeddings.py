"""Embedding providers."""

from __future__ import annotations

import hashlib
import math
import re
from array import array
from typing import Protocol, Sequence

import requests

from pet_context.core.errors import EmbeddingError, EmbeddingUnavailableError


_TOKEN_RE = re.compile(r"\w+")


class EmbeddingProvider(Protocol):
    """Maps text to a fixed-dimension float vector."""

    @property
    def dim(self) -> int: ...

    def embed(self, text: str) -> list[float]: ...


class HashedEmbeddingProvider:
    """Lightweight hashed embedding model with deterministic output."""

    def __init__(self, dim: int = 1024) -> None:
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def backend(self) -> str:
        return "hashed"

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self._dim
        for token in _tokenize(text):
            vector[_hash_token(token, self._dim)] += 1.0
        _normalize(vector)
        return vector


class HttpEmbeddingProvider:
    """Calls a remote embedding endpoint (``{"inputText": ...}`` -> ``{"embedding": [...]}``)."""

    def __init__(
        self,
        url: str,
        dim: int,
        timeout: float = 3.0,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self._dim = dim
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def backend(self) -> str:
        return "http"

    def embed(self, text: str) -> list[float]:
        try:
            response = self.session.post(self.url, json={"inputText": text}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise EmbeddingUnavailableError(f"Embedding request failed: {exc}") from exc
        if response.status_code == 429 or response.status_code >= 500:
            raise EmbeddingUnavailableError(f"Embedding service unavailable ({response.status_code})")
        if response.status_code >= 400:
            raise EmbeddingError(f"Embedding request rejected ({response.status_code})")
        try:
            payload = response.json()
        except ValueError as exc:
            raise EmbeddingError("Embedding reply is not JSON") from exc
        vector = payload.get("embedding") if isinstance(payload, dict) else None
        if not isinstance(vector, list) or not vector:
            raise EmbeddingError("Embedding reply has no 'embedding' field")
        if len(vector) != self._dim:
            raise EmbeddingError(f"Embedding has {len(vector)} dimensions, expected {self._dim}")
        return [float(value) for value in vector]


def vector_to_bytes(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def vector_from_bytes(payload: bytes) -> list[float]:
    floats = array("f")
    floats.frombytes(payload)
    return list(floats)


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingProvider",
    "HashedEmbeddingProvider",
    "HttpEmbeddingProvider",
    "vector_to_bytes",
    "vector_from_bytes",
]

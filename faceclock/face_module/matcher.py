from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

import numpy as np

from faceclock.database.models import Identity
from faceclock.exceptions import ValidationError

# Float32 unit vectors score slightly under 1.0 against themselves.
SCORE_TOLERANCE = 1e-6


class IdentitySource(Protocol):
    def list_identities(self) -> list[Identity]: ...


@dataclass
class MatchResult:
    """Outcome of one recognition: the query, the winning identity (if any) and its score."""

    identity: Identity | None
    confidence: float
    embedding: np.ndarray | None = None

    @property
    def matched(self) -> bool:
        return self.identity is not None


def similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Inner product; equals cosine similarity only for unit-normalized inputs."""
    return float(np.dot(np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)))


class FaceMatcher:
    """Linear scan over the enrolled identities.

    The query is not re-normalized. Among identities scoring at or above the
    threshold (less ``SCORE_TOLERANCE``) the highest wins and its score is
    capped at 1.0; ties go to the earliest enrolled identity
    because ``np.argmax`` returns the first maximal index.
    """

    def __init__(self, identities: IdentitySource):
        self.identities = identities

    def best_match(self, embedding: Sequence[float] | np.ndarray, threshold: float) -> MatchResult:
        query = np.asarray(embedding, dtype=np.float64).reshape(-1)
        candidates = self.identities.list_identities()
        if not candidates:
            return MatchResult(None, 0.0, query)

        matrix = np.vstack([identity.vector() for identity in candidates])
        if matrix.shape[1] != query.size:
            raise ValidationError(f"Query length {query.size} does not match enrolled length {matrix.shape[1]}.")

        scores = matrix @ query
        idx = int(np.argmax(scores))
        best = min(float(scores[idx]), 1.0)
        if best < threshold - SCORE_TOLERANCE:
            return MatchResult(None, best, query)
        return MatchResult(candidates[idx], best, query)

    def match(self, embedding: Sequence[float] | np.ndarray, threshold: float) -> Identity | None:
        return self.best_match(embedding, threshold).identity

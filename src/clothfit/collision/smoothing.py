"""Shape-preserving Laplacian relaxation around displaced vertices."""

import logging

import numpy as np
from scipy.sparse import csr_matrix

from clothfit.constants import (
    DEFAULT_PRESERVE_STRENGTH,
    DEFAULT_SMOOTHING_ITERATIONS,
    DISPLACED_BLEND_SCALE,
    RELAX_FACTOR,
    SMOOTHING_ITERATIONS_MAX,
    SMOOTHING_ITERATIONS_MIN,
)

logger = logging.getLogger(__name__)


class VertexAdjacency:
    """Undirected vertex graph whose edges are shared triangle edges."""

    def __init__(self, matrix: csr_matrix):
        self.matrix = matrix
        self.degrees = np.asarray(matrix.sum(axis=1)).ravel()
        self.edges = None

    @classmethod
    def from_triangles(cls, triangles: np.ndarray, vertex_count: int) -> "VertexAdjacency":
        tri = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
        e01 = np.column_stack([tri[:, 0], tri[:, 1]])
        e12 = np.column_stack([tri[:, 1], tri[:, 2]])
        e20 = np.column_stack([tri[:, 2], tri[:, 0]])
        all_edges = np.concatenate([e01, e12, e20], axis=0)  # (3T, 2)

        sorted_edges = np.sort(all_edges, axis=1)
        sorted_edges = sorted_edges[sorted_edges[:, 0] != sorted_edges[:, 1]]
        unique_edges = np.unique(sorted_edges, axis=0)  # (E, 2)

        rows = np.concatenate([unique_edges[:, 0], unique_edges[:, 1]])
        cols = np.concatenate([unique_edges[:, 1], unique_edges[:, 0]])
        data = np.ones(len(rows), dtype=np.float64)
        matrix = csr_matrix((data, (rows, cols)), shape=(vertex_count, vertex_count))
        adjacency = cls(matrix)
        adjacency.edges = unique_edges
        return adjacency

    @property
    def vertex_count(self) -> int:
        return self.matrix.shape[0]

    def neighbors(self, i: int) -> np.ndarray:
        start, end = self.matrix.indptr[i], self.matrix.indptr[i + 1]
        return self.matrix.indices[start:end]

    def ring(self, mask: np.ndarray) -> np.ndarray:
        """``mask`` plus every vertex sharing an edge with it."""
        mask = np.asarray(mask, dtype=bool)
        touched = self.matrix @ mask.astype(np.float64)
        return mask | (touched > 0)


class ShapePreservingSmoother:
    """Relax displaced vertices and their one-ring toward neighbour centroids.

    Each iteration moves region vertices halfway to their neighbour
    centroid, then blends them back toward their pre-resolution position:
    by ``strength * 0.25`` for displaced vertices (keep the fix) and by
    ``strength`` for merely adjacent ones (keep the shape).
    """

    def __init__(self, strength: float = DEFAULT_PRESERVE_STRENGTH,
                 iterations: int = DEFAULT_SMOOTHING_ITERATIONS):
        self.strength = max(0.0, min(1.0, float(strength)))
        self.iterations = int(max(SMOOTHING_ITERATIONS_MIN,
                                  min(SMOOTHING_ITERATIONS_MAX, int(iterations))))

    def smooth(
        self,
        original: np.ndarray,
        displaced: np.ndarray,
        displaced_mask: np.ndarray,
        adjacency: VertexAdjacency,
    ) -> np.ndarray:
        """Return smoothed (V, 3) positions; vertices outside the region are copied."""
        current = np.array(displaced, dtype=np.float64, copy=True)
        mask = np.asarray(displaced_mask, dtype=bool)
        if not mask.any():
            return current

        region = adjacency.ring(mask)
        # Isolated vertices have no centroid to relax toward
        active = region & (adjacency.degrees > 0)
        idx = np.nonzero(active)[0]
        if len(idx) == 0:
            return current

        weight = np.where(mask[idx], self.strength * DISPLACED_BLEND_SCALE, self.strength)[:, None]
        deg = adjacency.degrees[idx][:, None]
        rows = adjacency.matrix[idx]
        target = np.asarray(original, dtype=np.float64)[idx]

        for _ in range(self.iterations):
            centroid = (rows @ current) / deg
            relaxed = current[idx] + RELAX_FACTOR * (centroid - current[idx])
            current[idx] = relaxed + weight * (target - relaxed)

        logger.debug("Smoothed %d vertices (%d displaced) over %d iterations",
                     len(idx), int(mask.sum()), self.iterations)
        return current

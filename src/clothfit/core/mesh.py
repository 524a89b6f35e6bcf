"""Mesh data structures for geometry storage."""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray


@dataclass
class BufferGeometry:
    """Stores vertex attribute arrays for a mesh.

    positions: Nx3 flat float32 array (x,y,z per vertex), in the owning
        node's local space
    normals: Nx3 flat float32 array
    indices: triangle index array (uint32), three entries per triangle
    bounds_min/bounds_max: axis-aligned bounds of positions, refreshed by
        ``compute_bounds``
    """
    positions: NDArray[np.float32]
    normals: Optional[NDArray[np.float32]] = None
    indices: Optional[NDArray[np.uint32]] = None
    vertex_count: int = 0
    bounds_min: Optional[NDArray[np.float64]] = None
    bounds_max: Optional[NDArray[np.float64]] = None

    def __post_init__(self):
        self.positions = np.asarray(self.positions, dtype=np.float32).ravel()
        if self.indices is not None:
            self.indices = np.asarray(self.indices, dtype=np.uint32).ravel()
        if self.vertex_count == 0:
            self.vertex_count = len(self.positions) // 3
        if self.normals is None:
            self.normals = np.zeros_like(self.positions)
        if self.bounds_min is None:
            self.compute_bounds()

    @property
    def triangle_count(self) -> int:
        if self.indices is not None:
            return len(self.indices) // 3
        return 0

    @property
    def has_indices(self) -> bool:
        return self.indices is not None and len(self.indices) > 0

    @property
    def triangles(self) -> NDArray[np.int64]:
        """(T, 3) triangle vertex indices (empty when unindexed)."""
        if not self.has_indices:
            return np.zeros((0, 3), dtype=np.int64)
        return self.indices.reshape(-1, 3).astype(np.int64)

    def vertices(self) -> NDArray[np.float64]:
        """(N, 3) float64 copy of the positions."""
        return self.positions.reshape(-1, 3).astype(np.float64)

    def set_vertices(self, verts: NDArray) -> None:
        self.positions = np.asarray(verts, dtype=np.float32).ravel()
        self.vertex_count = len(self.positions) // 3

    def compute_normals(self) -> None:
        """Compute per-vertex normals as the sum of adjacent face normals."""
        pos = self.vertices()
        norms = np.zeros_like(pos)

        if self.has_indices:
            tri = self.triangles
            v0, v1, v2 = pos[tri[:, 0]], pos[tri[:, 1]], pos[tri[:, 2]]
            n = np.cross(v1 - v0, v2 - v0)
            np.add.at(norms, tri[:, 0], n)
            np.add.at(norms, tri[:, 1], n)
            np.add.at(norms, tri[:, 2], n)

        lengths = np.linalg.norm(norms, axis=1, keepdims=True)
        lengths = np.maximum(lengths, 1e-10)
        norms /= lengths
        self.normals = norms.ravel().astype(np.float32)

    def compute_bounds(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Recompute and return the axis-aligned bounds (min, max)."""
        pos = self.vertices()
        if len(pos) == 0:
            self.bounds_min = np.zeros(3, dtype=np.float64)
            self.bounds_max = np.zeros(3, dtype=np.float64)
        else:
            self.bounds_min = pos.min(axis=0)
            self.bounds_max = pos.max(axis=0)
        return self.bounds_min, self.bounds_max

    def clone(self) -> "BufferGeometry":
        """Create a deep copy."""
        return BufferGeometry(
            positions=self.positions.copy(),
            normals=self.normals.copy(),
            indices=self.indices.copy() if self.indices is not None else None,
            vertex_count=self.vertex_count,
        )


@dataclass
class MeshInstance:
    """A named mesh attached to a scene node."""
    name: str
    geometry: BufferGeometry
    visible: bool = True
    # Set whenever the vertex buffer is replaced
    needs_update: bool = True

    # Optional: rest positions for deformation systems
    rest_positions: Optional[NDArray[np.float32]] = None

    def store_rest_pose(self) -> None:
        """Save current positions as rest pose."""
        self.rest_positions = self.positions.copy()

    @property
    def positions(self) -> NDArray[np.float32]:
        return self.geometry.positions

    @positions.setter
    def positions(self, value: NDArray[np.float32]):
        self.geometry.positions = np.asarray(value, dtype=np.float32).ravel()
        self.needs_update = True

    @property
    def normals(self) -> NDArray[np.float32]:
        return self.geometry.normals

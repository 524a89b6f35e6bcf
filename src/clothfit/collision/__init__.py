"""Collision subsystem -- surface baking, penetration resolution, smoothing."""

from clothfit.collision.baking import BakedSurface, SurfaceBakeScope, bake_surface, partition_surfaces
from clothfit.collision.penetration import (
    PenetrationCandidate,
    PenetrationReport,
    PenetrationResolver,
    resolve_penetration,
)
from clothfit.collision.smoothing import ShapePreservingSmoother, VertexAdjacency

__all__ = [
    "BakedSurface",
    "PenetrationCandidate",
    "PenetrationReport",
    "PenetrationResolver",
    "ShapePreservingSmoother",
    "SurfaceBakeScope",
    "VertexAdjacency",
    "bake_surface",
    "partition_surfaces",
    "resolve_penetration",
]

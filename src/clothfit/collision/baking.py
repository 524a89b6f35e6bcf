"""Posed triangle-mesh snapshots of reference surfaces."""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

import numpy as np

from clothfit.core.math_utils import Mat4, batch_transform_points, mat4_inverse
from clothfit.core.scene_graph import SceneNode
from clothfit.collision.triangle_query import face_normals
from clothfit.skeleton.vocabulary import DEFAULT_VOCABULARY, MatchVocabulary

logger = logging.getLogger(__name__)


@dataclass
class BakedSurface:
    """One reference surface frozen at its current pose.

    ``vertices`` are posed (post-skinning) positions expressed in the
    surface node's local space; ``world_transform`` maps them to world.
    Lives for a single resolution pass.
    """
    name: str
    vertices: np.ndarray            # (V, 3) float64
    triangles: np.ndarray           # (T, 3) int64
    world_transform: Mat4
    is_priority: bool = False
    bounds: tuple[np.ndarray, np.ndarray] = None
    normals: np.ndarray = None      # (T, 3) unit face normals, local space
    inverse_transform: Mat4 = field(default=None, repr=False)

    def __post_init__(self):
        if self.bounds is None:
            if len(self.vertices):
                self.bounds = (self.vertices.min(axis=0), self.vertices.max(axis=0))
            else:
                self.bounds = (np.zeros(3), np.zeros(3))
        if self.normals is None:
            self.normals = face_normals(self.vertices, self.triangles)
        if self.inverse_transform is None:
            self.inverse_transform = mat4_inverse(self.world_transform)

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)

    def to_local(self, world_points: np.ndarray) -> np.ndarray:
        return batch_transform_points(self.inverse_transform, world_points)

    def contains(self, local_points: np.ndarray, margin: float) -> np.ndarray:
        """Boolean mask: points inside the bounds expanded by ``margin`` per side."""
        lo = self.bounds[0] - margin
        hi = self.bounds[1] + margin
        return np.all((local_points >= lo) & (local_points <= hi), axis=1)

    def world_normals(self, triangle_index: np.ndarray) -> np.ndarray:
        """Unit world-space normals of the given triangles (inverse-transpose)."""
        normal_matrix = self.inverse_transform[:3, :3].T
        n = self.normals[triangle_index] @ normal_matrix.T
        lengths = np.linalg.norm(n, axis=1, keepdims=True)
        return n / np.maximum(lengths, 1e-12)

    def release(self) -> None:
        self.vertices = np.zeros((0, 3))
        self.triangles = np.zeros((0, 3), dtype=np.int64)
        self.normals = np.zeros((0, 3))


def bake_surface(node: SceneNode, is_priority: bool = False) -> Optional[BakedSurface]:
    """Snapshot a mesh node at its current pose; None when it has no triangles."""
    mesh = node.mesh
    if mesh is None or mesh.geometry.triangle_count == 0:
        return None

    world = node.get_world_matrix()
    if node.skin is not None:
        posed_world = node.skin.posed_world_positions()
        vertices = batch_transform_points(mat4_inverse(world), posed_world)
    else:
        vertices = mesh.geometry.vertices()

    return BakedSurface(
        name=node.name,
        vertices=vertices,
        triangles=mesh.geometry.triangles,
        world_transform=world.copy(),
        is_priority=is_priority,
    )


def _matches_keyword(name: str, keywords: Iterable[str]) -> bool:
    lower = name.lower()
    return any(kw in lower for kw in keywords)


def partition_surfaces(
    nodes: Sequence[SceneNode],
    prefer_body_meshes: bool = True,
    keywords: Optional[Iterable[str]] = None,
) -> tuple[list[SceneNode], list[SceneNode]]:
    """Split mesh nodes into (priority, remainder).

    Priority surfaces are those named like body parts.  If nothing matches,
    or the preference is off, every surface is priority.
    """
    if keywords is None:
        keywords = DEFAULT_VOCABULARY.priority_keywords
    keywords = tuple(keywords)

    if not prefer_body_meshes:
        return list(nodes), []

    priority = [n for n in nodes if _matches_keyword(n.name, keywords)]
    if not priority:
        return list(nodes), []
    remainder = [n for n in nodes if not _matches_keyword(n.name, keywords)]
    return priority, remainder


def collect_mesh_nodes(root: SceneNode, exclude: Optional[SceneNode] = None) -> list[SceneNode]:
    """Visible mesh nodes under ``root`` in pre-order, skipping ``exclude``'s subtree."""
    result = []

    def _walk(node: SceneNode):
        if node is exclude:
            return
        if node.visible and node.mesh is not None and node.mesh.visible:
            result.append(node)
        for child in node.children:
            _walk(child)

    _walk(root)
    return result


class SurfaceBakeScope:
    """Context manager owning the baked reference surfaces of one pass.

    Surfaces are released on exit, whether the pass returns early,
    completes, or raises::

        with SurfaceBakeScope(character_root) as scope:
            for surface in scope.priority: ...
    """

    def __init__(
        self,
        root: SceneNode,
        prefer_body_meshes: bool = True,
        vocabulary: Optional[MatchVocabulary] = None,
        exclude: Optional[SceneNode] = None,
    ):
        self.root = root
        self.prefer_body_meshes = prefer_body_meshes
        self.vocabulary = vocabulary or DEFAULT_VOCABULARY
        self.exclude = exclude
        self.priority: list[BakedSurface] = []
        self.remainder: list[BakedSurface] = []

    def __enter__(self) -> "SurfaceBakeScope":
        nodes = collect_mesh_nodes(self.root, exclude=self.exclude)
        pri_nodes, rem_nodes = partition_surfaces(
            nodes, self.prefer_body_meshes, self.vocabulary.priority_keywords)
        self.priority = [s for s in (bake_surface(n, True) for n in pri_nodes) if s is not None]
        self.remainder = [s for s in (bake_surface(n, False) for n in rem_nodes) if s is not None]
        logger.debug("Baked %d priority and %d remainder surfaces under '%s'",
                     len(self.priority), len(self.remainder), self.root.name)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    @property
    def surfaces(self) -> list[BakedSurface]:
        return self.priority + self.remainder

    def __bool__(self) -> bool:
        return bool(self.priority or self.remainder)

    def release(self) -> None:
        for surface in self.priority + self.remainder:
            surface.release()
        self.priority = []
        self.remainder = []

"""Push clothing vertices out of character surfaces.

For every clothing mesh under the clothing root:

1. Pose the clothing vertices in world space (linear blend skinning).
2. Test them against the character's baked surfaces, priority surfaces
   first; vertices fixed by the priority pass skip the remainder pass.
3. Move each penetrating vertex along the normal of its shallowest hit by
   ``depth + push_out``.
4. Optionally relax the displaced region, then re-project displaced
   vertices to at least ``push_out`` in front of their offending plane.
5. Map the result back into the editable bind-space buffer.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from clothfit.constants import (
    ADVANCED_SAMPLING,
    BASIC_SAMPLING,
    DEFAULT_PRESERVE_STRENGTH,
    DEFAULT_PUSH_OUT,
    DEFAULT_SMOOTHING_ITERATIONS,
    DEFAULT_THRESHOLD,
    MAX_QUERY_PAIRS,
    PUSH_OUT_MAX,
    PUSH_OUT_MIN,
    REMAINDER_STRIDE_FACTOR,
    THRESHOLD_MAX,
    THRESHOLD_MIN,
)
from clothfit.core.math_utils import (
    batch_transform_points,
    clamp,
    mat4_inverse,
)
from clothfit.core.scene_graph import SceneNode
from clothfit.collision.baking import BakedSurface, SurfaceBakeScope, collect_mesh_nodes
from clothfit.collision.smoothing import ShapePreservingSmoother, VertexAdjacency
from clothfit.collision.triangle_query import query_penetrations
from clothfit.skeleton.vocabulary import MatchVocabulary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PenetrationCandidate:
    """The hit chosen for one vertex (shallowest; first found on ties)."""
    vertex_index: int
    depth: float
    push_direction: np.ndarray = field(compare=False)
    surface_index: int = -1
    triangle_index: int = -1


@dataclass
class PenetrationReport:
    """Summary of one ``resolve`` call."""
    total_vertices: int = 0
    adjusted_vertices: int = 0
    priority_surfaces: int = 0
    remainder_surfaces: int = 0
    modified_meshes: list[str] = field(default_factory=list)
    candidates: dict[str, list[PenetrationCandidate]] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def modified(self) -> bool:
        return bool(self.modified_meshes)


class _Cancelled(Exception):
    pass


@dataclass
class _PassState:
    """Per-mesh working buffers shared by the priority and remainder passes."""
    world: np.ndarray                 # (V, 3) posed positions before resolution
    depth: np.ndarray                 # (V,) chosen depth, inf when none
    direction: np.ndarray             # (V, 3) world push direction
    plane_point: np.ndarray           # (V, 3) closest point, world
    surface_index: np.ndarray         # (V,)
    triangle_index: np.ndarray        # (V,)
    resolved: np.ndarray              # (V,) bool


class PenetrationResolver:
    """Resolves clothing/character interpenetration at vertex granularity.

    All numeric settings are clamped to safe ranges on construction.
    ``should_cancel`` is polled between vertex batches; a cancelled run
    leaves every buffer untouched and returns False.
    """

    def __init__(
        self,
        push_out_distance: float = DEFAULT_PUSH_OUT,
        penetration_threshold: float = DEFAULT_THRESHOLD,
        advanced_sampling: bool = True,
        prefer_body_meshes: bool = True,
        preserve_shape: bool = True,
        preserve_strength: float = DEFAULT_PRESERVE_STRENGTH,
        smoothing_iterations: int = DEFAULT_SMOOTHING_ITERATIONS,
        vocabulary: Optional[MatchVocabulary] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ):
        self.push_out = clamp(float(push_out_distance), PUSH_OUT_MIN, PUSH_OUT_MAX)
        self.threshold = clamp(float(penetration_threshold), THRESHOLD_MIN, THRESHOLD_MAX)
        self.stride, self.margin = ADVANCED_SAMPLING if advanced_sampling else BASIC_SAMPLING
        self.prefer_body_meshes = prefer_body_meshes
        self.preserve_shape = preserve_shape
        self.smoother = ShapePreservingSmoother(preserve_strength, smoothing_iterations)
        self.vocabulary = vocabulary
        self.should_cancel = should_cancel
        self.last_report = PenetrationReport()

    def resolve(self, character_root: Optional[SceneNode],
                clothing_root: Optional[SceneNode]) -> bool:
        """Returns True iff at least one clothing mesh changed."""
        self.last_report = report = PenetrationReport()
        if character_root is None or clothing_root is None:
            logger.warning("Penetration resolution skipped: missing root")
            return False

        clothing_nodes = [n for n in collect_mesh_nodes(clothing_root)
                          if n.mesh.geometry.triangle_count > 0]
        if not clothing_nodes:
            logger.info("No clothing meshes with triangles under '%s'", clothing_root.name)
            return False

        with SurfaceBakeScope(character_root, self.prefer_body_meshes,
                              self.vocabulary, exclude=clothing_root) as scope:
            report.priority_surfaces = len(scope.priority)
            report.remainder_surfaces = len(scope.remainder)
            if not scope:
                logger.info("No reference surfaces under '%s'", character_root.name)
                return False

            # Compute every mesh first so cancellation never leaves a partial write
            pending = []
            try:
                for node in clothing_nodes:
                    result = self._resolve_mesh(node, scope)
                    report.total_vertices += node.mesh.geometry.vertex_count
                    if result is not None:
                        pending.append((node, *result))
            except _Cancelled:
                report.cancelled = True
                logger.info("Penetration resolution cancelled")
                return False

        for node, new_local, candidates in pending:
            self._write_back(node, new_local)
            report.modified_meshes.append(node.name)
            report.candidates[node.name] = candidates
            report.adjusted_vertices += len(candidates)

        logger.info("Penetration: %d/%d vertices adjusted in %d mesh(es)",
                    report.adjusted_vertices, report.total_vertices, len(report.modified_meshes))
        return report.modified

    # ── Per mesh ──

    def _resolve_mesh(self, node: SceneNode, scope: SurfaceBakeScope):
        """Return (new bind-space vertices, candidates), or None if untouched."""
        geometry = node.mesh.geometry
        bind = geometry.vertices()

        if node.skin is not None:
            matrices = node.skin.skinning_matrices()
            world = node.skin.posed_world_positions(matrices)
        else:
            matrices = None
            world = batch_transform_points(node.get_world_matrix(), bind)

        V = len(world)
        state = _PassState(
            world=world,
            depth=np.full(V, np.inf),
            direction=np.zeros((V, 3)),
            plane_point=np.zeros((V, 3)),
            surface_index=np.full(V, -1, dtype=np.int64),
            triangle_index=np.full(V, -1, dtype=np.int64),
            resolved=np.zeros(V, dtype=bool),
        )

        self._run_pass(state, scope.priority, self.stride, surface_offset=0)
        self._run_pass(state, scope.remainder, self.stride * REMAINDER_STRIDE_FACTOR,
                       surface_offset=len(scope.priority))

        mask = state.resolved
        if not mask.any():
            return None

        # Displace along the world normal by (plane depth + push-out)
        offset = world - state.plane_point
        signed = np.einsum('ij,ij->i', offset, state.direction)
        displaced = world.copy()
        displaced[mask] += (self.push_out - signed[mask])[:, None] * state.direction[mask]

        final = displaced
        if self.preserve_shape:
            adjacency = VertexAdjacency.from_triangles(geometry.triangles, V)
            final = self.smoother.smooth(world, displaced, mask, adjacency)
            final = self._project_out(final, state)

        changed = np.any(final != world, axis=1)
        new_local = bind.copy()
        if matrices is not None:
            new_local[changed] = node.skin.unpose_world_positions(final[changed],
                                                                  matrices[changed])
        else:
            inverse = mat4_inverse(node.get_world_matrix())
            new_local[changed] = batch_transform_points(inverse, final[changed])

        candidates = [
            PenetrationCandidate(
                vertex_index=int(i),
                depth=float(state.depth[i]),
                push_direction=state.direction[i].copy(),
                surface_index=int(state.surface_index[i]),
                triangle_index=int(state.triangle_index[i]),
            )
            for i in np.nonzero(mask)[0]
        ]
        logger.debug("Mesh '%s': %d penetrating vertices", node.name, len(candidates))
        return new_local, candidates

    def _run_pass(self, state: _PassState, surfaces: list[BakedSurface],
                  stride: int, surface_offset: int) -> None:
        pending = np.nonzero(~state.resolved)[0]
        if len(pending) == 0 or not surfaces:
            return

        hit = np.zeros(len(state.world), dtype=bool)
        for s, surface in enumerate(surfaces):
            local = surface.to_local(state.world[pending])
            inside = surface.contains(local, self.margin)
            if not inside.any():
                continue
            verts = pending[inside]
            local = local[inside]

            n_tris = max(1, -(-surface.triangle_count // stride))
            batch = max(1, MAX_QUERY_PAIRS // n_tris)
            for start in range(0, len(verts), batch):
                if self.should_cancel is not None and self.should_cancel():
                    raise _Cancelled()
                chunk = verts[start:start + batch]
                depth, tri, closest = query_penetrations(
                    local[start:start + batch], surface.vertices, surface.triangles,
                    surface.normals, self.threshold, stride)

                # Strictly shallower replaces; first found wins on equal depth
                better = depth < state.depth[chunk]
                if not better.any():
                    continue
                idx = chunk[better]
                state.depth[idx] = depth[better]
                state.triangle_index[idx] = tri[better]
                state.surface_index[idx] = surface_offset + s
                state.direction[idx] = surface.world_normals(tri[better])
                state.plane_point[idx] = batch_transform_points(surface.world_transform,
                                                                closest[better])
                hit[idx] = True

        state.resolved |= hit

    def _project_out(self, positions: np.ndarray, state: _PassState) -> np.ndarray:
        """Keep displaced vertices at least push-out in front of their plane."""
        mask = state.resolved
        out = positions.copy()
        offset = out[mask] - state.plane_point[mask]
        signed = np.einsum('ij,ij->i', offset, state.direction[mask])
        short = signed < self.push_out
        if short.any():
            rows = np.nonzero(mask)[0][short]
            out[rows] += (self.push_out - signed[short])[:, None] * state.direction[rows]
        return out

    @staticmethod
    def _write_back(node: SceneNode, new_local: np.ndarray) -> None:
        geometry = node.mesh.geometry
        geometry.set_vertices(new_local)
        geometry.compute_normals()
        geometry.compute_bounds()
        node.mesh.needs_update = True


def resolve_penetration(
    character_root: Optional[SceneNode],
    clothing_root: Optional[SceneNode],
    push_out_distance: float = DEFAULT_PUSH_OUT,
    penetration_threshold: float = DEFAULT_THRESHOLD,
    advanced_sampling: bool = True,
    prefer_body_meshes: bool = True,
    preserve_shape: bool = True,
    preserve_strength: float = DEFAULT_PRESERVE_STRENGTH,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> bool:
    """One-shot resolution; True iff any clothing mesh changed."""
    resolver = PenetrationResolver(
        push_out_distance=push_out_distance,
        penetration_threshold=penetration_threshold,
        advanced_sampling=advanced_sampling,
        prefer_body_meshes=prefer_body_meshes,
        preserve_shape=preserve_shape,
        preserve_strength=preserve_strength,
        should_cancel=should_cancel,
    )
    return resolver.resolve(character_root, clothing_root)

"""Linear blend skinning for meshes bound to scene-graph bones."""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from clothfit.core.math_utils import (
    mat4_inverse,
    batch_transform_points_per_matrix,
)
from clothfit.core.mesh import MeshInstance
from clothfit.core.scene_graph import SceneNode


@dataclass
class SkinnedMesh:
    """Per-mesh skinning data: vertex → bone assignments + weights.

    The geometry buffer of ``mesh`` holds bind-space positions in the
    renderer node's local space.  For each vertex:

        skin[v]  = Σ_k w[v,k] · bone_world[b] @ bind_pose[b],  b = idx[v,k]
        world[v] = skin[v] @ bind_pos[v]

    where ``bind_pose[b] = inv(bone_world_at_bind) @ renderer_world_at_bind``.
    """
    node: SceneNode
    mesh: MeshInstance
    bones: list[SceneNode]
    bind_poses: np.ndarray     # (B, 4, 4)
    bone_indices: np.ndarray   # (V, K) int
    bone_weights: np.ndarray   # (V, K) float, rows sum to 1 (or 0 → rigid)

    @classmethod
    def bind(
        cls,
        node: SceneNode,
        bones: list[SceneNode],
        bone_indices: np.ndarray,
        bone_weights: np.ndarray,
    ) -> "SkinnedMesh":
        """Capture bind poses from the current pose and attach to ``node``.

        Parameters
        ----------
        node : SceneNode
            Renderer node carrying the mesh.
        bones : list[SceneNode]
            Bone nodes referenced by ``bone_indices``.
        bone_indices, bone_weights : ndarray
            (V, K) influences; a 1-D array is treated as K=1.
        """
        if node.mesh is None:
            raise ValueError(f"Node '{node.name}' has no mesh to skin")

        idx = np.asarray(bone_indices, dtype=np.int64)
        w = np.asarray(bone_weights, dtype=np.float64)
        if idx.ndim == 1:
            idx = idx[:, np.newaxis]
        if w.ndim == 1:
            w = w[:, np.newaxis]

        # Normalise weights per vertex
        total = w.sum(axis=1, keepdims=True)
        w = np.where(total > 1e-12, w / np.maximum(total, 1e-12), 0.0)

        renderer_world = node.get_world_matrix()
        bind_poses = np.array(
            [mat4_inverse(b.get_world_matrix()) @ renderer_world for b in bones],
            dtype=np.float64,
        ).reshape(-1, 4, 4)

        skin = cls(
            node=node,
            mesh=node.mesh,
            bones=list(bones),
            bind_poses=bind_poses,
            bone_indices=idx,
            bone_weights=w,
        )
        node.skin = skin
        return skin

    @property
    def vertex_count(self) -> int:
        return len(self.bone_indices)

    def bone_matrices(self) -> np.ndarray:
        """(B, 4, 4) current ``bone_world @ bind_pose`` per bone."""
        if not self.bones:
            return np.zeros((0, 4, 4), dtype=np.float64)
        current = np.array([b.get_world_matrix() for b in self.bones], dtype=np.float64)
        return current @ self.bind_poses

    def skinning_matrices(self) -> np.ndarray:
        """(V, 4, 4) blended bind-space → world matrices, one per vertex."""
        V = self.vertex_count
        bone_mats = self.bone_matrices()
        if len(bone_mats) == 0:
            return np.broadcast_to(self.node.get_world_matrix(), (V, 4, 4)).copy()

        # (V, K, 4, 4) gathered, then weighted sum over K
        gathered = bone_mats[self.bone_indices]
        blended = np.einsum('vk,vkij->vij', self.bone_weights, gathered)

        # Unweighted vertices follow the renderer node rigidly
        rigid = self.bone_weights.sum(axis=1) < 1e-12
        if np.any(rigid):
            blended[rigid] = self.node.get_world_matrix()
        return blended

    def posed_world_positions(self, matrices: Optional[np.ndarray] = None) -> np.ndarray:
        """(V, 3) world positions of the current pose."""
        if matrices is None:
            matrices = self.skinning_matrices()
        return batch_transform_points_per_matrix(matrices, self.mesh.geometry.vertices())

    def unpose_world_positions(
        self,
        world_positions: np.ndarray,
        matrices: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Map (V, 3) world positions back to bind space."""
        if matrices is None:
            matrices = self.skinning_matrices()
        inverse = np.linalg.inv(matrices)
        return batch_transform_points_per_matrix(inverse, world_positions)

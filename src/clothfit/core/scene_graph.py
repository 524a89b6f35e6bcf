"""Scene graph with hierarchical transforms, the live hierarchy that fitting mutates."""

from typing import Iterator, Optional, TYPE_CHECKING

import numpy as np

from clothfit.core.math_utils import (
    Mat4, Vec3, Quat,
    mat4_identity, mat4_compose, mat4_decompose, mat4_inverse,
    quat_identity, quat_multiply, quat_conjugate, quat_normalize,
    transform_point, vec3,
)
from clothfit.core.mesh import MeshInstance

if TYPE_CHECKING:
    from clothfit.core.skinning import SkinnedMesh


class StaleNodeError(RuntimeError):
    """Raised when a disposed node is mutated."""


class SceneNode:
    """A node in the scene graph hierarchy.

    position, quaternion, scale → local matrix.
    World matrix = parent.world_matrix @ local_matrix.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self.parent: Optional["SceneNode"] = None
        self.children: list["SceneNode"] = []

        # Transform
        self.position: Vec3 = vec3()
        self.quaternion: Quat = quat_identity()
        self.scale: Vec3 = vec3(1, 1, 1)

        # Matrices
        self.local_matrix: Mat4 = mat4_identity()
        self.world_matrix: Mat4 = mat4_identity()

        self.visible: bool = True

        # Optional mesh attached to this node; ``skin`` binds it to bones
        self.mesh: Optional[MeshInstance] = None
        self.skin: Optional["SkinnedMesh"] = None

        self.disposed: bool = False

        # Dirty flag for matrix updates
        self._matrix_dirty: bool = True

    def __repr__(self) -> str:
        return f"SceneNode({self.name!r})"

    # ── Hierarchy ──────────────────────────────────────────────────────

    def add(self, child: "SceneNode") -> "SceneNode":
        """Add a child node. Removes from previous parent if any."""
        if child.parent is not None:
            child.parent.remove(child)
        child.parent = self
        self.children.append(child)
        child._matrix_dirty = True
        return self

    def remove(self, child: "SceneNode") -> "SceneNode":
        """Remove a child node."""
        if child in self.children:
            self.children.remove(child)
            child.parent = None
        return self

    def attach(self, child: "SceneNode", keep_world: bool = True) -> "SceneNode":
        """Re-parent ``child`` under this node, optionally keeping its world pose."""
        world = child.get_world_matrix()
        self.add(child)
        if keep_world:
            local = mat4_inverse(self.get_world_matrix()) @ world
            child._set_local_from_matrix(local)
        return self

    def detach(self, keep_world: bool = True) -> "SceneNode":
        """Make this node a root, optionally keeping its world pose."""
        world = self.get_world_matrix()
        if self.parent is not None:
            self.parent.remove(self)
        if keep_world:
            self._set_local_from_matrix(world)
        return self

    def set_parent(self, parent: Optional["SceneNode"], keep_world: bool = True) -> None:
        if parent is None:
            self.detach(keep_world=keep_world)
        elif parent is not self.parent:
            parent.attach(self, keep_world=keep_world)

    def iter_ancestors(self) -> Iterator["SceneNode"]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    @property
    def depth(self) -> int:
        return sum(1 for _ in self.iter_ancestors())

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def has_renderer(self) -> bool:
        return self.mesh is not None

    def dispose(self) -> None:
        """Invalidate this node; later transform writes raise StaleNodeError."""
        self.disposed = True

    def _check_alive(self) -> None:
        if self.disposed:
            raise StaleNodeError(f"Node '{self.name}' has been disposed")

    # ── Local transform ───────────────────────────────────────────────

    def set_position(self, x: float, y: float, z: float) -> "SceneNode":
        self._check_alive()
        self.position = vec3(x, y, z)
        self._matrix_dirty = True
        return self

    def set_quaternion(self, q: Quat) -> "SceneNode":
        self._check_alive()
        self.quaternion = quat_normalize(np.asarray(q, dtype=np.float64).copy())
        self._matrix_dirty = True
        return self

    def set_scale(self, x: float, y: float, z: float) -> "SceneNode":
        self._check_alive()
        self.scale = vec3(x, y, z)
        self._matrix_dirty = True
        return self

    def _set_local_from_matrix(self, m: Mat4) -> None:
        pos, quat, scl = mat4_decompose(m)
        self.set_position(*pos)
        self.set_quaternion(quat)
        self.set_scale(*scl)

    def update_local_matrix(self) -> None:
        """Recompute local matrix from position, quaternion, scale."""
        self.local_matrix = mat4_compose(self.position, self.quaternion, self.scale)
        self._matrix_dirty = False

    def update_world_matrix(self, force: bool = False) -> None:
        """Recursively update world matrices for this node and all descendants."""
        if self._matrix_dirty or force:
            self.update_local_matrix()

        if self.parent is not None:
            self.world_matrix = self.parent.world_matrix @ self.local_matrix
        else:
            self.world_matrix = self.local_matrix.copy()

        for child in self.children:
            child.update_world_matrix(force=force)

    # ── World transform ───────────────────────────────────────────────

    def get_world_matrix(self) -> Mat4:
        """World matrix computed from the current ancestor chain (never stale)."""
        if self._matrix_dirty:
            self.update_local_matrix()
        if self.parent is not None:
            self.world_matrix = self.parent.get_world_matrix() @ self.local_matrix
        else:
            self.world_matrix = self.local_matrix.copy()
        return self.world_matrix

    def get_world_position(self) -> Vec3:
        """Extract world position from world matrix."""
        return self.get_world_matrix()[:3, 3].copy()

    def get_world_quaternion(self) -> Quat:
        q = self.quaternion
        for ancestor in self.iter_ancestors():
            q = quat_multiply(ancestor.quaternion, q)
        return quat_normalize(q)

    def get_world_scale(self) -> Vec3:
        """Lossy world scale (column lengths of the world matrix)."""
        return mat4_decompose(self.get_world_matrix())[2]

    def set_world_position(self, p: Vec3) -> "SceneNode":
        if self.parent is not None:
            local = transform_point(mat4_inverse(self.parent.get_world_matrix()), p)
        else:
            local = np.asarray(p, dtype=np.float64)
        return self.set_position(*local)

    def set_world_quaternion(self, q: Quat) -> "SceneNode":
        if self.parent is not None:
            parent_q = self.parent.get_world_quaternion()
            q = quat_multiply(quat_conjugate(parent_q), q)
        return self.set_quaternion(q)

    def transform_point(self, local_point: Vec3) -> Vec3:
        """Local → world."""
        return transform_point(self.get_world_matrix(), local_point)

    def inverse_transform_point(self, world_point: Vec3) -> Vec3:
        """World → local."""
        return transform_point(mat4_inverse(self.get_world_matrix()), world_point)

    # ── Traversal ─────────────────────────────────────────────────────

    def traverse(self, callback) -> None:
        """Visit this node and all descendants depth-first."""
        callback(self)
        for child in self.children:
            child.traverse(callback)

    def iter_depth_first(self) -> Iterator["SceneNode"]:
        """Pre-order iterator over this node and its descendants."""
        yield self
        for child in self.children:
            yield from child.iter_depth_first()

    def find(self, name: str) -> Optional["SceneNode"]:
        """Find first descendant with given name."""
        if self.name == name:
            return self
        for child in self.children:
            found = child.find(name)
            if found is not None:
                return found
        return None

    def find_all(self, name: str) -> list["SceneNode"]:
        """Find all descendants with given name."""
        results = []
        if self.name == name:
            results.append(self)
        for child in self.children:
            results.extend(child.find_all(name))
        return results

    def mark_dirty(self) -> None:
        """Mark this node and all descendants as needing matrix update."""
        self._matrix_dirty = True
        for child in self.children:
            child.mark_dirty()


class Scene(SceneNode):
    """Root scene node."""

    def __init__(self):
        super().__init__(name="scene")

    def update(self) -> None:
        """Update all world matrices in the scene."""
        self.update_world_matrix(force=False)

    def collect_render_nodes(self) -> list[SceneNode]:
        """Collect all visible nodes carrying a mesh."""
        result = []

        def _collect(node: SceneNode):
            if node.visible and node.mesh is not None and node.mesh.visible:
                result.append(node)

        self.traverse(_collect)
        return result

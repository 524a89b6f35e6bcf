"""Tests for reference surface baking."""

import numpy as np
import pytest

from clothfit.collision.baking import (
    BakedSurface,
    SurfaceBakeScope,
    bake_surface,
    collect_mesh_nodes,
    partition_surfaces,
)
from clothfit.core.math_utils import vec3, quat_from_axis_angle
from clothfit.core.mesh import BufferGeometry, MeshInstance
from clothfit.core.scene_graph import SceneNode
from clothfit.core.skinning import SkinnedMesh


def _plane_node(name, size=1.0):
    verts = np.array([[-size, 0, size], [size, 0, size], [size, 0, -size], [-size, 0, -size]],
                     dtype=np.float32)
    node = SceneNode(name)
    node.mesh = MeshInstance(name=name, geometry=BufferGeometry(
        positions=verts.ravel(), indices=np.array([0, 1, 2, 0, 2, 3], dtype=np.uint32)))
    return node


def test_bake_static_surface():
    node = _plane_node("Body")
    node.set_position(0, 2, 0)
    surface = bake_surface(node, is_priority=True)
    assert surface.triangle_count == 2
    assert surface.is_priority
    np.testing.assert_array_almost_equal(surface.bounds[0], [-1, 0, -1])
    np.testing.assert_array_almost_equal(surface.bounds[1], [1, 0, 1])
    np.testing.assert_array_almost_equal(surface.normals, [[0, 1, 0], [0, 1, 0]])
    np.testing.assert_array_almost_equal(surface.to_local(np.array([[0, 2.5, 0]])), [[0, 0.5, 0]])


def test_bake_without_triangles_returns_none():
    node = SceneNode("points")
    node.mesh = MeshInstance(name="points", geometry=BufferGeometry(positions=np.zeros(9)))
    assert bake_surface(node) is None
    assert bake_surface(SceneNode("empty")) is None


def test_bake_skinned_surface_uses_current_pose():
    root = SceneNode("root")
    bone = SceneNode("bone")
    root.add(bone)
    node = _plane_node("Body")
    root.add(node)
    SkinnedMesh.bind(node, [bone], np.zeros(4), np.ones(4))
    bone.set_position(0, 0.5, 0)
    surface = bake_surface(node)
    np.testing.assert_array_almost_equal(surface.vertices[:, 1], [0.5] * 4)


def test_contains_margin_per_side():
    surface = bake_surface(_plane_node("Body"))
    pts = np.array([[0.0, 0.04, 0.0], [0.0, 0.06, 0.0], [1.04, 0.0, 0.0], [-1.06, 0.0, 0.0]])
    np.testing.assert_array_equal(surface.contains(pts, 0.05), [True, False, True, False])


def test_world_normals_use_inverse_transpose():
    node = _plane_node("Body")
    node.set_scale(2, 0.5, 1)
    node.set_quaternion(quat_from_axis_angle(vec3(1, 0, 0), np.pi / 2))
    surface = bake_surface(node)
    n = surface.world_normals(np.array([0, 1]))
    np.testing.assert_array_almost_equal(np.linalg.norm(n, axis=1), [1, 1])
    np.testing.assert_array_almost_equal(n[0], [0, 0, 1])


def test_release_drops_buffers():
    surface = bake_surface(_plane_node("Body"))
    surface.release()
    assert surface.triangle_count == 0
    assert len(surface.vertices) == 0


def test_partition_prefers_body_meshes():
    body = _plane_node("Body")
    prop = _plane_node("Sword")
    pri, rem = partition_surfaces([body, prop])
    assert pri == [body] and rem == [prop]


def test_partition_without_matches_or_preference():
    a = _plane_node("Sword")
    b = _plane_node("Shield")
    assert partition_surfaces([a, b]) == ([a, b], [])
    body = _plane_node("Body")
    assert partition_surfaces([body, a], prefer_body_meshes=False) == ([body, a], [])


def test_collect_mesh_nodes_skips_excluded_and_hidden():
    root = SceneNode("root")
    body = _plane_node("Body")
    hidden = _plane_node("Hidden")
    hidden.visible = False
    clothing = SceneNode("clothing")
    shirt = _plane_node("Shirt")
    clothing.add(shirt)
    for child in (body, hidden, clothing):
        root.add(child)
    assert collect_mesh_nodes(root, exclude=clothing) == [body]
    assert collect_mesh_nodes(root) == [body, shirt]


def test_bake_scope_releases_on_exit():
    root = SceneNode("root")
    root.add(_plane_node("Body"))
    root.add(_plane_node("Sword"))
    with SurfaceBakeScope(root) as scope:
        assert scope
        assert [s.name for s in scope.priority] == ["Body"]
        assert [s.name for s in scope.remainder] == ["Sword"]
        baked = scope.surfaces
    assert not scope
    assert all(s.triangle_count == 0 for s in baked)


def test_bake_scope_releases_on_error():
    root = SceneNode("root")
    root.add(_plane_node("Body"))
    with pytest.raises(RuntimeError):
        with SurfaceBakeScope(root) as scope:
            baked = scope.surfaces
            raise RuntimeError("boom")
    assert baked[0].triangle_count == 0


def test_baked_surface_defaults():
    verts = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=np.float64)
    s = BakedSurface("t", verts, np.array([[0, 1, 2]]), np.eye(4))
    np.testing.assert_array_almost_equal(s.normals, [[0, 0, 1]])
    np.testing.assert_array_almost_equal(s.inverse_transform, np.eye(4))

"""Tests for scene graph module."""

import numpy as np
import pytest

from clothfit.core.scene_graph import SceneNode, Scene, StaleNodeError
from clothfit.core.math_utils import (
    vec3, quat_identity, quat_from_axis_angle, quat_angle_deg, quat_rotate_vec3,
)
from clothfit.core.mesh import BufferGeometry, MeshInstance


def _make_mesh(name="test"):
    geom = BufferGeometry(
        positions=np.array([0, 0, 0, 1, 0, 0, 0, 1, 0], dtype=np.float32),
        indices=np.array([0, 1, 2], dtype=np.uint32),
    )
    return MeshInstance(name=name, geometry=geom)


def _chain(*names):
    nodes = [SceneNode(name=n) for n in names]
    for parent, child in zip(nodes, nodes[1:]):
        parent.add(child)
    return nodes


def test_node_hierarchy():
    parent = SceneNode(name="parent")
    child = SceneNode(name="child")
    parent.add(child)
    assert child.parent is parent
    assert child in parent.children


def test_node_remove():
    parent = SceneNode(name="parent")
    child = SceneNode(name="child")
    parent.add(child)
    parent.remove(child)
    assert child.parent is None
    assert child not in parent.children


def test_node_reparent():
    p1 = SceneNode(name="p1")
    p2 = SceneNode(name="p2")
    child = SceneNode(name="child")
    p1.add(child)
    p2.add(child)
    assert child.parent is p2
    assert child not in p1.children


def test_world_matrix_chain():
    root, mid, leaf = _chain("root", "mid", "leaf")
    root.set_position(1, 0, 0)
    mid.set_position(0, 2, 0)
    leaf.set_position(0, 0, 3)
    np.testing.assert_array_almost_equal(leaf.get_world_position(), [1, 2, 3])


def test_world_matrix_never_stale():
    root, leaf = _chain("root", "leaf")
    leaf.set_position(1, 0, 0)
    assert leaf.get_world_position()[0] == pytest.approx(1.0)
    root.set_position(5, 0, 0)
    # No explicit update call between the edit and the read
    assert leaf.get_world_position()[0] == pytest.approx(6.0)


def test_world_scale_propagates():
    root, leaf = _chain("root", "leaf")
    root.set_scale(2, 2, 2)
    leaf.set_position(1, 0, 0)
    np.testing.assert_array_almost_equal(leaf.get_world_position(), [2, 0, 0])
    np.testing.assert_array_almost_equal(leaf.get_world_scale(), [2, 2, 2])


def test_set_world_position_under_transformed_parent():
    root, leaf = _chain("root", "leaf")
    root.set_position(1, 1, 1)
    root.set_quaternion(quat_from_axis_angle(vec3(0, 1, 0), np.pi / 2))
    root.set_scale(2, 2, 2)
    leaf.set_world_position(vec3(3, -1, 4))
    np.testing.assert_array_almost_equal(leaf.get_world_position(), [3, -1, 4])


def test_set_world_quaternion_under_rotated_parent():
    root, leaf = _chain("root", "leaf")
    root.set_quaternion(quat_from_axis_angle(vec3(0, 0, 1), 0.7))
    target = quat_from_axis_angle(vec3(1, 0, 0), 0.3)
    leaf.set_world_quaternion(target)
    assert quat_angle_deg(leaf.get_world_quaternion(), target) == pytest.approx(0.0, abs=1e-4)


def test_attach_keeps_world_pose():
    a = SceneNode("a")
    b = SceneNode("b")
    child = SceneNode("child")
    a.add(child)
    a.set_position(1, 2, 3)
    child.set_position(1, 0, 0)
    b.set_position(-4, 0, 0)
    b.set_quaternion(quat_from_axis_angle(vec3(0, 1, 0), np.pi / 2))

    before = child.get_world_position()
    b.attach(child, keep_world=True)
    assert child.parent is b
    np.testing.assert_array_almost_equal(child.get_world_position(), before)


def test_attach_without_keep_world_keeps_local():
    a = SceneNode("a")
    b = SceneNode("b")
    child = SceneNode("child")
    a.add(child)
    child.set_position(1, 0, 0)
    b.set_position(0, 5, 0)
    b.attach(child, keep_world=False)
    np.testing.assert_array_almost_equal(child.get_world_position(), [1, 5, 0])


def test_detach_keeps_world_pose():
    root, leaf = _chain("root", "leaf")
    root.set_position(0, 3, 0)
    leaf.set_position(1, 0, 0)
    leaf.detach()
    assert leaf.parent is None
    np.testing.assert_array_almost_equal(leaf.position, [1, 3, 0])


def test_set_parent_none_detaches():
    root, leaf = _chain("root", "leaf")
    leaf.set_parent(None)
    assert leaf.parent is None
    assert leaf not in root.children


def test_depth_and_ancestors():
    root, mid, leaf = _chain("root", "mid", "leaf")
    assert leaf.depth == 2
    assert [n.name for n in leaf.iter_ancestors()] == ["mid", "root"]
    assert leaf.is_leaf and not root.is_leaf


def test_disposed_node_rejects_writes():
    node = SceneNode("bone")
    node.dispose()
    with pytest.raises(StaleNodeError):
        node.set_position(1, 0, 0)
    with pytest.raises(StaleNodeError):
        node.set_world_position(vec3(1, 0, 0))


def test_transform_point_round_trip():
    node = SceneNode("n")
    node.set_position(1, 2, 3)
    node.set_quaternion(quat_from_axis_angle(vec3(0, 0, 1), 0.4))
    p = vec3(0.3, -0.2, 0.9)
    np.testing.assert_array_almost_equal(node.inverse_transform_point(node.transform_point(p)), p)


def test_rotated_parent_moves_child():
    root, leaf = _chain("root", "leaf")
    leaf.set_position(1, 0, 0)
    root.set_quaternion(quat_from_axis_angle(vec3(0, 0, 1), np.pi / 2))
    np.testing.assert_array_almost_equal(leaf.get_world_position(), [0, 1, 0])
    np.testing.assert_array_almost_equal(
        quat_rotate_vec3(leaf.get_world_quaternion(), vec3(1, 0, 0)), [0, 1, 0])


def test_find():
    root, mid, leaf = _chain("root", "mid", "leaf")
    assert root.find("leaf") is leaf
    assert root.find("missing") is None


def test_find_all():
    root = SceneNode("root")
    for _ in range(2):
        root.add(SceneNode("dup"))
    assert len(root.find_all("dup")) == 2


def test_iter_depth_first_order():
    root = SceneNode("root")
    a = SceneNode("a")
    b = SceneNode("b")
    a1 = SceneNode("a1")
    root.add(a)
    root.add(b)
    a.add(a1)
    assert [n.name for n in root.iter_depth_first()] == ["root", "a", "a1", "b"]


def test_scene_update_and_collect():
    scene = Scene()
    node = SceneNode("m")
    node.mesh = _make_mesh()
    hidden = SceneNode("hidden")
    hidden.mesh = _make_mesh()
    hidden.visible = False
    scene.add(node)
    scene.add(hidden)
    node.set_position(0, 1, 0)
    scene.update()
    np.testing.assert_array_almost_equal(node.world_matrix[:3, 3], [0, 1, 0])
    assert scene.collect_render_nodes() == [node]
    assert node.has_renderer
    assert not scene.has_renderer


def test_quaternion_is_normalized_on_set():
    node = SceneNode("n")
    node.set_quaternion(np.array([0.0, 0.0, 2.0, 0.0]))
    assert np.linalg.norm(node.quaternion) == pytest.approx(1.0)
    np.testing.assert_array_almost_equal(node.quaternion, [0, 0, 1, 0])
    assert quat_angle_deg(quat_identity(), node.quaternion) == pytest.approx(180.0, abs=1e-4)

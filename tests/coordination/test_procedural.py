"""Tests for the procedural box figures."""

import numpy as np
import pytest

from clothfit.coordination.procedural import (
    build_character,
    build_clothing,
    humanoid_bone_table,
    make_box,
    merge_geometries,
)


@pytest.mark.parametrize("segments,open_ends,verts,tris", [
    (1, False, 24, 12),
    (2, False, 54, 48),
    (1, True, 16, 8),
    (4, True, 100, 128),
])
def test_make_box_counts(segments, open_ends, verts, tris):
    geom = make_box(1.0, 2.0, 3.0, segments=segments, open_ends=open_ends)
    assert geom.vertex_count == verts
    assert geom.triangle_count == tris


def test_make_box_dimensions():
    geom = make_box(1.0, 2.0, 3.0)
    np.testing.assert_array_almost_equal(geom.bounds_min, [-0.5, -1.0, -1.5])
    np.testing.assert_array_almost_equal(geom.bounds_max, [0.5, 1.0, 1.5])


def test_make_box_faces_point_outward():
    geom = make_box(1.0, 2.0, 3.0, segments=2)
    v = geom.vertices()
    tri = geom.triangles
    n = np.cross(v[tri[:, 1]] - v[tri[:, 0]], v[tri[:, 2]] - v[tri[:, 0]])
    centers = v[tri].mean(axis=1)
    assert np.all(np.einsum('ij,ij->i', n, centers) > 0)
    # Faces share no vertices, so vertex normals equal face normals
    normals = geom.normals.reshape(-1, 3)
    assert np.all(np.einsum('ij,ij->i', normals, v) > 0)


def test_open_box_has_no_caps():
    normals = make_box(1.0, 1.0, 1.0, open_ends=True).normals.reshape(-1, 3)
    np.testing.assert_array_almost_equal(normals[:, 1], 0.0)


def test_merge_geometries():
    a = make_box(1, 1, 1)
    b = make_box(1, 1, 1)
    merged, part_ids = merge_geometries([(a, np.zeros(3)), (b, np.array([5.0, 0, 0]))])
    assert merged.vertex_count == 48
    assert merged.triangle_count == 24
    np.testing.assert_array_equal(np.bincount(part_ids), [24, 24])
    assert merged.triangles[12:].min() == 24
    np.testing.assert_array_almost_equal(merged.bounds_max, [5.5, 0.5, 0.5])


def test_bone_table_parents_first():
    table = humanoid_bone_table()
    assert len(table) == 21
    seen = set()
    for name, parent, _ in table:
        assert parent is None or parent in seen
        seen.add(name)
    positions = {name: pos for name, _, pos in table}
    np.testing.assert_array_almost_equal(positions["RightHand"], positions["LeftHand"] * [-1, 1, 1])


def test_character_layout():
    character = build_character()
    hips = character.find("Hips")
    assert hips.parent.name == "Armature"
    np.testing.assert_array_almost_equal(character.find("LeftFoot").get_world_position(),
                                         [0.1, 0.08, 0.0])
    body = character.find("Body")
    assert body.skin is not None
    # Bound in the current pose
    np.testing.assert_array_almost_equal(body.skin.posed_world_positions(),
                                         body.mesh.geometry.vertices(), decimal=5)


def test_clothing_layout():
    clothing = build_clothing(scale=0.9)
    np.testing.assert_array_almost_equal(clothing.get_world_position(), [0.5, 0.0, 0.0])
    assert clothing.find("Neck") is None
    np.testing.assert_array_almost_equal(clothing.find("Thigh_L").get_world_position(),
                                         [0.5 + 0.09, 0.855, 0.0])
    assert clothing.find("Ribbon").parent.name == "chest"
    shirt = clothing.find("Shirt")
    pants = clothing.find("Pants")
    assert [b.name for b in shirt.skin.bones] == ["spine"]
    assert [b.name for b in pants.skin.bones] == ["Thigh_L", "Thigh_R"]


def test_clothing_without_decoration():
    assert build_clothing(with_decoration=False).find("Ribbon") is None

"""Tests for vertex adjacency and shape-preserving smoothing."""

import numpy as np

from clothfit.collision.smoothing import ShapePreservingSmoother, VertexAdjacency
from clothfit.constants import SMOOTHING_ITERATIONS_MAX


def _fan():
    """Hexagon fan around vertex 0, plus vertex 7 outside its one-ring."""
    angles = np.linspace(0, 2 * np.pi, 7)[:-1]
    ring = np.column_stack([np.cos(angles), np.sin(angles), np.zeros(6)])
    verts = np.vstack([[0, 0, 0], ring, [1.5, 0.9, 0]])
    tris = [[0, i, i % 6 + 1] for i in range(1, 7)] + [[1, 7, 2]]
    return verts, np.array(tris)


def test_adjacency_from_triangles():
    adj = VertexAdjacency.from_triangles(np.array([[0, 1, 2], [0, 2, 3]]), 4)
    assert adj.vertex_count == 4
    np.testing.assert_array_equal(adj.degrees, [3, 2, 3, 2])
    assert sorted(adj.neighbors(0)) == [1, 2, 3]
    assert len(adj.edges) == 5
    # Symmetric
    assert (adj.matrix != adj.matrix.T).nnz == 0


def test_adjacency_ignores_degenerate_edges():
    adj = VertexAdjacency.from_triangles(np.array([[0, 0, 1]]), 3)
    np.testing.assert_array_equal(adj.degrees, [1, 1, 0])


def test_ring():
    verts, tris = _fan()
    adj = VertexAdjacency.from_triangles(tris, len(verts))
    mask = np.zeros(len(verts), dtype=bool)
    mask[0] = True
    ring = adj.ring(mask)
    assert ring[:7].all()
    assert not ring[7]


def test_smoothing_is_local():
    verts, tris = _fan()
    adj = VertexAdjacency.from_triangles(tris, len(verts))
    displaced = verts.copy()
    displaced[0, 2] = 0.5
    mask = np.zeros(len(verts), dtype=bool)
    mask[0] = True

    out = ShapePreservingSmoother(0.5, 3).smooth(verts, displaced, mask, adj)
    np.testing.assert_array_equal(out[7], verts[7])
    assert out[0, 2] > 0.0
    assert out[0, 2] < 0.5
    # Inputs untouched
    assert displaced[0, 2] == 0.5


def test_full_strength_pins_neighbours():
    verts, tris = _fan()
    adj = VertexAdjacency.from_triangles(tris, len(verts))
    displaced = verts.copy()
    displaced[0, 2] = 0.5
    mask = np.zeros(len(verts), dtype=bool)
    mask[0] = True

    out = ShapePreservingSmoother(1.0, 5).smooth(verts, displaced, mask, adj)
    np.testing.assert_array_almost_equal(out[1:], verts[1:])
    assert out[0, 2] > 0.0


def test_nothing_displaced_returns_copy():
    verts, tris = _fan()
    adj = VertexAdjacency.from_triangles(tris, len(verts))
    out = ShapePreservingSmoother().smooth(verts, verts, np.zeros(len(verts), dtype=bool), adj)
    np.testing.assert_array_equal(out, verts)
    assert out is not verts


def test_isolated_vertex_not_moved():
    verts = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [5, 5, 0]], dtype=np.float64)
    adj = VertexAdjacency.from_triangles(np.array([[0, 1, 2]]), 4)
    displaced = verts.copy()
    displaced[3, 2] = 1.0
    mask = np.array([False, False, False, True])
    out = ShapePreservingSmoother().smooth(verts, displaced, mask, adj)
    np.testing.assert_array_equal(out, displaced)


def test_settings_are_clamped():
    s = ShapePreservingSmoother(strength=5.0, iterations=50)
    assert s.strength == 1.0
    assert s.iterations == SMOOTHING_ITERATIONS_MAX
    s = ShapePreservingSmoother(strength=-1.0, iterations=0)
    assert s.strength == 0.0
    assert s.iterations == 1

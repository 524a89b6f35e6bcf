"""Vectorized closest-point-on-triangle and back-side penetration queries."""

import numpy as np

from clothfit.core.math_utils import batch_normalize


def closest_points_on_triangles(
    points: np.ndarray,
    a: np.ndarray,
    b: np.ndarray,
    c: np.ndarray,
) -> np.ndarray:
    """Closest point on each triangle for each point.

    Voronoi-region method (Ericson, Real-Time Collision Detection 5.1.5),
    evaluated for all (point, triangle) pairs at once.

    Parameters
    ----------
    points : (N, 3)
    a, b, c : (T, 3) triangle corners

    Returns
    -------
    (N, T, 3) closest points.
    """
    p = np.asarray(points, dtype=np.float64)[:, np.newaxis, :]  # (N, 1, 3)
    a = a[np.newaxis]
    b = b[np.newaxis]
    c = c[np.newaxis]

    ab = b - a
    ac = c - a
    ap = p - a
    d1 = np.sum(ab * ap, axis=-1)
    d2 = np.sum(ac * ap, axis=-1)

    bp = p - b
    d3 = np.sum(ab * bp, axis=-1)
    d4 = np.sum(ac * bp, axis=-1)

    cp = p - c
    d5 = np.sum(ab * cp, axis=-1)
    d6 = np.sum(ac * cp, axis=-1)

    va = d3 * d6 - d5 * d4
    vb = d5 * d2 - d1 * d6
    vc = d1 * d4 - d3 * d2

    with np.errstate(divide="ignore", invalid="ignore"):
        # Face interior
        denom = va + vb + vc
        safe = np.where(np.abs(denom) < 1e-30, 1.0, denom)
        v = vb / safe
        w = vc / safe
        result = a + ab * v[..., None] + ac * w[..., None]

        # Edge BC
        e_bc = (d4 - d3) + (d5 - d6)
        t_bc = np.where(np.abs(e_bc) < 1e-30, 0.0, (d4 - d3) / np.where(e_bc == 0, 1.0, e_bc))
        m_bc = (va <= 0) & ((d4 - d3) >= 0) & ((d5 - d6) >= 0)
        result = np.where(m_bc[..., None], b + (c - b) * t_bc[..., None], result)

        # Edge AC
        e_ac = d2 - d6
        t_ac = np.where(np.abs(e_ac) < 1e-30, 0.0, d2 / np.where(e_ac == 0, 1.0, e_ac))
        m_ac = (vb <= 0) & (d2 >= 0) & (d6 <= 0)
        result = np.where(m_ac[..., None], a + ac * t_ac[..., None], result)

        # Vertex C
        m_c = (d6 >= 0) & (d5 <= d6)
        result = np.where(m_c[..., None], np.broadcast_to(c, result.shape), result)

        # Edge AB
        e_ab = d1 - d3
        t_ab = np.where(np.abs(e_ab) < 1e-30, 0.0, d1 / np.where(e_ab == 0, 1.0, e_ab))
        m_ab = (vc <= 0) & (d1 >= 0) & (d3 <= 0)
        result = np.where(m_ab[..., None], a + ab * t_ab[..., None], result)

        # Vertex B
        m_b = (d3 >= 0) & (d4 <= d3)
        result = np.where(m_b[..., None], np.broadcast_to(b, result.shape), result)

        # Vertex A
        m_a = (d1 <= 0) & (d2 <= 0)
        result = np.where(m_a[..., None], np.broadcast_to(a, result.shape), result)

    return result


def closest_point_on_triangle(p, a, b, c) -> np.ndarray:
    """Single-point convenience wrapper."""
    tri = [np.asarray(x, dtype=np.float64)[np.newaxis] for x in (a, b, c)]
    return closest_points_on_triangles(np.asarray(p, dtype=np.float64)[np.newaxis], *tri)[0, 0]


def face_normals(vertices: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """(T, 3) unit face normals from counter-clockwise winding; degenerate → zero."""
    if len(triangles) == 0:
        return np.zeros((0, 3), dtype=np.float64)
    v0 = vertices[triangles[:, 0]]
    v1 = vertices[triangles[:, 1]]
    v2 = vertices[triangles[:, 2]]
    return batch_normalize(np.cross(v1 - v0, v2 - v0))


def query_penetrations(
    points: np.ndarray,
    vertices: np.ndarray,
    triangles: np.ndarray,
    normals: np.ndarray,
    threshold: float,
    stride: int = 1,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Shallowest back-side hit per point against every ``stride``-th triangle.

    A point penetrates a triangle when it lies behind the triangle's plane
    (``dot(p - closest, n) < 0``) and within ``threshold`` of the closest
    point.  A degenerate triangle has a zero normal and never registers.

    Returns
    -------
    depth : (N,) distance to the closest point of the chosen triangle,
        ``inf`` where nothing penetrates
    triangle_index : (N,) index into ``triangles`` (-1 where no hit)
    closest : (N, 3) closest point on the chosen triangle
    """
    n = len(points)
    tri_ids = np.arange(0, len(triangles), max(1, int(stride)))
    if n == 0 or len(tri_ids) == 0:
        return (np.full(n, np.inf), np.full(n, -1, dtype=np.int64),
                np.zeros((n, 3), dtype=np.float64))

    tri = triangles[tri_ids]
    closest = closest_points_on_triangles(
        points, vertices[tri[:, 0]], vertices[tri[:, 1]], vertices[tri[:, 2]])

    diff = points[:, np.newaxis, :] - closest                 # (N, T, 3)
    dist = np.linalg.norm(diff, axis=-1)                      # (N, T)
    side = np.einsum('ntk,tk->nt', diff, normals[tri_ids])    # (N, T)

    depth = np.where((side < 0.0) & (dist < threshold), dist, np.inf)
    # argmin returns the first index on ties, so the first triangle found wins
    best = np.argmin(depth, axis=1)
    rows = np.arange(n)
    best_depth = depth[rows, best]
    tri_index = np.where(np.isfinite(best_depth), tri_ids[best], -1)
    return best_depth, tri_index, closest[rows, best]

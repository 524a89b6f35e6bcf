"""Procedural box-figure character and clothing for demos and tests.

All geometry uses counter-clockwise winding with outward normals.
"""

import numpy as np

from clothfit.core.mesh import BufferGeometry, MeshInstance
from clothfit.core.scene_graph import SceneNode
from clothfit.core.skinning import SkinnedMesh


# Face frames (origin corner, U edge, V edge) for a unit box; U × V is the outward normal.
# Order: +X, -X, +Z, -Z, +Y, -Y
_BOX_FACES = [
    ((1, -1, 1),   (0, 0, -2), (0, 2, 0)),
    ((-1, -1, -1), (0, 0, 2),  (0, 2, 0)),
    ((-1, -1, 1),  (2, 0, 0),  (0, 2, 0)),
    ((1, -1, -1),  (-2, 0, 0), (0, 2, 0)),
    ((-1, 1, 1),   (2, 0, 0),  (0, 0, -2)),
    ((-1, -1, -1), (2, 0, 0),  (0, 0, 2)),
]


def make_box(
    width: float, height: float, depth: float,
    segments: int = 1, open_ends: bool = False,
) -> BufferGeometry:
    """Create a box with each face subdivided into a ``segments`` grid.

    Centered at origin. Dimensions along X, Y, Z respectively.  Faces do
    not share vertices.  With ``open_ends`` the ±Y faces are omitted
    (a tube, e.g. a shirt body or trouser leg).
    """
    half = np.array([width / 2, height / 2, depth / 2], dtype=np.float64)
    faces = _BOX_FACES[:4] if open_ends else _BOX_FACES

    positions = []
    indices = []
    n = segments + 1
    for origin, u, v in faces:
        o = np.array(origin, dtype=np.float64) * half
        du = np.array(u, dtype=np.float64) * half / segments
        dv = np.array(v, dtype=np.float64) * half / segments
        base = len(positions)
        for j in range(n):
            for i in range(n):
                positions.append(o + du * i + dv * j)
        for j in range(segments):
            for i in range(segments):
                a = base + j * n + i
                b = a + 1
                c = a + n
                d = c + 1
                indices.extend([a, b, d, a, d, c])

    geom = BufferGeometry(
        positions=np.array(positions, dtype=np.float32).ravel(),
        indices=np.array(indices, dtype=np.uint32),
    )
    geom.compute_normals()
    return geom


def merge_geometries(parts: list[tuple[BufferGeometry, np.ndarray]]) -> tuple[BufferGeometry, np.ndarray]:
    """Concatenate translated geometries.

    Returns the merged geometry and a per-vertex part index.
    """
    positions, indices, part_ids = [], [], []
    offset = 0
    for k, (geom, translation) in enumerate(parts):
        verts = geom.vertices() + np.asarray(translation, dtype=np.float64)
        positions.append(verts)
        indices.append(geom.triangles + offset)
        part_ids.append(np.full(len(verts), k, dtype=np.int64))
        offset += len(verts)

    merged = BufferGeometry(
        positions=np.concatenate(positions).astype(np.float32).ravel(),
        indices=np.concatenate(indices).astype(np.uint32).ravel(),
    )
    merged.compute_normals()
    return merged, np.concatenate(part_ids)


# ── Humanoid layout ──────────────────────────────────────────────────────

# (name, parent, world position); right side mirrored from left
_CHARACTER_BONES = [
    ("Hips", None, (0.0, 1.0, 0.0)),
    ("Spine", "Hips", (0.0, 1.1, 0.0)),
    ("Chest", "Spine", (0.0, 1.3, 0.0)),
    ("Neck", "Chest", (0.0, 1.5, 0.0)),
    ("Head", "Neck", (0.0, 1.6, 0.0)),
]
_CHARACTER_SIDE_BONES = [
    ("{S}Shoulder", "Chest", (0.05, 1.45, 0.0)),
    ("{S}UpperArm", "{S}Shoulder", (0.18, 1.45, 0.0)),
    ("{S}LowerArm", "{S}UpperArm", (0.43, 1.45, 0.0)),
    ("{S}Hand", "{S}LowerArm", (0.68, 1.45, 0.0)),
    ("{S}UpperLeg", "Hips", (0.1, 0.95, 0.0)),
    ("{S}LowerLeg", "{S}UpperLeg", (0.1, 0.5, 0.0)),
    ("{S}Foot", "{S}LowerLeg", (0.1, 0.08, 0.0)),
    ("{S}Toes", "{S}Foot", (0.1, 0.0, 0.12)),
]

# (bone, center, size) boxes making up the body mesh
_BODY_PARTS = [
    ("Spine", (0.0, 1.25, 0.0), (0.3, 0.6, 0.2)),
    ("Head", (0.0, 1.68, 0.0), (0.18, 0.22, 0.2)),
]
_BODY_SIDE_PARTS = [
    ("{S}UpperArm", (0.305, 1.45, 0.0), (0.25, 0.08, 0.08)),
    ("{S}LowerArm", (0.555, 1.45, 0.0), (0.25, 0.07, 0.07)),
    ("{S}Hand", (0.73, 1.45, 0.0), (0.1, 0.04, 0.08)),
    ("{S}UpperLeg", (0.1, 0.725, 0.0), (0.12, 0.45, 0.12)),
    ("{S}LowerLeg", (0.1, 0.29, 0.0), (0.1, 0.42, 0.1)),
    ("{S}Foot", (0.1, 0.04, 0.05), (0.09, 0.08, 0.2)),
]

# Character bone → clothing bone name, written in a different rig convention
_CLOTHING_NAMES = {
    "Hips": "hips", "Spine": "spine", "Chest": "chest",
    "{S}Shoulder": "Shoulder.{s}", "{S}UpperArm": "upper_arm.{s}",
    "{S}LowerArm": "lower_arm.{s}", "{S}Hand": "hand.{s}",
    "{S}UpperLeg": "Thigh_{s}", "{S}LowerLeg": "lower_leg.{s}",
    "{S}Foot": "foot.{s}", "{S}Toes": "toe.{s}",
}

# (bone, center, size) tubes making up the clothing
_CLOTHING_PARTS = [
    ("Spine", (0.0, 1.25, 0.0), (0.32, 0.5, 0.19)),
]
_CLOTHING_SIDE_PARTS = [
    ("{S}UpperLeg", (0.1, 0.725, 0.0), (0.13, 0.44, 0.115)),
]


def _expand(template: str, side: str) -> str:
    return template.replace("{S}", side).replace("{s}", side[0])


def _mirror(p, sign: float) -> np.ndarray:
    return np.array([p[0] * sign, p[1], p[2]], dtype=np.float64)


def humanoid_bone_table() -> list[tuple[str, str, np.ndarray]]:
    """(name, parent, world position) for every character bone, parents first."""
    table = [(n, p, np.array(pos, dtype=np.float64)) for n, p, pos in _CHARACTER_BONES]
    for side, sign in (("Left", 1.0), ("Right", -1.0)):
        for name, parent, pos in _CHARACTER_SIDE_BONES:
            table.append((_expand(name, side), _expand(parent, side), _mirror(pos, sign)))
    return table


def _build_skeleton(parent: SceneNode, table, scale: float = 1.0) -> dict[str, SceneNode]:
    """Create bone nodes under ``parent`` from world positions (no rotation)."""
    nodes: dict[str, SceneNode] = {}
    world: dict[str, np.ndarray] = {}
    for name, parent_name, pos in table:
        node = SceneNode(name)
        p = np.asarray(pos, dtype=np.float64) * scale
        if parent_name is None:
            parent.add(node)
            node.set_position(*p)
        else:
            nodes[parent_name].add(node)
            node.set_position(*(p - world[parent_name]))
        nodes[name] = node
        world[name] = p
    return nodes


def _skinned_boxes(
    node_name: str,
    parent: SceneNode,
    bones: dict[str, SceneNode],
    parts: list[tuple[str, np.ndarray, tuple]],
    scale: float = 1.0,
    segments: int = 2,
    open_ends: bool = False,
) -> SceneNode:
    """Mesh node made of boxes, each rigidly weighted to one bone."""
    bone_names = []
    pieces = []
    for bone, center, size in parts:
        geom = make_box(*(np.asarray(size) * scale), segments=segments, open_ends=open_ends)
        pieces.append((geom, np.asarray(center, dtype=np.float64) * scale))
        bone_names.append(bone)

    merged, part_ids = merge_geometries(pieces)
    node = SceneNode(node_name)
    node.mesh = MeshInstance(name=node_name, geometry=merged)
    node.mesh.store_rest_pose()
    parent.add(node)

    bone_list = [bones[b] for b in bone_names]
    SkinnedMesh.bind(node, bone_list, part_ids, np.ones(len(part_ids)))
    return node


def _side_parts(side_parts):
    out = []
    for side, sign in (("Left", 1.0), ("Right", -1.0)):
        for bone, center, size in side_parts:
            out.append((_expand(bone, side), _mirror(center, sign), size))
    return out


def build_character(name: str = "Character") -> SceneNode:
    """Box-figure humanoid: Armature/Hips/... bones and a skinned 'Body' mesh."""
    root = SceneNode(name)
    armature = SceneNode("Armature")
    root.add(armature)
    bones = _build_skeleton(armature, humanoid_bone_table())

    parts = [(b, np.array(c), s) for b, c, s in _BODY_PARTS] + _side_parts(_BODY_SIDE_PARTS)
    _skinned_boxes("Body", root, bones, parts, segments=2)
    return root


def build_clothing(
    name: str = "Outfit",
    scale: float = 0.9,
    offset: tuple[float, float, float] = (0.5, 0.0, 0.0),
    with_decoration: bool = True,
) -> SceneNode:
    """Clothing rig with a different naming convention, authored at ``scale``.

    The shirt and trouser tubes are slightly thinner than the body front to
    back, so once aligned to the character their front and back faces sit
    just inside it.
    """
    root = SceneNode(name)
    root.set_position(*offset)
    armature = SceneNode("Armature")
    root.add(armature)

    table = []
    for char_name, parent, pos in humanoid_bone_table():
        if char_name in ("Neck", "Head"):
            continue
        table.append((_clothing_name(char_name),
                      _clothing_name(parent) if parent is not None else None, pos))
    bones = _build_skeleton(armature, table, scale=scale)

    if with_decoration:
        ribbon = SceneNode("Ribbon")
        bones["chest"].add(ribbon)
        ribbon.set_position(0.0, 0.1 * scale, 0.11 * scale)

    parts = ([(_clothing_name(b), np.array(c), s) for b, c, s in _CLOTHING_PARTS]
             + [(_clothing_name(b), c, s) for b, c, s in _side_parts(_CLOTHING_SIDE_PARTS)])
    shirt_parts = [p for p in parts if p[0] == "spine"]
    pants_parts = [p for p in parts if p[0] != "spine"]
    _skinned_boxes("Shirt", root, bones, shirt_parts, scale=scale, segments=4, open_ends=True)
    _skinned_boxes("Pants", root, bones, pants_parts, scale=scale, segments=4, open_ends=True)
    return root


def _clothing_name(character_name: str) -> str:
    for side in ("Left", "Right"):
        if character_name.startswith(side):
            template = "{S}" + character_name[len(side):]
            return _expand(_CLOTHING_NAMES[template], side)
    return _CLOTHING_NAMES[character_name]

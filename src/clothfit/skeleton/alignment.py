"""Rigidly move clothing bones onto their character counterparts."""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from clothfit.core.math_utils import (
    Vec3,
    deg_to_rad, quat_from_euler, quat_identity, quat_multiply, transform_point, vec3,
)
from clothfit.core.scene_graph import SceneNode
from clothfit.skeleton.correspondence import BoneCorrespondence, UnmappedNode
from clothfit.skeleton.names import normalize_name
from clothfit.skeleton.vocabulary import DEFAULT_VOCABULARY, MatchVocabulary

logger = logging.getLogger(__name__)


def apply_alignment(
    correspondences: Sequence[BoneCorrespondence],
    unmapped: Sequence[UnmappedNode],
    clothing_root: Optional[SceneNode],
    character_root: Optional[SceneNode] = None,
    scale_factor: float = 1.0,
) -> bool:
    """Align clothing bones to the character and rebuild unmapped nodes.

    Parameters
    ----------
    correspondences : sequence of BoneCorrespondence
        Synthesized entries and entries without a clothing node are skipped.
    unmapped : sequence of UnmappedNode
        Reconstructed after all mapped bones, shallowest first.
    clothing_root : SceneNode
        Root of the clothing hierarchy.
    character_root : SceneNode, optional
        When given, the clothing root is snapped to its origin with local
        scale ``scale_factor`` for the duration of the alignment.
    scale_factor : float
        Absolute (not multiplicative) clothing root scale.

    Returns
    -------
    bool
        True on success.  On failure the clothing root's parent and local
        transform are restored.
    """
    if clothing_root is None or not correspondences:
        logger.warning("Alignment skipped: %s",
                       "no clothing root" if clothing_root is None else "empty correspondence table")
        return False

    entries = [e for e in correspondences if e.is_mapped and not e.is_synthesized]
    if not entries:
        logger.warning("Alignment skipped: no mapped bones")
        return False

    original_parent = clothing_root.parent
    saved = (clothing_root.position.copy(), clothing_root.quaternion.copy(),
             clothing_root.scale.copy())

    try:
        if character_root is not None:
            character_root.attach(clothing_root, keep_world=False)
            clothing_root.set_position(0.0, 0.0, 0.0)
            clothing_root.set_quaternion(quat_identity())
            clothing_root.set_scale(scale_factor, scale_factor, scale_factor)

        # Parents first, so moving a parent never disturbs an aligned child
        for entry in sorted(entries, key=lambda e: e.clothing_node.depth):
            target = entry.character_node
            entry.clothing_node.set_world_position(target.get_world_position())
            entry.clothing_node.set_world_quaternion(target.get_world_quaternion())

        for item in sorted(unmapped, key=lambda u: u.node.depth):
            anchor = item.nearest_mapped_ancestor
            item.node.set_world_position(transform_point(anchor.get_world_matrix(),
                                                         item.local_position))
            item.node.set_world_quaternion(quat_multiply(anchor.get_world_quaternion(),
                                                         item.local_rotation))
            item.node.set_scale(*item.local_scale)

        if character_root is not None:
            clothing_root.set_parent(original_parent, keep_world=True)
    except Exception:
        logger.exception("Alignment of '%s' failed; restoring its parent", clothing_root.name)
        _restore_root(clothing_root, original_parent, saved)
        return False

    logger.info("Aligned %d bones and %d unmapped nodes of '%s'",
                len(entries), len(unmapped), clothing_root.name)
    return True


def _restore_root(root: SceneNode, parent: Optional[SceneNode], saved) -> None:
    """Put the root back under ``parent`` with its saved local transform.

    Writes attributes directly so a disposed root can still be restored.
    """
    if root.parent is not parent:
        if root.parent is not None:
            root.parent.remove(root)
        if parent is not None:
            parent.add(root)
    root.position, root.quaternion, root.scale = (a.copy() for a in saved)
    root.mark_dirty()


# ── Scale estimation ─────────────────────────────────────────────────────

def find_hips(root: SceneNode, vocab: MatchVocabulary = DEFAULT_VOCABULARY) -> Optional[SceneNode]:
    """First node named like the hips (exact normalized name preferred)."""
    hips = set(vocab.hips_names)
    nodes = list(root.iter_depth_first())
    for node in nodes:
        if normalize_name(node.name) in hips:
            return node
    for node in nodes:
        norm = normalize_name(node.name)
        if any(h in norm for h in hips):
            return node
    return None


def _mean_child_length(node: SceneNode) -> float:
    if not node.children:
        return 0.0
    origin = node.get_world_position()
    return float(np.mean([np.linalg.norm(c.get_world_position() - origin) for c in node.children]))


def estimate_scale_factor(
    character_root: Optional[SceneNode],
    clothing_root: Optional[SceneNode],
    vocab: MatchVocabulary = DEFAULT_VOCABULARY,
) -> float:
    """Absolute clothing root scale that matches bone lengths at the hips.

    The length ratio is taken relative to the clothing root's current scale,
    so re-estimating after an alignment gives the same answer.

    Falls back to the ratio of the roots' local scales, then 1.0.
    """
    if character_root is None or clothing_root is None:
        return 1.0

    char_hips = find_hips(character_root, vocab)
    cloth_hips = find_hips(clothing_root, vocab)
    if char_hips is not None and cloth_hips is not None:
        char_len = _mean_child_length(char_hips)
        cloth_len = _mean_child_length(cloth_hips)
        if char_len > 1e-6 and cloth_len > 1e-6:
            ratio = char_len / cloth_len * float(np.mean(clothing_root.scale))
            logger.debug("Scale from hips bone lengths: %.4f", ratio)
            return ratio

    cloth_scale = float(np.mean(clothing_root.scale))
    if abs(cloth_scale) > 1e-6:
        return float(np.mean(character_root.scale)) / cloth_scale
    return 1.0


# ── Fine adjustment ──────────────────────────────────────────────────────

@dataclass
class FineAdjustment:
    """Manual size/offset tweak on top of the automatic alignment."""
    size: float = 1.0
    position_offset: Vec3 = field(default_factory=vec3)
    rotation_offset_deg: Vec3 = field(default_factory=vec3)


def apply_fine_adjustment(
    clothing_root: SceneNode,
    character_root: SceneNode,
    adjustment: FineAdjustment,
) -> None:
    clothing_root.set_scale(adjustment.size, adjustment.size, adjustment.size)
    clothing_root.set_world_position(
        character_root.get_world_position() + np.asarray(adjustment.position_offset, dtype=np.float64))
    rx, ry, rz = (deg_to_rad(float(a)) for a in adjustment.rotation_offset_deg)
    clothing_root.set_world_quaternion(
        quat_multiply(character_root.get_world_quaternion(), quat_from_euler(rx, ry, rz)))


def reset_fine_adjustment(clothing_root: SceneNode, character_root: SceneNode) -> None:
    """Back to unit size with no offsets."""
    apply_fine_adjustment(clothing_root, character_root, FineAdjustment())

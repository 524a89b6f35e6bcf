"""Immutable keyword/alias tables used for skeleton matching and surface partitioning."""

import dataclasses
from dataclasses import dataclass

from clothfit.constants import SPATIAL_SEARCH_RADIUS


# Humanoid bones every avatar rig is expected to expose
HUMANOID_BONES = (
    "Hips", "Spine", "Chest", "UpperChest", "Neck", "Head",
    "LeftShoulder", "LeftUpperArm", "LeftLowerArm", "LeftHand",
    "RightShoulder", "RightUpperArm", "RightLowerArm", "RightHand",
    "LeftUpperLeg", "LeftLowerLeg", "LeftFoot", "LeftToes",
    "RightUpperLeg", "RightLowerLeg", "RightFoot", "RightToes",
)

# Common short-form and accessory bones
EXTRA_BONES = (
    "Foot_L", "Foot_R", "Hand_L", "Hand_R", "Toe_L", "Toe_R",
    "Breast_L", "Breast_R",
    "Shoulder_L", "Shoulder_R", "Clavicle_L", "Clavicle_R",
    "UpperArm_L", "UpperArm_R", "LowerArm_L", "LowerArm_R",
    "UpperLeg_L", "UpperLeg_R", "LowerLeg_L", "LowerLeg_R",
    "Ankle_L", "Ankle_R", "Wrist_L", "Wrist_R",
    "WingRoot", "TailRoot", "Wing", "Tail",
    "ArmTwist_L", "ArmTwist_R", "WristTwist_L", "WristTwist_R",
    "Thumb_L", "Thumb_R", "Index_L", "Index_R", "Middle_L", "Middle_R",
    "Ring_L", "Ring_R", "Little_L", "Little_R",
)

FINGERS = ("Thumb", "Index", "Middle", "Ring", "Little")
FINGER_JOINTS = ("Proximal", "Intermediate", "Distal")
SIDES = ("Left", "Right")


def _finger_bones() -> tuple[str, ...]:
    return tuple(
        f"{side}{finger}{joint}"
        for side in SIDES
        for finger in FINGERS
        for joint in FINGER_JOINTS
    )


@dataclass(frozen=True)
class MatchVocabulary:
    """Keyword tables consumed by the correspondence resolver and surface baker.

    All lookups are applied to normalized (separator-free, lower-case) names,
    so entries are stored lower-case except ``canonical_names`` which keep
    their display form.
    """
    canonical_names: tuple[str, ...] = HUMANOID_BONES + EXTRA_BONES + _finger_bones()
    # Body-part keywords, checked in order; the first substring hit wins
    body_parts: tuple[str, ...] = (
        "leg", "arm", "hand", "foot", "shoulder", "head",
        "spine", "chest", "hip", "neck",
        "ankle", "wrist", "elbow", "knee", "clavicle", "toe",
    )
    qualifiers: tuple[str, ...] = ("upper", "lower")
    aliases: tuple[tuple[str, ...], ...] = (
        ("upperleg", "thigh"),
        ("lowerleg", "shin", "calf"),
        ("upperarm", "bicep"),
        ("lowerarm", "forearm"),
        ("hips", "pelvis"),
        ("shoulder", "clavicle"),
        ("toes", "toe"),
    )
    extremity_families: tuple[tuple[str, ...], ...] = (
        ("foot", "toe"),
        ("hand", "finger"),
    )
    important_keywords: tuple[str, ...] = ("hand", "foot", "toe", "finger")
    critical_names: tuple[str, ...] = ("Hand_L", "Hand_R", "Foot_L", "Foot_R", "Toe_L", "Toe_R")
    spatial_radius: float = SPATIAL_SEARCH_RADIUS
    # Nodes whose names contain these never take part in spatial search
    renderer_keywords: tuple[str, ...] = ("root", "mesh", "renderer")
    # Reference meshes tested first during penetration resolution
    priority_keywords: tuple[str, ...] = (
        "body", "torso", "chest", "skin", "face", "head",
        "leg", "arm", "hand", "feet", "foot", "character",
    )
    decoration_keywords: tuple[str, ...] = (
        "himo", "accessory", "ornament", "ribbon", "string", "rope",
        "belt", "strap", "attachment", "decoration", "button",
        "brooch", "pendant", "badge", "pin", "bangle",
        "tie", "scarf", "chain", "necklace", "collar", "bow",
        "emblem", "tassel", "fringe", "trim", "lace", "fur", "feather",
    )
    hips_names: tuple[str, ...] = ("hips", "hip", "pelvis")
    # Shortest name allowed to match a canonical name by containment
    min_containment_length: int = 4

    def replace(self, **changes) -> "MatchVocabulary":
        """Copy with some tables substituted (lists are frozen to tuples)."""
        frozen = {}
        for key, value in changes.items():
            if isinstance(value, (list, tuple)):
                value = tuple(
                    tuple(v) if isinstance(v, (list, tuple)) else v for v in value
                )
            frozen[key] = value
        return dataclasses.replace(self, **frozen)


DEFAULT_VOCABULARY = MatchVocabulary()

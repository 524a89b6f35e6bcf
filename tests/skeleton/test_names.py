"""Tests for bone-name normalization and keyword lookups."""

import pytest

from clothfit.skeleton import names
from clothfit.skeleton.vocabulary import DEFAULT_VOCABULARY


@pytest.mark.parametrize("a,b", [
    ("Upper_Leg.L", "UpperLeg_L"),
    ("left hand", "Left-Hand"),
    ("SPINE", "spine"),
])
def test_normalize_name_ignores_separators_and_case(a, b):
    assert names.normalize_name(a) == names.normalize_name(b)
    assert names.names_equivalent(a, b)


def test_normalize_name_value():
    assert names.normalize_name("Upper_Leg.L") == "upperlegl"


def test_name_tokens_split_camel_case():
    assert names.name_tokens("LeftUpperLeg") == ("left", "upper", "leg")
    assert names.name_tokens("upper_leg.L") == ("upper", "leg", "l")
    assert names.name_tokens("Finger2.R") == ("finger", "2", "r")


@pytest.mark.parametrize("name,side", [
    ("LeftHand", "l"),
    ("hand.L", "l"),
    ("Hand_R", "r"),
    ("RightUpperArm", "r"),
    ("Clavicle_R", "r"),
    ("Spine", None),
    # A bare 'l' inside a word is not a side marker
    ("Bell", None),
    ("Ribbon", None),
])
def test_laterality(name, side):
    assert names.laterality(name) == side


def test_body_part_first_match_wins():
    assert names.body_part("LeftUpperLeg", DEFAULT_VOCABULARY) == "leg"
    assert names.body_part("LeftHand", DEFAULT_VOCABULARY) == "hand"
    assert names.body_part("Thigh_L", DEFAULT_VOCABULARY) is None


def test_qualifiers():
    assert names.qualifiers("LeftUpperArm", DEFAULT_VOCABULARY) == {"upper"}
    assert names.qualifiers("Hand_L", DEFAULT_VOCABULARY) == frozenset()


def test_opposite_qualifiers():
    assert names.opposite_qualifiers(frozenset({"upper"}), frozenset({"lower"}))
    assert not names.opposite_qualifiers(frozenset({"upper"}), frozenset())
    assert not names.opposite_qualifiers(frozenset({"upper"}), frozenset({"upper"}))


def test_alias_groups_shared():
    a = names.alias_groups("LeftUpperLeg", DEFAULT_VOCABULARY)
    b = names.alias_groups("Thigh_L", DEFAULT_VOCABULARY)
    assert a & b


def test_extremity_families():
    toes = names.extremity_families("LeftToes", DEFAULT_VOCABULARY)
    assert toes == {0}
    # Different members of one family share it
    assert toes == names.extremity_families("Foot_L", DEFAULT_VOCABULARY)
    assert names.extremity_families("Finger1_R", DEFAULT_VOCABULARY) == {1}
    assert not names.extremity_families("Spine", DEFAULT_VOCABULARY)


def test_contains_either_min_length():
    assert names.contains_either("Hand", "LeftHand", min_length=4)
    assert not names.contains_either("Arm", "Armature", min_length=4)
    assert names.contains_either("Arm", "Armature", min_length=3)


def test_is_important():
    assert names.is_important("LeftFoot", DEFAULT_VOCABULARY)
    assert names.is_important("finger1_L", DEFAULT_VOCABULARY)
    assert names.is_important("Hand_L", DEFAULT_VOCABULARY)
    assert not names.is_important("Spine", DEFAULT_VOCABULARY)


def test_keyword_lookups():
    assert names.has_renderer_keyword("BodyMesh", DEFAULT_VOCABULARY)
    assert not names.has_renderer_keyword("Spine", DEFAULT_VOCABULARY)
    assert names.is_decoration_bone("Ribbon_Back", DEFAULT_VOCABULARY)
    assert not names.is_decoration_bone("Hips", DEFAULT_VOCABULARY)

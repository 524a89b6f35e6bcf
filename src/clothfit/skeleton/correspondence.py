"""Bone correspondence between a character skeleton and a clothing skeleton.

Pairs character nodes with clothing nodes using names first, then the
hierarchy and spatial proximity.  Passes run in a fixed order and each one
only sees what earlier passes left unpaired:

1. exact      normalized names equal
2. semantic   shared body part + laterality, scored by length difference
3. fuzzy      weighted containment / part / alias / extremity score
4. hierarchical / spatial
              important terminal joints resolved through the paired
              ancestor's clothing subtree, else the nearest unused node
5. residual   remaining clothing nodes recorded relative to their nearest
              used ancestor (``UnmappedNode``)

A clothing node is claimed by at most one character node.  Ties go to the
candidate found first in pre-order traversal.
"""

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Iterator, Optional

import numpy as np
from scipy.spatial import cKDTree

from clothfit.constants import (
    SIMILARITY_POSITION_WEIGHT,
    SIMILARITY_ROTATION_WEIGHT,
    UNMAPPED_SUFFIX,
)
from clothfit.core.math_utils import (
    Vec3, Quat,
    mat4_inverse, quat_angle_deg, quat_conjugate, quat_multiply, transform_point,
)
from clothfit.core.scene_graph import SceneNode
from clothfit.skeleton import names
from clothfit.skeleton.snapshot import SkeletonNode, SkeletonSnapshot
from clothfit.skeleton.vocabulary import DEFAULT_VOCABULARY, MatchVocabulary

logger = logging.getLogger(__name__)

MATCH_EXACT = "exact"
MATCH_SEMANTIC = "semantic"
MATCH_FUZZY = "fuzzy"
MATCH_HIERARCHICAL = "hierarchical"
MATCH_SPATIAL = "spatial"
MATCH_UNMAPPED = "unmapped"
MATCH_NONE = "none"

MATCH_PATHS = (
    MATCH_EXACT, MATCH_SEMANTIC, MATCH_FUZZY, MATCH_HIERARCHICAL,
    MATCH_SPATIAL, MATCH_UNMAPPED, MATCH_NONE,
)


@dataclass(frozen=True)
class BoneCorrespondence:
    """One character node and its clothing counterpart (None if not found)."""
    canonical_name: str
    character_node: SceneNode
    clothing_node: Optional[SceneNode] = None
    is_synthesized: bool = False
    match_path: str = MATCH_NONE

    @property
    def is_mapped(self) -> bool:
        return self.clothing_node is not None


@dataclass(frozen=True, eq=False)
class UnmappedNode:
    """Clothing node with no character counterpart, posed relative to
    its nearest used ancestor at resolution time."""
    node: SceneNode
    nearest_mapped_ancestor: SceneNode
    local_position: Vec3
    local_rotation: Quat
    local_scale: Vec3


@dataclass
class ResolverContext:
    """Shared state threaded through every pass of one resolution."""
    vocabulary: MatchVocabulary
    character: SkeletonSnapshot
    clothing: SkeletonSnapshot
    entries: list[BoneCorrespondence] = field(default_factory=list)
    # id(character node) -> position in ``entries``
    entry_index: dict[int, int] = field(default_factory=dict)
    # id(clothing node) of every claimed clothing node
    used: set[int] = field(default_factory=set)

    def add_entry(self, entry: BoneCorrespondence) -> None:
        self.entry_index[id(entry.character_node)] = len(self.entries)
        self.entries.append(entry)
        if entry.clothing_node is not None:
            self.used.add(id(entry.clothing_node))

    def replace_entry(self, entry: BoneCorrespondence) -> None:
        self.entries[self.entry_index[id(entry.character_node)]] = entry
        if entry.clothing_node is not None:
            self.used.add(id(entry.clothing_node))

    def entry_for(self, character_node: SceneNode) -> Optional[BoneCorrespondence]:
        i = self.entry_index.get(id(character_node))
        return self.entries[i] if i is not None else None

    def is_used(self, record: SkeletonNode) -> bool:
        return id(record.node) in self.used

    def clothing_candidates(self) -> Iterator[SkeletonNode]:
        """Unclaimed clothing nodes that may stand for a bone (root included, no renderers)."""
        for record in self.clothing.nodes:
            if not record.has_renderer and id(record.node) not in self.used:
                yield record


# ── Scoring ──────────────────────────────────────────────────────────────

def semantic_score(character_name: str, clothing_name: str,
                   vocab: MatchVocabulary) -> Optional[float]:
    """Score for the semantic pass, or None when the pair is not eligible."""
    part = names.body_part(character_name, vocab)
    side = names.laterality(character_name)
    if part is None or side is None:
        return None
    if part not in names.normalize_name(clothing_name):
        return None
    if names.laterality(clothing_name) != side:
        return None
    qa = names.qualifiers(character_name, vocab)
    qb = names.qualifiers(clothing_name, vocab)
    if names.opposite_qualifiers(qa, qb):
        return None

    diff = abs(len(names.normalize_name(character_name)) - len(names.normalize_name(clothing_name)))
    return 1.0 / (1.0 + diff) + 0.5 * len(qa & qb)


def fuzzy_score(character_name: str, clothing_name: str, vocab: MatchVocabulary) -> float:
    """Weighted name-similarity score; 0 means no usable evidence."""
    side_a = names.laterality(character_name)
    side_b = names.laterality(clothing_name)
    if side_a is not None and side_b is not None and side_a != side_b:
        return 0.0
    qa = names.qualifiers(character_name, vocab)
    qb = names.qualifiers(clothing_name, vocab)
    if names.opposite_qualifiers(qa, qb):
        return 0.0

    na = names.normalize_name(character_name)
    nb = names.normalize_name(clothing_name)
    evidence = 0.0
    if names.contains_either(character_name, clothing_name, min_length=3):
        evidence += 5.0 + 3.0 / (1.0 + abs(len(na) - len(nb)))
    part = names.body_part(character_name, vocab)
    if part is not None and part == names.body_part(clothing_name, vocab):
        evidence += 2.0
    shared_alias = names.alias_groups(character_name, vocab) & names.alias_groups(clothing_name, vocab)
    evidence += 3.0 * len(shared_alias)
    shared_family = (names.extremity_families(character_name, vocab)
                     & names.extremity_families(clothing_name, vocab))
    evidence += 2.5 * len(shared_family)
    if evidence == 0.0:
        return 0.0

    score = evidence + 2.0 * len(qa & qb)
    if side_a is not None and side_a == side_b:
        score += 2.0
    return score


def are_bones_equivalent(a: str, b: str, vocab: MatchVocabulary = DEFAULT_VOCABULARY) -> bool:
    """Name-level equivalence: same normalized name, or same laterality with
    shared alias/containment and no conflicting qualifier."""
    if names.names_equivalent(a, b):
        return True
    if names.laterality(a) != names.laterality(b):
        return False
    if names.opposite_qualifiers(names.qualifiers(a, vocab), names.qualifiers(b, vocab)):
        return False
    if names.alias_groups(a, vocab) & names.alias_groups(b, vocab):
        return True
    return names.contains_either(a, b, min_length=vocab.min_containment_length)


def bone_similarity(a: Optional[SkeletonNode], b: Optional[SkeletonNode]) -> float:
    """0.7 · 1/(1 + distance) + 0.3 · (1 - angle/180°); 0 when either is missing."""
    if a is None or b is None:
        return 0.0
    distance = float(np.linalg.norm(a.world_position - b.world_position))
    position_similarity = 1.0 / (1.0 + distance)
    rotation_similarity = 1.0 - quat_angle_deg(a.world_rotation, b.world_rotation) / 180.0
    return (position_similarity * SIMILARITY_POSITION_WEIGHT
            + rotation_similarity * SIMILARITY_ROTATION_WEIGHT)


def is_decoration_bone(name: str, vocab: MatchVocabulary = DEFAULT_VOCABULARY) -> bool:
    return names.is_decoration_bone(name, vocab)


# ── Resolver ─────────────────────────────────────────────────────────────

class CorrespondenceResolver:
    """Builds the correspondence table for one character/clothing pair.

    The vocabulary is fixed at construction so tests can substitute their
    own keyword tables.
    """

    def __init__(self, vocabulary: Optional[MatchVocabulary] = None):
        self.vocabulary = vocabulary or DEFAULT_VOCABULARY
        self._canonical = [(names.normalize_name(c), c) for c in self.vocabulary.canonical_names]

    def resolve(
        self,
        character: SkeletonSnapshot,
        clothing: SkeletonSnapshot,
    ) -> tuple[list[BoneCorrespondence], list[UnmappedNode]]:
        if not character or not clothing:
            logger.warning("Correspondence skipped: missing %s root",
                           "character" if not character else "clothing")
            return [], []

        ctx = ResolverContext(self.vocabulary, character, clothing)
        relevant = self._relevant_character_nodes(ctx)

        pairing: dict[int, tuple[SkeletonNode, str]] = {}
        self._exact_pass(ctx, relevant, pairing)
        self._semantic_pass(ctx, relevant, pairing)
        self._fuzzy_pass(ctx, relevant, pairing)

        for canonical, record in relevant:
            clothing_record, path = pairing.get(record.index, (None, MATCH_NONE))
            ctx.add_entry(BoneCorrespondence(
                canonical_name=canonical,
                character_node=record.node,
                clothing_node=clothing_record.node if clothing_record is not None else None,
                match_path=path,
            ))

        self._hierarchical_pass(ctx)
        unmapped = self._residual_pass(ctx)

        mapped = sum(1 for e in ctx.entries if e.is_mapped and not e.is_synthesized)
        logger.info("Correspondence %s -> %s: %d entries, %d mapped, %d unmapped nodes",
                    character.owner, clothing.owner, len(ctx.entries), mapped, len(unmapped))
        return ctx.entries, unmapped

    # ── Candidate selection ──

    def _canonical_name_for(self, record: SkeletonNode) -> Optional[str]:
        norm = names.normalize_name(record.name)
        for canon_norm, canon in self._canonical:
            if canon_norm == norm:
                return canon
        min_len = self.vocabulary.min_containment_length
        for canon_norm, _ in self._canonical:
            if min(len(canon_norm), len(norm)) < min_len:
                continue
            if canon_norm in norm or norm in canon_norm:
                return record.name
        return None

    def _relevant_character_nodes(self, ctx: ResolverContext) -> list[tuple[str, SkeletonNode]]:
        relevant = []
        taken: set[str] = set()
        for record in ctx.character:
            if record.has_renderer:
                continue
            canonical = self._canonical_name_for(record)
            if canonical is None:
                continue
            if canonical in taken:
                canonical = record.name
            if canonical in taken:
                logger.debug("Duplicate character bone '%s' skipped", record.name)
                continue
            taken.add(canonical)
            relevant.append((canonical, record))
        return relevant

    # ── Name passes ──

    def _exact_pass(self, ctx, relevant, pairing) -> None:
        for _, record in relevant:
            norm = names.normalize_name(record.name)
            for cand in ctx.clothing_candidates():
                if names.normalize_name(cand.name) == norm:
                    pairing[record.index] = (cand, MATCH_EXACT)
                    ctx.used.add(id(cand.node))
                    break

    def _semantic_pass(self, ctx, relevant, pairing) -> None:
        for _, record in relevant:
            if record.index in pairing:
                continue
            best, best_score = None, 0.0
            for cand in ctx.clothing_candidates():
                score = semantic_score(record.name, cand.name, ctx.vocabulary)
                if score is None:
                    continue
                if best is None or score > best_score:
                    best, best_score = cand, score
                elif score == best_score:
                    logger.debug("Ambiguous semantic match for '%s': '%s' and '%s' tie",
                                 record.name, best.name, cand.name)
            if best is not None:
                pairing[record.index] = (best, MATCH_SEMANTIC)
                ctx.used.add(id(best.node))

    def _fuzzy_pass(self, ctx, relevant, pairing) -> None:
        for _, record in relevant:
            if record.index in pairing:
                continue
            best, best_score = None, 0.0
            for cand in ctx.clothing_candidates():
                score = fuzzy_score(record.name, cand.name, ctx.vocabulary)
                if score > best_score:
                    best, best_score = cand, score
            if best is not None:
                logger.debug("Fuzzy match '%s' -> '%s' (%.2f)", record.name, best.name, best_score)
                pairing[record.index] = (best, MATCH_FUZZY)
                ctx.used.add(id(best.node))

    # ── Hierarchy / space ──

    def _hierarchical_pass(self, ctx: ResolverContext) -> None:
        vocab = ctx.vocabulary
        spatial = _SpatialIndex(ctx)
        additions: list[BoneCorrespondence] = []
        replacements: list[BoneCorrespondence] = []

        for record in ctx.character.nodes[1:]:
            if record.has_renderer or not names.is_important(record.name, vocab):
                continue
            existing = ctx.entry_for(record.node)
            if existing is not None and existing.is_mapped:
                continue

            match, path = self._match_through_ancestor(ctx, record), MATCH_HIERARCHICAL
            if match is None:
                match, path = spatial.nearest_unused(record.world_position), MATCH_SPATIAL
            if match is None:
                path = MATCH_NONE
            else:
                ctx.used.add(id(match.node))
                logger.debug("%s match '%s' -> '%s'", path, record.name, match.name)

            entry = BoneCorrespondence(
                canonical_name=existing.canonical_name if existing is not None else record.name,
                character_node=record.node,
                clothing_node=match.node if match is not None else None,
                match_path=path,
            )
            (replacements if existing is not None else additions).append(entry)

        for entry in replacements:
            ctx.replace_entry(entry)
        taken = {e.canonical_name for e in ctx.entries}
        for entry in additions:
            if entry.canonical_name in taken:
                continue
            taken.add(entry.canonical_name)
            ctx.add_entry(entry)

    def _match_through_ancestor(self, ctx: ResolverContext,
                                record: SkeletonNode) -> Optional[SkeletonNode]:
        vocab = ctx.vocabulary
        anchor = None
        for ancestor in ctx.character.ancestors_of(record):
            entry = ctx.entry_for(ancestor.node)
            if entry is not None and entry.is_mapped:
                anchor = ctx.clothing.record_for(entry.clothing_node)
                break
        if anchor is None:
            return None

        part = names.body_part(record.name, vocab)
        side = names.laterality(record.name)
        q = names.qualifiers(record.name, vocab)

        # Breadth-first so direct children are preferred
        queue = deque(ctx.clothing.children_of(anchor))
        while queue:
            cand = queue.popleft()
            queue.extend(ctx.clothing.children_of(cand))
            if cand.has_renderer or ctx.is_used(cand):
                continue
            if names.opposite_qualifiers(q, names.qualifiers(cand.name, vocab)):
                continue
            shares_part = (part is not None
                           and part == names.body_part(cand.name, vocab)
                           and side == names.laterality(cand.name))
            if shares_part or names.contains_either(record.name, cand.name,
                                                    min_length=vocab.min_containment_length):
                return cand
        return None

    # ── Residual ──

    def _residual_pass(self, ctx: ResolverContext) -> list[UnmappedNode]:
        counterpart = {
            id(e.clothing_node): e.character_node
            for e in ctx.entries if e.is_mapped and not e.is_synthesized
        }
        used = set(counterpart)

        unmapped: list[UnmappedNode] = []
        for record in ctx.clothing.nodes[1:]:
            if id(record.node) in used:
                continue
            if record.is_leaf and record.has_renderer:
                continue
            ancestor = next((a for a in ctx.clothing.ancestors_of(record)
                             if id(a.node) in used), None)
            if ancestor is None:
                logger.debug("Clothing node '%s' has no mapped ancestor; left in place",
                             record.name)
                continue
            unmapped.append(capture_unmapped(record.node, ancestor.node))

        synthesized = [
            BoneCorrespondence(
                canonical_name=f"{u.node.name}{UNMAPPED_SUFFIX}",
                character_node=counterpart[id(u.nearest_mapped_ancestor)],
                clothing_node=u.node,
                is_synthesized=True,
                match_path=MATCH_UNMAPPED,
            )
            for u in unmapped
        ]
        for entry in synthesized:
            ctx.add_entry(entry)
        return unmapped


class _SpatialIndex:
    """Bounded nearest-neighbour search over eligible clothing nodes."""

    def __init__(self, ctx: ResolverContext):
        self._ctx = ctx
        vocab = ctx.vocabulary
        self._records = [
            r for r in ctx.clothing.nodes[1:]
            if not r.has_renderer and not names.has_renderer_keyword(r.name, vocab)
        ]
        self._radius = vocab.spatial_radius
        self._tree = None
        if self._records:
            self._tree = cKDTree(np.array([r.world_position for r in self._records]))

    def nearest_unused(self, point: Vec3) -> Optional[SkeletonNode]:
        if self._tree is None:
            return None
        k = len(self._records)
        dists, idxs = self._tree.query(point, k=k, distance_upper_bound=self._radius)
        dists = np.atleast_1d(dists)
        idxs = np.atleast_1d(idxs)
        for d, i in zip(dists, idxs):
            if not np.isfinite(d):
                break
            record = self._records[int(i)]
            if not self._ctx.is_used(record):
                return record
        return None


def capture_unmapped(node: SceneNode, ancestor: SceneNode) -> UnmappedNode:
    """Record ``node``'s current pose relative to ``ancestor``."""
    inv = mat4_inverse(ancestor.get_world_matrix())
    return UnmappedNode(
        node=node,
        nearest_mapped_ancestor=ancestor,
        local_position=transform_point(inv, node.get_world_position()),
        local_rotation=quat_multiply(quat_conjugate(ancestor.get_world_quaternion()),
                                     node.get_world_quaternion()),
        local_scale=node.scale.copy(),
    )


def build_correspondence(
    character_root: Optional[SceneNode],
    clothing_root: Optional[SceneNode],
    vocabulary: Optional[MatchVocabulary] = None,
) -> tuple[list[BoneCorrespondence], list[UnmappedNode]]:
    """Snapshot both hierarchies and resolve their correspondence."""
    if character_root is None or clothing_root is None:
        return [], []
    resolver = CorrespondenceResolver(vocabulary)
    return resolver.resolve(SkeletonSnapshot(character_root, owner=character_root.name),
                            SkeletonSnapshot(clothing_root, owner=clothing_root.name))


# ── Editable table ───────────────────────────────────────────────────────

class CorrespondenceTable:
    """User-editable correspondence table for one character/clothing pair.

    Entries are frozen; edits replace them.
    """

    def __init__(self, correspondences: list[BoneCorrespondence],
                 unmapped: Optional[list[UnmappedNode]] = None):
        self.correspondences = list(correspondences)
        self.unmapped = list(unmapped or [])

    @classmethod
    def build(cls, character_root, clothing_root,
              vocabulary: Optional[MatchVocabulary] = None) -> "CorrespondenceTable":
        return cls(*build_correspondence(character_root, clothing_root, vocabulary))

    def __len__(self) -> int:
        return len(self.correspondences)

    def __iter__(self) -> Iterator[BoneCorrespondence]:
        return iter(self.correspondences)

    def _position(self, canonical_name: str) -> int:
        for i, entry in enumerate(self.correspondences):
            if entry.canonical_name == canonical_name:
                return i
        raise KeyError(canonical_name)

    def entry(self, canonical_name: str) -> BoneCorrespondence:
        return self.correspondences[self._position(canonical_name)]

    def assign(self, canonical_name: str, clothing_node: Optional[SceneNode]) -> BoneCorrespondence:
        """Point an entry at a different clothing node (a manual edit)."""
        i = self._position(canonical_name)
        path = MATCH_NONE if clothing_node is None else self.correspondences[i].match_path
        if clothing_node is not None and path == MATCH_NONE:
            path = MATCH_EXACT if names.names_equivalent(
                self.correspondences[i].character_node.name, clothing_node.name) else MATCH_FUZZY
        entry = replace(self.correspondences[i], clothing_node=clothing_node, match_path=path)
        self.correspondences[i] = entry
        return entry

    def clear(self, canonical_name: str) -> BoneCorrespondence:
        return self.assign(canonical_name, None)

    def mapped(self) -> list[BoneCorrespondence]:
        return [e for e in self.correspondences if e.is_mapped and not e.is_synthesized]

    def missing(self) -> list[BoneCorrespondence]:
        return [e for e in self.correspondences if not e.is_mapped]

    def aligned_entries(self) -> list[BoneCorrespondence]:
        """Entries the alignment applier moves (non-synthesized, both sides set)."""
        return self.mapped()

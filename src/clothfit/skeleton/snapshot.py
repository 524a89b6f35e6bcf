"""Read-only capture of a skeleton hierarchy's named nodes."""

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

from clothfit.core.math_utils import Vec3, Quat
from clothfit.core.scene_graph import SceneNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkeletonNode:
    """Immutable record of one node's world pose at capture time.

    ``node`` is the live scene node the record mirrors; it is mutated
    later by alignment, this record never is.
    """
    name: str
    world_position: Vec3 = field(compare=False)
    world_rotation: Quat = field(compare=False)
    world_scale: Vec3 = field(compare=False)
    parent_name: Optional[str]
    owning_skeleton: str
    index: int
    parent_index: int
    depth: int
    has_renderer: bool
    is_leaf: bool
    node: SceneNode = field(compare=False, repr=False)


class SkeletonSnapshot:
    """Pre-order list of ``SkeletonNode`` records for one hierarchy."""

    def __init__(self, root: Optional[SceneNode], owner: str = ""):
        self.owner = owner or (root.name if root is not None else "")
        self.root_node = root
        self.nodes: list[SkeletonNode] = []
        self._by_id: dict[int, SkeletonNode] = {}
        if root is not None:
            self._capture(root)
        logger.debug("Captured %d nodes for '%s'", len(self.nodes), self.owner)

    def _capture(self, root: SceneNode) -> None:
        stack: list[tuple[SceneNode, int, int]] = [(root, -1, 0)]
        while stack:
            node, parent_index, depth = stack.pop()
            record = SkeletonNode(
                name=node.name,
                world_position=node.get_world_position(),
                world_rotation=node.get_world_quaternion(),
                world_scale=node.get_world_scale(),
                parent_name=node.parent.name if node.parent is not None else None,
                owning_skeleton=self.owner,
                index=len(self.nodes),
                parent_index=parent_index,
                depth=depth,
                has_renderer=node.has_renderer,
                is_leaf=node.is_leaf,
                node=node,
            )
            self.nodes.append(record)
            self._by_id[id(node)] = record
            # Reversed so children pop in their original order
            for child in reversed(node.children):
                stack.append((child, record.index, depth + 1))

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[SkeletonNode]:
        return iter(self.nodes)

    def __bool__(self) -> bool:
        return bool(self.nodes)

    @property
    def root(self) -> Optional[SkeletonNode]:
        return self.nodes[0] if self.nodes else None

    def record_for(self, node: SceneNode) -> Optional[SkeletonNode]:
        return self._by_id.get(id(node))

    def parent_of(self, record: SkeletonNode) -> Optional[SkeletonNode]:
        if record.parent_index < 0:
            return None
        return self.nodes[record.parent_index]

    def children_of(self, record: SkeletonNode) -> list[SkeletonNode]:
        return [self._by_id[id(c)] for c in record.node.children if id(c) in self._by_id]

    def ancestors_of(self, record: SkeletonNode) -> Iterator[SkeletonNode]:
        parent = self.parent_of(record)
        while parent is not None:
            yield parent
            parent = self.parent_of(parent)

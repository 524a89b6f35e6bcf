"""Clothing fitting pipeline: correspondence → alignment → penetration."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from clothfit.core.events import EventBus, EventType
from clothfit.core.scene_graph import SceneNode
from clothfit.core.state import FitSettings
from clothfit.collision.penetration import PenetrationReport, PenetrationResolver
from clothfit.skeleton.alignment import apply_alignment, estimate_scale_factor
from clothfit.skeleton.correspondence import CorrespondenceTable
from clothfit.skeleton.vocabulary import DEFAULT_VOCABULARY, MatchVocabulary

logger = logging.getLogger(__name__)


@dataclass
class FitResult:
    """Outcome shown to the user: a flag plus a status line."""
    success: bool
    status: str
    table: Optional[CorrespondenceTable] = None
    scale_factor: float = 1.0
    penetration: Optional[PenetrationReport] = field(default=None, repr=False)


class ClothingFitter:
    """Drives one character/clothing fitting session.

    Call order:
      1. build_table()  snapshot both skeletons and pair their bones
      2. align(table)   move clothing bones onto the character
      3. resolve()      push clothing vertices out of the body

    ``fit()`` runs all three.  The table may be edited between steps 1
    and 2.  Progress is published on ``event_bus``.
    """

    def __init__(
        self,
        character_root: Optional[SceneNode],
        clothing_root: Optional[SceneNode],
        settings: Optional[FitSettings] = None,
        vocabulary: Optional[MatchVocabulary] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.character_root = character_root
        self.clothing_root = clothing_root
        self.settings = (settings or FitSettings()).clamped()
        self.vocabulary = vocabulary or DEFAULT_VOCABULARY
        self.event_bus = event_bus or EventBus()
        self.table: Optional[CorrespondenceTable] = None
        self.scale_factor: float = self.settings.scale_factor

    def _status(self, message: str) -> None:
        logger.info(message)
        self.event_bus.publish(EventType.STATUS, message=message)

    def build_table(self) -> CorrespondenceTable:
        self.table = CorrespondenceTable.build(self.character_root, self.clothing_root,
                                               self.vocabulary)
        self.event_bus.publish(
            EventType.CORRESPONDENCE_BUILT,
            mapped=len(self.table.mapped()),
            missing=len(self.table.missing()),
            unmapped=len(self.table.unmapped),
        )
        return self.table

    def align(self, table: Optional[CorrespondenceTable] = None) -> bool:
        table = table or self.table
        if table is None:
            table = self.build_table()

        if self.settings.auto_scale:
            self.scale_factor = estimate_scale_factor(self.character_root, self.clothing_root,
                                                      self.vocabulary)
        else:
            self.scale_factor = self.settings.scale_factor

        ok = apply_alignment(table.correspondences, table.unmapped, self.clothing_root,
                             character_root=self.character_root,
                             scale_factor=self.scale_factor)
        if ok:
            self.event_bus.publish(EventType.ALIGNMENT_APPLIED, aligned=len(table.aligned_entries()))
        else:
            self.event_bus.publish(EventType.ALIGNMENT_FAILED, reason="alignment failed")
        return ok

    def resolve(self, should_cancel: Optional[Callable[[], bool]] = None) -> PenetrationReport:
        s = self.settings
        resolver = PenetrationResolver(
            push_out_distance=s.push_out_distance,
            penetration_threshold=s.penetration_threshold,
            advanced_sampling=s.advanced_sampling,
            prefer_body_meshes=s.prefer_body_meshes,
            preserve_shape=s.preserve_shape,
            preserve_strength=s.preserve_strength,
            smoothing_iterations=s.smoothing_iterations,
            vocabulary=self.vocabulary,
            should_cancel=should_cancel,
        )
        modified = resolver.resolve(self.character_root, self.clothing_root)
        report = resolver.last_report
        self.event_bus.publish(EventType.PENETRATION_RESOLVED, modified=modified,
                               adjusted=report.adjusted_vertices, report=report)
        return report

    def fit(self, should_cancel: Optional[Callable[[], bool]] = None) -> FitResult:
        if self.character_root is None or self.clothing_root is None:
            result = FitResult(False, "Select both a character and a clothing object")
            self._status(result.status)
            self.event_bus.publish(EventType.FIT_COMPLETE, result=result)
            return result

        self.event_bus.publish(EventType.FIT_STARTED, character=self.character_root.name,
                               clothing=self.clothing_root.name)
        table = self.build_table()
        self._status(f"Matched {len(table.mapped())} of {len(table)} bones "
                     f"({len(table.unmapped)} unmapped clothing nodes)")

        if not self.align(table):
            result = FitResult(False, "Bone alignment failed; clothing left in place",
                               table=table, scale_factor=self.scale_factor)
            self._status(result.status)
            self.event_bus.publish(EventType.FIT_COMPLETE, result=result)
            return result

        report = None
        status = f"Aligned {len(table.aligned_entries())} bones"
        if self.settings.resolve_penetration:
            report = self.resolve(should_cancel)
            if report.cancelled:
                status += "; penetration fix cancelled"
            elif report.modified:
                status += (f"; pushed out {report.adjusted_vertices} vertices in "
                           f"{len(report.modified_meshes)} mesh(es)")
            else:
                status += "; no penetration found"

        result = FitResult(True, status, table=table, scale_factor=self.scale_factor,
                           penetration=report)
        self._status(result.status)
        self.event_bus.publish(EventType.FIT_COMPLETE, result=result)
        return result

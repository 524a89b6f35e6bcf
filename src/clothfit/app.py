"""Command-line demo: fit a procedural outfit onto a procedural character."""

import argparse
import logging
import sys
from typing import Optional, Sequence

from clothfit.constants import DEFAULT_PRESERVE_STRENGTH, DEFAULT_PUSH_OUT, DEFAULT_THRESHOLD
from clothfit.core.config_loader import load_vocabulary
from clothfit.core.events import EventBus, EventType
from clothfit.core.scene_graph import Scene
from clothfit.core.state import FitSettings
from clothfit.coordination.fitting import ClothingFitter
from clothfit.coordination.procedural import build_character, build_clothing

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="clothfit", description=__doc__)
    parser.add_argument("--push-out", type=float, default=DEFAULT_PUSH_OUT,
                        help="clearance added in front of the body surface")
    parser.add_argument("--threshold", type=float, default=DEFAULT_THRESHOLD,
                        help="maximum penetration depth detected")
    parser.add_argument("--strength", type=float, default=DEFAULT_PRESERVE_STRENGTH,
                        help="shape preservation strength (0-1)")
    parser.add_argument("--basic-sampling", action="store_true",
                        help="coarser triangle sampling")
    parser.add_argument("--no-smoothing", action="store_true",
                        help="skip shape-preserving smoothing")
    parser.add_argument("--no-body-priority", action="store_true",
                        help="test all character meshes with equal priority")
    parser.add_argument("--scale", type=float, default=None,
                        help="clothing root scale (default: estimated from the hips)")
    parser.add_argument("--vocabulary", default=None,
                        help="JSON file (or bundled config name) overriding the bone matching vocabulary")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the fitting pipeline on the built-in box figures."""
    args = _parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(name)s: %(message)s")

    settings = FitSettings(
        advanced_sampling=not args.basic_sampling,
        prefer_body_meshes=not args.no_body_priority,
        preserve_shape=not args.no_smoothing,
        auto_scale=args.scale is None,
    )
    settings.set_push_out_distance(args.push_out)
    settings.set_penetration_threshold(args.threshold)
    settings.set_preserve_strength(args.strength)
    if args.scale is not None:
        settings.set_scale_factor(args.scale)

    vocabulary = load_vocabulary(args.vocabulary) if args.vocabulary else None

    scene = Scene()
    character = build_character()
    clothing = build_clothing()
    scene.add(character)
    scene.add(clothing)

    bus = EventBus()
    bus.subscribe(EventType.STATUS, lambda message: print(message))

    fitter = ClothingFitter(character, clothing, settings=settings,
                            vocabulary=vocabulary, event_bus=bus)
    result = fitter.fit()

    for entry in result.table or []:
        target = entry.clothing_node.name if entry.clothing_node is not None else "-"
        logger.debug("%-24s %-20s %s", entry.canonical_name, target, entry.match_path)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())

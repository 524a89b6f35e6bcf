"""Shared constants for clothing fitting."""

from pathlib import Path

# Package paths
PACKAGE_DIR = Path(__file__).parent
CONFIG_DIR = PACKAGE_DIR / "config"

# Penetration push-out (length units)
PUSH_OUT_MIN = 0.0005
PUSH_OUT_MAX = 0.05
DEFAULT_PUSH_OUT = 0.01

# Penetration detection threshold (length units)
THRESHOLD_MIN = 0.001
THRESHOLD_MAX = 0.05
DEFAULT_THRESHOLD = 0.015

# Shape preservation
DEFAULT_PRESERVE_STRENGTH = 0.5
DEFAULT_SMOOTHING_ITERATIONS = 3
SMOOTHING_ITERATIONS_MIN = 1
SMOOTHING_ITERATIONS_MAX = 10
RELAX_FACTOR = 0.5
# Displaced vertices keep most of their fix
DISPLACED_BLEND_SCALE = 0.25

# Sampling presets: (triangle stride, bounding-box margin)
ADVANCED_SAMPLING = (1, 0.05)
BASIC_SAMPLING = (2, 0.1)
REMAINDER_STRIDE_FACTOR = 2

# Upper bound on (vertex, triangle) pairs evaluated per closest-point batch
MAX_QUERY_PAIRS = 400_000

# Correspondence
SPATIAL_SEARCH_RADIUS = 0.05
UNMAPPED_SUFFIX = " (Unmapped)"

# Bone similarity weights (position, rotation)
SIMILARITY_POSITION_WEIGHT = 0.7
SIMILARITY_ROTATION_WEIGHT = 0.3

# Root scale bounds accepted by fitting
SCALE_MIN = 0.01
SCALE_MAX = 100.0

"""Fitting settings with clamping setters."""

from dataclasses import dataclass

from clothfit.constants import (
    DEFAULT_PUSH_OUT, PUSH_OUT_MIN, PUSH_OUT_MAX,
    DEFAULT_THRESHOLD, THRESHOLD_MIN, THRESHOLD_MAX,
    DEFAULT_PRESERVE_STRENGTH, DEFAULT_SMOOTHING_ITERATIONS,
    SMOOTHING_ITERATIONS_MIN, SMOOTHING_ITERATIONS_MAX,
    SCALE_MIN, SCALE_MAX,
)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


@dataclass
class FitSettings:
    """User-facing knobs for one fitting session.

    Values assigned through the ``set_*`` methods are clamped to safe
    ranges; ``clamped()`` returns a copy with every field clamped, for
    settings assigned directly.
    """
    push_out_distance: float = DEFAULT_PUSH_OUT
    penetration_threshold: float = DEFAULT_THRESHOLD
    advanced_sampling: bool = True
    prefer_body_meshes: bool = True
    preserve_shape: bool = True
    preserve_strength: float = DEFAULT_PRESERVE_STRENGTH
    smoothing_iterations: int = DEFAULT_SMOOTHING_ITERATIONS
    scale_factor: float = 1.0
    auto_scale: bool = False
    resolve_penetration: bool = True

    def set_push_out_distance(self, value: float) -> None:
        self.push_out_distance = _clamp(float(value), PUSH_OUT_MIN, PUSH_OUT_MAX)

    def set_penetration_threshold(self, value: float) -> None:
        self.penetration_threshold = _clamp(float(value), THRESHOLD_MIN, THRESHOLD_MAX)

    def set_preserve_strength(self, value: float) -> None:
        self.preserve_strength = _clamp(float(value), 0.0, 1.0)

    def set_smoothing_iterations(self, value: int) -> None:
        self.smoothing_iterations = int(_clamp(int(value), SMOOTHING_ITERATIONS_MIN,
                                               SMOOTHING_ITERATIONS_MAX))

    def set_scale_factor(self, value: float) -> None:
        self.scale_factor = _clamp(float(value), SCALE_MIN, SCALE_MAX)

    def clamped(self) -> "FitSettings":
        s = FitSettings(
            advanced_sampling=self.advanced_sampling,
            prefer_body_meshes=self.prefer_body_meshes,
            preserve_shape=self.preserve_shape,
            auto_scale=self.auto_scale,
            resolve_penetration=self.resolve_penetration,
        )
        s.set_push_out_distance(self.push_out_distance)
        s.set_penetration_threshold(self.penetration_threshold)
        s.set_preserve_strength(self.preserve_strength)
        s.set_smoothing_iterations(self.smoothing_iterations)
        s.set_scale_factor(self.scale_factor)
        return s

"""End-to-end tests for the clothing fitting pipeline on the box figures."""

import numpy as np
import pytest

from clothfit.core.events import EventBus, EventType
from clothfit.core.scene_graph import Scene
from clothfit.core.state import FitSettings
from clothfit.coordination.fitting import ClothingFitter, FitResult
from clothfit.coordination.procedural import build_character, build_clothing


def _figures():
    scene = Scene()
    character = build_character()
    clothing = build_clothing(scale=0.9)
    scene.add(character)
    scene.add(clothing)
    return scene, character, clothing


def _recording_bus():
    bus = EventBus()
    log = []
    for event_type in EventType:
        bus.subscribe(event_type, lambda _t=event_type, **kw: log.append((_t, kw)))
    return bus, log


def test_fit_aligns_and_resolves():
    scene, character, clothing = _figures()
    shirt_before = clothing.find("Shirt").mesh.positions.copy()
    fitter = ClothingFitter(character, clothing, settings=FitSettings(auto_scale=True))

    result = fitter.fit()
    assert result.success
    assert result.scale_factor == pytest.approx(1.0 / 0.9)
    assert len(result.table) == 22
    assert {e.canonical_name for e in result.table.missing()} >= {"Neck", "Head"}

    report = result.penetration
    assert report is not None and report.modified
    assert set(report.modified_meshes) == {"Shirt", "Pants"}
    assert "pushed out" in result.status
    assert not np.array_equal(clothing.find("Shirt").mesh.positions, shirt_before)

    for entry in result.table.aligned_entries():
        np.testing.assert_array_almost_equal(entry.clothing_node.get_world_position(),
                                             entry.character_node.get_world_position())


def test_repeated_resolve_reaches_fixed_point():
    # Box edges keep re-entering the back side of the body without the
    # smoothing/projection step, so only the shape-preserving run settles.
    scene, character, clothing = _figures()
    fitter = ClothingFitter(character, clothing, settings=FitSettings(auto_scale=True))
    assert fitter.settings.preserve_shape
    first = fitter.fit().penetration
    second = fitter.resolve()
    assert 0 < second.adjusted_vertices < first.adjusted_vertices

    settled = fitter.resolve()
    assert settled.adjusted_vertices == 0
    assert not settled.modified
    positions = clothing.find("Shirt").mesh.positions.copy()
    assert not fitter.resolve().modified
    np.testing.assert_array_equal(clothing.find("Shirt").mesh.positions, positions)


def test_refit_keeps_scale():
    scene, character, clothing = _figures()
    fitter = ClothingFitter(character, clothing, settings=FitSettings(auto_scale=True))
    fitter.fit()
    result = fitter.fit()
    assert result.success
    assert result.scale_factor == pytest.approx(1.0 / 0.9)
    np.testing.assert_array_almost_equal(clothing.scale, [1 / 0.9] * 3)


def test_events_published_in_order():
    scene, character, clothing = _figures()
    bus, log = _recording_bus()
    ClothingFitter(character, clothing, settings=FitSettings(auto_scale=True), event_bus=bus).fit()

    order = [t for t, _ in log]
    assert order == [
        EventType.FIT_STARTED,
        EventType.CORRESPONDENCE_BUILT,
        EventType.STATUS,
        EventType.ALIGNMENT_APPLIED,
        EventType.PENETRATION_RESOLVED,
        EventType.STATUS,
        EventType.FIT_COMPLETE,
    ]
    built = log[1][1]
    assert built == {"mapped": 19, "missing": 2, "unmapped": 1}
    assert log[0][1] == {"character": "Character", "clothing": "Outfit"}
    assert isinstance(log[-1][1]["result"], FitResult)


def test_missing_root():
    scene, character, clothing = _figures()
    bus, log = _recording_bus()
    result = ClothingFitter(character, None, event_bus=bus).fit()
    assert result == FitResult(False, "Select both a character and a clothing object")
    assert [t for t, _ in log] == [EventType.STATUS, EventType.FIT_COMPLETE]
    assert log[0][1]["message"] == "Select both a character and a clothing object"


def test_penetration_step_can_be_skipped():
    scene, character, clothing = _figures()
    shirt_before = clothing.find("Shirt").mesh.positions.copy()
    settings = FitSettings(auto_scale=True, resolve_penetration=False)
    result = ClothingFitter(character, clothing, settings=settings).fit()
    assert result.success
    assert result.penetration is None
    assert result.status.startswith("Aligned")
    np.testing.assert_array_equal(clothing.find("Shirt").mesh.positions, shirt_before)


def test_cancelled_penetration_keeps_alignment():
    scene, character, clothing = _figures()
    shirt_before = clothing.find("Shirt").mesh.positions.copy()
    result = ClothingFitter(character, clothing).fit(should_cancel=lambda: True)
    assert result.success
    assert result.penetration.cancelled
    assert result.status.endswith("penetration fix cancelled")
    np.testing.assert_array_equal(clothing.find("Shirt").mesh.positions, shirt_before)


def test_table_edits_between_steps():
    scene, character, clothing = _figures()
    bus, log = _recording_bus()
    fitter = ClothingFitter(character, clothing, event_bus=bus)
    table = fitter.build_table()
    removed = table.mapped()[-1].canonical_name
    table.clear(removed)

    assert fitter.align()
    assert removed not in [e.canonical_name for e in table.aligned_entries()]
    applied = [kw for t, kw in log if t == EventType.ALIGNMENT_APPLIED]
    assert applied == [{"aligned": len(table.aligned_entries())}]


def test_alignment_failure_reported():
    scene, character, clothing = _figures()
    bus, log = _recording_bus()
    fitter = ClothingFitter(character, clothing, event_bus=bus)
    table = fitter.build_table()
    clothing.find("spine").dispose()

    assert fitter.align(table) is False
    assert EventType.ALIGNMENT_FAILED in [t for t, _ in log]
    np.testing.assert_array_almost_equal(clothing.position, [0.5, 0.0, 0.0])


def test_manual_scale_used_without_auto_scale():
    scene, character, clothing = _figures()
    settings = FitSettings(resolve_penetration=False)
    settings.set_scale_factor(1.25)
    result = ClothingFitter(character, clothing, settings=settings).fit()
    assert result.scale_factor == pytest.approx(1.25)
    np.testing.assert_array_almost_equal(clothing.get_world_scale(), [1.25] * 3)


def test_settings_clamped_on_construction():
    settings = FitSettings(push_out_distance=1.0, smoothing_iterations=99)
    fitter = ClothingFitter(None, None, settings=settings)
    assert fitter.settings.push_out_distance < 1.0
    assert fitter.settings.smoothing_iterations == 10
    # Caller's settings are left alone
    assert settings.push_out_distance == 1.0

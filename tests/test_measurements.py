import pytest

from backend.app.PostureLab.Capture.landmarks import MOVEMENT_LANDMARKS, POSTURE_LANDMARKS
from backend.app.PostureLab.Capture.measurements import (
    STATUS_DEVIATION,
    STATUS_OPTIMAL,
    STATUS_WARNING,
    Measurement,
    MeasurementEngine,
    MeasurementThresholds,
    summarize,
)


def place_all(view, points):
    for landmark_id, (x, y) in points.items():
        view = view.place(landmark_id, x, y)
    return view


@pytest.fixture
def engine():
    return MeasurementEngine()


def test_shoulder_tilt_scenario(engine):
    view = place_all(POSTURE_LANDMARKS.blank_view("front"), {"shoulder_left": (40, 40), "shoulder_right": (60, 42)})
    assert engine.measure_view(view) == [
        Measurement(label="Shoulder Tilt", value=1.0, unit="°", status=STATUS_OPTIMAL),
    ]


def test_pelvic_tilt_warning_uses_asis_on_front(engine):
    view = place_all(POSTURE_LANDMARKS.blank_view("front"), {
        "shoulder_left": (40, 40), "shoulder_right": (60, 40),
        "asis_left": (42, 60), "asis_right": (58, 66),
    })
    results = {m.label: m for m in engine.measure_view(view)}
    assert [m.label for m in engine.measure_view(view)] == ["Shoulder Tilt", "Pelvic Tilt"]
    assert results["Shoulder Tilt"].value == 0.0
    assert results["Pelvic Tilt"].value == 3.0
    assert results["Pelvic Tilt"].status == STATUS_WARNING


def test_back_view_uses_psis_pair(engine):
    view = place_all(POSTURE_LANDMARKS.blank_view("back"), {"psis_left": (45, 58), "psis_right": (55, 61)})
    assert engine.measure_view(view) == [
        Measurement(label="Pelvic Tilt", value=1.5, unit="°", status=STATUS_OPTIMAL),
    ]


@pytest.mark.parametrize("ear_x, c7_x, value, status", [
    (52, 50, 2.0, STATUS_OPTIMAL),
    (56, 50, 6.0, STATUS_DEVIATION),
    (45, 50, 5.0, STATUS_DEVIATION),
])
def test_forward_head_shift(engine, ear_x, c7_x, value, status):
    view = place_all(POSTURE_LANDMARKS.blank_view("left"), {"ear": (ear_x, 20), "c7": (c7_x, 28)})
    assert engine.measure_view(view) == [
        Measurement(label="Forward Head Shift", value=value, unit="cm equiv.", status=status),
    ]


def test_frame_joint_angles(engine):
    straight = place_all(MOVEMENT_LANDMARKS.blank_view("frame_1", "frame"), {
        "lower_spine": (50, 0), "hip": (50, 20), "knee": (50, 50), "ankle": (50, 80),
    })
    bent = place_all(MOVEMENT_LANDMARKS.blank_view("frame_2", "frame"), {
        "hip": (50, 20), "knee": (50, 50), "ankle": (80, 50),
    })
    assert engine.measure_view(straight) == [
        Measurement(label="Knee Flexion", value=0.0, unit="°", status=STATUS_OPTIMAL),
        Measurement(label="Hip Flexion", value=0.0, unit="°", status=STATUS_OPTIMAL),
    ]
    assert engine.measure_view(bent) == [
        Measurement(label="Knee Flexion", value=90.0, unit="°", status=STATUS_WARNING),
    ]


def test_coincident_landmarks_have_no_angle(engine):
    view = place_all(MOVEMENT_LANDMARKS.blank_view("frame_1", "frame"), {
        "hip": (50, 50), "knee": (50, 50), "ankle": (50, 80),
    })
    assert engine.measure_view(view) == []


def test_missing_inputs_omit_measurement(engine):
    view = place_all(POSTURE_LANDMARKS.blank_view("right"), {"ear": (50, 20)})
    assert engine.measure_view(view) == []


def test_placing_landmarks_only_adds_measurements(engine):
    view = POSTURE_LANDMARKS.blank_view("front")
    previous = set()
    for i, landmark_id in enumerate(POSTURE_LANDMARKS.required_ids("front")):
        view = view.place(landmark_id, 30 + i, 40 + i)
        labels = {m.label for m in engine.measure_view(view)}
        assert previous <= labels
        previous = labels
    assert previous == {"Shoulder Tilt", "Pelvic Tilt"}


def test_measurements_are_deterministic(engine):
    view = place_all(POSTURE_LANDMARKS.blank_view("front"), {
        "shoulder_left": (38.7, 41.3), "shoulder_right": (61.2, 44.9),
        "asis_left": (43.1, 62.0), "asis_right": (57.4, 60.2),
    })
    assert engine.measure_view(view) == engine.measure_view(view)
    assert engine.measure_views([view]) == MeasurementEngine().measure_views([view])


def test_measure_views_skips_views_without_measurements(engine):
    empty = POSTURE_LANDMARKS.blank_view("back")
    front = place_all(POSTURE_LANDMARKS.blank_view("front"), {"shoulder_left": (40, 40), "shoulder_right": (60, 42)})
    assert list(engine.measure_views([empty, front])) == ["front"]


def test_thresholds_are_configurable():
    strict = MeasurementEngine(MeasurementThresholds(tilt_optimal_max_deg=0.5))
    view = place_all(POSTURE_LANDMARKS.blank_view("front"), {"shoulder_left": (40, 40), "shoulder_right": (60, 42)})
    assert strict.measure_view(view)[0].status == STATUS_WARNING


def test_summarize_scores():
    summary = summarize({
        "front": [Measurement("Shoulder Tilt", 1.0, "°", STATUS_OPTIMAL), Measurement("Pelvic Tilt", 3.0, "°", STATUS_WARNING)],
        "left": [Measurement("Forward Head Shift", 7.0, "cm equiv.", STATUS_DEVIATION)],
    })
    assert summary == {
        "measurement_count": 3,
        "status_counts": {STATUS_OPTIMAL: 1, STATUS_WARNING: 1, STATUS_DEVIATION: 1},
        "posture_score": 33,
        "risk_score": 50,
    }


def test_summarize_empty():
    assert summarize({})["posture_score"] == 0
    assert summarize({})["risk_score"] == 0

import json
import math

import pytest

from backend.app.PostureLab.Capture.exceptions import (
    DuplicateLandmarkError,
    InvalidCoordinateError,
    UnknownLandmarkError,
)
from backend.app.PostureLab.Capture.landmarks import (
    MOVEMENT_LANDMARKS,
    POSTURE_LANDMARKS,
    Landmark,
    View,
    clamp_coordinate,
    is_complete,
)


@pytest.mark.parametrize("raw, expected", [
    (50, 50.0),
    (-12.5, 0.0),
    (140, 100.0),
    (math.inf, 100.0),
    (-math.inf, 0.0),
    (0, 0.0),
    (100, 100.0),
])
def test_clamp_coordinate_bounds(raw, expected):
    assert clamp_coordinate(raw) == expected


@pytest.mark.parametrize("raw", [math.nan, "12", None, True])
def test_clamp_coordinate_rejects_non_numbers(raw):
    with pytest.raises(InvalidCoordinateError):
        clamp_coordinate(raw)


def test_landmark_at_origin_is_placed():
    landmark = Landmark(id="ear", label="Ear").place(0, 0)
    assert landmark.is_placed
    restored = Landmark.from_dict(json.loads(json.dumps(landmark.to_dict())))
    assert restored.is_placed
    assert (restored.x, restored.y) == (0.0, 0.0)


def test_legacy_sentinel_snapshot_is_read_as_unplaced():
    legacy_unplaced = Landmark.from_dict({"id": "ear", "label": "Ear", "x": 0, "y": 0})
    legacy_placed = Landmark.from_dict({"id": "c7", "label": "C7", "x": 12, "y": 30})
    assert not legacy_unplaced.is_placed
    assert legacy_unplaced.x is None
    assert legacy_placed.is_placed


def test_cleared_landmark_has_no_coordinates():
    landmark = Landmark(id="knee", label="Knee").place(40, 60).cleared()
    assert not landmark.is_placed
    assert landmark.to_dict() == {"id": "knee", "label": "Knee", "x": None, "y": None, "placed": False}


def test_view_place_is_copy_on_write():
    view = POSTURE_LANDMARKS.blank_view("front")
    updated = view.place("shoulder_left", 120, 40)
    assert view.placed("shoulder_left") is None
    assert updated.placed("shoulder_left").x == 100.0
    assert updated.placed_ids() == ["shoulder_left"]


def test_view_rejects_unknown_landmark():
    view = POSTURE_LANDMARKS.blank_view("left")
    with pytest.raises(UnknownLandmarkError):
        view.place("asis_left", 10, 10)


def test_view_rejects_duplicate_ids():
    with pytest.raises(DuplicateLandmarkError):
        View(view_id="front", view_type="front", landmarks=(Landmark("ear", "Ear"), Landmark("ear", "Ear")))


def test_blank_views_follow_config_order():
    front = POSTURE_LANDMARKS.blank_view("front")
    assert [l.id for l in front.landmarks] == [
        "head_center", "shoulder_left", "shoulder_right", "asis_left", "asis_right", "ankle_left", "ankle_right",
    ]
    frame = MOVEMENT_LANDMARKS.blank_view("frame_1", "frame")
    assert frame.view_type == "frame"
    assert [l.id for l in frame.landmarks] == ["lower_spine", "hip", "knee", "ankle"]


def test_is_complete_requires_every_landmark():
    view = POSTURE_LANDMARKS.blank_view("right")
    ids = POSTURE_LANDMARKS.required_ids("right")
    for landmark_id in ids[:-1]:
        view = view.place(landmark_id, 50, 50)
        assert not is_complete(view, POSTURE_LANDMARKS)
    view = view.place(ids[-1], 50, 50)
    assert is_complete(view, POSTURE_LANDMARKS)


def test_is_complete_false_for_view_type_without_config():
    frame = MOVEMENT_LANDMARKS.blank_view("frame_1", "frame")
    assert not is_complete(frame, POSTURE_LANDMARKS)


def test_view_round_trip_keeps_media_and_frame_fields():
    frame = MOVEMENT_LANDMARKS.blank_view("frame_2", "frame", source_ref_id="vid-1", timestamp=1.25)
    frame = frame.place("knee", 33.3, 66.6)
    restored = View.from_dict(json.loads(json.dumps(frame.to_dict())))
    assert restored == frame

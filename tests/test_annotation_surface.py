import math

import pytest

from backend.app.PostureLab.Capture.annotation import AnnotationSurface, Rect
from backend.app.PostureLab.Capture.exceptions import UnknownLandmarkError
from backend.app.PostureLab.Capture.landmarks import POSTURE_LANDMARKS


class Harness:
    """A front view plus the proposals the surface sent back."""

    def __init__(self, bounds=Rect(left=100, top=50, width=400, height=200)):
        self.view = POSTURE_LANDMARKS.blank_view("front")
        self.calls = []
        self.surface = AnnotationSurface("front", get_view=lambda: self.view, propose=self.propose, bounds=bounds)

    def propose(self, landmark_id, x, y):
        self.calls.append((landmark_id, x, y))
        self.view = self.view.place(landmark_id, x, y)

    def xy(self, landmark_id):
        landmark = self.view.placed(landmark_id)
        return (landmark.x, landmark.y) if landmark else None


@pytest.fixture
def harness():
    return Harness()


def test_to_normalized_maps_and_clamps(harness):
    assert harness.surface.to_normalized(300, 150) == (50.0, 50.0)
    assert harness.surface.to_normalized(100, 50) == (0.0, 0.0)
    assert harness.surface.to_normalized(0, 0) == (0.0, 0.0)
    assert harness.surface.to_normalized(900, 900) == (100.0, 100.0)


@pytest.mark.parametrize("bounds, point", [
    (None, (10, 10)),
    (Rect(0, 0, 0, 200), (10, 10)),
    (Rect(0, 0, 200, 0), (10, 10)),
    (Rect(0, 0, 200, 200), (math.nan, 10)),
    (Rect(0, 0, 200, 200), (10, math.inf)),
    (Rect(0, 0, 200, 200), ("left", 10)),
])
def test_to_normalized_returns_none_without_mapping(bounds, point):
    surface = Harness(bounds=bounds).surface
    assert surface.to_normalized(*point) is None


def test_select_then_click_places_active_landmark(harness):
    harness.surface.select_landmark("shoulder_left")
    assert harness.surface.click_on_empty_area(200, 100) is True
    assert harness.calls == [("shoulder_left", 25.0, 25.0)]


def test_click_without_active_landmark_is_noop(harness):
    assert harness.surface.click_on_empty_area(200, 100) is False
    assert harness.calls == []


def test_click_on_degenerate_container_is_ignored():
    harness = Harness(bounds=Rect(0, 0, 0, 0))
    harness.surface.select_landmark("shoulder_left")
    assert harness.surface.click_on_empty_area(10, 10) is False
    assert harness.calls == []


def test_select_unknown_landmark_raises(harness):
    with pytest.raises(UnknownLandmarkError):
        harness.surface.select_landmark("c7")


def test_drag_requires_placed_landmark(harness):
    assert harness.surface.pointer_down_on_landmark("shoulder_left") is False
    assert harness.surface.drag_id is None


def test_drag_moves_landmark_and_last_move_wins(harness):
    harness.propose("shoulder_left", 10, 10)
    assert harness.surface.pointer_down_on_landmark("shoulder_left") is True
    harness.surface.pointer_move(200, 100)
    harness.surface.pointer_move(300, 150)
    harness.surface.pointer_up()
    assert harness.xy("shoulder_left") == (50.0, 50.0)
    assert harness.surface.drag_id is None
    assert harness.surface.pointer_move(400, 200) is False


def test_only_one_drag_at_a_time(harness):
    harness.propose("shoulder_left", 10, 10)
    harness.propose("shoulder_right", 90, 10)
    assert harness.surface.pointer_down_on_landmark("shoulder_left") is True
    assert harness.surface.pointer_down_on_landmark("shoulder_right") is False
    assert harness.surface.drag_id == "shoulder_left"
    harness.surface.pointer_move(300, 150)
    assert harness.xy("shoulder_right") == (90.0, 10.0)


def test_marker_gesture_suppresses_container_click(harness):
    harness.propose("shoulder_left", 10, 10)
    harness.surface.select_landmark("shoulder_right")
    harness.surface.pointer_down_on_landmark("shoulder_left")
    harness.surface.pointer_move(300, 150)
    harness.surface.pointer_up()

    # The click that closes the drag gesture must not place the active landmark.
    assert harness.surface.click_on_empty_area(300, 150) is False
    assert harness.xy("shoulder_right") is None

    harness.surface.pointer_down_on_empty_area()
    assert harness.surface.click_on_empty_area(460, 150) is True
    assert harness.xy("shoulder_right") == (90.0, 50.0)


def test_cancel_mid_drag_keeps_last_position(harness):
    harness.propose("asis_left", 10, 10)
    harness.surface.pointer_down_on_landmark("asis_left")
    harness.surface.pointer_move(300, 150)
    harness.surface.cancel()
    assert harness.surface.drag_id is None
    assert harness.xy("asis_left") == (50.0, 50.0)
    assert harness.surface.pointer_move(100, 50) is False


def test_dispatch_runs_a_full_gesture(harness):
    rect = {"left": 0, "top": 0, "width": 1000, "height": 500}
    surface = harness.surface
    assert surface.dispatch({"type": "select", "landmark_id": "head_center"}) is True
    assert surface.dispatch({"type": "down"}) is True
    assert surface.dispatch({"type": "click", "client_x": 500, "client_y": 100, "rect": rect}) is True
    assert harness.xy("head_center") == (50.0, 20.0)

    assert surface.dispatch({"type": "down", "landmark_id": "head_center"}) is True
    assert surface.dispatch({"type": "move", "client_x": 250, "client_y": 250}) is True
    assert surface.dispatch({"type": "up"}) is True
    assert harness.xy("head_center") == (25.0, 50.0)
    assert surface.state() == {"view_id": "front", "active_landmark_id": "head_center", "drag_id": None}


def test_dispatch_rejects_unknown_event(harness):
    with pytest.raises(ValueError):
        harness.surface.dispatch({"type": "hover"})


def test_drag_ending_outside_the_container_does_not_swallow_next_placement(harness):
    harness.propose("shoulder_left", 10, 10)
    harness.surface.pointer_down_on_landmark("shoulder_left")
    harness.surface.pointer_move(500, 500)
    harness.surface.pointer_up()
    # No closing click arrives; the operator picks the next landmark instead.
    harness.surface.select_landmark("shoulder_right")
    assert harness.surface.click_on_empty_area(340, 114) is True
    assert harness.xy("shoulder_right") == (60.0, 32.0)


def test_pointer_move_after_drag_ends_the_gesture(harness):
    harness.propose("shoulder_left", 10, 10)
    harness.surface.select_landmark("shoulder_right")
    harness.surface.pointer_down_on_landmark("shoulder_left")
    harness.surface.pointer_up()
    assert harness.surface.pointer_move(200, 100) is False
    assert harness.surface.click_on_empty_area(200, 100) is True
    assert harness.xy("shoulder_right") == (25.0, 25.0)


@pytest.mark.parametrize("data", [{"left": 0}, {"width": None, "height": 1}, ["not", "a", "rect"]])
def test_rect_from_malformed_dict_raises_value_error(data):
    with pytest.raises(ValueError):
        Rect.from_dict(data)

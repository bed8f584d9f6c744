import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .exceptions import UnknownLandmarkError
from .landmarks import COORD_MAX, COORD_MIN, View


@dataclass(frozen=True)
class Rect:
    """Bounding box of the rendered image container, in client pixels."""

    left: float
    top: float
    width: float
    height: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rect":
        try:
            return cls(
                left=float(data.get("left", 0.0)),
                top=float(data.get("top", 0.0)),
                width=float(data["width"]),
                height=float(data["height"]),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"rect needs numeric width and height: {exc!r}") from exc


POINTER_EVENTS = ("select", "down", "move", "up", "click", "cancel")


class AnnotationSurface:
    """
    Maps pointer input over one displayed image/frame to landmark updates.

    This object only holds ephemeral UI state (selected landmark, landmark in
    drag, container bounds). It never mutates landmarks itself: every position
    is proposed back through `propose(landmark_id, x, y)`, which is the capture
    session's update API.

    Placement is a two-step protocol: select a landmark, then click the image.
    Dragging starts on an already placed marker. A gesture that starts on a
    marker consumes the container click that ends it, so one gesture never
    both drags and places.
    """

    def __init__(
        self,
        view_id: str,
        get_view: Callable[[], View],
        propose: Callable[[str, float, float], Any],
        bounds: Optional[Rect] = None,
    ):
        self.view_id = view_id
        self._get_view = get_view
        self._propose = propose
        self.bounds = bounds
        self.active_landmark_id: Optional[str] = None
        self.drag_id: Optional[str] = None
        self._gesture_on_marker = False

    # --------------------------------------------------------------------------
    # Coordinate mapping
    # --------------------------------------------------------------------------
    def set_bounds(self, bounds: Rect):
        self.bounds = bounds

    def to_normalized(self, client_x: Any, client_y: Any) -> Optional[Tuple[float, float]]:
        """
        Convert a client-space pointer position into [0, 100] percentages of the
        container. Positions outside the container clamp to its edge.

        Returns None when no mapping exists (no bounds yet, a zero-sized
        container, or a non-finite pointer); callers drop such events.
        """
        rect = self.bounds
        if rect is None or not (rect.width > 0 and rect.height > 0):
            return None
        try:
            cx, cy = float(client_x), float(client_y)
        except (TypeError, ValueError):
            return None
        if not (math.isfinite(cx) and math.isfinite(cy)):
            return None
        x = (cx - rect.left) / rect.width * 100.0
        y = (cy - rect.top) / rect.height * 100.0
        return (max(COORD_MIN, min(COORD_MAX, x)), max(COORD_MIN, min(COORD_MAX, y)))

    # --------------------------------------------------------------------------
    # Gestures
    # --------------------------------------------------------------------------
    def select_landmark(self, landmark_id: Optional[str]):
        if landmark_id is not None and self._get_view().get(landmark_id) is None:
            raise UnknownLandmarkError(f"landmark {landmark_id!r} is not part of view {self.view_id!r}")
        self.active_landmark_id = landmark_id
        self._gesture_on_marker = False

    def pointer_down_on_landmark(self, landmark_id: str) -> bool:
        """
        Start dragging a placed marker.

        Only one drag can be active; a second pointer-down while a drag is in
        progress is refused. Markers exist only for placed landmarks.
        """
        if self.drag_id is not None:
            return False
        if self._get_view().placed(landmark_id) is None:
            return False
        self.drag_id = landmark_id
        self._gesture_on_marker = True
        return True

    def pointer_down_on_empty_area(self):
        self._gesture_on_marker = False

    def pointer_move(self, client_x: Any, client_y: Any) -> bool:
        if self.drag_id is None:
            # A drag that ended outside the container never gets its closing click.
            self._gesture_on_marker = False
            return False
        point = self.to_normalized(client_x, client_y)
        if point is None:
            return False
        self._propose(self.drag_id, point[0], point[1])
        return True

    def pointer_up(self):
        self.drag_id = None

    def click_on_empty_area(self, client_x: Any, client_y: Any) -> bool:
        """
        Place or reposition the active landmark at the click.

        No-op when the click closes a gesture that started on a marker, while a
        drag is still running, or when no landmark is selected.
        """
        if self._gesture_on_marker or self.drag_id is not None:
            self._gesture_on_marker = False
            return False
        if self.active_landmark_id is None:
            return False
        point = self.to_normalized(client_x, client_y)
        if point is None:
            return False
        self._propose(self.active_landmark_id, point[0], point[1])
        return True

    def cancel(self):
        """Navigation away: end any drag silently, keeping the last applied position."""
        self.drag_id = None
        self._gesture_on_marker = False

    def dispatch(self, event: Dict[str, Any]) -> bool:
        """
        Apply one serialized pointer event.

        Event shape: {"type": one of POINTER_EVENTS, "landmark_id"?, "client_x"?,
        "client_y"?, "rect"?}. A rect, when present, updates the container
        bounds before the event is applied.
        """
        kind = event.get("type")
        if kind not in POINTER_EVENTS:
            raise ValueError(f"type must be one of: {', '.join(POINTER_EVENTS)}")
        if event.get("rect"):
            self.set_bounds(Rect.from_dict(event["rect"]))

        if kind == "select":
            self.select_landmark(event.get("landmark_id"))
            return True
        if kind == "down":
            if event.get("landmark_id"):
                return self.pointer_down_on_landmark(event["landmark_id"])
            self.pointer_down_on_empty_area()
            return True
        if kind == "move":
            return self.pointer_move(event.get("client_x"), event.get("client_y"))
        if kind == "up":
            self.pointer_up()
            return True
        if kind == "click":
            return self.click_on_empty_area(event.get("client_x"), event.get("client_y"))
        self.cancel()
        return True

    def state(self) -> Dict[str, Any]:
        return {
            "view_id": self.view_id,
            "active_landmark_id": self.active_landmark_id,
            "drag_id": self.drag_id,
        }

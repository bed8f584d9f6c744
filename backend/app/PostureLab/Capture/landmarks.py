import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .exceptions import DuplicateLandmarkError, InvalidCoordinateError, UnknownLandmarkError

# ------------------------------------------------------------------------------
# Normalized image space
# ------------------------------------------------------------------------------
# Coordinates are percentages of the displayed image's bounding box, so they
# survive resizing, zoom and a different display device.
COORD_MIN = 0.0
COORD_MAX = 100.0

VIEW_FRONT = "front"
VIEW_BACK = "back"
VIEW_LEFT = "left"
VIEW_RIGHT = "right"
VIEW_FRAME = "frame"
POSTURE_VIEWS = (VIEW_FRONT, VIEW_BACK, VIEW_LEFT, VIEW_RIGHT)


def clamp_coordinate(value: Any) -> float:
    """
    Clamp a coordinate into [COORD_MIN, COORD_MAX].

    Infinite values clamp to the nearest bound. NaN and non-numeric values
    have no meaningful position and raise InvalidCoordinateError.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidCoordinateError(f"coordinate must be numeric, got {value!r}")
    value = float(value)
    if math.isnan(value):
        raise InvalidCoordinateError("coordinate must not be NaN")
    return max(COORD_MIN, min(COORD_MAX, value))


@dataclass(frozen=True)
class BlobRef:
    """Reference to a captured media item. Raw bytes are held elsewhere."""

    ref_id: str
    filename: str
    role: str
    content_type: str = "application/octet-stream"
    size: int = 0
    view_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ref_id": self.ref_id,
            "filename": self.filename,
            "role": self.role,
            "content_type": self.content_type,
            "size": self.size,
            "view_id": self.view_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlobRef":
        return cls(
            ref_id=str(data["ref_id"]),
            filename=str(data["filename"]),
            role=str(data["role"]),
            content_type=str(data.get("content_type") or "application/octet-stream"),
            size=int(data.get("size") or 0),
            view_id=data.get("view_id"),
        )


@dataclass(frozen=True)
class Landmark:
    """
    A named anatomical point in normalized image space.

    Placement is explicit: an unplaced landmark has no coordinates at all, so a
    landmark genuinely placed at the top-left corner (0, 0) stays placed.
    """

    id: str
    label: str
    x: Optional[float] = None
    y: Optional[float] = None

    @property
    def is_placed(self) -> bool:
        return self.x is not None and self.y is not None

    def place(self, x: Any, y: Any) -> "Landmark":
        return replace(self, x=clamp_coordinate(x), y=clamp_coordinate(y))

    def cleared(self) -> "Landmark":
        return replace(self, x=None, y=None)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "x": self.x, "y": self.y, "placed": self.is_placed}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Landmark":
        """
        Rebuild a landmark from its serialized form.

        Older snapshots carry no `placed` flag and mark unplaced landmarks with
        the (0, 0) sentinel; those are read as placed only when x > 0 and y > 0.
        """
        base = cls(id=str(data["id"]), label=str(data.get("label") or data["id"]))
        x, y = data.get("x"), data.get("y")
        if "placed" in data:
            placed = bool(data["placed"]) and x is not None and y is not None
        else:
            placed = isinstance(x, (int, float)) and isinstance(y, (int, float)) and x > 0 and y > 0
        return base.place(x, y) if placed else base


@dataclass(frozen=True)
class View:
    """
    One captured image or frame plus its landmark set.

    Views are immutable; every update returns a new View with a new landmarks
    tuple so readers never observe a half-applied change.
    """

    view_id: str
    view_type: str
    landmarks: Tuple[Landmark, ...] = ()
    media_ref: Optional[BlobRef] = None
    source_ref_id: Optional[str] = None
    timestamp: Optional[float] = None

    def __post_init__(self):
        seen = set()
        for landmark in self.landmarks:
            if landmark.id in seen:
                raise DuplicateLandmarkError(f"landmark {landmark.id!r} appears twice in view {self.view_id!r}")
            seen.add(landmark.id)

    def get(self, landmark_id: str) -> Optional[Landmark]:
        for landmark in self.landmarks:
            if landmark.id == landmark_id:
                return landmark
        return None

    def placed(self, landmark_id: str) -> Optional[Landmark]:
        """Return the landmark only if it is placed."""
        landmark = self.get(landmark_id)
        if landmark is not None and landmark.is_placed:
            return landmark
        return None

    def placed_ids(self) -> List[str]:
        return [l.id for l in self.landmarks if l.is_placed]

    def place(self, landmark_id: str, x: Any, y: Any) -> "View":
        return self._replace_landmark(landmark_id, lambda l: l.place(x, y))

    def clear(self, landmark_id: str) -> "View":
        return self._replace_landmark(landmark_id, lambda l: l.cleared())

    def with_media(self, media_ref: Optional[BlobRef]) -> "View":
        return replace(self, media_ref=media_ref)

    def _replace_landmark(self, landmark_id, update) -> "View":
        if self.get(landmark_id) is None:
            raise UnknownLandmarkError(f"landmark {landmark_id!r} is not part of view {self.view_id!r}")
        landmarks = tuple(update(l) if l.id == landmark_id else l for l in self.landmarks)
        return replace(self, landmarks=landmarks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "view_id": self.view_id,
            "view_type": self.view_type,
            "media_ref": self.media_ref.to_dict() if self.media_ref else None,
            "source_ref_id": self.source_ref_id,
            "timestamp": self.timestamp,
            "landmarks": [l.to_dict() for l in self.landmarks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "View":
        media = data.get("media_ref")
        return cls(
            view_id=str(data["view_id"]),
            view_type=str(data.get("view_type") or data["view_id"]),
            landmarks=tuple(Landmark.from_dict(l) for l in data.get("landmarks") or []),
            media_ref=BlobRef.from_dict(media) if media else None,
            source_ref_id=data.get("source_ref_id"),
            timestamp=data.get("timestamp"),
        )


@dataclass(frozen=True)
class LandmarkSpec:
    id: str
    label: str


@dataclass(frozen=True)
class LandmarkSetConfig:
    """
    Immutable reference data: the ordered landmark ids required per view type.
    """

    name: str
    views: Dict[str, Tuple[LandmarkSpec, ...]] = field(default_factory=dict)

    def required_ids(self, view_type: str) -> List[str]:
        return [spec.id for spec in self.views.get(view_type, ())]

    def blank_view(self, view_id: str, view_type: Optional[str] = None, **kwargs) -> View:
        view_type = view_type or view_id
        specs = self.views.get(view_type, ())
        return View(
            view_id=view_id,
            view_type=view_type,
            landmarks=tuple(Landmark(id=s.id, label=s.label) for s in specs),
            **kwargs,
        )


def is_complete(view: View, config: LandmarkSetConfig) -> bool:
    """True iff every landmark required for the view's type is placed."""
    required = config.required_ids(view.view_type)
    if not required:
        return False
    return all(view.placed(landmark_id) is not None for landmark_id in required)


def _specs(pairs: Iterable[Tuple[str, str]]) -> Tuple[LandmarkSpec, ...]:
    return tuple(LandmarkSpec(id=i, label=label) for i, label in pairs)


_SIDE_VIEW = _specs([
    ("ear", "Ear"),
    ("c7", "C7"),
    ("shoulder", "Shoulder"),
    ("hip", "Hip"),
    ("knee", "Knee"),
    ("ankle", "Ankle"),
])

POSTURE_LANDMARKS = LandmarkSetConfig(
    name="posture",
    views={
        VIEW_FRONT: _specs([
            ("head_center", "Head Center"),
            ("shoulder_left", "Shoulder L"),
            ("shoulder_right", "Shoulder R"),
            ("asis_left", "ASIS L"),
            ("asis_right", "ASIS R"),
            ("ankle_left", "Ankle L"),
            ("ankle_right", "Ankle R"),
        ]),
        VIEW_BACK: _specs([
            ("occiput", "Occiput"),
            ("shoulder_left", "Shoulder L"),
            ("shoulder_right", "Shoulder R"),
            ("psis_left", "PSIS L"),
            ("psis_right", "PSIS R"),
            ("ankle_left", "Ankle L"),
            ("ankle_right", "Ankle R"),
        ]),
        VIEW_LEFT: _SIDE_VIEW,
        VIEW_RIGHT: _SIDE_VIEW,
    },
)

MOVEMENT_LANDMARKS = LandmarkSetConfig(
    name="movement",
    views={
        VIEW_FRAME: _specs([
            ("lower_spine", "Lower Spine"),
            ("hip", "Hip"),
            ("knee", "Knee"),
            ("ankle", "Ankle"),
        ]),
    },
)

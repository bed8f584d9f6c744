"""
Capture session: the in-progress, locally persisted state of one assessment.

The session is a plain state machine. It never talks to storage itself; every
mutation calls the `on_change` hook, which the wizard wires to the debounced
draft autosave.
"""
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .exceptions import CaptureError, MediaError, UnknownViewError
from .landmarks import (
    MOVEMENT_LANDMARKS,
    POSTURE_LANDMARKS,
    POSTURE_VIEWS,
    VIEW_FRAME,
    BlobRef,
    LandmarkSetConfig,
    View,
    is_complete,
)
from .measurements import Measurement, MeasurementEngine

DRAFT_VERSION = 1


class WizardStep(IntEnum):
    SELECT_TARGET = 0
    CHOOSE_KIND = 1
    CAPTURE_AND_ANNOTATE = 2
    REVIEW_MEASUREMENTS = 3
    SUBMITTED = 4


class AssessmentKind(str, Enum):
    POSTURE = "posture"
    MOVEMENT = "movement"
    TREADMILL = "treadmill"


ROLE_PHOTO = "photo"
ROLE_GROUND_VIDEO = "ground_video"
ROLE_TREADMILL_VIDEO = "treadmill_video"
ROLE_FRAME = "frame"
VIDEO_ROLES = (ROLE_GROUND_VIDEO, ROLE_TREADMILL_VIDEO)

# The media role an operator captures for each kind, and how many of them are
# needed before the capture step can be left.
CAPTURE_ROLE = {
    AssessmentKind.POSTURE: ROLE_PHOTO,
    AssessmentKind.MOVEMENT: ROLE_GROUND_VIDEO,
    AssessmentKind.TREADMILL: ROLE_TREADMILL_VIDEO,
}
MIN_MEDIA_COUNT = {
    AssessmentKind.POSTURE: 1,
    AssessmentKind.MOVEMENT: 1,
    AssessmentKind.TREADMILL: 1,
}
LANDMARK_CONFIGS = {
    AssessmentKind.POSTURE: POSTURE_LANDMARKS,
    AssessmentKind.MOVEMENT: MOVEMENT_LANDMARKS,
    AssessmentKind.TREADMILL: MOVEMENT_LANDMARKS,
}

TREADMILL_FIELDS = ("speed", "incline", "footwear")
TREADMILL_NOTE_PREFIX = "treadmill."


def config_for(kind: "AssessmentKind") -> LandmarkSetConfig:
    return LANDMARK_CONFIGS[AssessmentKind(kind)]


def _unique_filename(filename: str, taken: Iterable[str]) -> str:
    taken = set(taken)
    if filename not in taken:
        return filename
    stem, dot, ext = filename.rpartition(".")
    if not dot:
        stem, ext = filename, ""
    n = 2
    while True:
        candidate = f"{stem}-{n}.{ext}" if ext else f"{stem}-{n}"
        if candidate not in taken:
            return candidate
        n += 1


class CaptureSession:
    def __init__(
        self,
        target_id: Optional[str] = None,
        kind: Optional[AssessmentKind] = None,
        step: WizardStep = WizardStep.SELECT_TARGET,
        views: Iterable[View] = (),
        pending_media: Iterable[BlobRef] = (),
        notes: Optional[Dict[str, str]] = None,
        on_change: Optional[Callable[["CaptureSession"], None]] = None,
    ):
        self.target_id = target_id
        self.kind = AssessmentKind(kind) if kind else None
        self.step = WizardStep(step)
        self.views: Tuple[View, ...] = tuple(views)
        self.pending_media: Tuple[BlobRef, ...] = tuple(pending_media)
        self.notes: Dict[str, str] = dict(notes or {})
        self.step_error: Optional[str] = None
        self.on_change = on_change

    # --------------------------------------------------------------------------
    # Change notification
    # --------------------------------------------------------------------------
    def _changed(self):
        if self.on_change is not None:
            self.on_change(self)

    # --------------------------------------------------------------------------
    # Target / kind
    # --------------------------------------------------------------------------
    def select_target(self, target_id: Optional[str]):
        target_id = (target_id or "").strip() or None
        if target_id is None and self.step > WizardStep.SELECT_TARGET:
            raise ValueError("target_id cannot be cleared after the target step")
        self.target_id = target_id
        self.step_error = None
        self._changed()

    def choose_kind(self, kind) -> bool:
        """
        Select the assessment kind and auto-advance to capture.

        Switching to a different kind discards views and media captured for the
        previous one, since their landmark sets do not carry over.
        """
        kind = AssessmentKind(kind)
        if not self.target_id:
            self.step_error = "Pick a target before choosing an assessment."
            return False
        if kind != self.kind:
            self.kind = kind
            self.pending_media = ()
            if kind == AssessmentKind.POSTURE:
                self.views = tuple(POSTURE_LANDMARKS.blank_view(v) for v in POSTURE_VIEWS)
            else:
                self.views = ()
        self.step = WizardStep.CAPTURE_AND_ANNOTATE
        self.step_error = None
        self._changed()
        return True

    @property
    def landmark_config(self) -> Optional[LandmarkSetConfig]:
        return config_for(self.kind) if self.kind else None

    @property
    def capture_role(self) -> Optional[str]:
        return CAPTURE_ROLE[self.kind] if self.kind else None

    # --------------------------------------------------------------------------
    # Media
    # --------------------------------------------------------------------------
    def find_media(self, ref_id: str) -> Optional[BlobRef]:
        for ref in self.pending_media:
            if ref.ref_id == ref_id:
                return ref
        return None

    def media_count(self, role: Optional[str] = None) -> int:
        role = role or self.capture_role
        return sum(1 for ref in self.pending_media if ref.role == role)

    def add_media(self, ref: BlobRef) -> Tuple[BlobRef, List[str]]:
        """
        Add a captured photo or video.

        Returns the stored reference (its filename may be made unique within the
        role) and the ids of references it replaced.
        """
        if self.kind is None:
            raise MediaError("Choose an assessment kind before adding media.")
        if ref.role != self.capture_role:
            raise MediaError(f"{self.kind.value} assessments take {self.capture_role} media, not {ref.role}")
        if self.find_media(ref.ref_id) is not None:
            raise MediaError(f"media {ref.ref_id!r} was already added")

        replaced: List[str] = []
        if ref.role == ROLE_PHOTO:
            view = self._view_or_none(ref.view_id)
            if view is None:
                raise MediaError(f"photos must target one of: {', '.join(POSTURE_VIEWS)}")
            if view.media_ref is not None:
                replaced.append(view.media_ref.ref_id)

        kept = tuple(r for r in self.pending_media if r.ref_id not in replaced)
        filename = _unique_filename(ref.filename, (r.filename for r in kept if r.role == ref.role))
        stored = BlobRef(
            ref_id=ref.ref_id,
            filename=filename,
            role=ref.role,
            content_type=ref.content_type,
            size=ref.size,
            # Photos bind to a posture view; videos keep the camera angle label.
            view_id=ref.view_id,
        )
        self.pending_media = kept + (stored,)
        if stored.role == ROLE_PHOTO:
            self._put_view(self._view(stored.view_id).with_media(stored))
        self._changed()
        return stored, replaced

    def capture_frame(self, video_ref_id: str, frame_ref: BlobRef, timestamp: Optional[float] = None) -> View:
        """Grab a still from a captured video and open it for annotation."""
        video = self.find_media(video_ref_id)
        if video is None or video.role not in VIDEO_ROLES:
            raise MediaError(f"no captured video {video_ref_id!r} to take a frame from")

        view_id = f"frame_{self._next_frame_number()}"
        filename = _unique_filename(
            frame_ref.filename,
            (r.filename for r in self.pending_media if r.role == ROLE_FRAME),
        )
        stored = BlobRef(
            ref_id=frame_ref.ref_id,
            filename=filename,
            role=ROLE_FRAME,
            content_type=frame_ref.content_type,
            size=frame_ref.size,
            view_id=view_id,
        )
        view = self.landmark_config.blank_view(
            view_id,
            VIEW_FRAME,
            media_ref=stored,
            source_ref_id=video_ref_id,
            timestamp=float(timestamp) if timestamp is not None else None,
        )
        self.pending_media = self.pending_media + (stored,)
        self.views = self.views + (view,)
        self._changed()
        return view

    def remove_media(self, ref_id: str) -> List[str]:
        """
        Remove a media item and everything derived from it.

        Returns the ids of every reference that was dropped (a video takes its
        captured frames with it).
        """
        ref = self.find_media(ref_id)
        if ref is None:
            raise MediaError(f"media {ref_id!r} is not part of this session")

        dropped = {ref_id}
        views = list(self.views)
        if ref.role == ROLE_PHOTO:
            views = [v.with_media(None) if v.media_ref and v.media_ref.ref_id == ref_id else v for v in views]
        elif ref.role == ROLE_FRAME:
            views = [v for v in views if not (v.media_ref and v.media_ref.ref_id == ref_id)]
        else:
            for v in views:
                if v.source_ref_id == ref_id and v.media_ref:
                    dropped.add(v.media_ref.ref_id)
            views = [v for v in views if v.source_ref_id != ref_id]

        self.views = tuple(views)
        self.pending_media = tuple(r for r in self.pending_media if r.ref_id not in dropped)
        if WizardStep.CAPTURE_AND_ANNOTATE < self.step < WizardStep.SUBMITTED:
            # Dropping below the capture minimum reopens the capture step.
            reason = self._gate(WizardStep.CAPTURE_AND_ANNOTATE)
            if reason:
                self.step = WizardStep.CAPTURE_AND_ANNOTATE
                self.step_error = reason
        self._changed()
        return sorted(dropped)

    def _next_frame_number(self) -> int:
        numbers = [0]
        for view in self.views:
            if view.view_type == VIEW_FRAME and view.view_id.startswith("frame_"):
                try:
                    numbers.append(int(view.view_id[len("frame_"):]))
                except ValueError:
                    continue
        return max(numbers) + 1

    # --------------------------------------------------------------------------
    # Landmarks
    # --------------------------------------------------------------------------
    def _view_or_none(self, view_id: Optional[str]) -> Optional[View]:
        for view in self.views:
            if view.view_id == view_id:
                return view
        return None

    def _view(self, view_id: str) -> View:
        view = self._view_or_none(view_id)
        if view is None:
            raise UnknownViewError(f"view {view_id!r} is not part of this session")
        return view

    def get_view(self, view_id: str) -> View:
        return self._view(view_id)

    def _put_view(self, updated: View):
        self.views = tuple(updated if v.view_id == updated.view_id else v for v in self.views)

    def update_landmark(self, view_id: str, landmark_id: str, x: Any, y: Any) -> View:
        updated = self._view(view_id).place(landmark_id, x, y)
        self._put_view(updated)
        self._changed()
        return updated

    def clear_landmark(self, view_id: str, landmark_id: str) -> View:
        updated = self._view(view_id).clear(landmark_id)
        self._put_view(updated)
        self._changed()
        return updated

    def view_completion(self) -> Dict[str, bool]:
        config = self.landmark_config
        if config is None:
            return {}
        return {v.view_id: is_complete(v, config) for v in self.views}

    def measurements(self, engine: Optional[MeasurementEngine] = None) -> Dict[str, List[Measurement]]:
        return (engine or MeasurementEngine()).measure_views(self.views)

    # --------------------------------------------------------------------------
    # Notes
    # --------------------------------------------------------------------------
    def set_note(self, key: str, value: Optional[str]):
        key = (key or "").strip()
        if not key:
            raise ValueError("note key must be a non-empty string")
        if value is None or value == "":
            self.notes.pop(key, None)
        else:
            self.notes[key] = str(value)
        self._changed()

    def treadmill_info(self) -> Dict[str, str]:
        return {f: self.notes.get(TREADMILL_NOTE_PREFIX + f, "") for f in TREADMILL_FIELDS}

    # --------------------------------------------------------------------------
    # Step gating
    # --------------------------------------------------------------------------
    def blocking_reason(self, step: Optional[WizardStep] = None) -> Optional[str]:
        """
        Why the given step cannot be left forward, or None.

        The gates of every earlier step are checked again, so a session that
        lost its target or media after moving on is still blocked. Annotation
        completeness never blocks; it is only surfaced through view_completion().
        """
        step = self.step if step is None else WizardStep(step)
        if step == WizardStep.SUBMITTED:
            return "Assessment already submitted."
        for gate in WizardStep:
            if gate > step:
                break
            reason = self._gate(gate)
            if reason:
                return reason
        return None

    def _gate(self, step: WizardStep) -> Optional[str]:
        if step == WizardStep.SELECT_TARGET and not self.target_id:
            return "Pick a target to continue."
        if step == WizardStep.CHOOSE_KIND and self.kind is None:
            return "Choose an assessment kind to continue."
        if step == WizardStep.CAPTURE_AND_ANNOTATE:
            if self.kind is None:
                return "Choose an assessment kind to continue."
            needed = MIN_MEDIA_COUNT[self.kind]
            if self.media_count() < needed:
                noun = "photo" if self.capture_role == ROLE_PHOTO else "video"
                return f"Add at least {needed} {noun} to continue."
        return None

    @property
    def is_next_disabled(self) -> bool:
        return self.blocking_reason() is not None

    def next(self) -> bool:
        reason = self.blocking_reason()
        if reason is None and self.step == WizardStep.REVIEW_MEASUREMENTS:
            reason = "Submit the assessment to finish."
        if reason:
            self.step_error = reason
            return False
        self.step = WizardStep(self.step + 1)
        self.step_error = None
        self._changed()
        return True

    def back(self, to_step: Optional[int] = None) -> bool:
        if self.step == WizardStep.SUBMITTED:
            return False
        target = self.step - 1 if to_step is None else int(to_step)
        if target < WizardStep.SELECT_TARGET or target >= self.step:
            return False
        self.step = WizardStep(target)
        self.step_error = None
        self._changed()
        return True

    def mark_submitted(self):
        self.step = WizardStep.SUBMITTED
        self.step_error = None

    # --------------------------------------------------------------------------
    # Draft snapshots
    # --------------------------------------------------------------------------
    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "draft_version": DRAFT_VERSION,
            "target_id": self.target_id,
            "kind": self.kind.value if self.kind else None,
            "step": int(self.step),
            "views": [v.to_dict() for v in self.views],
            "pending_media": [r.to_dict() for r in self.pending_media],
            "notes": dict(self.notes),
        }

    @classmethod
    def from_snapshot(cls, data: Any, on_change=None) -> "CaptureSession":
        """
        Rebuild a session from a draft snapshot.

        Raises ValueError for anything that does not look like a snapshot this
        code wrote; callers treat that as a corrupt draft.
        """
        if not isinstance(data, dict):
            raise ValueError("draft snapshot must be an object")
        try:
            notes = data.get("notes") or {}
            if not isinstance(notes, dict):
                raise ValueError("notes must be an object")
            return cls(
                target_id=data.get("target_id"),
                kind=data.get("kind"),
                step=int(data.get("step", WizardStep.SELECT_TARGET)),
                views=[View.from_dict(v) for v in data.get("views") or []],
                pending_media=[BlobRef.from_dict(r) for r in data.get("pending_media") or []],
                notes={str(k): str(v) for k, v in notes.items()},
                on_change=on_change,
            )
        except (KeyError, TypeError, AttributeError, CaptureError) as exc:
            raise ValueError(f"malformed draft snapshot: {exc}") from exc

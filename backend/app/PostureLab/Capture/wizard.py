"""
CaptureWizard: one operator's live capture session.

The wizard owns the session, the transient media bytes, the annotation
surfaces for each view and the debounced draft autosave. Everything that
mutates the session goes through the wizard lock, so the HTTP layer can call
it from several worker threads.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .annotation import AnnotationSurface
from .autosave import DEFAULT_AUTOSAVE_DELAY_S, DraftAutosaver
from .exceptions import (
    MediaError,
    MissingMediaError,
    SessionSubmittedError,
    SubmissionError,
    SubmissionNotReadyError,
    UploadBatchError,
)
from .landmarks import BlobRef, View
from .measurements import Measurement, MeasurementEngine, summarize
from .session import CaptureSession, WizardStep

logger = logging.getLogger(__name__)

SUBMIT_FAILED_MESSAGE = "Upload failed. Your draft is saved; check the connection and submit again."
SUBMIT_CANCELLED_MESSAGE = "Submission was cancelled. Your draft is saved."


@dataclass
class SubmitOutcome:
    ok: bool
    record_id: Optional[str] = None
    message: Optional[str] = None
    error: Optional[Exception] = None
    record: Optional[Dict[str, Any]] = field(default=None, repr=False)


class CaptureWizard:
    def __init__(
        self,
        store,
        draft_key: str,
        engine: Optional[MeasurementEngine] = None,
        autosave_delay: float = DEFAULT_AUTOSAVE_DELAY_S,
        timer_factory=threading.Timer,
    ):
        self.store = store
        self.draft_key = draft_key
        self.engine = engine or MeasurementEngine()
        self.restored = False
        self.record_id: Optional[str] = None
        self.record: Optional[Dict[str, Any]] = None
        self.last_error: Optional[str] = None
        self._lock = threading.RLock()
        self._autosaver = DraftAutosaver(store, draft_key, delay=autosave_delay, timer_factory=timer_factory)
        self._media_bytes: Dict[str, bytes] = {}
        self._surfaces: Dict[str, AnnotationSurface] = {}
        self._cancel_event: Optional[threading.Event] = None
        self.session = CaptureSession(on_change=self._on_change)

    # --------------------------------------------------------------------------
    # Mount / close
    # --------------------------------------------------------------------------
    @classmethod
    def mount(cls, store, draft_key: str, target_id: Optional[str] = None, **kwargs) -> "CaptureWizard":
        """
        Open the wizard for a draft key.

        An existing draft is rehydrated unless an explicit target_id names a
        different target, in which case a fresh session starts for that target.
        A draft that cannot be parsed is discarded and logged.
        """
        wizard = cls(store, draft_key, **kwargs)
        restored = wizard._load_draft()
        if restored is not None and (target_id is None or restored.target_id == target_id):
            wizard.session = restored
            wizard.restored = True
            logger.info("capture draft %s restored at step %s", draft_key, restored.step.name)
        elif target_id:
            wizard.session.select_target(target_id)
        return wizard

    def _load_draft(self) -> Optional[CaptureSession]:
        try:
            snapshot = self.store.get(self.draft_key)
        except Exception as exc:
            logger.warning("capture draft %s could not be read: %s", self.draft_key, exc)
            return None
        if snapshot is None:
            return None
        try:
            session = CaptureSession.from_snapshot(snapshot, on_change=self._on_change)
        except ValueError as exc:
            logger.warning("discarding malformed capture draft %s: %s", self.draft_key, exc)
            self._clear_draft()
            return None
        if session.step == WizardStep.SUBMITTED:
            self._clear_draft()
            return None
        return session

    def close(self):
        """Navigation away: stop pending autosave and cancel an in-flight submission."""
        event = self._cancel_event
        if event is not None:
            event.set()
        self._autosaver.cancel()
        with self._lock:
            for surface in self._surfaces.values():
                surface.cancel()

    def discard(self):
        """Close the wizard and drop its draft."""
        self.close()
        self._clear_draft()

    # --------------------------------------------------------------------------
    # Autosave
    # --------------------------------------------------------------------------
    def _on_change(self, session: CaptureSession):
        self._autosaver.schedule(session.to_snapshot())

    def flush_draft(self):
        self._autosaver.flush()

    @property
    def last_saved_at(self) -> Optional[float]:
        return self._autosaver.last_saved_at

    @property
    def autosave_pending(self) -> bool:
        return self._autosaver.pending

    def _clear_draft(self):
        try:
            self._autosaver.discard()
        except Exception as exc:
            logger.warning("capture draft %s could not be cleared: %s", self.draft_key, exc)

    # --------------------------------------------------------------------------
    # Session operations
    # --------------------------------------------------------------------------
    def _ensure_editable(self):
        if self.session.step == WizardStep.SUBMITTED:
            raise SessionSubmittedError("Assessment already submitted.")

    def select_target(self, target_id: Optional[str]):
        with self._lock:
            self._ensure_editable()
            self.session.select_target(target_id)

    def choose_kind(self, kind) -> bool:
        with self._lock:
            self._ensure_editable()
            previous = self.session.kind
            ok = self.session.choose_kind(kind)
            if ok and previous != self.session.kind:
                self._media_bytes.clear()
                self._prune_surfaces()
            return ok

    def attach_media(self, ref: BlobRef, data: bytes) -> Tuple[BlobRef, List[str]]:
        with self._lock:
            self._ensure_editable()
            stored, replaced = self.session.add_media(ref)
            for ref_id in replaced:
                self._media_bytes.pop(ref_id, None)
            self._media_bytes[stored.ref_id] = data
            return stored, replaced

    def attach_bytes(self, ref_id: str, data: bytes) -> BlobRef:
        """Re-attach bytes for a reference restored from a draft."""
        with self._lock:
            ref = self.session.find_media(ref_id)
            if ref is None:
                raise MediaError(f"media {ref_id!r} is not part of this session")
            self._media_bytes[ref_id] = data
            return ref

    def capture_frame(self, video_ref_id: str, frame_ref: BlobRef, data: bytes, timestamp: Optional[float] = None) -> View:
        with self._lock:
            self._ensure_editable()
            view = self.session.capture_frame(video_ref_id, frame_ref, timestamp)
            self._media_bytes[view.media_ref.ref_id] = data
            return view

    def remove_media(self, ref_id: str) -> List[str]:
        with self._lock:
            self._ensure_editable()
            dropped = self.session.remove_media(ref_id)
            for dropped_id in dropped:
                self._media_bytes.pop(dropped_id, None)
            self._prune_surfaces()
            return dropped

    def missing_media(self) -> List[str]:
        with self._lock:
            return [ref.ref_id for ref in self.session.pending_media if ref.ref_id not in self._media_bytes]

    def update_landmark(self, view_id: str, landmark_id: str, x: Any, y: Any) -> View:
        with self._lock:
            self._ensure_editable()
            return self.session.update_landmark(view_id, landmark_id, x, y)

    def clear_landmark(self, view_id: str, landmark_id: str) -> View:
        with self._lock:
            self._ensure_editable()
            return self.session.clear_landmark(view_id, landmark_id)

    def set_note(self, key: str, value: Optional[str]):
        with self._lock:
            self._ensure_editable()
            self.session.set_note(key, value)

    def next(self) -> bool:
        with self._lock:
            return self.session.next()

    def back(self, to_step: Optional[int] = None) -> bool:
        with self._lock:
            ok = self.session.back(to_step)
            if ok:
                for surface in self._surfaces.values():
                    surface.cancel()
            return ok

    # --------------------------------------------------------------------------
    # Annotation surfaces
    # --------------------------------------------------------------------------
    def surface(self, view_id: str) -> AnnotationSurface:
        with self._lock:
            self.session.get_view(view_id)
            surface = self._surfaces.get(view_id)
            if surface is None:
                surface = AnnotationSurface(
                    view_id,
                    get_view=lambda: self.session.get_view(view_id),
                    propose=lambda landmark_id, x, y: self.session.update_landmark(view_id, landmark_id, x, y),
                )
                self._surfaces[view_id] = surface
            return surface

    def pointer(self, view_id: str, event: Mapping[str, Any]) -> Tuple[bool, View, Dict[str, Any]]:
        """Apply one pointer event to a view's surface; returns (applied, view, surface state)."""
        with self._lock:
            self._ensure_editable()
            surface = self.surface(view_id)
            applied = surface.dispatch(dict(event))
            return applied, self.session.get_view(view_id), surface.state()

    def _prune_surfaces(self):
        live = {v.view_id for v in self.session.views}
        for view_id in list(self._surfaces):
            if view_id not in live:
                self._surfaces.pop(view_id).cancel()

    # --------------------------------------------------------------------------
    # Read models
    # --------------------------------------------------------------------------
    def measurements(self) -> Dict[str, List[Measurement]]:
        with self._lock:
            return self.session.measurements(self.engine)

    def measurement_summary(self) -> Dict[str, Any]:
        return summarize(self.measurements())

    def state(self) -> Dict[str, Any]:
        with self._lock:
            session = self.session
            return {
                "draft": session.to_snapshot(),
                "step": session.step.name,
                "is_next_disabled": session.is_next_disabled,
                "blocking_reason": session.blocking_reason(),
                "step_error": session.step_error,
                "view_completion": session.view_completion(),
                "missing_media": [r.ref_id for r in session.pending_media if r.ref_id not in self._media_bytes],
                "treadmill_info": session.treadmill_info(),
                "restored": self.restored,
                "record_id": self.record_id,
                "last_error": self.last_error,
                "last_saved_at": self._autosaver.last_saved_at,
            }

    # --------------------------------------------------------------------------
    # Submission
    # --------------------------------------------------------------------------
    def submit(self, orchestrator, identity: Mapping[str, Any]) -> SubmitOutcome:
        """
        Submit the session through the upload orchestrator.

        On success the pending autosave is cancelled, the draft is cleared and
        the session moves to SUBMITTED. On failure the session and draft are
        left untouched and one user-facing message is returned. Submitting again
        after a success returns the same record id.
        """
        with self._lock:
            if self.record_id is not None:
                return SubmitOutcome(ok=True, record_id=self.record_id, record=self.record)

            if self.session.step != WizardStep.REVIEW_MEASUREMENTS:
                error = SubmissionNotReadyError("Review the measurements before submitting.")
                return self._failed(error, str(error))
            reason = self.session.blocking_reason()
            if reason:
                error = SubmissionNotReadyError(reason)
                return self._failed(error, reason)
            missing = [r.ref_id for r in self.session.pending_media if r.ref_id not in self._media_bytes]
            if missing:
                error = MissingMediaError(missing)
                return self._failed(error, "Re-attach the captured media before submitting.")

            self._cancel_event = threading.Event()
            try:
                record = orchestrator.submit(
                    self.session,
                    dict(self._media_bytes),
                    identity,
                    cancel_event=self._cancel_event,
                )
            except SubmissionError as exc:
                if isinstance(exc, UploadBatchError):
                    logger.warning("submission failed for %s: %s", self.draft_key, exc.failures)
                message = SUBMIT_CANCELLED_MESSAGE if self._cancel_event.is_set() else SUBMIT_FAILED_MESSAGE
                return self._failed(exc, message)
            finally:
                self._cancel_event = None

            self._clear_draft()
            self.session.mark_submitted()
            self.record_id = record["id"]
            self.record = record
            self.last_error = None
            self._media_bytes.clear()
            return SubmitOutcome(ok=True, record_id=self.record_id, record=record)

    def _failed(self, error: Exception, message: str) -> SubmitOutcome:
        self.last_error = message
        return SubmitOutcome(ok=False, message=message, error=error)

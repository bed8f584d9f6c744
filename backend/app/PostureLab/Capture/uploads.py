import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from .exceptions import MissingMediaError, RecordWriteError, SubmissionCancelledError, UploadBatchError
from .landmarks import BlobRef
from .measurements import MeasurementEngine, summarize
from .session import ROLE_FRAME, ROLE_GROUND_VIDEO, ROLE_PHOTO, ROLE_TREADMILL_VIDEO, CaptureSession

logger = logging.getLogger(__name__)

ROLE_SUBFOLDERS = {
    ROLE_PHOTO: "photos",
    ROLE_GROUND_VIDEO: "ground",
    ROLE_TREADMILL_VIDEO: "treadmill",
    ROLE_FRAME: "frames",
}

DEFAULT_UPLOAD_WORKERS = 4
ASSESSMENT_SUBMITTED_TOPIC = "assessment.submitted"


def new_assessment_id() -> str:
    return f"assessment-{uuid.uuid4().hex[:8]}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def upload_path(target_id: str, assessment_id: str, ref: BlobRef) -> str:
    """Storage key for one blob: {target}/{assessment}/{subfolder}/{filename}."""
    return f"{target_id}/{assessment_id}/{ROLE_SUBFOLDERS[ref.role]}/{ref.filename}"


class UploadOrchestrator:
    """
    Uploads every captured blob of a finished session, then writes exactly one
    assessment record that references them.

    Uploads run concurrently and are all joined before anything else happens.
    If any single upload fails, the whole submission fails and no record is
    written. Blobs that did land stay in storage unreferenced; nothing is
    retried automatically.
    """

    def __init__(
        self,
        storage,
        record_store,
        engine: Optional[MeasurementEngine] = None,
        max_workers: int = DEFAULT_UPLOAD_WORKERS,
        id_factory: Callable[[], str] = new_assessment_id,
        clock: Callable[[], str] = _now_iso,
        publish: Optional[Callable[[str, dict], Any]] = None,
    ):
        self.storage = storage
        self.record_store = record_store
        self.engine = engine or MeasurementEngine()
        self.max_workers = max(1, int(max_workers))
        self.id_factory = id_factory
        self.clock = clock
        self.publish = publish

    def submit(
        self,
        session: CaptureSession,
        blobs: Mapping[str, bytes],
        identity: Mapping[str, Any],
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """
        Run one submission attempt and return the written record.

        Raises:
          MissingMediaError: a media reference has no bytes to upload
          UploadBatchError: one or more uploads failed (no record written)
          SubmissionCancelledError: cancelled before the record was written
          RecordWriteError: the record store rejected the record
        """
        missing = [ref.ref_id for ref in session.pending_media if ref.ref_id not in blobs]
        if missing:
            raise MissingMediaError(missing)
        if cancel_event is not None and cancel_event.is_set():
            raise SubmissionCancelledError("submission cancelled before upload")

        assessment_id = self.id_factory()
        uploaded = self._upload_all(session, assessment_id, blobs)

        if cancel_event is not None and cancel_event.is_set():
            raise SubmissionCancelledError("submission cancelled before the record was written")

        record = self.build_record(session, assessment_id, uploaded, identity)
        try:
            self.record_store.create_record(record)
        except Exception as exc:
            raise RecordWriteError(f"could not write assessment {assessment_id}: {exc}") from exc

        logger.info("assessment %s written for target %s (%d blobs)", assessment_id, session.target_id, len(uploaded))
        self._update_profile(record)
        self._publish(record)
        return record

    # --------------------------------------------------------------------------
    # Fan-out / fan-in
    # --------------------------------------------------------------------------
    def _upload_all(self, session: CaptureSession, assessment_id: str, blobs: Mapping[str, bytes]) -> Dict[str, dict]:
        refs = list(session.pending_media)
        if not refs:
            return {}

        failures: Dict[str, str] = {}
        uploaded: Dict[str, dict] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(refs))) as pool:
            futures = {}
            for ref in refs:
                path = upload_path(session.target_id, assessment_id, ref)
                futures[ref.ref_id] = (path, pool.submit(self.storage.upload, path, blobs[ref.ref_id], ref.content_type))

            # Join every upload, even after a failure, so the outcome is known
            # for the whole batch.
            for ref_id, (path, future) in futures.items():
                try:
                    result = future.result()
                except Exception as exc:
                    failures[path] = str(exc)
                    continue
                uploaded[ref_id] = {"url": (result or {}).get("url"), "path": (result or {}).get("path", path)}

        if failures:
            logger.warning("upload batch for %s failed: %d of %d blobs", assessment_id, len(failures), len(refs))
            raise UploadBatchError(failures)
        return uploaded

    # --------------------------------------------------------------------------
    # Record
    # --------------------------------------------------------------------------
    def build_record(
        self,
        session: CaptureSession,
        assessment_id: str,
        uploaded: Mapping[str, dict],
        identity: Mapping[str, Any],
    ) -> Dict[str, Any]:
        photos: List[dict] = []
        videos: List[dict] = []
        frames: List[dict] = []
        for ref in session.pending_media:
            location = uploaded[ref.ref_id]
            if ref.role == ROLE_PHOTO:
                photos.append({"view": ref.view_id, **location})
            elif ref.role == ROLE_FRAME:
                view = session.get_view(ref.view_id)
                frames.append({
                    "view": ref.view_id,
                    "source_ref_id": view.source_ref_id,
                    "timestamp": view.timestamp,
                    **location,
                })
            else:
                videos.append({"angle": ref.view_id or ROLE_SUBFOLDERS[ref.role], **location})

        measurements = self.engine.measure_views(session.views)
        now = self.clock()
        kind = session.kind.value
        return {
            "id": assessment_id,
            "target_id": session.target_id,
            "org_id": identity.get("org_id"),
            "created_by": identity.get("user_id"),
            "type": kind,
            "status": "submitted",
            "title": f"{kind.capitalize()} assessment",
            "notes": dict(session.notes),
            "media": {"photos": photos, "videos": videos, "frames": frames},
            "annotations": {
                "landmarks": {v.view_id: [l.to_dict() for l in v.landmarks] for v in session.views},
                "measurements": {vid: [m.to_dict() for m in ms] for vid, ms in measurements.items()},
            },
            "metrics_summary": summarize(measurements),
            "created_at": now,
            "updated_at": now,
        }

    def _update_profile(self, record: Dict[str, Any]):
        summary = record["metrics_summary"]
        patch = {
            "summary": {
                "last_assessment_at": record["created_at"],
                "last_assessment_type": record["type"],
                "latest_scores": {
                    "posture_score": summary["posture_score"],
                    "risk_score": summary["risk_score"],
                },
            }
        }
        try:
            self.record_store.update_record(record["target_id"], patch)
        except Exception as exc:
            # The assessment itself is already durable.
            logger.warning("profile summary update failed for %s: %s", record["target_id"], exc)

    def _publish(self, record: Dict[str, Any]):
        if self.publish is None:
            return
        payload = {
            "assessment_id": record["id"],
            "target_id": record["target_id"],
            "org_id": record["org_id"],
            "type": record["type"],
            "metrics_summary": record["metrics_summary"],
            "created_at": record["created_at"],
        }
        try:
            self.publish(ASSESSMENT_SUBMITTED_TOPIC, payload)
        except Exception as exc:
            logger.warning("assessment event publish failed for %s: %s", record["id"], exc)

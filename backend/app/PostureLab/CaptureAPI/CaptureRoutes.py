import threading
import uuid
from typing import Any, Dict, Optional

from flasgger import swag_from
from flask import Blueprint, current_app, g, jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity, jwt_required
from werkzeug.utils import secure_filename

from backend.app.config.settings import settings
from backend.app.Decorators.requestSizeValidator import validate_request_size
from backend.app.event_publisher import publish_event
from backend.app.PostureLab.Capture.exceptions import (
    CaptureError,
    DraftStoreError,
    InvalidCoordinateError,
    MediaError,
    MissingMediaError,
    SessionSubmittedError,
    SubmissionNotReadyError,
    UnknownLandmarkError,
    UnknownViewError,
    UploadBatchError,
)
from backend.app.PostureLab.Capture.landmarks import BlobRef
from backend.app.PostureLab.Capture.measurements import MeasurementEngine, MeasurementThresholds
from backend.app.PostureLab.Capture.session import ROLE_FRAME, ROLE_PHOTO, VIDEO_ROLES
from backend.app.PostureLab.Capture.uploads import UploadOrchestrator
from backend.app.PostureLab.Capture.wizard import CaptureWizard
from backend.app.services.blob_storage import S3BlobStorage
from backend.app.services.draft_store import RedisDraftStore
from backend.app.services.idempotency_service import compute_request_hash, read_idempotency, write_idempotency
from backend.app.services.record_store import SqlRecordStore
from backend.app.services.redisKeyGenerate import generate_draft_key
from backend.app.services.redis_client import get_redis_client
from backend.app.services.target_directory import SqlTargetDirectory

# ------------------------------------------------------------------------------
# Blueprint
# ------------------------------------------------------------------------------
capture_bp = Blueprint('capture_bp', __name__, url_prefix="/capture")

SWAGGER_TAG = "PostureLab / Capture"

# Live wizards keyed by draft key (process-local). A miss rehydrates from the
# draft store, which is how a restarted worker picks a session back up.
_WIZARDS: Dict[str, CaptureWizard] = {}
_WIZARDS_LOCK = threading.Lock()

MEDIA_TYPE_FAMILIES = {
    ROLE_PHOTO: "image/",
    ROLE_FRAME: "image/",
}
for _role in VIDEO_ROLES:
    MEDIA_TYPE_FAMILIES[_role] = "video/"


# ------------------------------------------------------------------------------
# Common response helpers
# ------------------------------------------------------------------------------
def _request_id() -> str:
    return getattr(g, "request_id", None) or request.headers.get("X-Request-ID") or str(uuid.uuid4())


def _make_error_response(code: str, message: str, status: int, request_id: str, details: Optional[dict] = None):
    """
    Standard error payload used across endpoints for consistent client handling.

    Args:
      code: stable machine-readable error code
      message: human-readable summary
      status: HTTP status code
      request_id: correlation id returned to clients
      details: optional structured details about the error
    """
    payload = {
        "error": {
            "code": code,
            "message": message
        },
        "request_id": request_id
    }
    if details:
        payload["error"]["details"] = details
    return jsonify(payload), status


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("JSON body must be an object")
    return data


@capture_bp.errorhandler(CaptureError)
def _handle_capture_error(exc: CaptureError):
    """Map the capture exception hierarchy onto the error envelope."""
    request_id = _request_id()
    details = None
    if isinstance(exc, InvalidCoordinateError):
        code, status = "INVALID_ARGUMENT", 400
    elif isinstance(exc, (UnknownLandmarkError, UnknownViewError)):
        code, status = "NOT_FOUND", 404
    elif isinstance(exc, MissingMediaError):
        code, status, details = "MEDIA_MISSING", 409, {"ref_ids": exc.ref_ids}
    elif isinstance(exc, MediaError):
        code, status = "INVALID_MEDIA", 400
    elif isinstance(exc, SessionSubmittedError):
        code, status = "SESSION_SUBMITTED", 409
    elif isinstance(exc, DraftStoreError):
        code, status = "DRAFT_STORE_UNAVAILABLE", 503
    else:
        code, status = "CAPTURE_ERROR", 400
    current_app.logger.warning({
        "component": "Capture",
        "request_id": request_id,
        "event": "capture_error",
        "error_code": code,
        "error": str(exc),
    })
    return _make_error_response(code, str(exc), status, request_id, details)


@capture_bp.errorhandler(ValueError)
def _handle_value_error(exc: ValueError):
    return _make_error_response("INVALID_ARGUMENT", str(exc), 400, _request_id())


# ------------------------------------------------------------------------------
# Dependencies (app.config overrides first, then real adapters)
# ------------------------------------------------------------------------------
def _draft_store():
    store = current_app.config.get("DRAFT_STORE")
    if store is None:
        store = RedisDraftStore(get_redis_client(), ttl=current_app.config.get("CAPTURE_DRAFT_TTL_S", settings.CAPTURE_DRAFT_TTL_S))
        current_app.config["DRAFT_STORE"] = store
    return store


def _blob_storage():
    return current_app.config.get("BLOB_STORAGE") or S3BlobStorage(
        bucket=current_app.config.get("S3_BUCKET_NAME"),
        url_expiration=current_app.config.get("S3_URL_EXPIRATION_S", 3600),
    )


def _record_store():
    return current_app.config.get("RECORD_STORE") or SqlRecordStore()


def _target_directory():
    return current_app.config.get("TARGET_DIRECTORY") or SqlTargetDirectory()


def _measurement_engine() -> MeasurementEngine:
    cfg = current_app.config
    return MeasurementEngine(MeasurementThresholds(
        tilt_scale=cfg.get("MEASUREMENT_TILT_SCALE", 0.5),
        tilt_optimal_max_deg=cfg.get("MEASUREMENT_TILT_OPTIMAL_MAX_DEG", 2.0),
        forward_shift_optimal_max=cfg.get("MEASUREMENT_FORWARD_SHIFT_OPTIMAL_MAX", 5.0),
        knee_flexion_optimal_max_deg=cfg.get("MEASUREMENT_KNEE_FLEXION_OPTIMAL_MAX_DEG", 45.0),
        hip_flexion_optimal_max_deg=cfg.get("MEASUREMENT_HIP_FLEXION_OPTIMAL_MAX_DEG", 45.0),
    ))


def _identity() -> Dict[str, Any]:
    claims = get_jwt() or {}
    org_claim = current_app.config.get("JWT_ORG_CLAIM", "org_id")
    return {"user_id": str(get_jwt_identity()), "org_id": claims.get(org_claim)}


def _draft_key(identity: Dict[str, Any]) -> str:
    return generate_draft_key(identity.get("org_id"), identity["user_id"])


# ------------------------------------------------------------------------------
# Wizard registry
# ------------------------------------------------------------------------------
def _mount_wizard(draft_key: str, target_id: Optional[str] = None) -> CaptureWizard:
    return CaptureWizard.mount(
        _draft_store(),
        draft_key,
        target_id=target_id,
        engine=_measurement_engine(),
        autosave_delay=current_app.config.get("CAPTURE_AUTOSAVE_DELAY_S", settings.CAPTURE_AUTOSAVE_DELAY_S),
        timer_factory=current_app.config.get("CAPTURE_TIMER_FACTORY", threading.Timer),
    )


def _get_wizard() -> CaptureWizard:
    draft_key = _draft_key(_identity())
    with _WIZARDS_LOCK:
        wizard = _WIZARDS.get(draft_key)
        if wizard is None:
            wizard = _mount_wizard(draft_key)
            _WIZARDS[draft_key] = wizard
        return wizard


def _session_payload(wizard: CaptureWizard, status: int = 200, **extra):
    body = dict(wizard.state())
    body.update(extra)
    body["request_id"] = _request_id()
    return jsonify(body), status


def _step_blocked(wizard: CaptureWizard):
    reason = wizard.session.step_error or wizard.session.blocking_reason() or "Step transition not allowed"
    return _make_error_response(
        "STEP_BLOCKED",
        reason,
        409,
        _request_id(),
        details={"step": wizard.session.step.name},
    )


def _require_target(target_id: Optional[str], org_id: Optional[str]):
    target = _target_directory().get_target(target_id, org_id=org_id)
    if target is None:
        return _make_error_response(
            "TARGET_NOT_FOUND",
            "Target not found",
            404,
            _request_id(),
            details={"target_id": target_id},
        )
    return None


def _uploaded_file(field: str = "file"):
    upload = request.files.get(field)
    if upload is None or not upload.filename:
        raise ValueError(f"multipart field '{field}' with a file is required")
    data = upload.read()
    if not data:
        raise ValueError("uploaded file is empty")
    return upload, data


def _check_media_type(role: str, mimetype: str):
    family = MEDIA_TYPE_FAMILIES.get(role)
    if family is None:
        raise MediaError(f"unknown media role {role!r}")
    if mimetype and mimetype != "application/octet-stream" and not mimetype.startswith(family):
        raise MediaError(f"{role} media must be {family}*, got {mimetype}")


def _blob_ref(upload, data: bytes, role: str, view_id: Optional[str] = None) -> BlobRef:
    _check_media_type(role, upload.mimetype)
    filename = secure_filename(upload.filename) or f"{role}.bin"
    return BlobRef(
        ref_id=uuid.uuid4().hex,
        filename=filename,
        role=role,
        content_type=upload.mimetype or "application/octet-stream",
        size=len(data),
        view_id=view_id or None,
    )


# ------------------------------------------------------------------------------
# Targets
# ------------------------------------------------------------------------------
@capture_bp.route("/targets", methods=["GET"])
@jwt_required()
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "List assessable targets",
    "description": "Targets of the caller's organisation, optionally filtered to one clinician's assignments.",
    "parameters": [
        {"in": "query", "name": "clinician_id", "required": False, "schema": {"type": "string"}},
    ],
    "responses": {200: {"description": "Target list"}, 401: {"description": "Unauthorized"}},
    "security": [{"BearerAuth": []}],
})
def list_targets():
    identity = _identity()
    targets = _target_directory().list_targets(identity.get("org_id"), clinician_id=request.args.get("clinician_id"))
    return jsonify({"targets": targets, "request_id": _request_id()}), 200


# ------------------------------------------------------------------------------
# Session lifecycle
# ------------------------------------------------------------------------------
@capture_bp.route("/session", methods=["POST"])
@jwt_required()
@validate_request_size(request, max_json_kb=16)
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Open the capture session",
    "description": "Rehydrates the operator's draft, or starts a fresh session (optionally for a target).",
    "requestBody": {
        "required": False,
        "content": {"application/json": {"schema": {
            "type": "object",
            "properties": {"target_id": {"type": "string", "example": "profile-123"}},
        }}},
    },
    "responses": {
        200: {"description": "Draft restored"},
        201: {"description": "Fresh session started"},
        404: {"description": "Target not found"},
    },
    "security": [{"BearerAuth": []}],
})
def open_session():
    identity = _identity()
    draft_key = _draft_key(identity)
    target_id = (_json_body().get("target_id") or "").strip() or None
    if target_id:
        missing = _require_target(target_id, identity.get("org_id"))
        if missing:
            return missing

    with _WIZARDS_LOCK:
        wizard = _WIZARDS.get(draft_key)
        reusable = (
            wizard is not None
            and wizard.record_id is None
            and (target_id is None or wizard.session.target_id == target_id)
        )
        if not reusable:
            if wizard is not None:
                wizard.close()
            wizard = _mount_wizard(draft_key, target_id=target_id)
            _WIZARDS[draft_key] = wizard

    current_app.logger.info({
        "component": "Capture",
        "request_id": _request_id(),
        "event": "session_opened",
        "restored": wizard.restored,
        "step": wizard.session.step.name,
    })
    return _session_payload(wizard, status=200 if wizard.restored else 201)


@capture_bp.route("/session", methods=["GET"])
@jwt_required()
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Get the capture session",
    "description": "Current draft snapshot with step gating, per-view completion and media that needs re-attaching.",
    "responses": {200: {"description": "Session state"}},
    "security": [{"BearerAuth": []}],
})
def get_session():
    return _session_payload(_get_wizard())


@capture_bp.route("/session", methods=["DELETE"])
@jwt_required()
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Discard the capture session",
    "description": "Cancels pending autosave and any in-flight submission, then deletes the draft.",
    "responses": {200: {"description": "Session discarded"}},
    "security": [{"BearerAuth": []}],
})
def discard_session():
    draft_key = _draft_key(_identity())
    with _WIZARDS_LOCK:
        wizard = _WIZARDS.pop(draft_key, None)
    if wizard is not None:
        wizard.discard()
    else:
        _draft_store().clear(draft_key)
    current_app.logger.info({"component": "Capture", "request_id": _request_id(), "event": "session_discarded"})
    return jsonify({"discarded": True, "request_id": _request_id()}), 200


@capture_bp.route("/session/target", methods=["POST"])
@jwt_required()
@validate_request_size(request, max_json_kb=16)
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Select the assessment target",
    "responses": {200: {"description": "Target selected"}, 404: {"description": "Target not found"}},
    "security": [{"BearerAuth": []}],
})
def select_target():
    identity = _identity()
    target_id = (_json_body().get("target_id") or "").strip()
    if not target_id:
        return _make_error_response("INVALID_ARGUMENT", "target_id is required", 400, _request_id(),
                                    details={"field": "target_id"})
    missing = _require_target(target_id, identity.get("org_id"))
    if missing:
        return missing
    wizard = _get_wizard()
    wizard.select_target(target_id)
    return _session_payload(wizard)


@capture_bp.route("/session/kind", methods=["POST"])
@jwt_required()
@validate_request_size(request, max_json_kb=16)
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Choose the assessment kind",
    "description": "posture, movement or treadmill. Auto-advances to capture; changing kind resets captured media.",
    "responses": {200: {"description": "Kind chosen"}, 400: {"description": "Unknown kind"}, 409: {"description": "No target selected"}},
    "security": [{"BearerAuth": []}],
})
def choose_kind():
    kind = _json_body().get("kind")
    if not kind:
        return _make_error_response("INVALID_ARGUMENT", "kind is required", 400, _request_id(),
                                    details={"field": "kind"})
    wizard = _get_wizard()
    if not wizard.choose_kind(kind):
        return _step_blocked(wizard)
    return _session_payload(wizard)


# ------------------------------------------------------------------------------
# Media
# ------------------------------------------------------------------------------
@capture_bp.route("/session/media", methods=["POST"])
@jwt_required()
@validate_request_size(request, max_json_kb=16, max_upload_mb=settings.CAPTURE_MAX_UPLOAD_MB)
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Add a captured photo or video",
    "description": "multipart/form-data with `file`, `role` and, for photos, the posture `view_id` (front/back/left/right). Videos may pass `view_id` as the camera angle.",
    "responses": {201: {"description": "Media added"}, 400: {"description": "Invalid media"}},
    "security": [{"BearerAuth": []}],
})
def add_media():
    upload, data = _uploaded_file()
    role = (request.form.get("role") or "").strip()
    ref = _blob_ref(upload, data, role, request.form.get("view_id"))
    wizard = _get_wizard()
    stored, replaced = wizard.attach_media(ref, data)
    current_app.logger.info({
        "component": "Capture",
        "request_id": _request_id(),
        "event": "media_added",
        "role": stored.role,
        "size": stored.size,
        "replaced": len(replaced),
    })
    return _session_payload(wizard, status=201, media=stored.to_dict(), replaced=replaced)


@capture_bp.route("/session/media/<string:ref_id>", methods=["PUT"])
@jwt_required()
@validate_request_size(request, max_json_kb=16, max_upload_mb=settings.CAPTURE_MAX_UPLOAD_MB)
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Re-attach media bytes",
    "description": "Drafts keep media references only; after a reload each reference is re-attached before submit.",
    "responses": {200: {"description": "Bytes attached"}, 400: {"description": "Unknown media"}},
    "security": [{"BearerAuth": []}],
})
def reattach_media(ref_id: str):
    _, data = _uploaded_file()
    wizard = _get_wizard()
    ref = wizard.attach_bytes(ref_id, data)
    return _session_payload(wizard, media=ref.to_dict())


@capture_bp.route("/session/media/<string:ref_id>", methods=["DELETE"])
@jwt_required()
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Remove media",
    "description": "Removing a video also removes the frames captured from it.",
    "responses": {200: {"description": "Media removed"}, 400: {"description": "Unknown media"}},
    "security": [{"BearerAuth": []}],
})
def remove_media(ref_id: str):
    wizard = _get_wizard()
    dropped = wizard.remove_media(ref_id)
    return _session_payload(wizard, dropped=dropped)


@capture_bp.route("/session/frames", methods=["POST"])
@jwt_required()
@validate_request_size(request, max_json_kb=16, max_upload_mb=settings.CAPTURE_MAX_UPLOAD_MB)
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Capture a frame from a video",
    "description": "multipart/form-data with the still image `file`, `video_ref_id` and `timestamp` (seconds).",
    "responses": {201: {"description": "Frame view created"}, 400: {"description": "Invalid frame"}},
    "security": [{"BearerAuth": []}],
})
def capture_frame():
    upload, data = _uploaded_file()
    video_ref_id = (request.form.get("video_ref_id") or "").strip()
    if not video_ref_id:
        raise ValueError("video_ref_id is required")
    raw_ts = request.form.get("timestamp")
    timestamp = float(raw_ts) if raw_ts not in (None, "") else None
    frame_ref = _blob_ref(upload, data, ROLE_FRAME)
    wizard = _get_wizard()
    view = wizard.capture_frame(video_ref_id, frame_ref, data, timestamp=timestamp)
    return _session_payload(wizard, status=201, view=view.to_dict())


# ------------------------------------------------------------------------------
# Landmarks / annotation
# ------------------------------------------------------------------------------
@capture_bp.route("/session/views/<string:view_id>/landmarks/<string:landmark_id>", methods=["PUT"])
@jwt_required()
@validate_request_size(request, max_json_kb=16)
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Place a landmark",
    "description": "Body `{x, y}` in percent of the image; values are clamped to [0, 100].",
    "responses": {200: {"description": "Landmark placed"}, 400: {"description": "Invalid coordinate"}, 404: {"description": "Unknown view or landmark"}},
    "security": [{"BearerAuth": []}],
})
def place_landmark(view_id: str, landmark_id: str):
    data = _json_body()
    wizard = _get_wizard()
    view = wizard.update_landmark(view_id, landmark_id, data.get("x"), data.get("y"))
    return jsonify({
        "view": view.to_dict(),
        "view_completion": wizard.session.view_completion(),
        "request_id": _request_id(),
    }), 200


@capture_bp.route("/session/views/<string:view_id>/landmarks/<string:landmark_id>", methods=["DELETE"])
@jwt_required()
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Clear a landmark",
    "responses": {200: {"description": "Landmark cleared"}, 404: {"description": "Unknown view or landmark"}},
    "security": [{"BearerAuth": []}],
})
def clear_landmark(view_id: str, landmark_id: str):
    wizard = _get_wizard()
    view = wizard.clear_landmark(view_id, landmark_id)
    return jsonify({
        "view": view.to_dict(),
        "view_completion": wizard.session.view_completion(),
        "request_id": _request_id(),
    }), 200


@capture_bp.route("/session/views/<string:view_id>/pointer", methods=["POST"])
@jwt_required()
@validate_request_size(request, max_json_kb=16)
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Pointer event on the annotation surface",
    "description": "Body `{type: select|down|move|up|click|cancel, landmark_id?, client_x?, client_y?, rect?}`.",
    "responses": {200: {"description": "Event applied (or ignored)"}, 400: {"description": "Bad event"}},
    "security": [{"BearerAuth": []}],
})
def pointer_event(view_id: str):
    event = _json_body()
    wizard = _get_wizard()
    applied, view, surface = wizard.pointer(view_id, event)
    return jsonify({
        "applied": applied,
        "view": view.to_dict(),
        "surface": surface,
        "request_id": _request_id(),
    }), 200


# ------------------------------------------------------------------------------
# Notes / steps
# ------------------------------------------------------------------------------
@capture_bp.route("/session/notes/<string:key>", methods=["PUT"])
@jwt_required()
@validate_request_size(request, max_json_kb=64)
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Edit a note",
    "description": "Body `{value}`; an empty value deletes the note. Treadmill details use `treadmill.speed`, `treadmill.incline`, `treadmill.footwear`.",
    "responses": {200: {"description": "Note saved"}},
    "security": [{"BearerAuth": []}],
})
def set_note(key: str):
    value = _json_body().get("value")
    wizard = _get_wizard()
    wizard.set_note(key, None if value is None else str(value))
    return _session_payload(wizard)


@capture_bp.route("/session/next", methods=["POST"])
@jwt_required()
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Advance the wizard",
    "responses": {200: {"description": "Advanced"}, 409: {"description": "Step blocked (STEP_BLOCKED)"}},
    "security": [{"BearerAuth": []}],
})
def next_step():
    wizard = _get_wizard()
    if not wizard.next():
        return _step_blocked(wizard)
    return _session_payload(wizard)


@capture_bp.route("/session/back", methods=["POST"])
@jwt_required()
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Go back in the wizard",
    "description": "Optional body `{to_step}` to jump back to an earlier step index.",
    "responses": {200: {"description": "Moved back"}, 409: {"description": "Cannot move back"}},
    "security": [{"BearerAuth": []}],
})
def back_step():
    to_step = _json_body().get("to_step")
    if to_step is not None:
        try:
            to_step = int(to_step)
        except (TypeError, ValueError):
            raise ValueError("to_step must be an integer step index")
    wizard = _get_wizard()
    if not wizard.back(to_step):
        return _make_error_response("INVALID_STEP", "Cannot move back to that step", 409, _request_id(),
                                    details={"step": wizard.session.step.name})
    return _session_payload(wizard)


@capture_bp.route("/session/measurements", methods=["GET"])
@jwt_required()
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Measurements derived from placed landmarks",
    "responses": {200: {"description": "Measurements per view and summary"}},
    "security": [{"BearerAuth": []}],
})
def get_measurements():
    wizard = _get_wizard()
    measurements = wizard.measurements()
    return jsonify({
        "measurements": {view_id: [m.to_dict() for m in ms] for view_id, ms in measurements.items()},
        "summary": wizard.measurement_summary(),
        "view_completion": wizard.session.view_completion(),
        "request_id": _request_id(),
    }), 200


# ------------------------------------------------------------------------------
# Submission
# ------------------------------------------------------------------------------
@capture_bp.route("/session/submit", methods=["POST"])
@jwt_required()
@validate_request_size(request, max_json_kb=16)
@swag_from({
    "tags": [SWAGGER_TAG],
    "summary": "Submit the assessment",
    "description": "Uploads every captured blob, then writes one assessment record. All-or-nothing: on failure nothing is written and the draft is kept.",
    "parameters": [
        {"in": "header", "name": "Idempotency-Key", "required": True, "schema": {"type": "string"}},
    ],
    "responses": {
        201: {"description": "Assessment written", "content": {"application/json": {"example": {"assessment_id": "assessment-1a2b3c4d"}}}},
        400: {"description": "Missing Idempotency-Key"},
        409: {"description": "Not at review step, or media must be re-attached"},
        502: {"description": "Upload or record write failed (SUBMISSION_FAILED); draft retained"},
    },
    "security": [{"BearerAuth": []}],
})
def submit_session():
    """
    Key behaviors:
      - Requires Idempotency-Key header (prevents double submission on client retries)
      - Replays the stored response for a key that already succeeded
      - Failed attempts are not stored, so the same key can be retried
    """
    request_id = _request_id()
    idem_key = request.headers.get("Idempotency-Key")
    if not idem_key:
        return _make_error_response(
            code="INVALID_ARGUMENT",
            message="Idempotency-Key header is required",
            status=400,
            request_id=request_id,
            details={"header": "Idempotency-Key"}
        )

    identity = _identity()
    draft_key = _draft_key(identity)
    request_hash = compute_request_hash(_json_body())

    existing = read_idempotency(idem_key, scope=draft_key)
    if existing:
        if existing.request_hash and existing.request_hash != request_hash:
            return _make_error_response(
                code="INVALID_ARGUMENT",
                message="Payload does not match the original idempotent request",
                status=400,
                request_id=request_id,
                details={"field": "Idempotency-Key"},
            )
        current_app.logger.info({"component": "Capture", "request_id": request_id, "event": "idempotent_replay"})
        return current_app.response_class(
            existing.response_json,
            status=existing.status_code or 201,
            mimetype="application/json",
        )

    wizard = _get_wizard()
    orchestrator = UploadOrchestrator(
        _blob_storage(),
        _record_store(),
        engine=wizard.engine,
        max_workers=current_app.config.get("CAPTURE_UPLOAD_WORKERS", settings.CAPTURE_UPLOAD_WORKERS),
        publish=publish_event,
    )
    outcome = wizard.submit(orchestrator, identity)

    if not outcome.ok:
        error = outcome.error
        details = None
        if isinstance(error, SubmissionNotReadyError):
            code, status = "STEP_BLOCKED", 409
        elif isinstance(error, MissingMediaError):
            code, status, details = "MEDIA_MISSING", 409, {"ref_ids": error.ref_ids}
        else:
            code, status = "SUBMISSION_FAILED", 502
            if isinstance(error, UploadBatchError):
                details = {"failed_paths": sorted(error.failures)}
        current_app.logger.warning({
            "component": "Capture",
            "request_id": request_id,
            "event": "submission_failed",
            "error_code": code,
            "error": str(error),
        })
        return _make_error_response(code, outcome.message, status, request_id, details)

    body = {
        "assessment_id": outcome.record_id,
        "status": "submitted",
        "metrics_summary": (outcome.record or {}).get("metrics_summary"),
        "request_id": request_id,
    }
    write_idempotency(idem_key, request_hash, body, status_code=201, scope=draft_key)
    current_app.logger.info({
        "component": "Capture",
        "request_id": request_id,
        "event": "assessment_submitted",
        "assessment_id": outcome.record_id,
    })
    return jsonify(body), 201

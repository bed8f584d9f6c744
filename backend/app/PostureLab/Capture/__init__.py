"""
Capture pipeline: landmark model, annotation surface, measurement engine,
capture session/wizard and media upload orchestration.
"""

from .annotation import AnnotationSurface, Rect  # noqa: F401
from .autosave import Debouncer, DraftAutosaver  # noqa: F401
from .exceptions import (  # noqa: F401
    CaptureError,
    DraftStoreError,
    DuplicateLandmarkError,
    InvalidCoordinateError,
    MediaError,
    MissingMediaError,
    RecordWriteError,
    SessionSubmittedError,
    SubmissionCancelledError,
    SubmissionError,
    SubmissionNotReadyError,
    UnknownLandmarkError,
    UnknownViewError,
    UploadBatchError,
)
from .landmarks import MOVEMENT_LANDMARKS, POSTURE_LANDMARKS, BlobRef, Landmark, LandmarkSetConfig, View, is_complete  # noqa: F401
from .measurements import Measurement, MeasurementEngine, MeasurementThresholds, summarize  # noqa: F401
from .session import AssessmentKind, CaptureSession, WizardStep, config_for  # noqa: F401
from .uploads import UploadOrchestrator, upload_path  # noqa: F401
from .wizard import CaptureWizard, SubmitOutcome  # noqa: F401

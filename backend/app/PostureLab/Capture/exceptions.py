class CaptureError(Exception):
    """
    Base class for capture pipeline errors.

    All capture-specific exceptions inherit from this type so callers
    (API layer, tests, workers) can catch a single umbrella exception when needed.
    """


class InvalidCoordinateError(CaptureError):
    """
    Raised when a landmark coordinate cannot be mapped into image space.

    Typical causes:
      - NaN produced by a degenerate container rect
      - Non-numeric values in a client payload
    """


class UnknownLandmarkError(CaptureError):
    """
    Raised when a landmark id is not part of the view's landmark set.
    """


class DuplicateLandmarkError(CaptureError):
    """
    Raised when a view would hold the same landmark id twice.
    """


class UnknownViewError(CaptureError):
    """
    Raised when a view id does not exist in the capture session.
    """


class MediaError(CaptureError):
    """
    Raised when a media operation is invalid for the session.

    Typical causes:
      - Role does not match the assessment kind (a photo on a movement session)
      - Posture photo without a target view
      - Referencing a media item that was never added
    """


class MissingMediaError(MediaError):
    """
    Raised when a media reference has no bytes attached.

    Raw file bytes are never part of the draft, so after a reload every
    reference must be re-attached before the session can be submitted.
    """

    def __init__(self, ref_ids):
        self.ref_ids = list(ref_ids)
        super().__init__(f"Media must be re-attached before submission: {', '.join(self.ref_ids)}")


class SubmissionError(CaptureError):
    """
    Base class for failures at the submission boundary.

    The wizard converts these into a single user-facing message and keeps
    the local draft so the operator can retry.
    """


class SubmissionNotReadyError(SubmissionError):
    """
    Raised when submission is requested before the review step.
    """


class UploadBatchError(SubmissionError):
    """
    Raised when one or more uploads in a submission batch failed.

    No assessment record is written when this is raised.
    """

    def __init__(self, failures):
        self.failures = dict(failures)
        super().__init__(f"{len(self.failures)} upload(s) failed: {', '.join(sorted(self.failures))}")


class RecordWriteError(SubmissionError):
    """
    Raised when the assessment record could not be written.
    """


class SubmissionCancelledError(SubmissionError):
    """
    Raised when an in-flight submission was cancelled (operator navigated away).
    """


class DraftStoreError(CaptureError):
    """
    Raised when the draft store cannot be read or written at all.
    """


class SessionSubmittedError(CaptureError):
    """
    Raised when a session is edited after it was submitted.
    """

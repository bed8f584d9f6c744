import os
import sys
import threading

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
sys.path.append(os.path.abspath("."))

from backend.app.PostureLab.Capture.landmarks import BlobRef  # noqa: E402
from backend.app.PostureLab.Capture.session import AssessmentKind, CaptureSession, WizardStep  # noqa: E402


class FakeTimer:
    """Stands in for threading.Timer; tests fire it by hand."""

    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.fn()


class ImmediateTimer(FakeTimer):
    """Fires as soon as it is started, so autosave writes are synchronous."""

    def start(self):
        self.started = True
        self.fn()


class DictDraftStore:
    def __init__(self):
        self.data = {}
        self.set_calls = 0

    def get(self, key):
        return self.data.get(key)

    def set(self, key, snapshot):
        self.set_calls += 1
        self.data[key] = snapshot

    def clear(self, key):
        self.data.pop(key, None)


class FakeBlobStorage:
    def __init__(self, fail_paths=()):
        self.fail_paths = set(fail_paths)
        self.uploads = {}
        self.attempts = []
        self._lock = threading.Lock()

    def upload(self, path, data, content_type):
        with self._lock:
            self.attempts.append(path)
        if path in self.fail_paths or any(path.endswith(p) for p in self.fail_paths):
            raise IOError(f"connection reset while uploading {path}")
        with self._lock:
            self.uploads[path] = (data, content_type)
        return {"url": f"https://blobs.example.com/{path}?sig=abc", "path": path}


class FakeRecordStore:
    def __init__(self, fail_create=False, fail_update=False):
        self.records = []
        self.patches = []
        self.fail_create = fail_create
        self.fail_update = fail_update

    def create_record(self, record):
        if self.fail_create:
            raise RuntimeError("database is locked")
        self.records.append(record)

    def update_record(self, target_id, patch):
        if self.fail_update:
            raise LookupError(target_id)
        self.patches.append((target_id, patch))


class FakeTargetDirectory:
    def __init__(self, targets):
        self.targets = targets

    def list_targets(self, org_id, clinician_id=None):
        rows = [t for t in self.targets if t["org_id"] == org_id]
        if clinician_id:
            rows = [t for t in rows if clinician_id in t.get("clinicians", [])]
        return [{"id": t["id"], "display_name": t["display_name"]} for t in rows]

    def get_target(self, target_id, org_id=None):
        for t in self.targets:
            if t["id"] == target_id and (org_id is None or t["org_id"] == org_id):
                return {"id": t["id"], "display_name": t["display_name"]}
        return None


@pytest.fixture
def timers():
    """List of FakeTimers created through `timers.factory`."""

    class _Timers(list):
        def factory(self, delay, fn):
            timer = FakeTimer(delay, fn)
            self.append(timer)
            return timer

    return _Timers()


def photo(ref_id, view_id, filename=None):
    return BlobRef(ref_id=ref_id, filename=filename or f"{view_id}.jpg", role="photo",
                   content_type="image/jpeg", size=4, view_id=view_id)


def video(ref_id, role="ground_video", filename="walk.mp4", angle=None):
    return BlobRef(ref_id=ref_id, filename=filename, role=role, content_type="video/mp4", size=8, view_id=angle)


def frame(ref_id, filename="frame.png"):
    return BlobRef(ref_id=ref_id, filename=filename, role="frame", content_type="image/png", size=4)


@pytest.fixture
def posture_session():
    """Posture session with a front photo, at the capture step."""
    session = CaptureSession()
    session.select_target("profile-001")
    session.choose_kind(AssessmentKind.POSTURE)
    session.add_media(photo("ph-front", "front"))
    assert session.step == WizardStep.CAPTURE_AND_ANNOTATE
    return session

import json

import pytest
from conftest import frame, photo, video

from backend.app.PostureLab.Capture.exceptions import MediaError, UnknownViewError
from backend.app.PostureLab.Capture.session import AssessmentKind, CaptureSession, WizardStep


def test_capture_step_gating_scenario():
    session = CaptureSession()
    session.select_target("profile-001")
    assert session.choose_kind("posture") is True
    assert session.step == WizardStep.CAPTURE_AND_ANNOTATE

    assert session.is_next_disabled
    assert session.next() is False
    assert session.step_error == "Add at least 1 photo to continue."
    assert session.step == WizardStep.CAPTURE_AND_ANNOTATE

    session.add_media(photo("ph-1", "front"))
    assert not session.is_next_disabled
    # Unplaced landmarks never block the step.
    assert session.view_completion()["front"] is False
    assert session.next() is True
    assert session.step == WizardStep.REVIEW_MEASUREMENTS
    assert session.step_error is None


def test_select_target_step_requires_target():
    session = CaptureSession()
    assert session.next() is False
    assert session.step_error == "Pick a target to continue."
    session.select_target("  profile-001 ")
    assert session.target_id == "profile-001"
    assert session.next() is True
    assert session.step == WizardStep.CHOOSE_KIND


def test_choose_kind_without_target_is_refused():
    session = CaptureSession()
    assert session.choose_kind(AssessmentKind.MOVEMENT) is False
    assert session.kind is None
    assert session.step_error


def test_choose_kind_rejects_unknown_kind():
    session = CaptureSession(target_id="profile-001")
    with pytest.raises(ValueError):
        session.choose_kind("yoga")


def test_review_step_requires_submit(posture_session):
    posture_session.next()
    assert posture_session.next() is False
    assert posture_session.step_error == "Submit the assessment to finish."


def test_movement_requires_ground_video():
    session = CaptureSession(target_id="profile-001")
    session.choose_kind("movement")
    assert session.blocking_reason() == "Add at least 1 video to continue."
    with pytest.raises(MediaError):
        session.add_media(photo("ph-1", "front"))
    session.add_media(video("vid-1"))
    assert session.next() is True


def test_photo_replaces_previous_photo_for_view(posture_session):
    stored, replaced = posture_session.add_media(photo("ph-front-2", "front", filename="retake.jpg"))
    assert replaced == ["ph-front"]
    assert [r.ref_id for r in posture_session.pending_media] == ["ph-front-2"]
    assert posture_session.get_view("front").media_ref == stored


def test_photo_requires_posture_view(posture_session):
    with pytest.raises(MediaError):
        posture_session.add_media(photo("ph-x", "ceiling"))


def test_filenames_are_unique_per_role(posture_session):
    stored, _ = posture_session.add_media(photo("ph-back", "back", filename="front.jpg"))
    assert stored.filename == "front-2.jpg"


def test_frames_become_views_and_follow_their_video():
    session = CaptureSession(target_id="profile-001")
    session.choose_kind("treadmill")
    session.add_media(video("vid-1", role="treadmill_video"))
    session.add_media(video("vid-2", role="treadmill_video", filename="side.mp4"))

    first = session.capture_frame("vid-1", frame("fr-1"), timestamp=0.5)
    second = session.capture_frame("vid-1", frame("fr-2"), timestamp=1.5)
    other = session.capture_frame("vid-2", frame("fr-3"), timestamp=2.0)
    assert [first.view_id, second.view_id, other.view_id] == ["frame_1", "frame_2", "frame_3"]
    assert second.media_ref.filename == "frame-2.png"
    assert first.source_ref_id == "vid-1"
    assert [l.id for l in first.landmarks] == ["lower_spine", "hip", "knee", "ankle"]

    assert session.remove_media("vid-1") == ["fr-1", "fr-2", "vid-1"]
    assert [v.view_id for v in session.views] == ["frame_3"]
    assert [r.ref_id for r in session.pending_media] == ["vid-2", "fr-3"]

    session.remove_media("fr-3")
    assert session.views == ()


def test_capture_frame_needs_a_video(posture_session):
    with pytest.raises(MediaError):
        posture_session.capture_frame("ph-front", frame("fr-1"))


def test_removing_a_photo_unbinds_its_view(posture_session):
    posture_session.update_landmark("front", "shoulder_left", 40, 40)
    assert posture_session.remove_media("ph-front") == ["ph-front"]
    front = posture_session.get_view("front")
    assert front.media_ref is None
    assert front.placed("shoulder_left") is not None


def test_kind_change_resets_views_and_media(posture_session):
    posture_session.choose_kind("movement")
    assert posture_session.views == ()
    assert posture_session.pending_media == ()
    assert posture_session.capture_role == "ground_video"


def test_update_and_clear_landmark(posture_session):
    view = posture_session.update_landmark("front", "head_center", -3, 250)
    assert (view.get("head_center").x, view.get("head_center").y) == (0.0, 100.0)
    posture_session.clear_landmark("front", "head_center")
    assert posture_session.get_view("front").placed("head_center") is None
    with pytest.raises(UnknownViewError):
        posture_session.update_landmark("frame_9", "knee", 1, 1)


def test_every_mutation_notifies(posture_session):
    changes = []
    posture_session.on_change = changes.append
    posture_session.update_landmark("front", "head_center", 50, 10)
    posture_session.set_note("general", "Mild scoliosis noted")
    posture_session.next()
    posture_session.back()
    assert len(changes) == 4


def test_notes_and_treadmill_info():
    session = CaptureSession(target_id="profile-001")
    session.choose_kind("treadmill")
    session.set_note("treadmill.speed", "10 km/h")
    session.set_note("treadmill.footwear", "neutral trainers")
    session.set_note("treadmill.footwear", "")
    assert session.treadmill_info() == {"speed": "10 km/h", "incline": "", "footwear": ""}
    with pytest.raises(ValueError):
        session.set_note("  ", "x")


def test_back_navigation(posture_session):
    posture_session.next()
    assert posture_session.back() is True
    assert posture_session.step == WizardStep.CAPTURE_AND_ANNOTATE
    assert posture_session.back(to_step=WizardStep.CAPTURE_AND_ANNOTATE) is False
    assert posture_session.back(to_step=0) is True
    assert posture_session.step == WizardStep.SELECT_TARGET
    assert posture_session.back() is False


def test_snapshot_round_trip(posture_session):
    posture_session.update_landmark("front", "shoulder_left", 0, 0)
    posture_session.update_landmark("front", "shoulder_right", 61.5, 42.25)
    posture_session.set_note("general", "left knee pain")
    posture_session.next()

    snapshot = json.loads(json.dumps(posture_session.to_snapshot()))
    restored = CaptureSession.from_snapshot(snapshot)

    assert restored.to_snapshot() == posture_session.to_snapshot()
    assert restored.step == WizardStep.REVIEW_MEASUREMENTS
    assert restored.get_view("front").placed("shoulder_left") is not None
    assert restored.find_media("ph-front").view_id == "front"


@pytest.mark.parametrize("snapshot", [
    "not-a-draft",
    ["step", 2],
    {"step": "later"},
    {"step": 42},
    {"kind": "yoga"},
    {"views": [{"landmarks": []}]},
    {"pending_media": [{"ref_id": "x"}]},
    {"notes": ["a"]},
    {"views": [{"view_id": "front", "landmarks": [{"id": "ear"}, {"id": "ear"}]}]},
])
def test_from_snapshot_rejects_malformed_drafts(snapshot):
    with pytest.raises(ValueError):
        CaptureSession.from_snapshot(snapshot)


def test_blocking_reason_rechecks_earlier_gates(posture_session):
    posture_session.next()
    assert posture_session.blocking_reason() is None
    posture_session.remove_media("ph-front")
    assert posture_session.step == WizardStep.CAPTURE_AND_ANNOTATE
    assert posture_session.step_error == "Add at least 1 photo to continue."

    stale = CaptureSession(kind="posture", step=WizardStep.REVIEW_MEASUREMENTS)
    assert stale.blocking_reason() == "Pick a target to continue."


def test_removing_a_spare_photo_at_review_stays_on_review(posture_session):
    posture_session.add_media(photo("ph-back", "back"))
    posture_session.next()
    posture_session.remove_media("ph-back")
    assert posture_session.step == WizardStep.REVIEW_MEASUREMENTS


def test_target_can_only_be_cleared_on_the_target_step(posture_session):
    with pytest.raises(ValueError):
        posture_session.select_target("  ")
    assert posture_session.target_id == "profile-001"

    posture_session.back(to_step=WizardStep.SELECT_TARGET)
    posture_session.select_target(None)
    assert posture_session.target_id is None
    assert posture_session.next() is False

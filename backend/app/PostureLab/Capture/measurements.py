import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .landmarks import VIEW_BACK, VIEW_FRAME, VIEW_FRONT, VIEW_LEFT, VIEW_RIGHT, View

STATUS_OPTIMAL = "optimal"
STATUS_WARNING = "warning"
STATUS_DEVIATION = "deviation"

UNIT_DEGREES = "°"
UNIT_SHIFT = "cm equiv."


@dataclass(frozen=True)
class Measurement:
    label: str
    value: float
    unit: str
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "value": self.value, "unit": self.unit, "status": self.status}


@dataclass(frozen=True)
class MeasurementThresholds:
    """
    Classification bands and scale factors.

    The defaults are the clinic-independent values the capture app has always
    used; deployments may override them through settings.
    """

    tilt_scale: float = 0.5
    tilt_optimal_max_deg: float = 2.0
    forward_shift_optimal_max: float = 5.0
    knee_flexion_optimal_max_deg: float = 45.0
    hip_flexion_optimal_max_deg: float = 45.0


def _round(value: float) -> float:
    return round(value, 1)


def _status_below(value: float, limit: float, otherwise: str) -> str:
    return STATUS_OPTIMAL if value < limit else otherwise


def _interior_angle(a, b, c) -> Optional[float]:
    """
    Angle at vertex b formed by a-b-c, in degrees [0, 180].

    Returns None when either arm has zero length (two landmarks on top of
    each other), since no angle is defined.
    """
    v1 = (a.x - b.x, a.y - b.y)
    v2 = (c.x - b.x, c.y - b.y)
    if math.hypot(*v1) == 0 or math.hypot(*v2) == 0:
        return None
    angle = math.degrees(math.atan2(v2[1], v2[0]) - math.atan2(v1[1], v1[0]))
    angle = abs(angle) % 360.0
    return 360.0 - angle if angle > 180.0 else angle


class MeasurementEngine:
    """
    Derives clinical measurements from a view's landmarks.

    Every function here is pure: the same landmark set always produces the same
    list, in the same order. A measurement whose inputs are not all placed is
    left out of the result rather than reported as zero, so placing another
    landmark can only add measurements.
    """

    def __init__(self, thresholds: Optional[MeasurementThresholds] = None):
        self.thresholds = thresholds or MeasurementThresholds()

    def measure_view(self, view: View) -> List[Measurement]:
        if view.view_type in (VIEW_FRONT, VIEW_BACK):
            return self._coronal(view)
        if view.view_type in (VIEW_LEFT, VIEW_RIGHT):
            return self._sagittal(view)
        if view.view_type == VIEW_FRAME:
            return self._frame(view)
        return []

    def measure_views(self, views: Iterable[View]) -> Dict[str, List[Measurement]]:
        """Measurements keyed by view id. Views with nothing measurable are omitted."""
        results = {}
        for view in views:
            measurements = self.measure_view(view)
            if measurements:
                results[view.view_id] = measurements
        return results

    # --------------------------------------------------------------------------
    # Front / back
    # --------------------------------------------------------------------------
    def _coronal(self, view: View) -> List[Measurement]:
        pelvis = ("asis_left", "asis_right") if view.view_type == VIEW_FRONT else ("psis_left", "psis_right")
        results = []
        for label, (left_id, right_id) in (("Shoulder Tilt", ("shoulder_left", "shoulder_right")), ("Pelvic Tilt", pelvis)):
            measurement = self._tilt(view, label, left_id, right_id)
            if measurement:
                results.append(measurement)
        return results

    def _tilt(self, view: View, label: str, left_id: str, right_id: str) -> Optional[Measurement]:
        left, right = view.placed(left_id), view.placed(right_id)
        if left is None or right is None:
            return None
        value = _round(abs(left.y - right.y) * self.thresholds.tilt_scale)
        return Measurement(
            label=label,
            value=value,
            unit=UNIT_DEGREES,
            status=_status_below(value, self.thresholds.tilt_optimal_max_deg, STATUS_WARNING),
        )

    # --------------------------------------------------------------------------
    # Left / right side views
    # --------------------------------------------------------------------------
    def _sagittal(self, view: View) -> List[Measurement]:
        ear, c7 = view.placed("ear"), view.placed("c7")
        if ear is None or c7 is None:
            return []
        value = _round(abs(ear.x - c7.x))
        return [Measurement(
            label="Forward Head Shift",
            value=value,
            unit=UNIT_SHIFT,
            status=_status_below(value, self.thresholds.forward_shift_optimal_max, STATUS_DEVIATION),
        )]

    # --------------------------------------------------------------------------
    # Movement frames
    # --------------------------------------------------------------------------
    def _frame(self, view: View) -> List[Measurement]:
        results = []
        joints = (
            ("Knee Flexion", ("hip", "knee", "ankle"), self.thresholds.knee_flexion_optimal_max_deg),
            ("Hip Flexion", ("lower_spine", "hip", "knee"), self.thresholds.hip_flexion_optimal_max_deg),
        )
        for label, ids, limit in joints:
            points = [view.placed(i) for i in ids]
            if any(p is None for p in points):
                continue
            interior = _interior_angle(*points)
            if interior is None:
                continue
            value = _round(180.0 - interior)
            results.append(Measurement(
                label=label,
                value=value,
                unit=UNIT_DEGREES,
                status=_status_below(value, limit, STATUS_WARNING),
            ))
        return results


def summarize(measurements_by_view: Mapping[str, List[Measurement]]) -> Dict[str, Any]:
    """
    Build the denormalized metrics summary stored on the assessment record and
    copied onto the target profile.
    """
    counts = {STATUS_OPTIMAL: 0, STATUS_WARNING: 0, STATUS_DEVIATION: 0}
    for measurements in measurements_by_view.values():
        for m in measurements:
            counts[m.status] = counts.get(m.status, 0) + 1
    total = sum(counts.values())
    if total == 0:
        posture_score, risk_score = 0, 0
    else:
        posture_score = round(100 * counts[STATUS_OPTIMAL] / total)
        risk_score = round(100 * (0.5 * counts[STATUS_WARNING] + counts[STATUS_DEVIATION]) / total)
    return {
        "measurement_count": total,
        "status_counts": counts,
        "posture_score": posture_score,
        "risk_score": risk_score,
    }

# SQL record store: assessment records and the target profile summary.
from datetime import datetime

from ..database import db
from ..models import Assessment, Profile


def _parse_iso(value):
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).rstrip("Z"))


class SqlRecordStore:
    """
    create_record(record) and update_record(target_id, patch) over
    Flask-SQLAlchemy. Must be called inside an app context.
    """

    def create_record(self, record: dict) -> Assessment:
        row = Assessment(
            id=record["id"],
            target_id=record["target_id"],
            org_id=record.get("org_id"),
            created_by=record.get("created_by"),
            type=record["type"],
            status=record.get("status", "submitted"),
            title=record.get("title"),
            notes_json=record.get("notes"),
            media_json=record.get("media"),
            annotations_json=record.get("annotations"),
            metrics_summary_json=record.get("metrics_summary"),
            created_at=_parse_iso(record.get("created_at")),
            updated_at=_parse_iso(record.get("updated_at")),
        )
        try:
            db.session.add(row)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return row

    def update_record(self, target_id: str, patch: dict) -> Profile:
        """Merge a patch into the target profile; `summary` is merged key by key."""
        profile = db.session.get(Profile, target_id)
        if profile is None:
            raise LookupError(f"profile {target_id!r} not found")
        try:
            if "summary" in patch:
                summary = dict(profile.summary_json or {})
                summary.update(patch["summary"] or {})
                profile.summary_json = summary
            for field in ("display_name", "group_id", "category_id", "assigned_clinician_ids"):
                if field in patch:
                    setattr(profile, field, patch[field])
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return profile

    def get_record(self, assessment_id: str):
        row = db.session.get(Assessment, assessment_id)
        return row.to_dict() if row else None

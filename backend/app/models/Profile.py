from ..database import db


class Profile(db.Model):
    """Assessment target (patient/athlete). Owned by the directory service; capture only reads it and bumps the summary."""
    __tablename__ = 'profiles'

    id = db.Column(db.String(64), primary_key=True)
    org_id = db.Column(db.String(64), nullable=False, index=True)
    display_name = db.Column(db.String(255), nullable=False)
    group_id = db.Column(db.String(64), nullable=True)
    category_id = db.Column(db.String(64), nullable=True)
    assigned_clinician_ids = db.Column(db.JSON, nullable=True)
    summary_json = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    assessments = db.relationship('Assessment', backref='profile', lazy=True)

    def to_target(self):
        return {
            "id": self.id,
            "display_name": self.display_name,
            "group_id": self.group_id,
            "category_id": self.category_id,
        }

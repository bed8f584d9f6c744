from ..database import db


class Assessment(db.Model):
    __tablename__ = 'assessments'

    id = db.Column(db.String(64), primary_key=True)
    target_id = db.Column(db.String(64), db.ForeignKey('profiles.id'), nullable=False, index=True)
    org_id = db.Column(db.String(64), nullable=True, index=True)
    created_by = db.Column(db.String(64), nullable=True)
    type = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default='submitted')
    title = db.Column(db.String(255), nullable=True)
    notes_json = db.Column(db.JSON, nullable=True)
    media_json = db.Column(db.JSON, nullable=True)
    annotations_json = db.Column(db.JSON, nullable=True)
    metrics_summary_json = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "target_id": self.target_id,
            "org_id": self.org_id,
            "created_by": self.created_by,
            "type": self.type,
            "status": self.status,
            "title": self.title,
            "notes": self.notes_json or {},
            "media": self.media_json or {},
            "annotations": self.annotations_json or {},
            "metrics_summary": self.metrics_summary_json or {},
            "created_at": self.created_at.isoformat() + "Z" if self.created_at else None,
            "updated_at": self.updated_at.isoformat() + "Z" if self.updated_at else None,
        }

from datetime import datetime, timezone

from ..database import db


class IdempotencyKey(db.Model):
    """Stored response of a submit call, replayed when the client retries with the same key."""
    __tablename__ = "idempotency_keys"

    key = db.Column(db.String(128), primary_key=True)
    scope = db.Column(db.String(128), nullable=True, index=True)
    request_hash = db.Column(db.String(128), nullable=True)
    response_json = db.Column(db.Text, nullable=True)
    status_code = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

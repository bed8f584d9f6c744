# Best-effort domain events for downstream consumers (reporting, notifications).
# Publishing never fails a request: errors are logged and swallowed here.
from datetime import datetime, timezone

from flask import current_app

from backend.app.services.kafka_service import publish_kafka


def publish_event(topic: str, payload: dict) -> bool:
    """
    Publish one event when KAFKA_ENABLED is set; a no-op otherwise.
    """
    if not current_app.config.get("KAFKA_ENABLED"):
        return False

    data = dict(payload)
    data.setdefault("published_at", datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"))
    try:
        return publish_kafka(topic, data)
    except Exception as e:
        current_app.logger.warning({
            "component": "Events",
            "event": "publish_failed",
            "topic": topic,
            "error": str(e),
        })
        return False

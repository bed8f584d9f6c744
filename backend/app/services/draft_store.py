# Draft persistence for capture sessions: Redis with a process-local fallback.
import json
import logging
import threading
from typing import Optional

from ..PostureLab.Capture.exceptions import DraftStoreError

logger = logging.getLogger(__name__)

DEFAULT_DRAFT_TTL_S = 7 * 24 * 3600


class RedisDraftStore:
    """
    Key/value draft store.

    Snapshots are stored as JSON strings with a TTL so abandoned drafts expire.
    When Redis is unreachable the store degrades to an in-memory dict
    (process-local; not shared across workers) instead of failing the caller.
    """

    def __init__(self, client, ttl: int = DEFAULT_DRAFT_TTL_S):
        self.client = client
        self.ttl = ttl
        self._local = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[dict]:
        """Return the stored snapshot, or None when missing or unreadable."""
        try:
            raw = self.client.get(key)
        except Exception as exc:
            logger.warning({"component": "DraftStore", "event": "draft_get_failed", "key": key, "error": str(exc)})
            with self._lock:
                raw = self._local.get(key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            return json.loads(raw)
        except ValueError as exc:
            logger.warning({"component": "DraftStore", "event": "draft_unreadable", "key": key, "error": str(exc)})
            return None

    def set(self, key: str, snapshot: dict):
        try:
            payload = json.dumps(snapshot)
        except (TypeError, ValueError) as exc:
            raise DraftStoreError(f"draft for {key} is not serializable: {exc}") from exc
        try:
            self.client.set(key, payload, ex=self.ttl)
        except Exception as exc:
            logger.warning({"component": "DraftStore", "event": "draft_set_failed", "key": key, "error": str(exc)})
            with self._lock:
                self._local[key] = payload
            return
        with self._lock:
            self._local.pop(key, None)

    def clear(self, key: str):
        with self._lock:
            self._local.pop(key, None)
        try:
            self.client.delete(key)
        except Exception as exc:
            logger.warning({"component": "DraftStore", "event": "draft_clear_failed", "key": key, "error": str(exc)})

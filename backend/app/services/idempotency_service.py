import hashlib
import json
import threading

from sqlalchemy.exc import IntegrityError

from ..database import db
from ..models.IdempotencyKey import IdempotencyKey

# Local in-memory fallback when DB is unavailable or table is missing.
_LOCAL_IDEMP_CACHE = {}
_LOCAL_LOCK = threading.Lock()


class _LocalRow:
    def __init__(self, key: str, request_hash: str, response_json: str, status_code: int = None, scope: str = None):
        self.key = key
        self.request_hash = request_hash
        self.response_json = response_json
        self.status_code = status_code
        self.scope = scope


def scoped_key(key: str, scope: str = None) -> str:
    """Idempotency keys are client-chosen, so they are namespaced per caller."""
    return f"{scope}:{key}" if scope else key


def read_idempotency(key: str, scope: str = None):
    if not key:
        return None
    full_key = scoped_key(key, scope)
    try:
        row = db.session.get(IdempotencyKey, full_key)
    except Exception:
        db.session.rollback()
        row = None
    if row is not None:
        return row
    with _LOCAL_LOCK:
        return _LOCAL_IDEMP_CACHE.get(full_key)


def write_idempotency(key: str, request_hash: str, response_json: dict, status_code: int = 200, scope: str = None):
    if not key:
        return
    full_key = scoped_key(key, scope)
    payload = json.dumps(response_json)

    # Try DB first; on failure, use in-memory cache.
    try:
        rec = IdempotencyKey(
            key=full_key,
            scope=scope,
            request_hash=request_hash,
            response_json=payload,
            status_code=status_code,
        )
        db.session.add(rec)
        db.session.commit()
        return
    except IntegrityError:
        # First writer wins; the replay serves the stored response.
        db.session.rollback()
        return
    except Exception:
        db.session.rollback()
        with _LOCAL_LOCK:
            _LOCAL_IDEMP_CACHE[full_key] = _LocalRow(full_key, request_hash, payload, status_code, scope)
        return


def compute_request_hash(body: dict):
    return hashlib.sha256(json.dumps(body or {}, sort_keys=True).encode("utf-8")).hexdigest()

from functools import wraps

from flask import g, jsonify


def validate_request_size(request: any, max_json_kb=500, max_upload_mb=None):
    """
    Decorator to reject oversized request bodies before they are parsed.

    JSON bodies are limited to max_json_kb; multipart media uploads to
    max_upload_mb when given.
    """

    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            content_length = request.content_length
            is_upload = (request.mimetype or "").startswith("multipart/")
            if is_upload and max_upload_mb:
                limit, unit, size = max_upload_mb * 1024 * 1024, "MB", max_upload_mb
            else:
                limit, unit, size = max_json_kb * 1024, "KB", max_json_kb
            if content_length and content_length > limit:
                return (
                    jsonify(
                        {
                            "error": {
                                "code": "REQUEST_TOO_LARGE",
                                "message": f"Request body exceeds {size}{unit}",
                                "details": {"received_kb": round(content_length / 1024, 1)},
                            },
                            "request_id": getattr(g, "request_id", None),
                        }
                    ),
                    413,
                )
            return f(*args, **kwargs)

        return wrapper

    return decorator

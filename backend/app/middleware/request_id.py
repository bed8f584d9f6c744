import uuid

from flask import g, request


def register_request_id_middleware(app):
    @app.before_request
    def add_request_id():
        # Correlation ID: accept client-provided X-Request-ID or generate one
        g.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

    @app.after_request
    def add_response_header(response):
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-ID"] = rid
        return response

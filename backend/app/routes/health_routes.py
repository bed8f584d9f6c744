from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from backend.app.database import db
from backend.app.services.redis_client import get_redis_client

health_bp = Blueprint("health", __name__)


@health_bp.route("/healthz", methods=["GET"])
def healthz():
    health = {"db": False, "redis": False}

    # ------------------
    # Database check
    # ------------------
    try:
        db.session.execute(text("SELECT 1"))
        health["db"] = True
    except Exception as e:
        db.session.rollback()
        current_app.logger.warning({"component": "Health", "event": "db_check_failed", "error": str(e)})

    # ------------------
    # Redis check
    # ------------------
    try:
        get_redis_client().ping()
        health["redis"] = True
    except Exception as e:
        current_app.logger.warning({"component": "Health", "event": "redis_check_failed", "error": str(e)})

    status = 200 if health["db"] else 503
    return jsonify(health), status

import redis
from flask import current_app


def get_redis_client():
    """
    Resolve a Redis client.

    Priority:
      1) current_app.config["REDIS_CLIENT"] if provided by app factory or tests
      2) Create a new redis.Redis client from config (REDIS_HOST/REDIS_PORT)
    """
    client = current_app.config.get("REDIS_CLIENT")
    if client:
        return client
    host = current_app.config.get("REDIS_HOST", "redis")
    port = int(current_app.config.get("REDIS_PORT", 6379))
    client = redis.Redis(host=host, port=port, db=0, socket_connect_timeout=1, socket_timeout=1)
    current_app.config["REDIS_CLIENT"] = client
    return client

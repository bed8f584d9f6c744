import json
import logging
from threading import Lock

from confluent_kafka import Producer
from flask import current_app

logger = logging.getLogger(__name__)

_producer = None
_producer_lock = Lock()


def get_kafka_producer():
    """Shared producer for the process (created on first use)."""
    global _producer
    if _producer is None:
        with _producer_lock:
            if _producer is None:
                servers = current_app.config.get("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")
                try:
                    _producer = Producer({"bootstrap.servers": servers})
                except Exception as e:
                    current_app.logger.warning("Kafka producer init failed: %s", e)
                    return None
    return _producer


def delivery_report(err, msg):
    if err is not None:
        logger.warning("Delivery failed for %s: %s", msg.topic(), err)
    else:
        logger.debug("Delivered to %s [%s] @ offset %s", msg.topic(), msg.partition(), msg.offset())


def publish_kafka(topic: str, payload: dict):
    p = get_kafka_producer()
    if p is None:
        current_app.logger.debug("Kafka not available; skipping publish to %s", topic)
        return False
    try:
        p.produce(topic, json.dumps(payload).encode("utf-8"), callback=delivery_report)
        # Serve delivery callbacks without blocking the request.
        p.poll(0)
        return True
    except Exception as e:
        current_app.logger.warning("Kafka publish failed to topic %s: %s", topic, e)
        return False

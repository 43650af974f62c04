import json
import logging
from kafka import KafkaProducer
from storefront.core.config import settings

logger = logging.getLogger(__name__)

_producer = None

def get_producer() -> KafkaProducer:
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
            value_serializer=lambda v: json.dumps(v).encode("utf-8"),
            key_serializer=lambda v: (v.encode("utf-8") if isinstance(v, str) else v),
            linger_ms=5,
            retries=3,
        )
    return _producer

def send(topic: str, key: str, value: dict) -> bool:
    """Publish one event. Returns False when Kafka is switched off."""
    if not settings.KAFKA_ENABLED:
        logger.debug("Kafka disabled, dropping %s event for %s", value.get("type"), key)
        return False
    p = get_producer()
    p.send(topic, key=key, value=value)
    p.flush(5)
    return True

def publish_order_created(order) -> bool:
    return send(
        topic=settings.TOPIC_ORDER_EVENTS,
        key=order.order_number,
        value={
            "type": "order.created",
            "order_id": order.id,
            "order_number": order.order_number,
            "customer_email": order.customer_email,
            "amount_cents": order.total_cents,
            "currency": order.currency,
            "items": [
                {
                    "product_id": it.product_id,
                    "variant_id": it.variant_id,
                    "qty": it.qty,
                    "unit_price_cents": it.unit_price_cents,
                }
                for it in order.items
            ],
        },
    )

def close():
    global _producer
    if _producer is not None:
        _producer.close(5)
        _producer = None

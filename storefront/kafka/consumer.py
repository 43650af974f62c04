import json
import logging
import threading
from kafka import KafkaConsumer
from pydantic import ValidationError as SchemaError
from storefront.api.schemas import PaymentEvent
from storefront.core.config import settings
from storefront.db.session import SessionLocal
from storefront.services.orders import apply_payment_event

logger = logging.getLogger(__name__)

_stop_event = threading.Event()
_thread = None

def process_event(ev, db):
    """Apply one payment event. Never raises: one bad message must not stop the consumer."""
    try:
        event = PaymentEvent.model_validate(ev)
    except SchemaError:
        logger.warning("Skipping malformed payment event: %r", ev)
        return None
    try:
        return apply_payment_event(db, event.model_dump())
    except Exception:
        db.rollback()
        logger.error("Failed to apply payment event %s", event.type, exc_info=True, extra={"event_type": event.type})
        return None

def _decode(raw: bytes):
    try:
        return json.loads(raw.decode("utf-8"))
    except ValueError:
        logger.warning("Skipping undecodable payment event (%d bytes)", len(raw))
        return None

def run_loop():
    consumer = KafkaConsumer(
        settings.TOPIC_PAYMENT_EVENTS,
        bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
        group_id="storefront-orders",
        value_deserializer=_decode,
        enable_auto_commit=True,
        auto_offset_reset="earliest",
    )
    try:
        for msg in consumer:
            if _stop_event.is_set(): break
            with SessionLocal() as db:
                process_event(msg.value, db)
    finally:
        consumer.close()

def start():
    global _thread
    if not settings.KAFKA_ENABLED:
        logger.info("Kafka disabled, payment events arrive via webhook only")
        return
    if _thread and _thread.is_alive(): return
    _stop_event.clear()
    _thread = threading.Thread(target=run_loop, daemon=True, name="payment-events")
    _thread.start()

def stop():
    _stop_event.set()

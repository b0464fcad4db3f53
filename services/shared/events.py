import os
import json
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)

EXCHANGE = os.getenv("EVENT_EXCHANGE", "catalog.events")

# Reuse AWS client across invocations (Lambda-friendly)
_sqs_client = None


def publish(event_type: str, payload: Dict[str, Any], *, safe: bool = False) -> None:
    """
    Publish an event to the configured backend.

    safe=True: swallow exceptions (log only). Catalog writes have already
    committed when this runs, so a broker outage must not fail the request.
    """
    backend = os.getenv("EVENT_BACKEND", "rabbitmq").strip().lower()  # rabbitmq | sqs | none

    try:
        if backend == "none":
            logger.debug("event %s not published (EVENT_BACKEND=none)", event_type)
            return

        if backend == "rabbitmq":
            _publish_rabbitmq(event_type, payload)
            return

        if backend == "sqs":
            _publish_sqs(event_type, payload)
            return

        raise RuntimeError(f"Unsupported EVENT_BACKEND={backend}")

    except Exception as e:
        if safe:
            logger.warning("event publish failed type=%s error=%r", event_type, e)
            return
        raise


def _body(event_type: str, payload: Dict[str, Any]) -> str:
    return json.dumps({"type": event_type, "payload": payload}, default=str)


def _publish_rabbitmq(event_type: str, payload: Dict[str, Any]) -> None:
    # Import here so Lambda zip can omit pika if you only use SQS
    import pika

    rabbitmq_url = os.getenv("RABBITMQ_URL")
    if not rabbitmq_url:
        raise RuntimeError("RABBITMQ_URL is not set")

    params = pika.URLParameters(rabbitmq_url)

    # Prevent Lambda from hanging too long on network issues
    params.heartbeat = int(os.getenv("RABBITMQ_HEARTBEAT", "30"))
    params.blocked_connection_timeout = float(os.getenv("RABBITMQ_BLOCKED_TIMEOUT", "5"))

    socket_timeout = os.getenv("RABBITMQ_SOCKET_TIMEOUT")
    if socket_timeout is not None:
        params.socket_timeout = float(socket_timeout)

    conn = pika.BlockingConnection(params)
    try:
        ch = conn.channel()
        ch.exchange_declare(exchange=EXCHANGE, exchange_type="topic", durable=True)

        ch.basic_publish(
            exchange=EXCHANGE,
            routing_key=event_type,
            body=_body(event_type, payload).encode("utf-8"),
            properties=pika.BasicProperties(delivery_mode=2, content_type="application/json"),
        )
    finally:
        if conn.is_open:
            conn.close()


def _publish_sqs(event_type: str, payload: Dict[str, Any]) -> None:
    global _sqs_client
    import boto3

    queue_url = os.getenv("SQS_QUEUE_URL")
    if not queue_url:
        raise RuntimeError("SQS_QUEUE_URL is not set")

    if _sqs_client is None:
        _sqs_client = boto3.client("sqs")

    _sqs_client.send_message(
        QueueUrl=queue_url,
        MessageBody=_body(event_type, payload),
        MessageAttributes={
            "type": {"DataType": "String", "StringValue": event_type}
        },
    )

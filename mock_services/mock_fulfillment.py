"""
mock_fulfillment.py — Mock Consumer of the Fulfillment Queue

This module stands in for the fulfillment subsystem that picks up orders once
checkout has committed them. It consumes the 'order placed' instructions the
checkout service publishes to RabbitMQ and logs them.

Communication Channels:
    - Input Queue: 'fulfillment.orders.placed' ← Receives placed-order instructions
"""

import json
import logging
import os
import time

import pika

logging.basicConfig(level=logging.INFO)
RABBITMQ_HOST = os.environ.get("RABBITMQ_HOST", "localhost")
RABBITMQ_USER = os.environ.get("RABBITMQ_USER", "checkout")
RABBITMQ_PASSWORD = os.environ.get("RABBITMQ_PASSWORD", "checkout")
FULFILLMENT_QUEUE = os.environ.get("FULFILLMENT_QUEUE", "fulfillment.orders.placed")


def get_mq_connection():
    """
    Establishes and returns a connection to the RabbitMQ message broker.

    Raises:
        pika.exceptions.AMQPConnectionError: If the broker is unavailable.
    """
    credentials = pika.PlainCredentials(RABBITMQ_USER, RABBITMQ_PASSWORD)
    return pika.BlockingConnection(
        pika.ConnectionParameters(host=RABBITMQ_HOST, credentials=credentials)
    )


def handle_instruction(body: bytes) -> dict:
    """
    Parses one instruction message.

    Raises:
        ValueError: If the message is not JSON or lacks an order id.
    """
    data = json.loads(body)
    if not isinstance(data, dict) or not data.get("orderId"):
        raise ValueError("instruction without orderId")
    return data


def on_order_placed(ch, method, properties, body):
    """
    Callback for each message on the fulfillment queue.

    Valid instructions are logged and acknowledged; malformed ones are rejected
    without requeue (dead-lettered when the broker is configured for it).
    """
    try:
        data = handle_instruction(body)
    except ValueError as e:
        logging.error(f"[FULFILLMENT] Rejecting malformed instruction: {e}")
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
        return

    logging.info(
        f"[FULFILLMENT] Order {data['orderId']} placed (session {data.get('sessionId')}, "
        f"ticket {data.get('ticketId')}, {len(data.get('items', []))} item(s))."
    )
    ch.basic_ack(delivery_tag=method.delivery_tag)


def main():
    """
    Starts the consumer loop, reconnecting every 5 seconds if the broker is lost.
    Stops on keyboard interrupt (Ctrl+C).
    """
    logging.info("Mock fulfillment consumer starting...")
    while True:
        try:
            connection = get_mq_connection()
            channel = connection.channel()
            channel.queue_declare(queue=FULFILLMENT_QUEUE, durable=True)

            logging.info(f"[FULFILLMENT] Waiting for instructions on '{FULFILLMENT_QUEUE}'.")
            channel.basic_consume(queue=FULFILLMENT_QUEUE, on_message_callback=on_order_placed)
            channel.start_consuming()
        except pika.exceptions.AMQPConnectionError as e:
            logging.warning(f"MQ connection failed, retrying in 5s... {e}")
            time.sleep(5)
        except KeyboardInterrupt:
            break


if __name__ == '__main__':
    main()

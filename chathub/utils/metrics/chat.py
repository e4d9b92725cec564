"""
Prometheus metrics for chat connection and message monitoring.

This module defines metrics for tracking chat connections, published
messages, fan-out deliveries and evictions.
"""

from chathub.utils.metrics._helpers import (
    _get_or_create_counter,
    _get_or_create_gauge,
    _get_or_create_histogram,
)

# Connection Metrics
chat_connections_active = _get_or_create_gauge(
    "chat_connections_active", "Number of registered chat connections"
)

chat_connections_total = _get_or_create_counter(
    "chat_connections_total",
    "Total chat connection attempts",
    ["status"],  # accepted, rejected_auth, rejected_error, rejected_shutdown
)

chat_evictions_total = _get_or_create_counter(
    "chat_evictions_total",
    "Chat connections closed by the server",
    ["reason"],  # backpressure, transport
)

# Message Metrics
chat_messages_received_total = _get_or_create_counter(
    "chat_messages_received_total", "Total chat frames received from clients"
)

chat_messages_dropped_total = _get_or_create_counter(
    "chat_messages_dropped_total",
    "Chat messages dropped before fan-out",
    ["reason"],  # empty, too_long, sender_gone
)

chat_envelopes_delivered_total = _get_or_create_counter(
    "chat_envelopes_delivered_total",
    "Envelopes queued for delivery to recipients",
)

chat_deliveries_failed_total = _get_or_create_counter(
    "chat_deliveries_failed_total",
    "Envelopes that could not be delivered",
    ["reason"],  # backpressure, transport
)

chat_broadcast_recipients = _get_or_create_histogram(
    "chat_broadcast_recipients",
    "Number of recipients per published message",
    buckets=(1, 2, 5, 10, 25, 50, 100, 250, 500, 1000),
)


__all__ = [
    "chat_connections_active",
    "chat_connections_total",
    "chat_evictions_total",
    "chat_messages_received_total",
    "chat_messages_dropped_total",
    "chat_envelopes_delivered_total",
    "chat_deliveries_failed_total",
    "chat_broadcast_recipients",
]

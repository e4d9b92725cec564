"""
Prometheus metrics definitions.

Metrics are defined in per-subsystem submodules and re-exported here:

    from chathub.utils.metrics import chat_connections_active
"""

from chathub.utils.metrics.chat import (
    chat_broadcast_recipients,
    chat_connections_active,
    chat_connections_total,
    chat_deliveries_failed_total,
    chat_envelopes_delivered_total,
    chat_evictions_total,
    chat_messages_dropped_total,
    chat_messages_received_total,
)

__all__ = [
    "chat_broadcast_recipients",
    "chat_connections_active",
    "chat_connections_total",
    "chat_deliveries_failed_total",
    "chat_envelopes_delivered_total",
    "chat_evictions_total",
    "chat_messages_dropped_total",
    "chat_messages_received_total",
]

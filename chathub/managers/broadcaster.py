from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from chathub.exceptions import Backpressure
from chathub.logging import logger
from chathub.managers.connection_registry import ConnectionRegistry, RegistryEntry
from chathub.schemas.envelope import MessageEnvelope
from chathub.settings import app_settings
from chathub.utils.metrics import (
    chat_broadcast_recipients,
    chat_deliveries_failed_total,
    chat_envelopes_delivered_total,
    chat_messages_dropped_total,
)


def wall_clock() -> datetime:
    if app_settings.CHAT_TIMEZONE:
        return datetime.now(ZoneInfo(app_settings.CHAT_TIMEZONE))
    return datetime.now().astimezone()


@dataclass(frozen=True)
class PublishResult:
    """
    Outcome of a single publish.

    `envelope` is None when the message was dropped before fan-out.
    `saturated` lists recipients whose outbound queue was full; they did
    not get the envelope and should be evicted.
    """

    envelope: MessageEnvelope | None
    delivered: tuple[RegistryEntry, ...] = ()
    saturated: tuple[RegistryEntry, ...] = ()


class MessageBroadcaster:
    """
    Turns raw text from one connection into an envelope for everyone.

    The clock is read exactly once per accepted message, here and nowhere
    else, so envelope timestamps follow acceptance order.

    Fan-out only enqueues (see `ChatConnection.deliver`), so a publish
    never waits on any recipient and never raises back to the sender.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        clock: Callable[[], datetime] = wall_clock,
        max_length: int | None = None,
    ) -> None:
        self.registry = registry
        self.clock = clock
        self.max_length = max_length or app_settings.CHAT_MAX_MESSAGE_LENGTH

    def publish(self, sender: RegistryEntry, raw_text: str) -> PublishResult:
        """
        Publish `raw_text` from `sender` to every registered connection.

        The sender is a recipient too, so its own message comes back
        through the same path as everyone else's.

        Args:
            sender: Registry entry of the sending connection.
            raw_text: Message body as received.

        Returns:
            PublishResult: The envelope and who got it.
        """
        if not raw_text or not raw_text.strip():
            chat_messages_dropped_total.labels(reason="empty").inc()
            return PublishResult(envelope=None)

        if len(raw_text) > self.max_length:
            logger.warning(
                f"Dropped message of {len(raw_text)} chars from user "
                f"{sender.identity.user_id} (limit {self.max_length})"
            )
            chat_messages_dropped_total.labels(reason="too_long").inc()
            return PublishResult(envelope=None)

        if sender not in self.registry:
            logger.debug(
                f"Dropped message from unregistered connection "
                f"{sender.connection.connection_id}"
            )
            chat_messages_dropped_total.labels(reason="sender_gone").inc()
            return PublishResult(envelope=None)

        envelope = MessageEnvelope.from_identity(
            sender.identity, raw_text, timestamp=self.clock()
        )
        recipients = self.registry.snapshot()

        delivered: list[RegistryEntry] = []
        saturated: list[RegistryEntry] = []
        for entry in recipients:
            if not entry.connection.is_open:
                continue
            try:
                entry.connection.deliver(envelope)
            except Backpressure as ex:
                logger.warning(f"Backpressure for user {entry.identity.user_id}: {ex}")
                chat_deliveries_failed_total.labels(reason="backpressure").inc()
                saturated.append(entry)
                continue
            delivered.append(entry)

        chat_envelopes_delivered_total.inc(len(delivered))
        chat_broadcast_recipients.observe(len(recipients))
        logger.debug(
            f"Published message from {sender.identity.user_id} to "
            f"{len(delivered)}/{len(recipients)} connections"
        )
        return PublishResult(
            envelope=envelope,
            delivered=tuple(delivered),
            saturated=tuple(saturated),
        )

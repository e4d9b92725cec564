from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_serializer

from chathub.schemas.identity import Identity
from chathub.settings import app_settings


class MessageEnvelope(BaseModel):  # type: ignore[misc]
    """
    Chat message as fanned out to every participant.

    The wire form is a JSON object with exactly the fields
    `username`, `photo_url`, `text` and `timestamp`, all strings. The
    timestamp is kept as an aware datetime and rendered with
    CHAT_TIMESTAMP_FORMAT on serialization.
    """

    model_config = ConfigDict(frozen=True)

    username: str
    photo_url: str
    text: str
    timestamp: datetime

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> str:
        return value.strftime(app_settings.CHAT_TIMESTAMP_FORMAT)

    @classmethod
    def from_identity(
        cls, identity: Identity, text: str, timestamp: datetime
    ) -> "MessageEnvelope":
        """
        Build an envelope for a message sent by `identity`.

        Args:
            identity: The sender's bound identity.
            text: The message body as sent.
            timestamp: Acceptance time assigned by the broadcaster.

        Returns:
            MessageEnvelope: The immutable envelope.
        """
        return cls(
            username=identity.display_name,
            photo_url=identity.avatar_url or app_settings.CHAT_DEFAULT_AVATAR_URL,
            text=text,
            timestamp=timestamp,
        )

    def to_wire(self) -> str:
        """Serialize the envelope to the UTF-8 JSON text frame."""
        return self.model_dump_json()

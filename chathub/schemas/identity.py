from pydantic import BaseModel, ConfigDict, Field, field_validator


class Identity(BaseModel):  # type: ignore[misc]
    """Server-resolved identity bound to a chat connection."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    display_name: str
    avatar_url: str | None = None


class SessionRecord(BaseModel):  # type: ignore[misc]
    """What the session store knows about a valid session credential."""

    user_id: str = Field(..., min_length=1)
    display_name: str | None = None
    avatar_url: str | None = None

    @field_validator("display_name", "avatar_url", mode="before")
    @classmethod
    def empty_to_none(cls, value: str | None) -> str | None:
        # Redis hashes store missing values as empty strings
        return value or None


class ProfileRecord(BaseModel):  # type: ignore[misc]
    """Display data owned by the profile store."""

    display_name: str | None = None
    avatar_url: str | None = None

    @field_validator("display_name", "avatar_url", mode="before")
    @classmethod
    def empty_to_none(cls, value: str | None) -> str | None:
        return value or None

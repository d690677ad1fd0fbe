"""Instagram instance (connected account) models."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.constants import (
    DEFAULT_TOKEN_EXPIRES_IN_SECONDS,
    DEFAULT_TOKEN_TYPE,
    INSTANCE_NAME_MAX_LENGTH,
    INSTANCE_NAME_MIN_LENGTH,
)

InstanceStatus = Literal["connected", "disconnected", "error"]


class InstagramInstance(BaseModel):
    """A connected Instagram account as persisted in the Account Store."""

    id: str
    instance_name: str
    name: str
    user_id: str
    token: str
    instagram_account_id: str
    access_token: str
    token_type: str = DEFAULT_TOKEN_TYPE
    token_expires_at: datetime | None = None
    is_long_lived: bool = False
    username: str | None = None
    status: InstanceStatus = "connected"
    webhook_url: str
    created_at: datetime
    updated_at: datetime


class InstagramInstanceCreate(BaseModel):
    """Parameters for creating or refreshing an instance after OAuth."""

    name: str = Field(
        ...,
        min_length=INSTANCE_NAME_MIN_LENGTH,
        max_length=INSTANCE_NAME_MAX_LENGTH,
        description="Display name chosen by the user",
    )
    user_id: str = Field(..., description="Owning user ID")
    instagram_account_id: str = Field(..., description="Provider account ID")
    access_token: str = Field(..., description="Instagram access token")
    token_type: str = DEFAULT_TOKEN_TYPE
    token_expires_at: datetime | None = None
    is_long_lived: bool = False
    username: str | None = None


class InstanceSummary(BaseModel):
    """Public view of an instance; credentials are never exposed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    instance_name: str
    username: str | None = None
    status: InstanceStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_instance(cls, instance: InstagramInstance) -> "InstanceSummary":
        return cls(
            id=instance.id,
            name=instance.name,
            instance_name=instance.instance_name,
            username=instance.username,
            status=instance.status,
            created_at=instance.created_at,
            updated_at=instance.updated_at,
        )


class TokenData(BaseModel):
    """Result of an OAuth token exchange."""

    access_token: str
    token_type: str = DEFAULT_TOKEN_TYPE
    expires_in: int = DEFAULT_TOKEN_EXPIRES_IN_SECONDS
    user_id: str | None = None
    permissions: list[str] = Field(default_factory=list)
    is_long_lived: bool = False


class InstagramUserInfo(BaseModel):
    """Basic profile of the account that completed the OAuth flow."""

    id: str
    username: str | None = None
    account_type: str | None = None

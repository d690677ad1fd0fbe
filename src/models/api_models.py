"""Request bodies accepted by the instance and messaging endpoints."""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from src.constants import INSTANCE_NAME_MAX_LENGTH, INSTANCE_NAME_MIN_LENGTH


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateInstanceRequest(_CamelModel):
    """Start connecting a new Instagram account."""

    user_id: str = Field(..., min_length=1)
    name: str

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        value = value.strip()
        if len(value) < INSTANCE_NAME_MIN_LENGTH:
            raise ValueError(
                f"name must have at least {INSTANCE_NAME_MIN_LENGTH} characters"
            )
        if len(value) > INSTANCE_NAME_MAX_LENGTH:
            raise ValueError(
                f"name must have at most {INSTANCE_NAME_MAX_LENGTH} characters"
            )
        return value


class SendMessageRequest(_CamelModel):
    """Send a direct message from a connected account."""

    instance_id: str = Field(..., min_length=1)
    recipient_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class ReplyCommentRequest(_CamelModel):
    """Reply to a comment on a connected account's media."""

    instance_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)

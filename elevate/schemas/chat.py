from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Attachment(BaseModel):
    """A file the user attached to a prompt, before it is inlined."""

    data: bytes
    mime_type: str
    display_name: str
    visible_to_model: bool = False


class ChatUpload(BaseModel):
    """Upload entry in the wire format the agent backend expects."""

    data: str  # data URI: "data:<mime>;base64,<payload>"
    type: Literal["file", "file:full"]
    name: str
    mime: str


class ChatStreamRequest(BaseModel):
    """Body accepted by the relay's /chat/stream and /chat/act endpoints.

    The CLI sends `question` (the upstream prediction shape); browser
    clients send `message`. Either is accepted.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: str | None = Field(default=None, validation_alias=AliasChoices("message", "question"))
    session_id: str | None = Field(default=None, alias="sessionId")
    uploads: list[ChatUpload] | None = None


class PredictionRequest(BaseModel):
    """Body the client sends upstream for one exchange."""

    model_config = ConfigDict(populate_by_name=True)

    question: str
    session_id: str | None = Field(default=None, alias="sessionId")
    uploads: list[ChatUpload] | None = None
    streaming: bool = True

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ChatReplyResponse(BaseModel):
    """Non-streaming reply shape returned by /chat/act."""

    model_config = ConfigDict(populate_by_name=True)

    response: str
    session_id: str | None = Field(default=None, alias="sessionId")


class TitleRequest(BaseModel):
    prompt: str


class TitleResponse(BaseModel):
    title: str


class SessionDeleteResponse(BaseModel):
    success: bool = True
    message: str | None = None
    warning: str | None = None


class ChatRecord(BaseModel):
    chat_id: str
    title: str
    session_id: str | None = None
    created_at: str
    updated_at: str


class ChatMessageRecord(BaseModel):
    message_id: str
    chat_id: str
    role: Literal["user", "assistant"]
    content: str
    thinking: str | None = None
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    created_at: str

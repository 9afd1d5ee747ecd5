from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _BaseStreamEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Name of the most recent `event:` line when this event was decoded.
    sse_event: str | None = None


class TokenEvent(_BaseStreamEvent):
    type: Literal["token"] = "token"
    text: str


class ThinkingEvent(_BaseStreamEvent):
    type: Literal["thinking"] = "thinking"
    text: str


class MetadataEvent(_BaseStreamEvent):
    type: Literal["metadata"] = "metadata"
    session_id: str


class EndEvent(_BaseStreamEvent):
    type: Literal["end"] = "end"


class ErrorEvent(_BaseStreamEvent):
    type: Literal["error"] = "error"
    message: str


StreamEvent = Annotated[
    Union[TokenEvent, ThinkingEvent, MetadataEvent, EndEvent, ErrorEvent],
    Field(discriminator="type"),
]


class AccumulatedMessage(BaseModel):
    """Running state of one assistant reply.

    Mutated append-only while a send is in flight, then frozen via
    :meth:`finalize` once the stream ends.
    """

    visible_buffer: str = ""
    thinking_buffer: str = ""
    session_id: str | None = None
    snapshot: str = ""

    def finalize(self) -> "AccumulatedMessage":
        return FinalizedMessage(**self.model_dump())


class FinalizedMessage(AccumulatedMessage):
    model_config = ConfigDict(frozen=True)

    def finalize(self) -> "AccumulatedMessage":
        return self

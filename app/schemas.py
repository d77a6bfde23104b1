"""Request/response models — the contract between the relay and its clients."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class GenerationRequest(BaseModel):
    """Fields a client supplies to request generated articles."""

    model_config = ConfigDict(str_strip_whitespace=True)

    model_id: str = Field(min_length=1)
    text: str = Field(min_length=1)  # source article the new ones are based on
    channels: str = Field(min_length=1)  # promotion channel
    direction: str = Field(min_length=1)  # content direction / topic
    requirements: str = Field(min_length=1)
    num: int = Field(gt=0)  # how many articles to write
    seo_keywords: str = Field(min_length=1)
    scope: str = Field(min_length=1)  # what the articles will be used for


class UpstreamMessage(BaseModel):
    """One entry of the chat history sent upstream."""

    role: Literal["system", "user", "assistant"]
    content: str


class ChatResponse(BaseModel):
    """Envelope returned by the single-shot endpoint."""

    success: bool
    data: str | None = None
    message: str | None = None


class StreamEvent(BaseModel):
    """A single SSE event in the response stream.

    Types:
        start — stream opened, nothing generated yet
        chunk — a piece of generated text
        end   — generation finished normally
        error — something went wrong; nothing follows
    """

    type: Literal["start", "chunk", "end", "error"]
    content: str | None = None
    message: str | None = None


class CompletionResult(BaseModel):
    """Unwrapped result of a single-shot upstream completion."""

    content: str
    model: str | None = None
    usage: dict[str, Any] | None = None
    raw: dict[str, Any] = {}

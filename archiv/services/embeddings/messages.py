from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Protocol, Union

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EmbeddingMessage(BaseModel):
    # Published job schema for the enqueue-to-worker handoff.
    type: Literal["embed_asset"] = "embed_asset"
    asset_id: str = Field(min_length=1)
    enqueued_at: datetime = Field(default_factory=_utc_now)
    retry_count: int = Field(default=0, ge=0)


class EmbeddingQueue(Protocol):
    async def send(self, message: EmbeddingMessage) -> None:
        ...


@dataclass(frozen=True)
class Success:
    pass


@dataclass(frozen=True)
class RetryAfter:
    delay_seconds: int


@dataclass(frozen=True)
class PermanentFailure:
    reason: str


HandlerOutcome = Union[Success, RetryAfter, PermanentFailure]


class QueueMessageHandle(Protocol):
    # Platform queue primitive: every delivered message is acked or retried explicitly.
    def ack(self) -> None:
        ...

    def retry(self, *, delay_seconds: int) -> None:
        ...

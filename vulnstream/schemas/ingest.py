"""Messages emitted by the ingestion parser actor over its channel."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from vulnstream.schemas.vulns import Vulnerability


class ProgressEvent(BaseModel):
    """Cumulative bytes read so far; total_bytes only when the source advertises a length."""

    type: Literal["progress"] = "progress"
    bytes_read: int = Field(..., ge=0)
    total_bytes: int | None = Field(default=None, ge=0)


class ItemsEvent(BaseModel):
    """One emitted batch of canonical records, in stream order."""

    type: Literal["items"] = "items"
    items: list[Vulnerability]


class LogEvent(BaseModel):
    """Diagnostic line for the consumer to log."""

    type: Literal["log"] = "log"
    message: str


class DoneEvent(BaseModel):
    """Terminal success. emitted counts every record across all batches."""

    type: Literal["done"] = "done"
    emitted: int = Field(default=0, ge=0)


class ErrorEvent(BaseModel):
    """Terminal failure with a human-readable message."""

    type: Literal["error"] = "error"
    error: str


IngestEvent = Annotated[
    Union[ProgressEvent, ItemsEvent, LogEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

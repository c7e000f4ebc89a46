"""WebSocket frame protocol shared by the Host and the agent.

One JSON object per WebSocket message, discriminated on ``type``::

    {"type": "request",  "id": "req-1", "method": "getCurrentFile", "params": {...}}
    {"type": "response", "id": "req-1", "result": {...}}  or  "error": "..."
    {"type": "push",     "event": "processingComplete", "data": {...}}
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from chronicle.utils.exceptions import FrameValidationError


class Method(str, Enum):
    """Request methods known on either side of the channel."""

    GET_CURRENT_FILE = "getCurrentFile"
    GET_WORKSPACE_PATH = "getWorkspacePath"
    TRIGGER_PROCESSING = "triggerProcessing"


class PushEvent(str, Enum):
    PROCESSING_STARTED = "processingStarted"
    PROCESSING_COMPLETE = "processingComplete"
    PROCESSING_ERROR = "processingError"


class _Frame(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)


class RequestFrame(_Frame):
    """Request frame; ``data`` is accepted as an alias of ``params``."""
    type: Literal["request"] = "request"
    id: str
    method: str
    params: dict[str, Any] | None = Field(default=None, validation_alias=AliasChoices("params", "data"))

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "id": self.id, "method": self.method}
        if self.params is not None:
            out["params"] = self.params
        return out


class ResponseFrame(_Frame):
    """Response frame; exactly one of ``result`` / ``error`` is present."""
    type: Literal["response"] = "response"
    id: str
    result: Any = None
    error: str | None = None

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "ResponseFrame":
        has_result = "result" in self.model_fields_set
        has_error = "error" in self.model_fields_set and self.error is not None
        if has_result == has_error:
            raise ValueError("response must carry exactly one of 'result' or 'error'")
        return self

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "id": self.id}
        if self.is_error:
            out["error"] = self.error
        else:
            out["result"] = self.result
        return out


class PushFrame(_Frame):
    """One-way notification frame."""
    type: Literal["push"] = "push"
    event: str
    data: Any = None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "event": self.event}
        if self.data is not None:
            out["data"] = self.data
        return out


Frame = Annotated[Union[RequestFrame, ResponseFrame, PushFrame], Field(discriminator="type")]

_FRAME_ADAPTER: TypeAdapter[Any] = TypeAdapter(Frame)


def decode_frame(raw: str | bytes | bytearray) -> RequestFrame | ResponseFrame | PushFrame:
    """
    Parse and structurally validate one wire frame.

    Raises:
        FrameValidationError: invalid JSON, non-object payload, unknown type,
            missing fields or wrong field types.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise FrameValidationError(f"frame is not valid UTF-8: {e}") from e
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise FrameValidationError(f"frame is not valid JSON: {e.msg}") from e
    if not isinstance(payload, dict):
        raise FrameValidationError(f"frame must be a JSON object, got {type(payload).__name__}")
    try:
        return _FRAME_ADAPTER.validate_python(payload)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<frame>'}: {err['msg']}" for err in e.errors()
        )
        raise FrameValidationError(f"invalid frame: {problems}") from e


def encode_frame(frame: RequestFrame | ResponseFrame | PushFrame) -> str:
    """Serialize a frame as a single-line JSON object."""
    return json.dumps(frame.to_wire(), ensure_ascii=False, separators=(",", ":"), default=str)


def make_response(request_id: str, *, result: Any = None, error: str | None = None) -> ResponseFrame:
    """Build a response frame, choosing the error branch when ``error`` is given."""
    if error is not None:
        return ResponseFrame(id=request_id, error=error)
    return ResponseFrame(id=request_id, result=result)

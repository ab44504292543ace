"""Line decoder for the agent CLI stream-json protocol."""

from __future__ import annotations

import json
from dataclasses import dataclass

from pydantic import ValidationError

from .frames import FRAME_TYPES, Frame, UnknownFrame

_PREVIEW_CHARS = 200


@dataclass(frozen=True)
class DecodeError:
    """One protocol line that could not be decoded."""

    line: str
    message: str

    def preview(self) -> str:
        if len(self.line) <= _PREVIEW_CHARS:
            return self.line
        return self.line[:_PREVIEW_CHARS] + "..."

    def __str__(self) -> str:
        return f"{self.message} - line: {self.preview()}"


def decode_frame(line: str) -> Frame | DecodeError:
    """Decode one line of stdout into a frame.

    Never raises: malformed input is returned as a DecodeError value so the caller
    can log and skip it. Frame types this decoder does not know decode to
    UnknownFrame.
    """
    try:
        payload = json.loads(line)
    except (ValueError, RecursionError) as exc:
        return DecodeError(line=line, message=f"invalid json: {exc}")
    if not isinstance(payload, dict):
        return DecodeError(line=line, message="expected a json object")

    frame_type = payload.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        return DecodeError(line=line, message="missing frame type")

    model = FRAME_TYPES.get(frame_type)
    if model is None:
        return UnknownFrame(type=frame_type, raw=payload)
    try:
        return model.model_validate(payload)  # type: ignore[return-value]
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}" for err in exc.errors()
        )
        return DecodeError(line=line, message=f"invalid {frame_type} frame: {errors}")
    except RecursionError:
        return DecodeError(line=line, message=f"invalid {frame_type} frame: nesting too deep")

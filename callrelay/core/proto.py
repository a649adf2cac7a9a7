from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, Optional, Union

import orjson
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError


# ---------------------------------------------------------------------------
# Event kinds & error codes
# ---------------------------------------------------------------------------

class EventType(str, Enum):
    REGISTER = "register"
    CALL_INITIATE = "call-initiate"
    CALL_ANSWER = "call-answer"
    CALL_TERMINATE = "call-terminate"
    ERROR = "error"


ERROR_CODES = {
    "USER_NOT_FOUND",
    "USER_OFFLINE",
}


class MalformedEvent(ValueError):
    """Inbound frame that cannot be turned into a known event."""


# ---------------------------------------------------------------------------
# Inbound event models
# ---------------------------------------------------------------------------

class _Event(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class RegisterEvent(_Event):
    user_id: str = Field(min_length=1, validation_alias=AliasChoices("userId", "user_id"))


class CallInitiateEvent(_Event):
    to: str = Field(min_length=1, validation_alias=AliasChoices("to", "userToCall"))
    signal: Any = Field(validation_alias=AliasChoices("signal", "signalData"))
    from_: Optional[str] = Field(default=None, min_length=1, validation_alias="from")


class CallAnswerEvent(_Event):
    to: str = Field(min_length=1)
    signal: Any


class CallTerminateEvent(_Event):
    to: str = Field(min_length=1)


Event = Union[RegisterEvent, CallInitiateEvent, CallAnswerEvent, CallTerminateEvent]

_EVENT_MODELS = {
    EventType.REGISTER.value: RegisterEvent,
    EventType.CALL_INITIATE.value: CallInitiateEvent,
    EventType.CALL_ANSWER.value: CallAnswerEvent,
    EventType.CALL_TERMINATE.value: CallTerminateEvent,
}


def parse_event(raw: Union[str, bytes]) -> Event:
    """Decode one inbound text frame into an event model.

    Raises MalformedEvent for anything that is not a known, well-formed event,
    including a signal too deeply nested to be encoded again. The signal is
    otherwise carried through as decoded; integers wider than 64 bits come back
    from orjson as floats, so clients must send those as strings.
    """

    try:
        frame = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise MalformedEvent(f"invalid json: {exc}") from exc

    if not isinstance(frame, dict):
        raise MalformedEvent("frame must be an object")

    type_ = frame.get("type")
    model = _EVENT_MODELS.get(type_) if isinstance(type_, str) else None
    if model is None:
        raise MalformedEvent(f"unknown event type {type_!r}")

    payload = frame.get("payload")
    if not isinstance(payload, dict):
        raise MalformedEvent(f"{type_}: payload must be an object")

    try:
        event = model.model_validate(payload)
    except ValidationError as exc:
        fields = ",".join(".".join(str(p) for p in err["loc"]) or "payload" for err in exc.errors())
        raise MalformedEvent(f"{type_}: invalid or missing field(s) {fields}") from exc

    # orjson decodes deeper nesting than it will encode again
    if hasattr(event, "signal"):
        try:
            orjson.dumps(build_frame(type_, {"signal": event.signal}, ts=0))
        except orjson.JSONEncodeError as exc:
            raise MalformedEvent(f"{type_}: signal cannot be relayed: {exc}") from exc
    return event


# ---------------------------------------------------------------------------
# Outbound frames
# ---------------------------------------------------------------------------

def now_ms() -> int:
    """Milliseconds since the Unix epoch."""

    return int(time.time() * 1000)


def build_frame(type: str, payload: Dict[str, Any], *, ts: int | None = None) -> Dict[str, Any]:
    return {
        "type": type,
        "ts": now_ms() if ts is None else ts,
        "payload": payload,
    }


def error_frame(code: str, detail: str, *, ref: str | None = None) -> Dict[str, Any]:
    if code not in ERROR_CODES:
        raise ValueError(f"unknown error code {code}")
    payload: Dict[str, Any] = {"code": code, "detail": detail}
    if ref is not None:
        payload["ref"] = ref
    return build_frame(EventType.ERROR.value, payload)


def encode_frame(frame: Dict[str, Any]) -> str:
    return orjson.dumps(frame).decode("utf-8")


def decode_frame(raw: Union[str, bytes]) -> Dict[str, Any]:
    """Loose decoder for outbound-style frames (used by the client and tests)."""

    frame = orjson.loads(raw)
    if not isinstance(frame, dict) or "type" not in frame:
        raise MalformedEvent("frame must be an object with a type")
    return frame


__all__ = [
    "EventType",
    "ERROR_CODES",
    "MalformedEvent",
    "RegisterEvent",
    "CallInitiateEvent",
    "CallAnswerEvent",
    "CallTerminateEvent",
    "Event",
    "parse_event",
    "now_ms",
    "build_frame",
    "error_frame",
    "encode_frame",
    "decode_frame",
]

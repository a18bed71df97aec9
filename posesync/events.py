"""
Inbound event models and boundary validation.

Each inbound event name maps to one pydantic model. ``parse_event`` is the
only place payload shape is checked; everything past it works with typed
values. Pose payloads are never inspected beyond "present".
"""
import math
from typing import Annotated, Any, Dict, Literal, Optional, Type, Union

from pydantic import (
    BaseModel, ConfigDict, Field, StrictFloat, StrictInt, ValidationError,
    field_validator,
)

# Inbound
JOIN_SESSION = "join-session"
POSE_DATA = "pose-data"
MUSIC_CONTROL = "music-control"

# Outbound
USER_JOINED = "user-joined"
SESSION_USERS = "session-users"
RECEIVE_POSE = "receive-pose"
MUSIC_EVENT = "music-event"
USER_LEFT = "user-left"

Identifier = Annotated[str, Field(strict=True, min_length=1)]
# bool is rejected; ints stay ints so millisecond timestamps pass through as sent
Number = Union[StrictInt, StrictFloat]


class MalformedEvent(ValueError):
    """Raised when an inbound payload does not match its event type"""


class _Inbound(BaseModel):
    model_config = ConfigDict(frozen=True)


class JoinSession(_Inbound):
    session_id: Identifier = Field(alias="sessionId")
    user_id: Identifier = Field(alias="userId")


class PoseData(_Inbound):
    session_id: Identifier = Field(alias="sessionId")
    user_id: Identifier = Field(alias="userId")
    pose_data: Any = Field(alias="poseData")
    timestamp: Optional[Number] = None


class MusicControl(_Inbound):
    session_id: Identifier = Field(alias="sessionId")
    action: Literal["play", "pause", "seek"]
    position: Number
    timestamp: Optional[Number] = None

    @field_validator("position")
    @classmethod
    def position_is_non_negative(cls, value):
        if not math.isfinite(value) or value < 0:
            raise ValueError("position must be a non-negative number of seconds")
        return value


InboundEvent = Union[JoinSession, PoseData, MusicControl]

_MODELS: Dict[str, Type[_Inbound]] = {
    JOIN_SESSION: JoinSession,
    POSE_DATA: PoseData,
    MUSIC_CONTROL: MusicControl,
}


def parse_event(name: str, payload: Any) -> InboundEvent:
    """
    Validate an inbound ``(name, payload)`` pair and return its typed event.

    Raises:
        MalformedEvent: unknown event name or payload of the wrong shape
    """
    model = _MODELS.get(name)
    if model is None:
        raise MalformedEvent(f"unknown event {name!r}")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise MalformedEvent(f"invalid {name}: {e.error_count()} error(s)") from e
